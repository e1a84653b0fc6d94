"""
Schema capability gate.

Answers "is feature X safe to use against this database right now" by checking
that a relation and a set of columns exist. Absence is a normal runtime state
on a database that has not been migrated yet: it resolves to ``False`` and one
warning line, never to an exception.

The cache is an explicit object created once per process and injected into
callers. Probing (which may be I/O) runs outside the lock; only the cache
write and the warn-once bookkeeping are guarded.
"""
import threading
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, Optional, Set, Tuple

from sqlalchemy import inspect
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from rfqdispatch.core.errors import InvalidUsageError
from rfqdispatch.core.logging import get_logger

logger = get_logger(__name__)

MISSING_RELATION = "missing_relation"
MISSING_COLUMN = "missing_column"
UNKNOWN = "unknown"

# SQLSTATE codes signalling schema drift
_UNDEFINED_TABLE = "42P01"
_UNDEFINED_COLUMN = "42703"
_INSUFFICIENT_PRIVILEGE = "42501"
_MISSING_SCHEMA_CODES = frozenset({_UNDEFINED_TABLE, _UNDEFINED_COLUMN})


# ============= DESCRIPTORS & RESULTS =============

def _normalize_columns(columns: Iterable[str]) -> Tuple[str, ...]:
    cleaned = {c.strip() for c in columns or () if isinstance(c, str) and c.strip()}
    return tuple(sorted(cleaned))


@dataclass(frozen=True)
class CapabilityDescriptor:
    """
    A schema dependency: a relation plus the columns a feature reads or writes.

    Columns are trimmed, de-duplicated and sorted so callers listing the same
    columns in a different order share one cache entry.
    """
    relation: str
    required_columns: Tuple[str, ...] = ()
    warn_key: Optional[str] = None

    def __post_init__(self):
        if not isinstance(self.relation, str) or not self.relation.strip():
            raise InvalidUsageError("relation must be a non-empty string", field="relation")
        object.__setattr__(self, "relation", self.relation.strip())
        object.__setattr__(self, "required_columns", _normalize_columns(self.required_columns))

    @property
    def cache_key(self) -> str:
        return f"{self.relation}::{','.join(self.required_columns)}"


@dataclass(frozen=True)
class ProbeResult:
    ok: bool
    relation: str
    reason: Optional[str] = None
    missing: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def definitive(self) -> bool:
        """True when the answer reflects the schema rather than a failed probe."""
        return self.ok or self.reason in (MISSING_RELATION, MISSING_COLUMN)


SchemaProbe = Callable[[str, Tuple[str, ...]], ProbeResult]


# ============= SQLALCHEMY PROBE =============

class SqlAlchemySchemaProbe:
    """Introspects the live schema through SQLAlchemy's inspector."""

    def __init__(self, engine: Engine, schema: Optional[str] = None):
        self.engine = engine
        self.schema = schema

    def __call__(self, relation: str, columns: Tuple[str, ...]) -> ProbeResult:
        try:
            # A fresh inspector per probe; inspectors cache reflection results.
            inspector = inspect(self.engine)
            relation_names = {
                name.lower()
                for name in list(inspector.get_table_names(schema=self.schema))
                + list(inspector.get_view_names(schema=self.schema))
            }
            if relation.lower() not in relation_names:
                return ProbeResult(ok=False, relation=relation, reason=MISSING_RELATION)
            if not columns:
                return ProbeResult(ok=True, relation=relation)

            present = {
                str(col["name"]).lower()
                for col in inspector.get_columns(relation, schema=self.schema)
            }
        except SQLAlchemyError as exc:
            logger.debug(f"Schema probe failed for {relation}: {exc}")
            return ProbeResult(ok=False, relation=relation, reason=UNKNOWN)

        missing = tuple(c for c in columns if c.lower() not in present)
        if missing:
            return ProbeResult(ok=False, relation=relation, reason=MISSING_COLUMN, missing=missing)
        return ProbeResult(ok=True, relation=relation)


# ============= CACHE =============

class CapabilityCache:
    """
    Process-scoped memo of capability answers with once-per-key warnings.

    Safe under concurrent use: N requests racing on a cold key may each probe,
    but exactly one result is stored and exactly one warning is emitted.
    """

    def __init__(self, probe: SchemaProbe, enabled: bool = True):
        self._probe = probe
        self.enabled = enabled
        self._lock = threading.Lock()
        self._results: Dict[str, ProbeResult] = {}
        self._warned: Set[str] = set()
        self._missing_relations: Set[str] = set()

    def check(self, descriptor: CapabilityDescriptor) -> ProbeResult:
        if not self.enabled:
            return ProbeResult(ok=False, relation=descriptor.relation, reason=UNKNOWN)

        key = descriptor.cache_key
        with self._lock:
            cached = self._results.get(key)
            marked_missing = descriptor.relation in self._missing_relations
        if marked_missing:
            return ProbeResult(ok=False, relation=descriptor.relation, reason=MISSING_RELATION)
        if cached is not None:
            return cached

        result = self._run_probe(descriptor)

        if result.definitive:
            with self._lock:
                result = self._results.setdefault(key, result)

        if not result.ok:
            self.warn_once(
                self._warn_key(descriptor, result),
                "Schema capability missing; feature disabled",
                relation=descriptor.relation,
                reason=result.reason,
                missing=list(result.missing) or None,
            )
        return result

    def _run_probe(self, descriptor: CapabilityDescriptor) -> ProbeResult:
        try:
            result = self._probe(descriptor.relation, descriptor.required_columns)
        except Exception as exc:
            logger.debug(f"Schema probe raised for {descriptor.relation}: {exc}")
            return ProbeResult(ok=False, relation=descriptor.relation, reason=UNKNOWN)
        if not isinstance(result, ProbeResult):
            return ProbeResult(ok=bool(result), relation=descriptor.relation,
                               reason=None if result else UNKNOWN)
        return result

    @staticmethod
    def _warn_key(descriptor: CapabilityDescriptor, result: ProbeResult) -> str:
        base = descriptor.warn_key or f"schema_contract:{descriptor.relation}"
        key = f"{base}:{result.reason}"
        if result.missing:
            key += ":" + ",".join(result.missing)
        return key

    def warn_once(self, key: str, message: str, **context) -> bool:
        """Emit ``message`` at WARNING the first time ``key`` is seen. Returns True if emitted."""
        with self._lock:
            if key in self._warned:
                return False
            self._warned.add(key)
        extra = {k: v for k, v in context.items() if v is not None}
        logger.warning(message, extra=extra)
        return True

    def mark_relation_missing(self, relation: str):
        """Record drift found at runtime so later checks skip without probing."""
        if not isinstance(relation, str) or not relation.strip():
            return
        with self._lock:
            self._missing_relations.add(relation.strip())

    def is_relation_marked_missing(self, relation: str) -> bool:
        with self._lock:
            return relation.strip() in self._missing_relations

    def invalidate(self, descriptor: Optional[CapabilityDescriptor] = None):
        """Forget one cached answer, or all of them."""
        with self._lock:
            if descriptor is None:
                self._results.clear()
                self._missing_relations.clear()
            else:
                self._results.pop(descriptor.cache_key, None)
                self._missing_relations.discard(descriptor.relation)

    def reset(self):
        """Forget answers, runtime drift and warn-once keys (test isolation)."""
        with self._lock:
            self._results.clear()
            self._warned.clear()
            self._missing_relations.clear()


# ============= PUBLIC GATE =============

def is_capable(descriptor: CapabilityDescriptor, cache: CapabilityCache) -> bool:
    """True iff the store currently supports every part of ``descriptor``. Never raises."""
    return cache.check(descriptor).ok


def schema_gate(enabled: bool, descriptor: CapabilityDescriptor, cache: CapabilityCache) -> bool:
    """Feature flag AND capability; a disabled flag never touches the schema."""
    if not enabled:
        return False
    return is_capable(descriptor, cache)


def has_relation(relation: str, cache: CapabilityCache) -> bool:
    return is_capable(CapabilityDescriptor(relation), cache)


def has_columns(relation: str, columns: Iterable[str], cache: CapabilityCache) -> bool:
    return is_capable(CapabilityDescriptor(relation, tuple(columns)), cache)


# ============= RUNTIME DRIFT CLASSIFICATION =============

def _error_source(exc: BaseException):
    """Unwrap SQLAlchemy's DBAPIError to the driver exception when present."""
    return getattr(exc, "orig", None) or exc


def _error_code(exc: BaseException) -> Optional[str]:
    source = _error_source(exc)
    for attr in ("sqlstate", "pgcode", "code"):
        code = getattr(source, attr, None)
        if isinstance(code, str) and code:
            return code
    return None


def _error_text(exc: BaseException) -> str:
    return str(_error_source(exc)).lower()


def is_missing_schema_error(exc: BaseException) -> bool:
    """True when a failed statement points at a missing table, view or column."""
    if exc is None:
        return False
    code = _error_code(exc)
    if code in _MISSING_SCHEMA_CODES:
        return True
    text = _error_text(exc)
    if "no such table" in text or "no such column" in text:
        return True
    if "undefined_table" in text or "undefined_column" in text:
        return True
    return ("relation" in text or "column" in text or "table" in text) and "does not exist" in text


def is_permission_denied_error(exc: BaseException) -> bool:
    """Row-level security or privilege failures: the relation exists."""
    if exc is None:
        return False
    if _error_code(exc) == _INSUFFICIENT_PRIVILEGE:
        return True
    text = _error_text(exc)
    return "row-level security" in text or "permission denied" in text


def handle_missing_schema(
    relation: str,
    exc: BaseException,
    cache: CapabilityCache,
    warn_key: Optional[str] = None,
) -> bool:
    """
    Absorb a schema-drift error raised by a live statement.

    Marks the relation missing, warns once, and returns True. Returns False
    (and does nothing) for any other error so the caller can propagate it.
    """
    if not is_missing_schema_error(exc):
        return False
    cache.mark_relation_missing(relation)
    cache.warn_once(
        warn_key or f"missing_relation:{relation}",
        "Missing schema detected at runtime; skipping",
        relation=relation,
        reason=_error_code(exc) or MISSING_RELATION,
    )
    return True
