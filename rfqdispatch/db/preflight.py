"""
Database preflight check run before the service starts taking requests.

Confirms connectivity, then reports which schema-gated features the connected
database supports so an unmigrated deployment is obvious from the boot log.
"""
import sys
import time
from typing import Dict, Optional

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError

from rfqdispatch.core.config import settings
from rfqdispatch.core.logging import get_logger, setup_logging
from rfqdispatch.db.session import get_engine
from rfqdispatch.services.capabilities import capability_report
from rfqdispatch.services.capability_gate import CapabilityCache, SqlAlchemySchemaProbe

logger = get_logger("db_preflight")


def _safe_url(db_url: str) -> str:
    return db_url.split("@")[-1] if "@" in db_url else "configured URL"


def check_connectivity(engine: Engine, retries: int = 5, delay: float = 2) -> bool:
    """
    Attempt ``SELECT 1`` up to ``retries`` times.

    Authentication failures are not retried; they will not fix themselves.
    """
    for attempt in range(1, retries + 1):
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            logger.info("Database connection successful.")
            return True
        except OperationalError as e:
            err_msg = str(e)

            if "password authentication failed" in err_msg.lower():
                logger.error(
                    f"Database authentication failed for user {settings.POSTGRES_USER} "
                    f"on {settings.POSTGRES_DB}; check POSTGRES_* / DATABASE_URL"
                )
                return False

            if attempt < retries:
                logger.warning(f"Attempt {attempt}/{retries} failed: {err_msg}. Retrying in {delay}s...")
                time.sleep(delay)
            else:
                logger.error(f"Could not connect to database after {retries} attempts: {err_msg}")
    return False


def report_capabilities(engine: Engine, cache: Optional[CapabilityCache] = None) -> Dict[str, bool]:
    """Log which gated features the schema supports and return the map."""
    cache = cache or CapabilityCache(SqlAlchemySchemaProbe(engine), enabled=settings.SCHEMA_GATE_ENABLED)
    report = capability_report(cache)
    disabled = sorted(name for name, ok in report.items() if not ok)
    if disabled:
        logger.warning(f"Schema-gated features disabled: {', '.join(disabled)}")
    else:
        logger.info("All schema-gated features available.")
    return report


def run_db_preflight(
    engine: Optional[Engine] = None,
    retries: int = 5,
    delay: float = 2,
) -> Dict[str, bool]:
    """
    Check connectivity and report capabilities.

    Raises SystemExit when the database is unreachable.
    """
    engine = engine or get_engine()
    logger.info(f"Running DB preflight check against: {_safe_url(str(engine.url))}")
    if not check_connectivity(engine, retries=retries, delay=delay):
        sys.exit(1)
    return report_capabilities(engine)


if __name__ == "__main__":
    setup_logging()
    run_db_preflight()
