import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from rfqdispatch.api import dispatch
from rfqdispatch.core.config import settings
from rfqdispatch.core.logging import setup_logging


def create_app() -> FastAPI:
    setup_logging()
    application = FastAPI(title=settings.APP_NAME, version=settings.APP_VERSION)

    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    application.include_router(dispatch.router)

    @application.get("/health")
    async def health():
        return {"status": "ok", "version": settings.APP_VERSION}

    return application


app = create_app()

if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
