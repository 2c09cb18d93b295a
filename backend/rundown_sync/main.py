from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging
from logging.handlers import RotatingFileHandler

from rundown_sync.config import Settings
from rundown_sync.errors import RundownError
from rundown_sync.api.rundowns import router as rundowns_router
from rundown_sync.deps import get_tree_store, reset


settings = Settings()


def _configure_logging() -> None:
    log_file = settings.logs_dir / "backend.log"
    handler = RotatingFileHandler(str(log_file), maxBytes=5_000_000, backupCount=2)
    formatter = logging.Formatter(
        fmt='%(asctime)s %(levelname)s %(name)s %(message)s'
    )
    handler.setFormatter(formatter)
    root = logging.getLogger()
    if not any(isinstance(h, RotatingFileHandler) for h in root.handlers):
        root.addHandler(handler)
    root.setLevel(logging.INFO)


def create_app() -> FastAPI:
    app = FastAPI(title="Rundown Sync Backend", version="0.1.0")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.on_event("startup")
    def _startup() -> None:
        settings.ensure_dirs()
        try:
            _configure_logging()
        except OSError:
            logging.getLogger("rundown_sync").warning("File logging unavailable; using console only")
        get_tree_store()

    @app.on_event("shutdown")
    def _shutdown() -> None:
        reset()

    @app.get("/healthz")
    def healthz() -> dict[str, str]:
        return {"status": "ok"}

    app.include_router(rundowns_router)

    @app.exception_handler(RundownError)
    async def _rundown_error_handler(request: Request, exc: RundownError):  # type: ignore[override]
        logging.getLogger("rundown_sync").info("%s %s: %s", request.method, request.url.path, exc.message)
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": type(exc).__name__, "message": exc.message},
        )

    @app.exception_handler(ValueError)
    async def _value_error_handler(request: Request, exc: ValueError):  # type: ignore[override]
        return JSONResponse(status_code=422, content={"error": "ValueError", "message": str(exc)})

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):  # type: ignore[override]
        logging.getLogger("rundown_sync").exception("Unhandled exception")
        return JSONResponse(status_code=500, content={"error": str(exc)})

    return app


app = create_app()


if __name__ == "__main__":
    import argparse
    import uvicorn

    parser = argparse.ArgumentParser(description="Rundown Sync Backend Server")
    parser.add_argument("--host", default="127.0.0.1", help="Host to bind to")
    parser.add_argument("--port", type=int, default=8000, help="Port to bind to")
    parser.add_argument("--reload", action="store_true", help="Enable auto-reload (dev only)")

    args = parser.parse_args()

    uvicorn.run(
        "rundown_sync.main:app" if args.reload else app,
        host=args.host,
        port=args.port,
        reload=args.reload
    )
