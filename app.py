"""
Photo Vault – personal multi-user photo storage (FastAPI + SQLite)

Quick start
-----------
1) python -m venv .venv && source .venv/bin/activate  # or .venv\\Scripts\\activate on Windows
2) pip install -e .
3) VAULT_TOKEN_SECRET=... python app.py  # creates ./data on first run
4) POST /api/auth/login with {"loginId": "admin", "password": "changeme"}

Notes
-----
• Data lives under VAULT_DATA_DIR (default ./data): users.db plus users/<id>/.
• Each user gets their own uploads/ folder and photos.db, created on first use.
• HEIC/HEIF uploads are stored as JPEG; thumbnails are WebP next to the originals.
• At startup, leftover HEIC files are converted and missing thumbnails rebuilt.
"""

import asyncio
import logging
import sys
from contextlib import asynccontextmanager, suppress
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import Settings, get_settings
from credentials import CredentialStore
from database import make_engine
from errors import VaultError
from reconcile import catch_up, prepare_credentials
from registry import RealmRegistry
from routes import (
    delete_photo,
    download,
    health,
    list_photos,
    login,
    me,
    register,
    thumbnail,
    upload_photos,
    uploaded_file,
)
from tokens import TokenService

logger = logging.getLogger(__name__)


async def vault_error_handler(request: Request, exc: VaultError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail, "code": exc.code},
    )


async def _run_catch_up(credentials: CredentialStore, registry: RealmRegistry) -> None:
    try:
        await catch_up(credentials, registry)
    except Exception:
        logger.exception("startup reconciliation crashed")


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Build the app and everything it owns."""
    settings = settings or get_settings()
    settings.data_dir.mkdir(parents=True, exist_ok=True)

    credentials = CredentialStore(
        make_engine(settings.credentials_db_path),
        default_username=settings.default_username,
        default_password=settings.default_password,
        rounds=settings.password_rounds,
    )
    tokens = TokenService(settings.token_secret, settings.token_ttl_seconds)
    registry = RealmRegistry(settings.users_dir)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Users must exist before the first login; the per-realm work can lag
        prepare_credentials(credentials, settings.legacy_users_path)
        task = None
        if settings.reconcile_on_startup:
            task = asyncio.create_task(_run_catch_up(credentials, registry))
        app.state.reconcile_task = task
        yield
        if task is not None and not task.done():
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task
        registry.close()
        credentials.engine.dispose()

    app = FastAPI(title="Photo Vault", lifespan=lifespan)
    app.state.settings = settings
    app.state.credentials = credentials
    app.state.tokens = tokens
    app.state.registry = registry

    origins = settings.origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if "*" in origins else origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(VaultError, vault_error_handler)

    # Routes
    app.get("/api/health")(health)
    app.post("/api/auth/register")(register)
    app.post("/api/auth/login")(login)
    app.get("/api/auth/me")(me)
    app.get("/api/photos")(list_photos)
    app.post("/api/photos", status_code=201)(upload_photos)
    app.delete("/api/photos/{photo_id}", status_code=204)(delete_photo)
    app.get("/api/photos/{photo_id}/download")(download)
    app.get("/api/photos/{photo_id}/thumbnail")(thumbnail)
    app.get("/uploads/{filename}")(uploaded_file)

    # Backward-compatible image endpoint
    app.get("/api/images/{photo_id}")(download)

    return app


if __name__ == "__main__":
    # Allow `python app.py 4000`
    port = int(sys.argv[1]) if len(sys.argv) > 1 else 4000
    logging.basicConfig(
        level=get_settings().log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    print(f"→ Open http://localhost:{port}")
    import uvicorn

    uvicorn.run("app:create_app", factory=True, host="127.0.0.1", port=port)
