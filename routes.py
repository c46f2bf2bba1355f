"""FastAPI routes for Photo Vault."""
import asyncio
import logging
from typing import List as ListType
from typing import Optional

from fastapi import Depends, File, Header, Query, Request, Response, UploadFile
from fastapi.responses import FileResponse

import pipeline
from credentials import CredentialStore
from errors import NotFound, Unauthorized, UnsupportedType
from models import Photo, User
from registry import Realm, RealmRegistry
from schemas import (
    AuthRequest,
    AuthResponse,
    PhotoList,
    PhotoOut,
    UploadError,
    UploadResponse,
    UserOut,
)
from tokens import TokenService, bearer_token

logger = logging.getLogger(__name__)


# Dependencies

def get_credentials(request: Request) -> CredentialStore:
    return request.app.state.credentials


def get_tokens(request: Request) -> TokenService:
    return request.app.state.tokens


def get_registry(request: Request) -> RealmRegistry:
    return request.app.state.registry


def _user_id_for(tokens: TokenService, raw: Optional[str]) -> str:
    claims = tokens.verify(raw)
    if claims is None:
        raise Unauthorized()
    return claims.user_id


def require_user(
    authorization: Optional[str] = Header(None),
    tokens: TokenService = Depends(get_tokens),
) -> str:
    """Resolve the caller from the Authorization header only."""
    return _user_id_for(tokens, bearer_token(authorization))


def require_asset_user(
    authorization: Optional[str] = Header(None),
    token: Optional[str] = Query(None),
    tokens: TokenService = Depends(get_tokens),
) -> str:
    """Header first, then ``?token=`` for <img> tags that cannot send headers.

    Query tokens can end up in access logs and referrers, so only read-only
    asset routes accept them.
    """
    return _user_id_for(tokens, bearer_token(authorization) or token)


async def user_realm(
    user_id: str = Depends(require_user),
    registry: RealmRegistry = Depends(get_registry),
) -> Realm:
    return await registry.get(user_id)


async def asset_realm(
    user_id: str = Depends(require_asset_user),
    registry: RealmRegistry = Depends(get_registry),
) -> Realm:
    return await registry.get(user_id)


# Serializers

def user_out(user: User) -> UserOut:
    return UserOut(id=user.id, username=user.username, storageFolder=f"users/{user.id}")


def photo_out(realm: Realm, photo: Photo) -> PhotoOut:
    """Photo representation; thumbnail presence is checked on every call."""
    url = f"/uploads/{photo.filename}"
    if realm.has_thumbnail(photo.filename):
        thumbnail_url = f"/uploads/{realm.thumbnail_path(photo.filename).name}"
    else:
        thumbnail_url = url
    return PhotoOut(
        id=photo.id,
        name=photo.name,
        url=url,
        thumbnailUrl=thumbnail_url,
        addedAt=photo.created_at,
        downloadUrl=f"/api/photos/{photo.id}/download",
    )


# Routes

def health():
    """Liveness check."""
    return {"ok": True}


async def register(
    payload: AuthRequest,
    credentials: CredentialStore = Depends(get_credentials),
    tokens: TokenService = Depends(get_tokens),
    registry: RealmRegistry = Depends(get_registry),
) -> AuthResponse:
    """Create an account and log it in."""
    user = await asyncio.to_thread(
        credentials.register, payload.login_id, payload.password
    )
    await registry.get(user.id)
    return AuthResponse(token=tokens.issue(user.id), user=user_out(user))


async def login(
    payload: AuthRequest,
    credentials: CredentialStore = Depends(get_credentials),
    tokens: TokenService = Depends(get_tokens),
    registry: RealmRegistry = Depends(get_registry),
) -> AuthResponse:
    await asyncio.to_thread(credentials.ensure_default_user)
    user = await asyncio.to_thread(
        credentials.authenticate, payload.login_id, payload.password
    )
    await registry.get(user.id)
    return AuthResponse(token=tokens.issue(user.id), user=user_out(user))


def me(
    user_id: str = Depends(require_user),
    credentials: CredentialStore = Depends(get_credentials),
) -> UserOut:
    """Identity behind the current token."""
    credentials.ensure_default_user()
    user = credentials.get(user_id)
    if user is None:
        raise Unauthorized()
    return user_out(user)


def list_photos(realm: Realm = Depends(user_realm)) -> PhotoList:
    """List the caller's photos, newest first."""
    return PhotoList(photos=[photo_out(realm, p) for p in pipeline.list_photos(realm)])


async def upload_photos(
    photos: ListType[UploadFile] = File(...),
    realm: Realm = Depends(user_realm),
) -> UploadResponse:
    """Ingest a multipart batch under the ``photos`` field."""
    for upload in photos:
        if not pipeline.is_accepted(upload.filename or "", upload.content_type):
            raise UnsupportedType(f"Only image files are allowed: {upload.filename}")

    batch = [
        pipeline.UploadedFile(
            filename=upload.filename or "",
            content_type=upload.content_type,
            data=await upload.read(),
        )
        for upload in photos
    ]
    report = await pipeline.ingest(realm, batch)

    return UploadResponse(
        photos=[photo_out(realm, p) for p in report.photos],
        errors=[
            UploadError(name=f.filename, code=f.error.code, error=f.error.detail)
            for f in report.failures
        ],
    )


def delete_photo(photo_id: str, realm: Realm = Depends(user_realm)) -> Response:
    logger.info("delete requested user_id=%s photo_id=%s", realm.user_id, photo_id)
    pipeline.remove(realm, photo_id)
    logger.info("delete completed user_id=%s photo_id=%s", realm.user_id, photo_id)
    return Response(status_code=204)


def download(photo_id: str, realm: Realm = Depends(asset_realm)) -> FileResponse:
    """Serve the original asset as an attachment."""
    photo, path = pipeline.resolve_asset(realm, photo_id)
    return FileResponse(path, media_type=photo.mime_type, filename=photo.name)


async def thumbnail(photo_id: str, realm: Realm = Depends(asset_realm)) -> FileResponse:
    """Serve the thumbnail, regenerating it when missing; falls back to the original."""
    photo, path = pipeline.resolve_asset(realm, photo_id)
    thumb_path = realm.thumbnail_path(photo.filename)
    if not thumb_path.exists():
        await pipeline.ensure_thumbnail(realm, photo.filename)
    if thumb_path.exists():
        return FileResponse(thumb_path, media_type="image/webp")
    return FileResponse(path, media_type=photo.mime_type)


def uploaded_file(filename: str, realm: Realm = Depends(asset_realm)) -> FileResponse:
    """Serve a stored asset or thumbnail from the caller's own realm."""
    path = realm.asset_path(filename)
    if not path.is_file():
        raise NotFound("File not found")
    return FileResponse(path)
