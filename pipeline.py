"""Upload ingest, HEIC normalization and thumbnail derivation."""
import asyncio
import logging
import mimetypes
import secrets
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import pillow_heif
from PIL import Image as PILImage, ImageOps

from errors import ConversionFailed, FileMissing, NotFound, UnsupportedType, VaultError
from models import Photo
from registry import Realm
from utils import now_ms

logger = logging.getLogger(__name__)

pillow_heif.register_heif_opener()

# Configuration
ALLOWED_EXTS = {
    ".jpg", ".jpeg", ".png", ".webp", ".gif", ".bmp", ".tif", ".tiff",
    ".heic", ".heif", ".avif", ".svg",
}
HEIC_EXTS = {".heic", ".heif"}
HEIC_MIME_TYPES = {"image/heic", "image/heif", "image/heic-sequence", "image/heif-sequence"}
THUMB_SIZE = (480, 480)
THUMB_QUALITY = 70
JPEG_QUALITY = 90


@dataclass
class UploadedFile:
    filename: str
    content_type: Optional[str]
    data: bytes


@dataclass
class IngestFailure:
    filename: str
    error: VaultError


@dataclass
class IngestReport:
    photos: list[Photo] = field(default_factory=list)
    failures: list[IngestFailure] = field(default_factory=list)


def is_accepted(filename: str, content_type: Optional[str]) -> bool:
    """Image-like content type or a known image extension."""
    if (content_type or "").lower().startswith("image/"):
        return True
    return Path(filename or "").suffix.lower() in ALLOWED_EXTS


def is_heic(filename: str, content_type: Optional[str] = None) -> bool:
    if Path(filename or "").suffix.lower() in HEIC_EXTS:
        return True
    return (content_type or "").lower() in HEIC_MIME_TYPES


def stored_name_for(original: str) -> str:
    """Collision-resistant storage name; only the extension comes from the client."""
    ext = Path(original or "").suffix.lower()
    if ext not in ALLOWED_EXTS:
        ext = ""
    return f"{now_ms()}-{secrets.token_hex(4)}{ext}"


def jpeg_display_name(name: str) -> str:
    stem = Path(name).stem if Path(name).suffix else name
    return f"{stem or 'photo'}.jpg"


def transcode_to_jpeg(source: Path, target: Path) -> int:
    """Decode any Pillow/HEIF-readable image and write it as JPEG."""
    with PILImage.open(source) as im:
        im = ImageOps.exif_transpose(im)
        im.convert("RGB").save(target, format="JPEG", quality=JPEG_QUALITY)
    return target.stat().st_size


def make_thumbnail(source: Path, target: Path) -> tuple[int, int]:
    """Write a WebP thumbnail fitting inside THUMB_SIZE; never upscales."""
    with PILImage.open(source) as im:
        im = ImageOps.exif_transpose(im)
        im.thumbnail(THUMB_SIZE)
        mode = "RGBA" if im.mode in ("RGBA", "LA", "P") else "RGB"
        im.convert(mode).save(target, format="WEBP", quality=THUMB_QUALITY)
        return im.size


async def ensure_thumbnail(realm: Realm, filename: str) -> bool:
    """Derive the thumbnail for a stored asset. Failures only log a warning."""
    source = realm.asset_path(filename)
    target = realm.thumbnail_path(filename)
    try:
        await asyncio.to_thread(make_thumbnail, source, target)
    except Exception as exc:
        target.unlink(missing_ok=True)
        logger.warning(
            "thumbnail failed user_id=%s filename=%s: %s", realm.user_id, filename, exc
        )
        return False
    return True


async def transcode_asset(realm: Realm, filename: str) -> tuple[str, int]:
    """Write a JPEG sibling of a stored HEIC asset.

    Returns the new stored filename and its size. The source file is left in
    place; callers decide when to remove it.
    """
    source = realm.asset_path(filename)
    target = source.with_suffix(".jpg")
    if target == source:
        # HEIC bytes under a .jpg name; never write over the original
        target = source.with_name(stored_name_for(target.name))
    try:
        size = await asyncio.to_thread(transcode_to_jpeg, source, target)
    except Exception as exc:
        target.unlink(missing_ok=True)
        raise ConversionFailed(f"Could not convert {filename}: {exc}") from exc
    return target.name, size


def discard_asset(realm: Realm, filename: str) -> None:
    """Remove an asset and its thumbnail; files already gone are fine."""
    realm.asset_path(filename).unlink(missing_ok=True)
    realm.thumbnail_path(filename).unlink(missing_ok=True)


async def ingest_one(realm: Realm, upload: UploadedFile) -> Photo:
    if not is_accepted(upload.filename, upload.content_type):
        raise UnsupportedType(f"Only image files are allowed: {upload.filename}")

    filename = stored_name_for(upload.filename)
    path = realm.asset_path(filename)
    await asyncio.to_thread(path.write_bytes, upload.data)

    name = upload.filename or filename
    mime_type = upload.content_type or ""
    if not mime_type.lower().startswith("image/"):
        mime_type = (
            mimetypes.guess_type(name)[0] or mime_type or "application/octet-stream"
        )
    size = len(upload.data)

    if is_heic(upload.filename, upload.content_type):
        try:
            converted, size = await transcode_asset(realm, filename)
        except ConversionFailed:
            discard_asset(realm, filename)
            raise
        if converted != filename:
            discard_asset(realm, filename)
        filename = converted
        mime_type = "image/jpeg"
        name = jpeg_display_name(name)

    await ensure_thumbnail(realm, filename)

    photo = Photo(
        id=str(uuid.uuid4()),
        name=name,
        filename=filename,
        mime_type=mime_type,
        size=size,
        created_at=now_ms(),
    )
    return realm.add_photo(photo)


async def ingest(realm: Realm, uploads: list[UploadedFile]) -> IngestReport:
    """Store a batch of uploads. One bad file never aborts the others."""
    report = IngestReport()
    for upload in uploads:
        try:
            photo = await ingest_one(realm, upload)
        except (UnsupportedType, ConversionFailed) as exc:
            logger.warning(
                "upload rejected user_id=%s filename=%s: %s",
                realm.user_id,
                upload.filename,
                exc,
            )
            report.failures.append(IngestFailure(upload.filename, exc))
            continue
        logger.info(
            "upload stored user_id=%s photo_id=%s filename=%s",
            realm.user_id,
            photo.id,
            photo.filename,
        )
        report.photos.append(photo)
    return report


async def convert_stored_photo(realm: Realm, photo: Photo) -> bool:
    """Rewrite an already-recorded HEIC photo as JPEG.

    The JPEG is written and the row repointed before the HEIC is removed. If
    the row changed or vanished meanwhile, the new file is dropped instead.
    """
    converted, size = await transcode_asset(realm, photo.filename)
    updated = realm.replace_asset(
        photo.id,
        photo.filename,
        filename=converted,
        mime_type="image/jpeg",
        size=size,
        name=jpeg_display_name(photo.name),
    )
    if not updated:
        realm.asset_path(converted).unlink(missing_ok=True)
        return False
    discard_asset(realm, photo.filename)
    return True


def list_photos(realm: Realm) -> list[Photo]:
    return realm.list_photos()


def remove(realm: Realm, photo_id: str) -> None:
    """Delete a photo's files, then its row."""
    photo = realm.get_photo(photo_id)
    if photo is None:
        raise NotFound()
    discard_asset(realm, photo.filename)
    deleted = realm.delete_photo(photo_id)
    if deleted is None:
        raise NotFound()
    if deleted != photo.filename:
        # Repointed (HEIC sweep) between the read and the delete
        discard_asset(realm, deleted)


def resolve_asset(realm: Realm, photo_id: str) -> tuple[Photo, Path]:
    photo = realm.get_photo(photo_id)
    if photo is None:
        raise NotFound()
    path = realm.asset_path(photo.filename)
    if not path.exists():
        raise FileMissing()
    return photo, path
