"""Per-user realms: an uploads directory plus a photos index."""
import asyncio
import logging
from pathlib import Path
from typing import Optional

from sqlalchemy import delete, update
from sqlalchemy.engine import Engine
from sqlmodel import select

from database import get_session, init_realm_db, make_engine
from models import Photo
from utils import resolve_under_root, safe_segment, thumbnail_name

logger = logging.getLogger(__name__)

UPLOADS_DIRNAME = "uploads"
INDEX_FILENAME = "photos.db"


class Realm:
    """A single user's file area and metadata index.

    Every metadata mutation is one SQL statement so request handlers and the
    background reconciliation can interleave on the same realm safely.
    """

    def __init__(self, user_id: str, root: Path, engine: Engine):
        self.user_id = user_id
        self.root = root
        self.uploads_dir = root / UPLOADS_DIRNAME
        self.engine = engine

    @classmethod
    def provision(cls, user_id: str, root: Path) -> "Realm":
        """Create the directories and index for a realm (idempotent on disk)."""
        (root / UPLOADS_DIRNAME).mkdir(parents=True, exist_ok=True)
        engine = make_engine(root / INDEX_FILENAME)
        init_realm_db(engine)
        logger.info("provisioned realm user_id=%s path=%s", user_id, root)
        return cls(user_id, root, engine)

    def close(self) -> None:
        self.engine.dispose()

    # Paths

    def asset_path(self, filename: str) -> Path:
        return resolve_under_root(self.uploads_dir, self.uploads_dir / filename)

    def thumbnail_path(self, filename: str) -> Path:
        return self.uploads_dir / thumbnail_name(filename)

    def has_thumbnail(self, filename: str) -> bool:
        return self.thumbnail_path(filename).exists()

    # Metadata

    def add_photo(self, photo: Photo) -> Photo:
        with get_session(self.engine) as s:
            s.add(photo)
            s.commit()
            s.refresh(photo)
        return photo

    def list_photos(self) -> list[Photo]:
        with get_session(self.engine) as s:
            stmt = select(Photo).order_by(Photo.created_at.desc())
            return list(s.exec(stmt).all())

    def get_photo(self, photo_id: str) -> Optional[Photo]:
        with get_session(self.engine) as s:
            return s.get(Photo, photo_id)

    def delete_photo(self, photo_id: str) -> Optional[str]:
        """Delete a row; returns the filename it pointed at, or None."""
        with get_session(self.engine) as s:
            result = s.exec(
                delete(Photo).where(Photo.id == photo_id).returning(Photo.filename)
            )
            filename = result.scalar_one_or_none()
            s.commit()
            return filename

    def replace_asset(
        self, photo_id: str, old_filename: str, **values
    ) -> bool:
        """Point a row at a new asset, only if it still references the old one."""
        with get_session(self.engine) as s:
            result = s.exec(
                update(Photo)
                .where(Photo.id == photo_id, Photo.filename == old_filename)
                .values(**values)
            )
            s.commit()
            return result.rowcount > 0


class RealmRegistry:
    """Lazily provisions and caches one realm per user id.

    Provisioning for a given id runs once: concurrent callers share a single
    in-flight task, while different ids provision independently.
    """

    def __init__(self, root: Path):
        self.root = root
        self._realms: dict[str, Realm] = {}
        self._pending: dict[str, asyncio.Future] = {}

    def __len__(self) -> int:
        return len(self._realms)

    def __contains__(self, user_id: str) -> bool:
        return safe_segment(user_id) in self._realms

    async def get(self, user_id: str) -> Realm:
        key = safe_segment(user_id)
        realm = self._realms.get(key)
        if realm is not None:
            return realm
        task = self._pending.get(key)
        if task is None:
            task = asyncio.ensure_future(self._open(key))
            self._pending[key] = task
        # A cancelled caller must not cancel provisioning for the others
        return await asyncio.shield(task)

    async def _open(self, key: str) -> Realm:
        try:
            realm = await asyncio.to_thread(Realm.provision, key, self.root / key)
            self._realms[key] = realm
            return realm
        finally:
            self._pending.pop(key, None)

    def close(self) -> None:
        for realm in self._realms.values():
            realm.close()
        self._realms.clear()
