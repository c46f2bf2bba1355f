"""Startup reconciliation: legacy user import, HEIC sweep and thumbnail backfill.

Safe to run repeatedly; a second pass over a consistent realm writes nothing.
"""
import asyncio
import logging
import sys
from pathlib import Path

from credentials import CredentialStore
from errors import ConversionFailed
from pipeline import convert_stored_photo, ensure_thumbnail, is_heic
from registry import Realm, RealmRegistry

logger = logging.getLogger(__name__)


def prepare_credentials(credentials: CredentialStore, legacy_path: Path) -> int:
    """Import the legacy user list into an empty store, then seed the default user."""
    imported = 0
    if credentials.is_empty():
        imported = credentials.import_legacy(legacy_path)
    credentials.ensure_default_user()
    return imported


async def reconcile_realm(realm: Realm) -> dict:
    """Convert leftover HEIC assets and backfill missing thumbnails for one realm."""
    converted = thumbnails = failed = 0

    for photo in realm.list_photos():
        if not is_heic(photo.filename):
            continue
        try:
            if await convert_stored_photo(realm, photo):
                converted += 1
        except ConversionFailed as exc:
            failed += 1
            logger.warning(
                "heic sweep failed user_id=%s photo_id=%s: %s",
                realm.user_id,
                photo.id,
                exc,
            )

    for photo in realm.list_photos():
        if realm.has_thumbnail(photo.filename):
            continue
        if not realm.asset_path(photo.filename).exists():
            logger.warning(
                "backfill skipped user_id=%s photo_id=%s: file missing on disk",
                realm.user_id,
                photo.id,
            )
            continue
        if await ensure_thumbnail(realm, photo.filename):
            thumbnails += 1
        else:
            failed += 1

    return {"converted": converted, "thumbnails": thumbnails, "failed": failed}


async def catch_up(credentials: CredentialStore, registry: RealmRegistry) -> dict:
    """Run the per-realm catch-up for every known user."""
    totals = {"users": 0, "converted": 0, "thumbnails": 0, "failed": 0}
    for user in credentials.list_users():
        try:
            realm = await registry.get(user.id)
            stats = await reconcile_realm(realm)
        except Exception:
            # One user's broken realm must not stop the others
            logger.exception("reconciliation failed user_id=%s", user.id)
            continue
        totals["users"] += 1
        for key in ("converted", "thumbnails", "failed"):
            totals[key] += stats[key]
    logger.info(
        "reconciliation done users=%d converted=%d thumbnails=%d failed=%d",
        totals["users"],
        totals["converted"],
        totals["thumbnails"],
        totals["failed"],
    )
    return totals


async def reconcile(
    credentials: CredentialStore, registry: RealmRegistry, legacy_path: Path
) -> dict:
    """Full reconciliation pass. Returns scan stats."""
    imported = prepare_credentials(credentials, legacy_path)
    totals = await catch_up(credentials, registry)
    totals["imported"] = imported
    return totals


if __name__ == "__main__":
    from config import get_settings
    from database import make_engine

    settings = get_settings()
    logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    store = CredentialStore(
        make_engine(settings.credentials_db_path),
        settings.default_username,
        settings.default_password,
        settings.password_rounds,
    )
    realms = RealmRegistry(settings.users_dir)
    try:
        stats = asyncio.run(reconcile(store, realms, settings.legacy_users_path))
    finally:
        realms.close()
    print(f"→ {stats}")
    sys.exit(1 if stats["failed"] else 0)
