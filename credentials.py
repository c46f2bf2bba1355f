"""User registry and password hashing."""
import hmac
import json
import logging
import secrets
from pathlib import Path
from typing import Optional

from passlib.crypto.digest import pbkdf2_hmac
from sqlalchemy import func, or_
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlmodel import select

from database import get_session, init_credentials_db
from errors import (
    InvalidPassword,
    PasswordTooShort,
    UsernameTaken,
    UsernameTooShort,
    UserNotFound,
)
from models import User
from utils import now_ms, safe_segment

logger = logging.getLogger(__name__)

MIN_USERNAME_LENGTH = 3
MIN_PASSWORD_LENGTH = 6
SALT_BYTES = 16
KEY_LENGTH = 64
DEFAULT_ROUNDS = 210_000
MAX_ID_ATTEMPTS = 5


def normalize_user_id(username: str) -> str:
    """Lowercase a username and collapse it to ``[a-z0-9._-]``."""
    return safe_segment(username)


def hash_password(password: str, salt: bytes, rounds: int = DEFAULT_ROUNDS) -> bytes:
    return pbkdf2_hmac("sha256", password.encode("utf-8"), salt, rounds, KEY_LENGTH)


def verify_password(
    password: str, salt_hex: str, hash_hex: str, rounds: int = DEFAULT_ROUNDS
) -> bool:
    """Check a candidate password against a stored salt/hash pair."""
    try:
        salt = bytes.fromhex(salt_hex)
        expected = bytes.fromhex(hash_hex)
    except ValueError:
        return False
    actual = hash_password(password, salt, rounds)
    # compare_digest needs equal lengths to stay constant time
    if len(actual) != len(expected):
        return False
    return hmac.compare_digest(actual, expected)


class CredentialStore:
    """Users and their salted password hashes, kept in one SQLite index."""

    def __init__(
        self,
        engine: Engine,
        default_username: str = "admin",
        default_password: str = "changeme",
        rounds: int = DEFAULT_ROUNDS,
    ):
        self.engine = engine
        self.default_username = default_username
        self.default_password = default_password
        self.rounds = rounds
        init_credentials_db(engine)

    def is_empty(self) -> bool:
        with get_session(self.engine) as s:
            return s.exec(select(User.id).limit(1)).first() is None

    def list_users(self) -> list[User]:
        with get_session(self.engine) as s:
            return list(s.exec(select(User).order_by(User.created_at)).all())

    def get(self, user_id: str) -> Optional[User]:
        with get_session(self.engine) as s:
            return s.get(User, user_id)

    def register(self, username: str, password: str) -> User:
        """Create a new user. Raises on short input or a taken username."""
        username = (username or "").strip()
        password = password or ""
        if len(username) < MIN_USERNAME_LENGTH:
            raise UsernameTooShort()
        if len(password) < MIN_PASSWORD_LENGTH:
            raise PasswordTooShort()

        salt = secrets.token_bytes(SALT_BYTES)
        digest = hash_password(password, salt, self.rounds)
        base_id = normalize_user_id(username)

        # A concurrent registration can claim the same id between our check
        # and commit; the id is then re-picked rather than reported as taken.
        for _ in range(MAX_ID_ATTEMPTS):
            with get_session(self.engine) as s:
                if self._username_taken(s, username):
                    raise UsernameTaken()
                user = User(
                    id=self._next_free_id(s, base_id),
                    username=username,
                    password_salt=salt.hex(),
                    password_hash=digest.hex(),
                    created_at=now_ms(),
                )
                s.add(user)
                try:
                    s.commit()
                except IntegrityError:
                    s.rollback()
                    logger.info("id collision for %s, retrying", base_id)
                    continue
                s.refresh(user)
            logger.info("registered user id=%s", user.id)
            return user
        raise UsernameTaken()

    @staticmethod
    def _username_taken(session, username: str) -> bool:
        return session.exec(
            select(User.id).where(func.lower(User.username) == username.lower())
        ).first() is not None

    @staticmethod
    def _next_free_id(session, base_id: str) -> str:
        user_id = base_id
        suffix = 2
        while session.get(User, user_id) is not None:
            user_id = f"{base_id}-{suffix}"
            suffix += 1
        return user_id

    def find(self, login_id: str) -> Optional[User]:
        """Look a user up by username or id, case-insensitively."""
        key = (login_id or "").strip().lower()
        if not key:
            return None
        with get_session(self.engine) as s:
            return s.exec(
                select(User).where(
                    or_(func.lower(User.username) == key, func.lower(User.id) == key)
                )
            ).first()

    def authenticate(self, login_id: str, password: str) -> User:
        user = self.find(login_id)
        if user is None:
            raise UserNotFound()
        if not verify_password(
            password or "", user.password_salt, user.password_hash, self.rounds
        ):
            raise InvalidPassword()
        return user

    def ensure_default_user(self) -> Optional[User]:
        """Create the configured default user when the store is empty."""
        if not self.is_empty():
            return None
        try:
            user = self.register(self.default_username, self.default_password)
        except UsernameTaken:
            # Another caller provisioned it first
            return None
        logger.info("created default user id=%s", user.id)
        return user

    def import_legacy(self, path: Path) -> int:
        """Import a legacy flat JSON user list. Returns the number imported.

        Malformed entries and duplicates are skipped; an unreadable file
        imports nothing.
        """
        if not path.exists():
            return 0
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("ignoring unreadable legacy user list %s: %s", path, exc)
            return 0
        if isinstance(data, dict):
            data = data.get("users")
        if not isinstance(data, list):
            logger.warning("ignoring legacy user list %s: not a list", path)
            return 0

        imported = 0
        with get_session(self.engine) as s:
            for entry in data:
                if not isinstance(entry, dict):
                    continue
                fields = [entry.get(k) for k in ("id", "username", "salt", "hash")]
                if not all(isinstance(v, str) and v.strip() for v in fields):
                    continue
                user_id, username, salt, digest = (v.strip() for v in fields)
                user_id = safe_segment(user_id)
                if s.get(User, user_id) is not None:
                    continue
                if s.exec(
                    select(User).where(func.lower(User.username) == username.lower())
                ).first():
                    continue
                created_at = entry.get("createdAt")
                s.add(
                    User(
                        id=user_id,
                        username=username,
                        password_salt=salt,
                        password_hash=digest,
                        created_at=created_at if isinstance(created_at, int) else now_ms(),
                    )
                )
                # Flush per row so later duplicates in the same file are seen
                s.flush()
                imported += 1
            s.commit()

        if imported:
            logger.info("imported %d legacy users from %s", imported, path)
        return imported
