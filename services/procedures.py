"""Account procedures invoked remotely by the dashboard client.

Password hashing and recovery-token issuance happen only here; the client sends
raw credentials over the API and never sees a hash of a stored password.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Any, Dict, Optional

from datastore.telemetry_store import (
    RECOVERY_TOKENS,
    USERS,
    TelemetryStore,
    build_default_store,
)
from errors import ConflictError, ValidationError
from models.records import PRIMARY_ADMIN_USERNAME, parse_timestamp
from settings import get_settings

logger = logging.getLogger(__name__)

_HASH_ALGORITHM = "pbkdf2_sha256"
_HASH_ITERATIONS = 260_000


def _encode_hash(password: str, salt: str, iterations: int) -> str:
    digest = hashlib.pbkdf2_hmac(
        "sha256", password.encode("utf-8"), salt.encode("utf-8"), iterations
    )
    return f"{_HASH_ALGORITHM}${iterations}${salt}${digest.hex()}"


def _check_password(password: str, encoded: str) -> bool:
    try:
        algorithm, iterations, salt, _ = encoded.split("$", 3)
    except ValueError:
        return False
    if algorithm != _HASH_ALGORITHM:
        return False
    candidate = _encode_hash(password, salt, int(iterations))
    return hmac.compare_digest(candidate, encoded)


class AccountProcedures:
    """Server-side implementations of the account remote procedures."""

    def __init__(
        self,
        store: TelemetryStore,
        token_ttl_minutes: int = 60,
        hash_iterations: int = _HASH_ITERATIONS,
    ) -> None:
        self.store = store
        self.token_ttl = timedelta(minutes=token_ttl_minutes)
        self.hash_iterations = hash_iterations

    def hash_password(self, password: str) -> str:
        if not password:
            raise ValidationError("Password must not be empty.")
        return _encode_hash(password, secrets.token_hex(16), self.hash_iterations)

    def verify_user(self, username: str, password: str) -> Optional[Dict[str, Any]]:
        """Return ``{user_id, username}`` when the credentials match, else None."""
        matches = self.store.select(USERS, eq={"username": username}, limit=1)
        if not matches or not _check_password(password, matches[0]["password_hash"]):
            logger.info("Rejected sign-in attempt", extra={"username": username})
            return None
        user = matches[0]
        return {"user_id": user["id"], "username": user["username"]}

    def create_user(
        self,
        username: str,
        password: str,
        is_admin: bool = False,
        email: Optional[str] = None,
    ) -> str:
        username = (username or "").strip()
        if not username:
            raise ValidationError("Username must not be empty.")
        password_hash = self.hash_password(password)

        with self.store.atomic():
            if self.store.select(USERS, eq={"username": username}, limit=1):
                raise ConflictError(f"duplicate username {username!r}")
            row = self.store.insert(
                USERS,
                {
                    "username": username,
                    "password_hash": password_hash,
                    "is_admin": is_admin,
                    "dark_mode": False,
                    "email": email,
                    "created_at": datetime.now(timezone.utc),
                },
            )
        logger.info("Created user", extra={"user_id": row["id"], "username": username})
        return row["id"]

    def change_password(self, user_id: str, new_password: str) -> None:
        updated = self.store.update(
            USERS, user_id, {"password_hash": self.hash_password(new_password)}
        )
        if updated is None:
            raise KeyError(f"User {user_id!r} not found.")

    def delete_user(self, user_id: str) -> None:
        with self.store.atomic():
            if not self.store.delete(USERS, user_id):
                raise KeyError(f"User {user_id!r} not found.")
            for token in self.store.select(
                RECOVERY_TOKENS, eq={"user_id": user_id}, order_by="expires_at"
            ):
                self.store.delete(RECOVERY_TOKENS, token["id"])
        logger.info("Deleted user", extra={"user_id": user_id})

    def generate_recovery_token(self, user_id: str) -> str:
        if self.store.get(USERS, user_id) is None:
            raise KeyError(f"User {user_id!r} not found.")
        token = secrets.token_urlsafe(24)
        self.store.insert(
            RECOVERY_TOKENS,
            {
                "token": token,
                "user_id": user_id,
                "expires_at": datetime.now(timezone.utc) + self.token_ttl,
                "used_at": None,
            },
        )
        logger.info("Issued recovery token", extra={"user_id": user_id})
        return token

    def verify_recovery_token(self, token: str) -> Dict[str, bool]:
        return {"is_valid": self._usable_token(token) is not None}

    def reset_password_with_token(self, token: str, new_password_hash: str) -> bool:
        """Store a pre-hashed password and burn the token, all under one lock."""
        if not new_password_hash:
            return False
        with self.store.atomic():
            record = self._usable_token(token)
            if record is None:
                return False
            if self.store.update(
                USERS, record["user_id"], {"password_hash": new_password_hash}
            ) is None:
                return False
            self.store.update(
                RECOVERY_TOKENS, record["id"], {"used_at": datetime.now(timezone.utc)}
            )
        logger.info("Password reset with recovery token", extra={"user_id": record["user_id"]})
        return True

    def ensure_default_admin(self, password: Optional[str]) -> Optional[str]:
        """Seed the primary admin account on an empty install."""
        if not password:
            return None
        existing = self.store.select(USERS, eq={"username": PRIMARY_ADMIN_USERNAME}, limit=1)
        if existing:
            return existing[0]["id"]
        return self.create_user(PRIMARY_ADMIN_USERNAME, password, is_admin=True)

    def _usable_token(self, token: str) -> Optional[Dict[str, Any]]:
        if not token:
            return None
        matches = self.store.select(
            RECOVERY_TOKENS, eq={"token": token}, order_by="expires_at", limit=1
        )
        if not matches:
            return None
        record = matches[0]
        if record.get("used_at") is not None:
            return None
        if parse_timestamp(record["expires_at"]) <= datetime.now(timezone.utc):
            return None
        return record


@lru_cache
def build_default_procedures() -> AccountProcedures:
    settings = get_settings()
    procedures = AccountProcedures(
        store=build_default_store(),
        token_ttl_minutes=settings.recovery_token_ttl_minutes,
    )
    procedures.ensure_default_admin(settings.default_admin_password)
    return procedures
