"""User administration for signed-in administrators."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, List, Mapping, Optional

from client.session import DUPLICATE_USERNAME, PASSWORDS_DO_NOT_MATCH, SessionGateway
from errors import AuthError, ConflictError, ValidationError
from models.records import PRIMARY_ADMIN_USERNAME, UserSession, parse_timestamp

logger = logging.getLogger(__name__)

ADMIN_MIN_PASSWORD_LENGTH = 4


@dataclass(frozen=True)
class UserSummary:
    id: str
    username: str
    is_admin: bool
    created_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "UserSummary":
        created_at = row.get("created_at")
        return cls(
            id=str(row["id"]),
            username=str(row["username"]),
            is_admin=bool(row.get("is_admin", False)),
            created_at=parse_timestamp(created_at) if created_at else None,
        )


def _check_new_password(password: str, confirm_password: str) -> None:
    if password != confirm_password:
        raise ValidationError(PASSWORDS_DO_NOT_MATCH)
    if len(password) < ADMIN_MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"Password must be at least {ADMIN_MIN_PASSWORD_LENGTH} characters long."
        )


class UserAdministration:
    """Account management; every operation requires an admin session."""

    def __init__(self, remote: Any, gateway: SessionGateway) -> None:
        self.remote = remote
        self.gateway = gateway

    async def list_users(self) -> List[UserSummary]:
        self._require_admin()
        return [UserSummary.from_row(row) for row in await self.remote.list_users()]

    async def create_user(self, username: str, password: str, confirm_password: str) -> str:
        self._require_admin()
        if not username or not password:
            raise ValidationError("Please fill in all fields.")
        _check_new_password(password, confirm_password)
        try:
            user_id = await self.remote.call("create_user", username=username, password=password)
        except ConflictError as exc:
            raise AuthError(DUPLICATE_USERNAME) from exc
        logger.info("User created", extra={"user_id": user_id, "username": username})
        return str(user_id)

    async def change_password(self, user_id: str, password: str, confirm_password: str) -> None:
        self._require_admin()
        if not user_id or not password:
            raise ValidationError("Please fill in all fields.")
        _check_new_password(password, confirm_password)
        await self.remote.call("change_password", user_id=user_id, new_password=password)
        logger.info("Password changed", extra={"user_id": user_id})

    async def toggle_admin(self, user: UserSummary) -> UserSummary:
        self._require_admin()
        if user.username == PRIMARY_ADMIN_USERNAME:
            raise ValidationError("The primary admin account's rights cannot be changed.")
        row = await self.remote.update_user(user.id, is_admin=not user.is_admin)
        updated = UserSummary.from_row(row)
        if self.gateway.session and self.gateway.session.id == updated.id:
            self.gateway.update_session(is_admin=updated.is_admin)
        logger.info(
            "Admin rights changed",
            extra={"user_id": updated.id, "reason": "granted" if updated.is_admin else "revoked"},
        )
        return updated

    async def delete_user(self, user: UserSummary) -> None:
        session = self._require_admin()
        if user.username == PRIMARY_ADMIN_USERNAME:
            raise ValidationError("The primary admin account cannot be deleted.")
        await self.remote.call("delete_user", user_id=user.id)
        logger.info("User deleted", extra={"user_id": user.id, "username": user.username})
        if session.id == user.id:
            self.gateway.sign_out()

    def _require_admin(self) -> UserSession:
        session = self.gateway.session
        if session is None or not session.is_admin:
            raise AuthError("Only administrators can manage users.")
        return session
