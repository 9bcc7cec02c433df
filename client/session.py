"""Sign-in, sign-up, display preference and password recovery for the dashboard."""

from __future__ import annotations

import dataclasses
import logging
from typing import Any, Optional

from errors import AuthError, ConflictError, NetworkError, StorageError, ValidationError
from models.records import UserSession
from storage.local_cache import SESSION_KEY, LocalCacheStore

logger = logging.getLogger(__name__)

INVALID_CREDENTIALS = "Incorrect username or password."
DUPLICATE_USERNAME = "This username already exists."
ACCOUNT_CREATION_FAILED = "Error while creating the account."
UNKNOWN_USERNAME = "Username not found."
NO_RECOVERY_EMAIL = "No email is associated with this account. Contact an administrator."
TOKEN_GENERATION_FAILED = "Error while generating the recovery token."
INVALID_TOKEN = "Invalid or expired token."
PASSWORD_RESET_FAILED = "Password reset failed."
PASSWORDS_DO_NOT_MATCH = "Passwords do not match."

RECOVERY_MIN_PASSWORD_LENGTH = 6


class SessionGateway:
    """Holds the signed-in identity and mirrors it into the local cache.

    Credentials are checked by the remote ``verify_user`` procedure; a wrong
    password and an unknown username produce the same error message.
    """

    def __init__(self, remote: Any, cache: LocalCacheStore) -> None:
        self.remote = remote
        self.cache = cache
        self._session: Optional[UserSession] = None

    @property
    def session(self) -> Optional[UserSession]:
        return self._session

    def restore(self) -> Optional[UserSession]:
        self._session = self.cache.session()
        return self._session

    async def sign_in(self, username: str, password: str) -> UserSession:
        try:
            verified = await self.remote.call("verify_user", username=username, password=password)
        except StorageError as exc:
            logger.info("Sign-in rejected by store", extra={"username": username, "reason": str(exc)})
            raise AuthError(INVALID_CREDENTIALS) from exc
        if not verified:
            raise AuthError(INVALID_CREDENTIALS)

        user_id = str(verified["user_id"])
        try:
            details = await self.remote.get_user(user_id)
        except (NetworkError, StorageError) as exc:
            logger.warning("Could not load user details", extra={"user_id": user_id, "reason": str(exc)})
            details = None
        details = details or {}

        session = UserSession(
            id=user_id,
            username=verified.get("username", username),
            is_admin=bool(details.get("is_admin", False)),
            dark_mode=bool(details.get("dark_mode", False)),
        )
        self._store(session)
        logger.info("Signed in", extra={"user_id": user_id, "username": session.username})
        return session

    async def sign_up(self, username: str, password: str) -> UserSession:
        if await self.remote.find_user(username) is not None:
            raise AuthError(DUPLICATE_USERNAME)

        try:
            user_id = await self.remote.call("create_user", username=username, password=password)
        except ConflictError as exc:
            raise AuthError(DUPLICATE_USERNAME) from exc
        except StorageError as exc:
            logger.error("Account creation failed", extra={"username": username, "reason": str(exc)})
            raise AuthError(ACCOUNT_CREATION_FAILED) from exc
        if not user_id:
            raise AuthError(ACCOUNT_CREATION_FAILED)

        session = UserSession(id=str(user_id), username=username)
        self._store(session)
        return session

    def sign_out(self) -> None:
        self._session = None
        self.cache.remove(SESSION_KEY)

    async def toggle_dark_mode(self) -> Optional[UserSession]:
        """Flip the preference locally even if the remote write fails."""
        if self._session is None:
            return None
        dark_mode = not self._session.dark_mode
        try:
            await self.remote.update_user(self._session.id, dark_mode=dark_mode)
        except (NetworkError, StorageError) as exc:
            logger.warning(
                "Dark mode not saved remotely",
                extra={"user_id": self._session.id, "reason": str(exc)},
            )
        return self.update_session(dark_mode=dark_mode)

    def update_session(self, **changes: Any) -> Optional[UserSession]:
        if self._session is None:
            return None
        self._store(dataclasses.replace(self._session, **changes))
        return self._session

    async def request_recovery(self, username: str) -> str:
        """Issue a recovery token for an account that has a registered email."""
        user = await self.remote.find_user(username)
        if user is None:
            raise AuthError(UNKNOWN_USERNAME)
        if not user.get("email"):
            raise AuthError(NO_RECOVERY_EMAIL)
        try:
            token = await self.remote.call("generate_recovery_token", user_id=user["id"])
        except StorageError as exc:
            raise AuthError(TOKEN_GENERATION_FAILED) from exc
        if not token:
            raise AuthError(TOKEN_GENERATION_FAILED)
        return token

    async def reset_password(self, token: str, new_password: str, confirm_password: str) -> None:
        if new_password != confirm_password:
            raise ValidationError(PASSWORDS_DO_NOT_MATCH)
        if len(new_password) < RECOVERY_MIN_PASSWORD_LENGTH:
            raise ValidationError(
                f"Password must be at least {RECOVERY_MIN_PASSWORD_LENGTH} characters long."
            )

        verified = await self.remote.call("verify_recovery_token", token=token)
        if not verified or not verified.get("is_valid"):
            raise AuthError(INVALID_TOKEN)

        password_hash = await self.remote.call("hash_password", password=new_password)
        if not password_hash:
            raise AuthError(PASSWORD_RESET_FAILED)

        reset = await self.remote.call(
            "reset_password_with_token", token=token, new_password_hash=password_hash
        )
        if not reset:
            raise AuthError(PASSWORD_RESET_FAILED)

    def _store(self, session: UserSession) -> None:
        self._session = session
        self.cache.set(SESSION_KEY, session.to_dict())
