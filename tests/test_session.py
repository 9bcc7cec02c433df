"""Sign-in, sign-up and recovery against the in-process service."""

from __future__ import annotations

import httpx
import pytest

from client.remote import RemoteStore
from client.session import (
    DUPLICATE_USERNAME,
    INVALID_CREDENTIALS,
    INVALID_TOKEN,
    NO_RECOVERY_EMAIL,
    PASSWORDS_DO_NOT_MATCH,
    UNKNOWN_USERNAME,
    SessionGateway,
)
from errors import AuthError, NetworkError, ValidationError
from models.records import UserSession
from services.procedures import AccountProcedures
from storage.local_cache import SESSION_KEY, LocalCacheStore

pytestmark = pytest.mark.anyio


@pytest.fixture
def cache() -> LocalCacheStore:
    return LocalCacheStore()


@pytest.fixture
def gateway(remote: RemoteStore, cache: LocalCacheStore) -> SessionGateway:
    return SessionGateway(remote, cache)


async def test_sign_in_stores_the_session(
    gateway: SessionGateway, procedures: AccountProcedures, cache: LocalCacheStore
) -> None:
    user_id = procedures.create_user("ana", "secret1")
    procedures.store.update("users", user_id, {"dark_mode": True})

    session = await gateway.sign_in("ana", "secret1")

    assert session == UserSession(id=user_id, username="ana", is_admin=False, dark_mode=True)
    assert gateway.session == session
    assert cache.get(SESSION_KEY)["id"] == user_id
    assert SessionGateway(gateway.remote, cache).restore() == session


async def test_wrong_password_and_unknown_user_look_the_same(
    gateway: SessionGateway, procedures: AccountProcedures
) -> None:
    procedures.create_user("ana", "secret1")

    with pytest.raises(AuthError) as wrong_password:
        await gateway.sign_in("ana", "wrong")
    with pytest.raises(AuthError) as unknown_user:
        await gateway.sign_in("nobody", "secret1")

    assert str(wrong_password.value) == INVALID_CREDENTIALS
    assert str(unknown_user.value) == str(wrong_password.value)
    assert gateway.session is None


async def test_sign_in_propagates_network_errors(cache: LocalCacheStore) -> None:
    def unreachable(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    remote = RemoteStore(httpx.AsyncClient(transport=httpx.MockTransport(unreachable), base_url="http://store"))
    gateway = SessionGateway(remote, cache)

    with pytest.raises(NetworkError):
        await gateway.sign_in("ana", "secret1")


async def test_sign_up_and_duplicate(gateway: SessionGateway, procedures: AccountProcedures) -> None:
    session = await gateway.sign_up("ana", "secret1")

    assert session.username == "ana"
    assert procedures.verify_user("ana", "secret1") is not None

    with pytest.raises(AuthError, match=DUPLICATE_USERNAME):
        await gateway.sign_up("ana", "other1")


async def test_sign_out_clears_cache(gateway: SessionGateway, procedures: AccountProcedures, cache: LocalCacheStore) -> None:
    procedures.create_user("ana", "secret1")
    await gateway.sign_in("ana", "secret1")

    gateway.sign_out()

    assert gateway.session is None
    assert cache.get(SESSION_KEY) is None


async def test_dark_mode_is_saved_remotely(gateway: SessionGateway, procedures: AccountProcedures) -> None:
    user_id = procedures.create_user("ana", "secret1")
    await gateway.sign_in("ana", "secret1")

    session = await gateway.toggle_dark_mode()

    assert session is not None and session.dark_mode is True
    assert procedures.store.get("users", user_id)["dark_mode"] is True


async def test_dark_mode_toggles_locally_when_remote_write_fails(
    gateway: SessionGateway, procedures: AccountProcedures, cache: LocalCacheStore, monkeypatch
) -> None:
    procedures.create_user("ana", "secret1")
    await gateway.sign_in("ana", "secret1")

    async def failing_update(user_id: str, **changes) -> dict:
        raise NetworkError("offline")

    monkeypatch.setattr(gateway.remote, "update_user", failing_update)

    session = await gateway.toggle_dark_mode()

    assert session is not None and session.dark_mode is True
    assert cache.get(SESSION_KEY)["dark_mode"] is True


async def test_dark_mode_without_session_is_a_no_op(gateway: SessionGateway) -> None:
    assert await gateway.toggle_dark_mode() is None


async def test_recovery_requires_known_user_with_email(
    gateway: SessionGateway, procedures: AccountProcedures
) -> None:
    procedures.create_user("ana", "secret1")

    with pytest.raises(AuthError, match=UNKNOWN_USERNAME):
        await gateway.request_recovery("nobody")
    with pytest.raises(AuthError, match=NO_RECOVERY_EMAIL):
        await gateway.request_recovery("ana")


async def test_reset_password_with_token(gateway: SessionGateway, procedures: AccountProcedures) -> None:
    procedures.create_user("ana", "secret1", email="ana@example.com")
    token = await gateway.request_recovery("ana")

    await gateway.reset_password(token, "secret2", "secret2")

    assert (await gateway.sign_in("ana", "secret2")).username == "ana"
    with pytest.raises(AuthError, match=INVALID_TOKEN):
        await gateway.reset_password(token, "secret3", "secret3")


@pytest.mark.parametrize(
    "password, confirm, message",
    [("secret2", "secret3", PASSWORDS_DO_NOT_MATCH), ("abc", "abc", "at least 6")],
)
async def test_reset_password_validates_locally(
    gateway: SessionGateway, password: str, confirm: str, message: str
) -> None:
    with pytest.raises(ValidationError, match=message):
        await gateway.reset_password("token", password, confirm)
