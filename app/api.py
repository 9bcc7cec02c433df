"""HTTP route definitions for the telemetry service."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Literal, Optional, Tuple, Type

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from pydantic import ValidationError as PayloadError

from app.schemas import (
    ChangePasswordParams,
    CreateUserParams,
    CredentialsParams,
    IngestionResponse,
    PasswordParams,
    ResetPasswordParams,
    SensorPayload,
    TokenParams,
    UserIdParams,
    UserRecord,
    UserUpdate,
)
from datastore.telemetry_store import READING_TABLES, USERS, TelemetryStore, build_default_store
from errors import ConflictError, ValidationError
from services.ingestion import IngestionService, build_default_ingestion
from services.procedures import AccountProcedures, build_default_procedures

logger = logging.getLogger(__name__)

router = APIRouter()

MAX_QUERY_LIMIT = 1000


def get_store() -> TelemetryStore:
    return build_default_store()


def get_ingestion() -> IngestionService:
    return build_default_ingestion()


def get_procedures() -> AccountProcedures:
    return build_default_procedures()


_Procedure = Tuple[Type[BaseModel], Callable[[AccountProcedures, Any], Any]]

_PROCEDURES: Dict[str, _Procedure] = {
    "verify_user": (
        CredentialsParams,
        lambda procs, p: procs.verify_user(p.username, p.password),
    ),
    "create_user": (
        CreateUserParams,
        lambda procs, p: procs.create_user(p.username, p.password, email=p.email),
    ),
    "change_password": (
        ChangePasswordParams,
        lambda procs, p: procs.change_password(p.user_id, p.new_password),
    ),
    "delete_user": (UserIdParams, lambda procs, p: procs.delete_user(p.user_id)),
    "generate_recovery_token": (
        UserIdParams,
        lambda procs, p: procs.generate_recovery_token(p.user_id),
    ),
    "verify_recovery_token": (
        TokenParams,
        lambda procs, p: procs.verify_recovery_token(p.token),
    ),
    "hash_password": (PasswordParams, lambda procs, p: procs.hash_password(p.password)),
    "reset_password_with_token": (
        ResetPasswordParams,
        lambda procs, p: procs.reset_password_with_token(p.token, p.new_password_hash),
    ),
}


@router.post(
    "/arduino-data",
    response_model=IngestionResponse,
    response_model_exclude_none=True,
    summary="Ingest one sensor sample (water volume and/or atmospheric conditions).",
)
async def ingest_sensor_data(
    payload: SensorPayload,
    ingestion: IngestionService = Depends(get_ingestion),
) -> Any:
    try:
        results = ingestion.ingest(payload)
    except ValidationError as exc:
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": str(exc)})
    except Exception as exc:  # noqa: BLE001 - reported to the sensor as a 500
        logger.exception("Error processing sensor payload", extra={"reason": str(exc)})
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Error while processing the request.", "details": str(exc)},
        )
    return IngestionResponse(results=results)


@router.get(
    "/tables/{table}",
    summary="Query a reading table, newest first by default.",
)
async def query_table(
    table: str,
    lte: Optional[datetime] = Query(None, description="Only rows at or before this instant."),
    gte: Optional[datetime] = Query(None, description="Only rows at or after this instant."),
    after_id: Optional[int] = Query(None, ge=0, description="Only rows inserted after this id."),
    order: Literal["asc", "desc"] = Query("desc"),
    order_by: Literal["timestamp", "id"] = Query("timestamp"),
    limit: int = Query(100, ge=1, le=MAX_QUERY_LIMIT),
    store: TelemetryStore = Depends(get_store),
) -> List[Dict[str, Any]]:
    if table not in READING_TABLES:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Table {table!r} does not exist.",
        )
    return store.select(
        table,
        lte=lte,
        gte=gte,
        after_id=after_id,
        order_by=order_by,
        descending=order == "desc",
        limit=limit,
    )


@router.post(
    "/rpc/{procedure}",
    summary="Invoke an account procedure.",
)
async def call_procedure(
    procedure: str,
    params: Optional[Dict[str, Any]] = Body(None),
    procedures: AccountProcedures = Depends(get_procedures),
) -> Dict[str, Any]:
    entry = _PROCEDURES.get(procedure)
    if entry is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Procedure {procedure!r} does not exist.",
        )
    params_model, handler = entry
    try:
        parsed = params_model.model_validate(params or {})
        result = handler(procedures, parsed)
    except (PayloadError, ValidationError) as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except ConflictError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except KeyError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return {"data": result}


@router.get(
    "/users",
    response_model=List[UserRecord],
    summary="List users, newest first, optionally filtered by username.",
)
async def list_users(
    username: Optional[str] = Query(None),
    store: TelemetryStore = Depends(get_store),
) -> List[UserRecord]:
    rows = store.select(
        USERS,
        eq={"username": username} if username is not None else None,
        order_by="created_at",
    )
    return [UserRecord.model_validate(row) for row in rows]


@router.get(
    "/users/{user_id}",
    response_model=UserRecord,
    summary="Fetch a single user's public profile.",
)
async def get_user(user_id: str, store: TelemetryStore = Depends(get_store)) -> UserRecord:
    row = store.get(USERS, user_id)
    if row is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"User {user_id!r} not found.",
        )
    return UserRecord.model_validate(row)


@router.patch(
    "/users/{user_id}",
    response_model=UserRecord,
    summary="Update a user's display preference or admin flag.",
)
async def update_user(
    user_id: str,
    changes: UserUpdate,
    store: TelemetryStore = Depends(get_store),
) -> UserRecord:
    row = store.update(USERS, user_id, changes.model_dump(exclude_none=True))
    if row is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"User {user_id!r} not found.",
        )
    return UserRecord.model_validate(row)


@router.get(
    "/health",
    summary="Health check endpoint.",
    status_code=status.HTTP_200_OK,
)
async def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@router.get(
    "/",
    summary="Root endpoint mirrors health information.",
    status_code=status.HTTP_200_OK,
)
async def root() -> dict[str, str]:
    return {"status": "ok", "detail": "See /health for service status."}
