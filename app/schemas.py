"""Pydantic schemas for the HTTP API layer."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class SensorPayload(BaseModel):
    """Body posted by the tank sensor; any subset of the fields may be present."""

    volume_m3: Optional[float] = Field(default=None, ge=0)
    volume_liters: Optional[float] = Field(default=None, ge=0)
    temperature: Optional[float] = None
    humidity: Optional[float] = Field(default=None, ge=0, le=100)

    @property
    def has_water(self) -> bool:
        return self.volume_m3 is not None or self.volume_liters is not None

    @property
    def has_atmospheric(self) -> bool:
        return self.temperature is not None or self.humidity is not None


class WaterLevelRow(BaseModel):
    id: int
    timestamp: datetime
    volume_m3: float
    volume_liters: float


class AtmosphericConditionRow(BaseModel):
    id: int
    timestamp: datetime
    temperature: float
    humidity: float


class IngestionResults(BaseModel):
    """Per-kind outcome; a failed kind carries an error string instead of a row."""

    water_level: Optional[WaterLevelRow] = None
    water_error: Optional[str] = None
    atmospheric_condition: Optional[AtmosphericConditionRow] = None
    atmospheric_error: Optional[str] = None


class IngestionResponse(BaseModel):
    success: bool = True
    message: str = "Data inserted successfully."
    results: IngestionResults


class UserRecord(BaseModel):
    """Public projection of a user row. The password hash never leaves the store."""

    id: str
    username: str
    is_admin: bool = False
    dark_mode: bool = False
    email: Optional[str] = None
    created_at: datetime


class UserUpdate(BaseModel):
    dark_mode: Optional[bool] = None
    is_admin: Optional[bool] = None


class CredentialsParams(BaseModel):
    username: str
    password: str


class CreateUserParams(CredentialsParams):
    email: Optional[str] = None


class UserIdParams(BaseModel):
    user_id: str


class ChangePasswordParams(UserIdParams):
    new_password: str


class TokenParams(BaseModel):
    token: str


class PasswordParams(BaseModel):
    password: str


class ResetPasswordParams(TokenParams):
    new_password_hash: str
