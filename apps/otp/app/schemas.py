from __future__ import annotations
from typing import Optional
from pydantic import BaseModel, Field, field_validator

from otpcore.phone_utils import normalize_phone


class SendOtpIn(BaseModel):
    phone: str = Field(min_length=1)

    @field_validator("phone")
    @classmethod
    def _normalize(cls, v: str) -> str:
        # Format is checked by the service so the error kind stays consistent
        return normalize_phone(v)


class VerifyOtpIn(BaseModel):
    phone: str = Field(min_length=1)
    code: str = Field(min_length=1)

    @field_validator("phone")
    @classmethod
    def _normalize(cls, v: str) -> str:
        return normalize_phone(v)

    @field_validator("code")
    @classmethod
    def _strip(cls, v: str) -> str:
        return v.strip()


class SendOtpOut(BaseModel):
    issued: bool
    reason: Optional[str] = None
    message: str
    phone: str
    expires_in_minutes: Optional[int] = None
    retry_after: Optional[int] = None
    dev_code: Optional[str] = None


class VerifyOtpOut(BaseModel):
    verified: bool
    reason: Optional[str] = None
    message: str


class OtpStatsOut(BaseModel):
    has_pending_code: bool
    can_issue_now: bool
    retry_after_seconds: Optional[int] = None
