from __future__ import annotations

import asyncio
import enum
import logging
import secrets
from dataclasses import dataclass, field
from typing import Optional

from .env import ensure_loaded, env_bool, env_float, env_int
from .phone_utils import mask_phone, validate_code_format, validate_phone
from .sms_provider import SmsFunction, SmsResult
from .store import TTL_NO_EXPIRY, OTPStore

OTP_KEY_PREFIX = "otp:"
RATE_LIMIT_KEY_PREFIX = "recent_otp:"

DEFAULT_EXPIRY_MINUTES = 10
DEFAULT_RATE_LIMIT_SECONDS = 60
DEFAULT_DELIVERY_TIMEOUT_SECS = 10.0


class OTPError(Exception):
    """Base exception for OTP programming and configuration errors."""


class OTPConfigError(OTPError, ValueError):
    pass


class OTPServiceAlreadyInitialized(OTPError):
    pass


class OTPServiceNotInitialized(OTPError):
    pass


class OTPErrorKind(str, enum.Enum):
    INVALID_PHONE = "invalid_phone"
    INVALID_CODE_FORMAT = "invalid_code_format"
    RATE_LIMITED = "rate_limited"
    NOT_FOUND_OR_EXPIRED = "not_found_or_expired"
    MISMATCH = "mismatch"
    DELIVERY_FAILED = "delivery_failed"
    INTERNAL_ERROR = "internal_error"


_SEND_MESSAGES = {
    OTPErrorKind.INVALID_PHONE: "Invalid phone number format. Must be 10 digits starting with 6, 7, 8, or 9",
    OTPErrorKind.RATE_LIMITED: "OTP already sent recently. Please wait before requesting another.",
    OTPErrorKind.DELIVERY_FAILED: "Failed to send OTP. Please try again later.",
    OTPErrorKind.INTERNAL_ERROR: "Internal server error while sending OTP",
}

_VERIFY_MESSAGES = {
    OTPErrorKind.INVALID_PHONE: "Invalid phone number format",
    OTPErrorKind.INVALID_CODE_FORMAT: "Invalid OTP format. Must be 6 digits",
    OTPErrorKind.NOT_FOUND_OR_EXPIRED: "OTP expired or not found. Please request a new OTP",
    OTPErrorKind.MISMATCH: "Invalid OTP. Please check and try again",
    OTPErrorKind.INTERNAL_ERROR: "Internal server error while verifying OTP",
}


def otp_key(phone: str) -> str:
    return f"{OTP_KEY_PREFIX}{phone}"


def rate_limit_key(phone: str) -> str:
    return f"{RATE_LIMIT_KEY_PREFIX}{phone}"


def generate_otp_code() -> str:
    """Uniform 6-digit code in 100000-999999, so it never needs zero padding."""
    return str(100000 + secrets.randbelow(900000))


@dataclass(frozen=True)
class OTPConfig:
    store: OTPStore
    send_sms: SmsFunction
    logger: Optional[logging.Logger] = None
    otp_expiry_minutes: int = DEFAULT_EXPIRY_MINUTES
    rate_limit_seconds: int = DEFAULT_RATE_LIMIT_SECONDS
    delivery_timeout_secs: float = DEFAULT_DELIVERY_TIMEOUT_SECS
    # Returns the generated code in send results. Never enable in production.
    expose_code: bool = False


def from_env(store: OTPStore, send_sms: SmsFunction, *, logger: Optional[logging.Logger] = None) -> OTPConfig:
    ensure_loaded()
    return OTPConfig(
        store=store,
        send_sms=send_sms,
        logger=logger,
        otp_expiry_minutes=env_int("OTP_EXPIRY_MINUTES", default=DEFAULT_EXPIRY_MINUTES),
        rate_limit_seconds=env_int("OTP_RATE_LIMIT_SECONDS", default=DEFAULT_RATE_LIMIT_SECONDS),
        delivery_timeout_secs=env_float("OTP_DELIVERY_TIMEOUT_SECS", default=DEFAULT_DELIVERY_TIMEOUT_SECS),
        expose_code=env_bool("OTP_EXPOSE_CODE", default=False),
    )


@dataclass
class OTPSendResult:
    success: bool
    message: str
    reason: Optional[OTPErrorKind] = None
    code: Optional[str] = field(default=None, repr=False)
    retry_after: Optional[int] = None
    message_id: Optional[str] = None
    expires_in_minutes: Optional[int] = None

    def to_dict(self) -> dict:
        data: dict = {
            "issued": self.success,
            "reason": self.reason.value if self.reason else None,
            "message": self.message,
        }
        if self.retry_after is not None:
            data["retry_after"] = self.retry_after
        if self.expires_in_minutes is not None:
            data["expires_in_minutes"] = self.expires_in_minutes
        if self.code is not None:
            data["dev_code"] = self.code
        return data


@dataclass
class OTPVerifyResult:
    success: bool
    message: str
    reason: Optional[OTPErrorKind] = None

    def to_dict(self) -> dict:
        return {
            "verified": self.success,
            "reason": self.reason.value if self.reason else None,
            "message": self.message,
        }


@dataclass
class OTPStats:
    has_pending_code: bool
    can_issue_now: bool
    retry_after_seconds: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "has_pending_code": self.has_pending_code,
            "can_issue_now": self.can_issue_now,
            "retry_after_seconds": self.retry_after_seconds,
        }


def _require_positive_int(name: str, value) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise OTPConfigError(f"{name} must be a positive integer, got {value!r}")
    return value


class OTPService:
    """Issues, rate-limits and verifies phone OTPs against a TTL key-value store.

    The store's own key expiry is authoritative for both the OTP record
    (``otp:<phone>``) and the rate-limit marker (``recent_otp:<phone>``); the
    service keeps no state of its own, so one instance can be shared by every
    request handler.

    Runtime faults never propagate: every operation returns a result carrying
    an :class:`OTPErrorKind`.
    """

    def __init__(
        self,
        store: OTPStore,
        send_sms: SmsFunction,
        *,
        logger: Optional[logging.Logger] = None,
        otp_expiry_minutes: int = DEFAULT_EXPIRY_MINUTES,
        rate_limit_seconds: int = DEFAULT_RATE_LIMIT_SECONDS,
        delivery_timeout_secs: float = DEFAULT_DELIVERY_TIMEOUT_SECS,
        expose_code: bool = False,
    ):
        if store is None:
            raise OTPConfigError("store is required")
        if not callable(send_sms):
            raise OTPConfigError("send_sms must be callable")
        self._otp_expiry_minutes = _require_positive_int("otp_expiry_minutes", otp_expiry_minutes)
        self._rate_limit_seconds = _require_positive_int("rate_limit_seconds", rate_limit_seconds)
        if isinstance(delivery_timeout_secs, bool) or not isinstance(delivery_timeout_secs, (int, float)) or delivery_timeout_secs <= 0:
            raise OTPConfigError(f"delivery_timeout_secs must be positive, got {delivery_timeout_secs!r}")
        self._delivery_timeout_secs = float(delivery_timeout_secs)
        self._store = store
        self._send_sms = send_sms
        self._logger = logger or logging.getLogger("otpcore.otp")
        self._expose_code = bool(expose_code)

    @classmethod
    def from_config(cls, cfg: OTPConfig) -> "OTPService":
        return cls(
            cfg.store,
            cfg.send_sms,
            logger=cfg.logger,
            otp_expiry_minutes=cfg.otp_expiry_minutes,
            rate_limit_seconds=cfg.rate_limit_seconds,
            delivery_timeout_secs=cfg.delivery_timeout_secs,
            expose_code=cfg.expose_code,
        )

    @property
    def otp_expiry_minutes(self) -> int:
        return self._otp_expiry_minutes

    @property
    def rate_limit_seconds(self) -> int:
        return self._rate_limit_seconds

    @property
    def delivery_timeout_secs(self) -> float:
        return self._delivery_timeout_secs

    @property
    def expose_code(self) -> bool:
        return self._expose_code

    def generate_code(self) -> str:
        return generate_otp_code()

    async def send_otp(self, phone: str) -> OTPSendResult:
        if not validate_phone(phone):
            return _send_failure(OTPErrorKind.INVALID_PHONE)

        marker_key = rate_limit_key(phone)
        state_written = False
        try:
            # Atomic SET NX EX: two concurrent requests cannot both pass the gate.
            claimed = await self._store.set_if_absent(marker_key, "1", self._rate_limit_seconds)
            if not claimed:
                retry_after = await self._retry_after(phone)
                return _send_failure(OTPErrorKind.RATE_LIMITED, retry_after=retry_after)
            state_written = True

            code = self.generate_code()
            await self._store.set_with_expiry(otp_key(phone), code, self._otp_expiry_minutes * 60)

            text = f"Your OTP is {code}. Valid for {self._otp_expiry_minutes} minutes."
            sms = await self._deliver(phone, text)
            if not sms.success:
                self._logger.error(
                    "OTP delivery failed for %s: %s (%s)",
                    mask_phone(phone),
                    sms.message,
                    sms.error_code,
                )
                await self._rollback(phone)
                return _send_failure(OTPErrorKind.DELIVERY_FAILED)
        except Exception as exc:
            self._logger.error("Error sending OTP to %s", mask_phone(phone), exc_info=exc)
            if state_written:
                await self._rollback(phone)
            return _send_failure(OTPErrorKind.INTERNAL_ERROR)

        self._logger.info("OTP sent successfully to %s", mask_phone(phone))
        return OTPSendResult(
            success=True,
            message="OTP sent successfully",
            code=code if self._expose_code else None,
            message_id=sms.message_id,
            expires_in_minutes=self._otp_expiry_minutes,
        )

    async def resend_otp(self, phone: str) -> OTPSendResult:
        return await self.send_otp(phone)

    async def verify_otp(self, phone: str, code: str) -> OTPVerifyResult:
        if not validate_phone(phone):
            return _verify_failure(OTPErrorKind.INVALID_PHONE)
        if not validate_code_format(code):
            return _verify_failure(OTPErrorKind.INVALID_CODE_FORMAT)

        key = otp_key(phone)
        try:
            stored = await self._store.get(key)
            if isinstance(stored, bytes):
                stored = stored.decode()
            if not stored:
                return _verify_failure(OTPErrorKind.NOT_FOUND_OR_EXPIRED)
            if not secrets.compare_digest(stored, code):
                return _verify_failure(OTPErrorKind.MISMATCH)
            # Zero deleted keys means a concurrent verification consumed it first.
            if not await self._store.delete(key):
                return _verify_failure(OTPErrorKind.NOT_FOUND_OR_EXPIRED)
        except Exception as exc:
            self._logger.error("Error verifying OTP for %s", mask_phone(phone), exc_info=exc)
            return _verify_failure(OTPErrorKind.INTERNAL_ERROR)

        try:
            await self._store.delete(rate_limit_key(phone))
        except Exception as exc:
            # The marker still expires on its own after the cooldown.
            self._logger.warning("Could not clear rate limit for %s: %s", mask_phone(phone), exc)

        self._logger.info("OTP verified successfully for %s", mask_phone(phone))
        return OTPVerifyResult(success=True, message="OTP verified successfully")

    async def cleanup_expired_otps(self) -> int:
        """Delete OTP records that were stored without an expiry.

        Store expiry removes everything else; records with a TTL are never
        touched. Returns the number of deleted keys.
        """
        cleaned = 0
        try:
            for key in await self._store.scan_by_prefix(OTP_KEY_PREFIX):
                if await self._store.ttl(key) == TTL_NO_EXPIRY:
                    await self._store.delete(key)
                    cleaned += 1
        except Exception as exc:
            self._logger.error("Error cleaning up expired OTPs", exc_info=exc)
            return cleaned
        if cleaned > 0:
            self._logger.info("Cleaned up %s OTP keys without expiry", cleaned)
        return cleaned

    async def get_otp_stats(self, phone: str) -> OTPStats:
        try:
            has_code, has_marker, marker_ttl = await asyncio.gather(
                self._store.exists(otp_key(phone)),
                self._store.exists(rate_limit_key(phone)),
                self._store.ttl(rate_limit_key(phone)),
            )
        except Exception as exc:
            # Fail open: a broken store must not lock users out of requesting a code.
            self._logger.error("Error getting OTP stats for %s", mask_phone(phone), exc_info=exc)
            return OTPStats(has_pending_code=False, can_issue_now=True)
        return OTPStats(
            has_pending_code=bool(has_code),
            can_issue_now=not has_marker,
            retry_after_seconds=marker_ttl if has_marker and marker_ttl > 0 else None,
        )

    async def _deliver(self, phone: str, text: str) -> SmsResult:
        try:
            return await asyncio.wait_for(self._send_sms(phone, text), timeout=self._delivery_timeout_secs)
        except asyncio.TimeoutError:
            return SmsResult(
                success=False,
                message=f"SMS gateway did not respond within {self._delivery_timeout_secs:g}s",
                error_code="SMS_TIMEOUT",
            )

    async def _retry_after(self, phone: str) -> Optional[int]:
        try:
            remaining = await self._store.ttl(rate_limit_key(phone))
        except Exception as exc:
            self._logger.warning("Could not read cooldown for %s: %s", mask_phone(phone), exc)
            return None
        return remaining if remaining > 0 else None

    async def _rollback(self, phone: str) -> None:
        for key in (otp_key(phone), rate_limit_key(phone)):
            try:
                await self._store.delete(key)
            except Exception as exc:
                self._logger.error("Rollback failed to delete %s for %s", key.split(":", 1)[0], mask_phone(phone), exc_info=exc)


def _send_failure(kind: OTPErrorKind, *, retry_after: Optional[int] = None) -> OTPSendResult:
    return OTPSendResult(success=False, message=_SEND_MESSAGES[kind], reason=kind, retry_after=retry_after)


def _verify_failure(kind: OTPErrorKind) -> OTPVerifyResult:
    return OTPVerifyResult(success=False, message=_VERIFY_MESSAGES[kind], reason=kind)
