from __future__ import annotations

import asyncio
import logging
import os
import uuid
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

import httpx

from .env import ensure_loaded, env_float
from .phone_utils import mask_codes_in_message, mask_phone, normalize_phone, validate_phone

logger = logging.getLogger("otpcore.sms")


@dataclass
class SmsResult:
    success: bool
    message: str
    message_id: Optional[str] = None
    error_code: Optional[str] = None


SmsFunction = Callable[[str, str], Awaitable[SmsResult]]


def _invalid_phone_result(phone: str) -> SmsResult:
    logger.error("Invalid phone number format for SMS to=%s", mask_phone(phone))
    return SmsResult(
        success=False,
        message=f"Invalid phone number format: {mask_phone(phone)}",
        error_code="INVALID_PHONE_FORMAT",
    )


@dataclass
class LogBackend:
    """Development backend: writes the (masked) message to the log and succeeds."""

    async def __call__(self, phone: str, message: str) -> SmsResult:
        logger.info("SMS log backend send to=%s msg=%s", mask_phone(phone), mask_codes_in_message(message))
        return SmsResult(success=True, message="SMS logged", message_id=f"log-{uuid.uuid4().hex[:12]}")


@dataclass
class HttpBackend:
    url: str
    auth_token: Optional[str] = None
    sender_name: Optional[str] = None
    timeout: float = 10.0
    retry_delay: float = 0.5
    transport: Optional[httpx.AsyncBaseTransport] = None

    async def __call__(self, phone: str, message: str) -> SmsResult:
        if not (self.url or "").strip():
            raise RuntimeError("SMS_API_URL must be configured for HTTP provider")
        number = normalize_phone(phone)
        if not validate_phone(number):
            return _invalid_phone_result(number)
        payload = {"phone": number, "message": message}
        if self.sender_name:
            payload["sender"] = self.sender_name
        headers: dict[str, str] = {"Content-Type": "application/json"}
        if self.auth_token:
            headers["Authorization"] = f"Bearer {self.auth_token}"

        async def _call(client: httpx.AsyncClient) -> httpx.Response:
            return await client.post(self.url, json=payload, headers=headers)

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                res = await _send_with_retry(lambda: _call(client), backend_name="http", delay=self.retry_delay)
        except Exception as exc:
            return _error_result(exc, phone=number)

        body = _json_body(res)
        if res.is_success and body.get("success"):
            logger.info("SMS sent to=%s", mask_phone(number))
            return SmsResult(
                success=True,
                message="SMS sent successfully",
                message_id=str(body.get("messageId") or body.get("id") or "unknown"),
            )
        return SmsResult(
            success=False,
            message=str(body.get("message") or "Failed to send SMS"),
            error_code="SMS_API_ERROR",
        )


@dataclass
class HttpGetBackend:
    """Provider variant that takes the message as GET query parameters."""

    url: str
    api_key: Optional[str] = None
    timeout: float = 10.0
    retry_delay: float = 0.5
    transport: Optional[httpx.AsyncBaseTransport] = None

    async def __call__(self, phone: str, message: str) -> SmsResult:
        if not (self.url or "").strip():
            raise RuntimeError("SMS_API_URL must be configured for HTTP provider")
        number = normalize_phone(phone)
        if not validate_phone(number):
            return _invalid_phone_result(number)
        params = {"phone": number, "message": message, "apikey": self.api_key or ""}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                res = await _send_with_retry(lambda: client.get(self.url, params=params), backend_name="http_get", delay=self.retry_delay)
        except Exception as exc:
            return _error_result(exc, phone=number)
        if res.status_code == 200:
            body = _json_body(res)
            return SmsResult(
                success=True,
                message="SMS sent successfully",
                message_id=str(body.get("messageId") or "unknown"),
            )
        return SmsResult(success=False, message="Failed to send SMS", error_code="SMS_API_ERROR")


def _json_body(res: httpx.Response) -> dict:
    try:
        data = res.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def _error_result(exc: Exception, *, phone: str) -> SmsResult:
    logger.error("Error sending SMS to=%s: %s", mask_phone(phone), exc)
    if isinstance(exc, httpx.TransportError):
        return SmsResult(success=False, message="No response from SMS service", error_code="SMS_NETWORK_ERROR")
    return SmsResult(success=False, message=str(exc) or "Failed to send SMS", error_code="SMS_SEND_ERROR")


async def _send_with_retry(callable_fn, backend_name: str, max_attempts: int = 3, delay: float = 0.5) -> httpx.Response:
    """Retry transport-level failures; HTTP error responses are returned as-is."""
    for attempt in range(1, max_attempts + 1):
        try:
            return await callable_fn()
        except httpx.TransportError as exc:
            if attempt == max_attempts:
                raise
            logger.warning("%s SMS attempt %s failed: %s", backend_name, attempt, exc)
            await asyncio.sleep(delay)
            delay *= 2
    raise RuntimeError("unreachable")  # pragma: no cover


def resolve_backend() -> SmsFunction:
    """Pick the delivery backend from OTP_SMS_PROVIDER (log, http or http_get)."""
    ensure_loaded()
    provider = (os.getenv("OTP_SMS_PROVIDER", "log") or "log").strip().lower()
    timeout = env_float("SMS_HTTP_TIMEOUT_SECS", default=10.0)
    if provider == "http":
        return HttpBackend(
            url=os.getenv("SMS_API_URL", ""),
            auth_token=os.getenv("SMS_API_KEY") or None,
            sender_name=os.getenv("SMS_SENDER_NAME") or None,
            timeout=timeout,
        )
    if provider == "http_get":
        return HttpGetBackend(url=os.getenv("SMS_API_URL", ""), api_key=os.getenv("SMS_API_KEY") or None, timeout=timeout)
    if provider != "log":
        logger.warning("Unknown OTP_SMS_PROVIDER=%r, falling back to log backend", provider)
    return LogBackend()
