"""Process-wide OTPService accessor.

Prefer passing an OTPService instance explicitly; this module exists for
entrypoints (scripts, workers) that have no natural place to hold one.
"""
from __future__ import annotations

from typing import Optional

from .otp import OTPConfig, OTPService, OTPServiceAlreadyInitialized, OTPServiceNotInitialized

_otp_service: Optional[OTPService] = None


def initialize_otp_service(config: OTPConfig) -> OTPService:
    """Build the shared service. Call once at process start."""
    global _otp_service
    if _otp_service is not None:
        raise OTPServiceAlreadyInitialized("OTP service already initialized")
    _otp_service = OTPService.from_config(config)
    return _otp_service


def get_otp_service() -> OTPService:
    if _otp_service is None:
        raise OTPServiceNotInitialized("OTP service not initialized. Call initialize_otp_service() first.")
    return _otp_service
