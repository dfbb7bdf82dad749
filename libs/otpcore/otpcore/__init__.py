from .otp import (
    OTPConfig,
    OTPService,
    OTPSendResult,
    OTPVerifyResult,
    OTPStats,
    OTPErrorKind,
    OTPError,
    OTPConfigError,
    OTPServiceAlreadyInitialized,
    OTPServiceNotInitialized,
    generate_otp_code,
    from_env as otp_config_from_env,
)
from .service import initialize_otp_service, get_otp_service
from .store import OTPStore, RedisStore, build_redis_store
from .sms_provider import SmsResult, SmsFunction, LogBackend, HttpBackend, HttpGetBackend, resolve_backend
from .env import env_bool, env_int, env_float, env_list
from .phone_utils import validate_phone, validate_code_format, normalize_phone, mask_phone

__all__ = [
    "OTPConfig",
    "OTPService",
    "OTPSendResult",
    "OTPVerifyResult",
    "OTPStats",
    "OTPErrorKind",
    "OTPError",
    "OTPConfigError",
    "OTPServiceAlreadyInitialized",
    "OTPServiceNotInitialized",
    "generate_otp_code",
    "otp_config_from_env",
    "initialize_otp_service",
    "get_otp_service",
    "OTPStore",
    "RedisStore",
    "build_redis_store",
    "SmsResult",
    "SmsFunction",
    "LogBackend",
    "HttpBackend",
    "HttpGetBackend",
    "resolve_backend",
    "env_bool",
    "env_int",
    "env_float",
    "env_list",
    "validate_phone",
    "validate_code_format",
    "normalize_phone",
    "mask_phone",
]
