import os

from otpcore.env import ensure_loaded, env_bool, env_float, env_int, env_list

ensure_loaded()


class Settings:
    ENV: str = os.getenv("ENV", "dev")
    DEV_MODE: bool = ENV.lower() == "dev"
    APP_HOST: str = os.getenv("APP_HOST", "0.0.0.0")
    APP_PORT: int = env_int("APP_PORT", default=3000)
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
    ALLOWED_ORIGINS: list[str] = env_list(
        "ALLOWED_ORIGINS",
        default=["*"] if DEV_MODE else [],
    )
    REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    # OTP policy; non-positive values are rejected when the service is built
    OTP_EXPIRY_MINUTES: int = env_int("OTP_EXPIRY_MINUTES", default=10)
    OTP_RATE_LIMIT_SECONDS: int = env_int("OTP_RATE_LIMIT_SECONDS", default=60)
    OTP_DELIVERY_TIMEOUT_SECS: float = env_float("OTP_DELIVERY_TIMEOUT_SECS", default=10.0)
    # Returns generated codes in API responses. Explicit opt-in only, independent of ENV.
    OTP_EXPOSE_CODE: bool = env_bool("OTP_EXPOSE_CODE", default=False)


settings = Settings()
