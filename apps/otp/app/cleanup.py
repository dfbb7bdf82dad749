"""Remove OTP records that were stored without an expiry.

Usage (from apps/otp):
  python -m app.cleanup

Meant for a cron job; Redis expiry handles everything else.
"""
import asyncio
import logging
import sys

from otpcore import (
    build_redis_store,
    get_otp_service,
    initialize_otp_service,
    otp_config_from_env,
    resolve_backend,
)

from .config import settings


async def run() -> int:
    store = build_redis_store(settings.REDIS_URL)
    initialize_otp_service(otp_config_from_env(store, resolve_backend()))
    try:
        return await get_otp_service().cleanup_expired_otps()
    finally:
        await store.close()


def main() -> int:
    logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL, logging.INFO))
    cleaned = asyncio.run(run())
    print(f"cleaned={cleaned}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
