import os
import sys
from pathlib import Path


_ROOT = Path(__file__).resolve().parents[3]
_SHARED_PATH = _ROOT / "libs" / "otpcore"
_APP_PATH = _ROOT / "apps" / "otp"
for _path in (_SHARED_PATH, _APP_PATH):
    if _path.exists() and str(_path) not in sys.path:
        sys.path.insert(0, str(_path))


# Defaults for tests before app import: log-only SMS, no code exposure
os.environ.setdefault("ENV", "dev")
os.environ.setdefault("OTP_SMS_PROVIDER", "log")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")
os.environ["OTP_EXPOSE_CODE"] = "false"
