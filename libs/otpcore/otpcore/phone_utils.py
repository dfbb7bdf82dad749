import re

_PHONE_RE = re.compile(r"[6-9][0-9]{9}")
_CODE_RE = re.compile(r"[0-9]{6}")


def validate_phone(phone) -> bool:
    """Return True for a 10-digit mobile number starting with 6, 7, 8 or 9."""
    if not isinstance(phone, str):
        return False
    return _PHONE_RE.fullmatch(phone) is not None


def validate_code_format(code) -> bool:
    if not isinstance(code, str):
        return False
    return _CODE_RE.fullmatch(code) is not None


def normalize_phone(phone: str) -> str:
    """Strip separators and a leading +91 / 91 country prefix.

    Only numbers that end up with 12 digits after stripping separators lose the
    91 prefix, so a bare 10-digit number starting with 91 is left alone.
    """
    if not phone:
        return ""
    raw = re.sub(r"[\s\-().]", "", phone)
    if raw.startswith("+91"):
        return raw[3:]
    if raw.startswith("91") and len(raw) == 12:
        return raw[2:]
    return raw


def mask_phone(phone: str, visible_digits: int = 4) -> str:
    if not phone:
        return ""
    if len(phone) <= visible_digits:
        return phone
    return "*" * (len(phone) - visible_digits) + phone[-visible_digits:]


def mask_code(code: str) -> str:
    if not code:
        return ""
    digits = re.sub(r"\D", "", code)
    if len(digits) <= 2:
        return "*" * len(digits)
    return "*" * (len(digits) - 2) + digits[-2:]


def mask_codes_in_message(message: str) -> str:
    if not message:
        return ""
    return re.sub(r"(\d{4,})", lambda m: mask_code(m.group(0)), message)
