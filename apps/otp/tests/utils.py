import asyncio
import math
import re
from typing import Optional

from otpcore import SmsResult


def run(coro):
    return asyncio.run(coro)


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class StoreUnavailable(ConnectionError):
    pass


class FakeStore:
    """In-memory OTPStore with Redis TTL semantics and a controllable clock.

    ``fail_on`` holds operation names (``"delete"``) or ``(operation, key)``
    pairs that raise StoreUnavailable.
    """

    def __init__(self, clock: Optional[FakeClock] = None):
        self.clock = clock or FakeClock()
        self.data: dict[str, tuple[str, Optional[float]]] = {}
        self.fail_on: set = set()
        self.calls: list[tuple[str, str]] = []

    def _check(self, op: str, key: str) -> None:
        self.calls.append((op, key))
        if op in self.fail_on or (op, key) in self.fail_on:
            raise StoreUnavailable(f"store unavailable: {op} {key}")

    def _live(self, key: str):
        entry = self.data.get(key)
        if entry is None:
            return None
        _, expires_at = entry
        if expires_at is not None and expires_at <= self.clock():
            del self.data[key]
            return None
        return entry

    def put(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        expires_at = self.clock() + ttl_seconds if ttl_seconds is not None else None
        self.data[key] = (value, expires_at)

    async def get(self, key):
        self._check("get", key)
        entry = self._live(key)
        return entry[0] if entry else None

    async def set_with_expiry(self, key, value, ttl_seconds):
        self._check("set_with_expiry", key)
        self.put(key, value, ttl_seconds)

    async def set_if_absent(self, key, value, ttl_seconds):
        self._check("set_if_absent", key)
        if self._live(key) is not None:
            return False
        self.put(key, value, ttl_seconds)
        return True

    async def delete(self, key):
        self._check("delete", key)
        if self._live(key) is None:
            return 0
        del self.data[key]
        return 1

    async def exists(self, key):
        self._check("exists", key)
        return self._live(key) is not None

    async def ttl(self, key):
        self._check("ttl", key)
        entry = self._live(key)
        if entry is None:
            return -2
        if entry[1] is None:
            return -1
        return math.ceil(entry[1] - self.clock())

    async def scan_by_prefix(self, prefix):
        self._check("scan_by_prefix", prefix)
        return [k for k in list(self.data) if k.startswith(prefix) and self._live(k) is not None]


class FakeSms:
    def __init__(self, result: Optional[SmsResult] = None, exc: Optional[Exception] = None, delay: float = 0.0):
        self.result = result or SmsResult(success=True, message="sent", message_id="msg-1")
        self.exc = exc
        self.delay = delay
        self.sent: list[tuple[str, str]] = []

    async def __call__(self, phone: str, message: str) -> SmsResult:
        self.sent.append((phone, message))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.exc is not None:
            raise self.exc
        return self.result

    @property
    def last_code(self) -> str:
        _, message = self.sent[-1]
        return re.search(r"\b(\d{6})\b", message).group(1)
