import logging
import os
import threading
import time
import yaml
from pathlib import Path
from contextlib import contextmanager

logger = logging.getLogger(__name__)

CONFIG_PATH = Path(os.getenv("RATE_LIMITS_CONFIG", "configs/rate_limits.yaml"))
DEFAULT_LIMIT = {"rate_per_sec": 2, "burst": 5}

class TokenBucketLimiter:
    """Per-channel-type token bucket shared by every job touching that channel type.

    ``with limiter():`` blocks until one remote call may go out.
    """

    def __init__(self, rate_per_sec: float, burst: int, clock=time.monotonic, sleep=time.sleep):
        if rate_per_sec <= 0 or burst < 1:
            raise ValueError(f"bad rate limit: {rate_per_sec}/s burst {burst}")
        self.rate = rate_per_sec
        self.capacity = burst
        self._clock = clock
        self._sleep = sleep
        self._tokens = float(burst)
        self._stamp = clock()
        self._lock = threading.Lock()

    def acquire(self) -> float:
        """Take one token, sleeping if the bucket is empty. Returns seconds waited."""
        with self._lock:
            now = self._clock()
            self._tokens = min(self.capacity, self._tokens + (now - self._stamp) * self.rate)
            self._stamp = now
            waited = 0.0
            if self._tokens < 1:
                waited = (1 - self._tokens) / self.rate
                self._sleep(waited)
                self._tokens = 1.0
                self._stamp = self._clock()
            self._tokens -= 1
        if waited:
            logger.debug(f"rate limited for {waited:.2f}s")
        return waited

    @contextmanager
    def __call__(self):
        self.acquire()
        yield

class Unlimited:
    """Drop-in limiter that never waits (tests, local runs)."""

    def acquire(self) -> float:
        return 0.0

    @contextmanager
    def __call__(self):
        yield

def _load_config(path: Path = CONFIG_PATH) -> dict:
    if not path.exists():
        return {}
    return yaml.safe_load(path.read_text()) or {}

_limiters = {}
_limiters_lock = threading.Lock()

def get_limiter(channel_type: str) -> TokenBucketLimiter:
    ch = (channel_type or "").lower()
    with _limiters_lock:
        if ch not in _limiters:
            cfg = {**DEFAULT_LIMIT, **(_load_config().get(ch) or {})}
            _limiters[ch] = TokenBucketLimiter(float(cfg["rate_per_sec"]), int(cfg["burst"]))
        return _limiters[ch]
