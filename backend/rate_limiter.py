"""
Rate Limiting and Retry for Gemini API calls

- RateLimiter: in-process semaphore + minimum spacing between request starts
- RedisRateLimiter: sliding window shared across processes (RATE_LIMITER=redis)
- retry_operation: exponential backoff on overload (503) and rate limits (429)
"""
import os
import re
import time
import threading
from typing import Callable, Optional, TypeVar

import redis

from logging_config import get_logger

logger = get_logger('rate_limiter')

T = TypeVar('T')

# Rate limiting config - sequential, conservative for Gemini preview models
MAX_CONCURRENT = 1
RPM_LIMIT = int(os.getenv('GEMINI_RPM', 19))
RATE_WINDOW = 60.0
MAX_WAIT_TIME = 120

# Retry config
MAX_RETRIES = 3
BASE_DELAY = 2.0            # seconds, doubled after each retry
RATE_LIMIT_DEFAULT_WAIT = 60.0
RATE_LIMIT_BUFFER = 5.0

# Redis config
REDIS_HOST = os.getenv('REDIS_HOST', 'localhost')
REDIS_PORT = int(os.getenv('REDIS_PORT', 6379))
REDIS_DB = int(os.getenv('REDIS_DB', 0))
RATE_LIMIT_KEY = 'catalyst:gemini:rate_limit:requests'

RETRY_HINT_PATTERN = re.compile(r'retry in (\d+\.?\d*)s', re.IGNORECASE)


class RateLimitTimeout(Exception):
    """The shared window stayed full past the acquire timeout."""
    code = 429

    def __init__(self, message: str = 'RESOURCE_EXHAUSTED: rate limit window still full after waiting'):
        super().__init__(message)


class RateLimiter:
    """
    Semaphore-based rate limiter that enforces RPM limits.
    Ensures delay BEFORE each request, not after.
    """
    def __init__(self, rpm: int = RPM_LIMIT, max_concurrent: int = MAX_CONCURRENT):
        self.semaphore = threading.Semaphore(max_concurrent)
        self.min_interval = RATE_WINDOW / rpm
        self.last_request_time = 0.0
        self.lock = threading.Lock()
        logger.debug(f"RateLimiter initialized: rpm={rpm}, max_concurrent={max_concurrent}")

    def acquire(self):
        """Acquire permission to make a request. Blocks if rate limit exceeded."""
        self.semaphore.acquire()
        with self.lock:
            now = time.time()
            elapsed = now - self.last_request_time
            if elapsed < self.min_interval:
                wait_time = self.min_interval - elapsed
                logger.debug(f"Rate limiter: waiting {wait_time:.2f}s")
                time.sleep(wait_time)
            self.last_request_time = time.time()
        return True

    def release(self):
        """Release the semaphore after request completes."""
        self.semaphore.release()


class RedisRateLimiter:
    """
    Distributed rate limiter using Redis.

    Stores timestamps of recent requests in a sorted set; before each request
    checks the count inside the window and waits for the oldest to expire.
    """

    def __init__(
        self,
        rpm: int = RPM_LIMIT,
        window: float = RATE_WINDOW,
        redis_client: Optional[redis.Redis] = None
    ):
        self.rpm = rpm
        self.window = window
        self.min_interval = window / rpm

        if redis_client is not None:
            self.redis = redis_client
        else:
            self.redis = redis.Redis(
                host=REDIS_HOST,
                port=REDIS_PORT,
                db=REDIS_DB,
                decode_responses=True
            )

        logger.info(f"RedisRateLimiter initialized: rpm={rpm}, window={window}s, interval={self.min_interval:.2f}s")

    def acquire(self, timeout: float = MAX_WAIT_TIME) -> bool:
        """
        Acquire permission to make a request.
        Blocks until rate limit allows, or timeout.

        Returns:
            True if acquired, False if timeout
        """
        start_time = time.time()

        while True:
            now = time.time()
            window_start = now - self.window

            try:
                pipe = self.redis.pipeline()
                pipe.zremrangebyscore(RATE_LIMIT_KEY, '-inf', window_start)
                pipe.zcard(RATE_LIMIT_KEY)
                current_count = pipe.execute()[1]

                if current_count < self.rpm:
                    member = f"{now}:{os.getpid()}:{threading.get_ident()}"
                    self.redis.zadd(RATE_LIMIT_KEY, {member: now})
                    self.redis.expire(RATE_LIMIT_KEY, int(self.window * 2))
                    logger.debug(f"Rate limiter: acquired ({current_count + 1}/{self.rpm} in window)")
                    return True

                oldest = self.redis.zrange(RATE_LIMIT_KEY, 0, 0, withscores=True)
                if oldest:
                    wait_time = (oldest[0][1] + self.window) - now + 0.1
                else:
                    wait_time = self.min_interval

                elapsed = time.time() - start_time
                if elapsed + wait_time > timeout:
                    logger.warning(f"Rate limiter: timeout after {elapsed:.1f}s")
                    return False

                logger.debug(f"Rate limiter: waiting {wait_time:.1f}s ({current_count}/{self.rpm} in window)")
                time.sleep(min(wait_time, 5.0))

            except redis.RedisError as e:
                logger.error(f"Redis error in rate limiter: {e}")
                # Fall back to simple spacing
                time.sleep(self.min_interval)
                return True

    def release(self):
        """No-op: requests expire from the window on their own."""
        pass


_global_rate_limiter = None
_rate_limiter_lock = threading.Lock()


def get_rate_limiter():
    """Get or create the global rate limiter (singleton) for the configured backend."""
    global _global_rate_limiter
    with _rate_limiter_lock:
        if _global_rate_limiter is None:
            if os.getenv('RATE_LIMITER', 'local').lower() == 'redis':
                _global_rate_limiter = RedisRateLimiter()
            else:
                _global_rate_limiter = RateLimiter()
                logger.info(f"Created global RateLimiter: rpm={RPM_LIMIT}, concurrent={MAX_CONCURRENT}")
        return _global_rate_limiter


def reset_rate_limiter():
    """Drop the singleton so the next call re-reads RATE_LIMITER (used by tests)."""
    global _global_rate_limiter
    with _rate_limiter_lock:
        _global_rate_limiter = None


def _error_status(error: Exception):
    for attr in ('code', 'status_code', 'status'):
        value = getattr(error, attr, None)
        if value is not None:
            return value
    return None


def is_overloaded_error(error: Exception) -> bool:
    """503 / model overloaded / service unavailable."""
    status = _error_status(error)
    if status == 503 or str(status).upper() == 'UNAVAILABLE':
        return True
    message = str(error).lower()
    return 'overloaded' in message or 'unavailable' in message


def is_rate_limit_error(error: Exception) -> bool:
    """429 / quota exhausted."""
    status = _error_status(error)
    if status == 429 or str(status).upper() == 'RESOURCE_EXHAUSTED':
        return True
    message = str(error)
    return '429' in message or 'RESOURCE_EXHAUSTED' in message


def rate_limit_wait_time(error: Exception) -> float:
    """Seconds to wait after a 429, honouring a 'retry in Ns' hint."""
    match = RETRY_HINT_PATTERN.search(str(error))
    if match:
        return float(match.group(1)) + RATE_LIMIT_BUFFER
    return RATE_LIMIT_DEFAULT_WAIT


def retry_operation(
    operation: Callable[[], T],
    retries: int = MAX_RETRIES,
    delay: float = BASE_DELAY,
    log=None
) -> T:
    """
    Run operation, retrying transient provider failures.

    Overload errors wait `delay` seconds, doubling each attempt; rate-limit
    errors wait for the provider's hint. Any other error, or the last error
    once retries are exhausted, propagates unchanged.
    """
    log = log or logger
    attempt = 0
    while True:
        try:
            return operation()
        except Exception as e:
            if attempt >= retries:
                raise
            if is_rate_limit_error(e):
                wait_time = rate_limit_wait_time(e)
                log.warning(f"Rate limited (429), waiting {wait_time:.0f}s ({retries - attempt} retries left)")
            elif is_overloaded_error(e):
                wait_time = delay * (2 ** attempt)
                log.warning(f"Model overloaded or unavailable (503). Retrying in {wait_time:.1f}s... ({retries - attempt} retries left)")
            else:
                raise
            time.sleep(wait_time)
            attempt += 1


def call_with_limits(operation: Callable[[], T], limiter=None, retries: int = MAX_RETRIES,
                     delay: float = BASE_DELAY, log=None) -> T:
    """Run operation through the shared limiter, with retry on every attempt."""
    limiter = limiter or get_rate_limiter()

    def limited():
        if limiter.acquire() is False:
            raise RateLimitTimeout()
        try:
            return operation()
        finally:
            limiter.release()

    return retry_operation(limited, retries=retries, delay=delay, log=log)
