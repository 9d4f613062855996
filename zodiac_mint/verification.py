import logging
import threading
import time

logger = logging.getLogger(__name__)

POLL_INTERVAL = 2.0  # seconds
POLL_MAX_ATTEMPTS = 150


class ExpiringCache:
    """Key/value store whose entries expire ``ttl`` seconds after being set.

    Expired entries are dropped when they are read.
    """

    def __init__(self, ttl, clock=time.time):
        self.ttl = ttl
        self._clock = clock
        self._entries = {}
        self._lock = threading.Lock()

    def set(self, key, value):
        with self._lock:
            self._entries[key] = (value, self._clock() + self.ttl)

    def get(self, key, default=None):
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return default
            value, expires_at = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return default
            return value

    def pop(self, key, default=None):
        value = self.get(key, default)
        with self._lock:
            self._entries.pop(key, None)
        return value

    def __contains__(self, key):
        return self.get(key) is not None

    def __len__(self):
        return len(self._entries)


class VerificationService:
    """Holds identity-verification results until the client polls for them."""

    def __init__(self, cache):
        self.cache = cache

    def record(self, user_id, date_of_birth, verified=True):
        key = user_id.lower()
        self.cache.set(key, {'verified': verified, 'date_of_birth': date_of_birth})
        logger.info(f'Stored verification for user {key}')

    def check(self, user_id):
        key = user_id.lower()
        verification = self.cache.get(key)
        if verification is None:
            logger.info(f'No verification found for user {key}')
            return {'verified': False}
        return {
            'verified': verification['verified'],
            'date_of_birth': verification['date_of_birth'],
        }


def poll_verification(check, interval=POLL_INTERVAL, max_attempts=POLL_MAX_ATTEMPTS, sleep=time.sleep):
    """Call ``check()`` until it reports a verified result or attempts run out.

    Returns the verified result, or ``None`` on timeout.
    """
    for attempt in range(1, max_attempts + 1):
        result = check()
        if result and result.get('verified'):
            logger.info(f'Verification received after {attempt} attempts')
            return result
        if attempt < max_attempts:
            sleep(interval)
    logger.warning(f'Verification timed out after {max_attempts} attempts')
    return None
