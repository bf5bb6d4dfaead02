# backend/login_attempts.py
"""Failed-login tracking with temporary account lockout.

Stores are created by the application factory and kept on
``app.extensions['login_attempts']``; nothing here is module-global.
"""
import math
import threading
import time

import redis

MAX_ATTEMPTS = 5
LOCKOUT_SECONDS = 15 * 60
# failures older than this no longer count towards a lockout
ATTEMPT_WINDOW_SECONDS = 60 * 60


def _key(email):
    return email.strip().lower()


class MemoryAttemptStore:
    """In-process store. Entries expire on their own; use one per app."""

    def __init__(self, max_attempts=MAX_ATTEMPTS, lockout_seconds=LOCKOUT_SECONDS,
                 window_seconds=ATTEMPT_WINDOW_SECONDS, clock=time.monotonic):
        self.max_attempts = max_attempts
        self.lockout_seconds = lockout_seconds
        self.window_seconds = window_seconds
        self._clock = clock
        self._lock = threading.Lock()
        # email -> [count, expires_at, locked_until]
        self._entries = {}

    def _live_entry(self, key, now):
        entry = self._entries.get(key)
        if entry is None:
            return None
        count, expires_at, locked_until = entry
        if locked_until is not None:
            if now < locked_until:
                return entry
            del self._entries[key]
            return None
        if now >= expires_at:
            del self._entries[key]
            return None
        return entry

    def _purge(self, now):
        for key in list(self._entries):
            self._live_entry(key, now)

    def record_failure(self, email):
        key = _key(email)
        with self._lock:
            now = self._clock()
            # each failure may add an entry, so sweep the other expired ones here
            self._purge(now)
            entry = self._live_entry(key, now) or [0, None, None]
            entry[0] += 1
            entry[1] = now + self.window_seconds
            if entry[0] >= self.max_attempts and entry[2] is None:
                entry[2] = now + self.lockout_seconds
            self._entries[key] = entry
            return entry[0]

    def is_locked(self, email):
        return self.remaining_lockout_seconds(email) > 0

    def remaining_lockout_seconds(self, email):
        with self._lock:
            now = self._clock()
            entry = self._live_entry(_key(email), now)
            if entry is None or entry[2] is None:
                return 0
            return max(0, entry[2] - now)

    def remaining_lockout_minutes(self, email):
        return math.ceil(self.remaining_lockout_seconds(email) / 60)

    def attempt_count(self, email):
        with self._lock:
            entry = self._live_entry(_key(email), self._clock())
            return entry[0] if entry else 0

    def reset(self, email):
        with self._lock:
            self._entries.pop(_key(email), None)

    def purge_expired(self):
        with self._lock:
            self._purge(self._clock())


class RedisAttemptStore:
    """Store shared by every app instance, backed by redis key expiry."""

    def __init__(self, client, max_attempts=MAX_ATTEMPTS, lockout_seconds=LOCKOUT_SECONDS,
                 window_seconds=ATTEMPT_WINDOW_SECONDS, prefix='login'):
        self.client = client
        self.max_attempts = max_attempts
        self.lockout_seconds = lockout_seconds
        self.window_seconds = window_seconds
        self.prefix = prefix

    @classmethod
    def from_url(cls, url, **kwargs):
        return cls(redis.Redis.from_url(url, decode_responses=True), **kwargs)

    def _count_key(self, email):
        return f'{self.prefix}:attempts:{_key(email)}'

    def _lock_key(self, email):
        return f'{self.prefix}:locked:{_key(email)}'

    def record_failure(self, email):
        count_key = self._count_key(email)
        pipe = self.client.pipeline()
        pipe.incr(count_key)
        pipe.expire(count_key, self.window_seconds)
        count = int(pipe.execute()[0])
        if count >= self.max_attempts:
            # nx keeps the first lockout deadline while it is running
            if self.client.set(self._lock_key(email), '1', ex=self.lockout_seconds, nx=True):
                # the count starts over once the lockout ends
                self.client.expire(count_key, self.lockout_seconds)
        return count

    def is_locked(self, email):
        return bool(self.client.exists(self._lock_key(email)))

    def remaining_lockout_seconds(self, email):
        ttl = self.client.ttl(self._lock_key(email))
        return ttl if ttl and ttl > 0 else 0

    def remaining_lockout_minutes(self, email):
        return math.ceil(self.remaining_lockout_seconds(email) / 60)

    def attempt_count(self, email):
        value = self.client.get(self._count_key(email))
        return int(value) if value else 0

    def reset(self, email):
        self.client.delete(self._count_key(email), self._lock_key(email))


def create_store(config):
    options = dict(max_attempts=config.get('LOGIN_MAX_ATTEMPTS', MAX_ATTEMPTS),
                   lockout_seconds=config.get('LOGIN_LOCKOUT_MINUTES', LOCKOUT_SECONDS // 60) * 60)
    url = config.get('LOGIN_ATTEMPTS_REDIS_URL')
    if url:
        return RedisAttemptStore.from_url(url, **options)
    return MemoryAttemptStore(**options)
