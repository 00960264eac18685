"""One-time passcode challenges for login and password reset.

A challenge lives in a ``ChallengeStore`` under ``(identifier, purpose)``.
Only the ``issued`` state is stored: verification, expiry, exhausting the
attempts and re-issuing after the cooldown all remove the entry. Every
operation on a key runs under that key's lock.
"""
from __future__ import annotations

import hmac
import logging
import math
import secrets
import threading
import time
import uuid
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

from securefms.errors import (
    ChallengeExpired, ChallengeNotFound, CodeMismatch, DeliveryError, IdentityNotFound,
    InactiveAccountError, RateLimitError, TooManyAttempts, ValidationError,
)
from securefms.identity import normalize_identifier

logger = logging.getLogger(__name__)

LOGIN = "login"
PASSWORD_RESET = "password-reset"

CODE_LENGTH = 6
MAX_ATTEMPTS = 5

Key = Tuple[str, str]


@dataclass(frozen=True)
class PurposePolicy:
    ttl: int       # seconds a code stays valid
    cooldown: int  # seconds before a new code may be issued


POLICIES: Dict[str, PurposePolicy] = {
    LOGIN: PurposePolicy(ttl=5 * 60, cooldown=30),
    PASSWORD_RESET: PurposePolicy(ttl=10 * 60, cooldown=60),
}


@dataclass
class Challenge:
    identifier: str
    purpose: str
    code: str
    principal_id: int
    issued_at: float
    expires_at: float
    attempts: int = 0
    challenge_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @property
    def key(self) -> Key:
        return (self.identifier, self.purpose)


@dataclass(frozen=True)
class IssuedChallenge:
    challenge_id: str
    expires_at: float


class ChallengeStore(ABC):
    """Keyed, TTL-bearing storage with per-key mutual exclusion."""

    @abstractmethod
    def get(self, key: Key) -> Optional[Challenge]: ...

    @abstractmethod
    def put(self, challenge: Challenge) -> None: ...

    @abstractmethod
    def delete(self, key: Key) -> None: ...

    @abstractmethod
    def lock(self, key: Key):
        """Context manager held for the whole of an operation on ``key``."""

    @abstractmethod
    def purge_expired(self, now: float) -> int: ...

    @abstractmethod
    def __len__(self) -> int: ...


class InMemoryChallengeStore(ChallengeStore):
    def __init__(self):
        self._challenges: Dict[Key, Challenge] = {}
        self._guard = threading.Lock()
        # one lock per key, [lock, holders]; dropped once nobody holds or waits on it
        self._locks: Dict[Key, List] = {}

    def _checkout(self, key: Key) -> threading.Lock:
        with self._guard:
            entry = self._locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
            return entry[0]

    def _checkin(self, key: Key) -> None:
        with self._guard:
            entry = self._locks[key]
            entry[1] -= 1
            if entry[1] == 0:
                del self._locks[key]

    @contextmanager
    def lock(self, key: Key):
        key_lock = self._checkout(key)
        try:
            with key_lock:
                yield
        finally:
            self._checkin(key)

    def get(self, key: Key) -> Optional[Challenge]:
        with self._guard:
            return self._challenges.get(key)

    def put(self, challenge: Challenge) -> None:
        with self._guard:
            self._challenges[challenge.key] = challenge

    def delete(self, key: Key) -> None:
        with self._guard:
            self._challenges.pop(key, None)

    def purge_expired(self, now: float) -> int:
        with self._guard:
            candidates = [k for k, c in self._challenges.items() if c.expires_at <= now]
        removed = 0
        for key in candidates:
            key_lock = self._checkout(key)
            try:
                # a key that is busy is settled by the operation holding it
                if not key_lock.acquire(blocking=False):
                    continue
                try:
                    challenge = self.get(key)
                    if challenge is not None and challenge.expires_at <= now:
                        self.delete(key)
                        removed += 1
                finally:
                    key_lock.release()
            finally:
                self._checkin(key)
        return removed

    def __len__(self) -> int:
        with self._guard:
            return len(self._challenges)


class OTPManager:
    def __init__(self, store: ChallengeStore, notifier,
                 clock: Callable[[], float] = time.time,
                 policies: Optional[Dict[str, PurposePolicy]] = None,
                 max_attempts: int = MAX_ATTEMPTS, code_length: int = CODE_LENGTH):
        self.store = store
        self.notifier = notifier
        self.clock = clock
        self.policies = policies or POLICIES
        self.max_attempts = max_attempts
        self.code_length = code_length

    def policy(self, purpose: str) -> PurposePolicy:
        try:
            return self.policies[purpose]
        except KeyError:
            raise ValidationError(f"Unknown OTP purpose '{purpose}'") from None

    def generate_code(self) -> str:
        # each digit drawn uniformly from 0-9
        return "".join(str(secrets.randbelow(10)) for _ in range(self.code_length))

    def issue_challenge(self, identifier: str, purpose: str, identities) -> IssuedChallenge:
        policy = self.policy(purpose)
        key = (normalize_identifier(identifier), purpose)
        user = identities.get_by_identifier(key[0])
        if user is None:
            raise IdentityNotFound()
        if not user.is_active:
            raise InactiveAccountError()

        with self.store.lock(key):
            now = self.clock()
            existing = self.store.get(key)
            if existing is not None and now < existing.expires_at:
                elapsed = now - existing.issued_at
                if elapsed < policy.cooldown:
                    raise RateLimitError(retry_after=max(1, math.ceil(policy.cooldown - elapsed)))

            challenge = Challenge(
                identifier=key[0],
                purpose=purpose,
                code=self.generate_code(),
                principal_id=user.id,
                issued_at=now,
                expires_at=now + policy.ttl,
            )
            self.store.put(challenge)
            delivered = False
            try:
                self.notifier.send_code(user, challenge.code, purpose, policy.ttl)
                delivered = True
            except Exception as exc:
                logger.error("OTP delivery failed for user %s (%s): %s", user.id, purpose, exc)
                raise DeliveryError(str(exc)) from exc
            finally:
                if not delivered:
                    self.store.delete(key)

        logger.info("Issued %s challenge %s for user %s", purpose, challenge.challenge_id, user.id)
        return IssuedChallenge(challenge.challenge_id, challenge.expires_at)

    def resend_challenge(self, identifier: str, purpose: str, identities) -> Optional[IssuedChallenge]:
        """Re-issue under the cooldown; unknown identifiers get no code and no error."""
        try:
            return self.issue_challenge(identifier, purpose, identities)
        except (IdentityNotFound, InactiveAccountError):
            logger.info("Resend requested for unknown or inactive identifier (%s)", purpose)
            return None

    def verify_challenge(self, identifier: str, purpose: str, submitted_code: str) -> int:
        """Return the principal id for a correct code; the challenge is single-use."""
        self.policy(purpose)
        key = (normalize_identifier(identifier), purpose)
        with self.store.lock(key):
            challenge = self.store.get(key)
            if challenge is None:
                raise ChallengeNotFound()
            if self.clock() >= challenge.expires_at:
                self.store.delete(key)
                raise ChallengeExpired()

            # counted before comparing so every attempt is charged
            challenge.attempts += 1
            if challenge.attempts > self.max_attempts:
                self.store.delete(key)
                logger.warning("Challenge %s exhausted its attempts", challenge.challenge_id)
                raise TooManyAttempts()

            submitted = str(submitted_code or "").strip().encode("utf-8")
            if not hmac.compare_digest(challenge.code.encode("utf-8"), submitted):
                self.store.put(challenge)
                raise CodeMismatch(attempts_remaining=self.max_attempts - challenge.attempts)

            self.store.delete(key)
        logger.info("Challenge %s verified for user %s", challenge.challenge_id, challenge.principal_id)
        return challenge.principal_id


class ChallengeReaper:
    """Background sweep removing challenges that expired without being used."""

    def __init__(self, store: ChallengeStore, interval: float = 60.0,
                 clock: Callable[[], float] = time.time):
        self.store = store
        self.interval = interval
        self.clock = clock
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def sweep(self) -> int:
        removed = self.store.purge_expired(self.clock())
        if removed:
            logger.debug("Reaped %d expired challenges", removed)
        return removed

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            try:
                self.sweep()
            except Exception:
                logger.exception("Challenge sweep failed")

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="otp-reaper", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=self.interval)
            self._thread = None
