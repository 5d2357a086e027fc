"""
Thread-safe replay protection via per-signer nonces.

The check "nonce unused" and the mark "nonce used" must be one atomic step per
signer, otherwise two concurrent validations of the same request can both
pass. claim() holds the signer's lock across the check, the caller's
remaining checks, and the consumption.
"""

import threading
import time
from contextlib import contextmanager
from typing import Dict, Iterator, Union
import logging

from ..exceptions import MalformedInputError, NonceOutOfOrderError, ReplayError
from ..models import NoncePolicy

logger = logging.getLogger(__name__)


class NonceStore:
    """
    Per-signer nonce bookkeeping.

    Policies:
        UNORDERED: any nonce not yet consumed is usable (set of consumed values)
        SEQUENTIAL: the nonce must equal the signer's counter, which then advances

    Per-signer locks keep contention between different signers at zero. Locks
    are reference counted so cleanup_inactive() never drops a lock another
    thread is about to use.
    """

    def __init__(self, policy: Union[NoncePolicy, str] = NoncePolicy.UNORDERED):
        """
        Initialize nonce store.

        Args:
            policy: Nonce policy (unordered or sequential)
        """
        self.policy = NoncePolicy(policy)
        self._consumed: Dict[str, set[int]] = {}
        self._next: Dict[str, int] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._lock_users: Dict[str, int] = {}
        self._last_access: Dict[str, float] = {}
        self._global_lock = threading.RLock()  # For _locks dict operations

    @staticmethod
    def _key(signer: str) -> str:
        return signer.lower()

    def _acquire_lock(self, key: str) -> threading.Lock:
        with self._global_lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            self._lock_users[key] = self._lock_users.get(key, 0) + 1
            self._last_access[key] = time.time()
        return lock

    def _release_lock(self, key: str) -> None:
        with self._global_lock:
            remaining = self._lock_users[key] - 1
            if remaining:
                self._lock_users[key] = remaining
            else:
                del self._lock_users[key]

    @contextmanager
    def _signer_lock(self, key: str) -> Iterator[None]:
        lock = self._acquire_lock(key)
        try:
            with lock:
                yield
        finally:
            self._release_lock(key)

    @contextmanager
    def claim(self, signer: str, nonce: int) -> Iterator[None]:
        """
        Reserve a nonce for the duration of the block and consume it on success.

        The nonce is consumed only if the block exits without an exception.

        Example:
            >>> with store.claim(signer, nonce):
            ...     check_expiry(request)  # raising here leaves the nonce unused

        Raises:
            ReplayError: If the nonce was already consumed
            NonceOutOfOrderError: If the sequential policy expects a lower nonce
        """
        key = self._key(signer)
        with self._signer_lock(key):
            self._check_unused(key, signer, nonce)
            yield
            self._consume(key, nonce)
            logger.debug(f"[NONCE] Consumed nonce {nonce} for {signer}")

    def _check_unused(self, key: str, signer: str, nonce: int) -> None:
        if self.policy == NoncePolicy.SEQUENTIAL:
            expected = self._next.get(key, 0)
            if nonce < expected:
                raise ReplayError(
                    f"Nonce {nonce} already used by {signer} (next is {expected})",
                    signer=signer,
                    nonce=nonce,
                )
            if nonce > expected:
                raise NonceOutOfOrderError(
                    f"Nonce {nonce} for {signer} is ahead of expected {expected}",
                    signer=signer,
                    nonce=nonce,
                    expected=expected,
                )
        elif nonce in self._consumed.get(key, ()):
            raise ReplayError(
                f"Nonce {nonce} already used by {signer}",
                signer=signer,
                nonce=nonce,
            )

    def _consume(self, key: str, nonce: int) -> None:
        if self.policy == NoncePolicy.SEQUENTIAL:
            self._next[key] = nonce + 1
        else:
            self._consumed.setdefault(key, set()).add(nonce)

    def is_consumed(self, signer: str, nonce: int) -> bool:
        """Whether nonce can no longer be used by signer."""
        key = self._key(signer)
        with self._signer_lock(key):
            if self.policy == NoncePolicy.SEQUENTIAL:
                return nonce < self._next.get(key, 0)
            return nonce in self._consumed.get(key, ())

    def next_nonce(self, signer: str) -> int:
        """
        Nonce the signer should use for its next request.

        Sequential: the counter. Unordered: one past the highest consumed value.
        """
        key = self._key(signer)
        with self._signer_lock(key):
            if self.policy == NoncePolicy.SEQUENTIAL:
                return self._next.get(key, 0)
            return max(self._consumed.get(key, ()), default=-1) + 1

    def set_next(self, signer: str, nonce: int) -> None:
        """
        Seed the sequential counter, e.g. from on-chain state at startup.

        Raises:
            MalformedInputError: If the policy is not sequential or nonce is negative
        """
        if self.policy != NoncePolicy.SEQUENTIAL:
            raise MalformedInputError("set_next is only meaningful for the sequential policy")
        if nonce < 0:
            raise MalformedInputError(f"Nonce must be >= 0, got {nonce}")
        key = self._key(signer)
        with self._signer_lock(key):
            self._next[key] = nonce
            logger.debug(f"[NONCE] Next nonce for {signer} set to {nonce}")

    def cleanup_inactive(self, max_age_seconds: float = 3600.0) -> int:
        """
        Drop locks of signers idle for max_age_seconds.

        Consumed nonce state is never dropped; forgetting it would reopen
        replay.

        Returns:
            Number of locks removed
        """
        cutoff = time.time() - max_age_seconds
        removed = 0
        with self._global_lock:
            for key in list(self._locks):
                if key in self._lock_users:
                    continue
                if self._last_access.get(key, 0) < cutoff:
                    del self._locks[key]
                    self._last_access.pop(key, None)
                    removed += 1

        if removed > 0:
            logger.info(f"[NONCE] Cleaned up {removed} inactive signer locks")

        return removed
