"""Pending verification registry.

Bridges Sally's asynchronous webhook callback to the caller that presented
the credential. Each in-flight presentation is keyed by credential SAID:

- ``register`` creates the entry (with a deadline timer) or, when one is
  already live, attaches another observer to the same eventual outcome.
- ``resolve_verification`` (webhook path) and the deadline timer race to
  take the entry out of the map; whichever wins delivers exactly one
  CompletedVerification to every observer, the other is a no-op.

A second, independent cache holds completed results for a retention window
so clients can poll instead of blocking.

The registry is an explicit object constructed once per process and passed
to its users; tests build isolated instances.
"""

import asyncio
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from app.core.config import COMPLETED_RESULT_TTL_SECONDS, VERIFICATION_TIMEOUT_SECONDS
from app.didlink.models import CompletedVerification, iso_timestamp

log = logging.getLogger("didlink.registry")


@dataclass
class _Observer:
    """A waiting caller: its future and the loop that owns it."""
    loop: asyncio.AbstractEventLoop
    future: "asyncio.Future[CompletedVerification]"


@dataclass
class _PendingEntry:
    """Live pending verification.

    Attributes:
        credential_said: SAID of the presented credential.
        le_aid: Legal entity AID captured at registration.
        le_lei: Legal entity LEI captured at registration.
        loop: Loop owning the deadline timer.
        start_time: Monotonic registration time (for elapsed logging).
        timer: Deadline timer handle.
        observers: Every caller awaiting this SAID.
    """
    credential_said: str
    le_aid: str
    le_lei: str
    loop: asyncio.AbstractEventLoop
    start_time: float
    timer: Optional[asyncio.TimerHandle] = None
    observers: List[_Observer] = field(default_factory=list)


@dataclass
class _CompletedEntry:
    result: CompletedVerification
    expires_at: float


def _set_result(future: "asyncio.Future[CompletedVerification]", result: CompletedVerification) -> None:
    # Observer may have been cancelled by its caller
    if not future.done():
        future.set_result(result)


def _running_loop() -> Optional[asyncio.AbstractEventLoop]:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


class PendingVerificationRegistry:
    """Tracks pending verifications by credential SAID.

    The pending map is guarded by a single lock held only for the map
    read-modify-write, never across an await, so ``resolve_verification`` may
    also be called from a worker thread. Results are handed to each observer
    on its own event loop.
    """

    def __init__(
        self,
        timeout_seconds: float = VERIFICATION_TIMEOUT_SECONDS,
        completed_ttl_seconds: float = COMPLETED_RESULT_TTL_SECONDS,
    ):
        self._timeout_seconds = timeout_seconds
        self._completed_ttl_seconds = completed_ttl_seconds
        self._pending: Dict[str, _PendingEntry] = {}
        self._lock = threading.Lock()
        self._completed: Dict[str, _CompletedEntry] = {}
        self._completed_lock = threading.Lock()

    @property
    def timeout_seconds(self) -> float:
        return self._timeout_seconds

    @property
    def timeout_ms(self) -> int:
        return int(self._timeout_seconds * 1000)

    # -------------------------------------------------------------------------
    # Blocking wait pattern (register / resolve)
    # -------------------------------------------------------------------------

    def register(
        self, credential_said: str, le_aid: str, le_lei: str
    ) -> "asyncio.Future[CompletedVerification]":
        """Register interest in the verification outcome for a credential.

        Must be called from a coroutine. The entry exists as soon as this
        returns, so callers register first and only then trigger the
        presentation whose webhook will resolve it.

        Args:
            credential_said: SAID of the credential being presented.
            le_aid: Legal entity AID (echoed in the result).
            le_lei: Legal entity LEI (echoed in the result).

        Returns:
            Future completing with the CompletedVerification, either from
            ``resolve_verification`` or from the deadline.

        Raises:
            RuntimeError: If no event loop is running in the calling thread.
                This is the only failure; the registry is left untouched.
        """
        loop = asyncio.get_running_loop()
        observer = _Observer(loop=loop, future=loop.create_future())

        with self._lock:
            entry = self._pending.get(credential_said)
            if entry is not None:
                entry.observers.append(observer)
                observer_count = len(entry.observers)
            else:
                entry = _PendingEntry(
                    credential_said=credential_said,
                    le_aid=le_aid,
                    le_lei=le_lei,
                    loop=loop,
                    start_time=time.monotonic(),
                    observers=[observer],
                )
                entry.timer = loop.call_later(
                    self._timeout_seconds, self._expire, credential_said, entry
                )
                self._pending[credential_said] = entry
                observer_count = 1

        if observer_count > 1:
            log.info(
                f"Attached to pending verification for {credential_said} "
                f"(observers={observer_count})",
                extra={"credential_said": credential_said},
            )
        else:
            log.info(
                f"Registered pending verification for {credential_said} "
                f"(timeout={self.timeout_ms}ms)",
                extra={"credential_said": credential_said},
            )
        return observer.future

    async def wait_for_verification(
        self, credential_said: str, le_aid: str, le_lei: str
    ) -> CompletedVerification:
        """Register and wait for the outcome."""
        return await self.register(credential_said, le_aid, le_lei)

    def resolve_verification(self, credential_said: str, verified: bool, revoked: bool) -> bool:
        """Resolve a pending verification with Sally's webhook result.

        Returns:
            True if an entry was pending for this SAID, False otherwise
            (duplicate or late callback; not an error).
        """
        with self._lock:
            entry = self._pending.pop(credential_said, None)

        if entry is None:
            log.info(
                f"No pending verification found for {credential_said}",
                extra={"credential_said": credential_said},
            )
            return False

        self._cancel_timer(entry)

        elapsed_ms = int((time.monotonic() - entry.start_time) * 1000)
        log.info(
            f"Resolving verification for {credential_said} "
            f"(verified={verified}, revoked={revoked}, elapsed={elapsed_ms}ms, "
            f"observers={len(entry.observers)})",
            extra={"credential_said": credential_said},
        )

        self._deliver(entry, CompletedVerification(
            verified=verified,
            revoked=revoked,
            le_aid=entry.le_aid,
            le_lei=entry.le_lei,
            credential_said=entry.credential_said,
            timestamp=iso_timestamp(),
        ))
        return True

    def pending_saids(self) -> List[str]:
        """Pending SAIDs (for debugging)."""
        with self._lock:
            return list(self._pending.keys())

    def _expire(self, credential_said: str, entry: _PendingEntry) -> None:
        """Deadline callback; no-op if the entry was already resolved."""
        with self._lock:
            if self._pending.get(credential_said) is not entry:
                return
            del self._pending[credential_said]

        log.warning(
            f"Verification timeout for {credential_said} after {self.timeout_ms}ms",
            extra={"credential_said": credential_said},
        )
        self._deliver(entry, CompletedVerification(
            verified=False,
            revoked=False,
            le_aid=entry.le_aid,
            le_lei=entry.le_lei,
            credential_said=entry.credential_said,
            timestamp=iso_timestamp(),
            error=f"Verification timeout after {self.timeout_ms}ms - no response from Sally",
        ))

    def _cancel_timer(self, entry: _PendingEntry) -> None:
        if entry.timer is None:
            return
        if _running_loop() is entry.loop:
            entry.timer.cancel()
            return
        try:
            entry.loop.call_soon_threadsafe(entry.timer.cancel)
        except RuntimeError:
            # Loop already closed; the timer can no longer fire
            pass

    def _deliver(self, entry: _PendingEntry, result: CompletedVerification) -> None:
        current = _running_loop()
        for observer in entry.observers:
            try:
                if observer.loop is current:
                    _set_result(observer.future, result)
                else:
                    observer.loop.call_soon_threadsafe(_set_result, observer.future, result)
            except RuntimeError as e:
                log.warning(
                    f"Failed to deliver verification result for {entry.credential_said}: {e}",
                    extra={"credential_said": entry.credential_said},
                )

    # -------------------------------------------------------------------------
    # Poll pattern (completed results)
    # -------------------------------------------------------------------------

    def store_completed(
        self,
        credential_said: str,
        verified: bool,
        revoked: bool,
        le_aid: str,
        le_lei: str,
        error: Optional[str] = None,
    ) -> CompletedVerification:
        """Store a completed verification result for polling.

        The entry is evicted after the retention window.
        """
        result = CompletedVerification(
            verified=verified,
            revoked=revoked,
            le_aid=le_aid,
            le_lei=le_lei,
            credential_said=credential_said,
            timestamp=iso_timestamp(),
            error=error,
        )
        now = time.monotonic()
        with self._completed_lock:
            self._purge_completed_locked(now)
            self._completed[credential_said] = _CompletedEntry(
                result=result,
                expires_at=now + self._completed_ttl_seconds,
            )
        return result

    def get_completed(self, credential_said: str) -> Optional[CompletedVerification]:
        """Get a completed verification result (non-blocking, for polling).

        Returns None when absent or past its retention window.
        """
        with self._completed_lock:
            entry = self._completed.get(credential_said)
            if entry is None:
                return None
            if entry.expires_at <= time.monotonic():
                del self._completed[credential_said]
                return None
            return entry.result

    def _purge_completed_locked(self, now: float) -> None:
        """Drop expired completed entries (caller must hold lock)."""
        expired = [said for said, e in self._completed.items() if e.expires_at <= now]
        for said in expired:
            del self._completed[said]

    @property
    def completed_count(self) -> int:
        with self._completed_lock:
            self._purge_completed_locked(time.monotonic())
            return len(self._completed)
