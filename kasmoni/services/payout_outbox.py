"""Pending write outbox for toggle recomputes.

While a slot's detail view is open every toggle change triggers a recompute
and a cache write. Rapid changes must not queue one write per intermediate
state: the outbox holds at most one pending toggle state per slot, each
``submit`` replaces it and restarts the debounce timer, and only the newest
state is written.

Each slot also carries the record version its writes expect. The outbox
advances it after every successful write of its own, so consecutive debounced
writes from one view never conflict with each other, while a write from
another session makes the next one fail with ``ConcurrentEditError``.

Writes are serialized through one lock because the writer usually shares a
single ``AsyncSession``.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from kasmoni.services.config import get_settings
from kasmoni.services.deduction_service import PayoutToggles
from kasmoni.services.errors import ConcurrentEditError

logger = logging.getLogger(__name__)

Writer = Callable[[int, PayoutToggles, Optional[int]], Awaitable[Any]]


class PayoutWriteOutbox:
    """Single-entry-per-slot outbox with debounced, replace-on-submit writes."""

    def __init__(self, writer: Writer, delay: Optional[float] = None):
        """
        Args:
            writer: Coroutine ``(slot_id, toggles, expected_version)``,
                typically ``PayoutRecordService.recompute_and_persist``
            delay: Debounce delay in seconds (default from settings)
        """
        self._writer = writer
        self._delay = get_settings().recompute_debounce_seconds if delay is None else delay
        self._pending: dict[int, PayoutToggles] = {}
        self._versions: dict[int, int] = {}
        self._timers: dict[int, asyncio.Task] = {}
        self._write_lock = asyncio.Lock()

    def pending(self, slot_id: int) -> Optional[PayoutToggles]:
        """Toggles waiting to be written for a slot, if any."""
        return self._pending.get(slot_id)

    def has_pending(self) -> bool:
        return bool(self._pending)

    def known_version(self, slot_id: int) -> Optional[int]:
        """Record version the next write for the slot expects."""
        return self._versions.get(slot_id)

    def submit(
        self, slot_id: int, toggles: PayoutToggles, expected_version: Optional[int] = None
    ) -> None:
        """
        Replace the slot's pending toggles and restart its debounce timer.

        Args:
            slot_id: Slot being edited
            toggles: Newest toggle state
            expected_version: Version the caller loaded; versions only grow,
                so an older one than the outbox already knows is ignored

        Must be called from a running event loop.
        """
        self._pending[slot_id] = toggles
        if expected_version is not None:
            self._versions[slot_id] = max(self._versions.get(slot_id, expected_version), expected_version)
        self._cancel_timer(slot_id)
        self._timers[slot_id] = asyncio.get_running_loop().create_task(self._delayed_write(slot_id))

    def _cancel_timer(self, slot_id: int) -> None:
        # Timers leave the map before writing, so only sleeping timers are cancelled
        timer = self._timers.pop(slot_id, None)
        if timer is not None and not timer.done():
            timer.cancel()

    async def _delayed_write(self, slot_id: int) -> None:
        await asyncio.sleep(self._delay)
        if self._timers.get(slot_id) is asyncio.current_task():
            del self._timers[slot_id]
        try:
            await self._write(slot_id)
        except Exception as e:
            logger.error(f"Debounced payout write for slot {slot_id} failed: {e}", exc_info=True)

    async def _write(self, slot_id: int) -> Any:
        async with self._write_lock:
            toggles = self._pending.pop(slot_id, None)
            if toggles is None:
                return None
            try:
                result = await self._writer(slot_id, toggles, self._versions.get(slot_id))
            except ConcurrentEditError:
                # Retrying a stale state would fail again; the view has to reload
                self._versions.pop(slot_id, None)
                raise
            except Exception:
                # Keep the failed state for the next flush unless a newer one arrived
                self._pending.setdefault(slot_id, toggles)
                raise
            version = getattr(result, "version", None)
            if version is not None and slot_id in self._versions:
                self._versions[slot_id] = version
            return result

    async def flush(self, slot_id: Optional[int] = None) -> None:
        """
        Write pending toggles now (one slot, or all).

        Called before a detail view closes so its last toggle state is stored.

        Raises:
            Whatever the writer raised; the failed state stays pending unless
            it was rejected as stale
        """
        slot_ids = [slot_id] if slot_id is not None else list(self._pending)
        for pending_slot_id in slot_ids:
            self._cancel_timer(pending_slot_id)
            await self._write(pending_slot_id)
        logger.debug(f"Flushed payout outbox for {len(slot_ids)} slot(s)")

    def cancel(self, slot_id: Optional[int] = None) -> None:
        """Drop pending toggles and tracked versions without writing."""
        slot_ids = [slot_id] if slot_id is not None else list(set(self._pending) | set(self._versions))
        for pending_slot_id in slot_ids:
            self._cancel_timer(pending_slot_id)
            self._pending.pop(pending_slot_id, None)
            self._versions.pop(pending_slot_id, None)


__all__ = ["PayoutWriteOutbox"]
