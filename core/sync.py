"""Synchronization controller.

Keeps the local Entity Store and the remote mirror in step with a simple
full-snapshot protocol:

- ``pull_all`` fetches the remote snapshot and replaces each local
  collection wholesale, but only when the remote collection is non-empty
  (an empty sheet means "no data yet", never "delete everything").
- ``push_all`` sends the full local snapshot; the later push wins.

Gateway calls are blocking, so they run in a worker thread with a bounded
timeout. A failed pull or push never touches local state; it only moves the
status to ``error``. Success and error revert to ``idle`` after a short
display interval.

Copyright (c) Bryn Gwalad 2025
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Iterable, Optional, Set, Tuple, Union

from api.models import Snapshot
from .codec import decode_snapshot, encode_snapshot
from .errors import TransportError
from .gateway import COLLECTIONS, MirrorGateway

logger = logging.getLogger("inventory.sync")


class SyncStatus(str, Enum):
    IDLE = "idle"
    SYNCING = "syncing"
    SUCCESS = "success"
    ERROR = "error"


class SyncMode(str, Enum):
    AUTO = "auto"  # push after every mutation
    MANUAL = "manual"  # push only on request


@dataclass
class SyncResult:
    ok: bool
    state: Optional[Snapshot] = None
    replaced: Tuple[str, ...] = ()
    error: Optional[str] = None


def reconcile(local: Snapshot, remote: Snapshot, keep: Iterable[str] = ()) -> Tuple[Snapshot, Tuple[str, ...]]:
    """Take each non-empty remote collection in place of the local one.

    Collections named in ``keep`` stay local regardless. Returns the merged
    snapshot and the names of the collections replaced.
    """
    keep = set(keep)
    update = {
        name: list(getattr(remote, name))
        for name in COLLECTIONS
        if name not in keep and getattr(remote, name)
    }
    return local.model_copy(update=update), tuple(update)


class SyncController:
    def __init__(
        self,
        gateway: MirrorGateway,
        store=None,
        mode: SyncMode = SyncMode.MANUAL,
        timeout: float = 30.0,
        status_reset: Optional[float] = 3.0,
    ):
        self.gateway = gateway
        self.store = store
        self.mode = SyncMode(mode)
        self.timeout = timeout
        self.status_reset = status_reset
        self.status = SyncStatus.IDLE
        self.last_sync: Optional[str] = store.get_last_sync() if store is not None else None
        self.last_error: Optional[str] = None
        self.pushes_started = 0
        self._generation = 0
        self._active = 0
        self._pending: Set[asyncio.Task] = set()

    @property
    def auto_push(self) -> bool:
        return self.mode == SyncMode.AUTO

    def _set_status(self, status: SyncStatus) -> None:
        self._generation += 1
        self.status = status
        if status in (SyncStatus.SUCCESS, SyncStatus.ERROR) and self.status_reset is not None:
            generation = self._generation
            asyncio.get_running_loop().call_later(self.status_reset, self._revert, generation)

    def _revert(self, generation: int) -> None:
        # a newer sync started meanwhile; leave its status alone
        if generation == self._generation:
            self.status = SyncStatus.IDLE

    def _begin(self) -> None:
        self._active += 1
        self._set_status(SyncStatus.SYNCING)

    def _settle(self, outcome: SyncStatus) -> None:
        self._active -= 1
        # overlapping pulls/pushes: stay "syncing" until the last one lands
        if self._active == 0:
            self._set_status(outcome)

    def _fail(self, action: str, exc: BaseException) -> SyncResult:
        if isinstance(exc, asyncio.TimeoutError):
            message = f"{action} timed out after {self.timeout}s"
        else:
            message = f"{action} failed: {exc}"
        logger.error("Cloud %s", message)
        self.last_error = message
        return SyncResult(ok=False, error=message)

    def _mark_synced(self) -> None:
        self.last_sync = datetime.now().isoformat(timespec="seconds")
        self.last_error = None
        if self.store is not None:
            self.store.set_last_sync(self.last_sync)

    async def _call(self, fn, *args):
        return await asyncio.wait_for(asyncio.to_thread(fn, *args), timeout=self.timeout)

    async def pull_all(
        self,
        local: Union[Snapshot, Callable[[], Snapshot]],
        keep: Iterable[str] = (),
    ) -> SyncResult:
        """Fetch the remote snapshot and merge it over the local state.

        ``local`` may be a callable; it is read once the fetch completes, so
        mutations applied while the request was in flight are the merge
        base. ``keep`` names collections that must stay local (it is also
        read after the fetch). On success the merged state is persisted (only
        the replaced collections) and returned in the result; on failure the
        local state is returned unchanged.
        """
        current = local if callable(local) else (lambda: local)
        self._begin()
        outcome = SyncStatus.ERROR
        try:
            logger.info("Pulling snapshot from %s mirror", self.gateway.name)
            try:
                payload = await self._call(self.gateway.fetch_snapshot)
                remote = decode_snapshot(payload)
            except (TransportError, ValueError, OSError, asyncio.TimeoutError) as exc:
                result = self._fail("pull", exc)
                result.state = current()
                return result

            keep = set(keep)
            if keep:
                logger.info("Keeping local %s changed during pull", ", ".join(sorted(keep)))
            merged, replaced = reconcile(current(), remote, keep)
            if self.store is not None and replaced:
                self.store.save(merged, replaced)
            self._mark_synced()
            outcome = SyncStatus.SUCCESS
            logger.info("Pull complete; replaced %s", ", ".join(replaced) or "nothing")
            return SyncResult(ok=True, state=merged, replaced=replaced)
        finally:
            self._settle(outcome)

    async def push_all(self, snapshot: Snapshot) -> SyncResult:
        """Send the full snapshot to the mirror.

        The gateway gives no per-row acknowledgement, so completion without a
        transport error counts as success.
        """
        self.pushes_started += 1
        sequence = self.pushes_started
        payload = encode_snapshot(snapshot)
        self._begin()
        outcome = SyncStatus.ERROR
        try:
            logger.info(
                "Pushing snapshot #%s to %s mirror (%d warehouses, %d items, %d logs)",
                sequence,
                self.gateway.name,
                len(payload["warehouses"]),
                len(payload["items"]),
                len(payload["logs"]),
            )
            try:
                await self._call(self.gateway.push_snapshot, payload)
            except (TransportError, ValueError, OSError, asyncio.TimeoutError) as exc:
                return self._fail("push", exc)
            self._mark_synced()
            outcome = SyncStatus.SUCCESS
            return SyncResult(ok=True, state=snapshot)
        finally:
            self._settle(outcome)

    def schedule_push(self, snapshot: Snapshot) -> Optional[asyncio.Task]:
        """Start a background push when in auto mode. Must run on the event loop.

        The push is not awaited; a later mutation may start another push
        before this one lands.
        """
        if not self.auto_push:
            return None
        task = asyncio.get_running_loop().create_task(self.push_all(snapshot))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def wait_idle(self) -> None:
        """Wait for every in-flight background push to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def describe(self) -> dict:
        return {
            "status": self.status.value,
            "mode": self.mode.value,
            "backend": self.gateway.name,
            "last_sync": self.last_sync,
            "last_error": self.last_error,
            "pending_pushes": len(self._pending),
            "in_flight": self._active,
        }
