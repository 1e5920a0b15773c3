"""Dual-tier persistence: a primary store plus a best-effort mirror.

The primary store is authoritative for the running process and every write
to it must succeed. The mirror is an eventually-consistent backup with
last-write-wins semantics: its failures are reported, never raised.

Mirror calls for one collection run strictly in submission order. Each
collection has a FIFO queue drained by one worker task, and the worker runs
the blocking mirror call on a single-threaded executor reserved for that
collection, so even a call that timed out still finishes before the next
one starts.
"""

from __future__ import annotations

import asyncio
import json
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable

from ..errors import PrimaryStoreError
from .mirror import ACCOUNT_PRINCIPALS, INVESTMENT_LOGS, PORTFOLIO_ASSETS, SETTINGS_PREFIX, MirrorStore
from .notifications import ChangeNotifier
from .repository import Repository

# When True, print progress for successful mirror operations as well as failures.
verbose: bool = False

COLLECTIONS = (PORTFOLIO_ASSETS, INVESTMENT_LOGS, ACCOUNT_PRINCIPALS)

# Primary-only index of the setting keys written so far; never mirrored.
SETTING_KEYS = "setting_keys"


def empty_value(collection: str) -> Any:
    """The value a collection has before anything was stored."""
    if collection == ACCOUNT_PRINCIPALS:
        return {}
    if collection.startswith(SETTINGS_PREFIX):
        return None
    return []


def _is_empty(value: Any) -> bool:
    return value is None or (isinstance(value, (list, dict, str)) and len(value) == 0)


def _frozen_copy(value: Any) -> Any:
    """Deep copy through JSON, so a queued mirror write can't see later mutations."""
    return json.loads(json.dumps(value))


@dataclass(frozen=True)
class MirrorResult:
    """Outcome of one mirror call: "synced", "skipped" or "failed"."""

    status: str
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status != "failed"


@dataclass
class SaveOutcome:
    """Result of a committed write.

    The primary write has always succeeded by the time an outcome exists.
    The mirror write may still be in flight; await wait_for_mirror() when
    confirmation is needed.
    """

    collection: str
    source: str = "primary"
    mirror_future: asyncio.Future | None = field(default=None, repr=False)

    @property
    def success(self) -> bool:
        return True

    @property
    def mirror_pending(self) -> bool:
        return self.mirror_future is not None and not self.mirror_future.done()

    @property
    def mirror_result(self) -> MirrorResult | None:
        if self.mirror_future is None:
            return MirrorResult("skipped")
        if not self.mirror_future.done():
            return None
        return self.mirror_future.result()

    @property
    def mirror_failed(self) -> bool | None:
        """True if the mirror write failed, None while it is still pending."""
        result = self.mirror_result
        return None if result is None else not result.ok

    @property
    def mirror_error(self) -> str | None:
        result = self.mirror_result
        return result.error if result is not None else None

    async def wait_for_mirror(self) -> MirrorResult:
        if self.mirror_future is None:
            return MirrorResult("skipped")
        return await asyncio.shield(self.mirror_future)


@dataclass
class _MirrorJob:
    description: str
    call: Callable[..., Any]
    args: tuple
    future: asyncio.Future


class PersistenceGateway:
    """Loads and saves named collections across a primary store and a mirror."""

    def __init__(
        self,
        primary: Repository,
        mirror: MirrorStore | None = None,
        mirror_timeout: float = 10.0,
        notifier: ChangeNotifier | None = None,
        max_pending: int = 100,
    ):
        """Initialize the gateway.

        Args:
            primary: The authoritative store.
            mirror: Optional secondary store.
            mirror_timeout: Seconds after which a mirror call counts as failed.
            notifier: Receives a ChangeEvent after every primary write.
            max_pending: Bound of each collection's mirror queue; save()
                waits for room when a queue is full.
        """
        self.primary = primary
        self.mirror = mirror
        self.mirror_timeout = mirror_timeout
        self.notifier = notifier or ChangeNotifier()
        self.max_pending = max_pending
        self._loop: asyncio.AbstractEventLoop | None = None
        self._queues: dict[str, asyncio.Queue] = {}
        self._workers: dict[str, asyncio.Task] = {}
        self._executors: dict[str, ThreadPoolExecutor] = {}

    # ── Mirror plumbing ──────────────────────────────────

    def mirror_available(self) -> bool:
        if self.mirror is None:
            return False
        try:
            return bool(self.mirror.is_available())
        except Exception as e:
            print(f"[Mirror] Availability check failed: {e}", flush=True)
            return False

    def _ensure_loop(self) -> None:
        """Drop queues and workers that belong to an event loop no longer running."""
        loop = asyncio.get_running_loop()
        if self._loop is not loop:
            self._loop = loop
            self._queues = {}
            self._workers = {}

    def _executor_for(self, collection: str) -> ThreadPoolExecutor:
        if collection not in self._executors:
            self._executors[collection] = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"mirror-{collection}")
        return self._executors[collection]

    async def _call_mirror(self, collection: str, description: str, call: Callable[..., Any], *args: Any) -> tuple[MirrorResult, Any]:
        loop = asyncio.get_running_loop()
        try:
            value = await asyncio.wait_for(
                loop.run_in_executor(self._executor_for(collection), call, *args),
                timeout=self.mirror_timeout,
            )
        except asyncio.TimeoutError:
            message = f"timed out after {self.mirror_timeout}s"
            print(f"[Mirror] {description} {message}", flush=True)
            return MirrorResult("failed", message), None
        except Exception as e:
            print(f"[Mirror] {description} failed: {e}", flush=True)
            return MirrorResult("failed", str(e)), None

        if verbose:
            print(f"[Mirror] {description} done", flush=True)
        return MirrorResult("synced"), value

    async def _drain(self, collection: str, queue: asyncio.Queue) -> None:
        while True:
            job: _MirrorJob = await queue.get()
            try:
                result, _ = await self._call_mirror(collection, job.description, job.call, *job.args)
                if not job.future.done():
                    job.future.set_result(result)
            finally:
                queue.task_done()

    async def _enqueue(self, collection: str, description: str, call: Callable[..., Any], *args: Any) -> asyncio.Future:
        self._ensure_loop()
        if collection not in self._queues:
            queue: asyncio.Queue = asyncio.Queue(maxsize=self.max_pending)
            self._queues[collection] = queue
            self._workers[collection] = asyncio.create_task(self._drain(collection, queue))
        future = asyncio.get_running_loop().create_future()
        await self._queues[collection].put(_MirrorJob(description, call, args, future))
        return future

    async def _wait_idle(self, collection: str) -> None:
        self._ensure_loop()
        queue = self._queues.get(collection)
        if queue is not None:
            await queue.join()

    # ── Primary plumbing ─────────────────────────────────

    def read_primary(self, collection: str) -> Any:
        value = self.primary.read(collection)
        return empty_value(collection) if value is None else value

    def _write_primary(self, collection: str, value: Any) -> None:
        try:
            self.primary.write(collection, value)
        except Exception as e:
            raise PrimaryStoreError(collection, e) from e

    async def _commit(
        self,
        collection: str,
        value: Any,
        description: str,
        mirror_call: Callable[..., Any] | None,
        mirror_args: tuple,
        wait_for_mirror: bool,
    ) -> SaveOutcome:
        self._write_primary(collection, value)
        if verbose:
            print(f"[Storage] Saved '{collection}' to primary store", flush=True)
        self.notifier.publish(collection, value)

        outcome = SaveOutcome(collection=collection)
        if mirror_call is not None and self.mirror_available():
            outcome.mirror_future = await self._enqueue(collection, description, mirror_call, *mirror_args)
            outcome.source = "primary+mirror"
            if wait_for_mirror:
                await outcome.wait_for_mirror()
        return outcome

    # ── Public API ───────────────────────────────────────

    async def load(self, collection: str) -> Any:
        """
        Load a collection, preferring the mirror.

        If the mirror is available and returns a non-empty value, that value
        overwrites the primary store (cache-fill) and is returned. If the
        mirror is unavailable, fails, times out or is empty, the primary
        store's last value is returned.

        Pending mirror writes for the collection are awaited first, so a
        load never reads back a mirror value older than the last save.
        """
        if self.mirror_available():
            await self._wait_idle(collection)
            result, mirrored = await self._call_mirror(collection, f"load {collection}", self.mirror.get_all, collection)  # type: ignore[union-attr]
            if result.ok and not _is_empty(mirrored):
                try:
                    self.primary.write(collection, mirrored)
                except Exception as e:
                    print(f"[Storage] Could not cache '{collection}' from mirror: {e}", flush=True)
                return mirrored
            if result.ok and verbose:
                print(f"[Storage] Mirror has no '{collection}', using primary store", flush=True)
        return self.read_primary(collection)

    async def save(self, collection: str, value: Any, wait_for_mirror: bool = False) -> SaveOutcome:
        """
        Write a collection to the primary store, then queue a mirror sync.

        Raises:
            PrimaryStoreError: If the primary write failed. Nothing is
                broadcast or mirrored in that case.
        """
        return await self._commit(
            collection,
            value,
            f"sync {collection}",
            self.mirror.sync_all if self.mirror is not None else None,
            (collection, _frozen_copy(value)),
            wait_for_mirror,
        )

    async def add_position(self, record: dict[str, Any], wait_for_mirror: bool = False) -> SaveOutcome:
        """Insert or replace one position record (matched by symbol)."""
        records = [r for r in self.read_primary(PORTFOLIO_ASSETS) if r.get("symbol") != record["symbol"]]
        records.append(record)
        return await self._commit(
            PORTFOLIO_ASSETS,
            records,
            f"add position {record['symbol']}",
            self.mirror.add_position if self.mirror is not None else None,
            (_frozen_copy(record),),
            wait_for_mirror,
        )

    async def delete_position(self, symbol: str, wait_for_mirror: bool = False) -> SaveOutcome:
        records = [r for r in self.read_primary(PORTFOLIO_ASSETS) if r.get("symbol") != symbol]
        return await self._commit(
            PORTFOLIO_ASSETS,
            records,
            f"delete position {symbol}",
            self.mirror.delete_position if self.mirror is not None else None,
            (symbol,),
            wait_for_mirror,
        )

    async def bulk_delete_positions(self, symbols: list[str], wait_for_mirror: bool = False) -> SaveOutcome:
        doomed = set(symbols)
        records = [r for r in self.read_primary(PORTFOLIO_ASSETS) if r.get("symbol") not in doomed]
        return await self._commit(
            PORTFOLIO_ASSETS,
            records,
            f"delete {len(doomed)} positions",
            self.mirror.bulk_delete_positions if self.mirror is not None else None,
            (list(symbols),),
            wait_for_mirror,
        )

    async def save_account_principal(self, account: str, record: dict[str, Any], wait_for_mirror: bool = False) -> SaveOutcome:
        principals = dict(self.read_primary(ACCOUNT_PRINCIPALS))
        principals[account] = record
        return await self.save(ACCOUNT_PRINCIPALS, principals, wait_for_mirror=wait_for_mirror)

    async def delete_account_principal(self, account: str, wait_for_mirror: bool = False) -> SaveOutcome:
        principals = dict(self.read_primary(ACCOUNT_PRINCIPALS))
        principals.pop(account, None)
        return await self.save(ACCOUNT_PRINCIPALS, principals, wait_for_mirror=wait_for_mirror)

    async def get_setting(self, key: str, default: Any = None) -> Any:
        value = await self.load(SETTINGS_PREFIX + key)
        return default if value is None else value

    async def set_setting(self, key: str, value: Any, wait_for_mirror: bool = False) -> SaveOutcome:
        outcome = await self.save(SETTINGS_PREFIX + key, value, wait_for_mirror=wait_for_mirror)
        keys = self.setting_keys()
        if key not in keys:
            self._write_primary(SETTING_KEYS, keys + [key])
        return outcome

    def setting_keys(self) -> list[str]:
        """Keys of the settings written through this gateway's primary store."""
        return list(self.read_primary(SETTING_KEYS))

    def collections(self) -> tuple[str, ...]:
        """The fixed collections followed by one entry per stored setting."""
        return COLLECTIONS + tuple(SETTINGS_PREFIX + key for key in self.setting_keys())

    def sync_status(self) -> dict[str, Any]:
        """Describe the mirror and which collections hold primary data."""
        return {
            "mirror": self.mirror.name if self.mirror is not None else None,
            "mirrorAvailable": self.mirror_available(),
            "hasPrimaryData": {name: self.primary.has(name) for name in self.collections()},
            "pendingMirrorWrites": {name: queue.qsize() for name, queue in self._queues.items()},
        }

    async def migrate_to_mirror(self) -> dict[str, MirrorResult]:
        """Push every collection and setting held by the primary store to the mirror.

        Returns:
            Result per collection. Collections without primary data are
            "skipped"; everything is "skipped" when there is no mirror.
        """
        report: dict[str, MirrorResult] = {}
        if not self.mirror_available():
            return {name: MirrorResult("skipped", "mirror not available") for name in self.collections()}

        futures = {}
        for name in self.collections():
            value = self.primary.read(name)
            if _is_empty(value):
                report[name] = MirrorResult("skipped")
                continue
            futures[name] = await self._enqueue(name, f"migrate {name}", self.mirror.sync_all, name, _frozen_copy(value))  # type: ignore[union-attr]

        for name, future in futures.items():
            report[name] = await future
            print(f"[Mirror] Migrated '{name}': {report[name].status}", flush=True)
        return report

    async def flush(self) -> None:
        """Wait until every queued mirror write has finished."""
        self._ensure_loop()
        for queue in list(self._queues.values()):
            await queue.join()

    async def close(self) -> None:
        """Flush pending mirror writes and stop the workers."""
        await self.flush()
        for task in self._workers.values():
            task.cancel()
        for task in self._workers.values():
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._workers = {}
        self._queues = {}
        for executor in self._executors.values():
            executor.shutdown(wait=False)
        self._executors = {}
