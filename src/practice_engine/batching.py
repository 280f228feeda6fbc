"""Request coalescing and windowed batching for store look-ups.

どちらもグローバルなシングルトンにはせず、明示的に生成してサービスへ
注入する（テストごとに独立したインスタンスを使えるようにするため）。

- RequestCoalescer: 同一キーの同時取得を1回の取得にまとめる
- BatchOptimizer: 個別の ID 取得を時間窓/件数上限でまとめて1回のバルク取得にする
"""

from __future__ import annotations

import asyncio
import threading
import time
from collections.abc import Awaitable, Callable, Hashable, Mapping
from dataclasses import dataclass, field
from functools import partial
from typing import Generic, TypeVar

from .errors import BatchAbandonedError
from .logging import logger


T = TypeVar("T")

DEFAULT_WINDOW_MS = 10.0
DEFAULT_MAX_BATCH_SIZE = 100


class RequestCoalescer(Generic[T]):
    """Share one in-flight fetch among concurrent callers of the same key.

    取得完了（成功/失敗とも）でキーを破棄するため、結果をキャッシュはしない。
    呼び出し側のキャンセルは共有タスクには波及しない。
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._in_flight: dict[Hashable, asyncio.Future[T]] = {}

    @property
    def in_flight(self) -> int:
        with self._lock:
            return len(self._in_flight)

    async def coalesce(self, key: Hashable, fetcher: Callable[[], Awaitable[T]]) -> T:
        with self._lock:
            task = self._in_flight.get(key)
            joined = task is not None
            if task is None:
                task = asyncio.ensure_future(fetcher())
                self._in_flight[key] = task
                task.add_done_callback(partial(self._evict, key))
        if joined:
            logger.debug("request_coalesced", key=str(key))
        return await asyncio.shield(task)

    def _evict(self, key: Hashable, task: asyncio.Future[T]) -> None:
        with self._lock:
            if self._in_flight.get(key) is task:
                del self._in_flight[key]


BulkFetcher = Callable[[Hashable, list[str]], Awaitable[Mapping[str, T | None]]]


@dataclass
class _PendingBatch(Generic[T]):
    waiters: dict[str, list[asyncio.Future[T | None]]] = field(default_factory=dict)
    timer: asyncio.TimerHandle | None = None


class BatchOptimizer(Generic[T]):
    """Collect point look-ups per collection and resolve them with one bulk fetch.

    - 最初の要求から window_ms 経過、またはユニーク ID 数が max_batch_size に
      達した時点でフラッシュする
    - バルク取得が失敗した場合、そのバッチの全待機者へ同じ例外を返す
    - aclose() 時点で未実行のバッチは BatchAbandonedError で全待機者を解放する
    """

    def __init__(
        self,
        fetch_many: BulkFetcher[T],
        *,
        window_ms: float = DEFAULT_WINDOW_MS,
        max_batch_size: int = DEFAULT_MAX_BATCH_SIZE,
    ) -> None:
        if window_ms < 0:
            raise ValueError("window_ms must be >= 0")
        if max_batch_size <= 0:
            raise ValueError("max_batch_size must be positive")
        self._fetch_many = fetch_many
        self._window_seconds = window_ms / 1000.0
        self._max_batch_size = max_batch_size
        self._lock = threading.Lock()
        self._pending: dict[Hashable, _PendingBatch[T]] = {}
        self._running: set[asyncio.Task[None]] = set()

    async def batch_find_by_id(self, collection: Hashable, item_id: str) -> T | None:
        loop = asyncio.get_running_loop()
        future: asyncio.Future[T | None] = loop.create_future()
        full_batch: _PendingBatch[T] | None = None
        with self._lock:
            batch = self._pending.get(collection)
            if batch is None:
                batch = _PendingBatch()
                batch.timer = loop.call_later(
                    self._window_seconds, self._flush, collection, batch
                )
                self._pending[collection] = batch
            batch.waiters.setdefault(item_id, []).append(future)
            if len(batch.waiters) >= self._max_batch_size:
                full_batch = batch
        if full_batch is not None:
            self._flush(collection, full_batch)
        return await future

    def _flush(self, collection: Hashable, batch: _PendingBatch[T]) -> None:
        with self._lock:
            if self._pending.get(collection) is not batch:
                return
            del self._pending[collection]
        if batch.timer is not None:
            batch.timer.cancel()
        task = asyncio.get_running_loop().create_task(self._run(collection, batch))
        self._running.add(task)
        task.add_done_callback(self._running.discard)

    async def _run(self, collection: Hashable, batch: _PendingBatch[T]) -> None:
        ids = list(batch.waiters)
        started = time.perf_counter()
        try:
            results = await self._fetch_many(collection, ids)
        except asyncio.CancelledError:
            _reject(batch, BatchAbandonedError(f"batch for {collection!r} was cancelled"))
            raise
        except Exception as exc:
            logger.warning(
                "batch_fetch_failed",
                collection=str(collection),
                size=len(ids),
                error=str(exc),
                error_class=exc.__class__.__name__,
            )
            _reject(batch, exc)
            return
        logger.debug(
            "batch_flush",
            collection=str(collection),
            size=len(ids),
            latency_ms=(time.perf_counter() - started) * 1000,
        )
        for item_id, futures in batch.waiters.items():
            value = results.get(item_id)
            for future in futures:
                if not future.done():
                    future.set_result(value)

    async def flush_all(self) -> None:
        """Flush every pending batch now and wait for the bulk fetches."""

        with self._lock:
            pending = list(self._pending.items())
        for collection, batch in pending:
            self._flush(collection, batch)
        running = list(self._running)
        if running:
            await asyncio.gather(*running, return_exceptions=True)

    async def aclose(self) -> None:
        """Reject waiters of batches that have not started, then drain running ones."""

        with self._lock:
            pending = list(self._pending.values())
            self._pending.clear()
        for batch in pending:
            if batch.timer is not None:
                batch.timer.cancel()
            _reject(batch, BatchAbandonedError("batch optimizer closed"))
        running = list(self._running)
        if running:
            await asyncio.gather(*running, return_exceptions=True)


def _reject(batch: _PendingBatch[T], exc: BaseException) -> None:
    for futures in batch.waiters.values():
        for future in futures:
            if not future.done():
                future.set_exception(exc)
