"""
Live runner (asyncio).

  - one ingestion task per instrument pushes raw events into a bounded queue;
    when the queue is full the producer waits (nothing is dropped, order kept)
  - one pipeline task per instrument runs the session cycle for its events
  - one execution task polls the adapter and routes reports to the owning
    instrument's queue

Every session mutation happens under one lock, in a worker thread, so adapter
I/O never blocks the event loop.
"""

from __future__ import annotations
import asyncio
import logging
from collections import defaultdict, deque
from datetime import datetime
from typing import Any, AsyncIterable, AsyncIterator, Callable, Deque, Dict, List, Mapping, Optional

from trading_engine.core.types import Bar, ExecutionReport, OrderStatus, Trade
from trading_engine.data.feed import RawEvent
from trading_engine.runtime.session import CycleResult, TradingSession

logger = logging.getLogger("trading_engine.live")

_MARKET = "market"
_REPORTS = "reports"
_STOP = "stop"


async def poll_klines(
    fetch: Callable[[], List[Bar]],
    interval_seconds: float,
    stop: Optional[asyncio.Event] = None,
    after: Optional[datetime] = None,
) -> AsyncIterator[Bar]:
    """
    Poll closed klines (e.g. BinanceFuturesAdapter.get_klines with a small limit)
    and yield each bar once, oldest first, skipping anything at or before `after`.
    """
    last = after
    while stop is None or not stop.is_set():
        try:
            bars = await asyncio.to_thread(fetch)
        except Exception as e:  # network hiccup: keep polling
            logger.warning("Kline poll failed: %s", e)
            bars = []
        for bar in bars:
            if last is None or bar.open_time > last:
                last = bar.open_time
                yield bar
        await asyncio.sleep(interval_seconds)


class LiveRunner:
    def __init__(
        self,
        session: TradingSession,
        sources: Mapping[str, AsyncIterable[RawEvent]],
        queue_size: Optional[int] = None,
        poll_interval: Optional[float] = None,
        notifier: Optional[Callable[[str], Any]] = None,
    ):
        self.session = session
        self.context = session.context
        cfg = self.context.config
        for inst in sources:
            self.context.require_instrument(inst)
        self.sources = dict(sources)
        self.queue_size = queue_size or cfg.queue_size
        self.poll_interval = poll_interval if poll_interval is not None else cfg.poll_interval_s
        self.notifier = notifier
        self.queues: Dict[str, asyncio.Queue] = {}
        # most recent cycles only; a live process runs indefinitely
        self.results: Deque[CycleResult] = deque(maxlen=cfg.live_history)
        self._lock = asyncio.Lock()
        self._stop = asyncio.Event()

    # --- tasks ---

    async def _ingest(self, instrument: str, source: AsyncIterable[RawEvent]) -> None:
        queue = self.queues[instrument]
        async for raw in source:
            if self.context.cancelled:
                break
            await queue.put((_MARKET, raw))  # waits while the pipeline is behind
        logger.info("%s: feed ended", instrument)

    async def _pipeline(self, instrument: str) -> None:
        queue = self.queues[instrument]
        while True:
            kind, payload = await queue.get()
            try:
                if kind == _STOP:
                    return
                if kind == _REPORTS:
                    await self._apply_reports(payload)
                elif not self.context.cancelled:
                    await self._apply_market(instrument, payload)
            finally:
                queue.task_done()
            if self.context.cancelled:
                return

    async def _apply_market(self, instrument: str, raw: RawEvent) -> None:
        async with self._lock:
            results = await asyncio.to_thread(self.session.feed, raw, instrument)
        for result in results:
            self.results.append(result)
            await self._notify_cycle(result)

    async def _apply_reports(self, reports: List[ExecutionReport]) -> None:
        async with self._lock:
            trades = await asyncio.to_thread(self.session.process_reports, reports)
        await self._notify_reports(reports, trades)

    async def _execution(self) -> None:
        while not self._stop.is_set():
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.poll_interval)
                return
            except asyncio.TimeoutError:
                pass
            async with self._lock:
                reports = await asyncio.to_thread(self.session.adapter.poll)
            by_instrument: Dict[str, List[ExecutionReport]] = defaultdict(list)
            for r in reports:
                by_instrument[r.instrument].append(r)
            for inst, batch in by_instrument.items():
                await self._route(inst, batch)

    async def _route(self, instrument: str, batch: List[ExecutionReport]) -> None:
        """Queue reports behind the instrument's pending bars; book directly once its pipeline is gone."""
        queue = self.queues.get(instrument)
        while queue is not None and not self.context.cancelled:
            try:
                await asyncio.wait_for(queue.put((_REPORTS, batch)), timeout=0.1)
                return
            except asyncio.TimeoutError:
                continue
        await self._apply_reports(batch)

    async def _watch_cancel(self, ingest: List[asyncio.Task]) -> None:
        while not self._stop.is_set():
            if self.context.cancelled:
                for task in ingest:
                    task.cancel()
                return
            await asyncio.sleep(0.05)

    # --- notifications ---

    async def _send(self, text: str) -> None:
        if self.notifier is None:
            return
        try:
            await asyncio.to_thread(self.notifier, text)
        except Exception as e:  # a notifier outage must not stop trading
            logger.warning("Notifier failed: %s", e)

    async def _notify_cycle(self, result: CycleResult) -> None:
        await self._notify_reports(result.reports, result.trades)

    async def _notify_reports(self, reports: List[ExecutionReport], trades: List[Trade]) -> None:
        for r in reports:
            if r.fill is not None:
                f = r.fill
                await self._send(f"FILL {f.instrument} {f.side.value} {f.quantity} @ {f.price:.6g}")
            elif r.status in (OrderStatus.REJECTED, OrderStatus.CANCELLED):
                await self._send(f"{r.status.value} {r.instrument} {r.order_id}: {r.reason}")
        for t in trades:
            await self._send(
                f"CLOSED {t.instrument} {t.side.value} pnl={t.pnl:.2f} ({t.exit_reason})"
            )

    # --- entry point ---

    async def run(self) -> Dict[str, Any]:
        """Run until every feed ends or the context is cancelled; returns the session snapshot."""
        self.queues = {inst: asyncio.Queue(maxsize=self.queue_size) for inst in self.sources}
        ingest = [
            asyncio.create_task(self._ingest(inst, src), name=f"ingest-{inst}")
            for inst, src in self.sources.items()
        ]
        pipes = [asyncio.create_task(self._pipeline(inst), name=f"pipeline-{inst}") for inst in self.sources]
        execution = asyncio.create_task(self._execution(), name="execution")
        watcher = asyncio.create_task(self._watch_cancel(ingest), name="cancel-watch")
        logger.info("Live run %s started for %s", self.context.run_id, ", ".join(self.sources))
        try:
            for outcome in await asyncio.gather(*ingest, return_exceptions=True):
                if isinstance(outcome, Exception):
                    logger.error("Feed failed: %s", outcome)
            if not self.context.cancelled:
                for queue in self.queues.values():
                    await queue.put((_STOP, None))
            self._release_pipelines()
            await asyncio.gather(*pipes)
        except asyncio.CancelledError:
            self.context.cancel()
            raise
        finally:
            self._stop.set()
            self._release_pipelines()
            await asyncio.gather(*pipes, execution, watcher, return_exceptions=True)
            await self._drain_reports()
            async with self._lock:
                await asyncio.to_thread(self.session.shutdown, "cancelled" if self.context.cancelled else "feed end")
        logger.info("Live run %s stopped (%d bars)", self.context.run_id, self.context.stats["bars"])
        return self.session.snapshot()

    def _release_pipelines(self) -> None:
        """Wake pipelines blocked on an empty queue after a cancel."""
        if not self.context.cancelled:
            return
        for queue in self.queues.values():
            try:
                queue.put_nowait((_STOP, None))
            except asyncio.QueueFull:
                pass  # the pipeline sees the cancel flag on its next item

    async def _drain_reports(self) -> None:
        """Book reports still queued when the pipelines stopped; market events are discarded."""
        for queue in self.queues.values():
            while not queue.empty():
                kind, payload = queue.get_nowait()
                if kind == _REPORTS:
                    await self._apply_reports(payload)
