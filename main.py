"""Entry point wiring for the pool sniper pipeline."""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass, field
from logging.handlers import RotatingFileHandler
from typing import AsyncIterable, Mapping

import config
from chain.interfaces import Dex, SwapBuilder, TransactionSigner
from chain.sui_rpc import SellTxBuilder, SuiDryRunSimulator, SuiRpcClient, SuiTransactionSubmitter
from config import APP_LOG_FILE, LOG_DIR, LOG_LEVEL
from database.db import TradeJournal
from security.collectors import RiskSignalCollector
from security.honeypot import HoneypotDetector
from security.scorer import SecurityScorer
from trading.exit_monitor import ExitMonitor
from trading.mev_protection import MEVProtection
from trading.models import PoolCandidate, TradeConfig
from trading.task_queue import TaskQueue, TaskQueueDelayed
from trading.trade_controller import TradeController
from utils.http_client import ResilientHttpClient


def configure_logging() -> None:
    os.makedirs(LOG_DIR, exist_ok=True)
    formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    file_handler = RotatingFileHandler(APP_LOG_FILE, maxBytes=1_000_000, backupCount=5, encoding="utf-8")
    file_handler.setFormatter(formatter)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)

    root = logging.getLogger()
    root.setLevel(getattr(logging, LOG_LEVEL.upper(), logging.INFO))
    root.handlers.clear()
    root.addHandler(file_handler)
    root.addHandler(console_handler)

    # Per-request transport logs are noisy at INFO.
    logging.getLogger("aiohttp").setLevel(logging.WARNING)
    logging.getLogger("web3").setLevel(logging.WARNING)


logger = logging.getLogger(__name__)


@dataclass
class Pipeline:
    http: ResilientHttpClient
    rpc: SuiRpcClient
    controller: TradeController
    queue: TaskQueue
    journal: TradeJournal | None = None
    exit_monitor: ExitMonitor | None = None
    _exit_stop: asyncio.Event | None = field(default=None, init=False, repr=False)
    _exit_task: asyncio.Task[None] | None = field(default=None, init=False, repr=False)

    def start_exit_monitor(self) -> None:
        if self.exit_monitor is None or self._exit_task is not None:
            return
        self._exit_stop = asyncio.Event()
        self._exit_task = asyncio.get_running_loop().create_task(
            self.exit_monitor.run(self._exit_stop), name="exit-monitor"
        )

    async def stop_exit_monitor(self) -> None:
        if self._exit_task is None or self._exit_stop is None:
            return
        self._exit_stop.set()
        await self._exit_task
        self._exit_task = None

    async def close(self) -> None:
        await self.stop_exit_monitor()
        await self.queue.join()
        await self.http.close()


def _format_source_stats_brief(source_stats: dict[str, dict[str, int | float]]) -> str:
    if not source_stats:
        return "none"
    parts: list[str] = []
    for source in sorted(source_stats.keys()):
        row = source_stats.get(source) or {}
        parts.append(
            (
                f"{source}:ok={int(row.get('ok', 0))}"
                f"/fail={int(row.get('fail', 0))}"
                f"/429={int(row.get('rate_limited', 0))}"
                f"/err={float(row.get('error_percent', 0.0)):.1f}%"
                f"/avg={float(row.get('latency_avg_ms', 0.0)):.0f}ms"
            )
        )
    return "; ".join(parts)


def build_pipeline(
    builders: Mapping[Dex, SwapBuilder],
    signer: TransactionSigner,
    build_sell_tx: SellTxBuilder,
    *,
    delayed: bool = False,
) -> Pipeline:
    """Wire the Sui adapters, scorer, MEV protection and controller from `config`.

    DEX builders, the signer and the dry-run sell builder are supplied by the
    caller; nothing here holds key material.
    """
    http = ResilientHttpClient(
        timeout_seconds=float(config.RPC_TIMEOUT_SECONDS),
        headers={"Content-Type": "application/json"},
    )
    rpc = SuiRpcClient(http)
    honeypot = HoneypotDetector(rpc, SuiDryRunSimulator(rpc, build_sell_tx))
    scorer = SecurityScorer(RiskSignalCollector(rpc, honeypot))
    mev = MEVProtection(rpc, SuiTransactionSubmitter(rpc, signer), rpc)

    journal: TradeJournal | None = None
    if bool(getattr(config, "TRADE_JOURNAL_ENABLED", True)):
        journal = TradeJournal()
        journal.init_db()

    controller = TradeController(TradeConfig.from_config(), scorer, mev, builders, rpc, journal=journal)
    if bool(getattr(config, "AUTO_TRADE_ENABLED", False)):
        controller.enable_trading()

    queue: TaskQueue = TaskQueueDelayed() if delayed else TaskQueue()
    exit_monitor: ExitMonitor | None = None
    if journal is not None and bool(getattr(config, "EXIT_MONITOR_ENABLED", True)):
        exit_monitor = ExitMonitor(controller, journal, rpc, mev, builders, queue)
    logger.info(
        "PIPELINE_READY chain=%s rpc=%s dexes=%s trading=%s journal=%s queue=%s exits=%s",
        config.CHAIN_NAME,
        rpc.url,
        ",".join(d.value for d in builders),
        controller.state.value,
        "on" if journal is not None else "off",
        queue.name,
        "on" if exit_monitor is not None else "off",
    )
    return Pipeline(http=http, rpc=rpc, controller=controller, queue=queue, journal=journal, exit_monitor=exit_monitor)


async def run_candidates(pipeline: Pipeline, candidates: AsyncIterable[PoolCandidate], amount: float) -> None:
    """Feed discovered pools through the queue; one trade in flight at a time.

    Starts the exit monitor, which keeps scheduling sells on the same queue
    until `shutdown`.
    """
    pipeline.start_exit_monitor()
    seen = 0
    try:
        async for candidate in candidates:
            seen += 1
            pipeline.queue.enqueue(pipeline.controller.candidate_task(candidate, amount))
        await pipeline.queue.join()
    finally:
        logger.info(
            "RUN_DONE candidates=%s completed=%s failed=%s sources=%s",
            seen,
            pipeline.queue.completed,
            pipeline.queue.failed,
            _format_source_stats_brief(pipeline.http.snapshot_stats()),
        )


async def shutdown(pipeline: Pipeline) -> None:
    pipeline.controller.disable_trading()
    await pipeline.close()
