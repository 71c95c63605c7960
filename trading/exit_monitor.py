"""Open-position monitor: marks journaled buys against live sell quotes and schedules exits."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Mapping

import config
from chain.interfaces import ChainQuery, Dex, SwapBuilder
from trading.errors import PipelineError
from trading.mev_protection import MEVProtection
from trading.task_queue import Task, TaskQueue
from trading.trade_controller import TradeController
from utils.log_contracts import trade_decision_event

if TYPE_CHECKING:
    from database.db import TradeJournal
    from database.models import Trade

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExitRules:
    take_profit_percent: float
    stop_loss_percent: float
    trailing_stop_percent: float
    trailing_activation_percent: float
    sell_on_frontrun: bool = False

    @classmethod
    def from_config(cls) -> "ExitRules":
        return cls(
            take_profit_percent=float(getattr(config, "EXIT_TAKE_PROFIT_PERCENT", 1.0)),
            stop_loss_percent=float(getattr(config, "EXIT_STOP_LOSS_PERCENT", 10.0)),
            trailing_stop_percent=float(getattr(config, "EXIT_TRAILING_STOP_PERCENT", 10.0)),
            trailing_activation_percent=float(getattr(config, "EXIT_TRAILING_ACTIVATION_PERCENT", 10.0)),
            sell_on_frontrun=bool(getattr(config, "EXIT_SELL_ON_FRONTRUN", False)),
        )


@dataclass
class OpenPosition:
    buy_tx_id: str
    pool_id: str
    token_address: str
    dex: str
    cost: float
    token_amount: float
    peak_percent: float = 0.0
    last_change_percent: float | None = None
    frontrun_flagged: bool = False


def evaluate_exit(position: OpenPosition, change_percent: float, rules: ExitRules) -> str | None:
    """Update the position's peak and return an exit reason, or None to keep holding.

    A zero threshold disables that rule. The trailing stop arms once the peak
    reaches the activation level and then sits `trailing_stop_percent` below it.
    """
    position.last_change_percent = change_percent
    position.peak_percent = max(position.peak_percent, change_percent)

    if rules.sell_on_frontrun and position.frontrun_flagged:
        return "frontrun_suspected"
    if rules.take_profit_percent > 0 and change_percent >= rules.take_profit_percent:
        return "take_profit"
    if (
        rules.trailing_stop_percent > 0
        and position.peak_percent >= rules.trailing_activation_percent
        and change_percent <= position.peak_percent - rules.trailing_stop_percent
    ):
        return "trailing_stop"
    if rules.stop_loss_percent > 0 and change_percent <= -rules.stop_loss_percent:
        return "stop_loss"
    return None


class ExitMonitor:
    def __init__(
        self,
        controller: TradeController,
        journal: "TradeJournal",
        chain: ChainQuery,
        mev: MEVProtection,
        builders: Mapping[Dex, SwapBuilder],
        queue: TaskQueue,
        *,
        rules: ExitRules | None = None,
        poll_interval_seconds: float | None = None,
        run_tag: str | None = None,
    ) -> None:
        self._controller = controller
        self._journal = journal
        self._chain = chain
        self._mev = mev
        self._builders = dict(builders)
        self._queue = queue
        self.rules = rules or ExitRules.from_config()
        if poll_interval_seconds is None:
            poll_interval_seconds = float(getattr(config, "EXIT_POLL_INTERVAL_SECONDS", 2.0))
        self.poll_interval_seconds = max(0.0, float(poll_interval_seconds))
        self._run_tag = run_tag if run_tag is not None else str(getattr(config, "RUN_TAG", ""))
        self._positions: dict[str, OpenPosition] = {}
        self._in_flight: set[str] = set()
        # buy tx id -> sell tx id, awaiting profit settlement
        self._unsettled: dict[str, str] = {}

    @property
    def positions(self) -> dict[str, OpenPosition]:
        return dict(self._positions)

    @property
    def unsettled_count(self) -> int:
        return len(self._unsettled)

    def _log_decision(self, stage: str, decision: str, reason: str, **fields: Any) -> None:
        event = trade_decision_event(
            {"decision_stage": stage, "decision": decision, "reason": reason, **fields},
            run_tag=self._run_tag,
        )
        logger.info("TRADE_DECISION %s", json.dumps(event, ensure_ascii=False, default=str))

    async def _track(self, trade: "Trade") -> OpenPosition | None:
        buy_tx_id = str(trade.transaction_id)
        try:
            record = await self._chain.get_transaction(buy_tx_id)
        except Exception as exc:
            logger.warning("EXIT_ENTRY_LOOKUP_FAIL buy=%s error=%s", buy_tx_id, exc)
            return None
        if record is None:
            return None
        token_amount = abs(float(record.token_delta))
        if token_amount <= 0:
            logger.warning("EXIT_ENTRY_NO_TOKENS buy=%s pool=%s", buy_tx_id, trade.pool_id)
            return None

        position = OpenPosition(
            buy_tx_id=buy_tx_id,
            pool_id=str(trade.pool_id),
            token_address=str(trade.token_address),
            dex=str(trade.dex),
            cost=abs(float(record.native_delta)) or float(trade.amount),
            token_amount=token_amount,
        )
        position.frontrun_flagged = await self._mev.check_frontrunning(buy_tx_id)
        if position.frontrun_flagged:
            self._log_decision(
                "exit",
                "flag",
                "frontrun_suspected",
                pool_id=position.pool_id,
                dex=position.dex,
                amount=position.cost,
                tx_id=buy_tx_id,
            )
        self._positions[buy_tx_id] = position
        return position

    async def _mark(self, position: OpenPosition) -> float | None:
        kind = Dex.parse(position.dex)
        builder = self._builders.get(kind) if kind is not None else None
        if builder is None or position.cost <= 0:
            return None
        try:
            quote = await builder.quote(position.pool_id, position.token_address, position.token_amount, "sell")
        except Exception as exc:
            logger.warning("EXIT_QUOTE_FAIL buy=%s pool=%s error=%s", position.buy_tx_id, position.pool_id, exc)
            return None
        return (float(quote.expected_out) - position.cost) / position.cost * 100.0

    async def _settle(self, buy_tx_id: str, sell_tx_id: str) -> bool:
        try:
            report = await self._controller.calculate_profit(buy_tx_id, sell_tx_id)
        except PipelineError as exc:
            logger.warning("EXIT_PROFIT_PENDING buy=%s sell=%s error=%s", buy_tx_id, sell_tx_id, exc)
            return False
        self._unsettled.pop(buy_tx_id, None)
        position = self._positions.pop(buy_tx_id, None)
        self._log_decision(
            "profit",
            "close",
            "profit_realized",
            pool_id=position.pool_id if position else "",
            dex=position.dex if position else "",
            amount=report.buy_cost,
            tx_id=sell_tx_id,
            buy_tx_id=buy_tx_id,
            profit=report.profit,
            profit_percentage=report.profit_percentage,
        )
        return True

    def sell_task(self, position: OpenPosition, reason: str) -> Task:
        async def _run() -> None:
            try:
                result = await self._controller.execute_sell(
                    position.pool_id, position.token_address, position.token_amount, position.dex
                )
                if not result.success or not result.transaction_id:
                    logger.warning(
                        "EXIT_SELL_FAIL buy=%s reason=%s code=%s error=%s",
                        position.buy_tx_id,
                        reason,
                        result.error_code,
                        result.error,
                    )
                    return
                self._unsettled[position.buy_tx_id] = result.transaction_id
                await self._settle(position.buy_tx_id, result.transaction_id)
            finally:
                self._in_flight.discard(position.buy_tx_id)

        return _run

    async def poll_once(self) -> int:
        """One pass over open positions; returns the number of sells enqueued."""
        for buy_tx_id, sell_tx_id in list(self._unsettled.items()):
            await self._settle(buy_tx_id, sell_tx_id)

        trades = await asyncio.to_thread(self._journal.get_open_trades)
        open_ids: set[str] = set()
        enqueued = 0
        for trade in trades:
            buy_tx_id = str(trade.transaction_id or "")
            if not buy_tx_id:
                continue
            open_ids.add(buy_tx_id)
            if buy_tx_id in self._in_flight or buy_tx_id in self._unsettled:
                continue
            position = self._positions.get(buy_tx_id) or await self._track(trade)
            if position is None:
                continue
            change = await self._mark(position)
            if change is None:
                continue
            reason = evaluate_exit(position, change, self.rules)
            if reason is None:
                continue

            self._log_decision(
                "exit",
                "close",
                reason,
                pool_id=position.pool_id,
                dex=position.dex,
                amount=position.cost,
                tx_id=buy_tx_id,
                change_percent=round(change, 4),
                peak_percent=round(position.peak_percent, 4),
            )
            self._in_flight.add(buy_tx_id)
            self._queue.enqueue(self.sell_task(position, reason))
            enqueued += 1

        for stale in set(self._positions) - open_ids - self._in_flight:
            self._positions.pop(stale, None)
        return enqueued

    async def run(self, stop: asyncio.Event) -> None:
        logger.info(
            "EXIT_MONITOR_START interval=%.1fs tp=%.2f%% sl=%.2f%% trail=%.2f%%@%.2f%%",
            self.poll_interval_seconds,
            self.rules.take_profit_percent,
            self.rules.stop_loss_percent,
            self.rules.trailing_stop_percent,
            self.rules.trailing_activation_percent,
        )
        while not stop.is_set():
            try:
                await self.poll_once()
            except Exception:
                logger.exception("EXIT_MONITOR_POLL_FAIL positions=%s", len(self._positions))
            try:
                await asyncio.wait_for(stop.wait(), timeout=self.poll_interval_seconds)
            except asyncio.TimeoutError:
                continue
        logger.info("EXIT_MONITOR_STOP positions=%s unsettled=%s", len(self._positions), len(self._unsettled))
