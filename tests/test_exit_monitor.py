from __future__ import annotations

import asyncio
import tempfile
import unittest
from pathlib import Path

from chain.interfaces import Dex, GasSnapshot, SwapQuote, TransactionRecord, TransactionRequest
from database.db import TradeJournal
from security.models import SecurityCheckResult
from trading.exit_monitor import ExitMonitor, ExitRules, OpenPosition, evaluate_exit
from trading.mev_protection import MEVProtection
from trading.models import TradeConfig
from trading.trade_controller import TradeController

TOKEN = "0xabc::gem::GEM"


class _StubScorer:
    async def evaluate(self, pool_id: str, dex: str) -> SecurityCheckResult:
        return SecurityCheckResult(is_secure=True, score=92.0)


class _StubBuilder:
    def __init__(self) -> None:
        self.sell_out = 0.4
        self.calls: list[str] = []

    async def quote(self, pool_id: str, token_address: str, amount: float, side: str = "buy") -> SwapQuote:
        self.calls.append(f"quote:{side}:{amount}")
        if side == "sell":
            return SwapQuote(expected_out=self.sell_out, slippage_percent=0.3, price_impact_percent=0.5)
        return SwapQuote(expected_out=100.0, slippage_percent=0.3, price_impact_percent=0.5, price=0.004)

    async def build_buy(self, pool_id: str, token_address: str, amount: float) -> TransactionRequest:
        return TransactionRequest(dex=Dex.CETUS, pool_id=pool_id, token_address=token_address, amount=amount)

    async def build_sell(self, pool_id: str, token_address: str, amount: float) -> TransactionRequest:
        return TransactionRequest(dex=Dex.CETUS, pool_id=pool_id, token_address=token_address, amount=amount, side="sell")


class _StubNetwork:
    async def get_gas_snapshot(self) -> GasSnapshot:
        return GasSnapshot(reference_price=1000, samples=[1000, 1000, 1000])


class _StubSubmitter:
    def __init__(self) -> None:
        self.submitted: list[TransactionRequest] = []

    async def submit(self, tx: TransactionRequest) -> str:
        self.submitted.append(tx)
        return f"0xtx{len(self.submitted)}"

    async def get_status(self, tx_id: str) -> str:
        return "success"


class _StubChain:
    def __init__(self) -> None:
        self.records: dict[str, TransactionRecord] = {}

    async def get_transaction(self, tx_id: str) -> TransactionRecord | None:
        return self.records.get(tx_id)


class _RecordingQueue:
    def __init__(self) -> None:
        self.tasks: list = []

    def enqueue(self, task) -> None:  # type: ignore[no-untyped-def]
        self.tasks.append(task)


async def _no_sleep(_delay: float) -> None:
    return None


def _record(tx_id: str, native_delta: float, token_delta: float) -> TransactionRecord:
    return TransactionRecord(
        tx_id=tx_id,
        status="success",
        pool_id="0xpool",
        coin_type=TOKEN,
        native_delta=native_delta,
        token_delta=token_delta,
    )


RULES = ExitRules(
    take_profit_percent=1.0,
    stop_loss_percent=10.0,
    trailing_stop_percent=10.0,
    trailing_activation_percent=10.0,
)


class ExitRuleTests(unittest.TestCase):
    @staticmethod
    def _position() -> OpenPosition:
        return OpenPosition(
            buy_tx_id="0xbuy", pool_id="0xpool", token_address=TOKEN, dex="Cetus", cost=0.4, token_amount=100.0
        )

    def test_take_profit_and_stop_loss(self) -> None:
        self.assertEqual(evaluate_exit(self._position(), 1.5, RULES), "take_profit")
        self.assertEqual(evaluate_exit(self._position(), -12.0, RULES), "stop_loss")
        self.assertIsNone(evaluate_exit(self._position(), -4.0, RULES))

    def test_trailing_stop_follows_peak(self) -> None:
        rules = ExitRules(
            take_profit_percent=0.0,
            stop_loss_percent=10.0,
            trailing_stop_percent=10.0,
            trailing_activation_percent=10.0,
        )
        position = self._position()
        self.assertIsNone(evaluate_exit(position, 5.0, rules))
        self.assertIsNone(evaluate_exit(position, 25.0, rules))
        self.assertIsNone(evaluate_exit(position, 16.0, rules))
        self.assertEqual(evaluate_exit(position, 14.0, rules), "trailing_stop")
        self.assertEqual(position.peak_percent, 25.0)

    def test_flagged_entry_exits_only_when_enabled(self) -> None:
        position = self._position()
        position.frontrun_flagged = True
        self.assertIsNone(evaluate_exit(position, 0.0, RULES))
        strict = ExitRules(1.0, 10.0, 10.0, 10.0, sell_on_frontrun=True)
        self.assertEqual(evaluate_exit(position, 0.0, strict), "frontrun_suspected")


class ExitMonitorTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        db_path = Path(self._tmp.name) / "trades.db"
        self.journal = TradeJournal(f"sqlite:///{db_path.as_posix()}")
        self.journal.init_db()
        self.chain = _StubChain()
        self.builder = _StubBuilder()
        self.submitter = _StubSubmitter()
        self.mev = MEVProtection(
            _StubNetwork(),
            self.submitter,
            self.chain,
            max_gas_price=5000,
            min_gas_price=1000,
            max_retries=1,
            jitter_seconds=0.0,
            sleep=_no_sleep,
        )
        self.controller = TradeController(
            TradeConfig(max_slippage_percent=1.0, min_security_score=70.0, max_gas_price=5000, max_daily_loss=2.5),
            _StubScorer(),
            self.mev,
            {Dex.CETUS: self.builder},
            self.chain,
            journal=self.journal,
            run_tag="unit",
        )
        self.controller.enable_trading()
        self.queue = _RecordingQueue()
        self.monitor = ExitMonitor(
            self.controller,
            self.journal,
            self.chain,
            self.mev,
            {Dex.CETUS: self.builder},
            self.queue,  # type: ignore[arg-type]
            rules=RULES,
            poll_interval_seconds=0.0,
            run_tag="unit",
        )

    def tearDown(self) -> None:
        self.journal.engine.dispose()
        self._tmp.cleanup()

    async def _open_position(self) -> str:
        result = await self.controller.execute_trade("0xpool", TOKEN, 0.4, Dex.CETUS)
        self.assertTrue(result.success, msg=result.error)
        buy_tx = str(result.transaction_id)
        self.chain.records[buy_tx] = _record(buy_tx, -0.4, 100.0)
        return buy_tx

    def test_take_profit_sells_and_closes_journal_row(self) -> None:
        async def _run() -> tuple[str, int]:
            buy_tx = await self._open_position()
            self.builder.sell_out = 0.5
            enqueued = await self.monitor.poll_once()
            self.chain.records["0xtx2"] = _record("0xtx2", 0.5, -100.0)
            await self.queue.tasks[0]()
            return buy_tx, enqueued

        buy_tx, enqueued = asyncio.run(_run())
        self.assertEqual(enqueued, 1)
        self.assertEqual(self.submitter.submitted[-1].side, "sell")
        self.assertEqual(self.submitter.submitted[-1].amount, 100.0)
        self.assertEqual(self.journal.get_open_trades(), [])
        closed = self.journal.get_trade(buy_tx)
        self.assertIsNotNone(closed)
        self.assertAlmostEqual(closed.profit, 0.1)  # type: ignore[union-attr]
        self.assertAlmostEqual(closed.profit_percentage, 25.0)  # type: ignore[union-attr]
        self.assertEqual(self.controller.day_realized_loss, 0.0)
        self.assertEqual(self.monitor.positions, {})

    def test_stop_loss_sell_counts_toward_daily_loss(self) -> None:
        async def _run() -> None:
            await self._open_position()
            self.builder.sell_out = 0.3
            await self.monitor.poll_once()
            self.chain.records["0xtx2"] = _record("0xtx2", 0.3, -100.0)
            await self.queue.tasks[0]()

        asyncio.run(_run())
        self.assertAlmostEqual(self.controller.day_realized_loss, 0.1)
        self.assertEqual(self.journal.get_open_trades(), [])

    def test_holding_position_tracks_peak_without_selling(self) -> None:
        async def _run() -> int:
            buy_tx = await self._open_position()
            self.builder.sell_out = 0.402
            enqueued = await self.monitor.poll_once()
            self.assertAlmostEqual(self.monitor.positions[buy_tx].peak_percent, 0.5)
            return enqueued

        self.assertEqual(asyncio.run(_run()), 0)
        self.assertEqual(self.queue.tasks, [])
        self.assertEqual(len(self.journal.get_open_trades()), 1)

    def test_scheduled_sell_is_not_enqueued_twice(self) -> None:
        async def _run() -> list[int]:
            await self._open_position()
            self.builder.sell_out = 0.5
            return [await self.monitor.poll_once(), await self.monitor.poll_once()]

        self.assertEqual(asyncio.run(_run()), [1, 0])
        self.assertEqual(len(self.queue.tasks), 1)

    def test_unindexed_sell_is_settled_on_a_later_poll(self) -> None:
        async def _run() -> tuple[int, int]:
            buy_tx = await self._open_position()
            self.builder.sell_out = 0.5
            await self.monitor.poll_once()
            await self.queue.tasks[0]()
            self.assertEqual(self.monitor.unsettled_count, 1)
            waiting = await self.monitor.poll_once()
            self.chain.records["0xtx2"] = _record("0xtx2", 0.5, -100.0)
            after = await self.monitor.poll_once()
            self.assertEqual(self.journal.get_trade(buy_tx).sell_transaction_id, "0xtx2")  # type: ignore[union-attr]
            return waiting, after

        self.assertEqual(asyncio.run(_run()), (0, 0))
        self.assertEqual(self.monitor.unsettled_count, 0)
        self.assertEqual(len(self.queue.tasks), 1)

    def test_entry_filled_worse_than_quote_is_flagged(self) -> None:
        async def _run() -> bool:
            buy_tx = await self.controller.execute_trade("0xpool", TOKEN, 0.4, Dex.CETUS)
            tx_id = str(buy_tx.transaction_id)
            self.chain.records[tx_id] = _record(tx_id, -0.5, 100.0)
            await self.monitor.poll_once()
            return self.monitor.positions[tx_id].frontrun_flagged

        self.assertTrue(asyncio.run(_run()))
        self.assertEqual(self.mev.tracked_snapshot_count, 0)

    def test_run_stops_when_event_is_set(self) -> None:
        async def _run() -> None:
            stop = asyncio.Event()
            stop.set()
            await asyncio.wait_for(self.monitor.run(stop), timeout=1.0)

        asyncio.run(_run())


if __name__ == "__main__":
    unittest.main()
