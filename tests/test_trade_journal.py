from __future__ import annotations

import asyncio
import tempfile
import unittest
from pathlib import Path

from chain.interfaces import Dex, GasSnapshot, SwapQuote, TransactionRecord, TransactionRequest
from database.db import TradeJournal
from security.models import SecurityCheckResult
from trading.models import ProfitReport, TradeConfig, TradeResult
from trading.mev_protection import MEVProtection
from trading.trade_controller import TradeController

TOKEN = "0xabc::gem::GEM"


class TradeJournalTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        db_path = Path(self._tmp.name) / "trades.db"
        self.journal = TradeJournal(f"sqlite:///{db_path.as_posix()}")
        self.journal.init_db()

    def tearDown(self) -> None:
        self.journal.engine.dispose()
        self._tmp.cleanup()

    def test_open_trades_exclude_failures_and_sold(self) -> None:
        self.journal.record_result(
            TradeResult(success=True, transaction_id="0xa", security_score=90.0, warnings=("LP tokens are not locked",)),
            pool_id="0xpool",
            token_address=TOKEN,
            dex="Cetus",
            amount=0.4,
        )
        self.journal.record_result(
            TradeResult(success=False, error="gas price 9000 above max 5000", error_code="gas_too_high"),
            pool_id="0xpool",
            token_address=TOKEN,
            dex="Cetus",
            amount=0.4,
        )
        self.journal.record_result(
            TradeResult(success=True, transaction_id="0xb", security_score=88.0),
            pool_id="0xpool2",
            token_address=TOKEN,
            dex="Cetus",
            amount=0.3,
        )

        open_ids = [t.transaction_id for t in self.journal.get_open_trades()]
        self.assertEqual(open_ids, ["0xa", "0xb"])

        report = ProfitReport(profit=0.1, profit_percentage=25.0, buy_cost=0.4, sell_proceeds=0.5, fees=0.0)
        closed = self.journal.mark_sold("0xa", "0xa-sell", report)
        self.assertIsNotNone(closed)
        self.assertFalse(closed.is_open())  # type: ignore[union-attr]

        open_ids = [t.transaction_id for t in self.journal.get_open_trades()]
        self.assertEqual(open_ids, ["0xb"])
        stored = self.journal.get_trade("0xa")
        self.assertEqual(stored.profit_percentage, 25.0)  # type: ignore[union-attr]
        self.assertEqual(stored.warnings, ["LP tokens are not locked"])  # type: ignore[union-attr]

    def test_mark_sold_unknown_buy_returns_none(self) -> None:
        report = ProfitReport(profit=0.0, profit_percentage=0.0, buy_cost=0.0, sell_proceeds=0.0, fees=0.0)
        self.assertIsNone(self.journal.mark_sold("0xnope", "0xsell", report))


class _Scorer:
    async def evaluate(self, pool_id: str, dex: str) -> SecurityCheckResult:
        return SecurityCheckResult(is_secure=True, score=92.0)


class _Builder:
    async def quote(self, pool_id: str, token_address: str, amount: float, side: str = "buy") -> SwapQuote:
        return SwapQuote(expected_out=100.0, slippage_percent=0.1, price_impact_percent=0.1, price=0.004)

    async def build_buy(self, pool_id: str, token_address: str, amount: float) -> TransactionRequest:
        return TransactionRequest(dex=Dex.CETUS, pool_id=pool_id, token_address=token_address, amount=amount)

    async def build_sell(self, pool_id: str, token_address: str, amount: float) -> TransactionRequest:
        return TransactionRequest(dex=Dex.CETUS, pool_id=pool_id, token_address=token_address, amount=amount, side="sell")


class _Network:
    async def get_gas_snapshot(self) -> GasSnapshot:
        return GasSnapshot(reference_price=1000, samples=[1000])


class _Submitter:
    async def submit(self, tx: TransactionRequest) -> str:
        return "0xbuy" if tx.side == "buy" else "0xsell"

    async def get_status(self, tx_id: str) -> str:
        return "success"


class _Chain:
    def __init__(self) -> None:
        self.records = {
            "0xbuy": TransactionRecord("0xbuy", "success", "0xpool", TOKEN, native_delta=-0.4, token_delta=100.0),
            "0xsell": TransactionRecord("0xsell", "success", "0xpool", TOKEN, native_delta=0.5, token_delta=-100.0),
        }

    async def get_transaction(self, tx_id: str) -> TransactionRecord | None:
        return self.records.get(tx_id)


class ControllerJournalTests(unittest.TestCase):
    def test_controller_journals_buy_and_closes_on_profit(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            journal = TradeJournal(f"sqlite:///{(Path(tmpdir) / 'trades.db').as_posix()}")
            journal.init_db()
            chain = _Chain()
            controller = TradeController(
                TradeConfig(max_slippage_percent=1.0, min_security_score=70.0, max_gas_price=5000),
                _Scorer(),
                MEVProtection(_Network(), _Submitter(), chain, max_gas_price=5000),
                {Dex.CETUS: _Builder()},
                chain,
                journal=journal,
            )
            controller.enable_trading()

            async def _run() -> ProfitReport:
                buy = await controller.execute_trade("0xpool", TOKEN, 0.4, Dex.CETUS)
                self.assertTrue(buy.success, msg=buy.error)
                sell = await controller.execute_sell("0xpool", TOKEN, 100.0, Dex.CETUS)
                self.assertTrue(sell.success, msg=sell.error)
                return await controller.calculate_profit("0xbuy", "0xsell")

            report = asyncio.run(_run())
            self.assertAlmostEqual(report.profit, 0.1)

            trade = journal.get_trade("0xbuy")
            self.assertIsNotNone(trade)
            self.assertEqual(trade.sell_transaction_id, "0xsell")  # type: ignore[union-attr]
            self.assertAlmostEqual(trade.profit_percentage, 25.0)  # type: ignore[union-attr]
            self.assertEqual(journal.get_open_trades(), [])
            journal.engine.dispose()


if __name__ == "__main__":
    unittest.main()
