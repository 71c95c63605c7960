"""Trade controller: gates, scores and executes trades through MEV protection."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import replace
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Mapping

import config
from chain.interfaces import ChainQuery, Dex, SwapBuilder, SwapQuote, TransactionRecord
from security.scorer import SecurityScorer
from trading.errors import (
    DataUnavailable,
    ExecutionFailed,
    GasCeilingExceeded,
    GasTooHigh,
    IncompletePair,
    LimitExceeded,
    PipelineError,
    SecurityRejected,
    SlippageExceeded,
    TradingDisabled,
    TransactionNotFound,
    UnsupportedDex,
)
from trading.mev_protection import MEVProtection
from trading.models import GasSettings, PoolCandidate, ProfitReport, TradeConfig, TradeResult
from trading.task_queue import Task
from utils.addressing import normalize_address, normalize_coin_type
from utils.log_contracts import trade_decision_event

if TYPE_CHECKING:
    from database.db import TradeJournal

logger = logging.getLogger(__name__)


class TradingState(str, Enum):
    DISABLED = "Disabled"
    ENABLED = "Enabled"


def decision_stage(exc: PipelineError) -> str:
    if isinstance(exc, (TradingDisabled, LimitExceeded, UnsupportedDex)):
        return "gate"
    if isinstance(exc, (SlippageExceeded, GasTooHigh, GasCeilingExceeded)):
        return "market"
    if isinstance(exc, ExecutionFailed):
        return "execute"
    if isinstance(exc, (SecurityRejected, DataUnavailable)):
        return "security"
    return "unknown"


class TradeController:
    def __init__(
        self,
        trade_config: TradeConfig,
        scorer: SecurityScorer,
        mev: MEVProtection,
        builders: Mapping[Dex, SwapBuilder],
        chain: ChainQuery,
        *,
        journal: "TradeJournal | None" = None,
        run_tag: str | None = None,
    ) -> None:
        self.config = trade_config
        self._scorer = scorer
        self._mev = mev
        self._builders = dict(builders)
        self._chain = chain
        self._journal = journal
        self._run_tag = run_tag if run_tag is not None else str(getattr(config, "RUN_TAG", ""))
        self._state = TradingState.DISABLED
        self._day_id = self._current_day_id()
        self.day_trade_count = 0
        self.day_realized_loss = 0.0

    @property
    def state(self) -> TradingState:
        return self._state

    def enable_trading(self) -> None:
        if self._state is TradingState.ENABLED:
            return
        self._state = TradingState.ENABLED
        logger.info("Trading enabled")

    def disable_trading(self) -> None:
        if self._state is TradingState.DISABLED:
            return
        self._state = TradingState.DISABLED
        logger.info("Trading disabled")

    def is_trading_enabled(self) -> bool:
        return self._state is TradingState.ENABLED

    @staticmethod
    def _current_day_id() -> str:
        return datetime.now(timezone.utc).strftime("%Y-%m-%d")

    def _roll_day(self) -> None:
        day_id = self._current_day_id()
        if day_id != self._day_id:
            self._day_id = day_id
            self.day_trade_count = 0
            self.day_realized_loss = 0.0

    def _resolve_dex(self, dex: Dex | str) -> tuple[Dex, SwapBuilder]:
        kind = Dex.parse(dex)
        builder = self._builders.get(kind) if kind is not None else None
        if kind is None or builder is None:
            raise UnsupportedDex(f"Unsupported DEX: {dex}")
        return kind, builder

    def _check_limits(self, amount: float) -> None:
        cfg = self.config
        if amount <= 0:
            raise LimitExceeded("Invalid amount")
        if cfg.max_trade_amount > 0 and amount > cfg.max_trade_amount:
            raise LimitExceeded(f"amount {amount} above max trade amount {cfg.max_trade_amount}")
        if cfg.min_trade_amount > 0 and amount < cfg.min_trade_amount:
            raise LimitExceeded(f"amount {amount} below min trade amount {cfg.min_trade_amount}")
        self._roll_day()
        if cfg.daily_trade_limit > 0 and self.day_trade_count >= cfg.daily_trade_limit:
            raise LimitExceeded(f"daily trade limit {cfg.daily_trade_limit} reached")
        if cfg.max_daily_loss > 0 and self.day_realized_loss >= cfg.max_daily_loss:
            raise LimitExceeded(f"daily loss {self.day_realized_loss:.4f} reached cap {cfg.max_daily_loss}")

    def _check_quote(self, quote: SwapQuote) -> None:
        cfg = self.config
        if quote.slippage_percent > cfg.max_slippage_percent:
            raise SlippageExceeded(
                f"quoted slippage {quote.slippage_percent:.2f}% above max {cfg.max_slippage_percent:.2f}%"
            )
        if cfg.max_price_impact_percent > 0 and quote.price_impact_percent > cfg.max_price_impact_percent:
            raise SlippageExceeded(
                f"price impact {quote.price_impact_percent:.2f}% above max {cfg.max_price_impact_percent:.2f}%"
            )

    async def _check_gas(self) -> GasSettings:
        try:
            settings = await self._mev.get_optimal_gas_settings()
        except GasCeilingExceeded as exc:
            raise GasTooHigh(f"gas price {exc.observed:.0f} above max {self.config.max_gas_price}") from exc
        if settings.gas_price > self.config.max_gas_price:
            raise GasTooHigh(f"gas price {settings.gas_price} above max {self.config.max_gas_price}")
        return settings

    def _log_decision(self, stage: str, decision: str, reason: str, **fields: Any) -> None:
        event = trade_decision_event(
            {"decision_stage": stage, "decision": decision, "reason": reason, **fields},
            run_tag=self._run_tag,
        )
        logger.info("TRADE_DECISION %s", json.dumps(event, ensure_ascii=False, default=str))

    async def _journal_result(self, result: TradeResult, **fields: Any) -> None:
        if self._journal is None:
            return
        try:
            await asyncio.to_thread(self._journal.record_result, result, **fields)
        except Exception as exc:
            logger.error("TRADE_JOURNAL_FAIL tx=%s error=%s", result.transaction_id, exc)

    async def _submit(self, builder: SwapBuilder, side: str, pool_id: str, token_address: str, amount: float) -> str:
        quote = await builder.quote(pool_id, token_address, amount, side)
        self._check_quote(quote)
        settings = await self._check_gas()
        if side == "sell":
            tx = await builder.build_sell(pool_id, token_address, amount)
        else:
            tx = await builder.build_buy(pool_id, token_address, amount)
        if tx.expected_price is None and quote.price:
            tx = replace(tx, expected_price=quote.price)
        return await self._mev.execute_protected_transaction(tx, settings)

    async def execute_trade(self, pool_id: str, token_address: str, amount: float, dex: Dex | str) -> TradeResult:
        """Score the pool and, if it passes every gate, buy through MEV protection.

        Always returns a TradeResult; failures are reported, never raised.
        """
        enabled = self._state is TradingState.ENABLED
        dex_name = dex.value if isinstance(dex, Dex) else str(dex)
        if not enabled:
            self._log_decision("gate", "skip", "trading_disabled", pool_id=pool_id, dex=dex_name, amount=amount)
            return TradeResult(success=False, error="Trading is disabled", error_code=TradingDisabled.code)

        score: float | None = None
        warnings: tuple[str, ...] = ()
        try:
            self._check_limits(float(amount))
            kind, builder = self._resolve_dex(dex)
            security = await self._scorer.evaluate(pool_id, kind.value)
            score = security.score
            warnings = tuple(security.warnings)
            if not security.is_secure or security.score < self.config.min_security_score:
                raise SecurityRejected(security.score, security.warnings)
            tx_id = await self._submit(builder, "buy", pool_id, token_address, float(amount))
        except PipelineError as exc:
            result = TradeResult(
                success=False,
                error=str(exc),
                error_code=exc.code,
                security_score=score,
                warnings=warnings,
            )
            self._log_decision(
                decision_stage(exc),
                "skip",
                exc.code,
                pool_id=pool_id,
                dex=dex_name,
                amount=amount,
                security_score=score or 0.0,
                detail=str(exc),
            )
        except Exception as exc:
            logger.error(
                "Trade execution failed pool=%s token=%s amount=%s dex=%s error=%s",
                pool_id,
                token_address,
                amount,
                dex_name,
                exc,
            )
            result = TradeResult(
                success=False,
                error=str(exc) or exc.__class__.__name__,
                error_code="unexpected_error",
                security_score=score,
                warnings=warnings,
            )
        else:
            self.day_trade_count += 1
            result = TradeResult(success=True, transaction_id=tx_id, security_score=score, warnings=warnings)
            self._log_decision(
                "execute",
                "open",
                "buy_live",
                pool_id=pool_id,
                dex=dex_name,
                amount=amount,
                security_score=score or 0.0,
                tx_id=tx_id,
                attempts=self._mev.last_attempt_count,
            )

        await self._journal_result(result, pool_id=pool_id, token_address=token_address, dex=dex_name, amount=amount)
        return result

    async def execute_sell(self, pool_id: str, token_address: str, amount: float, dex: Dex | str) -> TradeResult:
        enabled = self._state is TradingState.ENABLED
        dex_name = dex.value if isinstance(dex, Dex) else str(dex)
        if not enabled:
            return TradeResult(success=False, error="Trading is disabled", error_code=TradingDisabled.code)

        try:
            if amount <= 0:
                raise LimitExceeded("Invalid amount")
            _, builder = self._resolve_dex(dex)
            tx_id = await self._submit(builder, "sell", pool_id, token_address, float(amount))
        except PipelineError as exc:
            result = TradeResult(success=False, error=str(exc), error_code=exc.code)
            self._log_decision(
                decision_stage(exc), "skip", exc.code, pool_id=pool_id, dex=dex_name, amount=amount, side="sell"
            )
        except Exception as exc:
            logger.error("Sell execution failed pool=%s token=%s error=%s", pool_id, token_address, exc)
            result = TradeResult(success=False, error=str(exc) or exc.__class__.__name__, error_code="unexpected_error")
        else:
            result = TradeResult(success=True, transaction_id=tx_id)
            self._log_decision("execute", "close", "sell_live", pool_id=pool_id, dex=dex_name, amount=amount, tx_id=tx_id)

        await self._journal_result(
            result, pool_id=pool_id, token_address=token_address, dex=dex_name, amount=amount, side="sell"
        )
        return result

    async def execute_candidate(self, candidate: PoolCandidate, amount: float) -> TradeResult:
        return await self.execute_trade(candidate.pool_id, candidate.target_token, amount, candidate.dex)

    def candidate_task(self, candidate: PoolCandidate, amount: float) -> Task:
        """Zero-arg task for a TaskQueue; the captured candidate is immutable."""

        async def _run() -> None:
            result = await self.execute_candidate(candidate, amount)
            if not result.success:
                logger.info(
                    "CANDIDATE_SKIPPED pool=%s code=%s error=%s", candidate.pool_id, result.error_code, result.error
                )

        return _run

    async def _resolve(self, tx_id: str) -> TransactionRecord:
        record = await self._chain.get_transaction(tx_id)
        if record is None:
            raise TransactionNotFound(tx_id)
        return record

    async def calculate_profit(self, buy_tx_id: str, sell_tx_id: str) -> ProfitReport:
        try:
            buy, sell = await asyncio.gather(self._resolve(buy_tx_id), self._resolve(sell_tx_id))

            if buy.pool_id and sell.pool_id and normalize_address(buy.pool_id) != normalize_address(sell.pool_id):
                raise IncompletePair(f"pool mismatch buy={buy.pool_id} sell={sell.pool_id}")
            if not buy.coin_type or not sell.coin_type:
                raise IncompletePair("token identity missing from buy or sell transaction")
            if normalize_coin_type(buy.coin_type).lower() != normalize_coin_type(sell.coin_type).lower():
                raise IncompletePair(f"token mismatch buy={buy.coin_type} sell={sell.coin_type}")
        except PipelineError as exc:
            logger.error("Error calculating profit buy=%s sell=%s error=%s", buy_tx_id, sell_tx_id, exc)
            raise

        buy_cost = abs(float(buy.native_delta))
        sell_proceeds = abs(float(sell.native_delta))
        fees = float(buy.gas_fee) + float(sell.gas_fee)
        profit = sell_proceeds - buy_cost - fees
        profit_percentage = (profit / buy_cost * 100.0) if buy_cost > 0 else 0.0
        report = ProfitReport(
            profit=profit,
            profit_percentage=profit_percentage,
            buy_cost=buy_cost,
            sell_proceeds=sell_proceeds,
            fees=fees,
        )

        if profit < 0:
            self._roll_day()
            self.day_realized_loss += -profit
        logger.info(
            "PROFIT buy=%s sell=%s profit=%.9f pct=%.2f fees=%.9f day_loss=%.9f",
            buy_tx_id,
            sell_tx_id,
            profit,
            profit_percentage,
            fees,
            self.day_realized_loss,
        )
        if self._journal is not None:
            try:
                await asyncio.to_thread(self._journal.mark_sold, buy_tx_id, sell_tx_id, report)
            except Exception as exc:
                logger.error("TRADE_JOURNAL_FAIL buy=%s sell=%s error=%s", buy_tx_id, sell_tx_id, exc)
        return report
