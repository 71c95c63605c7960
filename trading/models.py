"""Value types owned by the trade controller."""

from __future__ import annotations

from dataclasses import dataclass, field

import config
from chain.interfaces import Dex
from utils.addressing import is_native_coin


@dataclass(frozen=True)
class PoolCandidate:
    pool_id: str
    coin_a: str
    coin_b: str
    amount_a: float
    amount_b: float
    liquidity: float
    dex: Dex
    creator: str | None = None

    @property
    def native_is_a(self) -> bool:
        return is_native_coin(self.coin_a)

    @property
    def target_token(self) -> str:
        return self.coin_b if self.native_is_a else self.coin_a

    @property
    def native_amount(self) -> float:
        return self.amount_a if self.native_is_a else self.amount_b


@dataclass(frozen=True)
class TradeConfig:
    max_slippage_percent: float
    min_security_score: float
    max_gas_price: int
    max_trade_amount: float = 0.0
    min_trade_amount: float = 0.0
    max_daily_loss: float = 0.0
    max_price_impact_percent: float = 0.0
    daily_trade_limit: int = 0

    @classmethod
    def from_config(cls) -> "TradeConfig":
        return cls(
            max_slippage_percent=float(config.MAX_SLIPPAGE_PERCENT),
            min_security_score=float(config.MIN_SECURITY_SCORE),
            max_gas_price=int(config.MAX_GAS_PRICE),
            max_trade_amount=float(config.MAX_TRADE_AMOUNT),
            min_trade_amount=float(config.MIN_TRADE_AMOUNT),
            max_daily_loss=float(config.MAX_DAILY_LOSS),
            max_price_impact_percent=float(config.MAX_PRICE_IMPACT_PERCENT),
            daily_trade_limit=int(config.DAILY_TRADE_LIMIT),
        )


@dataclass(frozen=True)
class TradeResult:
    success: bool
    transaction_id: str | None = None
    error: str | None = None
    profit: float | None = None
    profit_percentage: float | None = None
    error_code: str | None = None
    security_score: float | None = None
    warnings: tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class GasSettings:
    gas_price: int
    gas_budget: int


@dataclass(frozen=True)
class ProfitReport:
    profit: float
    profit_percentage: float
    buy_cost: float
    sell_proceeds: float
    fees: float
