"""Collaborator interfaces between the trading core and a concrete chain/DEX integration."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol


class Dex(str, Enum):
    CETUS = "Cetus"
    BLUEMOVE = "BlueMove"

    @classmethod
    def parse(cls, value: "Dex | str") -> "Dex | None":
        if isinstance(value, Dex):
            return value
        raw = str(value or "").strip().lower()
        for member in cls:
            if member.value.lower() == raw:
                return member
        return None


@dataclass
class PoolState:
    pool_id: str
    coin_a: str
    coin_b: str
    reserve_a: float
    reserve_b: float
    native_is_a: bool
    lp_locked: bool = False
    lock_duration: int = 0
    creator: str | None = None

    @property
    def liquidity(self) -> float:
        """Native-side reserve, i.e. pool depth in native-coin units."""
        return self.reserve_a if self.native_is_a else self.reserve_b

    @property
    def token(self) -> str:
        return self.coin_b if self.native_is_a else self.coin_a


@dataclass
class ContractFlags:
    has_ownership: bool
    has_mint_function: bool
    exposed_functions: list[str] = field(default_factory=list)


@dataclass
class TokenActivity:
    age_seconds: float
    holders: int
    transfers: int
    suspicious_transfers: int


@dataclass
class WalletHistory:
    account_age_seconds: float
    tx_count: int
    previous_scams: int = 0
    rug_pulls: int = 0
    total_pools: int = 0
    average_pool_lifetime: float = 0.0


@dataclass
class SimulationResult:
    success: bool
    error: str = ""
    called_functions: list[str] = field(default_factory=list)
    amount_in: int = 0
    expected_out: int = 0
    amount_out: int = 0


@dataclass
class GasSnapshot:
    reference_price: int
    samples: list[int] = field(default_factory=list)
    congestion: float = 0.0

    @property
    def mean(self) -> float:
        if not self.samples:
            return float(self.reference_price)
        return float(sum(self.samples)) / len(self.samples)


@dataclass(frozen=True)
class TransactionRequest:
    dex: Dex
    pool_id: str
    token_address: str
    amount: float
    side: str = "buy"
    payload: dict[str, Any] = field(default_factory=dict)
    gas_price: int | None = None
    gas_budget: int | None = None
    priority_fee: int = 0
    expected_price: float | None = None


@dataclass
class TransactionRecord:
    tx_id: str
    status: str
    pool_id: str | None = None
    coin_type: str | None = None
    native_delta: float = 0.0
    token_delta: float = 0.0
    gas_fee: float = 0.0
    checkpoint: int | None = None

    @property
    def executed_price(self) -> float | None:
        if not self.token_delta:
            return None
        return abs(self.native_delta) / abs(self.token_delta)


@dataclass
class SwapQuote:
    expected_out: float
    slippage_percent: float
    price_impact_percent: float
    price: float | None = None


@dataclass
class SignedTransaction:
    tx_bytes: str
    signatures: list[str]


class ChainQuery(Protocol):
    async def get_pool(self, pool_id: str) -> PoolState: ...

    async def get_contract_flags(self, coin_type: str) -> ContractFlags: ...

    async def get_module_functions(self, coin_type: str) -> list[str]: ...

    async def get_token_activity(self, pool_id: str, coin_type: str) -> TokenActivity: ...

    async def get_wallet_history(self, address: str) -> WalletHistory: ...

    async def get_transaction(self, tx_id: str) -> TransactionRecord | None: ...


class TransactionSimulator(Protocol):
    async def simulate_sell(self, coin_type: str, amount: int) -> SimulationResult: ...


class NetworkConditions(Protocol):
    async def get_gas_snapshot(self) -> GasSnapshot: ...


class TransactionSubmitter(Protocol):
    async def submit(self, tx: TransactionRequest) -> str: ...

    async def get_status(self, tx_id: str) -> str: ...


class TransactionSigner(Protocol):
    async def sign(self, tx: TransactionRequest) -> SignedTransaction: ...


class SwapBuilder(Protocol):
    async def quote(self, pool_id: str, token_address: str, amount: float, side: str = "buy") -> SwapQuote: ...

    async def build_buy(self, pool_id: str, token_address: str, amount: float) -> TransactionRequest: ...

    async def build_sell(self, pool_id: str, token_address: str, amount: float) -> TransactionRequest: ...
