"""Result records produced by the security checks."""

from __future__ import annotations

from dataclasses import dataclass, field

from chain.interfaces import ContractFlags, PoolState, TokenActivity, WalletHistory


@dataclass
class HoneypotResult:
    is_honeypot: bool
    reason: str | None = None
    suspicious_functions: list[str] = field(default_factory=list)
    sell_tax: float = 0.0


@dataclass
class RiskSignals:
    pool: PoolState
    contract: ContractFlags
    token: TokenActivity
    dev_wallet: WalletHistory
    honeypot: HoneypotResult | None
    honeypot_error: str = ""


@dataclass
class DevWalletAnalysis:
    previous_scams: int = 0
    rug_pull_history: int = 0
    total_pools: int = 0
    average_pool_lifetime: float = 0.0


@dataclass
class TokenAnalysis:
    age: float = 0.0
    holders: int = 0
    transfers: int = 0
    suspicious_transfers: int = 0


@dataclass
class PoolAnalysis:
    liquidity_score: float = 0.0
    price_impact: float = 100.0
    buy_tax: float = 0.0
    sell_tax: float = 0.0
    lp_tokens_locked: bool = False
    lock_duration: int = 0


@dataclass
class SecurityDetails:
    lp_locked: bool = False
    is_honeypot: bool = False
    has_ownership: bool = False
    has_mint_function: bool = False
    dev_wallet_age: float = 0.0
    dev_wallet_tx_count: int = 0
    token_holders: int = 0
    pool_liquidity: float = 0.0
    ownership_renounced: bool = False
    minting_enabled: bool = False
    dev_wallet_analysis: DevWalletAnalysis = field(default_factory=DevWalletAnalysis)
    token_analysis: TokenAnalysis = field(default_factory=TokenAnalysis)
    pool_analysis: PoolAnalysis = field(default_factory=PoolAnalysis)


@dataclass
class SecurityCheckResult:
    is_secure: bool
    score: float
    warnings: list[str] = field(default_factory=list)
    details: SecurityDetails = field(default_factory=SecurityDetails)
    fatal_signals: list[str] = field(default_factory=list)
    sub_scores: dict[str, float] = field(default_factory=dict)

    @classmethod
    def unavailable(cls, reason: str) -> "SecurityCheckResult":
        return cls(is_secure=False, score=0.0, warnings=[reason])
