"""Composite security scoring for newly discovered pools."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import config
from security.collectors import RiskSignalCollector
from security.models import (
    DevWalletAnalysis,
    PoolAnalysis,
    RiskSignals,
    SecurityCheckResult,
    SecurityDetails,
    TokenAnalysis,
)
from trading.errors import DataUnavailable
from utils.addressing import coin_symbol

logger = logging.getLogger(__name__)

FATAL_HONEYPOT = "honeypot"
FATAL_OWNER_MINT = "ownership_with_mint"
FATAL_BLACKLISTED = "blacklisted"


@dataclass(frozen=True)
class ScoreWeights:
    liquidity: float = 20.0
    lp_lock: float = 10.0
    contract: float = 15.0
    honeypot: float = 20.0
    dev_wallet: float = 20.0
    token: float = 15.0

    @classmethod
    def from_config(cls) -> "ScoreWeights":
        return cls(
            liquidity=float(getattr(config, "SCORE_WEIGHT_LIQUIDITY", 20.0)),
            lp_lock=float(getattr(config, "SCORE_WEIGHT_LP_LOCK", 10.0)),
            contract=float(getattr(config, "SCORE_WEIGHT_CONTRACT", 15.0)),
            honeypot=float(getattr(config, "SCORE_WEIGHT_HONEYPOT", 20.0)),
            dev_wallet=float(getattr(config, "SCORE_WEIGHT_DEV_WALLET", 20.0)),
            token=float(getattr(config, "SCORE_WEIGHT_TOKEN", 15.0)),
        )


class SecurityScorer:
    def __init__(
        self,
        collector: RiskSignalCollector,
        *,
        min_security_score: float | None = None,
        weights: ScoreWeights | None = None,
    ) -> None:
        self._collector = collector
        if min_security_score is None:
            min_security_score = float(getattr(config, "MIN_SECURITY_SCORE", 70.0))
        self.min_security_score = float(min_security_score)
        self.weights = weights or ScoreWeights.from_config()
        self._min_liquidity = float(getattr(config, "SCORE_MIN_LIQUIDITY", 300.0))
        self._target_liquidity = max(1.0, float(getattr(config, "SCORE_TARGET_LIQUIDITY", 5000.0)))
        self._min_holders = int(getattr(config, "SCORE_MIN_HOLDERS", 100))
        self._min_token_age = float(getattr(config, "SCORE_MIN_TOKEN_AGE_SECONDS", 3600))
        self._min_dev_age = float(getattr(config, "SCORE_MIN_DEV_WALLET_AGE_SECONDS", 7 * 24 * 60 * 60))
        self._min_dev_txs = int(getattr(config, "SCORE_MIN_DEV_WALLET_TX_COUNT", 10))
        self._max_sell_tax = float(getattr(config, "SCORE_MAX_SELL_TAX_PERCENT", 10.0))
        self._blacklist = {str(s).upper() for s in getattr(config, "TOKEN_BLACKLIST", [])}

    async def evaluate(self, pool_id: str, dex: str) -> SecurityCheckResult:
        try:
            signals = await self._collector.collect(pool_id)
        except DataUnavailable as exc:
            logger.warning("SECURITY pool=%s dex=%s verdict=unavailable source=%s detail=%s", pool_id, dex, exc.source, exc)
            return SecurityCheckResult.unavailable(f"Data unavailable ({exc.source}): {exc}")
        except Exception as exc:
            logger.exception("SECURITY pool=%s dex=%s verdict=error", pool_id, dex)
            return SecurityCheckResult.unavailable(f"Security check failed: {exc}")

        result = self.score_signals(signals)
        logger.info(
            "SECURITY pool=%s dex=%s score=%.1f secure=%s fatal=%s warnings=%s",
            pool_id,
            dex,
            result.score,
            result.is_secure,
            ",".join(result.fatal_signals) or "none",
            len(result.warnings),
        )
        return result

    def score_signals(self, signals: RiskSignals) -> SecurityCheckResult:
        w = self.weights
        warnings: list[str] = []
        fatal: list[str] = []
        sub: dict[str, float] = {}

        pool = signals.pool
        liquidity = float(pool.liquidity)
        sub["liquidity"] = w.liquidity * min(1.0, max(0.0, liquidity / self._target_liquidity))
        if liquidity < self._min_liquidity:
            warnings.append(f"Low liquidity: {liquidity:.2f} below {self._min_liquidity:.2f}")

        sub["lp_lock"] = w.lp_lock if pool.lp_locked else 0.0
        if not pool.lp_locked:
            warnings.append("LP tokens are not locked")

        contract = signals.contract
        contract_frac = 1.0
        if contract.has_ownership:
            contract_frac -= 0.5
            warnings.append("Contract still has an owner")
        if contract.has_mint_function:
            contract_frac -= 0.5
            warnings.append("Mint function found")
        if contract.has_ownership and contract.has_mint_function:
            fatal.append(FATAL_OWNER_MINT)
        sub["contract"] = w.contract * contract_frac

        honeypot = signals.honeypot
        if honeypot is None:
            sub["honeypot"] = 0.0
            warnings.append(f"Honeypot check inconclusive: {signals.honeypot_error or 'unknown'}")
        elif honeypot.is_honeypot:
            sub["honeypot"] = 0.0
            fatal.append(FATAL_HONEYPOT)
            reason = honeypot.reason or "sell blocked"
            if honeypot.suspicious_functions:
                reason = f"{reason} ({', '.join(honeypot.suspicious_functions)})"
            warnings.append(f"Possible honeypot detected: {reason}")
        else:
            sub["honeypot"] = w.honeypot
            if honeypot.sell_tax > self._max_sell_tax:
                sub["honeypot"] = w.honeypot * 0.5
                warnings.append(f"High sell tax {honeypot.sell_tax:.1f}%")

        dev = signals.dev_wallet
        if dev.previous_scams > 0 or dev.rug_pulls > 0:
            sub["dev_wallet"] = 0.0
            warnings.append(
                f"Developer wallet history: {dev.previous_scams} previous scams, {dev.rug_pulls} rug pulls"
            )
        else:
            dev_frac = 0.0
            if dev.account_age_seconds >= self._min_dev_age:
                dev_frac += 0.5
            else:
                warnings.append(f"Developer wallet is younger than {self._min_dev_age / 86400:.0f} days")
            if dev.tx_count >= self._min_dev_txs:
                dev_frac += 0.5
            else:
                warnings.append(f"Developer wallet has fewer than {self._min_dev_txs} transactions")
            sub["dev_wallet"] = w.dev_wallet * dev_frac

        token = signals.token
        token_frac = 0.0
        if token.holders >= self._min_holders:
            token_frac += 0.5
        else:
            warnings.append(f"Fewer than {self._min_holders} token holders")
        if token.age_seconds >= self._min_token_age:
            token_frac += 0.25
        else:
            warnings.append("Token is newer than the minimum age")
        if token.suspicious_transfers <= 0:
            token_frac += 0.25
        else:
            warnings.append(f"{token.suspicious_transfers} suspicious large transfers")
        sub["token"] = w.token * token_frac

        symbol = coin_symbol(pool.token)
        if symbol and symbol in self._blacklist:
            fatal.append(FATAL_BLACKLISTED)
            warnings.append(f"Token {symbol} is blacklisted")

        score = round(max(0.0, min(100.0, sum(sub.values()))), 2)
        is_secure = score >= self.min_security_score and not fatal

        details = SecurityDetails(
            lp_locked=pool.lp_locked,
            is_honeypot=bool(honeypot and honeypot.is_honeypot),
            has_ownership=contract.has_ownership,
            has_mint_function=contract.has_mint_function,
            dev_wallet_age=dev.account_age_seconds,
            dev_wallet_tx_count=dev.tx_count,
            token_holders=token.holders,
            pool_liquidity=liquidity,
            ownership_renounced=not contract.has_ownership,
            minting_enabled=contract.has_mint_function,
            dev_wallet_analysis=DevWalletAnalysis(
                previous_scams=dev.previous_scams,
                rug_pull_history=dev.rug_pulls,
                total_pools=dev.total_pools,
                average_pool_lifetime=dev.average_pool_lifetime,
            ),
            token_analysis=TokenAnalysis(
                age=token.age_seconds,
                holders=token.holders,
                transfers=token.transfers,
                suspicious_transfers=token.suspicious_transfers,
            ),
            pool_analysis=PoolAnalysis(
                liquidity_score=min(100.0, liquidity / self._target_liquidity * 100.0),
                price_impact=(100.0 / liquidity) if liquidity > 0 else 100.0,
                buy_tax=0.0,
                sell_tax=honeypot.sell_tax if honeypot else 0.0,
                lp_tokens_locked=pool.lp_locked,
                lock_duration=pool.lock_duration,
            ),
        )
        return SecurityCheckResult(
            is_secure=is_secure,
            score=score,
            warnings=warnings,
            details=details,
            fatal_signals=fatal,
            sub_scores={k: round(v, 2) for k, v in sub.items()},
        )
