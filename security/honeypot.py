"""Honeypot detection via module inspection and a dry-run sell."""

from __future__ import annotations

import asyncio
import logging

import config
from chain.interfaces import ChainQuery, TransactionSimulator
from security.models import HoneypotResult
from trading.errors import DataUnavailable, Timeout
from utils.addressing import coin_parts, normalize_coin_type

logger = logging.getLogger(__name__)

HONEYPOT_INDICATORS = (
    "migrate_regulated_currency_to_v2",
    "freeze",
    "pause",
    "blacklist",
    "block",
    "restrict",
)


class HoneypotDetector:
    def __init__(
        self,
        chain: ChainQuery,
        simulator: TransactionSimulator,
        *,
        simulation_amount: int | None = None,
        timeout_seconds: float | None = None,
        expected_sell_functions: list[str] | None = None,
    ) -> None:
        self._chain = chain
        self._simulator = simulator
        self._amount = int(simulation_amount or getattr(config, "HONEYPOT_SIMULATION_AMOUNT", 1000))
        self._timeout = float(timeout_seconds or getattr(config, "HONEYPOT_SIMULATION_TIMEOUT_SECONDS", 6.0))
        expected = expected_sell_functions
        if expected is None:
            expected = list(getattr(config, "HONEYPOT_EXPECTED_SELL_FUNCTIONS", []))
        self._expected = {self._function_key(name) for name in expected}

    @staticmethod
    def _function_key(name: str) -> str:
        # Strip the package address so `0xabc::pool::swap` matches `pool::swap`.
        parts = [p for p in str(name or "").strip().lower().split("::") if p]
        return "::".join(parts[-2:])

    @staticmethod
    def _suspicious(functions: list[str]) -> list[str]:
        return [f for f in functions if any(ind in f.lower() for ind in HONEYPOT_INDICATORS)]

    async def check_is_honeypot(self, coin: str) -> HoneypotResult:
        """Classify `coin` as sellable or trapped.

        Raises DataUnavailable when the verdict cannot be established; a
        network failure is never reported as a clean result.
        """
        coin_type = normalize_coin_type(coin)
        _, module, name = coin_parts(coin_type)

        try:
            functions = await asyncio.wait_for(self._chain.get_module_functions(coin_type), timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            raise Timeout(f"module lookup timed out for {coin_type}", source="honeypot") from exc
        except DataUnavailable:
            raise
        except Exception as exc:
            raise DataUnavailable(f"module lookup failed: {exc}", source="honeypot") from exc

        suspicious = self._suspicious(list(functions or []))
        if suspicious:
            logger.info("HONEYPOT coin=%s reason=suspicious_functions functions=%s", coin_type, ",".join(suspicious))
            return HoneypotResult(
                is_honeypot=True,
                reason=f"Suspicious functions found in {module}/{name}",
                suspicious_functions=suspicious,
            )

        try:
            sim = await asyncio.wait_for(self._simulator.simulate_sell(coin_type, self._amount), timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            raise Timeout(f"sell simulation timed out for {coin_type}", source="honeypot") from exc
        except DataUnavailable:
            raise
        except Exception as exc:
            raise DataUnavailable(f"sell simulation failed: {exc}", source="honeypot") from exc

        if not sim.success:
            logger.info("HONEYPOT coin=%s reason=sell_reverted error=%s", coin_type, sim.error)
            return HoneypotResult(
                is_honeypot=True,
                reason=f"sell simulation reverted: {sim.error or 'unknown error'}",
                sell_tax=100.0,
            )

        unexpected = [f for f in sim.called_functions if self._function_key(f) not in self._expected]
        if unexpected:
            logger.info("HONEYPOT coin=%s reason=unexpected_sell_path functions=%s", coin_type, ",".join(unexpected))
            return HoneypotResult(
                is_honeypot=True,
                reason="sell path differs from expected pool swap",
                suspicious_functions=unexpected,
            )

        sell_tax = 0.0
        if sim.expected_out > 0:
            sell_tax = max(0.0, (sim.expected_out - sim.amount_out) / sim.expected_out * 100.0)
        return HoneypotResult(is_honeypot=False, sell_tax=round(sell_tax, 4))
