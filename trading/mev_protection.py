"""MEV-aware transaction crafting, submission with retries and frontrun checks."""

from __future__ import annotations

import asyncio
import logging
import random
from collections import OrderedDict
from dataclasses import replace
from typing import Any, Awaitable, Callable

import config
from chain.interfaces import ChainQuery, GasSnapshot, NetworkConditions, TransactionRequest, TransactionSubmitter
from trading.errors import ExecutionFailed, GasCeilingExceeded, Timeout
from trading.models import GasSettings

logger = logging.getLogger(__name__)

CONGESTED = 0.5
GAS_PREMIUM = 1.2
RETRY_GAS_BUMP = 1.1
MAX_TRACKED_SNAPSHOTS = 1024


def _percentile(values: list[int], pct: float) -> float:
    ordered = sorted(values)
    if not ordered:
        return 0.0
    idx = min(len(ordered) - 1, max(0, int(round(pct * (len(ordered) - 1)))))
    return float(ordered[idx])


def _pick(value: Any, name: str, default: Any) -> Any:
    return value if value is not None else getattr(config, name, default)


class MEVProtection:
    def __init__(
        self,
        network: NetworkConditions,
        submitter: TransactionSubmitter,
        chain: ChainQuery | None = None,
        *,
        max_gas_price: int | None = None,
        max_gas_budget: int | None = None,
        min_gas_price: int | None = None,
        priority_fee: int | None = None,
        max_retries: int | None = None,
        backoff_base_seconds: float | None = None,
        backoff_max_seconds: float | None = None,
        jitter_seconds: float | None = None,
        submit_timeout_seconds: float | None = None,
        frontrun_tolerance_percent: float | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._network = network
        self._submitter = submitter
        self._chain = chain
        self.max_gas_price = int(_pick(max_gas_price, "MAX_GAS_PRICE", 5000))
        self.max_gas_budget = int(_pick(max_gas_budget, "MEV_MAX_GAS_BUDGET", 50_000_000))
        self.min_gas_price = int(_pick(min_gas_price, "MEV_MIN_GAS_PRICE", 1000))
        self.priority_fee = int(_pick(priority_fee, "MEV_PRIORITY_FEE", 0))
        self.max_retries = max(1, int(_pick(max_retries, "MEV_MAX_RETRIES", 3)))
        self._backoff_base = max(0.0, float(_pick(backoff_base_seconds, "MEV_BACKOFF_BASE_SECONDS", 0.25)))
        self._backoff_max = max(self._backoff_base, float(_pick(backoff_max_seconds, "MEV_BACKOFF_MAX_SECONDS", 4.0)))
        self._jitter = max(0.0, float(_pick(jitter_seconds, "MEV_JITTER_SECONDS", 0.05)))
        self._submit_timeout = float(_pick(submit_timeout_seconds, "MEV_SUBMIT_TIMEOUT_SECONDS", 15.0))
        self._frontrun_tolerance = float(_pick(frontrun_tolerance_percent, "MEV_FRONTRUN_TOLERANCE_PERCENT", 1.5))
        self._network_timeout = float(getattr(config, "NETWORK_TIMEOUT_SECONDS", 8.0))
        self._sleep = sleep
        self._last_congestion = 0.0
        self._snapshots: OrderedDict[str, tuple[float, str]] = OrderedDict()
        self.last_attempt_count = 0

    def backoff_delay(self, attempt: int) -> float:
        exp = min(self._backoff_max, self._backoff_base * (2 ** max(0, attempt - 1)))
        if exp <= 0:
            return 0.0
        return exp + random.uniform(0.0, self._jitter)

    async def _snapshot(self) -> GasSnapshot | None:
        try:
            return await asyncio.wait_for(self._network.get_gas_snapshot(), timeout=self._network_timeout)
        except Exception as exc:
            logger.warning("MEV_GAS_SAMPLE_FAIL error=%s fallback_price=%s", exc, self.min_gas_price)
            return None

    async def get_optimal_gas_settings(self) -> GasSettings:
        """Pick a gas price from the live distribution, bounded by the configured ceiling."""
        ceiling = self.max_gas_price
        snap = await self._snapshot()
        if snap is None:
            return GasSettings(gas_price=min(self.min_gas_price, ceiling), gas_budget=self.max_gas_budget)

        if snap.mean > ceiling:
            raise GasCeilingExceeded(snap.mean, ceiling)

        self._last_congestion = float(snap.congestion)
        pct = 0.75 if snap.congestion >= CONGESTED else 0.5
        base = max(float(snap.reference_price), _percentile(snap.samples, pct))
        price = max(self.min_gas_price, int(base * GAS_PREMIUM))
        return GasSettings(gas_price=min(price, ceiling), gas_budget=self.max_gas_budget)

    async def protect_transaction(
        self, tx: TransactionRequest, *, attempt: int = 1, settings: GasSettings | None = None
    ) -> TransactionRequest:
        if settings is None:
            settings = await self.get_optimal_gas_settings()
        priority = self.priority_fee * (2 if self._last_congestion >= CONGESTED else 1)
        bumped = int(settings.gas_price * (RETRY_GAS_BUMP ** max(0, attempt - 1)))
        gas_price = min(self.max_gas_price, bumped + priority)
        return replace(
            tx,
            gas_price=gas_price,
            gas_budget=settings.gas_budget,
            priority_fee=min(priority, gas_price),
        )

    async def execute_protected_transaction(self, tx: TransactionRequest, settings: GasSettings | None = None) -> str:
        """Submit with retries. `settings`, when given, prices the first attempt; retries re-sample."""
        last_error: BaseException | None = None
        for attempt in range(1, self.max_retries + 1):
            self.last_attempt_count = attempt
            try:
                protected = await self.protect_transaction(
                    tx, attempt=attempt, settings=settings if attempt == 1 else None
                )
                tx_id = await asyncio.wait_for(self._submitter.submit(protected), timeout=self._submit_timeout)
                if tx.expected_price:
                    self._remember_snapshot(tx_id, float(tx.expected_price), tx.side)
                logger.info(
                    "MEV_SUBMIT_OK tx=%s attempt=%s/%s gas_price=%s budget=%s",
                    tx_id,
                    attempt,
                    self.max_retries,
                    protected.gas_price,
                    protected.gas_budget,
                )
                return tx_id
            except GasCeilingExceeded:
                raise
            except asyncio.TimeoutError:
                last_error = Timeout(f"submission timed out after {self._submit_timeout:.1f}s", source="submit")
            except Exception as exc:
                last_error = exc

            logger.warning(
                "MEV_SUBMIT_FAIL pool=%s attempt=%s/%s error=%s",
                tx.pool_id,
                attempt,
                self.max_retries,
                last_error,
            )
            if attempt < self.max_retries:
                await self._sleep(self.backoff_delay(attempt))

        raise ExecutionFailed(self.max_retries, last_error) from last_error

    def _remember_snapshot(self, tx_id: str, expected_price: float, side: str) -> None:
        self._snapshots[tx_id] = (expected_price, side)
        while len(self._snapshots) > MAX_TRACKED_SNAPSHOTS:
            self._snapshots.popitem(last=False)

    @property
    def tracked_snapshot_count(self) -> int:
        return len(self._snapshots)

    async def check_frontrunning(self, tx_id: str) -> bool:
        try:
            if self._chain is None:
                status = await asyncio.wait_for(self._submitter.get_status(tx_id), timeout=self._network_timeout)
                return str(status).lower() != "success"
            record = await asyncio.wait_for(self._chain.get_transaction(tx_id), timeout=self._network_timeout)
        except Exception as exc:
            logger.error("MEV_FRONTRUN_CHECK_FAIL tx=%s error=%s", tx_id, exc)
            return True
        if record is None or str(record.status).lower() != "success":
            return True

        snapshot = self._snapshots.pop(tx_id, None)
        realized = record.executed_price
        if snapshot is None or realized is None:
            return False
        expected, side = snapshot
        tolerance = self._frontrun_tolerance / 100.0
        if side == "sell":
            flagged = realized < expected * (1.0 - tolerance)
        else:
            flagged = realized > expected * (1.0 + tolerance)
        if flagged:
            logger.warning(
                "MEV_FRONTRUN_SUSPECTED tx=%s side=%s expected_price=%.10f realized_price=%.10f",
                tx_id,
                side,
                expected,
                realized,
            )
        return flagged
