"""Raw risk-signal collection for a candidate pool."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable

import config
from chain.interfaces import ChainQuery, WalletHistory
from security.honeypot import HoneypotDetector
from security.models import RiskSignals
from trading.errors import DataUnavailable, Timeout

logger = logging.getLogger(__name__)


class RiskSignalCollector:
    def __init__(
        self,
        chain: ChainQuery,
        honeypot_detector: HoneypotDetector,
        *,
        timeout_seconds: float | None = None,
        fail_closed_on_indeterminate: bool | None = None,
    ) -> None:
        self._chain = chain
        self._honeypot = honeypot_detector
        self._timeout = float(timeout_seconds or getattr(config, "NETWORK_TIMEOUT_SECONDS", 8.0))
        if fail_closed_on_indeterminate is None:
            fail_closed_on_indeterminate = bool(getattr(config, "SCORE_FAIL_CLOSED_ON_INDETERMINATE", True))
        self._fail_closed = fail_closed_on_indeterminate

    async def _read(self, source: str, call: Awaitable[Any]) -> Any:
        try:
            return await asyncio.wait_for(call, timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            raise Timeout(f"{source} read timed out after {self._timeout:.1f}s", source=source) from exc
        except DataUnavailable:
            raise
        except Exception as exc:
            raise DataUnavailable(f"{source} read failed: {exc}", source=source) from exc

    async def _dev_wallet(self, creator: str | None) -> WalletHistory:
        if not creator:
            # Unknown creator: treat as a brand-new wallet with no history.
            return WalletHistory(account_age_seconds=0.0, tx_count=0)
        return await self._read("dev_wallet", self._chain.get_wallet_history(creator))

    async def collect(self, pool_id: str) -> RiskSignals:
        pool = await self._read("pool", self._chain.get_pool(pool_id))
        token = pool.token

        results = await asyncio.gather(
            self._read("contract", self._chain.get_contract_flags(token)),
            self._read("token", self._chain.get_token_activity(pool_id, token)),
            self._dev_wallet(pool.creator),
            self._honeypot.check_is_honeypot(token),
            return_exceptions=True,
        )
        for item in results[:3]:
            if isinstance(item, BaseException):
                raise item
        contract, activity, dev_wallet, honeypot = results

        honeypot_error = ""
        if isinstance(honeypot, BaseException):
            if not isinstance(honeypot, DataUnavailable) or self._fail_closed:
                raise honeypot
            honeypot_error = str(honeypot)
            logger.warning("SECURITY pool=%s honeypot=indeterminate detail=%s", pool_id, honeypot_error)
            honeypot = None

        return RiskSignals(
            pool=pool,
            contract=contract,
            token=activity,
            dev_wallet=dev_wallet,
            honeypot=honeypot,
            honeypot_error=honeypot_error,
        )
