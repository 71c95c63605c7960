"""EVM gas oracle and submitter over web3 (blocking calls run off the event loop)."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable

from web3 import HTTPProvider, Web3
from web3.exceptions import TransactionNotFound as Web3TransactionNotFound

import config
from chain.interfaces import GasSnapshot, TransactionRequest

logger = logging.getLogger(__name__)

# Returns raw signed transaction bytes for a fully populated tx dict.
RawSigner = Callable[[dict[str, Any]], bytes]


def connect(rpc_url: str | None = None) -> Web3:
    url = (rpc_url or str(getattr(config, "EVM_RPC_URL", "") or "")).strip()
    if not url:
        raise ValueError("EVM_RPC_URL is empty")
    timeout = float(getattr(config, "RPC_TIMEOUT_SECONDS", 10.0))
    w3 = Web3(HTTPProvider(url, request_kwargs={"timeout": timeout}))
    if not w3.is_connected():
        raise ValueError("Web3 not connected")
    return w3


class Web3GasOracle:
    """NetworkConditions from `eth_feeHistory`: per-block base fee + median tip, congestion from gasUsedRatio."""

    def __init__(self, w3: Web3, *, blocks: int | None = None) -> None:
        self.w3 = w3
        self._blocks = int(blocks or getattr(config, "EVM_FEE_HISTORY_BLOCKS", 20))

    def _snapshot_sync(self) -> GasSnapshot:
        reference = int(self.w3.eth.gas_price or 0)
        history = self.w3.eth.fee_history(self._blocks, "latest", [50])
        base_fees = list(history.get("baseFeePerGas") or [])
        rewards = list(history.get("reward") or [])
        samples = [
            int(base) + int(reward[0] if reward else 0)
            for base, reward in zip(base_fees, rewards)
        ]
        ratios = [float(r) for r in (history.get("gasUsedRatio") or [])]
        congestion = (sum(ratios) / len(ratios)) if ratios else 0.0
        return GasSnapshot(reference_price=reference, samples=samples, congestion=min(1.0, max(0.0, congestion)))

    async def get_gas_snapshot(self) -> GasSnapshot:
        return await asyncio.to_thread(self._snapshot_sync)


class Web3TransactionSubmitter:
    """TransactionSubmitter for EIP-1559 transactions.

    The request payload carries `to`, `data` and `value`; gas price, budget and
    priority fee come from the protected request.
    """

    def __init__(self, w3: Web3, sender: str, sign: RawSigner, *, chain_id: int | None = None) -> None:
        self.w3 = w3
        self.sender = self.w3.to_checksum_address(sender)
        self._sign = sign
        self._chain_id = int(chain_id or getattr(config, "EVM_CHAIN_ID", 8453))
        self._receipt_timeout = int(getattr(config, "EVM_TX_TIMEOUT_SECONDS", 120))

    def _tx_params(self, tx: TransactionRequest) -> dict[str, Any]:
        payload = dict(tx.payload or {})
        if not payload.get("to"):
            raise ValueError("transaction payload has no 'to' address")
        max_fee = int(tx.gas_price or 0)
        if max_fee <= 0:
            raise ValueError("transaction has no gas price; protect it before submitting")
        params: dict[str, Any] = {
            "from": self.sender,
            "to": self.w3.to_checksum_address(payload["to"]),
            "data": payload.get("data", "0x"),
            "value": int(payload.get("value", 0) or 0),
            "chainId": self._chain_id,
            "nonce": self.w3.eth.get_transaction_count(self.sender, "pending"),
            "maxFeePerGas": max_fee,
            "maxPriorityFeePerGas": min(int(tx.priority_fee or 0), max_fee),
            "type": 2,
        }
        gas_limit = int(self.w3.eth.estimate_gas(params)) * 115 // 100
        budget = int(tx.gas_budget or 0)
        if budget > 0 and gas_limit > budget:
            raise RuntimeError(f"gas_estimate_too_high gas={gas_limit} cap={budget}")
        params["gas"] = gas_limit
        return params

    def _send_and_wait(self, tx: TransactionRequest) -> str:
        params = self._tx_params(tx)
        raw_tx = self._sign(params)
        if not raw_tx:
            raise RuntimeError("signed_tx_missing_raw_bytes")
        tx_hash = self.w3.eth.send_raw_transaction(raw_tx)
        receipt = self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self._receipt_timeout)
        if int(receipt.status) != 1:
            raise RuntimeError(f"tx_failed hash={tx_hash.hex()}")
        logger.info("EVM_SUBMIT_OK hash=%s pool=%s side=%s", tx_hash.hex(), tx.pool_id, tx.side)
        return tx_hash.hex()

    async def submit(self, tx: TransactionRequest) -> str:
        return await asyncio.to_thread(self._send_and_wait, tx)

    def _status_sync(self, tx_id: str) -> str:
        try:
            receipt = self.w3.eth.get_transaction_receipt(tx_id)
        except Web3TransactionNotFound:
            return "unknown"
        return "success" if int(receipt.status) == 1 else "failure"

    async def get_status(self, tx_id: str) -> str:
        return await asyncio.to_thread(self._status_sync, tx_id)
