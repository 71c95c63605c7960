from __future__ import annotations

import asyncio
import unittest
from typing import Any

from chain.evm_node import Web3GasOracle, Web3TransactionSubmitter
from chain.interfaces import Dex, TransactionRequest


class _Receipt:
    def __init__(self, status: int) -> None:
        self.status = status


class _Hash(bytes):
    def hex(self) -> str:  # type: ignore[override]
        return "0x" + super().hex()


class _StubEth:
    def __init__(self, receipt_status: int = 1) -> None:
        self.gas_price = 2_000_000_000
        self.sent: list[bytes] = []
        self.estimates: list[dict[str, Any]] = []
        self.receipt_status = receipt_status

    def fee_history(self, blocks: int, newest: str, percentiles: list[int]) -> dict[str, Any]:
        return {
            "baseFeePerGas": [1_000_000_000, 1_100_000_000, 1_200_000_000],
            "reward": [[100_000_000], [100_000_000], [200_000_000]],
            "gasUsedRatio": [0.4, 0.6],
        }

    def get_transaction_count(self, address: str, block: str) -> int:
        return 7

    def estimate_gas(self, params: dict[str, Any]) -> int:
        self.estimates.append(dict(params))
        return 100_000

    def send_raw_transaction(self, raw: bytes) -> _Hash:
        self.sent.append(raw)
        return _Hash(b"\x12\x34")

    def wait_for_transaction_receipt(self, tx_hash: bytes, timeout: int) -> _Receipt:
        return _Receipt(self.receipt_status)


class _StubWeb3:
    def __init__(self, receipt_status: int = 1) -> None:
        self.eth = _StubEth(receipt_status)

    @staticmethod
    def to_checksum_address(value: str) -> str:
        return value


def _tx(**kwargs) -> TransactionRequest:  # type: ignore[no-untyped-def]
    base = {
        "dex": Dex.CETUS,
        "pool_id": "0xpool",
        "token_address": "0xtoken",
        "amount": 0.4,
        "payload": {"to": "0xrouter", "data": "0xabcdef", "value": 10},
        "gas_price": 3_000_000_000,
        "gas_budget": 200_000,
        "priority_fee": 5_000_000_000,
    }
    base.update(kwargs)
    return TransactionRequest(**base)


class Web3GasOracleTests(unittest.TestCase):
    def test_snapshot_adds_tip_to_base_fee(self) -> None:
        oracle = Web3GasOracle(_StubWeb3(), blocks=3)  # type: ignore[arg-type]
        snap = asyncio.run(oracle.get_gas_snapshot())
        self.assertEqual(snap.reference_price, 2_000_000_000)
        self.assertEqual(snap.samples, [1_100_000_000, 1_200_000_000, 1_400_000_000])
        self.assertAlmostEqual(snap.congestion, 0.5)


class Web3TransactionSubmitterTests(unittest.TestCase):
    def test_submit_signs_with_capped_fees(self) -> None:
        w3 = _StubWeb3()
        signed: list[dict[str, Any]] = []

        def _sign(params: dict[str, Any]) -> bytes:
            signed.append(params)
            return b"raw"

        submitter = Web3TransactionSubmitter(w3, "0xme", _sign, chain_id=8453)  # type: ignore[arg-type]
        tx_hash = asyncio.run(submitter.submit(_tx()))
        self.assertEqual(tx_hash, "0x1234")
        params = signed[0]
        self.assertEqual(params["maxFeePerGas"], 3_000_000_000)
        self.assertEqual(params["maxPriorityFeePerGas"], 3_000_000_000)
        self.assertEqual(params["gas"], 115_000)
        self.assertEqual(params["nonce"], 7)
        self.assertEqual(w3.eth.sent, [b"raw"])

    def test_gas_estimate_above_budget_is_refused(self) -> None:
        submitter = Web3TransactionSubmitter(_StubWeb3(), "0xme", lambda _p: b"raw")  # type: ignore[arg-type]
        with self.assertRaises(RuntimeError):
            asyncio.run(submitter.submit(_tx(gas_budget=50_000)))

    def test_reverted_receipt_raises(self) -> None:
        submitter = Web3TransactionSubmitter(_StubWeb3(receipt_status=0), "0xme", lambda _p: b"raw")  # type: ignore[arg-type]
        with self.assertRaises(RuntimeError):
            asyncio.run(submitter.submit(_tx()))

    def test_unprotected_request_is_rejected(self) -> None:
        submitter = Web3TransactionSubmitter(_StubWeb3(), "0xme", lambda _p: b"raw")  # type: ignore[arg-type]
        with self.assertRaises(ValueError):
            asyncio.run(submitter.submit(_tx(gas_price=None)))


if __name__ == "__main__":
    unittest.main()
