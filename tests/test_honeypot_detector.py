from __future__ import annotations

import asyncio
import unittest

from chain.interfaces import SimulationResult
from security.honeypot import HoneypotDetector
from trading.errors import DataUnavailable, Timeout


class _StubModules:
    def __init__(self, functions: list[str] | None = None, exc: Exception | None = None) -> None:
        self.functions = functions or []
        self.exc = exc
        self.seen: list[str] = []

    async def get_module_functions(self, coin_type: str) -> list[str]:
        self.seen.append(coin_type)
        if self.exc is not None:
            raise self.exc
        return list(self.functions)


class _StubSimulator:
    def __init__(self, result: SimulationResult | None = None, delay: float = 0.0, exc: Exception | None = None) -> None:
        self.result = result
        self.delay = delay
        self.exc = exc
        self.calls: list[tuple[str, int]] = []

    async def simulate_sell(self, coin_type: str, amount: int) -> SimulationResult:
        self.calls.append((coin_type, amount))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.exc is not None:
            raise self.exc
        assert self.result is not None
        return self.result


EXPECTED = ["pool::swap", "pool_script::swap_b2a"]


class HoneypotDetectorTests(unittest.TestCase):
    def _detector(self, chain: _StubModules, simulator: _StubSimulator, timeout: float = 1.0) -> HoneypotDetector:
        return HoneypotDetector(
            chain,  # type: ignore[arg-type]
            simulator,
            simulation_amount=1000,
            timeout_seconds=timeout,
            expected_sell_functions=EXPECTED,
        )

    def test_sellable_token_reports_sell_tax(self) -> None:
        chain = _StubModules(["0xabc::gem::transfer"])
        simulator = _StubSimulator(
            SimulationResult(
                success=True,
                called_functions=["0xcetus::pool_script::swap_b2a"],
                amount_in=1000,
                expected_out=2000,
                amount_out=1900,
            )
        )
        result = asyncio.run(self._detector(chain, simulator).check_is_honeypot("abc::gem::GEM"))
        self.assertFalse(result.is_honeypot)
        self.assertAlmostEqual(result.sell_tax, 5.0)
        self.assertEqual(chain.seen, ["0xabc::gem::GEM"])
        self.assertEqual(simulator.calls, [("0xabc::gem::GEM", 1000)])

    def test_suspicious_module_function_short_circuits(self) -> None:
        chain = _StubModules(["0xabc::gem::transfer", "0xabc::gem::freeze_account", "0xabc::admin::pause"])
        simulator = _StubSimulator(SimulationResult(success=True))
        result = asyncio.run(self._detector(chain, simulator).check_is_honeypot("0xabc::gem::GEM"))
        self.assertTrue(result.is_honeypot)
        self.assertEqual(result.suspicious_functions, ["0xabc::gem::freeze_account", "0xabc::admin::pause"])
        self.assertEqual(simulator.calls, [])

    def test_reverted_sell_is_honeypot(self) -> None:
        simulator = _StubSimulator(SimulationResult(success=False, error="MoveAbort(code=7)"))
        result = asyncio.run(self._detector(_StubModules(), simulator).check_is_honeypot("0xabc::gem::GEM"))
        self.assertTrue(result.is_honeypot)
        self.assertIn("sell simulation reverted", result.reason or "")
        self.assertEqual(result.sell_tax, 100.0)

    def test_unexpected_sell_path_is_honeypot(self) -> None:
        simulator = _StubSimulator(
            SimulationResult(
                success=True,
                called_functions=["0xcetus::pool::swap", "0xabc::gem::tax_hook"],
                expected_out=10,
                amount_out=10,
            )
        )
        result = asyncio.run(self._detector(_StubModules(), simulator).check_is_honeypot("0xabc::gem::GEM"))
        self.assertTrue(result.is_honeypot)
        self.assertEqual(result.suspicious_functions, ["0xabc::gem::tax_hook"])

    def test_simulation_timeout_is_indeterminate(self) -> None:
        simulator = _StubSimulator(SimulationResult(success=True), delay=0.5)
        detector = self._detector(_StubModules(), simulator, timeout=0.05)
        with self.assertRaises(Timeout):
            asyncio.run(detector.check_is_honeypot("0xabc::gem::GEM"))

    def test_network_failure_is_never_a_clean_result(self) -> None:
        chain = _StubModules(exc=ConnectionError("connection reset"))
        detector = self._detector(chain, _StubSimulator(SimulationResult(success=True)))
        with self.assertRaises(DataUnavailable) as ctx:
            asyncio.run(detector.check_is_honeypot("0xabc::gem::GEM"))
        self.assertEqual(ctx.exception.source, "honeypot")


if __name__ == "__main__":
    unittest.main()
