from __future__ import annotations

import unittest

from utils import log_contracts


class LogContractsTests(unittest.TestCase):
    def test_trade_event_maps_error_code_to_reason_code(self) -> None:
        row = log_contracts.trade_decision_event(
            {
                "decision_stage": "security",
                "decision": "skip",
                "reason": "security_rejected",
                "pool_id": "0xPOOL",
                "dex": "Cetus",
                "amount": "0.4",
                "security_score": 41.5,
            },
            run_tag="run_a",
        )
        self.assertEqual(row["reason_code"], "SECURITY_REJECTED")
        self.assertEqual(row["reason_category"], "security")
        self.assertEqual(row["reason_severity"], "WARN")
        self.assertEqual(row["amount"], 0.4)
        self.assertEqual(row["run_tag"], "run_a")
        self.assertEqual(row["schema_name"], log_contracts.SCHEMA_TRADE_DECISION)
        self.assertTrue(str(row.get("trace_id", "")).startswith("tr_"))
        self.assertTrue(str(row.get("decision_id", "")).startswith("dec_"))

    def test_unmapped_reason_uses_stage_prefix(self) -> None:
        code = log_contracts.reason_code_for_event(reason="quote stale", decision_stage="market", decision="skip")
        self.assertEqual(code, "MARKET_QUOTE_STALE")
        meta = log_contracts.reason_code_meta(code)
        self.assertEqual(meta["category"], "unknown")
        self.assertEqual(meta["title"], "Market Quote Stale")

    def test_empty_reason_falls_back_to_decision(self) -> None:
        code = log_contracts.reason_code_for_event(reason="", decision_stage="execute", decision="open")
        self.assertEqual(code, "EXEC_OPEN")
        self.assertEqual(log_contracts.reason_code_for_event(reason="", decision=""), "UNKNOWN")

    def test_explicit_trace_id_is_kept(self) -> None:
        row = log_contracts.trade_decision_event(
            {"trace_id": "tr_fixed", "decision_stage": "execute", "decision": "open", "reason": "buy_live"},
        )
        self.assertEqual(row["trace_id"], "tr_fixed")
        self.assertEqual(row["reason_code"], "EXEC_BUY_LIVE")
        self.assertNotIn("run_tag", row)


if __name__ == "__main__":
    unittest.main()
