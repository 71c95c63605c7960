"""Stable log contracts for trade decision events."""

from __future__ import annotations

import hashlib
import re
from datetime import datetime, timezone
from typing import Any

LOG_SCHEMA_VERSION = "2026-10-01.v1"

SCHEMA_TRADE_DECISION = "trade_decision.v1"

_STAGE_PREFIX: dict[str, str] = {
    "gate": "GATE",
    "security": "SECURITY",
    "market": "MARKET",
    "execute": "EXEC",
    "profit": "PROFIT",
    "exit": "EXIT",
    "unknown": "UNKNOWN",
}

_REASON_CODE_OVERRIDES: dict[str, str] = {
    "trading_disabled": "GATE_TRADING_DISABLED",
    "limit_exceeded": "GATE_LIMIT_EXCEEDED",
    "unsupported_dex": "GATE_UNSUPPORTED_DEX",
    "security_rejected": "SECURITY_REJECTED",
    "data_unavailable": "SECURITY_DATA_UNAVAILABLE",
    "slippage_exceeded": "MARKET_SLIPPAGE_EXCEEDED",
    "gas_too_high": "MARKET_GAS_TOO_HIGH",
    "gas_ceiling_exceeded": "MARKET_GAS_CEILING_EXCEEDED",
    "execution_failed": "EXEC_FAILED",
    "timeout": "EXEC_TIMEOUT",
    "buy_live": "EXEC_BUY_LIVE",
    "sell_live": "EXEC_SELL_LIVE",
    "transaction_not_found": "PROFIT_TX_NOT_FOUND",
    "incomplete_pair": "PROFIT_INCOMPLETE_PAIR",
    "profit_realized": "PROFIT_REALIZED",
    "take_profit": "EXIT_TAKE_PROFIT",
    "stop_loss": "EXIT_STOP_LOSS",
    "trailing_stop": "EXIT_TRAILING_STOP",
    "frontrun_suspected": "EXIT_FRONTRUN_SUSPECTED",
}

REASON_CODE_TAXONOMY: dict[str, dict[str, str]] = {
    "GATE_TRADING_DISABLED": {"severity": "INFO", "category": "gate", "title": "Trading disabled"},
    "GATE_LIMIT_EXCEEDED": {"severity": "INFO", "category": "gate", "title": "Capital or daily limit reached"},
    "GATE_UNSUPPORTED_DEX": {"severity": "WARN", "category": "gate", "title": "No builder for DEX"},
    "SECURITY_REJECTED": {"severity": "WARN", "category": "security", "title": "Security score veto"},
    "SECURITY_DATA_UNAVAILABLE": {"severity": "WARN", "category": "security", "title": "Security data unavailable"},
    "MARKET_SLIPPAGE_EXCEEDED": {"severity": "INFO", "category": "market", "title": "Quoted slippage above limit"},
    "MARKET_GAS_TOO_HIGH": {"severity": "INFO", "category": "market", "title": "Network gas above limit"},
    "MARKET_GAS_CEILING_EXCEEDED": {"severity": "INFO", "category": "market", "title": "Gas ceiling exceeded"},
    "EXEC_FAILED": {"severity": "ERROR", "category": "execute", "title": "Submission retries exhausted"},
    "EXEC_TIMEOUT": {"severity": "WARN", "category": "execute", "title": "Submission timed out"},
    "EXEC_BUY_LIVE": {"severity": "INFO", "category": "execute", "title": "Live buy submitted"},
    "EXEC_SELL_LIVE": {"severity": "INFO", "category": "execute", "title": "Live sell submitted"},
    "PROFIT_TX_NOT_FOUND": {"severity": "WARN", "category": "profit", "title": "Transaction not found"},
    "PROFIT_INCOMPLETE_PAIR": {"severity": "WARN", "category": "profit", "title": "Buy/sell pair mismatch"},
    "PROFIT_REALIZED": {"severity": "INFO", "category": "profit", "title": "Round trip closed"},
    "EXIT_TAKE_PROFIT": {"severity": "INFO", "category": "exit", "title": "Take profit reached"},
    "EXIT_STOP_LOSS": {"severity": "WARN", "category": "exit", "title": "Stop loss reached"},
    "EXIT_TRAILING_STOP": {"severity": "INFO", "category": "exit", "title": "Trailing stop reached"},
    "EXIT_FRONTRUN_SUSPECTED": {"severity": "WARN", "category": "exit", "title": "Entry filled worse than quoted"},
}


def _safe_float(value: Any, default: float = 0.0) -> float:
    try:
        return float(value)
    except Exception:
        return float(default)


def _as_ts(value: Any) -> float:
    if value is None or value == "":
        return datetime.now(timezone.utc).timestamp()
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).strip()
    try:
        dt = datetime.fromisoformat(text.replace("Z", "+00:00"))
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt.timestamp()
    except Exception:
        return datetime.now(timezone.utc).timestamp()


def _iso_from_ts(ts: float) -> str:
    try:
        return datetime.fromtimestamp(float(ts), tz=timezone.utc).isoformat()
    except Exception:
        return datetime.now(timezone.utc).isoformat()


def _normalize_reason_text(value: Any) -> str:
    text = str(value or "").strip().lower()
    if not text:
        return ""
    text = re.sub(r"[^a-z0-9]+", "_", text)
    return re.sub(r"_+", "_", text).strip("_")


def _sanitize_code_token(value: str) -> str:
    text = re.sub(r"[^A-Z0-9]+", "_", str(value or "").strip().upper())
    text = re.sub(r"_+", "_", text).strip("_")
    return text or "UNKNOWN"


def _stage_prefix(value: Any) -> str:
    stage = _normalize_reason_text(value) or "unknown"
    return _STAGE_PREFIX.get(stage, "UNKNOWN")


def reason_code_for_event(*, reason: Any, decision_stage: Any = "", decision: Any = "") -> str:
    normalized_reason = _normalize_reason_text(reason)
    if not normalized_reason:
        normalized_decision = _normalize_reason_text(decision)
        if normalized_decision:
            return f"{_stage_prefix(decision_stage)}_{_sanitize_code_token(normalized_decision)}"
        return "UNKNOWN"
    override = _REASON_CODE_OVERRIDES.get(normalized_reason)
    if override:
        return override
    return f"{_stage_prefix(decision_stage)}_{_sanitize_code_token(normalized_reason)}"


def reason_code_meta(code: str) -> dict[str, str]:
    key = _sanitize_code_token(code)
    if key in REASON_CODE_TAXONOMY:
        return dict(REASON_CODE_TAXONOMY[key])
    return {
        "severity": "INFO",
        "category": "unknown",
        "title": key.replace("_", " ").title(),
    }


def _digest_seed(*parts: Any) -> str:
    seed = "|".join(str(p or "").strip() for p in parts)
    return hashlib.sha1(seed.encode("utf-8", errors="ignore")).hexdigest()


def stamp_event(event: dict[str, Any], *, schema_name: str, event_type: str, run_tag: str = "") -> dict[str, Any]:
    payload = dict(event or {})
    ts = _as_ts(payload.get("ts", payload.get("timestamp")))
    payload["ts"] = float(ts)
    payload["timestamp"] = str(payload.get("timestamp", "") or _iso_from_ts(ts))
    payload.setdefault("schema_version", LOG_SCHEMA_VERSION)
    payload.setdefault("schema_name", schema_name)
    payload.setdefault("event_type", str(event_type or "event"))
    if run_tag:
        payload.setdefault("run_tag", str(run_tag))
    pool_id = str(payload.get("pool_id", "") or "").strip().lower()
    if not str(payload.get("trace_id", "") or "").strip():
        payload["trace_id"] = f"tr_{_digest_seed(pool_id, payload.get('token_address', ''), f'{ts:.6f}')[:20]}"
    if not str(payload.get("decision_id", "") or "").strip():
        payload["decision_id"] = "dec_" + _digest_seed(
            payload.get("run_tag", run_tag),
            payload["trace_id"],
            payload.get("decision_stage", ""),
            payload.get("decision", ""),
            payload.get("reason", ""),
            pool_id,
            f"{ts:.6f}",
        )[:20]
    return payload


def trade_decision_event(event: dict[str, Any], *, run_tag: str = "") -> dict[str, Any]:
    payload = stamp_event(
        event,
        schema_name=SCHEMA_TRADE_DECISION,
        event_type=str((event or {}).get("event_type", "trade_decision")),
        run_tag=run_tag,
    )
    payload.setdefault("decision_stage", "unknown")
    payload.setdefault("decision", "unknown")
    payload["reason"] = str(payload.get("reason", "") or "")
    payload["pool_id"] = str(payload.get("pool_id", "") or "")
    payload["dex"] = str(payload.get("dex", "") or "")
    payload["amount"] = _safe_float(payload.get("amount", 0.0), 0.0)
    payload["security_score"] = _safe_float(payload.get("security_score", 0.0), 0.0)
    payload["reason_code"] = str(
        payload.get("reason_code", "")
        or reason_code_for_event(
            reason=payload.get("reason", ""),
            decision_stage=payload.get("decision_stage", ""),
            decision=payload.get("decision", ""),
        )
    ).strip().upper()
    meta = reason_code_meta(payload["reason_code"])
    payload["reason_severity"] = str(payload.get("reason_severity", meta.get("severity", "INFO")) or "INFO")
    payload["reason_category"] = str(payload.get("reason_category", meta.get("category", "unknown")) or "unknown")
    payload["token_address"] = str(payload.get("token_address", "") or "").strip()
    return payload
