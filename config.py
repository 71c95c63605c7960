"""Application configuration."""

import os
from pathlib import Path
from typing import Dict, List

from dotenv import load_dotenv


def _load_dotenv_safe(dotenv_path: str | None = None, *, override: bool = False) -> None:
    """Load dotenv using UTF-8-SIG so BOM-prefixed files don't break first key parsing."""
    try:
        load_dotenv(dotenv_path=dotenv_path, override=override, encoding="utf-8-sig")
    except TypeError:
        # Older python-dotenv versions may not expose the `encoding` argument.
        load_dotenv(dotenv_path=dotenv_path, override=override)


# Load base environment first, then optional per-instance override env file.
_load_dotenv_safe()
_BOT_ENV_FILE = os.getenv("BOT_ENV_FILE", "").strip()
if _BOT_ENV_FILE:
    _bot_env_path = Path(_BOT_ENV_FILE).expanduser()
    if not _bot_env_path.is_absolute():
        _bot_env_path = (Path.cwd() / _bot_env_path).resolve()
    if not _bot_env_path.exists():
        raise FileNotFoundError(f"BOT_ENV_FILE does not exist: {_bot_env_path}")
    if not _bot_env_path.is_file():
        raise IsADirectoryError(f"BOT_ENV_FILE is not a file: {_bot_env_path}")
    try:
        _load_dotenv_safe(str(_bot_env_path), override=True)
    except (OSError, UnicodeError, ValueError) as exc:
        raise RuntimeError(f"Failed to load BOT_ENV_FILE '{_bot_env_path}': {exc}") from exc


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "y", "on")


def _parse_csv_upper(raw: str) -> List[str]:
    return [item.strip().upper() for item in str(raw or "").split(",") if item.strip()]


def _parse_source_float_map(raw: str) -> Dict[str, float]:
    out: Dict[str, float] = {}
    for chunk in str(raw or "").split(","):
        item = chunk.strip()
        if not item or ":" not in item:
            continue
        source_part, value_part = item.split(":", 1)
        source = source_part.strip().lower()
        if not source:
            continue
        try:
            out[source] = max(0.0, float(value_part.strip()))
        except Exception:
            continue
    return out


BOT_INSTANCE_ID = os.getenv("BOT_INSTANCE_ID", "").strip()
RUN_TAG = os.getenv("RUN_TAG", BOT_INSTANCE_ID).strip()
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///trades.db")
TRADE_JOURNAL_ENABLED = _env_bool("TRADE_JOURNAL_ENABLED", "true")

# Chain access
CHAIN_NAME = os.getenv("CHAIN_NAME", "sui").strip().lower()
SUI_RPC_URL = os.getenv("SUI_RPC_URL", "https://fullnode.mainnet.sui.io:443").strip()
SUI_NATIVE_COIN = os.getenv("SUI_NATIVE_COIN", "0x2::sui::SUI").strip()
NATIVE_DECIMALS = max(0, int(os.getenv("NATIVE_DECIMALS", "9")))
RPC_TIMEOUT_SECONDS = max(1.0, float(os.getenv("RPC_TIMEOUT_SECONDS", "10")))
NETWORK_TIMEOUT_SECONDS = max(0.5, float(os.getenv("NETWORK_TIMEOUT_SECONDS", "8")))
RPC_WALLET_HISTORY_LIMIT = max(1, int(os.getenv("RPC_WALLET_HISTORY_LIMIT", "50")))
RPC_GAS_SAMPLE_SIZE = max(1, int(os.getenv("RPC_GAS_SAMPLE_SIZE", "30")))

HTTP_CONNECTOR_LIMIT = max(1, int(os.getenv("HTTP_CONNECTOR_LIMIT", "30")))
HTTP_DEFAULT_CONCURRENCY = max(1, int(os.getenv("HTTP_DEFAULT_CONCURRENCY", "8")))
HTTP_RETRY_ATTEMPTS = max(1, int(os.getenv("HTTP_RETRY_ATTEMPTS", "3")))
HTTP_BACKOFF_BASE_SECONDS = max(0.05, float(os.getenv("HTTP_BACKOFF_BASE_SECONDS", "0.50")))
HTTP_BACKOFF_MAX_SECONDS = max(0.10, float(os.getenv("HTTP_BACKOFF_MAX_SECONDS", "8.00")))
HTTP_JITTER_SECONDS = max(0.0, float(os.getenv("HTTP_JITTER_SECONDS", "0.25")))
HTTP_RATE_LIMIT_DELAY_SECONDS = max(0.0, float(os.getenv("HTTP_RATE_LIMIT_DELAY_SECONDS", "2.00")))
HTTP_429_COOLDOWN_SECONDS = max(1.0, float(os.getenv("HTTP_429_COOLDOWN_SECONDS", "30")))
HTTP_SOURCE_429_COOLDOWNS = _parse_source_float_map(os.getenv("HTTP_SOURCE_429_COOLDOWNS", "sui_rpc:10"))

# EVM adapter (optional)
EVM_RPC_URL = os.getenv("EVM_RPC_URL", "").strip()
EVM_CHAIN_ID = int(os.getenv("EVM_CHAIN_ID", "8453"))
EVM_FEE_HISTORY_BLOCKS = max(1, int(os.getenv("EVM_FEE_HISTORY_BLOCKS", "20")))
EVM_TX_TIMEOUT_SECONDS = max(5, int(os.getenv("EVM_TX_TIMEOUT_SECONDS", "120")))

# Trade gating
AUTO_TRADE_ENABLED = _env_bool("AUTO_TRADE_ENABLED", "false")
MIN_SECURITY_SCORE = max(0.0, min(100.0, float(os.getenv("MIN_SECURITY_SCORE", "70"))))
MAX_SLIPPAGE_PERCENT = max(0.0, float(os.getenv("MAX_SLIPPAGE_PERCENT", "1.0")))
MAX_PRICE_IMPACT_PERCENT = max(0.0, float(os.getenv("MAX_PRICE_IMPACT_PERCENT", "2.0")))
MAX_GAS_PRICE = max(1, int(os.getenv("MAX_GAS_PRICE", "5000")))
MAX_TRADE_AMOUNT = max(0.0, float(os.getenv("MAX_TRADE_AMOUNT", "0.5")))
MIN_TRADE_AMOUNT = max(0.0, float(os.getenv("MIN_TRADE_AMOUNT", "0.3")))
MAX_DAILY_LOSS = max(0.0, float(os.getenv("MAX_DAILY_LOSS", "2.5")))
DAILY_TRADE_LIMIT = max(0, int(os.getenv("DAILY_TRADE_LIMIT", "5")))

# Security scoring
SCORE_WEIGHT_LIQUIDITY = max(0.0, float(os.getenv("SCORE_WEIGHT_LIQUIDITY", "20")))
SCORE_WEIGHT_LP_LOCK = max(0.0, float(os.getenv("SCORE_WEIGHT_LP_LOCK", "10")))
SCORE_WEIGHT_CONTRACT = max(0.0, float(os.getenv("SCORE_WEIGHT_CONTRACT", "15")))
SCORE_WEIGHT_HONEYPOT = max(0.0, float(os.getenv("SCORE_WEIGHT_HONEYPOT", "20")))
SCORE_WEIGHT_DEV_WALLET = max(0.0, float(os.getenv("SCORE_WEIGHT_DEV_WALLET", "20")))
SCORE_WEIGHT_TOKEN = max(0.0, float(os.getenv("SCORE_WEIGHT_TOKEN", "15")))
SCORE_MIN_LIQUIDITY = max(0.0, float(os.getenv("SCORE_MIN_LIQUIDITY", "300")))
SCORE_TARGET_LIQUIDITY = max(1.0, float(os.getenv("SCORE_TARGET_LIQUIDITY", "5000")))
SCORE_MIN_HOLDERS = max(0, int(os.getenv("SCORE_MIN_HOLDERS", "100")))
SCORE_MIN_TOKEN_AGE_SECONDS = max(0, int(os.getenv("SCORE_MIN_TOKEN_AGE_SECONDS", "3600")))
SCORE_MIN_DEV_WALLET_AGE_SECONDS = max(0, int(os.getenv("SCORE_MIN_DEV_WALLET_AGE_SECONDS", str(7 * 24 * 60 * 60))))
SCORE_MIN_DEV_WALLET_TX_COUNT = max(0, int(os.getenv("SCORE_MIN_DEV_WALLET_TX_COUNT", "10")))
SCORE_MAX_SELL_TAX_PERCENT = max(0.0, float(os.getenv("SCORE_MAX_SELL_TAX_PERCENT", "10")))
SCORE_FAIL_CLOSED_ON_INDETERMINATE = _env_bool("SCORE_FAIL_CLOSED_ON_INDETERMINATE", "true")
TOKEN_BLACKLIST = _parse_csv_upper(os.getenv("TOKEN_BLACKLIST", "DAM"))

# Honeypot detection
HONEYPOT_SIMULATION_AMOUNT = max(1, int(os.getenv("HONEYPOT_SIMULATION_AMOUNT", "1000")))
HONEYPOT_SIMULATION_TIMEOUT_SECONDS = max(0.5, float(os.getenv("HONEYPOT_SIMULATION_TIMEOUT_SECONDS", "6")))
HONEYPOT_EXPECTED_SELL_FUNCTIONS = [
    f.strip()
    for f in os.getenv(
        "HONEYPOT_EXPECTED_SELL_FUNCTIONS",
        "pool::swap,pool_script::swap_b2a,pool_script::swap_a2b,router::swap_exact_input,"
        "router::swap_exact_x_to_y,router::swap_exact_y_to_x,coin::split,coin::join,pay::split",
    ).split(",")
    if f.strip()
]

# MEV protection
MEV_MAX_GAS_BUDGET = max(1, int(os.getenv("MEV_MAX_GAS_BUDGET", "50000000")))
MEV_MIN_GAS_PRICE = max(1, int(os.getenv("MEV_MIN_GAS_PRICE", "1000")))
MEV_PRIORITY_FEE = max(0, int(os.getenv("MEV_PRIORITY_FEE", "0")))
MEV_MAX_RETRIES = max(1, int(os.getenv("MEV_MAX_RETRIES", "3")))
MEV_BACKOFF_BASE_SECONDS = max(0.0, float(os.getenv("MEV_BACKOFF_BASE_SECONDS", "0.25")))
MEV_BACKOFF_MAX_SECONDS = max(0.0, float(os.getenv("MEV_BACKOFF_MAX_SECONDS", "4.0")))
MEV_JITTER_SECONDS = max(0.0, float(os.getenv("MEV_JITTER_SECONDS", "0.05")))
MEV_SUBMIT_TIMEOUT_SECONDS = max(0.5, float(os.getenv("MEV_SUBMIT_TIMEOUT_SECONDS", "15")))
MEV_FRONTRUN_TOLERANCE_PERCENT = max(0.0, float(os.getenv("MEV_FRONTRUN_TOLERANCE_PERCENT", "1.5")))

# Task queue
TASK_QUEUE_DELAY_SECONDS = max(0.0, float(os.getenv("TASK_QUEUE_DELAY_SECONDS", "2.0")))

# Position exits
EXIT_MONITOR_ENABLED = _env_bool("EXIT_MONITOR_ENABLED", "true")
EXIT_POLL_INTERVAL_SECONDS = max(0.5, float(os.getenv("EXIT_POLL_INTERVAL_SECONDS", "2.0")))
EXIT_TAKE_PROFIT_PERCENT = max(0.0, float(os.getenv("EXIT_TAKE_PROFIT_PERCENT", "1.0")))
EXIT_STOP_LOSS_PERCENT = max(0.0, float(os.getenv("EXIT_STOP_LOSS_PERCENT", "10.0")))
EXIT_TRAILING_STOP_PERCENT = max(0.0, float(os.getenv("EXIT_TRAILING_STOP_PERCENT", "10.0")))
EXIT_TRAILING_ACTIVATION_PERCENT = max(0.0, float(os.getenv("EXIT_TRAILING_ACTIVATION_PERCENT", "10.0")))
EXIT_SELL_ON_FRONTRUN = _env_bool("EXIT_SELL_ON_FRONTRUN", "false")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_DIR = os.getenv("LOG_DIR", "logs")
APP_LOG_FILE = os.path.join(LOG_DIR, "app.log")
