"""Error taxonomy for the scoring/protection/execution pipeline."""

from __future__ import annotations


class PipelineError(Exception):
    code = "pipeline_error"

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.code)
        self.message = message or self.code


class DataUnavailable(PipelineError):
    """An upstream read failed or was inconclusive."""

    code = "data_unavailable"

    def __init__(self, message: str = "", *, source: str = "unknown") -> None:
        super().__init__(message or f"data unavailable from {source}")
        self.source = source


class Timeout(DataUnavailable):
    code = "timeout"


class SecurityRejected(PipelineError):
    code = "security_rejected"

    def __init__(self, score: float, warnings: list[str] | None = None) -> None:
        self.score = float(score)
        self.warnings = list(warnings or [])
        detail = "; ".join(self.warnings) if self.warnings else "no warnings"
        super().__init__(f"security check failed score={self.score:.1f} warnings={detail}")


class SlippageExceeded(PipelineError):
    code = "slippage_exceeded"


class GasTooHigh(PipelineError):
    code = "gas_too_high"


class GasCeilingExceeded(PipelineError):
    code = "gas_ceiling_exceeded"

    def __init__(self, observed: float, ceiling: float) -> None:
        self.observed = float(observed)
        self.ceiling = float(ceiling)
        super().__init__(f"network gas price {self.observed:.0f} exceeds ceiling {self.ceiling:.0f}")


class ExecutionFailed(PipelineError):
    code = "execution_failed"

    def __init__(self, attempts: int, last_error: BaseException | None) -> None:
        self.attempts = int(attempts)
        self.last_error = last_error
        super().__init__(f"Failed to execute protected transaction after {self.attempts} attempts: {last_error}")


class TradingDisabled(PipelineError):
    code = "trading_disabled"


class TransactionNotFound(PipelineError):
    code = "transaction_not_found"

    def __init__(self, tx_id: str) -> None:
        self.tx_id = tx_id
        super().__init__(f"transaction not found: {tx_id}")


class IncompletePair(PipelineError):
    code = "incomplete_pair"


class LimitExceeded(PipelineError):
    code = "limit_exceeded"


class UnsupportedDex(PipelineError):
    code = "unsupported_dex"
