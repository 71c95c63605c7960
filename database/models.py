"""SQLAlchemy models."""

from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Float, Integer, JSON, String
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Trade(Base):
    __tablename__ = "trades"

    id = Column(Integer, primary_key=True)
    pool_id = Column(String, nullable=False, index=True)
    token_address = Column(String, nullable=False)
    dex = Column(String, nullable=False)
    side = Column(String, default="buy", nullable=False)
    amount = Column(Float, nullable=False)
    success = Column(Boolean, default=False, nullable=False)
    transaction_id = Column(String, unique=True, nullable=True, index=True)
    sell_transaction_id = Column(String, nullable=True)
    error = Column(String, nullable=True)
    error_code = Column(String, nullable=True)
    security_score = Column(Float, nullable=True)
    warnings = Column(JSON, default=list, nullable=False)
    profit = Column(Float, nullable=True)
    profit_percentage = Column(Float, nullable=True)
    created_at = Column(DateTime, default=_utcnow, nullable=False)
    closed_at = Column(DateTime, nullable=True)

    def is_open(self) -> bool:
        return bool(self.success and self.side == "buy" and not self.sell_transaction_id)
