"""Trade journal persistence helpers."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

import config
from database.models import Base, Trade
from trading.models import ProfitReport, TradeResult


class TradeJournal:
    def __init__(self, database_url: str | None = None) -> None:
        url = database_url or str(getattr(config, "DATABASE_URL", "sqlite:///trades.db"))
        self.engine = create_engine(url, future=True)
        self.SessionLocal = sessionmaker(bind=self.engine, autoflush=False, autocommit=False, future=True)

    def init_db(self) -> None:
        Base.metadata.create_all(bind=self.engine)

    def get_db(self) -> Session:
        return self.SessionLocal()

    def record_result(
        self,
        result: TradeResult,
        *,
        pool_id: str,
        token_address: str,
        dex: str,
        amount: float,
        side: str = "buy",
    ) -> Trade:
        db = self.get_db()
        try:
            trade = Trade(
                pool_id=pool_id,
                token_address=token_address,
                dex=dex,
                side=side,
                amount=float(amount),
                success=bool(result.success),
                transaction_id=result.transaction_id,
                error=result.error,
                error_code=result.error_code,
                security_score=result.security_score,
                warnings=list(result.warnings),
            )
            db.add(trade)
            db.commit()
            db.refresh(trade)
            return trade
        finally:
            db.close()

    def get_trade(self, transaction_id: str) -> Optional[Trade]:
        db = self.get_db()
        try:
            return db.query(Trade).filter(Trade.transaction_id == transaction_id).first()
        finally:
            db.close()

    def get_open_trades(self) -> list[Trade]:
        db = self.get_db()
        try:
            return (
                db.query(Trade)
                .filter(Trade.success.is_(True), Trade.side == "buy", Trade.sell_transaction_id.is_(None))
                .order_by(Trade.id)
                .all()
            )
        finally:
            db.close()

    def mark_sold(self, buy_tx_id: str, sell_tx_id: str, report: ProfitReport) -> Optional[Trade]:
        db = self.get_db()
        try:
            trade = db.query(Trade).filter(Trade.transaction_id == buy_tx_id).first()
            if not trade:
                return None
            trade.sell_transaction_id = sell_tx_id
            trade.profit = float(report.profit)
            trade.profit_percentage = float(report.profit_percentage)
            trade.closed_at = datetime.now(timezone.utc).replace(tzinfo=None)
            db.commit()
            db.refresh(trade)
            return trade
        finally:
            db.close()
