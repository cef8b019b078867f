"""Listed token model."""

from datetime import datetime, timezone

from sqlalchemy import DateTime, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


class Token(Base):
    """A token listed by the admin panel. Live prices come from the store, not here."""

    __tablename__ = "tokens"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    symbol: Mapped[str] = mapped_column(String(20), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    price: Mapped[float | None] = mapped_column(Numeric(30, 12), nullable=True, default=0)
    market_cap: Mapped[float | None] = mapped_column(Numeric(30, 2), nullable=True, default=0)
    volume_24h: Mapped[float | None] = mapped_column(Numeric(30, 2), nullable=True, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "symbol": self.symbol,
            "name": self.name,
            "price": float(self.price) if self.price is not None else None,
            "market_cap": float(self.market_cap) if self.market_cap is not None else None,
            "volume_24h": float(self.volume_24h) if self.volume_24h is not None else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
