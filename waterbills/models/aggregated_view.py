"""Materialized display projection of water bills per fiscal year.

Rows in these tables are derived data. They are rebuilt from Bill state
and are never read back as a source of truth by the ledger.
"""

from datetime import datetime

from sqlalchemy import BigInteger, DateTime, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from waterbills.models import Base, BaseModel


class AggregatedViewHeader(Base, BaseModel):
    """One row per (client, fiscal year) carrying the recompute timestamp."""

    __tablename__ = "aggregated_views"

    client_id: Mapped[str] = mapped_column(String(64), nullable=False)
    fiscal_year: Mapped[int] = mapped_column(Integer, nullable=False)
    last_recomputed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="Observability only; excluded from view comparisons",
    )

    __table_args__ = (
        UniqueConstraint("client_id", "fiscal_year", name="uq_aggregated_view_key"),
    )


class AggregatedViewCell(Base, BaseModel):
    """Display values of one unit's bill in one period."""

    __tablename__ = "aggregated_view_cells"

    client_id: Mapped[str] = mapped_column(String(64), nullable=False)
    fiscal_year: Mapped[int] = mapped_column(Integer, nullable=False)
    period_id: Mapped[str] = mapped_column(String(7), nullable=False)
    unit_id: Mapped[str] = mapped_column(String(32), nullable=False)

    display_due_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    display_penalty_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    unpaid_base_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    recomputed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="When this cell was last derived",
    )

    __table_args__ = (
        UniqueConstraint(
            "client_id", "fiscal_year", "period_id", "unit_id", name="uq_aggregated_view_cell"
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<AggregatedViewCell(period_id={self.period_id}, unit_id={self.unit_id}, "
            f"due={self.display_due_cents}, penalty={self.display_penalty_cents}, "
            f"status={self.status})>"
        )


__all__ = ["AggregatedViewHeader", "AggregatedViewCell"]
