"""Credit ledger ORM models: per-unit prepaid balance and its history."""

from datetime import datetime

from sqlalchemy import BigInteger, DateTime, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from waterbills.models import Base, BaseModel


class CreditLedger(Base, BaseModel):
    """Credit balance of one unit for one fiscal year.

    balance_cents always equals the sum of history deltas. Entries created
    by a payment carry that payment's transaction id so they can be removed
    individually when the payment is reversed.
    """

    __tablename__ = "credit_ledgers"

    client_id: Mapped[str] = mapped_column(String(64), nullable=False)
    unit_id: Mapped[str] = mapped_column(String(32), nullable=False)
    fiscal_year: Mapped[int] = mapped_column(Integer, nullable=False)
    balance_cents: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
        comment="Materialized sum of history deltas",
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    history: Mapped[list["CreditHistoryEntry"]] = relationship(
        "CreditHistoryEntry",
        back_populates="ledger",
        cascade="all, delete-orphan",
        order_by="CreditHistoryEntry.sequence",
    )

    __table_args__ = (
        UniqueConstraint("client_id", "unit_id", "fiscal_year", name="uq_credit_ledger_key"),
    )

    __mapper_args__ = {"version_id_col": version}

    def next_sequence(self) -> int:
        return max((entry.sequence for entry in self.history), default=0) + 1

    def __repr__(self) -> str:
        return (
            f"<CreditLedger(client_id={self.client_id}, unit_id={self.unit_id}, "
            f"fiscal_year={self.fiscal_year}, balance={self.balance_cents})>"
        )


class CreditHistoryEntry(Base, BaseModel):
    """Single signed change to a unit's credit balance."""

    __tablename__ = "credit_history_entries"

    entry_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        unique=True,
        comment="Stable identifier referenced by ledger transactions",
    )
    ledger_id: Mapped[int] = mapped_column(
        ForeignKey("credit_ledgers.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    sequence: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Position within the ledger history",
    )
    delta_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    resulting_balance_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    transaction_id: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
        index=True,
        comment="LedgerTransaction that created this entry (None for manual adjustments)",
    )
    reason: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    source: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default="waterBills",
        comment="Module that produced the entry (waterBills, admin)",
    )
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    ledger: Mapped["CreditLedger"] = relationship("CreditLedger", back_populates="history")

    __table_args__ = (
        Index("idx_credit_entry_ledger_seq", "ledger_id", "sequence"),
    )

    def __repr__(self) -> str:
        return (
            f"<CreditHistoryEntry(entry_id={self.entry_id}, delta={self.delta_cents}, "
            f"balance={self.resulting_balance_cents}, transaction_id={self.transaction_id})>"
        )


__all__ = ["CreditLedger", "CreditHistoryEntry"]
