"""Ledger transaction ORM models for recorded water bill payments."""

from datetime import date

from sqlalchemy import JSON, BigInteger, Date, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from waterbills.models import Base, BaseModel


class LedgerTransaction(Base, BaseModel):
    """Model representing one recorded payment and its full allocation.

    Immutable once written; the only permitted change is deleting the
    whole record through payment reversal. credit_history_refs lists the
    entry ids of every credit history entry the payment created, which is
    what lets a reversal remove exactly those entries.
    """

    __tablename__ = "ledger_transactions"

    transaction_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        unique=True,
        comment="Public transaction identifier",
    )
    client_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    unit_id: Mapped[str] = mapped_column(String(32), nullable=False, index=True)

    amount_cents: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        comment="New money received with this payment",
    )
    credit_used_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    credit_created_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    credit_fiscal_year: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Fiscal year of the credit ledger touched by this payment",
    )
    credit_history_refs: Mapped[list[str]] = mapped_column(
        JSON,
        nullable=False,
        default=lambda: [],
        comment="Entry ids of credit history entries created by this payment",
    )

    payment_date: Mapped[date] = mapped_column(Date, nullable=False)
    payment_method: Mapped[str] = mapped_column(String(50), nullable=False, default="cash")
    reference: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    notes: Mapped[str] = mapped_column(String(1000), nullable=False, default="")
    description: Mapped[str] = mapped_column(String(255), nullable=False, default="")

    allocations: Mapped[list["TransactionAllocation"]] = relationship(
        "TransactionAllocation",
        back_populates="transaction",
        cascade="all, delete-orphan",
        order_by="TransactionAllocation.line_no",
    )

    @property
    def allocated_cents(self) -> int:
        return sum(line.base_cents + line.penalty_cents for line in self.allocations)

    def __repr__(self) -> str:
        return (
            f"<LedgerTransaction(transaction_id={self.transaction_id}, unit_id={self.unit_id}, "
            f"amount={self.amount_cents}, credit_used={self.credit_used_cents}, "
            f"credit_created={self.credit_created_cents})>"
        )


class TransactionAllocation(Base, BaseModel):
    """Portion of a ledger transaction applied to a single bill."""

    __tablename__ = "transaction_allocations"

    transaction_pk: Mapped[int] = mapped_column(
        ForeignKey("ledger_transactions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    line_no: Mapped[int] = mapped_column(Integer, nullable=False)
    fiscal_year: Mapped[int] = mapped_column(Integer, nullable=False)
    period_id: Mapped[str] = mapped_column(String(7), nullable=False)
    base_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    penalty_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    transaction: Mapped["LedgerTransaction"] = relationship(
        "LedgerTransaction",
        back_populates="allocations",
    )

    def __repr__(self) -> str:
        return (
            f"<TransactionAllocation(period_id={self.period_id}, base={self.base_cents}, "
            f"penalty={self.penalty_cents})>"
        )


__all__ = ["LedgerTransaction", "TransactionAllocation"]
