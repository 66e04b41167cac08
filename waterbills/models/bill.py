"""Bill ORM models: one water bill per unit per billing period."""

from datetime import date, datetime
from enum import Enum

from sqlalchemy import BigInteger, Date, DateTime, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from waterbills.models import Base, BaseModel


class BillStatus(str, Enum):
    """Payment status of a bill, derived from paid vs charged totals."""

    UNPAID = "unpaid"
    PARTIAL = "partial"
    PAID = "paid"


def derive_status(
    base_charge_cents: int,
    penalty_cents: int,
    paid_base_cents: int,
    paid_penalty_cents: int,
) -> BillStatus:
    """Status as a pure function of paid totals against charged totals.

    A bill with nothing charged counts as paid.
    """
    charged = base_charge_cents + penalty_cents
    paid = paid_base_cents + paid_penalty_cents
    if paid >= charged:
        return BillStatus.PAID
    if paid == 0:
        return BillStatus.UNPAID
    return BillStatus.PARTIAL


class Bill(Base, BaseModel):
    """
    Water bill for a single unit in a single fiscal period.

    Keyed by (client_id, fiscal_year, period_id, unit_id). Created by bill
    generation and mutated only by payment recording, payment reversal and
    penalty assessment. Carries a version counter used for optimistic locking.
    """

    __tablename__ = "bills"

    client_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        index=True,
        comment="Client (condominium) this bill belongs to",
    )
    fiscal_year: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Fiscal year, named by its ending calendar year",
    )
    period_id: Mapped[str] = mapped_column(
        String(7),
        nullable=False,
        comment="Fiscal period id 'YYYY-MM' (MM = fiscal month 00-11)",
    )
    unit_id: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        index=True,
        comment="Unit identifier (e.g. '101', 'PH-4')",
    )

    base_charge_cents: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
        comment="Consumption charge in cents",
    )
    penalty_cents: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
        comment="Assessed overdue penalty in cents",
    )
    paid_base_cents: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
        comment="Portion of the base charge already paid",
    )
    paid_penalty_cents: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
        comment="Portion of the penalty already paid",
    )
    status: Mapped[BillStatus] = mapped_column(
        SQLEnum(BillStatus),
        nullable=False,
        default=BillStatus.UNPAID,
    )
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    penalty_applied: Mapped[bool] = mapped_column(
        nullable=False,
        default=False,
        comment="True once a non-zero penalty has been assessed",
    )
    last_penalty_update: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    payments: Mapped[list["BillPayment"]] = relationship(
        "BillPayment",
        back_populates="bill",
        cascade="all, delete-orphan",
        order_by="BillPayment.id",
    )

    __table_args__ = (
        UniqueConstraint("client_id", "fiscal_year", "period_id", "unit_id", name="uq_bill_key"),
        Index("idx_bill_client_unit", "client_id", "unit_id"),
        Index("idx_bill_client_year", "client_id", "fiscal_year"),
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def unpaid_base_cents(self) -> int:
        return self.base_charge_cents - self.paid_base_cents

    @property
    def unpaid_penalty_cents(self) -> int:
        return self.penalty_cents - self.paid_penalty_cents

    @property
    def unpaid_cents(self) -> int:
        return self.unpaid_base_cents + self.unpaid_penalty_cents

    def recompute_status(self) -> BillStatus:
        """Refresh status from the paid and charged totals."""
        self.status = derive_status(
            self.base_charge_cents,
            self.penalty_cents,
            self.paid_base_cents,
            self.paid_penalty_cents,
        )
        return self.status

    def __repr__(self) -> str:
        return (
            f"<Bill(id={self.id}, client_id={self.client_id}, period_id={self.period_id}, "
            f"unit_id={self.unit_id}, base={self.base_charge_cents}, penalty={self.penalty_cents}, "
            f"paid_base={self.paid_base_cents}, paid_penalty={self.paid_penalty_cents}, "
            f"status={self.status})>"
        )


class BillPayment(Base, BaseModel):
    """One payment line applied to a bill, linked to its ledger transaction."""

    __tablename__ = "bill_payments"

    bill_id: Mapped[int] = mapped_column(
        ForeignKey("bills.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    transaction_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        index=True,
        comment="LedgerTransaction that produced this payment line",
    )
    base_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    penalty_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    penalty_before_cents: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
        comment="Bill penalty charge before this payment re-assessed it",
    )
    penalty_after_cents: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
        comment="Bill penalty charge right after this payment",
    )
    applied_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    bill: Mapped["Bill"] = relationship("Bill", back_populates="payments")

    def __repr__(self) -> str:
        return (
            f"<BillPayment(bill_id={self.bill_id}, transaction_id={self.transaction_id}, "
            f"base={self.base_cents}, penalty={self.penalty_cents})>"
        )


__all__ = ["Bill", "BillPayment", "BillStatus", "derive_status"]
