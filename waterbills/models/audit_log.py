"""Audit log model for tracking ledger mutations."""

from typing import Any

from sqlalchemy import JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from waterbills.models import Base, BaseModel


class AuditLog(Base, BaseModel):
    """Audit log entry written in the same database transaction as the change.

    Records what happened (action) to which entity (entity_type, entity_id)
    and an optional snapshot of the amounts involved (changes).
    """

    __tablename__ = "audit_logs"

    client_id: Mapped[str] = mapped_column(String(64), index=True)
    """Client whose ledger was changed."""

    entity_type: Mapped[str] = mapped_column(String(50), index=False)
    """Entity type being audited: "transaction", "credit", "penalty"."""

    entity_id: Mapped[str] = mapped_column(String(64), index=False)
    """Identifier of the entity being audited (transaction id, unit id)."""

    action: Mapped[str] = mapped_column(String(50), index=False)
    """Action performed: "record", "reverse", "adjust", "assess"."""

    changes: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True, index=False)
    """Optional JSON snapshot: {"amount_cents": 15000, "periods": ["2026-00"]}."""

    def __repr__(self) -> str:
        return (
            f"<AuditLog(id={self.id}, entity_type={self.entity_type}, entity_id={self.entity_id}, "
            f"action={self.action}, created_at={self.created_at})>"
        )


__all__ = ["AuditLog"]
