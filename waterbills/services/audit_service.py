"""Audit service for logging ledger mutations."""

from sqlalchemy.orm import Session

from waterbills.models.audit_log import AuditLog


class AuditService:
    """Service for audit log operations.

    Provides static method to create minimal audit log entries. Entries are
    added to the caller's session, so they commit or roll back together with
    the change they describe.
    """

    @staticmethod
    def log(
        db: Session,
        client_id: str,
        entity_type: str,
        entity_id: str,
        action: str,
        changes: dict | None = None,
    ) -> AuditLog:
        """Create audit log entry (one-liner).

        Args:
            db: Database session
            client_id: Client whose ledger changed
            entity_type: Type of entity ("transaction", "credit", "penalty")
            entity_id: Identifier of the entity
            action: Action performed ("record", "reverse", "adjust", "assess")
            changes: Optional JSON snapshot of amounts involved

        Returns:
            Created AuditLog object
        """
        audit = AuditLog(
            client_id=client_id,
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            changes=changes,
        )
        db.add(audit)
        return audit


__all__ = ["AuditService"]
