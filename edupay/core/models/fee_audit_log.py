"""Fee audit log: immutable financial change tracking for audit safety."""

import uuid
from datetime import datetime

from sqlalchemy import JSON, Column, DateTime, String, Uuid

from edupay.db.session import Base


class FeeAuditLog(Base):
    """Immutable audit trail for ledger and payment changes."""

    __tablename__ = "fee_audit_logs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    school_id = Column(Uuid, nullable=False, index=True)
    reference_table = Column(String(50), nullable=False)
    reference_id = Column(Uuid, nullable=False, index=True)
    action_type = Column(String(30), nullable=False)  # CREATE, UPDATE, REVERSE, ADJUST, ARCHIVE
    old_value = Column(JSON, nullable=True)
    new_value = Column(JSON, nullable=True)
    changed_by = Column(Uuid, nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
