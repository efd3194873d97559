from __future__ import annotations

from ..extensions import db
from tcms.time_utils import to_utc_z


class AuditLog(db.Model):
    """
    General append-only audit trail.

    One row per action against a table row, with JSON before/after
    snapshots. IMMUTABLE: never updated or deleted.
    """
    __tablename__ = "audit_log"
    __table_args__ = (
        db.Index("ix_audit_log_table_record", "table_name", "record_id"),
        db.Index("ix_audit_log_created", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    action = db.Column(db.String(64), nullable=False, index=True)
    table_name = db.Column(db.String(64), nullable=False)
    record_id = db.Column(db.Integer, nullable=True)

    old_values = db.Column(db.JSON, nullable=True)
    new_values = db.Column(db.JSON, nullable=True)

    ip_address = db.Column(db.String(45), nullable=True)
    user_agent = db.Column(db.String(512), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    user = db.relationship("User", backref=db.backref("audit_entries", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "username": self.user.username if self.user else None,
            "action": self.action,
            "table_name": self.table_name,
            "record_id": self.record_id,
            "old_values": self.old_values,
            "new_values": self.new_values,
            "ip_address": self.ip_address,
            "created_at": to_utc_z(self.created_at),
        }


class OrAuditLog(db.Model):
    """
    OR-number compliance trail (voids, cancellations, OR changes).

    Kept separate from audit_log so receipt-accountability reports can be
    produced without parsing JSON snapshots. IMMUTABLE.
    """
    __tablename__ = "or_audit_log"
    __table_args__ = (
        db.Index("ix_or_audit_entity", "entity_type", "entity_id"),
        db.Index("ix_or_audit_action_datetime", "action_datetime"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    action_type = db.Column(db.String(64), nullable=False, index=True)
    entity_type = db.Column(db.String(32), nullable=False)
    entity_id = db.Column(db.Integer, nullable=True)

    or_number_old = db.Column(db.String(32), nullable=True, index=True)
    or_number_new = db.Column(db.String(32), nullable=True, index=True)
    ticket_number = db.Column(db.String(32), nullable=True)
    amount = db.Column(db.Numeric(12, 2), nullable=True)
    payment_status_old = db.Column(db.String(16), nullable=True)
    payment_status_new = db.Column(db.String(16), nullable=True)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    username = db.Column(db.String(64), nullable=True)
    reason = db.Column(db.Text, nullable=True)

    ip_address = db.Column(db.String(45), nullable=True)
    user_agent = db.Column(db.String(512), nullable=True)
    additional_data = db.Column(db.JSON, nullable=True)

    action_datetime = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "action_type": self.action_type,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "or_number_old": self.or_number_old,
            "or_number_new": self.or_number_new,
            "ticket_number": self.ticket_number,
            "amount": str(self.amount) if self.amount is not None else None,
            "payment_status_old": self.payment_status_old,
            "payment_status_new": self.payment_status_new,
            "user_id": self.user_id,
            "username": self.username,
            "reason": self.reason,
            "ip_address": self.ip_address,
            "additional_data": self.additional_data,
            "action_datetime": to_utc_z(self.action_datetime),
        }
