from __future__ import annotations

from ..extensions import db
from tcms.time_utils import to_utc_z


class Citation(db.Model):
    """
    Traffic citation issued by an enforcement officer.

    Only the payment-facing attributes live here. status is mutated by the
    payment processor; payment_date is set iff status == "paid".
    """
    __tablename__ = "citations"
    __table_args__ = (
        db.Index("ix_citations_status_payment_date", "status", "payment_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    ticket_number = db.Column(db.String(32), nullable=False, unique=True, index=True)

    # Driver identity (denormalized for receipts and reports)
    first_name = db.Column(db.String(64), nullable=True)
    last_name = db.Column(db.String(64), nullable=True)
    license_number = db.Column(db.String(32), nullable=True, index=True)

    # pending, paid, contested, dismissed, void
    status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    total_fine = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    payment_date = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def driver_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part)

    def __repr__(self) -> str:
        return f"<Citation id={self.id} ticket={self.ticket_number!r} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "citation_id": self.id,
            "ticket_number": self.ticket_number,
            "driver_name": self.driver_name,
            "license_number": self.license_number,
            "status": self.status,
            "total_fine": str(self.total_fine) if self.total_fine is not None else None,
            "payment_date": to_utc_z(self.payment_date) if self.payment_date else None,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
