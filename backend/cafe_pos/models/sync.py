from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class SyncLog(db.Model):
    """One row per device upload attempt: what came in and how it went."""
    __tablename__ = "sync_logs"
    __table_args__ = (
        db.Index("ix_sync_logs_device_created", "device_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    device_id = db.Column(db.String(128), nullable=True)
    sync_type = db.Column(db.String(32), nullable=False)
    records_count = db.Column(db.Integer, nullable=False, default=0)
    status = db.Column(db.String(16), nullable=False)  # success, partial, failed
    error_message = db.Column(db.JSON, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "device_id": self.device_id,
            "sync_type": self.sync_type,
            "records_count": self.records_count,
            "status": self.status,
            "error_message": self.error_message,
            "created_at": to_utc_z(self.created_at),
        }
