# ctrlsys/persistence/models.py

from sqlalchemy import JSON, CheckConstraint, Column, DateTime, Index, Integer, String

from ctrlsys.persistence.database import Base
from ctrlsys.utils.timefmt import utc_naive_now


# -----------------------
# timers
# -----------------------
class Timer(Base):
    """
    Shared-database timer. Timestamps are UTC-naive (SQLite has no tz).
    ``expires_at`` is fixed when the timer leaves pending.
    """
    __tablename__ = "timers"
    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'running', 'completed', 'cancelled')", name="ck_timers_status"
        ),
        CheckConstraint("duration_seconds BETWEEN 1 AND 86400", name="ck_timers_duration"),
        Index("idx_timers_status", "status"),
        Index("idx_timers_expires_at", "expires_at"),
    )

    timer_id = Column(String(36), primary_key=True)
    name = Column(String(255), nullable=False)
    duration_seconds = Column(Integer, nullable=False)
    status = Column(String(20), nullable=False)
    labels = Column(JSON, nullable=False, default=dict)
    created_by = Column(String(255), nullable=False, default="api")
    created_at = Column(DateTime, nullable=False, default=utc_naive_now)
    started_at = Column(DateTime, nullable=True)
    expires_at = Column(DateTime, nullable=True)

    def __repr__(self) -> str:
        return f"<Timer {self.timer_id} name={self.name!r} status={self.status}>"


# -----------------------
# job_completions
# -----------------------
class JobCompletion(Base):
    """Completion report received from a standalone timer job."""
    __tablename__ = "job_completions"

    timer_id = Column(String(36), primary_key=True)
    name = Column(String(255), nullable=False)
    labels = Column(JSON, nullable=False, default=dict)
    duration_seconds = Column(Integer, nullable=False)
    total_duration_seconds = Column(Integer, nullable=False)
    created_by = Column(String(255), nullable=False, default="system")
    created_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=False)
    reported_at = Column(DateTime, nullable=False, default=utc_naive_now)
