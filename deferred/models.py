"""SQLAlchemy models for the deferred job queue."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import DateTime, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from deferred.exceptions import DeserializationError
from deferred.services.payloads import PayloadRegistry, decode, payload_display_name


class Base(DeclarativeBase):
    pass


class Job(Base):
    __tablename__ = "delayed_jobs"
    __table_args__ = (
        Index("ix_delayed_jobs_priority_run_at", "priority", "run_at"),
        Index("ix_delayed_jobs_locked_by", "locked_by"),
        Index("ix_delayed_jobs_job_type", "job_type"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    handler: Mapped[str] = mapped_column(Text, nullable=False)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    run_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    locked_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    locked_by: Mapped[str | None] = mapped_column(String, nullable=True)
    failed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    finished_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    job_type: Mapped[str] = mapped_column(String, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def load_payload(self, registry: PayloadRegistry | None = None) -> Any:
        """Decode the handler once and reuse the object afterwards.

        The cache is per instance, not per registry: later calls return the
        object decoded first, whatever `registry` they pass.
        """
        cached = self.__dict__.get("_payload_object")
        if cached is None:
            cached = decode(self.handler, registry)
            self.__dict__["_payload_object"] = cached
        return cached

    @property
    def payload_object(self) -> Any:
        return self.load_payload()

    def display_name(self, registry: PayloadRegistry | None = None) -> str:
        try:
            return payload_display_name(self.load_payload(registry))
        except DeserializationError:
            return f"{self.job_type} #{self.id}"

    @property
    def name(self) -> str:
        return self.display_name()

    @property
    def failed(self) -> bool:
        return self.failed_at is not None

    @property
    def finished(self) -> bool:
        return self.finished_at is not None


class WorkerHeartbeat(Base):
    __tablename__ = "worker_heartbeats"
    __table_args__ = (
        UniqueConstraint("worker_name", name="uq_worker_heartbeats_worker_name"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    worker_name: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default="running")
    details: Mapped[str | None] = mapped_column(Text, nullable=True)
    heartbeat_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
