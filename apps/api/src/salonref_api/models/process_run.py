"""Process run ledger for webhook deliveries and reward runs."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any
from uuid import uuid4

from sqlalchemy import JSON, Column, DateTime, Enum as SqlEnum, Integer, String, Text, func, select
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from salonref_api.db.base import Base


class ProcessType(str, Enum):
    WEBHOOK = "webhook"
    GIFT_CARD = "gift_card"


class ProcessStatus(str, Enum):
    RECEIVED = "received"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    IGNORED = "ignored"


FINAL_STATUSES = frozenset({ProcessStatus.COMPLETED, ProcessStatus.IGNORED})


class ProcessRun(Base):
    """Durable record of one unit of asynchronous work, unique per correlation id."""

    __tablename__ = "process_runs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    process_type = Column(
        SqlEnum(ProcessType, name="process_type_enum", values_callable=lambda enum: [member.value for member in enum]),
        nullable=False,
        index=True,
    )
    correlation_id = Column(String(128), nullable=False, unique=True)
    event_type = Column(String(96), nullable=True)
    resource_id = Column(String(128), nullable=True, index=True)
    status = Column(
        SqlEnum(
            ProcessStatus,
            name="process_status_enum",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
        default=ProcessStatus.RECEIVED,
        index=True,
    )
    stage = Column(String(64), nullable=True)
    attempts = Column(Integer, nullable=False, default=0, server_default="0")
    last_error = Column(Text, nullable=True)
    payload = Column(JSON, nullable=True)
    context = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    @property
    def is_final(self) -> bool:
        return self.status in FINAL_STATUSES


@dataclass(slots=True)
class RecordedProcessRun:
    """Result container for ledger lookups."""

    run: ProcessRun
    created: bool


async def record_process_run(
    session: AsyncSession,
    *,
    process_type: ProcessType,
    correlation_id: str,
    event_type: str | None = None,
    resource_id: str | None = None,
    payload: dict[str, Any] | None = None,
) -> RecordedProcessRun:
    """Persist a run for ``correlation_id`` unless one already exists."""

    stmt = select(ProcessRun).where(ProcessRun.correlation_id == correlation_id)
    existing = (await session.execute(stmt)).scalar_one_or_none()
    if existing:
        return RecordedProcessRun(run=existing, created=False)

    run = ProcessRun(
        process_type=process_type,
        correlation_id=correlation_id,
        event_type=event_type,
        resource_id=resource_id,
        payload=payload,
        status=ProcessStatus.RECEIVED,
        attempts=0,
        context={},
    )
    session.add(run)
    try:
        await session.commit()
    except IntegrityError:
        await session.rollback()
        found = (await session.execute(stmt)).scalar_one_or_none()
        if found is None:
            raise
        return RecordedProcessRun(run=found, created=False)

    return RecordedProcessRun(run=run, created=True)


async def update_process_run(
    session: AsyncSession,
    run: ProcessRun,
    *,
    status: ProcessStatus,
    stage: str | None = None,
    error: str | None = None,
    context: dict[str, Any] | None = None,
) -> ProcessRun:
    """Move a run to ``status`` and commit."""

    run.status = status
    if stage is not None:
        run.stage = stage
    if status == ProcessStatus.PROCESSING:
        run.attempts = (run.attempts or 0) + 1
    run.last_error = error
    if context:
        run.context = {**(run.context or {}), **context}
    await session.commit()
    return run
