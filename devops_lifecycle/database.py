"""SQLite ledger of deploy/undeploy operations per folder."""

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    DateTime,
    Enum,
    Integer,
    String,
    Text,
    create_engine,
)
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    Session,
    mapped_column,
    sessionmaker,
)

from devops_lifecycle.errors import OperationInProgressError
from devops_lifecycle.models import FolderOperation, OperationKind, OperationStatus

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = (OperationStatus.PENDING, OperationStatus.IN_PROGRESS)
INTERRUPTED_MESSAGE = "Interrupted before completion"


class Base(DeclarativeBase):
    """Base class for SQLAlchemy models."""

    pass


class FolderOperationRecord(Base):
    """Database model for folder operations."""

    __tablename__ = "folder_operations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    folder_key: Mapped[str] = mapped_column(String(500), nullable=False, index=True)
    operation: Mapped[OperationKind] = mapped_column(Enum(OperationKind), nullable=False)
    status: Mapped[OperationStatus] = mapped_column(
        Enum(OperationStatus), nullable=False, default=OperationStatus.PENDING
    )
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    progress_log: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def to_model(self) -> FolderOperation:
        return FolderOperation(
            id=self.id,
            folder_key=self.folder_key,
            operation=self.operation,
            status=self.status,
            error_message=self.error_message,
            progress=self.progress_log.split("\n") if self.progress_log else [],
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


def _overlaps(folder_key_a: str, folder_key_b: str) -> bool:
    return bool(set(folder_key_a.split(":")) & set(folder_key_b.split(":")))


class Database:
    """Database connection and operations."""

    def __init__(self, database_url: str = "sqlite:///./devops_lifecycle.db"):
        """Initialize database connection and fail operations a previous process left open."""
        self.engine = create_engine(database_url, echo=False)
        self.SessionLocal = sessionmaker(bind=self.engine, expire_on_commit=False)
        Base.metadata.create_all(self.engine)
        self.fail_interrupted_operations()

    def get_session(self) -> Session:
        """Get a new database session."""
        return self.SessionLocal()

    def fail_interrupted_operations(self) -> int:
        """Mark operations still pending or in progress as failed.

        Returns the number of operations marked.
        """
        with self.get_session() as session:
            active = (
                session.query(FolderOperationRecord)
                .filter(FolderOperationRecord.status.in_(ACTIVE_STATUSES))
                .all()
            )
            for record in active:
                logger.warning(
                    "Operation %s on %s was interrupted before completion",
                    record.id,
                    record.folder_key,
                )
                record.status = OperationStatus.FAILED
                record.error_message = INTERRUPTED_MESSAGE
                record.updated_at = datetime.now(timezone.utc)
            session.commit()
            return len(active)

    def begin_operation(self, folder_key: str, operation: OperationKind) -> FolderOperation:
        """Register a new operation; rejects it while another one is active."""
        with self.get_session() as session:
            active = (
                session.query(FolderOperationRecord)
                .filter(FolderOperationRecord.status.in_(ACTIVE_STATUSES))
                .all()
            )
            for record in active:
                if _overlaps(record.folder_key, folder_key):
                    raise OperationInProgressError(record.folder_key, record.operation.value)

            record = FolderOperationRecord(
                folder_key=folder_key,
                operation=operation,
                status=OperationStatus.PENDING,
            )
            session.add(record)
            session.commit()
            session.refresh(record)
            return record.to_model()

    def update_status(
        self,
        operation_id: int,
        status: OperationStatus,
        error_message: Optional[str] = None,
    ) -> Optional[FolderOperation]:
        """Update operation status."""
        with self.get_session() as session:
            record = session.get(FolderOperationRecord, operation_id)
            if not record:
                return None

            record.status = status
            record.updated_at = datetime.now(timezone.utc)
            if error_message is not None:
                record.error_message = error_message

            session.commit()
            session.refresh(record)
            return record.to_model()

    def append_progress(self, operation_id: int, message: str) -> None:
        """Append one progress message to the operation log."""
        with self.get_session() as session:
            record = session.get(FolderOperationRecord, operation_id)
            if not record:
                return
            record.progress_log = (
                f"{record.progress_log}\n{message}" if record.progress_log else message
            )
            record.updated_at = datetime.now(timezone.utc)
            session.commit()

    def finish_operation(
        self,
        operation_id: int,
        error_message: Optional[str] = None,
    ) -> Optional[FolderOperation]:
        """Mark an operation as succeeded, or failed when an error is given."""
        if error_message:
            return self.update_status(operation_id, OperationStatus.FAILED, error_message)
        return self.update_status(operation_id, OperationStatus.SUCCEEDED)

    def get_operation(self, operation_id: int) -> Optional[FolderOperation]:
        """Get operation by ID."""
        with self.get_session() as session:
            record = session.get(FolderOperationRecord, operation_id)
            return record.to_model() if record else None

    def latest_operation(self, folder: str) -> Optional[FolderOperation]:
        """Get the most recent operation touching a folder."""
        with self.get_session() as session:
            records = (
                session.query(FolderOperationRecord)
                .order_by(FolderOperationRecord.id.desc())
                .all()
            )
            for record in records:
                if folder in record.folder_key.split(":"):
                    return record.to_model()
            return None
