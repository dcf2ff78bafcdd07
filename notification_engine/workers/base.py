"""Base sweep worker abstraction.

A sweep worker runs one pass over a batch of work items:
1. fetch_pending() selects candidate items
2. mark_processing() re-checks eligibility at cycle time
3. process_item() does the work
4. mark_completed() or mark_failed() records the outcome

A failing item is logged and isolated; the pass continues with the next
item. Passes are safe to re-run.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Generic, TypeVar
from uuid import UUID

from sqlmodel import Session

logger = logging.getLogger(__name__)


class WorkerStatus(str, Enum):
    """Status of a worker run."""

    SUCCESS = "success"
    PARTIAL = "partial"  # Some items processed, some failed
    FAILED = "failed"
    NO_WORK = "no_work"


@dataclass
class WorkerResult:
    """Result of a worker processing cycle.

    Attributes:
        worker_name: Name of the worker that ran
        status: Overall status of the worker run
        processed_count: Number of items successfully processed
        failed_count: Number of items that failed
        skipped_count: Items no longer eligible when their turn came
        duration_ms: Time taken for the processing cycle
        errors: List of error details for failed items
        metadata: Additional worker-specific metadata
    """

    worker_name: str
    status: WorkerStatus
    processed_count: int = 0
    failed_count: int = 0
    skipped_count: int = 0
    duration_ms: float = 0.0
    errors: list[dict[str, Any]] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        return {
            "worker_name": self.worker_name,
            "status": self.status.value,
            "processed_count": self.processed_count,
            "failed_count": self.failed_count,
            "skipped_count": self.skipped_count,
            "duration_ms": self.duration_ms,
            "errors": self.errors,
            "metadata": self.metadata,
        }


# Generic type for work items
T = TypeVar("T")


class WorkerBase(ABC, Generic[T]):
    """Abstract base class for sweep workers.

    Subclasses implement the item hooks; ``self.now`` holds the cycle time
    for the duration of run().
    """

    def __init__(self, batch_size: int = 50) -> None:
        """Initialize the worker.

        Args:
            batch_size: Maximum items to process per cycle
        """
        self.batch_size = batch_size
        self.now = datetime.utcnow()
        self.metadata: dict[str, Any] = {}
        self._logger = logging.getLogger(self.__class__.__name__)

    @property
    @abstractmethod
    def worker_name(self) -> str:
        """Return the worker name for logging."""
        pass

    @abstractmethod
    def fetch_pending(self, session: Session) -> list[T]:
        """Fetch items to process (up to batch_size)."""
        pass

    def mark_processing(self, session: Session, item: T) -> bool:
        """Re-check an item right before processing it.

        Returns:
            True to process the item, False to skip it
        """
        return True

    @abstractmethod
    def process_item(self, session: Session, item: T) -> None:
        """Process a single item.

        Raises:
            Exception: If processing fails
        """
        pass

    def mark_completed(self, session: Session, item: T) -> None:
        """Record a processed item; the base class commits afterwards."""
        pass

    def mark_failed(self, session: Session, item: T, error: str, can_retry: bool) -> None:
        """Record a failed item; the base class commits afterwards."""
        pass

    @abstractmethod
    def get_item_id(self, item: T) -> UUID | str:
        """Get the identifier of an item for logging."""
        pass

    def should_retry(self, item: T) -> bool:
        """Whether a failed item will be picked up again by a later pass."""
        if hasattr(item, "can_retry"):
            return item.can_retry(self.now)
        return False

    def run(self, session: Session, now: datetime | None = None) -> WorkerResult:
        """Execute one processing cycle.

        Args:
            session: Database session
            now: Cycle time (defaults to utcnow)

        Returns:
            WorkerResult with processing statistics
        """
        start_time = datetime.utcnow()
        self.now = now or start_time
        self.metadata = {}
        processed = 0
        failed = 0
        skipped = 0
        errors: list[dict[str, Any]] = []

        self._logger.info(
            f"[{self.worker_name}] Starting processing cycle",
            extra={"batch_size": self.batch_size},
        )

        try:
            items = self.fetch_pending(session)

            if not items:
                self._logger.debug(f"[{self.worker_name}] No pending items")
                return WorkerResult(
                    worker_name=self.worker_name,
                    status=WorkerStatus.NO_WORK,
                    duration_ms=self._elapsed_ms(start_time),
                )

            self._logger.info(
                f"[{self.worker_name}] Found {len(items)} items to process"
            )

            for item in items:
                item_id = self.get_item_id(item)

                try:
                    if not self.mark_processing(session, item):
                        skipped += 1
                        self._logger.debug(
                            f"[{self.worker_name}] Item {item_id} no longer eligible"
                        )
                        continue

                    self.process_item(session, item)

                    self.mark_completed(session, item)
                    session.commit()

                    processed += 1
                    self._logger.debug(
                        f"[{self.worker_name}] Processed item {item_id}",
                        extra={"item_id": str(item_id)},
                    )

                except Exception as e:
                    session.rollback()
                    failed += 1
                    error_msg = str(e)[:500]  # Truncate long errors

                    can_retry = self.should_retry(item)
                    self.mark_failed(session, item, error_msg, can_retry)
                    session.commit()

                    errors.append({
                        "item_id": str(item_id),
                        "error": error_msg,
                        "can_retry": can_retry,
                    })

                    self._logger.warning(
                        f"[{self.worker_name}] Failed to process item {item_id}",
                        extra={
                            "item_id": str(item_id),
                            "error": error_msg,
                            "can_retry": can_retry,
                        },
                    )

        except Exception as e:
            session.rollback()
            self._logger.error(
                f"[{self.worker_name}] Worker cycle failed",
                extra={"error": str(e)},
                exc_info=True,
            )
            return WorkerResult(
                worker_name=self.worker_name,
                status=WorkerStatus.FAILED,
                duration_ms=self._elapsed_ms(start_time),
                errors=[{"error": str(e)}],
            )

        if failed == 0 and processed > 0:
            status = WorkerStatus.SUCCESS
        elif processed > 0 and failed > 0:
            status = WorkerStatus.PARTIAL
        elif failed > 0:
            status = WorkerStatus.FAILED
        else:
            status = WorkerStatus.NO_WORK

        result = WorkerResult(
            worker_name=self.worker_name,
            status=status,
            processed_count=processed,
            failed_count=failed,
            skipped_count=skipped,
            duration_ms=self._elapsed_ms(start_time),
            errors=errors,
            metadata=dict(self.metadata),
        )

        self._logger.info(
            f"[{self.worker_name}] Cycle complete",
            extra=result.to_dict(),
        )

        return result

    def _elapsed_ms(self, start: datetime) -> float:
        """Calculate elapsed time in milliseconds."""
        return (datetime.utcnow() - start).total_seconds() * 1000
