"""Background backup manager for off-thread backup and restore execution"""

import logging
import threading
import time
import uuid
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING

from ..core.exceptions import OperationInProgress
from .events import BackupEvent, EventChannel

if TYPE_CHECKING:
    from ..core.backup_engine import BackupEngine, OperationResult


class BackupStatus(Enum):
    """Backup task status"""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class BackupTask:
    """Represents a backup or restore task"""

    task_id: str
    task_type: str  # 'backup' or 'restore'
    target: str  # backup directory or archive name
    status: BackupStatus = BackupStatus.PENDING
    state: str = "idle"  # latest BackupState value reported by the engine
    started_at: datetime | None = None
    completed_at: datetime | None = None
    error_message: str | None = None
    error_kind: str | None = None
    result_message: str | None = None
    result: "OperationResult | None" = None
    future: Future | None = field(default=None, repr=False)


DEFAULT_TASK_MAX_AGE_HOURS = 24


class BackgroundBackupManager:
    """Runs engine operations on a worker thread, one at a time

    Events from the engine are forwarded to `channel`; the UI thread drains
    it. A second request while one is in flight raises OperationInProgress.
    """

    def __init__(self, backup_engine: "BackupEngine", channel: EventChannel | None = None):
        self.backup_engine = backup_engine
        self.channel = channel or EventChannel()
        self.logger = logging.getLogger("dbvault.BackgroundBackupManager")

        # Task tracking
        self.tasks: dict[str, BackupTask] = {}
        self._lock = threading.Lock()
        self._busy = threading.Lock()
        self._current: BackupTask | None = None
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="dbvault-worker")

        # Callbacks for task status changes (invoked on the worker thread)
        self.on_task_update: Callable[[BackupTask], None] | None = None

        self.backup_engine.event_sink = self._on_event

    def _on_event(self, event: BackupEvent) -> None:
        if event.is_state_change and self._current is not None and event.state is not None:
            self._current.state = event.state
        self.channel.publish(event)

    def is_busy(self) -> bool:
        return self._busy.locked()

    def schedule_backup(self) -> str:
        """Start CreateBackup in the background

        Returns:
            Task ID

        Raises:
            OperationInProgress: another backup or restore is running
        """
        return self._submit("backup", str(self.backup_engine.local_path), self.backup_engine.create_backup)

    def schedule_restore(self, archive: str | Path, password: str) -> str:
        """Start RestoreBackup of `archive` in the background

        Raises:
            OperationInProgress: another backup or restore is running
        """
        return self._submit(
            "restore", Path(archive).name, lambda: self.backup_engine.restore_backup(archive, password)
        )

    def _submit(self, task_type: str, target: str, operation: Callable[[], "OperationResult"]) -> str:
        if not self._busy.acquire(blocking=False):
            running = self._current.task_id if self._current else "unknown"
            raise OperationInProgress(f"A backup or restore is already running ({running})")

        try:
            task_id = f"{task_type}_{int(time.time())}_{uuid.uuid4().hex[:6]}"
            task = BackupTask(task_id=task_id, task_type=task_type, target=target)
            with self._lock:
                self.tasks[task_id] = task
                self._current = task
            task.future = self._executor.submit(self._execute, task, operation)
        except BaseException:
            self._current = None
            self._busy.release()
            raise

        self.logger.info(f"Scheduled {task_type} task: {task_id}")
        return task_id

    def _execute(self, task: BackupTask, operation: Callable[[], "OperationResult"]) -> "OperationResult | None":
        """Run one operation on the worker thread and record its outcome"""
        try:
            with self._lock:
                task.status = BackupStatus.RUNNING
                task.started_at = datetime.now()
            self._notify_update(task)

            result = operation()
            task.result = result
            if result.success:
                task.status = BackupStatus.COMPLETED
                task.result_message = result.message
            else:
                task.status = BackupStatus.FAILED
                task.error_message = result.message
                task.error_kind = result.error_kind
            return result

        except Exception as e:
            self.logger.error(f"Task {task.task_id} failed: {e}", exc_info=True)
            task.status = BackupStatus.FAILED
            task.error_message = str(e)
            task.error_kind = type(e).__name__
            return None

        finally:
            task.completed_at = datetime.now()
            with self._lock:
                self._current = None
            self._busy.release()
            self._notify_update(task)

    def _notify_update(self, task: BackupTask) -> None:
        if self.on_task_update:
            try:
                self.on_task_update(task)
            except Exception as e:
                self.logger.warning(f"Error in task update callback: {e}")

    def wait(self, task_id: str, timeout: float | None = None) -> "OperationResult | None":
        """Block until the task finishes and return its result"""
        task = self.tasks[task_id]
        if task.future is None:
            return task.result
        return task.future.result(timeout=timeout)

    def get_task_status(self, task_id: str) -> BackupTask | None:
        return self.tasks.get(task_id)

    def get_all_tasks(self) -> list[BackupTask]:
        return list(self.tasks.values())

    def get_running_tasks(self) -> list[BackupTask]:
        return [task for task in self.tasks.values() if task.status == BackupStatus.RUNNING]

    def cleanup_old_tasks(self, max_age_hours: int = DEFAULT_TASK_MAX_AGE_HOURS) -> int:
        """Remove old completed tasks from memory

        Args:
            max_age_hours: Maximum age of tasks to keep
        """
        cutoff = datetime.now() - timedelta(hours=max_age_hours)

        with self._lock:
            to_remove = [
                task_id for task_id, task in self.tasks.items() if task.completed_at and task.completed_at < cutoff
            ]

            for task_id in to_remove:
                del self.tasks[task_id]

            if to_remove:
                self.logger.info(f"Cleaned up {len(to_remove)} old tasks")

            return len(to_remove)

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting work; a running operation is not interrupted"""
        self._executor.shutdown(wait=wait)
