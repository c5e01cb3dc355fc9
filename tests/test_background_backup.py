"""Tests for BackgroundBackupManager"""

import threading

import pytest

from dbvault.core.exceptions import OperationInProgress
from dbvault.utils.background_backup import BackgroundBackupManager, BackupStatus


class BlockingRunner:
    """Wraps a runner and holds the first call until released"""

    def __init__(self, inner):
        self.inner = inner
        self.started = threading.Event()
        self.release = threading.Event()

    def run(self, command, **kwargs):
        self.started.set()
        assert self.release.wait(timeout=10)
        return self.inner.run(command, **kwargs)


@pytest.fixture
def manager(engine):
    manager = BackgroundBackupManager(engine)
    yield manager
    manager.shutdown()


def test_backup_runs_in_background(manager):
    task_id = manager.schedule_backup()

    result = manager.wait(task_id, timeout=10)

    task = manager.get_task_status(task_id)
    assert result.success
    assert task.status is BackupStatus.COMPLETED
    assert task.state == "done"
    assert task.completed_at is not None
    assert not manager.is_busy()


def test_events_reach_channel(manager):
    manager.wait(manager.schedule_backup(), timeout=10)

    events = manager.channel.drain()
    assert [e.state for e in events if e.is_state_change][-1] == "done"
    assert any("Backup process completed" in e.message for e in events)


def test_second_request_rejected_while_busy(manager, engine, fake_runner):
    blocking = BlockingRunner(fake_runner)
    engine.runner = blocking
    first = manager.schedule_backup()
    assert blocking.started.wait(timeout=10)

    try:
        with pytest.raises(OperationInProgress):
            manager.schedule_backup()
        with pytest.raises(OperationInProgress):
            manager.schedule_restore("any.rar", "pw")
        assert manager.is_busy()
    finally:
        blocking.release.set()

    assert manager.wait(first, timeout=10).success
    assert len(manager.get_all_tasks()) == 1
    assert manager.wait(manager.schedule_backup(), timeout=10).success


def test_failed_restore_recorded(manager):
    task_id = manager.schedule_restore("missing.rar", "pw")

    result = manager.wait(task_id, timeout=10)

    task = manager.get_task_status(task_id)
    assert not result.success
    assert task.status is BackupStatus.FAILED
    assert task.error_kind == "PrerequisiteMissing"
    assert task.target == "missing.rar"


def test_task_update_callback(manager):
    updates = []
    manager.on_task_update = lambda task: updates.append(task.status)

    manager.wait(manager.schedule_backup(), timeout=10)

    assert updates == [BackupStatus.RUNNING, BackupStatus.COMPLETED]


def test_cleanup_old_tasks(manager):
    manager.wait(manager.schedule_backup(), timeout=10)

    assert manager.cleanup_old_tasks(max_age_hours=24) == 0
    assert manager.cleanup_old_tasks(max_age_hours=-1) == 1
    assert manager.get_all_tasks() == []
