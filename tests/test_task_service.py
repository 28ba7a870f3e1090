from app.services import task_service


def test_library_sync_is_not_scheduled_when_disabled(app):
    app.config['LIBRARY_SYNC_INTERVAL_MINUTES'] = 0
    assert task_service.schedule_all_tasks() is False


def test_library_sync_needs_a_running_scheduler(app):
    app.config['LIBRARY_SYNC_INTERVAL_MINUTES'] = 30
    assert task_service.schedule_all_tasks() is False


def test_invalid_interval_disables_sync(app):
    app.config['LIBRARY_SYNC_INTERVAL_MINUTES'] = 'often'
    assert task_service.schedule_all_tasks() is False
