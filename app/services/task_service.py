# File: app/services/task_service.py
from flask import current_app
from app.extensions import scheduler
from app.errors import MediaGatewayError

LIBRARY_SYNC_JOB_ID = 'jellyfin_library_sync'


def sync_jellyfin_libraries_task():
    """Periodic library sync against the active Jellyfin configuration."""
    with scheduler.app.app_context():
        from app.services.jellyfin_config_service import JellyfinConfigService
        from app.services.jellyfin_service import jellyfin_service
        from app.services.library_sync import LibrarySyncService

        current_app.logger.info("Task_Service: Scheduled library sync starting")
        try:
            config = JellyfinConfigService.load_active_config()
            if not config:
                current_app.logger.info("Task_Service: Jellyfin not configured, skipping library sync")
                return
            if not jellyfin_service.is_initialized():
                jellyfin_service.initialize(config.server_url, config.api_key)
            libraries = LibrarySyncService.sync(config.id, jellyfin_service.client)
            current_app.logger.info(f"Task_Service: Scheduled library sync finished, {len(libraries)} libraries synced")
        except MediaGatewayError as e:
            current_app.logger.error(f"Task_Service: Scheduled library sync failed: {e.message} ({e.error})")
        except Exception as e:
            current_app.logger.error(f"Task_Service: Unexpected error in scheduled library sync: {e}", exc_info=True)


def _schedule_job_if_not_exists_or_reschedule(job_id, func, trigger_type, **trigger_args):
    """Helper to add or reschedule a job."""
    if not scheduler.running:
        current_app.logger.warning(f"Task_Service: APScheduler not running. Cannot schedule job '{job_id}'.")
        return False

    try:
        existing_job = scheduler.get_job(job_id)
        if existing_job:
            scheduler.remove_job(job_id)
        scheduler.add_job(id=job_id, func=func, trigger=trigger_type, **trigger_args)
        current_app.logger.info(f"Scheduled task: {job_id} ({trigger_args})")
        return True
    except Exception as e:
        current_app.logger.error(f"Task_Service: Error adding/rescheduling job '{job_id}': {e}", exc_info=True)
        return False


def schedule_all_tasks():
    """Schedules all recurring tasks defined in the application."""
    try:
        interval_minutes = int(current_app.config.get('LIBRARY_SYNC_INTERVAL_MINUTES', 0))
    except (ValueError, TypeError):
        interval_minutes = 0
        current_app.logger.warning("Invalid LIBRARY_SYNC_INTERVAL_MINUTES, library sync will not be scheduled")

    if interval_minutes <= 0:
        current_app.logger.info("Task_Service: Periodic library sync disabled")
        return False

    return _schedule_job_if_not_exists_or_reschedule(
        LIBRARY_SYNC_JOB_ID,
        sync_jellyfin_libraries_task,
        'interval',
        minutes=interval_minutes,
        replace_existing=True
    )
