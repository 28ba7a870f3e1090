# File: app/__init__.py
import os
import logging
from logging.handlers import RotatingFileHandler
from werkzeug.middleware.proxy_fix import ProxyFix
from flask import Flask

from .config import config
from .errors import register_error_handlers
from .extensions import (
    db,
    migrate,
    scheduler
)
from .models import JellyfinConfig
from .services.jellyfin_service import jellyfin_service


def initialize_jellyfin_from_db(app_instance):
    """Connect the Jellyfin client at startup when a configuration is stored."""
    engine_conn = None
    try:
        engine_conn = db.engine.connect()
        if not db.engine.dialect.has_table(engine_conn, JellyfinConfig.__tablename__):
            app_instance.logger.warning("Jellyfin config table not found during init. Run 'flask init-db' or apply migrations.")
            return

        from .services.jellyfin_config_service import JellyfinConfigService
        jf_config = JellyfinConfigService.load_active_config()
        if jf_config:
            jellyfin_service.initialize(jf_config.server_url, jf_config.api_key)
            app_instance.logger.info(f"Jellyfin client initialized from stored configuration ({jf_config.server_url})")
        else:
            app_instance.logger.info("Jellyfin not configured yet. Configure it through /api/admin/jellyfin/save.")
    except Exception as e:
        app_instance.logger.warning(f"Could not load Jellyfin configuration from database: {e}. Continuing unconfigured.")
    finally:
        if engine_conn:
            engine_conn.close()


def create_app(config_name=None):
    if config_name is None:
        config_name = os.environ.get('FLASK_ENV', 'default')

    app = Flask(__name__, instance_relative_config=True)
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_prefix=1)

    app.config.from_object(config[config_name])
    config[config_name].init_app(app)

    log_level_name = os.environ.get('FLASK_LOG_LEVEL', 'INFO').upper()
    log_level = getattr(logging, log_level_name, logging.INFO)
    app.logger.setLevel(log_level)

    if not app.debug and not app.testing:
        log_dir = 'logs'
        if not os.path.exists(log_dir):
            try: os.mkdir(log_dir)
            except OSError: app.logger.error(f"Init.py - create_app(): Could not create '{log_dir}' directory for file logging.")

        if os.path.exists(log_dir):
            try:
                file_handler = RotatingFileHandler(os.path.join(log_dir, 'ifilm.log'), maxBytes=10240, backupCount=10)
                file_handler.setFormatter(logging.Formatter('%(asctime)s %(levelname)s: %(message)s [in %(pathname)s:%(lineno)d]'))
                file_handler.setLevel(log_level)
                app.logger.addHandler(file_handler)
                app.logger.info(f"Init.py - create_app(): File logging configured. Level: {log_level_name}")
            except Exception as e_fh:
                app.logger.error(f"Init.py - create_app(): Failed to configure file logging: {e_fh}")

    app.logger.info(f"{app.config.get('APP_NAME', 'iFilm')} media gateway starting (log level: {log_level_name})")

    db.init_app(app)
    migrate.init_app(app, db)
    jellyfin_service.init_app(app)

    if not app.testing:
        with app.app_context():
            initialize_jellyfin_from_db(app)

    if app.config.get('LIBRARY_SYNC_INTERVAL_MINUTES', 0) > 0 and not app.testing:
        if not scheduler.running:
            try:
                scheduler.init_app(app)
                scheduler.start()
                app.logger.info("APScheduler started successfully")

                # Only the reloader child (or a non-reloading server) schedules jobs
                if os.environ.get("WERKZEUG_RUN_MAIN") == "true" or not app.debug:
                    with app.app_context():
                        from .services import task_service
                        task_service.schedule_all_tasks()
            except Exception as e_scheduler_init:
                app.logger.error(f"Init.py - Failed to initialize/start APScheduler: {e_scheduler_init}", exc_info=True)
        else:
            app.logger.info("APScheduler already running")

    from .routes.api import bp as api_bp
    app.register_blueprint(api_bp, url_prefix='/api')
    from .routes.media import bp as media_bp
    app.register_blueprint(media_bp, url_prefix='/api/media')
    from .routes.admin import bp as admin_bp
    app.register_blueprint(admin_bp, url_prefix='/api/admin')

    register_error_handlers(app)

    return app
