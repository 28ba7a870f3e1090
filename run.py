import os
import logging
from app import create_app, db
from app.models import JellyfinConfig, JellyfinLibrary
from app.services.jellyfin_service import jellyfin_service


# Custom colored logging formatter
class ColoredFormatter(logging.Formatter):
    """Custom formatter to add colors to log levels"""

    # ANSI color codes
    COLORS = {
        'DEBUG': '\033[36m',     # Cyan
        'INFO': '\033[32m',      # Green
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[35m',  # Magenta
        'RESET': '\033[0m'       # Reset color
    }

    def format(self, record):
        formatted = super().format(record)
        level_name = record.levelname
        if level_name in self.COLORS:
            colored_level = f"{self.COLORS[level_name]}{level_name}{self.COLORS['RESET']}"
            return formatted.replace(level_name, colored_level, 1)
        return formatted


def setup_colored_logging(app):
    """Colour the stream handlers of the root and app loggers (Docker logs render ANSI)."""
    if os.getenv('NO_COLOR'):
        return
    colored_formatter = ColoredFormatter(
        fmt='%(asctime)s %(name)s [%(levelname)s] %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    for handler in logging.getLogger().handlers + app.logger.handlers:
        if type(handler) is logging.StreamHandler:
            handler.setFormatter(colored_formatter)


app = create_app()
setup_colored_logging(app)


@app.shell_context_processor
def make_shell_context():
    """Extra names for `flask shell`."""
    return {
        'db': db,
        'JellyfinConfig': JellyfinConfig,
        'JellyfinLibrary': JellyfinLibrary,
        'jellyfin_service': jellyfin_service,
    }


@app.cli.command("init-db")
def init_db_command():
    """
    Initializes the database: creates tables.
    Flask-Migrate is preferred for schema changes after the first setup.
    """
    db.create_all()
    print("Initialized the database.")


@app.cli.command("sync-libraries")
def sync_libraries_command():
    """Runs a library sync against the active Jellyfin configuration."""
    from app.services.jellyfin_config_service import JellyfinConfigService
    from app.services.library_sync import LibrarySyncService

    config = JellyfinConfigService.load_active_config()
    if not config:
        print("Jellyfin is not configured.")
        return
    if not jellyfin_service.is_initialized():
        jellyfin_service.initialize(config.server_url, config.api_key)
    libraries = LibrarySyncService.sync(config.id, jellyfin_service.client)
    print(f"Synced {len(libraries)} libraries.")


if __name__ == '__main__':
    # Development server. Production runs under gunicorn.
    app.run(host='0.0.0.0', port=int(os.environ.get('PORT', 5000)))
