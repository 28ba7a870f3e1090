# File: app/extensions.py
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_apscheduler import APScheduler

# Database
db = SQLAlchemy()

# Migrations
migrate = Migrate()

# APScheduler for background tasks (periodic library sync)
scheduler = APScheduler()

# The response cache, token store and upstream client live on the JellyfinService
# instance in app.services.jellyfin_service. It is bound to the app in create_app
# because cache sizes and TTLs come from the app config.
