# File: app/services/jellyfin_config_service.py
from typing import Optional
from flask import current_app
from app.extensions import db
from app.models import JellyfinConfig


class JellyfinConfigService:
    """Loads and stores the active Jellyfin connection settings"""

    @staticmethod
    def load_active_config() -> Optional[JellyfinConfig]:
        """Active stored config. Falls back to bootstrap env credentials, persisted on first use."""
        config = JellyfinConfig.query.filter_by(is_active=True).order_by(JellyfinConfig.updated_at.desc()).first()
        if config:
            return config

        server_url = current_app.config.get('JELLYFIN_SERVER_URL')
        api_key = current_app.config.get('JELLYFIN_API_KEY')
        if server_url and api_key:
            current_app.logger.info("[JELLYFIN] No stored configuration, using JELLYFIN_SERVER_URL from the environment")
            return JellyfinConfigService.save_config(server_url, api_key)
        return None

    @staticmethod
    def save_config(server_url: str, api_key: str, server_name: str = None, server_version: str = None) -> JellyfinConfig:
        """Persist a configuration and make it the only active one."""
        server_url = server_url.strip().rstrip('/')
        try:
            existing = JellyfinConfig.query.filter_by(server_url=server_url).first()
            JellyfinConfig.query.filter(JellyfinConfig.is_active.is_(True)).update({'is_active': False}, synchronize_session=False)

            if existing:
                existing.api_key = api_key
                existing.server_name = server_name or existing.server_name
                existing.server_version = server_version or existing.server_version
                existing.is_active = True
                config = existing
            else:
                config = JellyfinConfig(
                    server_url=server_url,
                    api_key=api_key,
                    server_name=server_name,
                    server_version=server_version,
                    is_active=True
                )
                db.session.add(config)

            db.session.commit()
            current_app.logger.info(f"[JELLYFIN] Saved configuration {config.id} for {server_url}")
            return config
        except Exception as e:
            db.session.rollback()
            current_app.logger.error(f"[JELLYFIN] Error saving configuration: {e}", exc_info=True)
            raise
