# File: app/models.py
import enum
from app.extensions import db
from app.utils.timezone_utils import utcnow, isoformat_utc


class CollectionType(enum.Enum):
    MOVIES = "movies"
    TVSHOWS = "tvshows"
    MUSIC = "music"
    MIXED = "mixed"


class JellyfinConfig(db.Model):
    """Connection settings for the upstream Jellyfin server. Only one row is active."""
    __tablename__ = 'jellyfin_config'

    id = db.Column(db.Integer, primary_key=True)
    server_url = db.Column(db.String(512), nullable=False)
    api_key = db.Column(db.String(255), nullable=False)
    server_name = db.Column(db.String(255), nullable=True)
    server_version = db.Column(db.String(50), nullable=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    libraries = db.relationship('JellyfinLibrary', back_populates='config', cascade='all, delete-orphan', lazy='dynamic')

    def to_dict(self, include_api_key=False):
        data = {
            'id': self.id,
            'serverUrl': self.server_url,
            'serverName': self.server_name,
            'serverVersion': self.server_version,
            'isActive': self.is_active,
            'createdAt': isoformat_utc(self.created_at),
            'updatedAt': isoformat_utc(self.updated_at),
        }
        if include_api_key:
            data['apiKey'] = self.api_key
        return data

    def __repr__(self):
        return f'<JellyfinConfig {self.id} {self.server_url}>'


class JellyfinLibrary(db.Model):
    """An upstream library as last seen by the library sync"""
    __tablename__ = 'jellyfin_libraries'

    id = db.Column(db.Integer, primary_key=True)
    config_id = db.Column(db.Integer, db.ForeignKey('jellyfin_config.id'), nullable=False, index=True)
    library_id = db.Column(db.String(100), nullable=False)  # ItemId (or Id) from Jellyfin
    library_name = db.Column(db.String(255), nullable=False)
    collection_type = db.Column(db.String(20), nullable=False, default=CollectionType.MIXED.value)
    is_visible = db.Column(db.Boolean, default=True, nullable=False)
    item_count = db.Column(db.Integer, default=0, nullable=False)
    last_sync = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, default=utcnow)

    config = db.relationship('JellyfinConfig', back_populates='libraries')

    __table_args__ = (db.UniqueConstraint('config_id', 'library_id', name='_config_library_uc'),)

    def to_dict(self):
        return {
            'id': self.id,
            'configId': self.config_id,
            'libraryId': self.library_id,
            'libraryName': self.library_name,
            'collectionType': self.collection_type,
            'isVisible': self.is_visible,
            'itemCount': self.item_count,
            'lastSync': isoformat_utc(self.last_sync),
            'createdAt': isoformat_utc(self.created_at),
        }

    def __repr__(self):
        return f'<JellyfinLibrary {self.library_name} ({self.collection_type})>'
