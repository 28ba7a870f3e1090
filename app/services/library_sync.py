# File: app/services/library_sync.py
from typing import List, Dict, Any, Optional
from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from app.extensions import db
from app.errors import InfrastructureError, MediaGatewayError
from app.models import JellyfinLibrary, CollectionType
from app.utils.timezone_utils import utcnow

_KNOWN_COLLECTION_TYPES = {ct.value for ct in CollectionType if ct is not CollectionType.MIXED}


def determine_collection_type(library: Dict[str, Any]) -> str:
    """Reduce the upstream CollectionType (string, array or missing) to movies/tvshows/music/mixed."""
    raw = library.get('CollectionType') if isinstance(library, dict) else None
    if isinstance(raw, (list, tuple)):
        if len(raw) != 1:
            return CollectionType.MIXED.value
        raw = raw[0]
    if isinstance(raw, str) and raw.strip().lower() in _KNOWN_COLLECTION_TYPES:
        return raw.strip().lower()
    return CollectionType.MIXED.value


def is_unique_violation(error: IntegrityError) -> bool:
    """True for the duplicate-key case on Postgres, SQLite and MySQL."""
    orig = getattr(error, 'orig', None)
    if getattr(orig, 'pgcode', None) == '23505':
        return True
    message = str(orig or error)
    return 'UNIQUE constraint failed' in message or 'Duplicate entry' in message or 'duplicate key value' in message


class LibrarySyncService:
    """Mirrors upstream libraries into jellyfin_libraries"""

    @staticmethod
    def _library_id(library: Dict[str, Any]) -> Optional[str]:
        # Libraries without an upstream id are skipped, never keyed by name
        return library.get('ItemId') or library.get('Id')

    @staticmethod
    def _find_record(config_id: int, library_id: str) -> Optional[JellyfinLibrary]:
        return JellyfinLibrary.query.filter_by(config_id=config_id, library_id=library_id).first()

    @staticmethod
    def _item_count(client, library_id: str, library: Dict[str, Any]) -> int:
        try:
            result = client.get_items({'parentId': library_id, 'limit': 1, 'bypassCache': True})
            return int(result.get('TotalRecordCount') or 0)
        except (MediaGatewayError, ValueError, TypeError) as e:
            fallback = library.get('ItemCount') or 0
            current_app.logger.warning(f"[LIBRARY_SYNC] Could not count items in {library_id}, using reported count {fallback}: {e}")
            return int(fallback)

    @staticmethod
    def _apply(record: JellyfinLibrary, name: str, collection_type: str, item_count: int):
        record.library_name = name
        record.collection_type = collection_type
        record.item_count = item_count
        record.last_sync = utcnow()

    @staticmethod
    def upsert_library(config_id: int, library_id: str, name: str, collection_type: str, item_count: int) -> JellyfinLibrary:
        """Insert or update one row keyed by (config_id, library_id). Visibility is never touched."""
        record = LibrarySyncService._find_record(config_id, library_id)
        try:
            if record is None:
                record = JellyfinLibrary(config_id=config_id, library_id=library_id, is_visible=True)
                LibrarySyncService._apply(record, name, collection_type, item_count)
                db.session.add(record)
            else:
                LibrarySyncService._apply(record, name, collection_type, item_count)
            db.session.commit()
            return record
        except IntegrityError as e:
            db.session.rollback()
            if not is_unique_violation(e):
                raise InfrastructureError(f"Failed to store library {library_id}", error=str(e.orig or e))

        # Another sync inserted the row first
        current_app.logger.info(f"[LIBRARY_SYNC] Library {library_id} was inserted concurrently, retrying as update")
        try:
            record = LibrarySyncService._find_record(config_id, library_id)
            if record is None:
                raise InfrastructureError(f"Library {library_id} vanished during upsert retry")
            LibrarySyncService._apply(record, name, collection_type, item_count)
            db.session.commit()
            return record
        except SQLAlchemyError as e:
            db.session.rollback()
            raise InfrastructureError(f"Failed to update library {library_id}", error=str(e))

    @staticmethod
    def sync(config_id: int, client) -> List[Dict[str, Any]]:
        """
        Fetch all upstream libraries and upsert them for ``config_id``.

        A library that fails upstream is skipped and logged. Database errors
        other than the duplicate-key race propagate as InfrastructureError.
        """
        current_app.logger.info(f"[LIBRARY_SYNC] Starting library sync for config {config_id}")
        libraries = client.get_libraries()
        synced = []

        for library in libraries:
            library_id = LibrarySyncService._library_id(library)
            if not library_id:
                current_app.logger.warning(f"[LIBRARY_SYNC] Skipping library without an identifier: {library.get('Name')}")
                continue
            name = library.get('Name') or 'Unknown Library'

            try:
                item_count = LibrarySyncService._item_count(client, library_id, library)
                collection_type = determine_collection_type(library)
                record = LibrarySyncService.upsert_library(config_id, library_id, name, collection_type, item_count)
                synced.append(record.to_dict())
                current_app.logger.debug(f"[LIBRARY_SYNC] Synced '{name}' ({collection_type}, {item_count} items)")
            except InfrastructureError:
                raise
            except SQLAlchemyError as e:
                db.session.rollback()
                raise InfrastructureError(f"Database error while syncing library {library_id}", error=str(e))
            except Exception as e:
                current_app.logger.error(f"[LIBRARY_SYNC] Error syncing library '{name}' ({library_id}): {e}", exc_info=True)

        current_app.logger.info(f"[LIBRARY_SYNC] Synced {len(synced)} of {len(libraries)} libraries for config {config_id}")
        return synced

    @staticmethod
    def get_libraries(config_id: int) -> List[JellyfinLibrary]:
        return JellyfinLibrary.query.filter_by(config_id=config_id).order_by(JellyfinLibrary.library_name).all()

    @staticmethod
    def get_visible_libraries(config_id: int) -> List[JellyfinLibrary]:
        return JellyfinLibrary.query.filter_by(config_id=config_id, is_visible=True).order_by(JellyfinLibrary.library_name).all()

    @staticmethod
    def update_visibility(record_id: int, is_visible: bool) -> bool:
        record = db.session.get(JellyfinLibrary, record_id)
        if record is None:
            return False
        try:
            record.is_visible = is_visible
            db.session.commit()
            current_app.logger.info(f"[LIBRARY_SYNC] Library '{record.library_name}' visibility set to {is_visible}")
            return True
        except SQLAlchemyError as e:
            db.session.rollback()
            raise InfrastructureError('Failed to update library visibility', error=str(e))
