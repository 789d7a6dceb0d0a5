"""
PoliMusic API - Song Service

The seven song operations over the ``songs`` collection.  Input is
validated here, before any store call; the store itself only enforces the
unique song name.

Every operation turns driver failures into ``SongStoreError`` with its own
message, so the HTTP layer only has to render ``SongServiceError``.
"""

from typing import Any, Dict, List, Mapping, Optional

from bson import ObjectId
from bson.errors import InvalidId
from loguru import logger
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from src.config import POPULAR_DEFAULT_LIMIT
from src.errors import (
    DuplicateSongError,
    SongNotFoundError,
    SongStoreError,
    SongValidationError,
)
from src.utils import coerce_play_count, parse_limit, serialize_song, utcnow

# Fields a client may change through update
UPDATABLE_FIELDS = ("name", "path", "plays")


def _object_id(song_id: Any) -> ObjectId:
    """Parse a song id; anything that is not a valid ObjectId is simply not found."""
    if isinstance(song_id, ObjectId):
        return song_id
    try:
        return ObjectId(str(song_id or ""))
    except (InvalidId, TypeError):
        raise SongNotFoundError(str(song_id))


def _store_error(message: str, exc: PyMongoError) -> SongStoreError:
    logger.exception("❌ {}: {}", message, exc)
    return SongStoreError(message, exc)


class SongService:
    """
    Song operations bound to a connection.

    *connection* is anything with a ``songs`` attribute returning the
    collection (normally :class:`src.database.MongoConnectionManager`).  The
    attribute is read per call, inside each operation's error handling, so a
    missing connection is reported like any other store failure.
    """

    def __init__(self, connection: Any):
        self._connection = connection

    @property
    def _songs(self) -> Any:
        return self._connection.songs

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    async def list_songs(self) -> List[Dict[str, Any]]:
        """All songs, newest first."""
        try:
            cursor = self._songs.find().sort(
                [("createdAt", DESCENDING), ("_id", DESCENDING)]
            )
            docs = await cursor.to_list(None)
        except PyMongoError as e:
            raise _store_error("Error fetching songs", e) from e
        return [serialize_song(d) for d in docs]

    async def get_song(self, song_id: Any) -> Dict[str, Any]:
        oid = _object_id(song_id)
        try:
            doc = await self._songs.find_one({"_id": oid})
        except PyMongoError as e:
            raise _store_error("Error fetching song", e) from e
        if doc is None:
            raise SongNotFoundError(str(song_id))
        return serialize_song(doc)

    async def popular_songs(self, limit: Any = None) -> List[Dict[str, Any]]:
        """Songs with the most plays first, at most *limit* of them."""
        size = parse_limit(limit, POPULAR_DEFAULT_LIMIT)
        try:
            cursor = (
                self._songs.find()
                .sort([("plays", DESCENDING), ("_id", ASCENDING)])
                .limit(size)
            )
            docs = await cursor.to_list(None)
        except PyMongoError as e:
            raise _store_error("Error fetching popular songs", e) from e
        return [serialize_song(d) for d in docs]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    async def create_song(self, name: Any, path: Any) -> Dict[str, Any]:
        """Register a new song with zero plays."""
        if not name or not path:
            raise SongValidationError("Name and path are required")
        if not isinstance(name, str) or not isinstance(path, str):
            raise SongValidationError("Name and path must be strings")

        name, path = name.strip(), path.strip()
        if not name or not path:
            raise SongValidationError("Name and path are required")

        now = utcnow()
        doc: Dict[str, Any] = {
            "name": name,
            "path": path,
            "plays": 0,
            "createdAt": now,
            "updatedAt": now,
        }
        try:
            result = await self._songs.insert_one(doc)
        except DuplicateKeyError as e:
            logger.warning("⚠️ Duplicate song name rejected: {}", name)
            raise DuplicateSongError(e) from e
        except PyMongoError as e:
            raise _store_error("Error creating song", e) from e

        doc["_id"] = result.inserted_id
        logger.success("✅ Song added (id={}): {}", result.inserted_id, name)
        return serialize_song(doc)

    async def update_song(
        self, song_id: Any, fields: Optional[Mapping[str, Any]] = None
    ) -> Dict[str, Any]:
        """
        Apply the supplied subset of ``name``, ``path`` and ``plays``.

        *fields* must hold only what the client actually sent.  ``name`` and
        ``path`` set to ``None`` count as not sent.  ``plays`` is never
        rejected: it is coerced to a non-negative integer, so ``"abc"``,
        ``None`` and ``-5`` all store 0.
        """
        oid = _object_id(song_id)
        fields = fields or {}

        changes: Dict[str, Any] = {}
        for key in ("name", "path"):
            value = fields.get(key)
            if value is None:
                continue
            if not isinstance(value, str):
                raise SongValidationError("Name and path must be strings")
            value = value.strip()
            if not value:
                raise SongValidationError("Name and path cannot be empty")
            changes[key] = value
        if "plays" in fields:
            changes["plays"] = coerce_play_count(fields["plays"])
        changes["updatedAt"] = utcnow()

        try:
            doc = await self._songs.find_one_and_update(
                {"_id": oid},
                {"$set": changes},
                return_document=ReturnDocument.AFTER,
            )
        except DuplicateKeyError as e:
            logger.warning("⚠️ Duplicate song name rejected: {}", changes.get("name"))
            raise DuplicateSongError(e) from e
        except PyMongoError as e:
            raise _store_error("Error updating song", e) from e

        if doc is None:
            raise SongNotFoundError(str(song_id))
        logger.info(
            "✏️ Song id={} updated: {}",
            song_id,
            [k for k in changes if k != "updatedAt"],
        )
        return serialize_song(doc)

    async def increment_plays(self, song_id: Any) -> Dict[str, Any]:
        """Add one play with a server-side ``$inc``."""
        oid = _object_id(song_id)
        try:
            doc = await self._songs.find_one_and_update(
                {"_id": oid},
                {"$inc": {"plays": 1}, "$set": {"updatedAt": utcnow()}},
                return_document=ReturnDocument.AFTER,
            )
        except PyMongoError as e:
            raise _store_error("Error updating play count", e) from e

        if doc is None:
            raise SongNotFoundError(str(song_id))
        logger.debug("▶️ Song id={} played ({} plays)", song_id, doc.get("plays"))
        return serialize_song(doc)

    async def delete_song(self, song_id: Any) -> Dict[str, Any]:
        """Hard-delete a song and return what it looked like."""
        oid = _object_id(song_id)
        try:
            doc = await self._songs.find_one_and_delete({"_id": oid})
        except PyMongoError as e:
            raise _store_error("Error deleting song", e) from e

        if doc is None:
            logger.warning("⚠️ Song id={} not found for deletion", song_id)
            raise SongNotFoundError(str(song_id))
        logger.info("🗑️ Song id={} deleted from database", song_id)
        return serialize_song(doc)
