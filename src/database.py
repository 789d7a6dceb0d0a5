"""
PoliMusic API - MongoDB Connection Manager

Owns the single ``AsyncMongoClient`` shared by every request.  The manager
is created once per application, stored on ``app.state.connection`` and
handed to the song service through a FastAPI dependency.

Connecting is a loop: a missing or malformed connection string stops it for
good (retrying would never succeed), any other driver error waits
``MONGO_RETRY_DELAY`` seconds and tries again.  After the first success a
heartbeat listener keeps the readiness value in step with the server.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Any, Callable, Mapping, Optional

from loguru import logger
from pymongo import ASCENDING, DESCENDING, AsyncMongoClient, monitoring
from pymongo.errors import ConfigurationError, ConnectionFailure, PyMongoError

from src.config import (
    DB_NAME,
    MONGO_MAX_POOL_SIZE,
    MONGO_RETRY_DELAY,
    MONGO_SERVER_SELECTION_TIMEOUT_MS,
    MONGO_SOCKET_TIMEOUT_MS,
    MONGO_URI_ENV_VARS,
    SONGS_COLLECTION,
    database_env_names,
    resolve_mongo_uri,
)
from src.errors import MissingConnectionStringError
from src.utils import mask_mongo_uri


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    RECONNECTED = "reconnected"


# ---------------------------------------------------------------------------
# Heartbeat monitoring
# ---------------------------------------------------------------------------
class _HeartbeatListener(monitoring.ServerHeartbeatListener):
    """Forward driver heartbeats to the owning manager."""

    def __init__(self, manager: "MongoConnectionManager"):
        self._manager = manager

    def started(self, event: monitoring.ServerHeartbeatStartedEvent) -> None:
        pass

    def succeeded(self, event: monitoring.ServerHeartbeatSucceededEvent) -> None:
        self._manager.mark_reachable()

    def failed(self, event: monitoring.ServerHeartbeatFailedEvent) -> None:
        self._manager.mark_unreachable(event.reply)


# ---------------------------------------------------------------------------
# Connection manager
# ---------------------------------------------------------------------------
class MongoConnectionManager:
    """Connect to MongoDB, keep trying while unreachable and report readiness."""

    def __init__(
        self,
        uri: Optional[str] = None,
        *,
        db_name: str = DB_NAME,
        retry_delay: float = MONGO_RETRY_DELAY,
        max_attempts: Optional[int] = None,
        client_factory: Callable[..., Any] = AsyncMongoClient,
        environ: Optional[Mapping[str, str]] = None,
    ):
        self._uri = uri
        self._environ = environ
        self.db_name = db_name
        self.retry_delay = retry_delay
        self.max_attempts = max_attempts
        self._client_factory = client_factory

        self._client: Any = None
        self._state = ConnectionState.DISCONNECTED
        self._was_connected = False
        self._task: asyncio.Task[bool] | None = None
        self.attempts = 0
        self.last_error: BaseException | None = None

    # ------------------------------------------------------------------
    # Readiness
    # ------------------------------------------------------------------
    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state in (ConnectionState.CONNECTED, ConnectionState.RECONNECTED)

    @property
    def uri(self) -> Optional[str]:
        if self._uri is not None:
            return self._uri
        return resolve_mongo_uri(self._environ)

    @property
    def uri_configured(self) -> bool:
        return bool(self.uri)

    def _set_state(self, state: ConnectionState) -> None:
        if state is self._state:
            return
        previous, self._state = self._state, state
        logger.debug("🔌 MongoDB state: {} → {}", previous.value, state.value)

    def mark_reachable(self) -> None:
        """Called on a successful heartbeat."""
        if self._was_connected and self._state is ConnectionState.DISCONNECTED:
            self._set_state(ConnectionState.RECONNECTED)
            logger.success("✅ MongoDB reconnected")

    def mark_unreachable(self, error: Any = None) -> None:
        """Called on a failed heartbeat."""
        if self.is_connected:
            self._set_state(ConnectionState.DISCONNECTED)
            logger.warning("⚠️  MongoDB disconnected: {}", error)

    # ------------------------------------------------------------------
    # Store access
    # ------------------------------------------------------------------
    @property
    def client(self) -> Any:
        if self._client is None:
            raise ConnectionFailure("MongoDB client is not connected")
        return self._client

    @property
    def db(self) -> Any:
        return self.client[self.db_name]

    @property
    def songs(self) -> Any:
        return self.db[SONGS_COLLECTION]

    # ------------------------------------------------------------------
    # Connect / retry loop
    # ------------------------------------------------------------------
    async def connect(self) -> bool:
        """
        Connect, retrying after ``retry_delay`` seconds on driver errors.

        Returns True once connected.  Returns False without retrying when no
        usable connection string is configured, or when ``max_attempts`` is
        set and exhausted.
        """
        while True:
            self.attempts += 1
            try:
                await self._connect_once()
            except MissingConnectionStringError as e:
                self.last_error = e
                logger.error("❌ {}", e)
                logger.error(
                    "Available environment variables: {}",
                    database_env_names(self._environ),
                )
                logger.warning("⚠️  Configuration error — stopping retry attempts")
                return False
            except ConfigurationError as e:
                self.last_error = e
                logger.error("❌ Invalid MongoDB configuration: {}", e)
                logger.warning("⚠️  Configuration error — stopping retry attempts")
                return False
            except PyMongoError as e:
                self.last_error = e
                logger.error("❌ MongoDB connection failed: {}", e)
                if self.max_attempts is not None and self.attempts >= self.max_attempts:
                    logger.error(
                        "❌ Giving up on MongoDB after {} attempts", self.attempts
                    )
                    return False
                logger.info(
                    "🔄 Retrying connection in {} seconds …", self.retry_delay
                )
                await asyncio.sleep(self.retry_delay)
            else:
                self.last_error = None
                return True

    async def _connect_once(self) -> None:
        uri = self.uri
        if not uri:
            raise MissingConnectionStringError(MONGO_URI_ENV_VARS)

        logger.info("🔄 Attempting to connect to MongoDB …")
        logger.info("📍 Using URI: {}", mask_mongo_uri(uri))

        client = self._client_factory(
            uri,
            serverSelectionTimeoutMS=MONGO_SERVER_SELECTION_TIMEOUT_MS,
            socketTimeoutMS=MONGO_SOCKET_TIMEOUT_MS,
            maxPoolSize=MONGO_MAX_POOL_SIZE,
            retryWrites=True,
            w="majority",
            event_listeners=[_HeartbeatListener(self)],
        )
        try:
            await client.admin.command("ping")
            await ensure_indexes(client[self.db_name][SONGS_COLLECTION])
        except BaseException:
            await client.close()
            raise

        self._client = client
        self._was_connected = True
        self._set_state(ConnectionState.CONNECTED)
        logger.success("✅ MongoDB connected (database: {})", self.db_name)

    def start(self) -> asyncio.Task[bool]:
        """Run :meth:`connect` as a background task."""
        self._task = asyncio.create_task(self.connect())
        self._task.add_done_callback(_on_connect_task_done)
        return self._task

    async def close(self) -> None:
        """Stop any pending connect attempt and close the client."""
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            logger.debug("🔌 MongoDB connect task cancelled")

        if self._client is not None:
            await self._client.close()
            self._client = None
            logger.info("🔌 MongoDB connection closed")
        self._set_state(ConnectionState.DISCONNECTED)


async def ensure_indexes(collection: Any) -> None:
    """Create the indexes the song queries and the name constraint rely on."""
    await collection.create_index([("name", ASCENDING)], unique=True)
    await collection.create_index([("plays", DESCENDING)])
    await collection.create_index([("createdAt", DESCENDING)])


def _on_connect_task_done(task: asyncio.Task) -> None:
    """Log errors the connect loop did not handle itself."""
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("❌ MongoDB connect task failed: {}", exc)
