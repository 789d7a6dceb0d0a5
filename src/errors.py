"""
PoliMusic API - Exceptions

Every failure the service reports to a client is a ``SongServiceError``
carrying the HTTP status and the message shown in the response envelope.
"""

from typing import Optional


class PoliMusicError(Exception):
    """Base class for all application errors."""


class MissingConnectionStringError(PoliMusicError):
    """No MongoDB connection string in any recognised environment variable."""

    def __init__(self, names: tuple[str, ...]):
        self.names = names
        super().__init__(
            "MongoDB URI is not defined. Set one of: " + ", ".join(names)
        )


class SongServiceError(PoliMusicError):
    status_code = 500

    def __init__(
        self,
        message: str,
        cause: Optional[BaseException] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.message = message
        self.cause = cause
        if status_code is not None:
            self.status_code = status_code

    @property
    def detail(self) -> str:
        """Raw error text, shown to clients outside production."""
        return str(self.cause) if self.cause is not None else self.message


class SongValidationError(SongServiceError):
    status_code = 400


class DuplicateSongError(SongServiceError):
    status_code = 400

    def __init__(self, cause: Optional[BaseException] = None):
        super().__init__("Song with this name already exists", cause)


class SongNotFoundError(SongServiceError):
    status_code = 404

    def __init__(self, song_id: str = ""):
        super().__init__("Song not found")
        self.song_id = song_id


class SongStoreError(SongServiceError):
    status_code = 500
