"""
PoliMusic API - JSON API Routes

Songs CRUD, play counting and the "most played" listing under
``/api/songs``.  Every response is an envelope; failures raised by the
service are rendered by the exception handlers registered in ``src.main``.
"""

from typing import Any, Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel

from src.services.song_service import SongService
from src.utils import success_envelope

router = APIRouter(prefix="/api", tags=["Songs"])


# ---------------------------------------------------------------------------
# Pydantic models
# ---------------------------------------------------------------------------
class SongCreate(BaseModel):
    name: Optional[str] = None
    path: Optional[str] = None


class SongUpdate(BaseModel):
    name: Optional[str] = None
    path: Optional[str] = None
    # Any JSON value is accepted and coerced to a non-negative integer
    plays: Any = None


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------
def get_song_service(request: Request) -> SongService:
    """Song service bound to the application's MongoDB connection."""
    return SongService(request.app.state.connection)


# ---------------------------------------------------------------------------
# Songs
# ---------------------------------------------------------------------------
@router.get("/songs")
async def api_list_songs(service: SongService = Depends(get_song_service)):
    """List every song, newest first."""
    songs = await service.list_songs()
    return success_envelope(songs, count=len(songs))


# Declared before /songs/{song_id} so "stats" is never read as an id
@router.get("/songs/stats/popular")
async def api_popular_songs(
    limit: Optional[str] = Query(None),
    service: SongService = Depends(get_song_service),
):
    """Most played songs first; ``limit`` defaults to 10."""
    songs = await service.popular_songs(limit)
    return success_envelope(songs, count=len(songs))


@router.get("/songs/{song_id}")
async def api_get_song(song_id: str, service: SongService = Depends(get_song_service)):
    """Get a single song by ID."""
    song = await service.get_song(song_id)
    return success_envelope(song)


@router.post("/songs", status_code=201)
async def api_create_song(
    body: Optional[SongCreate] = None,
    service: SongService = Depends(get_song_service),
):
    """Register a song.  ``name`` and ``path`` are required."""
    body = body or SongCreate()
    song = await service.create_song(body.name, body.path)
    return success_envelope(song, message="Song created successfully")


@router.put("/songs/{song_id}")
async def api_update_song(
    song_id: str,
    body: Optional[SongUpdate] = None,
    service: SongService = Depends(get_song_service),
):
    """Update any subset of ``name``, ``path`` and ``plays``."""
    fields = body.model_dump(exclude_unset=True) if body else {}
    song = await service.update_song(song_id, fields)
    return success_envelope(song, message="Song updated successfully")


@router.patch("/songs/{song_id}/play")
async def api_play_song(song_id: str, service: SongService = Depends(get_song_service)):
    """Count one play."""
    song = await service.increment_plays(song_id)
    return success_envelope(song, message="Play count updated")


@router.delete("/songs/{song_id}")
async def api_delete_song(song_id: str, service: SongService = Depends(get_song_service)):
    """Delete a song and return its last state."""
    song = await service.delete_song(song_id)
    return success_envelope(song, message="Song deleted successfully")
