"""
Playback Routes - API endpoints for playback sessions, stats and royalties

Thin adapter over PlaybackService. Handlers are plain (sync) functions so
FastAPI runs them in its threadpool; the engine's own locks make parallel
calls safe. Engine errors are rendered by the handlers registered in
middleware/error_handlers.py.
"""

from fastapi import APIRouter, Depends, Query, Request, Response

from playback.service import PlaybackService
from web_ui.api.schemas.playback_schemas import (
    PlayEndRequest,
    PlayEndResponse,
    PlayProgressRequest,
    PlayProgressResponse,
    PlayStartRequest,
    PlayStartResponse,
)


router = APIRouter()


def get_playback_service(request: Request) -> PlaybackService:
    """Service instance created in the application lifespan"""
    return request.app.state.playback_service


# ========== Session lifecycle ==========

@router.post("/play/start", response_model=PlayStartResponse)
def start_playback(
    body: PlayStartRequest,
    service: PlaybackService = Depends(get_playback_service),
):
    """
    Start playing a track.

    - **user_id**: Listener (resolved by the auth layer upstream)
    - **track_id**: Catalog track id
    - **tier**: free, premium or hifi

    Limited to 10 starts per user per minute.
    """
    return service.start_playback(body.user_id, body.track_id, body.tier)


@router.post("/play/progress", response_model=PlayProgressResponse)
def update_progress(
    body: PlayProgressRequest,
    service: PlaybackService = Depends(get_playback_service),
):
    """Report playback position. Stop the player when preview_limit_reached is true."""
    return service.update_playback_progress(body.session_id, body.current_time, body.total_duration)


@router.post("/play/end", response_model=PlayEndResponse)
def end_playback(
    body: PlayEndRequest,
    service: PlaybackService = Depends(get_playback_service),
):
    """Finish a session. Safe to retry: repeated calls return the same outcome."""
    return service.end_playback(body.session_id)


@router.get("/stream/{track_id}")
def stream_audio(
    track_id: str,
    session: str = Query(...),
    quality: str = Query("free"),
    service: PlaybackService = Depends(get_playback_service),
):
    """
    Stream gate for the URL handed out by /play/start.

    Validates the session and applies the quality config; the audio bytes
    are served by the storage layer behind this endpoint.
    """
    config = service.authorize_stream(track_id, session, quality)
    media_type = "audio/flac" if config["format"] == "flac" else "audio/mpeg"
    return Response(
        content=b"",
        media_type=media_type,
        headers={
            "Accept-Ranges": "bytes",
            "Cache-Control": "no-cache",
            "X-Audio-Quality": str(config["bitrate"]),
            "X-Audio-Format": config["format"],
        },
    )


@router.get("/sessions/{session_id}")
def get_session(session_id: str, service: PlaybackService = Depends(get_playback_service)):
    return {"success": True, "session": service.get_session(session_id)}


# ========== Stats & royalties ==========

@router.get("/stats/track/{track_id}")
def get_track_stats(track_id: str, service: PlaybackService = Depends(get_playback_service)):
    return {"success": True, "track_id": track_id, "stats": service.get_track_stats(track_id)}


@router.get("/tracks/{track_id}")
def get_track(track_id: str, service: PlaybackService = Depends(get_playback_service)):
    return {"success": True, "track": service.get_track(track_id)}


@router.get("/history/user/{user_id}")
def get_user_history(
    user_id: str,
    limit: int = Query(50, ge=1, le=500),
    service: PlaybackService = Depends(get_playback_service),
):
    return {"success": True, "history": service.get_user_play_history(user_id, limit)}


@router.get("/earnings/artist/{artist_id}")
def get_artist_earnings(artist_id: str, service: PlaybackService = Depends(get_playback_service)):
    return {"success": True, "artist_id": artist_id, "earnings": service.get_artist_earnings(artist_id)}


@router.post("/royalties/tracks/{track_id}/resume")
def resume_track_crediting(track_id: str, service: PlaybackService = Depends(get_playback_service)):
    """Re-enable crediting for a track after its ledger was reconciled by hand"""
    return {"success": True, "track_id": track_id, "resumed": service.resume_track_crediting(track_id)}


# ========== Quality ==========

@router.get("/quality/options")
def get_quality_options(
    tier: str = Query("free"),
    service: PlaybackService = Depends(get_playback_service),
):
    return {"success": True, **service.get_quality_options(tier)}


@router.get("/quality/{quality_id}")
def get_streaming_quality(quality_id: str, service: PlaybackService = Depends(get_playback_service)):
    """Quality config for one tier. Unknown ids are rejected with 400."""
    return {"success": True, "quality": service.get_streaming_quality(quality_id, strict=True)}


@router.get("/status")
def get_status(service: PlaybackService = Depends(get_playback_service)):
    return {"success": True, **service.get_service_status()}
