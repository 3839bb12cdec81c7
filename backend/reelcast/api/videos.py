"""Videos API routes"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, Request, UploadFile
from fastapi.responses import JSONResponse, StreamingResponse
from sqlalchemy.orm import Session

from reelcast.core.logging import video_logger
from reelcast.core.security import require_auth, require_csrf
from reelcast.db.session import get_db
from reelcast.schemas.video import (
    BurnCaptionsRequest, CreateEditedVideoRequest, CreateVideoRequest, ProcessVideoRequest, VideoStatusUpdate
)
from reelcast.services.video_service import (
    FFmpegError, ProcessingServiceError, RangeNotSatisfiableError, UploadNotAllowedError,
    burn_captions, create_edited_video, create_video, delete_video, get_job_status, get_owned_video,
    guess_media_type, iter_file_range, list_edited_videos, list_videos, parse_range, process_video,
    resolve_preview_path, save_edited_file, serialize_video, update_video_status
)

router = APIRouter(prefix="/api/videos", tags=["videos"])
logger = logging.getLogger(__name__)


def _raise_http(e: Exception):
    if isinstance(e, LookupError):
        raise HTTPException(404, str(e))
    if isinstance(e, PermissionError):
        raise HTTPException(403, str(e))
    raise HTTPException(400, str(e))


@router.post("", status_code=201)
def add_video(request_data: CreateVideoRequest, user_id: int = Depends(require_csrf), db: Session = Depends(get_db)):
    """Record an uploaded video; minutes are charged to an active subscription"""
    try:
        video = create_video(user_id, request_data.model_dump(), db)
    except (ValueError, LookupError) as e:
        _raise_http(e)
    return {"success": True, "message": "Video saved to database", "video": video}


@router.get("")
def get_videos(
    status: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    user_id: int = Depends(require_auth),
    db: Session = Depends(get_db)
):
    return list_videos(user_id, db, status=status, page=page, limit=limit)


@router.post("/process")
async def process(request_data: ProcessVideoRequest, user_id: int = Depends(require_csrf), db: Session = Depends(get_db)):
    """Start processing a video for a subscribed user"""
    try:
        return await process_video(user_id, request_data.video_id, db, duration=request_data.duration)
    except UploadNotAllowedError as e:
        raise HTTPException(403, {"error": str(e), "code": e.code, **e.details})
    except ProcessingServiceError as e:
        raise HTTPException(e.status_code, str(e))
    except (ValueError, LookupError) as e:
        _raise_http(e)


@router.get("/jobs/{job_id}")
async def job_status(job_id: str, user_id: int = Depends(require_auth), db: Session = Depends(get_db)):
    """Proxy the processing service's job status"""
    try:
        return await get_job_status(user_id, job_id, db)
    except ProcessingServiceError as e:
        return JSONResponse(status_code=e.status_code, content={"error": str(e), "details": e.details})


@router.post("/edited", status_code=201)
def add_edited_video(
    request_data: CreateEditedVideoRequest,
    user_id: int = Depends(require_csrf),
    db: Session = Depends(get_db)
):
    try:
        return {"success": True, "video": create_edited_video(user_id, request_data.model_dump(), db)}
    except ValueError as e:
        _raise_http(e)


@router.get("/edited")
def get_edited_videos(user_id: int = Depends(require_auth), db: Session = Depends(get_db)):
    return {"videos": list_edited_videos(user_id, db)}


@router.post("/edited/save-file")
async def save_file(file: UploadFile = File(...), user_id: int = Depends(require_csrf)):
    """Store a rendered clip and return its path under the media root"""
    try:
        return await save_edited_file(file, user_id)
    except ValueError as e:
        if "too large" in str(e):
            raise HTTPException(413, str(e))
        raise HTTPException(400, str(e))


@router.get("/preview/{filename}")
def preview(filename: str, request: Request, user_id: int = Depends(require_auth)):
    """Stream an edited clip, honouring single byte ranges for seeking"""
    try:
        path = resolve_preview_path(filename)
    except (ValueError, LookupError) as e:
        _raise_http(e)

    size = path.stat().st_size
    media_type = guess_media_type(path)

    try:
        byte_range = parse_range(request.headers.get("range"), size)
    except RangeNotSatisfiableError:
        return JSONResponse(
            status_code=416,
            content={"error": "Requested range not satisfiable"},
            headers={"Content-Range": f"bytes */{size}"},
        )

    if byte_range is None:
        headers = {"Content-Length": str(size), "Accept-Ranges": "bytes"}
        return StreamingResponse(iter_file_range(path, 0, size - 1), media_type=media_type, headers=headers)

    start, end = byte_range
    headers = {
        "Content-Range": f"bytes {start}-{end}/{size}",
        "Content-Length": str(end - start + 1),
        "Accept-Ranges": "bytes",
    }
    return StreamingResponse(iter_file_range(path, start, end), status_code=206, media_type=media_type, headers=headers)


@router.post("/burn-captions", status_code=201)
async def burn_captions_route(
    request_data: BurnCaptionsRequest,
    user_id: int = Depends(require_csrf),
    db: Session = Depends(get_db)
):
    """Render animated captions onto a clip with FFmpeg"""
    try:
        video = await burn_captions(
            user_id,
            request_data.video_id,
            request_data.word_timestamps.model_dump(),
            request_data.preset,
            db,
            title=request_data.title,
        )
    except (ValueError, LookupError, PermissionError) as e:
        _raise_http(e)
    except FFmpegError as e:
        video_logger.error(f"Caption burn-in failed for clip {request_data.video_id}: {e}")
        raise HTTPException(500, f"Failed to process video: {e}")
    return {"success": True, "video": video}


@router.get("/{video_id}")
def get_video(video_id: int, user_id: int = Depends(require_auth), db: Session = Depends(get_db)):
    try:
        return {"video": serialize_video(get_owned_video(user_id, video_id, db))}
    except (LookupError, PermissionError) as e:
        _raise_http(e)


@router.delete("/{video_id}")
def remove_video(video_id: int, user_id: int = Depends(require_csrf), db: Session = Depends(get_db)):
    try:
        return delete_video(user_id, video_id, db)
    except (LookupError, PermissionError) as e:
        _raise_http(e)


@router.patch("/{video_id}/status")
def patch_video_status(
    video_id: int,
    request_data: VideoStatusUpdate,
    user_id: int = Depends(require_csrf),
    db: Session = Depends(get_db)
):
    """Update processing status; a completed video may carry its final duration"""
    try:
        video = update_video_status(
            user_id, video_id, request_data.status, db,
            processed_at=request_data.processed_at,
            final_duration=request_data.final_duration,
            error_message=request_data.error_message,
        )
    except (ValueError, LookupError, PermissionError) as e:
        _raise_http(e)
    return {"success": True, "message": f"Video status updated to {request_data.status}", "video": video}
