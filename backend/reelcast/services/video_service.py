"""Video records, edited clips, preview streaming and FFmpeg shell-outs"""
import asyncio
import math
import mimetypes
import re
import subprocess
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple

import httpx
from fastapi import UploadFile
from sqlalchemy.orm import Session

from reelcast.core.config import settings, EDITED_CLIPS_DIR, TEMP_DIR, FONTS_DIR
from reelcast.core.logging import video_logger
from reelcast.models.edited_video import EditedVideo
from reelcast.models.user import User
from reelcast.models.video import Video, VIDEO_STATUSES
from reelcast.services.publish_service import resolve_video_path
from reelcast.services.subscription_service import add_minutes_used, minutes_for_duration
from reelcast.utils.dates import as_utc, utcnow
from reelcast.utils.subtitles import generate_ass

UPLOAD_CHUNK_SIZE = 1024 * 1024  # 1MB
STREAM_CHUNK_SIZE = 64 * 1024
PROBE_TIMEOUT = 30.0
PROCESSING_API_TIMEOUT = 30.0
ALLOWED_CLIP_EXTENSIONS = {".mp4", ".mov", ".webm", ".m4v"}

_RANGE_RE = re.compile(r"^bytes=(\d*)-(\d*)$")


class UploadNotAllowedError(PermissionError):
    """Raised when the user's plan does not allow more processing"""

    def __init__(self, message: str, code: str, **details):
        super().__init__(message)
        self.code = code
        self.details = details


class ProcessingServiceError(Exception):
    """The external processing service rejected or failed a request"""

    def __init__(self, message: str, status_code: int = 502, details: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.details = details


class RangeNotSatisfiableError(ValueError):
    def __init__(self, size: int):
        super().__init__(f"Requested range not satisfiable (size {size})")
        self.size = size


class FFmpegError(Exception):
    pass


def _http_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=PROCESSING_API_TIMEOUT)


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    return as_utc(value).isoformat() if value else None


# ============================================================================
# VIDEOS
# ============================================================================

def serialize_video(video: Video) -> Dict:
    return {
        "id": video.id,
        "user_id": video.user_id,
        "title": video.title,
        "description": video.description,
        "original_url": video.original_url,
        "duration": video.duration,
        "file_size": video.file_size,
        "status": video.status,
        "upload_path": video.upload_path,
        "external_job_id": video.external_job_id,
        "error": video.error,
        "processed_at": _isoformat(video.processed_at),
        "uploaded_at": _isoformat(video.uploaded_at),
    }


def create_video(user_id: int, values: Dict[str, Any], db: Session) -> Dict:
    """Record an uploaded video and charge its minutes to an active subscription"""
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise LookupError("User not found")

    status = values.get("status") or "uploaded"
    if status not in VIDEO_STATUSES:
        raise ValueError(f"Invalid status: {status}")

    video = Video(
        user_id=user_id,
        title=values["title"],
        description=values.get("description") or "",
        original_url=values["original_url"],
        duration=values["duration"],
        file_size=values["file_size"],
        status=status,
        upload_path=values["upload_path"],
    )
    db.add(video)
    db.flush()

    subscription = user.subscription
    if subscription and subscription.status == "active":
        minutes = minutes_for_duration(video.duration)
        subscription.minutes_used += minutes
        video_logger.info(
            f"User {user_id} charged {minutes} min for video '{video.title}' "
            f"({subscription.minutes_used}/{subscription.minutes_allowed})"
        )

    db.commit()
    db.refresh(video)
    video_logger.info(f"Created video {video.id} for user {user_id}: {video.title}")
    return serialize_video(video)


def list_videos(user_id: int, db: Session, status: Optional[str] = None, page: int = 1, limit: int = 10) -> Dict:
    page = max(page, 1)
    limit = min(max(limit, 1), 100)

    query = db.query(Video).filter(Video.user_id == user_id)
    if status:
        query = query.filter(Video.status == status)

    total = query.count()
    videos = query.order_by(Video.uploaded_at.desc()).offset((page - 1) * limit).limit(limit).all()
    return {
        "videos": [serialize_video(v) for v in videos],
        "pagination": {"total": total, "page": page, "limit": limit, "total_pages": math.ceil(total / limit)},
    }


def get_owned_video(user_id: int, video_id: int, db: Session) -> Video:
    video = db.query(Video).filter(Video.id == video_id).first()
    if not video:
        raise LookupError("Video not found")
    if video.user_id != user_id:
        raise PermissionError("You do not have permission to access this video")
    return video


def delete_video(user_id: int, video_id: int, db: Session) -> Dict:
    video = get_owned_video(user_id, video_id, db)
    db.delete(video)
    db.commit()
    video_logger.info(f"User {user_id} deleted video {video_id}")
    return {"success": True, "message": "Video deleted"}


def update_video_status(
    user_id: int,
    video_id: int,
    status: str,
    db: Session,
    processed_at: Optional[datetime] = None,
    final_duration: Optional[float] = None,
    error_message: Optional[str] = None
) -> Dict:
    """Update a video's status, adjusting usage when the final duration differs

    A completed video whose final duration differs from the recorded one by
    more than a second is re-charged by the rounded-up difference in minutes.
    """
    if status not in VIDEO_STATUSES:
        raise ValueError(f"Invalid status: {status}")

    video = get_owned_video(user_id, video_id, db)
    initial_duration = video.duration

    video.status = status
    if status == "completed" and not video.processed_at:
        video.processed_at = processed_at or utcnow()
    if final_duration and final_duration != initial_duration:
        video.duration = final_duration
    if status == "failed" and error_message:
        video.error = error_message

    subscription = video.user.subscription
    if status == "completed" and subscription and final_duration:
        diff = final_duration - initial_duration
        if abs(diff) > 1:
            minutes = math.ceil(diff / 60)
            if minutes:
                subscription.minutes_used = max(subscription.minutes_used + minutes, 0)
                video_logger.info(
                    f"Adjusted usage for user {user_id} by {minutes:+d} min "
                    f"(video {video_id}: {initial_duration}s -> {final_duration}s)"
                )

    db.commit()
    db.refresh(video)
    return serialize_video(video)


async def _submit_processing_job(video: Video, duration: float) -> str:
    headers = {"X-API-Key": settings.PROCESSING_API_KEY}
    payload = {
        "video_id": video.id,
        "video_url": video.original_url,
        "title": video.title,
        "duration": duration,
    }
    async with _http_client() as client:
        response = await client.post(f"{settings.PROCESSING_API_URL.rstrip('/')}/jobs", json=payload, headers=headers)

    if response.status_code not in (200, 201, 202):
        raise ProcessingServiceError(
            f"Processing service rejected the job (HTTP {response.status_code})",
            status_code=502,
            details=response.text[:500],
        )

    data = response.json()
    job_id = data.get("job_id") or data.get("id")
    if not job_id:
        raise ProcessingServiceError("Processing service did not return a job id")
    return str(job_id)


async def process_video(user_id: int, video_id: int, db: Session, duration: Optional[float] = None) -> Dict:
    """Charge minutes, mark the video processing and submit it to the processing service"""
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise LookupError("User not found")

    if not user.is_subscribed:
        raise UploadNotAllowedError("Subscription required", "subscription_required")

    period_end = as_utc(user.stripe_current_period_end)
    if period_end and period_end < utcnow():
        raise UploadNotAllowedError("Subscription expired", "subscription_expired")

    subscription = user.subscription
    if subscription and subscription.minutes_used >= subscription.minutes_allowed:
        raise UploadNotAllowedError(
            "Usage limit reached", "usage_limit_reached",
            used=subscription.minutes_used, allowed=subscription.minutes_allowed,
        )

    video = db.query(Video).filter(Video.id == video_id, Video.user_id == user_id).first()
    if not video:
        raise LookupError("Video not found")

    seconds = duration or video.duration or 0
    minutes = minutes_for_duration(seconds)
    add_minutes_used(user_id, minutes, db)

    video.status = "processing"
    video.error = None
    db.commit()

    if settings.PROCESSING_API_URL:
        try:
            video.external_job_id = await _submit_processing_job(video, seconds)
        except (httpx.HTTPError, ProcessingServiceError) as e:
            video_logger.error(f"Failed to submit video {video_id} for processing: {e}", exc_info=True)
            video.status = "failed"
            video.error = str(e)
            db.commit()
            add_minutes_used(user_id, -minutes, db)
            if isinstance(e, ProcessingServiceError):
                raise
            raise ProcessingServiceError(f"Processing service unavailable: {e}")
        db.commit()
        video_logger.info(f"Submitted video {video_id} as job {video.external_job_id}")

    return {
        "success": True,
        "message": "Video processing started",
        "job_id": video.external_job_id,
        "minutes_charged": minutes,
    }


async def get_job_status(user_id: int, job_id: str, db: Session) -> Dict:
    """Proxy a job status from the processing service; terminal statuses update the video"""
    if not settings.PROCESSING_API_URL:
        raise ProcessingServiceError("Processing service is not configured", status_code=503)

    headers = {"X-API-Key": settings.PROCESSING_API_KEY}
    try:
        async with _http_client() as client:
            response = await client.get(f"{settings.PROCESSING_API_URL.rstrip('/')}/jobs/{job_id}", headers=headers)
    except httpx.HTTPError as e:
        video_logger.error(f"Job status request failed for {job_id}: {e}")
        raise ProcessingServiceError("Failed to fetch job status")

    if response.status_code != 200:
        try:
            details = response.json()
        except ValueError:
            details = {}
        raise ProcessingServiceError("Failed to fetch job status", status_code=response.status_code, details=details)

    data = response.json()
    video = db.query(Video).filter(Video.external_job_id == job_id, Video.user_id == user_id).first()
    if video:
        job_status = data.get("status")
        video.last_status_check = utcnow()
        if job_status == "completed" and video.status != "completed":
            video.status = "completed"
            video.processed_at = utcnow()
        elif job_status == "failed" and video.status != "failed":
            video.status = "failed"
            video.error = data.get("error") or "Processing failed"
        db.commit()

    return data


# ============================================================================
# EDITED CLIPS
# ============================================================================

def serialize_edited_video(video: EditedVideo) -> Dict:
    return {
        "id": video.id,
        "user_id": video.user_id,
        "title": video.title,
        "source_type": video.source_type,
        "source_id": video.source_id,
        "file_path": video.file_path,
        "preview_url": f"/api/videos/preview/{Path(video.file_path).name}",
        "file_size": video.file_size,
        "duration": video.duration,
        "caption_style": video.caption_style,
        "created_at": _isoformat(video.created_at),
    }


def create_edited_video(user_id: int, values: Dict[str, Any], db: Session) -> Dict:
    file_path = values["file_path"].lstrip("/")
    edited = EditedVideo(
        user_id=user_id,
        title=values["title"],
        source_type=values["source_type"],
        source_id=values["source_id"],
        file_path=file_path,
        file_size=values["file_size"],
        duration=values["duration"],
        caption_style=values.get("caption_style"),
    )
    # Rejects paths outside MEDIA_ROOT
    resolve_video_path(edited)

    db.add(edited)
    db.commit()
    db.refresh(edited)
    video_logger.info(f"Saved edited video {edited.id} for user {user_id}: {edited.title}")
    return serialize_edited_video(edited)


def list_edited_videos(user_id: int, db: Session) -> List[Dict]:
    videos = db.query(EditedVideo).filter(EditedVideo.user_id == user_id).order_by(EditedVideo.created_at.desc()).all()
    return [serialize_edited_video(v) for v in videos]


async def save_edited_file(file: UploadFile, user_id: int) -> Dict:
    """Stream an uploaded clip into the edited clips directory under a random name"""
    suffix = Path(file.filename or "").suffix.lower() or ".mp4"
    if suffix not in ALLOWED_CLIP_EXTENSIONS:
        raise ValueError(f"Unsupported file type: {suffix}")

    EDITED_CLIPS_DIR.mkdir(parents=True, exist_ok=True)
    filename = f"{uuid.uuid4()}{suffix}"
    path = EDITED_CLIPS_DIR / filename

    size = 0
    try:
        with open(path, "wb") as f:
            while True:
                chunk = await file.read(UPLOAD_CHUNK_SIZE)
                if not chunk:
                    break
                size += len(chunk)
                if size > settings.MAX_UPLOAD_SIZE:
                    raise ValueError(f"File too large. Maximum size is {settings.MAX_UPLOAD_SIZE // (1024 * 1024)} MB")
                f.write(chunk)
    except Exception:
        path.unlink(missing_ok=True)
        raise

    if size == 0:
        path.unlink(missing_ok=True)
        raise ValueError("No file received")

    video_logger.info(f"User {user_id} saved edited clip {filename} ({size / (1024 * 1024):.2f} MB)")
    return {"success": True, "file_path": f"/editedClips/{filename}", "file_size": size}


# ============================================================================
# PREVIEW STREAMING
# ============================================================================

def resolve_preview_path(filename: str) -> Path:
    if not filename or ".." in filename or "/" in filename or "\\" in filename:
        raise ValueError("Invalid filename")
    path = EDITED_CLIPS_DIR / filename
    if not path.is_file():
        raise LookupError("File not found")
    return path


def guess_media_type(path: Path) -> str:
    media_type, _ = mimetypes.guess_type(path.name)
    return media_type or "video/mp4"


def parse_range(range_header: Optional[str], size: int) -> Optional[Tuple[int, int]]:
    """Parse a single 'bytes=start-end' range into inclusive offsets

    Returns None when there is no usable Range header (serve the whole file).
    An open-ended range runs to EOF, a suffix range ('bytes=-N') covers the
    last N bytes and the end is clamped to size - 1.

    Raises:
        RangeNotSatisfiableError: start beyond EOF (any range of an empty file) or start after end
    """
    if not range_header:
        return None

    match = _RANGE_RE.match(range_header.strip())
    if not match or (not match.group(1) and not match.group(2)):
        return None

    start_str, end_str = match.groups()
    if not start_str:
        suffix = int(end_str)
        if suffix == 0 or size == 0:
            raise RangeNotSatisfiableError(size)
        return max(size - suffix, 0), size - 1

    start = int(start_str)
    end = int(end_str) if end_str else size - 1
    if start >= size or start > end:
        raise RangeNotSatisfiableError(size)
    return start, min(end, size - 1)


def iter_file_range(path: Path, start: int, end: int, chunk_size: int = STREAM_CHUNK_SIZE) -> Iterator[bytes]:
    """Yield bytes start..end (inclusive) of a file"""
    remaining = end - start + 1
    with open(path, "rb") as f:
        f.seek(start)
        while remaining > 0:
            chunk = f.read(min(chunk_size, remaining))
            if not chunk:
                break
            remaining -= len(chunk)
            yield chunk


# ============================================================================
# FFMPEG
# ============================================================================

def probe_duration(video_path: Path) -> float:
    """Get video duration in seconds using ffprobe

    Raises:
        FFmpegError: If ffprobe is not available or the video cannot be analyzed
    """
    cmd = [
        settings.FFPROBE_PATH,
        "-v", "error",
        "-show_entries", "format=duration",
        "-of", "default=noprint_wrappers=1:nokey=1",
        str(video_path),
    ]
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, timeout=PROBE_TIMEOUT)
    except FileNotFoundError:
        raise FFmpegError("ffprobe not found. Please install ffmpeg.")
    except subprocess.TimeoutExpired:
        raise FFmpegError("ffprobe timed out while analyzing video")

    if result.returncode != 0:
        raise FFmpegError(f"ffprobe failed: {result.stderr.strip()}")

    try:
        duration = float(result.stdout.strip())
    except ValueError:
        raise FFmpegError(f"Failed to parse video duration: {result.stdout.strip()!r}")
    if duration <= 0:
        raise FFmpegError(f"Invalid duration: {duration}")
    return duration


def _filter_path(path: Path) -> str:
    """Escape a path for use inside an ffmpeg filter argument"""
    return str(path).replace("\\", "/").replace(":", "\\:").replace("'", "\\'")


def build_burn_command(input_path: Path, ass_path: Path, output_path: Path) -> List[str]:
    return [
        settings.FFMPEG_PATH,
        "-y",
        "-i", str(input_path),
        "-vf", f"ass={_filter_path(ass_path)}:fontsdir={_filter_path(FONTS_DIR)}",
        "-c:a", "copy",
        str(output_path),
    ]


def _run_ffmpeg(cmd: List[str]) -> None:
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, timeout=settings.FFMPEG_TIMEOUT)
    except FileNotFoundError:
        raise FFmpegError("ffmpeg not found. Please install ffmpeg.")
    except subprocess.TimeoutExpired:
        raise FFmpegError(f"ffmpeg timed out after {settings.FFMPEG_TIMEOUT}s")

    if result.returncode != 0:
        # Last lines carry the actual error
        tail = "\n".join(result.stderr.strip().splitlines()[-5:])
        raise FFmpegError(f"ffmpeg failed (exit {result.returncode}): {tail}")


async def burn_captions(
    user_id: int,
    video_id: int,
    word_timestamps: Dict[str, Any],
    preset: Dict[str, Any],
    db: Session,
    title: Optional[str] = None
) -> Dict:
    """Render captions onto an edited clip and save the result as a new clip"""
    source = db.query(EditedVideo).filter(EditedVideo.id == video_id).first()
    if not source:
        raise LookupError("Video not found")
    if source.user_id != user_id:
        raise PermissionError("You do not have permission to access this video")

    input_path = resolve_video_path(source)
    if not input_path.exists():
        raise LookupError("Video file not found")

    TEMP_DIR.mkdir(parents=True, exist_ok=True)
    EDITED_CLIPS_DIR.mkdir(parents=True, exist_ok=True)

    token = uuid.uuid4().hex
    ass_path = TEMP_DIR / f"subtitles-{token}.ass"
    output_name = f"{uuid.uuid4()}.mp4"
    output_path = EDITED_CLIPS_DIR / output_name
    succeeded = False

    try:
        ass_path.write_text(generate_ass(word_timestamps, preset), encoding="utf-8")
        cmd = build_burn_command(input_path, ass_path, output_path)
        video_logger.info(f"Burning captions for clip {video_id}: {' '.join(cmd)}")
        await asyncio.to_thread(_run_ffmpeg, cmd)

        if not output_path.exists():
            raise FFmpegError("FFmpeg processing failed, output file not found")

        try:
            duration = await asyncio.to_thread(probe_duration, output_path)
        except FFmpegError as e:
            video_logger.warning(f"Could not probe captioned clip, keeping source duration: {e}")
            duration = source.duration

        edited = EditedVideo(
            user_id=user_id,
            title=title or source.title,
            source_type="captioned",
            source_id=str(source.id),
            file_path=f"editedClips/{output_name}",
            file_size=output_path.stat().st_size,
            duration=duration,
            caption_style=preset,
        )
        db.add(edited)
        db.commit()
        db.refresh(edited)
        succeeded = True
        video_logger.info(f"Captioned clip {edited.id} created from clip {video_id}")
        return serialize_edited_video(edited)
    finally:
        ass_path.unlink(missing_ok=True)
        if not succeeded:
            output_path.unlink(missing_ok=True)


def check_ffmpeg() -> Dict:
    """Report whether ffmpeg and ffprobe can be executed"""
    report = {}
    for name, binary in (("ffmpeg", settings.FFMPEG_PATH), ("ffprobe", settings.FFPROBE_PATH)):
        try:
            result = subprocess.run([binary, "-version"], capture_output=True, text=True, timeout=10)
            first_line = result.stdout.splitlines()[0] if result.stdout else ""
            report[name] = {"available": result.returncode == 0, "path": binary, "version": first_line}
        except (FileNotFoundError, subprocess.TimeoutExpired) as e:
            report[name] = {"available": False, "path": binary, "error": str(e) or type(e).__name__}
    report["available"] = all(entry["available"] for entry in report.values())
    return report
