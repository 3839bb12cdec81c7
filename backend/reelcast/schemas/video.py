"""Pydantic schemas for video operations"""
from datetime import datetime
from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional


class CreateVideoRequest(BaseModel):
    title: str
    original_url: str
    duration: float = Field(gt=0)
    file_size: int = Field(gt=0)
    upload_path: str
    description: str = ""
    status: str = "uploaded"


class VideoStatusUpdate(BaseModel):
    status: str
    processed_at: Optional[datetime] = None
    final_duration: Optional[float] = None
    error_message: Optional[str] = None


class ProcessVideoRequest(BaseModel):
    video_id: int
    duration: Optional[float] = None


class CreateEditedVideoRequest(BaseModel):
    title: str
    source_type: str
    source_id: str
    file_path: str
    file_size: int = Field(gt=0)
    duration: float = Field(gt=0)
    caption_style: Optional[Dict[str, Any]] = None


class Word(BaseModel):
    word: str
    start: float
    end: float


class Segment(BaseModel):
    id: int = 0
    start: float
    end: float
    text: str = ""
    words: List[Word] = Field(default_factory=list)


class WordTimestamps(BaseModel):
    text: str = ""
    segments: List[Segment] = Field(default_factory=list)


class BurnCaptionsRequest(BaseModel):
    video_id: int  # EditedVideo to caption
    word_timestamps: WordTimestamps
    preset: Dict[str, Any]
    title: Optional[str] = None
