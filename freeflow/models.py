"""Dataclasses describing the objects that flow through a dictation cycle."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

DEFAULT_SCREENSHOT_STATUS = "available (image)"


class JobStatus(str, Enum):
    """Lifecycle of a remote transcription job."""

    UPLOADING = "uploading"
    SUBMITTING = "submitting"
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass(slots=True)
class TranscriptionJob:
    """Transient state of one transcription request. Never persisted."""

    status: JobStatus = JobStatus.UPLOADING
    upload_url: Optional[str] = None
    job_id: Optional[str] = None
    polls: int = 0


@dataclass(frozen=True, slots=True)
class RewriteResult:
    """Rewritten transcript plus the prompt that produced it."""

    text: str
    prompt_used: str


@dataclass(frozen=True, slots=True)
class HistoryItem:
    """Represents a stored dictation result."""

    id: str
    timestamp: datetime
    raw_transcript: str
    final_transcript: str
    rewrite_prompt: Optional[str] = None
    context_summary: str = ""
    context_prompt: Optional[str] = None
    context_screenshot_ref: Optional[str] = None
    context_screenshot_status: str = DEFAULT_SCREENSHOT_STATUS
    post_processing_status: str = ""
    debug_status: str = ""
    custom_vocabulary: str = ""
    audio_file_ref: Optional[str] = None

    @classmethod
    def create(cls, raw_transcript: str, final_transcript: str, **fields) -> "HistoryItem":
        """Build a new item with a fresh id and the current time."""

        return cls(
            id=uuid.uuid4().hex,
            timestamp=datetime.now(timezone.utc),
            raw_transcript=raw_transcript,
            final_transcript=final_transcript,
            **fields,
        )


@dataclass(slots=True)
class Config:
    """User configuration stored on disk."""

    transcription_api_key: Optional[str] = None
    transcription_base_url: str = "https://api.assemblyai.com/v2"
    speech_model: str = "universal-3-pro"
    rewrite_api_key: Optional[str] = None
    rewrite_base_url: str = "https://api.groq.com/openai/v1"
    rewrite_model: str = "meta-llama/llama-4-scout-17b-16e-instruct"
    custom_vocabulary: str = ""
    poll_interval: float = 1.0
    api_timeout: float = 60.0
    transcription_timeout: Optional[float] = None
    max_history: int = 50
    keep_audio: bool = False
