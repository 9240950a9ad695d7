"""Remote transcription: upload the audio, submit a job and poll it to completion."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Callable, Dict, Optional

import httpx

from .models import JobStatus, TranscriptionJob

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.assemblyai.com/v2"
DEFAULT_SPEECH_MODEL = "universal-3-pro"
POLL_INTERVAL_SECONDS = 1.0

ProgressCallback = Callable[[TranscriptionJob], None]


class TranscriptionError(RuntimeError):
    """Base class for failures of the remote transcription lifecycle."""

    prefix = "Transcription error"

    def __init__(self, detail: str, status_code: Optional[int] = None, body: str = "") -> None:
        self.detail = detail
        self.status_code = status_code
        self.body = body
        super().__init__(f"{self.prefix}: {detail}")


class UploadFailed(TranscriptionError):
    prefix = "Upload failed"


class SubmissionFailed(TranscriptionError):
    prefix = "Submission failed"


class PollFailed(TranscriptionError):
    prefix = "Polling failed"


class TranscriptionFailed(TranscriptionError):
    """The remote service gave up on the job."""

    prefix = "Transcription failed"


def _describe(response: httpx.Response) -> str:
    return f"Status {response.status_code}: {response.text}"


def _json_object(response: httpx.Response) -> Optional[Dict[str, Any]]:
    try:
        payload = response.json()
    except ValueError:
        return None
    return payload if isinstance(payload, dict) else None


async def validate_api_key(
    api_key: str,
    *,
    base_url: str = DEFAULT_BASE_URL,
    timeout: float = 10.0,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> bool:
    """Return True when the key is accepted by the transcription service.

    Any failure (blank key, network error, rejected credentials) yields False.
    """

    key = (api_key or "").strip()
    if not key:
        return False
    try:
        async with httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            transport=transport,
        ) as client:
            response = await client.get(
                "/transcript", params={"limit": 1}, headers={"Authorization": key}
            )
    except (httpx.HTTPError, ValueError) as exc:
        logger.debug("API key validation failed: %s", exc)
        return False
    return response.status_code == 200


class TranscriptionService:
    """Drive one remote transcription job per call to :meth:`transcribe`.

    The three steps always run in order: upload, submit, poll. Only the
    ``queued``/``processing`` poll states are retried; every other failure is
    raised to the caller. An instance must not be reused while a call is in
    flight.
    """

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = DEFAULT_BASE_URL,
        speech_model: str = DEFAULT_SPEECH_MODEL,
        poll_interval: float = POLL_INTERVAL_SECONDS,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.api_key = api_key.strip()
        self.base_url = base_url.rstrip("/")
        self.speech_model = speech_model
        self.poll_interval = poll_interval
        self.timeout = timeout
        self._transport = transport
        self._in_flight = False

    async def transcribe(
        self, audio_path: Path, on_progress: Optional[ProgressCallback] = None
    ) -> str:
        """Upload ``audio_path``, wait for the remote job and return its text."""

        if self._in_flight:
            raise RuntimeError("This transcription service is already processing audio.")
        self._in_flight = True
        job = TranscriptionJob()
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                headers={"Authorization": self.api_key},
                timeout=self.timeout,
                transport=self._transport,
            ) as client:
                self._advance(job, JobStatus.UPLOADING, on_progress)
                job.upload_url = await self._upload(client, Path(audio_path))

                self._advance(job, JobStatus.SUBMITTING, on_progress)
                job.job_id = await self._submit(client, job.upload_url)

                self._advance(job, JobStatus.QUEUED, on_progress)
                return await self._poll(client, job, on_progress)
        finally:
            self._in_flight = False

    @staticmethod
    def _advance(
        job: TranscriptionJob, status: JobStatus, on_progress: Optional[ProgressCallback]
    ) -> None:
        if job.status is not status:
            logger.debug("Transcription job %s: %s -> %s", job.job_id, job.status.value, status.value)
        job.status = status
        if on_progress is not None:
            on_progress(job)

    async def _upload(self, client: httpx.AsyncClient, audio_path: Path) -> str:
        try:
            audio = audio_path.read_bytes()
        except OSError as exc:
            raise UploadFailed(f"Could not read audio file {audio_path}: {exc}") from exc

        try:
            response = await client.post(
                "/upload",
                content=audio,
                headers={"Content-Type": "application/octet-stream"},
            )
        except httpx.HTTPError as exc:
            raise UploadFailed(str(exc)) from exc

        if response.status_code != 200:
            raise UploadFailed(_describe(response), response.status_code, response.text)
        payload = _json_object(response)
        upload_url = payload.get("upload_url") if payload else None
        if not isinstance(upload_url, str):
            raise UploadFailed("Invalid response", response.status_code, response.text)
        logger.debug("Uploaded %d bytes from %s", len(audio), audio_path)
        return upload_url

    async def _submit(self, client: httpx.AsyncClient, audio_url: str) -> str:
        body = {
            "audio_url": audio_url,
            "speech_models": [self.speech_model],
            "punctuate": True,
            "format_text": True,
        }
        try:
            response = await client.post("/transcript", json=body)
        except httpx.HTTPError as exc:
            raise SubmissionFailed(str(exc)) from exc

        if response.status_code != 200:
            raise SubmissionFailed(_describe(response), response.status_code, response.text)
        payload = _json_object(response)
        job_id = payload.get("id") if payload else None
        if not isinstance(job_id, str):
            raise SubmissionFailed("Invalid response", response.status_code, response.text)
        return job_id

    async def _poll(
        self,
        client: httpx.AsyncClient,
        job: TranscriptionJob,
        on_progress: Optional[ProgressCallback],
    ) -> str:
        while True:
            try:
                response = await client.get(f"/transcript/{job.job_id}")
            except httpx.HTTPError as exc:
                raise PollFailed(str(exc)) from exc
            job.polls += 1

            payload = _json_object(response)
            status = payload.get("status") if payload else None
            if not isinstance(status, str):
                raise PollFailed("Invalid response", response.status_code, response.text)

            if status == JobStatus.COMPLETED.value:
                self._advance(job, JobStatus.COMPLETED, on_progress)
                text = payload.get("text")
                if not isinstance(text, str):
                    raise PollFailed("No text in response", response.status_code, response.text)
                logger.debug("Transcription job %s completed after %d polls", job.job_id, job.polls)
                return text

            if status == JobStatus.ERROR.value:
                self._advance(job, JobStatus.ERROR, on_progress)
                message = payload.get("error")
                raise TranscriptionFailed(message if isinstance(message, str) else "Unknown error")

            if status == JobStatus.PROCESSING.value:
                self._advance(job, JobStatus.PROCESSING, on_progress)
            elif status != JobStatus.QUEUED.value:
                logger.debug("Unrecognised job status %r for %s; still waiting", status, job.job_id)
            await asyncio.sleep(self.poll_interval)


__all__ = [
    "PollFailed",
    "SubmissionFailed",
    "TranscriptionError",
    "TranscriptionFailed",
    "TranscriptionService",
    "UploadFailed",
    "validate_api_key",
]
