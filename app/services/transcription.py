"""Transcription service using faster-whisper."""

import logging
import time
from dataclasses import dataclass
from pathlib import Path

from app.config import get_settings

logger = logging.getLogger("storycoach.transcription")


class TranscriptionError(RuntimeError):
    """Any failure turning a recording into text (missing file, decode error, unsupported format)."""


@dataclass
class TranscriptionResult:
    text: str
    language: str | None
    processing_time_seconds: float


class TranscriptionService:
    """Handles audio transcription using faster-whisper."""

    def __init__(self) -> None:
        self._model = None

    def _get_model(self):
        """Lazy-load the whisper model."""
        if self._model is None:
            from faster_whisper import WhisperModel

            settings = get_settings()
            self._model = WhisperModel(settings.WHISPER_MODEL_SIZE, device="cpu", compute_type="int8")
        return self._model

    def transcribe(self, file_path: Path) -> TranscriptionResult:
        """Transcribe a stored recording. Raises TranscriptionError on any failure."""
        if not file_path.exists():
            raise TranscriptionError(f"Transcription failed: recording not found at {file_path.name}")

        try:
            start_time = time.time()
            model = self._get_model()
            segments_iter, info = model.transcribe(str(file_path), beam_size=5)
            text = " ".join(seg.text.strip() for seg in segments_iter).strip()
            processing_time = time.time() - start_time
        except Exception as e:
            raise TranscriptionError(f"Transcription failed: {e}") from e

        if not text:
            raise TranscriptionError("Transcription failed: no speech detected")

        logger.info("Transcribed %s in %.2fs (%d chars)", file_path.name, processing_time, len(text))
        return TranscriptionResult(
            text=text,
            language=info.language if info else None,
            processing_time_seconds=round(processing_time, 2),
        )


_transcription_service: TranscriptionService | None = None


def get_transcription_service() -> TranscriptionService:
    """Get singleton transcription service instance."""
    global _transcription_service
    if _transcription_service is None:
        _transcription_service = TranscriptionService()
    return _transcription_service
