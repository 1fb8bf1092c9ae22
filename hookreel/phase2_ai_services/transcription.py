"""
Word-level caption timing for processed narration.

Timings come from Whisper when it is available. When it is not (invalid file,
API down, malformed responses), they are synthesized by spreading the known
source text evenly across the narration, so this stage never fails a job.
"""
import logging
import math
from pathlib import Path
from typing import Any, Dict, List, Optional

from hookreel.config import settings
from hookreel.errors import ExternalServiceError
from hookreel.models import AudioAsset, CaptionStyle, WordTiming
from hookreel.phase2_ai_services.openai_client import OpenAIService
from hookreel.phase2_ai_services.retry import RetryPolicy

logger = logging.getLogger(__name__)

SUPPORTED_FORMATS = {"mp3", "wav", "mp4", "m4a", "webm", "mpeg", "mpga", "ogg", "flac"}
GROUP_SIZE = 3


def seconds_to_frame(seconds: float, fps: Optional[int] = None) -> int:
    return int(round(seconds * (fps or settings.VIDEO_FPS)))


def total_frames_for(duration_seconds: float, fps: Optional[int] = None) -> int:
    return int(math.ceil(duration_seconds * (fps or settings.VIDEO_FPS)))


def validate_audio_file(path: Path) -> Optional[str]:
    """Return a reason string when the file can't be sent to the STT service, else None."""
    if not path.exists() or not path.is_file():
        return f"Not a valid file: {path}"
    size_mb = path.stat().st_size / (1024 * 1024)
    if size_mb > settings.STT_MAX_FILE_MB:
        return f"File size ({size_mb:.2f} MB) exceeds the {settings.STT_MAX_FILE_MB} MB limit"
    if path.suffix.lower().lstrip(".") not in SUPPORTED_FORMATS:
        return f"Unsupported audio format: {path.suffix or '(none)'}"
    return None


def split_units(text: str, style: CaptionStyle) -> List[str]:
    """Single words for `single`, greedy runs of up to 3 words for `grouped`."""
    words = text.split()
    if style == CaptionStyle.SINGLE:
        return words
    return [" ".join(words[i:i + GROUP_SIZE]) for i in range(0, len(words), GROUP_SIZE)]


def fallback_word_timings(text: str, total_frames: int, style: CaptionStyle) -> List[WordTiming]:
    """
    Spread the text evenly over `total_frames`. The last unit absorbs the
    remainder, so it always ends exactly on total_frames.
    """
    units = split_units(text, style)
    if not units or total_frames <= 0:
        return []

    frames_per_unit = total_frames // len(units)
    if frames_per_unit == 0:
        # more units than frames: show everything as one caption
        units = [" ".join(units)]
        frames_per_unit = total_frames

    timings = []
    for i, unit in enumerate(units):
        start = i * frames_per_unit
        end = total_frames if i == len(units) - 1 else (i + 1) * frames_per_unit
        timings.append(WordTiming(text=unit, start_frame=start, end_frame=end))
    logger.info(f"Created fallback timings for {len(timings)} units over {total_frames} frames")
    return timings


def words_to_timings(words: List[Dict[str, Any]], total_frames: int) -> List[WordTiming]:
    """
    Convert STT word offsets (seconds) to frame timings, keeping starts
    non-decreasing, every end after its start and nothing past total_frames.
    """
    timings: List[WordTiming] = []
    previous_start = 0
    for word in words:
        text = str(word.get("text", "")).strip()
        if not text:
            continue
        start = max(seconds_to_frame(word["start"]), previous_start)
        end = seconds_to_frame(word["end"])
        if total_frames > 0:
            start = min(start, total_frames - 1)
            end = min(end, total_frames)
        if end <= start:
            end = start + 1
        timings.append(WordTiming(text=text, start_frame=start, end_frame=end))
        previous_start = start
    return timings


class TranscriptionService:
    """Produces WordTimings for a narration asset. Never raises."""

    def __init__(self, openai_service: OpenAIService, retry_policy: Optional[RetryPolicy] = None):
        self.openai_service = openai_service
        self.retry_policy = retry_policy or RetryPolicy.from_settings()

    def transcribe(self, audio: AudioAsset, style: CaptionStyle, source_text: str = "") -> List[WordTiming]:
        total_frames = total_frames_for(audio.duration_seconds)

        reason = validate_audio_file(audio.path)
        if reason:
            logger.warning(f"File validation failed: {reason}. Using fallback timings.")
            return fallback_word_timings(source_text, total_frames, style)

        try:
            response = self.retry_policy.run(
                lambda attempt, _candidate: self.openai_service.transcribe_words(audio.path),
                label="Transcription",
            )
        except ExternalServiceError as e:
            logger.warning(f"All transcription attempts failed ({e}), using fallback method")
            return fallback_word_timings(source_text, total_frames, style)

        timings = words_to_timings(response["words"], total_frames)
        if not timings:
            logger.warning("Transcription returned no usable words, using fallback method")
            return fallback_word_timings(source_text, total_frames, style)

        logger.info(f"Transcribed into {len(timings)} words")
        return timings
