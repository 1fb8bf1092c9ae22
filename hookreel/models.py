"""
Data records passed between pipeline stages.
"""
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class CaptionColor(str, Enum):
    WHITE = "white"
    YELLOW = "yellow"
    RED = "red"
    GREEN = "green"
    PURPLE = "purple"


PALETTE = {c.value for c in CaptionColor}


class CaptionStyle(str, Enum):
    SINGLE = "single"
    GROUPED = "grouped"


class Stage(str, Enum):
    CREATED = "created"
    AUDIO_PROCESSING = "audio_processing"
    AUDIO_COMPLETE = "audio_complete"
    TRANSCRIPTION_PROCESSING = "transcription_processing"
    TRANSCRIPTION_COMPLETE = "transcription_complete"
    VIDEO_PROCESSING = "video_processing"
    VIDEO_COMPLETE = "video_complete"
    ERROR = "error"


class AudioAsset(BaseModel):
    """An audio file written by TTS or by a processing step. Never mutated."""
    model_config = ConfigDict(frozen=True)

    path: Path
    duration_seconds: float
    sample_rate_hz: int
    is_hook: bool = False


class DurationFitRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    input_asset: AudioAsset
    target_duration_seconds: Optional[float] = Field(default=None, gt=0)
    pitch_up: bool = False
    default_speed_factor: float = Field(default=1.0, gt=0)


class WordTiming(BaseModel):
    text: str
    start_frame: int = Field(ge=0)
    end_frame: int
    color: CaptionColor = CaptionColor.WHITE

    @model_validator(mode="after")
    def _end_after_start(self):
        if self.end_frame <= self.start_frame:
            raise ValueError(f"end_frame ({self.end_frame}) must be greater than start_frame ({self.start_frame})")
        return self


class ColorAssignment(BaseModel):
    model_config = ConfigDict(frozen=True)

    word: str
    color: CaptionColor = CaptionColor.WHITE


class BackgroundClip(BaseModel):
    url: str
    duration_in_frames: int
    duration_in_seconds: float
    local_path: Optional[Path] = None


class BackgroundSequence(BaseModel):
    clips: List[BackgroundClip] = Field(default_factory=list)
    total_duration_in_frames: int = 0


class GenerationRequest(BaseModel):
    """Inputs handed to the pipeline by the request-handling layer."""
    hook: str = Field(min_length=1)
    script: str = Field(min_length=1)
    user_id: str = Field(min_length=1)
    voice_id: Optional[str] = None
    tts_model: Optional[str] = None
    caption_style: Optional[CaptionStyle] = None
    target_duration: Optional[float] = None
    pitch_up: bool = False
    background_video_type: str = "gameplay"
    subtitle_size: int = 64
    stroke_size: int = 8
    channel_name: Optional[str] = None
    channel_image_url: Optional[str] = None
    font: Optional[str] = None


class UserSettings(BaseModel):
    """Per-user defaults, stored and replaced as a whole record."""
    model_config = ConfigDict(frozen=True)

    voice_id: Optional[str] = None
    tts_model: Optional[str] = None
    caption_style: Optional[CaptionStyle] = None
    font: Optional[str] = None
    last_updated: Optional[str] = None


class RenderInput(BaseModel):
    word_timings: List[WordTiming]
    background: BackgroundSequence
    hook_text: str
    hook_audio_path: Path
    hook_duration_seconds: float
    script_audio_path: Path
    script_duration_seconds: float
    output_path: Path
    caption_style: CaptionStyle = CaptionStyle.GROUPED
    subtitle_size: int = 64
    stroke_size: int = 8
    font: Optional[str] = None
    channel_name: Optional[str] = None
    channel_image_url: Optional[str] = None


class StatusEvent(BaseModel):
    """One streamed progress message. Extra stage-specific fields ride along in `fields`."""
    model_config = ConfigDict(frozen=True)

    status: Stage
    fields: Dict[str, Any] = Field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.status in (Stage.VIDEO_COMPLETE, Stage.ERROR)

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"type": "status_update", "status": self.status.value}
        payload.update(self.fields)
        return payload
