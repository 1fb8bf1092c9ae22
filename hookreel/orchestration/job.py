import logging
import uuid
from pathlib import Path
from typing import Optional, Set, Union

from hookreel.errors import InvalidStageTransition
from hookreel.models import Stage, StatusEvent
from hookreel.orchestration.events import EventChannel
from hookreel.utils.cleanup import cleanup_files, remove_file

logger = logging.getLogger(__name__)

STAGE_ORDER = [
    Stage.CREATED,
    Stage.AUDIO_PROCESSING,
    Stage.AUDIO_COMPLETE,
    Stage.TRANSCRIPTION_PROCESSING,
    Stage.TRANSCRIPTION_COMPLETE,
    Stage.VIDEO_PROCESSING,
    Stage.VIDEO_COMPLETE,
]
TERMINAL_STAGES = {Stage.VIDEO_COMPLETE, Stage.ERROR}


class GenerationJob:
    """
    State for one generation request: its current stage and the temporary
    files it owns. Stages only move forward one step at a time; `error` can be
    entered from any non-terminal stage.
    """

    def __init__(self, job_id: Optional[str] = None, channel: Optional[EventChannel] = None):
        self.job_id = job_id or uuid.uuid4().hex
        self.stage = Stage.CREATED
        self.cleanup_list: Set[Path] = set()
        self.channel = channel

    @property
    def is_finished(self) -> bool:
        return self.stage in TERMINAL_STAGES

    def _emit(self, event: StatusEvent) -> StatusEvent:
        if self.channel is not None:
            self.channel.emit(event)
        return event

    def advance(self, stage: Stage, **fields) -> StatusEvent:
        if self.is_finished:
            raise InvalidStageTransition(f"Job {self.job_id} already finished ({self.stage.value})")
        expected = STAGE_ORDER[STAGE_ORDER.index(self.stage) + 1]
        if stage != expected:
            raise InvalidStageTransition(
                f"Job {self.job_id}: cannot go from {self.stage.value} to {stage.value} (expected {expected.value})"
            )
        logger.info(f"Job {self.job_id}: {self.stage.value} -> {stage.value}")
        self.stage = stage
        return self._emit(StatusEvent(status=stage, fields=fields))

    def fail(self, message: str) -> StatusEvent:
        if self.is_finished:
            raise InvalidStageTransition(f"Job {self.job_id} already finished ({self.stage.value})")
        logger.error(f"Job {self.job_id} failed during {self.stage.value}: {message}")
        self.stage = Stage.ERROR
        return self._emit(StatusEvent(status=Stage.ERROR, fields={"message": message}))

    def register(self, *paths: Union[str, Path]):
        """Mark files as owned by this job so they are removed when it ends."""
        for path in paths:
            self.cleanup_list.add(Path(path))

    def release(self, *paths: Union[str, Path]):
        """Delete files this job no longer needs."""
        for path in paths:
            path = Path(path)
            if remove_file(path):
                self.cleanup_list.discard(path)

    def keep(self, *paths: Union[str, Path]):
        """Hand files over to the caller; they survive cleanup."""
        for path in paths:
            self.cleanup_list.discard(Path(path))

    def cleanup_all(self) -> int:
        count = len(self.cleanup_list)
        failures = cleanup_files(sorted(self.cleanup_list))
        logger.info(f"Job {self.job_id}: cleaned up {count - failures}/{count} temporary files")
        self.cleanup_list = {p for p in self.cleanup_list if p.exists()}
        return failures
