"""
Pipeline service that runs one hook + script generation end to end.
"""
import contextvars
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from hookreel.api.job_service import JobService
from hookreel.config import settings
from hookreel.errors import RenderTimeoutError, ValidationError
from hookreel.logging_config import setup_logging, teardown_job_logging
from hookreel.models import (
    AudioAsset,
    CaptionStyle,
    DurationFitRequest,
    GenerationRequest,
    RenderInput,
    Stage,
)
from hookreel.orchestration.events import EventChannel
from hookreel.orchestration.job import GenerationJob
from hookreel.phase1_audio_processing.duration_fit import fit
from hookreel.phase1_audio_processing.ffmpeg_tools import extract_frame, probe_media
from hookreel.phase2_ai_services.color_classifier import ColorClassifier, apply_colors
from hookreel.phase2_ai_services.openai_client import OpenAIService
from hookreel.phase2_ai_services.transcription import TranscriptionService
from hookreel.phase3_video_generation.background import BackgroundPoolService
from hookreel.phase3_video_generation.renderer import render_video
from hookreel.utils.cleanup import remove_file
from hookreel.utils.s3_utils import S3Manager

logger = logging.getLogger(__name__)


class PipelineService:
    """
    Runs the generation stages in order and reports progress as StatusEvents.

    Every collaborator can be passed in; anything left out is built from
    settings the first time it is needed.
    """

    def __init__(
        self,
        job_service: Optional[JobService] = None,
        openai_service: Optional[OpenAIService] = None,
        transcriber: Optional[TranscriptionService] = None,
        classifier: Optional[ColorClassifier] = None,
        storage: Optional[S3Manager] = None,
        background_factory: Optional[Callable[[Path], BackgroundPoolService]] = None,
        renderer: Callable[[RenderInput], Path] = render_video,
        fit_audio: Callable[..., AudioAsset] = fit,
        probe: Callable = probe_media,
        thumbnailer: Callable = extract_frame,
        render_timeout: Optional[float] = None,
    ):
        self.job_service = job_service if job_service is not None else JobService()
        self._openai = openai_service
        self._transcriber = transcriber
        self._classifier = classifier
        self._storage = storage
        self.background_factory = background_factory or (lambda download_dir: BackgroundPoolService(self.storage, download_dir))
        self.renderer = renderer
        self.fit_audio = fit_audio
        self.probe = probe
        self.thumbnailer = thumbnailer
        self.render_timeout = render_timeout or settings.RENDER_TIMEOUT_SECONDS

    @property
    def openai(self) -> OpenAIService:
        if self._openai is None:
            self._openai = OpenAIService()
        return self._openai

    @property
    def transcriber(self) -> TranscriptionService:
        if self._transcriber is None:
            self._transcriber = TranscriptionService(self.openai)
        return self._transcriber

    @property
    def classifier(self) -> ColorClassifier:
        if self._classifier is None:
            self._classifier = ColorClassifier(self.openai)
        return self._classifier

    @property
    def storage(self) -> S3Manager:
        if self._storage is None:
            self._storage = S3Manager()
        return self._storage

    def run_generation(self, request: GenerationRequest, channel: EventChannel, job: Optional[GenerationJob] = None) -> GenerationJob:
        """
        Run the full pipeline for one request, emitting events on `channel`.

        Never raises: a failure in any stage becomes a single `error` event,
        after which every temporary file the job registered is removed. The
        channel is always closed on return.
        """
        job = job or GenerationJob(channel=channel)
        job.channel = channel
        log_handler = setup_logging(job_id=job.job_id, log_level="INFO")
        job_dir = settings.JOBS_OUTPUT_PATH / job.job_id

        logger.info(f"=== PIPELINE STARTED FOR JOB: {job.job_id} ===")
        logger.info(f"User: {request.user_id}, style: {request.caption_style}, target: {request.target_duration}")
        self.job_service.create_job(job.job_id, request.user_id, {"hook_text": request.hook})

        try:
            self._run_stages(request, job, job_dir)
            logger.info(f"=== PIPELINE FINISHED FOR JOB: {job.job_id} ===")
        except Exception as e:
            message = str(e) or e.__class__.__name__
            logger.error(f"Pipeline failed for job {job.job_id}: {message}", exc_info=True)
            job.fail(message)
            job.cleanup_all()
            self.job_service.update_job(job.job_id, Stage.ERROR.value, message)
        finally:
            channel.close()
            teardown_job_logging(log_handler)
        return job

    def _advance(self, job: GenerationJob, stage: Stage, message: str = "", **fields):
        job.advance(stage, **fields)
        self.job_service.update_job(job.job_id, stage.value, message)

    def _run_stages(self, request: GenerationRequest, job: GenerationJob, job_dir: Path):
        if not request.hook.strip() or not request.script.strip():
            raise ValidationError("Hook and script text are required")
        job_dir.mkdir(parents=True, exist_ok=True)
        style = request.caption_style or CaptionStyle.GROUPED

        # ===== AUDIO =====
        self._advance(job, Stage.AUDIO_PROCESSING, "Generating narration...")
        hook_audio, script_audio = self._process_audio(request, job, job_dir)
        self._advance(
            job,
            Stage.AUDIO_COMPLETE,
            "Narration ready",
            hookAudio=str(hook_audio.path),
            scriptAudio=str(script_audio.path),
            hookDuration=hook_audio.duration_seconds,
            scriptDuration=script_audio.duration_seconds,
        )

        # ===== CAPTIONS =====
        self._advance(job, Stage.TRANSCRIPTION_PROCESSING, "Transcribing narration...")
        timings = self.transcriber.transcribe(script_audio, style, source_text=request.script)
        assignments = self.classifier.classify(request.script, style)
        timings = apply_colors(timings, assignments)
        self._advance(
            job,
            Stage.TRANSCRIPTION_COMPLETE,
            "Captions ready",
            hookDuration=hook_audio.duration_seconds,
            scriptDuration=script_audio.duration_seconds,
            wordCount=len(timings),
        )

        # ===== VIDEO =====
        self._advance(job, Stage.VIDEO_PROCESSING, "Rendering video...")
        total_duration = hook_audio.duration_seconds + script_audio.duration_seconds
        pool = self.background_factory(job_dir / "backgrounds")
        try:
            background = pool.build(request.background_video_type, total_duration)
        finally:
            job.register(*pool.downloaded_files())

        output_path = job_dir / f"{job.job_id}_final_video.mp4"
        thumbnail_path = job_dir / f"{job.job_id}_thumbnail.jpg"
        job.register(output_path, thumbnail_path)

        render_input = RenderInput(
            word_timings=timings,
            background=background,
            hook_text=request.hook,
            hook_audio_path=hook_audio.path,
            hook_duration_seconds=hook_audio.duration_seconds,
            script_audio_path=script_audio.path,
            script_duration_seconds=script_audio.duration_seconds,
            output_path=output_path,
            caption_style=style,
            subtitle_size=request.subtitle_size,
            stroke_size=request.stroke_size,
            font=request.font,
            channel_name=request.channel_name,
            channel_image_url=request.channel_image_url,
        )
        video_path = self._render_with_timeout(render_input)
        self.thumbnailer(video_path, thumbnail_path, 1.0)

        timestamp = int(time.time())
        video_url = self._publish(job, video_path, f"videos/{request.user_id}/{timestamp}-video.mp4", "video/mp4")
        thumbnail_url = self._publish(
            job, thumbnail_path, f"thumbnails/{request.user_id}/{timestamp}-thumbnail.jpg", "image/jpeg"
        )

        video_metadata = {
            "title": request.hook,
            "video_url": video_url,
            "thumbnail_url": thumbnail_url,
            "channel_name": request.channel_name,
            "hook_text": request.hook,
            "script_text": request.script,
            "duration": total_duration,
            "created_at": datetime.now().isoformat(),
        }
        job.cleanup_all()
        self._advance(
            job,
            Stage.VIDEO_COMPLETE,
            "Audio and video processing completed successfully",
            success=True,
            message="Audio and video processing completed successfully",
            hookVideo=video_url,
            thumbnailUrl=thumbnail_url,
            videoMetadata=video_metadata,
            channelName=request.channel_name,
            channelImage=request.channel_image_url,
        )

    def _synthesize(self, text: str, voice: str, model: Optional[str], output_path: Path, job: GenerationJob, is_hook: bool) -> AudioAsset:
        job.register(output_path)
        self.openai.synthesize_speech(text, voice, output_path, model=model)
        duration, sample_rate = self.probe(output_path)
        return AudioAsset(path=output_path, duration_seconds=duration, sample_rate_hz=sample_rate, is_hook=is_hook)

    def _process_audio(self, request: GenerationRequest, job: GenerationJob, job_dir: Path):
        voice = request.voice_id or settings.DEFAULT_VOICE
        model = request.tts_model or settings.TTS_MODEL

        raw_hook = self._synthesize(request.hook, voice, model, job_dir / "hook_raw.mp3", job, is_hook=True)
        hook_path = job_dir / "hook_processed.wav"
        job.register(hook_path)
        hook_audio = self.fit_audio(
            DurationFitRequest(
                input_asset=raw_hook,
                pitch_up=request.pitch_up,
                default_speed_factor=settings.HOOK_SPEED_FACTOR,
            ),
            hook_path,
        )
        job.release(raw_hook.path)

        script_target = None
        if request.target_duration:
            remaining = request.target_duration - hook_audio.duration_seconds
            if remaining > 0:
                script_target = remaining
            else:
                logger.warning(
                    f"Hook ({hook_audio.duration_seconds:.2f}s) already exceeds the {request.target_duration}s target, "
                    f"using the default script speed"
                )

        raw_script = self._synthesize(request.script, voice, model, job_dir / "script_raw.mp3", job, is_hook=False)
        script_path = job_dir / "script_processed.wav"
        job.register(script_path)
        script_audio = self.fit_audio(
            DurationFitRequest(
                input_asset=raw_script,
                target_duration_seconds=script_target,
                pitch_up=request.pitch_up,
                default_speed_factor=settings.SCRIPT_SPEED_FACTOR,
            ),
            script_path,
        )
        job.release(raw_script.path)

        logger.info(
            f"Audio ready: hook {hook_audio.duration_seconds:.2f}s, script {script_audio.duration_seconds:.2f}s"
        )
        return hook_audio, script_audio

    def _render_with_timeout(self, render_input: RenderInput) -> Path:
        executor = ThreadPoolExecutor(max_workers=1)
        # the render thread logs into this job's pipeline.log too
        future = executor.submit(contextvars.copy_context().run, self.renderer, render_input)
        try:
            return future.result(timeout=self.render_timeout)
        except FuturesTimeoutError as e:
            # the thread can't be interrupted; whatever it writes later is removed once it stops
            output_path = render_input.output_path
            future.add_done_callback(lambda _: remove_file(output_path))
            raise RenderTimeoutError(f"Rendering did not finish within {self.render_timeout:g} seconds") from e
        finally:
            executor.shutdown(wait=False)

    def _publish(self, job: GenerationJob, path: Path, key: str, content_type: str) -> str:
        """Upload a finished output and drop the local copy."""
        if not self.storage.enabled:
            logger.warning(f"S3 not configured. Keeping local file {path}")
            job.keep(path)
            return path.resolve().as_uri()
        url = self.storage.upload_file(path, key, content_type)
        job.release(path)
        return url
