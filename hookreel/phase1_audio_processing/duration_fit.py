"""
Duration fitting for narration audio.

Removes silence from synthesized speech, then changes its speed so the result
lands on a target duration. Two ways of changing speed are supported:

- tempo: ffmpeg `atempo`, pitch preserved. One atempo stage is only stable
  inside [0.5, 2.0], so larger or smaller factors are split into a chain.
- pitch: ffmpeg `asetrate` + `aresample`, which plays the samples faster and
  raises the pitch by the same ratio (the "sped up tape" effect used for hooks).
"""
import logging
import math
import shutil
from pathlib import Path
from typing import List, NamedTuple, Optional, Tuple

from hookreel.config import settings
from hookreel.errors import AudioToolError
from hookreel.models import AudioAsset, DurationFitRequest
from hookreel.phase1_audio_processing.ffmpeg_tools import apply_audio_filter, probe_media
from hookreel.utils.cleanup import remove_file

logger = logging.getLogger(__name__)

TEMPO_STAGE_RANGE: Tuple[float, float] = (0.5, 2.0)
TEMPO_FIT_RANGE: Tuple[float, float] = (0.8, 2.0)
PITCH_FIT_RANGE: Tuple[float, float] = (1.0, 2.0)


class TransformPlan(NamedTuple):
    mode: str  # "tempo" | "pitch"
    factor: float


def clamp_speed_factor(factor: float, low: float, high: float) -> float:
    return max(low, min(high, factor))


def compute_speed_factor(source_duration: float, target_duration: float, pitch_up: bool = False) -> float:
    """
    Speed factor (old duration / new duration) needed to turn source_duration
    into target_duration, clamped to the safe range of the chosen transform.
    """
    if target_duration <= 0:
        raise ValueError(f"Target duration must be positive, got {target_duration}")
    if source_duration <= 0:
        raise ValueError(f"Source duration must be positive, got {source_duration}")

    raw_factor = source_duration / target_duration
    low, high = PITCH_FIT_RANGE if pitch_up else TEMPO_FIT_RANGE
    factor = clamp_speed_factor(raw_factor, low, high)
    if factor != raw_factor:
        logger.warning(
            f"Speed factor {raw_factor:.4f} outside [{low}, {high}], clamped to {factor:.4f}. "
            f"Output will miss the {target_duration:.2f}s target."
        )
    return factor


def tempo_chain(factor: float) -> List[float]:
    """
    Split a tempo factor into atempo stages that each lie in [0.5, 2.0] and
    whose product is the requested factor.
    """
    if factor <= 0:
        raise ValueError(f"Tempo factor must be positive, got {factor}")
    low, high = TEMPO_STAGE_RANGE
    stages: List[float] = []
    remaining = factor
    while remaining > high:
        stages.append(high)
        remaining /= high
    while remaining < low:
        stages.append(low)
        remaining /= low
    stages.append(remaining)
    return stages


def build_tempo_filter(factor: float) -> str:
    return ",".join(f"atempo={stage:.6f}" for stage in tempo_chain(factor))


def build_pitch_filter(factor: float, sample_rate: int) -> str:
    # asetrate reinterprets the samples at a higher rate, aresample brings the
    # stream back to the original rate so players don't notice
    new_rate = int(math.floor(sample_rate * factor))
    return f"asetrate={new_rate},aresample={sample_rate}"


def build_silence_filter(threshold_db: float, min_duration: float) -> str:
    return (
        f"silenceremove=start_periods=1:start_duration={min_duration}:"
        f"start_threshold={threshold_db}dB:detection=rms,"
        f"silenceremove=stop_periods=-1:stop_duration={min_duration}:"
        f"stop_threshold={threshold_db}dB:detection=rms"
    )


def plan_transform(request: DurationFitRequest, source_duration: float) -> TransformPlan:
    """Decide which transform to apply and with what factor."""
    asset = request.input_asset
    target = request.target_duration_seconds

    if request.pitch_up and asset.is_hook:
        # hooks are never duration-fitted, they get the stylized pitch boost
        return TransformPlan("pitch", settings.HOOK_PITCH_FACTOR)
    if target is None:
        return TransformPlan("tempo", request.default_speed_factor)
    if request.pitch_up:
        return TransformPlan("pitch", compute_speed_factor(source_duration, target, pitch_up=True))
    return TransformPlan("tempo", compute_speed_factor(source_duration, target, pitch_up=False))


def remove_silence(input_path: Path, output_path: Path, is_hook: bool) -> bool:
    """
    Strip silent stretches. On failure the untouched input is copied to
    output_path so the pipeline can continue. Returns True if silence was removed.
    """
    if is_hook:
        threshold, min_duration = settings.HOOK_SILENCE_THRESHOLD_DB, settings.HOOK_SILENCE_DURATION
    else:
        threshold, min_duration = settings.SCRIPT_SILENCE_THRESHOLD_DB, settings.SCRIPT_SILENCE_DURATION

    logger.info(f"Removing silence from {input_path.name} (threshold={threshold}dB, min={min_duration}s)")
    try:
        apply_audio_filter(input_path, output_path, build_silence_filter(threshold, min_duration))
        return True
    except AudioToolError as e:
        logger.error(f"Silence removal failed ({e}), using original audio")
        shutil.copyfile(input_path, output_path)
        return False


def fit(request: DurationFitRequest, output_path: Optional[Path] = None) -> AudioAsset:
    """
    Remove silence and apply the speed transform described by `request`.

    Args:
        request: What to fit and how.
        output_path: Where to write the result. Defaults to `<input stem>_fitted.wav`.

    Returns:
        A new AudioAsset describing the fitted file.
    """
    source = request.input_asset
    if not source.path.exists():
        raise FileNotFoundError(f"Audio input not found: {source.path}")

    if output_path is None:
        output_path = source.path.with_name(f"{source.path.stem}_fitted.wav")
    silence_removed = output_path.with_name(f"{output_path.stem}.silence-removed.wav")

    kind = "hook" if source.is_hook else "script"
    logger.info(f"Fitting {kind} audio {source.path.name} (target={request.target_duration_seconds}, pitch_up={request.pitch_up})")

    try:
        remove_silence(source.path, silence_removed, source.is_hook)
        transform_input = silence_removed
        source_duration, sample_rate = probe_media(silence_removed)
        if source_duration <= 0:
            logger.warning(f"Silence removal left no audio in {source.path.name}, fitting the original narration")
            transform_input = source.path
            source_duration, sample_rate = probe_media(source.path)
        if sample_rate <= 0:
            sample_rate = source.sample_rate_hz
        logger.info(f"Duration after silence removal: {source_duration:.2f}s (was {source.duration_seconds:.2f}s)")

        plan = plan_transform(request, source_duration)
        if plan.mode == "pitch":
            filter_chain = build_pitch_filter(plan.factor, sample_rate)
            extra_args = ["-ar", str(sample_rate)]
        else:
            filter_chain = build_tempo_filter(plan.factor)
            extra_args = None
        logger.info(f"Applying {plan.mode} transform x{plan.factor:.4f}: {filter_chain}")
        apply_audio_filter(transform_input, output_path, filter_chain, extra_args)

        final_duration, final_rate = probe_media(output_path)
    except Exception:
        logger.error(f"Audio fitting failed for {source.path.name}", exc_info=True)
        remove_file(output_path)
        raise
    finally:
        remove_file(silence_removed)

    if request.target_duration_seconds:
        delta = final_duration - request.target_duration_seconds
        logger.info(
            f"Final {kind} duration {final_duration:.2f}s, target {request.target_duration_seconds:.2f}s, "
            f"delta {delta:+.2f}s"
        )
    else:
        logger.info(f"Final {kind} duration {final_duration:.2f}s (speed ratio {source_duration / max(final_duration, 1e-6):.3f})")

    return AudioAsset(
        path=output_path,
        duration_seconds=final_duration,
        sample_rate_hz=final_rate or sample_rate,
        is_hook=source.is_hook,
    )
