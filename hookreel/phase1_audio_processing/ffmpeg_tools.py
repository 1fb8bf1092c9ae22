import logging
import subprocess
from pathlib import Path
from typing import List, Tuple

import imageio_ffmpeg
from moviepy.video.io.ffmpeg_reader import ffmpeg_parse_infos

from hookreel.config import settings
from hookreel.errors import AudioToolError

logger = logging.getLogger(__name__)


def get_ffmpeg_path() -> str:
    """Get the path to ffmpeg executable."""
    if settings.FFMPEG_BINARY:
        return settings.FFMPEG_BINARY
    return imageio_ffmpeg.get_ffmpeg_exe()


def run_ffmpeg_command(args: List[str]) -> subprocess.CompletedProcess:
    """
    Run ffmpeg with the given arguments (input/filter/output), overwriting the output.
    Raises AudioToolError when the process exits non-zero.
    """
    command = [get_ffmpeg_path(), "-y", *args]
    try:
        logger.debug(f"Running command: {' '.join(command)}")
        return subprocess.run(command, check=True, capture_output=True, text=True)
    except subprocess.CalledProcessError as e:
        logger.error("FFmpeg command failed!", exc_info=True)
        logger.error(f"FFmpeg STDERR: {e.stderr}")
        raise AudioToolError(
            f"ffmpeg exited with status {e.returncode}",
            returncode=e.returncode,
            stderr=e.stderr or "",
        ) from e


def apply_audio_filter(input_path: Path, output_path: Path, filter_chain: str, extra_args: List[str] = None):
    """Run a named filter chain over input_path and write output_path."""
    if not input_path.exists():
        raise FileNotFoundError(f"Audio input not found: {input_path}")
    output_path.parent.mkdir(parents=True, exist_ok=True)
    args = ["-i", str(input_path), "-af", filter_chain]
    if extra_args:
        args.extend(extra_args)
    args.append(str(output_path))
    run_ffmpeg_command(args)
    if not output_path.exists():
        raise AudioToolError(f"ffmpeg reported success but {output_path.name} was not written")


def probe_media(path: Path, decode: bool = True) -> Tuple[float, int]:
    """
    Measure a media file. Returns (duration_seconds, audio_sample_rate_hz).
    The sample rate is 0 for files without an audio stream.
    """
    if not Path(path).exists():
        raise FileNotFoundError(f"Media file not found: {path}")
    infos = ffmpeg_parse_infos(str(path), decode_file=decode)
    duration = float(infos.get("duration") or 0.0)
    sample_rate = int(infos.get("audio_fps") or 0) if infos.get("audio_found") else 0
    return duration, sample_rate


def extract_frame(video_path: Path, image_path: Path, at_seconds: float = 1.0) -> Path:
    """Grab a single frame as a JPEG thumbnail."""
    run_ffmpeg_command([
        "-ss", f"{at_seconds:.3f}",
        "-i", str(video_path),
        "-frames:v", "1",
        str(image_path),
    ])
    return image_path
