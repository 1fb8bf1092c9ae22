import sys
import logging
from pathlib import Path
import argparse

script_dir = Path(__file__).parent
project_root = script_dir.parent
sys.path.append(str(project_root))

from hookreel.config import settings
from hookreel.logging_config import setup_logging
from hookreel.models import AudioAsset, DurationFitRequest
from hookreel.phase1_audio_processing.duration_fit import fit
from hookreel.phase1_audio_processing.ffmpeg_tools import probe_media


def main():
    parser = argparse.ArgumentParser(description="Run only the duration-fitting step on an audio file.")
    parser.add_argument("audio_path", type=str, help="Input narration (mp3/wav).")
    parser.add_argument("--target", type=float, default=None, help="Target duration in seconds.")
    parser.add_argument("--hook", action="store_true", help="Treat the input as hook audio.")
    parser.add_argument("--pitch-up", action="store_true")
    parser.add_argument("--output", type=str, default=None)
    args = parser.parse_args()

    setup_logging(log_level="INFO")
    logger = logging.getLogger(__name__)

    input_path = Path(args.audio_path)
    if not input_path.exists():
        print(f"Error: audio file not found at {input_path}")
        sys.exit(1)

    duration, sample_rate = probe_media(input_path)
    logger.info(f"Input: {input_path.name}, {duration:.2f}s @ {sample_rate}Hz")

    default_factor = settings.HOOK_SPEED_FACTOR if args.hook else settings.SCRIPT_SPEED_FACTOR
    request = DurationFitRequest(
        input_asset=AudioAsset(path=input_path, duration_seconds=duration, sample_rate_hz=sample_rate, is_hook=args.hook),
        target_duration_seconds=args.target,
        pitch_up=args.pitch_up,
        default_speed_factor=default_factor,
    )
    result = fit(request, Path(args.output) if args.output else None)
    logger.info(f"Fitted audio: {result.path} ({result.duration_seconds:.2f}s)")


if __name__ == "__main__":
    main()
