import sys
import logging
from pathlib import Path
import time
import argparse
import threading

script_dir = Path(__file__).parent
project_root = script_dir.parent
sys.path.append(str(project_root))

from hookreel.logging_config import setup_logging
from hookreel.api.pipeline_service import PipelineService
from hookreel.models import CaptionStyle, GenerationRequest
from hookreel.orchestration.events import EventChannel, encode_event


def main(request: GenerationRequest) -> int:
    start_time = time.time()

    setup_logging(log_level="INFO")
    logger = logging.getLogger(__name__)
    logger.info("--- STARTING FULL PIPELINE ---")

    channel = EventChannel()
    pipeline = PipelineService()
    worker = threading.Thread(target=pipeline.run_generation, args=(request, channel))
    worker.start()

    last_status = None
    for event in channel.events():
        print(encode_event(event), end="", flush=True)
        last_status = event.status.value
    worker.join()

    elapsed = time.time() - start_time
    if last_status == "video_complete":
        logger.info(f"--- FULL PIPELINE SUCCESS (Total time: {elapsed:.2f}s) ---")
        return 0
    logger.error(f"--- FULL PIPELINE FAILED after {elapsed:.2f} seconds ---")
    return 1


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Generate one hook + script video locally.")
    parser.add_argument("hook", type=str, help="Hook line, or a path to a text file containing it.")
    parser.add_argument("script", type=str, help="Script text, or a path to a text file containing it.")
    parser.add_argument("--user-id", default="local", help="User id used for storage keys.")
    parser.add_argument("--voice", default=None, help="TTS voice id.")
    parser.add_argument("--style", choices=[s.value for s in CaptionStyle], default=CaptionStyle.GROUPED.value)
    parser.add_argument("--target-duration", type=float, default=None, help="Total video length in seconds.")
    parser.add_argument("--pitch-up", action="store_true", help="Pitch the narration up instead of tempo-only.")
    parser.add_argument("--background", default="gameplay", help="Background pool id.")
    parser.add_argument("--channel-name", default=None)
    parser.add_argument("--font", default=None)
    args = parser.parse_args()

    def _read(value: str) -> str:
        path = Path(value)
        return path.read_text(encoding="utf-8") if path.is_file() else value

    generation_request = GenerationRequest(
        hook=_read(args.hook),
        script=_read(args.script),
        user_id=args.user_id,
        voice_id=args.voice,
        caption_style=CaptionStyle(args.style),
        target_duration=args.target_duration,
        pitch_up=args.pitch_up,
        background_video_type=args.background,
        channel_name=args.channel_name,
        font=args.font,
    )
    sys.exit(main(generation_request))
