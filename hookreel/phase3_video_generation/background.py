"""
Background clip selection.

Clips are drawn at random from a pool until their combined length covers the
narration. Each clip is measured before it is accepted, so a broken or empty
file can't leave the video without a background.
"""
import hashlib
import logging
import math
import random
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

import requests

from hookreel.config import settings
from hookreel.errors import EmptyPoolError
from hookreel.models import BackgroundClip, BackgroundSequence
from hookreel.phase1_audio_processing.ffmpeg_tools import probe_media
from hookreel.utils.s3_utils import S3Manager

logger = logging.getLogger(__name__)

VIDEO_SUFFIX = ".mp4"

Measure = Callable[[str], float]


def _frames(seconds: float) -> int:
    return int(math.ceil(seconds * settings.VIDEO_FPS))


def sequence(
    pool: Sequence[str],
    required_duration_seconds: float,
    measure: Measure,
    rng: Optional[random.Random] = None,
) -> BackgroundSequence:
    """
    Build a clip sequence whose total length reaches `required_duration_seconds`.

    The pool is shuffled and drawn without replacement; when it runs out it is
    reshuffled, never starting the new pass with the clip that ended the last one.
    `measure(url)` returns a clip's length in seconds and is called at most once
    per url. Clips measuring zero are skipped.
    """
    rng = rng or random.Random()
    candidates = list(dict.fromkeys(pool))
    if not candidates:
        raise EmptyPoolError("Background pool is empty")

    required_frames = _frames(max(required_duration_seconds, 0.0))
    measured: Dict[str, float] = {}
    unusable = set()
    clips: List[BackgroundClip] = []
    total_frames = 0

    while True:
        order = [url for url in candidates if url not in unusable]
        if not order:
            raise EmptyPoolError(f"No background clip in the pool has a usable duration ({len(candidates)} checked)")
        rng.shuffle(order)
        if clips and len(order) > 1 and order[0] == clips[-1].url:
            order.append(order.pop(0))

        for url in order:
            if url not in measured:
                measured[url] = measure(url)
            seconds = measured[url]
            frames = _frames(seconds)
            if frames <= 0:
                logger.warning(f"Skipping background clip with no duration: {url}")
                unusable.add(url)
                continue

            clips.append(BackgroundClip(url=url, duration_in_frames=frames, duration_in_seconds=seconds))
            total_frames += frames
            if total_frames >= required_frames:
                logger.info(
                    f"Background sequence: {len(clips)} clips, {total_frames} frames "
                    f"(required {required_frames})"
                )
                return BackgroundSequence(clips=clips, total_duration_in_frames=total_frames)

        logger.info(f"Background pool exhausted at {total_frames}/{required_frames} frames, reshuffling")


class BackgroundPoolService:
    """
    Resolves a pool id (e.g. "gameplay") to clip urls and measures them.

    With S3 configured the pool is `backgrounds/<pool>/*.mp4` in the bucket,
    otherwise `BACKGROUNDS_PATH/<pool>/*.mp4` on disk. An empty pool folder
    falls back to the clips at the root of the backgrounds location.
    """

    def __init__(self, storage: S3Manager, download_dir: Path, session: Optional[requests.Session] = None):
        self.storage = storage
        self.download_dir = download_dir
        self.session = session or requests.Session()
        self.local_copies: Dict[str, Path] = {}

    def list_pool(self, pool_id: str) -> List[str]:
        if self.storage.enabled:
            urls = self._list_s3(f"{settings.BACKGROUNDS_PREFIX}/{pool_id}/")
            if not urls:
                logger.warning(f"No background videos found in {pool_id}, checking root folder...")
                urls = self._list_s3(f"{settings.BACKGROUNDS_PREFIX}/")
        else:
            urls = self._list_local(settings.BACKGROUNDS_PATH / pool_id)
            if not urls:
                logger.warning(f"No background videos found in {pool_id}, checking root folder...")
                urls = self._list_local(settings.BACKGROUNDS_PATH)

        if not urls:
            raise EmptyPoolError(f"No background videos found for pool '{pool_id}'")
        logger.info(f"Found {len(urls)} background videos for pool '{pool_id}'")
        return urls

    def _list_s3(self, prefix: str) -> List[str]:
        keys = self.storage.list_objects(prefix)
        # direct children only, so the root listing doesn't pick up other pools
        direct = [k for k in keys if k.endswith(VIDEO_SUFFIX) and "/" not in k[len(prefix):]]
        return [self.storage.public_url(k) for k in sorted(direct)]

    def _list_local(self, folder: Path) -> List[str]:
        if not folder.is_dir():
            return []
        return [str(p) for p in sorted(folder.glob(f"*{VIDEO_SUFFIX}"))]

    def _download(self, url: str) -> Path:
        digest = hashlib.sha1(url.encode("utf-8")).hexdigest()[:10]
        target = self.download_dir / f"bg_{digest}_{Path(url).name}"
        self.download_dir.mkdir(parents=True, exist_ok=True)
        # tracked before writing so a partial download still gets cleaned up
        self.local_copies[url] = target
        logger.info(f"Downloading background clip {url}")
        with self.session.get(url, stream=True, timeout=60) as response:
            response.raise_for_status()
            with open(target, "wb") as f:
                for chunk in response.iter_content(chunk_size=1024 * 1024):
                    f.write(chunk)
        return target

    def measure(self, url: str) -> float:
        """Length of a clip in seconds, 0.0 when it can't be fetched or read."""
        try:
            if url.startswith(("http://", "https://")):
                path = self._download(url)
            else:
                path = Path(url)
            duration, _ = probe_media(path, decode=False)
            return duration
        except (requests.RequestException, OSError) as e:
            logger.warning(f"Could not measure background clip {url}: {e}")
            return 0.0

    def downloaded_files(self) -> List[Path]:
        return list(self.local_copies.values())

    def build(self, pool_id: str, required_duration_seconds: float, rng: Optional[random.Random] = None) -> BackgroundSequence:
        urls = self.list_pool(pool_id)
        result = sequence(urls, required_duration_seconds, self.measure, rng=rng)
        clips = [
            clip.model_copy(update={"local_path": self.local_copies.get(clip.url, Path(clip.url))})
            for clip in result.clips
        ]
        return BackgroundSequence(clips=clips, total_duration_in_frames=result.total_duration_in_frames)
