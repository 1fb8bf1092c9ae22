import math
import random
from pathlib import Path

import pytest

from hookreel.config import settings
from hookreel.errors import EmptyPoolError
from hookreel.phase3_video_generation.background import BackgroundPoolService, sequence


class DisabledStorage:
    enabled = False


class CountingMeasure:
    def __init__(self, durations):
        self.durations = durations
        self.calls = []

    def __call__(self, url):
        self.calls.append(url)
        return self.durations[url]


@pytest.mark.parametrize("clip_count", [1, 2, 3, 7])
@pytest.mark.parametrize("clip_seconds", [4.0, 9.5, 30.0])
@pytest.mark.parametrize("required", [0.5, 10.0, 55.0, 181.3])
def test_sequence_bounds(clip_count, clip_seconds, required):
    durations = {f"clip{i}.mp4": clip_seconds for i in range(clip_count)}
    result = sequence(list(durations), required, CountingMeasure(durations), rng=random.Random(7))

    required_frames = math.ceil(required * 30)
    max_clip_frames = math.ceil(clip_seconds * 30)
    assert result.total_duration_in_frames >= required_frames
    assert result.total_duration_in_frames < required_frames + max_clip_frames
    assert result.total_duration_in_frames == sum(c.duration_in_frames for c in result.clips)


def test_sequence_bounds_with_mixed_lengths():
    durations = {"a.mp4": 3.2, "b.mp4": 17.0, "c.mp4": 8.9, "d.mp4": 0.7}
    for seed in range(20):
        result = sequence(list(durations), 60.0, CountingMeasure(durations), rng=random.Random(seed))
        assert 1800 <= result.total_duration_in_frames < 1800 + math.ceil(17.0 * 30)


def test_no_clip_repeats_back_to_back_across_reshuffles():
    durations = {"a.mp4": 2.0, "b.mp4": 2.0, "c.mp4": 2.0}
    for seed in range(25):
        result = sequence(list(durations), 120.0, CountingMeasure(durations), rng=random.Random(seed))
        urls = [c.url for c in result.clips]
        assert all(x != y for x, y in zip(urls, urls[1:]))


def test_each_clip_is_measured_once():
    durations = {"a.mp4": 1.0, "b.mp4": 1.5}
    measure = CountingMeasure(durations)
    result = sequence(list(durations), 30.0, measure, rng=random.Random(1))
    assert len(result.clips) > 2
    assert sorted(measure.calls) == ["a.mp4", "b.mp4"]


def test_single_clip_pool_repeats():
    result = sequence(["only.mp4"], 25.0, lambda url: 10.0)
    assert [c.url for c in result.clips] == ["only.mp4"] * 3
    assert result.total_duration_in_frames == 900


def test_zero_length_clips_are_skipped():
    durations = {"broken.mp4": 0.0, "good.mp4": 5.0}
    result = sequence(list(durations), 12.0, CountingMeasure(durations), rng=random.Random(3))
    assert {c.url for c in result.clips} == {"good.mp4"}


def test_empty_or_unusable_pool_raises():
    with pytest.raises(EmptyPoolError):
        sequence([], 10.0, lambda url: 5.0)
    with pytest.raises(EmptyPoolError):
        sequence(["a.mp4", "b.mp4"], 10.0, lambda url: 0.0)


# ---------------------------------------------------------------------------
# BackgroundPoolService (local folders)
# ---------------------------------------------------------------------------


def _clip(folder: Path, name: str) -> Path:
    folder.mkdir(parents=True, exist_ok=True)
    path = folder / name
    path.write_bytes(b"mp4")
    return path


def test_pool_lists_requested_folder(tmp_path):
    _clip(settings.BACKGROUNDS_PATH / "gameplay", "b.mp4")
    _clip(settings.BACKGROUNDS_PATH / "gameplay", "a.mp4")
    _clip(settings.BACKGROUNDS_PATH / "gameplay", "notes.txt")
    _clip(settings.BACKGROUNDS_PATH, "root.mp4")

    service = BackgroundPoolService(DisabledStorage(), tmp_path / "dl")
    urls = service.list_pool("gameplay")

    assert [Path(u).name for u in urls] == ["a.mp4", "b.mp4"]


def test_pool_falls_back_to_root(tmp_path):
    (settings.BACKGROUNDS_PATH / "satisfying").mkdir(parents=True)
    _clip(settings.BACKGROUNDS_PATH, "root.mp4")

    urls = BackgroundPoolService(DisabledStorage(), tmp_path / "dl").list_pool("satisfying")

    assert [Path(u).name for u in urls] == ["root.mp4"]


def test_pool_with_no_clips_raises(tmp_path):
    with pytest.raises(EmptyPoolError):
        BackgroundPoolService(DisabledStorage(), tmp_path / "dl").list_pool("gameplay")


def test_build_attaches_local_paths(tmp_path, monkeypatch):
    clip = _clip(settings.BACKGROUNDS_PATH / "gameplay", "a.mp4")
    monkeypatch.setattr("hookreel.phase3_video_generation.background.probe_media", lambda path, decode=True: (12.0, 0))

    service = BackgroundPoolService(DisabledStorage(), tmp_path / "dl")
    result = service.build("gameplay", 20.0)

    assert [c.local_path for c in result.clips] == [clip, clip]
    assert result.total_duration_in_frames == 720
    assert service.downloaded_files() == []


def test_unreadable_clip_measures_zero(tmp_path, monkeypatch):
    def broken_probe(path, decode=True):
        raise OSError("moov atom not found")

    monkeypatch.setattr("hookreel.phase3_video_generation.background.probe_media", broken_probe)
    service = BackgroundPoolService(DisabledStorage(), tmp_path / "dl")
    assert service.measure(str(tmp_path / "bad.mp4")) == 0.0
