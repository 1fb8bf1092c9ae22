from pathlib import Path

import pytest

from hookreel.config import settings


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path: Path, monkeypatch):
    """Point every on-disk location at tmp_path and make retries instant."""
    monkeypatch.setattr(settings, "JOBS_OUTPUT_PATH", tmp_path / "jobs")
    monkeypatch.setattr(settings, "BACKGROUNDS_PATH", tmp_path / "backgrounds")
    monkeypatch.setattr(settings, "RETRY_DELAY_SECONDS", 0.0)
    return settings


class FakeAudioEngine:
    """
    Stands in for ffmpeg. Keeps a duration per file and applies the speed
    change each filter chain describes, so fitted durations are realistic.
    """

    def __init__(self, sample_rate: int = 24000, silence_seconds: float = 0.5):
        self.sample_rate = sample_rate
        self.silence_seconds = silence_seconds
        self.durations = {}
        self.filters = []
        self.fail_on = None

    def add(self, path: Path, duration: float):
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(b"audio")
        self.durations[Path(path)] = duration

    def probe(self, path, decode=True):
        return self.durations[Path(path)], self.sample_rate

    def apply(self, input_path, output_path, filter_chain, extra_args=None):
        self.filters.append(filter_chain)
        if self.fail_on and self.fail_on in filter_chain:
            from hookreel.errors import AudioToolError
            raise AudioToolError("ffmpeg exited with status 1", returncode=1, stderr="boom")

        duration = self.durations[Path(input_path)]
        if "silenceremove" in filter_chain:
            duration -= self.silence_seconds
        else:
            for stage in filter_chain.split(","):
                name, _, value = stage.partition("=")
                if name == "atempo":
                    duration /= float(value)
                elif name == "asetrate":
                    duration /= int(value) / self.sample_rate
        self.add(Path(output_path), duration)


@pytest.fixture
def audio_engine(monkeypatch) -> FakeAudioEngine:
    engine = FakeAudioEngine()
    monkeypatch.setattr("hookreel.phase1_audio_processing.duration_fit.apply_audio_filter", engine.apply)
    monkeypatch.setattr("hookreel.phase1_audio_processing.duration_fit.probe_media", engine.probe)
    return engine
