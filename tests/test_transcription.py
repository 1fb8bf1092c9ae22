from pathlib import Path

import pytest

from hookreel.errors import ExternalServiceError
from hookreel.models import AudioAsset, CaptionStyle
from hookreel.phase2_ai_services.retry import RetryPolicy
from hookreel.phase2_ai_services.transcription import (
    TranscriptionService,
    fallback_word_timings,
    split_units,
    total_frames_for,
    validate_audio_file,
    words_to_timings,
)


class FakeSTT:
    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = 0

    def transcribe_words(self, audio_path: Path):
        self.calls += 1
        response = self.responses.pop(0) if self.responses else ExternalServiceError("no more responses")
        if isinstance(response, Exception):
            raise response
        return response


def _audio(tmp_path: Path, name: str = "script_processed.wav", duration: float = 2.0) -> AudioAsset:
    path = tmp_path / name
    path.write_bytes(b"RIFF....WAVE")
    return AudioAsset(path=path, duration_seconds=duration, sample_rate_hz=24000)


def _policy() -> RetryPolicy:
    return RetryPolicy(max_attempts=3, delay_seconds=0)


# ---------------------------------------------------------------------------
# Fallback generator
# ---------------------------------------------------------------------------


def test_single_style_spreads_words_evenly():
    timings = fallback_word_timings("one two three four", 100, CaptionStyle.SINGLE)
    assert [(t.text, t.start_frame, t.end_frame) for t in timings] == [
        ("one", 0, 25), ("two", 25, 50), ("three", 50, 75), ("four", 75, 100),
    ]
    assert all(t.color == "white" for t in timings)


def test_grouped_style_uses_runs_of_three_and_last_unit_absorbs_remainder():
    timings = fallback_word_timings("a b c d e f g", 100, CaptionStyle.GROUPED)
    assert [t.text for t in timings] == ["a b c", "d e f", "g"]
    assert [(t.start_frame, t.end_frame) for t in timings] == [(0, 33), (33, 66), (66, 100)]


@pytest.mark.parametrize("word_count", [1, 2, 3, 7, 10, 31])
@pytest.mark.parametrize("total_frames", [31, 60, 97, 1650])
@pytest.mark.parametrize("style", list(CaptionStyle))
def test_fallback_always_ends_on_total_frames(word_count, total_frames, style):
    text = " ".join(f"w{i}" for i in range(word_count))
    timings = fallback_word_timings(text, total_frames, style)
    assert timings[0].start_frame == 0
    assert timings[-1].end_frame == total_frames
    for previous, current in zip(timings, timings[1:]):
        assert current.start_frame == previous.end_frame


def test_more_units_than_frames_collapses_into_one_caption():
    timings = fallback_word_timings("a b c d e", 3, CaptionStyle.SINGLE)
    assert len(timings) == 1
    assert timings[0].text == "a b c d e"
    assert (timings[0].start_frame, timings[0].end_frame) == (0, 3)


@pytest.mark.parametrize("text,total", [("", 100), ("   ", 100), ("hello there", 0), ("hello", -5)])
def test_fallback_edge_cases_return_empty(text, total):
    assert fallback_word_timings(text, total, CaptionStyle.SINGLE) == []


def test_split_units():
    assert split_units("a  b\nc d", CaptionStyle.SINGLE) == ["a", "b", "c", "d"]
    assert split_units("a b c d", CaptionStyle.GROUPED) == ["a b c", "d"]


def test_total_frames_rounds_up():
    assert total_frames_for(2.0) == 60
    assert total_frames_for(2.01) == 61


# ---------------------------------------------------------------------------
# STT word normalization
# ---------------------------------------------------------------------------


def test_words_to_timings_rounds_to_frames():
    words = [{"text": "Hello", "start": 0.0, "end": 0.41}, {"text": "world", "start": 0.5, "end": 0.98}]
    timings = words_to_timings(words, 60)
    assert [(t.text, t.start_frame, t.end_frame) for t in timings] == [("Hello", 0, 12), ("world", 15, 29)]


def test_words_to_timings_enforces_ordering_and_bounds():
    words = [
        {"text": "a", "start": 0.5, "end": 0.5},   # zero length
        {"text": "b", "start": 0.3, "end": 0.6},   # starts before previous
        {"text": "c", "start": 1.95, "end": 2.5},  # runs past the end
        {"text": " ", "start": 1.0, "end": 1.1},   # blank
    ]
    timings = words_to_timings(words, 60)
    assert [t.text for t in timings] == ["a", "b", "c"]
    starts = [t.start_frame for t in timings]
    assert starts == sorted(starts)
    assert all(t.end_frame > t.start_frame for t in timings)
    assert timings[-1].end_frame <= 60


# ---------------------------------------------------------------------------
# TranscriptionService
# ---------------------------------------------------------------------------


def test_validate_audio_file(tmp_path):
    good = tmp_path / "a.wav"
    good.write_bytes(b"x")
    bad_suffix = tmp_path / "a.txt"
    bad_suffix.write_bytes(b"x")
    assert validate_audio_file(good) is None
    assert "Unsupported" in validate_audio_file(bad_suffix)
    assert "Not a valid file" in validate_audio_file(tmp_path / "missing.wav")


def test_transcribe_uses_stt_words(tmp_path):
    stt = FakeSTT([{"text": "Big news", "words": [
        {"text": "Big", "start": 0.0, "end": 0.4},
        {"text": "news", "start": 0.4, "end": 1.0},
    ]}])
    service = TranscriptionService(stt, _policy())

    timings = service.transcribe(_audio(tmp_path), CaptionStyle.SINGLE, source_text="Big news")

    assert stt.calls == 1
    assert [(t.text, t.start_frame, t.end_frame) for t in timings] == [("Big", 0, 12), ("news", 12, 30)]


def test_transcribe_retries_then_succeeds(tmp_path):
    ok = {"text": "Hi", "words": [{"text": "Hi", "start": 0.0, "end": 0.5}]}
    stt = FakeSTT([ExternalServiceError("timeout"), ok])
    timings = TranscriptionService(stt, _policy()).transcribe(_audio(tmp_path), CaptionStyle.SINGLE, "Hi")
    assert stt.calls == 2
    assert [t.text for t in timings] == ["Hi"]


def test_transcribe_falls_back_after_exhausting_retries(tmp_path):
    stt = FakeSTT([ExternalServiceError("down")] * 5)
    timings = TranscriptionService(stt, _policy()).transcribe(
        _audio(tmp_path, duration=2.0), CaptionStyle.GROUPED, source_text="this is the whole script"
    )
    assert stt.calls == 3
    assert [t.text for t in timings] == ["this is the", "whole script"]
    assert timings[-1].end_frame == 60


def test_transcribe_invalid_file_skips_stt(tmp_path):
    stt = FakeSTT([])
    audio = _audio(tmp_path, name="narration.aiff")
    timings = TranscriptionService(stt, _policy()).transcribe(audio, CaptionStyle.SINGLE, source_text="fallback words")
    assert stt.calls == 0
    assert [t.text for t in timings] == ["fallback", "words"]


def test_transcribe_empty_word_list_falls_back(tmp_path):
    stt = FakeSTT([{"text": "x", "words": [{"text": "  ", "start": 0.0, "end": 0.1}]}])
    timings = TranscriptionService(stt, _policy()).transcribe(_audio(tmp_path), CaptionStyle.SINGLE, "one two")
    assert [t.text for t in timings] == ["one", "two"]
