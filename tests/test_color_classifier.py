import pytest

from hookreel.errors import ExternalServiceError
from hookreel.models import CaptionColor, CaptionStyle, ColorAssignment, WordTiming
from hookreel.phase2_ai_services.color_classifier import (
    GROUPED_STYLE_PROMPT,
    PARSER_STRATEGIES,
    SINGLE_STYLE_PROMPT,
    ColorClassifier,
    apply_colors,
    parse_color_response,
    parse_item_matches,
    parse_json_document,
    parse_line_by_line,
)
from hookreel.phase2_ai_services.retry import RetryPolicy


def _pairs(assignments):
    return [(a.word, a.color.value) for a in assignments]


def _timings(*words):
    return [WordTiming(text=w, start_frame=i * 10, end_frame=i * 10 + 10) for i, w in enumerate(words)]


class FakeChat:
    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = []

    def chat(self, model, system_prompt, user_prompt, temperature=1.0):
        self.calls.append((model, system_prompt))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


# ---------------------------------------------------------------------------
# Parsing cascade
# ---------------------------------------------------------------------------


def test_valid_json_array_is_parsed_exactly():
    raw = '[{"word": "This", "color": "white"}, {"word": "is", "color": "white"}, {"word": "huge", "color": "red"}]'
    assert _pairs(parse_color_response(raw)) == [("This", "white"), ("is", "white"), ("huge", "red")]


def test_fenced_json_is_unwrapped():
    raw = '```json\n[{"word": "amazing", "color": "green"}]\n```'
    assert _pairs(parse_color_response(raw)) == [("amazing", "green")]


def test_malformed_response_yields_recognizable_items():
    raw = (
        'Sure! Here you go: [{"word": "big", "color": "red"}, '
        "{word: 'deal', color: 'purple'}, {\"word\": \"oops\" \"color\": "
    )
    assert parse_json_document(raw) is None
    assert _pairs(parse_color_response(raw)) == [("big", "red"), ("deal", "purple")]


def test_unparseable_garbage_gives_all_white():
    assert parse_color_response("I cannot help with that.") == []
    assert _pairs(parse_color_response("no json here", source_text="Wow, that's big!")) == [
        ("Wow", "white"), ("that's", "white"), ("big", "white"),
    ]


def test_this_is_amazing_example():
    raw = '```json\n[{"word":"amazing","color":"green"}]\n```'
    timings = apply_colors(_timings("This", "is", "amazing"), parse_color_response(raw, source_text="This is amazing"))
    assert [(t.text, t.color.value) for t in timings] == [("This", "white"), ("is", "white"), ("amazing", "green")]


def test_strategies_are_tried_in_order():
    assert PARSER_STRATEGIES == [parse_json_document, parse_item_matches, parse_line_by_line]


def test_single_object_and_wrapped_list():
    assert _pairs(parse_json_document('{"word": "wow", "color": "yellow"}')) == [("wow", "yellow")]
    assert _pairs(parse_json_document('{"words": [{"word": "wow", "color": "red"}]}')) == [("wow", "red")]


def test_unknown_colors_become_white():
    raw = '[{"word": "sky", "color": "Blue"}, {"word": "sun", "color": "YELLOW"}]'
    assert _pairs(parse_color_response(raw)) == [("sky", "white"), ("sun", "yellow")]


def test_line_by_line_parser():
    raw = "{word: \"one\", color: \"red\"}\nnot an item\n{'word': 'two', 'color': 'green'}"
    assert _pairs(parse_line_by_line(raw)) == [("one", "red"), ("two", "green")]
    assert parse_line_by_line("nothing here") is None


# ---------------------------------------------------------------------------
# apply_colors
# ---------------------------------------------------------------------------


def test_apply_colors_is_case_insensitive_and_ignores_punctuation():
    assignments = [ColorAssignment(word="NEVER", color=CaptionColor.RED), ColorAssignment(word="money", color=CaptionColor.GREEN)]
    timings = apply_colors(_timings("never", "make", "money!"), assignments)
    assert [t.color.value for t in timings] == ["red", "white", "green"]


def test_apply_colors_on_grouped_units():
    assignments = [ColorAssignment(word="secret", color=CaptionColor.PURPLE)]
    timings = apply_colors(_timings("the secret is", "out now"), assignments)
    assert [t.color.value for t in timings] == ["purple", "white"]


def test_apply_colors_keeps_timing():
    original = _timings("a", "b")
    colored = apply_colors(original, [ColorAssignment(word="b", color=CaptionColor.YELLOW)])
    assert [(t.start_frame, t.end_frame) for t in colored] == [(0, 10), (10, 20)]
    assert original[1].color == CaptionColor.WHITE


# ---------------------------------------------------------------------------
# ColorClassifier
# ---------------------------------------------------------------------------


def test_classifier_rotates_models_and_recovers():
    chat = FakeChat([ExternalServiceError("rate limited"), '[{"word": "win", "color": "green"}]'])
    policy = RetryPolicy(max_attempts=3, delay_seconds=0, candidates=("model-a", "model-b"))

    result = ColorClassifier(chat, policy).classify("we win", CaptionStyle.GROUPED)

    assert _pairs(result) == [("win", "green")]
    assert [model for model, _ in chat.calls] == ["model-a", "model-b"]


def test_classifier_degrades_to_empty_after_three_failures():
    chat = FakeChat([ExternalServiceError("down")] * 3)
    policy = RetryPolicy(max_attempts=3, delay_seconds=0, candidates=("m1", "m2", "m3"))

    assert ColorClassifier(chat, policy).classify("anything at all", CaptionStyle.SINGLE) == []
    assert len(chat.calls) == 3


@pytest.mark.parametrize("style,prompt", [(CaptionStyle.SINGLE, SINGLE_STYLE_PROMPT), (CaptionStyle.GROUPED, GROUPED_STYLE_PROMPT)])
def test_classifier_uses_style_prompt(style, prompt):
    chat = FakeChat(['[{"word": "x", "color": "white"}]'])
    ColorClassifier(chat, RetryPolicy(max_attempts=1, delay_seconds=0, candidates=("m",))).classify("x", style)
    assert chat.calls[0][1] == prompt


def test_classifier_skips_blank_text():
    chat = FakeChat([])
    assert ColorClassifier(chat, RetryPolicy(delay_seconds=0)).classify("   ", CaptionStyle.SINGLE) == []
    assert chat.calls == []
