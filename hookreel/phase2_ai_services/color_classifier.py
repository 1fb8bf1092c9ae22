"""
Emphasis coloring for captions.

A chat model is asked to mark important words in one of five colors. Model
output is not reliably well-formed JSON, so the response goes through an
ordered list of parsers, each tried only when the previous one found nothing.
"""
import json
import logging
import re
from typing import Callable, List, Optional

from hookreel.config import settings
from hookreel.errors import ExternalServiceError
from hookreel.models import PALETTE, CaptionColor, CaptionStyle, ColorAssignment, WordTiming
from hookreel.phase2_ai_services.openai_client import OpenAIService
from hookreel.phase2_ai_services.retry import RetryPolicy

logger = logging.getLogger(__name__)

_SHARED_RULES = """
Return ONLY a JSON array with each word and its color, DO NOT RETURN ANYTHING ELSE.
DO NOT write your response in markdown, just return the JSON array.
The JSON array MUST be in the format: [{"word": "word", "color": "color"}, {"word": "word", "color": "color"}]
Allowed colors: white, yellow, red, green, purple."""

SINGLE_STYLE_PROMPT = """You are a text analyzer that identifies important words and phrases in text and assigns them colors. Focus on coloring phrases rather than single words.
Rules:
1. The majority of words should remain white (default)
2. Key phrases or words crucial to the meaning should be yellow (can be multiple consecutive words)
3. Action phrases or dramatic emphasis should be red (can be multiple consecutive words)
4. Positive/successful phrases should be green (can be multiple consecutive words)
5. Special/unique/rare phrases should be purple (can be multiple consecutive words)
6. Only color truly important words/phrases - most should stay white
7. When coloring a phrase, every word in it gets the same color and its own entry in the array""" + _SHARED_RULES

GROUPED_STYLE_PROMPT = """You are a text analyzer that identifies important words in text and assigns them colors.
Rules:
1. The vast majority of words should remain white (default)
2. Key words that are crucial to the meaning should be yellow
3. Action words or dramatic emphasis should be red
4. Positive/successful words should be green
5. Special/unique/rare words should be purple
6. Only color truly important words - most should stay white""" + _SHARED_RULES

# {word: "x", color: 'y'} with quoted or bare keys, single or double quoted values
ITEM_PATTERN = re.compile(
    r"""\{\s*(?:"word"|'word'|word)\s*:\s*(?:"([^"]*)"|'([^']*)')\s*,\s*"""
    r"""(?:"color"|'color'|color)\s*:\s*(?:"([^"]*)"|'([^']*)')\s*\}"""
)
_FENCE = re.compile(r"^```(?:json|JSON)?\s*|\s*```$")
_NON_WORD = re.compile(r"[^\w']")

ParserStrategy = Callable[[str], Optional[List[ColorAssignment]]]


def system_prompt_for(style: CaptionStyle) -> str:
    return SINGLE_STYLE_PROMPT if style == CaptionStyle.SINGLE else GROUPED_STYLE_PROMPT


def normalize_color(value) -> CaptionColor:
    color = str(value or "").strip().lower()
    return CaptionColor(color) if color in PALETTE else CaptionColor.WHITE


def _to_assignments(items) -> List[ColorAssignment]:
    assignments = []
    for item in items:
        if not isinstance(item, dict):
            continue
        word = str(item.get("word") or "").strip()
        if not word:
            continue
        assignments.append(ColorAssignment(word=word, color=normalize_color(item.get("color"))))
    return assignments


def strip_code_fences(raw: str) -> str:
    return _FENCE.sub("", raw.strip()).strip()


def parse_json_document(raw: str) -> Optional[List[ColorAssignment]]:
    """Tier 1: the whole response is JSON (possibly fenced or wrapped in prose)."""
    content = strip_code_fences(raw)
    if "[" in content and "]" in content:
        content = content[content.index("["):content.rindex("]") + 1]
    try:
        parsed = json.loads(content)
    except ValueError:
        return None

    if isinstance(parsed, dict):
        # {"words": [...]} style wrappers
        nested = next((v for v in parsed.values() if isinstance(v, list)), None)
        parsed = nested if nested is not None and "word" not in parsed else [parsed]
    if not isinstance(parsed, list):
        return None
    return _to_assignments(parsed) or None


def _match_items(text: str) -> List[ColorAssignment]:
    items = []
    for match in ITEM_PATTERN.finditer(text):
        word = match.group(1) or match.group(2) or ""
        color = match.group(3) or match.group(4) or "white"
        items.append({"word": word, "color": color})
    return _to_assignments(items)


def parse_item_matches(raw: str) -> Optional[List[ColorAssignment]]:
    """Tier 2: pull individual {word, color} objects out of the raw text."""
    return _match_items(raw) or None


def parse_line_by_line(raw: str) -> Optional[List[ColorAssignment]]:
    """Tier 3: the same per-item pattern, one line at a time."""
    assignments: List[ColorAssignment] = []
    for line in raw.splitlines():
        if "{" not in line and "}" not in line:
            continue
        assignments.extend(_match_items(line))
    return assignments or None


PARSER_STRATEGIES: List[ParserStrategy] = [parse_json_document, parse_item_matches, parse_line_by_line]


def default_assignments(source_text: str) -> List[ColorAssignment]:
    """Tier 4: every token of the source text stays white."""
    tokens = (_NON_WORD.sub("", token) for token in source_text.split())
    return [ColorAssignment(word=token, color=CaptionColor.WHITE) for token in tokens if token]


def parse_color_response(raw: str, source_text: str = "") -> List[ColorAssignment]:
    for strategy in PARSER_STRATEGIES:
        result = strategy(raw)
        if result:
            logger.info(f"Parsed {len(result)} color assignments with {strategy.__name__}")
            return result
    logger.warning("Could not parse any color assignments, falling back to direct text splitting")
    return default_assignments(source_text)


def apply_colors(timings: List[WordTiming], assignments: List[ColorAssignment]) -> List[WordTiming]:
    """Return new timings colored by case-insensitive word match. Unmatched words are white."""
    color_map = {}
    for assignment in assignments:
        color_map[assignment.word.lower()] = assignment.color
        color_map.setdefault(_NON_WORD.sub("", assignment.word.lower()), assignment.color)

    colored = []
    for timing in timings:
        key = timing.text.lower()
        color = color_map.get(key) or color_map.get(_NON_WORD.sub("", key))
        if color is None and " " in key:
            # grouped captions: first emphasized word wins
            part_colors = [color_map.get(_NON_WORD.sub("", part)) for part in key.split()]
            color = next((c for c in part_colors if c and c != CaptionColor.WHITE), None)
        colored.append(timing.model_copy(update={"color": color or CaptionColor.WHITE}))
    return colored


class ColorClassifier:
    """Assigns emphasis colors to words. Never raises; total failure means all white."""

    def __init__(self, openai_service: OpenAIService, retry_policy: Optional[RetryPolicy] = None):
        self.openai_service = openai_service
        self.retry_policy = retry_policy or RetryPolicy.from_settings(settings.CLASSIFIER_MODELS)

    def classify(self, text: str, style: CaptionStyle) -> List[ColorAssignment]:
        if not text.strip():
            return []
        prompt = system_prompt_for(style)
        user_prompt = (
            "Analyze this text and return a JSON array where each word has a color "
            f'(white, yellow, red, green, or purple). Text: "{text}"'
        )

        def _call(attempt: int, model: Optional[str]) -> str:
            return self.openai_service.chat(model or settings.CLASSIFIER_MODELS[0], prompt, user_prompt)

        try:
            raw = self.retry_policy.run(_call, label="Color analysis")
        except ExternalServiceError as e:
            logger.warning(f"All color analysis attempts failed ({e}). Setting all words to white.")
            return []

        logger.debug(f"Classifier raw response (first 100 chars): {raw[:100]}...")
        return parse_color_response(raw, source_text=text)
