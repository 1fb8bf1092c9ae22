import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from openai import OpenAI, OpenAIError

from hookreel.config import settings
from hookreel.errors import ExternalServiceError

logger = logging.getLogger(__name__)


def _validate_api_key(api_key: Optional[str]) -> str:
    if not api_key:
        raise ValueError(
            "OpenAI API key not configured. "
            "Please set OPENAI_API_KEY in your .env file or environment variables."
        )
    if not api_key.startswith("sk-"):
        raise ValueError(
            f"OpenAI API key format is invalid. "
            f"API keys must start with 'sk-'. "
            f"Current value (first 10 chars): {api_key[:10]}."
        )
    placeholder_values = ["sk-...", "sk-", "your-api-key-here", "OPENAI_API_KEY"]
    if api_key.lower() in [p.lower() for p in placeholder_values] or len(api_key) < 20:
        raise ValueError(
            f"OpenAI API key appears to be a placeholder or too short (length: {len(api_key)}). "
            f"Please set a valid OPENAI_API_KEY in your .env file."
        )
    return api_key


class OpenAIService:
    """Service for OpenAI API integration (TTS, Whisper STT, chat classification)."""

    def __init__(self, api_key: Optional[str] = None, client: Optional[Any] = None):
        if client is not None:
            self.client = client
        else:
            api_key = _validate_api_key(api_key or settings.OPENAI_API_KEY)
            masked_key = api_key[:7] + "..." + api_key[-4:]
            logger.info(f"API key (masked): {masked_key}")
            self.client = OpenAI(api_key=api_key)
        logger.info("OpenAIService initialized")

    def synthesize_speech(self, text: str, voice: str, output_path: Path, model: Optional[str] = None) -> Path:
        """Generate narration audio for `text` and save it as mp3."""
        model = model or settings.TTS_MODEL
        logger.info(f"Calling OpenAI TTS API (Voice: {voice}, Model: {model}) for: {text[:30]!r}...")
        output_path.parent.mkdir(parents=True, exist_ok=True)
        response = self.client.audio.speech.create(
            model=model,
            voice=voice,
            input=text,
            response_format="mp3",
        )
        response.stream_to_file(str(output_path))
        logger.info(f"Raw audio saved to {output_path}")
        return output_path

    def transcribe_words(self, audio_path: Path) -> Dict[str, Any]:
        """
        Word-level transcription. Returns {"text": str, "words": [{"text", "start", "end"}]}
        with offsets in seconds. Raises ExternalServiceError on transport errors or
        when the response carries no words.
        """
        logger.info(f"Calling OpenAI Whisper API for word timestamps: {audio_path.name}")
        try:
            with open(audio_path, "rb") as audio_file:
                transcription = self.client.audio.transcriptions.create(
                    model=settings.STT_MODEL,
                    file=audio_file,
                    response_format="verbose_json",
                    timestamp_granularities=["word"],
                )
        except OpenAIError as e:
            raise ExternalServiceError(f"Transcription request failed: {e}") from e

        data = transcription.model_dump() if hasattr(transcription, "model_dump") else dict(transcription)
        words: List[Dict[str, Any]] = []
        for item in data.get("words") or []:
            text = item.get("word", item.get("text"))
            if text is None or item.get("start") is None or item.get("end") is None:
                raise ExternalServiceError(f"Malformed word entry in transcription: {item!r}")
            words.append({"text": str(text).strip(), "start": float(item["start"]), "end": float(item["end"])})

        if not data.get("text") or not words:
            raise ExternalServiceError("Invalid response from transcription API (no text or words)")
        return {"text": data["text"], "words": words}

    def chat(self, model: str, system_prompt: str, user_prompt: str, temperature: float = 1.0) -> str:
        """Single chat completion. Returns the message content."""
        try:
            response = self.client.chat.completions.create(
                model=model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                temperature=temperature,
                max_tokens=8000,
            )
        except OpenAIError as e:
            raise ExternalServiceError(f"Chat completion failed: {e}") from e

        try:
            content = response.choices[0].message.content
        except (AttributeError, IndexError) as e:
            raise ExternalServiceError("Invalid response from chat API") from e
        if not content:
            raise ExternalServiceError("Chat API returned empty content")
        return content
