import io
import logging
from pathlib import Path
from typing import List, Optional, Tuple

import numpy as np
import requests
from PIL import Image, ImageChops, ImageDraw, ImageFont, ImageOps
from moviepy import (
    AudioFileClip,
    CompositeAudioClip,
    CompositeVideoClip,
    ImageClip,
    VideoFileClip,
    concatenate_videoclips,
)

from hookreel.config import settings
from hookreel.models import BackgroundSequence, RenderInput, WordTiming

logger = logging.getLogger(__name__)

CAPTION_MAX_WIDTH_RATIO = 0.8
CARD_WIDTH_RATIO = 0.85
CARD_PADDING = 48
STROKE_COLOR = (0, 0, 0, 255)
AVATAR_SIZE = 116
AVATAR_GAP = 20
AVATAR_FALLBACK_COLOR = (255, 69, 0, 255)


def load_font(font: Optional[str], size: int) -> ImageFont.FreeTypeFont:
    """Resolve a font name or path against FONTS_PATH, falling back to the default font."""
    candidates = []
    if font:
        candidates += [Path(font), settings.FONTS_PATH / font, settings.FONTS_PATH / f"{font}.ttf"]
    candidates.append(Path(settings.DEFAULT_FONT))

    for candidate in candidates:
        if candidate.is_file():
            logger.debug(f"Loading font {candidate} (size: {size})")
            return ImageFont.truetype(str(candidate), size)

    logger.warning(f"Could not find font {font!r} or {settings.DEFAULT_FONT}. Falling back to default font.")
    return ImageFont.load_default(size=size)


def wrap_text(text: str, font: ImageFont.FreeTypeFont, max_width: int) -> str:
    lines: List[str] = []
    current = ""
    for word in text.split():
        trial = f"{current} {word}".strip()
        if current and font.getlength(trial) > max_width:
            lines.append(current)
            current = word
        else:
            current = trial
    if current:
        lines.append(current)
    return "\n".join(lines)


def render_caption_image(text: str, font: ImageFont.FreeTypeFont, fill: Tuple[int, int, int], stroke_width: int) -> Image.Image:
    """Transparent RGBA image holding centered, stroked text."""
    probe = ImageDraw.Draw(Image.new("RGBA", (1, 1)))
    left, top, right, bottom = probe.multiline_textbbox(
        (0, 0), text, font=font, stroke_width=stroke_width, align="center"
    )
    pad = stroke_width + 4
    image = Image.new("RGBA", (right - left + 2 * pad, bottom - top + 2 * pad), (0, 0, 0, 0))
    draw = ImageDraw.Draw(image)
    draw.multiline_text(
        (pad - left, pad - top),
        text,
        font=font,
        fill=tuple(fill) + (255,),
        stroke_width=stroke_width,
        stroke_fill=STROKE_COLOR,
        align="center",
    )
    return image


def load_channel_avatar(image_url: Optional[str], size: int = AVATAR_SIZE, session: Optional[requests.Session] = None) -> Image.Image:
    """
    Circular avatar cropped from `image_url` (http(s) URL or local path).
    Falls back to a solid circle when there is no image or it can't be read.
    """
    avatar = None
    if image_url:
        try:
            if image_url.startswith(("http://", "https://")):
                response = (session or requests).get(image_url, timeout=30)
                response.raise_for_status()
                source = Image.open(io.BytesIO(response.content))
            else:
                source = Image.open(image_url)
            avatar = ImageOps.fit(source.convert("RGBA"), (size, size))
        except (requests.RequestException, OSError) as e:
            logger.warning(f"Could not load channel image {image_url}: {e}. Using a plain avatar.")
    if avatar is None:
        avatar = Image.new("RGBA", (size, size), AVATAR_FALLBACK_COLOR)

    mask = Image.new("L", (size, size), 0)
    ImageDraw.Draw(mask).ellipse((0, 0, size - 1, size - 1), fill=255)
    avatar.putalpha(ImageChops.multiply(avatar.getchannel("A"), mask))
    return avatar


def render_hook_card(
    hook_text: str,
    channel_name: Optional[str],
    font_name: Optional[str],
    width: int,
    channel_image_url: Optional[str] = None,
) -> Image.Image:
    """White rounded card with a channel header (avatar + name) above the hook line."""
    card_width = int(width * CARD_WIDTH_RATIO)
    text_width = card_width - 2 * CARD_PADDING
    title_font = load_font(font_name, 44)
    body_font = load_font(font_name, 56)

    body = wrap_text(hook_text, body_font, text_width)
    probe = ImageDraw.Draw(Image.new("RGBA", (1, 1)))
    _, body_top, _, body_bottom = probe.multiline_textbbox((0, 0), body, font=body_font)

    show_header = bool(channel_name or channel_image_url)
    header_height = 0
    title_top = title_height = 0
    if show_header:
        if channel_name:
            _, title_top, _, t_bottom = probe.textbbox((0, 0), channel_name, font=title_font)
            title_height = t_bottom - title_top
        header_height = max(AVATAR_SIZE, title_height) + CARD_PADDING // 2

    card_height = header_height + (body_bottom - body_top) + 2 * CARD_PADDING
    card = Image.new("RGBA", (card_width, card_height), (0, 0, 0, 0))
    draw = ImageDraw.Draw(card)
    draw.rounded_rectangle((0, 0, card_width - 1, card_height - 1), radius=36, fill=(255, 255, 255, 255))

    y = CARD_PADDING
    if show_header:
        avatar = load_channel_avatar(channel_image_url)
        card.alpha_composite(avatar, (CARD_PADDING, y))
        if channel_name:
            name_y = y + (AVATAR_SIZE - title_height) // 2 - title_top
            draw.text((CARD_PADDING + AVATAR_SIZE + AVATAR_GAP, name_y), channel_name, font=title_font, fill=(26, 26, 26, 255))
        y += header_height
    draw.multiline_text((CARD_PADDING, y - body_top), body, font=body_font, fill=(0, 0, 0, 255))
    return card


def build_caption_clips(render_input: RenderInput, offset_seconds: float, width: int) -> List[ImageClip]:
    """One ImageClip per timing unit, shifted to start after the hook."""
    fps = settings.VIDEO_FPS
    font = load_font(render_input.font, render_input.subtitle_size)
    max_width = int(width * CAPTION_MAX_WIDTH_RATIO)
    cache = {}

    clips = []
    for timing in render_input.word_timings:
        key = (timing.text, timing.color)
        if key not in cache:
            fill = settings.CAPTION_COLORS.get(timing.color.value, settings.CAPTION_COLORS["white"])
            text = wrap_text(timing.text, font, max_width)
            cache[key] = np.array(render_caption_image(text, font, fill, render_input.stroke_size))
        clips.append(_timed_image(cache[key], timing, offset_seconds, fps))
    logger.info(f"Built {len(clips)} caption clips")
    return clips


def _timed_image(frame: np.ndarray, timing: WordTiming, offset_seconds: float, fps: int) -> ImageClip:
    start = offset_seconds + timing.start_frame / fps
    duration = (timing.end_frame - timing.start_frame) / fps
    return ImageClip(frame).with_start(start).with_duration(duration).with_position(("center", "center"))


def _fill_frame(clip: VideoFileClip, width: int, height: int):
    scale = max(width / clip.w, height / clip.h)
    resized = clip.resized(scale)
    return resized.cropped(x_center=resized.w / 2, y_center=resized.h / 2, width=width, height=height)


def build_background(background: BackgroundSequence, duration: float, width: int, height: int):
    """Concatenate the sequence, scaled and center-cropped to the output size. Returns (clip, sources)."""
    sources = []
    for bg_clip in background.clips:
        source = VideoFileClip(str(bg_clip.local_path or bg_clip.url), audio=False)
        sources.append(source)
    if not sources:
        raise ValueError("Background sequence has no clips")

    fitted = [_fill_frame(source, width, height) for source in sources]
    video = concatenate_videoclips(fitted) if len(fitted) > 1 else fitted[0]
    if video.duration > duration:
        video = video.subclipped(0, duration)
    return video, sources


def render_video(render_input: RenderInput) -> Path:
    """
    Composite background, hook card, captions and narration into one mp4.

    The hook audio plays first, then the script audio. Caption timings are
    relative to the script audio and are shifted by the hook duration.
    """
    width, height, fps = settings.VIDEO_WIDTH, settings.VIDEO_HEIGHT, settings.VIDEO_FPS
    hook_duration = render_input.hook_duration_seconds
    total_duration = hook_duration + render_input.script_duration_seconds
    logger.info(f"--- Starting Video Rendering ({width}x{height} @ {fps}fps, {total_duration:.2f}s) ---")

    to_close = []
    try:
        hook_audio = AudioFileClip(str(render_input.hook_audio_path))
        script_audio = AudioFileClip(str(render_input.script_audio_path))
        to_close += [hook_audio, script_audio]
        audio = CompositeAudioClip([hook_audio, script_audio.with_start(hook_duration)])

        background, sources = build_background(render_input.background, total_duration, width, height)
        to_close += sources

        card_image = render_hook_card(
            render_input.hook_text, render_input.channel_name, render_input.font, width, render_input.channel_image_url
        )
        card = (
            ImageClip(np.array(card_image))
            .with_start(0)
            .with_duration(hook_duration)
            .with_position(("center", "center"))
        )

        layers = [background, card] + build_caption_clips(render_input, hook_duration, width)
        final = CompositeVideoClip(layers, size=(width, height)).with_duration(total_duration).with_audio(audio)
        to_close.append(final)

        render_input.output_path.parent.mkdir(parents=True, exist_ok=True)
        final.write_videofile(
            str(render_input.output_path),
            fps=fps,
            codec=settings.VIDEO_CODEC,
            bitrate=settings.VIDEO_BITRATE,
            audio_codec="aac",
            logger=None,
        )
        logger.info(f"--- Video Rendering Complete: {render_input.output_path} ---")
        return render_input.output_path
    except Exception:
        logger.error("Video rendering pipeline failed!", exc_info=True)
        raise
    finally:
        for clip in to_close:
            clip.close()
