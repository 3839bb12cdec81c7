"""ASS subtitle generation for caption burn-in

Captions are rendered one dialogue line per spoken word: the line shows a
group of `wordsPerLine` words and the active word switches to the
WordHighlight style for the duration of that word.
"""
import logging
import math
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

PLAY_RES_X = 1280
PLAY_RES_Y = 720
DEFAULT_FONT_SIZE = 24
DEFAULT_WORDS_PER_LINE = 4
DEFAULT_HIGHLIGHT_SCALE = 1.1
DEFAULT_HIGHLIGHT_COLOR = "#FFFF00"
OPAQUE_BLACK = "&H00000000"

STYLE_FORMAT = (
    "Format: Name, Fontname, Fontsize, PrimaryColour, SecondaryColour, OutlineColour, BackColour, "
    "Bold, Italic, Underline, StrikeOut, ScaleX, ScaleY, Spacing, Angle, BorderStyle, Outline, "
    "Shadow, Alignment, MarginL, MarginR, MarginV, Encoding"
)
EVENT_FORMAT = "Format: Layer, Start, End, Style, Name, MarginL, MarginR, MarginV, Effect, Text"


def hex_to_ass_color(hex_color: Optional[str], opacity: float = 1.0) -> str:
    """Convert '#RRGGBB' to ASS '&HAABBGGRR' (alpha 00 is opaque, FF transparent)"""
    value = (hex_color or "").lstrip("#")
    if len(value) != 6:
        logger.warning(f"Invalid hex color: {hex_color!r}, using black")
        value = "000000"

    try:
        r, g, b = (int(value[i:i + 2], 16) for i in (0, 2, 4))
    except ValueError:
        logger.warning(f"Invalid hex color components: {hex_color!r}, using black")
        return OPAQUE_BLACK

    alpha = round((1 - opacity) * 255)
    return f"&H{alpha:02X}{b:02X}{g:02X}{r:02X}"


def format_ass_time(seconds: float) -> str:
    """Seconds to h:mm:ss.cc"""
    seconds = max(seconds, 0.0)
    h = int(seconds // 3600)
    m = int((seconds % 3600) // 60)
    s = int(seconds % 60)
    cs = int((seconds % 1) * 100)
    return f"{h}:{m:02d}:{s:02d}.{cs:02d}"


def alignment_for_margin(margin_y: float) -> int:
    """Numpad alignment: bottom (2), top (8) or middle (5) center"""
    if margin_y > 50:
        return 2
    if margin_y < -50:
        return 8
    return 5


def vertical_position(margin_y: float) -> float:
    """Map marginY (-100..100) onto the 720px canvas around its center"""
    center = PLAY_RES_Y / 2
    return center + (margin_y / 100) * 300


def _format_number(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)


def _background(preset: Dict[str, Any]):
    bg_color = preset.get("backgroundColor")
    if not bg_color and preset.get("bgColor") and preset.get("bgColor") != "transparent":
        bg_color = preset["bgColor"]
    if bg_color:
        return bg_color, preset.get("bgOpacity") or 0
    return "#000000", 0


def _style_line(name: str, font: str, size: int, primary: str, secondary: str, outline: str, back: str,
                bold: str, scale: int, spacing, border_style: int, outline_width, shadow: str,
                alignment: int, margin_v: int) -> str:
    return (
        f"Style: {name},{font},{size},{primary},{secondary},{outline},{back},{bold},0,0,0,"
        f"{scale},{scale},{spacing},0,{border_style},{outline_width},{shadow},{alignment},10,10,{margin_v},1"
    )


def _line_text(words: List[Dict[str, Any]], active: int, word_spacing: float) -> str:
    parts = []
    for idx, word in enumerate(words):
        if idx > 0:
            if word_spacing and word_spacing > 0:
                parts.append(" {" + "\\h" * round(word_spacing) + "}")
            else:
                parts.append(" ")
        if idx == active:
            parts.append(f"{{\\rWordHighlight}}{word['word']}{{\\rDefault}}")
        else:
            parts.append(word["word"])
    return "".join(parts)


def generate_ass(word_timestamps: Dict[str, Any], preset: Dict[str, Any]) -> str:
    """Build an ASS subtitle document from word timestamps and a caption preset

    Args:
        word_timestamps: {"text": str, "segments": [{"start", "end", "words": [{"word", "start", "end"}]}]}
        preset: caption preset as saved by the editor (fontFamily, fontSize, textColor,
            highlightColor, marginY, wordsPerLine, textOutline, bgOpacity, ...)

    Returns:
        The ASS file content
    """
    font_name = (preset.get("fontFamily") or "Arial").split(",")[0].strip().strip("'\"")
    primary = hex_to_ass_color(preset.get("textColor") or preset.get("color") or "#FFFFFF")
    secondary = hex_to_ass_color(preset.get("highlightColor") or DEFAULT_HIGHLIGHT_COLOR)

    text_outline = bool(preset.get("textOutline"))
    if text_outline:
        outline_color = hex_to_ass_color(preset.get("outlineColor") or "#000000")
        outline_width = min(preset["outlineWidth"] * 3, 10) if preset.get("outlineWidth") else 3
    else:
        outline_color = hex_to_ass_color("#000000", 0)
        outline_width = 0

    bg_hex, bg_opacity = _background(preset)
    back_color = hex_to_ass_color(bg_hex, bg_opacity)

    # 3 draws an opaque box behind the text, 1 an outline and shadow
    border_style = 1 if text_outline or bg_opacity <= 0 else 3

    margin_y = preset.get("marginY") or 0
    alignment = alignment_for_margin(margin_y)
    margin_v = abs(int(margin_y))
    bold = "1" if preset.get("fontWeight") == "bold" else "0"
    shadow = "1" if preset.get("textShadow") else "0"
    spacing = preset.get("letterSpacing") or 0

    font_size = round((preset.get("fontSize") or DEFAULT_FONT_SIZE) * (preset.get("scale") or 1.0))
    highlight_scale = preset.get("highlightScale") or DEFAULT_HIGHLIGHT_SCALE

    lines = [
        "[Script Info]",
        "; Script generated by Reelcast",
        "ScriptType: v4.00+",
        f"PlayResX: {PLAY_RES_X}",
        f"PlayResY: {PLAY_RES_Y}",
        "ScaledBorderAndShadow: yes",
        "YCbCr Matrix: None",
        "",
        "[V4+ Styles]",
        STYLE_FORMAT,
        _style_line("Default", font_name, font_size, primary, secondary, outline_color, back_color,
                    bold, 100, spacing, border_style, outline_width, shadow, alignment, margin_v),
        _style_line("WordHighlight", font_name, math.ceil(font_size * highlight_scale), secondary, secondary,
                    outline_color, back_color, bold, round(highlight_scale * 100), spacing, border_style,
                    outline_width, shadow, alignment, margin_v),
        "",
        "[Events]",
        EVENT_FORMAT,
    ]

    words_per_line = int(preset.get("wordsPerLine") or DEFAULT_WORDS_PER_LINE)
    word_spacing = preset.get("wordSpacing") or 0
    position = ""
    if margin_y:
        position = f"{{\\pos({PLAY_RES_X // 2},{_format_number(vertical_position(margin_y))})}}"

    for segment in (word_timestamps or {}).get("segments") or []:
        words = segment.get("words") or []
        for i in range(0, len(words), words_per_line):
            chunk = words[i:i + words_per_line]
            for active, word in enumerate(chunk):
                text = position + _line_text(chunk, active, word_spacing)
                lines.append(
                    f"Dialogue: 0,{format_ass_time(word['start'])},{format_ass_time(word['end'])},Default,,0,0,0,,{text}"
                )

    return "\n".join(lines) + "\n"
