import base64
import binascii
import html
import logging
import re
from dataclasses import dataclass
from typing import Iterable
from urllib.parse import quote

import fitz  # PyMuPDF

from explainboard.models import LiveSegment, WhiteboardContent

logger = logging.getLogger(__name__)

LIVE_SESSION_TITLE = "Live Session Notes"
LIVE_SESSION_FILENAME = "live-session"
FALLBACK_FILENAME = "whiteboard"

# Page layout (points)
PAGE_WIDTH = 800
MARGIN = 40
IMAGE_MAX_WIDTH = 480
BACKGROUND = (17 / 255, 24 / 255, 39 / 255)  # gray-900
RASTER_SCALE = 2
# Measuring height for one text box; boards never get near it.
_MEASURE_HEIGHT = 100_000

# The HTML engine picks a fallback font per glyph, so non-Latin text renders
# even though the CSS only names a sans-serif family.
BOARD_CSS = """
* { font-family: sans-serif; margin: 0; padding: 0; }
h1 { font-size: 28px; font-weight: bold; color: #ffffff; }
h2 { font-size: 18px; font-weight: bold; color: #86efac; }
p { font-size: 11px; color: #e5e7eb; margin-bottom: 6px; }
p.intro { font-size: 12px; }
"""

_BOLD_RE = re.compile(r"\*\*(.+?)\*\*")
_ITALIC_RE = re.compile(r"\*(.+?)\*")
_DATA_URL_RE = re.compile(r"^data:[^;,]+;base64,(?P<data>.+)$", re.DOTALL)
_UNSAFE_FILENAME_RE = re.compile(r"[^\w.-]+", re.ASCII)
_WHITESPACE_RE = re.compile(r"\s+")


@dataclass(frozen=True)
class Block:
    heading: str
    body: str  # markdown
    image_url: str | None = None


# ---------------------------------------------------------------------------
# Markdown
# ---------------------------------------------------------------------------


def whiteboard_markdown(content: WhiteboardContent) -> str:
    md = f"# {content.title}\n\n{content.introduction}\n\n"
    for section in content.sections:
        md += f"## {section.heading}\n\n{section.explanation}\n\n"
        if section.image_url:
            md += f"![{section.heading}]({section.image_url})\n\n"
    return md


def live_session_markdown(segments: Iterable[LiveSegment]) -> str:
    md = f"# {LIVE_SESSION_TITLE}\n\n"
    for segment in segments:
        md += f"## {segment.key_idea}\n\n{segment.detailed_explanation}\n\n"
        if segment.image_url:
            md += f"![{segment.key_idea}]({segment.image_url})\n\n"
        md += "---\n\n"
    return md


# ---------------------------------------------------------------------------
# Download names
# ---------------------------------------------------------------------------


def export_filename(title: str, ext: str) -> str:
    """ASCII-only file name: every run of other characters becomes ``_``."""
    slug = _UNSAFE_FILENAME_RE.sub("_", title).strip("_").lower()
    return f"{slug or FALLBACK_FILENAME}.{ext}"


def content_disposition(title: str, ext: str) -> str:
    """Attachment header with an ASCII ``filename`` and the RFC 5987 UTF-8 name.

    Header values must stay latin-1 encodable, so the full title only
    travels percent-encoded in ``filename*``.
    """
    utf8_name = f"{_WHITESPACE_RE.sub('_', title.strip()).lower()}.{ext}"
    return (
        f'attachment; filename="{export_filename(title, ext)}"; '
        f"filename*=UTF-8''{quote(utf8_name, safe='')}"
    )


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def whiteboard_blocks(content: WhiteboardContent) -> list[Block]:
    return [Block(s.heading, s.explanation, s.image_url) for s in content.sections]


def live_session_blocks(segments: Iterable[LiveSegment]) -> list[Block]:
    return [Block(s.key_idea, s.detailed_explanation, s.image_url) for s in segments]


def markdown_html(text: str, css_class: str | None = None) -> str:
    """Render the markdown subset the models produce: **bold**, *italics*, paragraphs."""
    escaped = html.escape(text)
    escaped = _ITALIC_RE.sub(r"<i>\1</i>", _BOLD_RE.sub(r"<b>\1</b>", escaped))
    attr = f' class="{css_class}"' if css_class else ""
    return "".join(
        f"<p{attr}>{line.strip()}</p>" for line in escaped.split("\n") if line.strip()
    )


def decode_data_url(url: str) -> bytes | None:
    match = _DATA_URL_RE.match(url)
    if not match:
        return None
    try:
        return base64.b64decode(match.group("data"), validate=True)
    except (binascii.Error, ValueError):
        return None


def html_height(markup: str, width: float) -> float:
    """Height the HTML engine needs to lay *markup* out at *width*."""
    story = fitz.Story(markup, user_css=BOARD_CSS)
    _, filled = story.place(fitz.Rect(0, 0, width, _MEASURE_HEIGHT))
    return fitz.Rect(filled).height


def render_board(title: str, introduction: str, blocks: list[Block]) -> fitz.Document:
    """Lay the whole board out on one tall dark page.

    Two passes: the first measures every element so the page can be sized,
    the second draws.
    """
    text_width = PAGE_WIDTH - 2 * MARGIN
    ops: list[tuple] = []
    y = MARGIN

    def add_html(markup: str) -> None:
        nonlocal y
        if not markup:
            return
        # A little slack so the box never has to shrink its content.
        height = html_height(markup, text_width) + 2
        ops.append(("html", fitz.Rect(MARGIN, y, MARGIN + text_width, y + height), markup))
        y += height

    add_html(f"<h1>{html.escape(title)}</h1>")
    y += 8
    if introduction:
        add_html(markdown_html(introduction, "intro"))
        y += 16

    for block in blocks:
        y += 12
        add_html(f"<h2>{html.escape(block.heading)}</h2>")
        y += 4
        add_html(markdown_html(block.body))
        image = decode_data_url(block.image_url) if block.image_url else None
        if image:
            try:
                pix = fitz.Pixmap(image)
            except Exception as exc:
                logger.warning("Skipping unreadable image for %r: %s", block.heading, exc)
            else:
                width = min(IMAGE_MAX_WIDTH, text_width)
                height = width * pix.height / pix.width
                y += 10
                ops.append(("image", fitz.Rect(MARGIN, y, MARGIN + width, y + height), image))
                y += height
        y += 12

    doc = fitz.open()
    page = doc.new_page(width=PAGE_WIDTH, height=y + MARGIN)
    page.draw_rect(page.rect, color=None, fill=BACKGROUND)
    for kind, rect, payload in ops:
        if kind == "html":
            page.insert_htmlbox(rect, payload, css=BOARD_CSS)
        else:
            page.insert_image(rect, stream=payload)
    return doc


def export_png(doc: fitz.Document) -> bytes:
    """Rasterise the first page at 2x."""
    pix = doc[0].get_pixmap(matrix=fitz.Matrix(RASTER_SCALE, RASTER_SCALE))
    return pix.tobytes("png")


def export_pdf(doc: fitz.Document) -> bytes:
    """Rasterise the board and embed it as a single page-sized image."""
    png = export_png(doc)
    pix = fitz.Pixmap(png)
    out = fitz.open()
    page = out.new_page(width=pix.width, height=pix.height)
    page.insert_image(page.rect, stream=png)
    try:
        return out.tobytes()
    finally:
        out.close()
