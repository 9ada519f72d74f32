import asyncio
from enum import Enum

from fastapi import Response

from explainboard.services.export import (
    Block,
    content_disposition,
    export_pdf,
    export_png,
    render_board,
)


class ExportFormat(str, Enum):
    md = "md"
    pdf = "pdf"
    png = "png"


_MEDIA_TYPES = {
    ExportFormat.md: "text/markdown; charset=utf-8",
    ExportFormat.pdf: "application/pdf",
    ExportFormat.png: "image/png",
}


def _rasterise(title: str, introduction: str, blocks: list[Block], fmt: ExportFormat) -> bytes:
    doc = render_board(title, introduction, blocks)
    try:
        return export_png(doc) if fmt is ExportFormat.png else export_pdf(doc)
    finally:
        doc.close()


async def export_response(
    fmt: ExportFormat,
    name: str,
    *,
    markdown: str,
    title: str,
    introduction: str,
    blocks: list[Block],
) -> Response:
    """Build the download response for one board in the requested format.

    *name* may hold any characters; the header carries an ASCII fallback.
    """
    if fmt is ExportFormat.md:
        body = markdown.encode("utf-8")
    else:
        # Rendering is CPU-bound; offload to the thread pool.
        body = await asyncio.to_thread(_rasterise, title, introduction, blocks, fmt)
    return Response(
        content=body,
        media_type=_MEDIA_TYPES[fmt],
        headers={"Content-Disposition": content_disposition(name, fmt.value)},
    )
