import logging

from fastapi import APIRouter, HTTPException, Request, Response
from pydantic import BaseModel

from explainboard.errors import GenerationError
from explainboard.routes.exports import ExportFormat, export_response
from explainboard.services.explainer import WhiteboardSession
from explainboard.services.export import (
    whiteboard_blocks,
    whiteboard_markdown,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["explain"])


class TopicRequest(BaseModel):
    topic: str


def _session(request: Request) -> WhiteboardSession:
    return request.app.state.whiteboard


# ------------------------------------------------------------------
# Endpoints
# ------------------------------------------------------------------


@router.post("/explain")
async def explain_topic(body: TopicRequest, request: Request) -> dict:
    """Generate a whiteboard for a topic.

    Returns as soon as the text is ready; section images are generated in
    the background and show up on ``GET /api/explain``.
    """
    topic = body.topic.strip()
    if not topic:
        raise HTTPException(status_code=400, detail="Topic must not be empty.")

    session = _session(request)
    try:
        await session.submit(topic)
    except GenerationError as e:
        logger.warning("Explanation failed for %r: %s", topic, e)
        raise HTTPException(status_code=502, detail=str(e))
    return session.snapshot()


@router.get("/explain")
async def get_whiteboard(request: Request) -> dict:
    """Return the current whiteboard, including any images resolved so far."""
    return _session(request).snapshot()


@router.delete("/explain")
async def reset_whiteboard(request: Request) -> dict:
    session = _session(request)
    session.reset()
    return session.snapshot()


@router.get("/explain/export/{fmt}")
async def export_whiteboard(fmt: ExportFormat, request: Request) -> Response:
    content = _session(request).content
    if content is None:
        raise HTTPException(status_code=404, detail="No whiteboard to export.")
    return await export_response(
        fmt,
        content.title,
        markdown=whiteboard_markdown(content),
        title=content.title,
        introduction=content.introduction,
        blocks=whiteboard_blocks(content),
    )
