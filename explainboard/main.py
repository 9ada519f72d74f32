import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from explainboard.clients import GeminiClient, GroqClient
from explainboard.config import settings
from explainboard.recording.controller import LiveSessionController
from explainboard.routes import explain, live
from explainboard.services import ExplanationService, SegmentEnrichmentPipeline, WhiteboardSession


def configure_logging() -> None:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("websockets").setLevel(logging.WARNING)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the shared API clients once and hang the two boards off app.state.

    On shutdown the live session is stopped and pending image requests are
    cancelled.
    """
    configure_logging()
    groq = GroqClient()
    gemini = GeminiClient()

    whiteboard = WhiteboardSession(ExplanationService(groq, gemini))
    pipeline = SegmentEnrichmentPipeline(groq, gemini)
    controller = LiveSessionController(gemini, pipeline)
    controller.on_event(live.broadcast)

    app.state.whiteboard = whiteboard
    app.state.live = controller
    yield

    await controller.aclose()
    await pipeline.aclose()
    await whiteboard.aclose()


app = FastAPI(
    title="explainboard",
    description="Illustrated whiteboards from a topic or a live spoken lecture",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(explain.router)
app.include_router(live.router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("explainboard.main:app", host=settings.host, port=settings.port)
