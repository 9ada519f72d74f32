import itertools
import time
from dataclasses import dataclass

_id_counter = itertools.count()


def new_segment_id() -> str:
    """Time-based id with a process-wide counter so same-millisecond ids differ."""
    return f"{int(time.time() * 1000)}-{next(_id_counter)}"


@dataclass(frozen=True)
class Section:
    heading: str
    explanation: str  # markdown
    image_prompt: str
    image_url: str | None = None


@dataclass(frozen=True)
class WhiteboardContent:
    title: str
    introduction: str
    sections: tuple[Section, ...]


@dataclass(frozen=True)
class LiveSegmentData:
    key_idea: str
    detailed_explanation: str  # markdown
    image_prompt: str

    def digest(self) -> str:
        """One-line summary appended to the session context."""
        explanation = " ".join(self.detailed_explanation.split())
        return f"- {self.key_idea}: {explanation}"


@dataclass(frozen=True)
class LiveSegment(LiveSegmentData):
    id: str
    image_url: str | None = None
