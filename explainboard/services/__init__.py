from explainboard.services.enrichment import LiveBoard, SegmentEnrichmentPipeline
from explainboard.services.explainer import ExplanationService, WhiteboardSession
from explainboard.services.segmenter import TranscriptSegmenter

__all__ = [
    "ExplanationService",
    "LiveBoard",
    "SegmentEnrichmentPipeline",
    "TranscriptSegmenter",
    "WhiteboardSession",
]
