"""
Segment enrichment: immediate publication, image patching by id, failure isolation, staleness.

Run: python3 -m unittest tests.test_enrichment -v
"""

import asyncio
import unittest

from explainboard.errors import ImageGenerationFailure, MalformedModelOutput
from explainboard.models import LiveSegment
from explainboard.services.enrichment import LiveBoard, SegmentEnrichmentPipeline
from tests.fakes import FakeGemini, FakeGroq, segment_payload, settle


class TestLiveBoard(unittest.TestCase):

    def segment(self, seg_id: str) -> LiveSegment:
        return LiveSegment("idea", "text", "prompt", id=seg_id)

    def test_stale_generation_is_ignored(self):
        board = LiveBoard()
        board.reset(2)
        self.assertFalse(board.append(1, self.segment("a")))
        self.assertEqual(board.segments, ())

    def test_patch_unknown_id_is_noop(self):
        board = LiveBoard()
        board.reset(1)
        board.append(1, self.segment("a"))
        self.assertFalse(board.patch_image(1, "missing", "data:image/png;base64,x"))
        self.assertIsNone(board.segments[0].image_url)

    def test_events_published(self):
        events = []
        board = LiveBoard()
        board.subscribe(events.append)
        board.reset(1)
        board.append(1, self.segment("a"))
        board.patch_image(1, "a", "data:image/png;base64,x")
        self.assertEqual(
            [e["type"] for e in events],
            ["segments_cleared", "segment_added", "segment_updated"],
        )
        self.assertEqual(events[2]["segment"]["image_url"], "data:image/png;base64,x")


class TestSegmentEnrichmentPipeline(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self):
        self.groq = FakeGroq()
        self.gemini = FakeGemini()
        self.pipeline = SegmentEnrichmentPipeline(self.groq, self.gemini)
        self.pipeline.reset(1)

    async def asyncTearDown(self):
        await self.pipeline.aclose()

    async def test_segment_published_before_image(self):
        self.groq.responses = [segment_payload("Gravity", prompt="apple")]
        self.gemini.gates["apple"] = asyncio.Event()

        segment = await self.pipeline.enrich("newton discovered gravity", "", 1)

        self.assertEqual(self.pipeline.board.segments, (segment,))
        self.assertIsNone(segment.image_url)

        self.gemini.gates["apple"].set()
        await self.pipeline.wait_for_images()
        self.assertEqual(
            self.pipeline.board.segments[0].image_url, "data:image/png;base64,apple"
        )

    async def test_image_patched_by_id_when_not_last(self):
        self.groq.responses = [
            segment_payload("First", prompt="slow"),
            segment_payload("Second", prompt="fast"),
        ]
        self.gemini.gates["slow"] = asyncio.Event()

        first = await self.pipeline.enrich("first chunk of transcript", "", 1)
        await self.pipeline.enrich("second chunk of transcript", "", 1)
        await settle()
        self.assertIsNotNone(self.pipeline.board.segments[1].image_url)
        self.assertIsNone(self.pipeline.board.segments[0].image_url)

        self.gemini.gates["slow"].set()
        await self.pipeline.wait_for_images()
        segments = self.pipeline.board.segments
        self.assertEqual(segments[0].id, first.id)
        self.assertEqual(segments[0].image_url, "data:image/png;base64,slow")
        self.assertEqual([s.key_idea for s in segments], ["First", "Second"])

    async def test_image_failure_only_affects_its_segment(self):
        self.groq.responses = [
            segment_payload("A", prompt="a"),
            segment_payload("B", prompt="b"),
            segment_payload("C", prompt="c"),
        ]
        self.gemini.images["b"] = ImageGenerationFailure("no image data")

        for chunk in ("chunk one of speech", "chunk two of speech", "chunk three of speech"):
            await self.pipeline.enrich(chunk, "", 1)
        await self.pipeline.wait_for_images()

        urls = [s.image_url for s in self.pipeline.board.segments]
        self.assertEqual(
            urls, ["data:image/png;base64,a", None, "data:image/png;base64,c"]
        )

    async def test_malformed_output_publishes_nothing(self):
        self.groq.responses = [{"keyIdea": "Only a heading"}]
        with self.assertRaises(MalformedModelOutput):
            await self.pipeline.enrich("some transcript text here", "", 1)
        self.assertEqual(self.pipeline.board.segments, ())
        self.assertEqual(self.gemini.image_calls, [])

    async def test_results_of_superseded_session_are_dropped(self):
        self.groq.responses = [segment_payload("Old", prompt="old")]
        self.gemini.gates["old"] = asyncio.Event()
        await self.pipeline.enrich("old session transcript", "", 1)

        self.pipeline.reset(2)
        self.gemini.gates["old"].set()
        await self.pipeline.wait_for_images()

        self.assertEqual(self.pipeline.board.segments, ())

    async def test_stale_segment_requests_no_image(self):
        self.groq.responses = [segment_payload("Old")]
        self.pipeline.reset(2)

        await self.pipeline.enrich("transcript from the old session", "", 1)
        await self.pipeline.wait_for_images()

        self.assertEqual(self.pipeline.board.segments, ())
        self.assertEqual(self.gemini.image_calls, [])

    async def test_segment_ids_are_unique(self):
        self.groq.responses = [segment_payload(f"Idea {i}") for i in range(20)]
        for i in range(20):
            await self.pipeline.enrich(f"transcript chunk number {i}", "", 1)
        ids = [s.id for s in self.pipeline.board.segments]
        self.assertEqual(len(set(ids)), 20)


if __name__ == "__main__":
    unittest.main()
