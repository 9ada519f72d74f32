"""
Audio capture: PCM16 encoding and the sounddevice-backed capture lifecycle.

sounddevice is replaced by an in-memory module, so no PortAudio or microphone is needed.
Run: python3 -m unittest tests.test_audio -v
"""

import asyncio
import sys
import types
import unittest
from unittest.mock import MagicMock, patch

import numpy as np

from explainboard.errors import CaptureUnavailable
from explainboard.recording.audio_utils import float_to_pcm16, pcm_mime_type
from explainboard.recording.capture import AudioCapture
from tests.fakes import settle


def fake_sounddevice(fail: bool = False) -> types.ModuleType:
    module = types.ModuleType("sounddevice")

    class PortAudioError(Exception):
        pass

    module.PortAudioError = PortAudioError
    if fail:
        module.InputStream = MagicMock(side_effect=PortAudioError("Permission denied"))
    else:
        module.InputStream = MagicMock()
    return module


class TestFloatToPcm16(unittest.TestCase):

    def decode(self, data: bytes) -> list[int]:
        return np.frombuffer(data, dtype="<i2").tolist()

    def test_scaling(self):
        samples = np.array([0.0, 0.5, -0.5, -1.0], dtype=np.float32)
        self.assertEqual(self.decode(float_to_pcm16(samples)), [0, 16384, -16384, -32768])

    def test_full_scale_is_clipped(self):
        samples = np.array([1.0, 1.5, -1.5], dtype=np.float32)
        self.assertEqual(self.decode(float_to_pcm16(samples)), [32767, 32767, -32768])

    def test_truncates_toward_zero(self):
        samples = np.array([0.00001, -0.00001], dtype=np.float32)
        self.assertEqual(self.decode(float_to_pcm16(samples)), [0, 0])

    def test_little_endian_two_bytes_per_sample(self):
        data = float_to_pcm16(np.array([0.5], dtype=np.float32))
        self.assertEqual(data, b"\x00\x40")
        self.assertEqual(len(float_to_pcm16(np.zeros(4096, dtype=np.float32))), 8192)

    def test_mime_type(self):
        self.assertEqual(pcm_mime_type(16000), "audio/pcm;rate=16000")


class TestAudioCapture(unittest.IsolatedAsyncioTestCase):

    async def test_device_failure_raises_capture_unavailable(self):
        sd = fake_sounddevice(fail=True)
        capture = AudioCapture(sample_rate=16000, frame_size=4096)
        with patch.dict(sys.modules, {"sounddevice": sd}):
            with self.assertRaises(CaptureUnavailable) as ctx:
                capture.open()
        self.assertIn("Could not access microphone", str(ctx.exception))
        capture.close()

    async def test_open_configures_mono_float_stream(self):
        sd = fake_sounddevice()
        capture = AudioCapture(sample_rate=16000, frame_size=4096)
        with patch.dict(sys.modules, {"sounddevice": sd}):
            capture.open()

        kwargs = sd.InputStream.call_args.kwargs
        self.assertEqual(kwargs["samplerate"], 16000)
        self.assertEqual(kwargs["channels"], 1)
        self.assertEqual(kwargs["dtype"], "float32")
        self.assertEqual(kwargs["blocksize"], 4096)
        sd.InputStream.return_value.start.assert_not_called()

    async def test_start_without_open_fails(self):
        capture = AudioCapture()
        with self.assertRaises(CaptureUnavailable):
            capture.start(asyncio.get_running_loop())

    async def test_callback_frames_reach_consumer(self):
        sd = fake_sounddevice()
        capture = AudioCapture(sample_rate=16000, frame_size=4)
        with patch.dict(sys.modules, {"sounddevice": sd}):
            capture.open()
        capture.start(asyncio.get_running_loop())
        sd.InputStream.return_value.start.assert_called_once()

        block = np.array([[0.5], [0.0], [-0.5], [1.0]], dtype=np.float32)
        capture._audio_callback(block, 4, None, None)
        await settle()

        frames = capture.frames()
        frame = await asyncio.wait_for(frames.__anext__(), timeout=1)
        self.assertEqual(np.frombuffer(frame, dtype="<i2").tolist(), [16384, 0, -16384, 32767])
        await frames.aclose()

    async def test_close_is_idempotent(self):
        sd = fake_sounddevice()
        capture = AudioCapture()
        with patch.dict(sys.modules, {"sounddevice": sd}):
            capture.open()
        capture.start(asyncio.get_running_loop())

        capture.close()
        capture.close()

        stream = sd.InputStream.return_value
        stream.stop.assert_called_once()
        stream.close.assert_called_once()
        self.assertFalse(capture.is_running)

    async def test_callback_after_close_is_dropped(self):
        sd = fake_sounddevice()
        capture = AudioCapture(frame_size=2)
        with patch.dict(sys.modules, {"sounddevice": sd}):
            capture.open()
        capture.start(asyncio.get_running_loop())
        capture.close()

        capture._audio_callback(np.zeros((2, 1), dtype=np.float32), 2, None, None)
        await settle()
        self.assertTrue(capture._queue.empty())


if __name__ == "__main__":
    unittest.main()
