from explainboard.recording.audio_utils import float_to_pcm16, pcm_mime_type
from explainboard.recording.capture import AudioCapture

__all__ = ["AudioCapture", "float_to_pcm16", "pcm_mime_type"]
