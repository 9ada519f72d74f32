import numpy as np

INT16_SCALE = 32768.0


def float_to_pcm16(samples: np.ndarray) -> bytes:
    """Encode float samples in [-1.0, 1.0] as little-endian 16-bit PCM.

    Samples are scaled by 32768, clipped to the int16 range and truncated
    toward zero (no dithering).
    """
    scaled = np.asarray(samples, dtype=np.float32).reshape(-1) * INT16_SCALE
    np.clip(scaled, -32768.0, 32767.0, out=scaled)
    return scaled.astype("<i2").tobytes()


def pcm_mime_type(sample_rate: int) -> str:
    return f"audio/pcm;rate={sample_rate}"
