"""PCM conversion and container utilities."""
from __future__ import annotations

import io

import numpy as np
import soundfile as sf


def pcm16le_to_float32(pcm_bytes: bytes) -> np.ndarray:
    """
    Convert PCM16 little-endian mono bytes to float32 in [-1.0, 1.0).

    No resampling. No channel mixing.
    """
    if len(pcm_bytes) % 2 != 0:
        # Truncated sample; drop the dangling byte.
        pcm_bytes = pcm_bytes[: len(pcm_bytes) - 1]

    audio_i16 = np.frombuffer(pcm_bytes, dtype="<i2")  # little-endian int16
    audio_f32 = audio_i16.astype(np.float32) / 32768.0
    return audio_f32


def float32_to_pcm16le(samples: np.ndarray) -> bytes:
    """Convert float samples to PCM16 little-endian bytes, clipping to [-1, 1]."""
    clipped = np.clip(np.asarray(samples, dtype=np.float32), -1.0, 1.0)
    return (clipped * 32767.0).astype("<i2").tobytes()


def to_mono(samples: np.ndarray) -> np.ndarray:
    """
    Flatten a device block to a 1D float32 array.

    sounddevice delivers (frames, channels) even for mono streams;
    multi-channel input is averaged.
    """
    arr = np.asarray(samples, dtype=np.float32)
    if arr.ndim == 1:
        return arr
    if arr.shape[1] == 1:
        return arr[:, 0]
    return arr.mean(axis=1)


def encode_wav(samples: np.ndarray, sample_rate_hz: int) -> bytes:
    """Encode mono float samples as a PCM16 WAV blob."""
    buf = io.BytesIO()
    sf.write(buf, to_mono(samples), sample_rate_hz, format="WAV", subtype="PCM_16")
    return buf.getvalue()


def decode_clip(payload: bytes) -> tuple[np.ndarray, int]:
    """
    Decode a self-describing audio clip (WAV/OGG/FLAC/MP3 as supported by
    libsndfile) into float32 samples.

    Returns:
        (samples, sample_rate_hz); samples are (frames,) or (frames, channels).

    Raises:
        sf.LibsndfileError / RuntimeError for undecodable payloads.
    """
    data, sample_rate = sf.read(io.BytesIO(payload), dtype="float32", always_2d=False)
    return data, int(sample_rate)
