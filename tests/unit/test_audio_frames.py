# pylint: disable=missing-module-docstring,missing-function-docstring

import numpy as np
import pytest

from audio.frames import sniff_media_type
from audio.pcm import decode_clip, encode_wav, float32_to_pcm16le, pcm16le_to_float32, to_mono


def test_pcm16_conversion_scale_and_clipping():
    pcm = float32_to_pcm16le(np.array([0.0, 1.5, -1.5], dtype=np.float32))
    out = pcm16le_to_float32(pcm)

    assert out[0] == 0.0
    assert out[1] == pytest.approx(32767 / 32768)
    assert out[2] == pytest.approx(-32767 / 32768)


def test_pcm16_odd_length_drops_dangling_byte():
    assert pcm16le_to_float32(b"\x00\x01\x02").size == 1


def test_to_mono_flattens_device_blocks():
    assert to_mono(np.ones((4, 1), dtype=np.float32)).shape == (4,)
    stereo = np.array([[1.0, 0.0], [0.5, 0.5]], dtype=np.float32)
    assert to_mono(stereo).tolist() == [0.5, 0.5]


def test_encode_wav_produces_pcm16_riff():
    blob = encode_wav(np.zeros(1600, dtype=np.float32), 16000)

    assert blob[:4] == b"RIFF"
    assert blob[8:12] == b"WAVE"
    assert sniff_media_type(blob) == "audio/wav"

    samples, sample_rate_hz = decode_clip(blob)
    assert sample_rate_hz == 16000
    assert samples.shape == (1600,)


def test_decode_clip_rejects_garbage():
    with pytest.raises(RuntimeError):
        decode_clip(b"not audio at all")


@pytest.mark.parametrize(
    "head, media_type",
    [
        (b"OggS\x00\x02", "audio/ogg"),
        (b"fLaC\x00\x00", "audio/flac"),
        (b"ID3\x04\x00", "audio/mpeg"),
        (b"\xff\xfb\x90\x00", "audio/mpeg"),
        (b"\x1a\x45\xdf\xa3\x01", "audio/webm"),
        (b"RIFF\x00\x00\x00\x00AVI ", "application/octet-stream"),
        (b"", "application/octet-stream"),
    ],
)
def test_sniff_media_type(head, media_type):
    assert sniff_media_type(head) == media_type
