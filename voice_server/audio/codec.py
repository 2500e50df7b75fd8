"""G.711 μ-law codec and framing helpers for telephony audio.

Twilio Media Streams carry 8 kHz mono μ-law; everything inside the service
works on 16-bit little-endian linear PCM at the same rate.
"""
import base64
import io
import wave
from typing import Iterator, Tuple

import numpy as np
import soxr

TELEPHONY_SAMPLE_RATE = 8000
PCM_SAMPLE_WIDTH = 2

MULAW_BIAS = 0x84
MULAW_CLIP = 32635


def _create_mulaw_decode_table() -> np.ndarray:
    """Expand all 256 μ-law code words to signed 16-bit samples (ITU-T G.711)."""
    codes = ~np.arange(256, dtype=np.int32) & 0xFF
    sign = codes & 0x80
    exponent = (codes >> 4) & 0x07
    mantissa = codes & 0x0F
    magnitude = (((mantissa << 3) + MULAW_BIAS) << exponent) - MULAW_BIAS
    return np.where(sign, -magnitude, magnitude).astype(np.int16)


def _create_mulaw_encode_table() -> np.ndarray:
    """Compress every signed 16-bit sample to a μ-law byte, indexed by sample + 32768."""
    samples = np.arange(-32768, 32768, dtype=np.int32)
    sign = np.where(samples < 0, 0x80, 0)
    magnitude = np.minimum(np.abs(samples), MULAW_CLIP) + MULAW_BIAS
    # Position of the highest set bit above the 7 low bits; magnitude >> 7 is never 0
    exponent = np.minimum(np.log2(magnitude >> 7).astype(np.int32), 7)
    mantissa = (magnitude >> (exponent + 3)) & 0x0F
    return (~(sign | (exponent << 4) | mantissa) & 0xFF).astype(np.uint8)


MULAW_DECODE_TABLE = _create_mulaw_decode_table()
_MULAW_ENCODE_TABLE = _create_mulaw_encode_table()


def mulaw_to_pcm16(data: bytes) -> bytes:
    """Decode μ-law bytes to 16-bit little-endian PCM."""
    if not data:
        return b""
    codes = np.frombuffer(data, dtype=np.uint8)
    return MULAW_DECODE_TABLE[codes].astype("<i2").tobytes()


def pcm16_to_mulaw(data: bytes) -> bytes:
    """Encode 16-bit little-endian PCM to μ-law. A trailing odd byte is dropped."""
    count = len(data) // PCM_SAMPLE_WIDTH
    if count == 0:
        return b""
    samples = np.frombuffer(data[: count * PCM_SAMPLE_WIDTH], dtype="<i2")
    return _MULAW_ENCODE_TABLE[samples.astype(np.int32) + 32768].tobytes()


def base64_decode(data: str) -> bytes:
    """Decode a base64 media payload."""
    return base64.b64decode(data, validate=True)


def base64_encode(data: bytes) -> str:
    """Encode audio bytes as a base64 media payload."""
    return base64.b64encode(data).decode("ascii")


def frame_size(
    frame_ms: int,
    sample_rate: int = TELEPHONY_SAMPLE_RATE,
    sample_width: int = PCM_SAMPLE_WIDTH,
) -> int:
    """Number of bytes in a frame of ``frame_ms`` milliseconds."""
    return sample_rate * frame_ms // 1000 * sample_width


def chunk_frames(data: bytes, size: int) -> Iterator[bytes]:
    """Split ``data`` into ordered frames of ``size`` bytes; the last one may be short."""
    if size <= 0:
        raise ValueError("frame size must be positive")
    for start in range(0, len(data), size):
        yield data[start : start + size]


def pcm_duration(data: bytes, sample_rate: int = TELEPHONY_SAMPLE_RATE) -> float:
    """Playback duration of 16-bit mono PCM in seconds."""
    return len(data) / (sample_rate * PCM_SAMPLE_WIDTH)


def resample_pcm16(data: bytes, from_rate: int, to_rate: int) -> bytes:
    """
    Resample 16-bit mono PCM with soxr.

    Args:
        data: Raw PCM bytes
        from_rate: Source sample rate
        to_rate: Target sample rate

    Returns:
        Resampled PCM bytes, exactly ``count * to_rate // from_rate`` samples long
    """
    if from_rate == to_rate or not data:
        return data

    count = len(data) // PCM_SAMPLE_WIDTH
    out_count = count * to_rate // from_rate
    if out_count == 0:
        return b""

    samples = np.frombuffer(data[: count * PCM_SAMPLE_WIDTH], dtype="<i2").astype(np.float32)
    resampled = soxr.resample(samples, from_rate, to_rate, quality=soxr.HQ)

    # soxr may be off by a sample at the tail
    if len(resampled) < out_count:
        resampled = np.pad(
            resampled,
            (0, out_count - len(resampled)),
            mode="edge" if len(resampled) else "constant",
        )
    resampled = resampled[:out_count]

    return np.clip(np.round(resampled), -32768, 32767).astype("<i2").tobytes()


def pcm16_to_wav(data: bytes, sample_rate: int = TELEPHONY_SAMPLE_RATE) -> bytes:
    """Wrap mono 16-bit PCM in a WAV container."""
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wav:
        wav.setnchannels(1)
        wav.setsampwidth(PCM_SAMPLE_WIDTH)
        wav.setframerate(sample_rate)
        wav.writeframes(data)
    return buffer.getvalue()


def wav_to_pcm16(data: bytes) -> Tuple[bytes, int]:
    """Extract PCM frames and the sample rate from a mono 16-bit WAV payload."""
    with wave.open(io.BytesIO(data), "rb") as wav:
        if wav.getsampwidth() != PCM_SAMPLE_WIDTH or wav.getnchannels() != 1:
            raise ValueError("expected mono 16-bit WAV audio")
        return wav.readframes(wav.getnframes()), wav.getframerate()
