"""Unit tests for the μ-law codec and framing helpers."""
import struct

import pytest

from voice_server.audio.codec import (
    MULAW_DECODE_TABLE,
    base64_decode,
    base64_encode,
    chunk_frames,
    frame_size,
    mulaw_to_pcm16,
    pcm16_to_mulaw,
    pcm16_to_wav,
    pcm_duration,
    resample_pcm16,
    wav_to_pcm16,
)


def pcm(*samples):
    return struct.pack(f"<{len(samples)}h", *samples)


class TestMulawDecode:
    """Test μ-law to PCM expansion."""

    def test_table_is_complete(self):
        """All 256 code words have an entry."""
        assert len(MULAW_DECODE_TABLE) == 256

    def test_known_values(self):
        """Standard G.711 reference points."""
        assert MULAW_DECODE_TABLE[0xFF] == 0
        assert MULAW_DECODE_TABLE[0x7F] == 0
        assert MULAW_DECODE_TABLE[0x80] == 32124
        assert MULAW_DECODE_TABLE[0x00] == -32124
        assert MULAW_DECODE_TABLE[0xFE] == 8
        assert MULAW_DECODE_TABLE[0x7E] == -8

    def test_decode_bytes(self):
        """Each μ-law byte becomes one little-endian sample."""
        assert mulaw_to_pcm16(bytes([0xFF, 0x80, 0x00])) == pcm(0, 32124, -32124)

    def test_empty_input(self):
        """Zero-length frames decode to nothing without error."""
        assert mulaw_to_pcm16(b"") == b""

    def test_table_is_monotonic_per_sign(self):
        """Positive code words decrease in magnitude as the byte value rises."""
        positive = [MULAW_DECODE_TABLE[b] for b in range(0x80, 0x100)]
        assert positive == sorted(positive, reverse=True)
        negative = [MULAW_DECODE_TABLE[b] for b in range(0x00, 0x80)]
        assert negative == sorted(negative)


class TestMulawEncode:
    """Test PCM to μ-law compression."""

    def test_known_values(self):
        assert pcm16_to_mulaw(pcm(0)) == bytes([0xFF])
        assert pcm16_to_mulaw(pcm(-1)) == bytes([0x7F])
        assert pcm16_to_mulaw(pcm(32767)) == bytes([0x80])
        assert pcm16_to_mulaw(pcm(-32768)) == bytes([0x00])

    def test_every_code_word_survives_reencoding(self):
        """Encoding a decoded value gives back the original byte (negative zero aside)."""
        for byte in range(256):
            if byte == 0x7F:
                continue
            assert pcm16_to_mulaw(mulaw_to_pcm16(bytes([byte]))) == bytes([byte])

    def test_odd_trailing_byte_dropped(self):
        assert pcm16_to_mulaw(pcm(0, 0) + b"\x01") == bytes([0xFF, 0xFF])

    def test_empty_input(self):
        assert pcm16_to_mulaw(b"") == b""


class TestBase64:
    def test_encode_decode(self):
        assert base64_encode(b"\xff\x00") == "/wA="
        assert base64_decode("/wA=") == b"\xff\x00"

    def test_invalid_payload_rejected(self):
        with pytest.raises(ValueError):
            base64_decode("not base64!!")


class TestFraming:
    """Test frame chunking for outbound playback."""

    def test_frame_size(self):
        """20 ms of PCM16 at 8 kHz is 160 samples."""
        assert frame_size(20) == 320
        assert frame_size(20, sample_width=1) == 160

    def test_chunks_keep_order_and_final_partial_frame(self):
        data = bytes(range(256)) * 4
        frames = list(chunk_frames(data, 320))
        assert [len(f) for f in frames] == [320, 320, 320, 64]
        assert b"".join(frames) == data

    def test_empty_data_yields_nothing(self):
        assert list(chunk_frames(b"", 320)) == []

    def test_invalid_size(self):
        with pytest.raises(ValueError):
            list(chunk_frames(b"abc", 0))

    def test_duration(self):
        assert pcm_duration(b"\x00" * 16000) == pytest.approx(1.0)


class TestResampleAndWav:
    def test_resample_24k_to_8k(self):
        """A steady level survives downsampling and the length follows the rate ratio."""
        data = pcm(*([1000] * 2400))
        out = resample_pcm16(data, 24000, 8000)
        samples = struct.unpack(f"<{len(out) // 2}h", out)
        assert len(samples) == 800
        for sample in samples[100:700]:
            assert abs(sample - 1000) <= 5

    def test_resample_8k_to_16k_doubles_length(self):
        data = pcm(*([-2000] * 800))
        out = resample_pcm16(data, 8000, 16000)
        samples = struct.unpack(f"<{len(out) // 2}h", out)
        assert len(samples) == 1600
        assert abs(samples[800] + 2000) <= 5

    def test_resample_too_short_for_one_sample(self):
        assert resample_pcm16(pcm(7), 24000, 8000) == b""

    def test_resample_same_rate_is_identity(self):
        data = pcm(1, 2, 3)
        assert resample_pcm16(data, 8000, 8000) == data

    def test_wav_round_trip(self):
        data = pcm(1, -1, 300, -300)
        wav = pcm16_to_wav(data)
        assert wav[:4] == b"RIFF"
        assert wav_to_pcm16(wav) == (data, 8000)
