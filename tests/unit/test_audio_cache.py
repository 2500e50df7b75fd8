"""Unit tests for the synthesized audio cache."""
from voice_server.services.audio_cache import AudioCache


class Clock:
    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now


class TestAudioCache:
    """Test TTL-bounded audio caching."""

    def test_put_then_get_returns_same_bytes(self):
        cache = AudioCache(ttl=30.0, clock=Clock())
        audio_id = cache.put(b"RIFF....", "audio/wav")

        entry = cache.get(audio_id)

        assert entry is not None
        assert entry.data == b"RIFF...."
        assert entry.content_type == "audio/wav"

    def test_entry_expires_after_ttl(self):
        clock = Clock(0.0)
        cache = AudioCache(ttl=30.0, clock=clock)
        audio_id = cache.put(b"audio")

        clock.now = 29.0
        assert cache.get(audio_id) is not None

        clock.now = 31.0
        assert cache.get(audio_id) is None

    def test_purge_drops_unread_entries(self):
        """Entries expire whether or not anyone fetched them."""
        clock = Clock(0.0)
        cache = AudioCache(ttl=30.0, clock=clock)
        cache.put(b"one")
        cache.put(b"two")
        clock.now = 10.0
        fresh = cache.put(b"three")

        clock.now = 31.0
        assert cache.purge() == 2
        assert len(cache) == 1
        assert cache.get(fresh) is not None

    def test_unknown_id(self):
        assert AudioCache().get("missing") is None

    def test_ids_are_unique(self):
        cache = AudioCache()
        assert cache.put(b"a") != cache.put(b"a")
