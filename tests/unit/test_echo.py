"""Unit tests for echo suppression."""
from voice_server.services.agent.echo import EchoSuppressor, normalize


class TestNormalize:
    def test_strips_case_and_punctuation(self):
        assert normalize("Thank you for calling, Acme!  How can I help?") == (
            "thank you for calling acme how can i help"
        )


class TestEchoMatching:
    """Test the individual match rules."""

    def setup_method(self):
        self.echo = EchoSuppressor()
        self.echo.remember("Thank you for calling Acme Dental. How can I help?", now=0.0)

    def test_exact_match(self):
        assert self.echo.matches("Thank you for calling Acme Dental. How can I help?")

    def test_substring_of_own_speech(self):
        assert self.echo.matches("thank you for calling")

    def test_own_speech_inside_transcript(self):
        echo = EchoSuppressor()
        echo.remember("Goodbye.", now=0.0)
        assert echo.matches("okay goodbye then")

    def test_trailing_words_overlap(self):
        assert self.echo.matches("yeah so how can I help")

    def test_generic_phrase(self):
        echo = EchoSuppressor()
        echo.remember("Your appointment is at noon.", now=0.0)
        assert echo.matches("is there anything else")

    def test_word_boundaries_respected(self):
        echo = EchoSuppressor()
        echo.remember("I know.", now=0.0)
        assert not echo.matches("no")

    def test_real_caller_speech(self):
        assert not self.echo.matches("I need to book a cleaning next Tuesday")

    def test_only_recent_utterances_kept(self):
        echo = EchoSuppressor(recent=3)
        for text in ["first reply here", "second reply here", "third answer", "fourth answer"]:
            echo.remember(text, now=0.0)
        assert "first reply here" not in echo.recent
        assert len(echo.recent) == 3


class TestEchoWindow:
    """Test that only audio captured during the window is checked."""

    def test_inside_window_discarded(self):
        echo = EchoSuppressor()
        echo.remember("Thank you for calling Acme.", now=10.0)
        echo.close_window_at(14.0)
        assert echo.is_echo("thank you for calling", captured_at=12.0)

    def test_window_open_while_speaking(self):
        echo = EchoSuppressor()
        echo.remember("Thank you for calling Acme.", now=10.0)
        assert echo.in_window(500.0)

    def test_after_window_accepted(self):
        echo = EchoSuppressor()
        echo.remember("Thank you for calling Acme.", now=10.0)
        echo.close_window_at(14.0)
        assert not echo.is_echo("thank you for calling", captured_at=14.5)

    def test_before_any_speech(self):
        assert not EchoSuppressor().is_echo("how can i help you", captured_at=1.0)

    def test_unknown_capture_time(self):
        echo = EchoSuppressor()
        echo.remember("Hello there.", now=0.0)
        assert not echo.is_echo("hello there", captured_at=None)
