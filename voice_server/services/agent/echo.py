"""Echo suppression for the agent's own playback."""
import logging
import re
from collections import deque
from typing import Deque, List, Optional

from voice_server.services.agent.constants import (
    ECHO_RECENT_UTTERANCES,
    ECHO_TRAILING_WORDS,
    GENERIC_ASSISTANT_PHRASES,
)

logger = logging.getLogger(__name__)

_PUNCTUATION = re.compile(r"[^\w\s']")


def normalize(text: str) -> str:
    """Lowercase, strip punctuation and collapse whitespace."""
    return " ".join(_PUNCTUATION.sub(" ", text.lower()).split())


class EchoSuppressor:
    """
    Detects transcripts that are the agent hearing itself.

    The window opens when the agent starts speaking and closes when the
    post-playback cooldown ends. Only audio captured inside the window is
    checked.
    """

    def __init__(
        self,
        recent: int = ECHO_RECENT_UTTERANCES,
        trailing_words: int = ECHO_TRAILING_WORDS,
        generic_phrases: Optional[List[str]] = None,
    ):
        self.trailing_words = trailing_words
        self.generic_phrases = (
            generic_phrases if generic_phrases is not None else GENERIC_ASSISTANT_PHRASES
        )
        self._recent: Deque[str] = deque(maxlen=recent)
        self.window_start: Optional[float] = None
        self.window_end: Optional[float] = None

    def remember(self, text: str, now: float) -> None:
        """Record an utterance the agent is about to speak and open the window."""
        normalized = normalize(text)
        if normalized:
            self._recent.append(normalized)
        self.window_start = now
        self.window_end = None

    def close_window_at(self, end: float) -> None:
        """Set the moment the window closes (end of the cooldown)."""
        self.window_end = end

    def in_window(self, at: float) -> bool:
        if self.window_start is None or at < self.window_start:
            return False
        return self.window_end is None or at < self.window_end

    @property
    def recent(self) -> List[str]:
        return list(self._recent)

    def matches(self, transcript: str) -> bool:
        """Whether ``transcript`` looks like one of the recent utterances."""
        heard = normalize(transcript)
        if not heard:
            return False

        heard_words = heard.split()
        for spoken in self._recent:
            if heard == spoken:
                return True
            # Containment on word boundaries so "no" does not match "know"
            if f" {heard} " in f" {spoken} " or f" {spoken} " in f" {heard} ":
                return True
            spoken_words = spoken.split()
            n = self.trailing_words
            if len(spoken_words) >= n and len(heard_words) >= n:
                tail = spoken_words[-n:]
                if any(
                    heard_words[i : i + n] == tail for i in range(len(heard_words) - n + 1)
                ):
                    return True

        return any(phrase in heard for phrase in self.generic_phrases)

    def is_echo(self, transcript: str, captured_at: Optional[float]) -> bool:
        """Whether audio captured at ``captured_at`` that produced ``transcript`` is echo."""
        if captured_at is None or not self.in_window(captured_at):
            return False
        if self.matches(transcript):
            logger.info(f"[ECHO] Discarding own speech: '{transcript}'")
            return True
        return False
