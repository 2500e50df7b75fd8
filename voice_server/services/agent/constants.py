"""Constants for turn-taking and echo suppression."""

# Phrases an assistant says so often that hearing them during the echo
# window almost always means the line picked up our own playback
GENERIC_ASSISTANT_PHRASES = [
    "how can i help you",
    "how can i assist you",
    "how can we help you",
    "how can we assist you",
    "how may i help you",
    "how may i assist you",
    "we appreciate your",
    "we are here to assist",
    "is there anything else",
    "thank you for your",
    "let me know if",
    "how can i be of",
    "i'm here to help",
    "we're here to help",
]

# How many recent assistant utterances the echo check compares against
ECHO_RECENT_UTTERANCES = 3

# Trailing word count used for the overlap check
ECHO_TRAILING_WORDS = 3

# Utterance outcomes of a processing pass
OUTCOME_REPLY = "reply"
OUTCOME_EMPTY = "empty"
OUTCOME_ECHO = "echo"
OUTCOME_FAILED = "failed"
# Synthesis failed; the telephony network speaks the text instead
OUTCOME_UNVOICED = "unvoiced"

# Close reasons
REASON_HANGUP = "hangup"
REASON_STOP = "stop"
REASON_TRANSPORT = "transport_error"
REASON_ERROR = "error"
