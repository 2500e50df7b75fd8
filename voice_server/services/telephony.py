"""Twilio control: TwiML documents, live call updates and request validation."""
import asyncio
import logging
from typing import Dict, Optional

from twilio.base.exceptions import TwilioException
from twilio.request_validator import RequestValidator
from twilio.rest import Client

from voice_server.core.config import Settings

logger = logging.getLogger(__name__)

SAY_VOICE = "Polly.Joanna-Neural"


def escape_xml(text: str) -> str:
    """Escape XML special characters for TwiML."""
    return (
        text.replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
        .replace("'", "&apos;")
    )


def stream_twiml(stream_url: str, session_id: str, announcement: Optional[str] = None) -> str:
    """
    TwiML that plays a hold announcement and opens a bidirectional media stream.

    Args:
        stream_url: wss:// URL of the media stream endpoint
        session_id: Session the stream belongs to, passed back in the start event
        announcement: Text to speak before connecting

    Returns:
        TwiML XML string
    """
    say = ""
    if announcement:
        say = f'\n    <Say voice="{SAY_VOICE}">{escape_xml(announcement)}</Say>'
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<Response>{say}
    <Connect>
        <Stream url="{escape_xml(stream_url)}">
            <Parameter name="sessionId" value="{escape_xml(session_id)}"/>
        </Stream>
    </Connect>
</Response>"""


def say_and_hangup_twiml(text: str) -> str:
    """TwiML that speaks ``text`` and ends the call."""
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<Response>
    <Say voice="{SAY_VOICE}">{escape_xml(text)}</Say>
    <Hangup/>
</Response>"""


class TelephonyControl:
    """Twilio REST operations on live calls."""

    def __init__(self, settings: Settings, client: Optional[Client] = None):
        self.settings = settings
        self._client = client
        self._validator = (
            RequestValidator(settings.twilio_auth_token) if settings.twilio_auth_token else None
        )

    @property
    def configured(self) -> bool:
        return self._client is not None or bool(
            self.settings.twilio_account_sid and self.settings.twilio_auth_token
        )

    @property
    def client(self) -> Client:
        if self._client is None:
            self._client = Client(self.settings.twilio_account_sid, self.settings.twilio_auth_token)
        return self._client

    async def say_and_hangup(self, call_sid: str, text: str) -> bool:
        """
        Replace a live call's instructions so it speaks ``text`` and hangs up.

        Returns:
            True if Twilio accepted the update
        """
        return await self._update_call(
            call_sid, say_and_hangup_twiml(text), "Spoke failure message and hung up"
        )

    async def say_and_reconnect(
        self, call_sid: str, text: str, stream_url: str, session_id: str
    ) -> bool:
        """
        Have the network speak ``text``, then reopen the media stream.

        Twilio stops the current stream while it speaks. The new stream
        carries the same ``sessionId`` and reattaches to the live session.

        Returns:
            True if Twilio accepted the update
        """
        return await self._update_call(
            call_sid, stream_twiml(stream_url, session_id, text), "Spoke message, reopening stream"
        )

    async def _update_call(self, call_sid: str, twiml: str, action: str) -> bool:
        if not self.configured:
            logger.warning(f"[TELEPHONY] Twilio not configured, cannot update call {call_sid}")
            return False
        try:
            # The Twilio client is synchronous
            await asyncio.to_thread(lambda: self.client.calls(call_sid).update(twiml=twiml))
            logger.info(f"[TELEPHONY] {action} - CallSid: {call_sid}")
            return True
        except TwilioException as e:
            logger.error(f"[TELEPHONY] Failed to update call {call_sid}: {str(e)}")
            return False

    def validate_request(self, url: str, params: Dict[str, str], signature: Optional[str]) -> bool:
        """Check the ``X-Twilio-Signature`` of a webhook request."""
        if not self.settings.validate_twilio_signature:
            return True
        if self._validator is None or not signature:
            return False
        return self._validator.validate(url, params, signature)
