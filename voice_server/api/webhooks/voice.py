"""Twilio voice webhook endpoints."""
import logging

from fastapi import APIRouter, Depends, Form, Request
from fastapi.responses import Response

from voice_server.core.dependencies import get_base_url, get_runtime, get_stream_url
from voice_server.core.runtime import VoiceRuntime
from voice_server.services.agent.conversation import TERMINAL_STATUSES
from voice_server.services.call_session.models import room_name_for_call
from voice_server.services.signaling import InboundCall
from voice_server.services.telephony import say_and_hangup_twiml

router = APIRouter()
logger = logging.getLogger(__name__)


def twiml_response(twiml: str) -> Response:
    return Response(content=twiml, media_type="application/xml")


async def _signature_ok(request: Request, runtime: VoiceRuntime) -> bool:
    if not runtime.settings.validate_twilio_signature:
        return True
    form = await request.form()
    url = f"{get_base_url(request)}{request.url.path}"
    return runtime.telephony.validate_request(
        url, dict(form), request.headers.get("X-Twilio-Signature")
    )


@router.post("/voice/incoming")
async def handle_incoming_call(
    request: Request,
    CallSid: str = Form(...),
    From: str = Form(None),
    To: str = Form(None),
    Direction: str = Form(None),
    runtime: VoiceRuntime = Depends(get_runtime),
):
    """
    Handle incoming call from Twilio.

    Answers with TwiML that plays a hold announcement and opens the media
    stream. Failures answer with a spoken apology, never a bare error.
    """
    logger.info(
        f"[INCOMING CALL] Received incoming call webhook - CallSid: {CallSid}, "
        f"From: {From}, To: {To}, Direction: {Direction}, "
        f"Client: {request.client.host if request.client else 'unknown'}"
    )

    if not await _signature_ok(request, runtime):
        logger.warning(f"[INCOMING CALL] Invalid Twilio signature - CallSid: {CallSid}")
        return Response(content="Invalid signature", status_code=403, media_type="text/plain")

    try:
        stream_url = get_stream_url(request)
        twiml = await runtime.signaling.handle_inbound_call(
            InboundCall(call_sid=CallSid, from_number=From, to_number=To, direction=Direction),
            stream_url,
        )
        logger.info(
            f"[INCOMING CALL] Stream document ready - CallSid: {CallSid}, "
            f"Stream: {stream_url}, TwiML length: {len(twiml)} bytes"
        )
        return twiml_response(twiml)

    except Exception as e:
        logger.error(
            f"[INCOMING CALL] Error processing incoming call - CallSid: {CallSid}, "
            f"Error: {type(e).__name__}: {str(e)}",
            exc_info=True,
        )
        return twiml_response(say_and_hangup_twiml(runtime.settings.apology_message))


@router.post("/voice/status")
async def handle_call_status(
    request: Request,
    CallSid: str = Form(...),
    CallStatus: str = Form(...),
    runtime: VoiceRuntime = Depends(get_runtime),
):
    """
    Handle call status updates from Twilio.

    Terminal statuses end the session through the normal teardown path.
    """
    logger.info(
        f"[CALL STATUS] Received status update - CallSid: {CallSid}, "
        f"CallStatus: {CallStatus}, "
        f"Client: {request.client.host if request.client else 'unknown'}"
    )

    try:
        if CallStatus in TERMINAL_STATUSES:
            agent = runtime.registry.get(room_name_for_call(CallSid))
            if agent is not None:
                logger.info(f"[CALL STATUS] Ending session - CallSid: {CallSid}, Reason: {CallStatus}")
                await agent.close(CallStatus)
            else:
                logger.debug(f"[CALL STATUS] No active session - CallSid: {CallSid}")
        else:
            logger.debug(
                f"[CALL STATUS] Status update received but no action needed - "
                f"CallSid: {CallSid}, CallStatus: {CallStatus}"
            )

        return Response(content="OK", media_type="text/plain")

    except Exception as e:
        logger.error(
            f"[CALL STATUS] Error handling call status update - CallSid: {CallSid}, "
            f"CallStatus: {CallStatus}, Error: {type(e).__name__}: {str(e)}",
            exc_info=True,
        )
        # Still return OK to Twilio to avoid retries
        return Response(content="OK", media_type="text/plain")
