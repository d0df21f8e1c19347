"""Call providers: an in-memory recorder and Twilio outbound calls."""

import asyncio
import logging
import uuid
from typing import Optional

from twilio.base.exceptions import TwilioException
from twilio.rest import Client as TwilioClient
from twilio.twiml.voice_response import VoiceResponse

from ..exceptions import ProviderError
from .base import CallProvider, CallReceipt, CallRequest


logger = logging.getLogger(__name__)

DEFAULT_VOICE = "Polly.Joanna"
STATUS_CALLBACK_EVENTS = ["completed"]


def build_say_twiml(script: str, voice: str = DEFAULT_VOICE) -> str:
    """TwiML that reads ``script`` aloud and hangs up."""
    response = VoiceResponse()
    response.say(script, voice=voice)
    response.hangup()
    return str(response)


class SimulatedCallProvider(CallProvider):
    """Records call requests instead of dialing.

    Attributes:
        placed: Every request accepted, in order.
    """

    name = "simulated"

    def __init__(self) -> None:
        self.placed: list[CallRequest] = []

    async def place_call(self, request: CallRequest) -> CallReceipt:
        call_id = f"sim-call-{uuid.uuid4().hex[:12]}"
        self.placed.append(request)
        logger.info(
            "Simulated call to=%s callback=%s call_id=%s",
            request.to,
            request.callback_url,
            call_id,
        )
        return CallReceipt(call_id=call_id)


class TwilioCallProvider(CallProvider):
    """Places outbound calls with Twilio, reading the script via TwiML ``<Say>``.

    Attributes:
        from_number: Twilio number calls are placed from.
    """

    name = "twilio"

    def __init__(
        self,
        account_sid: Optional[str] = None,
        auth_token: Optional[str] = None,
        from_number: Optional[str] = None,
        voice: str = DEFAULT_VOICE,
        client: Optional[TwilioClient] = None,
    ) -> None:
        """Initialize the Twilio call provider.

        Raises:
            ValueError: If credentials or the caller number are missing.
        """
        if client is None:
            if not account_sid or not auth_token:
                raise ValueError(
                    "Twilio credentials required. Set TWILIO_ACCOUNT_SID and "
                    "TWILIO_AUTH_TOKEN environment variables or pass them as parameters."
                )
            client = TwilioClient(account_sid, auth_token)
        if not from_number:
            raise ValueError("TWILIO_PHONE_NUMBER is required to place calls")
        self._client = client
        self.from_number = from_number
        self.voice = voice

    async def place_call(self, request: CallRequest) -> CallReceipt:
        twiml = build_say_twiml(request.script, self.voice)
        loop = asyncio.get_event_loop()
        try:
            call = await loop.run_in_executor(
                None,
                lambda: self._client.calls.create(
                    to=request.to,
                    from_=self.from_number,
                    twiml=twiml,
                    status_callback=request.callback_url,
                    status_callback_event=STATUS_CALLBACK_EVENTS,
                    status_callback_method="POST",
                ),
            )
        except TwilioException as e:
            logger.error("Failed to place call to %s: %s", request.to, e)
            raise ProviderError(self.name, f"Call failed: {e}") from e

        logger.info("Call placed: to=%s, sid=%s", request.to, call.sid)
        return CallReceipt(call_id=call.sid)
