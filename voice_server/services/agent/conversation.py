"""Per-call conversation agent.

One agent owns one ``CallSession``. Inbound audio, timer firings, provider
results and text requests are posted to a queue and folded by a single
consumer, so the session's buffer, history and state are never mutated
concurrently. At most one processing pass is in flight at a time.
"""
import asyncio
import logging
import time
from typing import Any, Callable, Optional, Set

from voice_server.core.config import Settings
from voice_server.core.errors import (
    ConfigurationMissing,
    InvalidTransition,
    ProviderUnavailable,
    SessionBusy,
    SessionNotFound,
)
from voice_server.audio.codec import pcm_duration
from voice_server.services.agent.constants import (
    OUTCOME_ECHO,
    OUTCOME_EMPTY,
    OUTCOME_FAILED,
    OUTCOME_REPLY,
    OUTCOME_UNVOICED,
    REASON_ERROR,
    REASON_HANGUP,
)
from voice_server.services.agent.echo import EchoSuppressor
from voice_server.services.agent.events import (
    AudioReceived,
    AudioSink,
    CooldownElapsed,
    PlaybackFinished,
    ProcessingResult,
    SilenceElapsed,
    TextReply,
    TextRequest,
    TransportLost,
    TransportReady,
)
from voice_server.services.agent.states import CallState, can_transition
from voice_server.services.call_config.models import AgentConfiguration
from voice_server.services.call_session.models import ASSISTANT, USER, CallSession, Turn
from voice_server.services.providers.base import ModelParams
from voice_server.services.providers.factory import VoiceProviderSet

logger = logging.getLogger(__name__)

SUMMARY_PROMPT = (
    "You summarize phone conversations between a caller and a voice assistant. "
    "Write two or three sentences covering what the caller wanted and how it was resolved."
)

# Call statuses the telephony network reports for a finished call
TERMINAL_STATUSES = frozenset({"completed", "failed", "busy", "no-answer", "canceled"})


def cooldown_for(duration: float, settings: Settings) -> float:
    """Delay between the end of playback and listening again."""
    extra = duration / settings.cooldown_divisor if settings.cooldown_divisor > 0 else 0.0
    return settings.cooldown_base + min(extra, settings.cooldown_max_extra)


class ConversationAgent:
    """State machine for one call: listen, transcribe, reply, speak."""

    def __init__(
        self,
        session: CallSession,
        settings: Settings,
        registry,
        provider_factory,
        config_resolver,
        telephony=None,
        conversation_log=None,
        agent_id: Optional[str] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.session = session
        self.settings = settings
        self.registry = registry
        self.provider_factory = provider_factory
        self.config_resolver = config_resolver
        self.telephony = telephony
        self.conversation_log = conversation_log
        self.agent_id = agent_id
        self.clock = clock

        self.providers: Optional[VoiceProviderSet] = None
        self.echo = EchoSuppressor()

        self._queue: asyncio.Queue = asyncio.Queue()
        self._sink: Optional[AudioSink] = None
        self._runner: Optional[asyncio.Task] = None
        self._task: Optional[asyncio.Task] = None  # processing pass in flight
        self._playback: Optional[asyncio.Task] = None
        self._background: Set[asyncio.Task] = set()
        self._finalizer: Optional[asyncio.Task] = None

        self._silence_timer: Optional[asyncio.TimerHandle] = None
        self._cooldown_timer: Optional[asyncio.TimerHandle] = None
        self._silence_generation = 0
        self._speech_generation = 0
        self._closed = False
        self.close_reason: Optional[str] = None

    # ------------------------------------------------------------------
    # Public surface

    @property
    def session_id(self) -> str:
        return self.session.session_id

    @property
    def state(self) -> CallState:
        return self.session.state

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def busy(self) -> bool:
        return self._task is not None

    def start(self) -> asyncio.Task:
        """Run the agent in its own task."""
        if self._runner is None:
            self._runner = asyncio.create_task(self.run(), name=f"agent-{self.session_id}")
        return self._runner

    def attach_transport(self, sink: AudioSink) -> None:
        """Hand the agent the outbound media leg once the stream starts."""
        self._post(TransportReady(sink))

    def detach_transport(self, sink: AudioSink) -> None:
        """Forget a media leg the network has stopped."""
        self._post(TransportLost(sink))

    def feed_audio(self, pcm: bytes) -> None:
        """Queue one chunk of caller audio (PCM16 8 kHz)."""
        if self._closed:
            return
        self._post(AudioReceived(pcm, self.clock()))

    async def respond_to_text(self, transcript: str, user_id: Optional[str] = None) -> TextReply:
        """
        Run one turn from text instead of audio.

        Raises:
            SessionBusy: If a processing pass is already in flight
            SessionNotFound: If the session ends before the reply is ready
        """
        if self._closed:
            raise SessionNotFound(f"Session {self.session_id} is closed", self.session_id)
        future = asyncio.get_running_loop().create_future()
        self._post(TextRequest(transcript, user_id, future))
        return await future

    async def run(self) -> None:
        """Resolve configuration, then fold events until the call ends."""
        if not await self._connect():
            return

        while not self._closed:
            event = await self._queue.get()
            if event is None or self._closed:
                break
            try:
                await self._handle(event)
            except InvalidTransition as e:
                logger.warning(f"[AGENT] {self.session_id}: {str(e)}")
            except Exception as e:
                logger.error(
                    f"[AGENT] {self.session_id}: error handling {type(event).__name__}: "
                    f"{type(e).__name__}: {str(e)}",
                    exc_info=True,
                )

    async def close(self, reason: str = REASON_HANGUP) -> None:
        """
        Tear the session down. Safe to call more than once.

        Timers and in-flight work are cancelled before the first suspension
        point, so nothing from this session runs after ``close`` yields.
        """
        if self._closed:
            return
        self._closed = True
        self.close_reason = reason
        logger.info(f"[AGENT] Closing session {self.session_id} - Reason: {reason}")

        self._cancel_timers()
        current = asyncio.current_task()
        for task in (self._task, self._playback):
            if task is not None and task is not current and not task.done():
                task.cancel()
        self._task = None
        self._playback = None
        if self._runner is not None and self._runner is not current and not self._runner.done():
            self._runner.cancel()
        self._fail_pending_requests()

        if self.session.state != CallState.IDLE:
            self._transition(CallState.IDLE)

        sink, self._sink = self._sink, None
        if sink is not None:
            try:
                await sink.close()
            except Exception as e:
                logger.warning(f"[AGENT] {self.session_id}: error closing transport: {str(e)}")

        await self.registry.remove(self.session_id)
        self._finalizer = asyncio.create_task(self._finalize(reason))

    async def wait_closed(self) -> None:
        """Wait for end-of-call persistence to finish."""
        if self._finalizer is not None:
            await self._finalizer

    # ------------------------------------------------------------------
    # Connecting

    async def _connect(self) -> bool:
        self._transition(CallState.CONNECTING)
        if self.conversation_log is not None:
            self._spawn(self.conversation_log.record_call(self.session, self.agent_id))

        try:
            config = await self._resolve_config()
            self.session.config = config
            self.providers = self.provider_factory.for_model(config.model, config.language)
        except (ConfigurationMissing, ProviderUnavailable) as e:
            logger.error(f"[AGENT] {self.session_id}: cannot start - {type(e).__name__}: {str(e)}")
            await self._fail(self.settings.generic_failure_message)
            return False

        if self._closed:
            return False
        logger.info(
            f"[AGENT] {self.session_id}: config resolved - Agent: {config.agent_id}, "
            f"Model: {config.model or 'default'}, Vendor: {self.providers.vendor}"
        )
        self._transition(CallState.WAITING)
        if self.session.channel == "web":
            # Web clients play audio themselves; there is no media transport to wait for
            self._transition(CallState.LISTENING)
        return True

    async def _resolve_config(self) -> AgentConfiguration:
        if self.session.channel == "web":
            if not self.agent_id:
                raise ConfigurationMissing("Web session has no agent id", self.session_id)
            return await self.config_resolver.resolve_agent(self.agent_id)
        return await self.config_resolver.resolve(self.session.call_sid)

    # ------------------------------------------------------------------
    # Event folding

    async def _handle(self, event: Any) -> None:
        if isinstance(event, AudioReceived):
            self._on_audio(event)
        elif isinstance(event, SilenceElapsed):
            self._on_silence(event)
        elif isinstance(event, TransportReady):
            self._on_transport(event)
        elif isinstance(event, TransportLost):
            self._on_transport_lost(event)
        elif isinstance(event, ProcessingResult):
            await self._on_result(event)
        elif isinstance(event, PlaybackFinished):
            self._on_playback_finished(event)
        elif isinstance(event, CooldownElapsed):
            self._on_cooldown(event)
        elif isinstance(event, TextRequest):
            self._on_text_request(event)

    def _on_transport(self, event: TransportReady) -> None:
        self._sink = event.sink
        self.session.awaiting_stream = False
        if self.session.state != CallState.WAITING:
            return
        welcome = self.session.config.welcome_message if self.session.config else None
        if welcome:
            self._task = self._spawn_pass(self._synthesize_scripted(welcome))
        else:
            self._transition(CallState.LISTENING)

    def _on_transport_lost(self, event: TransportLost) -> None:
        if self._sink is event.sink:
            self._sink = None

    def _on_audio(self, event: AudioReceived) -> None:
        self.session.touch(event.at)
        state = self.session.state
        if state == CallState.LISTENING and self._task is None:
            self.session.buffer.append(event.pcm, event.at)
            self._arm_silence_timer(self.settings.silence_timeout)
        elif state == CallState.SPEAKING:
            # Held until the cooldown ends; the echo check decides whether it counts
            self.session.buffer.append(event.pcm, event.at)

    def _on_silence(self, event: SilenceElapsed) -> None:
        if event.generation != self._silence_generation:
            return
        buffer = self.session.buffer
        if self.session.state != CallState.LISTENING or self._task is not None or buffer.is_empty:
            return
        quiet_for = self.clock() - buffer.last_at
        if quiet_for < self.settings.silence_timeout:
            self._arm_silence_timer(self.settings.silence_timeout - quiet_for)
            return

        captured_at = buffer.started_at
        audio = buffer.flush()
        logger.info(
            f"[AGENT] {self.session_id}: utterance complete ({len(audio)} bytes, "
            f"{pcm_duration(audio):.2f}s)"
        )
        self._transition(CallState.PROCESSING)
        self._task = self._spawn_pass(self._process_audio(audio, captured_at))

    def _on_text_request(self, event: TextRequest) -> None:
        if event.future.done():
            return
        if self._task is not None:
            event.future.set_exception(
                SessionBusy(f"Session {self.session_id} is already processing", self.session_id)
            )
            return
        if self.session.state == CallState.SPEAKING:
            # A new client turn ends the cooldown early
            self._cancel_cooldown()
            self._transition(CallState.LISTENING)
        if self.session.state != CallState.LISTENING:
            event.future.set_exception(
                SessionBusy(f"Session {self.session_id} is {self.session.state}", self.session_id)
            )
            return

        self._transition(CallState.PROCESSING)
        self._task = self._spawn_pass(
            self._process_text(event.transcript), user_id=event.user_id, future=event.future
        )

    async def _on_result(self, result: ProcessingResult) -> None:
        self._task = None
        if self._closed or not self.registry.contains(self.session_id):
            logger.info(f"[AGENT] {self.session_id}: discarding result for ended session")
            return

        future = result.future
        if result.outcome in (OUTCOME_EMPTY, OUTCOME_ECHO):
            if result.outcome == OUTCOME_EMPTY:
                logger.info(f"[AGENT] {self.session_id}: empty transcript, still listening")
            self._transition(CallState.LISTENING)
            self._resolve_future(future, TextReply(text=""))
            return

        if result.outcome == OUTCOME_UNVOICED:
            if result.transcript:
                self._record_turn(Turn(role=USER, text=result.transcript), result.user_id)
            self._record_turn(Turn(role=ASSISTANT, text=result.reply), result.user_id)
            self._resolve_future(future, TextReply(text=result.reply))
            self._say_through_network(result.reply)
            return

        if result.outcome == OUTCOME_FAILED:
            if future is not None and not future.done():
                future.set_exception(
                    result.error or ProviderUnavailable("Reply could not be produced")
                )
            await self._fail(self._apology_text())
            return

        if result.transcript:
            self._record_turn(Turn(role=USER, text=result.transcript), result.user_id)
        self._record_turn(Turn(role=ASSISTANT, text=result.reply), result.user_id)
        self._resolve_future(future, TextReply(text=result.reply, audio=result.audio))
        self._speak(result.reply, result.audio or b"")

    def _on_playback_finished(self, event: PlaybackFinished) -> None:
        if event.generation != self._speech_generation or self.session.state != CallState.SPEAKING:
            return
        cooldown = cooldown_for(event.duration, self.settings)
        self.echo.close_window_at(self.clock() + cooldown)
        logger.debug(
            f"[AGENT] {self.session_id}: playback done ({event.duration:.2f}s), "
            f"cooldown {cooldown:.2f}s"
        )
        loop = asyncio.get_running_loop()
        self._cancel_cooldown()
        self._cooldown_timer = loop.call_later(
            cooldown, self._post, CooldownElapsed(event.generation)
        )

    def _on_cooldown(self, event: CooldownElapsed) -> None:
        if event.generation != self._speech_generation or self.session.state != CallState.SPEAKING:
            return
        self._cooldown_timer = None
        self._transition(CallState.LISTENING)

    # ------------------------------------------------------------------
    # Processing passes (run outside the consumer, report back as events)

    async def _process_audio(self, audio: bytes, captured_at: Optional[float]) -> ProcessingResult:
        config = self.session.config
        try:
            transcript = await self.providers.transcribe(audio, config.language)
        except ProviderUnavailable as e:
            logger.warning(f"[AGENT] {self.session_id}: transcription unavailable, apologizing")
            return await self._synthesize_reply(None, self._apology_text(), e)

        transcript = transcript.strip()
        if not transcript:
            return ProcessingResult(outcome=OUTCOME_EMPTY)
        if self.echo.is_echo(transcript, captured_at):
            return ProcessingResult(outcome=OUTCOME_ECHO, transcript=transcript)

        logger.info(f"[AGENT] {self.session_id}: caller said '{transcript}'")
        return await self._reply_to(transcript)

    async def _process_text(self, transcript: str) -> ProcessingResult:
        transcript = transcript.strip()
        if not transcript:
            return ProcessingResult(outcome=OUTCOME_EMPTY)
        return await self._reply_to(transcript, require_audio=False)

    async def _reply_to(self, transcript: str, require_audio: bool = True) -> ProcessingResult:
        config = self.session.config
        history = list(self.session.history) + [Turn(role=USER, text=transcript)]
        params = ModelParams(
            model=config.model, temperature=config.temperature, max_tokens=config.max_tokens
        )
        error = None
        try:
            reply = await self.providers.generate_reply(history, config.system_prompt, params)
        except ProviderUnavailable as e:
            logger.warning(f"[AGENT] {self.session_id}: reply unavailable, apologizing")
            reply, error = "", e
        if not reply:
            reply = self._apology_text()
        return await self._synthesize_reply(
            transcript, reply, error, require_audio, fallback=self._apology_text()
        )

    async def _synthesize_reply(
        self,
        transcript: Optional[str],
        reply: str,
        error: Optional[Exception] = None,
        require_audio: bool = True,
        fallback: Optional[str] = None,
    ) -> ProcessingResult:
        """
        Voice ``reply``. When synthesis fails on a call, ``fallback`` (or the
        reply itself) is handed to the network to speak instead.
        """
        try:
            audio = await self.providers.synthesize(reply, self.session.config.voice)
        except ProviderUnavailable as e:
            if require_audio:
                logger.warning(f"[AGENT] {self.session_id}: speech synthesis unavailable")
                return ProcessingResult(
                    outcome=OUTCOME_UNVOICED,
                    transcript=transcript,
                    reply=fallback or reply,
                    error=e,
                )
            audio = None
        return ProcessingResult(
            outcome=OUTCOME_REPLY, transcript=transcript, reply=reply, audio=audio, error=error
        )

    async def _synthesize_scripted(self, text: str) -> ProcessingResult:
        return await self._synthesize_reply(None, text)

    # ------------------------------------------------------------------
    # Speaking

    def _speak(self, text: str, audio: bytes) -> None:
        self._transition(CallState.SPEAKING)
        self._speech_generation += 1
        generation = self._speech_generation
        self.echo.remember(text, self.clock())
        if self._sink is not None and audio:
            self._playback = asyncio.create_task(self._play(audio, generation))
        else:
            # The client plays the audio; assume it takes as long as the audio lasts
            self._post(PlaybackFinished(generation, pcm_duration(audio)))

    def _say_through_network(self, text: str) -> None:
        """Have the telephony network speak ``text`` and keep the call going."""
        session = self.session
        if self.telephony is not None and session.channel == "voice" and session.stream_url:
            session.awaiting_stream = True
            self._spawn(self._network_say(text))
        else:
            logger.warning(f"[AGENT] {self.session_id}: no way to voice the reply, still listening")
        self._transition(CallState.LISTENING)

    async def _network_say(self, text: str) -> None:
        session = self.session
        spoken = await self.telephony.say_and_reconnect(
            session.call_sid, text, session.stream_url, session.session_id
        )
        if not spoken:
            session.awaiting_stream = False

    async def _play(self, audio: bytes, generation: int) -> None:
        try:
            duration = await self._sink.play(audio)
        except Exception as e:
            logger.warning(f"[AGENT] {self.session_id}: playback failed: {str(e)}")
            duration = pcm_duration(audio)
        self._playback = None
        self._post(PlaybackFinished(generation, duration))

    # ------------------------------------------------------------------
    # Helpers

    def _transition(self, target: CallState) -> None:
        current = self.session.state
        if not can_transition(current, target):
            raise InvalidTransition(
                f"Illegal transition {current} -> {target}", self.session_id
            )
        self.session.state = target
        logger.info(f"[AGENT] {self.session_id}: {current} -> {target}")
        if target == CallState.LISTENING and not self.session.buffer.is_empty:
            self._arm_silence_timer(self.settings.silence_timeout)

    def _post(self, event: Any) -> None:
        self._queue.put_nowait(event)

    def _arm_silence_timer(self, delay: float) -> None:
        if self._silence_timer is not None:
            self._silence_timer.cancel()
        self._silence_generation += 1
        loop = asyncio.get_running_loop()
        self._silence_timer = loop.call_later(
            delay, self._post, SilenceElapsed(self._silence_generation)
        )

    def _cancel_cooldown(self) -> None:
        if self._cooldown_timer is not None:
            self._cooldown_timer.cancel()
            self._cooldown_timer = None

    def _cancel_timers(self) -> None:
        if self._silence_timer is not None:
            self._silence_timer.cancel()
            self._silence_timer = None
        self._cancel_cooldown()

    def _spawn_pass(
        self,
        coro,
        user_id: Optional[str] = None,
        future: Optional[asyncio.Future] = None,
    ) -> asyncio.Task:
        async def run_pass() -> None:
            try:
                result = await coro
            except Exception as e:
                logger.error(
                    f"[AGENT] {self.session_id}: processing failed: {type(e).__name__}: {str(e)}",
                    exc_info=True,
                )
                result = ProcessingResult(outcome=OUTCOME_FAILED, error=e)
            result.user_id = user_id
            result.future = future
            self._post(result)

        return asyncio.create_task(run_pass())

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    def _record_turn(self, turn: Turn, user_id: Optional[str] = None) -> None:
        self.session.append_turn(turn)
        if self.conversation_log is not None:
            self._spawn(self.conversation_log.append_turn(self.session, turn, user_id))

    def _resolve_future(self, future: Optional[asyncio.Future], reply: TextReply) -> None:
        if future is not None and not future.done():
            future.set_result(reply)

    def _fail_pending_requests(self) -> None:
        while not self._queue.empty():
            event = self._queue.get_nowait()
            future = getattr(event, "future", None)
            if future is not None and not future.done():
                future.set_exception(
                    SessionNotFound(f"Session {self.session_id} ended", self.session_id)
                )
        self._post(None)

    def _apology_text(self) -> str:
        config = self.session.config
        if config is not None and config.error_message:
            return config.error_message
        return self.settings.apology_message

    async def _fail(self, message: str) -> None:
        """Enter ``error``, have the network speak ``message``, and end the call."""
        if self._closed:
            return
        if self.session.state != CallState.ERROR:
            self._transition(CallState.ERROR)
        if self.telephony is not None and self.session.channel == "voice":
            self._spawn(self.telephony.say_and_hangup(self.session.call_sid, message))
        await self.close(REASON_ERROR)

    async def _finalize(self, reason: str) -> None:
        """End-of-call persistence: call status, transcript and summary."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
        if self.conversation_log is None:
            return

        summary = None
        if self.providers is not None and len(self.session.history) >= 2:
            try:
                summary = await self.providers.generate_reply(
                    [Turn(role=USER, text=self.session.transcript_text())],
                    SUMMARY_PROMPT,
                    ModelParams(model=self.session.config.model, temperature=0.3, max_tokens=200),
                )
            except ProviderUnavailable:
                logger.warning(f"[AGENT] {self.session_id}: summary unavailable")

        if reason in TERMINAL_STATUSES:
            status = reason
        elif reason in (REASON_ERROR, "transport_error"):
            status = "failed"
        else:
            status = "completed"
        await self.conversation_log.finalize_call(self.session, status, summary)
