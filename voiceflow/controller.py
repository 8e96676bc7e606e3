"""Recording controller: the state machine that owns a dictation session."""

from __future__ import annotations

import logging
import queue
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable

from voiceflow.capture import BatchCapture, StreamingCapture
from voiceflow.errors import ConfigError, ServiceError, VoiceFlowError
from voiceflow.models import (
    ErrorRaised,
    HistoryAppended,
    HistoryItem,
    RecordingSession,
    SessionStatus,
    StatusChanged,
    TranscriptResult,
    TranscriptUpdated,
)
from voiceflow.output import InjectionGuard, TranscriptComposer

if TYPE_CHECKING:
    from voiceflow.audio import MicrophoneHandle, MicrophoneSource
    from voiceflow.capture import CapturedAudio, CaptureStrategy
    from voiceflow.events import EventBus
    from voiceflow.output import TextInjector
    from voiceflow.transcribe import BatchTranscriber, StreamingChannel, StreamingTranscriber

logger = logging.getLogger(__name__)

IO_WORKERS = 4
RETYPE_SESSION_ID = 0


@dataclass
class _Command:
    name: str
    future: "Future[bool]" = field(default_factory=Future)


@dataclass
class _Event:
    name: str
    session_id: int
    payload: Any = None


class RecordingController:
    """
    Owns the recording lifecycle.

    Every command (start, stop, cancel) and every asynchronous completion
    (audio chunk, connection result, transcript, service error, injection
    result) is a message on one queue, handled one at a time by a single
    worker thread. Blocking work runs on an I/O pool and reports back
    through the same queue, tagged with the session id; messages for a
    session that is no longer current are dropped after freeing whatever
    resources they carry.
    """

    def __init__(
        self,
        microphone: "MicrophoneSource",
        transcriber: "BatchTranscriber | StreamingTranscriber",
        injector: "TextInjector",
        bus: "EventBus",
        credential: Callable[[], str],
        min_capture_s: float = 0.25,
        max_session_s: float = 0.0,
    ) -> None:
        self._microphone = microphone
        self._transcriber = transcriber
        self._streaming = callable(getattr(transcriber, "open", None))
        self._guard = InjectionGuard(injector)
        self._bus = bus
        self._credential = credential
        self._min_capture_s = min_capture_s
        self._max_session_s = max_session_s

        self._queue: queue.Queue[_Command | _Event | None] = queue.Queue()
        self._executor = ThreadPoolExecutor(max_workers=IO_WORKERS, thread_name_prefix="SessionIO")
        self._worker: threading.Thread | None = None

        self._status = SessionStatus.IDLE
        self._status_changed = threading.Condition()
        self._session: RecordingSession | None = None
        self._next_session_id = RETYPE_SESSION_ID
        # Cancelled sessions whose microphone acquisition has not returned yet
        self._unsettled: set[int] = set()

    @property
    def status(self) -> SessionStatus:
        return self._status

    @property
    def bus(self) -> "EventBus":
        return self._bus

    @property
    def streaming(self) -> bool:
        return self._streaming

    @property
    def session(self) -> RecordingSession | None:
        return self._session

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start_worker(self) -> None:
        if self._worker is not None and self._worker.is_alive():
            return
        self._worker = threading.Thread(target=self._worker_loop, daemon=True, name="RecordingController")
        self._worker.start()

    def shutdown(self, timeout: float = 2.0) -> None:
        """Cancel any session and stop the worker."""
        if self._worker is not None and self._worker.is_alive():
            self.cancel()
            self._queue.put(None)
            self._worker.join(timeout=timeout)
        self._executor.shutdown(wait=False)
        self._guard.shutdown(wait=False)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def start(self) -> "Future[bool]":
        """Begin a session. Resolves False if one is already active."""
        return self._command("start")

    def stop(self) -> "Future[bool]":
        """Finish recording and transcribe. No-op while idle."""
        return self._command("stop")

    def toggle(self) -> "Future[bool]":
        """Stop the active session, or start one when there is none."""
        return self._command("toggle")

    def cancel(self) -> "Future[bool]":
        """Abandon the session without transcribing or injecting."""
        return self._command("cancel")

    def flush(self, timeout: float | None = None) -> None:
        """Wait until every message queued so far has been handled."""
        self._command("flush").result(timeout=timeout)

    def retype(self, text: str) -> "Future[None]":
        """
        Inject previously transcribed text again.

        Bypasses capture and transcription entirely and does not touch the
        session state. Ordered with every other injection.
        """
        future = self._guard.submit(text)
        future.add_done_callback(
            lambda f: self._post("injected", RETYPE_SESSION_ID, f.exception())
        )
        return future

    def wait_for_status(self, status: SessionStatus, timeout: float | None = None) -> bool:
        with self._status_changed:
            return self._status_changed.wait_for(lambda: self._status == status, timeout=timeout)

    def wait_idle(self, timeout: float | None = None) -> bool:
        return self.wait_for_status(SessionStatus.IDLE, timeout=timeout)

    def _command(self, name: str) -> "Future[bool]":
        command = _Command(name)
        self._queue.put(command)
        return command.future

    def _post(self, name: str, session_id: int, payload: Any = None) -> None:
        self._queue.put(_Event(name, session_id, payload))

    # ------------------------------------------------------------------
    # Worker
    # ------------------------------------------------------------------

    def _worker_loop(self) -> None:
        while True:
            message = self._queue.get()
            if message is None:
                break
            try:
                self._dispatch(message)
            except Exception as e:
                logger.exception("Controller error handling %s: %s", message.name, e)
                if isinstance(message, _Command) and not message.future.done():
                    message.future.set_exception(e)
                if self._session is not None:
                    self._fail(self._session, ServiceError(f"Internal error: {e}"))

    def _dispatch(self, message: _Command | _Event) -> None:
        if isinstance(message, _Command):
            handler = getattr(self, f"_handle_{message.name}")
            handler(message.future)
            return

        if message.name == "injected":
            self._on_injected(message)
            return

        session = self._session
        if session is None or session.id != message.session_id:
            self._on_stale(message)
            return
        getattr(self, f"_on_{message.name}")(session, message.payload)

    # ------------------------------------------------------------------
    # Command handlers
    # ------------------------------------------------------------------

    def _handle_start(self, future: "Future[bool]") -> None:
        if self._session is not None:
            logger.info("Start ignored: session %d is %s", self._session.id, self._status.value)
            future.set_result(False)
            return
        if self._unsettled:
            logger.info("Start ignored: previous session still releasing the microphone")
            future.set_result(False)
            return
        if not self._credential().strip():
            error = ConfigError("No transcription API key configured")
            self._report(error)
            future.set_exception(error)
            return

        self._next_session_id += 1
        session = RecordingSession(id=self._next_session_id, streaming=self._streaming)
        session.capture = self._new_capture()
        if self._streaming:
            session.composer = TranscriptComposer()
        self._session = session
        self._set_status(SessionStatus.CONNECTING)
        self._executor.submit(self._connect, session.id)
        future.set_result(True)

    def _handle_stop(self, future: "Future[bool]") -> None:
        session = self._session
        if session is None:
            future.set_result(False)
            return
        if session.status == SessionStatus.CONNECTING:
            # Applied as soon as the microphone is confirmed
            session.stopping = True
            future.set_result(True)
            return
        if session.status != SessionStatus.RECORDING:
            future.set_result(False)
            return
        self._finish_recording(session)
        future.set_result(True)

    def _handle_toggle(self, future: "Future[bool]") -> None:
        if self._session is None:
            self._handle_start(future)
        else:
            self._handle_stop(future)

    def _handle_cancel(self, future: "Future[bool]") -> None:
        session = self._session
        if session is None:
            future.set_result(False)
            return
        logger.info("Session %d cancelled while %s", session.id, session.status.value)
        session.cancelled = True
        if session.status == SessionStatus.CONNECTING:
            self._unsettled.add(session.id)
        self._end_session(session)
        future.set_result(True)

    def _handle_flush(self, future: "Future[bool]") -> None:
        future.set_result(True)

    # ------------------------------------------------------------------
    # Blocking work (I/O pool)
    # ------------------------------------------------------------------

    def _connect(self, session_id: int) -> None:
        channel: StreamingChannel | None = None
        try:
            if self._streaming:
                channel = self._transcriber.open(  # type: ignore[union-attr]
                    on_result=lambda result: self._post("transcript", session_id, result),
                    on_error=lambda error: self._post("failed", session_id, error),
                    on_closed=lambda: self._post("channel_closed", session_id),
                )
            handle = self._microphone.open(
                on_chunk=lambda chunk: self._post("chunk", session_id, chunk),
                on_error=lambda error: self._post("failed", session_id, error),
            )
        except Exception as e:
            if channel is not None:
                channel.abort()
            error = e if isinstance(e, VoiceFlowError) else ServiceError(str(e))
            self._post("connect_failed", session_id, error)
            return
        self._post("connected", session_id, (handle, channel))

    def _submit(self, session_id: int, audio: "CapturedAudio") -> None:
        try:
            text = self._transcriber.submit(audio)  # type: ignore[union-attr]
        except VoiceFlowError as e:
            self._post("failed", session_id, e)
            return
        except Exception as e:
            logger.exception("Transcriber crashed")
            self._post("failed", session_id, ServiceError(str(e)))
            return
        self._post("transcribed", session_id, text)

    # ------------------------------------------------------------------
    # Event handlers (current session only)
    # ------------------------------------------------------------------

    def _on_connected(self, session: RecordingSession, payload: tuple) -> None:
        handle, channel = payload
        session.microphone = handle
        session.channel = channel
        capture = session.capture
        if isinstance(capture, StreamingCapture):
            capture.bind(channel)

        self._set_status(SessionStatus.RECORDING)
        capture.activate()
        logger.info("Session %d recording", session.id)

        if session.stopping:
            self._finish_recording(session)
            return
        if self._max_session_s > 0:
            session.timer = threading.Timer(
                self._max_session_s, self._post, args=("session_timeout", session.id)
            )
            session.timer.daemon = True
            session.timer.start()

    def _on_connect_failed(self, session: RecordingSession, error: VoiceFlowError) -> None:
        self._fail(session, error)

    def _on_chunk(self, session: RecordingSession, chunk: Any) -> None:
        if session.capture is not None:
            session.capture.feed(chunk)

    def _on_failed(self, session: RecordingSession, error: VoiceFlowError) -> None:
        self._fail(session, error)

    def _on_session_timeout(self, session: RecordingSession, payload: None) -> None:
        if session.status != SessionStatus.RECORDING:
            return
        logger.warning("Session %d hit the %.0fs limit, stopping", session.id, self._max_session_s)
        self._finish_recording(session)

    def _on_transcribed(self, session: RecordingSession, text: str) -> None:
        text = text.strip()
        if not text:
            logger.warning("Transcription service returned no text")
            self._end_session(session)
            return

        session.pending_transcript = text
        self._bus.publish(TranscriptUpdated(text))
        self._append_history(text)
        self._set_status(SessionStatus.INJECTING)
        self._inject(session, text)

    def _on_transcript(self, session: RecordingSession, result: TranscriptResult) -> None:
        composer = session.composer
        if composer is None:
            return
        if not result.is_final:
            self._bus.publish(TranscriptUpdated(composer.preview(result.text), is_final=False))
            return

        increment = composer.append(result.text)
        if not increment:
            return
        session.pending_transcript = composer.text
        self._bus.publish(TranscriptUpdated(composer.text))
        self._inject(session, increment)

    def _on_channel_closed(self, session: RecordingSession, payload: None) -> None:
        logger.info("Session %d stream drained", session.id)
        self._release_microphone(session)
        session.channel = None
        if session.composer is not None and session.composer.text:
            self._append_history(session.composer.text)
        if session.pending_injections:
            self._set_status(SessionStatus.INJECTING)
            return
        self._end_session(session)

    def _on_injected(self, event: _Event) -> None:
        error = event.payload
        if error is not None:
            logger.error("Injection failed: %s", error)
            self._report(error)

        if event.session_id == RETYPE_SESSION_ID:
            return
        session = self._session
        if session is None or session.id != event.session_id:
            return
        session.pending_injections -= 1
        if session.status == SessionStatus.INJECTING and session.pending_injections == 0:
            self._end_session(session)

    def _on_stale(self, message: _Event) -> None:
        if message.name == "connected":
            handle, channel = message.payload
            self._release_handles(handle, channel)
        if message.name in ("connected", "connect_failed"):
            self._unsettled.discard(message.session_id)
            logger.debug("Late acquisition for session %d released", message.session_id)
        elif message.name != "chunk":
            logger.debug("Discarding %s for finished session %d", message.name, message.session_id)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _finish_recording(self, session: RecordingSession) -> None:
        self._cancel_timer(session)
        self._release_microphone(session)
        capture = session.capture
        self._set_status(SessionStatus.PROCESSING)

        if isinstance(capture, StreamingCapture):
            capture.finalize()
            if session.channel is not None:
                session.channel.close()
            return

        audio = capture.finalize() if isinstance(capture, BatchCapture) else None
        if audio is None:
            logger.info("Capture too short, nothing to transcribe")
            self._end_session(session)
            return
        self._executor.submit(self._submit, session.id, audio)

    def _inject(self, session: RecordingSession, text: str) -> None:
        session.pending_injections += 1
        session_id = session.id
        self._guard.submit(text).add_done_callback(
            lambda f: self._post("injected", session_id, f.exception())
        )

    def _fail(self, session: RecordingSession, error: VoiceFlowError) -> None:
        logger.error("Session %d failed: %s", session.id, error)
        session.error_detail = str(error)
        self._set_status(SessionStatus.ERROR)
        self._report(error)
        self._end_session(session)

    def _end_session(self, session: RecordingSession) -> None:
        self._cancel_timer(session)
        self._release_microphone(session)
        channel, session.channel = session.channel, None
        if channel is not None:
            channel.abort()
        if session.capture is not None:
            session.capture.discard()
        self._session = None
        self._set_status(SessionStatus.IDLE)

    def _set_status(self, status: SessionStatus) -> None:
        previous = self._status
        if previous == status:
            return
        with self._status_changed:
            self._status = status
            if self._session is not None:
                self._session.status = status
            self._status_changed.notify_all()
        logger.debug("Status %s -> %s", previous.value, status.value)
        self._bus.publish(StatusChanged(status, previous))

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _new_capture(self) -> "CaptureStrategy":
        if self._streaming:
            return StreamingCapture()
        return BatchCapture(self._microphone.sample_rate, self._min_capture_s)

    def _append_history(self, text: str) -> None:
        self._bus.publish(HistoryAppended(HistoryItem.create(text)))

    def _report(self, error: VoiceFlowError) -> None:
        self._bus.publish(ErrorRaised(error.kind, str(error)))

    def _release_microphone(self, session: RecordingSession) -> None:
        handle, session.microphone = session.microphone, None
        if handle is not None:
            handle.release()

    @staticmethod
    def _release_handles(
        handle: "MicrophoneHandle | None",
        channel: "StreamingChannel | None",
    ) -> None:
        if handle is not None:
            handle.release()
        if channel is not None:
            channel.abort()

    @staticmethod
    def _cancel_timer(session: RecordingSession) -> None:
        timer, session.timer = session.timer, None
        if timer is not None:
            timer.cancel()
