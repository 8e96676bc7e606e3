"""Speech-to-text through Deepgram, as batch requests or a live stream."""

from __future__ import annotations

import json
import logging
import queue
import threading
import time
from typing import TYPE_CHECKING, Any, Callable, Protocol

import httpx
from websockets.exceptions import ConnectionClosedError, InvalidStatus, WebSocketException
from websockets.sync.client import connect as ws_connect

from voiceflow.capture import encode_wav
from voiceflow.config import TranscriptionMode
from voiceflow.errors import AuthError, ServiceError
from voiceflow.models import TranscriptResult

if TYPE_CHECKING:
    from websockets.sync.client import ClientConnection

    from voiceflow.capture import CapturedAudio
    from voiceflow.config import Config, DeepgramConfig
    from voiceflow.types import DeepgramBatchResponse, DeepgramStreamMessage

logger = logging.getLogger(__name__)

AUTH_STATUS_CODES = (401, 403)
WS_OPEN_TIMEOUT_SECONDS = 10.0
WS_CLOSE_TIMEOUT_SECONDS = 0.5
CLOSE_STREAM_MESSAGE = json.dumps({"type": "CloseStream"})

ResultCallback = Callable[[TranscriptResult], None]
ServiceErrorCallback = Callable[[ServiceError], None]
ClosedCallback = Callable[[], None]


class BatchTranscriber(Protocol):
    def submit(self, payload: "CapturedAudio") -> str: ...


class StreamingChannel(Protocol):
    @property
    def is_open(self) -> bool: ...

    def send(self, chunk: bytes) -> None: ...

    def close(self) -> None: ...

    def abort(self) -> None: ...


class StreamingTranscriber(Protocol):
    def open(
        self,
        on_result: ResultCallback,
        on_error: ServiceErrorCallback,
        on_closed: ClosedCallback,
    ) -> StreamingChannel: ...


def _bool_param(value: bool) -> str:
    return "true" if value else "false"


def _extract_transcript(channel: Any) -> str:
    if not isinstance(channel, dict):
        return ""
    alternatives = channel.get("alternatives") or []
    if not alternatives or not isinstance(alternatives[0], dict):
        return ""
    return str(alternatives[0].get("transcript") or "")


def parse_batch_response(data: "DeepgramBatchResponse | Any") -> str:
    """
    Pull the transcript out of a pre-recorded response body.

    Returns:
        The transcript, or an empty string when nothing was recognized.

    Raises:
        ServiceError: If the body does not look like a Deepgram response.
    """
    if not isinstance(data, dict) or not isinstance(data.get("results"), dict):
        raise ServiceError("Malformed transcription response")
    channels = data["results"].get("channels") or []
    if not channels:
        logger.warning("Deepgram response contains no channels")
        return ""
    return _extract_transcript(channels[0]).strip()


def parse_stream_message(message: str) -> TranscriptResult | None:
    """
    Turn one live message into a transcript result.

    Returns:
        A result for non-empty ``Results`` messages, None for anything else.

    Raises:
        ServiceError: If the message is not valid JSON.
    """
    try:
        data: DeepgramStreamMessage = json.loads(message)
    except json.JSONDecodeError as e:
        raise ServiceError(f"Invalid message from transcription stream: {e}") from e

    if not isinstance(data, dict) or data.get("type") != "Results":
        return None
    text = _extract_transcript(data.get("channel")).strip()
    if not text:
        return None
    return TranscriptResult(text=text, is_final=bool(data.get("is_final", False)))


class DeepgramBatchTranscriber:
    """Sends one WAV payload to the pre-recorded endpoint."""

    def __init__(self, config: "DeepgramConfig") -> None:
        self._config = config

    def _params(self) -> dict[str, str]:
        params = {
            "model": self._config.model,
            "smart_format": _bool_param(self._config.smart_format),
        }
        if self._config.language:
            params["language"] = self._config.language
        return params

    def submit(self, payload: "CapturedAudio") -> str:
        """
        Transcribe captured audio.

        Args:
            payload: The finalized capture.

        Returns:
            Transcribed text (possibly empty).

        Raises:
            AuthError: If the API key is rejected.
            ServiceError: On any other network or protocol failure.
        """
        body = encode_wav(payload)
        logger.info(
            "Deepgram request: %s, %.2fs, %d KB",
            self._config.model,
            payload.duration_s,
            len(body) // 1024,
        )

        t0 = time.time()
        try:
            response = httpx.post(
                self._config.rest_url,
                params=self._params(),
                headers={
                    "Authorization": f"Token {self._config.api_key}",
                    "Content-Type": "audio/wav",
                },
                content=body,
                timeout=self._config.request_timeout_s,
            )
        except httpx.HTTPError as e:
            raise ServiceError(f"Transcription request failed: {e}") from e

        if response.status_code in AUTH_STATUS_CODES:
            raise AuthError(f"Transcription service rejected the API key ({response.status_code})")
        if response.is_error:
            raise ServiceError(f"Transcription service returned HTTP {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            raise ServiceError("Transcription response is not JSON") from e

        text = parse_batch_response(data)
        logger.info("Deepgram done in %.2fs", time.time() - t0)
        return text


class DeepgramStreamingChannel:
    """
    One live WebSocket session.

    Audio is queued and written by a sender thread so ``send`` never blocks.
    A receiver thread turns ``Results`` messages into callbacks. ``close``
    asks the service to flush its last results; the channel ends when the
    service closes the socket. ``abort`` drops the socket without callbacks.
    """

    def __init__(
        self,
        connection: "ClientConnection",
        on_result: ResultCallback,
        on_error: ServiceErrorCallback,
        on_closed: ClosedCallback,
    ) -> None:
        self._ws = connection
        self._on_result = on_result
        self._on_error = on_error
        self._on_closed = on_closed

        self._outgoing: queue.Queue[bytes | str | None] = queue.Queue()
        self._lock = threading.Lock()
        self._open = True
        self._closing = False
        self._aborted = False
        self._finished = False

        self._sender = threading.Thread(target=self._send_loop, daemon=True, name="DeepgramSender")
        self._receiver = threading.Thread(target=self._receive_loop, daemon=True, name="DeepgramReceiver")
        self._sender.start()
        self._receiver.start()

    @property
    def is_open(self) -> bool:
        with self._lock:
            return self._open and not self._closing

    def send(self, chunk: bytes) -> None:
        if not self.is_open:
            raise ServiceError("Streaming channel is closed")
        self._outgoing.put(chunk)

    def close(self) -> None:
        with self._lock:
            if self._closing or not self._open:
                return
            self._closing = True
        self._outgoing.put(CLOSE_STREAM_MESSAGE)
        self._outgoing.put(None)

    def abort(self) -> None:
        with self._lock:
            if self._aborted:
                return
            self._aborted = True
            self._closing = True
            self._open = False
        self._outgoing.put(None)
        self._ws.close()

    def _send_loop(self) -> None:
        while True:
            item = self._outgoing.get()
            if item is None:
                return
            try:
                self._ws.send(item)
            except WebSocketException as e:
                logger.debug("Send on closed stream dropped: %s", e)
                return

    def _receive_loop(self) -> None:
        try:
            for message in self._ws:
                if isinstance(message, bytes):
                    continue
                result = parse_stream_message(message)
                if result is not None and not self._aborted:
                    self._on_result(result)
        except ConnectionClosedError as e:
            self._finish(ServiceError(f"Transcription stream dropped: {e}"))
        except ServiceError as e:
            self._ws.close()
            self._finish(e)
        else:
            if self._closing:
                self._finish(None)
            else:
                self._finish(ServiceError("Transcription stream closed by the service"))

    def _finish(self, error: ServiceError | None) -> None:
        with self._lock:
            if self._finished:
                return
            self._finished = True
            self._open = False
            aborted = self._aborted
        self._outgoing.put(None)
        if aborted:
            return
        if error is not None:
            logger.warning("%s", error)
            self._on_error(error)
        else:
            self._on_closed()


class DeepgramStreamingTranscriber:
    """Opens live transcription channels for linear16 audio."""

    def __init__(self, config: "DeepgramConfig", sample_rate: int, channels: int = 1) -> None:
        self._config = config
        self._sample_rate = sample_rate
        self._channels = channels

    def url(self) -> str:
        params = httpx.QueryParams(
            {
                "model": self._config.model,
                "encoding": "linear16",
                "sample_rate": str(self._sample_rate),
                "channels": str(self._channels),
                "smart_format": _bool_param(self._config.smart_format),
                "interim_results": _bool_param(self._config.interim_results),
            }
        )
        if self._config.language:
            params = params.add("language", self._config.language)
        return f"{self._config.ws_url}?{params}"

    def open(
        self,
        on_result: ResultCallback,
        on_error: ServiceErrorCallback,
        on_closed: ClosedCallback,
    ) -> DeepgramStreamingChannel:
        """
        Connect to the live endpoint.

        Raises:
            AuthError: If the handshake is rejected for the credential.
            ServiceError: If the connection cannot be established.
        """
        try:
            connection = ws_connect(
                self.url(),
                additional_headers={"Authorization": f"Token {self._config.api_key}"},
                open_timeout=WS_OPEN_TIMEOUT_SECONDS,
                close_timeout=WS_CLOSE_TIMEOUT_SECONDS,
            )
        except InvalidStatus as e:
            status = e.response.status_code
            if status in AUTH_STATUS_CODES:
                raise AuthError(f"Transcription service rejected the API key ({status})") from e
            raise ServiceError(f"Transcription stream rejected (HTTP {status})") from e
        except (WebSocketException, OSError, TimeoutError) as e:
            raise ServiceError(f"Cannot connect to transcription stream: {e}") from e

        logger.info("Deepgram stream open: %s", self._config.model)
        return DeepgramStreamingChannel(connection, on_result, on_error, on_closed)


def create_transcriber(
    config: "Config",
) -> DeepgramBatchTranscriber | DeepgramStreamingTranscriber:
    """
    Create the transcription capability for the configured mode.

    Args:
        config: Application configuration.

    Returns:
        A batch transcriber or a streaming transcriber.
    """
    if config.transcription == TranscriptionMode.STREAM:
        return DeepgramStreamingTranscriber(
            config.deepgram,
            sample_rate=config.audio.sample_rate,
            channels=config.audio.channels,
        )
    return DeepgramBatchTranscriber(config.deepgram)
