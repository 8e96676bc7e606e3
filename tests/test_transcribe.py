"""Tests for the transcribe module."""

from __future__ import annotations

import json
import queue
import threading
from typing import TYPE_CHECKING
from unittest.mock import MagicMock, patch

import httpx
import pytest
from websockets.exceptions import InvalidStatus

from voiceflow.capture import CapturedAudio
from voiceflow.config import Config, DeepgramConfig, TranscriptionMode
from voiceflow.errors import AuthError, ServiceError
from voiceflow.transcribe import (
    CLOSE_STREAM_MESSAGE,
    DeepgramBatchTranscriber,
    DeepgramStreamingChannel,
    DeepgramStreamingTranscriber,
    create_transcriber,
    parse_batch_response,
    parse_stream_message,
)

if TYPE_CHECKING:
    import numpy as np
    from numpy.typing import NDArray


def _batch_body(text: str) -> dict:
    return {"results": {"channels": [{"alternatives": [{"transcript": text, "confidence": 0.98}]}]}}


def _stream_message(text: str, is_final: bool = True, kind: str = "Results") -> str:
    return json.dumps(
        {
            "type": kind,
            "is_final": is_final,
            "channel": {"alternatives": [{"transcript": text}]},
        }
    )


class TestParseBatchResponse:
    """Tests for parse_batch_response."""

    def test_transcript(self) -> None:
        assert parse_batch_response(_batch_body(" Hello world. ")) == "Hello world."

    def test_no_channels(self) -> None:
        assert parse_batch_response({"results": {"channels": []}}) == ""

    def test_no_alternatives(self) -> None:
        assert parse_batch_response({"results": {"channels": [{"alternatives": []}]}}) == ""

    @pytest.mark.parametrize("body", [None, [], {}, {"results": "nope"}])
    def test_malformed(self, body: object) -> None:
        with pytest.raises(ServiceError):
            parse_batch_response(body)


class TestParseStreamMessage:
    """Tests for parse_stream_message."""

    def test_final_result(self) -> None:
        result = parse_stream_message(_stream_message("hello"))
        assert result is not None
        assert result.text == "hello"
        assert result.is_final is True

    def test_interim_result(self) -> None:
        result = parse_stream_message(_stream_message("hel", is_final=False))
        assert result is not None
        assert result.is_final is False

    def test_empty_transcript(self) -> None:
        assert parse_stream_message(_stream_message("  ")) is None

    def test_other_message_types(self) -> None:
        assert parse_stream_message(json.dumps({"type": "Metadata", "request_id": "r1"})) is None

    def test_invalid_json(self) -> None:
        with pytest.raises(ServiceError):
            parse_stream_message("{oops")


class TestDeepgramBatchTranscriber:
    """Tests for DeepgramBatchTranscriber."""

    @pytest.fixture
    def audio(self, sample_audio_16k: NDArray[np.int16]) -> CapturedAudio:
        return CapturedAudio(sample_audio_16k, 16000)

    @patch("voiceflow.transcribe.httpx.post")
    def test_submit(self, mock_post: MagicMock, audio: CapturedAudio) -> None:
        """Test the request shape and the returned transcript."""
        mock_post.return_value = httpx.Response(200, json=_batch_body("hello world"))
        transcriber = DeepgramBatchTranscriber(DeepgramConfig(api_key="dg-key", language="en"))

        assert transcriber.submit(audio) == "hello world"

        args, kwargs = mock_post.call_args
        assert args[0] == "https://api.deepgram.com/v1/listen"
        assert kwargs["params"] == {"model": "nova-2", "smart_format": "true", "language": "en"}
        assert kwargs["headers"]["Authorization"] == "Token dg-key"
        assert kwargs["headers"]["Content-Type"] == "audio/wav"
        assert kwargs["content"][:4] == b"RIFF"
        assert kwargs["timeout"] == 30.0

    @patch("voiceflow.transcribe.httpx.post")
    def test_auto_language_omits_param(self, mock_post: MagicMock, audio: CapturedAudio) -> None:
        mock_post.return_value = httpx.Response(200, json=_batch_body("hi"))
        DeepgramBatchTranscriber(DeepgramConfig(api_key="dg-key")).submit(audio)
        assert "language" not in mock_post.call_args.kwargs["params"]

    @pytest.mark.parametrize("status", [401, 403])
    @patch("voiceflow.transcribe.httpx.post")
    def test_auth_rejected(self, mock_post: MagicMock, status: int, audio: CapturedAudio) -> None:
        mock_post.return_value = httpx.Response(status, json={"err_code": "INVALID_AUTH"})
        with pytest.raises(AuthError):
            DeepgramBatchTranscriber(DeepgramConfig(api_key="bad")).submit(audio)

    @patch("voiceflow.transcribe.httpx.post")
    def test_server_error(self, mock_post: MagicMock, audio: CapturedAudio) -> None:
        mock_post.return_value = httpx.Response(500, text="internal")
        with pytest.raises(ServiceError) as excinfo:
            DeepgramBatchTranscriber(DeepgramConfig(api_key="dg-key")).submit(audio)
        assert not isinstance(excinfo.value, AuthError)

    @patch("voiceflow.transcribe.httpx.post")
    def test_network_error(self, mock_post: MagicMock, audio: CapturedAudio) -> None:
        mock_post.side_effect = httpx.ConnectError("connection refused")
        with pytest.raises(ServiceError):
            DeepgramBatchTranscriber(DeepgramConfig(api_key="dg-key")).submit(audio)

    @patch("voiceflow.transcribe.httpx.post")
    def test_timeout(self, mock_post: MagicMock, audio: CapturedAudio) -> None:
        mock_post.side_effect = httpx.ReadTimeout("timed out")
        with pytest.raises(ServiceError):
            DeepgramBatchTranscriber(DeepgramConfig(api_key="dg-key")).submit(audio)

    @patch("voiceflow.transcribe.httpx.post")
    def test_non_json_body(self, mock_post: MagicMock, audio: CapturedAudio) -> None:
        mock_post.return_value = httpx.Response(200, text="<html>")
        with pytest.raises(ServiceError):
            DeepgramBatchTranscriber(DeepgramConfig(api_key="dg-key")).submit(audio)


class FakeConnection:
    """Synchronous websocket stand-in; ``deliver`` queues server messages."""

    def __init__(self, close_on_close_stream: bool = True) -> None:
        self.sent: list[bytes | str] = []
        self.closed = False
        self._incoming: queue.Queue[str | None] = queue.Queue()
        self._close_on_close_stream = close_on_close_stream

    def deliver(self, message: str) -> None:
        self._incoming.put(message)

    def hang_up(self) -> None:
        self._incoming.put(None)

    def send(self, message: bytes | str) -> None:
        self.sent.append(message)
        if message == CLOSE_STREAM_MESSAGE and self._close_on_close_stream:
            self.hang_up()

    def close(self) -> None:
        self.closed = True
        self.hang_up()

    def __iter__(self):
        while True:
            message = self._incoming.get(timeout=2)
            if message is None:
                return
            yield message


class ChannelCallbacks:
    def __init__(self) -> None:
        self.results: list = []
        self.errors: list = []
        self.closed = threading.Event()
        self.failed = threading.Event()

    def on_result(self, result) -> None:
        self.results.append(result)

    def on_error(self, error) -> None:
        self.errors.append(error)
        self.failed.set()

    def on_closed(self) -> None:
        self.closed.set()


@pytest.fixture
def callbacks() -> ChannelCallbacks:
    return ChannelCallbacks()


def _open_channel(connection: FakeConnection, callbacks: ChannelCallbacks) -> DeepgramStreamingChannel:
    return DeepgramStreamingChannel(connection, callbacks.on_result, callbacks.on_error, callbacks.on_closed)  # type: ignore[arg-type]


class TestDeepgramStreamingChannel:
    """Tests for DeepgramStreamingChannel."""

    def test_results_and_graceful_close(self, callbacks: ChannelCallbacks, wait_until) -> None:
        """Test audio is sent, results are reported and close drains the stream."""
        connection = FakeConnection()
        channel = _open_channel(connection, callbacks)

        channel.send(b"\x00\x01")
        connection.deliver(_stream_message("hel", is_final=False))
        connection.deliver(_stream_message("hello"))
        assert wait_until(lambda: len(callbacks.results) == 2)

        channel.close()
        assert not channel.is_open
        assert callbacks.closed.wait(2)

        assert connection.sent == [b"\x00\x01", CLOSE_STREAM_MESSAGE]
        assert [r.text for r in callbacks.results] == ["hel", "hello"]
        assert callbacks.errors == []

    def test_send_after_close(self, callbacks: ChannelCallbacks) -> None:
        connection = FakeConnection()
        channel = _open_channel(connection, callbacks)
        channel.close()
        with pytest.raises(ServiceError):
            channel.send(b"\x00")

    def test_unexpected_hang_up(self, callbacks: ChannelCallbacks) -> None:
        """Test a stream closed by the service mid-session is an error."""
        connection = FakeConnection()
        _open_channel(connection, callbacks)

        connection.hang_up()

        assert callbacks.failed.wait(2)
        assert isinstance(callbacks.errors[0], ServiceError)
        assert not callbacks.closed.is_set()

    def test_invalid_message(self, callbacks: ChannelCallbacks) -> None:
        connection = FakeConnection()
        _open_channel(connection, callbacks)

        connection.deliver("{not json")

        assert callbacks.failed.wait(2)
        assert connection.closed

    def test_abort_is_silent(self, callbacks: ChannelCallbacks, wait_until) -> None:
        """Test abort drops the socket without any callback."""
        connection = FakeConnection()
        channel = _open_channel(connection, callbacks)

        channel.abort()
        channel.abort()

        assert connection.closed
        assert not channel.is_open
        assert wait_until(lambda: not channel._receiver.is_alive())
        assert callbacks.errors == []
        assert not callbacks.closed.is_set()


class TestDeepgramStreamingTranscriber:
    """Tests for DeepgramStreamingTranscriber."""

    def test_url(self) -> None:
        transcriber = DeepgramStreamingTranscriber(DeepgramConfig(language="de"), sample_rate=16000)
        url = transcriber.url()
        assert url.startswith("wss://api.deepgram.com/v1/listen?")
        for param in (
            "model=nova-2",
            "encoding=linear16",
            "sample_rate=16000",
            "channels=1",
            "smart_format=true",
            "interim_results=true",
            "language=de",
        ):
            assert param in url

    @patch("voiceflow.transcribe.ws_connect")
    def test_open(self, mock_connect: MagicMock, callbacks: ChannelCallbacks) -> None:
        connection = FakeConnection()
        mock_connect.return_value = connection
        transcriber = DeepgramStreamingTranscriber(DeepgramConfig(api_key="dg-key"), sample_rate=16000)

        channel = transcriber.open(callbacks.on_result, callbacks.on_error, callbacks.on_closed)
        try:
            assert channel.is_open
            kwargs = mock_connect.call_args.kwargs
            assert kwargs["additional_headers"] == {"Authorization": "Token dg-key"}
        finally:
            channel.abort()

    @pytest.mark.parametrize("status,error", [(401, AuthError), (500, ServiceError)])
    @patch("voiceflow.transcribe.ws_connect")
    def test_handshake_rejected(
        self, mock_connect: MagicMock, status: int, error: type, callbacks: ChannelCallbacks
    ) -> None:
        mock_connect.side_effect = InvalidStatus(MagicMock(status_code=status))
        transcriber = DeepgramStreamingTranscriber(DeepgramConfig(api_key="dg-key"), sample_rate=16000)
        with pytest.raises(error):
            transcriber.open(callbacks.on_result, callbacks.on_error, callbacks.on_closed)

    @patch("voiceflow.transcribe.ws_connect")
    def test_unreachable(self, mock_connect: MagicMock, callbacks: ChannelCallbacks) -> None:
        mock_connect.side_effect = OSError("network unreachable")
        transcriber = DeepgramStreamingTranscriber(DeepgramConfig(api_key="dg-key"), sample_rate=16000)
        with pytest.raises(ServiceError):
            transcriber.open(callbacks.on_result, callbacks.on_error, callbacks.on_closed)


class TestCreateTranscriber:
    def test_batch(self) -> None:
        assert isinstance(create_transcriber(Config()), DeepgramBatchTranscriber)

    def test_stream(self) -> None:
        config = Config(transcription=TranscriptionMode.STREAM)
        assert isinstance(create_transcriber(config), DeepgramStreamingTranscriber)
