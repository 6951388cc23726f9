from unittest.mock import MagicMock

import pytest
import requests

from voicebot.clients.deepgram_client import DeepgramClient
from voicebot.clients.openai_client import ChatClient
from voicebot.errors import UpstreamError


def _http(status=200, payload=None, content=b"", text=""):
    http = MagicMock()
    http.headers = {}
    resp = MagicMock()
    resp.status_code = status
    resp.text = text
    resp.content = content
    resp.json.return_value = payload
    http.post.return_value = resp
    return http


def test_deepgram_requires_key():
    with pytest.raises(UpstreamError):
        DeepgramClient(api_key="")


def test_transcribe_posts_raw_audio():
    payload = {"results": {"channels": [{"alternatives": [{"transcript": " turn on the lights "}]}]}}
    http = _http(payload=payload)
    client = DeepgramClient(api_key="dg-key", session=http)

    assert client.transcribe(b"ogg-bytes", "audio/ogg") == "turn on the lights"

    args, kwargs = http.post.call_args
    assert args[0] == "https://api.deepgram.com/v1/listen?model=general&smart_format=true"
    assert kwargs["headers"]["Authorization"] == "Token dg-key"
    assert kwargs["headers"]["Content-Type"] == "audio/ogg"
    assert kwargs["data"] == b"ogg-bytes"


def test_transcribe_missing_alternatives_is_empty():
    client = DeepgramClient(api_key="k", session=_http(payload={"results": {"channels": []}}))
    assert client.transcribe(b"x") == ""


def test_transcribe_non_200_raises():
    client = DeepgramClient(api_key="k", session=_http(status=401, text="Unauthorized"))
    with pytest.raises(UpstreamError, match="Deepgram STT error: 401 Unauthorized"):
        client.transcribe(b"x")


def test_transcribe_network_error_raises():
    http = _http()
    http.post.side_effect = requests.ConnectionError("refused")
    client = DeepgramClient(api_key="k", session=http)
    with pytest.raises(UpstreamError):
        client.transcribe(b"x")


def test_synthesize_returns_mp3():
    http = _http(content=b"ID3...")
    client = DeepgramClient(api_key="k", tts_model="aura-asteria-en", session=http)

    assert client.synthesize(" Hello ") == b"ID3..."
    args, kwargs = http.post.call_args
    assert args[0] == "https://api.deepgram.com/v1/speak?model=aura-asteria-en"
    assert kwargs["json"] == {"text": "Hello"}
    assert kwargs["headers"]["Accept"] == "audio/mpeg"


def test_synthesize_rejects_empty_text():
    client = DeepgramClient(api_key="k", session=_http())
    with pytest.raises(ValueError):
        client.synthesize("   ")


def test_synthesize_empty_body_raises():
    client = DeepgramClient(api_key="k", session=_http(content=b""))
    with pytest.raises(UpstreamError):
        client.synthesize("hi")


def _openai(content="  Sure thing.  ", error=None):
    fake = MagicMock()
    if error:
        fake.chat.completions.create.side_effect = error
    else:
        fake.chat.completions.create.return_value.choices = [MagicMock(message=MagicMock(content=content))]
    return fake


def test_chat_reply_builds_messages():
    fake = _openai()
    chat = ChatClient(api_key="sk", client=fake)
    history = [{"role": "user", "content": "hi"}, {"role": "assistant", "content": "hello"}]

    assert chat.reply("Be brief.", history, "help me") == "Sure thing."

    kwargs = fake.chat.completions.create.call_args.kwargs
    assert kwargs["model"] == "gpt-4o-mini"
    assert kwargs["temperature"] == 0.3
    assert kwargs["messages"] == [
        {"role": "system", "content": "Be brief."},
        {"role": "user", "content": "hi"},
        {"role": "assistant", "content": "hello"},
        {"role": "user", "content": "help me"},
    ]


def test_chat_error_wrapped():
    chat = ChatClient(api_key="sk", client=_openai(error=RuntimeError("429 rate limit")))
    with pytest.raises(UpstreamError, match="OpenAI error"):
        chat.reply("", [], "hi")


def test_chat_none_content_is_empty():
    chat = ChatClient(api_key="sk", client=_openai(content=None))
    assert chat.reply("", [], "hi") == ""
