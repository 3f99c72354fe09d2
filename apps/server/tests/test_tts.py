"""Tests for speech synthesis providers and the timed speech session."""

import asyncio
import base64
from unittest.mock import MagicMock, patch

import pytest
import requests

from panelvoice.core.config import settings
from panelvoice.core.errors import SynthesisError
from panelvoice.models.entities import VoiceConfig
from panelvoice.models.schemas import WordTime
from panelvoice.services.tts import (
    BROWSER_PROVIDER,
    SpeechCallbacks,
    SynthesisResult,
    TimedSpeechSynthesizer,
    TTSService,
    approximate_word_times,
)


@pytest.fixture
def keys(monkeypatch):
    monkeypatch.setattr(settings, "openai_api_key", "sk-test")
    monkeypatch.setattr(settings, "elevenlabs_api_key", "xi-test")
    monkeypatch.setattr(settings, "google_api_key", "g-test")
    monkeypatch.setattr(settings, "tts_provider_priority", "openai,elevenlabs,google")


def _audio_response(content=b"mp3-bytes", status_code=200):
    response = MagicMock()
    response.status_code = status_code
    response.content = content
    response.raise_for_status.return_value = None
    return response


def test_word_times_scale_with_rate():
    times = approximate_word_times("hi extraordinarily")
    assert [t.word for t in times] == ["hi", "extraordinarily"]
    assert times[0].end == pytest.approx(0.25)
    assert times[1].end - times[1].start == pytest.approx(0.6)

    faster = approximate_word_times("hi extraordinarily", rate=2.0)
    assert faster[-1].end == pytest.approx(times[-1].end / 2)
    assert approximate_word_times("") == []


def test_browser_voice_skips_hosted_providers():
    with patch("panelvoice.services.tts.requests.post") as post:
        result = TTSService().synthesize("hello there", VoiceConfig("voice_adult_m", BROWSER_PROVIDER))
    post.assert_not_called()
    assert result.audio_url == ""
    assert result.provider == BROWSER_PROVIDER
    assert len(result.word_times) == 2


@patch("panelvoice.services.tts.audio_storage")
@patch("panelvoice.services.tts.requests.post")
def test_openai_synthesis(post, storage, keys):
    post.return_value = _audio_response()
    storage.put_bytes.return_value = "https://cdn.example/a.mp3"
    voice = VoiceConfig("voice_young_f", "openai", {"rate": 1.25})

    result = TTSService().synthesize("Hello", voice)

    assert result.provider == "openai"
    assert result.audio_url == "https://cdn.example/a.mp3"
    payload = post.call_args.kwargs["json"]
    assert payload["voice"] == "nova"
    assert payload["speed"] == 1.25
    key, data, content_type = storage.put_bytes.call_args.args
    assert key.startswith("tts_openai/voice_young_f/")
    assert (data, content_type) == (b"mp3-bytes", "audio/mpeg")


@patch("panelvoice.services.tts.audio_storage")
@patch("panelvoice.services.tts.requests.post")
def test_falls_through_to_next_provider(post, storage, keys):
    post.side_effect = [requests.ConnectionError("down"), _audio_response()]
    storage.put_bytes.return_value = "data:audio/mpeg;base64,AA=="

    result = TTSService().synthesize("Hello", VoiceConfig("voice_adult_m", "openai"))

    assert result.provider == "elevenlabs"
    assert "/text-to-speech/TxGEqnHWrfWFTfGW9XjX" in post.call_args.args[0]


@patch("panelvoice.services.tts.audio_storage")
@patch("panelvoice.services.tts.requests.post")
def test_google_synthesis_decodes_audio(post, storage, keys):
    response = _audio_response()
    response.json.return_value = {"audioContent": base64.b64encode(b"google-mp3").decode()}
    post.return_value = response
    storage.put_bytes.return_value = "https://cdn.example/g.mp3"

    result = TTSService().synthesize("Hi", VoiceConfig("voice_child_f", "google"))

    assert result.provider == "google"
    assert storage.put_bytes.call_args.args[1] == b"google-mp3"
    assert post.call_args.kwargs["json"]["voice"]["name"] == "en-US-Neural2-G"


@patch("panelvoice.services.tts.requests.post")
def test_all_providers_failing_raises(post, keys):
    post.side_effect = requests.Timeout("slow")
    with pytest.raises(SynthesisError):
        TTSService().synthesize("Hello", VoiceConfig("voice_adult_m", "openai"))


def test_unknown_voice_id_passes_through(monkeypatch, keys):
    with patch("panelvoice.services.tts.requests.post") as post, patch("panelvoice.services.tts.audio_storage"):
        post.return_value = _audio_response()
        TTSService().synthesize("Hi", VoiceConfig("custom-voice", "openai"))
    assert post.call_args.kwargs["json"]["voice"] == "custom-voice"


def test_provider_chain_puts_preferred_first(keys):
    assert TTSService().provider_chain("google") == ["google", "openai", "elevenlabs"]


def test_probe_requires_key(monkeypatch):
    monkeypatch.setattr(settings, "openai_api_key", None)
    with pytest.raises(SynthesisError):
        TTSService().probe("openai")
    TTSService().probe(BROWSER_PROVIDER)


class StaticTTS:
    def __init__(self, words=("one", "two", "three"), error=None):
        self.words = words
        self.error = error

    def synthesize(self, text, voice):
        if self.error:
            raise self.error
        times = [WordTime(word=w, start=i * 0.01, end=(i + 1) * 0.01) for i, w in enumerate(self.words)]
        return SynthesisResult(audio_url="", word_times=times, provider="static")


def _recording_callbacks(done):
    calls = []
    callbacks = SpeechCallbacks(
        on_end=lambda: (calls.append("end"), done.set()),
        on_error=lambda exc: (calls.append(("error", str(exc))), done.set()),
        on_start=lambda: calls.append("start"),
        on_word=lambda index: calls.append(("word", index)),
    )
    return calls, callbacks


@pytest.mark.asyncio
async def test_timed_speech_plays_all_words():
    done = asyncio.Event()
    calls, callbacks = _recording_callbacks(done)
    synth = TimedSpeechSynthesizer(StaticTTS(), time_scale=0)
    handle = synth.speak("one two three", VoiceConfig("v", "static"), callbacks)
    await asyncio.wait_for(done.wait(), timeout=2)
    assert calls == ["start", ("word", 0), ("word", 1), ("word", 2), "end"]
    assert handle.result.provider == "static"


@pytest.mark.asyncio
async def test_timed_speech_reports_errors():
    done = asyncio.Event()
    calls, callbacks = _recording_callbacks(done)
    synth = TimedSpeechSynthesizer(StaticTTS(error=SynthesisError("nope")), time_scale=0)
    synth.speak("x", VoiceConfig("v", "static"), callbacks)
    await asyncio.wait_for(done.wait(), timeout=2)
    assert calls == [("error", "nope")]


@pytest.mark.asyncio
async def test_paused_handle_holds_until_resume():
    done = asyncio.Event()
    calls, callbacks = _recording_callbacks(done)
    synth = TimedSpeechSynthesizer(StaticTTS(), time_scale=0)
    handle = synth.speak("one two three", VoiceConfig("v", "static"), callbacks)
    handle.pause()
    await asyncio.sleep(0.1)
    assert calls == []
    assert handle.paused

    handle.resume()
    await asyncio.wait_for(done.wait(), timeout=2)
    assert calls[-1] == "end"


@pytest.mark.asyncio
async def test_cancelled_handle_fires_nothing():
    done = asyncio.Event()
    calls, callbacks = _recording_callbacks(done)
    synth = TimedSpeechSynthesizer(StaticTTS(), time_scale=1.0)
    handle = synth.speak("one two three", VoiceConfig("v", "static"), callbacks)
    handle.cancel()
    await asyncio.sleep(0.1)
    assert calls == []
    assert handle.task.cancelled()
    handle.cancel()
