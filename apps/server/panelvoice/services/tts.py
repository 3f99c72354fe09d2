from __future__ import annotations

import asyncio
import base64
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, List, Protocol
from uuid import uuid4

import requests

from panelvoice.core.config import settings
from panelvoice.core.errors import SynthesisError
from panelvoice.core.storage import audio_storage
from panelvoice.models.entities import VoiceConfig
from panelvoice.models.schemas import WordTime

logger = logging.getLogger(__name__)

BROWSER_PROVIDER = "browser"


@dataclass
class SynthesisResult:
    audio_url: str
    word_times: List[WordTime]
    provider: str

    @property
    def duration(self) -> float:
        return self.word_times[-1].end if self.word_times else 0.0


def approximate_word_times(text: str, rate: float = 1.0) -> List[WordTime]:
    """Per-word timing estimate, longer words take longer. ``rate`` > 1 speaks faster."""
    rate = rate if rate > 0 else 1.0
    cursor = 0.0
    payload: List[WordTime] = []
    for word in text.split():
        duration = max(0.25, len(word) * 0.04) / rate
        payload.append(WordTime(word=word, start=cursor, end=cursor + duration))
        cursor += duration
    return payload


class TTSService:
    ELEVEN_VOICE_MAP = {
        "voice_child_f": "jBpfuIE2acCO8z3wKNLl",
        "voice_young_f": "21m00Tcm4TlvDq8ikWAM",
        "voice_adult_f": "AZnzlk1XvdvUeBnXmlld",
        "voice_child_m": "SOYHLrjzK2X1ezoPC6cr",
        "voice_young_m": "yoZ06aMxZJJ28mfd3POQ",
        "voice_adult_m": "TxGEqnHWrfWFTfGW9XjX",
        "voice_narrator_f": "EXAVITQu4vr4xnSDxMaL",
        "voice_narrator_m": "VR6AewLTigWG4xSOukaG",
    }

    OPENAI_VOICE_MAP = {
        "voice_child_f": "shimmer",
        "voice_young_f": "nova",
        "voice_adult_f": "coral",
        "voice_child_m": "echo",
        "voice_young_m": "alloy",
        "voice_adult_m": "onyx",
        "voice_narrator_f": "sage",
        "voice_narrator_m": "ash",
    }

    GOOGLE_VOICE_MAP = {
        "voice_child_f": "en-US-Neural2-G",
        "voice_young_f": "en-US-Neural2-F",
        "voice_adult_f": "en-US-Neural2-C",
        "voice_child_m": "en-US-Neural2-I",
        "voice_young_m": "en-US-Neural2-A",
        "voice_adult_m": "en-US-Neural2-D",
        "voice_narrator_f": "en-US-Neural2-H",
        "voice_narrator_m": "en-US-Neural2-J",
    }

    VOICE_DISPLAY_NAMES = {
        "voice_child_f": "Young Girl",
        "voice_young_f": "Young Woman",
        "voice_adult_f": "Mature Woman",
        "voice_child_m": "Young Boy",
        "voice_young_m": "Young Man",
        "voice_adult_m": "Mature Man",
        "voice_narrator_f": "Narrator • Female",
        "voice_narrator_m": "Narrator • Male",
    }

    ELEVEN_URL = "https://api.elevenlabs.io/v1"
    ELEVEN_MODEL = "eleven_multilingual_v2"
    OPENAI_URL = "https://api.openai.com/v1"
    OPENAI_TTS_MODEL = "gpt-4o-mini-tts"
    GOOGLE_TTS_URL = "https://texttospeech.googleapis.com/v1"

    def __init__(self, request_timeout: float = 60.0) -> None:
        self.request_timeout = request_timeout

    def provider_chain(self, preferred: str | None = None) -> list[str]:
        chain = [preferred] if preferred else []
        chain += [p.strip() for p in settings.tts_provider_priority.split(",") if p.strip()]
        seen: set[str] = set()
        return [p for p in chain if not (p in seen or seen.add(p))]

    def synthesize(self, text: str, voice: VoiceConfig) -> SynthesisResult:
        logger.info("🔊 TTS request: text='%s' voice=%s provider=%s", text[:50], voice.voice_id, voice.provider)
        if voice.provider == BROWSER_PROVIDER:
            return self._fallback_tts(text, voice)

        errors: list[str] = []
        for provider in self.provider_chain(voice.provider):
            if provider == BROWSER_PROVIDER:
                return self._fallback_tts(text, voice)
            handler = self._handlers().get(provider)
            if handler is None:
                errors.append(f"{provider}: unsupported")
                continue
            try:
                result = handler(text, voice)
            except (requests.RequestException, SynthesisError) as exc:
                logger.warning("❌ %s TTS failed: %s", provider, exc)
                errors.append(f"{provider}: {exc}")
                continue
            logger.info("✅ %s TTS ok: %s", provider, result.audio_url[:80])
            return result

        raise SynthesisError("No TTS providers succeeded: " + "; ".join(errors or ["none configured"]))

    def probe(self, provider: str, timeout: float = 10.0) -> None:
        """Raise when ``provider`` cannot serve requests right now."""
        if provider == BROWSER_PROVIDER:
            return
        if provider == "openai":
            key = self._require_key(settings.openai_api_key, "OpenAI")
            response = requests.get(
                f"{self.OPENAI_URL}/models",
                headers={"Authorization": f"Bearer {key}"},
                timeout=timeout,
            )
        elif provider == "elevenlabs":
            key = self._require_key(settings.elevenlabs_api_key, "ElevenLabs")
            response = requests.get(f"{self.ELEVEN_URL}/voices", headers={"xi-api-key": key}, timeout=timeout)
        elif provider == "google":
            key = self._require_key(settings.google_api_key, "Google")
            response = requests.get(f"{self.GOOGLE_TTS_URL}/voices", params={"key": key}, timeout=timeout)
        else:
            raise SynthesisError(f"Unsupported TTS provider: {provider}")
        response.raise_for_status()

    def _handlers(self) -> dict[str, Callable[[str, VoiceConfig], SynthesisResult]]:
        return {
            "openai": self._synthesize_openai,
            "elevenlabs": self._synthesize_elevenlabs,
            "google": self._synthesize_google,
        }

    @staticmethod
    def _require_key(value: str | None, label: str) -> str:
        key = (value or "").strip()
        if not key:
            raise SynthesisError(f"{label} API key missing")
        return key

    def _store(self, provider: str, voice: VoiceConfig, audio: bytes) -> str:
        key = f"tts_{provider}/{voice.voice_id}/{uuid4().hex}.mp3"
        return audio_storage.put_bytes(key, audio, "audio/mpeg")

    def _synthesize_elevenlabs(self, text: str, voice: VoiceConfig) -> SynthesisResult:
        api_key = self._require_key(settings.elevenlabs_api_key, "ElevenLabs")
        resolved_voice = self.ELEVEN_VOICE_MAP.get(voice.voice_id, voice.voice_id)
        voice_settings = {
            "stability": float(voice.settings.get("stability", 0.5)),
            "similarity_boost": float(voice.settings.get("similarity_boost", 0.75)),
            "style": max(0.0, min(1.0, float(voice.settings.get("style", 0.0)))),
            "use_speaker_boost": True,
        }
        response = requests.post(
            f"{self.ELEVEN_URL}/text-to-speech/{resolved_voice}",
            headers={"xi-api-key": api_key, "Accept": "audio/mpeg", "Content-Type": "application/json"},
            json={"text": text, "model_id": self.ELEVEN_MODEL, "voice_settings": voice_settings},
            timeout=self.request_timeout,
        )
        response.raise_for_status()
        return SynthesisResult(
            audio_url=self._store("elevenlabs", voice, response.content),
            word_times=approximate_word_times(text, voice.rate),
            provider="elevenlabs",
        )

    def _synthesize_openai(self, text: str, voice: VoiceConfig) -> SynthesisResult:
        api_key = self._require_key(settings.openai_api_key, "OpenAI")
        payload = {
            "model": self.OPENAI_TTS_MODEL,
            "voice": self.OPENAI_VOICE_MAP.get(voice.voice_id, voice.voice_id),
            "input": text,
            "response_format": "mp3",
            "speed": voice.rate,
        }
        headers = {"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"}
        last_error: Exception | None = None
        for attempt in range(5):
            response = requests.post(
                f"{self.OPENAI_URL}/audio/speech", headers=headers, json=payload, timeout=self.request_timeout
            )
            if response.status_code == 429:
                wait_time = min(2.0, 0.4 * (attempt + 1))
                logger.warning("⚠️ OpenAI TTS rate limited (attempt %d/5), waiting %.2fs", attempt + 1, wait_time)
                last_error = requests.HTTPError(response.text[:160], response=response)
                time.sleep(wait_time)
                continue
            response.raise_for_status()
            return SynthesisResult(
                audio_url=self._store("openai", voice, response.content),
                word_times=approximate_word_times(text, voice.rate),
                provider="openai",
            )
        raise last_error or SynthesisError("OpenAI TTS gave no response")

    def _synthesize_google(self, text: str, voice: VoiceConfig) -> SynthesisResult:
        api_key = self._require_key(settings.google_api_key, "Google")
        payload = {
            "input": {"text": text},
            "voice": {
                "name": self.GOOGLE_VOICE_MAP.get(voice.voice_id, voice.voice_id),
                "languageCode": voice.settings.get("languageCode", "en-US"),
            },
            "audioConfig": {
                "audioEncoding": "MP3",
                "pitch": float(voice.settings.get("pitch", 0)),
                "speakingRate": voice.rate,
            },
        }
        response = requests.post(
            f"{self.GOOGLE_TTS_URL}/text:synthesize",
            params={"key": api_key},
            json=payload,
            timeout=self.request_timeout,
        )
        response.raise_for_status()
        audio = base64.b64decode(response.json().get("audioContent", ""))
        if not audio:
            raise SynthesisError("Google TTS returned no audio")
        return SynthesisResult(
            audio_url=self._store("google", voice, audio),
            word_times=approximate_word_times(text, voice.rate),
            provider="google",
        )

    def _fallback_tts(self, text: str, voice: VoiceConfig) -> SynthesisResult:
        # Empty audio URL: the client speaks the text locally, timings still drive highlights.
        return SynthesisResult(
            audio_url="",
            word_times=approximate_word_times(text, voice.rate),
            provider=BROWSER_PROVIDER,
        )


tts_service = TTSService()


@dataclass
class SpeechCallbacks:
    on_end: Callable[[], None]
    on_error: Callable[[BaseException], None]
    on_start: Callable[[], None] | None = None
    on_word: Callable[[int], None] | None = None


class SpeechHandle(Protocol):
    def pause(self) -> None: ...

    def resume(self) -> None: ...

    def cancel(self) -> None: ...


class SpeechSynthesizer(Protocol):
    def speak(self, text: str, voice: VoiceConfig, callbacks: SpeechCallbacks) -> SpeechHandle: ...


@dataclass
class TimedSpeechHandle:
    _running: asyncio.Event = field(default_factory=asyncio.Event)
    task: asyncio.Task | None = None
    result: SynthesisResult | None = None

    def __post_init__(self) -> None:
        self._running.set()

    @property
    def paused(self) -> bool:
        return not self._running.is_set()

    def pause(self) -> None:
        self._running.clear()

    def resume(self) -> None:
        self._running.set()

    def cancel(self) -> None:
        if self.task is not None and not self.task.done():
            self.task.cancel()

    async def wait_running(self) -> None:
        await self._running.wait()


class TimedSpeechSynthesizer:
    """asyncio speech session per utterance.

    Synthesis runs in a worker thread; playback is then clocked through the
    word timings on the event loop so pause/resume can hold the clock.
    Callbacks fire on the loop; a cancelled handle fires none.
    """

    def __init__(self, tts: TTSService | None = None, time_scale: float = 1.0, tick: float = 0.05) -> None:
        self.tts = tts or tts_service
        self.time_scale = max(0.0, time_scale)
        self.tick = tick

    def speak(self, text: str, voice: VoiceConfig, callbacks: SpeechCallbacks) -> TimedSpeechHandle:
        handle = TimedSpeechHandle()
        handle.task = asyncio.get_running_loop().create_task(self._run(handle, text, voice, callbacks))
        return handle

    async def _run(
        self,
        handle: TimedSpeechHandle,
        text: str,
        voice: VoiceConfig,
        callbacks: SpeechCallbacks,
    ) -> None:
        try:
            result = await asyncio.to_thread(self.tts.synthesize, text, voice)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            callbacks.on_error(exc)
            return

        handle.result = result
        await handle.wait_running()
        if callbacks.on_start:
            callbacks.on_start()
        for index, word in enumerate(result.word_times):
            await handle.wait_running()
            if callbacks.on_word:
                callbacks.on_word(index)
            await self._hold(handle, (word.end - word.start) * self.time_scale)
        await handle.wait_running()
        callbacks.on_end()

    async def _hold(self, handle: TimedSpeechHandle, duration: float) -> None:
        remaining = duration
        while remaining > 0:
            await handle.wait_running()
            step = min(self.tick, remaining)
            await asyncio.sleep(step)
            remaining -= step
        await asyncio.sleep(0)
