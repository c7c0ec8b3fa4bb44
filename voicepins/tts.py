"""
Narration synthesis via ElevenLabs.

One POST per pin; the whole transcript is short enough (40-50 words) that no
sentence splitting is needed. Duration is estimated from character count
(~150 wpm, ~12.5 chars/s) unless ELEVEN_MEASURE_DURATION asks pydub to decode
the returned mp3.
"""

import io
import logging
from typing import Optional

import requests
from pydub import AudioSegment
from pydub.exceptions import CouldntDecodeError

from voicepins.errors import NarrationError
from voicepins.schemas import NarrationResult
from voicepins.settings import Settings

logger = logging.getLogger(__name__)

ELEVEN_TTS_URL_TMPL = "https://api.elevenlabs.io/v1/text-to-speech/{voice_id}"
CHARS_PER_SECOND = 12.5

# ---------- ELEVENLABS API ----------
class ElevenAPI:
    def __init__(self, api_key: str, session: Optional[requests.Session] = None):
        self.session = session or requests.Session()
        self.session.headers.update({"xi-api-key": api_key})

    def synth(self, voice_id: str, text: str, *, model_id: str, timeout: float,
              stability: float = 0.5, similarity: float = 0.75, style: float = 0.3) -> bytes:
        url = ELEVEN_TTS_URL_TMPL.format(voice_id=voice_id)
        payload = {
            "text": text,
            "model_id": model_id,
            "voice_settings": {
                "stability": float(stability),
                "similarity_boost": float(similarity),
                "style": float(style),  # slight expressiveness
                "use_speaker_boost": True,
            },
        }
        r = self.session.post(url, json=payload, headers={"Accept": "audio/mpeg"}, timeout=timeout)
        r.raise_for_status()
        return r.content


def estimate_duration(text: str) -> float:
    return len(text) / CHARS_PER_SECOND


def measure_duration(audio: bytes) -> Optional[float]:
    """Decode mp3 bytes and return their length in seconds, None if undecodable."""
    try:
        seg = AudioSegment.from_file(io.BytesIO(audio), format="mp3")
    except (CouldntDecodeError, OSError) as e:
        logger.warning("Could not decode narration audio: %s", e)
        return None
    return len(seg) / 1000.0


class ElevenLabsNarrator:
    def __init__(self, settings: Settings, api: Optional[ElevenAPI] = None):
        self.settings = settings
        self._api = api

    @property
    def api(self) -> ElevenAPI:
        if self._api is None:
            if not self.settings.ELEVEN_API_KEY:
                raise NarrationError("Eleven Labs API key is not configured (ELEVEN_API_KEY)")
            self._api = ElevenAPI(self.settings.ELEVEN_API_KEY)
        return self._api

    def synthesize(self, text: str) -> NarrationResult:
        text = (text or "").strip()
        if not text:
            raise NarrationError("Eleven Labs request has no text")
        try:
            audio = self.api.synth(
                self.settings.ELEVEN_VOICE_ID,
                text,
                model_id=self.settings.ELEVEN_MODEL_ID,
                timeout=self.settings.ELEVEN_TIMEOUT_SECONDS,
            )
        except requests.Timeout as e:
            raise NarrationError("Eleven Labs request timed out") from e
        except requests.HTTPError as e:
            resp = e.response
            detail = f"{resp.status_code} - {resp.text[:300]}" if resp is not None else str(e)
            raise NarrationError(f"Eleven Labs API error: {detail}") from e
        except requests.RequestException as e:
            raise NarrationError(f"Eleven Labs request failed: {e}") from e

        duration = None
        if self.settings.ELEVEN_MEASURE_DURATION:
            duration = measure_duration(audio)
        if duration is None:
            duration = estimate_duration(text)

        return NarrationResult(
            audio=audio,
            estimated_duration_seconds=duration,
            character_count=len(text),
        )
