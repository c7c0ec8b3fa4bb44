# voicepins/content.py
import json
import logging
from typing import Any, Dict, Optional

from openai import OpenAI, APITimeoutError, OpenAIError

from voicepins.errors import ContentGenerationError
from voicepins.geo import clamp_offset
from voicepins.schemas import ContentRequest, Coordinates, PinContent
from voicepins.settings import Settings

logger = logging.getLogger(__name__)

TITLE_MAX = 50
DESCRIPTION_MAX = 200

TOUR_GUIDE_SYSTEM_PROMPT = """You are a friendly, knowledgeable local tour guide creating audio content for walking tours.

Your task is to generate engaging, informative content about points of interest for a specific location.

Guidelines:
- Write in a warm, conversational tone as if speaking to a visitor
- Keep transcripts between 40-50 words (approximately 15-20 seconds when spoken)
- Include interesting facts, local tips, or historical context
- Make content specific to the location and category
- Avoid generic descriptions - be specific and memorable
- Do not repeat topics from existing pins in the area
- Suggest a slight coordinate offset (within 50 meters) to spread pins apart

Respond ONLY with valid JSON in this exact format:
{
  "title": "Short, catchy title (max 50 characters)",
  "description": "2-3 sentence description for reading (max 200 characters)",
  "transcript": "40-50 word script for audio narration. Speak directly to the listener.",
  "suggestedLatOffset": 0.0003,
  "suggestedLngOffset": -0.0002
}"""


def build_user_prompt(req: ContentRequest) -> str:
    ranked = sorted(req.preferences.category_weights.items(), key=lambda kv: kv[1], reverse=True)
    top = ", ".join(cat for cat, _ in ranked[:3]) or ", ".join(req.preferences.favorite_categories)

    prompt = (
        f"Generate a {req.category} point of interest for the {req.area_name} area.\n"
        f"Base coordinates: {req.location.lat:.6f}, {req.location.lng:.6f}\n"
        f"This is pin {req.pin_index + 1} of {req.total_pins} in the tour.\n\n"
        f"User's preferred categories (in order): {top}\n"
    )
    if req.existing_titles:
        avoid = "\n".join(f"- {t}" for t in req.existing_titles)
        prompt += f"\nExisting topics in this area to avoid duplicating:\n{avoid}\n"
    prompt += (
        f"\nCreate something unique and interesting about this {req.category} location "
        "that a visitor would find engaging."
    )
    return prompt


def _offset(parsed: Dict[str, Any], key: str) -> float:
    try:
        return float(parsed.get(key) or 0.0)
    except (TypeError, ValueError):
        return 0.0


def parse_pin_content(raw: Optional[str], req: ContentRequest) -> PinContent:
    """Validate the model's JSON reply and turn it into pin content."""
    if not raw:
        raise ContentGenerationError("No content in OpenAI response")
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ContentGenerationError("OpenAI response was not valid JSON") from e
    if not isinstance(parsed, dict):
        raise ContentGenerationError("Invalid response format from OpenAI")

    title = parsed.get("title")
    description = parsed.get("description")
    transcript = parsed.get("transcript")
    if not all(isinstance(v, str) and v.strip() for v in (title, description, transcript)):
        raise ContentGenerationError("Invalid response format from OpenAI")

    word_count = len(transcript.split())
    if word_count < 20 or word_count > 100:
        logger.warning("Transcript word count %d outside ideal range (40-50)", word_count)

    lat, lng = clamp_offset(
        req.location.lat,
        req.location.lng,
        req.location.lat + _offset(parsed, "suggestedLatOffset"),
        req.location.lng + _offset(parsed, "suggestedLngOffset"),
    )
    return PinContent(
        title=title.strip()[:TITLE_MAX],
        description=description.strip()[:DESCRIPTION_MAX],
        transcript=transcript.strip(),
        category=req.category,
        suggested_location=Coordinates(lat=lat, lng=lng),
    )


class OpenAIContentGenerator:
    def __init__(self, settings: Settings, client: Optional[OpenAI] = None):
        self.settings = settings
        self._client = client

    @property
    def client(self) -> OpenAI:
        if self._client is None:
            if not self.settings.OPENAI_API_KEY:
                raise ContentGenerationError("OpenAI API key is not configured (OPENAI_API_KEY)")
            self._client = OpenAI(
                api_key=self.settings.OPENAI_API_KEY,
                timeout=self.settings.OPENAI_TIMEOUT_SECONDS,
                max_retries=0,
            )
        return self._client

    def generate(self, req: ContentRequest) -> PinContent:
        logger.info(
            "Invoking OpenAI model %s for %s pin %d/%d",
            self.settings.OPENAI_MODEL, req.category, req.pin_index + 1, req.total_pins,
        )
        try:
            resp = self.client.chat.completions.create(
                model=self.settings.OPENAI_MODEL,
                messages=[
                    {"role": "system", "content": TOUR_GUIDE_SYSTEM_PROMPT},
                    {"role": "user", "content": build_user_prompt(req)},
                ],
                temperature=0.8,
                max_tokens=500,
                response_format={"type": "json_object"},
            )
        except APITimeoutError as e:
            raise ContentGenerationError("OpenAI request timed out") from e
        except OpenAIError as e:
            raise ContentGenerationError(f"OpenAI API error: {e}") from e

        if not resp.choices:
            raise ContentGenerationError("No content in OpenAI response")
        return parse_pin_content(resp.choices[0].message.content, req)
