"""Gemini adapter for the chat and vision relays.

Wraps the google-genai async client. Every call is a single attempt with the
fixed generation parameters; SDK failures are logged and re-raised as
ExternalServiceError.
"""

import structlog
from google import genai
from google.genai import types

from zaytoon.core.config import GenerationParameters, Settings
from zaytoon.core.errors import ExternalServiceError
from zaytoon.core.prompts import PERSONA_PROMPT

logger = structlog.get_logger(__name__)


def build_model_client(api_key: str) -> genai.Client:
    """Return a ready-to-use Gemini client for ``api_key``."""
    return genai.Client(api_key=api_key)


def to_generation_config(params: GenerationParameters) -> types.GenerateContentConfig:
    """Map the fixed sampling parameters onto the SDK config type."""
    return types.GenerateContentConfig(
        temperature=params.temperature,
        top_p=params.top_p,
        top_k=params.top_k,
        max_output_tokens=params.max_output_tokens,
        response_mime_type=params.response_mime_type,
    )


def persona_history() -> list[types.Content]:
    """Seed history for a new chat session: the persona as one user turn."""
    return [types.Content(role="user", parts=[types.Part(text=PERSONA_PROMPT)])]


class GeminiRelay:
    """Forwards prompts (and optionally an image) to Gemini and returns its text."""

    def __init__(self, client: genai.Client, model_name: str, generation: GenerationParameters):
        self.client = client
        self.model_name = model_name
        self.config = to_generation_config(generation)

    @classmethod
    def from_settings(cls, settings: Settings) -> "GeminiRelay":
        return cls(
            client=build_model_client(settings.api_key),
            model_name=settings.model_name,
            generation=settings.generation,
        )

    async def chat(self, prompt: str) -> str:
        """Start a fresh persona-seeded session and send ``prompt`` as the next turn.

        Args:
            prompt: User message.

        Returns:
            The model's reply text.

        Raises:
            ExternalServiceError: If the call fails or the reply has no text.
        """
        session = self.client.aio.chats.create(
            model=self.model_name,
            config=self.config,
            history=persona_history(),
        )
        try:
            response = await session.send_message(prompt)
        except Exception as e:
            logger.error("llm.chat_failed", model=self.model_name, error=str(e))
            raise ExternalServiceError(f"Gemini API Error: {e}") from e

        return self._text_of(response, "chat")

    async def generate_with_image(self, image: bytes, mime_type: str, prompt: str) -> str:
        """Single-shot generation over an inline image followed by ``prompt``.

        The image bytes travel base64-encoded in the request's inline data part.

        Raises:
            ExternalServiceError: If the call fails or the reply has no text.
        """
        contents = [
            types.Part.from_bytes(data=image, mime_type=mime_type),
            types.Part(text=prompt),
        ]
        try:
            response = await self.client.aio.models.generate_content(
                model=self.model_name,
                contents=contents,
                config=self.config,
            )
        except Exception as e:
            logger.error("llm.vision_failed", model=self.model_name, mime_type=mime_type, error=str(e))
            raise ExternalServiceError(f"Gemini API Error: {e}") from e

        return self._text_of(response, "vision")

    def _text_of(self, response: types.GenerateContentResponse, call: str) -> str:
        try:
            text = response.text
        except Exception as e:
            logger.error("llm.malformed_response", call=call, model=self.model_name, error=str(e))
            raise ExternalServiceError(f"Malformed Gemini response: {e}") from e
        if text is None:
            logger.error("llm.empty_response", call=call, model=self.model_name)
            raise ExternalServiceError("Gemini returned no text.")
        logger.debug("llm.ok", call=call, model=self.model_name, chars=len(text))
        return text
