import logging

import openai
from openai import OpenAI

from mamacare.core.config import settings
from mamacare.core.errors import (
    ConfigurationError,
    EmptyReplyError,
    UpstreamStatusError,
    UpstreamUnavailableError,
)

logger = logging.getLogger(__name__)


def get_client() -> OpenAI:
    if not settings.OPENAI_API_KEY:
        raise ConfigurationError("OPENAI_API_KEY is not set in environment variables.")
    return OpenAI(api_key=settings.OPENAI_API_KEY, base_url=settings.OPENAI_BASE_URL)


def complete(
    system: str,
    message: str,
    *,
    max_tokens: int,
    temperature: float,
    json_mode: bool = False,
) -> str:
    """One system+user chat completion; returns the stripped reply text."""
    client = get_client()
    kwargs = {}
    if json_mode:
        kwargs["response_format"] = {"type": "json_object"}

    try:
        resp = client.chat.completions.create(
            model=settings.OPENAI_MODEL,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": message},
            ],
            temperature=temperature,
            max_tokens=max_tokens,
            **kwargs,
        )
    except openai.APIConnectionError as e:
        logger.warning("completion upstream unreachable: %s", e)
        raise UpstreamUnavailableError("AI service is unreachable") from e
    except openai.APIStatusError as e:
        logger.warning("completion upstream status=%s body=%s", e.status_code, e.message)
        raise UpstreamStatusError(f"AI service error: {e.status_code} - {e.message}", e.status_code) from e

    text = ""
    if resp.choices:
        text = (resp.choices[0].message.content or "").strip()
    if not text:
        raise EmptyReplyError("Failed to get a valid reply from AI.")
    return text
