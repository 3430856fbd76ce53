"""
OpenAI-backed model client.

Returns raw completion text; parsing and validation belong to the extractor.
"""

from typing import Any, Dict, List, Optional

from openai import APIError, APITimeoutError, OpenAI

from ..config.loader import OPENAI_API_KEY
from ..core.errors import ServerMisconfigured, UpstreamTimeout, UpstreamTransportFailure
from ..core.extractor import Prompt, SamplingParams


class OpenAIModelClient:
    """ModelClient over OpenAI chat completions.

    The SDK's own retries are disabled: the extractor owns the retry budget,
    and every failure surfaces as an Upstream* error it can count.
    """

    def __init__(self, model: str, api_key: Optional[str] = None, client: Optional[Any] = None):
        """Initialize the model client.

        Args:
            model: OpenAI model name (required)
            api_key: API key; required unless ``client`` is given
            client: Pre-built OpenAI client

        Raises:
            ValueError: If model is missing/empty
            ServerMisconfigured: If no API key is available
        """
        if not model or not model.strip():
            raise ValueError("model is required and cannot be empty")
        if client is None:
            if not api_key:
                raise ServerMisconfigured([OPENAI_API_KEY])
            client = OpenAI(api_key=api_key, max_retries=0)

        self.model = model
        self.client = client

    def build_messages(self, prompt: Prompt, schema_hint: str) -> List[Dict[str, str]]:
        system = "\n".join(part for part in (
            prompt.system,
            f"Return exactly one JSON object matching this JSON Schema:\n{schema_hint}",
        ) if part)
        return [
            {"role": "system", "content": system},
            {"role": "user", "content": prompt.user},
        ]

    def complete(
        self,
        prompt: Prompt,
        schema_hint: str,
        sampling: SamplingParams,
        timeout: float,
    ) -> str:
        """Run one chat completion and return its text.

        Args:
            prompt: Built instruction for this attempt
            schema_hint: JSON Schema text appended to the system message
            sampling: Temperature and output token limit
            timeout: Seconds before the call is abandoned

        Returns:
            Raw completion text (may be empty)

        Raises:
            UpstreamTimeout: If the request timed out
            UpstreamTransportFailure: On any other API or network error
        """
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=self.build_messages(prompt, schema_hint),
                temperature=sampling.temperature,
                max_tokens=sampling.max_output_tokens,
                timeout=timeout,
            )
        except APITimeoutError as e:
            raise UpstreamTimeout(f"OpenAI request timed out after {timeout}s") from e
        except APIError as e:
            raise UpstreamTransportFailure(f"OpenAI request failed: {e}") from e

        if not response.choices:
            return ""
        return (response.choices[0].message.content or "").strip()
