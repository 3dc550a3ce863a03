"""
Enrichment collaborators: refine category/tags and add selling insights.

Enrichment is always optional. Implementations raise
EnrichmentFailedError on any failure and the scraper logs and ignores it.
"""

import json
import logging
import os
from typing import List, Optional, Protocol

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import EnrichmentFailedError

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o"
DEFAULT_BASE_URL = "https://api.openai.com/v1"

ENRICHMENT_INSTRUCTION = """
Analyze this digital product and return a JSON object with these keys:
- category: the most specific product category (e.g., "template", "course", "software")
- tags: up to 10 relevant keyword tags
- targetAudience: who the product is for, in one sentence
- sellingPoints: up to 5 key selling points
- advantages: up to 5 competitive advantages

Only use information present in the product text. Respond with JSON only.
"""


class EnrichmentResult(BaseModel):
    """Structured output of an enrichment call."""
    model_config = ConfigDict(populate_by_name=True)

    category: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    target_audience: Optional[str] = Field(None, alias="targetAudience")
    selling_points: List[str] = Field(default_factory=list, alias="sellingPoints")
    advantages: List[str] = Field(default_factory=list)


class Enricher(Protocol):
    async def enrich(self, text: str) -> EnrichmentResult:
        ...


class OpenAIEnricher:
    """
    Enrichment via an OpenAI-compatible chat completions endpoint.

    Usage:
        async with OpenAIEnricher() as enricher:
            result = await enricher.enrich(summary)
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = DEFAULT_MODEL,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 20.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Args:
            api_key: API key (or from env OPENAI_API_KEY)
            model: Chat model name
            base_url: API base URL
            timeout: Request timeout in seconds
            client: Optional pre-built client (e.g., with a MockTransport)

        Raises:
            ValueError: If no API key is available
        """
        self.api_key = api_key or os.getenv("OPENAI_API_KEY")
        if not self.api_key:
            raise ValueError(
                "OpenAI API key required. "
                "Set OPENAI_API_KEY env var or pass api_key parameter."
            )
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

    async def __aenter__(self) -> "OpenAIEnricher":
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._client and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def enrich(self, text: str) -> EnrichmentResult:
        if self._client is None:
            raise RuntimeError("Client not initialized. Use async context manager.")

        payload = {
            "model": self.model,
            "response_format": {"type": "json_object"},
            "messages": [
                {"role": "system", "content": ENRICHMENT_INSTRUCTION.strip()},
                {"role": "user", "content": text},
            ],
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

        try:
            response = await self._client.post(
                f"{self.base_url}/chat/completions",
                json=payload,
                headers=headers,
                timeout=self.timeout,
            )
            response.raise_for_status()
            content = response.json()["choices"][0]["message"]["content"]
            return EnrichmentResult.model_validate(json.loads(content))
        except httpx.HTTPStatusError as e:
            raise EnrichmentFailedError(
                f"Enrichment request failed: {e.response.status_code}", cause=e
            ) from e
        except httpx.RequestError as e:
            raise EnrichmentFailedError(f"Enrichment request failed: {e}", cause=e) from e
        except (KeyError, IndexError, TypeError, json.JSONDecodeError, ValidationError) as e:
            raise EnrichmentFailedError(f"Invalid enrichment response: {e}", cause=e) from e
