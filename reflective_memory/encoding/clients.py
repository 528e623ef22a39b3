"""
Provider clients shared by the embedders and generators.
"""

from typing import Any

import httpx


class OllamaHTTP:
    """JSON POSTs against one Ollama server over a lazily opened httpx client."""

    def __init__(self, base_url: str, timeout: float, client: httpx.AsyncClient | None = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client

    async def post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        """
        POST ``payload`` to ``path`` and return the decoded body.

        Raises:
            httpx.HTTPError: On transport failures and non-2xx responses.
        """
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)

        response = await self._client.post(f"{self.base_url}{path}", json=payload)
        response.raise_for_status()
        return response.json()

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


def async_openai_client() -> Any:
    """An ``openai.AsyncOpenAI`` client configured from the environment."""
    try:
        from openai import AsyncOpenAI
    except ImportError as e:
        raise ImportError(
            "The openai provider needs the openai package. "
            "Install with: pip install reflective-memory[openai]"
        ) from e
    return AsyncOpenAI()
