"""
Text generation for memory extraction and Add/Merge decisions.

Generators take one prompt and return the stripped completion. Providers are
a local Ollama server (the default), OpenAI chat completions, or any
LangChain chat model.
"""

from abc import ABC, abstractmethod
from typing import Any

import httpx
from langchain_core.messages import HumanMessage
from langchain_ollama import ChatOllama

from reflective_memory.config import ConfigurationError, LLMConfig
from reflective_memory.encoding.clients import OllamaHTTP, async_openai_client


class BaseGenerator(ABC):
    """Prompt in, completion out."""

    def __init__(self, config: LLMConfig):
        self.config = config

    @abstractmethod
    async def generate(self, prompt: str) -> str:
        ...

    async def close(self) -> None:
        return None


class OllamaGenerator(BaseGenerator):
    """
    Non-streaming completions from Ollama's ``/api/generate``.

    Structured Add/Merge output works best with instruction-tuned models
    such as qwen2.5 or llama3.2.
    """

    def __init__(
        self,
        config: LLMConfig,
        timeout: float = 120.0,
        client: httpx.AsyncClient | None = None,
    ):
        super().__init__(config)
        self.http = OllamaHTTP(config.ollama_base_url, timeout, client)

    def _request(self, prompt: str) -> dict[str, Any]:
        options = {"temperature": self.config.temperature, "num_predict": self.config.max_tokens}
        return {"model": self.config.model, "prompt": prompt, "stream": False, "options": options}

    async def generate(self, prompt: str) -> str:
        body = await self.http.post("/api/generate", self._request(prompt))
        return str(body.get("response", "")).strip()

    async def close(self) -> None:
        await self.http.aclose()

    async def __aenter__(self) -> "OllamaGenerator":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


class OpenAIGenerator(BaseGenerator):
    """Single-message chat completions from the OpenAI API."""

    def __init__(self, config: LLMConfig, client: Any = None):
        super().__init__(config)
        self._openai = client

    async def generate(self, prompt: str) -> str:
        if self._openai is None:
            self._openai = async_openai_client()

        completion = await self._openai.chat.completions.create(
            model=self.config.model,
            messages=[{"role": "user", "content": prompt}],
            temperature=self.config.temperature,
            max_tokens=self.config.max_tokens,
        )
        text = completion.choices[0].message.content
        return (text or "").strip()


class ChatModelGenerator(BaseGenerator):
    """Adapter for a LangChain chat model (``ainvoke`` on a message list)."""

    def __init__(self, model: Any, config: LLMConfig | None = None):
        super().__init__(config or LLMConfig())
        self.model = model

    @classmethod
    def from_ollama(cls, config: LLMConfig) -> "ChatModelGenerator":
        """Wrap a ChatOllama model built from config."""
        model = ChatOllama(
            model=config.model,
            base_url=config.ollama_base_url,
            temperature=config.temperature,
            num_predict=config.max_tokens,
        )
        return cls(model, config)

    async def generate(self, prompt: str) -> str:
        response = await self.model.ainvoke([HumanMessage(content=prompt)])
        content = response.content
        if isinstance(content, list):
            content = "".join(
                block.get("text", "") if isinstance(block, dict) else str(block)
                for block in content
            )
        return str(content).strip()


GENERATORS: dict[str, type[BaseGenerator]] = {
    "ollama": OllamaGenerator,
    "openai": OpenAIGenerator,
}


def create_generator(config: LLMConfig | None = None) -> BaseGenerator:
    """
    Generator for ``config.provider``; Ollama when omitted.

    Raises:
        ConfigurationError: If the provider name is not registered.
    """
    config = config or LLMConfig()
    generator_cls = GENERATORS.get(config.provider)
    if generator_cls is None:
        raise ConfigurationError(f"Unknown LLM provider: {config.provider}")
    return generator_cls(config)
