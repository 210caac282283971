# jobmatch/services/common/llm_client.py
"""Async model-call surface for the match engine: one LLMClient for Ollama and OpenAI,
plus prompt loading from jobmatch/prompts."""
from __future__ import annotations
import asyncio
import functools
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import requests
from openai import AsyncOpenAI

from jobmatch.core.config import settings
from jobmatch.services.match.errors import MatcherValidationError

logger = logging.getLogger("ai.llm")

PROMPTS_DIR = Path(__file__).resolve().parents[2] / "prompts"

# Default Ollama chat options
DEFAULT_CHAT_OPTIONS: Dict[str, Any] = {
    "temperature": 0,
    "seed": 7,
    "repeat_penalty": 1.05,
    "num_ctx": 8192,
    "num_predict": 2048,
}

DEFAULT_TIMEOUT_S = 120


def load_prompt(relative_path: str) -> str:
    """
    Load a prompt file from jobmatch/prompts/<relative_path>.
    Falls back to the basename directly under jobmatch/prompts/.
    """
    path = PROMPTS_DIR / relative_path
    if path.exists():
        text = path.read_text(encoding="utf-8")
        logger.debug("Loaded prompt: %s (%d chars)", relative_path, len(text))
        return text
    alt = PROMPTS_DIR / Path(relative_path).name
    if alt.exists():
        text = alt.read_text(encoding="utf-8")
        logger.debug("Loaded prompt by basename fallback: %s (%d chars)", alt.name, len(text))
        return text
    raise FileNotFoundError(f"Prompt file not found. Tried: {path} and {alt}")


def _require_api_key() -> str:
    if not settings.OPENAI_API_KEY:
        raise MatcherValidationError("OPENAI_API_KEY is not set. Please add it to your environment or .env file.")
    return settings.OPENAI_API_KEY


def _build_ollama_chat_url() -> str:
    if not settings.OLLAMA_BASE_URL:
        raise ValueError("OLLAMA_BASE_URL is not set. Please add it to your environment or .env file.")
    return f"{settings.OLLAMA_BASE_URL.rstrip('/')}/api/chat"


class LLMClient:
    """
    Unified wrapper supporting both Ollama and OpenAI.

    Instances are awaitable model calls: `await client(system, prompt, provider_options)`
    returns the raw response text. JSON mode is requested from both providers, but the
    text is returned unparsed; extraction and validation happen in the match engine.

    Provider selection:
      - explicit `provider` argument wins
      - else LLM_CHAT_MODEL set -> Ollama
      - else OpenAI
    """

    def __init__(self, model: Optional[str] = None, provider: Optional[str] = None, timeout_s: int = DEFAULT_TIMEOUT_S):
        self.provider = (provider or settings.matcher_provider_effective).lower()
        self.timeout_s = timeout_s
        self._openai: Optional[AsyncOpenAI] = None

        if self.provider == "ollama":
            self.model = model or settings.LLM_CHAT_MODEL or "llama3.2"
            self.chat_url = _build_ollama_chat_url()
            self.default_options = DEFAULT_CHAT_OPTIONS.copy()
            logger.info("LLM client initialized with Ollama: %s @ %s", self.model, settings.OLLAMA_BASE_URL)
        elif self.provider == "openai":
            self.model = model or settings.OPENAI_MODEL or "gpt-4.1-mini"
            logger.info("LLM client initialized with OpenAI: %s", self.model)
        else:
            raise ValueError(f"Unknown provider: {self.provider}")

    async def __call__(self, system: str, prompt: str, provider_options: Optional[Dict[str, Any]] = None) -> str:
        messages = [
            {"role": "system", "content": system},
            {"role": "user", "content": prompt},
        ]
        return await self.complete(messages, provider_options=provider_options)

    async def complete(self, messages: List[Dict[str, str]], *, provider_options: Optional[Dict[str, Any]] = None) -> str:
        options = dict(provider_options or {})
        model = options.pop("model", None) or self.model
        if self.provider == "ollama":
            return await self._complete_ollama(messages, model, options)
        return await self._complete_openai(messages, model, options)

    # ===== Ollama Implementation =====
    async def _complete_ollama(self, messages: List[Dict[str, str]], model: str, options: Dict[str, Any]) -> str:
        merged_options = self.default_options.copy()
        merged_options.update(options.get("ollama_options") or {})
        payload = {
            "model": model,
            "messages": messages,
            "format": "json",
            "stream": False,
            "options": merged_options,
            "keep_alive": "30m",
        }
        # requests is blocking; keep it off the event loop
        loop = asyncio.get_running_loop()
        response = await loop.run_in_executor(
            None, functools.partial(requests.post, self.chat_url, json=payload, timeout=self.timeout_s)
        )
        response.raise_for_status()
        content = (response.json().get("message", {}).get("content") or "").strip()
        logger.debug("Ollama completion received %d chars", len(content))
        return content

    # ===== OpenAI Implementation =====
    def _get_openai(self) -> AsyncOpenAI:
        if self._openai is None:
            self._openai = AsyncOpenAI(api_key=_require_api_key())
            logger.info("OpenAI client initialized")
        return self._openai

    async def _complete_openai(self, messages: List[Dict[str, str]], model: str, options: Dict[str, Any]) -> str:
        kwargs: Dict[str, Any] = {
            "model": model,
            "messages": messages,
            "response_format": {"type": "json_object"},
            "timeout": self.timeout_s,
        }
        effort = options.get("reasoning_effort")
        if effort and model.startswith(("o1", "o3", "o4", "gpt-5")):
            kwargs["reasoning_effort"] = effort
        if options.get("max_tokens") is not None:
            kwargs["max_tokens"] = options["max_tokens"]
        resp = await self._get_openai().chat.completions.create(**kwargs)
        content = (resp.choices[0].message.content or "").strip()
        logger.debug("OpenAI completion received %d chars", len(content))
        return content


@functools.lru_cache(maxsize=1)
def get_default_llm_client() -> LLMClient:
    return LLMClient()
