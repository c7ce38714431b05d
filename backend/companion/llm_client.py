# companion/llm_client.py
import json
import logging
from typing import Any, Dict, List, Optional

import requests

from .config import Settings
from .errors import ServiceError
from .models import LLMResponse, LLMUsage

logger = logging.getLogger(__name__)

HEALTH_TIMEOUT_SECONDS = 5

ENDPOINTS = {
    "lmstudio": {"generate": "/v1/chat/completions", "models": "/v1/models"},
    "ollama": {"generate": "/api/generate", "models": "/api/tags"},
}


class LLMClient:
    """
    Talks to a locally hosted completion service (LM Studio or Ollama) and
    normalizes both response shapes to LLMResponse.
    """

    def __init__(self, settings: Settings):
        if settings.llm_provider not in ENDPOINTS:
            raise ValueError(f"Unsupported LLM provider: {settings.llm_provider}")
        self.provider = settings.llm_provider
        self.base_url = settings.llm_base_url.rstrip("/")
        self.model = settings.llm_model
        self.temperature = settings.llm_temperature
        self.max_tokens = settings.llm_max_tokens
        self.timeout = settings.llm_timeout_seconds

    def _url(self, endpoint: str) -> str:
        return f"{self.base_url}{ENDPOINTS[self.provider][endpoint]}"

    # ------------------------
    # Generation
    # ------------------------

    def build_payload(self, prompt: str, messages: Optional[List[Dict[str, str]]] = None) -> Dict[str, Any]:
        if self.provider == "lmstudio":
            return {
                "model": self.model,
                "messages": messages or [{"role": "user", "content": prompt}],
                "temperature": self.temperature,
                "max_tokens": self.max_tokens,
                "stream": False,
            }
        return {
            "model": self.model,
            "prompt": prompt,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "stream": False,
        }

    def complete(self, prompt: str, messages: Optional[List[Dict[str, str]]] = None) -> LLMResponse:
        url = self._url("generate")
        payload = self.build_payload(prompt, messages)
        logger.info(f"Sending prompt to {self.provider} at {url} (model={self.model}, chars={len(prompt)})")

        try:
            response = requests.post(url, json=payload, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            logger.error(f"Error communicating with {self.provider}: {e}")
            raise ServiceError(f"{self.provider} is unreachable", detail=str(e), original_error=e) from e

        if not response.ok:
            logger.error(f"{self.provider} API error: {response.status_code} {response.text}")
            raise ServiceError(
                f"{self.provider} API error: {response.status_code} {response.reason}",
                status_code=response.status_code,
                detail=response.text,
            )

        try:
            data = response.json()
        except ValueError as e:
            logger.error(f"Failed to decode JSON from {self.provider} response: {response.text}")
            raise ServiceError(
                f"Invalid JSON response from {self.provider}",
                status_code=response.status_code,
                detail=response.text,
                original_error=e,
            ) from e

        if not isinstance(data, dict):
            raise ServiceError(f"Unexpected response shape from {self.provider}", status_code=response.status_code)

        logger.debug(f"Raw {self.provider} response: {json.dumps(data)}")

        if self.provider == "lmstudio":
            return _parse_chat_completion(data)
        return _parse_ollama_generate(data)

    # ------------------------
    # Health
    # ------------------------

    def is_available(self) -> bool:
        try:
            response = requests.get(self._url("models"), timeout=HEALTH_TIMEOUT_SECONDS)
            return response.ok
        except Exception as e:
            logger.warning(f"{self.provider} health check failed: {e}")
            return False

    def list_models(self) -> List[str]:
        try:
            response = requests.get(self._url("models"), timeout=HEALTH_TIMEOUT_SECONDS)
            if not response.ok:
                return []
            data = response.json()
            if self.provider == "lmstudio":
                return [str(model["id"]) for model in data.get("data", []) if "id" in model]
            return [str(model["name"]) for model in data.get("models", []) if "name" in model]
        except Exception as e:
            logger.warning(f"Failed to get available models: {e}")
            return []


# ------------------------
# Response parsing
# ------------------------

def _parse_chat_completion(data: Dict[str, Any]) -> LLMResponse:
    choices = data.get("choices") or []
    first = choices[0] if choices and isinstance(choices[0], dict) else {}
    message = first.get("message") or {}
    content = message.get("content") or ""

    usage = None
    raw_usage = data.get("usage")
    if isinstance(raw_usage, dict):
        usage = LLMUsage(
            prompt_tokens=raw_usage.get("prompt_tokens") or 0,
            completion_tokens=raw_usage.get("completion_tokens") or 0,
            total_tokens=raw_usage.get("total_tokens") or 0,
        )

    return LLMResponse(
        content=str(content).strip(),
        usage=usage,
        metadata={"model": data.get("model"), "finishReason": first.get("finish_reason")},
    )


def _parse_ollama_generate(data: Dict[str, Any]) -> LLMResponse:
    usage = None
    eval_count = data.get("eval_count")
    if eval_count:
        prompt_tokens = data.get("prompt_eval_count") or 0
        usage = LLMUsage(
            prompt_tokens=prompt_tokens,
            completion_tokens=eval_count,
            total_tokens=prompt_tokens + eval_count,
        )

    return LLMResponse(
        content=str(data.get("response") or "").strip(),
        usage=usage,
        metadata={"model": data.get("model"), "done": data.get("done")},
    )
