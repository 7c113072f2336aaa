"""Single-turn completion client for Ollama-compatible backends."""

from __future__ import annotations

import json
import logging
from typing import Any

import httpx

from loki.utils import with_timeout

from .config import DEFAULT_LLM_TIMEOUT, LLMConfig

LOGGER = logging.getLogger("loki-assistant.llm")

COMPLETIONS_PATH = "/api/completions"


class LLMError(RuntimeError):
    """Generic LLM backend failure."""


class LLMNetworkError(LLMError):
    """The request could not be sent, or the round trip timed out."""


class LLMDecodeError(LLMError):
    """The backend answered with something that is not a JSON object."""


class LLMClient:
    """POST a prompt to ``<base_url>/api/completions`` and decode the reply.

    The client keeps no state between calls and never retries; a fresh
    ``httpx.AsyncClient`` is opened for every query. The timeout covers the
    whole round trip, including reading the body.
    """

    def __init__(
        self,
        base_url: str,
        model: str,
        timeout: float = DEFAULT_LLM_TIMEOUT,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout
        self._transport = transport
        self._logger = logger or LOGGER

    @classmethod
    def from_config(cls, config: LLMConfig, logger: logging.Logger | None = None) -> LLMClient:
        return cls(config.base_url, config.model, config.timeout, logger=logger)

    @property
    def url(self) -> str:
        return f"{self.base_url}{COMPLETIONS_PATH}"

    def build_payload(self, prompt: str) -> dict[str, str]:
        return {"model": self.model, "prompt": prompt}

    async def query(self, prompt: str) -> dict[str, Any]:
        payload = self.build_payload(prompt)
        try:
            status, body = await with_timeout(self._post(payload), self.timeout)
        except TimeoutError as exc:
            raise LLMNetworkError(f"LLM request to {self.url} timed out after {self.timeout:g}s") from exc
        except httpx.DecodingError as exc:
            raise LLMDecodeError(f"LLM response body could not be decoded: {exc}") from exc
        except httpx.RequestError as exc:
            raise LLMNetworkError(f"LLM request to {self.url} failed: {exc}") from exc
        except httpx.InvalidURL as exc:
            raise LLMNetworkError(f"LLM endpoint {self.url!r} is not a valid URL: {exc}") from exc
        if not 200 <= status < 300:
            self._logger.warning("LLM backend returned HTTP %s", status)
        return _decode_response(body)

    async def _post(self, payload: dict[str, str]) -> tuple[int, bytes]:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport, trust_env=False) as client:
            async with client.stream(
                "POST",
                self.url,
                content=json.dumps(payload, separators=(",", ":")).encode("utf-8"),
                headers={"Content-Type": "application/json"},
            ) as response:
                body = await response.aread()
                return response.status_code, body


def _decode_response(body: bytes) -> dict[str, Any]:
    try:
        parsed = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise LLMDecodeError(f"LLM response is not valid JSON: {exc}") from exc
    if not isinstance(parsed, dict):
        raise LLMDecodeError(f"LLM response is a JSON {type(parsed).__name__}, expected an object")
    return parsed
