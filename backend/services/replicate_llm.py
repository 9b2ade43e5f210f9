"""
Replicate LLM Client
Signal identification and reasoning via Replicate predictions

Models:
1. anthropic/claude-4.5-sonnet (primary) - one attempt
2. deepseek-ai/deepseek-r1 (secondary) - retried with a fixed backoff, rate limits only

Predictions are asynchronous jobs: create, then poll `urls.get` until
succeeded / failed / canceled or the wait ceiling passes.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

import httpx

from infrastructure.config import LLMConfig
from infrastructure.errors import LLMError, LLMRateLimitError, retry

logger = logging.getLogger("ReplicateLLM")


class PredictionStatus(str, Enum):
    STARTING = "starting"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"

    @property
    def is_terminal(self) -> bool:
        return self in (PredictionStatus.SUCCEEDED, PredictionStatus.FAILED, PredictionStatus.CANCELED)


@dataclass
class LLMResponse:
    text: str
    model: str


def _is_rate_limited(status_code: int, body: str) -> bool:
    return status_code == 429 or "throttled" in body.lower()


def prediction_output_text(output: Any) -> str:
    """Output shape varies by model: string, list of chunks, or structured JSON"""
    if isinstance(output, str):
        return output
    if isinstance(output, list):
        return "".join(str(chunk) for chunk in output)
    return json.dumps(output)


class ReplicateClient:
    def __init__(
        self,
        config: LLMConfig,
        api_token: Optional[str],
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config
        self.api_token = api_token
        self.client = client or httpx.AsyncClient(timeout=config.request_timeout)
        if not api_token:
            logger.warning("REPLICATE_API_TOKEN not set - LLM calls will fail over to templates")

    @property
    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_token}",
            "Content-Type": "application/json",
        }

    @staticmethod
    def _json(response: httpx.Response, model: str = None) -> Dict[str, Any]:
        try:
            data = response.json()
        except ValueError:
            raise LLMError(f"Replicate returned non-JSON reply ({response.status_code}): {response.text[:120]}", model)
        if not isinstance(data, dict):
            raise LLMError(f"Replicate returned unexpected reply: {str(data)[:120]}", model)
        return data

    async def create_prediction(self, model: str, model_input: Dict[str, Any]) -> Dict[str, Any]:
        if not self.api_token:
            raise LLMError("REPLICATE_API_TOKEN not set in environment", model)

        try:
            response = await self.client.post(
                f"{self.config.api_url}/{model}/predictions",
                headers=self._headers,
                json={"input": model_input},
            )
        except httpx.HTTPError as e:
            raise LLMError(f"Replicate create prediction failed: {e}", model)

        if response.status_code >= 400:
            body = response.text[:300]
            if _is_rate_limited(response.status_code, body):
                raise LLMRateLimitError(f"Replicate throttled ({response.status_code}): {body}", model)
            raise LLMError(f"Replicate create prediction failed ({response.status_code}): {body}", model)
        return self._json(response, model)

    async def wait_for_prediction(self, prediction: Dict[str, Any], model: str = None) -> str:
        get_url = (prediction.get("urls") or {}).get("get")
        if not get_url:
            raise LLMError("No get URL in prediction response", model)

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.config.max_wait
        while loop.time() < deadline:
            await asyncio.sleep(self.config.poll_interval)

            try:
                response = await self.client.get(get_url, headers=self._headers)
            except httpx.HTTPError as e:
                raise LLMError(f"Replicate poll failed: {e}", model)
            if response.status_code >= 400:
                if _is_rate_limited(response.status_code, response.text):
                    raise LLMRateLimitError(f"Replicate poll throttled ({response.status_code})", model)
                raise LLMError(f"Replicate poll failed: {response.status_code}", model)

            data = self._json(response, model)
            try:
                status = PredictionStatus(data.get("status"))
            except ValueError:
                raise LLMError(f"Unknown prediction status: {data.get('status')}", model)

            if status == PredictionStatus.SUCCEEDED:
                return prediction_output_text(data.get("output"))
            if status == PredictionStatus.FAILED:
                error = str(data.get("error") or "unknown")
                if _is_rate_limited(0, error):
                    raise LLMRateLimitError(f"Replicate prediction failed: {error}", model)
                raise LLMError(f"Replicate prediction failed: {error}", model)
            if status == PredictionStatus.CANCELED:
                raise LLMError("Replicate prediction was canceled", model)

        raise LLMError(f"Replicate prediction timed out after {self.config.max_wait}s", model)

    async def run(self, model: str, model_input: Dict[str, Any]) -> str:
        prediction = await self.create_prediction(model, model_input)
        return await self.wait_for_prediction(prediction, model)

    async def call_primary(self, system_prompt: str, user_prompt: str) -> str:
        logger.info(f"[LLM] Calling {self.config.primary_model} via Replicate...")
        return await self.run(self.config.primary_model, {
            "prompt": user_prompt,
            "system_prompt": system_prompt,
            "max_tokens": self.config.primary_max_tokens,
            "max_image_resolution": 0.5,
        })

    async def call_secondary(self, prompt: str) -> str:
        logger.info(f"[LLM] Calling {self.config.secondary_model} via Replicate...")
        return await self.run(self.config.secondary_model, {
            "prompt": prompt,
            "top_p": 1,
            "max_tokens": self.config.secondary_max_tokens,
            "temperature": 0.1,
            "presence_penalty": 0,
            "frequency_penalty": 0,
        })

    async def complete(self, system_prompt: str, user_prompt: str) -> LLMResponse:
        """
        Primary model first; on any failure the secondary model, retried only
        while the backend reports rate limiting. Raises LLMError when both fail.
        """
        try:
            text = await self.call_primary(system_prompt, user_prompt)
            return LLMResponse(text=text, model=self.config.primary_label)
        except LLMError as e:
            logger.warning(f"[LLM] Primary model failed: {e}")

        secondary = retry(
            max_attempts=self.config.secondary_attempts,
            delay=self.config.rate_limit_backoff,
            backoff=1.0,
            exceptions=(LLMRateLimitError,),
        )(self.call_secondary)
        text = await secondary(f"{system_prompt}\n\n{user_prompt}")
        return LLMResponse(text=text, model=f"{self.config.secondary_model.split('/')[-1]} via Replicate")

    async def close(self):
        await self.client.aclose()
