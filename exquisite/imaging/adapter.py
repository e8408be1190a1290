"""
Image Service Adapter - Generation and editing through a remote job API.

Protocol:
1. POST the request to the start endpoint
2. If the response already carries an image, use it
3. Otherwise it carries a job id: poll the check endpoint every
   `poll_interval` seconds, at most `max_poll_attempts` times
4. The whole exchange is bounded by `request_timeout`

Failures surface as ExternalServiceError subclasses so callers can tell
bad credentials, rate limiting, rejected input, timeouts and outages apart.

Without an API key the adapter runs in placeholder mode and returns a
deterministic SVG that shows the prompt. This is a supported mode for
development and tests, not an error.
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from typing import Any
import asyncio
import base64
import binascii
import logging

import httpx

from ..config import ImageServiceConfig
from ..errors import (
    ImageServiceAuthError,
    ImageServiceBadRequest,
    ImageServiceRateLimited,
    ImageServiceTimeout,
    ImageServiceUnavailable,
)
from .placeholder import placeholder_image

logger = logging.getLogger(__name__)

NEGATIVE_PROMPT = "blurry, low quality, distorted, nsfw, offensive"
INFERENCE_STEPS = 30
GUIDANCE_SCALE = 7.5
IMAGE_SIZE = 512


class ImageService(ABC):
    """Anything that can produce images from prompts."""

    @abstractmethod
    async def generate(self, prompt: str) -> bytes:
        """Create a new image from a text prompt."""

    @abstractmethod
    async def edit(self, image: bytes, prompt: str) -> bytes:
        """Transform an existing image according to a prompt."""

    async def aclose(self):
        """Release any held connections."""


def _first_output(data: dict[str, Any]) -> dict[str, Any]:
    outputs = data.get("modelOutputs")
    if outputs is None:
        return {}
    if not isinstance(outputs, list):
        raise ImageServiceUnavailable("Image service returned a malformed response")
    if outputs and isinstance(outputs[0], dict):
        return outputs[0]
    return {}


def _decode_image(encoded: Any) -> bytes:
    if not isinstance(encoded, str):
        raise ImageServiceUnavailable("Image service returned an invalid image")
    if encoded.startswith("data:"):
        encoded = encoded.split(",", 1)[-1]
    try:
        return base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError):
        raise ImageServiceUnavailable("Image service returned an invalid image")


class ImageServiceAdapter(ImageService):
    """
    HTTP client for the image job API.

    Usage:
        adapter = ImageServiceAdapter(ImageServiceConfig(api_key="..."))
        image = await adapter.generate("a red balloon")
        image = await adapter.edit(image, "add a cat")
        await adapter.aclose()
    """

    def __init__(
        self,
        config: ImageServiceConfig | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.config = config or ImageServiceConfig()
        self._client = client
        self._owns_client = client is None

        if self.config.placeholder_mode:
            logger.warning("Image service API key not configured. Using placeholder images.")

    @property
    def placeholder_mode(self) -> bool:
        return self.config.placeholder_mode

    async def generate(self, prompt: str) -> bytes:
        if self.placeholder_mode:
            logger.info("Placeholder image generation for prompt: %s", prompt)
            return placeholder_image(prompt)

        return await self._run(
            {
                "prompt": prompt,
                "negative_prompt": NEGATIVE_PROMPT,
                "num_inference_steps": INFERENCE_STEPS,
                "guidance_scale": GUIDANCE_SCALE,
                "width": IMAGE_SIZE,
                "height": IMAGE_SIZE,
            },
            operation="generate",
        )

    async def edit(self, image: bytes, prompt: str) -> bytes:
        if self.placeholder_mode:
            logger.info("Placeholder image edit for prompt: %s", prompt)
            return placeholder_image(prompt)

        return await self._run(
            {
                "prompt": prompt,
                "image": base64.b64encode(image).decode("ascii"),
                "negative_prompt": NEGATIVE_PROMPT,
                "num_inference_steps": INFERENCE_STEPS,
                "guidance_scale": GUIDANCE_SCALE,
            },
            operation="edit",
        )

    async def aclose(self):
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    # =========================================================================
    # Protocol
    # =========================================================================

    async def _run(self, model_inputs: dict[str, Any], operation: str) -> bytes:
        try:
            return await asyncio.wait_for(
                self._submit(model_inputs, operation),
                timeout=self.config.request_timeout,
            )
        except asyncio.TimeoutError:
            raise ImageServiceTimeout()

    async def _submit(self, model_inputs: dict[str, Any], operation: str) -> bytes:
        data = await self._post(
            self.config.start_url,
            {
                "apiKey": self.config.api_key,
                "modelKey": self.config.model_key,
                "modelInputs": model_inputs,
            },
            operation,
        )

        output = _first_output(data)
        if output.get("image"):
            return _decode_image(output["image"])
        if output.get("error"):
            raise ImageServiceUnavailable(f"Image generation failed: {output['error']}")

        call_id = data.get("id")
        if call_id:
            return await self._poll(call_id)

        raise ImageServiceUnavailable(f"Failed to {operation} image: No output received")

    async def _poll(self, call_id: str) -> bytes:
        attempts = self.config.max_poll_attempts
        for attempt in range(attempts):
            await asyncio.sleep(self.config.poll_interval)

            try:
                data = await self._post(
                    self.config.check_url,
                    {"apiKey": self.config.api_key, "callID": call_id},
                    "poll",
                )
            except (ImageServiceUnavailable, ImageServiceTimeout) as e:
                logger.warning("Poll error for call %s: %s", call_id, e.message)
                continue

            output = _first_output(data)
            if data.get("message") == "success" and output.get("image"):
                return _decode_image(output["image"])
            if output.get("error"):
                raise ImageServiceUnavailable(f"Image generation failed: {output['error']}")

            logger.debug("Polling attempt %d/%d for call %s", attempt + 1, attempts, call_id)

        raise ImageServiceTimeout()

    async def _post(self, url: str, body: dict[str, Any], operation: str) -> dict[str, Any]:
        client = self._get_client()
        try:
            response = await client.post(url, json=body, timeout=self.config.request_timeout)
        except httpx.TimeoutException:
            raise ImageServiceTimeout("Request timed out. Please try again.")
        except httpx.HTTPError as e:
            logger.error("Image service transport error during %s: %s", operation, e)
            raise ImageServiceUnavailable()

        if response.status_code >= 400:
            raise self._status_error(response, operation)

        try:
            data = response.json()
        except ValueError:
            raise ImageServiceUnavailable("Image service returned a malformed response")
        if not isinstance(data, dict):
            raise ImageServiceUnavailable("Image service returned a malformed response")
        return data

    def _status_error(self, response: httpx.Response, operation: str):
        status = response.status_code
        message = response.reason_phrase
        try:
            payload = response.json()
            if isinstance(payload, dict) and payload.get("error"):
                message = str(payload["error"])
        except ValueError:
            pass

        if status in (401, 403):
            return ImageServiceAuthError()
        if status == 429:
            return ImageServiceRateLimited()
        if status in (400, 422):
            return ImageServiceBadRequest(f"Invalid request: {message}")
        if status in (408, 504):
            return ImageServiceTimeout()
        logger.error("Image service %s failed with HTTP %d: %s", operation, status, message)
        return ImageServiceUnavailable(f"Image {operation} failed: {message}")

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient()
        return self._client
