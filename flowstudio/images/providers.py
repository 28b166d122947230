"""
FlowStudio Image Providers

Adapters that turn a prompt into a transient image URL. The URL is only
valid for a short time; the Asset Archiver makes it durable.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import httpx

from flowstudio.core.config import ImageParams, get_settings
from flowstudio.core.env_loader import get_fal_api_key
from flowstudio.core.exceptions import ProviderError
from flowstudio.core.logging_config import get_logger
from flowstudio.core.retry import PROVIDER_RETRY_CONFIG, async_retry

logger = get_logger("images.providers")

FAL_BASE_URL = "https://fal.run"


@dataclass
class GeneratedImage:
    """A transient image returned by a provider."""
    url: str
    provider: str
    width: Optional[int] = None
    height: Optional[int] = None
    seed: Optional[int] = None
    content_type: Optional[str] = None
    request_id: Optional[str] = None
    timings: Dict[str, Any] = field(default_factory=dict)

    def to_metadata(self) -> Dict[str, Any]:
        """Provider metadata recorded with the archived asset."""
        return {
            "width": self.width,
            "height": self.height,
            "seed": self.seed,
            "request_id": self.request_id,
            "timings": self.timings,
            "content_type": self.content_type,
        }


class ImageProvider(ABC):
    """Abstract base class for image generation providers."""

    name: str = "base"

    @abstractmethod
    async def generate(self, prompt: str, params: ImageParams) -> GeneratedImage:
        """Generate one image. Raises ProviderError on any failure."""
        pass


class FalImageProvider(ImageProvider):
    """
    fal.ai FLUX over the synchronous REST endpoint.

    Args:
        endpoint: Model endpoint, e.g. ``fal-ai/flux/dev``
        api_key: fal.ai key (defaults to FAL_KEY)
        http_client: Optional shared httpx.AsyncClient
        timeout: Request timeout in seconds
    """

    name = "fal_ai_flux"

    def __init__(
        self,
        endpoint: Optional[str] = None,
        api_key: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None
    ):
        settings = get_settings()
        self.endpoint = endpoint or settings.default_image_endpoint
        self._api_key = api_key or get_fal_api_key()
        self._http_client = http_client
        self.timeout = timeout if timeout is not None else settings.provider_timeout
        if not self._api_key:
            logger.warning("API key not found: FAL_KEY")

    def build_payload(self, prompt: str, params: ImageParams) -> Dict[str, Any]:
        payload = {
            "prompt": prompt,
            "image_size": {"width": params.width, "height": params.height},
            "num_inference_steps": params.num_inference_steps,
            "guidance_scale": params.guidance_scale,
            "num_images": params.num_images,
            "enable_safety_checker": params.enable_safety_checker,
            "output_format": params.output_format,
        }
        if params.seed is not None:
            payload["seed"] = params.seed
        payload.update(params.extra)
        return payload

    @async_retry(PROVIDER_RETRY_CONFIG)
    async def _post(self, client: httpx.AsyncClient, payload: Dict[str, Any]) -> httpx.Response:
        return await client.post(
            f"{FAL_BASE_URL}/{self.endpoint}",
            headers={
                "Authorization": f"Key {self._api_key}",
                "Content-Type": "application/json"
            },
            json=payload,
            timeout=self.timeout
        )

    async def generate(self, prompt: str, params: ImageParams) -> GeneratedImage:
        payload = self.build_payload(prompt, params)

        try:
            if self._http_client is not None:
                response = await self._post(self._http_client, payload)
            else:
                async with httpx.AsyncClient() as client:
                    response = await self._post(client, payload)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            raise ProviderError(self.name, f"HTTP {e.response.status_code}: {e.response.text[:200]}") from e
        except (httpx.HTTPError, ValueError) as e:
            raise ProviderError(self.name, str(e) or type(e).__name__) from e

        if not isinstance(data, dict):
            raise ProviderError(self.name, f"Unexpected response format: {type(data).__name__}")

        images = data.get("images")
        image = images[0] if isinstance(images, list) and images else None
        if not isinstance(image, dict) or not isinstance(image.get("url"), str) or not image["url"]:
            raise ProviderError(self.name, "No images generated")

        return GeneratedImage(
            url=image["url"],
            provider=self.name,
            width=image.get("width"),
            height=image.get("height"),
            seed=data.get("seed"),
            content_type=image.get("content_type"),
            request_id=response.headers.get("x-fal-request-id") or data.get("request_id"),
            timings=data.get("timings") or {},
        )
