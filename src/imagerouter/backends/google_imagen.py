from __future__ import annotations

import asyncio
import dataclasses
import json
import logging
from dataclasses import dataclass
from math import gcd
from typing import Any, Callable, Dict, List, Optional
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from ..arguments import parse_size
from ..environment import ProviderEnvironment
from ..errors import BackendInstantiationError, BackendNotConfiguredError, BackendRequestError
from ..provider_catalog import default_catalog
from ..types import GeneratedImage, ImageGenerationRequest, ImageGenerationResponse, ProviderMetadata
from .base_backend import ImageProvider, ProviderFactory

logger = logging.getLogger(__name__)

PROVIDER_NAME = "Google"
DEFAULT_LOCATION = "us-central1"

_ASPECT_RATIOS = ("1:1", "9:16", "16:9", "3:4", "4:3")


def _aspect_ratio(size: Optional[str]) -> Optional[str]:
    parsed = parse_size(size)
    if parsed is None:
        return None
    d = gcd(parsed.width, parsed.height)
    ratio = f"{parsed.width // d}:{parsed.height // d}"
    return ratio if ratio in _ASPECT_RATIOS else None


@dataclass
class GoogleImagenBackendConfig:
    project_id: str
    location: str = DEFAULT_LOCATION
    default_model: Optional[str] = None
    access_token: Optional[str] = None
    timeout_s: float = 300.0

    @property
    def base_url(self) -> str:
        return f"https://{self.location}-aiplatform.googleapis.com/v1"

    def predict_url(self, model: str) -> str:
        return (
            f"{self.base_url}/projects/{self.project_id}/locations/{self.location}"
            f"/publishers/google/models/{model}:predict"
        )

    @classmethod
    def from_environment(cls, environment: ProviderEnvironment) -> "GoogleImagenBackendConfig":
        project_id = environment.get("GOOGLE_PROJECT_ID")
        if not project_id:
            raise BackendInstantiationError(
                "Google Project ID not found. Set GOOGLE_PROJECT_ID in the environment or provider configuration."
            )
        return cls(
            project_id=project_id,
            location=environment.get("GOOGLE_LOCATION", DEFAULT_LOCATION),
            default_model=environment.get("GOOGLE_DEFAULT_MODEL"),
            access_token=environment.get("GOOGLE_ACCESS_TOKEN"),
            timeout_s=environment.get_float("GOOGLE_TIMEOUT_S", 300.0),
        )


class GoogleImagenProvider(ImageProvider):
    """Google Imagen on Vertex AI (`:predict` REST endpoint). Generation only."""

    def __init__(
        self,
        *,
        config: GoogleImagenBackendConfig,
        metadata: ProviderMetadata,
        opener: Optional[Callable[..., Any]] = None,
    ):
        features = dict(metadata.capabilities.features)
        features.update({"location": config.location, "project_id": config.project_id})
        caps = dataclasses.replace(
            metadata.capabilities,
            default_model=config.default_model or metadata.capabilities.default_model,
            features=features,
        )
        super().__init__(metadata=dataclasses.replace(metadata, capabilities=caps))
        self._cfg = config
        self._opener = opener

    def _post_json(self, url: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        if not self._cfg.access_token:
            raise BackendNotConfiguredError("GOOGLE_ACCESS_TOKEN is required to call the Vertex AI endpoint.")
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self._cfg.access_token}",
        }
        req = Request(url=url, data=json.dumps(payload).encode("utf-8"), method="POST", headers=headers)
        open_fn = self._opener or urlopen
        try:
            with open_fn(req, timeout=float(self._cfg.timeout_s)) as resp:
                raw = resp.read()
        except HTTPError as e:
            detail = e.read().decode("utf-8", errors="replace") if e.fp is not None else ""
            raise BackendRequestError(f"Vertex AI request failed with HTTP {e.code}: {detail or e.reason}") from e
        except URLError as e:
            raise BackendRequestError(f"Vertex AI request failed: {e.reason}") from e
        try:
            data = json.loads(raw.decode("utf-8"))
        except ValueError as e:
            raise BackendRequestError("Invalid response: body is not JSON") from e
        if not isinstance(data, dict):
            raise BackendRequestError("Invalid response: expected JSON object")
        return data

    def _generate_sync(self, request: ImageGenerationRequest) -> ImageGenerationResponse:
        model = self.model_or_default(request.model)

        parameters: Dict[str, Any] = {"sampleCount": int(request.number_of_images)}
        if request.additional_parameters:
            parameters.update(dict(request.additional_parameters))
        ratio = _aspect_ratio(request.size)
        if ratio is not None:
            parameters.setdefault("aspectRatio", ratio)
        if request.quality:
            parameters["quality"] = request.quality
        if request.style:
            parameters["style"] = request.style

        payload = {"instances": [{"prompt": request.prompt}], "parameters": parameters}
        logger.debug(f"Vertex AI predict: model={model} sampleCount={parameters['sampleCount']}")
        resp = self._post_json(self._cfg.predict_url(model), payload)

        predictions = resp.get("predictions")
        images: List[GeneratedImage] = []
        if isinstance(predictions, list):
            for p in predictions:
                if isinstance(p, dict) and isinstance(p.get("bytesBase64Encoded"), str):
                    meta = {"mime_type": p["mimeType"]} if isinstance(p.get("mimeType"), str) else {}
                    images.append(GeneratedImage(base64_data=p["bytesBase64Encoded"], metadata=meta))
        if not images:
            raise BackendRequestError("Invalid response: no predictions[].bytesBase64Encoded entries")

        return ImageGenerationResponse(
            images=images,
            model=model,
            provider=self.provider_name,
            metadata={"location": self._cfg.location, "project_id": self._cfg.project_id},
        )

    async def generate_image(self, request: ImageGenerationRequest) -> ImageGenerationResponse:
        return await asyncio.to_thread(self._generate_sync, request)


class GoogleImagenProviderFactory(ProviderFactory):
    """Builds `GoogleImagenProvider` when `GOOGLE_PROJECT_ID` is configured."""

    def __init__(self, *, metadata: Optional[ProviderMetadata] = None):
        self._metadata = metadata

    def get_metadata(self) -> ProviderMetadata:
        if self._metadata is None:
            self._metadata = default_catalog().get(PROVIDER_NAME)
        return self._metadata

    def can_create(self, environment: ProviderEnvironment) -> bool:
        return environment.has("GOOGLE_PROJECT_ID")

    def create(self, environment: ProviderEnvironment) -> GoogleImagenProvider:
        config = GoogleImagenBackendConfig.from_environment(environment)
        return GoogleImagenProvider(config=config, metadata=self.get_metadata(), opener=environment.http_opener)
