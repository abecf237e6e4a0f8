from __future__ import annotations

import asyncio
import dataclasses
import json
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from ..environment import ProviderEnvironment
from ..errors import BackendInstantiationError, BackendRequestError
from ..provider_catalog import default_catalog
from ..references import load_image_reference
from ..types import (
    GeneratedImage,
    ImageEditRequest,
    ImageGenerationRequest,
    ImageGenerationResponse,
    ImageVariationRequest,
    ProviderMetadata,
)
from .base_backend import ImageProvider, ProviderFactory

logger = logging.getLogger(__name__)

PROVIDER_NAME = "OpenAI"

SUPPORTED_SIZES = ("256x256", "512x512", "1024x1024", "1792x1024", "1024x1792")
EDIT_DEFAULT_MODEL = "dall-e-2"
VARIATION_DEFAULT_MODEL = "dall-e-2"


def _join_url(base_url: str, path: str) -> str:
    b = str(base_url or "").rstrip("/")
    p = str(path or "").strip()
    if not p:
        return b
    if not p.startswith("/"):
        p = "/" + p
    return b + p


def _multipart_form(
    *,
    fields: Dict[str, str],
    files: Dict[str, Tuple[str, bytes, str]],
) -> Tuple[bytes, str]:
    boundary = f"----imagerouter-{uuid.uuid4().hex}"
    parts: List[bytes] = []

    for name, value in fields.items():
        parts.append(f"--{boundary}\r\n".encode("utf-8"))
        parts.append(f'Content-Disposition: form-data; name="{name}"\r\n\r\n'.encode("utf-8"))
        parts.append(str(value).encode("utf-8"))
        parts.append(b"\r\n")

    for name, (filename, content, content_type) in files.items():
        parts.append(f"--{boundary}\r\n".encode("utf-8"))
        parts.append(f'Content-Disposition: form-data; name="{name}"; filename="{filename}"\r\n'.encode("utf-8"))
        parts.append(f"Content-Type: {content_type}\r\n\r\n".encode("utf-8"))
        parts.append(bytes(content))
        parts.append(b"\r\n")

    parts.append(f"--{boundary}--\r\n".encode("utf-8"))
    return b"".join(parts), boundary


def _extension_for(mime_type: str) -> str:
    return {"image/jpeg": "jpg", "image/webp": "webp", "image/gif": "gif"}.get(mime_type, "png")


@dataclass
class OpenAIBackendConfig:
    api_key: str
    base_url: str = "https://api.openai.com/v1"
    default_model: Optional[str] = None
    timeout_s: float = 300.0
    response_format: str = "url"  # "url" | "b64_json"

    # Endpoints (OpenAI-shaped HTTP).
    image_generations_path: str = "/images/generations"
    image_edits_path: str = "/images/edits"
    image_variations_path: str = "/images/variations"

    @classmethod
    def from_environment(cls, environment: ProviderEnvironment) -> "OpenAIBackendConfig":
        api_key = environment.get("OPENAI_API_KEY")
        if not api_key:
            raise BackendInstantiationError("OPENAI_API_KEY is required for the OpenAI provider.")
        return cls(
            api_key=api_key,
            base_url=environment.get("OPENAI_BASE_URL", "https://api.openai.com/v1"),
            default_model=environment.get("OPENAI_DEFAULT_MODEL"),
            timeout_s=environment.get_float("OPENAI_TIMEOUT_S", 300.0),
            response_format="b64_json" if environment.get_bool("OPENAI_RETURN_BASE64") else "url",
        )


class OpenAIImageProvider(ImageProvider):
    """Provider for OpenAI-compatible image endpoints.

    Generation posts JSON to `/images/generations`; edits and variations post
    multipart form data. Blocking HTTP runs in a worker thread.
    """

    def __init__(
        self,
        *,
        config: OpenAIBackendConfig,
        metadata: ProviderMetadata,
        opener: Optional[Callable[..., Any]] = None,
    ):
        if config.default_model:
            caps = dataclasses.replace(metadata.capabilities, default_model=config.default_model)
            metadata = dataclasses.replace(metadata, capabilities=caps)
        super().__init__(metadata=metadata)
        self._cfg = config
        self._opener = opener

    def _open(self, req: Request):
        open_fn = self._opener or urlopen
        return open_fn(req, timeout=float(self._cfg.timeout_s))

    def _headers(self, *, content_type: str) -> Dict[str, str]:
        headers = {"Content-Type": str(content_type)}
        if self._cfg.api_key:
            headers["Authorization"] = f"Bearer {self._cfg.api_key}"
        return headers

    def _send(self, req: Request) -> Dict[str, Any]:
        try:
            with self._open(req) as resp:
                raw = resp.read()
        except HTTPError as e:
            detail = e.read().decode("utf-8", errors="replace") if e.fp is not None else ""
            raise BackendRequestError(f"OpenAI request failed with HTTP {e.code}: {detail or e.reason}") from e
        except URLError as e:
            raise BackendRequestError(f"OpenAI request failed: {e.reason}") from e
        try:
            data = json.loads(raw.decode("utf-8"))
        except ValueError as e:
            raise BackendRequestError("Invalid response: body is not JSON") from e
        if not isinstance(data, dict):
            raise BackendRequestError("Invalid response: expected JSON object")
        return data

    def _post_json(self, *, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        url = _join_url(self._cfg.base_url, path)
        body = json.dumps(payload).encode("utf-8")
        req = Request(url=url, data=body, method="POST", headers=self._headers(content_type="application/json"))
        return self._send(req)

    def _post_multipart(
        self, *, path: str, fields: Dict[str, str], files: Dict[str, Tuple[str, bytes, str]]
    ) -> Dict[str, Any]:
        url = _join_url(self._cfg.base_url, path)
        body, boundary = _multipart_form(fields=fields, files=files)
        ctype = f"multipart/form-data; boundary={boundary}"
        req = Request(url=url, data=body, method="POST", headers=self._headers(content_type=ctype))
        return self._send(req)

    def _load_file(self, field: str, reference: str) -> Tuple[str, bytes, str]:
        content, mime = load_image_reference(reference, opener=self._opener, timeout_s=self._cfg.timeout_s)
        return (f"{field}.{_extension_for(mime)}", content, mime)

    def _to_response(self, resp: Dict[str, Any], *, model: str) -> ImageGenerationResponse:
        data = resp.get("data")
        if not isinstance(data, list):
            raise BackendRequestError("Invalid response: missing 'data' list")
        images: List[GeneratedImage] = []
        for item in data:
            if not isinstance(item, dict):
                continue
            url = item.get("url")
            b64 = item.get("b64_json")
            if not isinstance(url, str) and not isinstance(b64, str):
                continue
            images.append(
                GeneratedImage(
                    url=url if isinstance(url, str) else None,
                    base64_data=b64 if isinstance(b64, str) else None,
                    revised_prompt=item.get("revised_prompt"),
                )
            )
        if not images:
            raise BackendRequestError("Invalid response: no data[].url or data[].b64_json entries")

        created = resp.get("created")
        created_at = (
            datetime.fromtimestamp(created, tz=timezone.utc)
            if isinstance(created, (int, float)) and not isinstance(created, bool)
            else datetime.now(timezone.utc)
        )
        return ImageGenerationResponse(images=images, model=model, provider=self.provider_name, created_at=created_at)

    def _generate_sync(self, request: ImageGenerationRequest) -> ImageGenerationResponse:
        model = self.model_or_default(request.model)
        payload: Dict[str, Any] = {
            "model": model,
            "prompt": request.prompt,
            "n": int(request.number_of_images),
            "response_format": self._cfg.response_format,
        }
        if request.size in SUPPORTED_SIZES:
            payload["size"] = request.size
        if request.quality in ("standard", "hd"):
            payload["quality"] = request.quality
        if request.style in ("vivid", "natural"):
            payload["style"] = request.style
        if request.additional_parameters:
            payload.update(dict(request.additional_parameters))

        logger.debug(f"OpenAI generate: model={model} n={payload['n']}")
        resp = self._post_json(path=self._cfg.image_generations_path, payload=payload)
        return self._to_response(resp, model=model)

    def _edit_sync(self, request: ImageEditRequest) -> ImageGenerationResponse:
        model = request.model or EDIT_DEFAULT_MODEL
        fields: Dict[str, str] = {
            "model": model,
            "prompt": request.prompt,
            "n": str(int(request.number_of_images)),
            "response_format": self._cfg.response_format,
        }
        if request.size in SUPPORTED_SIZES:
            fields["size"] = str(request.size)
        for k, v in (request.additional_parameters or {}).items():
            if v is not None:
                fields[str(k)] = str(v)

        files = {"image": self._load_file("image", request.image)}
        if request.mask:
            files["mask"] = self._load_file("mask", request.mask)

        logger.debug(f"OpenAI edit: model={model} mask={'yes' if request.mask else 'no'}")
        resp = self._post_multipart(path=self._cfg.image_edits_path, fields=fields, files=files)
        return self._to_response(resp, model=model)

    def _variation_sync(self, request: ImageVariationRequest) -> ImageGenerationResponse:
        model = request.model or VARIATION_DEFAULT_MODEL
        fields: Dict[str, str] = {
            "model": model,
            "n": str(int(request.number_of_images)),
            "response_format": self._cfg.response_format,
        }
        if request.size in SUPPORTED_SIZES:
            fields["size"] = str(request.size)
        for k, v in (request.additional_parameters or {}).items():
            if v is not None:
                fields[str(k)] = str(v)

        files = {"image": self._load_file("image", request.image)}
        logger.debug(f"OpenAI variation: model={model}")
        resp = self._post_multipart(path=self._cfg.image_variations_path, fields=fields, files=files)
        return self._to_response(resp, model=model)

    async def generate_image(self, request: ImageGenerationRequest) -> ImageGenerationResponse:
        return await asyncio.to_thread(self._generate_sync, request)

    async def edit_image(self, request: ImageEditRequest) -> ImageGenerationResponse:
        return await asyncio.to_thread(self._edit_sync, request)

    async def create_variation(self, request: ImageVariationRequest) -> ImageGenerationResponse:
        return await asyncio.to_thread(self._variation_sync, request)


class OpenAIProviderFactory(ProviderFactory):
    """Builds `OpenAIImageProvider` when `OPENAI_API_KEY` is configured."""

    def __init__(self, *, metadata: Optional[ProviderMetadata] = None):
        self._metadata = metadata

    def get_metadata(self) -> ProviderMetadata:
        if self._metadata is None:
            self._metadata = default_catalog().get(PROVIDER_NAME)
        return self._metadata

    def can_create(self, environment: ProviderEnvironment) -> bool:
        return environment.has("OPENAI_API_KEY")

    def create(self, environment: ProviderEnvironment) -> OpenAIImageProvider:
        config = OpenAIBackendConfig.from_environment(environment)
        return OpenAIImageProvider(config=config, metadata=self.get_metadata(), opener=environment.http_opener)
