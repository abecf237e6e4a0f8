from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, List, Optional

from ..environment import ProviderEnvironment
from ..errors import BackendNotConfiguredError, CapabilityNotSupportedError
from ..types import (
    ConversationMessage,
    ConversationalImageGenerationRequest,
    ImageEditRequest,
    ImageGenerationRequest,
    ImageGenerationResponse,
    ImageOperation,
    ImageVariationRequest,
    ProviderCapabilities,
    ProviderMetadata,
)


def flatten_conversation(conversation: List[ConversationMessage]) -> str:
    """Join message texts, in order and regardless of role, into one prompt.

    Images are dropped.
    """
    return "\n".join(str(msg.text) for msg in conversation or [] if msg.text)


class ImageProvider(ABC):
    """Provider interface for image operations.

    Subclasses implement `generate_image`; the other operations default to
    a prompt-flattening fallback (conversation) or `CapabilityNotSupportedError`.
    """

    def __init__(self, *, metadata: ProviderMetadata):
        self._metadata = metadata

    @property
    def provider_name(self) -> str:
        return self._metadata.name

    def get_capabilities(self) -> ProviderCapabilities:
        return self._metadata.capabilities

    def supports_operation(self, operation: str) -> bool:
        return str(operation) in self.get_capabilities().supported_operations

    def model_or_default(self, requested: Optional[str]) -> str:
        if requested and str(requested).strip():
            return str(requested)
        model = self.get_capabilities().default_model
        if not model:
            raise BackendNotConfiguredError(f"Provider '{self.provider_name}' has no model configured and none was requested.")
        return str(model)

    @abstractmethod
    async def generate_image(self, request: ImageGenerationRequest) -> ImageGenerationResponse: ...

    async def generate_image_from_conversation(
        self, request: ConversationalImageGenerationRequest
    ) -> ImageGenerationResponse:
        if self.supports_operation(ImageOperation.GENERATE_FROM_CONVERSATION):
            raise NotImplementedError(
                f"{type(self).__name__} declares '{ImageOperation.GENERATE_FROM_CONVERSATION}' but does not implement it."
            )
        prompt = flatten_conversation(request.conversation)
        return await self.generate_image(
            ImageGenerationRequest(
                prompt=prompt,
                model=request.model,
                size=request.size,
                quality=request.quality,
                style=request.style,
                number_of_images=request.number_of_images,
                additional_parameters=dict(request.additional_parameters),
            )
        )

    async def edit_image(self, request: ImageEditRequest) -> ImageGenerationResponse:
        raise CapabilityNotSupportedError(f"Provider '{self.provider_name}' does not support image editing.")

    async def create_variation(self, request: ImageVariationRequest) -> ImageGenerationResponse:
        raise CapabilityNotSupportedError(f"Provider '{self.provider_name}' does not support image variations.")


class ProviderFactory(ABC):
    """Describes a provider and builds instances of it from an environment.

    `create` may return either a provider or an awaitable resolving to one.
    """

    @property
    def name(self) -> str:
        return self.get_metadata().name

    @abstractmethod
    def get_metadata(self) -> ProviderMetadata: ...

    @abstractmethod
    def can_create(self, environment: ProviderEnvironment) -> bool: ...

    @abstractmethod
    def create(self, environment: ProviderEnvironment) -> Any: ...
