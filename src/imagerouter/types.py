from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set


class ImageOperation:
    """Operation keys understood by providers and the selector."""

    GENERATE = "generate"
    GENERATE_FROM_CONVERSATION = "generate_from_conversation"
    EDIT = "edit"
    VARIATION = "variation"


ALL_OPERATIONS = (
    ImageOperation.GENERATE,
    ImageOperation.GENERATE_FROM_CONVERSATION,
    ImageOperation.EDIT,
    ImageOperation.VARIATION,
)


@dataclass(frozen=True)
class ImageSize:
    width: int
    height: int

    def __str__(self) -> str:
        return f"{self.width}x{self.height}"


@dataclass(frozen=True)
class ImageContent:
    """An image attached to a conversation message."""

    url: Optional[str] = None
    base64_data: Optional[str] = None
    mime_type: Optional[str] = None
    caption: Optional[str] = None


@dataclass(frozen=True)
class ConversationMessage:
    role: str  # "user" | "assistant" | "system"
    text: Optional[str] = None
    images: Optional[List[ImageContent]] = None


@dataclass(frozen=True)
class ParsedArguments:
    """Strongly-typed view of loosely-typed tool arguments."""

    prompt: Optional[str] = None
    provider: Optional[str] = None
    model: Optional[str] = None
    size: Optional[str] = None
    quality: Optional[str] = None
    style: Optional[str] = None
    image: Optional[str] = None
    mask: Optional[str] = None
    number_of_images: int = 1
    parsed_size: Optional[ImageSize] = None
    conversation: Optional[List[ConversationMessage]] = None


@dataclass
class ValidationResult:
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors


@dataclass(frozen=True)
class ProviderCapabilities:
    """Declarative description of what a provider can do.

    `example_models` is a hint, not an allow-list: providers with
    `accepts_custom_models` may be asked for any model string.
    """

    example_models: List[str] = field(default_factory=list)
    supported_operations: List[str] = field(default_factory=list)
    default_model: Optional[str] = None
    accepts_custom_models: bool = True
    supports_multi_modal_input: bool = False
    max_conversation_images: Optional[int] = None
    features: Dict[str, Any] = field(default_factory=dict)

    def lists_model(self, model: str) -> bool:
        wanted = str(model or "").casefold()
        return any(str(m).casefold() == wanted for m in self.example_models)


@dataclass(frozen=True)
class ProviderRequirements:
    environment_variables: List[str] = field(default_factory=list)
    configuration_sections: List[str] = field(default_factory=list)
    dependencies: List[str] = field(default_factory=list)
    optional_dependencies: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class ProviderMetadata:
    name: str
    capabilities: ProviderCapabilities
    description: Optional[str] = None
    requirements: ProviderRequirements = field(default_factory=ProviderRequirements)
    priority: int = 100  # higher is preferred


@dataclass
class SelectionContext:
    """Per-request selection hints and exclusions.

    Owned by a single logical request: `failed_providers` is mutated by the
    fallback selector and must not be shared between concurrent requests.
    """

    preferred_provider: Optional[str] = None
    model: Optional[str] = None
    operation: str = ImageOperation.GENERATE
    required_capabilities: List[str] = field(default_factory=list)
    failed_providers: Set[str] = field(default_factory=set)

    def has_failed(self, name: str) -> bool:
        wanted = str(name or "").casefold()
        return any(str(n).casefold() == wanted for n in self.failed_providers)


@dataclass(frozen=True)
class ImageGenerationRequest:
    prompt: str
    model: Optional[str] = None
    size: Optional[str] = None
    quality: Optional[str] = None
    style: Optional[str] = None
    number_of_images: int = 1
    additional_parameters: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ConversationalImageGenerationRequest:
    conversation: List[ConversationMessage]
    model: Optional[str] = None
    size: Optional[str] = None
    quality: Optional[str] = None
    style: Optional[str] = None
    number_of_images: int = 1
    additional_parameters: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ImageEditRequest:
    image: str  # data URL | http(s) URL | base64
    prompt: str
    mask: Optional[str] = None
    model: Optional[str] = None
    size: Optional[str] = None
    number_of_images: int = 1
    additional_parameters: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ImageVariationRequest:
    image: str
    model: Optional[str] = None
    size: Optional[str] = None
    number_of_images: int = 1
    additional_parameters: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class GeneratedImage:
    url: Optional[str] = None
    base64_data: Optional[str] = None
    revised_prompt: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ImageGenerationResponse:
    images: List[GeneratedImage]
    model: str
    provider: str
    created_at: datetime = field(default_factory=_utc_now)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "images": [
                {
                    "url": img.url,
                    "base64_data": img.base64_data,
                    "revised_prompt": img.revised_prompt,
                    "metadata": dict(img.metadata),
                }
                for img in self.images
            ],
            "model": self.model,
            "provider": self.provider,
            "created_at": self.created_at.isoformat(),
            "metadata": dict(self.metadata),
        }
