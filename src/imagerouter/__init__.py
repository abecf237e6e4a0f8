"""imagerouter: one request surface for image generation across AI providers.

Loosely-typed tool arguments are parsed and validated, then routed to the
best available provider by capability scoring with bounded fallback.
"""

from .arguments import ArgumentParser
from .environment import ProviderEnvironment
from .image_service import ImageGenerationService
from .provider_catalog import ProviderCatalog
from .registry import ProviderRegistry, create_default_registry
from .selection import CapabilityScoringSelector, FallbackProviderSelector
from .types import ImageOperation, SelectionContext

__version__ = "0.1.0"

__all__ = [
    "ArgumentParser",
    "CapabilityScoringSelector",
    "FallbackProviderSelector",
    "ImageGenerationService",
    "ImageOperation",
    "ProviderCatalog",
    "ProviderEnvironment",
    "ProviderRegistry",
    "SelectionContext",
    "create_default_registry",
    "__version__",
]
