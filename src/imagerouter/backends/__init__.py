"""Backend exports.

Concrete backends are imported lazily so `import imagerouter.backends` only
pulls the provider and factory interfaces.
"""

from .base_backend import ImageProvider, ProviderFactory, flatten_conversation

__all__ = [
    "ImageProvider",
    "ProviderFactory",
    "flatten_conversation",
    "OpenAIBackendConfig",
    "OpenAIImageProvider",
    "OpenAIProviderFactory",
    "GoogleImagenBackendConfig",
    "GoogleImagenProvider",
    "GoogleImagenProviderFactory",
]

_OPENAI_EXPORTS = {"OpenAIBackendConfig", "OpenAIImageProvider", "OpenAIProviderFactory"}
_GOOGLE_EXPORTS = {"GoogleImagenBackendConfig", "GoogleImagenProvider", "GoogleImagenProviderFactory"}


def __getattr__(name: str):
    if name in _OPENAI_EXPORTS:
        from . import openai_compatible

        return getattr(openai_compatible, name)

    if name in _GOOGLE_EXPORTS:
        from . import google_imagen

        return getattr(google_imagen, name)

    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
