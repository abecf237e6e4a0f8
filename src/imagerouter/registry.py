from __future__ import annotations

import logging
from typing import Iterable, List, Optional, Sequence, Tuple

from .backends.base_backend import ProviderFactory
from .environment import ProviderEnvironment
from .types import ProviderCapabilities

logger = logging.getLogger(__name__)


def factory_label(factory: ProviderFactory) -> str:
    """Factory name for messages; falls back to the class name when metadata is broken."""
    try:
        return factory.name
    except Exception:
        return type(factory).__name__


class ProviderRegistry:
    """Fixed, ordered collection of provider factories.

    The factory list never changes after construction. Availability is not
    cached: `can_create` is asked again on every query.
    """

    def __init__(self, factories: Iterable[ProviderFactory]):
        if factories is None:
            raise ValueError("factories must not be None")
        self._factories: Tuple[ProviderFactory, ...] = tuple(factories)
        logger.info(f"Provider registry created with {len(self._factories)} factories: {', '.join(self._names())}")

    def _names(self) -> List[str]:
        return [factory_label(f) for f in self._factories]

    def get_factories(self) -> Tuple[ProviderFactory, ...]:
        return self._factories

    def get_factory(self, name: Optional[str]) -> Optional[ProviderFactory]:
        if name is None or not str(name).strip():
            return None
        wanted = str(name).casefold()
        for f in self._factories:
            if factory_label(f).casefold() == wanted:
                return f
        return None

    def _is_available(self, factory: ProviderFactory, environment: ProviderEnvironment) -> bool:
        try:
            ok = bool(factory.can_create(environment))
        except Exception as e:
            logger.warning(f"Availability check failed for provider factory {type(factory).__name__}: {e}")
            return False
        if not ok:
            logger.debug(f"Provider {factory_label(factory)} is not available in this environment")
        return ok

    def _capabilities(self, factory: ProviderFactory) -> Optional[ProviderCapabilities]:
        try:
            return factory.get_metadata().capabilities
        except Exception as e:
            logger.warning(f"Error reading metadata of provider factory {type(factory).__name__}: {e}")
            return None

    def get_available_factories(self, environment: ProviderEnvironment) -> List[ProviderFactory]:
        return [f for f in self._factories if self._is_available(f, environment)]

    def get_factories_for_operation(self, operation: str, environment: ProviderEnvironment) -> List[ProviderFactory]:
        out: List[ProviderFactory] = []
        for f in self.get_available_factories(environment):
            caps = self._capabilities(f)
            if caps is not None and str(operation) in caps.supported_operations:
                out.append(f)
        return out

    def get_factories_for_model(self, model: Optional[str], environment: ProviderEnvironment) -> List[ProviderFactory]:
        """Factories listing `model` explicitly or accepting custom models."""
        if model is None or not str(model).strip():
            return []
        out: List[ProviderFactory] = []
        for f in self.get_available_factories(environment):
            caps = self._capabilities(f)
            if caps is None:
                continue
            if caps.lists_model(model) or caps.accepts_custom_models:
                out.append(f)
        return out


def create_default_registry(extra_factories: Sequence[ProviderFactory] = ()) -> ProviderRegistry:
    """Registry with the built-in OpenAI and Google factories, then `extra_factories`."""
    from .backends.google_imagen import GoogleImagenProviderFactory
    from .backends.openai_compatible import OpenAIProviderFactory

    return ProviderRegistry([OpenAIProviderFactory(), GoogleImagenProviderFactory(), *extra_factories])
