"""Capability-based provider selection.

`CapabilityScoringSelector` ranks the available factories for a
`SelectionContext` and instantiates the survivors. `FallbackProviderSelector`
wraps it with a bounded retry loop that excludes the top candidate between
attempts.
"""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass
from typing import List, Optional

from .backends.base_backend import ImageProvider, ProviderFactory
from .environment import ProviderEnvironment
from .errors import NoSuitableBackendError
from .registry import ProviderRegistry, factory_label
from .types import SelectionContext

logger = logging.getLogger(__name__)

PREFERRED_PROVIDER_BONUS = 1000
OPERATION_BASE_SCORE = 100
EXPLICIT_MODEL_BONUS = 50
CUSTOM_MODEL_BONUS = 25

MAX_SELECTION_ATTEMPTS = 3

__all__ = [
    "CapabilityScoringSelector",
    "FallbackProviderSelector",
    "RankedFactory",
    "SelectionContext",
    "score_factory",
]


@dataclass(frozen=True)
class RankedFactory:
    factory: ProviderFactory
    score: int
    priority: int


def score_factory(factory: ProviderFactory, context: SelectionContext) -> int:
    """Score one factory against a context; 0 means "cannot serve"."""
    try:
        metadata = factory.get_metadata()
        caps = metadata.capabilities

        if str(context.operation) not in caps.supported_operations:
            return 0
        score = OPERATION_BASE_SCORE

        preferred = context.preferred_provider
        if preferred and factory.name.casefold() == str(preferred).casefold():
            score += PREFERRED_PROVIDER_BONUS

        if context.model:
            if caps.lists_model(context.model):
                score += EXPLICIT_MODEL_BONUS
            elif caps.accepts_custom_models:
                score += CUSTOM_MODEL_BONUS
            else:
                return 0

        score += int(metadata.priority)
    except Exception as e:
        logger.warning(f"Error scoring provider factory {type(factory).__name__}: {e}")
        return 0

    logger.debug(f"Provider {factory_label(factory)} scored {score} for operation '{context.operation}'")
    return score


class CapabilityScoringSelector:
    def __init__(self, registry: ProviderRegistry):
        if registry is None:
            raise ValueError("registry must not be None")
        self._registry = registry

    @property
    def registry(self) -> ProviderRegistry:
        return self._registry

    def rank_factories(self, context: SelectionContext, environment: ProviderEnvironment) -> List[RankedFactory]:
        """Scored, sorted factories (best first) without instantiating them."""
        ranked: List[RankedFactory] = []
        for factory in self._registry.get_available_factories(environment):
            try:
                name = factory.name
                priority = int(factory.get_metadata().priority)
            except Exception as e:
                logger.warning(f"Skipping provider factory {type(factory).__name__} with unreadable metadata: {e}")
                continue
            if context.has_failed(name):
                logger.debug(f"Skipping previously failed provider: {name}")
                continue
            score = score_factory(factory, context)
            if score <= 0:
                continue
            ranked.append(RankedFactory(factory=factory, score=score, priority=priority))
        # sorted() is stable: ties keep registration order.
        return sorted(ranked, key=lambda r: (-r.score, -r.priority))

    async def _instantiate(self, factory: ProviderFactory, environment: ProviderEnvironment) -> Optional[ImageProvider]:
        try:
            provider = factory.create(environment)
            if inspect.isawaitable(provider):
                provider = await provider
        except Exception as e:
            logger.warning(f"Failed to create provider from factory {factory_label(factory)}: {e}")
            return None
        if provider is None:
            logger.warning(f"Factory {factory_label(factory)} returned no provider")
            return None
        logger.debug(f"Added provider option: {provider.provider_name}")
        return provider

    async def get_provider_options(self, context: SelectionContext, environment: ProviderEnvironment) -> List[ImageProvider]:
        providers: List[ImageProvider] = []
        for ranked in self.rank_factories(context, environment):
            provider = await self._instantiate(ranked.factory, environment)
            if provider is not None:
                providers.append(provider)
        return providers

    async def select_provider(self, context: SelectionContext, environment: ProviderEnvironment) -> ImageProvider:
        options = await self.get_provider_options(context, environment)
        if not options:
            available = [factory_label(f) for f in self._registry.get_available_factories(environment)]
            raise NoSuitableBackendError(context.operation, context.model, available)
        selected = options[0]
        logger.info(f"Selected provider '{selected.provider_name}' for operation '{context.operation}'")
        return selected


class FallbackProviderSelector:
    """Scoring selection retried up to `MAX_SELECTION_ATTEMPTS` times.

    After each failed attempt the top-ranked option is added to
    `context.failed_providers`. When all attempts fail the failed-set is put
    back to its value on entry and a last, unguarded selection is made so the
    raised error reflects the caller's original candidate set.
    """

    def __init__(self, registry: ProviderRegistry):
        self._primary = CapabilityScoringSelector(registry)

    @property
    def primary(self) -> CapabilityScoringSelector:
        return self._primary

    async def select_provider(self, context: SelectionContext, environment: ProviderEnvironment) -> ImageProvider:
        original_failed = set(context.failed_providers)
        for attempt in range(1, MAX_SELECTION_ATTEMPTS + 1):
            try:
                provider = await self._primary.select_provider(context, environment)
            except NoSuitableBackendError as e:
                logger.warning(f"Provider selection failed on attempt {attempt}: {e}")
                options = await self._primary.get_provider_options(context, environment)
                for provider in options[:1]:
                    context.failed_providers.add(provider.provider_name)
                continue
            logger.debug(f"Selected provider '{provider.provider_name}' on attempt {attempt}")
            return provider

        context.failed_providers = original_failed
        return await self._primary.select_provider(context, environment)

    async def get_provider_options(self, context: SelectionContext, environment: ProviderEnvironment) -> List[ImageProvider]:
        return await self._primary.get_provider_options(context, environment)
