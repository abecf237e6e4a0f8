from __future__ import annotations

import dataclasses
import logging
from typing import Any, Dict, List, Mapping, Optional

from .arguments import PROMPT_REQUIRED_ERROR, ArgumentParser
from .backends.base_backend import ImageProvider
from .environment import ProviderEnvironment
from .errors import ArgumentValidationError, NoSuitableBackendError
from .registry import ProviderRegistry, create_default_registry
from .selection import FallbackProviderSelector
from .types import (
    ConversationalImageGenerationRequest,
    ConversationMessage,
    ImageEditRequest,
    ImageGenerationRequest,
    ImageGenerationResponse,
    ImageOperation,
    ImageVariationRequest,
    ParsedArguments,
    SelectionContext,
)

logger = logging.getLogger(__name__)

IMAGE_REQUIRED_ERROR = "'image' is required for this operation"
PROMPT_TEXT_REQUIRED_ERROR = "'prompt' is required for this operation"


class ImageGenerationService:
    """Raw tool arguments in, provider response out.

    Every call parses and validates the arguments, builds a fresh
    `SelectionContext`, selects a provider through the fallback selector and
    hands it a typed request.
    """

    def __init__(
        self,
        *,
        registry: Optional[ProviderRegistry] = None,
        environment: Optional[ProviderEnvironment] = None,
        parser: Optional[ArgumentParser] = None,
    ):
        self.registry = registry if registry is not None else create_default_registry()
        self.environment = environment if environment is not None else ProviderEnvironment()
        self.parser = parser if parser is not None else ArgumentParser()
        self.selector = FallbackProviderSelector(self.registry)

    def _parse_and_validate(
        self,
        args: Mapping[str, Any],
        *,
        require_image: bool = False,
        require_prompt: bool = True,
        require_prompt_text: bool = False,
    ) -> ParsedArguments:
        parsed = self.parser.parse(args)
        result = self.parser.validate(parsed)
        errors = list(result.errors)
        if not require_prompt:
            errors = [e for e in errors if e != PROMPT_REQUIRED_ERROR]
        if require_image and not parsed.image:
            errors.append(IMAGE_REQUIRED_ERROR)
        # A conversation satisfies the general prompt rule but not an edit.
        if require_prompt_text and not (parsed.prompt and parsed.prompt.strip()) and PROMPT_REQUIRED_ERROR not in errors:
            errors.append(PROMPT_TEXT_REQUIRED_ERROR)
        for w in result.warnings:
            logger.warning(f"Argument warning: {w}")
        if errors:
            logger.debug(f"Rejected arguments: {errors}")
            raise ArgumentValidationError(errors, result.warnings)
        return parsed

    @staticmethod
    def _context(parsed: ParsedArguments, operation: str) -> SelectionContext:
        return SelectionContext(preferred_provider=parsed.provider, model=parsed.model, operation=operation)

    async def _select(self, parsed: ParsedArguments, operation: str) -> ImageProvider:
        return await self.selector.select_provider(self._context(parsed, operation), self.environment)

    async def generate_image(self, args: Mapping[str, Any]) -> ImageGenerationResponse:
        parsed = self._parse_and_validate(args)
        if not (parsed.prompt and parsed.prompt.strip()):
            # Only a conversation was supplied.
            return await self._generate_from_conversation(parsed)

        provider = await self._select(parsed, ImageOperation.GENERATE)
        request = ImageGenerationRequest(
            prompt=str(parsed.prompt),
            model=parsed.model,
            size=parsed.size,
            quality=parsed.quality,
            style=parsed.style,
            number_of_images=parsed.number_of_images,
        )
        return await provider.generate_image(request)

    async def generate_image_from_conversation(self, args: Mapping[str, Any]) -> ImageGenerationResponse:
        parsed = self._parse_and_validate(args)
        return await self._generate_from_conversation(parsed)

    async def _generate_from_conversation(self, parsed: ParsedArguments) -> ImageGenerationResponse:
        conversation = parsed.conversation
        if not conversation:
            conversation = [ConversationMessage(role="user", text=parsed.prompt)]

        try:
            provider = await self._select(parsed, ImageOperation.GENERATE_FROM_CONVERSATION)
        except NoSuitableBackendError:
            logger.info("No conversation-capable provider; falling back to prompt generation")
            provider = await self._select(parsed, ImageOperation.GENERATE)

        request = ConversationalImageGenerationRequest(
            conversation=list(conversation),
            model=parsed.model,
            size=parsed.size,
            quality=parsed.quality,
            style=parsed.style,
            number_of_images=parsed.number_of_images,
        )
        return await provider.generate_image_from_conversation(request)

    async def edit_image(self, args: Mapping[str, Any]) -> ImageGenerationResponse:
        parsed = self._parse_and_validate(args, require_image=True, require_prompt_text=True)
        provider = await self._select(parsed, ImageOperation.EDIT)
        request = ImageEditRequest(
            image=str(parsed.image),
            prompt=str(parsed.prompt),
            mask=parsed.mask,
            model=parsed.model,
            size=parsed.size,
            number_of_images=parsed.number_of_images,
        )
        return await provider.edit_image(request)

    async def create_variation(self, args: Mapping[str, Any]) -> ImageGenerationResponse:
        parsed = self._parse_and_validate(args, require_image=True, require_prompt=False)
        provider = await self._select(parsed, ImageOperation.VARIATION)
        request = ImageVariationRequest(
            image=str(parsed.image),
            model=parsed.model,
            size=parsed.size,
            number_of_images=parsed.number_of_images,
        )
        return await provider.create_variation(request)

    def list_providers(self, environment: Optional[ProviderEnvironment] = None) -> List[Dict[str, Any]]:
        """Describe every registered provider and whether it is available right now."""
        env = environment if environment is not None else self.environment
        available = {f.name for f in self.registry.get_available_factories(env)}
        out: List[Dict[str, Any]] = []
        for factory in self.registry.get_factories():
            meta = factory.get_metadata()
            out.append(
                {
                    "name": meta.name,
                    "description": meta.description,
                    "priority": meta.priority,
                    "available": meta.name in available,
                    "capabilities": dataclasses.asdict(meta.capabilities),
                    "requirements": dataclasses.asdict(meta.requirements),
                }
            )
        return out
