"""Parsing and validation of loosely-typed tool arguments.

Parsing never raises on malformed values: unknown shapes fall back to
defaults (`None`, or 1 for `numberOfImages`) and validation reports what is
wrong. Validation runs every rule on every call and accumulates all errors.
"""

from __future__ import annotations

import base64
import binascii
import json
import math
import re
from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import urlparse

from .types import ConversationMessage, ImageContent, ImageSize, ParsedArguments, ValidationResult

MIN_IMAGES = 1
MAX_IMAGES = 10

VALID_QUALITIES = ("standard", "hd")
VALID_STYLES = ("vivid", "natural")

PROMPT_REQUIRED_ERROR = "Either 'prompt' or valid 'conversationJson' is required"
NUMBER_OF_IMAGES_ERROR = f"NumberOfImages must be between {MIN_IMAGES} and {MAX_IMAGES}"
QUALITY_ERROR = "Quality must be either 'standard' or 'hd'"
STYLE_ERROR = "Style must be either 'vivid' or 'natural'"
EMPTY_CONVERSATION_ERROR = "Conversation must contain at least one message"
IMAGE_FORMAT_ERROR = "Image must be a valid base64 encoded image, data URL, or HTTP URL"

MASK_WITHOUT_IMAGE_WARNING = "'mask' is ignored when no 'image' is supplied"
MASK_FORMAT_WARNING = "Mask does not look like a base64 encoded image, data URL, or HTTP URL"

_SIZE_SEPARATOR_RE = re.compile(r"[xX]")
_INT_RE = re.compile(r"^\s*[+-]?[0-9]+\s*$")
_INT32_MIN = -(2**31)
_INT32_MAX = 2**31 - 1


def size_format_error(size: str) -> str:
    return f"Invalid size format: '{size}'. Expected format: 'WIDTHxHEIGHT' (e.g., '1024x1024')"


def _parse_int(text: str) -> Optional[int]:
    if not _INT_RE.match(text):
        return None
    value = int(text)
    if value < _INT32_MIN or value > _INT32_MAX:
        return None
    return value


def parse_size(size: Optional[str]) -> Optional[ImageSize]:
    """Parse "WIDTHxHEIGHT" (separator is case-insensitive); None when invalid."""
    if not isinstance(size, str) or not size.strip():
        return None
    parts = _SIZE_SEPARATOR_RE.split(size)
    if len(parts) != 2:
        return None
    width = _parse_int(parts[0])
    height = _parse_int(parts[1])
    if width is None or height is None or width <= 0 or height <= 0:
        return None
    return ImageSize(width=width, height=height)


def _lower_keys(obj: Dict[str, Any]) -> Dict[str, Any]:
    return {str(k).lower(): v for k, v in obj.items()}


def _optional_str(value: Any) -> str:
    if value is not None and not isinstance(value, str):
        raise ValueError("expected string")
    return value


def _image_content(obj: Any) -> ImageContent:
    if not isinstance(obj, dict):
        raise ValueError("image entry must be an object")
    o = _lower_keys(obj)
    return ImageContent(
        url=_optional_str(o.get("url")),
        base64_data=_optional_str(o.get("base64data")),
        mime_type=_optional_str(o.get("mimetype")),
        caption=_optional_str(o.get("caption")),
    )


def _conversation_message(obj: Any) -> ConversationMessage:
    if not isinstance(obj, dict):
        raise ValueError("message must be an object")
    o = _lower_keys(obj)
    role = o.get("role")
    if not isinstance(role, str):
        raise ValueError("message role is required")
    images_raw = o.get("images")
    images: Optional[List[ImageContent]] = None
    if images_raw is not None:
        if not isinstance(images_raw, list):
            raise ValueError("message images must be a list")
        images = [_image_content(i) for i in images_raw]
    return ConversationMessage(role=role, text=_optional_str(o.get("text")), images=images)


def conversation_from_list(items: Any) -> Optional[List[ConversationMessage]]:
    """Build messages from an already-decoded JSON array; None when malformed."""
    if not isinstance(items, list):
        return None
    try:
        return [_conversation_message(m) for m in items]
    except ValueError:
        return None


def _strip_trailing_commas(text: str) -> str:
    """Drop commas that directly precede a closing bracket, outside string literals."""
    out: List[str] = []
    in_string = False
    escaped = False
    last = ""
    for i, ch in enumerate(text):
        if in_string:
            out.append(ch)
            last = ch
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == ",":
            following = text[i + 1 :].lstrip()
            # "[,]" and ",," stay malformed.
            if following[:1] in ("]", "}") and last not in ("[", "{", ",", ""):
                continue
        out.append(ch)
        if not ch.isspace():
            last = ch
    return "".join(out)


def parse_conversation(conversation_json: Optional[str]) -> Optional[List[ConversationMessage]]:
    """Parse a JSON array of `{role, text, images[]}` objects.

    Trailing commas are tolerated. Returns None for absent, blank or malformed
    input alike; callers cannot tell "no conversation" from "bad JSON".
    """
    if not isinstance(conversation_json, str) or not conversation_json.strip():
        return None
    try:
        data = json.loads(_strip_trailing_commas(conversation_json))
    except ValueError:
        return None
    return conversation_from_list(data)


def is_valid_image_reference(value: Optional[str]) -> bool:
    """True for `data:image/...` URLs, absolute http(s) URLs and strict base64."""
    if not isinstance(value, str) or not value.strip():
        return False
    if value[:11].lower() == "data:image/":
        return True
    parsed = urlparse(value)
    if parsed.scheme in ("http", "https") and parsed.netloc:
        return True
    try:
        base64.b64decode("".join(value.split()), validate=True)
    except (binascii.Error, ValueError):
        return False
    return True


class ArgumentParser:
    """Turns a flat parameter map into `ParsedArguments` and validates it.

    Stateless: one instance can serve any number of concurrent requests.
    """

    def parse(self, args: Optional[Mapping[str, Any]]) -> ParsedArguments:
        if args is None:
            raise ValueError("args must not be None")

        size = self._get_string(args, "size")
        conversation = None
        raw_conversation = args.get("conversationJson")
        if isinstance(raw_conversation, list):
            conversation = conversation_from_list(raw_conversation)
        elif raw_conversation is not None:
            conversation = parse_conversation(str(raw_conversation))

        return ParsedArguments(
            prompt=self._get_string(args, "prompt"),
            provider=self._get_string(args, "provider"),
            model=self._get_string(args, "model"),
            size=size,
            quality=self._get_string(args, "quality"),
            style=self._get_string(args, "style"),
            image=self._get_string(args, "image"),
            mask=self._get_string(args, "mask"),
            number_of_images=self._get_int(args, "numberOfImages", 1),
            parsed_size=parse_size(size) if size else None,
            conversation=conversation,
        )

    def validate(self, args: ParsedArguments) -> ValidationResult:
        result = ValidationResult()
        self._validate_prompt_requirement(args, result)
        self._validate_number_of_images(args, result)
        self._validate_size_format(args, result)
        self._validate_quality(args, result)
        self._validate_style(args, result)
        self._validate_conversation(args, result)
        self._validate_image_format(args, result)
        self._check_mask(args, result)
        return result

    parse_size = staticmethod(parse_size)
    parse_conversation = staticmethod(parse_conversation)

    @staticmethod
    def _get_string(args: Mapping[str, Any], key: str) -> Optional[str]:
        value = args.get(key)
        return None if value is None else str(value)

    @staticmethod
    def _get_int(args: Mapping[str, Any], key: str, default: int) -> int:
        value = args.get(key)
        if value is None or isinstance(value, bool):
            return default
        if isinstance(value, int):
            return value
        if isinstance(value, float):
            return int(value) if math.isfinite(value) else default
        if isinstance(value, str):
            parsed = _parse_int(value)
            return default if parsed is None else parsed
        return default

    @staticmethod
    def _validate_prompt_requirement(args: ParsedArguments, result: ValidationResult) -> None:
        has_prompt = bool(args.prompt and args.prompt.strip())
        if not has_prompt and not args.conversation:
            result.errors.append(PROMPT_REQUIRED_ERROR)

    @staticmethod
    def _validate_number_of_images(args: ParsedArguments, result: ValidationResult) -> None:
        if args.number_of_images < MIN_IMAGES or args.number_of_images > MAX_IMAGES:
            result.errors.append(NUMBER_OF_IMAGES_ERROR)

    @staticmethod
    def _validate_size_format(args: ParsedArguments, result: ValidationResult) -> None:
        if args.size and args.parsed_size is None:
            result.errors.append(size_format_error(args.size))

    @staticmethod
    def _validate_quality(args: ParsedArguments, result: ValidationResult) -> None:
        if args.quality and args.quality not in VALID_QUALITIES:
            result.errors.append(QUALITY_ERROR)

    @staticmethod
    def _validate_style(args: ParsedArguments, result: ValidationResult) -> None:
        if args.style and args.style not in VALID_STYLES:
            result.errors.append(STYLE_ERROR)

    @staticmethod
    def _validate_conversation(args: ParsedArguments, result: ValidationResult) -> None:
        if args.conversation is not None and len(args.conversation) == 0:
            result.errors.append(EMPTY_CONVERSATION_ERROR)

    @staticmethod
    def _validate_image_format(args: ParsedArguments, result: ValidationResult) -> None:
        if args.image and not is_valid_image_reference(args.image):
            result.errors.append(IMAGE_FORMAT_ERROR)

    @staticmethod
    def _check_mask(args: ParsedArguments, result: ValidationResult) -> None:
        if not args.mask:
            return
        if not args.image:
            result.warnings.append(MASK_WITHOUT_IMAGE_WARNING)
        if not is_valid_image_reference(args.mask):
            result.warnings.append(MASK_FORMAT_WARNING)
