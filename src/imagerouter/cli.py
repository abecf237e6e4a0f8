from __future__ import annotations

import argparse
import asyncio
import base64
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from .arguments import ArgumentParser
from .environment import ProviderEnvironment
from .errors import ArgumentValidationError, ImageRouterError
from .image_service import ImageGenerationService
from .provider_catalog import default_catalog
from .references import sniff_mime_type
from .registry import create_default_registry
from .selection import FallbackProviderSelector
from .types import ALL_OPERATIONS, ImageOperation, SelectionContext

logger = logging.getLogger(__name__)


def _env(key: str, default: Optional[str] = None) -> Optional[str]:
    v = os.environ.get(key)
    if v is None:
        return default
    s = str(v).strip()
    return s if s else default


def _print_json(obj: Any) -> None:
    print(json.dumps(obj, indent=2, sort_keys=True))


def _configure_logging(level_name: Optional[str]) -> None:
    level = getattr(logging, str(level_name or "WARNING").upper(), logging.WARNING)
    logging.basicConfig(level=level, stream=sys.stderr, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def _build_environment(args: argparse.Namespace) -> ProviderEnvironment:
    values: Dict[str, str] = {}
    for key, attr in (
        ("OPENAI_API_KEY", "openai_api_key"),
        ("OPENAI_BASE_URL", "openai_base_url"),
        ("GOOGLE_PROJECT_ID", "google_project_id"),
        ("GOOGLE_LOCATION", "google_location"),
        ("GOOGLE_ACCESS_TOKEN", "google_access_token"),
    ):
        v = getattr(args, attr, None)
        if v:
            values[key] = str(v)
    return ProviderEnvironment(values=values)


def _image_arg(value: Optional[str]) -> Optional[str]:
    """Local file paths become data URLs; anything else is passed through."""
    if not value:
        return value
    p = Path(value).expanduser()
    try:
        is_file = p.is_file()
    except OSError:
        is_file = False
    if not is_file:
        return value
    content = p.read_bytes()
    mime = sniff_mime_type(content)
    return f"data:{mime};base64,{base64.b64encode(content).decode('ascii')}"


def _request_args(args: argparse.Namespace) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for key, attr in (
        ("prompt", "prompt"),
        ("provider", "provider"),
        ("model", "model"),
        ("size", "size"),
        ("quality", "quality"),
        ("style", "style"),
        ("numberOfImages", "number_of_images"),
    ):
        v = getattr(args, attr, None)
        if v is not None:
            out[key] = v
    image = _image_arg(getattr(args, "image", None))
    if image is not None:
        out["image"] = image
    mask = _image_arg(getattr(args, "mask", None))
    if mask is not None:
        out["mask"] = mask
    conv = getattr(args, "conversation_json", None)
    conv_file = getattr(args, "conversation_file", None)
    if conv_file:
        conv = Path(conv_file).expanduser().read_text(encoding="utf-8")
    if conv is not None:
        out["conversationJson"] = conv
    return out


def _build_service(args: argparse.Namespace) -> ImageGenerationService:
    return ImageGenerationService(registry=create_default_registry(), environment=_build_environment(args))


def _cmd_operations(_: argparse.Namespace) -> int:
    catalog = default_catalog()
    for op in ALL_OPERATIONS:
        desc = catalog.describe_operation(op)
        print(f"{op}: {desc}" if desc else op)
    return 0


def _cmd_providers(args: argparse.Namespace) -> int:
    service = _build_service(args)
    for info in service.list_providers():
        status = "available" if info["available"] else "unavailable"
        ops = ", ".join(info["capabilities"]["supported_operations"])
        print(f"{info['name']} (priority {info['priority']}, {status}): {ops}")
    return 0


def _cmd_show_provider(args: argparse.Namespace) -> int:
    registry = create_default_registry()
    factory = registry.get_factory(args.name)
    if factory is None:
        names = ", ".join(f.name for f in registry.get_factories())
        print(f"Unknown provider: {args.name}. Known providers: {names}", file=sys.stderr)
        return 1
    meta = factory.get_metadata()
    caps = meta.capabilities
    print(meta.name)
    if meta.description:
        print(f"description: {meta.description}")
    print(f"priority: {meta.priority}")
    print(f"available: {'yes' if factory.can_create(_build_environment(args)) else 'no'}")
    print(f"default model: {caps.default_model or '-'}")
    print(f"accepts custom models: {'yes' if caps.accepts_custom_models else 'no'}")
    print("operations:")
    for op in caps.supported_operations:
        print(f"  - {op}")
    print("models:")
    for m in caps.example_models:
        print(f"  - {m}")
    if meta.requirements.environment_variables:
        print(f"required environment: {', '.join(meta.requirements.environment_variables)}")
    return 0


def _cmd_select(args: argparse.Namespace) -> int:
    registry = create_default_registry()
    environment = _build_environment(args)
    context = SelectionContext(
        preferred_provider=args.provider,
        model=args.model,
        operation=args.operation,
        failed_providers=set(args.exclude or []),
    )
    if args.explain:
        selector = FallbackProviderSelector(registry).primary
        ranked = selector.rank_factories(context, environment)
        if not ranked:
            print("No suitable providers.")
            return 1
        for r in ranked:
            print(f"{r.factory.name}: score {r.score} (priority {r.priority})")
        return 0

    provider = asyncio.run(FallbackProviderSelector(registry).select_provider(context, environment))
    print(provider.provider_name)
    return 0


def _print_validation(errors: List[str], warnings: List[str]) -> None:
    for e in errors:
        print(f"error: {e}", file=sys.stderr)
    for w in warnings:
        print(f"warning: {w}", file=sys.stderr)


def _cmd_validate(args: argparse.Namespace) -> int:
    parser = ArgumentParser()
    result = parser.validate(parser.parse(_request_args(args)))
    _print_validation(result.errors, result.warnings)
    if result.is_valid:
        print("ok")
        return 0
    return 1


def _run_request(args: argparse.Namespace, method: str) -> int:
    service = _build_service(args)
    try:
        response = asyncio.run(getattr(service, method)(_request_args(args)))
    except ArgumentValidationError as e:
        _print_validation(e.errors, e.warnings)
        return 1
    except ImageRouterError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    _print_json(response.to_dict())
    return 0


def _cmd_generate(args: argparse.Namespace) -> int:
    return _run_request(args, "generate_image")


def _cmd_conversation(args: argparse.Namespace) -> int:
    return _run_request(args, "generate_image_from_conversation")


def _cmd_edit(args: argparse.Namespace) -> int:
    return _run_request(args, "edit_image")


def _cmd_variation(args: argparse.Namespace) -> int:
    return _run_request(args, "create_variation")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="imagerouter", description="imagerouter CLI (provider selection + image requests).")
    p.add_argument(
        "--log-level",
        default=_env("IMAGEROUTER_LOG_LEVEL", "WARNING"),
        help="Logging level written to stderr (default: WARNING).",
    )
    sub = p.add_subparsers(dest="cmd", required=True)

    def _add_environment_flags(ap: argparse.ArgumentParser) -> None:
        ap.add_argument("--openai-api-key", default=None, help="OpenAI API key (default: $OPENAI_API_KEY).")
        ap.add_argument("--openai-base-url", default=None, help="OpenAI-compatible base URL (default: $OPENAI_BASE_URL).")
        ap.add_argument("--google-project-id", default=None, help="Google Cloud project (default: $GOOGLE_PROJECT_ID).")
        ap.add_argument("--google-location", default=None, help="Vertex AI location (default: $GOOGLE_LOCATION or us-central1).")
        ap.add_argument("--google-access-token", default=None, help="OAuth access token (default: $GOOGLE_ACCESS_TOKEN).")

    def _add_request_flags(ap: argparse.ArgumentParser) -> None:
        ap.add_argument("--provider", default=_env("IMAGEROUTER_PROVIDER"), help="Preferred provider name.")
        ap.add_argument("--model", default=_env("IMAGEROUTER_MODEL"), help="Model name.")
        ap.add_argument("--size", default=None, help="WIDTHxHEIGHT, e.g. 1024x1024.")
        ap.add_argument("--quality", default=None, help="standard|hd.")
        ap.add_argument("--style", default=None, help="vivid|natural.")
        ap.add_argument("-n", "--number-of-images", default=None, dest="number_of_images", help="Images to produce (1-10).")

    sub.add_parser("operations", help="List image operations.").set_defaults(_fn=_cmd_operations)

    pr = sub.add_parser("providers", help="List registered providers and their availability.")
    _add_environment_flags(pr)
    pr.set_defaults(_fn=_cmd_providers)

    sp = sub.add_parser("show-provider", help="Show a provider's capabilities and requirements.")
    sp.add_argument("name")
    _add_environment_flags(sp)
    sp.set_defaults(_fn=_cmd_show_provider)

    sel = sub.add_parser("select", help="Run provider selection without calling the provider.")
    _add_environment_flags(sel)
    sel.add_argument("--operation", default=ImageOperation.GENERATE, choices=list(ALL_OPERATIONS))
    sel.add_argument("--provider", default=_env("IMAGEROUTER_PROVIDER"), help="Preferred provider name.")
    sel.add_argument("--model", default=_env("IMAGEROUTER_MODEL"), help="Model name.")
    sel.add_argument("--exclude", action="append", default=None, help="Provider to treat as failed (repeatable).")
    sel.add_argument("--explain", action="store_true", help="Print every candidate with its score.")
    sel.set_defaults(_fn=_cmd_select)

    val = sub.add_parser("validate", help="Parse and validate request arguments.")
    _add_request_flags(val)
    val.add_argument("--prompt", default=None)
    val.add_argument("--image", default=None, help="Data URL, http(s) URL, base64 or local file.")
    val.add_argument("--mask", default=None, help="Data URL, http(s) URL, base64 or local file.")
    val.add_argument("--conversation-json", default=None, help="JSON array of {role, text, images}.")
    val.set_defaults(_fn=_cmd_validate)

    gen = sub.add_parser("generate", help="Generate images from a prompt (prints the response JSON).")
    _add_environment_flags(gen)
    _add_request_flags(gen)
    gen.add_argument("prompt")
    gen.set_defaults(_fn=_cmd_generate)

    conv = sub.add_parser("conversation", help="Generate images from a conversation.")
    _add_environment_flags(conv)
    _add_request_flags(conv)
    src = conv.add_mutually_exclusive_group(required=True)
    src.add_argument("--conversation-json", default=None, help="JSON array of {role, text, images}.")
    src.add_argument("--conversation-file", default=None, help="File holding the conversation JSON array.")
    conv.set_defaults(_fn=_cmd_conversation)

    ed = sub.add_parser("edit", help="Edit an image from a prompt.")
    _add_environment_flags(ed)
    _add_request_flags(ed)
    ed.add_argument("--image", required=True, help="Data URL, http(s) URL, base64 or local file.")
    ed.add_argument("--mask", default=None, help="Optional mask (same forms as --image).")
    ed.add_argument("prompt")
    ed.set_defaults(_fn=_cmd_edit)

    var = sub.add_parser("variation", help="Create variations of an image.")
    _add_environment_flags(var)
    _add_request_flags(var)
    var.add_argument("--image", required=True, help="Data URL, http(s) URL, base64 or local file.")
    var.set_defaults(_fn=_cmd_variation)

    return p


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    _configure_logging(args.log_level)
    fn = getattr(args, "_fn", None)
    if not callable(fn):
        raise SystemExit(2)
    try:
        return int(fn(args))
    except ImageRouterError as e:
        logger.debug("Command failed", exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
