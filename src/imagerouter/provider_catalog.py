from __future__ import annotations

import json
import pkgutil
from typing import Any, Dict, List, Optional, Sequence, Union

from .types import ALL_OPERATIONS, ProviderCapabilities, ProviderMetadata, ProviderRequirements


class ProviderCatalog:
    """Loads `assets/provider_catalog.json`: static descriptors of the built-in providers."""

    DEFAULT_ASSET_PATH = "assets/provider_catalog.json"

    def __init__(self, *, asset_path: Optional[str] = None):
        self._asset_path = asset_path or self.DEFAULT_ASSET_PATH
        self._schema_version: str = ""
        self._operations: Dict[str, Dict[str, Any]] = {}
        self._providers: Dict[str, ProviderMetadata] = {}
        self._load()

    def _load(self) -> None:
        raw = pkgutil.get_data("imagerouter", self._asset_path)
        if raw is None:
            raise RuntimeError(f"Provider catalog not found: imagerouter/{self._asset_path}")
        data = json.loads(raw.decode("utf-8"))
        validate_catalog_json(data)

        self._schema_version = str(data.get("schema_version") or "")
        self._operations = dict(data.get("operations", {}))

        parsed: Dict[str, ProviderMetadata] = {}
        for name, spec in data["providers"].items():
            caps = spec.get("capabilities", {})
            reqs = spec.get("requirements") or {}
            parsed[str(name)] = ProviderMetadata(
                name=str(name),
                description=spec.get("description"),
                priority=int(spec.get("priority", 100)),
                capabilities=ProviderCapabilities(
                    example_models=[str(m) for m in caps.get("example_models", [])],
                    supported_operations=[str(o) for o in caps.get("supported_operations", [])],
                    default_model=caps.get("default_model"),
                    accepts_custom_models=bool(caps.get("accepts_custom_models", True)),
                    supports_multi_modal_input=bool(caps.get("supports_multi_modal_input", False)),
                    max_conversation_images=caps.get("max_conversation_images"),
                    features=dict(caps.get("features", {})),
                ),
                requirements=ProviderRequirements(
                    environment_variables=list(reqs.get("environment_variables", [])),
                    configuration_sections=list(reqs.get("configuration_sections", [])),
                    dependencies=list(reqs.get("dependencies", [])),
                    optional_dependencies=list(reqs.get("optional_dependencies", [])),
                ),
            )
        self._providers = parsed

    def schema_version(self) -> str:
        return self._schema_version

    def list_operations(self) -> List[str]:
        return [op for op in ALL_OPERATIONS if op in self._operations]

    def describe_operation(self, operation: str) -> str:
        spec = self._operations.get(str(operation or ""))
        if isinstance(spec, dict):
            return str(spec.get("description") or "")
        return ""

    def list_providers(self) -> List[str]:
        return sorted(self._providers.keys())

    def get(self, name: str) -> ProviderMetadata:
        try:
            return self._providers[name]
        except KeyError as e:
            raise KeyError(f"Unknown provider in catalog: {name}") from e


_DEFAULT_CATALOG: Optional[ProviderCatalog] = None


def default_catalog() -> ProviderCatalog:
    """Process-wide catalog (loaded once, read-only afterwards)."""
    global _DEFAULT_CATALOG
    if _DEFAULT_CATALOG is None:
        _DEFAULT_CATALOG = ProviderCatalog()
    return _DEFAULT_CATALOG


_PathPart = Union[str, int]


def _fmt_path(parts: Sequence[_PathPart]) -> str:
    out: List[str] = []
    for p in parts:
        if isinstance(p, int):
            out.append(f"[{p}]")
        elif not out:
            out.append(str(p))
        else:
            out.append(f"[{p!r}]")
    return "".join(out) if out else "<root>"


def validate_catalog_json(data: Any) -> None:
    """Validate the `provider_catalog.json` schema.

    Soft schema: required structure and operation references are enforced,
    additive fields are allowed.
    """
    if not isinstance(data, dict):
        raise ValueError("Invalid provider catalog: top-level JSON must be an object.")

    schema_version = data.get("schema_version")
    if schema_version is None:
        raise ValueError("Invalid provider catalog: missing required key 'schema_version'.")
    if not isinstance(schema_version, (str, int, float)):
        raise ValueError("Invalid provider catalog: 'schema_version' must be a string or number.")

    def _err(path: Sequence[_PathPart], msg: str) -> None:
        raise ValueError(f"Invalid provider catalog at {_fmt_path(path)}: {msg}")

    def _expect_dict(value: Any, path: Sequence[_PathPart]) -> Dict[str, Any]:
        if not isinstance(value, dict):
            _err(path, "expected object")
        return value

    def _expect_str(value: Any, path: Sequence[_PathPart]) -> str:
        if not isinstance(value, str) or not value.strip():
            _err(path, "expected non-empty string")
        return value

    def _expect_list_of_str(value: Any, path: Sequence[_PathPart]) -> List[str]:
        if not isinstance(value, list):
            _err(path, "expected list of strings")
        for i, item in enumerate(value):
            if not isinstance(item, str) or not item.strip():
                _err([*path, i], "expected non-empty string")
        return value

    def _expect_bool(value: Any, path: Sequence[_PathPart]) -> None:
        if not isinstance(value, bool):
            _err(path, "expected boolean")

    operations = _expect_dict(data.get("operations"), ["operations"])
    for op_name, op_spec in operations.items():
        if op_name not in ALL_OPERATIONS:
            _err(["operations", op_name], "unknown operation")
        o = _expect_dict(op_spec, ["operations", op_name])
        desc = o.get("description")
        if desc is not None and not isinstance(desc, str):
            _err(["operations", op_name, "description"], "expected string")

    providers = _expect_dict(data.get("providers"), ["providers"])
    for name, spec in providers.items():
        if not isinstance(name, str) or not name.strip():
            _err(["providers"], f"provider key must be a non-empty string (got {name!r})")
        ppath: List[_PathPart] = ["providers", name]
        p = _expect_dict(spec, ppath)

        priority = p.get("priority")
        if priority is not None and (isinstance(priority, bool) or not isinstance(priority, int)):
            _err([*ppath, "priority"], "expected integer")

        caps_raw = p.get("capabilities")
        if caps_raw is None:
            _err([*ppath, "capabilities"], "missing required key")
        cpath: List[_PathPart] = [*ppath, "capabilities"]
        caps = _expect_dict(caps_raw, cpath)
        _expect_list_of_str(caps.get("example_models", []), [*cpath, "example_models"])
        ops = _expect_list_of_str(caps.get("supported_operations", []), [*cpath, "supported_operations"])
        for i, op in enumerate(ops):
            if op not in operations:
                _err([*cpath, "supported_operations", i], f"unknown operation {op!r} (not present in top-level 'operations')")
        default_model = caps.get("default_model")
        if default_model is not None:
            _expect_str(default_model, [*cpath, "default_model"])
        for key in ("accepts_custom_models", "supports_multi_modal_input"):
            if key in caps:
                _expect_bool(caps[key], [*cpath, key])
        max_images = caps.get("max_conversation_images")
        if max_images is not None and (isinstance(max_images, bool) or not isinstance(max_images, int)):
            _err([*cpath, "max_conversation_images"], "expected integer")
        if "features" in caps:
            _expect_dict(caps["features"], [*cpath, "features"])

        reqs = p.get("requirements")
        if reqs is not None:
            rpath: List[_PathPart] = [*ppath, "requirements"]
            r = _expect_dict(reqs, rpath)
            for key in ("environment_variables", "configuration_sections", "dependencies", "optional_dependencies"):
                _expect_list_of_str(r.get(key, []), [*rpath, key])
