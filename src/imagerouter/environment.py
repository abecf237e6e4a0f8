from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off"}


@dataclass
class ProviderEnvironment:
    """Runtime configuration handed to provider factories.

    Explicit `values` win over `os.environ`. Lookups are lazy so that a
    factory's availability reflects the configuration at the time it is asked.
    Blank values are treated as missing.

    `http_opener` replaces `urllib.request.urlopen` in the built-in backends
    when set (same call signature).
    """

    values: Dict[str, str] = field(default_factory=dict)
    use_os_environ: bool = True
    http_opener: Optional[Callable[..., Any]] = None

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        v = self.values.get(key)
        if v is None and self.use_os_environ:
            v = os.environ.get(key)
        if v is None:
            return default
        v = str(v).strip()
        return v if v else default

    def has(self, key: str) -> bool:
        return self.get(key) is not None

    def get_float(self, key: str, default: float) -> float:
        v = self.get(key)
        if v is None:
            return float(default)
        try:
            return float(v)
        except ValueError:
            return float(default)

    def get_bool(self, key: str, default: bool = False) -> bool:
        v = self.get(key)
        if v is None:
            return bool(default)
        low = v.lower()
        if low in _TRUTHY:
            return True
        if low in _FALSY:
            return False
        return bool(default)
