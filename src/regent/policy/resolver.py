"""Policy resolver — reads governance parameters from the config directory.

Usage:
    resolver = PolicyResolver.from_config_dir(Path("config"))
    window = resolver.expiration_window()
    tag = resolver.domain_tag("roles")

Missing keys fall back to the defaults below; malformed values fail
closed with ValueError at load time rather than at first use.
"""

from __future__ import annotations

import json
from datetime import timedelta
from pathlib import Path
from typing import Any

DEFAULT_EXPIRATION_DAYS = 7
POLICY_FILENAME = "governance_policy.json"


class PolicyResolver:
    """Resolved governance policy."""

    def __init__(self, policy: dict[str, Any]) -> None:
        self._policy = policy
        days = policy.get("expiration", {}).get("window_days", DEFAULT_EXPIRATION_DAYS)
        if isinstance(days, bool) or not isinstance(days, (int, float)) or days <= 0:
            raise ValueError(f"expiration.window_days must be positive, got {days!r}")
        self._window = timedelta(days=days)
        self._domains: dict[str, str] = dict(policy.get("domains", {}))
        for name, tag in self._domains.items():
            if not isinstance(tag, str) or not tag.strip():
                raise ValueError(f"Domain tag for {name!r} must be a non-empty string")

    @classmethod
    def from_config_dir(cls, config_dir: Path) -> PolicyResolver:
        path = config_dir / POLICY_FILENAME
        with path.open("r", encoding="utf-8") as handle:
            return cls(json.load(handle))

    @classmethod
    def default(cls) -> PolicyResolver:
        return cls({})

    @property
    def version(self) -> str:
        return self._policy.get("version", "0.1.0")

    def expiration_window(self) -> timedelta:
        return self._window

    def domain_tag(self, action_set_name: str) -> str:
        """Digest domain tag for an action set. Defaults to regent.<name>.v1."""
        return self._domains.get(action_set_name, f"regent.{action_set_name}.v1")
