"""
Configuration module for attemptlock.

Centralizes configuration with environment variable support and an
optional JSON file of per-component overrides, cached with a TTL.

JSON file layout (ATTEMPTLOCK_CONFIG_PATH):
    {
      "oneconnection": {"whitelist": "10.0.0.0/8", "defaultenabled": true},
      "onesession": {"whitelist": ""}
    }
"""

import json
import os
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

from .fingerprint import Network, parse_subnets
from .unlock import CAP_ALLOW_CHANGE, CAP_EDIT_ENABLED

# ============================================================
# Environment Configuration
# ============================================================

DB_PATH = os.getenv("ATTEMPTLOCK_DB_PATH", "data/attemptlock.db")
CONFIG_PATH = os.getenv("ATTEMPTLOCK_CONFIG_PATH", "")

# Site-wide exempt subnets, used when a component has no override.
EXEMPT_SUBNETS = os.getenv("ATTEMPTLOCK_EXEMPT_SUBNETS", "")
DEFAULT_ENABLED = os.getenv("ATTEMPTLOCK_DEFAULT_ENABLED", "").lower() in ("1", "true", "yes")

LOG_LEVEL = os.getenv("ATTEMPTLOCK_LOG_LEVEL", "INFO")
LOG_JSON = os.getenv("ATTEMPTLOCK_LOG_JSON", "1").lower() in ("1", "true", "yes")

# Cache TTL (seconds)
CONFIG_CACHE_TTL = int(os.getenv("CONFIG_CACHE_TTL", "60"))


# ============================================================
# Cached Configuration Loader
# ============================================================

class CachedConfig:
    """
    Thread-safe cached configuration loader.
    Reloads configuration files periodically based on TTL.
    """

    def __init__(self, ttl_seconds: int = 60):
        self._cache: Dict[str, Any] = {}
        self._timestamps: Dict[str, float] = {}
        self._lock = threading.RLock()
        self._ttl = ttl_seconds

    def _is_stale(self, key: str) -> bool:
        if key not in self._timestamps:
            return True
        return (time.time() - self._timestamps[key]) > self._ttl

    def get_json(self, path: str, force_reload: bool = False) -> Dict[str, Any]:
        """
        Load JSON file with caching.
        Returns cached version if within TTL, otherwise reloads.
        """
        with self._lock:
            if not force_reload and path in self._cache and not self._is_stale(path):
                return self._cache[path]

            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)

            self._cache[path] = data
            self._timestamps[path] = time.time()
            return data

    def invalidate(self, path: Optional[str] = None) -> None:
        """Invalidate cache for a specific path or all paths."""
        with self._lock:
            if path:
                self._cache.pop(path, None)
                self._timestamps.pop(path, None)
            else:
                self._cache.clear()
                self._timestamps.clear()


_config_cache = CachedConfig(ttl_seconds=CONFIG_CACHE_TTL)


def load_overrides(path: Optional[str] = None) -> Dict[str, Any]:
    """Per-component overrides from the JSON config file, or {}."""
    path = CONFIG_PATH if path is None else path
    if not path or not Path(path).exists():
        return {}
    return _config_cache.get_json(path)


def invalidate_config_cache() -> None:
    _config_cache.invalidate()


# ============================================================
# Rule configuration
# ============================================================

@dataclass
class RuleConfig:
    """Settings of one deployment instance of the session lock rule."""
    component: str
    exempt_subnets: List[Network] = field(default_factory=list)
    default_enabled: bool = False


def _env_bool(name: str) -> Optional[bool]:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return None
    return raw.lower() in ("1", "true", "yes")


def load_rule_config(component: str, config_path: Optional[str] = None) -> RuleConfig:
    """
    Resolve settings for a component.

    Precedence: ATTEMPTLOCK_<COMPONENT>_WHITELIST / _DEFAULT_ENABLED env
    vars, then the JSON file, then the site-wide values.
    """
    overrides = load_overrides(config_path).get(component, {})
    key = component.upper()

    whitelist = os.getenv(f"ATTEMPTLOCK_{key}_WHITELIST")
    if whitelist is None:
        whitelist = overrides.get("whitelist", EXEMPT_SUBNETS)

    enabled = _env_bool(f"ATTEMPTLOCK_{key}_DEFAULT_ENABLED")
    if enabled is None:
        enabled = bool(overrides.get("defaultenabled", DEFAULT_ENABLED))

    return RuleConfig(
        component=component,
        exempt_subnets=parse_subnets(whitelist),
        default_enabled=enabled,
    )


def parse_user_ids(raw: str) -> Set[int]:
    """Parse a comma separated list of user ids; ignores junk entries."""
    out = set()
    for part in (raw or "").split(","):
        part = part.strip()
        if part.isdigit():
            out.add(int(part))
    return out


def capability_grants() -> Dict[int, Set[str]]:
    """
    Capabilities for the standalone service.

    ATTEMPTLOCK_SUPERVISORS grants allowchange, ATTEMPTLOCK_EDITORS grants
    editenabled.
    """
    grants: Dict[int, Set[str]] = {}
    for user_id in parse_user_ids(os.getenv("ATTEMPTLOCK_SUPERVISORS", "")):
        grants.setdefault(user_id, set()).add(CAP_ALLOW_CHANGE)
    for user_id in parse_user_ids(os.getenv("ATTEMPTLOCK_EDITORS", "")):
        grants.setdefault(user_id, set()).add(CAP_EDIT_ENABLED)
    return grants
