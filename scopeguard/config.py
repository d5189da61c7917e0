"""
Settings loading.

Settings come from an optional YAML file (scopeguard.yml, auto-detected by
walking up from the working directory) with SCOPEGUARD_* environment
variables layered on top. Relative paths resolve against the settings file's
directory.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

import yaml

from .errors import ConfigurationError

SETTINGS_FILENAMES = ("scopeguard.yml", "scopeguard.yaml")

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


@dataclass
class TokenSettings:
    secret: str | None = None  # secret reference, e.g. "env:SCOPEGUARD_TOKEN_SECRET"
    algorithms: list[str] = field(default_factory=lambda: ["HS256"])
    audience: str | None = None
    issuer: str | None = None


@dataclass
class IdentitySettings:
    fallback_enabled: bool = True
    profile_collection: str = "users"
    global_scope_marker: str = "*"
    claims: dict[str, str] = field(default_factory=dict)
    token: TokenSettings = field(default_factory=TokenSettings)


@dataclass
class AccessSettings:
    strict_operations: bool = False


@dataclass
class RepairSettings:
    countdown_seconds: float = 5.0


@dataclass
class MonitorSettings:
    window_days: int = 30
    penalties: dict[str, int] = field(default_factory=lambda: {"critical": 5, "warning": 1})


@dataclass
class AuditSettings:
    max_seconds: float | None = None


@dataclass
class Settings:
    root: Path
    store_path: Path
    state_dir: Path
    catalog_path: Path | None = None
    policy_path: Path | None = None
    source: Path | None = None  # settings file, if one was loaded
    identity: IdentitySettings = field(default_factory=IdentitySettings)
    access: AccessSettings = field(default_factory=AccessSettings)
    repair: RepairSettings = field(default_factory=RepairSettings)
    monitor: MonitorSettings = field(default_factory=MonitorSettings)
    audit: AuditSettings = field(default_factory=AuditSettings)

    @property
    def violation_log_path(self) -> Path:
        return self.state_dir / "violations.jsonl"

    @property
    def events_log_path(self) -> Path:
        return self.state_dir / "events.log"

    @property
    def operations_log_path(self) -> Path:
        return self.state_dir / "operations.log"

    @property
    def lock_dir(self) -> Path:
        return self.state_dir / "locks"

    @property
    def last_audit_path(self) -> Path:
        return self.state_dir / "last_audit.json"


def find_settings_file(start: Path) -> Path | None:
    """Find scopeguard.yml by walking up from `start`."""
    cur = start.resolve()
    for p in (cur, *cur.parents):
        for name in SETTINGS_FILENAMES:
            candidate = p / name
            if candidate.is_file():
                return candidate
    return None


def _section(data: Mapping[str, Any], key: str) -> dict[str, Any]:
    value = data.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigurationError(f"Settings key '{key}' must be a mapping")
    return value


def _as_bool(value: Any, key: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE:
            return True
        if lowered in _FALSE:
            return False
    raise ConfigurationError(f"Settings key '{key}' must be a boolean (got {value!r})")


def _as_number(value: Any, key: str, *, minimum: float = 0) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise ConfigurationError(f"Settings key '{key}' must be a number (got {value!r})")
    try:
        number = float(value)
    except ValueError as e:
        raise ConfigurationError(f"Settings key '{key}' must be a number (got {value!r})") from e
    if number < minimum:
        raise ConfigurationError(f"Settings key '{key}' must be >= {minimum}")
    return number


def _resolve_path(root: Path, value: Any, key: str) -> Path:
    if not isinstance(value, (str, os.PathLike)):
        raise ConfigurationError(f"Settings key '{key}' must be a path")
    path = Path(value).expanduser()
    return path if path.is_absolute() else (root / path)


def load_settings(
    config_path: Path | None = None,
    *,
    store: Path | None = None,
    cwd: Path | None = None,
    env: Mapping[str, str] | None = None,
) -> Settings:
    """
    Build Settings from file, environment and explicit overrides.

    Args:
        config_path: Explicit settings file (otherwise auto-detected from cwd)
        store: Explicit store directory, overriding file and environment
        cwd: Directory to start auto-detection from (defaults to Path.cwd())
        env: Environment mapping (defaults to os.environ)

    Raises:
        ConfigurationError: on unreadable or ill-typed settings
    """
    env = os.environ if env is None else env
    cwd = (cwd or Path.cwd()).resolve()

    source = config_path or find_settings_file(cwd)
    data: dict[str, Any] = {}
    if source is not None:
        if not source.is_file():
            raise ConfigurationError(f"Settings file not found: {source}")
        try:
            loaded = yaml.safe_load(source.read_text(encoding="utf-8"))
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Failed to parse settings {source}: {e}") from e
        if loaded is not None and not isinstance(loaded, dict):
            raise ConfigurationError(f"Settings file {source} must contain a mapping")
        data = loaded or {}
        root = source.resolve().parent
    else:
        root = cwd

    store_value = env.get("SCOPEGUARD_STORE") or data.get("store") or "store"
    store_path = (store.resolve() if store is not None else _resolve_path(root, store_value, "store").resolve())

    state_value = env.get("SCOPEGUARD_STATE_DIR") or data.get("state_dir")
    state_dir = (
        _resolve_path(root, state_value, "state_dir").resolve()
        if state_value
        else store_path.parent / ".scopeguard"
    )

    catalog_path = _resolve_path(root, data["catalog"], "catalog") if data.get("catalog") else None
    policy_path = _resolve_path(root, data["policy"], "policy") if data.get("policy") else None

    identity_raw = _section(data, "identity")
    token_raw = _section(identity_raw, "token")
    algorithms = token_raw.get("algorithms", ["HS256"])
    if isinstance(algorithms, str):
        algorithms = [algorithms]
    if not isinstance(algorithms, list) or not all(isinstance(a, str) for a in algorithms):
        raise ConfigurationError("Settings key 'identity.token.algorithms' must be a list of strings")
    claims = identity_raw.get("claims") or {}
    if not isinstance(claims, dict):
        raise ConfigurationError("Settings key 'identity.claims' must be a mapping")

    identity = IdentitySettings(
        fallback_enabled=_as_bool(identity_raw.get("fallback_enabled", True), "identity.fallback_enabled"),
        profile_collection=str(identity_raw.get("profile_collection", "users")),
        global_scope_marker=str(identity_raw.get("global_scope_marker", "*")),
        claims={str(k): str(v) for k, v in claims.items()},
        token=TokenSettings(
            secret=token_raw.get("secret"),
            algorithms=list(algorithms),
            audience=token_raw.get("audience"),
            issuer=token_raw.get("issuer"),
        ),
    )
    if "SCOPEGUARD_FALLBACK_ENABLED" in env:
        identity.fallback_enabled = _as_bool(env["SCOPEGUARD_FALLBACK_ENABLED"], "SCOPEGUARD_FALLBACK_ENABLED")

    access_raw = _section(data, "access")
    access = AccessSettings(
        strict_operations=_as_bool(access_raw.get("strict_operations", False), "access.strict_operations"),
    )
    if "SCOPEGUARD_STRICT_OPERATIONS" in env:
        access.strict_operations = _as_bool(env["SCOPEGUARD_STRICT_OPERATIONS"], "SCOPEGUARD_STRICT_OPERATIONS")

    repair_raw = _section(data, "repair")
    repair = RepairSettings(
        countdown_seconds=_as_number(repair_raw.get("countdown_seconds", 5.0), "repair.countdown_seconds"),
    )

    monitor_raw = _section(data, "monitor")
    penalties = {"critical": 5, "warning": 1}
    for severity, weight in _section(monitor_raw, "penalties").items():
        if severity not in penalties:
            raise ConfigurationError(f"Unknown severity in monitor.penalties: {severity!r}")
        penalties[severity] = int(_as_number(weight, f"monitor.penalties.{severity}"))
    monitor = MonitorSettings(
        window_days=int(_as_number(monitor_raw.get("window_days", 30), "monitor.window_days", minimum=1)),
        penalties=penalties,
    )

    audit_raw = _section(data, "audit")
    max_seconds = audit_raw.get("max_seconds")
    audit = AuditSettings(
        max_seconds=_as_number(max_seconds, "audit.max_seconds") if max_seconds is not None else None,
    )

    return Settings(
        root=root,
        store_path=store_path,
        state_dir=state_dir,
        catalog_path=catalog_path,
        policy_path=policy_path,
        source=source,
        identity=identity,
        access=access,
        repair=repair,
        monitor=monitor,
        audit=audit,
    )
