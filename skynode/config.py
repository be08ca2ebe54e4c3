"""TOML-based provider and node configuration.

Loads ~/.skynode/defaults.toml (global) and skynode.toml (project),
merges them, and resolves named nodes into provider settings plus a
NodeConfig. Node keys override provider keys, and explicit overrides
override both.
"""

from __future__ import annotations

import tomllib
from collections.abc import Mapping
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

from skynode.constants import DEFAULT_SSH_USER, WAIT_FOR_PORTS_TIMEOUT
from skynode.exceptions import ConfigurationError

type RawConfig = dict[str, Any]

GLOBAL_CONFIG_PATH = Path.home() / ".skynode" / "defaults.toml"
PROJECT_CONFIG_NAME = "skynode.toml"


@dataclass(frozen=True, slots=True)
class ProviderSettings:
    """Which provider to talk to, and where.

    Args:
        type: Provider type key (e.g., "ec2").
        region: Default region for nodes of this provider.
        options: Remaining provider-specific keys, passed through untouched.
    """

    type: str
    region: str | None = None
    options: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class NodeConfig:
    """Per-node settings consumed when creating a node.

    Args:
        region: Region to create the instance in.
        instance_type: Provider instance type (e.g., "t2.micro").
        image: Image name or name pattern.
        image_id: Exact image id; wins over image.
        ssh_user: Login user for remote commands.
        ssh_private_key_file: Private key used for SSH.
        key_pair: Provider key pair installed on the instance.
        security_groups: Security group names to attach.
        user_data: Inline user data; wins over user_data_file.
        user_data_file: File whose bytes are sent as user data.
        wait_for_ports: TCP ports that must accept connections after creation.
        wait_for_ports_timeout: Seconds to wait for those ports.
    """

    region: str | None = None
    instance_type: str | None = None
    image: str | None = None
    image_id: str | None = None
    ssh_user: str = DEFAULT_SSH_USER
    ssh_private_key_file: Path | None = None
    key_pair: str | None = None
    security_groups: tuple[str, ...] = ()
    user_data: str | None = None
    user_data_file: Path | None = None
    wait_for_ports: tuple[int, ...] = ()
    wait_for_ports_timeout: float = WAIT_FOR_PORTS_TIMEOUT

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> NodeConfig:
        """Build from a TOML table or a flat property mapping.

        List-valued keys accept either a list or a comma-separated string.

        Raises:
            ConfigurationError: On unknown keys or malformed values.
        """
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(raw) - known)
        if unknown:
            raise ConfigurationError(
                f"Unknown node setting(s): {', '.join(unknown)}", field=unknown[0],
            )

        values: dict[str, Any] = {}
        for key, value in raw.items():
            if value is None:
                continue
            match key:
                case "security_groups":
                    values[key] = tuple(_split_list(value))
                case "wait_for_ports":
                    values[key] = tuple(_parse_port(key, p) for p in _split_list(value))
                case "ssh_private_key_file" | "user_data_file":
                    values[key] = Path(value).expanduser()
                case "wait_for_ports_timeout":
                    values[key] = _parse_float(key, value)
                case _:
                    values[key] = str(value)
        return cls(**values)


def _split_list(value: Any) -> list[str]:
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    return [str(part).strip() for part in value]


def _parse_port(key: str, value: str) -> int:
    try:
        port = int(value)
    except ValueError:
        raise ConfigurationError(f"Invalid port {value!r} in {key}", field=key) from None
    if not 0 < port < 65536:
        raise ConfigurationError(f"Port {port} in {key} is out of range", field=key)
    return port


def _parse_float(key: str, value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"Invalid number {value!r} for {key}", field=key) from None


def _deep_merge(base: RawConfig, override: RawConfig) -> RawConfig:
    result = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _read_toml(path: Path) -> RawConfig:
    if not path.is_file():
        return {}
    try:
        with path.open("rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(f"Invalid TOML in {path}: {e}") from e


def load_config(
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
) -> RawConfig:
    global_cfg = _read_toml(global_path or GLOBAL_CONFIG_PATH)
    project_path = (project_dir or Path.cwd()) / PROJECT_CONFIG_NAME
    project_cfg = _read_toml(project_path)

    merged = _deep_merge(global_cfg, project_cfg)
    merged.setdefault("providers", {})
    merged.setdefault("nodes", {})
    return merged


def _build_provider_settings(name: str, raw: RawConfig) -> ProviderSettings:
    raw = dict(raw)
    provider_type = raw.pop("type", None)
    if provider_type is None:
        raise ConfigurationError(f"Provider '{name}' missing 'type' field", field="type")
    region = raw.pop("region", None)
    return ProviderSettings(type=str(provider_type), region=region, options=raw)


def resolve_node(
    name: str,
    *,
    overrides: Mapping[str, Any] | None = None,
    project_dir: Path | None = None,
    global_path: Path | None = None,
) -> tuple[ProviderSettings, NodeConfig]:
    """Resolve a named node into its provider settings and NodeConfig.

    Raises:
        KeyError: If the node or its provider is not defined.
        ConfigurationError: If a section is malformed.
    """
    config = load_config(project_dir=project_dir, global_path=global_path)

    nodes = config["nodes"]
    if name not in nodes:
        raise KeyError(f"Node '{name}' not found. Available: {', '.join(nodes) or 'none'}")

    raw_node = dict(nodes[name])
    provider_ref = raw_node.pop("provider", None)
    if provider_ref is None:
        raise ConfigurationError(f"Node '{name}' missing 'provider' field", field="provider")

    providers = config["providers"]
    if provider_ref not in providers:
        raise KeyError(
            f"Provider '{provider_ref}' not found. Available: {', '.join(providers) or 'none'}"
        )

    settings = _build_provider_settings(provider_ref, providers[provider_ref])

    merged: dict[str, Any] = {"region": settings.region}
    merged.update(raw_node)
    merged.update(overrides or {})
    return settings, NodeConfig.from_mapping(merged)
