"""Configuration loading and validation for rccarctl YAML settings."""

from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass
from importlib import resources
from importlib.resources.abc import Traversable
from pathlib import Path
from typing import Any

import yaml
from jsonschema import ValidationError, validators

from rccarctl.core.errors import ConfigLoadError, ConfigValidationError
from rccarctl.core.model import CommandKind

_HEX_RE = re.compile(r"^[0-9a-f]+$")
_MAX_PAYLOAD_BYTES = 512
LOGGER = logging.getLogger(__name__)


class UniqueKeyLoader(yaml.SafeLoader):
    """YAML loader that rejects duplicate mapping keys."""


UniqueKeyLoader.yaml_implicit_resolvers = {
    key: list(value) for key, value in yaml.SafeLoader.yaml_implicit_resolvers.items()
}

# Preset names such as "on"/"off" must stay strings.
for first_char, mappings in list(UniqueKeyLoader.yaml_implicit_resolvers.items()):
    UniqueKeyLoader.yaml_implicit_resolvers[first_char] = [
        (tag, regexp)
        for tag, regexp in mappings
        if tag != "tag:yaml.org,2002:bool"
    ]


def _construct_mapping(loader: UniqueKeyLoader, node: yaml.Node, deep: bool = False) -> dict[str, Any]:
    mapping: dict[str, Any] = {}
    for key_node, value_node in node.value:
        key = loader.construct_object(key_node, deep=deep)
        if key in mapping:
            raise ConfigValidationError(f"Duplicate key '{key}' in YAML document")
        mapping[key] = loader.construct_object(value_node, deep=deep)
    return mapping


UniqueKeyLoader.add_constructor(
    yaml.resolver.BaseResolver.DEFAULT_MAPPING_TAG,
    _construct_mapping,
)


@dataclass(frozen=True)
class Settings:
    address: str | None = None
    ready_timeout_s: float = 10.0
    connect_timeout_s: float = 10.0
    write_with_response: bool = True
    report_discovery_failures: bool = False
    presets: dict[CommandKind, dict[str, bytes]] | None = None

    def presets_for(self, kind: CommandKind) -> dict[str, bytes]:
        return dict((self.presets or {}).get(kind, {}))


@dataclass(frozen=True)
class LoadedSettings:
    settings: Settings
    warnings: tuple[str, ...]


def _load_schema_validator() -> Any:
    schema_text = resources.files("rccarctl.schemas").joinpath("config.schema.json").read_text(
        encoding="utf-8"
    )
    schema = json.loads(schema_text)
    validator_cls = validators.validator_for(schema)
    validator_cls.check_schema(schema)
    return validator_cls(schema)


def _config_path() -> Path:
    xdg_config = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    return xdg_config / "rccarctl/config.yaml"


def _read_yaml(path: Path | Traversable) -> dict[str, Any]:
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigLoadError(f"Could not read config file {path}: {exc}") from exc

    try:
        loaded = yaml.load(content, Loader=UniqueKeyLoader)
    except yaml.YAMLError as exc:
        raise ConfigValidationError(f"Invalid YAML in {path}: {exc}") from exc

    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise ConfigValidationError(f"Config file {path} must contain a mapping at root")
    return loaded


def normalize_hex(value: str, *, context: str) -> bytes:
    normalized = value.strip().lower().replace(" ", "")
    if normalized.startswith("0x"):
        normalized = normalized[2:]
    if len(normalized) == 0:
        raise ConfigValidationError(f"{context} must not be empty")
    if len(normalized) % 2 != 0:
        raise ConfigValidationError(f"{context} must have even-length hex")
    if not _HEX_RE.match(normalized):
        raise ConfigValidationError(f"{context} must contain only [0-9a-f]")
    payload = bytes.fromhex(normalized)
    if len(payload) > _MAX_PAYLOAD_BYTES:
        raise ConfigValidationError(
            f"{context} exceeds max payload size {_MAX_PAYLOAD_BYTES} bytes"
        )
    return payload


def _normalize_bool(value: Any, *, context: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered == "true":
            return True
        if lowered == "false":
            return False
    raise ConfigValidationError(f"{context} must be boolean true/false")


def _validate(doc: dict[str, Any], source: Path | Traversable) -> None:
    validator = _load_schema_validator()
    try:
        validator.validate(doc)
    except ValidationError as exc:
        path = ".".join(str(p) for p in exc.path)
        where = f" ({path})" if path else ""
        raise ConfigValidationError(f"Schema validation failed for {source}{where}: {exc.message}") from exc


def _build_presets(doc: dict[str, Any]) -> dict[CommandKind, dict[str, bytes]]:
    presets: dict[CommandKind, dict[str, bytes]] = {}
    for kind in CommandKind:
        values: dict[str, bytes] = {}
        for name, hex_payload in doc.get("presets", {}).get(kind.value, {}).items():
            values[name] = normalize_hex(hex_payload, context=f"presets.{kind.value}.{name}")
        presets[kind] = values
    return presets


def _merge(base: Settings, doc: dict[str, Any], warnings: list[str]) -> Settings:
    device = doc.get("device", {})
    transport = doc.get("transport", {})
    events = doc.get("events", {})

    presets = {kind: base.presets_for(kind) for kind in CommandKind}
    for kind, values in _build_presets(doc).items():
        for name, payload in values.items():
            if name in presets[kind]:
                warning = f"User preset '{kind.value}.{name}' overrides packaged preset"
                LOGGER.warning(warning)
                warnings.append(warning)
            presets[kind][name] = payload

    return Settings(
        address=device.get("address", base.address),
        ready_timeout_s=float(device.get("ready_timeout_s", base.ready_timeout_s)),
        connect_timeout_s=float(transport.get("timeout_s", base.connect_timeout_s)),
        write_with_response=_normalize_bool(
            transport.get("write_with_response", base.write_with_response),
            context="transport.write_with_response",
        ),
        report_discovery_failures=_normalize_bool(
            events.get("report_discovery_failures", base.report_discovery_failures),
            context="events.report_discovery_failures",
        ),
        presets=presets,
    )


def load_settings() -> LoadedSettings:
    warnings: list[str] = []

    packaged = resources.files("rccarctl.presets").joinpath("default.yaml")
    doc = _read_yaml(packaged)
    _validate(doc, packaged)
    settings = _merge(Settings(), doc, [])

    user_path = _config_path()
    if user_path.is_file():
        doc = _read_yaml(user_path)
        _validate(doc, user_path)
        settings = _merge(settings, doc, warnings)

    return LoadedSettings(settings=settings, warnings=tuple(warnings))
