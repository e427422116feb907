"""Loading and validation of YAML attribute extensions."""

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

from gaugeman.core.errors import ExtensionLoadError, ExtensionValidationError
from gaugeman.core.facade import CORE_ATTRIBUTES
from gaugeman.core.model import AttributeSpec, ExtensionSpec

_UUID_RE = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$")
_RESERVED_NAMES = frozenset(spec.name for spec in CORE_ATTRIBUTES)
_RESERVED_UUIDS = frozenset(spec.uuid for spec in CORE_ATTRIBUTES)
LOGGER = logging.getLogger(__name__)


class UniqueKeyLoader(yaml.SafeLoader):
    """YAML loader that rejects duplicate mapping keys."""


def _construct_mapping(loader: UniqueKeyLoader, node: yaml.Node, deep: bool = False) -> dict[str, Any]:
    mapping: dict[str, Any] = {}
    for key_node, value_node in node.value:
        key = loader.construct_object(key_node, deep=deep)
        if key in mapping:
            raise ExtensionValidationError(f"Duplicate key '{key}' in YAML document")
        mapping[key] = loader.construct_object(value_node, deep=deep)
    return mapping


UniqueKeyLoader.add_constructor(
    yaml.resolver.BaseResolver.DEFAULT_MAPPING_TAG,
    _construct_mapping,
)


@dataclass(frozen=True)
class LoadedExtensions:
    extensions: dict[str, ExtensionSpec]
    warnings: tuple[str, ...]


def _load_schema_validator() -> Any:
    schema_text = resources.files("gaugeman.schemas").joinpath("extension.schema.json").read_text(
        encoding="utf-8"
    )
    schema = json.loads(schema_text)
    validator_cls = validators.validator_for(schema)
    validator_cls.check_schema(schema)
    return validator_cls(schema)


def _extension_dirs() -> tuple[Path, Path]:
    xdg_config = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    xdg_data = Path(os.environ.get("XDG_DATA_HOME", Path.home() / ".local/share"))
    return xdg_config / "gaugeman/extensions", xdg_data / "gaugeman/extensions"


def _read_yaml(path: Path | Traversable) -> dict[str, Any]:
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ExtensionLoadError(f"Could not read extension file {path}: {exc}") from exc

    try:
        loaded = yaml.load(content, Loader=UniqueKeyLoader)
    except yaml.YAMLError as exc:
        raise ExtensionValidationError(f"Invalid YAML in {path}: {exc}") from exc

    if not isinstance(loaded, dict):
        raise ExtensionValidationError(f"Extension file {path} must contain a mapping at root")
    return loaded


def _normalize_uuid(value: str, *, context: str) -> str:
    normalized = value.strip().lower()
    if not _UUID_RE.match(normalized):
        raise ExtensionValidationError(f"{context} must be a 128-bit UUID string")
    return normalized


def _build_extension(doc: dict[str, Any], source: Path | Traversable) -> ExtensionSpec:
    validator = _load_schema_validator()
    try:
        validator.validate(doc)
    except ValidationError as exc:
        path = ".".join(str(p) for p in exc.path)
        where = f" ({path})" if path else ""
        raise ExtensionValidationError(f"Schema validation failed for {source}{where}: {exc.message}") from exc

    attributes: list[AttributeSpec] = []
    seen: set[str] = set()
    for index, entry in enumerate(doc["attributes"]):
        context = f"{doc['id']}.attributes[{index}]"
        name = entry["name"]
        if name in _RESERVED_NAMES:
            raise ExtensionValidationError(f"{context} reuses core attribute name '{name}'")
        if name in seen:
            raise ExtensionValidationError(f"{context} declares '{name}' twice")
        seen.add(name)
        uuid = _normalize_uuid(entry["uuid"], context=f"{context}.uuid")
        if uuid in _RESERVED_UUIDS:
            raise ExtensionValidationError(f"{context} reuses a core attribute uuid")
        attributes.append(
            AttributeSpec(
                name=name,
                uuid=uuid,
                flags=tuple(entry["flags"]),
                config_key=entry.get("config_key", name),
            )
        )

    return ExtensionSpec(id=doc["id"], name=doc["name"], attributes=tuple(attributes))


def _iter_packaged_extension_paths() -> list[Traversable]:
    extension_root = resources.files("gaugeman.extensions")
    return [item for item in extension_root.iterdir() if item.name.endswith((".yml", ".yaml"))]


def _iter_user_extension_paths() -> list[Path]:
    paths: list[Path] = []
    for directory in _extension_dirs():
        if not directory.exists() or not directory.is_dir():
            continue
        paths.extend(sorted(p for p in directory.iterdir() if p.suffix in {".yml", ".yaml"}))
    return paths


def load_extensions() -> LoadedExtensions:
    extensions: dict[str, ExtensionSpec] = {}
    warnings: list[str] = []

    for path in sorted(_iter_packaged_extension_paths(), key=lambda p: p.name):
        doc = _read_yaml(path)
        extension = _build_extension(doc, path)
        extensions[extension.id] = extension

    for path in _iter_user_extension_paths():
        doc = _read_yaml(path)
        extension = _build_extension(doc, path)
        if extension.id in extensions:
            warning = f"User extension '{extension.id}' overrides packaged extension"
            LOGGER.warning(warning)
            warnings.append(warning)
        extensions[extension.id] = extension

    return LoadedExtensions(extensions=extensions, warnings=tuple(warnings))
