"""Layered gauge configuration: factory defaults plus a persisted overlay."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from functools import lru_cache
from importlib import resources
from pathlib import Path
from types import MappingProxyType
from typing import Any

from jsonschema import ValidationError, validators

from gaugeman.core.cipher import CipherBox
from gaugeman.core.errors import (
    ConfigError,
    DecryptionFailed,
    EncryptionUnavailable,
    InvalidConfigDocument,
    MissingDefaultConfig,
)
from gaugeman.core.model import EncryptionState, merge_documents
from gaugeman.core.signals import Signal

LOGGER = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def _load_schema_validator() -> Any:
    schema_text = resources.files("gaugeman.schemas").joinpath("gauge_config.schema.json").read_text(
        encoding="utf-8"
    )
    schema = json.loads(schema_text)
    validator_cls = validators.validator_for(schema)
    validator_cls.check_schema(schema)
    return validator_cls(schema)


def _parse_document(content: str | bytes, source: Path) -> dict[str, Any]:
    try:
        loaded = json.loads(content)
    except json.JSONDecodeError as exc:
        raise InvalidConfigDocument(f"Invalid JSON in {source}: {exc}") from exc
    if not isinstance(loaded, dict):
        raise InvalidConfigDocument(f"Config file {source} must contain an object at root")
    return loaded


class ConfigStore:
    """Owns the default and overlay documents and the overlay file on disk.

    ``config_ready`` fires once, after the first successful :meth:`load`.
    ``updated`` fires after every :meth:`save_item` and :meth:`reset_to_default`
    and receives the new effective configuration.

    When encryption is required the overlay file holds ciphertext. Requiring
    encryption without a key fails at construction, before any file is read.
    """

    def __init__(
        self,
        default_path: str | Path,
        overlay_path: str | Path,
        *,
        encrypt: bool = False,
        key: bytes | str | None = None,
    ) -> None:
        self.default_path = Path(default_path)
        self.overlay_path = Path(overlay_path)
        self.config_ready = Signal("ConfigReady")
        self.updated = Signal("Updated")

        if not encrypt:
            self.encryption_state = EncryptionState.DISABLED
        elif key is None:
            self.encryption_state = EncryptionState.ENABLED_WITHOUT_KEY
        else:
            self.encryption_state = EncryptionState.ENABLED_WITH_KEY

        if self.encryption_state is EncryptionState.ENABLED_WITHOUT_KEY:
            LOGGER.error("Encryption of %s is required but no data key is available", self.overlay_path)
            raise EncryptionUnavailable("Encryption is required but no data key was supplied.")

        self._cipher: CipherBox | None = None
        if key is not None and encrypt:
            LOGGER.info("Data encryption key supplied, overlay will be encrypted at rest")
            self._cipher = CipherBox(key)

        self._default: dict[str, Any] = {}
        self._overlay: dict[str, Any] = {}
        self._effective: dict[str, Any] = {}
        self._loaded = False

    @property
    def encrypted(self) -> bool:
        return self.encryption_state is not EncryptionState.DISABLED

    @property
    def loaded(self) -> bool:
        return self._loaded

    @property
    def config(self) -> Mapping[str, Any]:
        """Read-only view of the effective configuration."""
        return MappingProxyType(self._effective)

    @property
    def overlay(self) -> Mapping[str, Any]:
        return MappingProxyType(self._overlay)

    def overlay_exists(self) -> bool:
        return self.overlay_path.exists()

    def load(self) -> Mapping[str, Any]:
        """Read both layers from disk and return the effective configuration."""
        if not self.default_path.exists():
            LOGGER.error("Default config file %s not found", self.default_path)
            raise MissingDefaultConfig(f"Default config file {self.default_path} not found.")
        try:
            content = self.default_path.read_text(encoding="utf-8")
        except OSError as exc:
            raise ConfigError(f"Could not read default config {self.default_path}: {exc}") from exc
        default = _parse_document(content, self.default_path)
        try:
            _load_schema_validator().validate(default)
        except ValidationError as exc:
            path = ".".join(str(p) for p in exc.path)
            where = f" ({path})" if path else ""
            raise InvalidConfigDocument(
                f"Schema validation failed for {self.default_path}{where}: {exc.message}"
            ) from exc

        self._default = default
        self._overlay = self._read_overlay()
        self._effective = merge_documents(self._default, self._overlay)
        first_load = not self._loaded
        self._loaded = True
        LOGGER.info(
            "Loaded config from %s (%d override(s))", self.default_path, len(self._overlay)
        )
        if first_load:
            self.config_ready.emit(self.config)
        return self.config

    def save_item(self, items: Mapping[str, Any]) -> Mapping[str, Any]:
        """Merge ``items`` into the overlay, persist it and reload.

        For example ``store.save_item({"webBoxIP": "10.10.10.12"})``.
        """
        if self.encrypted:
            LOGGER.info("save_item called with %d key(s)", len(items))
        else:
            LOGGER.info("save_item called with %s", dict(items))
        overlay = dict(self._overlay)
        overlay.update(items)
        self._write_overlay(overlay)
        self._overlay = overlay
        return self._reload()

    def reset_to_default(self) -> bool:
        """Remove the overlay file. Returns False when there was nothing to remove."""
        removed = False
        if self.overlay_path.exists():
            LOGGER.info("Removing custom configuration file %s", self.overlay_path)
            try:
                self.overlay_path.unlink()
            except OSError as exc:
                raise ConfigError(f"Could not remove {self.overlay_path}: {exc}") from exc
            removed = True
        else:
            LOGGER.warning("Custom configuration file %s not found", self.overlay_path)
        self._overlay = {}
        self._reload()
        return removed

    def _reload(self) -> Mapping[str, Any]:
        LOGGER.info("Config reloading...")
        self._overlay = self._read_overlay()
        self._effective = merge_documents(self._default, self._overlay)
        self.updated.emit(self.config)
        return self.config

    def _read_overlay(self) -> dict[str, Any]:
        if not self.overlay_path.exists():
            return {}
        try:
            raw = self.overlay_path.read_bytes()
        except OSError as exc:
            raise ConfigError(f"Could not read overlay config {self.overlay_path}: {exc}") from exc
        if not self.encrypted:
            return _parse_document(raw, self.overlay_path)

        LOGGER.info("Reading and decrypting %s", self.overlay_path)
        if self._cipher is None:
            raise EncryptionUnavailable("Overlay is encrypted but encryption is not available.")
        plaintext = self._cipher.decrypt(raw)
        try:
            return _parse_document(plaintext, self.overlay_path)
        except InvalidConfigDocument as exc:
            raise DecryptionFailed(f"Decrypted overlay {self.overlay_path} is corrupt: {exc}") from exc

    def _write_overlay(self, overlay: dict[str, Any]) -> None:
        payload = json.dumps(overlay).encode("utf-8")
        if self.encrypted:
            if self._cipher is None:
                raise EncryptionUnavailable("Overlay must be encrypted but encryption is not available.")
            LOGGER.info("Encrypting and saving overlay to %s", self.overlay_path)
            payload = self._cipher.encrypt(payload)
        else:
            LOGGER.info("Writing overlay (not using encryption) to %s", self.overlay_path)

        tmp_file = self.overlay_path.with_name(self.overlay_path.name + ".tmp")
        try:
            self.overlay_path.parent.mkdir(parents=True, exist_ok=True)
            tmp_file.write_bytes(payload)
            tmp_file.replace(self.overlay_path)
        except OSError as exc:
            tmp_file.unlink(missing_ok=True)
            raise ConfigError(f"Could not write overlay config {self.overlay_path}: {exc}") from exc
