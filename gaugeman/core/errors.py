"""Domain-specific errors for gaugeman."""


class GaugemanError(Exception):
    """Base error for gaugeman."""


class ConfigError(GaugemanError):
    """Base configuration error."""


class MissingDefaultConfig(ConfigError):
    """Raised when the factory default configuration file does not exist."""


class InvalidConfigDocument(ConfigError):
    """Raised when a configuration document is not a valid JSON object."""


class EncryptionUnavailable(ConfigError):
    """Raised when encryption is required but no usable key was supplied."""


class DecryptionFailed(ConfigError):
    """Raised when the overlay cannot be decrypted with the supplied key."""


class BusError(GaugemanError):
    """Base error for the management service bus."""


class InterfaceNotReady(BusError):
    """Raised when the bus interface is used before it was acquired."""


class AlertDeliveryFailed(BusError):
    """Raised (and recorded) when an alert could not be delivered."""


class UnrecognizedCommand(GaugemanError):
    """Raised when a command code has no action."""


class ExtensionError(GaugemanError):
    """Base error for attribute extensions."""


class ExtensionLoadError(ExtensionError):
    """Raised when reading extension sources fails."""


class ExtensionValidationError(ExtensionError):
    """Raised when an extension file does not conform to schema or semantics."""
