"""Domain-specific errors for hapbridge."""


class HapBridgeError(Exception):
    """Base error for hapbridge."""


class ValidationError(HapBridgeError):
    """Raised when a characteristic value does not match its declared format or range."""


class ConfigLoadError(HapBridgeError):
    """Raised when reading configuration sources fails."""


class ConfigValidationError(HapBridgeError):
    """Raised when a configuration file does not conform to schema or semantics."""


class StorageError(HapBridgeError):
    """Raised when persisted pairing state cannot be loaded or reset."""


class ServerStartError(HapBridgeError):
    """Raised when the accessory server cannot be started."""


class SensorError(HapBridgeError):
    """Raised when a sensor source cannot be constructed."""


class PairingError(HapBridgeError):
    """Raised when a controller request requires a pairing it does not have."""
