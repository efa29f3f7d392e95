"""Domain-specific errors for rccarctl."""


class RCCarError(Exception):
    """Base error for rccarctl."""


class NotInitializedError(RCCarError):
    """Raised when no Bluetooth transport has been set up."""


class ConnectFailedError(RCCarError):
    """Raised when a session cannot be opened or resumed."""


class ProfileError(RCCarError):
    """Raised when the peripheral does not expose the RC car GATT profile."""


class ServiceNotFoundError(ProfileError):
    """Raised when the RC car service is absent from the discovered tree."""


class CharacteristicNotFoundError(ProfileError):
    """Raised when a required RC car characteristic is absent."""


class WriteRejectedError(RCCarError):
    """Raised (and logged) when the transport declines a characteristic write."""


class ConfigLoadError(RCCarError):
    """Raised when reading configuration sources fails."""


class ConfigValidationError(RCCarError):
    """Raised when a configuration file does not conform to schema or semantics."""


class PresetResolutionError(RCCarError):
    """Raised when a command value cannot be resolved to a payload."""


class TransportError(RCCarError):
    """Base transport error."""


class TransportConnectError(TransportError):
    """Raised when the BLE stack cannot open a session."""
