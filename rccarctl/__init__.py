"""Client-side control of BLE RC cars."""

__version__ = "0.1.0"
