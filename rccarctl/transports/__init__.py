"""BLE transport adapters."""
