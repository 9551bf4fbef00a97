"""Infrastructure layer for the MQTT client.

This package contains concrete implementations of external interfaces,
such as the awscrt-backed MQTT protocol client.
"""

__version__ = "1.0.0"
