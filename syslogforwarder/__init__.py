"""Configuration, source discovery, gateway streaming and cloud controller clients for log forwarding."""

__version__ = "0.1.0"