"""Rootless static toolkits: build, sign and publish static container tools."""

__version__ = "0.3.0"
