"""Cardsmith - SD card provisioning for single-board computers."""

from importlib.metadata import distribution


__version__ = distribution(__package__ or "cardsmith").version

__all__ = ["__version__"]
