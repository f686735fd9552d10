"""Automated reply pipeline for messaging-gateway customer conversations."""

from .__version__ import __version__

__all__ = ["__version__"]
