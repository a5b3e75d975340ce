"""ETAPI access."""

from .client import EtapiClient

__all__ = ["EtapiClient"]
