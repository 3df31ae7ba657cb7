"""Extension registry clients."""

from .openvsx import OpenVSXClient, RegistryError, RegistryExtension

__all__ = ["OpenVSXClient", "RegistryError", "RegistryExtension"]
