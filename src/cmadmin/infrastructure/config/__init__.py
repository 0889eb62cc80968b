"""Configuration persistence: settings files and stored credentials."""

from .credential_manager import CredentialManager
from .repository import ConfigRepository

__all__ = ["ConfigRepository", "CredentialManager"]
