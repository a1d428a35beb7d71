"""keyceremony - WebAuthn relying-party ceremonies.

Issues registration and authentication challenges, verifies the browser's
attestation and assertion responses, and keeps the resulting credential
records with replay protection through the signature counter.
"""

from keyceremony.app import create_app
from keyceremony.config import ConfigurationError, Settings
from keyceremony.version import __version__

__all__ = ["ConfigurationError", "Settings", "__version__", "create_app"]
