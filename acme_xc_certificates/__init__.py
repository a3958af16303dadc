"""
ACME XC Certificates - ACME DNS-01 certificate automation for F5 Distributed Cloud.
"""

from . import (
    acme,
    certificate,
    challenge,
    config,
    discovery,
    exceptions,
    models,
    output,
    providers,
    renewal,
    request_set,
    session,
    utils,
    validation,
    xc,
    zones,
)

# Import main public API
from .core import AcmeXcManager, CertificateResult

__version__ = "0.1.0"

__all__ = [
    # High-level API (recommended for most users)
    "AcmeXcManager",
    "CertificateResult",
    # Low-level modules (for advanced usage)
    "acme",
    "certificate",
    "challenge",
    "config",
    "discovery",
    "exceptions",
    "models",
    "output",
    "providers",
    "renewal",
    "request_set",
    "session",
    "utils",
    "validation",
    "xc",
    "zones",
]
