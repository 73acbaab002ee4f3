"""Certificate Authority module for the certificate issuer.

This module provides:
- The CertificateAuthority entity (generation, validation, copying)
- CA custody through CAManager, backed by a CAPersistor
- Cryptographic utilities for key encryption
"""

from certissuer.ca.authority import CertificateAuthority
from certissuer.ca.crypto import CryptoError

__all__ = ["CertificateAuthority", "CryptoError"]
