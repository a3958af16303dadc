"""
Delivery of issued certificates.
"""

import logging
from pathlib import Path
from typing import Any

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.serialization import pkcs12

from acme_xc_certificates import utils, xc
from acme_xc_certificates.certificate import IssuedCertificate
from acme_xc_certificates.exceptions import ConfigurationError
from acme_xc_certificates.request_set import Destination

logger = logging.getLogger(__name__)


def bundle_path(output_dir: Path, key: str) -> Path:
    """PKCS#12 file for an identity key: "ns/name" -> "<output_dir>/ns_name.p12"."""
    return output_dir / f"{key.replace('/', '_')}.p12"


def write_pkcs12(path: Path, issued: IssuedCertificate, password: str) -> Path:
    """
    Write a password-protected PKCS#12 bundle readable only by its owner.

    The bundle holds the leaf, its chain and, for directly issued certificates,
    the private key.

    Returns:
        Path: The written file.
    """
    if not password:
        raise ConfigurationError("p12_password", "a password is required to write a PKCS#12 bundle")

    data = pkcs12.serialize_key_and_certificates(
        name=issued.common_name.encode("utf-8"),
        key=issued.private_key,
        cert=issued.certificate,
        cas=issued.chain or None,
        encryption_algorithm=serialization.BestAvailableEncryption(password.encode("utf-8")),
    )
    utils.write_private_file(path, data)

    logger.info(f"Wrote PKCS#12 bundle {path}{'' if issued.private_key else ' (certificate only)'}")
    return path


def push_to_xc(client: xc.XcClient, destination: Destination, issued: IssuedCertificate) -> dict[str, Any]:
    """
    Create or replace the XC certificate object for a destination.

    Raises:
        ConfigurationError: If the certificate has no private key (CSR mode).
        requests.exceptions.HTTPError: If the API call fails.
    """
    private_key_pem = issued.private_key_pem()
    if private_key_pem is None:
        raise ConfigurationError("push_to_xc", f"{destination.key} has no private key to upload")

    logger.info(f"Pushing certificate for {issued.common_name} to {destination.key}")
    return client.upsert_certificate(
        destination.namespace,
        destination.name,
        issued.fullchain_pem(),
        private_key_pem,
    )
