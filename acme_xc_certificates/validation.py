"""
Validation utilities for issued certificates.
"""

import logging

from cryptography import x509
from cryptography.x509.oid import ExtensionOID, NameOID

from acme_xc_certificates import zones as zone_utils

logger = logging.getLogger(__name__)

BEGIN_MARKER = "-----BEGIN CERTIFICATE-----"
END_MARKER = "-----END CERTIFICATE-----"


def validate_certificate_format(certificate: str) -> tuple[bool, str]:
    """
    Validate the format of a PEM certificate.

    Args:
        certificate (str): Certificate in PEM format.

    Returns:
        tuple[bool, str]: (is_valid, error_message)
    """
    if not certificate.strip().startswith(BEGIN_MARKER):
        return (False, "Certificate does not start with BEGIN CERTIFICATE marker")

    if not certificate.strip().endswith(END_MARKER):
        return (False, "Certificate does not end with END CERTIFICATE marker")

    return (True, "")


def normalize_certificate(certificate: str) -> str:
    """
    Normalize certificate line endings and ensure a trailing newline.

    Args:
        certificate (str): Certificate in PEM format.

    Returns:
        str: Normalized certificate.
    """
    certificate = certificate.replace("\r\n", "\n").replace("\r", "\n")

    if not certificate.endswith("\n"):
        certificate = certificate + "\n"

    return certificate


def parse_certificate_chain(certificate: str) -> list[x509.Certificate]:
    """
    Parse a PEM certificate chain into individual certificate objects.

    Args:
        certificate (str): Certificate chain in PEM format.

    Returns:
        list[x509.Certificate]: Parsed certificates, leaf first.

    Raises:
        ValueError: If certificate parsing fails.
    """
    cert_blocks = certificate.split(BEGIN_MARKER)
    certificates = []

    for i, block in enumerate(cert_blocks[1:], 1):
        cert_pem = BEGIN_MARKER + block.split(END_MARKER)[0] + END_MARKER
        try:
            certificates.append(x509.load_pem_x509_certificate(cert_pem.encode()))
        except ValueError as e:
            raise ValueError(f"Failed to parse certificate {i}: {e}") from e

    return certificates


def get_certificate_domains(cert: x509.Certificate) -> tuple[str, list[str]]:
    """
    Extract CN and SANs from a certificate.

    Args:
        cert (x509.Certificate): Certificate object.

    Returns:
        tuple[str, list[str]]: (common_name, subject_alternative_names)
    """
    cn_attrs = cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)
    cn = str(cn_attrs[0].value) if cn_attrs else ""

    sans: list[str] = []
    try:
        san_ext = cert.extensions.get_extension_for_oid(ExtensionOID.SUBJECT_ALTERNATIVE_NAME)
        sans = san_ext.value.get_values_for_type(x509.DNSName)
    except x509.ExtensionNotFound:
        pass

    return (cn, sans)


def verify_certificate_covers_domain(cert: x509.Certificate, domain: str) -> tuple[bool, str]:
    """
    Verify that a certificate covers a specific domain.

    Names are compared case-insensitively and without a trailing dot.

    Args:
        cert (x509.Certificate): Certificate object.
        domain (str): Domain to verify.

    Returns:
        tuple[bool, str]: (is_valid, error_message)
    """
    cn, sans = get_certificate_domains(cert)
    wanted = zone_utils.normalize_name(domain)

    if wanted in {zone_utils.normalize_name(name) for name in [cn, *sans] if name}:
        return (True, "")

    return (
        False,
        f"Certificate does not cover domain '{domain}'. "
        f"Certificate is for: CN={cn}, SANs={sans}",
    )


def validate_certificate_chain(certificate: str, expected_domains: list[str]) -> tuple[bool, str, int]:
    """
    Validate a complete certificate chain.

    Args:
        certificate (str): Certificate chain in PEM format.
        expected_domains (list[str]): Domains the leaf certificate must cover.

    Returns:
        tuple[bool, str, int]: (is_valid, error_message, cert_count)
    """
    cert_count = certificate.count(BEGIN_MARKER)

    if cert_count == 0:
        return (False, "No certificates found in chain", 0)

    try:
        certificates = parse_certificate_chain(certificate)
    except ValueError as e:
        return (False, f"Failed to validate certificate chain: {e}", cert_count)

    leaf_cert = certificates[0]
    for domain in expected_domains:
        is_valid, error_msg = verify_certificate_covers_domain(leaf_cert, domain)
        if not is_valid:
            return (False, error_msg, cert_count)

    for i, cert in enumerate(certificates, 1):
        issuer_cn = cert.issuer.get_attributes_for_oid(NameOID.COMMON_NAME)
        logger.debug(f"Certificate {i}: Issued by {issuer_cn[0].value if issuer_cn else cert.issuer.rfc4514_string()}")

    return (True, "", cert_count)
