"""
Certificate management utilities.
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.x509.oid import NameOID

from acme_xc_certificates import models, utils, validation
from acme_xc_certificates.exceptions import AcmeError, ConfigurationError

logger = logging.getLogger(__name__)

PUBLIC_EXPONENT = 65537
KEY_ALGORITHMS = ("RSA", "ECDSA")
RSA_KEY_SIZES = (2048, 3072, 4096, 8192)
DEFAULT_RSA_BITS = 2048


@dataclass
class IssuedCertificate:
    """A finished certificate as returned by a successful order."""

    certificate: x509.Certificate
    chain: list[x509.Certificate]
    private_key: rsa.RSAPrivateKey | ec.EllipticCurvePrivateKey | None
    not_before: datetime
    not_after: datetime

    @classmethod
    def from_pem(cls, pem: str, private_key=None) -> "IssuedCertificate":
        """
        Build an IssuedCertificate from the PEM chain served by the CA.

        Raises:
            ValueError: If the response is not a PEM certificate chain.
        """
        pem = validation.normalize_certificate(pem)
        is_valid, error = validation.validate_certificate_format(pem)
        if not is_valid:
            raise ValueError(error)

        certificates = validation.parse_certificate_chain(pem)
        if not certificates:
            raise ValueError("No certificates found in chain")

        leaf = certificates[0]
        return cls(
            certificate=leaf,
            chain=certificates[1:],
            private_key=private_key,
            not_before=leaf.not_valid_before_utc,
            not_after=leaf.not_valid_after_utc,
        )

    @property
    def common_name(self) -> str:
        cn, _ = validation.get_certificate_domains(self.certificate)
        return cn

    @property
    def domains(self) -> list[str]:
        cn, sans = validation.get_certificate_domains(self.certificate)
        return sans or [cn]

    def certificate_pem(self) -> str:
        """Leaf certificate in PEM format."""
        return self.certificate.public_bytes(serialization.Encoding.PEM).decode("ascii")

    def fullchain_pem(self) -> str:
        """Leaf followed by the issuer chain, in PEM format."""
        return "".join(
            cert.public_bytes(serialization.Encoding.PEM).decode("ascii")
            for cert in [self.certificate, *self.chain]
        )

    def private_key_pem(self) -> str | None:
        if self.private_key is None:
            return None
        return utils.private_key_to_pem(self.private_key)

    def __repr__(self) -> str:
        return f"<IssuedCertificate {self.common_name} not_after={self.not_after.isoformat()}>"


def generate_private_key(algorithm: str = "RSA", rsa_bits: int = DEFAULT_RSA_BITS):
    """
    Generate a private key.

    Args:
        algorithm: "RSA" or "ECDSA" (P-256).
        rsa_bits: RSA modulus size in bits.

    Returns:
        RSA or EC private key.

    Raises:
        ConfigurationError: On an unsupported algorithm or RSA size.
    """
    algorithm = algorithm.upper()

    if algorithm == "RSA":
        if rsa_bits not in RSA_KEY_SIZES:
            raise ConfigurationError("rsa_bits", f"unsupported RSA key size {rsa_bits}")
        logger.debug(f"Generating {rsa_bits}-bit RSA private key")
        return rsa.generate_private_key(public_exponent=PUBLIC_EXPONENT, key_size=rsa_bits)

    if algorithm == "ECDSA":
        logger.debug("Generating ECDSA P-256 private key")
        return ec.generate_private_key(ec.SECP256R1())

    raise ConfigurationError("key_algorithm", f"unsupported key algorithm '{algorithm}'")


def load_private_key(path: Path):
    """
    Load an RSA or EC private key from a PEM file.

    Raises:
        ConfigurationError: If the file is missing or does not hold a supported key.
    """
    try:
        key = serialization.load_pem_private_key(path.read_bytes(), password=None)
    except FileNotFoundError:
        raise ConfigurationError("account_key_path", f"key file not found: {path}") from None
    except ValueError as e:
        raise ConfigurationError("account_key_path", f"cannot load key {path}: {e}") from None

    if not isinstance(key, (rsa.RSAPrivateKey, ec.EllipticCurvePrivateKey)):
        raise ConfigurationError("account_key_path", f"unsupported key type {type(key).__name__}")
    return key


def generate_csr(domains: list[str], private_key) -> x509.CertificateSigningRequest:
    """
    Generate a Certificate Signing Request (CSR).

    Args:
        domains: Domain names; the first one becomes the CN, all go in the SAN.
        private_key: RSA or EC private key.

    Returns:
        x509.CertificateSigningRequest: Generated CSR.
    """
    san_domains: list[str] = []
    for domain in domains:
        if domain not in san_domains:
            san_domains.append(domain)

    if not san_domains:
        raise ValueError("At least one domain is required")

    logger.info(f"Creating CSR for domains: {', '.join(san_domains)}")
    return (
        x509.CertificateSigningRequestBuilder()
        .subject_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, san_domains[0])]))
        .add_extension(
            x509.SubjectAlternativeName([x509.DNSName(d) for d in san_domains]), critical=False
        )
        .sign(private_key, hashes.SHA256())
    )


def load_csr(path: Path) -> x509.CertificateSigningRequest:
    """
    Load a PEM certificate signing request.

    Raises:
        ConfigurationError: If the file is missing or not a valid CSR.
    """
    try:
        csr = x509.load_pem_x509_csr(path.read_bytes())
    except FileNotFoundError:
        raise ConfigurationError("certificate.csr_path", f"CSR file not found: {path}") from None
    except ValueError as e:
        raise ConfigurationError("certificate.csr_path", f"cannot load CSR {path}: {e}") from None

    if not csr.is_signature_valid:
        raise ConfigurationError("certificate.csr_path", f"CSR signature is invalid: {path}")
    return csr


def csr_domains(csr: x509.CertificateSigningRequest) -> list[str]:
    """Return the CN followed by any additional SAN names of a CSR."""
    cn_attrs = csr.subject.get_attributes_for_oid(NameOID.COMMON_NAME)
    domains = [str(cn_attrs[0].value)] if cn_attrs else []

    try:
        san = csr.extensions.get_extension_for_class(x509.SubjectAlternativeName)
        for name in san.value.get_values_for_type(x509.DNSName):
            if name not in domains:
                domains.append(name)
    except x509.ExtensionNotFound:
        pass

    return domains


def finalize_order(order: models.Order, csr: x509.CertificateSigningRequest, timeout: float) -> str:
    """
    Finalize an ACME order and retrieve the certificate.

    Args:
        order: ACME order whose authorizations are all valid.
        csr: Certificate Signing Request.
        timeout: Overall seconds to wait for the order to become ready and then valid.

    Returns:
        str: Certificate chain in PEM format.

    Raises:
        IssuanceTimeoutError: If the order does not settle in time.
        AcmeError: If the order ends up in any state other than valid.
    """
    logger.info("Finalizing order")
    deadline = time.monotonic() + timeout

    order.poll_until_not({"pending"}, timeout=timeout)
    if order.status != "ready":
        raise AcmeError(f"Order is '{order.status}' instead of ready", problem=order.error)

    order.finalize(csr)
    order.poll_until_not({"processing", "ready"}, timeout=max(0.0, deadline - time.monotonic()))

    if order.status != "valid":
        raise AcmeError(f"Order finalization unsuccessful: {order.status}", problem=order.error)

    certificate = order.certificate()
    logger.info("Certificate retrieved successfully")
    return certificate
