"""
ACME account and issuance session.

An ``AcmeSession`` is built once per run around a single account. ``register``
happens once; ``issue`` can then be called for any number of independent
certificates, from several worker threads at a time.
"""

import json
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path

from cryptography import x509
from cryptography.hazmat.primitives.asymmetric import ec, rsa

from acme_xc_certificates import acme, certificate, models, utils, validation
from acme_xc_certificates import zones as zone_utils
from acme_xc_certificates.challenge import ChallengeOrchestrator, ChallengeResult, find_dns01_challenge
from acme_xc_certificates.exceptions import (
    AcmeError,
    ChallengeValidationError,
    ConfigurationError,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_AUTHORIZATIONS = 4


@dataclass
class AccountIdentity:
    """
    The account key plus what the CA told us about it.

    The key is scoped to one CA directory. The sidecar ``<key>.json`` next to the
    key file records which directory it was registered with.
    """

    private_key: rsa.RSAPrivateKey | ec.EllipticCurvePrivateKey
    directory_url: str
    email: str
    key_path: Path | None = None
    kid: str = ""

    @property
    def metadata_path(self) -> Path | None:
        if self.key_path is None:
            return None
        return self.key_path.with_name(self.key_path.name + ".json")

    @property
    def contact(self) -> list[str]:
        return [f"mailto:{self.email}"] if self.email else []

    @classmethod
    def load_or_create(
        cls,
        key_path: Path,
        directory_url: str,
        email: str,
        algorithm: str = "RSA",
        rsa_bits: int = certificate.DEFAULT_RSA_BITS,
    ) -> "AccountIdentity":
        """
        Load the account key at key_path, or generate and store a new one.

        Raises:
            ConfigurationError: If the stored account belongs to another CA directory,
                or the key file cannot be read.
        """
        if key_path.exists():
            identity = cls(certificate.load_private_key(key_path), directory_url, email, key_path)
            identity._load_metadata()
            logger.info(f"Loaded ACME account key from {key_path}")
            return identity

        private_key = certificate.generate_private_key(algorithm, rsa_bits)
        utils.write_private_file(key_path, utils.private_key_to_pem(private_key).encode("ascii"))
        logger.info(f"Generated new {algorithm.upper()} ACME account key at {key_path}")
        return cls(private_key, directory_url, email, key_path)

    def _load_metadata(self) -> None:
        path = self.metadata_path
        if path is None or not path.exists():
            return

        try:
            metadata = json.loads(path.read_text())
        except ValueError as e:
            raise ConfigurationError("account_key_path", f"unreadable account metadata {path}: {e}") from None

        stored_url = metadata.get("directory_url")
        if stored_url and stored_url != self.directory_url:
            raise ConfigurationError(
                "account_key_path",
                f"account key {self.key_path} is registered with {stored_url}, not {self.directory_url}; "
                "use a separate key per CA directory",
            )
        self.kid = metadata.get("kid", "")

    def save(self) -> None:
        """Write the sidecar metadata file."""
        path = self.metadata_path
        if path is None:
            return

        metadata = {"directory_url": self.directory_url, "email": self.email, "kid": self.kid}
        path.write_text(json.dumps(metadata, indent=2) + "\n")
        logger.debug(f"Saved account metadata to {path}")


class AcmeSession:
    """
    Issues certificates through one ACME account.

    Attributes:
        identity: Account key and registration.
        client: JWS client bound to the account key.
        orchestrator: Runs one DNS-01 proof per authorization.
        cert_timeout: Bound in seconds for finalization.
    """

    def __init__(
        self,
        identity: AccountIdentity,
        orchestrator: ChallengeOrchestrator,
        client: acme.AcmeClient | None = None,
        cert_timeout: float = 300,
        key_algorithm: str = "RSA",
        rsa_bits: int = certificate.DEFAULT_RSA_BITS,
        eab_kid: str | None = None,
        eab_hmac_key: str | None = None,
        max_authorizations: int = DEFAULT_MAX_AUTHORIZATIONS,
    ) -> None:
        self.identity = identity
        self.orchestrator = orchestrator
        self.client = client or acme.AcmeClient(identity.private_key, directory_url=identity.directory_url)
        self.cert_timeout = cert_timeout
        self.key_algorithm = key_algorithm
        self.rsa_bits = rsa_bits
        self.eab_kid = eab_kid
        self.eab_hmac_key = eab_hmac_key
        self.max_authorizations = max(1, max_authorizations)

        self.account: models.Account | None = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def close(self) -> None:
        self.client.close()

    def register(self) -> models.Account:
        """
        Register the account, or find the existing one for this key.

        Raises:
            RegistrationError: If the CA rejects the registration. Not retried.
        """
        if self.account is not None:
            return self.account

        logger.info(f"Registering ACME account with {self.identity.directory_url}")
        self.account = self.client.new_account(
            terms_of_service_agreed=True,
            contact=self.identity.contact or None,
            eab_kid=self.eab_kid,
            eab_hmac_key=self.eab_hmac_key,
        )

        if self.identity.kid != self.client.key_id:
            self.identity.kid = self.client.key_id
            self.identity.save()

        return self.account

    def issue(
        self,
        domains: list[str],
        csr: x509.CertificateSigningRequest | None = None,
    ) -> certificate.IssuedCertificate:
        """
        Obtain a certificate for domains.

        Args:
            domains: Names to certify; the first one is the common name.
            csr: Caller-supplied CSR (CSR mode). When None, a fresh key is
                generated and returned with the certificate (direct mode).

        Returns:
            IssuedCertificate: Leaf, chain and, in direct mode, the private key.

        Raises:
            ChallengeValidationError: If the CA rejected any challenge.
            IssuanceTimeoutError: If propagation, validation or finalization timed out.
            ProviderError: If a challenge record could not be published.
            AcmeError: On any other protocol failure.
        """
        account = self.register()

        private_key = None
        if csr is None:
            private_key = certificate.generate_private_key(self.key_algorithm, self.rsa_bits)
            csr = certificate.generate_csr(domains, private_key)
        else:
            self._check_csr(csr, domains)

        order = self.client.new_order(domains)
        logger.info(f"Created order {order.url} for {', '.join(domains)}")

        results = self._authorize_all(order.authorizations, account.key_thumbprint)
        for result in results:
            if not result:
                raise result.error or ChallengeValidationError(result.domain, result.state.value)

        pem = certificate.finalize_order(order, csr, timeout=self.cert_timeout)

        is_valid, error_msg, cert_count = validation.validate_certificate_chain(pem, domains)
        if not is_valid:
            raise AcmeError(f"Issued certificate rejected: {error_msg}")

        issued = certificate.IssuedCertificate.from_pem(pem, private_key)
        logger.info(
            f"Issued certificate for {issued.common_name} ({cert_count} certificate(s) in chain), "
            f"valid until {issued.not_after.isoformat()}"
        )
        return issued

    def _authorize_all(
        self, authorizations: list[models.Authorization], key_thumbprint: str
    ) -> list[ChallengeResult]:
        """Serve every pending authorization; distinct domains run concurrently."""
        for authorization in authorizations:
            authorization.update()

        pending = [a for a in authorizations if a.status != "valid"]
        if len(pending) < len(authorizations):
            logger.info(f"{len(authorizations) - len(pending)} authorization(s) already valid")
        if not pending:
            return []

        workers = min(self.max_authorizations, len(pending))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="authz") as executor:
            return list(executor.map(lambda a: self._authorize(a, key_thumbprint), pending))

    def _authorize(self, authorization: models.Authorization, key_thumbprint: str) -> ChallengeResult:
        domain = authorization.domain

        if authorization.status != "pending":
            raise ChallengeValidationError(domain, authorization.status, authorization.error.get("detail", ""))

        challenge = find_dns01_challenge(authorization)
        if challenge is None:
            raise AcmeError(f"CA offered no dns-01 challenge for {domain}")

        def validate(remaining: float) -> None:
            challenge.respond()
            challenge.poll_until_not({"pending", "processing"}, timeout=remaining)
            if challenge.status != "valid":
                raise ChallengeValidationError(domain, challenge.status, challenge.error.get("detail", ""))

        return self.orchestrator.run(domain, challenge.token, key_thumbprint, validate)

    @staticmethod
    def _check_csr(csr: x509.CertificateSigningRequest, domains: list[str]) -> None:
        requested = {zone_utils.normalize_name(d) for d in domains}
        in_csr = {zone_utils.normalize_name(d) for d in certificate.csr_domains(csr)}
        if requested != in_csr:
            raise ConfigurationError(
                "certificate.csr_path",
                f"CSR names {sorted(in_csr)} do not match requested domains {sorted(requested)}",
            )
