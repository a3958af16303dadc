"""
Core library interface for ACME certificates on F5 Distributed Cloud.

Example usage:
    ```python
    from pathlib import Path

    from acme_xc_certificates import AcmeXcManager
    from acme_xc_certificates.config import load_settings

    settings = load_settings(Path("config.json"))

    with AcmeXcManager(settings) as manager:
        results = manager.run()

    for result in results:
        print(result)
    ```
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime

import requests

from acme_xc_certificates import certificate, discovery, monitoring, output, providers, renewal, xc
from acme_xc_certificates.challenge import ChallengeOrchestrator
from acme_xc_certificates.config import Settings
from acme_xc_certificates.exceptions import AcmeXcError, ConfigurationError
from acme_xc_certificates.request_set import CertificateRequest, build_request_set, check_coverage
from acme_xc_certificates.session import AccountIdentity, AcmeSession

logger = logging.getLogger(__name__)

USER_AGENT = "acme-xc-certificates-lib"


@dataclass
class CertificateResult:
    """Result of processing one certificate request."""

    key: str
    success: bool
    skipped: bool = False
    error_message: str = ""
    not_after: datetime | None = None

    def __bool__(self) -> bool:
        """Allow boolean evaluation of result."""
        return self.success

    def __repr__(self) -> str:
        status = "SKIPPED" if self.skipped else "SUCCESS" if self.success else "FAILED"
        return f"<CertificateResult {self.key}: {status}>"


class AcmeXcManager:
    """
    Runs one batch of certificate issuance and delivery.

    Clients are created lazily so a run where nothing is due never contacts
    the CA.

    Attributes:
        settings: Validated run settings.
        dry_run: Use the ACME staging directory and skip writes to the XC API.
    """

    def __init__(
        self,
        settings: Settings,
        dry_run: bool = False,
        session: AcmeSession | None = None,
        provider: providers.DnsProvider | None = None,
        xc_client: xc.XcClient | None = None,
        user_agent: str = USER_AGENT,
    ):
        self.settings = settings
        self.dry_run = dry_run
        self.user_agent = user_agent

        self._session = session
        self._provider = provider
        self._xc_client = xc_client
        self._lock = threading.RLock()

    @property
    def provider(self) -> providers.DnsProvider:
        """Get or create the DNS provider."""
        with self._lock:
            if self._provider is None:
                self._provider = providers.create_provider(
                    self.settings.dns_provider, self.settings.provider_config(), self.settings.zones
                )
            return self._provider

    @property
    def xc_client(self) -> xc.XcClient:
        """Get or create the XC API client used for discovery and push."""
        with self._lock:
            if self._xc_client is None:
                xc_settings = self.settings.xc
                client = xc.XcClient(
                    tenant_url=xc_settings.tenant_url,
                    api_token=xc_settings.api_token,
                    p12_path=xc_settings.p12_path,
                    p12_password=xc_settings.p12_password,
                    dry_run=self.dry_run,
                )
                client.add_headers({"User-Agent": self.user_agent})
                self._xc_client = client
            return self._xc_client

    @property
    def session(self) -> AcmeSession:
        """Get or create the ACME session."""
        with self._lock:
            if self._session is None:
                s = self.settings
                identity = AccountIdentity.load_or_create(
                    s.account_key_path,
                    s.acme_directory_url(self.dry_run),
                    s.email,
                    algorithm=s.key_algorithm,
                    rsa_bits=s.rsa_bits,
                )
                orchestrator = ChallengeOrchestrator(
                    self.provider,
                    cert_timeout=s.cert_timeout,
                    pre_check_delay=s.pre_check_delay,
                    check_propagation=s.check_propagation,
                    nameservers=s.recursive_nameservers,
                )
                self._session = AcmeSession(
                    identity,
                    orchestrator,
                    cert_timeout=s.cert_timeout,
                    key_algorithm=s.key_algorithm,
                    rsa_bits=s.rsa_bits,
                    eab_kid=s.eab_kid,
                    eab_hmac_key=s.eab_hmac_key,
                )
                self._session.client.add_headers({"User-Agent": self.user_agent})
            return self._session

    def discover(self) -> dict[str, discovery.DiscoveredTarget]:
        """Discovered load balancers: live from XC when namespaces are set, else from the discovery file."""
        xc_settings = self.settings.xc
        if xc_settings.namespaces:
            return discovery.discover_load_balancers(
                self.xc_client, xc_settings.namespaces, xc_settings.domain_filter or None
            )
        if xc_settings.discovery_file:
            return discovery.load_discovery(xc_settings.discovery_file)
        return {}

    def build_requests(self) -> dict[str, CertificateRequest]:
        """
        Plan the run.

        Raises:
            ConfigurationError: If any request has a domain outside the configured zones.
            TransientNetworkError: If discovery could not reach XC at all.
        """
        static = self.settings.certificate
        return build_request_set(
            static.domains if static else None,
            self.discover().values(),
            self.settings.zones,
            zone_constrained=providers.get_provider(self.settings.dns_provider).requires_zones,
            static_key=static.key if static else "certificate",
            csr_path=static.csr_path if static else None,
        )

    def run(
        self,
        requests_by_key: dict[str, CertificateRequest] | None = None,
        state_store: renewal.JsonStateStore | None = None,
    ) -> list[CertificateResult]:
        """
        Issue and deliver every certificate that is due.

        Args:
            requests_by_key: Planned requests; built from settings when None.
            state_store: Expiry lookup; the settings' state file when None.

        Returns:
            list[CertificateResult]: One result per request, in key order.

        Raises:
            AcmeXcError: On failures of shared setup (planning, account registration).
        """
        if requests_by_key is None:
            requests_by_key = self.build_requests()
        if state_store is None:
            state_store = renewal.JsonStateStore(self.settings.state_file)

        results: dict[str, CertificateResult] = {}
        due: list[CertificateRequest] = []
        zone_constrained = providers.get_provider(self.settings.dns_provider).requires_zones

        for key, request in requests_by_key.items():
            if zone_constrained:
                try:
                    check_coverage(key, request.domains, request.zones or self.settings.zones)
                except ConfigurationError as e:
                    logger.error(f"{key}: {e}")
                    results[key] = CertificateResult(key=key, success=False, error_message=str(e))
                    continue

            not_after = state_store.get(key)
            if renewal.should_issue(not_after, self.settings.renewal_days):
                logger.info(f"{key}: {'renewal due' if not_after else 'no certificate yet'}")
                due.append(request)
            else:
                logger.info(f"{key}: valid until {not_after.isoformat()}, skipping")
                results[key] = CertificateResult(key=key, success=True, skipped=True, not_after=not_after)

        if due:
            self.session.register()

            workers = min(self.settings.max_workers, len(due))
            logger.info(f"Processing {len(due)} certificate(s) with {workers} worker(s)")
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="cert") as executor:
                for result in executor.map(lambda r: self.process_request(r, state_store), due):
                    results[result.key] = result

        return [results[key] for key in sorted(results)]

    def process_request(
        self, request: CertificateRequest, state_store: renewal.JsonStateStore
    ) -> CertificateResult:
        """Issue, deliver and record one certificate; failures stay scoped to it."""
        try:
            with monitoring.timer(f"Certificate {request.key}"):
                csr = certificate.load_csr(request.csr_path) if request.csr_path else None
                issued = self.session.issue(request.domains, csr)
                self.deliver(request, issued)
                state_store.put(request.key, issued.not_after)

            return CertificateResult(key=request.key, success=True, not_after=issued.not_after)

        except (AcmeXcError, requests.exceptions.RequestException, OSError, ValueError) as e:
            logger.error(f"{request.key}: {e}")
            return CertificateResult(key=request.key, success=False, error_message=str(e))
        except Exception as e:
            logger.exception(f"{request.key}: unexpected error: {e}")
            return CertificateResult(key=request.key, success=False, error_message=f"Unexpected error: {e}")

    def deliver(self, request: CertificateRequest, issued: certificate.IssuedCertificate) -> None:
        """Hand a finished certificate to the enabled output sinks."""
        if self.settings.write_bundle:
            path = output.bundle_path(self.settings.output_dir, request.key)
            output.write_pkcs12(path, issued, self.settings.p12_password or "")

        if self.settings.push_to_xc and request.destination is not None:
            output.push_to_xc(self.xc_client, request.destination, issued)

    def close(self) -> None:
        """Close all client connections."""
        if self._session:
            self._session.close()
        if self._provider:
            self._provider.close()
        if self._xc_client:
            self._xc_client.close()

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()

    def __repr__(self) -> str:
        mode = "DRY-RUN" if self.dry_run else "PRODUCTION"
        return f"<AcmeXcManager mode={mode}>"
