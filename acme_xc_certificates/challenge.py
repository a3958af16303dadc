"""
ACME DNS-01 challenge handling.

One ``ChallengeOrchestrator.run`` call drives a single proof:

    Pending -> Presented -> AwaitingPropagation -> Validating -> Satisfied | Failed

The TXT record only lives for the duration of that call. ``presented_record``
publishes it and removes it again on every exit path.
"""

import enum
import hashlib
import logging
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field

import requests

from acme_xc_certificates import models, propagation, utils
from acme_xc_certificates import zones as zone_utils
from acme_xc_certificates.exceptions import AcmeXcError
from acme_xc_certificates.providers.base import DnsProvider

logger = logging.getLogger(__name__)

SUPPORTED_CHALLENGES = ["dns-01"]
CHALLENGE_LABEL = "_acme-challenge"


class ChallengeState(enum.Enum):
    PENDING = "Pending"
    PRESENTED = "Presented"
    AWAITING_PROPAGATION = "AwaitingPropagation"
    VALIDATING = "Validating"
    SATISFIED = "Satisfied"
    FAILED = "Failed"

    @property
    def terminal(self) -> bool:
        return self in (ChallengeState.SATISFIED, ChallengeState.FAILED)


@dataclass
class ChallengeRecord:
    """An ephemeral DNS-01 TXT record, alive for one proof only."""

    fqdn: str
    value: str
    zone: str = ""


@dataclass
class ChallengeResult:
    """Terminal outcome of one orchestrated challenge."""

    domain: str
    state: ChallengeState
    record: ChallengeRecord
    error: Exception | None = None
    transitions: list[ChallengeState] = field(default_factory=list)

    def __bool__(self) -> bool:
        return self.state is ChallengeState.SATISFIED


def challenge_fqdn(domain: str) -> str:
    """
    Get the DNS-01 record name for a domain.

    Wildcards validate at the base name: "*.example.com" -> "_acme-challenge.example.com.".
    """
    name = zone_utils.normalize_name(domain).removeprefix("*.")
    return f"{CHALLENGE_LABEL}.{name}."


def dns01_txt_value(token: str, key_thumbprint: str) -> str:
    """
    Compute the TXT value for a DNS-01 challenge.

    Args:
        token: Challenge token from the ACME server.
        key_thumbprint: JWK thumbprint of the account key.

    Returns:
        str: base64url(SHA-256(key authorization)).
    """
    key_authorization = f"{token}.{key_thumbprint}"
    return utils.b64url(hashlib.sha256(key_authorization.encode("utf-8")).digest())


def find_dns01_challenge(authorization: models.Authorization) -> models.Challenge | None:
    """
    Find a supported challenge type from an authorization.

    Returns:
        models.Challenge | None: First supported challenge, or None if none found.
    """
    for challenge in authorization.challenges:
        if challenge.type in SUPPORTED_CHALLENGES:
            logger.debug(f"Found supported challenge: {challenge.type}")
            return challenge

    available_types = [c.type for c in authorization.challenges]
    logger.error(
        f"No supported challenge found. Available: {available_types}, "
        f"Supported: {SUPPORTED_CHALLENGES}"
    )
    return None


@contextmanager
def presented_record(provider: DnsProvider, record: ChallengeRecord) -> Iterator[ChallengeRecord]:
    """
    Publish a challenge record for the duration of a ``with`` block.

    ``present`` errors propagate and nothing is cleaned up. Once presented,
    ``cleanup`` runs exactly once when the block exits, whatever the outcome;
    cleanup failures are logged and never raised.
    """
    provider.present(record.fqdn, record.value)
    try:
        yield record
    finally:
        try:
            provider.cleanup(record.fqdn, record.value)
            logger.debug(f"Cleaned up challenge record {record.fqdn}")
        except Exception as e:
            logger.warning(f"Failed to clean up challenge record {record.fqdn}: {e}")


class ChallengeOrchestrator:
    """
    Drives DNS-01 proofs against one DNS provider.

    Attributes:
        provider: DNS backend publishing the TXT records.
        cert_timeout: Upper bound in seconds for propagation and CA validation.
        pre_check_delay: Fixed delay in seconds after publishing the record.
        check_propagation: Poll resolvers for the record before asking the CA.
        nameservers: Recursive resolvers used by the propagation check.
    """

    def __init__(
        self,
        provider: DnsProvider,
        cert_timeout: float,
        pre_check_delay: float = 0,
        check_propagation: bool = False,
        nameservers: list[str] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.provider = provider
        self.cert_timeout = cert_timeout
        self.pre_check_delay = pre_check_delay
        self.check_propagation = check_propagation
        self.nameservers = list(nameservers or [])
        self._sleep = sleep

    def make_record(self, domain: str, token: str, key_thumbprint: str) -> ChallengeRecord:
        fqdn = challenge_fqdn(domain)
        zone = self.provider.zone_for(fqdn) if self.provider.zones else ""
        return ChallengeRecord(fqdn=fqdn, value=dns01_txt_value(token, key_thumbprint), zone=zone)

    def run(
        self,
        domain: str,
        token: str,
        key_thumbprint: str,
        validate: Callable[[float], None],
    ) -> ChallengeResult:
        """
        Complete one DNS-01 proof end to end.

        Args:
            domain: Domain being authorized.
            token: Challenge token.
            key_thumbprint: Account key thumbprint.
            validate: Asks the CA to validate and blocks until it decides; receives
                the time budget left in seconds and raises on rejection or timeout.

        Returns:
            ChallengeResult: Terminal state, with the causing error when Failed.
        """
        transitions = [ChallengeState.PENDING]

        def advance(state: ChallengeState) -> None:
            transitions.append(state)
            logger.debug(f"Challenge for {domain}: {transitions[-2].value} -> {state.value}")

        try:
            record = self.make_record(domain, token, key_thumbprint)
        except AcmeXcError as e:
            advance(ChallengeState.FAILED)
            record = ChallengeRecord(fqdn=challenge_fqdn(domain), value="")
            return ChallengeResult(domain, ChallengeState.FAILED, record, e, transitions)

        try:
            with presented_record(self.provider, record):
                advance(ChallengeState.PRESENTED)
                logger.info(f"Presented DNS-01 record {record.fqdn} for {domain}")

                if self.pre_check_delay > 0:
                    logger.info(f"Waiting {self.pre_check_delay}s before validation of {domain}")
                    self._sleep(self.pre_check_delay)
                advance(ChallengeState.AWAITING_PROPAGATION)
                started = time.monotonic()

                if self.check_propagation:
                    propagation.wait_for_txt(
                        record.fqdn, record.value, self._remaining(started), self.nameservers
                    )

                advance(ChallengeState.VALIDATING)
                validate(self._remaining(started))

            advance(ChallengeState.SATISFIED)
            logger.info(f"Challenge for {domain} satisfied")
            return ChallengeResult(domain, ChallengeState.SATISFIED, record, None, transitions)

        except (AcmeXcError, requests.exceptions.RequestException) as e:
            logger.error(f"Challenge for {domain} failed: {e}")
            advance(ChallengeState.FAILED)
            return ChallengeResult(domain, ChallengeState.FAILED, record, e, transitions)

    def _remaining(self, started: float) -> float:
        return max(0.0, self.cert_timeout - (time.monotonic() - started))
