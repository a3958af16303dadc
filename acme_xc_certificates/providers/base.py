"""Abstract base class for DNS providers."""

import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Iterable

from acme_xc_certificates import zones as zone_utils
from acme_xc_certificates.exceptions import ConfigurationError, ProviderError

logger = logging.getLogger(__name__)

_locks_guard = threading.Lock()
_record_locks: dict[str, threading.Lock] = {}


def record_lock(fqdn: str) -> threading.Lock:
    """
    Return the process-wide lock serializing writes to one record name.

    Two challenges for the same name (a wildcard and its base domain, or two
    requests sharing a hostname) read-modify-write the same value set.
    """
    key = zone_utils.normalize_name(fqdn)
    with _locks_guard:
        return _record_locks.setdefault(key, threading.Lock())


class DnsProvider(ABC):
    """
    Interface for DNS backends that manage ACME DNS-01 challenge TXT records.

    Implementations must honour three rules:
    - ``present`` adds the token to whatever values already exist at the name,
      and adding a token that is already there changes nothing.
    - ``cleanup`` removes only the given token, and an absent record is a no-op.
    - ``query`` returns the current values, or an empty list when there is no record.
    """

    name = ""
    requires_zones = False

    def __init__(self, zones: Iterable[str] | None = None) -> None:
        self.zones = zone_utils.validate_zones(zones or [])
        if self.requires_zones and not self.zones:
            raise ConfigurationError("zones", f"the '{self.name}' DNS provider requires at least one zone")

    @classmethod
    def from_config(cls, config: dict[str, str], zones: list[str]) -> "DnsProvider":
        """Build the provider from its string-keyed configuration map."""
        raise NotImplementedError

    def close(self) -> None:
        """Release resources. Override in subclasses that hold open connections."""

    def __enter__(self):
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def zone_for(self, fqdn: str) -> str:
        """
        Find the configured zone owning a name.

        Raises:
            ZoneNotFoundError: If no configured zone matches.
        """
        return zone_utils.resolve_zone(fqdn, self.zones)

    @abstractmethod
    def present(self, fqdn: str, token: str) -> None:
        """Add a TXT value at fqdn.

        Args:
            fqdn: Challenge name, e.g. "_acme-challenge.example.com.".
            token: TXT value to publish.

        Raises:
            ProviderError: If the record could not be written.
        """

    @abstractmethod
    def cleanup(self, fqdn: str, token: str) -> None:
        """Remove a TXT value from fqdn.

        Raises:
            ProviderError: If the backend refused the change.
        """

    @abstractmethod
    def query(self, fqdn: str) -> list[str]:
        """Return the TXT values currently published at fqdn."""

    def error(self, message: str) -> ProviderError:
        return ProviderError(self.name, message)

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} zones={self.zones}>"
