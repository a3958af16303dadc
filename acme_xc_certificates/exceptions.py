class AcmeXcError(Exception):
    """Base class for all errors raised by acme_xc_certificates."""


class ConfigurationError(AcmeXcError):
    """Exception raised when a setting is missing or invalid."""

    def __init__(self, field, message):
        self.field = field
        self.message = message
        super().__init__(f"Invalid configuration '{field}': {message}")


class ZoneNotFoundError(ConfigurationError):
    """Exception raised when no configured zone owns a name."""

    def __init__(self, fqdn, zones):
        self.fqdn = fqdn
        self.zones = list(zones)
        super().__init__(
            "zones",
            f"'{fqdn}' does not belong to any configured zone: {', '.join(self.zones) or '(none)'}",
        )


class ProviderError(AcmeXcError):
    """Exception raised when a DNS backend operation fails."""

    def __init__(self, provider, message):
        self.provider = provider
        super().__init__(f"DNS provider '{provider}': {message}")


class AcmeError(AcmeXcError):
    """Exception raised when the ACME server answers unexpectedly."""

    def __init__(self, message, status_code=None, problem=None):
        self.status_code = status_code
        self.problem = problem or {}
        detail = self.problem.get("detail")
        if status_code is not None:
            message = f"{message} (HTTP {status_code})"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class RegistrationError(AcmeError):
    """Exception raised when the CA rejects the account registration."""


class ChallengeValidationError(AcmeXcError):
    """Exception raised when the CA rejects a DNS-01 challenge."""

    def __init__(self, domain, status, detail=""):
        self.domain = domain
        self.status = status
        self.detail = detail
        message = f"Challenge for '{domain}' ended in status '{status}'"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class IssuanceTimeoutError(AcmeXcError, TimeoutError):
    """Exception raised when a bounded wait expires."""

    def __init__(self, operation, timeout):
        self.operation = operation
        self.timeout = timeout
        super().__init__(f"{operation} did not complete within {timeout}s")


class TransientNetworkError(AcmeXcError):
    """Exception raised when a remote API could not be reached."""
