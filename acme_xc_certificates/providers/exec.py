"""
External program backend.

Runs ``<command> present|cleanup <fqdn> <token> <domain>``; exit code 0 means
success. ``acme-xc dns-hook`` implements this contract for F5 XC.
"""

import logging
import os
import shlex
import subprocess

from acme_xc_certificates import zones as zone_utils
from acme_xc_certificates.exceptions import ConfigurationError
from acme_xc_certificates.providers.base import DnsProvider

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 120


class ExecDnsProvider(DnsProvider):
    """DNS-01 records managed by an external script."""

    name = "exec"

    def __init__(
        self,
        command: str,
        env: dict[str, str] | None = None,
        zones: list[str] | None = None,
        timeout: int = DEFAULT_TIMEOUT,
    ) -> None:
        super().__init__(zones)
        if not command:
            raise ConfigurationError("dns_provider_config.command", "a command is required")

        self.command = shlex.split(command)
        self.env = dict(env or {})
        self.timeout = timeout

    @classmethod
    def from_config(cls, config: dict[str, str], zones: list[str]) -> "ExecDnsProvider":
        config = dict(config)
        command = config.pop("command", "")
        try:
            timeout = int(config.pop("timeout", DEFAULT_TIMEOUT))
        except ValueError:
            raise ConfigurationError("dns_provider_config.timeout", "timeout must be an integer") from None

        # Everything else is handed to the program as environment variables.
        return cls(command, env=config, zones=zones, timeout=timeout)

    def _run(self, action: str, fqdn: str, token: str) -> None:
        name = zone_utils.normalize_name(fqdn) + "."
        domain = name.removeprefix("_acme-challenge.")
        argv = [*self.command, action, name, token, domain]

        logger.debug(f"Running DNS hook: {' '.join(argv[:3])} ...")
        try:
            result = subprocess.run(
                argv,
                env={**os.environ, **self.env},
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            raise self.error(f"{action} of {fqdn} failed: {e}") from e

        if result.stderr:
            logger.debug(f"DNS hook stderr: {result.stderr.strip()}")

        if result.returncode != 0:
            detail = result.stderr.strip() or result.stdout.strip()
            raise self.error(f"{action} of {fqdn} exited with {result.returncode}: {detail}")

    def present(self, fqdn: str, token: str) -> None:
        self._run("present", fqdn, token)

    def cleanup(self, fqdn: str, token: str) -> None:
        self._run("cleanup", fqdn, token)

    def query(self, fqdn: str) -> list[str]:
        # The hook contract has no read operation.
        return []
