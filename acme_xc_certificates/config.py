"""
Run configuration.

Settings are read from a JSON file. Secret values may be given as
``"env:NAME"``; they are then read from the environment variable NAME or from
``secrets/NAME`` (Docker secrets).
"""

import json
import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

from acme_xc_certificates import acme, certificate, providers, utils
from acme_xc_certificates import zones as zone_utils
from acme_xc_certificates.exceptions import ConfigurationError
from acme_xc_certificates.request_set import STATIC_KEY
from acme_xc_certificates.xc import DEFAULT_GROUP_NAME

logger = logging.getLogger(__name__)


@dataclass
class CertificateSettings:
    """The static single certificate."""

    domains: list[str] = field(default_factory=list)
    key: str = STATIC_KEY
    csr_path: Path | None = None


@dataclass
class XcSettings:
    """F5 XC tenant access, discovery scope and DNS group."""

    tenant_url: str = ""
    api_token: str | None = None
    p12_path: str | None = None
    p12_password: str | None = None
    namespaces: list[str] = field(default_factory=list)
    domain_filter: list[str] = field(default_factory=list)
    group_name: str = DEFAULT_GROUP_NAME
    discovery_file: Path | None = None

    @property
    def has_credentials(self) -> bool:
        return bool(self.api_token or self.p12_path)


@dataclass
class Settings:
    email: str = ""
    directory_url: str = ""
    staging: bool = False
    eab_kid: str | None = None
    eab_hmac_key: str | None = None
    account_key_path: Path = Path("account.pem")
    key_algorithm: str = "RSA"
    rsa_bits: int = certificate.DEFAULT_RSA_BITS
    renewal_days: int = 30
    cert_timeout: float = 300
    pre_check_delay: float = 0
    recursive_nameservers: list[str] = field(default_factory=list)
    check_propagation: bool = False
    dns_provider: str = "xc"
    dns_provider_config: dict[str, str] = field(default_factory=dict)
    zones: list[str] = field(default_factory=list)
    max_workers: int = 1
    state_file: Path = Path("state.json")
    output_dir: Path = Path("certs")
    p12_password: str | None = None
    write_bundle: bool = True
    push_to_xc: bool = False
    certificate: CertificateSettings | None = None
    xc: XcSettings = field(default_factory=XcSettings)

    def acme_directory_url(self, dry_run: bool = False) -> str:
        """Configured directory, else Let's Encrypt (staging when requested or dry-running)."""
        if self.directory_url:
            return self.directory_url
        if self.staging or dry_run:
            return acme.AcmeClient.TEST_DIRECTORY_URL
        return acme.AcmeClient.DIRECTORY_URL

    def provider_config(self) -> dict[str, str]:
        """
        Configuration map for the DNS backend.

        The xc backend falls back to the ``xc`` section for tenant and credentials.
        """
        config = dict(self.dns_provider_config)
        if self.dns_provider == "xc":
            config.setdefault("tenant_url", self.xc.tenant_url)
            config.setdefault("group_name", self.xc.group_name)
            if self.xc.api_token:
                config.setdefault("api_token", self.xc.api_token)
            if self.xc.p12_path:
                config.setdefault("p12_path", self.xc.p12_path)
                config.setdefault("p12_password", self.xc.p12_password or "")
        return config

    def validate(self) -> None:
        """
        Check settings before anything touches the network.

        Raises:
            ConfigurationError: Naming the first offending field.
        """
        if not self.email or "@" not in self.email:
            raise ConfigurationError("email", "a contact email address is required")

        if bool(self.eab_kid) != bool(self.eab_hmac_key):
            raise ConfigurationError("eab_hmac_key", "eab_kid and eab_hmac_key must be set together")

        if self.key_algorithm.upper() not in certificate.KEY_ALGORITHMS:
            raise ConfigurationError(
                "key_algorithm", f"must be one of {', '.join(certificate.KEY_ALGORITHMS)}"
            )
        if self.key_algorithm.upper() == "RSA" and self.rsa_bits not in certificate.RSA_KEY_SIZES:
            raise ConfigurationError("rsa_bits", f"must be one of {certificate.RSA_KEY_SIZES}")

        for name in ("renewal_days", "pre_check_delay"):
            if getattr(self, name) < 0:
                raise ConfigurationError(name, "must not be negative")
        if self.cert_timeout <= 0:
            raise ConfigurationError("cert_timeout", "must be positive")
        if self.max_workers < 1:
            raise ConfigurationError("max_workers", "must be at least 1")

        provider_class = providers.get_provider(self.dns_provider)
        self.zones = zone_utils.validate_zones(self.zones)
        if provider_class.requires_zones and not self.zones:
            raise ConfigurationError("zones", f"the '{self.dns_provider}' DNS provider needs at least one zone")

        if self.write_bundle and not self.p12_password:
            raise ConfigurationError("p12_password", "required when write_bundle is enabled")

        discovers = bool(self.xc.namespaces or self.xc.discovery_file)
        if self.certificate is None and not discovers:
            raise ConfigurationError("certificate", "nothing to issue: configure a certificate or xc discovery")
        if self.certificate is not None and not self.certificate.domains:
            raise ConfigurationError("certificate.domains", "at least one domain is required")

        needs_xc = self.push_to_xc or bool(self.xc.namespaces) or self.dns_provider == "xc"
        if needs_xc and not self.xc.tenant_url and not self.dns_provider_config.get("tenant_url"):
            raise ConfigurationError("xc.tenant_url", "required for XC discovery, push or DNS")
        if (self.push_to_xc or self.xc.namespaces) and not self.xc.has_credentials:
            raise ConfigurationError("xc.api_token", "an API token or P12 credential is required")


def _resolve(value: Any, field_name: str, secrets_dir: Path | None) -> Any:
    if not isinstance(value, str):
        return value
    try:
        return utils.resolve_secret(value, secrets_dir)
    except OSError as e:
        raise ConfigurationError(field_name, str(e)) from None


def _path(value: str | None, base_dir: Path) -> Path | None:
    if not value:
        return None
    path = Path(value).expanduser()
    return path if path.is_absolute() else base_dir / path


def settings_from_dict(
    data: dict[str, Any], base_dir: Path = Path("."), secrets_dir: Path | None = None
) -> Settings:
    """
    Build Settings from parsed JSON.

    Relative paths are taken relative to base_dir. Unknown keys are an error.
    """
    known = {f.name for f in fields(Settings)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigurationError(unknown[0], "unknown setting")

    values = dict(data)

    for name in ("eab_kid", "eab_hmac_key", "p12_password"):
        if name in values:
            values[name] = _resolve(values[name], name, secrets_dir)

    values["dns_provider_config"] = {
        str(k): str(_resolve(v, f"dns_provider_config.{k}", secrets_dir))
        for k, v in (values.get("dns_provider_config") or {}).items()
    }

    for name in ("account_key_path", "state_file", "output_dir"):
        if name in values:
            values[name] = _path(values[name], base_dir)

    cert = values.pop("certificate", None)
    if cert is not None:
        values["certificate"] = CertificateSettings(
            domains=list(cert.get("domains") or []),
            key=cert.get("key") or STATIC_KEY,
            csr_path=_path(cert.get("csr_path"), base_dir),
        )

    xc_data = dict(values.pop("xc", None) or {})
    for name in ("api_token", "p12_password"):
        if name in xc_data:
            xc_data[name] = _resolve(xc_data[name], f"xc.{name}", secrets_dir)
    if xc_data.get("p12_path"):
        xc_data["p12_path"] = str(_path(xc_data["p12_path"], base_dir))
    if xc_data.get("discovery_file"):
        xc_data["discovery_file"] = _path(xc_data["discovery_file"], base_dir)
    for name in ("namespaces", "domain_filter"):
        if isinstance(xc_data.get(name), str):
            xc_data[name] = [item.strip() for item in xc_data[name].split(",") if item.strip()]
    try:
        values["xc"] = XcSettings(**xc_data)
    except TypeError as e:
        raise ConfigurationError("xc", str(e)) from None

    return Settings(**values)


def load_settings(path: Path, secrets_dir: Path | None = None) -> Settings:
    """
    Load and validate settings from a JSON file.

    Raises:
        ConfigurationError: If the file is missing, malformed or invalid.
    """
    try:
        data = json.loads(path.read_text())
    except FileNotFoundError:
        raise ConfigurationError("config", f"configuration file not found: {path}") from None
    except ValueError as e:
        raise ConfigurationError("config", f"{path} is not valid JSON: {e}") from None

    if not isinstance(data, dict):
        raise ConfigurationError("config", f"{path} must contain a JSON object")

    settings = settings_from_dict(data, base_dir=path.parent, secrets_dir=secrets_dir)
    settings.validate()
    logger.debug(f"Loaded settings from {path}")
    return settings
