#!/usr/bin/env python3
"""
Command-line interface for ACME certificates on F5 Distributed Cloud.
"""

import argparse
import logging
import os
import sys
from pathlib import Path

from acme_xc_certificates import discovery, utils, xc
from acme_xc_certificates.config import load_settings
from acme_xc_certificates.core import AcmeXcManager
from acme_xc_certificates.exceptions import AcmeXcError
from acme_xc_certificates.providers import XcDnsProvider

logger = logging.getLogger(__name__)

USER_AGENT = "acme-xc-certificates-cli"
DEFAULT_DISCOVERY_FILE = "certificates.auto.tfvars.json"


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """
    Parses command-line arguments.

    Returns:
        argparse.Namespace: The parsed arguments.
    """
    parser = argparse.ArgumentParser(
        prog="acme-xc",
        description="ACME DNS-01 certificates for F5 Distributed Cloud load balancers",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Issue or renew everything that is due
  %(prog)s run -c config.json

  # Try it against the Let's Encrypt staging directory, without pushing to XC
  %(prog)s run -c config.json --dry-run

  # List load balancers that need a certificate
  %(prog)s discover -c config.json -o certificates.auto.tfvars.json

  # DNS hook for an external ACME client (reads XC_* environment variables)
  %(prog)s dns-hook present _acme-challenge.app.example.com. <token>
""",
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("-v", "--verbose", action="store_true", help="Enable verbose logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", parents=[common], help="Issue and deliver certificates that are due")
    run_parser.add_argument("-c", "--config", required=True, type=Path, help="Path to the JSON configuration")
    run_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Use the ACME staging environment and skip writes to the XC API",
    )

    discover_parser = subparsers.add_parser("discover", parents=[common], help="Write the discovered load balancers as JSON")
    discover_parser.add_argument("-c", "--config", required=True, type=Path, help="Path to the JSON configuration")
    discover_parser.add_argument(
        "-o", "--output", type=Path, default=Path(DEFAULT_DISCOVERY_FILE), help="Output file"
    )

    hook = subparsers.add_parser("dns-hook", parents=[common], help="Present or clean up one TXT record in XC DNS")
    hook.add_argument("action", choices=["present", "cleanup"])
    hook.add_argument("fqdn", help='Record name, e.g. "_acme-challenge.example.com."')
    hook.add_argument("token", help="TXT value")
    hook.add_argument("domain", nargs="?", default="", help="Domain being validated (informational)")

    return parser.parse_args(argv)


def configure_logging(verbose: bool) -> None:
    """
    Configures the logging settings based on the verbosity level.

    Args:
        verbose: If True, enable DEBUG logging; otherwise INFO.
    """
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level, format="%(asctime)s [%(levelname)s] %(message)s", datefmt="%Y-%m-%d %H:%M:%S"
    )


def get_xc_token(name: str = "XC_API_TOKEN") -> str:
    """
    Get the XC API token from Docker secrets or the environment.

    Raises:
        ValueError: If the token is not found or empty.
    """
    try:
        token = utils.get_env_secrets(name)
    except OSError:
        token = None

    if not token or not token.strip():
        raise ValueError(
            f"{name} not found. Please set it as an environment variable:\n"
            f"  export {name}='your-token-here'\n"
            "Or pass it via Docker secrets."
        )

    token = token.strip()
    logger.debug(f"Using XC token: {token[:8]}...")
    return token


def provider_from_env() -> XcDnsProvider:
    """Build the XC DNS backend from XC_TENANT_URL, XC_API_TOKEN, XC_DNS_ZONES and XC_GROUP_NAME."""
    tenant_url = os.getenv("XC_TENANT_URL", "")
    zones = [z.strip() for z in os.getenv("XC_DNS_ZONES", "").split(",") if z.strip()]

    if not tenant_url:
        raise ValueError("XC_TENANT_URL is not set")
    if not zones:
        raise ValueError("XC_DNS_ZONES is not set")

    client = xc.XcClient(tenant_url, api_token=get_xc_token())
    client.add_headers({"User-Agent": USER_AGENT})
    return XcDnsProvider(client, zones, group_name=os.getenv("XC_GROUP_NAME", xc.DEFAULT_GROUP_NAME))


def dns_hook(action: str, fqdn: str, token: str) -> int:
    """
    Present or clean up one challenge record.

    Returns:
        int: 0 on success and on any cleanup failure, 1 if present failed.
    """
    try:
        with provider_from_env() as provider:
            if action == "present":
                provider.present(fqdn, token)
            else:
                provider.cleanup(fqdn, token)
    except (AcmeXcError, ValueError) as e:
        if action == "cleanup":
            logger.warning(f"Cleanup of {fqdn} failed, ignoring: {e}")
            return 0
        logger.error(str(e))
        return 1

    logger.info(f"{action} {fqdn}: OK")
    return 0


def run(config_path: Path, dry_run: bool) -> int:
    """Full batch run. Returns 0 only if every certificate succeeded or was skipped."""
    settings = load_settings(config_path)

    if dry_run:
        logger.warning("=" * 60)
        logger.warning("DRY-RUN MODE ENABLED")
        logger.warning("  - Using ACME staging environment")
        logger.warning("  - Certificates will NOT be trusted by browsers")
        logger.warning("  - Nothing is written to the XC API except challenge records")
        logger.warning("=" * 60)

    with AcmeXcManager(settings, dry_run=dry_run, user_agent=USER_AGENT) as manager:
        results = manager.run()

    logger.info("=" * 60)
    logger.info("Certificate Summary:")

    failed = []
    for result in results:
        if result.skipped:
            logger.info(f"  - {result.key}: SKIPPED (valid until {result.not_after:%Y-%m-%d})")
        elif result.success:
            logger.info(f"  ✓ {result.key}: ISSUED")
        else:
            logger.error(f"  ✗ {result.key}: FAILED")
            if result.error_message:
                logger.error(f"    Error: {result.error_message}")
            failed.append(result.key)

    if failed:
        logger.error("=" * 60)
        logger.error(f"Failed to issue {len(failed)} certificate(s): {', '.join(failed)}")
        return 1

    logger.info("=" * 60)
    logger.info(f"All {len(results)} certificate(s) up to date")
    return 0


def discover(config_path: Path, output_path: Path) -> int:
    settings = load_settings(config_path)
    if not settings.xc.namespaces:
        logger.error("No XC namespaces configured (xc.namespaces)")
        return 1

    with AcmeXcManager(settings, user_agent=USER_AGENT) as manager:
        targets = manager.discover()

    discovery.write_discovery(output_path, targets)
    return 0


def main(argv: list[str] | None = None) -> int:
    """
    Main entry point for the CLI.

    Returns:
        int: Exit code (0 for success, 1 for failure, 130 when interrupted).
    """
    args = parse_args(argv)
    configure_logging(args.verbose)

    try:
        if args.command == "dns-hook":
            return dns_hook(args.action, args.fqdn, args.token)
        if args.command == "discover":
            return discover(args.config, args.output)
        return run(args.config, args.dry_run)

    except AcmeXcError as e:
        logger.error(str(e))
        return 1
    except ValueError as e:
        logger.error(str(e))
        return 1
    except KeyboardInterrupt:
        logger.warning("\nOperation cancelled by user")
        return 130
    except Exception as e:
        logger.exception("Unexpected error: %s", e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
