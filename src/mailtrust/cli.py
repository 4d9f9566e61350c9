#!/usr/bin/env python3
"""
Command-line interface for mailtrust.

Usage:
    mailtrust [OPTIONS] COMMAND [ARGS]

Commands:
    lookup DOMAIN        Discover a domain's current email DNS posture
    check DOMAIN         Run the six health checks against a domain
    dkim-record DOMAIN   Generate a DKIM key pair and its TXT record
    gen-secret           Generate a vault encryption key
    health               Probe the configured upstream services
    schedule DOMAIN...   Re-verify domains on the configured interval

Every command prints JSON to stdout; logs go to stderr.
"""

import argparse
import asyncio
import json
import logging
import signal
import sys
from typing import Any, Optional

from mailtrust import __version__
from mailtrust.common.config import LoggingSettings, Settings, get_settings
from mailtrust.common.exceptions import MailTrustError
from mailtrust.common.models import DkimAlgorithm, Domain, HealthStatus
from mailtrust.common.storage import MemoryStorage
from mailtrust.crypto.dkim import build_dns_record, dkim_record_name
from mailtrust.crypto.vault import SecretVault, generate_key
from mailtrust.discovery.scanner import DiscoveryScanner
from mailtrust.dkim.manager import DkimLifecycleManager
from mailtrust.dns.resolver import DNSResolver, validate_hostname
from mailtrust.health.engine import DomainVerificationEngine
from mailtrust.health.scheduler import HealthCheckScheduler
from mailtrust.health.upstream import STATUS_UP, UpstreamHealthChecker

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_UNHEALTHY = 2


def setup_logging(config: LoggingSettings, debug: bool = False) -> None:
    """
    Configure the root logger.

    Args:
        config: Logging settings (level, format, optional file).
        debug: Force DEBUG level.
    """
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if config.file:
        handlers.append(logging.FileHandler(config.file))

    logging.basicConfig(
        level=logging.DEBUG if debug else getattr(logging, config.level),
        format=config.format,
        handlers=handlers,
        force=True,
    )

    if not debug:
        for noisy in ("urllib3", "botocore", "boto3"):
            logging.getLogger(noisy).setLevel(logging.WARNING)


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """
    Parse command-line arguments.

    Returns:
        Parsed arguments namespace.
    """
    parser = argparse.ArgumentParser(
        prog="mailtrust",
        description="mailtrust - DKIM, DNS publishing and domain health tooling",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    Inspect a domain before onboarding:
        mailtrust lookup example.com

    Generate an Ed25519 DKIM record:
        mailtrust dkim-record example.com --algorithm ED25519

Environment Variables:
    MAILTRUST_CONFIG_FILE       TOML configuration file
    MAILTRUST_ENCRYPTION_KEY    Vault key (see gen-secret)
    DNS_NAMESERVERS             Comma-separated resolver addresses
    UPSTREAM_SERVICES           name=url pairs probed by `health`
        """,
    )

    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    parser.add_argument("--config", metavar="PATH", help="TOML configuration file")
    parser.add_argument("--version", action="version", version=f"mailtrust {__version__}")

    subparsers = parser.add_subparsers(dest="command", required=True)

    lookup = subparsers.add_parser("lookup", help="Discover a domain's email DNS records")
    lookup.add_argument("domain")

    check = subparsers.add_parser("check", help="Run health checks against a domain")
    check.add_argument("domain")

    dkim = subparsers.add_parser("dkim-record", help="Generate a DKIM key and TXT record")
    dkim.add_argument("domain")
    dkim.add_argument(
        "--algorithm",
        choices=[a.value for a in DkimAlgorithm],
        default=DkimAlgorithm.RSA_2048.value,
        help="Key algorithm (default: RSA_2048)",
    )
    dkim.add_argument("--selector", help="Selector to use instead of a generated one")

    subparsers.add_parser("gen-secret", help="Generate a vault encryption key")
    subparsers.add_parser("health", help="Probe configured upstream services")

    schedule = subparsers.add_parser(
        "schedule", help="Re-verify domains periodically until interrupted"
    )
    schedule.add_argument("domains", nargs="+", metavar="DOMAIN")

    return parser.parse_args(argv)


def load_settings(path: Optional[str]) -> Settings:
    if path:
        return Settings.from_toml(path)
    return get_settings()


def _emit(payload: Any) -> None:
    print(json.dumps(payload, indent=2, default=str))


def cmd_lookup(args: argparse.Namespace, settings: Settings) -> int:
    scanner = DiscoveryScanner(MemoryStorage(), DNSResolver.from_settings(settings))
    _emit(scanner.lookup_domain(args.domain).to_dict())
    return EXIT_OK


def cmd_check(args: argparse.Namespace, settings: Settings) -> int:
    storage = MemoryStorage()
    domain = storage.save_domain(Domain(name=validate_hostname(args.domain)))
    engine = DomainVerificationEngine(storage, DNSResolver.from_settings(settings))
    records = engine.verify_domain(domain.id)
    domain = storage.require_domain(domain.id)

    _emit({
        "domain": domain.name,
        "status": domain.status,
        "checks": [
            {"check_type": r.check_type, "status": r.status, "message": r.message}
            for r in records
        ],
    })
    return EXIT_UNHEALTHY if any(r.status == HealthStatus.ERROR for r in records) else EXIT_OK


def cmd_dkim_record(args: argparse.Namespace, settings: Settings) -> int:
    vault = SecretVault(settings.encryption.key or generate_key())
    storage = MemoryStorage()
    domain = storage.save_domain(Domain(name=validate_hostname(args.domain)))
    manager = DkimLifecycleManager(storage, vault)

    result = manager.generate_key_pair(
        domain.id, algorithm=args.algorithm, selector_override=args.selector
    )
    key = storage.get_dkim_key(result.key.id)

    _emit({
        "selector": key.selector,
        "algorithm": key.algorithm,
        "record_name": dkim_record_name(key.selector, domain.name),
        "record_type": "TXT",
        "record_value": build_dns_record(key.algorithm, key.public_key),
        "private_key": vault.decrypt(key.encrypted_private_key),
    })
    return EXIT_OK


def cmd_gen_secret(args: argparse.Namespace, settings: Settings) -> int:
    _emit({"MAILTRUST_ENCRYPTION_KEY": generate_key()})
    return EXIT_OK


def cmd_health(args: argparse.Namespace, settings: Settings) -> int:
    report = UpstreamHealthChecker.from_settings(settings).check()
    _emit(report.to_dict())
    return EXIT_OK if report.status == STATUS_UP else EXIT_UNHEALTHY


async def _run_scheduler(scheduler: HealthCheckScheduler) -> None:
    loop = asyncio.get_running_loop()

    def request_stop(signum: int) -> None:
        logger.info("Received %s, initiating graceful shutdown...", signal.Signals(signum).name)
        loop.create_task(scheduler.stop())

    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, request_stop, signum)

    await scheduler.start()


def cmd_schedule(args: argparse.Namespace, settings: Settings) -> int:
    storage = MemoryStorage()
    for name in args.domains:
        storage.save_domain(Domain(name=validate_hostname(name)))
    engine = DomainVerificationEngine(storage, DNSResolver.from_settings(settings))

    scheduler = HealthCheckScheduler.from_settings(engine, settings)
    if scheduler is None:
        _emit({"scheduler": "disabled"})
        return EXIT_OK

    asyncio.run(_run_scheduler(scheduler))

    report = scheduler.last_report
    _emit({
        "runs": scheduler.runs,
        "domains": [
            {
                "domain": d.name,
                "status": d.status,
                "last_health_check": d.last_health_check,
            }
            for d in storage.list_domains()
        ],
        "failed": report.failed if report else {},
    })
    return EXIT_OK


COMMANDS = {
    "lookup": cmd_lookup,
    "check": cmd_check,
    "dkim-record": cmd_dkim_record,
    "gen-secret": cmd_gen_secret,
    "health": cmd_health,
    "schedule": cmd_schedule,
}


def main(argv: Optional[list[str]] = None) -> int:
    """
    Main entry point.

    Returns:
        Exit code: 0 on success, 1 on error, 2 when checks report problems.
    """
    args = parse_args(argv)

    try:
        settings = load_settings(args.config)
    except MailTrustError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return EXIT_ERROR

    setup_logging(settings.logging, debug=args.debug or settings.debug)
    logger.debug("mailtrust %s running '%s'", __version__, args.command)

    try:
        return COMMANDS[args.command](args, settings)

    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return EXIT_ERROR

    except MailTrustError as e:
        logger.error("%s", e.message)
        _emit({"error": {"type": type(e).__name__, "message": e.message, "details": e.details}})
        return EXIT_ERROR


if __name__ == "__main__":
    sys.exit(main())
