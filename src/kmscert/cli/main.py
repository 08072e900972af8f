"""kmscert command-line entry point.

Usage::

    kmscert -c config.yaml --validate-only
    kmscert -c config.yaml issue --key-id robot-1 --country GB --state Manchester \\
        --organization "ACME Certificates Inc." --common-name "Robot Certificate 1"
    kmscert -c config.yaml custody check --key-id robot-1
    kmscert -c config.yaml custody test-sign --key-id robot-1
    kmscert -c config.yaml inspect robot.pem
    python -m kmscert -c config.yaml issue ...

Exit codes: 0 success, 1 configuration or usage error, 2 issuance
failure, 3 retryable failure.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from kmscert.cli.output import EXIT_CONFIG, EXIT_OK, print_error

log = logging.getLogger(__name__)


def _get_version() -> str:
    from kmscert import __version__  # noqa: PLC0415

    return __version__


class _ArgumentParser(argparse.ArgumentParser):
    """Exit with the usage-error code instead of argparse's default 2."""

    def error(self, message: str) -> None:  # type: ignore[override]
        self.print_usage(sys.stderr)
        print_error(message)
        sys.exit(EXIT_CONFIG)


def _build_parser() -> argparse.ArgumentParser:
    parser = _ArgumentParser(
        prog="kmscert",
        description="Self-signed X.509 certificates for keys held in a key custody service",
    )
    parser.add_argument(
        "-c",
        "--config",
        required=True,
        metavar="PATH",
        help="YAML or JSON configuration file.",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        default=False,
        help="Log at DEBUG level.",
    )
    parser.add_argument(
        "--validate-only",
        action="store_true",
        default=False,
        help="Check the configuration, print a summary and exit.",
    )
    parser.add_argument(
        "-v",
        "--version",
        action="version",
        version=f"%(prog)s {_get_version()}",
    )

    subparsers = parser.add_subparsers(dest="command")

    # issue
    issue = subparsers.add_parser("issue", help="Issue a self-signed certificate")
    issue.add_argument("--key-id", required=True, help="Custody key identifier")
    issue.add_argument("--country", required=True, help="Two-letter country code (C)")
    issue.add_argument("--state", required=True, help="State or province (ST)")
    issue.add_argument("--locality", default=None, help="Locality (L)")
    issue.add_argument("--organization", required=True, help="Organization (O)")
    issue.add_argument("--common-name", required=True, help="Common name (CN)")
    issue.add_argument("--email", default=None, help="Issuer alternative name (RFC 822)")
    issue.add_argument(
        "--years",
        type=int,
        default=None,
        help="Validity in whole years (default: certificate.default_validity_years)",
    )
    issue.add_argument("--out-der", metavar="PATH", default=None, help="Write DER here")
    issue.add_argument("--out-pem", metavar="PATH", default=None, help="Write PEM here")

    # custody
    custody = subparsers.add_parser("custody", help="Key custody backend checks")
    custody_sub = custody.add_subparsers(dest="custody_command")
    check = custody_sub.add_parser("check", help="Fetch and describe a custody key")
    check.add_argument("--key-id", required=True, help="Custody key identifier")
    test_sign = custody_sub.add_parser(
        "test-sign",
        help="Issue a throwaway certificate to exercise the signer",
    )
    test_sign.add_argument("--key-id", required=True, help="Custody key identifier")

    # inspect
    inspect_parser = subparsers.add_parser("inspect", help="Describe a certificate file")
    inspect_parser.add_argument("path", help="PEM or DER certificate")

    return parser


def main(argv: list[str] | None = None) -> None:
    """CLI entry point.  Parses arguments, loads config, runs a command."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    # -- config file ---
    config_path = Path(args.config)
    if not config_path.is_file():
        print_error(f"configuration file not found: {config_path}")
        sys.exit(EXIT_CONFIG)

    # -- plain stderr logging until the config says otherwise ---
    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.WARNING,
        format="%(levelname)s: %(message)s",
        stream=sys.stderr,
    )

    # -- load & validate config ---
    from kmscert.config import ConfigValidationError, KmscertConfig  # noqa: PLC0415

    try:
        config = KmscertConfig(config_file=config_path)
    except ConfigValidationError as exc:
        print_error(str(exc))
        sys.exit(EXIT_CONFIG)

    # -- replace bootstrap logging with configured logging ---
    from kmscert.logging import configure_logging  # noqa: PLC0415

    configure_logging(config.settings.logging)
    if args.debug:
        logging.getLogger("kmscert").setLevel(logging.DEBUG)

    if args.validate_only:
        _print_settings_summary(config)
        sys.exit(EXIT_OK)

    # -- dispatch subcommand ---
    command = args.command

    if command == "issue":
        from kmscert.cli.commands.issue import run_issue  # noqa: PLC0415

        code = run_issue(config, args)
    elif command == "custody":
        from kmscert.cli.commands.custody import run_custody  # noqa: PLC0415

        code = run_custody(config, args)
    elif command == "inspect":
        from kmscert.cli.commands.inspect import run_inspect  # noqa: PLC0415

        code = run_inspect(config, args)
    else:
        parser.print_help(sys.stderr)
        code = EXIT_CONFIG

    sys.exit(code)


def _print_settings_summary(config) -> None:
    """Print a short summary of the loaded configuration."""
    s = config.settings
    print(f"Configuration OK: {config.source}")
    print(f"  custody backend:     {s.custody.backend}")
    if s.custody.backend == "http":
        print(f"  custody url:         {s.custody.http.base_url}")
    elif s.custody.backend == "local":
        print(f"  key directory:       {s.custody.local.key_directory}")
    print(f"  default validity:    {s.certificate.default_validity_years} years")
    print(f"  max validity:        {s.certificate.max_validity_years} years")
    print(f"  serial bits:         {s.certificate.serial_bits}")
    print(f"  key sizes:           {', '.join(str(k) for k in s.certificate.allowed_key_sizes)}")
    print(f"  log level/format:    {s.logging.level}/{s.logging.format}")
