"""``kmscert issue``: issue a self-signed certificate for a custody key."""

from __future__ import annotations

import contextlib
import logging
import sys
from pathlib import Path

from kmscert.cli.output import (
    EXIT_ISSUANCE_FAILED,
    EXIT_OK,
    print_error,
    report_failure,
    write_atomic,
)
from kmscert.errors import IssuanceError

log = logging.getLogger(__name__)


def run_issue(config, args) -> int:
    """Validate inputs, issue, and write the certificate.

    Without ``--out-pem`` or ``--out-der`` the PEM is written to stdout.
    Files are only written once issuance has fully succeeded, and a
    failed write removes any file this run already wrote.
    """
    from kmscert.cert import issue_certificate  # noqa: PLC0415
    from kmscert.cli.commands.custody import load_configured_custody  # noqa: PLC0415
    from kmscert.models import DistinguishedName, IssuanceRequest  # noqa: PLC0415

    cert_settings = config.settings.certificate
    years = args.years if args.years is not None else cert_settings.default_validity_years

    try:
        # Name validation runs before the custody backend is touched
        subject = DistinguishedName(
            country=args.country,
            state=args.state,
            locality=args.locality,
            organization=args.organization,
            common_name=args.common_name,
        )
        request = IssuanceRequest(
            subject=subject,
            years=years,
            key_id=args.key_id,
            email=args.email,
        )
        custody = load_configured_custody(config)
        issued = issue_certificate(request, custody, settings=cert_settings)
    except IssuanceError as exc:
        return report_failure(exc)

    outputs = []
    if args.out_der:
        outputs.append((Path(args.out_der), issued.der))
    if args.out_pem:
        outputs.append((Path(args.out_pem), issued.pem.encode("ascii")))

    written: list[Path] = []
    try:
        for path, data in outputs:
            write_atomic(path, data)
            written.append(path)
            log.info("Wrote %s", path)
    except OSError as exc:
        # All requested files or none of them
        for path in written:
            with contextlib.suppress(FileNotFoundError):
                path.unlink()
            log.info("Removed %s after failed write", path)
        print_error(f"cannot write certificate: {exc}")
        return EXIT_ISSUANCE_FAILED

    if not outputs:
        sys.stdout.write(issued.pem)

    print(
        f"Issued certificate serial={issued.serial_hex} "
        f"not_after={issued.not_after.isoformat()} sha256={issued.fingerprint}",
        file=sys.stderr,
    )
    return EXIT_OK
