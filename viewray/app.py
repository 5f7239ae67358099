"""Command line entry point for the ViewRay client."""

from __future__ import annotations

import argparse
import logging
import sys
from typing import Sequence, TextIO

from pydantic import ValidationError

from .client import ViewRayClient
from .config import AppConfig, load_config
from .session import PatientMap

LOG = logging.getLogger(__name__)

SEPARATOR = "============================================"


def _load_app_config() -> AppConfig:
    """Load configuration with a small wrapper for future overrides."""

    return load_config()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="viewray",
        description="Retrieve the patient list from a ViewRay server.",
    )
    parser.add_argument("--address", help="websocket address of the server (ws://host:port)")
    parser.add_argument(
        "--connect-timeout",
        type=float,
        help="seconds to wait for the connection to open (default: wait indefinitely)",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        dest="fetch_timeout",
        help="seconds to wait for the full patient list (default: wait indefinitely)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="enable debug logging")
    return parser


def configure_logging(level: str, *, verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else getattr(logging, level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if not verbose:
        logging.getLogger("websockets").setLevel(logging.WARNING)


def print_patients(patients: PatientMap, out: TextIO) -> None:
    for patient in patients.values():
        out.write(patient.describe())
        out.write(f"\n{SEPARATOR}\n")


def main(argv: Sequence[str] | None = None, *, out: TextIO | None = None) -> int:
    """Fetch and print the patient list; returns the process exit status."""

    out = out or sys.stdout
    args = build_parser().parse_args(argv)
    try:
        config = _load_app_config().with_overrides(
            address=args.address,
            connect_timeout=args.connect_timeout,
            fetch_timeout=args.fetch_timeout,
        )
    except ValidationError as exc:
        print(f"invalid configuration: {exc}", file=sys.stderr)
        return 2
    configure_logging(config.log_level, verbose=args.verbose)

    client = ViewRayClient(config.address, connect_timeout=config.connect_timeout)
    client.init()
    try:
        result = client.get_patient_list(timeout=config.fetch_timeout)
    finally:
        client.shutdown()

    if result.error is not None:
        LOG.debug("Retrieval from %s failed", config.address, exc_info=result.error)
        print(f"error: {result.error}", file=sys.stderr)
        return result.error.kind.exit_code
    print_patients(result.unwrap(), out)
    return 0


def run() -> None:
    """Console script wrapper."""

    sys.exit(main())


if __name__ == "__main__":
    run()
