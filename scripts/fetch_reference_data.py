from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path

from maa_flow.config.settings import get_settings
from maa_flow.reference import ReferenceRepository


def _parse_args() -> argparse.Namespace:
    settings = get_settings()
    parser = argparse.ArgumentParser(
        description="Download item and operator reference tables into the local resource cache."
    )
    parser.add_argument(
        "--resource-dir",
        type=Path,
        default=settings.resolved_reference_dir(),
        help="Directory the tables are cached in (default: engine resource dir).",
    )
    parser.add_argument(
        "--remote-base",
        type=str,
        default=settings.reference_remote_base,
        help="Base URL of the resource mirror.",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=settings.reference_timeout_s,
        help="Per-request timeout in seconds.",
    )
    return parser.parse_args()


def main() -> None:
    args = _parse_args()
    logging.basicConfig(level=get_settings().log_level.upper())
    if not args.remote_base:
        raise SystemExit("A remote base URL is required (--remote-base or MAA_FLOW_REFERENCE_REMOTE_BASE).")

    repository = ReferenceRepository(
        args.resource_dir,
        remote_base=args.remote_base,
        timeout_s=args.timeout,
    )
    counts = repository.refresh(force_remote=True)
    print(json.dumps({"resource_dir": str(args.resource_dir), **counts}, indent=2))


if __name__ == "__main__":
    main()
