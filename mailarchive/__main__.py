"""Entry point for the mail archive.

Usage::

    python -m mailarchive load [max-messages]   # one session, JSON report on stdout
    python -m mailarchive check [source-name]   # unseen counts or error kinds
    python -m mailarchive serve                 # periodic sessions + /health
"""

from __future__ import annotations

import asyncio
import json
import sys

USAGE = "Usage: python -m mailarchive <load [max-messages]|check [source-name]|serve>"


def main() -> None:
    if len(sys.argv) < 2 or sys.argv[1] not in ("load", "check", "serve"):
        print(USAGE, file=sys.stderr)
        sys.exit(1)

    from .config import ArchiveConfig
    from .logging import setup_logging
    from .models import ConnectionErrorKind, SessionState
    from .service import ArchiveService

    mode = sys.argv[1]
    argument = sys.argv[2] if len(sys.argv) > 2 else None

    config = ArchiveConfig()
    setup_logging(json=config.log_json, level=config.log_level, service="mailarchive")
    service = ArchiveService(config)

    if mode == "load":
        try:
            max_messages = int(argument) if argument is not None else None
        except ValueError:
            print(USAGE, file=sys.stderr)
            sys.exit(1)
        report = asyncio.run(service.load(max_messages))
        print(report.model_dump_json(indent=2))
        if report.state is SessionState.FAILED or report.already_in_progress:
            sys.exit(1)

    elif mode == "check":
        try:
            results = asyncio.run(service.check(argument))
        except KeyError as exc:
            print(exc.args[0], file=sys.stderr)
            sys.exit(1)
        print(json.dumps(
            {name: r.value if isinstance(r, ConnectionErrorKind) else r for name, r in results.items()},
            indent=2,
        ))
        if any(isinstance(r, ConnectionErrorKind) for r in results.values()):
            sys.exit(1)

    elif mode == "serve":
        asyncio.run(service.serve())


if __name__ == "__main__":
    main()
