from __future__ import annotations

import argparse
import json
import sys
from datetime import datetime, timezone

from quell.clock import isoformat_z
from quell.config import load_settings
from quell.keys import fingerprint
from quell.notifiers import MemoryNotifier
from quell.store import SQLiteStore
from quell.throttler import ErrorThrottler


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="quell")
    parser.add_argument("--db", default="quell.db", help="Path to quell SQLite store")
    parser.add_argument("--namespace", default=None, help="Key namespace (defaults to QUELL_NAMESPACE or 'quell')")
    parser.add_argument("--compact", action="store_true", help="Emit compact JSON without pretty indentation")

    sub = parser.add_subparsers(dest="cmd", required=True)

    sub.add_parser("tracked", help="List identities currently under throttling")
    p_status = sub.add_parser("status", help="Show marker, counters and affected users for one identity")
    p_status.add_argument("key")
    p_fp = sub.add_parser("fingerprint", help="Print the automatic identity for an error type and message")
    p_fp.add_argument("--type", dest="error_type", required=True)
    p_fp.add_argument("--message", default="")
    sub.add_parser("purge", help="Delete expired entries from the store")

    return parser


class _NamedError(Exception):
    pass


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.compact:
        encoder = lambda obj: json.dumps(obj, default=str)
    else:
        encoder = lambda obj: json.dumps(obj, indent=2, default=str)

    if args.cmd == "fingerprint":
        error_cls = type(args.error_type, (_NamedError,), {})
        print(encoder({"key": fingerprint(error_cls(args.message))}))
        return 0

    overrides = {"namespace": args.namespace} if args.namespace else {}
    settings = load_settings(**overrides)
    store = SQLiteStore(args.db)
    throttler = ErrorThrottler(MemoryNotifier(), store, settings=settings)

    if args.cmd == "tracked":
        tracked = throttler.capacity.live_tracked()
        print(
            encoder(
                {
                    "count": len(tracked),
                    "max_tracked_errors": settings.max_tracked_errors,
                    "tracked": [
                        {
                            "key": identity,
                            "expires_at": isoformat_z(datetime.fromtimestamp(expiry, tz=timezone.utc)),
                        }
                        for identity, expiry in sorted(tracked.items())
                    ],
                }
            )
        )
        return 0
    if args.cmd == "status":
        print(encoder(throttler.status(args.key)))
        return 0
    if args.cmd == "purge":
        print(encoder({"purged": store.purge_expired()}))
        return 0

    parser.print_help(sys.stderr)
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
