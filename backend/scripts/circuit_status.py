"""Inspect or reset the Gemini circuit breaker stored for one add-on user."""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--user-key", required=True, help="Per-user namespace (sha256 prefix of the token subject).")
    parser.add_argument("--reset", action="store_true", help="Clear all circuit breaker keys for the user.")
    parser.add_argument("--dry-run", action="store_true", help="With --reset, print what would be cleared.")
    parser.add_argument("--verbose", action="store_true", help="Print the full snapshot as JSON.")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    root = Path(__file__).resolve().parents[1]
    if str(root) not in sys.path:
        sys.path.insert(0, str(root))

    from mailwright.api.deps import build_user_services, get_property_store
    from mailwright.core.config import get_settings
    from mailwright.services.property_store import ScopedPropertyStore

    args = _parse_args(argv)
    try:
        store = ScopedPropertyStore(get_property_store(), args.user_key)
    except RuntimeError as exc:
        print(str(exc))
        return 1
    _, breaker, _ = build_user_services(store, get_settings())
    snapshot = breaker.snapshot()

    if args.verbose:
        print(
            json.dumps(
                {
                    "user_key": args.user_key,
                    "state": snapshot.state.value,
                    "failure_count": snapshot.failure_count,
                    "time_until_retry_ms": snapshot.time_until_retry_ms,
                    "last_failure_epoch_ms": snapshot.last_failure_epoch_ms,
                    "last_success_epoch_ms": snapshot.last_success_epoch_ms,
                },
                indent=2,
            )
        )
    else:
        print(f"state={snapshot.state.value} failures={snapshot.failure_count}")
        if snapshot.time_until_retry_ms:
            print(breaker.open_error_message())

    if args.reset:
        if args.dry_run:
            print("DRY RUN: circuit breaker keys would be cleared")
            return 0
        breaker.reset()
        print("Circuit breaker reset")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
