from __future__ import annotations

import os
import sys
from pathlib import Path


def main() -> int:
    os.environ.setdefault("APP_ENV", "production")
    root = Path(__file__).resolve().parents[1]
    if str(root) not in sys.path:
        sys.path.insert(0, str(root))
    try:
        from mailwright.core.config import Settings

        settings = Settings()
    except Exception as exc:  # noqa: BLE001
        print(str(exc))
        return 1
    print(f"app_env={settings.app_env} property_store={settings.property_store_backend}")
    print(
        "gemini retries={} base_delay_ms={} max_total_wait_ms={}".format(
            settings.gemini_retry_attempts,
            settings.gemini_retry_base_delay_ms,
            settings.gemini_retry_max_total_wait_ms,
        )
    )
    print(f"circuit threshold={settings.circuit_failure_threshold} reset_timeout_ms={settings.circuit_reset_timeout_ms}")
    print("CONFIG VALID")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
