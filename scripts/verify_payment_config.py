#!/usr/bin/env python3
"""
Check that the payment providers and the order/payment tables are ready.

Database URL priority:
  1) DB_URL or SQLALCHEMY_DATABASE_URL (environment)
  2) the application's configured SQLALCHEMY_DATABASE_URL

Usage:
  python scripts/verify_payment_config.py

Exit codes: 0 ready, 1 something is missing, 3 engine could not be created.
"""
from __future__ import annotations

import os
import sys

from sqlalchemy import create_engine
from sqlalchemy.exc import ArgumentError

# Resolve the backend package relative to the repo root so the script can be run from anywhere
here = os.path.dirname(os.path.abspath(__file__))
sys.path.insert(0, os.path.abspath(os.path.join(here, "..", "backend")))

from marketplace.core.config import load_settings  # noqa: E402
from marketplace.services.payment_config_check import mask_url, run_checks  # noqa: E402


def main() -> int:
    settings = load_settings()
    url = os.getenv("DB_URL") or os.getenv("SQLALCHEMY_DATABASE_URL") or settings.SQLALCHEMY_DATABASE_URL
    print(f"Database URL: {mask_url(url)}")
    try:
        engine = create_engine(url, pool_pre_ping=True)
    except ArgumentError as exc:
        print(f"Could not create engine: {exc}")
        return 3

    try:
        report = run_checks(settings, engine)
    finally:
        engine.dispose()

    for line in report.lines():
        print(line)
    print("ready" if report.ok else "NOT ready")
    return 0 if report.ok else 1


if __name__ == "__main__":
    raise SystemExit(main())
