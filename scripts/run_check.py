#!/usr/bin/env python3
"""
Manual check runner for the Imunia alerts service.

Runs the stock expiration scan, the appointment reminder scan, or both,
once, and exits. Meant for cron, systemd timers or an operator shell.

Usage:
    python scripts/run_check.py stock
    python scripts/run_check.py appointments --dry-run
    python scripts/run_check.py all --env-file .env.production

Exit codes:
    0  every requested scan ran (per-entity errors are listed in the summary)
    1  a scan could not run (configuration or data access failure)
"""

import sys
import json
import argparse
from pathlib import Path

project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from imunia_alerts.config import load_settings  # noqa: E402
from imunia_alerts.main import AlertsApplication  # noqa: E402


def main() -> int:
    parser = argparse.ArgumentParser(description="Run Imunia alert checks once")
    parser.add_argument("check", choices=["stock", "appointments", "all"], help="Which check to run")
    parser.add_argument("--env-file", help="Path to a .env file")
    parser.add_argument("--dry-run", action="store_true", help="Simulate notifications")
    args = parser.parse_args()

    try:
        settings = load_settings(args.env_file)
    except Exception as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    app = AlertsApplication(settings, dry_run=args.dry_run)

    runs = []
    if args.check in ("stock", "all"):
        runs.append(("stock_expiration", app.run_stock_check))
    if args.check in ("appointments", "all"):
        runs.append(("appointment_reminder", app.run_appointment_check))

    exit_code = 0
    report = {}
    try:
        for name, run in runs:
            summary = run()
            if summary is None:
                report[name] = {"failed": True}
                exit_code = 1
            else:
                report[name] = summary.to_dict()
    finally:
        app.container.shutdown()

    print(json.dumps(report, indent=2, default=str))
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
