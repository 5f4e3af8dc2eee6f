# propflow/cli/__main__.py
from __future__ import annotations

import argparse

from propflow.db import SessionLocal, init_db
from propflow.logging_config import configure_logging
from propflow.services.eviction_service import EvictionService
from propflow.services.rent_automation import RentAutomationService


def main(argv: list[str] | None = None) -> None:
    p = argparse.ArgumentParser(prog="propflow")
    sub = p.add_subparsers(dest="cmd", required=True)
    sub.add_parser("init-db", help="create tables")
    sub.add_parser("sweep-evictions", help="expire open notices past their deadline")
    sub.add_parser("rent-check", help="overdue marking, late fees and reminders")
    args = p.parse_args(argv)

    configure_logging()

    if args.cmd == "init-db":
        init_db()
        print({"ok": True, "cmd": args.cmd})
        return

    db = SessionLocal()
    try:
        if args.cmd == "sweep-evictions":
            processed = EvictionService(db).process_expired_notices()
            print({"ok": True, "cmd": args.cmd, "processed": processed})
        else:
            result = RentAutomationService(db).run_daily_check()
            print({"ok": True, "cmd": args.cmd, **result.to_dict()})
    finally:
        db.close()


if __name__ == "__main__":
    main()
