#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

ROOT_DIR = Path(__file__).resolve().parent.parent
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from commission_recon.config import load_role_table
from commission_recon.matching import run_matching


def parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Run demo matcher against local CSV data.")
    p.add_argument("--data-dir", type=Path, default=Path("data"))
    p.add_argument("--role-table", type=Path, default=None, help="Alternate role table YAML")
    p.add_argument("--output", type=Path, default=None, help="Optional path to write JSON output")
    p.add_argument("--verbose", action="store_true")
    return p.parse_args()


def main() -> None:
    args = parse_args()
    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    table = load_role_table(args.role_table) if args.role_table else None
    result = run_matching(args.data_dir, table)
    if args.output:
        args.output.parent.mkdir(parents=True, exist_ok=True)
        args.output.write_text(json.dumps(result, indent=2), encoding="utf-8")
    else:
        print(json.dumps(result["totals"], indent=2))


if __name__ == "__main__":
    main()
