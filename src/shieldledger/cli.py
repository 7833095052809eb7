"""
ShieldLedger CLI

Offline inspection of a ledger write-ahead log.

Commands:
    shieldledger verify --wal ledger.wal      Validate header, CRCs and hash chain
    shieldledger info --wal ledger.wal        Replay and print reserve totals and invariants
    shieldledger config --config ledger.yaml  Print the effective configuration

Exit Codes:
    0   PASS            Success
    10  INPUT_INVALID   Missing or invalid input
    12  VERIFY_FAIL     Log failed verification or an invariant does not hold
    20  INTERNAL_ERROR  Unexpected error
"""
from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Optional, Sequence

from . import __version__
from .config import load_config
from .exceptions import ConfigError, IntegrityFailError, LedgerError, NotFoundError
from .ledger import check_invariants
from .models import RESERVE_KEY, Reserve
from .store import LedgerStore
from .wal import WALError, WALReader


class ExitCode:
    """Deterministic exit codes for pipeline integration."""
    PASS = 0
    INPUT_INVALID = 10
    VERIFY_FAIL = 12
    INTERNAL_ERROR = 20


class Colors:
    """ANSI color codes for terminal output."""
    GREEN = '\033[92m'
    YELLOW = '\033[93m'
    RED = '\033[91m'
    BLUE = '\033[94m'
    BOLD = '\033[1m'
    END = '\033[0m'

    @classmethod
    def disable(cls):
        cls.GREEN = ''
        cls.YELLOW = ''
        cls.RED = ''
        cls.BLUE = ''
        cls.BOLD = ''
        cls.END = ''


def print_success(text: str):
    print(f"{Colors.GREEN}[OK] {text}{Colors.END}")


def print_error(text: str):
    print(f"{Colors.RED}[ERROR] {text}{Colors.END}", file=sys.stderr)


def print_warning(text: str):
    print(f"{Colors.YELLOW}[WARN] {text}{Colors.END}")


def print_info(text: str):
    print(f"{Colors.BLUE}[INFO] {text}{Colors.END}")


# =============================================================================
# Commands
# =============================================================================

def cmd_verify(args) -> int:
    """Validate a WAL without modifying it."""
    wal_path = Path(args.wal)
    if not wal_path.exists():
        print_error(f"WAL not found: {wal_path}")
        return ExitCode.INPUT_INVALID

    reader = WALReader(wal_path)
    try:
        header = reader.header
        last_sequence, last_hash = reader.validate()
        trailing = reader.trailing_bytes()
    except WALError as e:
        print_error(f"Verification failed: {e}")
        return ExitCode.VERIFY_FAIL

    print_info(f"Ledger: {header.ledger_id}")
    print_info(f"Records: {last_sequence + 1}")
    print_info(f"Head: {last_hash.hex()}")
    if trailing:
        print_warning(f"{trailing} bytes of torn tail will be truncated on next open")
    print_success("VERIFICATION: PASS")
    return ExitCode.PASS


def cmd_info(args) -> int:
    """Replay a WAL read-only and report reserve totals and invariants."""
    try:
        store = LedgerStore(wal_path=args.wal, read_only=True)
    except NotFoundError as e:
        print_error(e.message)
        return ExitCode.INPUT_INVALID
    except IntegrityFailError as e:
        print_error(f"Replay failed: {e.message}")
        return ExitCode.VERIFY_FAIL

    entities = list(store.snapshot().values())
    checks = check_invariants(entities)
    reserve = store.require(Reserve, RESERVE_KEY)
    report = {
        "commits": store.commit_count,
        "reserve": reserve.to_dict(),
        "surplus": reserve.surplus,
        "available_funds": reserve.available_funds,
        "counts": {
            kind: sum(1 for e in entities if e.kind == kind)
            for kind in ("account", "policy", "coverage", "claim")
        },
        "invariants": checks,
    }
    print(json.dumps(report, indent=2, sort_keys=True))

    if not all(checks.values()):
        failed = [name for name, ok in checks.items() if not ok]
        print_error(f"Invariants failed: {', '.join(failed)}")
        return ExitCode.VERIFY_FAIL
    return ExitCode.PASS


def cmd_config(args) -> int:
    """Print the effective configuration (file plus SL_* overrides)."""
    try:
        config = load_config(args.config)
    except ConfigError as e:
        print_error(e.message)
        for err in e.details.get("errors") or []:
            if isinstance(err, dict):
                print_error(f"  {'.'.join(str(p) for p in err.get('loc', []))}: {err.get('msg')}")
        return ExitCode.INPUT_INVALID

    print(config.model_dump_json(indent=2))
    return ExitCode.PASS


# =============================================================================
# Entry point
# =============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="shieldledger",
        description="ShieldLedger CLI - reserve and policy ledger inspection",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Exit Codes:
  0   PASS            Success
  10  INPUT_INVALID   Missing or invalid input
  12  VERIFY_FAIL     Verification failed
  20  INTERNAL_ERROR  Unexpected error

Examples:
  shieldledger verify --wal data/ledger.wal
  shieldledger info --wal data/ledger.wal
  shieldledger config --config config/ledger.example.yaml
        """,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--no-color", action="store_true", help="Disable colored output")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    verify_parser = subparsers.add_parser("verify", help="Validate a ledger WAL")
    verify_parser.add_argument("--wal", "-w", required=True, help="WAL file")
    verify_parser.set_defaults(func=cmd_verify)

    info_parser = subparsers.add_parser("info", help="Replay a WAL and print reserve totals")
    info_parser.add_argument("--wal", "-w", required=True, help="WAL file")
    info_parser.set_defaults(func=cmd_info)

    config_parser = subparsers.add_parser("config", help="Print the effective configuration")
    config_parser.add_argument("--config", "-c", help="YAML config file")
    config_parser.set_defaults(func=cmd_config)

    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.no_color or not sys.stdout.isatty():
        Colors.disable()

    if not args.command:
        parser.print_help()
        return ExitCode.INPUT_INVALID

    try:
        return args.func(args)
    except LedgerError as e:
        print_error(str(e))
        return ExitCode.INTERNAL_ERROR
    except Exception as e:
        print_error(f"Unexpected error: {e}")
        return ExitCode.INTERNAL_ERROR


if __name__ == "__main__":
    sys.exit(main())
