from __future__ import annotations

import argparse
import subprocess
import sys
from typing import Optional, Sequence, TextIO

from .exceptions import InvalidBridgeArgument
from .identifiers import (
    AccountIdentity,
    HexDigest,
    parse_account,
    parse_digest,
)
from .version import version_report

DOVEADM = "/bin/doveadm"

EXIT_REJECTED = 1
EXIT_EXEC_FAILED = 2


def _run(args: list[str], stdin: bytes | None = None) -> int:
    try:
        p = subprocess.run([DOVEADM, *args], input=stdin, check=False)
    except OSError as e:
        print(str(e), file=sys.stderr)
        return EXIT_EXEC_FAILED
    return p.returncode


def kick(account: AccountIdentity) -> int:
    return _run(["kick", account.value])


def swap(account: AccountIdentity, old: HexDigest, new: HexDigest) -> int:
    payload = f"{old.value}\n{new.value}\n".encode("ascii")
    return _run(
        ["mailbox", "cryptokey", "password", "-u", account.value, "-O", "-U"],
        stdin=payload,
    )


def _read_swap_args(stream: TextIO) -> list[str]:
    values: list[str] = []
    for _ in range(3):
        line = stream.readline()
        if not line:
            break
        values.append(line.strip())
    return values


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="doveadm_wrapper", add_help=True)
    parser.add_argument("--version", action="store_true")
    sub = parser.add_subparsers(dest="verb")
    p_kick = sub.add_parser("kick")
    p_kick.add_argument("account")
    p_swap = sub.add_parser("swap")
    p_swap.add_argument("values", nargs="*")
    return parser


def main(argv: Optional[Sequence[str]] = None, stdin: Optional[TextIO] = None) -> int:
    parser = _build_parser()
    try:
        args = parser.parse_args(argv)
    except SystemExit as e:
        return EXIT_REJECTED if e.code else 0

    if args.version:
        print(version_report("doveadm_wrapper"))
        return 0

    try:
        if args.verb == "kick":
            return kick(parse_account(args.account))
        if args.verb == "swap":
            values = list(args.values) or _read_swap_args(stdin or sys.stdin)
            if len(values) != 3:
                raise InvalidBridgeArgument("swap needs account, old and new digest")
            return swap(
                parse_account(values[0]),
                parse_digest(values[1]),
                parse_digest(values[2]),
            )
    except InvalidBridgeArgument as e:
        print(e.message, file=sys.stderr)
        return EXIT_REJECTED

    parser.print_usage(sys.stderr)
    return EXIT_REJECTED


def run() -> None:
    sys.exit(main())


if __name__ == "__main__":
    run()
