#!/usr/bin/env python3
"""Print the SHA-256 of the account contract WASM as a shell export."""

from __future__ import annotations

import argparse
import hashlib
import sys
from pathlib import Path

DEFAULT_WASM = Path(__file__).resolve().parent.parent / "contracts/simple_account/out/simple_account.wasm"


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Compute the account contract WASM hash")
    parser.add_argument("wasm", nargs="?", default=str(DEFAULT_WASM), help="Path to the WASM file")
    parser.add_argument("--var", default="LUMENITOS_ACCOUNT_WASM_HASH", help="Variable name to export")
    args = parser.parse_args(argv)

    path = Path(args.wasm)
    try:
        digest = hashlib.sha256(path.read_bytes()).hexdigest()
    except OSError as exc:
        print(f"Error: could not read WASM file at {path}: {exc}", file=sys.stderr)
        return 1
    print(f"export {args.var}={digest}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
