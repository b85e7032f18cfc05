#!/usr/bin/env python3
"""
Check Thrift IDL files for syntax errors.

Usage:
    python thrift_check.py <file.thrift> [file2.thrift ...]
    python thrift_check.py --json FILE     # Dump the parsed document as JSON
    python thrift_check.py --format FILE   # Print canonical IDL
    python thrift_check.py --peg FILE      # Use the Lark grammar parser
"""

import argparse
import json
import logging
import sys
from pathlib import Path

# Add project directory to path for imports
sys.path.insert(0, str(Path(__file__).parent))

from lark.exceptions import UnexpectedInput

from thrift_converter import ast_to_dict, document_to_idl
from thrift_errors import ParseError
from thrift_parser import MAX_NESTING_DEPTH, parse_strict
import thrift_peg_parser


def parse_source(source: str, peg: bool = False, max_depth: int = MAX_NESTING_DEPTH):
    """Parse with the selected parser. Both raise on any syntax error."""
    if peg:
        return thrift_peg_parser.parse(source, max_depth=max_depth)
    return parse_strict(source, max_depth=max_depth)


def check_file(path: Path, peg: bool = False, max_depth: int = MAX_NESTING_DEPTH,
               as_json: bool = False, as_idl: bool = False) -> int:
    """Check a single file. Returns the number of errors (0 or 1)."""
    try:
        with open(path, encoding='utf-8') as f:
            source = f.read()
    except FileNotFoundError:
        print(f"{path}: error: file not found")
        return 1
    except UnicodeDecodeError as e:
        print(f"{path}: error: not UTF-8 text ({e.reason})")
        return 1

    try:
        document = parse_source(source, peg=peg, max_depth=max_depth)
    except ParseError as e:
        print(f"{path}:{e.line}:{e.column}: error: {e.message}")
        return 1
    except UnexpectedInput as e:
        message = str(e).strip().split('\n', 1)[0]
        if e.line > 0:
            print(f"{path}:{e.line}:{e.column}: error: {message}")
        else:
            print(f"{path}: error: {message}")
        return 1
    except ValueError as e:
        print(f"{path}: error: {e}")
        return 1

    if as_json:
        print(json.dumps(ast_to_dict(document), indent=2))
    if as_idl:
        print(document_to_idl(document), end='')
    return 0


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Check Thrift IDL files for syntax errors."
    )
    parser.add_argument(
        "files",
        nargs="*",
        help="Files to check"
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print each parsed document as JSON"
    )
    parser.add_argument(
        "--format",
        action="store_true",
        help="Print each parsed document as canonical IDL"
    )
    parser.add_argument(
        "--peg",
        action="store_true",
        help="Use the Lark grammar parser instead of the recursive descent parser"
    )
    parser.add_argument(
        "--max-depth",
        type=int,
        default=MAX_NESTING_DEPTH,
        help=f"Maximum nesting of container types and constants (default: {MAX_NESTING_DEPTH})"
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Log parser progress to stderr"
    )

    args = parser.parse_args(argv)

    if not args.files:
        parser.print_help()
        sys.exit(1)

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(name)s: %(message)s")

    total_errors = 0
    for name in args.files:
        total_errors += check_file(Path(name), peg=args.peg, max_depth=args.max_depth,
                                   as_json=args.json, as_idl=args.format)

    if total_errors and len(args.files) > 1:
        print(f"\n{total_errors} of {len(args.files)} file(s) failed")

    sys.exit(1 if total_errors else 0)


if __name__ == "__main__":
    main()
