#!/usr/bin/env python3
"""
Parser fuzzer for the Thrift IDL grammar.

Generates random and mutated inputs to find parser bugs like:
- Crashes (exceptions other than parse errors)
- Hangs (runaway backtracking)
- Disagreement between the recursive descent and Lark parsers

Usage:
    python fuzz_parser.py [--duration MINUTES] [--seed SEED]

Findings are saved to fuzz_findings/
"""

import argparse
import hashlib
import random
import re
import signal
import string
import sys
import time
import traceback
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path

# Add project directory to path
sys.path.insert(0, str(Path(__file__).parent))

from lark.exceptions import UnexpectedInput

from thrift_errors import ParseError
from thrift_parser import parse_strict
from thrift_peg_parser import parse as peg_parse

# Expected parse errors - these are normal rejections
EXPECTED_ERRORS = (
    ParseError,  # Recursive descent rejection, including NestingError
    UnexpectedInput,  # Lark rejection, including UnexpectedToken and UnexpectedEOF
    ValueError,  # Integer overflow, unknown namespace scope or nesting in the Lark transformer
)

# Inputs the Lark parser may accept alone without it being a bug
KNOWN_PEG_ONLY = [
    # Double exponent beyond 64 bits; the recursive descent parser stops before it
    re.compile(r'[0-9][eE][+-]?[0-9]{19,}'),
]

# Directory for saving findings
FINDINGS_DIR = Path(__file__).parent / "fuzz_findings"


class FuzzTimeout(Exception):
    pass


class ParserMismatch(Exception):
    """The Lark parser accepted an input and the recursive descent parser disagreed."""


@contextmanager
def timeout(seconds):
    """Context manager for timeout on Unix systems."""
    def handler(signum, frame):
        raise FuzzTimeout(f"Timed out after {seconds} seconds")

    if hasattr(signal, 'SIGALRM'):
        old_handler = signal.signal(signal.SIGALRM, handler)
        signal.alarm(seconds)
        try:
            yield
        finally:
            signal.alarm(0)
            signal.signal(signal.SIGALRM, old_handler)
    else:
        # Windows fallback - no timeout
        yield


class Fuzzer:
    """Thrift IDL parser fuzzer."""

    # Token pools for generation
    KEYWORDS = [
        "include", "cpp_include", "namespace", "typedef", "const", "enum",
        "struct", "union", "exception", "service", "extends", "oneway", "void",
        "throws", "required", "optional", "cpp_type", "map", "set", "list",
    ]

    PUNCTUATION = [",", ";", ":", "=", "<", ">", "*"]
    BRACKETS = ["(", ")", "[", "]", "{", "}"]
    COMMENTS = ["// note\n", "# note\n", "/* note */", "/**/"]

    BASE_TYPES = ["bool", "byte", "i8", "i16", "i32", "i64", "double", "string", "binary"]
    SCOPES = ["*", "cpp", "java", "py", "py.twisted", "go", "rb", "js"]
    IDENTIFIERS = ["x", "y", "foo", "bar", "User", "Status", "_id", "a.b", "boolean", "voidResult"]

    # Seed corpus - known valid inputs
    SEED_CORPUS = [
        'include "shared.thrift"',
        'cpp_include "<vector>"',
        'namespace * shared',
        'namespace py.twisted tutorial.twisted',
        'typedef i32 MyInteger',
        'typedef map<string,list<set<i32>>> Nested',
        'typedef list<i32> cpp_type "std::vector<int>" IntVector',
        'const i32 INT32CONSTANT = 9853',
        'const double PI = 3.14159',
        'const map<string,string> MAPCONSTANT = {"hello":"world", "goodnight":"moon"}',
        'const list<i32> PRIMES = [2, 3; 5 7,]',
        "const string QUOTE = 'say \"hi\"'",
        'enum Operation { ADD = 1, SUBTRACT = 2, MULTIPLY, DIVIDE }',
        'enum Empty {}',
        'struct Work { 1: i32 num1 = 0, 2: i32 num2, 3: Operation op, 4: optional string comment }',
        'struct user{1:optional string name; 2:i32 age=18}',
        'union Value { 1: i64 int_value 2: string string_value }',
        'exception InvalidOperation { 1: i32 whatOp, 2: string why }',
        'service Calculator extends shared.SharedService { void ping(), '
        'i32 add(1:i32 num1, 2:i32 num2), '
        'i32 calculate(1:i32 logid, 2:Work w) throws (1:InvalidOperation ouch), '
        'oneway void zip() }',
        '/* block */ struct A { // trailing\n 1: required bool flag # hash\n }',
    ]

    def __init__(self, seed=None, findings_dir: Path = FINDINGS_DIR):
        self.rng = random.Random(seed)
        self.findings_dir = Path(findings_dir)
        self.stats = {
            "iterations": 0,
            "parse_ok": 0,
            "parse_error": 0,
            "disagreements": 0,
            "peg_only": 0,
            "mismatches": 0,
            "crashes": 0,
            "timeouts": 0,
            "unique_crashes": set(),
        }
        self.start_time = None

    def random_identifier(self) -> str:
        """Generate a random identifier."""
        if self.rng.random() < 0.7:
            return self.rng.choice(self.IDENTIFIERS)
        length = self.rng.randint(1, 20)
        first = self.rng.choice(string.ascii_letters)
        rest = "".join(self.rng.choices(string.ascii_letters + string.digits + "_.", k=length - 1))
        return first + rest

    def random_int(self) -> str:
        if self.rng.random() < 0.8:
            return str(self.rng.randint(-1000, 1000))
        return self.rng.choice(["0", "-0", "+7", "9223372036854775807", "-9223372036854775808"])

    def random_number(self) -> str:
        """Generate a random int or double literal."""
        if self.rng.random() < 0.5:
            return self.random_int()
        elif self.rng.random() < 0.5:
            return f"{self.rng.uniform(-100, 100):.3f}"
        else:
            # Edge cases
            return self.rng.choice(["0.0", ".5", "-.5", "1e10", "1.5E-3", "+2.0e+2"])

    def random_literal(self) -> str:
        """Generate a random string literal."""
        if self.rng.random() < 0.1:
            # Edge case strings
            return self.rng.choice(['""', "''", '"test"', "'it\"s'", '"a // b"', '"/* x */"'])
        length = self.rng.randint(0, 30)
        chars = "".join(self.rng.choices(string.printable.replace('"', ''), k=length))
        return f'"{chars}"'

    def random_type(self, depth=0) -> str:
        """Generate a random field type."""
        choice = self.rng.random()
        if depth > 3 or choice < 0.5:
            return self.rng.choice(self.BASE_TYPES)
        elif choice < 0.6:
            return self.random_identifier()
        elif choice < 0.75:
            return f"list<{self.random_type(depth + 1)}>"
        elif choice < 0.85:
            return f"set<{self.random_type(depth + 1)}>"
        return f"map<{self.random_type(depth + 1)}, {self.random_type(depth + 1)}>"

    def random_const_value(self, depth=0) -> str:
        """Generate a random constant value."""
        choice = self.rng.randint(0, 5)
        if depth > 3 or choice < 2:
            return self.random_number()
        elif choice == 2:
            return self.random_literal()
        elif choice == 3:
            return self.random_identifier()
        elif choice == 4:
            items = [self.random_const_value(depth + 1) for _ in range(self.rng.randint(0, 4))]
            return "[" + self.random_separator().join(items) + "]"
        else:
            entries = [f"{self.random_const_value(depth + 1)}: {self.random_const_value(depth + 1)}"
                       for _ in range(self.rng.randint(0, 3))]
            return "{" + self.random_separator().join(entries) + "}"

    def random_separator(self) -> str:
        return self.rng.choice([", ", "; ", " ", ",", "\n", " /* c */ "])

    def random_field(self, field_id=None) -> str:
        parts = []
        if field_id is not None:
            parts.append(f"{field_id}:")
        if self.rng.random() < 0.3:
            parts.append(self.rng.choice(["required", "optional"]))
        parts.append(self.random_type())
        parts.append(self.random_identifier())
        if self.rng.random() < 0.2:
            parts.append(f"= {self.random_const_value()}")
        return " ".join(parts)

    def random_fields(self) -> str:
        fields = [self.random_field(i + 1 if self.rng.random() < 0.8 else None)
                  for i in range(self.rng.randint(0, 4))]
        return self.random_separator().join(fields)

    def random_function(self) -> str:
        oneway = "oneway " if self.rng.random() < 0.1 else ""
        returns = "void" if self.rng.random() < 0.3 else self.random_type()
        text = f"{oneway}{returns} {self.random_identifier()}({self.random_fields()})"
        if self.rng.random() < 0.2:
            text += f" throws ({self.random_fields()})"
        return text

    def generate_random(self) -> str:
        """Generate a random document."""
        parts = []
        num_decls = self.rng.randint(1, 5)

        for _ in range(num_decls):
            decl_type = self.rng.randint(0, 8)

            if decl_type == 0:
                keyword = self.rng.choice(["include", "cpp_include"])
                parts.append(f"{keyword} {self.random_literal()}")
            elif decl_type == 1:
                parts.append(f"namespace {self.rng.choice(self.SCOPES)} {self.random_identifier()}")
            elif decl_type == 2:
                base = self.rng.choice(self.BASE_TYPES)
                container = self.random_type()
                old = container if container[0] in "lsm" and "<" in container else base
                parts.append(f"typedef {old} {self.random_identifier()}")
            elif decl_type == 3:
                parts.append(f"const {self.random_type()} {self.random_identifier()} = "
                             f"{self.random_const_value()}")
            elif decl_type == 4:
                values = []
                for _ in range(self.rng.randint(0, 5)):
                    value = self.random_identifier()
                    if self.rng.random() < 0.5:
                        value += f" = {self.random_int()}"
                    values.append(value)
                parts.append(f"enum {self.random_identifier()} {{ "
                             f"{self.random_separator().join(values)} }}")
            elif decl_type in (5, 6, 7):
                keyword = ["struct", "union", "exception"][decl_type - 5]
                parts.append(f"{keyword} {self.random_identifier()} {{ {self.random_fields()} }}")
            else:
                extends = f" extends {self.random_identifier()}" if self.rng.random() < 0.3 else ""
                functions = [self.random_function() for _ in range(self.rng.randint(0, 3))]
                parts.append(f"service {self.random_identifier()}{extends} {{ "
                             f"{self.random_separator().join(functions)} }}")

        return "\n".join(parts)

    def mutate(self, input_str: str) -> str:
        """Mutate an input string."""
        mutations = [
            self._mutate_insert_random,
            self._mutate_delete_chunk,
            self._mutate_swap_chunks,
            self._mutate_repeat_chunk,
            self._mutate_flip_char,
            self._mutate_insert_special,
            self._mutate_boundary_numbers,
        ]

        mutation = self.rng.choice(mutations)
        return mutation(input_str)

    def _mutate_insert_random(self, s: str) -> str:
        """Insert a random token."""
        pos = self.rng.randint(0, len(s))
        chars = self.rng.choice([
            self.rng.choice(self.KEYWORDS),
            self.rng.choice(self.PUNCTUATION),
            self.rng.choice(self.BRACKETS),
            self.rng.choice(self.COMMENTS),
            self.random_identifier(),
            self.random_number(),
            " " * self.rng.randint(1, 5),
            "\n",
            "\t",
        ])
        return s[:pos] + chars + s[pos:]

    def _mutate_delete_chunk(self, s: str) -> str:
        """Delete a random chunk."""
        if len(s) < 2:
            return s
        start = self.rng.randint(0, len(s) - 1)
        end = self.rng.randint(start + 1, min(start + 20, len(s)))
        return s[:start] + s[end:]

    def _mutate_swap_chunks(self, s: str) -> str:
        """Swap the two halves."""
        if len(s) < 4:
            return s
        mid = len(s) // 2
        return s[mid:] + s[:mid]

    def _mutate_repeat_chunk(self, s: str) -> str:
        """Repeat a chunk."""
        if len(s) < 2:
            return s * 2
        start = self.rng.randint(0, len(s) - 1)
        end = self.rng.randint(start + 1, min(start + 10, len(s)))
        chunk = s[start:end]
        return s[:end] + chunk * self.rng.randint(1, 5) + s[end:]

    def _mutate_flip_char(self, s: str) -> str:
        """Flip a random character."""
        if not s:
            return s
        pos = self.rng.randint(0, len(s) - 1)
        new_char = chr(ord(s[pos]) ^ self.rng.randint(1, 127))
        return s[:pos] + new_char + s[pos + 1:]

    def _mutate_insert_special(self, s: str) -> str:
        """Insert special/edge case characters."""
        pos = self.rng.randint(0, len(s))
        special = self.rng.choice([
            "\x00",  # Null
            "\xff",  # High byte
            "\r\n",  # CRLF
            "\f",  # Form feed, not a separator
            "α",  # Unicode
            '"',  # Unbalanced quote
            "'",
            "/*",  # Unterminated comment
            "[" * 100,  # Deep nesting
            "list<" * 100,
        ])
        return s[:pos] + special + s[pos:]

    def _mutate_boundary_numbers(self, s: str) -> str:
        """Replace numbers with boundary values."""
        def replace(m):
            if self.rng.random() < 0.5:
                return self.rng.choice([
                    "0", "-1", "1",
                    "9223372036854775807", "-9223372036854775808",  # INT64 bounds
                    "9223372036854775808",  # INT64_MAX + 1
                    "99999999999999999999999",
                    "1e9999",  # Overflows to inf
                    "0.0000000001",
                ])
            return m.group(0)
        return re.sub(r'-?\d+(\.\d+)?', replace, s)

    def save_finding(self, input_str: str, error: Exception, category: str):
        """Save an interesting finding to disk."""
        # Create hash for deduplication
        hash_val = hashlib.md5(input_str.encode('utf-8', errors='replace')).hexdigest()[:8]

        if hash_val in self.stats["unique_crashes"]:
            return

        self.stats["unique_crashes"].add(hash_val)
        self.findings_dir.mkdir(exist_ok=True)

        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        filename = self.findings_dir / f"{category}_{timestamp}_{hash_val}.txt"

        with open(filename, 'w', encoding='utf-8', errors='replace') as f:
            f.write(f"Category: {category}\n")
            f.write(f"Error: {type(error).__name__}: {error}\n")
            f.write(f"Timestamp: {timestamp}\n")
            f.write(f"Input length: {len(input_str)}\n")
            f.write("\n--- Input ---\n")
            f.write(input_str)
            f.write("\n\n--- Traceback ---\n")
            f.write(traceback.format_exc())

        print(f"\n[!] Saved finding: {filename}")

    def _run_parser(self, parse, input_str: str):
        """Returns the parsed document, or None if the input was rejected."""
        try:
            with timeout(5):  # 5 second timeout
                return parse(input_str)
        except EXPECTED_ERRORS:
            # Normal parse rejection
            return None

    def test_input(self, input_str: str) -> bool:
        """Test a single input. Returns True if interesting (crash/timeout/mismatch)."""
        try:
            rd_document = self._run_parser(parse_strict, input_str)
            peg_document = self._run_parser(peg_parse, input_str)
        except FuzzTimeout as e:
            self.stats["timeouts"] += 1
            self.save_finding(input_str, e, "timeout")
            return True
        except Exception as e:
            # Unexpected crash!
            self.stats["crashes"] += 1
            self.save_finding(input_str, e, "crash")
            return True

        if rd_document is None and peg_document is None:
            self.stats["parse_error"] += 1
            return False
        if peg_document is None:
            # The Lark grammar reserves keywords in more places
            self.stats["disagreements"] += 1
            return False
        if rd_document is None:
            if any(pattern.search(input_str) for pattern in KNOWN_PEG_ONLY):
                self.stats["disagreements"] += 1
                return False
            self.stats["peg_only"] += 1
            self.save_finding(input_str, ParserMismatch("Accepted only by the Lark parser"),
                              "peg_only")
            return True

        self.stats["parse_ok"] += 1
        if rd_document != peg_document:
            self.stats["mismatches"] += 1
            self.save_finding(input_str, ParserMismatch(f"{rd_document!r} != {peg_document!r}"),
                              "mismatch")
            return True
        return False

    def run(self, duration_minutes: float = None, max_iterations: int = None):
        """Run the fuzzer."""
        self.start_time = time.time()
        end_time = self.start_time + (duration_minutes * 60) if duration_minutes else None

        print(f"Starting fuzzer (seed corpus: {len(self.SEED_CORPUS)} inputs)")
        print(f"Duration: {'unlimited' if not duration_minutes else f'{duration_minutes} minutes'}")
        print(f"Findings directory: {self.findings_dir}")
        print("-" * 60)

        corpus = list(self.SEED_CORPUS)

        try:
            while True:
                # Check limits
                if end_time and time.time() > end_time:
                    break
                if max_iterations is not None and self.stats["iterations"] >= max_iterations:
                    break

                self.stats["iterations"] += 1

                # Choose strategy
                strategy = self.rng.random()

                if strategy < 0.3:
                    # Generate completely random input
                    input_str = self.generate_random()
                elif strategy < 0.7:
                    # Mutate corpus input
                    base = self.rng.choice(corpus)
                    input_str = self.mutate(base)
                    # Sometimes apply multiple mutations
                    for _ in range(self.rng.randint(0, 3)):
                        input_str = self.mutate(input_str)
                else:
                    # Use corpus directly (for baseline)
                    input_str = self.rng.choice(corpus)

                # Test it
                interesting = self.test_input(input_str)

                # Add interesting inputs to corpus (even parse errors can be interesting for mutation)
                if interesting or (self.rng.random() < 0.01 and len(input_str) < 1000):
                    corpus.append(input_str)
                    if len(corpus) > 1000:
                        corpus.pop(self.rng.randint(len(self.SEED_CORPUS), len(corpus) - 1))

                # Progress report
                if self.stats["iterations"] % 1000 == 0:
                    self.print_stats()

        except KeyboardInterrupt:
            print("\n\nInterrupted by user")

        print("\n" + "=" * 60)
        print("Final Statistics:")
        self.print_stats()

    def print_stats(self):
        """Print current statistics."""
        elapsed = time.time() - self.start_time
        rate = self.stats["iterations"] / elapsed if elapsed > 0 else 0

        print(f"[{elapsed:.1f}s] "
              f"iterations={self.stats['iterations']} "
              f"({rate:.0f}/s) | "
              f"ok={self.stats['parse_ok']} "
              f"reject={self.stats['parse_error']} "
              f"disagree={self.stats['disagreements']} | "
              f"peg_only={self.stats['peg_only']} "
              f"mismatches={self.stats['mismatches']} "
              f"crashes={self.stats['crashes']} "
              f"timeouts={self.stats['timeouts']} "
              f"unique={len(self.stats['unique_crashes'])}")


def main():
    parser = argparse.ArgumentParser(description="Fuzz the Thrift IDL parsers")
    parser.add_argument("--duration", type=float, default=None,
                        help="Duration in minutes (default: run forever)")
    parser.add_argument("--iterations", type=int, default=None,
                        help="Stop after this many inputs")
    parser.add_argument("--seed", type=int, default=None,
                        help="Random seed for reproducibility")
    args = parser.parse_args()

    seed = args.seed if args.seed is not None else int(time.time())
    print(f"Random seed: {seed}")

    fuzzer = Fuzzer(seed=seed)
    fuzzer.run(duration_minutes=args.duration, max_iterations=args.iterations)


if __name__ == "__main__":
    main()
