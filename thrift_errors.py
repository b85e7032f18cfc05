"""
Error types for the Thrift IDL parser.

Every failure is a ParseError carrying the failing production, a coarse
ErrorKind and the offset into the source. Line, column and the offending
fragment are derived from the offset only when asked for, since most
errors raised while trying alternatives are discarded.
"""

from enum import Enum
from typing import List, Optional


class ErrorKind(Enum):
    """Coarse classification of a parse failure."""
    TAG = "tag"                    # keyword or literal text expected
    CHAR = "char"                  # single character expected
    NUMBER = "number"              # malformed or overflowing numeric literal
    UNTERMINATED = "unterminated"  # quoted literal or block comment never closed
    ALTERNATIVE = "alternative"    # every branch of a choice failed
    NESTING = "nesting"            # nesting depth limit exceeded


# Kinds that say more than "something else was expected here"
SPECIFIC_KINDS = {ErrorKind.NUMBER, ErrorKind.UNTERMINATED, ErrorKind.NESTING}

FRAGMENT_LENGTH = 20


class ParseError(Exception):
    """Raised when a production does not match the input."""

    def __init__(self, kind: ErrorKind, production: str, message: str,
                 source: str, offset: int, causes: Optional[List['ParseError']] = None):
        self.kind = kind
        self.production = production
        self.message = message
        self.source = source
        self.offset = offset
        self.causes = causes or []
        super().__init__(message)

    @property
    def line(self) -> int:
        return self.source.count('\n', 0, self.offset) + 1

    @property
    def column(self) -> int:
        return self.offset - (self.source.rfind('\n', 0, self.offset) + 1) + 1

    @property
    def fragment(self) -> str:
        """Input at the failure position, cut at the first newline."""
        text = self.source[self.offset:self.offset + FRAGMENT_LENGTH]
        return text.split('\n', 1)[0]

    def furthest(self) -> 'ParseError':
        """The deepest cause of this error, or the error itself."""
        best = self
        for cause in self.causes:
            candidate = cause.furthest()
            if is_better_error(candidate, best):
                best = candidate
        return best

    def __str__(self):
        return f"Line {self.line}, column {self.column}: {self.message}"

    def __repr__(self):
        return (f"ParseError({self.kind.name}, {self.production!r}, "
                f"{self.message!r}, offset={self.offset})")


class NestingError(ParseError):
    """Raised when container types or constants nest deeper than allowed.

    Optional and alternative combinators re-raise it instead of backtracking.
    """

    def __init__(self, production: str, source: str, offset: int, limit: int):
        self.limit = limit
        super().__init__(ErrorKind.NESTING, production,
                         f"Nesting deeper than {limit} levels in {production}",
                         source, offset)


def is_better_error(candidate: ParseError, current: Optional[ParseError]) -> bool:
    """Prefer the error that got furthest, then the more specific kind."""
    if current is None:
        return True
    if candidate.offset != current.offset:
        return candidate.offset > current.offset
    return candidate.kind in SPECIFIC_KINDS and current.kind not in SPECIFIC_KINDS
