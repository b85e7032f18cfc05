"""
Lexical primitives for the Thrift IDL.

The grammar is scannerless: a Scanner walks the raw source with a cursor,
and each scan_* method either consumes one token and returns its value or
raises ParseError. A failed scan never moves the cursor.
"""

import bisect
import re
import string
from typing import Optional, Tuple

from thrift_ast import Comment, Identifier, Literal
from thrift_errors import ErrorKind, ParseError, is_better_error


IDENTIFIER_RE = re.compile(r'_?[A-Za-z][A-Za-z0-9._]*')

# Characters that may continue an identifier; a keyword must not be followed by one
IDENTIFIER_CHARS = frozenset(string.ascii_letters + string.digits + '._')

WHITESPACE = ' \t\r\n'
LIST_SEPARATORS = ',;'
QUOTES = '"\''


class Scanner:
    """Cursor over an immutable source string."""

    def __init__(self, source: str):
        self.source = source
        self.pos = 0
        # Furthest failure seen in a branch that was backtracked over
        self.furthest_error: Optional[ParseError] = None
        self._line_starts = None

    @property
    def remainder(self) -> str:
        """Unconsumed tail of the source."""
        return self.source[self.pos:]

    def position(self, offset: Optional[int] = None) -> Tuple[int, int]:
        """1-based (line, column) of offset, defaulting to the cursor."""
        if self._line_starts is None:
            self._line_starts = [0] + [m.end() for m in re.finditer("\n", self.source)]
        if offset is None:
            offset = self.pos
        index = bisect.bisect_right(self._line_starts, offset) - 1
        return index + 1, offset - self._line_starts[index] + 1

    # =========================================================================
    # Helper methods
    # =========================================================================

    def _at_end(self) -> bool:
        return self.pos >= len(self.source)

    def _peek(self, offset: int = 0) -> str:
        pos = self.pos + offset
        if pos >= len(self.source):
            return ''
        return self.source[pos]

    def _check(self, text: str) -> bool:
        return self.source.startswith(text, self.pos)

    def _match(self, text: str) -> bool:
        if self._check(text):
            self.pos += len(text)
            return True
        return False

    def _error(self, kind: ErrorKind, production: str, message: str,
               offset: Optional[int] = None) -> ParseError:
        return ParseError(kind, production, message, self.source,
                          self.pos if offset is None else offset)

    def _note_failure(self, error: ParseError):
        """Remember a swallowed failure for error reporting."""
        error = error.furthest()
        if is_better_error(error, self.furthest_error):
            self.furthest_error = error

    def _expect_char(self, char: str, production: str) -> str:
        if self._peek() == char:
            self.pos += 1
            return char
        found = self._peek() or 'end of input'
        raise self._error(ErrorKind.CHAR, production,
                          f"Expected {char!r} in {production}, found {found!r}")

    def _check_keyword(self, word: str) -> bool:
        """True if word starts here and is not the prefix of a longer name."""
        if not self.source.startswith(word, self.pos):
            return False
        return self._peek(len(word)) not in IDENTIFIER_CHARS

    def _match_keyword(self, word: str) -> bool:
        if self._check_keyword(word):
            self.pos += len(word)
            return True
        return False

    def _expect_keyword(self, word: str, production: str) -> str:
        if self._match_keyword(word):
            return word
        raise self._error(ErrorKind.TAG, production,
                          f"Expected keyword '{word}' in {production}")

    # =========================================================================
    # Lexical primitives
    # =========================================================================

    def scan_literal(self) -> Literal:
        """Literal ::= '"' [^"]* '"' | "'" [^']* "'" """
        quote = self._peek()
        if quote == '' or quote not in QUOTES:
            raise self._error(ErrorKind.CHAR, 'literal', "Expected string literal")
        end = self.source.find(quote, self.pos + 1)
        if end == -1:
            raise self._error(ErrorKind.UNTERMINATED, 'literal',
                              f"Unterminated string literal (missing closing {quote})")
        value = self.source[self.pos + 1:end]
        self.pos = end + 1
        return Literal(value)

    def scan_identifier(self) -> Identifier:
        """Identifier ::= '_'? Letter (Letter | Digit | '.' | '_')*"""
        match = IDENTIFIER_RE.match(self.source, self.pos)
        if not match:
            raise self._error(ErrorKind.CHAR, 'identifier', "Expected identifier")
        self.pos = match.end()
        return Identifier(match.group(0))

    def scan_list_separator(self) -> str:
        """ListSeparator ::= ',' | ';'"""
        char = self._peek()
        if char == '' or char not in LIST_SEPARATORS:
            raise self._error(ErrorKind.CHAR, 'list_separator', "Expected ',' or ';'")
        self.pos += 1
        return char

    def scan_comment(self) -> Comment:
        """// line, # line or non-nested /* block */ comment."""
        if self._check('//') or self._check('#'):
            start = self.pos + (2 if self._check('//') else 1)
            end = self.source.find('\n', start)
            if end == -1:
                end = len(self.source)
            self.pos = end
            return Comment(self.source[start:end])
        if self._check('/*'):
            end = self.source.find('*/', self.pos + 2)
            if end == -1:
                raise self._error(ErrorKind.UNTERMINATED, 'comment',
                                  "Unterminated block comment (missing */)")
            text = self.source[self.pos + 2:end]
            self.pos = end + 2
            return Comment(text)
        raise self._error(ErrorKind.TAG, 'comment', "Expected comment")

    def scan_whitespace(self) -> str:
        start = self.pos
        while not self._at_end() and self.source[self.pos] in WHITESPACE:
            self.pos += 1
        if self.pos == start:
            raise self._error(ErrorKind.CHAR, 'whitespace', "Expected whitespace")
        return self.source[start:self.pos]

    def scan_separator(self) -> None:
        """One or more comments or whitespace runs."""
        start = self.pos
        while True:
            if not self._at_end() and self.source[self.pos] in WHITESPACE:
                self.scan_whitespace()
                continue
            try:
                self.scan_comment()
            except ParseError as e:
                if self.pos == start:
                    if e.kind == ErrorKind.UNTERMINATED:
                        raise
                    raise self._error(ErrorKind.TAG, 'separator',
                                      "Expected whitespace or comment")
                if e.kind == ErrorKind.UNTERMINATED:
                    self._note_failure(e)
                return

    def skip_separator(self) -> bool:
        """Optional separator. Returns True if anything was consumed."""
        try:
            self.scan_separator()
        except ParseError as e:
            if e.kind == ErrorKind.UNTERMINATED:
                self._note_failure(e)
            return False
        return True
