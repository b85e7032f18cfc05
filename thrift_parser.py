"""
Recursive descent parser for the Thrift IDL.

Parses source text directly into the AST in thrift_ast. Every production is
a Parser method that consumes input and returns a node, or raises
ParseError and leaves the cursor where it started.

Alternatives are tried strictly in the order written and several orders are
load-bearing:

- ConstValue tries identifier, literal, double, int, list, map. The double
  parser used here rejects text without '.' or an exponent, so '123' falls
  through to the int parser.
- FieldType tries base type keywords before the identifier fallback, or
  'bool' would come back as a named type.
"""

import logging
import re
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, List, Tuple

from thrift_ast import (
    BaseType, MapType, SetType, ListType, CppType, Identifier,
    IntConstant, DoubleConstant, ConstList, ConstMap,
    Field, FunctionDecl, ConstDecl, TypedefDecl, EnumDecl, EnumValue,
    StructDecl, UnionDecl, ExceptionDecl, ServiceDecl,
    Include, CppInclude, Namespace, Document, NAMESPACE_SCOPES, build_document,
)
from thrift_errors import ErrorKind, ParseError, NestingError, SPECIFIC_KINDS
from thrift_lexer import Scanner, WHITESPACE


LOGGER = logging.getLogger(__name__)

# Deepest allowed nesting of container types and constant lists/maps
MAX_NESTING_DEPTH = 64

INT64_MIN = -2 ** 63
INT64_MAX = 2 ** 63 - 1

INT_RE = re.compile(r'[+-]?[0-9]+')
MANTISSA_RE = re.compile(r'[+-]?[0-9]*(?:\.[0-9]+)?')
EXPONENT_RE = re.compile(r'[eE]([+-]?[0-9]+)')


class Parser(Scanner):
    """Recursive descent parser for the Thrift IDL."""

    def __init__(self, source: str, max_depth: int = MAX_NESTING_DEPTH):
        super().__init__(source)
        self.max_depth = max_depth
        self._depth = 0

    # Lexical primitives under their production names
    parse_literal = Scanner.scan_literal
    parse_identifier = Scanner.scan_identifier
    parse_list_separator = Scanner.scan_list_separator
    parse_comment = Scanner.scan_comment
    parse_separator = Scanner.scan_separator

    # =========================================================================
    # Combinators
    # =========================================================================

    def _optional(self, rule: Callable[[], Any]) -> Any:
        """Run rule, returning None and restoring the cursor if it fails."""
        start = self.pos
        try:
            return rule()
        except NestingError:
            raise
        except ParseError as e:
            self.pos = start
            self._note_failure(e)
            return None

    def _alternatives(self, production: str, *rules: Callable[[], Any]) -> Any:
        """Return the result of the first rule that matches."""
        start = self.pos
        failures = []
        for rule in rules:
            try:
                result = rule()
            except NestingError:
                raise
            except ParseError as e:
                self.pos = start
                failures.append(e)
                continue
            for failure in failures:
                if failure.furthest().offset > start:
                    self._note_failure(failure)
            return result
        found = self.source[start:start + 20].split('\n', 1)[0] or 'end of input'
        raise ParseError(ErrorKind.ALTERNATIVE, production,
                         f"Expected {production}, found {found!r}",
                         self.source, start, causes=failures)

    @contextmanager
    def _nested(self, production: str):
        if self._depth >= self.max_depth:
            raise NestingError(production, self.source, self.pos, self.max_depth)
        self._depth += 1
        try:
            yield
        finally:
            self._depth -= 1

    def _element_separator(self):
        """Separator ListSeparator? Separator? | ListSeparator Separator?"""
        if self.skip_separator():
            self._optional(self.scan_list_separator)
            self.skip_separator()
            return
        self.scan_list_separator()
        self.skip_separator()

    def _separated(self, rule: Callable[[], Any]) -> List[Any]:
        """Zero or more rule matches joined by element separators.

        A trailing separator before the closing bracket is accepted.
        """
        items = []
        first = self._optional(rule)
        if first is None:
            return items
        items.append(first)
        while True:
            start = self.pos
            try:
                self._element_separator()
                item = rule()
            except NestingError:
                raise
            except ParseError as e:
                self.pos = start
                self._note_failure(e)
                break
            items.append(item)
        self.skip_separator()
        self._optional(self.scan_list_separator)
        self.skip_separator()
        return items

    def _trailing_list_separator(self):
        self.skip_separator()
        return self.scan_list_separator()

    # =========================================================================
    # Constants
    # =========================================================================

    def parse_int_constant(self) -> IntConstant:
        """IntConstant ::= ('+' | '-')? Digit+"""
        match = INT_RE.match(self.source, self.pos)
        if not match:
            raise self._error(ErrorKind.CHAR, 'int_constant', "Expected integer constant")
        value = int(match.group(0))
        if not INT64_MIN <= value <= INT64_MAX:
            raise self._error(ErrorKind.NUMBER, 'int_constant',
                              f"Integer constant {match.group(0)} overflows 64 bits")
        self.pos = match.end()
        return IntConstant(value)

    def _recognize_double(self) -> str:
        """Longest prefix of the form [+-]? Digit* ('.' Digit+)? (('E'|'e') IntConstant)?"""
        end = MANTISSA_RE.match(self.source, self.pos).end()
        exponent = EXPONENT_RE.match(self.source, end)
        if exponent and INT64_MIN <= int(exponent.group(1)) <= INT64_MAX:
            end = exponent.end()
        return self.source[self.pos:end]

    def parse_double_constant(self) -> DoubleConstant:
        """DoubleConstant ::= ('+' | '-')? Digit* ('.' Digit+)? ( ('E' | 'e') IntConstant )?"""
        text = self._recognize_double()
        try:
            value = float(text)
        except ValueError:
            raise self._error(ErrorKind.NUMBER, 'double_constant',
                              f"Malformed double constant {text!r}") from None
        self.pos += len(text)
        return DoubleConstant(value)

    def parse_strict_double_constant(self) -> DoubleConstant:
        """DoubleConstant that refuses integer-looking text."""
        text = self._recognize_double()
        if '.' not in text and 'e' not in text and 'E' not in text:
            raise self._error(ErrorKind.NUMBER, 'double_constant',
                              f"{text!r} has no fraction or exponent")
        return self.parse_double_constant()

    def parse_const_value(self):
        """ConstValue ::= Identifier | Literal | DoubleConstant | IntConstant | ConstList | ConstMap"""
        return self._alternatives(
            'const_value',
            self.scan_identifier,
            self.scan_literal,
            self.parse_strict_double_constant,
            self.parse_int_constant,
            self.parse_const_list,
            self.parse_const_map,
        )

    def parse_const_list(self) -> ConstList:
        """ConstList ::= '[' (ConstValue ListSeparator?)* ']'"""
        self._expect_char('[', 'const_list')
        with self._nested('const_list'):
            self.skip_separator()
            values = self._separated(self.parse_const_value)
            self._expect_char(']', 'const_list')
        return ConstList(values)

    def parse_const_map(self) -> ConstMap:
        """ConstMap ::= '{' (ConstValue ':' ConstValue ListSeparator?)* '}'"""
        self._expect_char('{', 'const_map')
        with self._nested('const_map'):
            self.skip_separator()
            entries = self._separated(self._parse_const_map_entry)
            self._expect_char('}', 'const_map')
        return ConstMap(entries)

    def _parse_const_map_entry(self) -> Tuple[Any, Any]:
        key = self.parse_const_value()
        self.skip_separator()
        self._expect_char(':', 'const_map')
        self.skip_separator()
        return key, self.parse_const_value()

    # =========================================================================
    # Types
    # =========================================================================

    def parse_field_type(self):
        """FieldType ::= BaseType | ContainerType | Identifier"""
        return self._alternatives(
            'field_type',
            self._parse_base_type,
            self._parse_container_type,
            self._parse_identifier_type,
        )

    def _parse_base_type(self) -> BaseType:
        for base_type in BaseType:
            if self._match_keyword(base_type.value):
                return base_type
        raise self._error(ErrorKind.TAG, 'base_type', "Expected base type")

    def _parse_container_type(self):
        return self._alternatives(
            'container_type',
            self._parse_map_type,
            self._parse_set_type,
            self._parse_list_type,
        )

    def _parse_identifier_type(self) -> Identifier:
        return self.scan_identifier()

    def _parse_leading_cpp_type(self):
        """Optional cpp_type between a container keyword and '<'."""
        self.skip_separator()
        if self._optional(self.parse_cpp_type) is not None:
            self.skip_separator()

    def _parse_trailing_cpp_type(self) -> CppType:
        self.skip_separator()
        return self.parse_cpp_type()

    def _parse_map_type(self) -> MapType:
        """MapType ::= 'map' CppType? '<' FieldType ',' FieldType '>'"""
        self._expect_keyword('map', 'map_type')
        self._parse_leading_cpp_type()
        self._expect_char('<', 'map_type')
        with self._nested('map_type'):
            self.skip_separator()
            key_type = self.parse_field_type()
            self.skip_separator()
            self._expect_char(',', 'map_type')
            self.skip_separator()
            value_type = self.parse_field_type()
            self.skip_separator()
            self._expect_char('>', 'map_type')
        return MapType(key_type, value_type)

    def _parse_set_type(self) -> SetType:
        """SetType ::= 'set' CppType? '<' FieldType '>'"""
        self._expect_keyword('set', 'set_type')
        self._parse_leading_cpp_type()
        self._expect_char('<', 'set_type')
        with self._nested('set_type'):
            self.skip_separator()
            element_type = self.parse_field_type()
            self.skip_separator()
            self._expect_char('>', 'set_type')
        return SetType(element_type)

    def _parse_list_type(self) -> ListType:
        """ListType ::= 'list' '<' FieldType '>' CppType?"""
        self._expect_keyword('list', 'list_type')
        self.skip_separator()
        self._expect_char('<', 'list_type')
        with self._nested('list_type'):
            self.skip_separator()
            element_type = self.parse_field_type()
            self.skip_separator()
            self._expect_char('>', 'list_type')
        self._optional(self._parse_trailing_cpp_type)
        return ListType(element_type)

    def parse_cpp_type(self) -> CppType:
        """CppType ::= 'cpp_type' Literal"""
        self._expect_keyword('cpp_type', 'cpp_type')
        self.scan_separator()
        return CppType(self.scan_literal())

    # =========================================================================
    # Fields and functions
    # =========================================================================

    def parse_field(self) -> Field:
        """Field ::= FieldID? FieldReq? FieldType Identifier ('=' ConstValue)? ListSeparator?"""
        line, column = self.position()
        field_id = self._optional(self._parse_field_id)
        required = self._optional(self._parse_field_req)
        field_type = self.parse_field_type()
        self.scan_separator()
        name = self.scan_identifier().name
        self.skip_separator()
        default = self._optional(self._parse_field_default)
        self.skip_separator()
        self._optional(self.scan_list_separator)
        return Field(type=field_type, name=name, id=field_id, required=required,
                     default=default, line=line, column=column)

    def _parse_field_id(self) -> int:
        value = self.parse_int_constant().value
        self.skip_separator()
        self._expect_char(':', 'field')
        self.skip_separator()
        return value

    def _parse_field_req(self) -> bool:
        if self._match_keyword('required'):
            required = True
        elif self._match_keyword('optional'):
            required = False
        else:
            raise self._error(ErrorKind.TAG, 'field', "Expected 'required' or 'optional'")
        self.scan_separator()
        return required

    def _parse_field_default(self):
        self._expect_char('=', 'field')
        self.skip_separator()
        return self.parse_const_value()

    def _parse_fields(self) -> List[Field]:
        """Self-delimiting fields up to the closing bracket."""
        fields = []
        while True:
            self.skip_separator()
            field = self._optional(self.parse_field)
            if field is None:
                return fields
            fields.append(field)

    def _parse_field_list(self, production: str) -> List[Field]:
        self._expect_char('(', production)
        fields = self._parse_fields()
        self._expect_char(')', production)
        return fields

    def parse_function(self) -> FunctionDecl:
        """Function ::= 'oneway'? FunctionType Identifier '(' Field* ')' Throws? ListSeparator?"""
        line, column = self.position()
        oneway = self._optional(self._parse_oneway) is not None
        returns = self._alternatives('function_type', self._parse_void, self.parse_field_type)
        self.scan_separator()
        name = self.scan_identifier().name
        self.skip_separator()
        parameters = self._parse_field_list('function')
        self.skip_separator()
        exceptions = self._optional(self._parse_throws)
        self._optional(self._trailing_list_separator)
        return FunctionDecl(name=name, returns=returns, oneway=oneway,
                            parameters=parameters, exceptions=exceptions,
                            line=line, column=column)

    def _parse_oneway(self) -> bool:
        self._expect_keyword('oneway', 'function')
        self.scan_separator()
        return True

    def _parse_void(self):
        self._expect_keyword('void', 'function')
        return None

    def _parse_throws(self) -> List[Field]:
        """Throws ::= 'throws' '(' Field* ')'"""
        self._expect_keyword('throws', 'throws')
        self.skip_separator()
        return self._parse_field_list('throws')

    # =========================================================================
    # Definitions
    # =========================================================================

    def parse_const(self) -> ConstDecl:
        """Const ::= 'const' FieldType Identifier '=' ConstValue ListSeparator?"""
        line, column = self.position()
        self._expect_keyword('const', 'const')
        self.scan_separator()
        field_type = self.parse_field_type()
        self.scan_separator()
        name = self.scan_identifier().name
        self.skip_separator()
        self._expect_char('=', 'const')
        self.skip_separator()
        value = self.parse_const_value()
        self._optional(self._trailing_list_separator)
        return ConstDecl(name=name, type=field_type, value=value, line=line, column=column)

    def parse_typedef(self) -> TypedefDecl:
        """Typedef ::= 'typedef' DefinitionType Identifier"""
        line, column = self.position()
        self._expect_keyword('typedef', 'typedef')
        self.scan_separator()
        old = self._alternatives('definition_type', self._parse_base_type,
                                 self._parse_container_type)
        self.scan_separator()
        alias = self.scan_identifier().name
        self._optional(self._trailing_list_separator)
        return TypedefDecl(old=old, alias=alias, line=line, column=column)

    def parse_enum(self) -> EnumDecl:
        """Enum ::= 'enum' Identifier '{' (Identifier ('=' IntConstant)? ListSeparator?)* '}'"""
        line, column = self.position()
        self._expect_keyword('enum', 'enum')
        self.scan_separator()
        name = self.scan_identifier().name
        self.skip_separator()
        self._expect_char('{', 'enum')
        self.skip_separator()
        values = self._separated(self.parse_enum_value)
        self._expect_char('}', 'enum')
        return EnumDecl(name=name, values=values, line=line, column=column)

    def parse_enum_value(self) -> EnumValue:
        line, column = self.position()
        name = self.scan_identifier().name
        value = self._optional(self._parse_enum_assignment)
        return EnumValue(name=name, value=value, line=line, column=column)

    def _parse_enum_assignment(self) -> int:
        self.skip_separator()
        self._expect_char('=', 'enum_value')
        self.skip_separator()
        return self.parse_int_constant().value

    def _parse_record(self, keyword: str) -> Tuple[str, List[Field]]:
        """keyword Identifier '{' Field* '}'"""
        self._expect_keyword(keyword, keyword)
        self.scan_separator()
        name = self.scan_identifier().name
        self.skip_separator()
        self._expect_char('{', keyword)
        fields = self._parse_fields()
        self._expect_char('}', keyword)
        return name, fields

    def parse_struct(self) -> StructDecl:
        line, column = self.position()
        name, fields = self._parse_record('struct')
        return StructDecl(name=name, fields=fields, line=line, column=column)

    def parse_union(self) -> UnionDecl:
        line, column = self.position()
        name, fields = self._parse_record('union')
        return UnionDecl(name=name, fields=fields, line=line, column=column)

    def parse_exception(self) -> ExceptionDecl:
        line, column = self.position()
        name, fields = self._parse_record('exception')
        return ExceptionDecl(name=name, fields=fields, line=line, column=column)

    def parse_service(self) -> ServiceDecl:
        """Service ::= 'service' Identifier ('extends' Identifier)? '{' Function* '}'"""
        line, column = self.position()
        self._expect_keyword('service', 'service')
        self.scan_separator()
        name = self.scan_identifier().name
        self.skip_separator()
        extends = self._optional(self._parse_extends)
        self._expect_char('{', 'service')
        functions = []
        while True:
            self.skip_separator()
            function = self._optional(self.parse_function)
            if function is None:
                break
            functions.append(function)
        self._expect_char('}', 'service')
        return ServiceDecl(name=name, extends=extends, functions=functions,
                           line=line, column=column)

    def _parse_extends(self) -> str:
        self._expect_keyword('extends', 'service')
        self.scan_separator()
        name = self.scan_identifier().name
        self.skip_separator()
        return name

    # =========================================================================
    # Header
    # =========================================================================

    def parse_include(self) -> Include:
        """Include ::= 'include' Literal"""
        self._expect_keyword('include', 'include')
        self.scan_separator()
        return Include(self.scan_literal().value)

    def parse_cpp_include(self) -> CppInclude:
        """CppInclude ::= 'cpp_include' Literal"""
        self._expect_keyword('cpp_include', 'cpp_include')
        self.scan_separator()
        return CppInclude(self.scan_literal().value)

    def parse_namespace(self) -> Namespace:
        """Namespace ::= 'namespace' NamespaceScope Identifier"""
        self._expect_keyword('namespace', 'namespace')
        self.scan_separator()
        scope = self.parse_namespace_scope()
        self.scan_separator()
        return Namespace(scope=scope, name=self.scan_identifier().name)

    def parse_namespace_scope(self) -> str:
        for scope in NAMESPACE_SCOPES:
            if scope == '*':
                if self._match('*'):
                    return scope
            elif self._match_keyword(scope):
                return scope
        raise self._error(ErrorKind.TAG, 'namespace_scope', "Expected namespace scope")

    # =========================================================================
    # Document
    # =========================================================================

    def _parse_definition(self):
        return self._alternatives(
            'definition',
            self.parse_include,
            self.parse_cpp_include,
            self.parse_namespace,
            self.parse_typedef,
            self.parse_const,
            self.parse_enum,
            self.parse_struct,
            self.parse_union,
            self.parse_exception,
            self.parse_service,
        )

    def parse_document(self) -> Document:
        """Collect definitions until none matches the rest of the input."""
        definitions = []
        while True:
            start = self.pos
            try:
                self.skip_separator()
                definition = self._parse_definition()
                self.skip_separator()
            except NestingError:
                raise
            except ParseError as e:
                self.pos = start
                self._note_failure(e)
                break
            definitions.append(definition)
        if not self._at_end():
            line, column = self.position()
            LOGGER.debug("Stopped after %d definitions at line %d, column %d",
                         len(definitions), line, column)
        return build_document(definitions)

    def unexpected_remainder_error(self) -> ParseError:
        """Error describing why parsing stopped before the end of input."""
        error = self.furthest_error
        if error is not None and (error.offset > self.pos or
                                  (error.offset == self.pos and error.kind in SPECIFIC_KINDS)):
            return error
        found = self.source[self.pos:self.pos + 20].split('\n', 1)[0]
        return ParseError(ErrorKind.ALTERNATIVE, 'document',
                          f"Expected definition, found {found!r}",
                          self.source, self.pos)


# Production name -> Parser method, for parse_production()
PRODUCTIONS = {
    'literal': 'parse_literal',
    'identifier': 'parse_identifier',
    'list_separator': 'parse_list_separator',
    'comment': 'parse_comment',
    'separator': 'parse_separator',
    'int_constant': 'parse_int_constant',
    'double_constant': 'parse_double_constant',
    'strict_double_constant': 'parse_strict_double_constant',
    'const_value': 'parse_const_value',
    'const_list': 'parse_const_list',
    'const_map': 'parse_const_map',
    'field_type': 'parse_field_type',
    'cpp_type': 'parse_cpp_type',
    'field': 'parse_field',
    'function': 'parse_function',
    'const': 'parse_const',
    'typedef': 'parse_typedef',
    'enum': 'parse_enum',
    'enum_value': 'parse_enum_value',
    'struct': 'parse_struct',
    'union': 'parse_union',
    'exception': 'parse_exception',
    'service': 'parse_service',
    'include': 'parse_include',
    'cpp_include': 'parse_cpp_include',
    'namespace': 'parse_namespace',
    'document': 'parse_document',
}


def parse(source: str, max_depth: int = MAX_NESTING_DEPTH) -> Tuple[str, Document]:
    """Parse IDL source. Returns (remainder, document).

    Parsing stops at the first input no definition matches; a remainder
    that is not blank means the source has a syntax error there.
    """
    parser = Parser(source, max_depth=max_depth)
    document = parser.parse_document()
    return parser.remainder, document


def parse_strict(source: str, max_depth: int = MAX_NESTING_DEPTH) -> Document:
    """Parse IDL source, raising ParseError unless all of it is consumed."""
    parser = Parser(source, max_depth=max_depth)
    document = parser.parse_document()
    # A remainder of only comments is not an error
    parser.skip_separator()
    if parser.remainder.strip(WHITESPACE):
        raise parser.unexpected_remainder_error()
    return document


def parse_production(name: str, source: str,
                     max_depth: int = MAX_NESTING_DEPTH) -> Tuple[str, Any]:
    """Run a single production by name. Returns (remainder, value)."""
    try:
        method_name = PRODUCTIONS[name]
    except KeyError:
        raise ValueError(f"Unknown production: {name}") from None
    parser = Parser(source, max_depth=max_depth)
    value = getattr(parser, method_name)()
    return parser.remainder, value


def parse_file(path, strict: bool = True, max_depth: int = MAX_NESTING_DEPTH) -> Document:
    """Parse an IDL file."""
    path = Path(path)
    LOGGER.debug("Parsing %s", path)
    source = path.read_text(encoding='utf-8')
    if strict:
        return parse_strict(source, max_depth=max_depth)
    remainder, document = parse(source, max_depth=max_depth)
    if remainder.strip(WHITESPACE):
        LOGGER.debug("%s: ignoring %d unparsed characters", path, len(remainder))
    return document
