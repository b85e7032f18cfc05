"""
Grammar-based parser for the Thrift IDL using Lark.

Uses a formal grammar definition (thrift_grammar.lark) and Lark's LALR parser
to produce the same AST nodes as the recursive descent parser in
thrift_parser.py. The contextual lexer only treats a word as a keyword where
the grammar can accept that keyword, so names such as 'map' or 'boolean'
still lex as identifiers.

The contextual lexer happily splits 'structFoo' into 'struct' and 'Foo', so
a post-lexer rejects word, number and literal tokens written back to back.
"""

import logging
import string
from pathlib import Path

from lark import Lark, Transformer_NonRecursive, Tree, v_args
from lark.exceptions import UnexpectedToken, VisitError
from lark.lark import PostLex

from thrift_ast import (
    BaseType, MapType, SetType, ListType, CppType, Identifier, Literal,
    IntConstant, DoubleConstant, ConstList, ConstMap,
    Field, FunctionDecl, ConstDecl, TypedefDecl, EnumDecl, EnumValue,
    StructDecl, UnionDecl, ExceptionDecl, ServiceDecl,
    Include, CppInclude, Namespace, Document, NAMESPACE_SCOPES, build_document,
)
from thrift_parser import INT64_MIN, INT64_MAX, MAX_NESTING_DEPTH


LOGGER = logging.getLogger(__name__)

# Load grammar from file
GRAMMAR_PATH = Path(__file__).parent / "thrift_grammar.lark"

# Characters that end or start a token needing a separator from its neighbour
WORD_END = frozenset(string.ascii_letters + string.digits + "_.'\"*")
WORD_START = frozenset(string.ascii_letters + string.digits + "_.'\"+-")

DEFINITION_KEYWORDS = frozenset([
    'include', 'cpp_include', 'namespace', 'typedef', 'const',
    'enum', 'struct', 'union', 'exception', 'service',
])

# Rules counted against the nesting limit
NESTING_RULES = frozenset(['const_list', 'const_map', 'map_type', 'set_type', 'list_type'])


def _int64(token) -> int:
    value = int(token)
    if not INT64_MIN <= value <= INT64_MAX:
        raise ValueError(f"Integer constant {token} overflows 64 bits")
    return value


class TokenBoundaries(PostLex):
    """Reject adjacent tokens that the source did not separate.

    A definition keyword may follow its predecessor directly, since a
    definition never needs a separator in front of it.
    """

    def process(self, stream):
        previous = None
        for token in stream:
            if previous is not None and self._touching(previous, token):
                raise UnexpectedToken(token, {'separator'})
            previous = token
            yield token

    @staticmethod
    def _touching(previous, token) -> bool:
        if previous.end_pos != token.start_pos:
            return False
        if token.type != 'IDENTIFIER' and token in DEFINITION_KEYWORDS:
            return False
        if previous == '>':
            # Container type followed by a name
            return token.type == 'IDENTIFIER'
        return previous[-1] in WORD_END and token[0] in WORD_START


def check_nesting(tree: Tree, max_depth: int):
    """Raise ValueError if containers in the parse tree nest deeper than max_depth."""
    stack = [(tree, 0)]
    while stack:
        node, depth = stack.pop()
        if node.data in NESTING_RULES:
            depth += 1
            if depth > max_depth:
                raise ValueError(f"Nesting deeper than {max_depth} levels in {node.data}")
        stack.extend((child, depth) for child in node.children if isinstance(child, Tree))


@v_args(inline=True)
class ThriftTransformer(Transformer_NonRecursive):
    """Transform Lark parse tree into our AST nodes."""

    # =========================================================================
    # Top-level
    # =========================================================================

    def start(self, *definitions):
        return build_document(list(definitions))

    def include(self, path):
        return Include(self._unquote(path))

    def cpp_include(self, path):
        return CppInclude(self._unquote(path))

    def namespace(self, scope, name):
        return Namespace(scope=scope, name=str(name))

    def namespace_scope(self, token):
        scope = str(token)
        if scope not in NAMESPACE_SCOPES:
            raise ValueError(f"Unknown namespace scope: {scope}")
        return scope

    # =========================================================================
    # Definitions
    # =========================================================================

    @v_args(meta=True, inline=True)
    def typedef(self, meta, old, alias):
        return TypedefDecl(old=old, alias=str(alias), line=meta.line, column=meta.column)

    @v_args(meta=True, inline=True)
    def const(self, meta, field_type, name, value):
        return ConstDecl(name=str(name), type=field_type, value=value,
                         line=meta.line, column=meta.column)

    @v_args(meta=True, inline=True)
    def enum(self, meta, name, *values):
        return EnumDecl(name=str(name), values=list(values),
                        line=meta.line, column=meta.column)

    @v_args(meta=True, inline=True)
    def enum_value(self, meta, name, value=None):
        return EnumValue(name=str(name), value=None if value is None else _int64(value),
                         line=meta.line, column=meta.column)

    @v_args(meta=True, inline=True)
    def struct(self, meta, name, *fields):
        return StructDecl(name=str(name), fields=list(fields),
                          line=meta.line, column=meta.column)

    @v_args(meta=True, inline=True)
    def union(self, meta, name, *fields):
        return UnionDecl(name=str(name), fields=list(fields),
                         line=meta.line, column=meta.column)

    @v_args(meta=True, inline=True)
    def exception(self, meta, name, *fields):
        return ExceptionDecl(name=str(name), fields=list(fields),
                             line=meta.line, column=meta.column)

    @v_args(meta=True, inline=True)
    def service(self, meta, name, extends, *functions):
        return ServiceDecl(name=str(name),
                           extends=None if extends is None else str(extends),
                           functions=list(functions),
                           line=meta.line, column=meta.column)

    # =========================================================================
    # Fields and functions
    # =========================================================================

    @v_args(meta=True, inline=True)
    def field(self, meta, field_id, required, field_type, name, default):
        return Field(
            type=field_type,
            name=str(name),
            id=None if field_id is None else _int64(field_id),
            required=required,
            default=default,
            line=meta.line,
            column=meta.column,
        )

    def field_req(self, token):
        return token == 'required'

    @v_args(meta=True, inline=True)
    def function(self, meta, oneway, returns, name, parameters, exceptions):
        return FunctionDecl(
            name=str(name),
            returns=returns,
            oneway=oneway is not None,
            parameters=parameters,
            exceptions=exceptions,
            line=meta.line,
            column=meta.column,
        )

    def function_type(self, field_type=None):
        # 'void' leaves no children
        return field_type

    def parameters(self, *fields):
        return list(fields)

    def throws(self, *fields):
        return list(fields)

    # =========================================================================
    # Types
    # =========================================================================

    def base_type(self, token):
        return BaseType(str(token))

    def identifier_type(self, name):
        return Identifier(str(name))

    def map_type(self, cpp_type, key_type, value_type):
        return MapType(key_type, value_type)

    def set_type(self, cpp_type, element_type):
        return SetType(element_type)

    def list_type(self, element_type, cpp_type):
        return ListType(element_type)

    def cpp_type(self, literal):
        return CppType(Literal(self._unquote(literal)))

    # =========================================================================
    # Constant values
    # =========================================================================

    def const_identifier(self, name):
        return Identifier(str(name))

    def const_literal(self, token):
        return Literal(self._unquote(token))

    def const_double(self, token):
        return DoubleConstant(float(token))

    def const_int(self, token):
        return IntConstant(_int64(token))

    def const_list(self, *values):
        return ConstList(list(values))

    def const_map(self, *items):
        return ConstMap(list(zip(items[0::2], items[1::2])))

    # =========================================================================
    # Helpers
    # =========================================================================

    def _unquote(self, s):
        """Remove the surrounding quotes from a LITERAL token."""
        return str(s)[1:-1]


# Create parser instance
_parser = None


def get_parser():
    """Get or create the Lark parser instance."""
    global _parser
    if _parser is None:
        with open(GRAMMAR_PATH) as f:
            grammar = f.read()
        _parser = Lark(
            grammar,
            parser='lalr',
            lexer='contextual',
            propagate_positions=True,
            maybe_placeholders=True,
            postlex=TokenBoundaries(),
        )
    return _parser


def parse(source: str, max_depth: int = MAX_NESTING_DEPTH) -> Document:
    """Parse IDL source into a Document.

    Raises lark.exceptions.UnexpectedInput on a syntax error and ValueError
    for an overflowing integer, an unknown namespace scope or nesting deeper
    than max_depth.
    """
    parser = get_parser()
    tree = parser.parse(source)
    check_nesting(tree, max_depth)
    transformer = ThriftTransformer()
    try:
        return transformer.transform(tree)
    except VisitError as e:
        raise e.orig_exc from e


def parse_file(path, max_depth: int = MAX_NESTING_DEPTH) -> Document:
    """Parse an IDL file into a Document."""
    LOGGER.debug("Parsing %s with the grammar parser", path)
    with open(path, encoding='utf-8') as f:
        return parse(f.read(), max_depth=max_depth)
