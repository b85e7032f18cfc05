"""
AST node definitions for the Thrift IDL.
"""

import math
import sys
from dataclasses import dataclass, field
from typing import List, Optional, Tuple, Union
from enum import Enum


# =============================================================================
# Lexical values
# =============================================================================

@dataclass(frozen=True)
class Literal:
    """Quoted string constant, quotes stripped, no escape processing."""
    value: str


@dataclass(frozen=True)
class Identifier:
    """Name reference (constant value or named field type)."""
    name: str


@dataclass(frozen=True)
class Comment:
    """Text of a //, # or /* */ comment without its delimiters."""
    text: str


# =============================================================================
# Constant values
# =============================================================================

@dataclass(frozen=True)
class IntConstant:
    """Signed 64-bit integer literal."""
    value: int


@dataclass(frozen=True, eq=False)
class DoubleConstant:
    """Floating point literal. Compares approximately."""
    value: float

    def __eq__(self, other):
        if not isinstance(other, DoubleConstant):
            return NotImplemented
        if self.value == other.value:
            return True
        return math.isclose(self.value, other.value, rel_tol=4 * sys.float_info.epsilon)


@dataclass(frozen=True)
class ConstList:
    """List constant: [v1, v2, ...]."""
    values: List['ConstValue'] = field(default_factory=list)


@dataclass(frozen=True)
class ConstMap:
    """Map constant: {k1: v1, k2: v2, ...}."""
    entries: List[Tuple['ConstValue', 'ConstValue']] = field(default_factory=list)


ConstValue = Union[Identifier, Literal, DoubleConstant, IntConstant, ConstList, ConstMap]


# =============================================================================
# Types
# =============================================================================

class BaseType(Enum):
    """Primitive field types. The value is the IDL keyword."""
    BOOL = "bool"
    BYTE = "byte"
    I8 = "i8"
    I16 = "i16"
    I32 = "i32"
    I64 = "i64"
    DOUBLE = "double"
    STRING = "string"
    BINARY = "binary"


@dataclass(frozen=True)
class MapType:
    """map<key_type, value_type>"""
    key_type: 'FieldType'
    value_type: 'FieldType'


@dataclass(frozen=True)
class SetType:
    """set<element_type>"""
    element_type: 'FieldType'


@dataclass(frozen=True)
class ListType:
    """list<element_type>"""
    element_type: 'FieldType'


@dataclass(frozen=True)
class CppType:
    """cpp_type annotation. Recognized, never attached to a FieldType."""
    literal: Literal


FieldType = Union[BaseType, MapType, SetType, ListType, Identifier]


# =============================================================================
# Fields and functions
# =============================================================================

@dataclass(frozen=True)
class Field:
    """Struct member, function parameter or thrown exception.

    required is True for 'required', False for 'optional' and None when
    no requiredness keyword was written.
    """
    type: FieldType
    name: str
    id: Optional[int] = None
    required: Optional[bool] = None
    default: Optional[ConstValue] = None
    line: int = field(default=0, compare=False, repr=False)
    column: int = field(default=0, compare=False, repr=False)


@dataclass(frozen=True)
class FunctionDecl:
    """Service operation. returns is None for void, exceptions is None
    when there is no throws clause."""
    name: str
    returns: Optional[FieldType] = None
    oneway: bool = False
    parameters: List[Field] = field(default_factory=list)
    exceptions: Optional[List[Field]] = None
    line: int = field(default=0, compare=False, repr=False)
    column: int = field(default=0, compare=False, repr=False)


# =============================================================================
# Definitions
# =============================================================================

@dataclass(frozen=True)
class ConstDecl:
    name: str
    type: FieldType
    value: ConstValue
    line: int = field(default=0, compare=False, repr=False)
    column: int = field(default=0, compare=False, repr=False)


@dataclass(frozen=True)
class TypedefDecl:
    """typedef <old> <alias>. old is never an Identifier."""
    old: FieldType
    alias: str
    line: int = field(default=0, compare=False, repr=False)
    column: int = field(default=0, compare=False, repr=False)


@dataclass(frozen=True)
class EnumValue:
    name: str
    value: Optional[int] = None
    line: int = field(default=0, compare=False, repr=False)
    column: int = field(default=0, compare=False, repr=False)


@dataclass(frozen=True)
class EnumDecl:
    name: str
    values: List[EnumValue] = field(default_factory=list)
    line: int = field(default=0, compare=False, repr=False)
    column: int = field(default=0, compare=False, repr=False)


@dataclass(frozen=True)
class StructDecl:
    name: str
    fields: List[Field] = field(default_factory=list)
    line: int = field(default=0, compare=False, repr=False)
    column: int = field(default=0, compare=False, repr=False)


@dataclass(frozen=True)
class UnionDecl:
    name: str
    fields: List[Field] = field(default_factory=list)
    line: int = field(default=0, compare=False, repr=False)
    column: int = field(default=0, compare=False, repr=False)


@dataclass(frozen=True)
class ExceptionDecl:
    name: str
    fields: List[Field] = field(default_factory=list)
    line: int = field(default=0, compare=False, repr=False)
    column: int = field(default=0, compare=False, repr=False)


@dataclass(frozen=True)
class ServiceDecl:
    name: str
    extends: Optional[str] = None
    functions: List[FunctionDecl] = field(default_factory=list)
    line: int = field(default=0, compare=False, repr=False)
    column: int = field(default=0, compare=False, repr=False)


# =============================================================================
# Header
# =============================================================================

# Closed set of namespace scopes, '*' meaning all languages
NAMESPACE_SCOPES = (
    '*', 'c_glib', 'rust', 'cpp', 'delphi', 'haxe', 'go', 'java', 'js', 'lua',
    'netstd', 'perl', 'php', 'py', 'py.twisted', 'rb', 'st', 'xsd',
)


@dataclass(frozen=True)
class Include:
    path: str


@dataclass(frozen=True)
class CppInclude:
    path: str


@dataclass(frozen=True)
class Namespace:
    scope: str
    name: str


Definition = Union[
    Include, CppInclude, Namespace, TypedefDecl, ConstDecl, EnumDecl,
    StructDecl, UnionDecl, ExceptionDecl, ServiceDecl,
]


# =============================================================================
# Document
# =============================================================================

@dataclass(frozen=True)
class Document:
    """Whole parsed file.

    Order is preserved within each category but not across categories.
    """
    includes: List[Include] = field(default_factory=list)
    cpp_includes: List[CppInclude] = field(default_factory=list)
    namespaces: List[Namespace] = field(default_factory=list)
    typedefs: List[TypedefDecl] = field(default_factory=list)
    consts: List[ConstDecl] = field(default_factory=list)
    enums: List[EnumDecl] = field(default_factory=list)
    structs: List[StructDecl] = field(default_factory=list)
    unions: List[UnionDecl] = field(default_factory=list)
    exceptions: List[ExceptionDecl] = field(default_factory=list)
    services: List[ServiceDecl] = field(default_factory=list)

    def definitions(self) -> List[Definition]:
        """All definitions, grouped by category in document field order."""
        return [
            *self.includes, *self.cpp_includes, *self.namespaces,
            *self.typedefs, *self.consts, *self.enums, *self.structs,
            *self.unions, *self.exceptions, *self.services,
        ]


# Maps each definition class to the Document attribute that collects it
DOCUMENT_CATEGORIES = {
    Include: 'includes',
    CppInclude: 'cpp_includes',
    Namespace: 'namespaces',
    TypedefDecl: 'typedefs',
    ConstDecl: 'consts',
    EnumDecl: 'enums',
    StructDecl: 'structs',
    UnionDecl: 'unions',
    ExceptionDecl: 'exceptions',
    ServiceDecl: 'services',
}


def build_document(definitions: List[Definition]) -> Document:
    """Sort definitions into a Document, keeping encounter order per category."""
    buckets = {name: [] for name in DOCUMENT_CATEGORIES.values()}
    for definition in definitions:
        buckets[DOCUMENT_CATEGORIES[type(definition)]].append(definition)
    return Document(**buckets)
