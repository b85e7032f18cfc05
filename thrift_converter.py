"""
Thrift AST converter utilities.

Provides:
- document_to_idl(): Render a Document as canonical IDL text
- ast_to_dict(): Convert a Document to plain JSON-serializable data

Canonical text drops comments and original spacing. Parsing it again gives a
Document equal to the one it was rendered from.
"""

import math
from typing import Any, Dict, List

from thrift_ast import (
    BaseType, MapType, SetType, ListType, Identifier, Literal,
    IntConstant, DoubleConstant, ConstList, ConstMap,
    Field, FunctionDecl, ConstDecl, TypedefDecl, EnumDecl, EnumValue,
    StructDecl, UnionDecl, ExceptionDecl, ServiceDecl,
    Include, CppInclude, Namespace, Document,
)


INDENT = "  "


# =============================================================================
# Canonical IDL text
# =============================================================================

def type_to_str(field_type) -> str:
    """Convert a FieldType to IDL text, e.g. 'map<string,list<i32>>'."""
    if isinstance(field_type, BaseType):
        return field_type.value
    elif isinstance(field_type, MapType):
        return f"map<{type_to_str(field_type.key_type)},{type_to_str(field_type.value_type)}>"
    elif isinstance(field_type, SetType):
        return f"set<{type_to_str(field_type.element_type)}>"
    elif isinstance(field_type, ListType):
        return f"list<{type_to_str(field_type.element_type)}>"
    elif isinstance(field_type, Identifier):
        return field_type.name
    raise TypeError(f"Not a field type: {field_type!r}")


def literal_to_str(value: str) -> str:
    """Quote a literal, using single quotes when it contains a double quote."""
    if '"' not in value:
        return f'"{value}"'
    if "'" not in value:
        return f"'{value}'"
    # Literals have no escapes
    raise ValueError(f"Literal contains both quote characters: {value!r}")


def const_value_to_str(value) -> str:
    if isinstance(value, Identifier):
        return value.name
    elif isinstance(value, Literal):
        return literal_to_str(value.value)
    elif isinstance(value, IntConstant):
        return str(value.value)
    elif isinstance(value, DoubleConstant):
        if not math.isfinite(value.value):
            raise ValueError(f"Double constant {value.value} has no IDL spelling")
        return repr(value.value)
    elif isinstance(value, ConstList):
        return "[" + ", ".join(const_value_to_str(v) for v in value.values) + "]"
    elif isinstance(value, ConstMap):
        entries = (f"{const_value_to_str(k)}: {const_value_to_str(v)}" for k, v in value.entries)
        return "{" + ", ".join(entries) + "}"
    raise TypeError(f"Not a constant value: {value!r}")


def field_to_str(field: Field) -> str:
    parts = []
    if field.id is not None:
        parts.append(f"{field.id}:")
    if field.required is True:
        parts.append("required")
    elif field.required is False:
        parts.append("optional")
    parts.append(type_to_str(field.type))
    parts.append(field.name)
    if field.default is not None:
        parts.append(f"= {const_value_to_str(field.default)}")
    return " ".join(parts)


def _fields_to_str(fields: List[Field]) -> str:
    return ", ".join(field_to_str(f) for f in fields)


def function_to_str(function: FunctionDecl) -> str:
    returns = "void" if function.returns is None else type_to_str(function.returns)
    text = f"{returns} {function.name}({_fields_to_str(function.parameters)})"
    if function.oneway:
        text = "oneway " + text
    if function.exceptions is not None:
        text += f" throws ({_fields_to_str(function.exceptions)})"
    return text


def _enum_value_to_str(value: EnumValue) -> str:
    if value.value is None:
        return value.name
    return f"{value.name} = {value.value}"


def _block(header: str, lines: List[str]) -> List[str]:
    if not lines:
        return [header + " {}"]
    return [header + " {"] + [f"{INDENT}{line}," for line in lines] + ["}"]


def definition_to_lines(definition) -> List[str]:
    """Render one definition as a list of IDL lines."""
    if isinstance(definition, Include):
        return [f"include {literal_to_str(definition.path)}"]
    elif isinstance(definition, CppInclude):
        return [f"cpp_include {literal_to_str(definition.path)}"]
    elif isinstance(definition, Namespace):
        return [f"namespace {definition.scope} {definition.name}"]
    elif isinstance(definition, TypedefDecl):
        return [f"typedef {type_to_str(definition.old)} {definition.alias}"]
    elif isinstance(definition, ConstDecl):
        return [f"const {type_to_str(definition.type)} {definition.name} = "
                f"{const_value_to_str(definition.value)}"]
    elif isinstance(definition, EnumDecl):
        return _block(f"enum {definition.name}",
                      [_enum_value_to_str(v) for v in definition.values])
    elif isinstance(definition, (StructDecl, UnionDecl, ExceptionDecl)):
        keyword = {StructDecl: "struct", UnionDecl: "union", ExceptionDecl: "exception"}
        return _block(f"{keyword[type(definition)]} {definition.name}",
                      [field_to_str(f) for f in definition.fields])
    elif isinstance(definition, ServiceDecl):
        header = f"service {definition.name}"
        if definition.extends is not None:
            header += f" extends {definition.extends}"
        return _block(header, [function_to_str(f) for f in definition.functions])
    raise TypeError(f"Not a definition: {definition!r}")


def document_to_idl(document: Document) -> str:
    """Render a Document as canonical IDL text.

    Header lines come first, then one blank line between definitions.
    """
    header = []
    body = []
    for definition in document.definitions():
        if isinstance(definition, (Include, CppInclude, Namespace)):
            header.extend(definition_to_lines(definition))
        else:
            body.append("\n".join(definition_to_lines(definition)))
    sections = []
    if header:
        sections.append("\n".join(header))
    sections.extend(body)
    return "\n\n".join(sections) + "\n" if sections else ""


# =============================================================================
# Plain data
# =============================================================================

def const_value_to_data(value) -> Any:
    """Convert a ConstValue to JSON-compatible data.

    Identifiers become {"ref": name} so they stay distinct from literals.
    Maps become lists of [key, value] pairs since keys may be lists or maps.
    """
    if isinstance(value, Identifier):
        return {"ref": value.name}
    elif isinstance(value, Literal):
        return value.value
    elif isinstance(value, (IntConstant, DoubleConstant)):
        return value.value
    elif isinstance(value, ConstList):
        return [const_value_to_data(v) for v in value.values]
    elif isinstance(value, ConstMap):
        return [[const_value_to_data(k), const_value_to_data(v)] for k, v in value.entries]
    raise TypeError(f"Not a constant value: {value!r}")


def field_to_dict(field: Field) -> Dict[str, Any]:
    result = {
        "id": field.id,
        "name": field.name,
        "type": type_to_str(field.type),
        "required": {True: "required", False: "optional", None: "default"}[field.required],
    }
    if field.default is not None:
        result["default"] = const_value_to_data(field.default)
    return result


def function_to_dict(function: FunctionDecl) -> Dict[str, Any]:
    return {
        "name": function.name,
        "oneway": function.oneway,
        "returns": None if function.returns is None else type_to_str(function.returns),
        "parameters": [field_to_dict(f) for f in function.parameters],
        "throws": (None if function.exceptions is None
                   else [field_to_dict(f) for f in function.exceptions]),
    }


def ast_to_dict(document: Document) -> Dict[str, Any]:
    """Convert a Document to a dict of JSON-serializable lists, keyed by category."""
    return {
        "includes": [i.path for i in document.includes],
        "cpp_includes": [i.path for i in document.cpp_includes],
        "namespaces": [{"scope": n.scope, "name": n.name} for n in document.namespaces],
        "typedefs": [{"alias": t.alias, "type": type_to_str(t.old)} for t in document.typedefs],
        "consts": [
            {"name": c.name, "type": type_to_str(c.type), "value": const_value_to_data(c.value)}
            for c in document.consts
        ],
        "enums": [
            {"name": e.name, "values": [{"name": v.name, "value": v.value} for v in e.values]}
            for e in document.enums
        ],
        "structs": [_record_to_dict(s) for s in document.structs],
        "unions": [_record_to_dict(u) for u in document.unions],
        "exceptions": [_record_to_dict(x) for x in document.exceptions],
        "services": [
            {
                "name": s.name,
                "extends": s.extends,
                "functions": [function_to_dict(f) for f in s.functions],
            }
            for s in document.services
        ],
    }


def _record_to_dict(record) -> Dict[str, Any]:
    return {"name": record.name, "fields": [field_to_dict(f) for f in record.fields]}
