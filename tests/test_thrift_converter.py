"""
Tests for canonical IDL rendering and dict conversion.
"""

import json

import pytest
import sys
from pathlib import Path

# Add project directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from thrift_ast import (
    BaseType, MapType, SetType, ListType, Identifier, Literal,
    IntConstant, DoubleConstant, ConstList, ConstMap, Field, FunctionDecl,
    ConstDecl, StructDecl, Document, build_document,
)
from thrift_converter import (
    type_to_str, const_value_to_str, field_to_str, function_to_str,
    document_to_idl, ast_to_dict,
)
from thrift_parser import parse_strict
from thrift_peg_parser import parse as peg_parse

from test_thrift_parser import TUTORIAL


class TestTypeToStr:

    def test_base_type(self):
        assert type_to_str(BaseType.BINARY) == "binary"

    def test_nested(self):
        field_type = MapType(BaseType.STRING, ListType(SetType(BaseType.I32)))
        assert type_to_str(field_type) == "map<string,list<set<i32>>>"

    def test_named(self):
        assert type_to_str(Identifier("shared.Work")) == "shared.Work"


class TestConstValueToStr:

    def test_scalars(self):
        assert const_value_to_str(IntConstant(-3)) == "-3"
        assert const_value_to_str(DoubleConstant(2.5)) == "2.5"
        assert const_value_to_str(Identifier("Op.ADD")) == "Op.ADD"

    def test_literal_quoting(self):
        assert const_value_to_str(Literal("plain")) == '"plain"'
        assert const_value_to_str(Literal('say "hi"')) == "'say \"hi\"'"

    def test_literal_with_both_quotes(self):
        with pytest.raises(ValueError):
            const_value_to_str(Literal("it's \"both\""))

    def test_infinite_double(self):
        with pytest.raises(ValueError):
            const_value_to_str(DoubleConstant(float("inf")))

    def test_collections(self):
        value = ConstMap([(Literal("a"), ConstList([IntConstant(1), IntConstant(2)]))])
        assert const_value_to_str(value) == '{"a": [1, 2]}'


class TestFieldsAndFunctions:

    def test_field(self):
        field = Field(type=BaseType.I32, name="age", id=2, required=True, default=IntConstant(18))
        assert field_to_str(field) == "2: required i32 age = 18"

    def test_bare_field(self):
        assert field_to_str(Field(type=Identifier("Work"), name="w")) == "Work w"

    def test_function(self):
        function = FunctionDecl(
            name="calc",
            returns=BaseType.I32,
            parameters=[Field(type=BaseType.I32, name="a", id=1)],
            exceptions=[Field(type=Identifier("Oops"), name="o", id=1)],
        )
        assert function_to_str(function) == "i32 calc(1: i32 a) throws (1: Oops o)"

    def test_oneway_void(self):
        assert function_to_str(FunctionDecl(name="zip", oneway=True)) == "oneway void zip()"


class TestDocumentToIdl:

    def test_empty(self):
        assert document_to_idl(Document()) == ""

    def test_layout(self):
        document = build_document([
            StructDecl(name="A", fields=[Field(type=BaseType.I32, name="x", id=1)]),
            ConstDecl(name="C", type=BaseType.I32, value=IntConstant(1)),
        ])
        assert document_to_idl(document) == (
            "const i32 C = 1\n"
            "\n"
            "struct A {\n"
            "  1: i32 x,\n"
            "}\n"
        )

    def test_round_trip_struct(self):
        document = parse_strict("struct user{1:optional string name; 2:i32 age=18}")
        assert parse_strict(document_to_idl(document)) == document

    def test_round_trip_tutorial(self):
        document = parse_strict(TUTORIAL)
        text = document_to_idl(document)
        assert parse_strict(text) == document
        assert peg_parse(text) == document

    def test_round_trip_constants(self):
        source = """
            const list<double> D = [1.5, -0.25, 1e+16, 3.0]
            const map<string,list<i32>> M = {"a": [1, 2], 'b"': []}
            const Operation OP = Operation.ADD
        """
        document = parse_strict(source)
        assert parse_strict(document_to_idl(document)) == document


class TestAstToDict:

    def test_tutorial(self):
        data = ast_to_dict(parse_strict(TUTORIAL))
        assert data["includes"] == ["shared.thrift"]
        assert data["namespaces"][1] == {"scope": "py.twisted", "name": "tutorial.twisted"}
        assert data["typedefs"] == [{"alias": "MyInteger", "type": "i32"}]
        assert data["consts"][1]["value"] == [["hello", "world"], ["goodnight", "moon"]]
        assert data["enums"][0]["values"][0] == {"name": "ADD", "value": 1}
        work = data["structs"][0]
        assert work["fields"][0] == {
            "id": 1, "name": "num1", "type": "i32", "required": "default", "default": 0,
        }
        assert work["fields"][3]["required"] == "optional"
        calculate = data["services"][0]["functions"][2]
        assert calculate["throws"][0]["type"] == "InvalidOperation"
        assert data["services"][0]["functions"][0]["returns"] is None

    def test_identifier_values_are_tagged(self):
        data = ast_to_dict(parse_strict("const Op X = Op.ADD"))
        assert data["consts"][0]["value"] == {"ref": "Op.ADD"}

    def test_json_serializable(self):
        data = ast_to_dict(parse_strict(TUTORIAL))
        assert json.loads(json.dumps(data)) == data
