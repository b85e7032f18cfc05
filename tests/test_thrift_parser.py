"""
Tests for the recursive descent Thrift IDL parser.
"""

import pytest
import sys
from pathlib import Path

# Add project directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from thrift_ast import (
    BaseType, MapType, SetType, ListType, CppType, Identifier, Literal,
    IntConstant, DoubleConstant, ConstList, ConstMap,
    Field, FunctionDecl, ConstDecl, TypedefDecl, EnumDecl, EnumValue,
    StructDecl, UnionDecl, ExceptionDecl, ServiceDecl,
    Include, CppInclude, Namespace, Document,
)
from thrift_errors import ErrorKind, ParseError, NestingError
from thrift_parser import (
    Parser, parse, parse_strict, parse_file, parse_production,
    PRODUCTIONS, MAX_NESTING_DEPTH,
)


TUTORIAL = """\
include "shared.thrift"
cpp_include "<vector>"
namespace cpp tutorial
namespace py.twisted tutorial.twisted

typedef i32 MyInteger
const i32 INT32CONSTANT = 9853
const map<string,string> MAPCONSTANT = {'hello':'world', 'goodnight':'moon'}

/**
 * You can define enums, which are just 32 bit integers.
 */
enum Operation {
  ADD = 1,
  SUBTRACT = 2,
  MULTIPLY = 3,
  DIVIDE = 4
}

struct Work {
  1: i32 num1 = 0,
  2: i32 num2,
  3: Operation op,
  4: optional string comment,
}

exception InvalidOperation {
  1: i32 whatOp,
  2: string why
}

union Value { 1: i64 i; 2: string s }

service Calculator extends shared.SharedService {
   void ping(),
   i32 add(1:i32 num1, 2:i32 num2),
   i32 calculate(1:i32 logid, 2:Work w) throws (1:InvalidOperation ouch),
   oneway void zip()   // fire and forget
}
"""


def production(name, source, **kwargs):
    """Run one production and require it to consume the whole input."""
    remainder, value = parse_production(name, source, **kwargs)
    assert remainder == "", f"unconsumed input: {remainder!r}"
    return value


# =============================================================================
# Numbers
# =============================================================================

class TestNumbers:

    def test_int(self):
        assert production("int_constant", "123") == IntConstant(123)

    def test_signed_int(self):
        assert production("int_constant", "+42") == IntConstant(42)
        assert production("int_constant", "-7") == IntConstant(-7)

    def test_int64_bounds(self):
        assert production("int_constant", "9223372036854775807") == IntConstant(2 ** 63 - 1)
        assert production("int_constant", "-9223372036854775808") == IntConstant(-2 ** 63)

    def test_int_overflow(self):
        with pytest.raises(ParseError) as exc_info:
            parse_production("int_constant", "-10000000000000000000000000000000")
        assert exc_info.value.kind == ErrorKind.NUMBER

    def test_int_just_past_max(self):
        with pytest.raises(ParseError) as exc_info:
            parse_production("int_constant", "9223372036854775808")
        assert exc_info.value.kind == ErrorKind.NUMBER

    def test_not_an_int(self):
        with pytest.raises(ParseError):
            parse_production("int_constant", "abc")

    def test_double(self):
        assert production("double_constant", "123.0") == DoubleConstant(123.0)

    @pytest.mark.parametrize("text,value", [
        ("1e10", 1e10),
        ("-.5", -0.5),
        ("1.5E-3", 0.0015),
        ("+2.0e+2", 200.0),
        ("0.1", 0.1),
    ])
    def test_double_forms(self, text, value):
        assert production("double_constant", text) == DoubleConstant(value)

    def test_lenient_double_accepts_integer_text(self):
        assert production("double_constant", "123") == DoubleConstant(123.0)

    def test_strict_double_rejects_integer_text(self):
        with pytest.raises(ParseError) as exc_info:
            parse_production("strict_double_constant", "123")
        assert exc_info.value.kind == ErrorKind.NUMBER

    def test_strict_double_accepts_fraction(self):
        assert production("strict_double_constant", "123.0") == DoubleConstant(123.0)

    def test_double_stops_before_bare_dot(self):
        remainder, value = parse_production("double_constant", "1.x")
        assert value == DoubleConstant(1.0)
        assert remainder == ".x"

    def test_double_compares_approximately(self):
        assert DoubleConstant(0.1 + 0.2) == DoubleConstant(0.3)
        assert DoubleConstant(1.0) != DoubleConstant(1.001)


# =============================================================================
# Constant values
# =============================================================================

class TestConstValues:

    def test_alternatives(self):
        assert production("const_value", "x") == Identifier("x")
        assert production("const_value", '"s"') == Literal("s")
        assert production("const_value", "1.5") == DoubleConstant(1.5)
        assert production("const_value", "7") == IntConstant(7)

    def test_integer_text_is_int_not_double(self):
        assert isinstance(production("const_value", "123"), IntConstant)

    def test_dotted_identifier(self):
        assert production("const_value", "Operation.ADD") == Identifier("Operation.ADD")

    def test_list_with_mixed_separators(self):
        expected = ConstList([
            IntConstant(1), IntConstant(3), IntConstant(5), IntConstant(6),
            IntConstant(7), Identifier("x"), DoubleConstant(1.1),
        ])
        assert production("const_list", "[1,3;5 6 7,x 1.1]") == expected

    @pytest.mark.parametrize("source", [
        "[1 3 5 6 7 x 1.1]",
        "[1;3;5;6;7;x;1.1]",
        "[ 1 , 3 ; 5 6 7 , x 1.1 ]",
        "[1,\n3 // three\n,5 /* five */ 6;7 x,1.1,]",
    ])
    def test_list_separator_insensitive(self, source):
        assert production("const_list", source) == production("const_list", "[1,3;5 6 7,x 1.1]")

    def test_empty_list(self):
        assert production("const_list", "[]") == ConstList([])
        assert production("const_list", "[ ]") == ConstList([])

    def test_trailing_separator(self):
        assert production("const_list", "[1,2,]") == ConstList([IntConstant(1), IntConstant(2)])

    def test_list_rejects_glued_element(self):
        with pytest.raises(ParseError):
            parse_production("const_list", "[1,2,3A]")

    def test_list_rejects_double_separator(self):
        with pytest.raises(ParseError):
            parse_production("const_list", "[1,,2]")

    def test_map(self):
        value = production("const_map", "{'a': 1, \"b\": [1, 2]}")
        assert value == ConstMap([
            (Literal("a"), IntConstant(1)),
            (Literal("b"), ConstList([IntConstant(1), IntConstant(2)])),
        ])

    def test_empty_map(self):
        assert production("const_map", "{}") == ConstMap([])

    def test_map_rejects_chained_colons(self):
        with pytest.raises(ParseError):
            parse_production("const_map", "{1:34:5}")

    def test_nested_values(self):
        value = production("const_value", "{1: {2: [3, [4]]}}")
        inner = ConstMap([(IntConstant(2), ConstList([IntConstant(3), ConstList([IntConstant(4)])]))])
        assert value == ConstMap([(IntConstant(1), inner)])


# =============================================================================
# Types
# =============================================================================

class TestFieldTypes:

    @pytest.mark.parametrize("base_type", list(BaseType))
    def test_base_types(self, base_type):
        assert production("field_type", base_type.value) == base_type

    def test_keyword_prefix_is_identifier(self):
        assert production("field_type", "boolean") == Identifier("boolean")
        assert production("field_type", "i32x") == Identifier("i32x")
        assert production("field_type", "string.Type") == Identifier("string.Type")

    def test_nested_containers(self):
        expected = MapType(BaseType.STRING, ListType(SetType(BaseType.I32)))
        assert production("field_type", "map<string,list<set<i32>>>") == expected

    def test_whitespace_inside_containers(self):
        expected = MapType(BaseType.STRING, BaseType.I32)
        assert production("field_type", "map < string , i32 >") == expected

    def test_named_element_type(self):
        assert production("field_type", "list<shared.Work>") == ListType(Identifier("shared.Work"))

    def test_cpp_type_after_list(self):
        value = production("field_type", 'list<i32> cpp_type "std::vector<int>"')
        assert value == ListType(BaseType.I32)

    def test_cpp_type_before_angle_bracket(self):
        assert production("field_type", 'set cpp_type "std::set" <i32>') == SetType(BaseType.I32)
        assert production("field_type", "map cpp_type 'M'<i8,i16>") == MapType(BaseType.I8, BaseType.I16)

    def test_cpp_type(self):
        assert production("cpp_type", 'cpp_type "x"') == CppType(Literal("x"))

    def test_incomplete_container_falls_back_to_identifier(self):
        assert parse_production("field_type", "list<>") == ("<>", Identifier("list"))
        assert parse_production("field_type", "map<string>") == ("<string>", Identifier("map"))

    def test_incomplete_container_in_field(self):
        with pytest.raises(ParseError):
            parse_production("field", "list<> x")
        with pytest.raises(ParseError):
            parse_production("field", "1: map<string> x")


# =============================================================================
# Fields and functions
# =============================================================================

class TestField:

    def test_full_field(self):
        field = production("field", "1: required i32 id = 5;")
        assert field == Field(type=BaseType.I32, name="id", id=1, required=True,
                              default=IntConstant(5))

    def test_bare_field(self):
        assert production("field", "string name") == Field(type=BaseType.STRING, name="name")

    def test_optional(self):
        field = production("field", "2:optional list<string> tags,")
        assert field.required is False
        assert field.type == ListType(BaseType.STRING)

    def test_requiredness_keyword_boundary(self):
        field = production("field", "optionalx y")
        assert field == Field(type=Identifier("optionalx"), name="y")

    def test_keyword_as_field_name(self):
        assert production("field", "1: i32 list").name == "list"

    def test_missing_name(self):
        with pytest.raises(ParseError):
            parse_production("field", "1:i32")

    def test_type_and_name_need_separator(self):
        remainder, field = parse_production("field", "i32/**/x")
        assert field.name == "x"


class TestFunction:

    def test_void_no_args(self):
        function = production("function", "void ping()")
        assert function == FunctionDecl(name="ping", returns=None)
        assert function.exceptions is None

    def test_oneway(self):
        assert production("function", "oneway void zip()").oneway is True

    def test_parameters(self):
        function = production("function", "i32 add(1:i32 num1, 2:i32 num2)")
        assert function.returns == BaseType.I32
        assert [p.name for p in function.parameters] == ["num1", "num2"]
        assert [p.id for p in function.parameters] == [1, 2]

    def test_throws(self):
        function = production("function",
                              "i32 calc(1:i32 logid) throws (1:InvalidOperation ouch)")
        assert function.exceptions == [
            Field(type=Identifier("InvalidOperation"), name="ouch", id=1),
        ]

    def test_empty_throws(self):
        assert production("function", "void f() throws ()").exceptions == []

    def test_void_prefix_is_named_type(self):
        assert production("function", "voidResult get()").returns == Identifier("voidResult")

    def test_whitespace_inside_parentheses(self):
        function = production("function", "list<string> names( 1: i32 n )")
        assert function.parameters == [Field(type=BaseType.I32, name="n", id=1)]

    def test_throws_without_space_and_trailing_separator(self):
        function = production("function", "void f()throws(1:E e),")
        assert function.exceptions == [Field(type=Identifier("E"), name="e", id=1)]


# =============================================================================
# Definitions
# =============================================================================

class TestDefinitions:

    def test_struct_round_trip_shape(self):
        struct = production("struct", "struct user{1:optional string name; 2:i32 age=18}")
        assert struct.name == "user"
        assert struct.fields == [
            Field(type=BaseType.STRING, name="name", id=1, required=False),
            Field(type=BaseType.I32, name="age", id=2, required=None, default=IntConstant(18)),
        ]

    def test_fields_without_whitespace(self):
        struct = production("struct", "struct A{1:i32 a;2:i32 b}")
        assert [f.name for f in struct.fields] == ["a", "b"]

    def test_empty_struct(self):
        assert production("struct", "struct A {}") == StructDecl(name="A")

    def test_union_and_exception(self):
        assert production("union", "union U { 1: i32 a }") == UnionDecl(
            name="U", fields=[Field(type=BaseType.I32, name="a", id=1)])
        assert production("exception", "exception E { 1: string why }") == ExceptionDecl(
            name="E", fields=[Field(type=BaseType.STRING, name="why", id=1)])

    def test_enum(self):
        enum = production("enum", "enum Op { ADD = 1, SUB = 2; MUL DIV, }")
        assert enum.values == [
            EnumValue("ADD", 1), EnumValue("SUB", 2), EnumValue("MUL"), EnumValue("DIV"),
        ]

    def test_empty_enum(self):
        assert production("enum", "enum E{}") == EnumDecl(name="E")

    def test_enum_value_must_be_int(self):
        with pytest.raises(ParseError):
            parse_production("enum", "enum E { A = x }")

    def test_typedef(self):
        assert production("typedef", "typedef i32 MyInt") == TypedefDecl(BaseType.I32, "MyInt")
        typedef = production("typedef", "typedef map<i32,string> M;")
        assert typedef.old == MapType(BaseType.I32, BaseType.STRING)

    def test_typedef_of_named_type_rejected(self):
        with pytest.raises(ParseError):
            parse_production("typedef", "typedef Foo Bar")

    def test_const(self):
        const = production("const", "const i32 X = 9853")
        assert const == ConstDecl(name="X", type=BaseType.I32, value=IntConstant(9853))
        const = production("const", "const list<i32> L = [1,2,3];")
        assert const.value == ConstList([IntConstant(1), IntConstant(2), IntConstant(3)])

    def test_const_requires_equals(self):
        with pytest.raises(ParseError):
            parse_production("const", "const i32 X 5")

    def test_service(self):
        service = production(
            "service",
            "service Calc extends shared.Base { void ping(), i32 add(1:i32 a, 2:i32 b) }",
        )
        assert service.extends == "shared.Base"
        assert [f.name for f in service.functions] == ["ping", "add"]

    def test_functions_without_whitespace(self):
        service = production("service", "service S {void a(),void b()}")
        assert [f.name for f in service.functions] == ["a", "b"]

    def test_empty_service(self):
        assert production("service", "service S{}") == ServiceDecl(name="S")


class TestHeader:

    def test_include(self):
        assert production("include", 'include "shared.thrift"') == Include("shared.thrift")
        assert production("cpp_include", "cpp_include '<vector>'") == CppInclude("<vector>")

    def test_include_requires_separator(self):
        with pytest.raises(ParseError):
            parse_production("include", 'include"x"')

    @pytest.mark.parametrize("scope", ["*", "cpp", "py", "py.twisted", "netstd", "c_glib"])
    def test_namespace_scopes(self, scope):
        assert production("namespace", f"namespace {scope} a.b") == Namespace(scope, "a.b")

    def test_unknown_scope(self):
        with pytest.raises(ParseError):
            parse_production("namespace", "namespace python x")


# =============================================================================
# Documents and entry points
# =============================================================================

class TestDocument:

    def test_empty(self):
        assert parse("") == ("", Document())

    def test_no_definitions_keeps_whole_remainder(self):
        assert parse("  // nothing\n") == ("  // nothing\n", Document())
        assert parse("   garbage") == ("   garbage", Document())

    def test_trailing_comments_consumed_after_definition(self):
        assert parse("struct A {}  // tail\n") == ("", Document(structs=[StructDecl(name="A")]))

    def test_comment_only_source_is_valid(self):
        assert parse_strict("  // nothing\n/* at all */") == Document()

    def test_tutorial(self):
        remainder, document = parse(TUTORIAL)
        assert remainder == ""
        assert document.includes == [Include("shared.thrift")]
        assert document.cpp_includes == [CppInclude("<vector>")]
        assert document.namespaces == [
            Namespace("cpp", "tutorial"), Namespace("py.twisted", "tutorial.twisted"),
        ]
        assert [t.alias for t in document.typedefs] == ["MyInteger"]
        assert [c.name for c in document.consts] == ["INT32CONSTANT", "MAPCONSTANT"]
        assert [v.name for v in document.enums[0].values] == ["ADD", "SUBTRACT", "MULTIPLY", "DIVIDE"]
        assert [f.name for f in document.structs[0].fields] == ["num1", "num2", "op", "comment"]
        assert document.exceptions[0].name == "InvalidOperation"
        assert document.unions[0].name == "Value"
        service = document.services[0]
        assert service.extends == "shared.SharedService"
        assert [f.name for f in service.functions] == ["ping", "add", "calculate", "zip"]
        assert service.functions[3].oneway is True

    def test_order_kept_within_category(self):
        _, document = parse("struct B {} enum E {} struct A {} struct C {}")
        assert [s.name for s in document.structs] == ["B", "A", "C"]
        assert [d.name for d in document.definitions() if hasattr(d, "name")] == ["E", "B", "A", "C"]

    def test_keyword_needs_boundary(self):
        remainder, document = parse("structure A {}")
        assert remainder == "structure A {}"
        assert document == Document()

    def test_comments_everywhere(self):
        source = "struct /* c */ A // x\n { # y\n 1: i32 /* z */ a }"
        assert parse_strict(source).structs[0].fields[0].name == "a"

    def test_stops_at_first_bad_definition(self):
        remainder, document = parse("struct A {}\nstruct B { oops }\nstruct C {}")
        assert remainder.startswith("struct B")
        assert [s.name for s in document.structs] == ["A"]

    def test_positions(self):
        document = parse_strict("\n\nstruct A {\n  1: i32 x\n}")
        struct = document.structs[0]
        assert (struct.line, struct.column) == (3, 1)
        assert (struct.fields[0].line, struct.fields[0].column) == (4, 3)

    def test_positions_do_not_affect_equality(self):
        assert parse_strict("struct A {1: i32 x}") == parse_strict("\n\n  struct A {\n 1: i32 x\n}")


class TestStrictParsing:

    def test_reports_deepest_failure(self):
        with pytest.raises(ParseError) as exc_info:
            parse_strict("struct A {}\nstruct B { oops }\nstruct C {}")
        error = exc_info.value
        assert (error.line, error.column) == (2, 17)
        assert error.production == "identifier"

    def test_trailing_garbage(self):
        with pytest.raises(ParseError) as exc_info:
            parse_strict("struct A {} garbage")
        assert "Expected definition" in exc_info.value.message
        assert exc_info.value.fragment == "garbage"

    def test_unterminated_comment(self):
        with pytest.raises(ParseError) as exc_info:
            parse_strict("struct A {} /* open")
        assert exc_info.value.kind == ErrorKind.UNTERMINATED

    def test_overflow_in_field_default(self):
        with pytest.raises(ParseError) as exc_info:
            parse_strict("struct A { 1: i64 x = 99999999999999999999 }")
        assert exc_info.value.kind == ErrorKind.NUMBER

    def test_trailing_whitespace_is_fine(self):
        assert parse_strict("typedef i32 X\n\n   \t").typedefs[0].alias == "X"


class TestNesting:

    def test_limit_reached(self):
        depth = MAX_NESTING_DEPTH
        production("const_value", "[" * depth + "]" * depth)

    def test_limit_exceeded(self):
        depth = MAX_NESTING_DEPTH + 1
        with pytest.raises(NestingError):
            parse_production("const_value", "[" * depth + "]" * depth)

    def test_custom_limit_on_types(self):
        production("field_type", "list<list<i32>>", max_depth=2)
        with pytest.raises(NestingError):
            parse_production("field_type", "list<list<list<i32>>>", max_depth=2)

    def test_aborts_whole_document(self):
        source = "const list<i32> X = " + "[" * 100 + "]" * 100
        with pytest.raises(NestingError):
            parse(source)


class TestEntryPoints:

    def test_every_production_has_a_method(self):
        for name, method in PRODUCTIONS.items():
            assert callable(getattr(Parser("x"), method)), name

    def test_unknown_production(self):
        with pytest.raises(ValueError):
            parse_production("nope", "x")

    def test_parser_methods(self):
        parser = Parser("foo bar")
        assert parser.parse_identifier() == Identifier("foo")
        parser.parse_separator()
        assert parser.remainder == "bar"

    def test_parse_file(self, tmp_path):
        path = tmp_path / "tutorial.thrift"
        path.write_text(TUTORIAL, encoding="utf-8")
        assert parse_file(path) == parse_strict(TUTORIAL)

    def test_parse_file_lenient(self, tmp_path):
        path = tmp_path / "broken.thrift"
        path.write_text("struct A {}\n???", encoding="utf-8")
        with pytest.raises(ParseError):
            parse_file(path)
        assert [s.name for s in parse_file(path, strict=False).structs] == ["A"]
