import pytest

from openapi_weaver.errors import InvalidDirectiveSyntaxError
from openapi_weaver.parser.types import (
    is_required,
    mangle,
    map_raw_refs,
    named,
    parse_type,
    primitive,
    raw_refs,
    render,
    split_generic_args,
    substitute,
    to_schema,
)


class TestParseType:
    def test_primitive(self):
        assert parse_type("u32") == primitive("u32")

    def test_unknown_name_is_schema_reference(self):
        assert parse_type("User") == named("User")

    def test_module_path_uses_last_segment(self):
        assert parse_type("crate::models::User") == named("User")

    def test_dollar_prefix_forces_reference(self):
        assert parse_type("$String") == named("String")

    def test_transparent_wrappers(self):
        assert parse_type("Box<User>") == named("User")
        assert parse_type("Arc<u64>") == primitive("u64")

    def test_optional_is_not_required(self):
        ref = parse_type("Option<String>")
        assert ref.kind == "optional"
        assert is_required(ref) is False
        assert is_required(parse_type("String")) is True

    def test_generic_with_nested_arguments(self):
        ref = parse_type("Result<Page<User>, Error>")
        assert ref.kind == "generic"
        assert ref.name == "Result"
        assert [a.name for a in ref.args] == ["Page", "Error"]
        assert ref.args[0].args == [named("User")]

    def test_map_keeps_value_type_only(self):
        ref = parse_type("HashMap<String, Vec<User>>")
        assert ref.kind == "map"
        assert ref.args[0].kind == "array"

    def test_slice_and_fixed_array(self):
        assert parse_type("[User]").kind == "array"
        assert parse_type("[u8; 16]").args == [primitive("u8")]

    def test_unit(self):
        assert parse_type("()").kind == "unit"
        assert parse_type("unit").kind == "unit"

    def test_unbalanced_generic_raises(self):
        with pytest.raises(InvalidDirectiveSyntaxError):
            parse_type("Vec<User")

    def test_wrapper_arity_is_checked(self):
        with pytest.raises(InvalidDirectiveSyntaxError):
            parse_type("Option<A, B>")


class TestSplitGenericArgs:
    def test_commas_inside_nested_lists_do_not_split(self):
        assert split_generic_args("String, Map<String, User>, Vec<[u8]>") == [
            "String",
            "Map<String, User>",
            "Vec<[u8]>",
        ]

    def test_empty_argument_raises(self):
        with pytest.raises(InvalidDirectiveSyntaxError):
            split_generic_args("A, , B")


class TestMangle:
    def test_single_argument(self):
        assert mangle(parse_type("Page<User>")) == "Page_User"

    def test_nested_arguments(self):
        assert mangle(parse_type("Page<Wrapper<User>>")) == "Page_Wrapper_User"

    def test_render_is_canonical(self):
        assert render(parse_type("Page<  Wrapper<User>,u32 >")) == "Page<Wrapper<User>, u32>"


class TestToSchema:
    def test_primitive_formats(self):
        assert to_schema(parse_type("i64")) == {"type": "integer", "format": "int64"}
        assert to_schema(parse_type("Uuid")) == {"type": "string", "format": "uuid"}
        assert to_schema(parse_type("DateTime<Utc>")) == {"type": "string", "format": "date-time"}

    def test_optional_unwraps(self):
        assert to_schema(parse_type("Option<f64>")) == {"type": "number", "format": "double"}

    def test_array_of_references(self):
        assert to_schema(parse_type("Vec<User>")) == {
            "type": "array",
            "items": {"$ref": "#/components/schemas/User"},
        }

    def test_map_uses_additional_properties(self):
        assert to_schema(parse_type("BTreeMap<String, bool>")) == {
            "type": "object",
            "additionalProperties": {"type": "boolean"},
        }

    def test_any_is_empty_schema(self):
        assert to_schema(parse_type("Value")) == {}

    def test_primitive_table_is_not_mutated(self):
        schema = to_schema(parse_type("String"))
        schema["description"] = "changed"
        assert to_schema(parse_type("String")) == {"type": "string"}


class TestSubstitute:
    def test_replaces_parameters_recursively(self):
        ref = substitute(parse_type("Vec<Option<T>>"), {"T": named("User")})
        assert ref == parse_type("Vec<Option<User>>")

    def test_leaves_other_names(self):
        assert substitute(parse_type("Other"), {"T": named("User")}) == named("Other")


class TestRawRefs:
    def test_collects_shorthand_refs_only(self):
        data = {
            "a": {"$ref": "$User"},
            "b": [{"$ref": "#/components/schemas/Pet"}, {"items": {"$ref": "$Page<User>"}}],
        }
        assert list(raw_refs(data)) == ["$User", "$Page<User>"]

    def test_map_raw_refs_rewrites_values(self):
        data = {"schema": {"$ref": "$User"}, "name": "$User"}
        out = map_raw_refs(data, lambda v: "#/components/schemas/" + v[1:])
        assert out == {"schema": {"$ref": "#/components/schemas/User"}, "name": "$User"}
        assert data["schema"]["$ref"] == "$User"
