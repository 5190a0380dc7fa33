from openapi_weaver.errors import ErrorKind
from openapi_weaver.generics import Monomorphizer, substitute_raw, substitute_text
from openapi_weaver.parser.base import (
    OverrideBlock,
    ResponseSpec,
    RouteOperation,
    SchemaDefinition,
    SchemaField,
)
from openapi_weaver.parser.types import parse_type, render
from openapi_weaver.registry import Registry


def _field(name: str, type_text: str) -> SchemaField:
    return SchemaField(name=name, source_name=name, type_ref=parse_type(type_text))


def _template(name: str, params: list[str], **fields: str) -> SchemaDefinition:
    return SchemaDefinition(
        name=name,
        kind="generic-template",
        generic_params=params,
        fields=[_field(k, v) for k, v in fields.items()],
    )


def _route(path: str, response: str, order: int = 0, overrides: dict | None = None) -> RouteOperation:
    return RouteOperation(
        method="get",
        path=path,
        responses={"200": ResponseSpec(type_ref=parse_type(response))},
        overrides=OverrideBlock(data=overrides or {}),
        entity="handler",
        order=(order, 0),
    )


def _registry(*routes: RouteOperation) -> Registry:
    registry = Registry()
    registry.add_schema(SchemaDefinition(name="User", kind="object", fields=[_field("id", "u32")]))
    registry.add_schema(_template("Page", ["T"], items="Vec<T>", total="u64"))
    registry.add_schema(_template("Wrapper", ["T"], inner="T"))
    for route in routes:
        registry.add_route(route)
    return registry


class TestInstantiation:
    def test_instance_is_created_once(self):
        registry = _registry(_route("/a", "Page<User>", 1), _route("/b", "Page<User>", 2))
        mono = Monomorphizer(registry)
        assert mono.run() == []
        assert mono.instances == {("Page", "User"): "Page_User"}

        instance = registry.schema("Page_User")
        assert instance.kind == "object"
        assert instance.template == "Page"
        assert instance.generic_params == []
        assert render(instance.fields[0].type_ref) == "Vec<User>"

    def test_template_is_left_untouched(self):
        registry = _registry(_route("/a", "Page<User>"))
        Monomorphizer(registry).run()
        assert render(registry.schema("Page").fields[0].type_ref) == "Vec<T>"

    def test_nested_arguments_are_instantiated_first(self):
        registry = _registry(_route("/a", "Page<Wrapper<User>>"))
        mono = Monomorphizer(registry)
        assert mono.run() == []
        assert list(mono.instances.values()) == ["Wrapper_User", "Page_Wrapper_User"]
        assert render(registry.schema("Page_Wrapper_User").fields[0].type_ref) == "Vec<Wrapper_User>"

    def test_generic_reference_inside_template_body(self):
        registry = _registry(_route("/a", "Envelope<User>"))
        registry.add_schema(_template("Envelope", ["T"], page="Page<T>"))
        mono = Monomorphizer(registry)
        assert mono.run() == []
        assert registry.has_schema("Envelope_User")
        assert registry.has_schema("Page_User")

    def test_primitive_argument(self):
        registry = _registry(_route("/a", "Page<u32>"))
        mono = Monomorphizer(registry)
        mono.run()
        assert mono.instances == {("Page", "u32"): "Page_u32"}
        assert render(registry.schema("Page_u32").fields[0].type_ref) == "Vec<u32>"

    def test_existing_schema_with_the_mangled_name_is_reused(self):
        registry = _registry(_route("/a", "Page<User>"))
        registry.add_schema(SchemaDefinition(name="Page_User", kind="object", entity="handwritten"))
        mono = Monomorphizer(registry)
        assert mono.run() == []
        assert registry.schema("Page_User").entity == "handwritten"
        assert registry.schema("Page_User").template is None

    def test_instances_are_ordered_after_declarations(self):
        registry = _registry(_route("/a", "Page<User>"))
        Monomorphizer(registry).run()
        assert [s.name for s in registry.schemas()][-1] == "Page_User"


class TestFailures:
    def test_arity_mismatch(self):
        registry = _registry(_route("/a", "Page<User, User>"))
        [error] = Monomorphizer(registry).run()
        assert error.kind == ErrorKind.ARITY_MISMATCH
        assert error.entity == "handler"
        assert "takes 1 type argument(s), got 2" in error.message

    def test_missing_argument(self):
        registry = _registry(_route("/a", "Pair<User>"))
        registry.add_schema(_template("Pair", ["A", "B"], left="A", right="B"))
        [error] = Monomorphizer(registry).run()
        assert error.kind == ErrorKind.ARITY_MISMATCH
        assert "takes 2 type argument(s), got 1" in error.message
        assert not registry.has_schema("Pair_User")

    def test_distinct_instances_with_the_same_mangled_name(self):
        registry = _registry(_route("/one", "Pair<Foo_Bar, Baz>", 1), _route("/two", "Pair<Foo, Bar_Baz>", 2))
        for name in ("Foo_Bar", "Baz", "Foo", "Bar_Baz"):
            registry.add_schema(SchemaDefinition(name=name, kind="object"))
        registry.add_schema(_template("Pair", ["A", "B"], a="A", b="B"))
        mono = Monomorphizer(registry)
        [error] = mono.run()
        assert error.kind == ErrorKind.DUPLICATE_NAME
        assert error.entity == "handler"
        assert "'Pair_Foo_Bar_Baz'" in error.message
        assert list(mono.instances.values()) == ["Pair_Foo_Bar_Baz"]
        assert render(registry.schema("Pair_Foo_Bar_Baz").fields[0].type_ref) == "Foo_Bar"

    def test_non_template_with_arguments(self):
        registry = _registry(_route("/a", "User<u32>"))
        [error] = Monomorphizer(registry).run()
        assert error.kind == ErrorKind.UNKNOWN_TEMPLATE

    def test_unknown_template(self):
        registry = _registry(_route("/a", "Missing<User>"))
        [error] = Monomorphizer(registry).run()
        assert error.kind == ErrorKind.UNKNOWN_TEMPLATE
        assert "'Missing'" in error.message

    def test_every_failing_owner_is_reported(self):
        registry = _registry(_route("/a", "Missing<User>", 1), _route("/b", "Page<User, User>", 2))
        errors = Monomorphizer(registry).run()
        assert [e.kind for e in errors] == [ErrorKind.UNKNOWN_TEMPLATE, ErrorKind.ARITY_MISMATCH]

    def test_unbounded_nesting_is_stopped(self):
        registry = _registry(_route("/a", "Nest<User>"))
        registry.add_schema(_template("Nest", ["T"], inner="Nest<Vec<T>>"))
        [error] = Monomorphizer(registry).run()
        assert error.kind == ErrorKind.INVALID_DIRECTIVE_SYNTAX
        assert "deeper than 32" in error.message


class TestRendering:
    def test_schema_for_nested_reference(self):
        registry = _registry(_route("/a", "Vec<Page<User>>"))
        mono = Monomorphizer(registry)
        mono.run()
        assert mono.schema_for(parse_type("Vec<Page<User>>")) == {
            "type": "array",
            "items": {"$ref": "#/components/schemas/Page_User"},
        }

    def test_raw_refs_are_instantiated_and_resolved(self):
        block = {"responses": {"200": {"content": {"application/json": {"schema": {"$ref": "$Page<User>"}}}}}}
        registry = _registry(_route("/a", "User", overrides=block))
        mono = Monomorphizer(registry)
        assert mono.run() == []
        resolved = mono.resolve_raw(block)
        assert resolved["responses"]["200"]["content"]["application/json"]["schema"] == {
            "$ref": "#/components/schemas/Page_User"
        }

    def test_plain_raw_ref(self):
        mono = Monomorphizer(_registry())
        assert mono.resolve_raw({"$ref": "$User"}) == {"$ref": "#/components/schemas/User"}


class TestRawSubstitution:
    def test_schema_argument_keeps_the_marker(self):
        assert substitute_text("$T", {"T": parse_type("User")}) == "$User"

    def test_primitive_argument_is_plain_text(self):
        assert substitute_text("$T", {"T": parse_type("u32")}) == "u32"

    def test_unbound_tokens_are_kept(self):
        assert substitute_raw({"$ref": "$U", "items": ["$T"]}, {"T": parse_type("User")}) == {
            "$ref": "$U",
            "items": ["$User"],
        }

    def test_template_override_is_specialized(self):
        template = _template("Page", ["T"], items="Vec<T>")
        template.overrides = OverrideBlock(data={"x-item": {"$ref": "$T"}})
        registry = Registry()
        registry.add_schema(SchemaDefinition(name="User", kind="object"))
        registry.add_schema(template)
        registry.add_route(_route("/a", "Page<User>"))
        mono = Monomorphizer(registry)
        mono.run()
        assert registry.schema("Page_User").overrides.data == {"x-item": {"$ref": "$User"}}
        assert mono.resolve_raw(registry.schema("Page_User").overrides.data) == {
            "x-item": {"$ref": "#/components/schemas/User"}
        }
