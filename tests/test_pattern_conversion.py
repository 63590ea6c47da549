"""From パターンのテスト"""

from conftest import make_enum, make_field, make_struct, make_variant

from derivetool.core.base.ir import GenericParam
from derivetool.core.engine.pipeline import process_definition


class TestStructConversion:
    def test_from_inner_single_field(self, generate_module):
        module = generate_module(make_struct("UserId", ["From"], [make_field(None, "int")]))
        user = module.UserId.from_inner(7)
        assert user == module.UserId(7)
        assert module.UserId.__derives__ == ("From[int]",)

    def test_marked_field_with_defaulted_others(self, generate_module):
        module = generate_module(
            make_struct(
                "Tagged",
                ["From"],
                [make_field("value", "int", "from"), make_field("tag", "str", has_default=True, default="none")],
            )
        )
        tagged = module.Tagged.from_inner(3)
        assert tagged.value == 3
        assert tagged.tag == "none"

    def test_into_generates_reverse_conversion(self, generate_module):
        module = generate_module(make_struct("Celsius", ["From"], [make_field(None, "float", "from(into)")]))
        assert module.Celsius.from_inner(21.5).into_inner() == 21.5

    def test_additional_sources_go_through_inner_type(self, generate_module):
        module = generate_module(make_struct("Count", ["From"], [make_field("n", "int")], "from(str, float)"))
        assert module.Count.from_str("12").n == 12
        assert module.Count.from_float(3.9).n == 3
        assert module.Count.__derives__ == ("From[int]", "From[str]", "From[float]")

    def test_multiple_fields_without_marker(self):
        result = process_definition(make_struct("P", ["From"], [make_field("a", "int"), make_field("b", "int")]))
        assert "found 2 fields" in result.errors[0].reason

    def test_other_fields_need_defaults(self):
        definition = make_struct("P", ["From"], [make_field("a", "int", "from"), make_field("b", "int")])
        result = process_definition(definition)
        assert "need a default value" in result.errors[0].reason
        assert "`b`" in result.errors[0].reason

    def test_source_equal_to_inner_type(self):
        result = process_definition(make_struct("P", ["From"], [make_field("a", "int")], "from(int)"))
        assert "repeated use of type `int`" in result.errors[0].reason

    def test_source_through_generic_inner(self):
        definition = make_struct(
            "Boxed", ["From"], [make_field("value", "T")], "from(str)", generics=[GenericParam("T")]
        )
        result = process_definition(definition)
        assert "through generic inner type `T`" in result.errors[0].reason

    def test_source_must_not_have_value(self):
        result = process_definition(make_struct("P", ["From"], [make_field("a", "int")], "from(str = 1)"))
        assert "takes type names only" in result.errors[0].reason

    def test_two_from_fields_conflict_before_generation(self):
        definition = make_struct(
            "Pair", ["From"], [make_field("left", "int", "from"), make_field("right", "int", "from")]
        )
        result = process_definition(definition)
        assert not result.ok
        assert result.fragments == []
        assert "conflicting inner field designation" in result.errors[0].reason

    def test_method_name_collision(self):
        definition = make_struct("P", ["From"], [make_field("a", "int")], "from(FooBar, foo_bar)")
        result = process_definition(definition)
        assert "would both be named `from_foo_bar`" in result.errors[0].reason


class TestEnumConversion:
    def _shape(self):
        return make_enum(
            "Shape",
            ["From"],
            [
                make_variant("Circle", [make_field(None, "float")], "from"),
                make_variant("Label", [make_field("text", "str", "from")]),
                make_variant("Empty", [], "from"),
                make_variant("Unused", [make_field(None, "bytes")]),
            ],
        )

    def test_variant_conversions(self, generate_module):
        module = generate_module(self._shape())
        circle = module.Shape.from_circle(2.0)
        assert isinstance(circle, module.Shape.Circle)
        assert circle._0 == 2.0
        assert module.Shape.from_label("hi").text == "hi"
        assert isinstance(module.Shape.from_empty(None), module.Shape.Empty)
        assert not hasattr(module.Shape, "from_unused")

    def test_unit_variant_with_source_type(self, generate_module):
        module = generate_module(
            make_enum(
                "Signal",
                ["From"],
                [make_variant("Stop", [], "from(NoneType)"), make_variant("Go", [make_field(None, "int")], "from")],
            )
        )
        assert isinstance(module.Signal.from_none_type(None), module.Signal.Stop)
        assert module.Signal.from_go(1)._0 == 1

    def test_no_variant_requested(self):
        result = process_definition(make_enum("E", ["From"], [make_variant("A", [make_field(None, "int")])]))
        assert "no variant is marked" in result.errors[0].reason
        assert result.errors[0].found_shape == "absent"

    def test_type_level_from_rejected_on_enum(self):
        definition = make_enum("E", ["From"], [make_variant("A", [make_field(None, "int")], "from")], "from")
        result = process_definition(definition)
        assert "not allowed on the enum itself" in result.errors[0].reason

    def test_repeated_source_type_across_variants(self):
        definition = make_enum(
            "Number",
            ["From"],
            [
                make_variant("Small", [make_field(None, "int")], "from"),
                make_variant("Large", [make_field(None, "int")], "from"),
            ],
        )
        result = process_definition(definition)
        assert "repeated use of type `int` (variants `Small` and `Large`)" in result.errors[0].reason

    def test_into_only_on_structs(self):
        definition = make_enum("E", ["From"], [make_variant("A", [make_field(None, "int")], "from(into)")])
        result = process_definition(definition)
        assert "only supported on structs" in result.errors[0].reason

    def test_unit_variant_with_two_sources(self):
        definition = make_enum("E", ["From"], [make_variant("A", [], "from(int, str)")])
        result = process_definition(definition)
        assert "at most one type" in result.errors[0].reason

    def test_variant_with_multiple_fields_needs_marker(self):
        definition = make_enum(
            "E", ["From"], [make_variant("A", [make_field(None, "int"), make_field(None, "str")], "from")]
        )
        result = process_definition(definition)
        assert "found 2 fields" in result.errors[0].reason
