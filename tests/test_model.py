"""SemanticModel 構築のテスト"""

import pytest
from conftest import make_enum, make_field, make_struct, make_variant

from derivetool.core.base.ir import ElementKind, ElementRef, GenericParam, TypeDefinition
from derivetool.core.engine.diagnostics import ParseError, ValidationError
from derivetool.core.engine.model import INNER_EXPLICIT, INNER_IMPLICIT, INNER_NONE, ModelBuilder, build_model


def _errors(definition):
    builder = ModelBuilder(definition)
    with pytest.raises((ParseError, ValidationError)):
        builder.build()
    return builder.errors


class TestStructure:
    def test_struct_model(self):
        definition = make_struct(
            "Point",
            ["Display"],
            [make_field("x", "int"), make_field("y", "int")],
            'display = "({x}, {y})"',
            generics=[GenericParam("T", ["Hashable"])],
        )
        model = build_model(definition)

        assert model.is_struct and not model.is_enum
        assert model.field_count == 2
        assert [f.attr for f in model.fields] == ["x", "y"]
        assert model.signature.applied() == "Point[T]"
        assert model.generic_names == frozenset({"T"})
        assert model.type_annotation("display").value == "({x}, {y})"

    def test_positional_fields_are_stored_by_index(self):
        model = build_model(make_struct("Pair", [], [make_field(None, "int"), make_field(None, "str")]))
        assert [f.attr for f in model.fields] == ["_0", "_1"]
        assert model.fields[1].ref == ElementRef(ElementKind.FIELD, "Pair", field=1)

    def test_enum_model(self):
        definition = make_enum(
            "Shape",
            [],
            [make_variant("Circle", [make_field(None, "float")]), make_variant("Empty", [])],
        )
        model = build_model(definition)
        assert model.is_enum
        assert [v.name for v in model.variants] == ["Circle", "Empty"]
        assert model.variants[1].is_unit
        assert model.variants[0].inner_field.attr == "_0"

    @pytest.mark.parametrize(
        ("kwargs", "fragment"),
        [
            ({"fields": [], "variants": []}, "not both"),
            ({}, "either fields or variants"),
        ],
    )
    def test_body_kind_is_exclusive(self, kwargs, fragment):
        errors = _errors(TypeDefinition(name="Odd", **kwargs))
        assert fragment in errors[0].reason

    def test_mixed_named_and_positional(self):
        errors = _errors(make_struct("Mixed", [], [make_field("a", "int"), make_field(None, "int")]))
        assert "cannot be mixed" in errors[0].reason

    def test_duplicate_field(self):
        errors = _errors(make_struct("Dup", [], [make_field("a", "int"), make_field("a", "str")]))
        assert "duplicate field `a`" in errors[0].reason


class TestPatternResolution:
    def test_unknown_pattern(self):
        errors = _errors(make_struct("A", ["Serialize"], [make_field("x", "int")]))
        assert "unknown pattern `Serialize`" in errors[0].reason

    def test_requested_twice(self):
        errors = _errors(make_struct("A", ["From", "From"], [make_field("x", "int")]))
        assert "more than once" in errors[0].reason

    def test_wrapper_mut_requires_wrapper(self):
        errors = _errors(make_struct("A", ["WrapperMut"], [make_field("x", "int")]))
        assert errors[0].pattern == "WrapperMut"
        assert "derive(Wrapper)" in errors[0].reason

    def test_wrapper_not_supported_on_enums(self):
        errors = _errors(make_enum("E", ["Wrapper"], [make_variant("A", [make_field(None, "int")])]))
        assert "not supported on enums" in errors[0].reason

    def test_wrapper_meaningless_for_unit(self):
        errors = _errors(make_struct("U", ["Wrapper"], []))
        assert "meaningless" in errors[0].reason


class TestAnnotationChecks:
    def test_unused_annotation(self):
        errors = _errors(make_struct("A", ["From"], [make_field("x", "int", "source")]))
        assert "not used by any requested pattern" in errors[0].reason

    def test_wrong_target(self):
        errors = _errors(make_struct("A", ["Error"], [make_field("x", "int")], "source"))
        assert "not allowed on a type" in errors[0].reason

    def test_wrong_shape(self):
        errors = _errors(make_struct("A", ["Error"], [make_field("x", "int", 'source = "yes"')]))
        error = errors[0]
        assert "wrong form" in error.reason
        assert error.expected_shape is not None
        assert error.found_shape == "scalar"

    def test_missing_required_annotation(self):
        errors = _errors(make_struct("A", ["Display"], [make_field("x", "int")]))
        assert "missing required annotation `display`" in errors[0].reason
        assert errors[0].found_shape == "absent"

    def test_duplicate_annotation(self):
        errors = _errors(make_struct("A", ["Error"], [make_field("x", "int", "source", "source")]))
        assert "duplicate annotation" in errors[0].reason

    def test_unknown_key(self):
        errors = _errors(make_struct("A", ["Getters"], [make_field("x", "int", "getter(copy)")]))
        assert "unknown key `copy`" in errors[0].reason
        assert errors[0].span is not None

    def test_key_requires_value(self):
        errors = _errors(make_struct("A", ["Getters"], [make_field("x", "int", "getter(name)")]))
        assert "requires a value" in errors[0].reason

    def test_flag_key_takes_no_value(self):
        errors = _errors(make_struct("A", ["Getters"], [make_field("x", "int", "getter(skip = true)")]))
        assert "takes no value" in errors[0].reason

    def test_parse_errors_are_collected_with_other_errors(self):
        definition = make_struct("A", ["Error"], [make_field("x", "int", "source(")], "bogus")
        errors = _errors(definition)
        assert any(isinstance(e, ParseError) for e in errors)
        assert any("bogus" in e.sentence() for e in errors)


class TestInnerField:
    def test_single_field_is_implicit(self):
        model = build_model(make_struct("Id", ["From"], [make_field(None, "int")]))
        assert model.inner_field.attr == "_0"
        assert model.inner_designation == INNER_IMPLICIT

    def test_explicit_designation_wins(self):
        definition = make_struct(
            "Labelled",
            ["Wrapper"],
            [make_field("label", "str", has_default=True, default=""), make_field("value", "int", "wrap")],
        )
        model = build_model(definition)
        assert model.inner_field.name == "value"
        assert model.inner_designation == INNER_EXPLICIT

    def test_no_inner_for_multiple_unmarked_fields(self):
        model = build_model(make_struct("P", [], [make_field("a", "int"), make_field("b", "int")]))
        assert model.inner_field is None
        assert model.inner_designation == INNER_NONE

    def test_two_from_fields_conflict(self):
        """2 つのフィールドに `from` を付けるとモデル構築時に矛盾として報告される"""
        definition = make_struct(
            "Pair", ["From"], [make_field("left", "int", "from"), make_field("right", "int", "from")]
        )
        errors = _errors(definition)
        assert "conflicting inner field designation" in errors[0].reason
        assert "`left`" in errors[0].reason and "`right`" in errors[0].reason

    def test_wrap_and_from_on_different_fields_conflict(self):
        definition = make_struct(
            "Both",
            ["From", "Wrapper"],
            [make_field("a", "int", "from"), make_field("b", "int", "wrap")],
        )
        errors = _errors(definition)
        assert "conflicting inner field designation" in errors[0].reason
