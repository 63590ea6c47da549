"""アノテーション構文解析のテスト"""

import pytest

from derivetool.core.base.annotations import Mapping, Path, PayloadShape, Span
from derivetool.core.base.ir import ElementKind, ElementRef, RawAnnotation, SourceLocation
from derivetool.core.engine.diagnostics import ParseError
from derivetool.core.engine.grammar import parse, parse_annotations, render


class TestShapes:
    """ペイロード形状の判定"""

    def test_bare_name_is_flag(self):
        annotation = parse("source")
        assert annotation.name == "source"
        assert annotation.shape is PayloadShape.FLAG
        assert annotation.mapping is None

    def test_equals_literal_is_scalar(self):
        annotation = parse('display = "error {code}"')
        assert annotation.shape is PayloadShape.SCALAR
        assert annotation.value == "error {code}"

    def test_parenthesized_literal_is_scalar(self):
        annotation = parse('display("{0}")')
        assert annotation.shape is PayloadShape.SCALAR
        assert annotation.value == "{0}"

    @pytest.mark.parametrize(
        ("text", "value"),
        [("limit = 42", 42), ("ratio = 1.5", 1.5), ("enabled = true", True), ("enabled = false", False)],
    )
    def test_scalar_literal_types(self, text, value):
        assert parse(text).value == value

    def test_group_is_mapping(self):
        annotation = parse('getter(skip, name = "first", clone)')
        assert annotation.shape is PayloadShape.MAPPING
        assert annotation.mapping.keys() == ["skip", "name", "clone"]
        assert annotation.mapping["name"] == "first"
        assert annotation.mapping.flags() == ["skip", "clone"]

    def test_empty_group_is_mapping(self):
        annotation = parse("wrapper()")
        assert annotation.shape is PayloadShape.MAPPING
        assert len(annotation.mapping) == 0

    def test_path_value(self):
        annotation = parse("from(into = std::io::Error)")
        value = annotation.mapping["into"]
        assert isinstance(value, Path)
        assert str(value) == "std::io::Error"
        assert value.ident is None

    def test_trailing_comma_allowed(self):
        assert parse("wrapper(Display, Debug,)").mapping.keys() == ["Display", "Debug"]

    def test_key_spans_point_into_text(self):
        text = "wrapper(Display, Bogus)"
        annotation = parse(text)
        span = annotation.key_span("Bogus")
        assert text[span.start : span.end] == "Bogus"

    def test_string_escapes(self):
        annotation = parse(r'display = "tab\there \"quoted\""')
        assert annotation.value == 'tab\there "quoted"'


class TestErrors:
    """構文エラーは理由と範囲を持つ"""

    @pytest.mark.parametrize(
        ("text", "fragment"),
        [
            ("", "empty"),
            ('display = "open', "unterminated string"),
            ("wrapper(Display", "missing `)`"),
            ("display =", "expected a literal"),
            ("display = name", "must be a literal"),
            ("wrapper(Display(Debug))", "nested lists"),
            ("getter(a, a)", "duplicate key"),
            ("123", "must start with a name"),
            ("io::Error", "not a path"),
            ("display $", "unexpected character"),
            ('display = "x" extra', "trailing input"),
            (r'display = "\q"', "unknown escape"),
        ],
    )
    def test_malformed(self, text, fragment):
        with pytest.raises(ParseError) as exc_info:
            parse(text)
        assert fragment in exc_info.value.reason

    def test_error_span_covers_offending_token(self):
        text = "display $"
        with pytest.raises(ParseError) as exc_info:
            parse(text)
        assert exc_info.value.span == Span(8, 9)
        assert exc_info.value.text == text

    @pytest.mark.parametrize(
        "text",
        ["limit = 1e400", "limit(-1e999)", "x(a = 1, b = 2.5e308)", "limit = " + "9" * 5000],
    )
    def test_numeric_literal_out_of_range(self, text):
        with pytest.raises(ParseError) as exc_info:
            parse(text)
        assert exc_info.value.reason == "numeric literal out of range"

    def test_out_of_range_span_covers_literal(self):
        with pytest.raises(ParseError) as exc_info:
            parse("limit = 1e400")
        assert exc_info.value.span == Span(8, 13)

    def test_error_carries_element_and_location(self):
        target = ElementRef(ElementKind.FIELD, "Point", field="x")
        location = SourceLocation("types.yaml", 7)
        with pytest.raises(ParseError) as exc_info:
            parse("wrapper(", target, location)
        assert exc_info.value.element == target
        assert exc_info.value.location == location
        assert "on field `Point.x`" in exc_info.value.sentence()


class TestParseAnnotations:
    def test_collects_every_error(self):
        target = ElementRef(ElementKind.TYPE, "Point")
        raws = [RawAnnotation("source"), RawAnnotation("bad("), RawAnnotation("also bad"), RawAnnotation("wrap")]
        annotations, errors = parse_annotations(raws, target)
        assert [a.name for a in annotations] == ["source", "wrap"]
        assert len(errors) == 2
        assert all(a.target == target for a in annotations)


class TestRender:
    """正規化テキストへの変換は parse と往復する"""

    @pytest.mark.parametrize(
        "text",
        [
            "source",
            'display = "a \\"b\\" {c}"',
            "wrapper(Display, MathOps, NoRefs)",
            'getter(name = "first", clone)',
            "from(into = io::Error)",
            "limit = -3",
        ],
    )
    def test_round_trip(self, text):
        annotation = parse(text)
        assert parse(render(annotation)) == annotation

    @pytest.mark.parametrize(
        "text",
        [
            "limit = 0",
            "limit = -0.0",
            "limit = 1e16",
            "limit = 1.5e-7",
            "limit = 1e-400",
            "limit = 2.5E+3",
            "limit = 123456789012345678901234567890",
            "x(a = 1e16, b = -3)",
        ],
    )
    def test_numeric_round_trip(self, text):
        annotation = parse(text)
        rendered = render(annotation)
        assert parse(rendered) == annotation
        assert render(parse(rendered)) == rendered

    def test_scalar_paren_form_normalizes_to_equals(self):
        assert render(parse('display("x")')) == 'display = "x"'

    def test_equality_ignores_location_and_text(self):
        a = parse("wrapper( Display ,Debug )", location=SourceLocation("a.yaml", 1))
        b = parse("wrapper(Display, Debug)", location=SourceLocation("b.yaml", 9))
        assert a == b
        assert a.mapping == Mapping({"Display": None, "Debug": None})
