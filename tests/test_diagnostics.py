"""診断メッセージとバッチ結果フォーマットのテスト"""

from conftest import make_field, make_struct

from derivetool.core.base.annotations import Span
from derivetool.core.base.ir import ElementKind, ElementRef, SourceLocation
from derivetool.core.engine.diagnostics import LoaderError, ParseError, ValidationError, report
from derivetool.core.engine.formatter import format_batch_result
from derivetool.core.engine.loader import load_definitions
from derivetool.core.engine.pipeline import process_batch, process_definition


class TestReport:
    def test_parse_error_with_underline(self):
        error = ParseError(
            "unexpected character",
            Span(3, 4),
            text="ab $c",
            location=SourceLocation("defs.yaml", 12),
            element=ElementRef(ElementKind.FIELD, "Point", field="x"),
        )
        assert report(error).splitlines() == [
            "defs.yaml:12: error: malformed annotation `ab $c` on field `Point.x`: unexpected character",
            "    | ab $c",
            "    |    ^",
        ]

    def test_span_is_clamped_to_text(self):
        error = ParseError("unexpected trailing input", Span(10, 20), text="abc")
        assert report(error).splitlines()[-1] == "    |    ^"

    def test_validation_error_underlines_key(self):
        definition = make_struct("Meters", ["Wrapper"], [make_field("value", "int")], "wrapper(Display, Frobnicate)")
        error = process_definition(definition).errors[0]
        lines = report(error).splitlines()

        assert "error: derive(Wrapper), type `Meters`: unrecognized wrapper parameter `Frobnicate`" in lines[0]
        assert lines[1] == "    | wrapper(Display, Frobnicate)"
        assert lines[2] == "    | " + " " * len("wrapper(Display, ") + "^" * len("Frobnicate")

    def test_validation_error_without_annotation(self):
        error = ValidationError(
            "missing required annotation `display`",
            element=ElementRef(ElementKind.TYPE, "Point"),
            pattern="Display",
            expected_shape='`display = "..."`',
            found_shape="absent",
            location=SourceLocation("defs.yaml", 3),
        )
        assert report(error) == (
            "defs.yaml:3: error: derive(Display), type `Point`: missing required annotation `display` "
            '(expected `display = "..."`, found absent)'
        )

    def test_loader_error(self):
        error = LoaderError("`types` must be a list", SourceLocation("defs.yaml"))
        assert report(error) == "defs.yaml: error: `types` must be a list"


class TestFormatBatchResult:
    def test_success(self):
        batch = process_batch([make_struct("Id", ["From"], [make_field(None, "int")])])
        assert format_batch_result(batch) == "✅ All validations passed"

    def test_verbose_lists_successes(self):
        batch = process_batch([make_struct("Id", ["From"], [make_field(None, "int")])])
        text = format_batch_result(batch, verbose=True)
        assert "✅ 1 item(s) passed validation:" in text
        assert "📦 Id (struct) (1 passed):" in text
        assert "  • derive(From): 1 block(s) generated" in text

    def test_errors_grouped_per_definition(self, fixtures_dir):
        definition_set = load_definitions(fixtures_dir / "mixed_types.yaml")
        text = format_batch_result(process_batch(definition_set.definitions))

        assert "❌ Validation failed with 2 error(s):" in text
        assert "📦 Pair (struct) (1 error):" in text
        assert "📦 Broken (struct) (1 error):" in text
        assert "UserId" not in text
        assert "mixed_types.yaml:" in text
        assert "All validations passed" not in text

    def test_parse_errors_are_labelled(self):
        batch = process_batch([make_struct("P", ["Display"], [make_field("x", "int")], 'display = "x')])
        text = format_batch_result(batch)
        assert "  • 🔤 " in text
        assert "unterminated string literal" in text
