"""Error パターンのテスト"""

from conftest import make_enum, make_field, make_struct, make_variant

from derivetool.core.engine.pipeline import process_definition


def _http_error():
    return make_struct(
        "HttpError",
        ["Display", "Error"],
        [
            make_field("code", "int"),
            make_field("message", "str"),
            make_field("cause", "Exception | None", "source", has_default=True, default=None),
        ],
        'display = "error {code}: {message}"',
    )


def test_generated_error_is_raisable(generate_module):
    module = generate_module(_http_error())
    error = module.HttpError(404, "not found")

    assert isinstance(error, Exception)
    assert str(error) == "error 404: not found"
    assert error.source() is None


def test_source_returns_marked_field(generate_module):
    module = generate_module(_http_error())
    cause = ValueError("bad header")
    try:
        raise module.HttpError(400, "bad request", cause)
    except module.HttpError as caught:
        assert caught.source() is cause
        assert "Error" in module.HttpError.__derives__


def test_raise_from_keeps_working(generate_module):
    module = generate_module(_http_error())
    cause = KeyError("x")
    try:
        try:
            raise cause
        except KeyError as exc:
            raise module.HttpError(500, "boom") from exc
    except module.HttpError as caught:
        assert caught.__cause__ is cause
        assert caught.source() is None


def test_without_source_annotation_returns_none():
    result = process_definition(make_struct("Plain", ["Error"], [make_field("detail", "str")]))
    assert result.ok
    assert "return None" in result.fragments[0]
    assert "def source(self) -> None:" in result.fragments[0]


def test_source_return_annotation_lists_field_types():
    result = process_definition(_http_error())
    error_block = result.fragments[-1]
    assert "def source(self) -> Exception | None:" in error_block


def test_two_sources_rejected():
    definition = make_struct(
        "Twice",
        ["Error"],
        [make_field("a", "Exception", "source"), make_field("b", "Exception", "source")],
    )
    result = process_definition(definition)
    assert not result.ok
    assert "only a single field may be marked as `source`; found 2" in result.errors[0].reason


def test_enum_sources_per_variant(generate_module):
    module = generate_module(
        make_enum(
            "LoadError",
            ["Display", "Error"],
            [
                make_variant("Io", [make_field(None, "OSError", "source")], 'display = "io failure"'),
                make_variant("Missing", [make_field("path", "str")], 'display = "missing {path}"'),
            ],
        )
    )
    cause = OSError("disk")
    io = module.LoadError.Io(cause)
    missing = module.LoadError.Missing("a.txt")

    assert isinstance(io, Exception)
    assert io.source() is cause
    assert missing.source() is None
    assert str(missing) == "missing a.txt"


def test_enum_variant_with_two_sources_rejected():
    definition = make_enum(
        "E",
        ["Error"],
        [make_variant("Both", [make_field(None, "OSError", "source"), make_field(None, "OSError", "source")])],
    )
    result = process_definition(definition)
    assert "E::Both" in result.errors[0].sentence()
