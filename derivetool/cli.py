#!/usr/bin/env python
"""
derivetool CLI - derive-pattern code generator

Usage:
    python -m derivetool validate <definitions.yaml> [--verbose]
    python -m derivetool gen <definitions.yaml> [--output FILE] [--partial]
    python -m derivetool run <config.yaml>
    python -m derivetool parse '<annotation>'
    python -m derivetool version
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import fire

from derivetool import __version__
from derivetool.backends.py_code import render_module
from derivetool.core.base.annotations import PayloadShape
from derivetool.core.engine.config_model import load_config, run_config
from derivetool.core.engine.diagnostics import DeriveError, report
from derivetool.core.engine.formatter import format_batch_result
from derivetool.core.engine.grammar import parse, render
from derivetool.core.engine.loader import load_definitions
from derivetool.core.engine.pipeline import BatchResult, process_batch
from derivetool.patterns import default_registry


def _setup_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def _fail(e: Exception, debug: bool) -> None:
    if isinstance(e, DeriveError):
        print(f"❌ {report(e)}")
    else:
        print(f"❌ Error: {e}")
    if debug:
        import traceback

        traceback.print_exc()
    sys.exit(1)


class DerivetoolCLI:
    """derivetool - derive patterns for Python type definitions"""

    def validate(
        self, definition_file: str, patterns: str | None = None, debug: bool = False, verbose: bool = False
    ) -> None:
        """Validate annotations and requested patterns without writing code.

        Args:
            definition_file: Path to definition YAML/JSON file
            patterns: Comma separated pattern ids allowed to run (default: all)
            debug: Enable debug output
            verbose: Show detailed results including successes
        """
        _setup_logging(debug)
        def_path = Path(definition_file)
        if not def_path.exists():
            print(f"❌ Error: Definition file not found: {def_path}")
            sys.exit(1)

        try:
            print(f"📖 Loading definitions: {def_path}")
            result = self._process(def_path, patterns)
            print(format_batch_result(result, verbose=verbose))
        except (DeriveError, ValueError) as e:
            _fail(e, debug)
            return

        if not result.ok:
            sys.exit(1)

    def gen(
        self,
        definition_file: str,
        output: str | None = None,
        patterns: str | None = None,
        definitions: bool = True,
        partial: bool = False,
        debug: bool = False,
        verbose: bool = False,
    ) -> None:
        """Generate a Python module implementing the requested patterns.

        Args:
            definition_file: Path to definition YAML/JSON file
            output: Output module path (default: <definition name>_derived.py)
            patterns: Comma separated pattern ids allowed to run (default: all)
            definitions: Also render the type definitions themselves
            partial: Write the module even if some definitions failed
            debug: Enable debug output
            verbose: Show detailed results including successes
        """
        _setup_logging(debug)
        def_path = Path(definition_file)
        if not def_path.exists():
            print(f"❌ Error: Definition file not found: {def_path}")
            sys.exit(1)

        try:
            print(f"📖 Loading definitions: {def_path}")
            result = self._process(def_path, patterns)

            if not result.ok or verbose:
                print(format_batch_result(result, verbose=verbose))
            if not result.ok and not partial:
                sys.exit(1)
            if result.ok:
                print("✅ Validation passed\n")

            out_path = Path(output) if output else Path(f"{def_path.stem}_derived.py")
            print(f"🔨 Generating {out_path}...")
            content = render_module(result.results, include_definitions=definitions, title=def_path.name)
            out_path.parent.mkdir(parents=True, exist_ok=True)
            out_path.write_text(content, encoding="utf-8")

            print("\n✅ Code generation complete!")
            print(f"   Generated {len(result.succeeded)} of {len(result.results)} definition(s) in: {out_path}")
        except (DeriveError, ValueError, OSError) as e:
            _fail(e, debug)
            return

        if not result.ok:
            sys.exit(1)

    def run(self, config: str, debug: bool = False, verbose: bool = False) -> None:
        """Process every definition file listed in a run config.

        Args:
            config: Path to run config YAML file
            debug: Enable debug output
            verbose: Show detailed results including successes
        """
        _setup_logging(debug)
        config_path = Path(config)
        if not config_path.exists():
            print(f"❌ Error: Config file not found: {config_path}")
            sys.exit(1)

        try:
            print(f"📖 Loading config: {config_path}")
            run = load_config(config_path)
            print(f"✅ Loaded config: {run.meta.name} ({len(run.sources)} source(s))")

            outcome = run_config(run, base_dir=config_path.parent)
            for batch in outcome.batches:
                print(f"\n📄 {batch.source}")
                print(format_batch_result(batch, verbose=verbose))

            if outcome.output_path is not None:
                print(f"\n✅ Generated module: {outcome.output_path}")
            else:
                print("\n❌ Errors found, no output written")
        except Exception as e:  # pydantic / YAML / loader errors
            _fail(e, debug)
            return

        if not outcome.ok:
            sys.exit(1)

    def parse(self, annotation: str, debug: bool = False) -> None:
        """Parse a single annotation and show its structure.

        Args:
            annotation: Raw annotation text, e.g. 'display = "{0}"'
            debug: Enable debug output
        """
        _setup_logging(debug)
        try:
            parsed = parse(str(annotation))
        except DeriveError as e:
            _fail(e, debug)
            return

        print(f"✅ {parsed.name} ({parsed.shape.value})")
        if parsed.shape is PayloadShape.SCALAR:
            print(f"  • value: {parsed.value!r}")
        elif parsed.shape is PayloadShape.MAPPING and parsed.mapping is not None:
            for key, value in parsed.mapping.items():
                print(f"  • {key}" if value is None else f"  • {key} = {value!r}")
        print(f"  normalized: {render(parsed)}")

    def patterns(self) -> None:
        """List the built-in patterns."""
        registry = default_registry()
        for pattern_id, module in registry.modules.items():
            names = ", ".join(sorted({r.name for r in module.descriptor.rules}))
            print(f"  • {pattern_id}: {names or '(no annotations)'}")

    def version(self) -> None:
        """Show version information."""
        print(f"derivetool {__version__}")

    def _process(self, def_path: Path, patterns: str | None) -> BatchResult:
        definition_set = load_definitions(def_path)
        print(f"✅ Loaded {len(definition_set.definitions)} definition(s)")

        registry = default_registry()
        if patterns:
            # fire は "A,B" をタプルに変換する
            enabled = list(patterns) if isinstance(patterns, (list, tuple)) else str(patterns).split(",")
            registry = registry.restricted([p.strip() for p in enabled if p.strip()])

        print("🔍 Checking annotations...")
        return process_batch(definition_set.definitions, registry, source=definition_set.source)


def main() -> None:
    """derivetool CLI entry point (called from python -m derivetool)."""
    fire.Fire(DerivetoolCLI)


if __name__ == "__main__":
    main()
