from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import pytest

import ffigen


def _make_output(
    *, line_count: int = 1234, byte_count: int = 56789
) -> ffigen.FileWriteResult:
    return ffigen.FileWriteResult(
        filename="ffi.cpp",
        path=Path("/out/ffi.cpp"),
        line_count=line_count,
        byte_count=byte_count,
    )


def _make_summary(**overrides: object) -> ffigen.GenerationSummary:
    fields: dict[str, object] = {
        "module_name": "physics",
        "source_name": "physics.h",
        "type_count": 3,
        "singleton_count": 1,
        "routine_count": 4,
        "run_once_count": 1,
        "query_count": 2,
        "registry_count": 9,
        "local_registry_count": 3,
        "output": _make_output(),
    }
    fields.update(overrides)
    return ffigen.GenerationSummary(**fields)  # type: ignore[arg-type]


def test_build_generation_summary_counts_fixture_declarations(
    fixture_header: Path, make_model: Callable[..., ffigen.ModuleModel]
) -> None:
    model = make_model(fixture_header.read_text(encoding="utf-8"))
    config = ffigen.GeneratorConfig(module_name="physics")
    write_config = ffigen.WriteConfig(source_name="physics.h", module_name="physics")
    output = _make_output()

    summary = ffigen.build_generation_summary(model, config, write_config, output)

    assert summary == _make_summary(output=output)


def test_build_generation_summary_registry_count_follows_injected_types(
    make_model: Callable[..., ffigen.ModuleModel],
) -> None:
    model = make_model("TYPE_VALUE(Position)")
    config = ffigen.GeneratorConfig(module_name="physics", well_known_types=())
    write_config = ffigen.WriteConfig(source_name="physics.h", module_name="physics")

    summary = ffigen.build_generation_summary(model, config, write_config, _make_output())

    assert summary.registry_count == 1
    assert summary.local_registry_count == 1
    assert summary.routine_count == 0


def test_build_generation_summary_splits_local_and_host_registry_entries(
    make_model: Callable[..., ffigen.ModuleModel],
) -> None:
    model = make_model("TYPE_SINGLETON(Clock)\nROUTINE(Draw, Mesh&, const Clock&)")
    config = ffigen.GeneratorConfig(module_name="physics", well_known_types=("Camera",))
    write_config = ffigen.WriteConfig(source_name="physics.h", module_name="physics")

    summary = ffigen.build_generation_summary(model, config, write_config, _make_output())

    assert summary.registry_count == 3
    assert summary.local_registry_count == 1


def test_format_generation_summary_renders_full_report() -> None:
    text = ffigen.format_generation_summary(_make_summary())

    assert text == (
        "Reflection surface generated for module physics:\n"
        "\n"
        "  Source:     physics.h\n"
        f"  Output:     {Path('/out/ffi.cpp')}\n"
        "\n"
        "  Declarations:\n"
        "    Types:          3  (1 singleton)\n"
        "    Routines:       4  (1 run-once)\n"
        "    Queries:        2\n"
        "    Registry:       9  (3 local)\n"
        "\n"
        "  Written: 1,234 lines, 56,789 bytes to ffi.cpp\n"
    )


def test_format_generation_summary_omits_zero_annotations() -> None:
    text = ffigen.format_generation_summary(
        _make_summary(singleton_count=0, run_once_count=0, local_registry_count=0)
    )

    assert "singleton" not in text
    assert "run-once" not in text
    assert "local" not in text
    assert "    Types:          3\n" in text


@pytest.mark.parametrize(
    ("line_count", "byte_count", "expected"),
    [
        (0, 0, "0 lines, 0 bytes"),
        (999, 1000, "999 lines, 1,000 bytes"),
        (1234567, 7654321, "1,234,567 lines, 7,654,321 bytes"),
    ],
)
def test_format_generation_summary_uses_thousands_separators(
    line_count: int, byte_count: int, expected: str
) -> None:
    text = ffigen.format_generation_summary(
        _make_summary(output=_make_output(line_count=line_count, byte_count=byte_count))
    )

    assert expected in text


def test_format_generation_summary_ends_with_single_newline() -> None:
    text = ffigen.format_generation_summary(_make_summary())

    assert text.endswith("ffi.cpp\n")
    assert not text.endswith("\n\n")


def test_print_generation_summary_prints_formatter_output_once(
    capsys: pytest.CaptureFixture[str],
) -> None:
    summary = _make_summary()

    ffigen.print_generation_summary(summary)

    assert capsys.readouterr().out == ffigen.format_generation_summary(summary)
