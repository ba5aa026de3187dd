from __future__ import annotations

from pathlib import Path

import pytest

import ffigen


def test_write_output_creates_missing_parent_directories(tmp_path: Path) -> None:
    output_path = tmp_path / "build" / "nested" / "ffi.cpp"

    result = ffigen.write_output(output_path, "int x;\n")

    assert output_path.read_text(encoding="utf-8") == "int x;\n"
    assert result.filename == "ffi.cpp"
    assert result.path == output_path.resolve()


def test_write_output_counts_newlines_and_utf8_bytes(tmp_path: Path) -> None:
    content = "// Größe\nint x;\n"

    result = ffigen.write_output(tmp_path / "ffi.cpp", content)

    assert result.line_count == 2
    assert result.byte_count == len(content.encode("utf-8"))
    assert result.byte_count > len(content)


def test_write_output_replaces_existing_file(tmp_path: Path) -> None:
    output_path = tmp_path / "ffi.cpp"
    output_path.write_text("stale contents that are longer\n", encoding="utf-8")

    ffigen.write_output(output_path, "fresh\n")

    assert output_path.read_text(encoding="utf-8") == "fresh\n"


def test_write_output_propagates_filesystem_errors(tmp_path: Path) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("", encoding="utf-8")

    with pytest.raises(OSError):
        ffigen.write_output(blocker / "ffi.cpp", "int x;\n")


def test_file_write_result_is_frozen(tmp_path: Path) -> None:
    result = ffigen.write_output(tmp_path / "ffi.cpp", "")

    with pytest.raises(AttributeError):
        result.line_count = 3  # type: ignore[misc]
