from __future__ import annotations

from pathlib import Path
import shutil
import subprocess
import sys


def _tool_root() -> Path:
    return Path(__file__).resolve().parents[2]


def _fixture_header() -> Path:
    return _tool_root() / "tests" / "fixtures" / "physics.h"


def _run(args: list[str], cwd: Path | None = None) -> subprocess.CompletedProcess[str]:
    run_cwd = _tool_root() if cwd is None else cwd
    return subprocess.run(
        [sys.executable, str(_tool_root() / "ffigen.py"), *args],
        cwd=run_cwd,
        capture_output=True,
        text=True,
        check=False,
    )


def test_generate_with_explicit_output_writes_surface(tmp_path: Path) -> None:
    output = tmp_path / "generated" / "ffi.cpp"

    result = _run(["--input", str(_fixture_header()), "--output", str(output)])

    assert result.returncode == 0
    assert "Reflection surface generated for module physics:" in result.stdout
    content = output.read_text(encoding="utf-8")
    assert "// | Generated by ffigen, do not edit" in content
    assert "// | Source: physics.h" in content


def test_generate_default_output_lands_next_to_input(tmp_path: Path) -> None:
    header = tmp_path / "physics" / "physics.h"
    header.parent.mkdir()
    shutil.copy2(_fixture_header(), header)

    result = _run(["-i", "physics/physics.h"], cwd=tmp_path)

    assert result.returncode == 0
    assert (tmp_path / "physics" / "ffi.cpp").is_file()


def test_generate_is_byte_stable_across_runs(tmp_path: Path) -> None:
    first = tmp_path / "first.cpp"
    second = tmp_path / "second.cpp"

    assert _run(["-i", str(_fixture_header()), "-o", str(first)]).returncode == 0
    assert _run(["-i", str(_fixture_header()), "-o", str(second)]).returncode == 0

    assert first.read_bytes() == second.read_bytes()


def test_missing_input_flag_returns_argparse_usage_code() -> None:
    result = _run([])

    assert result.returncode == 2
    assert "--input" in result.stderr


def test_unknown_flag_returns_argparse_usage_code() -> None:
    result = _run(["--input", str(_fixture_header()), "--not-a-flag"])

    assert result.returncode == 2


def test_missing_input_file_degrades_without_traceback(tmp_path: Path) -> None:
    result = _run(["--input", str(tmp_path / "missing.h")])

    combined_output = result.stdout + result.stderr
    assert result.returncode == 1
    assert "PATH_NOT_FOUND" in combined_output
    assert "Traceback (most recent call last)" not in combined_output


def test_malformed_declaration_fails_without_output(tmp_path: Path) -> None:
    header = tmp_path / "broken.h"
    header.write_text("ROUTINE(Move, Query<A&, B&>\n", encoding="utf-8")

    result = _run(["--input", str(header)])

    combined_output = result.stdout + result.stderr
    assert result.returncode == 1
    assert "UNTERMINATED_DECLARATION" in combined_output
    assert "Traceback (most recent call last)" not in combined_output
    assert not (tmp_path / "ffi.cpp").exists()


def test_help_lists_public_flags() -> None:
    result = _run(["--help"])

    assert result.returncode == 0
    for flag in ("--input", "--output"):
        assert flag in result.stdout
