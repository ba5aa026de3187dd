import argparse
import sys
from collections.abc import Callable
from pathlib import Path

import pytest

GENERATOR_DIR = Path(__file__).resolve().parent.parent
if str(GENERATOR_DIR) not in sys.path:
    sys.path.insert(0, str(GENERATOR_DIR))

import ffigen  # noqa: E402

FIXTURES_DIR = Path(__file__).resolve().parent / "fixtures"


@pytest.fixture
def existing_paths(tmp_path: Path) -> dict[str, Path]:
    module_dir = tmp_path / "physics"
    module_dir.mkdir()
    header = module_dir / "physics.h"
    header.write_text("TYPE_VALUE(Position)\n", encoding="utf-8")
    return {
        "input": header,
        "module_dir": module_dir,
        "output": tmp_path / "build" / "ffi.cpp",
    }


@pytest.fixture
def missing_path(tmp_path: Path) -> Path:
    return tmp_path / "missing.h"


@pytest.fixture
def make_args(existing_paths: dict[str, Path]) -> Callable[..., argparse.Namespace]:
    def _make_args(**overrides: object) -> argparse.Namespace:
        base_args: dict[str, object] = {
            "input": existing_paths["input"],
            "output": None,
        }
        base_args.update(overrides)
        return argparse.Namespace(**base_args)

    return _make_args


@pytest.fixture
def fixture_header() -> Path:
    return FIXTURES_DIR / "physics.h"


@pytest.fixture
def make_model() -> Callable[..., ffigen.ModuleModel]:
    def _make_model(source: str, module_name: str = "physics") -> ffigen.ModuleModel:
        config = ffigen.GeneratorConfig(module_name=module_name)
        declarations = ffigen.find_declarations(
            ffigen.filter_comments(source), config.keywords
        )
        return ffigen.build_model(declarations, config)

    return _make_model


@pytest.fixture
def make_source() -> Callable[..., str]:
    def _make_source(
        source: str,
        module_name: str = "physics",
        well_known_types: tuple[str, ...] = ffigen.DEFAULT_WELL_KNOWN_TYPES,
    ) -> str:
        config = ffigen.GeneratorConfig(
            module_name=module_name, well_known_types=well_known_types
        )
        declarations = ffigen.find_declarations(
            ffigen.filter_comments(source), config.keywords
        )
        model = ffigen.build_model(declarations, config)
        write_config = ffigen.WriteConfig(
            source_name=f"{module_name}.h", module_name=module_name
        )
        return ffigen.generate_source(model, config, write_config)

    return _make_source
