import argparse
import sys
from collections.abc import Callable
from pathlib import Path

import pytest

TOOL_DIR = Path(__file__).resolve().parent.parent
if str(TOOL_DIR) not in sys.path:
    sys.path.insert(0, str(TOOL_DIR))

import update_bindings  # noqa: E402

FIXTURES_DIR = Path(__file__).resolve().parent / "fixtures"


@pytest.fixture
def fixture_symbols() -> Path:
    return FIXTURES_DIR / "js_interop_symbols.xml"


@pytest.fixture
def existing_paths(tmp_path: Path) -> dict[str, Path]:
    symbols = tmp_path / "symbols.xml"
    symbols.write_text("<symbols />\n", encoding="utf-8")

    generator_dir = tmp_path / "web_generator" / "lib" / "src"
    generator_dir.mkdir(parents=True)

    web_package_dir = tmp_path / "web"
    web_package_dir.mkdir()

    readme = tmp_path / "web_generator" / "README.md"
    readme.write_text("# web_generator\n", encoding="utf-8")

    return {
        "symbols": symbols,
        "generator_dir": generator_dir,
        "web_package_dir": web_package_dir,
        "readme": readme,
    }


@pytest.fixture
def missing_path(tmp_path: Path) -> Path:
    return tmp_path / "missing"


@pytest.fixture
def make_args(existing_paths: dict[str, Path]) -> Callable[..., argparse.Namespace]:
    def _make_args(**overrides: object) -> argparse.Namespace:
        base_args: dict[str, object] = {
            "update": False,
            "compile": True,
            "generate_all": False,
            "symbols": existing_paths["symbols"],
            "generator_dir": existing_paths["generator_dir"],
            "web_package_dir": existing_paths["web_package_dir"],
            "readme": existing_paths["readme"],
            "marker_rule": update_bindings.DEFAULT_MARKER_RULE,
            "root_type": update_bindings.DEFAULT_ROOT_TYPE,
        }
        base_args.update(overrides)
        return argparse.Namespace(**base_args)

    return _make_args


@pytest.fixture
def make_symbol() -> Callable[..., update_bindings.TypeSymbol]:
    def _make_symbol(
        name: str,
        *,
        parent: str | None = None,
        interfaces: tuple[str, ...] = (),
        kind: str = "extension",
        library: str = update_bindings.JS_INTEROP_LIBRARY,
        aliased_type: str | None = None,
    ) -> update_bindings.TypeSymbol:
        return update_bindings.TypeSymbol(
            name=name,
            kind=kind,
            library=library,
            supertype=parent,
            interfaces=interfaces,
            aliased_type=aliased_type,
        )

    return _make_symbol


@pytest.fixture
def make_namespace(
    make_symbol: Callable[..., update_bindings.TypeSymbol],
) -> Callable[[dict[str, str | None]], dict[str, update_bindings.TypeSymbol]]:
    """Build a JS-prefixed extension type namespace from a name -> parent map."""

    def _make_namespace(
        parents: dict[str, str | None],
    ) -> dict[str, update_bindings.TypeSymbol]:
        return {
            name: make_symbol(name, parent=parent or "Object")
            for name, parent in parents.items()
        }

    return _make_namespace


@pytest.fixture
def js_rule() -> update_bindings.MarkerRule:
    return update_bindings.MarkerRule(
        library=update_bindings.JS_INTEROP_LIBRARY,
        prefix="",
        kinds=frozenset({"extension"}),
    )


@pytest.fixture
def write_symbols_xml(tmp_path: Path) -> Callable[[str], Path]:
    def _write_symbols_xml(inner_xml: str, filename: str = "symbols.xml") -> Path:
        path = tmp_path / filename
        path.write_text(f"<symbols>{inner_xml}</symbols>\n", encoding="utf-8")
        return path

    return _write_symbols_xml
