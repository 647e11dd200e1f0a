"""Web bindings updater for the Dart `web` package.

Syncs the bindings generator's npm dependencies, computes the JS type
hierarchy tables the generator uses for union types, recompiles the
generator, runs it, and refreshes the README version table.

Usage:
    python update_bindings.py [--update] [--no-compile] [--generate-all]
"""

import argparse
import json
import re
import shutil
import subprocess
import sys
import xml.etree.ElementTree as ET
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import unquote, urlparse

TOOL_ROOT = Path(__file__).resolve().parent
DEFAULT_SYMBOLS = TOOL_ROOT / "tool" / "js_interop_symbols.xml"
DEFAULT_GENERATOR_DIR = TOOL_ROOT / "lib" / "src"
DEFAULT_WEB_PACKAGE_DIR = TOOL_ROOT.parent / "web"
DEFAULT_README = TOOL_ROOT / "README.md"

THIS_SCRIPT = "update_bindings.py"


# ===--- CLI config contracts ---=== #


@dataclass(frozen=True)
class MarkerRule:
    """Predicate selecting the marker types of a library namespace.

    Attributes:
        library: Declaring library URI a marker type must belong to.
        prefix: Required name prefix. Empty string accepts any name.
        kinds: Accepted symbol kinds, e.g. {"extension"}.
    """

    library: str
    prefix: str
    kinds: frozenset[str]


JS_INTEROP_LIBRARY = "dart:js_interop"

MARKER_RULES: dict[str, MarkerRule] = {
    "js-interop": MarkerRule(
        library=JS_INTEROP_LIBRARY,
        prefix="JS",
        kinds=frozenset({"extension"}),
    ),
    "js-types": MarkerRule(
        library="dart:_js_types",
        prefix="",
        kinds=frozenset({"class", "extension"}),
    ),
}
DEFAULT_MARKER_RULE = "js-interop"
DEFAULT_ROOT_TYPE = "JSAny"


@dataclass(frozen=True)
class UpdateConfig:
    update: bool
    compile: bool
    generate_all: bool
    symbols: Path
    generator_dir: Path
    web_package_dir: Path
    readme: Path
    marker_rule: MarkerRule
    root_type: str


VALID_ERROR_CODES = {
    "PATH_NOT_FOUND",
    "INVALID_TYPE_NAME",
}
_TYPE_NAME_RE = re.compile(r"^[A-Za-z_$][A-Za-z0-9_$]*$")


class ConfigError(Exception):
    def __init__(self, code: str, message: str, suggestion: str | None = None):
        if code not in VALID_ERROR_CODES:
            raise ValueError(f"Unknown config error code: {code}")
        super().__init__(message)
        self.code = code
        self.message = message
        self.suggestion = suggestion


def validate_type_name(name: str, flag: str) -> str:
    if _TYPE_NAME_RE.match(name):
        return name
    raise ConfigError(
        "INVALID_TYPE_NAME",
        f"Invalid type name for {flag}: {name!r}",
        "Type names must be identifiers (for example JSAny).",
    )


def validate_path_exists(
    path: Path | None, flag: str, suggestion: str | None = None
) -> Path:
    if path is None:
        raise ConfigError(
            "PATH_NOT_FOUND",
            f"{flag} is required: no path provided.",
            suggestion or f"Pass the path explicitly: {flag} /path/to/resource",
        )
    if path.exists():
        return path
    raise ConfigError(
        "PATH_NOT_FOUND",
        f"Path for {flag} does not exist: {path}",
        suggestion or "Provide an existing path for this flag.",
    )


def build_argument_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Regenerate the Dart web bindings and JS type tables"
    )

    parser.add_argument(
        "-u", "--update", action="store_true", default=False,
        help="Update npm dependencies",
    )
    parser.add_argument(
        "--compile", action=argparse.BooleanOptionalAction, default=True,
        help="Recompile the generator before running it",
    )
    parser.add_argument(
        "--generate-all", action="store_true", default=False,
        help="Generate bindings for all IDL definitions, including "
        "experimental and non-standard APIs.",
    )

    parser.add_argument("--symbols", type=Path, default=DEFAULT_SYMBOLS)
    parser.add_argument("--generator-dir", type=Path, default=DEFAULT_GENERATOR_DIR)
    parser.add_argument(
        "--web-package-dir", type=Path, default=DEFAULT_WEB_PACKAGE_DIR
    )
    parser.add_argument("--readme", type=Path, default=DEFAULT_README)

    parser.add_argument(
        "--marker-rule",
        choices=sorted(MARKER_RULES),
        default=DEFAULT_MARKER_RULE,
    )
    parser.add_argument("--root-type", type=str, default=DEFAULT_ROOT_TYPE)

    return parser


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = build_argument_parser()
    return parser.parse_args(argv)


def validate_config(args: argparse.Namespace) -> UpdateConfig:
    symbols = validate_path_exists(
        args.symbols,
        "--symbols",
        "Dump the dart:js_interop namespace to a symbol table XML file.\n"
        "Or pass a custom path: --symbols /your/path/to/symbols.xml",
    )
    generator_dir = validate_path_exists(args.generator_dir, "--generator-dir")
    web_package_dir = validate_path_exists(args.web_package_dir, "--web-package-dir")
    readme = validate_path_exists(args.readme, "--readme")
    root_type = validate_type_name(args.root_type, "--root-type")

    return UpdateConfig(
        update=bool(args.update),
        compile=bool(args.compile),
        generate_all=bool(args.generate_all),
        symbols=symbols,
        generator_dir=generator_dir,
        web_package_dir=web_package_dir,
        readme=readme,
        marker_rule=MARKER_RULES[args.marker_rule],
        root_type=root_type,
    )


def build_config(argv: list[str] | None = None) -> UpdateConfig:
    return validate_config(parse_args(argv))


# ===--- Errors ---=== #


VALID_HIERARCHY_ERROR_CODES = {
    "MULTIPLE_SUPERTYPES",
    "ORPHAN_TYPE",
    "MISSING_ROOT",
    "ROOT_HAS_SUPERTYPE",
    "UNKNOWN_TYPE",
    "CYCLE",
    "NON_UNIQUE_LEAST_COMMON_SUPERTYPE",
}


class HierarchyError(Exception):
    """A marker type hierarchy that is not a single-rooted tree."""

    def __init__(self, code: str, message: str):
        if code not in VALID_HIERARCHY_ERROR_CODES:
            raise ValueError(f"Unknown hierarchy error code: {code}")
        super().__init__(message)
        self.code = code
        self.message = message


class ProcessError(Exception):
    def __init__(self, executable: str, arguments: list[str], exit_code: int):
        command = " ".join([executable, *arguments])
        super().__init__(f"Process failed with exit code {exit_code}: {command}")
        self.executable = executable
        self.arguments = list(arguments)
        self.exit_code = exit_code


class EnvironmentDataError(Exception):
    def __init__(self, message: str, path: Path):
        super().__init__(f"{message}: {path}")
        self.message = message
        self.path = path


class SymbolTableError(ValueError):
    pass


# ===--- Symbol table loading ---=== #

UNIVERSAL_ROOT_TYPES = frozenset({"Object"})


@dataclass(frozen=True)
class TypeSymbol:
    """One exported type-defining symbol of a library namespace.

    Attributes:
        name: Exported name, unique within the namespace.
        kind: Declaration kind: "class", "extension", "alias", ...
        library: URI of the declaring library.
        supertype: Resolved supertype name, None when absent.
        interfaces: Resolved implemented interface names, declaration order.
        aliased_type: Target name for aliases, None otherwise.
    """

    name: str
    kind: str
    library: str
    supertype: str | None = None
    interfaces: tuple[str, ...] = ()
    aliased_type: str | None = None


def parse_symbol(el: ET.Element, library_uri: str) -> TypeSymbol:
    name = el.get("name")
    if not name:
        raise SymbolTableError(f"<{el.tag}> element in {library_uri} has no name")

    if el.tag == "alias":
        target = el.get("target")
        if not target:
            raise SymbolTableError(f"Alias {name} in {library_uri} has no target")
        return TypeSymbol(
            name=name,
            kind="alias",
            library=el.get("library", library_uri),
            aliased_type=target,
        )

    interfaces = tuple(
        iface.get("name", "") for iface in el.findall("interface")
    )
    if any(not iface for iface in interfaces):
        raise SymbolTableError(f"Type {name} in {library_uri} has an unnamed interface")

    return TypeSymbol(
        name=name,
        kind=el.get("kind", "class"),
        library=el.get("library", library_uri),
        supertype=el.get("supertype") or None,
        interfaces=interfaces,
    )


def load_namespace(root: ET.Element, library_uri: str) -> dict[str, TypeSymbol] | None:
    """Return the exported type namespace of library_uri, or None if absent."""
    for lib in root.iter("library"):
        if lib.get("uri") != library_uri:
            continue
        namespace: dict[str, TypeSymbol] = {}
        for el in lib:
            if el.tag not in ("type", "alias"):
                continue
            symbol = parse_symbol(el, library_uri)
            if symbol.name in namespace:
                raise SymbolTableError(
                    f"Duplicate symbol {symbol.name} in {library_uri}"
                )
            namespace[symbol.name] = symbol
        return namespace
    return None


def load_symbol_table(path: Path, library_uri: str = JS_INTEROP_LIBRARY) -> dict[str, TypeSymbol]:
    root = ET.parse(path).getroot()
    namespace = load_namespace(root, library_uri)
    if namespace is None:
        raise EnvironmentDataError(f"No library {library_uri} in symbol table", path)
    return namespace


# ===--- Type hierarchy extraction ---=== #


def resolve_alias(
    symbol: TypeSymbol, namespace: dict[str, TypeSymbol]
) -> TypeSymbol | None:
    """Follow alias chains to the aliased type, None if it leaves the namespace."""
    seen: set[str] = set()
    while symbol.kind == "alias":
        if symbol.name in seen or symbol.aliased_type is None:
            return None
        seen.add(symbol.name)
        target = namespace.get(symbol.aliased_type)
        if target is None:
            return None
        symbol = target
    return symbol


def is_marker_type(symbol: TypeSymbol, rule: MarkerRule) -> bool:
    return (
        symbol.kind in rule.kinds
        and symbol.library == rule.library
        and symbol.name.startswith(rule.prefix)
    )


def immediate_marker_supertypes(
    symbol: TypeSymbol,
    namespace: dict[str, TypeSymbol],
    rule: MarkerRule,
) -> frozenset[str]:
    candidates = [
        name
        for name in (symbol.supertype, *symbol.interfaces)
        if name is not None and name not in UNIVERSAL_ROOT_TYPES
    ]
    parents: set[str] = set()
    for name in candidates:
        parent = namespace.get(name)
        if parent is None:
            continue
        resolved = resolve_alias(parent, namespace)
        if resolved is not None and is_marker_type(resolved, rule):
            parents.add(name)
    return frozenset(parents)


def extract_type_hierarchy(
    namespace: dict[str, TypeSymbol],
    rule: MarkerRule,
    root_type: str = DEFAULT_ROOT_TYPE,
) -> dict[str, frozenset[str]]:
    """Build the immediate-supertype map of the marker types in namespace.

    Aliases are recorded under their own name with the supertypes of the
    type they alias. The universal root (Object) and non-marker supertypes
    are dropped.

    Args:
        namespace: Exported symbols by name.
        rule: Marker predicate selecting the types to summarize.
        root_type: The one marker type allowed to have no supertype.

    Returns:
        Marker type name -> frozenset of zero or one parent names, keyed in
        sorted order.

    Raises:
        HierarchyError: MULTIPLE_SUPERTYPES when a marker type has more than
            one marker supertype, or any code raised by validate_type_tree.
    """
    hierarchy: dict[str, frozenset[str]] = {}
    for name in sorted(namespace):
        resolved = resolve_alias(namespace[name], namespace)
        if resolved is None or not is_marker_type(resolved, rule):
            continue
        parents = immediate_marker_supertypes(resolved, namespace, rule)
        if len(parents) > 1:
            raise HierarchyError(
                "MULTIPLE_SUPERTYPES",
                f"{name} has {len(parents)} marker supertypes: "
                f"{', '.join(sorted(parents))}",
            )
        hierarchy[name] = parents

    validate_type_tree(hierarchy, root_type)
    return hierarchy


def validate_type_tree(hierarchy: dict[str, frozenset[str]], root_type: str) -> None:
    """Check that hierarchy is a tree rooted at root_type.

    Raises:
        HierarchyError: MISSING_ROOT, ROOT_HAS_SUPERTYPE, MULTIPLE_SUPERTYPES,
            ORPHAN_TYPE, UNKNOWN_TYPE or CYCLE for the first violation found,
            in sorted name order.
    """
    if root_type not in hierarchy:
        raise HierarchyError(
            "MISSING_ROOT", f"Root type {root_type} is not a marker type"
        )
    if hierarchy[root_type]:
        raise HierarchyError(
            "ROOT_HAS_SUPERTYPE",
            f"Root type {root_type} has supertypes: "
            f"{', '.join(sorted(hierarchy[root_type]))}",
        )

    for name in sorted(hierarchy):
        parents = hierarchy[name]
        if len(parents) > 1:
            raise HierarchyError(
                "MULTIPLE_SUPERTYPES",
                f"{name} has {len(parents)} marker supertypes: "
                f"{', '.join(sorted(parents))}",
            )
        if not parents and name != root_type:
            raise HierarchyError(
                "ORPHAN_TYPE",
                f"{name} has no marker supertype and is not the root {root_type}",
            )
        for parent in parents:
            if parent not in hierarchy:
                raise HierarchyError(
                    "UNKNOWN_TYPE", f"{name} has unknown supertype {parent}"
                )

    for name in sorted(hierarchy):
        chain = [name]
        current = name
        while current != root_type:
            (current,) = hierarchy[current]
            if current in chain:
                raise HierarchyError(
                    "CYCLE",
                    f"Supertype cycle: {' -> '.join([*chain, current])}",
                )
            chain.append(current)


# ===--- Least common supertypes ---=== #


def ancestor_closure(type_name: str, hierarchy: dict[str, frozenset[str]]) -> frozenset[str]:
    """Return type_name and every type reachable through supertype edges."""
    supertypes = {type_name}
    pending = [type_name]
    while pending:
        current = pending.pop()
        for parent in hierarchy.get(current, frozenset()):
            if parent not in supertypes:
                supertypes.add(parent)
                pending.append(parent)
    return frozenset(supertypes)


def least_common_supertypes(
    type1: str,
    type2: str,
    hierarchy: dict[str, frozenset[str]],
) -> frozenset[str]:
    """Return the minimal shared supertypes of type1 and type2.

    A shared supertype is dropped when it is the recorded immediate
    supertype of another shared supertype. Works for any acyclic hierarchy;
    a DAG can yield more than one result.
    """
    shared = ancestor_closure(type1, hierarchy) & ancestor_closure(type2, hierarchy)
    dominated: set[str] = set()
    for supertype in shared:
        dominated.update(hierarchy.get(supertype, frozenset()))
    return shared - dominated


def build_least_common_supertype_table(
    names: Iterable[str],
    hierarchy: dict[str, frozenset[str]],
) -> dict[str, dict[str, tuple[str, ...]]]:
    """Compute least common supertypes for every ordered pair of names.

    Pairs are visited in sorted order so the returned mapping (and anything
    serialized from it) does not depend on the order names were discovered.

    Args:
        names: Marker type names. Each must be a key of hierarchy.
        hierarchy: Immediate-supertype map from extract_type_hierarchy.

    Returns:
        type1 -> type2 -> sorted tuple of least common supertypes.

    Raises:
        HierarchyError: UNKNOWN_TYPE for a name missing from hierarchy;
            NON_UNIQUE_LEAST_COMMON_SUPERTYPE when a pair does not have
            exactly one least common supertype.
    """
    ordered = sorted(set(names))
    for name in ordered:
        if name not in hierarchy:
            raise HierarchyError("UNKNOWN_TYPE", f"{name} is not a marker type")

    table: dict[str, dict[str, tuple[str, ...]]] = {}
    for type1 in ordered:
        row: dict[str, tuple[str, ...]] = {}
        for type2 in ordered:
            result = least_common_supertypes(type1, type2, hierarchy)
            # Marker types form a tree; more than one result means a DAG.
            if len(result) != 1:
                raise HierarchyError(
                    "NON_UNIQUE_LEAST_COMMON_SUPERTYPE",
                    f"{type1} and {type2} have {len(result)} least common "
                    f"supertypes: {', '.join(sorted(result)) or '(none)'}",
                )
            row[type2] = tuple(sorted(result))
        table[type1] = row
    return table


# ===--- Dart source writer ---=== #

LEAST_COMMON_SUPERTYPES_FILENAME = "js_types_least_common_supertypes.dart"
LEAST_COMMON_SUPERTYPES_CONSTANT = "jsTypesLeastCommonSupertypes"
SUPERTYPES_FILENAME = "js_type_supertypes.dart"
SUPERTYPES_CONSTANT = "jsTypeSupertypes"


@dataclass(frozen=True)
class FileWriteResult:
    """Result of writing a single generated file.

    Attributes:
        filename: Filename written, e.g. "js_type_supertypes.dart".
        path: Absolute path of the written file.
        line_count: Number of newline characters in the written content.
        byte_count: Number of bytes written (UTF-8 encoded).
    """

    filename: str
    path: Path
    line_count: int
    byte_count: int


def dart_string(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace("'", "\\'").replace("$", "\\$")
    return f"'{escaped}'"


def format_file_header() -> list[str]:
    return [f"// Updated by {THIS_SCRIPT}. Do not modify by hand.", ""]


def format_least_common_supertypes_source(
    table: dict[str, dict[str, tuple[str, ...]]],
) -> str:
    """Render the table as a Dart const map, keys and set members sorted.

    Output format:
        const Map<String, Map<String, Set<String>>> jsTypesLeastCommonSupertypes = {
          'JSAny': {
            'JSAny': {'JSAny'},
          },
        };
    """
    lines = format_file_header()
    lines.append(
        "const Map<String, Map<String, Set<String>>> "
        f"{LEAST_COMMON_SUPERTYPES_CONSTANT} = {{"
    )
    for type1 in sorted(table):
        lines.append(f"  {dart_string(type1)}: {{")
        row = table[type1]
        for type2 in sorted(row):
            members = ", ".join(dart_string(name) for name in sorted(row[type2]))
            lines.append(f"    {dart_string(type2)}: {{{members}}},")
        lines.append("  },")
    lines.append("};")
    return "\n".join(lines) + "\n"


def format_supertypes_source(hierarchy: dict[str, frozenset[str]]) -> str:
    """Render the parent map as a Dart const map; the root maps to null.

    Raises:
        HierarchyError: MULTIPLE_SUPERTYPES if a type has more than one parent.
    """
    lines = format_file_header()
    lines.append(f"const Map<String, String?> {SUPERTYPES_CONSTANT} = {{")
    for name in sorted(hierarchy):
        parents = sorted(hierarchy[name])
        if len(parents) > 1:
            raise HierarchyError(
                "MULTIPLE_SUPERTYPES",
                f"{name} has {len(parents)} marker supertypes: {', '.join(parents)}",
            )
        parent = dart_string(parents[0]) if parents else "null"
        lines.append(f"  {dart_string(name)}: {parent},")
    lines.append("};")
    return "\n".join(lines) + "\n"


def write_source(output_dir: Path, filename: str, content: str) -> FileWriteResult:
    """Write one generated source file, creating output_dir if needed.

    Raises:
        OSError: Propagated directly if the filesystem write fails.
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    file_path = output_dir / filename
    data = content.encode("utf-8")
    file_path.write_bytes(data)
    return FileWriteResult(
        filename=filename,
        path=file_path.resolve(),
        line_count=content.count("\n"),
        byte_count=len(data),
    )


# ===--- JS type table stage ---=== #


@dataclass(frozen=True)
class JsTypeTables:
    """Outputs of one hierarchy computation.

    Attributes:
        hierarchy: Immediate-supertype map of the marker types.
        table: Least-common-supertype table over all marker types.
        files: Write results, least common supertypes first.
    """

    hierarchy: dict[str, frozenset[str]]
    table: dict[str, dict[str, tuple[str, ...]]]
    files: tuple[FileWriteResult, ...]

    @property
    def pair_count(self) -> int:
        return sum(len(row) for row in self.table.values())


def generate_js_type_tables(
    namespace: dict[str, TypeSymbol],
    output_dir: Path,
    rule: MarkerRule,
    root_type: str = DEFAULT_ROOT_TYPE,
) -> JsTypeTables:
    """Compute and write the marker type tables the generator reads.

    Both files are rendered before either is written, so a hierarchy error
    leaves the previous outputs untouched.

    Raises:
        HierarchyError: The marker types do not form a single-rooted tree.
        OSError: Propagated from write_source.
    """
    hierarchy = extract_type_hierarchy(namespace, rule, root_type)
    table = build_least_common_supertype_table(hierarchy.keys(), hierarchy)

    sources = (
        (LEAST_COMMON_SUPERTYPES_FILENAME, format_least_common_supertypes_source(table)),
        (SUPERTYPES_FILENAME, format_supertypes_source(hierarchy)),
    )
    files = tuple(
        write_source(output_dir, filename, content) for filename, content in sources
    )
    return JsTypeTables(hierarchy=hierarchy, table=table, files=files)


# ===--- Subprocess runner ---=== #


def run_process(
    executable: str,
    arguments: list[str],
    working_directory: Path,
) -> None:
    """Run a command to completion with inherited stdio.

    Raises:
        ProcessError: The command exited non-zero.
        OSError: The executable could not be started.
    """
    print(" ".join(["*", executable, *arguments]), flush=True)
    resolved = shutil.which(executable) or executable
    result = subprocess.run(
        [resolved, *arguments],
        cwd=working_directory,
        check=False,
    )
    if result.returncode != 0:
        raise ProcessError(executable, arguments, result.returncode)


# ===--- Package metadata ---=== #

PACKAGE_CONFIG_PATH = Path(".dart_tool") / "package_config.json"
PACKAGE_LOCK_FILENAME = "package-lock.json"

WEBREF_CSS = "@webref/css"
WEBREF_ELEMENTS = "@webref/elements"
WEBREF_IDL = "@webref/idl"
WEBREF_PACKAGES = (WEBREF_CSS, WEBREF_ELEMENTS, WEBREF_IDL)


def find_package_config(start: Path) -> Path | None:
    start = Path(start).resolve()
    for directory in (start, *start.parents):
        candidate = directory / PACKAGE_CONFIG_PATH
        if candidate.is_file():
            return candidate
    return None


def _package_root(config_path: Path, root_uri: str) -> Path:
    parsed = urlparse(root_uri)
    if parsed.scheme == "file":
        return Path(unquote(parsed.path)).resolve()
    return (config_path.parent / unquote(root_uri)).resolve()


def web_package_language_version(package_dir: Path) -> str:
    """Return the package's language version as "<major>.<minor>.0".

    Raises:
        EnvironmentDataError: No package config, no package containing
            package_dir/pubspec.yaml, or no languageVersion entry.
    """
    config_path = find_package_config(package_dir)
    if config_path is None:
        raise EnvironmentDataError("No package config", Path(package_dir))

    data = json.loads(config_path.read_text(encoding="utf-8"))
    pubspec = (Path(package_dir) / "pubspec.yaml").resolve()

    match: dict | None = None
    match_depth = -1
    for package in data.get("packages", []):
        root = _package_root(config_path, package.get("rootUri", ""))
        if root in pubspec.parents:
            depth = len(root.parts)
            if depth > match_depth:
                match, match_depth = package, depth

    if match is None:
        raise EnvironmentDataError("No package", Path(package_dir))
    language_version = match.get("languageVersion")
    if not language_version:
        raise EnvironmentDataError("No language version", Path(package_dir))
    return f"{language_version}.0"


def package_lock_version(lock_path: Path, package: str) -> str:
    data = json.loads(Path(lock_path).read_text(encoding="utf-8"))
    entry = data.get("packages", {}).get(f"node_modules/{package}")
    if not entry or "version" not in entry:
        raise EnvironmentDataError(f"No version for {package}", Path(lock_path))
    return entry["version"]


# ===--- Generated bindings bookkeeping ---=== #

GENERATED_MARKER = "Generated from Web IDL definitions"


def snapshot_generated_files(dom_dir: Path) -> dict[Path, int]:
    """Map previously generated .dart files under dom_dir to their mtime (ns)."""
    dom_dir = Path(dom_dir)
    if not dom_dir.is_dir():
        return {}
    snapshot: dict[Path, int] = {}
    for path in sorted(dom_dir.rglob("*.dart")):
        if not path.is_file():
            continue
        if GENERATED_MARKER in path.read_text(encoding="utf-8"):
            snapshot[path] = path.stat().st_mtime_ns
    return snapshot


def delete_stale_generated_files(snapshot: dict[Path, int]) -> list[Path]:
    """Delete snapshot files the generator did not rewrite. Returns them sorted."""
    deleted: list[Path] = []
    for path in sorted(snapshot):
        if path.exists() and path.stat().st_mtime_ns == snapshot[path]:
            path.unlink()
            deleted.append(path)
    return deleted


# ===--- README sync ---=== #

README_START = f"<!-- START updated by {THIS_SCRIPT}. Do not modify by hand -->"
README_END = f"<!-- END updated by {THIS_SCRIPT}. Do not modify by hand -->"


def format_versions_block(versions: dict[str, str]) -> str:
    """Render the README region: start marker plus a package version table."""
    lines = [
        README_START,
        "| Item | Version |",
        "| --- | --: |",
    ]
    for package, version in versions.items():
        lines.append(
            f"| `{package}` | "
            f"[{version}](https://www.npmjs.com/package/{package}/v/{version}) |"
        )
    return "\n".join(lines) + "\n"


def replace_versions_block(content: str, versions: dict[str, str], path: Path) -> str:
    start = content.find(README_START)
    end = content.find(README_END)
    if start < 0 or end < start:
        raise EnvironmentDataError("No versions markers in readme", path)
    return content[:start] + format_versions_block(versions) + content[end:]


def sync_readme(readme: Path, versions: dict[str, str]) -> bool:
    """Rewrite the README versions region. Returns True if the file changed."""
    readme = Path(readme)
    source = readme.read_text(encoding="utf-8")
    updated = replace_versions_block(source, versions, readme)
    if updated == source:
        print("No update for readme.")
        return False
    print(f"Updating readme for IDL version {versions.get(WEBREF_IDL, '?')}")
    readme.write_text(updated, encoding="utf-8")
    return True


# ===--- Pipeline ---=== #


@dataclass(frozen=True)
class UpdateResult:
    tables: JsTypeTables
    deleted_files: tuple[Path, ...]
    readme_updated: bool
    versions: dict[str, str]


def sync_dependencies(config: UpdateConfig) -> None:
    run_process("npm", ["update" if config.update else "install"], config.generator_dir)


def compile_generator(config: UpdateConfig) -> None:
    language_version = web_package_language_version(config.web_package_dir)
    run_process(
        "dart",
        [
            "compile",
            "js",
            "--enable-asserts",
            "--server-mode",
            f"-DlanguageVersion={language_version}",
            "dart_main.dart",
            "-o",
            "dart_main.js",
        ],
        config.generator_dir,
    )


def run_generator(config: UpdateConfig) -> tuple[Path, ...]:
    """Run the node generator and remove bindings it no longer produces."""
    src_dir = config.web_package_dir / "lib" / "src"
    existing = snapshot_generated_files(src_dir / "dom")

    arguments = ["main.mjs", f"--output-directory={src_dir}"]
    if config.generate_all:
        arguments.append("--generate-all")
    run_process("node", arguments, config.generator_dir)

    return tuple(delete_stale_generated_files(existing))


def run_update(config: UpdateConfig) -> UpdateResult:
    """Execute the complete update pipeline for an UpdateConfig.

    Stages run in order and the first failure aborts the run: npm sync ->
    JS type tables -> compile (optional) -> generator -> README.

    Raises:
        ProcessError: Any subprocess exits non-zero.
        HierarchyError: Marker types do not form a single-rooted tree.
        EnvironmentDataError: Package metadata or README markers missing.
        SymbolTableError: Malformed symbol table content.
        OSError: Filesystem failure or missing executable.
        ET.ParseError: Malformed symbol table XML.
    """
    sync_dependencies(config)

    print(f"Loading symbols: {config.symbols}")
    namespace = load_symbol_table(config.symbols, JS_INTEROP_LIBRARY)
    tables = generate_js_type_tables(
        namespace, config.generator_dir, config.marker_rule, config.root_type
    )
    print(
        f"  JS types: {len(tables.hierarchy)} marker types, "
        f"{tables.pair_count} pairs"
    )

    if config.compile:
        compile_generator(config)

    deleted = run_generator(config)

    lock_path = config.generator_dir / PACKAGE_LOCK_FILENAME
    versions = {package: package_lock_version(lock_path, package) for package in WEBREF_PACKAGES}
    readme_updated = sync_readme(config.readme, versions)

    result = UpdateResult(
        tables=tables,
        deleted_files=deleted,
        readme_updated=readme_updated,
        versions=versions,
    )
    print_update_summary(result)
    return result


# ===--- Summary report ---=== #


def format_update_summary(result: UpdateResult) -> str:
    """Render the post-run console summary. Ends with exactly one newline."""
    lines: list[str] = ["Web bindings updated:", ""]
    lines.append(f"  Marker types:  {len(result.tables.hierarchy):>6}")
    lines.append(f"  Type pairs:    {result.tables.pair_count:>6,}")
    lines.append("")
    lines.append("  Files written:")
    for file_result in result.tables.files:
        lines.append(
            f"    {file_result.filename:<40} {file_result.line_count:>6,} lines"
        )
    if result.deleted_files:
        lines.append("")
        lines.append("  Stale bindings removed:")
        for path in result.deleted_files:
            lines.append(f"    {path.name}")
    lines.append("")
    lines.append("  Versions:")
    for package, version in result.versions.items():
        lines.append(f"    {package:<20} {version}")
    lines.append("")
    lines.append(f"  README: {'updated' if result.readme_updated else 'unchanged'}")
    lines.append("")
    return "\n".join(lines)


def print_update_summary(result: UpdateResult) -> None:
    print(format_update_summary(result), end="")


# ===--- Main ---=== #


def main(argv: list[str] | None = None):
    try:
        config = build_config(argv)
    except ConfigError as err:
        print(f"Config error [{err.code}]: {err.message}", file=sys.stderr)
        if err.suggestion:
            print(f"Hint: {err.suggestion}", file=sys.stderr)
        raise SystemExit(1) from err

    try:
        run_update(config)
    except ProcessError as err:
        print(f"Error: {err}", file=sys.stderr)
        raise SystemExit(1) from err
    except HierarchyError as err:
        print(f"Hierarchy error [{err.code}]: {err.message}", file=sys.stderr)
        raise SystemExit(1) from err
    except EnvironmentDataError as err:
        print(f"Error: {err}", file=sys.stderr)
        raise SystemExit(1) from err
    except (OSError, ET.ParseError, json.JSONDecodeError, SymbolTableError) as err:
        print(f"Error: {err}", file=sys.stderr)
        raise SystemExit(1) from err


if __name__ == "__main__":
    main()
