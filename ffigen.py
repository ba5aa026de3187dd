"""C-linkage reflection and dispatch surface generator.

Scans a module header for TYPE_VALUE / TYPE_SINGLETON / ROUTINE /
ROUTINE_ONCE declarations and emits a companion ffi.cpp that lets a host
engine discover type layouts, bind type identities and invoke routines by
index without compile-time knowledge of the module's types.

Usage:
    python ffigen.py --input modules/physics/physics.h
    python ffigen.py --input modules/physics/physics.h --output build/ffi.cpp
"""

import argparse
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import NamedTuple

TOOL_NAME = "ffigen"
DEFAULT_OUTPUT_NAME = "ffi.cpp"


# ===--- CLI config contracts ---=== #


@dataclass(frozen=True)
class GenerateConfig:
    input_path: Path
    output_path: Path
    module_name: str


VALID_ERROR_CODES = {
    "PATH_NOT_FOUND",
    "INPUT_NOT_FILE",
    "OUTPUT_OVERWRITES_INPUT",
    "INVALID_MODULE_NAME",
}
_IDENT_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_TYPE_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(?:::[A-Za-z_][A-Za-z0-9_]*)*$")

# Names that cannot be used as the module namespace in external ids.
CPP_RESERVED = {
    "auto",
    "bool",
    "char",
    "class",
    "const",
    "default",
    "delete",
    "double",
    "enum",
    "float",
    "int",
    "namespace",
    "new",
    "std",
    "struct",
    "template",
    "typename",
    "union",
    "void",
}


class ConfigError(Exception):
    def __init__(self, code: str, message: str, suggestion: str | None = None):
        if code not in VALID_ERROR_CODES:
            raise ValueError(f"Unknown config error code: {code}")
        super().__init__(message)
        self.code = code
        self.message = message
        self.suggestion = suggestion


def validate_path_exists(
    path: Path | None, flag: str, suggestion: str | None = None
) -> Path:
    if path is None:
        raise ConfigError(
            "PATH_NOT_FOUND",
            f"{flag} is required: no path provided.",
            suggestion or f"Pass the path explicitly: {flag} /path/to/module.h",
        )
    if path.exists():
        return path
    raise ConfigError(
        "PATH_NOT_FOUND",
        f"Path for {flag} does not exist: {path}",
        suggestion or "Provide an existing path for this flag.",
    )


def module_name_from_path(path: Path) -> str:
    """Derive the module namespace from the input header's file stem."""
    name = re.sub(r"[^A-Za-z0-9_]", "_", path.stem)
    if name[:1].isdigit():
        name = "_" + name
    if not _IDENT_RE.match(name) or name in CPP_RESERVED:
        raise ConfigError(
            "INVALID_MODULE_NAME",
            f"Cannot derive a module name from {path.name!r}: got {name!r}",
            "Rename the input header so its stem is a usable C++ identifier.",
        )
    return name


def default_output_path(input_path: Path) -> Path:
    return input_path.parent / DEFAULT_OUTPUT_NAME


def build_argument_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Generate the C-linkage reflection surface for a module header"
    )
    parser.add_argument("-i", "--input", type=Path, required=True)
    parser.add_argument("-o", "--output", type=Path, default=None)
    return parser


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = build_argument_parser()
    return parser.parse_args(argv)


def validate_config(args: argparse.Namespace) -> GenerateConfig:
    input_path = validate_path_exists(args.input, "--input")
    if not input_path.is_file():
        raise ConfigError(
            "INPUT_NOT_FILE",
            f"--input must be a file, got a directory: {input_path}",
            "Point --input at the module header that carries the declarations.",
        )

    output_path = (
        args.output if args.output is not None else default_output_path(input_path)
    )
    if output_path.resolve() == input_path.resolve():
        raise ConfigError(
            "OUTPUT_OVERWRITES_INPUT",
            f"--output would overwrite the input header: {output_path}",
            f"Omit --output to write {DEFAULT_OUTPUT_NAME} next to the input.",
        )

    return GenerateConfig(
        input_path=input_path,
        output_path=output_path,
        module_name=module_name_from_path(input_path),
    )


def build_config(argv: list[str] | None = None) -> GenerateConfig:
    return validate_config(parse_args(argv))


# ===--- Generator configuration ---=== #

DEFAULT_HOST_NAMESPACE = "host"

DEFAULT_WELL_KNOWN_TYPES: tuple[str, ...] = (
    "Camera",
    "Color",
    "DirectionalLight",
    "DynamicStaticMesh",
    "PointLight",
    "Transform",
)
"""Host-provided types that always receive an identity branch.

Injected through GeneratorConfig.well_known_types; hosts with a different
public type set pass their own tuple instead of editing this one."""

REFERENCE_MARKER = "&"


@dataclass(frozen=True)
class DeclarationKeywords:
    """Tokens recognized in module headers.

    The four declaration tokens introduce parenthesized forms. query and
    cell name the generic wrappers accepted inside routine parameter
    lists; const is the leading immutability qualifier.
    """

    type_value: str = "TYPE_VALUE"
    type_singleton: str = "TYPE_SINGLETON"
    routine: str = "ROUTINE"
    routine_once: str = "ROUTINE_ONCE"
    query: str = "Query"
    cell: str = "Cell"
    const: str = "const"


@dataclass(frozen=True)
class GeneratorConfig:
    """Everything the pipeline needs beyond the source text itself.

    Attributes:
        module_name: Namespace of locally declared types, e.g. "physics".
            Local external ids are "<module_name>::<TypeName>".
        host_namespace: Namespace assumed for every type the module does
            not declare itself.
        well_known_types: Host-provided type names that always take part
            in identity assignment.
        keywords: Declaration and parameter tokens.
    """

    module_name: str
    host_namespace: str = DEFAULT_HOST_NAMESPACE
    well_known_types: tuple[str, ...] = DEFAULT_WELL_KNOWN_TYPES
    keywords: DeclarationKeywords = field(default_factory=DeclarationKeywords)


# ===--- Declaration errors ---=== #

VALID_DECLARATION_CODES = {
    "UNTERMINATED_DECLARATION",
    "INVALID_IDENTIFIER",
    "EMPTY_PARAM",
    "NON_REFERENCE_PARAM",
    "MALFORMED_QUERY",
    "NESTED_QUERY",
    "DUPLICATE_TYPE",
    "DUPLICATE_ROUTINE",
}


class DeclarationError(Exception):
    def __init__(self, code: str, message: str, line: int | None = None):
        if code not in VALID_DECLARATION_CODES:
            raise ValueError(f"Unknown declaration error code: {code}")
        super().__init__(message)
        self.code = code
        self.message = message
        self.line = line


# ===--- Data classes ---=== #


class TypeKind(Enum):
    VALUE = "value"
    SINGLETON = "singleton"


class Access(Enum):
    DIRECT = "direct"
    CELL = "cell"
    QUERY = "query"


@dataclass(frozen=True)
class TypeEntry:
    name: str
    external_id: str
    kind: TypeKind


@dataclass(frozen=True)
class ParamEntry:
    """One routine argument.

    For Access.QUERY, name is the synthetic "query<position>" and
    subparams lists the matched component types in declaration order.
    Subparams are always Access.DIRECT.
    """

    name: str
    access: Access
    mutable: bool
    subparams: tuple["ParamEntry", ...] = ()

    @property
    def is_query(self) -> bool:
        return self.access is Access.QUERY


@dataclass(frozen=True)
class RoutineEntry:
    name: str
    run_once: bool
    params: tuple[ParamEntry, ...]

    @property
    def has_query(self) -> bool:
        return any(param.is_query for param in self.params)


class RegistryEntry(NamedTuple):
    name: str
    external_id: str


# ===--- Text filter ---=== #


def filter_comments(text: str) -> str:
    """Strip // and /* */ comments from header text.

    Line comments are removed up to, not including, the newline. Block
    comments are replaced by the newlines they spanned so line numbers in
    later error messages still match the input. An unterminated /* stops
    the scan and the remainder, marker included, is kept verbatim.
    """
    parts: list[str] = []
    pos = 0
    while True:
        line_at = text.find("//", pos)
        block_at = text.find("/*", pos)
        if line_at == -1 and block_at == -1:
            parts.append(text[pos:])
            break

        if block_at == -1 or (line_at != -1 and line_at < block_at):
            parts.append(text[pos:line_at])
            newline_at = text.find("\n", line_at)
            if newline_at == -1:
                break
            pos = newline_at
            continue

        end_at = text.find("*/", block_at + 2)
        if end_at == -1:
            parts.append(text[pos:])
            break
        parts.append(text[pos:block_at])
        parts.append("\n" * text.count("\n", block_at, end_at))
        pos = end_at + 2

    return "".join(parts)


# ===--- Delimiter scanning ---=== #

_OPENERS = {"(": ")", "<": ">", "[": "]", "{": "}"}
_CLOSERS = {")", ">", "]", "}"}


def find_matching_close(text: str, open_at: int, open_ch: str, close_ch: str) -> int:
    """Return the index of the close_ch balancing text[open_at], or -1."""
    depth = 0
    for index in range(open_at, len(text)):
        ch = text[index]
        if ch == open_ch:
            depth += 1
        elif ch == close_ch:
            depth -= 1
            if depth == 0:
                return index
    return -1


def find_top_level(text: str, target: str) -> int:
    """Index of the first target char not nested in any bracket pair, or -1."""
    depth = 0
    for index, ch in enumerate(text):
        if ch in _OPENERS:
            depth += 1
        elif ch in _CLOSERS:
            depth = max(depth - 1, 0)
        elif ch == target and depth == 0:
            return index
    return -1


def split_top_level(text: str, sep: str = ",") -> list[str]:
    pieces: list[str] = []
    rest = text
    while True:
        sep_at = find_top_level(rest, sep)
        if sep_at == -1:
            pieces.append(rest)
            return pieces
        pieces.append(rest[:sep_at])
        rest = rest[sep_at + 1 :]


# ===--- Declaration extraction ---=== #


class DeclarationForm(Enum):
    TYPE_VALUE = "type_value"
    TYPE_SINGLETON = "type_singleton"
    ROUTINE = "routine"
    ROUTINE_ONCE = "routine_once"


@dataclass(frozen=True)
class Declaration:
    form: DeclarationForm
    name: str
    body: str
    line: int


def _form_by_token(keywords: DeclarationKeywords) -> dict[str, DeclarationForm]:
    return {
        keywords.type_value: DeclarationForm.TYPE_VALUE,
        keywords.type_singleton: DeclarationForm.TYPE_SINGLETON,
        keywords.routine: DeclarationForm.ROUTINE,
        keywords.routine_once: DeclarationForm.ROUTINE_ONCE,
    }


def _declaration_pattern(tokens: list[str]) -> re.Pattern[str]:
    alternation = "|".join(re.escape(t) for t in sorted(tokens, key=len, reverse=True))
    return re.compile(rf"(?<![A-Za-z0-9_])({alternation})\s*\(")


def _is_directive_line(text: str, pos: int) -> bool:
    """True when pos sits on a preprocessor line, following \\ continuations."""
    line_start = text.rfind("\n", 0, pos) + 1
    while line_start > 0:
        prev_start = text.rfind("\n", 0, line_start - 1) + 1
        if not text[prev_start : line_start - 1].rstrip("\r").endswith("\\"):
            break
        line_start = prev_start
    return text[line_start:pos].lstrip().startswith("#")


def find_declarations(
    text: str, keywords: DeclarationKeywords | None = None
) -> list[Declaration]:
    """Find every declaration form in comment-filtered text, in source order.

    Each form's argument list is delimited by balanced parentheses, so
    commas and parens inside Query<...> never end the declaration early.
    For routines the name is the text before the first top-level comma and
    the body is everything after it; a routine without a comma takes no
    parameters.

    Raises:
        DeclarationError: UNTERMINATED_DECLARATION when a form has no
            matching ')', INVALID_IDENTIFIER when the declared name is not
            a C++ identifier.
    """
    if keywords is None:
        keywords = DeclarationKeywords()
    forms = _form_by_token(keywords)
    pattern = _declaration_pattern(list(forms))

    declarations: list[Declaration] = []
    pos = 0
    while True:
        match = pattern.search(text, pos)
        if match is None:
            break
        if _is_directive_line(text, match.start()):
            pos = match.end()
            continue

        token = match.group(1)
        line = text.count("\n", 0, match.start()) + 1
        open_at = match.end() - 1
        close_at = find_matching_close(text, open_at, "(", ")")
        if close_at == -1:
            raise DeclarationError(
                "UNTERMINATED_DECLARATION",
                f"{token}( has no matching ')'",
                line,
            )

        form = forms[token]
        inner = text[open_at + 1 : close_at]
        if form in (DeclarationForm.ROUTINE, DeclarationForm.ROUTINE_ONCE):
            comma_at = find_top_level(inner, ",")
            if comma_at == -1:
                name, body = inner.strip(), ""
            else:
                name, body = inner[:comma_at].strip(), inner[comma_at + 1 :].strip()
            name_ok = bool(_IDENT_RE.match(name))
        else:
            name, body = inner.strip(), ""
            name_ok = bool(_TYPE_NAME_RE.match(name))

        if not name_ok:
            raise DeclarationError(
                "INVALID_IDENTIFIER",
                f"{token}: {name!r} is not a valid name",
                line,
            )

        declarations.append(Declaration(form=form, name=name, body=body, line=line))
        pos = close_at + 1

    return declarations


# ===--- Signature parsing ---=== #


def _take_const(text: str, keywords: DeclarationKeywords) -> tuple[bool, str]:
    """Split off a leading const qualifier. Returns (mutable, rest)."""
    match = re.match(rf"{re.escape(keywords.const)}(?![A-Za-z0-9_])", text)
    if match is None:
        return True, text
    return False, text[match.end() :].lstrip()


def _generic_argument(text: str, keyword: str, code: str, raw: str) -> str | None:
    """Return the argument text of keyword<...>, or None if text is not one."""
    match = re.match(rf"{re.escape(keyword)}\s*<", text)
    if match is None:
        return None
    open_at = match.end() - 1
    close_at = find_matching_close(text, open_at, "<", ">")
    if close_at == -1:
        raise DeclarationError(code, f"missing closing '>' in {raw.strip()!r}")
    if text[close_at + 1 :].strip():
        raise DeclarationError(code, f"unexpected text after '>' in {raw.strip()!r}")
    return text[open_at + 1 : close_at]


def _check_type_name(name: str, raw: str) -> str:
    if not _TYPE_NAME_RE.match(name):
        raise DeclarationError(
            "INVALID_IDENTIFIER",
            f"{name!r} is not a type name in parameter {raw.strip()!r}",
        )
    return name


def _parse_query_components(
    inner: str, raw: str, keywords: DeclarationKeywords
) -> tuple[ParamEntry, ...]:
    if not inner.strip():
        raise DeclarationError(
            "MALFORMED_QUERY", f"query names no components: {raw.strip()!r}"
        )

    subparams: list[ParamEntry] = []
    for piece in split_top_level(inner):
        mutable, text = _take_const(piece.strip(), keywords)
        if not text:
            raise DeclarationError(
                "MALFORMED_QUERY", f"empty query component in {raw.strip()!r}"
            )
        if re.match(rf"{re.escape(keywords.query)}\s*<", text):
            raise DeclarationError(
                "NESTED_QUERY", f"queries cannot be nested: {raw.strip()!r}"
            )
        if not text.endswith(REFERENCE_MARKER):
            raise DeclarationError(
                "MALFORMED_QUERY",
                f"query components must be taken as references: {piece.strip()!r}",
            )
        name = _check_type_name(text[:-1].rstrip(), raw)
        subparams.append(ParamEntry(name=name, access=Access.DIRECT, mutable=mutable))
    return tuple(subparams)


def parse_param(
    raw: str, position: int, keywords: DeclarationKeywords | None = None
) -> ParamEntry:
    """Parse one routine parameter such as "const Velocity&".

    Args:
        raw: Parameter text between top-level commas.
        position: Zero-based index of the parameter in its routine. Used
            for the synthetic query name.
        keywords: Token set; defaults to DeclarationKeywords().

    Raises:
        DeclarationError: EMPTY_PARAM, NON_REFERENCE_PARAM,
            MALFORMED_QUERY, NESTED_QUERY or INVALID_IDENTIFIER.
    """
    if keywords is None:
        keywords = DeclarationKeywords()
    text = raw.strip()
    if not text:
        raise DeclarationError("EMPTY_PARAM", "empty parameter in parameter list")

    mutable, text = _take_const(text, keywords)
    query_match = re.match(rf"{re.escape(keywords.query)}\s*<", text)
    if query_match and find_matching_close(text, query_match.end() - 1, "<", ">") == -1:
        raise DeclarationError(
            "MALFORMED_QUERY", f"missing closing '>' in {raw.strip()!r}"
        )

    amp_at = find_top_level(text, REFERENCE_MARKER)
    if amp_at == -1:
        raise DeclarationError(
            "NON_REFERENCE_PARAM",
            f"all parameters must be taken as references: {raw.strip()!r}",
        )
    # An optional parameter name may follow the reference marker.
    trailing = text[amp_at + 1 :].strip()
    if trailing and not _IDENT_RE.match(trailing):
        raise DeclarationError(
            "INVALID_IDENTIFIER",
            f"unexpected {trailing!r} after '&' in {raw.strip()!r}",
        )
    text = text[:amp_at].rstrip()

    query_inner = _generic_argument(text, keywords.query, "MALFORMED_QUERY", raw)
    if query_inner is not None:
        return ParamEntry(
            name=f"query{position}",
            access=Access.QUERY,
            mutable=mutable,
            subparams=_parse_query_components(query_inner, raw, keywords),
        )

    cell_inner = _generic_argument(text, keywords.cell, "INVALID_IDENTIFIER", raw)
    if cell_inner is not None:
        name = _check_type_name(cell_inner.strip(), raw)
        return ParamEntry(name=name, access=Access.CELL, mutable=mutable)

    return ParamEntry(
        name=_check_type_name(text, raw), access=Access.DIRECT, mutable=mutable
    )


def parse_params(
    body: str, keywords: DeclarationKeywords | None = None
) -> tuple[ParamEntry, ...]:
    """Parse a routine body into parameters, in declaration order."""
    if not body.strip():
        return ()
    return tuple(
        parse_param(piece, position, keywords)
        for position, piece in enumerate(split_top_level(body))
    )


# ===--- Intermediate model ---=== #


class ModuleModel:
    """Catalogue of one module's declared types and routines.

    Both lists keep encounter order; that order is the index space of
    every emitted accessor.
    """

    def __init__(self, module_name: str, host_namespace: str = DEFAULT_HOST_NAMESPACE):
        self.module_name = module_name
        self.host_namespace = host_namespace
        self.types: list[TypeEntry] = []
        self.routines: list[RoutineEntry] = []

    @property
    def local_prefix(self) -> str:
        return f"{self.module_name}::"

    @property
    def singletons(self) -> list[TypeEntry]:
        return [t for t in self.types if t.kind is TypeKind.SINGLETON]

    def find_type(self, name: str) -> TypeEntry | None:
        for type_entry in self.types:
            if type_entry.name == name:
                return type_entry
        return None

    def is_local(self, external_id: str) -> bool:
        return external_id.startswith(self.local_prefix)

    def resolve_external_id(self, name: str) -> str:
        type_entry = self.find_type(name)
        if type_entry is not None:
            return type_entry.external_id
        return f"{self.host_namespace}::{name}"

    def add_type(self, name: str, kind: TypeKind, line: int | None = None) -> TypeEntry:
        """Record a declared type; a repeat of the same name and kind is a no-op.

        Raises:
            DeclarationError: DUPLICATE_TYPE when the name was already
                declared with the other kind.
        """
        existing = self.find_type(name)
        if existing is not None:
            if existing.kind is not kind:
                raise DeclarationError(
                    "DUPLICATE_TYPE",
                    f"type {name} is declared as both {existing.kind.value} "
                    f"and {kind.value}",
                    line,
                )
            return existing
        type_entry = TypeEntry(name=name, external_id=self.local_prefix + name, kind=kind)
        self.types.append(type_entry)
        return type_entry

    def add_routine(
        self,
        name: str,
        run_once: bool,
        params: tuple[ParamEntry, ...],
        line: int | None = None,
    ) -> RoutineEntry:
        if any(r.name == name for r in self.routines):
            raise DeclarationError(
                "DUPLICATE_ROUTINE", f"routine {name} is declared more than once", line
            )
        routine = RoutineEntry(name=name, run_once=run_once, params=params)
        self.routines.append(routine)
        return routine

    def build_registry(
        self, well_known_types: tuple[str, ...] = ()
    ) -> tuple[RegistryEntry, ...]:
        """Derive the identity-assignment table.

        Union of non-query parameter types, declared types and the given
        well-known host types, stable-sorted by bare name with the first
        entry per name kept. Local declarations precede well-known names in
        the candidate list, so a name that is both resolves locally.
        """
        candidates: list[RegistryEntry] = []
        for routine in self.routines:
            for param in routine.params:
                if not param.is_query:
                    candidates.append(
                        RegistryEntry(param.name, self.resolve_external_id(param.name))
                    )
        candidates.extend(RegistryEntry(t.name, t.external_id) for t in self.types)
        candidates.extend(
            RegistryEntry(name, f"{self.host_namespace}::{name}")
            for name in well_known_types
        )
        candidates.sort(key=lambda entry: entry.name)

        registry: list[RegistryEntry] = []
        seen: set[str] = set()
        for entry in candidates:
            if entry.name in seen:
                continue
            seen.add(entry.name)
            registry.append(entry)
        return tuple(registry)


def build_model(
    declarations: list[Declaration], config: GeneratorConfig
) -> ModuleModel:
    """Assemble a ModuleModel from extracted declarations.

    Routine bodies are parsed here; parse failures are re-raised with the
    declaring line and routine name attached.
    """
    model = ModuleModel(config.module_name, config.host_namespace)
    for decl in declarations:
        if decl.form is DeclarationForm.TYPE_VALUE:
            model.add_type(decl.name, TypeKind.VALUE, decl.line)
        elif decl.form is DeclarationForm.TYPE_SINGLETON:
            model.add_type(decl.name, TypeKind.SINGLETON, decl.line)
        else:
            try:
                params = parse_params(decl.body, config.keywords)
            except DeclarationError as err:
                raise DeclarationError(
                    err.code, f"routine {decl.name}: {err.message}", decl.line
                ) from err
            model.add_routine(
                decl.name,
                decl.form is DeclarationForm.ROUTINE_ONCE,
                params,
                decl.line,
            )
    return model


# ===--- Emitter: shared run metadata ---=== #


@dataclass(frozen=True)
class WriteConfig:
    """Per-run metadata rendered into the generated file preamble.

    Attributes:
        source_name: File name of the scanned header, e.g. "physics.h".
            Emitted as the first #include so the wrappers see the real
            declarations.
        module_name: Module namespace, shown in the header block.
    """

    source_name: str
    module_name: str


CALLBACK_SLOTS: tuple[tuple[str, str], ...] = (
    ("QueryGet", "query_get"),
    ("QueryGetMut", "query_get_mut"),
    ("QueryGetFirst", "query_get_first"),
    ("QueryGetFirstMut", "query_get_first_mut"),
    ("QueryForEach", "query_for_each"),
    ("QueryParForEach", "query_par_for_each"),
)
"""(CallbackType suffix, HostContext field) for each host query primitive."""

SYSTEM_INCLUDES: tuple[str, ...] = (
    "cstddef",
    "cstdint",
    "cstdlib",
    "cstring",
    "memory",
    "type_traits",
)

_HEADER_BORDER: str = "// x-------------------------------------------x //"


# ===--- Emitter: formatting helpers ---=== #


def _switch(
    selector: str, cases: list[tuple[int, str | list[str]]], indent: int = 4
) -> list[str]:
    """Render a switch whose default aborts.

    A str case body is emitted inline after the label; a list body is
    emitted on the following lines as-is (used for nested switches).
    """
    pad = " " * indent
    lines = [f"{pad}switch ({selector}) {{"]
    for value, body in cases:
        if isinstance(body, str):
            lines.append(f"{pad}    case {value}: {body}")
        else:
            lines.append(f"{pad}    case {value}:")
            lines.extend(body)
    lines.append(f"{pad}    default: std::abort();")
    lines.append(f"{pad}}}")
    return lines


def _strcmp_chain(
    branches: list[tuple[str, list[str]]], fallback: list[str] | None
) -> list[str]:
    """Render an if / else-if chain over string_id.

    Branch bodies are given without indentation. With fallback=None an
    unmatched id falls off the end of the chain.
    """
    if not branches:
        return [f"    {line}" for line in (fallback or [])]

    lines: list[str] = []
    for index, (string_id, body) in enumerate(branches):
        opener = "if" if index == 0 else "} else if"
        lines.append(f'    {opener} (std::strcmp(string_id, "{string_id}") == 0) {{')
        lines.extend(f"        {line}" for line in body)
    if fallback is not None:
        lines.append("    } else {")
        lines.extend(f"        {line}" for line in fallback)
    lines.append("    }")
    return lines


def _function(signature: str, body: list[str]) -> list[str]:
    return [f"{signature} {{", *body, "}", ""]


def _cpp_bool(value: bool) -> str:
    return "true" if value else "false"


def format_file_header(config: WriteConfig) -> list[str]:
    """Return the comment block at the top of the generated file.

    Output format:
        // x-------------------------------------------x //
        // | Reflection surface for module physics
        // | Generated by ffigen, do not edit
        // | Source: physics.h
        // x-------------------------------------------x //

    Raises:
        ValueError: If config.source_name is empty.
    """
    if not config.source_name:
        raise ValueError("source_name must not be empty")
    return [
        _HEADER_BORDER,
        f"// | Reflection surface for module {config.module_name}",
        f"// | Generated by {TOOL_NAME}, do not edit",
        f"// | Source: {config.source_name}",
        _HEADER_BORDER,
    ]


def format_include_block(config: WriteConfig) -> list[str]:
    lines = [f'#include "{config.source_name}"', ""]
    lines.extend(f"#include <{header}>" for header in SYSTEM_INCLUDES)
    return lines


# ===--- Emitter: enums and host context ---=== #


def generate_enums() -> list[str]:
    lines: list[str] = []
    enums = (
        ("TypeKind", ("Value", "Singleton")),
        ("ArgType", ("DataAccessMut", "DataAccessRef", "Query")),
        ("QueryArgType", ("ComponentMut", "ComponentRef")),
        ("CallbackType", tuple(suffix for suffix, _ in CALLBACK_SLOTS)),
    )
    for enum_name, variants in enums:
        lines.append(f"enum {enum_name} {{")
        lines.extend(f"    {enum_name}{variant}," for variant in variants)
        lines.append("};")
        lines.append("")
    return lines


def generate_host_context() -> list[str]:
    """Emit HostContext and the functions the host uses to fill it.

    The host allocates host_context_size() bytes at host_context_align(),
    calls host_context_init, registers each query primitive with
    host_context_set_callback and then passes the context to every
    system_fn call.
    """
    lines = ["struct HostContext {"]
    lines.extend(f"    void* {slot} = nullptr;" for _, slot in CALLBACK_SLOTS)
    lines.append("};")
    lines.append("")

    lines.extend(
        _function(
            'extern "C" size_t host_context_size()',
            ["    return sizeof(HostContext);"],
        )
    )
    lines.extend(
        _function(
            'extern "C" size_t host_context_align()',
            ["    return alignof(HostContext);"],
        )
    )
    lines.extend(
        _function(
            'extern "C" void host_context_init(void* storage)',
            ["    std::construct_at(static_cast<HostContext*>(storage));"],
        )
    )

    body = ["    switch (type) {"]
    for suffix, slot in CALLBACK_SLOTS:
        body.append(
            f"        case CallbackType{suffix}: ctx->{slot} = callback; return 0;"
        )
    body.append("        default: return 1;")
    body.append("    }")
    lines.extend(
        _function(
            'extern "C" int32_t host_context_set_callback('
            "HostContext* ctx, CallbackType type, void* callback)",
            body,
        )
    )
    return lines


# ===--- Emitter: type metadata ---=== #


def generate_type_metadata(model: ModuleModel) -> list[str]:
    types = model.types
    lines: list[str] = []

    lines.extend(
        _function('extern "C" size_t types_len()', [f"    return {len(types)};"])
    )
    lines.extend(
        _function(
            'extern "C" const char* type_string_id(size_t type_index)',
            _switch(
                "type_index",
                [(i, f'return "{t.external_id}";') for i, t in enumerate(types)],
            ),
        )
    )

    for fn_name, operator in (("type_size", "sizeof"), ("type_align", "alignof")):
        lines.extend(
            _function(
                f'extern "C" size_t {fn_name}(const char* string_id)',
                _strcmp_chain(
                    [(t.external_id, [f"return {operator}({t.name});"]) for t in types],
                    ["std::abort();"],
                ),
            )
        )

    kind_branches: list[tuple[str, list[str]]] = []
    for t in types:
        if t.kind is TypeKind.VALUE:
            body = [
                f"static_assert(std::is_standard_layout_v<{t.name}>);",
                f"static_assert(std::is_trivially_copyable_v<{t.name}>);",
                "return TypeKindValue;",
            ]
        else:
            body = ["return TypeKindSingleton;"]
        kind_branches.append((t.external_id, body))
    lines.extend(
        _function(
            'extern "C" TypeKind type_kind(const char* string_id)',
            _strcmp_chain(kind_branches, ["std::abort();"]),
        )
    )
    return lines


def generate_identity_assignment(registry: tuple[RegistryEntry, ...]) -> list[str]:
    """Emit set_type_id: one branch per registry entry, in registry order."""
    return _function(
        'extern "C" void set_type_id(const char* string_id, TypeId id)',
        _strcmp_chain(
            [
                (entry.external_id, [f"TypeIdentity<{entry.name}>::ID = id;"])
                for entry in registry
            ],
            None,
        ),
    )


def generate_singleton_init(model: ModuleModel) -> list[str]:
    singletons = model.singletons
    signature = 'extern "C" int32_t singleton_init(const char* string_id, void* storage)'
    if not singletons:
        return _function(signature, ["    return 1;"])

    body = _strcmp_chain(
        [
            (s.external_id, [f"std::construct_at(static_cast<{s.name}*>(storage));"])
            for s in singletons
        ],
        ["return 1;"],
    )
    body.append("")
    body.append("    return 0;")
    return _function(signature, body)


# ===--- Emitter: routine catalogue ---=== #


def _query_type(param: ParamEntry, keywords: DeclarationKeywords) -> str:
    components = ", ".join(
        f"{'' if sub.mutable else 'const '}{sub.name}{REFERENCE_MARKER}"
        for sub in param.subparams
    )
    return f"{keywords.query}<{components}>"


def _arg_expression(param: ParamEntry, index: int, keywords: DeclarationKeywords) -> str:
    if param.is_query:
        return param.name
    qualifier = "" if param.mutable else "const "
    type_name = param.name
    if param.access is Access.CELL:
        type_name = f"{keywords.cell}<{param.name}>"
    return f"*static_cast<{qualifier}{type_name}*>(input[{index}])"


def generate_routine_wrapper(
    routine: RoutineEntry, keywords: DeclarationKeywords
) -> list[str]:
    """Emit the untyped-argument shim for one routine.

    The shim receives the host context and one void* slot per parameter,
    in declaration order. Direct and cell slots are cast back to their
    real types; query slots are wrapped in a Query handle bound to the
    host context before the call.
    """
    ctx_param = "const HostContext* ctx" if routine.has_query else "const HostContext*"
    input_param = "void** input" if routine.params else "void**"
    signature = f"static int32_t {routine.name}_ffi({ctx_param}, {input_param})"

    body: list[str] = []
    for index, param in enumerate(routine.params):
        if param.is_query:
            qualifier = "" if param.mutable else "const "
            body.append(
                f"    {qualifier}{_query_type(param, keywords)} "
                f"{param.name}(ctx, input[{index}]);"
            )
    if body:
        body.append("")

    if routine.params:
        args = [_arg_expression(p, i, keywords) for i, p in enumerate(routine.params)]
        body.append(f"    {routine.name}(")
        body.extend(f"        {arg}," for arg in args[:-1])
        body.append(f"        {args[-1]}")
        body.append("    );")
    else:
        body.append(f"    {routine.name}();")
    body.append("")
    body.append("    return 0;")
    return _function(signature, body)


def _arg_type(param: ParamEntry) -> str:
    if param.is_query:
        return "ArgTypeQuery"
    if param.access is Access.DIRECT and param.mutable:
        return "ArgTypeDataAccessMut"
    return "ArgTypeDataAccessRef"


def _query_arg_type(sub: ParamEntry) -> str:
    return "QueryArgTypeComponentMut" if sub.mutable else "QueryArgTypeComponentRef"


def generate_routine_catalogue(model: ModuleModel) -> list[str]:
    """Emit the index-addressed routine accessors.

    Every accessor aborts on an index outside the range reported by
    routines_len / system_args_len / system_query_args_len. The query
    accessors only carry cases for routines that take a query.
    """
    routines = model.routines
    indexed = list(enumerate(routines))
    with_queries = [(i, r) for i, r in indexed if r.has_query]
    lines: list[str] = ["typedef int32_t (*system_fn_ptr)(const HostContext*, void**);", ""]

    lines.extend(
        _function('extern "C" size_t routines_len()', [f"    return {len(routines)};"])
    )
    lines.extend(
        _function(
            'extern "C" bool system_is_once(size_t system_index)',
            _switch(
                "system_index",
                [(i, f"return {_cpp_bool(r.run_once)};") for i, r in indexed],
            ),
        )
    )
    lines.extend(
        _function(
            'extern "C" system_fn_ptr system_fn(size_t system_index)',
            _switch("system_index", [(i, f"return {r.name}_ffi;") for i, r in indexed]),
        )
    )
    lines.extend(
        _function(
            'extern "C" size_t system_args_len(size_t system_index)',
            _switch("system_index", [(i, f"return {len(r.params)};") for i, r in indexed]),
        )
    )

    lines.extend(
        _function(
            'extern "C" ArgType system_arg_type(size_t system_index, size_t arg_index)',
            _switch(
                "system_index",
                [
                    (
                        i,
                        _switch(
                            "arg_index",
                            [(j, f"return {_arg_type(p)};") for j, p in enumerate(r.params)],
                            indent=12,
                        ),
                    )
                    for i, r in indexed
                ],
            ),
        )
    )

    lines.extend(
        _function(
            'extern "C" const char* system_arg_type_id('
            "size_t system_index, size_t arg_index)",
            _switch(
                "system_index",
                [
                    (
                        i,
                        _switch(
                            "arg_index",
                            [
                                (j, f'return "{model.resolve_external_id(p.name)}";')
                                for j, p in enumerate(r.params)
                                if not p.is_query
                            ],
                            indent=12,
                        ),
                    )
                    for i, r in indexed
                ],
            ),
        )
    )

    lines.extend(
        _function(
            'extern "C" size_t system_query_args_len('
            "size_t system_index, size_t arg_index)",
            _switch(
                "system_index",
                [
                    (
                        i,
                        _switch(
                            "arg_index",
                            [
                                (j, f"return {len(p.subparams)};")
                                for j, p in enumerate(r.params)
                                if p.is_query
                            ],
                            indent=12,
                        ),
                    )
                    for i, r in with_queries
                ],
            ),
        )
    )

    def _per_subparam(render) -> list[tuple[int, str | list[str]]]:
        return [
            (
                i,
                _switch(
                    "arg_index",
                    [
                        (
                            j,
                            _switch(
                                "query_index",
                                [(k, render(sub)) for k, sub in enumerate(p.subparams)],
                                indent=20,
                            ),
                        )
                        for j, p in enumerate(r.params)
                        if p.is_query
                    ],
                    indent=12,
                ),
            )
            for i, r in with_queries
        ]

    query_signature = "(size_t system_index, size_t arg_index, size_t query_index)"
    lines.extend(
        _function(
            f'extern "C" QueryArgType system_query_arg_type{query_signature}',
            _switch(
                "system_index",
                _per_subparam(lambda sub: f"return {_query_arg_type(sub)};"),
            ),
        )
    )
    lines.extend(
        _function(
            f'extern "C" const char* system_query_arg_type_id{query_signature}',
            _switch(
                "system_index",
                _per_subparam(
                    lambda sub: f'return "{model.resolve_external_id(sub.name)}";'
                ),
            ),
        )
    )
    return lines


# ===--- Emitter: assembly ---=== #


def generate_source(
    model: ModuleModel, config: GeneratorConfig, write_config: WriteConfig
) -> str:
    """Render the complete ffi translation unit.

    Pure and deterministic: the same model and configs always produce the
    same text. Section order is header, includes, enums, host context, type
    metadata, identity assignment, singleton init, routine wrappers and the
    routine catalogue.

    Args:
        model: Populated module model.
        config: Generator configuration; supplies the well-known host types
            for identity assignment and the query / cell tokens.
        write_config: Preamble metadata.

    Returns:
        Source text with exactly one trailing newline.
    """
    lines: list[str] = list(format_file_header(write_config))
    lines.append("")
    lines.extend(format_include_block(write_config))
    lines.append("")
    lines.extend(generate_enums())
    lines.extend(generate_host_context())
    lines.extend(generate_type_metadata(model))
    lines.extend(generate_identity_assignment(model.build_registry(config.well_known_types)))
    lines.extend(generate_singleton_init(model))
    for routine in model.routines:
        lines.extend(generate_routine_wrapper(routine, config.keywords))
    lines.extend(generate_routine_catalogue(model))
    return "\n".join(lines).rstrip("\n") + "\n"


# ===--- Writer ---=== #


@dataclass(frozen=True)
class FileWriteResult:
    """Result of writing the generated file.

    Attributes:
        filename: Filename written, e.g. "ffi.cpp".
        path: Absolute path of the written file.
        line_count: Number of newline characters in the written content.
        byte_count: Number of bytes written (UTF-8 encoded).
    """

    filename: str
    path: Path
    line_count: int
    byte_count: int


def write_output(output_path: Path, content: str) -> FileWriteResult:
    """Write generated source to disk, creating parent directories.

    Raises:
        OSError: Propagated directly if the filesystem write fails. There
            is no rollback; a failed write may leave a partial file.
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(content, encoding="utf-8")
    resolved = output_path.resolve()
    return FileWriteResult(
        filename=output_path.name,
        path=resolved,
        line_count=content.count("\n"),
        byte_count=len(content.encode("utf-8")),
    )


# ===--- Summary report ---=== #


@dataclass(frozen=True)
class GenerationSummary:
    """Data for the post-generation console report.

    Attributes:
        module_name: Module namespace used for local external ids.
        source_name: Scanned header file name.
        type_count: Declared types, values and singletons together.
        singleton_count: Declared singletons.
        routine_count: Declared routines.
        run_once_count: Routines declared with the run-once form.
        query_count: Query parameters across all routines.
        registry_count: Entries in the identity-assignment table.
        local_registry_count: Registry entries in the module's own namespace.
        output: Write result for the generated file.
    """

    module_name: str
    source_name: str
    type_count: int
    singleton_count: int
    routine_count: int
    run_once_count: int
    query_count: int
    registry_count: int
    local_registry_count: int
    output: FileWriteResult


def build_generation_summary(
    model: ModuleModel,
    config: GeneratorConfig,
    write_config: WriteConfig,
    output: FileWriteResult,
) -> GenerationSummary:
    registry = model.build_registry(config.well_known_types)
    return GenerationSummary(
        module_name=model.module_name,
        source_name=write_config.source_name,
        type_count=len(model.types),
        singleton_count=len(model.singletons),
        routine_count=len(model.routines),
        run_once_count=sum(1 for r in model.routines if r.run_once),
        query_count=sum(1 for r in model.routines for p in r.params if p.is_query),
        registry_count=len(registry),
        local_registry_count=sum(
            1 for entry in registry if model.is_local(entry.external_id)
        ),
        output=output,
    )


def format_generation_summary(summary: GenerationSummary) -> str:
    """Render a GenerationSummary as a multi-line console string.

    Annotations in parentheses appear only when their count is non-zero.
    Returns a string with exactly one trailing newline.
    """
    lines: list[str] = [
        f"Reflection surface generated for module {summary.module_name}:",
        "",
        f"  Source:     {summary.source_name}",
        f"  Output:     {summary.output.path}",
        "",
        "  Declarations:",
    ]

    def _row(label: str, count: int, note: str | None = None) -> str:
        row = f"    {label:<11}{count:>6}"
        return f"{row}  ({note})" if note else row

    singleton_note = (
        f"{summary.singleton_count} singleton" if summary.singleton_count else None
    )
    once_note = f"{summary.run_once_count} run-once" if summary.run_once_count else None
    lines.append(_row("Types:", summary.type_count, singleton_note))
    lines.append(_row("Routines:", summary.routine_count, once_note))
    lines.append(_row("Queries:", summary.query_count))
    local_note = (
        f"{summary.local_registry_count} local" if summary.local_registry_count else None
    )
    lines.append(_row("Registry:", summary.registry_count, local_note))
    lines.append("")
    lines.append(
        f"  Written: {summary.output.line_count:,} lines, "
        f"{summary.output.byte_count:,} bytes to {summary.output.filename}"
    )
    return "\n".join(lines) + "\n"


def print_generation_summary(summary: GenerationSummary) -> None:
    print(format_generation_summary(summary), end="")


# ===--- Pipeline ---=== #


def build_generator_config(config: GenerateConfig) -> GeneratorConfig:
    return GeneratorConfig(module_name=config.module_name)


def build_write_config(config: GenerateConfig) -> WriteConfig:
    return WriteConfig(
        source_name=config.input_path.name, module_name=config.module_name
    )


def run_generate(
    config: GenerateConfig, generator_config: GeneratorConfig | None = None
) -> FileWriteResult:
    """Execute the complete pipeline for one header.

    Stages: read -> filter comments -> extract declarations -> build model
    -> emit -> write -> report. Nothing is written unless every stage before
    the write succeeds.

    Args:
        config: Validated GenerateConfig from build_config.
        generator_config: Overrides the configuration derived from config,
            e.g. to inject a different well-known type set.

    Raises:
        OSError: Input not readable or output not writable.
        UnicodeDecodeError: Input is not UTF-8.
        DeclarationError: Malformed declaration or parameter list.
    """
    if generator_config is None:
        generator_config = build_generator_config(config)

    print(f"Parsing: {config.input_path}")
    raw = config.input_path.read_text(encoding="utf-8-sig")
    declarations = find_declarations(filter_comments(raw), generator_config.keywords)
    model = build_model(declarations, generator_config)
    print(
        f"  Extracted: {len(model.types)} types, {len(model.routines)} routines "
        f"from {len(declarations)} declarations"
    )

    write_config = build_write_config(config)
    content = generate_source(model, generator_config, write_config)
    result = write_output(config.output_path, content)

    print_generation_summary(
        build_generation_summary(model, generator_config, write_config, result)
    )
    return result


# ===--- Main generation ---=== #


def main(argv: list[str] | None = None):
    try:
        config = build_config(argv)
    except ConfigError as err:
        print(f"Config error [{err.code}]: {err.message}")
        if err.suggestion:
            print(f"Hint: {err.suggestion}")
        raise SystemExit(1) from err

    try:
        run_generate(config)
    except DeclarationError as err:
        location = f" (line {err.line})" if err.line is not None else ""
        print(f"Declaration error [{err.code}]{location}: {err.message}")
        raise SystemExit(1) from err
    except (OSError, UnicodeDecodeError) as err:
        print(f"Error: {err}")
        raise SystemExit(1) from err


if __name__ == "__main__":
    main()
