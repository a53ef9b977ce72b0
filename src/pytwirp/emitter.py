from __future__ import annotations

import keyword
import posixpath
import textwrap
from dataclasses import dataclass

from . import GENERATOR_NAME
from .descriptors import FileSkeleton, MethodDescriptor, ServiceDescriptor, TypeRef, strip_proto_suffix
from .errors import RenderError
from .imports import AliasTable, ResolvedImport
from .logging import get_logger
from .options import GeneratorOptions

logger = get_logger("emitter")

_WELL_KNOWN_PREFIX = "google/protobuf/"


@dataclass(frozen=True)
class GenerationUnit:
    file_name: str
    source: str
    proto_name: str
    package: str
    aliases: AliasTable
    services: tuple[ServiceDescriptor, ...]


@dataclass(frozen=True)
class _Variant:
    class_suffix: str
    dispatch: str


_VARIANTS = (
    _Variant(class_suffix="JSONClient", dispatch="do_json_request"),
    _Variant(class_suffix="ProtobufClient", dispatch="do_protobuf_request"),
)


def build_unit(skeleton: FileSkeleton, aliases: AliasTable, options: GeneratorOptions) -> GenerationUnit:
    return GenerationUnit(
        file_name=f"{skeleton.output_prefix}{options.suffix}.py",
        source=skeleton.path,
        proto_name=skeleton.proto_name,
        package=skeleton.package,
        aliases=aliases,
        services=skeleton.services,
    )


def lower_first_letter(value: str) -> str:
    return value[:1].lower() + value[1:]


def _ident(value: str, *, what: str, source: str) -> str:
    if not value.isidentifier() or keyword.iskeyword(value):
        raise RenderError(f"{source}: {what} {value!r} is not a valid Python identifier")
    return value


def _method_ident(method: MethodDescriptor, source: str) -> str:
    name = lower_first_letter(method.name)
    if keyword.iskeyword(name):
        name += "_"
    return _ident(name, what="method name", source=source)


def _pb2_module(base_name: str, source: str) -> str:
    return _ident(base_name.replace("-", "_") + "_pb2", what="module name", source=source)


def _dir_parts(proto_path: str) -> list[str]:
    directory = posixpath.dirname(proto_path)
    return directory.split("/") if directory else []


def _absolute_import(entry: ResolvedImport, as_name: str, source: str) -> str:
    dirs = [_ident(part, what="import directory", source=source) for part in _dir_parts(entry.source)]
    module = _pb2_module(posixpath.basename(strip_proto_suffix(entry.source)), source)
    if not dirs:
        return f"import {module} as {as_name}"
    return f"from {'.'.join(dirs)} import {module} as {as_name}"


def _import_line(entry: ResolvedImport, as_name: str, source: str) -> str:
    """Relative import while it stays inside the generating file's top-level package."""
    if entry.source.startswith(_WELL_KNOWN_PREFIX):
        return _absolute_import(entry, as_name, source)

    parts = entry.path.split("/")
    up = 0
    while up < len(parts) - 1 and parts[up] == "..":
        up += 1
    if up >= len(_dir_parts(source)):
        return _absolute_import(entry, as_name, source)

    dirs = [_ident(part, what="import directory", source=source) for part in parts[up:-1]]
    module = _pb2_module(parts[-1], source)
    return f"from {'.' * (up + 1)}{'.'.join(dirs)} import {module} as {as_name}"


def _docstring(comment: str, indent: str) -> list[str]:
    text = textwrap.dedent("\n".join(line.rstrip() for line in comment.splitlines())).strip()
    if not text:
        return []
    text = text.replace("\\", "\\\\")
    if '"""' in text or text.endswith('"'):
        text = text.replace('"', '\\"')
    lines = text.splitlines()
    if len(lines) == 1:
        return [f'{indent}"""{lines[0]}"""']
    out = [f'{indent}"""{lines[0]}']
    out.extend(f"{indent}{line}" if line else "" for line in lines[1:])
    out.append(f'{indent}"""')
    return out


class _TypeNamer:
    def __init__(self, unit: GenerationUnit) -> None:
        self._unit = unit
        self.local_module = _pb2_module(unit.proto_name, unit.source)
        self.local_used = False

    def __call__(self, ref: TypeRef) -> str:
        if ref.proto_file == self._unit.source:
            self.local_used = True
            return f"{self.local_module}.{ref.name}"
        entry = self._unit.aliases.entry_for_file(ref.proto_file)
        if entry is None:
            raise RenderError(
                f"{self._unit.source}: type {ref.full_name} from {ref.proto_file} has no import alias"
            )
        return f"{entry.alias}.{ref.name}"


@dataclass(frozen=True)
class _RenderedMethod:
    method: MethodDescriptor
    ident: str
    input: str
    output: str


def _render_methods(service: ServiceDescriptor, namer: _TypeNamer, source: str) -> list[_RenderedMethod]:
    out: list[_RenderedMethod] = []
    seen: set[str] = set()
    for method in service.methods:
        ident = _method_ident(method, source)
        if ident in seen:
            raise RenderError(f"{source}: {service.name} has two methods rendered as {ident}")
        seen.add(ident)
        out.append(_RenderedMethod(method=method, ident=ident, input=namer(method.input), output=namer(method.output)))
    return out


def _interface_lines(service: ServiceDescriptor, methods: list[_RenderedMethod]) -> list[str]:
    lines = [f"class {service.name}(abc.ABC):"]
    doc = _docstring(service.comment, "    ")
    lines.extend(doc)
    if not methods and not doc:
        lines.append("    pass")
    for m in methods:
        lines.append("")
        lines.append("    @abc.abstractmethod")
        lines.append(f"    async def {m.ident}(self, ctx: twirp.Context, req: {m.input}) -> {m.output}:")
        lines.extend(_docstring(m.method.comment, "        ") or ["        ..."])
    return lines


def _client_lines(service: ServiceDescriptor, methods: list[_RenderedMethod], variant: _Variant) -> list[str]:
    lines = [f"class {service.name}{variant.class_suffix}({service.name}):"]
    doc = _docstring(service.comment, "    ")
    if doc:
        lines.extend(doc)
        lines.append("")
    lines.extend(
        [
            "    def __init__(",
            "        self,",
            "        base_url: str,",
            "        prefix: str,",
            "        *,",
            "        hooks: twirp.ClientHooks | None = None,",
            "        interceptor: twirp.Interceptor | None = None,",
            "        transport: httpx.AsyncBaseTransport | None = None,",
            "    ) -> None:",
            "        self.base_url = twirp.normalize_base_url(base_url)",
            "        self.prefix = twirp.normalize_prefix(prefix)",
            "        self.hooks = hooks if hooks is not None else twirp.ClientHooks()",
            "        self.interceptor = interceptor if interceptor is not None else twirp.chain_interceptors()",
            "        self.transport = transport",
        ]
    )
    for m in methods:
        name = m.method.name
        lines.extend(
            [
                "",
                f"    async def {m.ident}(self, ctx: twirp.Context, req: {m.input}) -> {m.output}:",
                f'        ctx = twirp.with_package_name(ctx, "{service.package}")',
                f'        ctx = twirp.with_service_name(ctx, "{service.name}")',
                f'        ctx = twirp.with_method_name(ctx, "{name}")',
                f"        return await self.interceptor(self._call_{name})(ctx, req)",
                "",
                f"    async def _call_{name}(self, ctx: twirp.Context, req: {m.input}) -> {m.output}:",
                f'        url = self.base_url + self.prefix + "{service.full_name}/{name}"',
                f"        return await twirp.{variant.dispatch}(",
                f"            ctx, url, self.hooks, req, {m.output}, transport=self.transport",
                "        )",
            ]
        )
    return lines


def _import_lines(unit: GenerationUnit, namer: _TypeNamer) -> tuple[list[str], list[str]]:
    imports: list[str] = []
    merges: list[str] = []
    if namer.local_used:
        if _dir_parts(unit.source):
            imports.append(f"from . import {namer.local_module}")
        else:
            imports.append(f"import {namer.local_module}")
    for alias, entries in unit.aliases.grouped().items():
        if len(entries) == 1:
            imports.append(_import_line(entries[0], alias, unit.source))
            continue
        names = [f"{alias}_{idx}" for idx in range(len(entries))]
        for entry, name in zip(entries, names):
            imports.append(_import_line(entry, name, unit.source))
        merges.append(f"{alias} = twirp.merge_modules({', '.join(names)})")
    return imports, merges


def render_unit(unit: GenerationUnit, options: GeneratorOptions) -> str:
    for service in unit.services:
        _ident(service.name, what="service name", source=unit.source)

    namer = _TypeNamer(unit)
    rendered = [(service, _render_methods(service, namer, unit.source)) for service in unit.services]
    imports, merges = _import_lines(unit, namer)

    lines: list[str] = [
        f"# Code generated by {GENERATOR_NAME}. DO NOT EDIT.",
        f"# source: {unit.source}",
        "from __future__ import annotations",
        "",
        "import abc",
        "",
        "import httpx",
        "",
        f"import {options.runtime_module} as twirp",
    ]
    if imports:
        lines.append("")
        lines.extend(imports)
    if merges:
        lines.append("")
        lines.extend(merges)

    for service, methods in rendered:
        lines.extend(["", ""])
        lines.extend(_interface_lines(service, methods))
        for variant in _VARIANTS:
            lines.extend(["", ""])
            lines.extend(_client_lines(service, methods, variant))

    logger.debug("rendered %s: %d service(s)", unit.file_name, len(unit.services))
    return "\n".join(lines) + "\n"
