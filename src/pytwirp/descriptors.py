"""Descriptor intake: turn a protoc ``CodeGeneratorRequest`` into per-file skeletons.

Only files listed in ``file_to_generate`` that declare at least one service
produce a skeleton. Everything else in the request (dependencies, well-known
types) is read for type and package lookups only.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Iterator

from google.protobuf import descriptor_pb2
from google.protobuf.compiler import plugin_pb2

from .errors import DescriptorError
from .logging import get_logger

logger = get_logger("descriptors")

_SERVICE_FIELD = descriptor_pb2.FileDescriptorProto.SERVICE_FIELD_NUMBER
_METHOD_FIELD = descriptor_pb2.ServiceDescriptorProto.METHOD_FIELD_NUMBER

PROTO_SUFFIX = ".proto"


@dataclass(frozen=True)
class TypeRef:
    full_name: str
    name: str
    proto_file: str
    package: str


@dataclass(frozen=True)
class MethodDescriptor:
    name: str
    input: TypeRef
    output: TypeRef
    comment: str = ""


@dataclass(frozen=True)
class ServiceDescriptor:
    name: str
    package: str
    methods: tuple[MethodDescriptor, ...]
    comment: str = ""

    @property
    def full_name(self) -> str:
        if not self.package:
            return self.name
        return f"{self.package}.{self.name}"


@dataclass(frozen=True)
class ImportRecord:
    path: str
    package: str
    reexports: tuple[str, ...] = ()


@dataclass(frozen=True)
class FileSkeleton:
    path: str
    proto_name: str
    package: str
    services: tuple[ServiceDescriptor, ...]
    imports: tuple[ImportRecord, ...]

    @property
    def output_prefix(self) -> str:
        return strip_proto_suffix(self.path)


def strip_proto_suffix(path: str) -> str:
    if path.endswith(PROTO_SUFFIX):
        return path[: -len(PROTO_SUFFIX)]
    return path


def _iter_messages(
    messages: Iterable[descriptor_pb2.DescriptorProto], scope: str
) -> Iterator[tuple[str, descriptor_pb2.DescriptorProto]]:
    for message in messages:
        name = f"{scope}.{message.name}" if scope else message.name
        yield name, message
        yield from _iter_messages(message.nested_type, name)


def _index_types(files: Iterable[descriptor_pb2.FileDescriptorProto]) -> dict[str, TypeRef]:
    index: dict[str, TypeRef] = {}
    for proto in files:
        for local_name, _ in _iter_messages(proto.message_type, ""):
            full_name = f"{proto.package}.{local_name}" if proto.package else local_name
            index[full_name] = TypeRef(
                full_name=full_name,
                name=local_name,
                proto_file=proto.name,
                package=proto.package,
            )
    return index


def _leading_comments(proto: descriptor_pb2.FileDescriptorProto) -> dict[tuple[int, ...], str]:
    comments: dict[tuple[int, ...], str] = {}
    for location in proto.source_code_info.location:
        if location.leading_comments:
            comments[tuple(location.path)] = location.leading_comments
    return comments


def _public_closure(
    path: str, files: dict[str, descriptor_pb2.FileDescriptorProto], seen: set[str] | None = None
) -> tuple[str, ...]:
    seen = set() if seen is None else seen
    proto = files.get(path)
    if proto is None:
        return ()
    out: list[str] = []
    for idx in proto.public_dependency:
        if idx >= len(proto.dependency):
            raise DescriptorError(f"{path}: public_dependency index {idx} out of range")
        dep = proto.dependency[idx]
        if dep in seen:
            continue
        seen.add(dep)
        out.append(dep)
        out.extend(_public_closure(dep, files, seen))
    return tuple(out)


def _resolve_type(type_name: str, index: dict[str, TypeRef], *, where: str) -> TypeRef:
    if not type_name:
        raise DescriptorError(f"{where}: missing message type")
    ref = index.get(type_name.lstrip("."))
    if ref is None:
        raise DescriptorError(f"{where}: unknown message type {type_name}")
    return ref


def _build_service(
    proto: descriptor_pb2.FileDescriptorProto,
    service_index: int,
    index: dict[str, TypeRef],
    comments: dict[tuple[int, ...], str],
) -> ServiceDescriptor:
    service = proto.service[service_index]
    if not service.name:
        raise DescriptorError(f"{proto.name}: service #{service_index} has no name")

    methods: list[MethodDescriptor] = []
    seen: set[str] = set()
    for method_index, method in enumerate(service.method):
        where = f"{proto.name}: {service.name}.{method.name or f'#{method_index}'}"
        if not method.name:
            raise DescriptorError(f"{where}: method has no name")
        if method.name in seen:
            raise DescriptorError(f"{where}: duplicate method name")
        if method.client_streaming or method.server_streaming:
            raise DescriptorError(f"{where}: streaming methods are not supported")
        seen.add(method.name)
        methods.append(
            MethodDescriptor(
                name=method.name,
                input=_resolve_type(method.input_type, index, where=where),
                output=_resolve_type(method.output_type, index, where=where),
                comment=comments.get((_SERVICE_FIELD, service_index, _METHOD_FIELD, method_index), ""),
            )
        )

    return ServiceDescriptor(
        name=service.name,
        package=proto.package,
        methods=tuple(methods),
        comment=comments.get((_SERVICE_FIELD, service_index), ""),
    )


def intake(request: plugin_pb2.CodeGeneratorRequest) -> list[FileSkeleton]:
    files = {proto.name: proto for proto in request.proto_file}
    index = _index_types(request.proto_file)

    skeletons: list[FileSkeleton] = []
    for path in request.file_to_generate:
        proto = files.get(path)
        if proto is None:
            raise DescriptorError(f"{path}: listed for generation but missing from proto_file")
        if not proto.service:
            logger.debug("skipping %s: no services", path)
            continue

        comments = _leading_comments(proto)
        services = tuple(_build_service(proto, i, index, comments) for i in range(len(proto.service)))

        imports: list[ImportRecord] = []
        for dep in proto.dependency:
            dep_proto = files.get(dep)
            if dep_proto is None:
                raise DescriptorError(f"{path}: dependency {dep} missing from proto_file")
            imports.append(
                ImportRecord(path=dep, package=dep_proto.package, reexports=_public_closure(dep, files))
            )

        skeletons.append(
            FileSkeleton(
                path=path,
                proto_name=strip_proto_suffix(path.rsplit("/", 1)[-1]),
                package=proto.package,
                services=services,
                imports=tuple(imports),
            )
        )
        logger.debug("intake %s: %d service(s), %d import(s)", path, len(services), len(imports))

    return skeletons
