from __future__ import annotations

import posixpath
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from typing import Iterable

from .descriptors import ImportRecord, strip_proto_suffix
from .errors import ImportResolutionError
from .logging import get_logger

logger = get_logger("imports")

ALIAS_PREFIX = "_"


@dataclass(frozen=True)
class ResolvedImport:
    path: str
    alias: str
    source: str
    package: str
    reexports: tuple[str, ...] = ()


class AliasTable(Mapping[str, str]):
    """Relative import path -> alias token, in first-seen order.

    Tokens belong to namespaces: every file of one package shares the token
    assigned when that package was first seen, and a token never changes once
    assigned.
    """

    def __init__(self) -> None:
        self._entries: dict[str, ResolvedImport] = {}
        self._by_package: dict[str, str] = {}

    def __getitem__(self, path: str) -> str:
        return self._entries[path].alias

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def alias_for(self, package: str) -> str | None:
        return self._by_package.get(package)

    def assign(self, package: str) -> str:
        alias = self._by_package.get(package)
        if alias is None:
            alias = f"{ALIAS_PREFIX}{len(self._by_package) + 1}"
            self._by_package[package] = alias
        return alias

    def add(self, entry: ResolvedImport) -> None:
        if self._by_package.get(entry.package) != entry.alias:
            raise ValueError(f"alias {entry.alias} was not assigned to package {entry.package!r}")
        self._entries.setdefault(entry.path, entry)

    def entries(self) -> list[ResolvedImport]:
        return list(self._entries.values())

    def grouped(self) -> dict[str, list[ResolvedImport]]:
        """Alias token -> entries sharing it, both in first-seen order."""
        out: dict[str, list[ResolvedImport]] = {}
        for entry in self._entries.values():
            out.setdefault(entry.alias, []).append(entry)
        return out

    def entry_for_file(self, proto_path: str) -> ResolvedImport | None:
        for entry in self._entries.values():
            if entry.source == proto_path:
                return entry
        for entry in self._entries.values():
            if proto_path in entry.reexports:
                return entry
        return None


def _split(path: str) -> list[str]:
    return [part for part in path.split("/") if part and part != "."]


def _relative_dir(base: str, target: str, *, path: str) -> str:
    base = posixpath.normpath(base)
    target = posixpath.normpath(target)
    if posixpath.isabs(base) != posixpath.isabs(target):
        raise ImportResolutionError(path, f"can't make {target} relative to {base}")

    base_parts = _split(base)
    target_parts = _split(target)
    common = 0
    for left, right in zip(base_parts, target_parts):
        if left != right:
            break
        common += 1

    base_rest = base_parts[common:]
    if ".." in base_rest:
        raise ImportResolutionError(path, f"can't make {target} relative to {base}")

    parts = [".."] * len(base_rest) + target_parts[common:]
    return "/".join(parts) if parts else "."


def relative_import_path(source_file: str, imported_file: str) -> str:
    """Path of ``imported_file`` seen from the directory of ``source_file``, suffix dropped."""
    rel_dir = _relative_dir(
        posixpath.dirname(source_file) or ".",
        posixpath.dirname(imported_file) or ".",
        path=imported_file,
    )
    joined = posixpath.normpath(posixpath.join(rel_dir, posixpath.basename(imported_file)))
    return strip_proto_suffix(joined)


def resolve_imports(source_file: str, records: Iterable[ImportRecord]) -> AliasTable:
    table = AliasTable()
    for record in records:
        alias = table.assign(record.package)
        path = relative_import_path(source_file, record.path)
        table.add(
            ResolvedImport(
                path=path,
                alias=alias,
                source=record.path,
                package=record.package,
                reexports=record.reexports,
            )
        )
        logger.debug("%s: import %s as %s (package %r)", source_file, path, alias, record.package)
    return table
