from __future__ import annotations

from types import ModuleType, SimpleNamespace


def merge_modules(*modules: ModuleType) -> SimpleNamespace:
    """One namespace over several ``_pb2`` modules that share an import alias.

    Public names are taken first-come; later modules never shadow earlier ones.
    """
    attrs: dict[str, object] = {}
    for module in modules:
        for name, value in vars(module).items():
            if not name.startswith("_"):
                attrs.setdefault(name, value)
    return SimpleNamespace(**attrs)
