from __future__ import annotations

__all__ = [
    "__version__",
    "GENERATOR_NAME",
    "errors",
    "runtime",
]

__version__ = "0.1.0"
GENERATOR_NAME = "protoc-gen-pytwirp"

from . import errors, runtime  # noqa: E402
from .errors import GeneratorError  # noqa: E402

__all__.append("GeneratorError")
