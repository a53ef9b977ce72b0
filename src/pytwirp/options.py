from __future__ import annotations

import os
from dataclasses import dataclass, fields

from .errors import OptionsError

LOG_LEVEL_ENV = "PYTWIRP_LOG_LEVEL"


@dataclass(frozen=True)
class GeneratorOptions:
    suffix: str = ".pbtwirp"
    runtime_module: str = "pytwirp.runtime"
    log_level: str = "WARNING"

    @classmethod
    def from_parameter(cls, parameter: str | None) -> GeneratorOptions:
        """Parse protoc's ``--pytwirp_opt`` string (``KEY=VALUE`` pairs, comma separated)."""
        values: dict[str, str] = {}
        env_level = os.environ.get(LOG_LEVEL_ENV)
        if env_level:
            values["log_level"] = env_level

        known = {f.name for f in fields(cls)}
        for raw in (parameter or "").split(","):
            stripped = raw.strip()
            if not stripped:
                continue
            if "=" not in stripped:
                raise OptionsError(f"Invalid plugin parameter (expected KEY=VALUE): {raw}")
            key, value = stripped.split("=", 1)
            key = key.strip()
            if key not in known:
                raise OptionsError(f"Unknown plugin parameter: {key}")
            values[key] = value.strip()

        options = cls(**values)
        options.validate()
        return options

    def validate(self) -> None:
        if "/" in self.suffix or "\\" in self.suffix:
            raise OptionsError(f"suffix must not contain path separators: {self.suffix!r}")
        parts = self.runtime_module.split(".")
        if not all(part.isidentifier() for part in parts):
            raise OptionsError(f"runtime_module is not a dotted module path: {self.runtime_module!r}")
