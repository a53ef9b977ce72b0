from __future__ import annotations


class GeneratorError(Exception):
    """Fatal generator failure. Aborts the whole plugin run."""


class DescriptorError(GeneratorError):
    pass


class OptionsError(GeneratorError):
    pass


class RenderError(GeneratorError):
    pass


class ImportResolutionError(GeneratorError):
    def __init__(self, path: str, reason: str) -> None:
        self.path = path
        self.reason = reason

        super().__init__(str(self))

    def __str__(self) -> str:
        return f"error generating relative import path for {self.path}: {self.reason}"
