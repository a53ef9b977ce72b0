from __future__ import annotations

import argparse
import sys
from typing import BinaryIO

from google.protobuf.compiler import plugin_pb2
from google.protobuf.message import DecodeError

from . import GENERATOR_NAME, __version__
from .descriptors import intake
from .emitter import build_unit, render_unit
from .errors import DescriptorError, GeneratorError
from .imports import resolve_imports
from .logging import configure_logging, get_logger
from .options import GeneratorOptions

logger = get_logger("plugin")

SUPPORTED_FEATURES = plugin_pb2.CodeGeneratorResponse.FEATURE_PROTO3_OPTIONAL


def _error_response(exc: GeneratorError) -> plugin_pb2.CodeGeneratorResponse:
    logger.error("%s", exc)
    response = plugin_pb2.CodeGeneratorResponse()
    response.supported_features = SUPPORTED_FEATURES
    response.error = str(exc)
    return response


def generate(
    request: plugin_pb2.CodeGeneratorRequest, options: GeneratorOptions | None = None
) -> plugin_pb2.CodeGeneratorResponse:
    """Run intake, import resolution and emission for every file, or fail the whole run."""
    try:
        if options is None:
            options = GeneratorOptions.from_parameter(request.parameter)
        rendered: list[tuple[str, str]] = []
        for skeleton in intake(request):
            aliases = resolve_imports(skeleton.path, skeleton.imports)
            unit = build_unit(skeleton, aliases, options)
            rendered.append((unit.file_name, render_unit(unit, options)))
    except GeneratorError as exc:
        return _error_response(exc)

    response = plugin_pb2.CodeGeneratorResponse()
    response.supported_features = SUPPORTED_FEATURES
    for name, content in rendered:
        generated = response.file.add()
        generated.name = name
        generated.content = content
        logger.info("generated %s", name)
    return response


def run(stdin: BinaryIO, stdout: BinaryIO) -> int:
    request = plugin_pb2.CodeGeneratorRequest()
    try:
        request.ParseFromString(stdin.read())
    except DecodeError as exc:
        response = _error_response(DescriptorError(f"invalid CodeGeneratorRequest: {exc}"))
    else:
        try:
            options = GeneratorOptions.from_parameter(request.parameter)
        except GeneratorError as exc:
            response = _error_response(exc)
        else:
            configure_logging(level=options.log_level)
            response = generate(request, options)

    stdout.write(response.SerializeToString())
    stdout.flush()
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog=GENERATOR_NAME,
        description="protoc plugin: reads a CodeGeneratorRequest on stdin, writes the response on stdout",
    )
    parser.add_argument("--version", action="version", version=f"{GENERATOR_NAME} {__version__}")
    parser.parse_args(argv)

    configure_logging()
    return run(sys.stdin.buffer, sys.stdout.buffer)


if __name__ == "__main__":
    raise SystemExit(main())
