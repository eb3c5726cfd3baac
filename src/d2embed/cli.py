"""Command-line interface for embedding D2 diagrams into XHTML/HTML documents."""
from __future__ import annotations

import argparse
import json
import logging
import os
import sys
import traceback
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional

from .engine import D2CliEngine
from .errors import (
    ConfigurationError,
    D2EmbedError,
    ImportValidationError,
    MissingConfigurationError,
    RenderError,
    StructuralError,
    ValidationError,
)
from .output import ENCODERS, STRATEGIES
from .pipeline import D2Embedder, EmbedConfig

DEBUG_ENV = "D2EMBED_DEBUG"


@dataclass
class CliError(Exception):
    code: str
    message: str
    hint: Optional[str] = None
    exit_code: int = 1
    file: Optional[str] = None
    retryable: bool = True


class UsageError(Exception):
    pass


class FriendlyArgumentParser(argparse.ArgumentParser):
    def error(self, message: str) -> None:  # pragma: no cover - argparse callback
        raise UsageError(message)


def _build_parser() -> argparse.ArgumentParser:
    parser = FriendlyArgumentParser(
        prog="d2embed",
        description="Render D2 code blocks inside XHTML/HTML documents.",
    )
    parser.add_argument("--error-format", choices=["text", "json"], default="text")
    parser.add_argument("--debug", action="store_true")

    subparsers = parser.add_subparsers(dest="command")

    render_parser = subparsers.add_parser("render", help="Replace D2 blocks with rendered diagrams")
    render_parser.add_argument("input", nargs="?", help="Input document (well-formed XHTML/HTML)")
    render_parser.add_argument("--text", help="Raw document source")
    render_parser.add_argument("--stdout", action="store_true", help="Write the document to stdout")
    render_parser.add_argument("-o", "--output", help="Output document path")
    render_parser.add_argument("--config", help="JSON configuration file")
    render_parser.add_argument("--strategy", choices=list(STRATEGIES))
    render_parser.add_argument("--raster-encoder", choices=list(ENCODERS))
    render_parser.add_argument("--import-dir", help="Directory of importable .d2 files")
    render_parser.add_argument("--themes", help="Comma-separated default themes")
    render_parser.add_argument("--d2-path", help="Path to the d2 executable")
    render_parser.add_argument("--timeout", type=float, help="Per-diagram d2 timeout in seconds")
    render_parser.add_argument("--method", choices=["xml", "html"], default="xml", help="Serialization method")

    return parser


def _read_input(path: Optional[str], text: Optional[str]) -> tuple[str, Optional[Path]]:
    if path and text is not None:
        raise CliError(
            "E_ARGS",
            "--text cannot be combined with file input",
            hint="Use either FILE or --text.",
            exit_code=2,
        )

    if text is not None:
        return text, None

    if path:
        input_path = Path(path)
        if not input_path.exists():
            raise CliError("E_IO_READ", f"input file not found: {input_path}", exit_code=2, file=str(input_path))
        try:
            return input_path.read_text(encoding="utf-8"), input_path
        except OSError as exc:
            raise CliError(
                "E_IO_READ",
                f"failed to read input file: {input_path}",
                hint=str(exc),
                exit_code=2,
                file=str(input_path),
            )

    if sys.stdin.isatty():
        raise CliError(
            "E_ARGS",
            "no input provided",
            hint="Pass FILE, --text, or pipe a document into stdin.",
            exit_code=2,
        )

    data = sys.stdin.read()
    if not data.strip():
        raise CliError("E_ARGS", "stdin was empty", hint="Pipe an XHTML/HTML document into stdin.", exit_code=2)
    return data, None


def _load_config(args: argparse.Namespace) -> EmbedConfig:
    config = EmbedConfig()
    if args.config:
        config_path = Path(args.config)
        try:
            data = json.loads(config_path.read_text(encoding="utf-8"))
        except OSError as exc:
            raise CliError(
                "E_CONFIG",
                f"failed to read config file: {config_path}",
                hint=str(exc),
                exit_code=3,
                file=str(config_path),
            )
        except json.JSONDecodeError as exc:
            raise CliError(
                "E_CONFIG",
                f"config file is not valid JSON: {exc}",
                exit_code=3,
                file=str(config_path),
            )
        if not isinstance(data, dict):
            raise CliError("E_CONFIG", "config file must hold a JSON object", exit_code=3, file=str(config_path))
        config = EmbedConfig.from_mapping(data)

    if args.strategy:
        config.strategy = args.strategy
    if args.raster_encoder:
        config.raster_encoder = args.raster_encoder
    if args.import_dir:
        config.import_dir = args.import_dir
    if args.themes is not None:
        config.default_themes = [theme.strip() for theme in args.themes.split(",") if theme.strip()]
    return config


def _error_from_exception(exc: Exception) -> CliError:
    if isinstance(exc, CliError):
        return exc
    if isinstance(exc, ET.ParseError):
        line, column = getattr(exc, "position", (None, None))
        location = f" at line {line}, column {column}" if line is not None else ""
        return CliError(
            "E_PARSE_XML",
            f"failed to parse document{location}: {exc}",
            hint="Input must be well-formed XHTML; escape &, <, > in text.",
            exit_code=2,
        )
    if isinstance(exc, ImportValidationError):
        return CliError(exc.code, str(exc), hint="Check global_imports against --import-dir.", exit_code=3)
    if isinstance(exc, ConfigurationError):
        return CliError(exc.code, str(exc), hint="Check --config and command-line options.", exit_code=3)
    if isinstance(exc, MissingConfigurationError):
        return CliError(exc.code, str(exc), hint="Pass --import-dir pointing at your .d2 imports.", exit_code=3)
    if isinstance(exc, StructuralError):
        return CliError(exc.code, str(exc), hint="Each D2 block must contain only diagram text.", exit_code=2)
    if isinstance(exc, ValidationError):
        return CliError(exc.code, str(exc), hint="Check block attributes and theme configuration.", exit_code=3)
    if isinstance(exc, RenderError):
        return CliError(exc.code, str(exc), hint="Check the diagram source with d2 directly.", exit_code=4)
    if isinstance(exc, D2EmbedError):
        return CliError(exc.code, str(exc), exit_code=1)
    return CliError(
        "E_INTERNAL",
        str(exc) or exc.__class__.__name__,
        hint="Re-run with --debug to see traceback.",
        exit_code=1,
        retryable=False,
    )


def _emit_error(err: CliError, *, error_format: str) -> None:
    if error_format == "json":
        payload = {
            "ok": False,
            "code": err.code,
            "message": err.message,
            "file": err.file,
            "hint": err.hint,
            "retryable": err.retryable,
        }
        sys.stderr.write(json.dumps(payload) + "\n")
        return

    sys.stderr.write(f"error[{err.code}]: {err.message}\n")
    if err.hint:
        sys.stderr.write(f"hint: {err.hint}\n")


def _handle_render(args: argparse.Namespace) -> int:
    if args.stdout and args.output:
        raise CliError(
            "E_ARGS",
            "--stdout and --output are mutually exclusive",
            hint="Choose either --stdout or --output.",
            exit_code=2,
        )

    source, source_path = _read_input(args.input, args.text)
    config = _load_config(args)
    embedder = D2Embedder(config, engine=D2CliEngine(args.d2_path, timeout=args.timeout))
    root = ET.fromstring(source)
    embedder.run(root)
    document = ET.tostring(root, encoding="unicode", method=args.method)

    if args.stdout or source_path is None:
        sys.stdout.write(document)
        if not document.endswith("\n"):
            sys.stdout.write("\n")
        return 0

    output_path = Path(args.output) if args.output else source_path.with_name(
        f"{source_path.stem}.rendered{source_path.suffix}"
    )
    try:
        output_path.write_text(document, encoding="utf-8")
    except OSError as exc:
        raise CliError(
            "E_IO_WRITE",
            f"failed to write output file: {output_path}",
            hint=str(exc),
            exit_code=4,
            file=str(output_path),
        )
    print(f"Wrote {output_path}")
    return 0


def main(argv: Optional[Iterable[str]] = None) -> int:
    raw_argv = list(argv) if argv is not None else sys.argv[1:]
    parser = _build_parser()

    if not raw_argv:
        err = CliError("E_ARGS", "missing subcommand", hint="Use: d2embed render FILE.", exit_code=2)
        _emit_error(err, error_format="text")
        return err.exit_code

    debug_enabled = "--debug" in raw_argv or os.getenv(DEBUG_ENV) == "1"
    logging.basicConfig(
        level=logging.DEBUG if debug_enabled else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    error_format = "text"
    if "--error-format" in raw_argv:
        idx = raw_argv.index("--error-format")
        if idx + 1 < len(raw_argv):
            error_format = raw_argv[idx + 1]

    try:
        args = parser.parse_args(raw_argv)
        error_format = args.error_format

        if args.command == "render":
            return _handle_render(args)

        raise CliError("E_ARGS", "missing subcommand", hint="Use: d2embed render FILE.", exit_code=2)
    except UsageError as exc:
        err = CliError("E_ARGS", str(exc), hint="Use: d2embed render FILE.", exit_code=2)
        _emit_error(err, error_format=error_format)
        return err.exit_code
    except Exception as exc:  # pragma: no cover - exercised in acceptance tests
        err = _error_from_exception(exc)
        _emit_error(err, error_format=error_format)
        if debug_enabled:
            traceback.print_exc(file=sys.stderr)
        return err.exit_code


if __name__ == "__main__":
    raise SystemExit(main())
