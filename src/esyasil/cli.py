from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional, Sequence

from . import codec, schema_generator
from .client import ProcessingClient
from .config import MAX_BATCH_SIZE
from .errors import EsyasilError
from .logging.formatter import setup_logging
from .models.outcome import ImageOutcome


logger = logging.getLogger(__name__)


def output_path(source: Path, data: bytes, out_dir: Optional[Path]) -> Path:
    suffix = codec.extension_for(codec.sniff_mime_type(data))
    target_dir = out_dir or source.parent
    return target_dir / f"{source.stem}.empty{suffix}"


def write_results(
    sources: Sequence[Path], outcomes: Sequence[ImageOutcome], out_dir: Optional[Path]
) -> List[str]:
    """Write successful results next to their inputs; return status lines."""
    lines: List[str] = []
    for outcome in outcomes:
        source = sources[outcome.index]
        if not outcome.ok or outcome.data is None:
            lines.append(f"{source}: error ({outcome.error})")
            continue
        data = codec.decode(outcome.data)
        target = output_path(source, data, out_dir)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
        lines.append(f"{source}: ok -> {target}")
    return lines


def _cmd_process(args: argparse.Namespace) -> int:
    sources = [Path(p) for p in args.images]
    if len(sources) > MAX_BATCH_SIZE:
        print(f"at most {MAX_BATCH_SIZE} images per batch", file=sys.stderr)
        return 2
    with ProcessingClient(args.api_url, args.token, timeout=args.timeout) as client:
        outcomes = client.process_files(sources)
    for line in write_results(sources, outcomes, args.out_dir):
        print(line)
    return 0 if all(o.ok for o in outcomes) else 1


def _cmd_schema(args: argparse.Namespace) -> int:
    print(schema_generator.render(args.backend, dialect=args.dialect))
    return 0


def _cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run(
        "esyasil.api.app:create_app",
        factory=True,
        host=args.host,
        port=args.port,
    )
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="esyasil", description="EşyaSil AI tools")
    parser.add_argument("-v", "--verbose", action="store_true")
    sub = parser.add_subparsers(dest="command", required=True)

    process = sub.add_parser("process", help="Remove furniture from local images")
    process.add_argument("images", nargs="+", help="Image files (1-5)")
    process.add_argument("--api-url", required=True)
    process.add_argument("--token", required=True, help="Identity token")
    process.add_argument("--out-dir", type=Path, default=None)
    process.add_argument("--timeout", type=float, default=180.0)
    process.set_defaults(func=_cmd_process)

    schema = sub.add_parser("schema", help="Print DB schemas")
    schema_generator.add_arguments(schema)
    schema.set_defaults(func=_cmd_schema)

    serve = sub.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)
    serve.set_defaults(func=_cmd_serve)
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(logging.DEBUG if args.verbose else logging.WARNING, json_output=False)
    try:
        return args.func(args)
    except EsyasilError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
