"""logdeck: load log files into the entry engine, filter, mark and print the view."""

import json
import logging
import sys
from argparse import ArgumentParser
from itertools import islice

from logdeck.config import load_config
from logdeck.engine import LogEngine
from logdeck.formatter import get_formatter
from logdeck.reader import expand_paths, read_multiple

logger = logging.getLogger("logdeck")


def build_parser() -> ArgumentParser:
    """Build the CLI argument parser."""
    parser = ArgumentParser(
        prog="logdeck",
        description="Merge, deduplicate, filter and mark structured log files.",
    )
    parser.add_argument("files", nargs="+", help="Log file path(s) or glob pattern(s)")
    parser.add_argument("--config", default=None, help="Path to YAML config file")
    parser.add_argument("--level", help="Exact log level (case-insensitive)")
    parser.add_argument("--logger", help="Logger name substring")
    parser.add_argument("--thread", help="Thread name substring")
    parser.add_argument(
        "--message",
        help="Message expression: & (and), | (or), ! (not), parentheses",
    )
    parser.add_argument(
        "--dc",
        action="append",
        default=[],
        metavar="KEY[=VALUE]",
        help="Diagnostic-context constraint; repeat for more (KEY alone means present)",
    )
    parser.add_argument("--only-marked", action="store_true", help="Show marked entries only")
    parser.add_argument("--search", help="Highlight entries whose message matches this expression")
    parser.add_argument(
        "--mark",
        metavar="COLOR",
        help="Mark every entry matching --search with COLOR (persisted)",
    )
    parser.add_argument("--lines", type=int, help="Limit output to N entries")
    parser.add_argument("--output", choices=["text", "json"], default="text", help="Output format")
    parser.add_argument("--color", action="store_true", help="Colorize output by log level (ANSI)")
    parser.add_argument("--stats", action="store_true", help="Print ingest and filter statistics")
    return parser


def _parse_dc(spec: str) -> tuple[str, str]:
    key, _, value = spec.partition("=")
    return key.strip(), value.strip()


def run_pipeline(args, engine: LogEngine | None = None) -> LogEngine:
    """Ingest the files, apply the requested filters and print the filtered view."""
    if args.mark and not args.search:
        print("Error: --mark requires --search", file=sys.stderr)
        sys.exit(1)

    if engine is None:
        engine = LogEngine(load_config(args.config))
    engine.load_settings()

    for path, entries in read_multiple(expand_paths(args.files)):
        accepted = engine.append(entries)
        logger.info("Ingested %d of %d entries from %s", len(accepted), len(entries), path)

    engine.set_standard_filter(
        level=args.level or "",
        logger=args.logger or "",
        thread=args.thread or "",
        message=args.message or "",
    )
    for spec in args.dc:
        key, value = _parse_dc(spec)
        if value:
            engine.add_dc_values(key, [value])
        else:
            engine.add_dc_key(key)
    if args.only_marked:
        engine.set_only_marked(True)

    if args.search:
        engine.set_search_text(args.search)
        if args.mark:
            visible = engine.filtered_indices
            for vi in engine.search_match_positions():
                engine.selection.toggle(visible[vi], visible, additive=True)
            engine.apply_mark(args.mark)
            engine.selection.reset()

    if args.stats:
        print(json.dumps({
            "ingest": engine.store.stats.snapshot(),
            "filter": vars(engine.last_stats),
            "mdc_keys": engine.mdc_index.keys(),
        }, indent=2))
        return engine

    formatter = get_formatter(output_format=args.output, color=args.color)
    rows = engine.visible_entries()
    if args.lines:
        rows = islice(rows, args.lines)
    for entry in rows:
        print(formatter(entry))
    return engine


def main():
    parser = build_parser()
    args = parser.parse_args()
    config = load_config(args.config)
    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )
    try:
        run_pipeline(args, LogEngine(config))
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        sys.exit(0)
    except BrokenPipeError:
        sys.exit(0)
