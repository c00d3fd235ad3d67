import argparse
import asyncio
import logging
import sys
from pathlib import Path

from hotloop import HotloopError, DynamicCode, Environment, explore, load_config, watch
from hotloop.hotloop_console import Console


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="explore",
        description="Re-run a script against a persistent environment, or watch a dynamically compiled class.",
    )
    parser.add_argument("script", nargs="?", help="script file to run in the exploratory loop")
    parser.add_argument("--watch", metavar="RESOURCE", help="resource holding a class to recompile on change")
    parser.add_argument("--method", default="some_method", help="method to call on the watched instance")
    parser.add_argument("--class", dest="class_name", help="class to instantiate (default: first class in the source)")
    parser.add_argument("--interval", type=float, help="seconds between polls of the watched resource")
    parser.add_argument("--config", help="configuration file (yaml, toml or json)")
    return parser


def report_reload(console: Console):
    def hook(instance) -> None:
        cls = type(instance)
        console.print(f"Class of the loaded instance: {cls.__module__}.{cls.__qualname__}@{id(cls):x}")
    return hook


async def run_watch(args, config) -> None:
    console = Console(config)
    code = await DynamicCode.open(
        args.watch,
        class_name=args.class_name,
        on_reload=report_reload(console),
        config=config,
    )
    await watch(code, args.method, interval=args.interval, console=console)


def run_script(path: str, config) -> None:
    p = Path(path)
    if not p.is_file():
        print(f"Error: file not found: {path}", file=sys.stderr)
        raise SystemExit(1)
    explore(str(p.resolve()), Environment(), console=Console(config), config=config)


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    try:
        config = load_config(args.config)
    except HotloopError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2
    logging.basicConfig(level=config.log_level, format="%(levelname)s %(name)s: %(message)s")

    try:
        if args.watch:
            asyncio.run(run_watch(args, config))
        elif args.script:
            run_script(args.script, config)
        else:
            build_parser().print_usage(sys.stderr)
            return 2
    except HotloopError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\nExiting.")
