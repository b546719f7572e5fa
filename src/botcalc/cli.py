"""Command line interface.

Usage:
    botcalc eval bots.yaml
    botcalc eval bots.yaml --config runtime.yaml --tag total
    botcalc validate-tag 'onClick(#name:"bob")' name
"""

import argparse
import json
import logging
import sys
from pathlib import Path

import yaml

from .bot import create_bot
from .config import ConfigError, load_config
from .filters import validate_tag
from .runtime import BotRuntime


def load_bots(path: Path) -> list:
    """Load bots from a YAML/JSON mapping of ``id -> {tags, space}``."""
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"expected a mapping of bot ids in {path}")

    bots = []
    for bot_id, entry in data.items():
        entry = entry or {}
        bots.append(
            create_bot(str(bot_id), tags=entry.get("tags") or {}, space=entry.get("space"))
        )
    return bots


def cmd_eval(args: argparse.Namespace) -> int:
    try:
        config = load_config(args.config)
        bots = load_bots(args.state)
    except (ConfigError, ValueError, OSError, yaml.YAMLError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 2

    runtime = BotRuntime(config=config)
    runtime.apply_added(bots)
    state = runtime.get_all_precalculated_state()

    if args.tag:
        output = {bot_id: bot["values"].get(args.tag) for bot_id, bot in state.items()}
    else:
        output = {bot_id: bot["values"] for bot_id, bot in state.items()}
    print(json.dumps(output, indent=2, default=str))
    return 0


def cmd_validate_tag(args: argparse.Namespace) -> int:
    invalid = 0
    for tag in args.tags:
        result = validate_tag(tag)
        if result.valid:
            print(f"  OK    {tag}")
        elif result.required:
            invalid += 1
            print(f"  FAIL  {tag!r}: tag is required")
        else:
            invalid += 1
            print(f"  FAIL  {tag}: invalid character {result.invalid_char!r}")
    return 1 if invalid else 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Evaluate bot formulas and check tags")
    parser.add_argument("--verbose", "-v", action="store_true")
    subparsers = parser.add_subparsers(dest="command", required=True)

    eval_parser = subparsers.add_parser("eval", help="Precalculate every tag of a bot set")
    eval_parser.add_argument("state", type=Path, help="YAML/JSON file of bots")
    eval_parser.add_argument("--config", type=Path, default=None, help="Runtime config YAML")
    eval_parser.add_argument("--tag", default=None, help="Only print this tag's values")
    eval_parser.set_defaults(func=cmd_eval)

    validate_parser = subparsers.add_parser("validate-tag", help="Check tag names")
    validate_parser.add_argument("tags", nargs="+")
    validate_parser.set_defaults(func=cmd_validate_tag)

    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
