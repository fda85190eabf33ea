"""
Sheet Phrase CLI.

Commands:
  eval           Compute a phrase against a property file
  compute-props  Resolve a document of computed properties
  roll           Roll a dice expression
"""

import argparse
import json
import logging
import random
import sys
from pathlib import Path

import yaml

from sheetphrase.cli.prompts import ConsoleDialog
from sheetphrase.config import load_config, load_yaml_file
from sheetphrase.core.context import ComputeOptions, EngineContext, NullDialog
from sheetphrase.core.convergence import compute_properties
from sheetphrase.core.errors import ConfigError, EvaluationError, UncomputableError
from sheetphrase.core.functions import coerce_number
from sheetphrase.core.phrase import ComputablePhrase
from sheetphrase.dice.roller import DiceRoller
from sheetphrase.dice.tables import load_roll_tables
from sheetphrase.entities import EntityRegistry
from sheetphrase.templates import load_templates


def _load_document(path: str) -> dict:
    """Load a YAML or JSON document (JSON is valid YAML)."""
    file_path = Path(path)
    if not file_path.exists():
        raise ConfigError(f"File not found: {path}")
    return load_yaml_file(file_path)


def _build_context(args, interactive: bool = True) -> EngineContext:
    config = load_config(args.config)

    tables = load_roll_tables(args.tables) if getattr(args, "tables", None) else {}
    templates = load_templates(args.templates) if getattr(args, "templates", None) else None
    entities = (
        EntityRegistry.from_dict(_load_document(args.entities))
        if getattr(args, "entities", None) else EntityRegistry()
    )

    context = EngineContext(
        config=config,
        entities=entities,
        dialog=ConsoleDialog() if interactive else NullDialog(),
        roller=DiceRoller.from_config(config.dice, tables=tables),
    )
    if templates is not None:
        context.templates = templates
    return context


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False, default=str))


def eval_cmd(args):
    """Compute a phrase and print its result."""
    context = _build_context(args, interactive=not args.no_input)
    props = _load_document(args.props) if args.props else {}

    trigger_entity = None
    if args.entity:
        trigger_entity = context.entities.get(args.entity)
        if trigger_entity is None:
            print(f"Entity not found: {args.entity}", file=sys.stderr)
            sys.exit(1)
        if not args.props:
            props = trigger_entity.props

    options = ComputeOptions(
        reference=args.reference,
        default_value=coerce_number(args.default) if args.default is not None else None,
        compute_explanation=args.explain,
        trigger_entity=trigger_entity,
    )

    phrase = ComputablePhrase(args.phrase)
    try:
        if args.static:
            phrase.compute_static(props, options, context)
        else:
            phrase.compute(props, options, context)
    except UncomputableError as e:
        print(f"Uncomputable: {e}", file=sys.stderr)
        sys.exit(2)

    if args.json:
        _print_json(phrase.to_dict())
        return

    print(phrase.result)
    if args.explain:
        for formula in phrase.values.values():
            if formula.tokens:
                _print_json(formula.tokens)
            for roll in formula.rolls:
                print(f"  rolled {roll['formula']} = {roll['roll']['total']}")


def compute_props_cmd(args):
    """Resolve computed properties until nothing more can be computed."""
    context = _build_context(args, interactive=False)
    document = _load_document(args.file)

    result = compute_properties(
        document.get("computed", {}),
        document.get("props", {}),
        ComputeOptions(),
        context
    )

    if args.json:
        _print_json(result.to_dict())
    else:
        print(yaml.safe_dump(result.props, sort_keys=False, allow_unicode=True).rstrip())
        print(f"\n{len(result.computed)} values computed in {result.passes} passes")
        for key, phrase in result.uncomputed.items():
            print(f"  not computed: {key} = {phrase}")

    sys.exit(0 if result.converged else 1)


def roll_cmd(args):
    """Roll a dice expression."""
    config = load_config(args.config)
    roller = DiceRoller(
        rng=random.Random(args.seed if args.seed is not None else config.dice.seed),
        max_dice=config.dice.max_dice
    )

    try:
        result = roller.roll(args.expression)
    except EvaluationError as e:
        print(f"Invalid roll: {e}", file=sys.stderr)
        sys.exit(1)

    if args.json:
        _print_json(result.to_dict())
        return

    details = " ".join(f"{t.expression}={t.raw_values}" for t in result.terms)
    print(f"{result.formula} = {result.total}" + (f"  ({details})" if details else ""))


def build_parser():
    parser = argparse.ArgumentParser(
        description="Sheet Phrase CLI - compute character-sheet phrases"
    )
    parser.add_argument(
        "--config",
        help="Config file (default: $SHEETPHRASE_CONFIG or ~/.config/sheetphrase/config.yaml)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Log debug output",
    )

    sub = parser.add_subparsers(dest="command")

    # eval
    eval_parser = sub.add_parser("eval", help="Compute a phrase")
    eval_parser.add_argument("phrase", help="Phrase text, e.g. 'You gain ${2+3}$ points'")
    eval_parser.add_argument("--props", help="YAML/JSON property file")
    eval_parser.add_argument("--entities", help="YAML/JSON entity registry file")
    eval_parser.add_argument("--entity", help="Name of the entity the phrase belongs to")
    eval_parser.add_argument("--tables", help="YAML roll table file")
    eval_parser.add_argument("--templates", help="YAML prompt template file")
    eval_parser.add_argument("--reference", help="Dynamic table row reference, e.g. weapons.0")
    eval_parser.add_argument("--default", help="Default value for missing references")
    eval_parser.add_argument(
        "--static",
        action="store_true",
        help="Do not prompt or roll",
    )
    eval_parser.add_argument(
        "--explain",
        action="store_true",
        help="Show explanation trees and rolls",
    )
    eval_parser.add_argument(
        "--no-input",
        action="store_true",
        help="Dismiss prompts instead of asking",
    )
    eval_parser.add_argument("--json", action="store_true", help="Print the phrase record as JSON")
    eval_parser.set_defaults(func=eval_cmd)

    # compute-props
    props_parser = sub.add_parser(
        "compute-props",
        help="Resolve a {props, computed} document"
    )
    props_parser.add_argument("file", help="YAML/JSON document with props and computed keys")
    props_parser.add_argument("--entities", help="YAML/JSON entity registry file")
    props_parser.add_argument("--json", action="store_true", help="Print the result as JSON")
    props_parser.set_defaults(func=compute_props_cmd)

    # roll
    roll_parser = sub.add_parser("roll", help="Roll a dice expression")
    roll_parser.add_argument("expression", help="Dice expression, e.g. 2d6+3")
    roll_parser.add_argument("--seed", type=int, help="Random seed")
    roll_parser.add_argument("--json", action="store_true", help="Print the roll as JSON")
    roll_parser.set_defaults(func=roll_cmd)

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return

    try:
        level = "DEBUG" if args.verbose else load_config(args.config).log_level
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")

    try:
        args.func(args)
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
