import argparse
import json
import logging
import sys
from io import BytesIO
from pathlib import Path
from typing import Any, Dict

import structlog
from docx import Document

from akte import __version__
from akte.assembly.conditions import ConditionEvaluator
from akte.context import PlaceholderContext
from akte.models import AssemblyOptions, ConditionConfig
from akte.pipeline import AssemblyError, DocumentAssembler
from akte.utils.docx import get_block_text, snapshot_blocks


def _configure_logging(verbose: int):
    level = logging.WARNING
    if verbose == 1:
        level = logging.INFO
    elif verbose > 1:
        level = logging.DEBUG

    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="%H:%M:%S"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
    )


def _read_bytes(path: Path) -> BytesIO:
    if not path.exists():
        print(f"Error: File not found: {path}", file=sys.stderr)
        sys.exit(1)
    with open(path, "rb") as f:
        return BytesIO(f.read())


def _read_json(path: Path) -> Any:
    if not path.exists():
        print(f"Error: File not found: {path}", file=sys.stderr)
        sys.exit(1)
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except json.JSONDecodeError as e:
        print(f"Error parsing JSON in {path}: {e}", file=sys.stderr)
        sys.exit(1)


def _load_context(path: Path) -> PlaceholderContext:
    try:
        return PlaceholderContext.from_json(_read_json(path))
    except ValueError as e:
        print(f"Error: Invalid context: {e}", file=sys.stderr)
        sys.exit(1)


def _load_conditionals(path: Path) -> Dict[str, ConditionConfig]:
    data = _read_json(path)
    if not isinstance(data, dict):
        print("Error: Conditions file must map placeholder names to condition configs.", file=sys.stderr)
        sys.exit(1)
    try:
        return {name: ConditionConfig.from_json(config) for name, config in data.items()}
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


def handle_assemble(args):
    context = _load_context(args.context)
    conditionals = _load_conditionals(args.conditions) if args.conditions else None

    options = AssemblyOptions(
        normalize=not args.no_normalize,
        remove_content_controls=not args.keep_content_controls,
        max_nesting_depth=args.max_depth,
    )

    try:
        assembler = DocumentAssembler(_read_bytes(args.template), options)
        report = assembler.assemble(context, conditionals, correlation_id=args.correlation_id)
        output = assembler.save_to_stream()
    except AssemblyError as e:
        print(f"❌ {e}", file=sys.stderr)
        sys.exit(1)

    output_path = args.output or args.template.with_name(f"{args.template.stem}_assembled.docx")
    with open(output_path, "wb") as f:
        f.write(output.getvalue())

    print(f"✅ Saved to {output_path}", file=sys.stderr)
    print(
        f"Stats: {report.substituted_blocks} blocks substituted, "
        f"{report.pruned_sections} sections pruned, "
        f"{report.removed_blocks} blocks removed, "
        f"{report.numbered_blocks} blocks numbered.",
        file=sys.stderr,
    )
    if args.report:
        print(report.model_dump_json(indent=2))


def handle_evaluate(args):
    try:
        config = ConditionConfig.from_json(_read_json(args.config))
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    context = _load_context(args.context)

    evaluator = ConditionEvaluator(max_depth=args.max_depth)
    result = evaluator.evaluate(config, context)
    resolved = evaluator.resolve(config, context)

    if args.json:
        payload = result.model_dump(mode="json")
        payload["resolved"] = resolved
        print(json.dumps(payload, indent=2))
        return

    if result.matched_rule_index is None:
        print("No rule matched; using default.", file=sys.stderr)
    else:
        print(f"Rule {result.matched_rule_index} matched.", file=sys.stderr)
    print(resolved)


def handle_text(args):
    doc = Document(_read_bytes(args.input))
    for block in snapshot_blocks(doc):
        text = get_block_text(block.paragraph)
        if args.region and block.region != args.region:
            continue
        print(f"[{block.region}] {text}" if args.show_region else text)


def main():
    parser = argparse.ArgumentParser(prog="akte", description="Akte: DOCX template assembly for legal documents")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-v", "--verbose", action="count", default=0, help="Log progress (-vv for debug)")
    subparsers = parser.add_subparsers(dest="command", required=True, help="Subcommands")

    p_assemble = subparsers.add_parser("assemble", help="Assemble a DOCX template against a JSON context")
    p_assemble.add_argument("template", type=Path, help="Template DOCX")
    p_assemble.add_argument("context", type=Path, help="JSON context (flat values or replacements/values)")
    p_assemble.add_argument("-c", "--conditions", type=Path, help="JSON map of placeholder name -> condition config")
    p_assemble.add_argument("-o", "--output", type=Path, help="Output DOCX path (default: <template>_assembled.docx)")
    p_assemble.add_argument("--correlation-id", type=str, default=None, help="Id attached to every log line")
    p_assemble.add_argument("--max-depth", type=int, default=5, help="Nested placeholder passes (default: 5)")
    p_assemble.add_argument("--no-normalize", action="store_true", help="Do not merge split runs before matching")
    p_assemble.add_argument(
        "--keep-content-controls",
        action="store_true",
        help="Leave content controls in the output",
    )
    p_assemble.add_argument("--report", action="store_true", help="Print the assembly report as JSON")
    p_assemble.set_defaults(func=handle_assemble)

    p_evaluate = subparsers.add_parser("evaluate", help="Evaluate a condition config against a JSON context")
    p_evaluate.add_argument("config", type=Path, help="Condition config JSON")
    p_evaluate.add_argument("context", type=Path, help="JSON context")
    p_evaluate.add_argument("--max-depth", type=int, default=5, help="Nested placeholder passes (default: 5)")
    p_evaluate.add_argument("--json", action="store_true", help="Output the evaluation trace as JSON")
    p_evaluate.set_defaults(func=handle_evaluate)

    p_text = subparsers.add_parser("text", help="Print the block text of a DOCX")
    p_text.add_argument("input", type=Path, help="Input DOCX")
    p_text.add_argument("--region", choices=["body", "header", "footer"], help="Only print one region")
    p_text.add_argument("--show-region", action="store_true", help="Prefix each block with its region")
    p_text.set_defaults(func=handle_text)

    args = parser.parse_args()
    _configure_logging(args.verbose)
    args.func(args)


if __name__ == "__main__":
    main()
