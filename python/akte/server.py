import json
import logging
import sys
from io import BytesIO
from pathlib import Path
from typing import Any, Dict, Optional

import structlog
from mcp.server.fastmcp import FastMCP

from akte.assembly.conditions import ConditionEvaluator
from akte.context import PlaceholderContext
from akte.models import ConditionConfig
from akte.pipeline import DocumentAssembler

# --- LOGGING CONFIGURATION ---
# MCP communicates over stdio.
# CRITICAL: All logs must go to stderr. Any print to stdout will break the JSON-RPC protocol.
logging.basicConfig(stream=sys.stderr, level=logging.INFO, force=True)

structlog.configure(
    processors=[
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer(),
    ],
    logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
)

mcp = FastMCP("Akte Document Assembly Service")


def _read_file_bytes(path: str) -> BytesIO:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"File not found: {path}")
    with open(p, "rb") as f:
        return BytesIO(f.read())


def _read_json_file(path: str) -> Any:
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def _save_stream(stream: BytesIO, path: str):
    with open(path, "wb") as f:
        f.write(stream.getvalue())


@mcp.tool()
def assemble_docx(
    template_path: str,
    context_path: str,
    conditions_path: Optional[str] = None,
    output_path: Optional[str] = None,
) -> str:
    """
    Assembles a DOCX template against a JSON data context.

    The template may contain:
    - Placeholders: [[Key]], {Key}, <<Key>> or [Key] (case-insensitive).
    - Conditional sections: [[IF:Field]] ... [[ENDIF:Field]], kept only when Field is non-empty.
    - Removal markers: a paragraph containing only '#' is removed; only '^' removes its whole article.
    - Numbering markers: [[ARTIKEL]], [[SUBARTIKEL]], [[ARTIKEL_NR]], [[SUBARTIKEL_NR]], [[ARTIKEL_RESET]].

    Args:
        template_path: Absolute path to the template DOCX.
        context_path: Path to a JSON object of values, or {"replacements": {...}, "values": {...}}.
        conditions_path: Optional path to a JSON object mapping placeholder names to condition configs.
        output_path: Optional. Defaults to <template>_assembled.docx next to the template.
    """
    try:
        context = PlaceholderContext.from_json(_read_json_file(context_path))
        conditionals: Optional[Dict[str, ConditionConfig]] = None
        if conditions_path:
            raw = _read_json_file(conditions_path)
            conditionals = {name: ConditionConfig.from_json(cfg) for name, cfg in raw.items()}

        assembler = DocumentAssembler(_read_file_bytes(template_path))
        report = assembler.assemble(context, conditionals)

        if not output_path:
            p = Path(template_path)
            output_path = str(p.parent / f"{p.stem}_assembled{p.suffix}")

        _save_stream(assembler.save_to_stream(), output_path)

        return (
            f"Assembled document saved to: {output_path}\n"
            f"Substituted blocks: {report.substituted_blocks}, "
            f"pruned sections: {report.pruned_sections}, "
            f"removed blocks: {report.removed_blocks}, "
            f"numbered blocks: {report.numbered_blocks}"
        )

    except Exception as e:
        return f"Error assembling document: {str(e)}"


@mcp.tool()
def evaluate_condition(config_json: str, context_json: str) -> str:
    """
    Evaluates a condition config against a context and returns the chosen text with its trace.

    Args:
        config_json: {"rules": [{"condition": ..., "result": "..."}], "default": "..."}.
                     A condition is {"operator": "AND"|"OR", "conditions": [...]}
                     or {"field": "...", "operator": "=", "value": ...}.
        context_json: JSON object of field values.
    """
    try:
        config = ConditionConfig.from_json(config_json)
        context = PlaceholderContext.from_json(context_json)
        evaluator = ConditionEvaluator()
        result = evaluator.evaluate(config, context)
        payload = result.model_dump(mode="json")
        payload["resolved"] = evaluator.resolve(config, context)
        return json.dumps(payload, indent=2)
    except Exception as e:
        return f"Error evaluating condition: {str(e)}"


def main():
    mcp.run()


if __name__ == "__main__":
    main()
