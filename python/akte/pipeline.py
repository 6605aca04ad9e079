"""
Document assembly pipeline.

Loads a template once, runs every stage against the same in-memory tree in a
fixed order and serializes the result:

1. scalar placeholder substitution
2. conditional placeholders, then a second substitution pass for their keys
3. [[IF:Field]] section pruning
4. content generator dispatch
5. '^' / '#' article and block removal with renumbering
6. legal numbering markers
7. content control unwrapping
"""

import uuid
from io import BytesIO
from typing import Any, Iterable, Mapping, Optional, Union

import structlog
from docx import Document

from akte.assembly.articles import ArticleRemover
from akte.assembly.conditions import ConditionEvaluator, apply_conditional_placeholders
from akte.assembly.content_controls import unwrap_content_controls
from akte.assembly.generators import ContentGenerator, GeneratorRegistry
from akte.assembly.numbering import LegalNumberingEngine, NumberingAllocator
from akte.assembly.placeholders import PlaceholderResolver
from akte.assembly.sections import ConditionalSectionPruner
from akte.context import PlaceholderContext
from akte.models import AssemblyOptions, AssemblyReport, ConditionConfig
from akte.utils.docx import normalize_docx

logger = structlog.get_logger(__name__)

ConditionalsArg = Optional[Mapping[str, Union[ConditionConfig, Mapping[str, Any], str]]]
GeneratorsArg = Optional[Union[GeneratorRegistry, Iterable[ContentGenerator]]]


class AssemblyError(RuntimeError):
    """A pipeline stage failed; the document must not be serialized."""


class DocumentAssembler:
    def __init__(self, doc_stream: BytesIO, options: Optional[AssemblyOptions] = None):
        self.options = options or AssemblyOptions()
        self.doc = Document(doc_stream)
        if self.options.normalize:
            normalize_docx(self.doc)
        self._failed = False

    def assemble(
        self,
        context: Union[PlaceholderContext, Mapping[str, Any]],
        conditionals: ConditionalsArg = None,
        generators: GeneratorsArg = None,
        correlation_id: Optional[str] = None,
    ) -> AssemblyReport:
        """
        Runs all stages. Any unexpected failure is raised as AssemblyError and
        leaves the assembler unusable for saving.
        """
        if not isinstance(context, PlaceholderContext):
            context = PlaceholderContext.from_values(context)

        correlation_id = correlation_id or uuid.uuid4().hex[:12]
        log = logger.bind(correlation_id=correlation_id)
        report = AssemblyReport(correlation_id=correlation_id)

        try:
            self._run_stages(context, conditionals, generators, report, log)
        except Exception as e:
            self._failed = True
            log.error("Assembly failed", error=str(e))
            raise AssemblyError(f"Assembly failed [{correlation_id}]: {e}") from e

        log.info("Assembly complete", **report.model_dump(exclude={"correlation_id", "conditional_values"}))
        return report

    def _run_stages(self, context, conditionals, generators, report: AssemblyReport, log):
        opts = self.options

        if self.doc.element.body is None:
            log.warning("MissingDocumentRoot: document has no body")

        # 1. Scalars
        resolver = PlaceholderResolver(context.replacements)
        report.substituted_blocks = resolver.process_document(self.doc)
        log.info("Stage complete: placeholders", changed=report.substituted_blocks)

        # 2. Conditional placeholders feed more scalars
        if conditionals:
            evaluator = ConditionEvaluator(max_depth=opts.max_nesting_depth)
            resolved = apply_conditional_placeholders(conditionals, context, evaluator)
            report.conditional_values = resolved
            second_pass = PlaceholderResolver(context.replacements)
            report.substituted_blocks += second_pass.process_document(self.doc, keys=resolved.keys())
            log.info("Stage complete: conditional placeholders", resolved=len(resolved))

        # 3. Sections
        pruner = ConditionalSectionPruner(context.replacements)
        pruner.process_document(self.doc)
        report.kept_sections = pruner.kept
        report.pruned_sections = pruner.removed
        log.info("Stage complete: conditional sections", kept=pruner.kept, removed=pruner.removed)

        # 4. Generators
        if generators:
            registry = generators if isinstance(generators, GeneratorRegistry) else GeneratorRegistry(generators)
            dispatched = registry.dispatch(self.doc, context)
            report.generated_blocks = dispatched.replaced
            report.failed_generators = dispatched.failures
            log.info("Stage complete: content generators", replaced=report.generated_blocks)

        # 5. Article and block removal
        remover = ArticleRemover(opts.remove_article_marker, opts.remove_block_marker)
        removal = remover.process_document(self.doc)
        report.removed_blocks = removal.removed_blocks
        report.removed_articles = sorted(removal.articles_to_remove)
        report.renumbering = removal.renumbering
        log.info("Stage complete: article removal", removed_blocks=removal.removed_blocks)

        # 6. Numbering markers, with an allocator owned by this run
        numbering = LegalNumberingEngine(NumberingAllocator(opts.restart_id_start), opts.numbering_base_id)
        numbering.process_document(self.doc)
        report.numbered_blocks = numbering.numbered_blocks
        report.numbering_restarts = numbering.restarts
        log.info("Stage complete: numbering", numbered=numbering.numbered_blocks, restarts=numbering.restarts)

        # 7. Content controls
        if opts.remove_content_controls:
            report.unwrapped_content_controls = unwrap_content_controls(self.doc)

    def save_to_stream(self) -> BytesIO:
        if self._failed:
            raise AssemblyError("Refusing to save a document whose assembly failed")
        output = BytesIO()
        self.doc.save(output)
        output.seek(0)
        return output


def assemble_document(
    template: Union[bytes, BytesIO],
    context: Union[PlaceholderContext, Mapping[str, Any]],
    conditionals: ConditionalsArg = None,
    generators: GeneratorsArg = None,
    options: Optional[AssemblyOptions] = None,
    correlation_id: Optional[str] = None,
) -> bytes:
    """One-call helper: template bytes in, assembled DOCX bytes out."""
    stream = template if isinstance(template, BytesIO) else BytesIO(template)
    assembler = DocumentAssembler(stream, options)
    assembler.assemble(context, conditionals, generators, correlation_id)
    return assembler.save_to_stream().getvalue()
