"""
Template loader - Resolves the templates and workflows of one invocation.

The loader reads from the shared catalog and applies the invocation's
filters. It keeps its results on the store instance only; nothing it builds
is visible to other invocations.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, List, Optional, Tuple

import structlog

from ..core.exceptions import TemplateLoadError
from ..core.options import EngineOptions
from .disk import DiskCatalog
from .templates import (
    CompiledStep,
    CompiledWorkflow,
    Template,
    TemplateInfo,
    TemplateParseError,
    Workflow,
    WorkflowStep,
)

if TYPE_CHECKING:
    from ..core.context import ExecutorOptions


def matches_filters(template_id: str, info: TemplateInfo, options: EngineOptions) -> bool:
    """Check a template or workflow against the filters in ``options``"""
    tags = {tag.lower() for tag in info.tags}

    if options.ids and template_id not in options.ids:
        return False
    if template_id in options.exclude_ids:
        return False
    if options.tags and not tags & {tag.lower() for tag in options.tags}:
        return False
    if tags & {tag.lower() for tag in options.exclude_tags}:
        return False
    if options.severities and info.severity not in options.severities:
        return False
    if options.authors:
        authors = {author.lower() for author in info.author}
        if not authors & {author.lower() for author in options.authors}:
            return False
    return True


class WorkflowLoader:
    """
    Resolves workflow step references into templates.

    Step references are template files or directories, relative to the
    catalog root. A directory expands to one step per template inside it.
    """

    def __init__(self, catalog: DiskCatalog):
        self.catalog = catalog
        self.logger = structlog.get_logger(__name__)

    def load_templates(self, ref: str) -> List[Template]:
        """
        Load the templates a step reference points to.

        Raises:
            TemplateLoadError: If the reference is missing or not a template
        """
        templates = []
        for path in self.catalog.get_template_paths([ref]):
            document = self.catalog.parse(path)
            if not isinstance(document, Template):
                raise TemplateLoadError(f"workflow step {ref} does not reference a template")
            templates.append(document)
        return templates

    def compile(self, workflow: Workflow) -> CompiledWorkflow:
        """Resolve every step of ``workflow``"""
        return CompiledWorkflow(
            id=workflow.id,
            info=workflow.info,
            steps=self._compile_steps(workflow.workflows),
            path=workflow.path,
        )

    def _compile_steps(self, steps: List[WorkflowStep]) -> Tuple[CompiledStep, ...]:
        compiled = []
        for step in steps:
            subtemplates = self._compile_steps(step.subtemplates)
            for template in self.load_templates(step.template):
                compiled.append(CompiledStep(template=template, subtemplates=subtemplates))
        return tuple(compiled)


@dataclass
class LoaderConfig:
    """Inputs of a template store"""
    options: EngineOptions
    catalog: DiskCatalog
    executor_options: Optional["ExecutorOptions"] = None


class TemplateStore:
    """
    Templates and workflows selected for one invocation.

    Example:
        >>> store = TemplateStore(LoaderConfig(options, catalog, executor_options))
        >>> store.load()
        >>> len(store.templates())
    """

    def __init__(self, config: LoaderConfig):
        self.config = config
        self.options = config.options
        self.catalog = config.catalog

        self._templates: List[Template] = []
        self._workflows: List[CompiledWorkflow] = []
        self._loaded = False

        self.logger = structlog.get_logger(__name__)

    def _workflow_loader(self) -> WorkflowLoader:
        executor_options = self.config.executor_options
        if executor_options is not None and executor_options.workflow_loader is not None:
            return executor_options.workflow_loader
        return WorkflowLoader(self.catalog)

    def _collect_paths(self) -> List[Path]:
        if not self.options.templates and not self.options.workflows:
            return self.catalog.get_template_paths([])

        paths = set()
        if self.options.templates:
            paths.update(self.catalog.get_template_paths(self.options.templates))
        if self.options.workflows:
            paths.update(self.catalog.get_template_paths(self.options.workflows))
        return sorted(paths)

    def load(self):
        """
        Load and filter templates and workflows.

        Files that fail to parse are logged and skipped.

        Raises:
            TemplateLoadError: If the requested paths cannot be found
        """
        templates: List[Template] = []
        workflows: List[CompiledWorkflow] = []
        skipped = 0
        workflow_loader = self._workflow_loader()

        for path in self._collect_paths():
            try:
                document = self.catalog.parse(path)
            except TemplateParseError as e:
                skipped += 1
                self.logger.warning("template_parse_failed", path=str(path), error=str(e))
                continue

            if not matches_filters(document.id, document.info, self.options):
                continue

            if isinstance(document, Workflow):
                try:
                    workflows.append(workflow_loader.compile(document))
                except TemplateLoadError as e:
                    skipped += 1
                    self.logger.warning("workflow_compile_failed", path=str(path), error=str(e))
            else:
                templates.append(document)

        self._templates = templates
        self._workflows = workflows
        self._loaded = True

        self.logger.info(
            "templates_loaded",
            templates=len(templates),
            workflows=len(workflows),
            skipped=skipped,
        )

    def templates(self) -> List[Template]:
        return list(self._templates)

    def workflows(self) -> List[CompiledWorkflow]:
        return list(self._workflows)

    @property
    def loaded(self) -> bool:
        return self._loaded

    def __repr__(self) -> str:
        return (
            f"TemplateStore(templates={len(self._templates)}, "
            f"workflows={len(self._workflows)})"
        )
