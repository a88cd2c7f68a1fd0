"""
Template catalog - Template files, parsing and loading.

- DiskCatalog: finds and parses template files (shared, thread-safe)
- TemplateStore: templates and workflows selected for one invocation
- WorkflowLoader: resolves workflow step references
"""

from .templates import (
    Template,
    TemplateInfo,
    HttpRequest,
    Matcher,
    Workflow,
    WorkflowStep,
    CompiledWorkflow,
    CompiledStep,
    TemplateParseError,
    parse_document,
)
from .disk import DiskCatalog
from .loader import LoaderConfig, TemplateStore, WorkflowLoader, matches_filters


__all__ = [
    # Models
    "Template",
    "TemplateInfo",
    "HttpRequest",
    "Matcher",
    "Workflow",
    "WorkflowStep",
    "CompiledWorkflow",
    "CompiledStep",
    "TemplateParseError",
    "parse_document",
    # Catalog and loading
    "DiskCatalog",
    "LoaderConfig",
    "TemplateStore",
    "WorkflowLoader",
    "matches_filters",
]
