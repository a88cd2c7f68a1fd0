"""
Template models - YAML templates and workflows.

A template describes one or more HTTP requests and the matchers that decide
whether a response is a finding. A workflow chains templates: subtemplates
only run against a target when their parent template matched it.

Parsed models are cached and shared by the catalog, so nothing here may be
mutated after parsing.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..core.exceptions import TemplateLoadError


class TemplateParseError(TemplateLoadError):
    """Raised when a template file is not a valid template or workflow"""
    pass


def _split_list(value: Any) -> Any:
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    return value


class Matcher(BaseModel):
    """Decides whether a response matches"""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    type: Literal["word", "status", "regex"]
    name: Optional[str] = None
    part: Literal["body", "header", "all"] = "body"
    words: List[str] = Field(default_factory=list)
    status: List[int] = Field(default_factory=list)
    regex: List[str] = Field(default_factory=list)
    condition: Literal["and", "or"] = "or"
    negative: bool = False
    case_insensitive: bool = Field(default=False, alias="case-insensitive")

    def match(self, status_code: int, headers: str, body: str) -> bool:
        if self.type == "status":
            result = status_code in self.status
        else:
            corpus = {"body": body, "header": headers, "all": f"{headers}\n{body}"}[self.part]
            if self.type == "word":
                if self.case_insensitive:
                    corpus = corpus.lower()
                    checks = [word.lower() in corpus for word in self.words]
                else:
                    checks = [word in corpus for word in self.words]
            else:
                flags = re.IGNORECASE if self.case_insensitive else 0
                checks = [re.search(pattern, corpus, flags) is not None for pattern in self.regex]
            result = all(checks) if self.condition == "and" else any(checks)
        return not result if self.negative else result


class HttpRequest(BaseModel):
    """One HTTP request of a template"""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    method: str = "GET"
    path: List[str]
    headers: Dict[str, str] = Field(default_factory=dict)
    body: Optional[str] = None
    matchers_condition: Literal["and", "or"] = Field(default="or", alias="matchers-condition")
    matchers: List[Matcher] = Field(default_factory=list)

    @field_validator("path", mode="before")
    @classmethod
    def _single_path(cls, value):
        return [value] if isinstance(value, str) else value

    def signature(self) -> Tuple:
        return (
            self.method.upper(),
            tuple(self.path),
            tuple(sorted(self.headers.items())),
            self.body,
        )

    def evaluate(self, status_code: int, headers: str, body: str) -> List[Matcher]:
        """
        Return the matchers that fired, or an empty list if the request did
        not match as a whole.
        """
        if not self.matchers:
            return []
        fired = [m for m in self.matchers if m.match(status_code, headers, body)]
        if self.matchers_condition == "and":
            return fired if len(fired) == len(self.matchers) else []
        return fired


class TemplateInfo(BaseModel):
    """Template metadata used for filtering and reporting"""

    model_config = ConfigDict(frozen=True)

    name: str
    author: List[str] = Field(default_factory=list)
    severity: str = "unknown"
    tags: List[str] = Field(default_factory=list)
    description: Optional[str] = None

    @field_validator("author", "tags", mode="before")
    @classmethod
    def _comma_list(cls, value):
        return _split_list(value)

    @field_validator("severity", mode="before")
    @classmethod
    def _lower_severity(cls, value):
        return str(value).lower() if value is not None else "unknown"


class Template(BaseModel):
    """An HTTP template"""

    model_config = ConfigDict(frozen=True)

    id: str
    info: TemplateInfo
    http: List[HttpRequest]
    path: Optional[str] = None

    def request_signature(self) -> Tuple:
        """Templates with equal signatures send identical requests"""
        return tuple(request.signature() for request in self.http)


class WorkflowStep(BaseModel):
    """A template reference inside a workflow"""

    model_config = ConfigDict(frozen=True)

    template: str
    subtemplates: List["WorkflowStep"] = Field(default_factory=list)


class Workflow(BaseModel):
    """A workflow document as written on disk"""

    model_config = ConfigDict(frozen=True)

    id: str
    info: TemplateInfo
    workflows: List[WorkflowStep]
    path: Optional[str] = None


@dataclass(frozen=True)
class CompiledStep:
    """A workflow step with its template resolved"""
    template: Template
    subtemplates: Tuple["CompiledStep", ...] = ()


@dataclass(frozen=True)
class CompiledWorkflow:
    """A workflow whose references were resolved by the workflow loader"""
    id: str
    info: TemplateInfo
    steps: Tuple[CompiledStep, ...] = field(default_factory=tuple)
    path: Optional[str] = None

    def templates(self) -> List[Template]:
        """All templates reachable from this workflow, depth first"""
        found: List[Template] = []
        pending = list(self.steps)
        while pending:
            step = pending.pop(0)
            found.append(step.template)
            pending[0:0] = list(step.subtemplates)
        return found


def parse_document(data: Any, path: Optional[str] = None) -> Union[Template, Workflow]:
    """
    Build a template or workflow from a parsed YAML document.

    Raises:
        TemplateParseError: If the document is neither
    """
    if not isinstance(data, dict):
        raise TemplateParseError(f"{path}: template must be a mapping")

    try:
        if "workflows" in data:
            return Workflow.model_validate({**data, "path": path})
        if "http" in data:
            return Template.model_validate({**data, "path": path})
    except ValidationError as e:
        raise TemplateParseError(f"{path}: {e}") from e

    raise TemplateParseError(f"{path}: no http requests or workflows defined")
