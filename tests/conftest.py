"""
Shared fixtures: an on-disk template catalog and fake runners.
"""

import asyncio
from pathlib import Path

import pytest

from rampart.catalog import TemplateStore
from rampart.scanners import ResultEvent, ScannerError, SeverityLevel, TemplateRunner


TEMPLATES = {
    "tech-detect.yaml": """
id: tech-detect
info:
  name: Web Server Detection
  author: alice, bob
  severity: info
  tags: tech,detect
http:
  - method: GET
    path:
      - "{{BaseURL}}/"
    matchers:
      - type: word
        name: nginx
        words:
          - "Welcome to nginx"
""",
    "exposed-git.yaml": """
id: exposed-git
info:
  name: Exposed Git Config
  author: carol
  severity: MEDIUM
  tags: exposure,git
http:
  - method: GET
    path: "{{BaseURL}}/.git/config"
    matchers-condition: and
    matchers:
      - type: word
        words:
          - "[core]"
      - type: status
        status:
          - 200
""",
    "panels/admin-panel.yaml": """
id: admin-panel
info:
  name: Admin Panel
  author: alice
  severity: low
  tags: panel
http:
  - method: GET
    path:
      - "{{BaseURL}}/admin"
    matchers:
      - type: status
        status:
          - 200
""",
    "workflows/login-chain.yaml": """
id: login-chain
info:
  name: Detect Then Check Admin
  author: alice
  severity: low
  tags: workflow,panel
workflows:
  - template: tech-detect.yaml
    subtemplates:
      - template: panels/admin-panel.yaml
""",
}


@pytest.fixture
def templates_dir(tmp_path) -> str:
    """Catalog with three templates and one workflow"""
    root = tmp_path / "templates"
    for name, content in TEMPLATES.items():
        path = root / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content.lstrip(), encoding="utf-8")
    return str(root)


class FakeRunner(TemplateRunner):
    """
    Runner that never touches the network.

    It takes a slot from the invocation's rate limiter for every work item,
    like a real runner does, and matches the templates listed in
    ``matching``.
    """

    def __init__(self, options, matching=(), failing=(), delay: float = 0.0):
        super().__init__(runner_name="FakeRunner")
        self.options = options
        self.matching = set(matching)
        self.failing = set(failing)
        self.delay = delay
        self.calls = []
        self.closed = False

    async def execute(self, templates, target, ctx):
        await ctx.rate_limiter.acquire()
        ctx.progress.increment_requests()
        self.calls.append((tuple(t.id for t in templates), target))

        if self.delay:
            await asyncio.sleep(self.delay)
        if any(t.id in self.failing for t in templates):
            raise ScannerError(f"connection refused: {target}")

        results = [
            ResultEvent(
                template_id=t.id,
                template_name=t.info.name,
                severity=SeverityLevel.parse(t.info.severity),
                target=target,
                matched_at=target,
            )
            for t in templates
            if t.id in self.matching
        ]
        self.record(results)
        return results

    async def close(self):
        self.closed = True


class RunnerRecorder:
    """Runner factory that keeps every runner it creates"""

    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.runners = []

    def __call__(self, options):
        runner = FakeRunner(options, **self.kwargs)
        self.runners.append(runner)
        return runner


class SpyLoader:
    """Loader factory that counts how often a template store was requested"""

    def __init__(self):
        self.configs = []

    def __call__(self, config):
        self.configs.append(config)
        return TemplateStore(config)

    @property
    def calls(self) -> int:
        return len(self.configs)


@pytest.fixture
def runner_factory():
    """Returns a constructor for recording fake runner factories"""
    return RunnerRecorder


@pytest.fixture
def spy_loader():
    return SpyLoader()


@pytest.fixture
def write_template(tmp_path):
    """Write an extra template file and return its path"""
    def write(name: str, content: str) -> Path:
        path = tmp_path / "extra" / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content.lstrip(), encoding="utf-8")
        return path
    return write
