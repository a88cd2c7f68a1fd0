"""
HTTP Runner - Evaluates HTTP templates with aiohttp.

Supported placeholders in paths, headers and bodies:
- {{BaseURL}}: the target, with a scheme, without a trailing slash
- {{Hostname}}: host[:port] of the target
- {{interactsh-url}}: a fresh out-of-band URL from the interaction client
"""

import asyncio
from typing import TYPE_CHECKING, Dict, List, Optional, Tuple
from urllib.parse import urlparse

import aiohttp

from .base_scanner import (
    ResultEvent,
    ScannerError,
    ScannerTimeoutError,
    SeverityLevel,
    TemplateRunner,
)

if TYPE_CHECKING:
    from ..catalog.templates import HttpRequest, Template
    from ..core.context import ExecutorOptions
    from ..core.options import EngineOptions


INTERACTSH_PLACEHOLDER = "{{interactsh-url}}"


def base_url(target: str) -> str:
    """Normalize a target into a base URL"""
    target = target.strip()
    if "://" not in target:
        target = f"http://{target}"
    return target.rstrip("/")


class HttpTemplateRunner(TemplateRunner):
    """
    Runner for HTTP templates.

    One runner belongs to one invocation; its client session is created on
    first use inside that invocation's event loop and released by close().

    Example:
        >>> runner = HttpTemplateRunner(options)
        >>> results = await runner.execute([template], "https://example.com", ctx)
        >>> await runner.close()
    """

    def __init__(self, options: "EngineOptions"):
        """
        Initialize HTTP runner.

        Args:
            options: Options of the invocation owning this runner
        """
        super().__init__(runner_name="HttpTemplateRunner")

        self.options = options
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.options.timeout),
                headers=self.options.headers,
            )
        return self._session

    async def execute(
        self,
        templates: List["Template"],
        target: str,
        ctx: "ExecutorOptions",
    ) -> List[ResultEvent]:
        """
        Send the requests of the first template and evaluate all templates.

        Raises:
            ScannerError: If a request still fails after retries
        """
        lead = templates[0]
        results: List[ResultEvent] = []
        matched_ids = set()

        for index, request in enumerate(lead.http):
            for raw_path in request.path:
                variables = self._variables(target, ctx, raw_path, request)
                url = self._render(raw_path, variables)
                status, headers, body = await self._send(request, url, variables, ctx)

                for template in templates:
                    if template.id in matched_ids:
                        continue
                    fired = template.http[index].evaluate(status, headers, body)
                    if not fired:
                        continue
                    matched_ids.add(template.id)
                    results.append(ResultEvent(
                        template_id=template.id,
                        template_name=template.info.name,
                        severity=SeverityLevel.parse(template.info.severity),
                        target=target,
                        matched_at=url,
                        matcher_name=fired[0].name,
                        request_method=request.method.upper(),
                        status_code=status,
                    ))

        self.record(results)
        return results

    def _variables(
        self,
        target: str,
        ctx: "ExecutorOptions",
        raw_path: str,
        request: "HttpRequest",
    ) -> Dict[str, str]:
        url = base_url(target)
        variables = {
            "{{BaseURL}}": url,
            "{{Hostname}}": urlparse(url).netloc,
        }

        texts = [raw_path, request.body or "", *request.headers.values()]
        if any(INTERACTSH_PLACEHOLDER in text for text in texts):
            if ctx.interaction is None:
                raise ScannerError("template needs an interaction server but none is configured")
            variables[INTERACTSH_PLACEHOLDER] = ctx.interaction.new_url()

        return variables

    @staticmethod
    def _render(text: str, variables: Dict[str, str]) -> str:
        for placeholder, value in variables.items():
            text = text.replace(placeholder, value)
        return text

    async def _send(
        self,
        request: "HttpRequest",
        url: str,
        variables: Dict[str, str],
        ctx: "ExecutorOptions",
    ) -> Tuple[int, str, str]:
        """
        Send one request, retrying network failures.

        Returns:
            Status code, headers as text, body
        """
        session = await self._get_session()
        headers = {key: self._render(value, variables) for key, value in request.headers.items()}
        data = self._render(request.body, variables) if request.body is not None else None

        last_error: Optional[ScannerError] = None
        for attempt in range(self.options.retries + 1):
            await ctx.rate_limiter.acquire()
            ctx.progress.increment_requests()

            try:
                async with session.request(
                    request.method.upper(),
                    url,
                    headers=headers,
                    data=data,
                    allow_redirects=self.options.follow_redirects,
                ) as response:
                    body = await response.text(errors="replace")
                    header_text = "\n".join(f"{k}: {v}" for k, v in response.headers.items())
                    return response.status, header_text, body

            except asyncio.TimeoutError:
                last_error = ScannerTimeoutError(f"request timeout: {url}")
            except aiohttp.ClientError as e:
                last_error = ScannerError(f"request failed: {url}: {e}")

            self.logger.debug(
                "request_failed",
                url=url,
                attempt=attempt + 1,
                error=str(last_error),
            )

        raise last_error

    async def close(self):
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    def __repr__(self) -> str:
        return (
            f"HttpTemplateRunner("
            f"timeout={self.options.timeout}, "
            f"executed={self.executed_count}, "
            f"results={self.result_count})"
        )
