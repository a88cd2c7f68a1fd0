"""
Disk catalog - Template files on the local filesystem.

The catalog is shared by every invocation of an engine. Parsing is cached
per file and the cache is guarded by a lock, so concurrent loaders can use
one catalog safely.
"""

import threading
from pathlib import Path
from typing import Dict, List, Tuple, Union

import structlog
import yaml

from ..core.exceptions import TemplateLoadError
from .templates import Template, TemplateParseError, Workflow, parse_document


TEMPLATE_EXTENSIONS = (".yaml", ".yml")


class DiskCatalog:
    """
    Resolves and parses template files under a root directory.

    Example:
        >>> catalog = DiskCatalog("templates")
        >>> paths = catalog.get_template_paths([])
        >>> template = catalog.parse(paths[0])
    """

    def __init__(self, directory: Union[str, Path]):
        """
        Initialize the catalog.

        Args:
            directory: Root directory of the templates
        """
        self.directory = Path(directory)
        self._cache: Dict[Path, Tuple[float, Union[Template, Workflow]]] = {}
        self._lock = threading.Lock()

        self.logger = structlog.get_logger(__name__)

    def resolve_path(self, ref: str) -> Path:
        """
        Resolve a template reference to a path.

        Absolute paths are used as is; relative ones are looked up under the
        catalog root first, then relative to the working directory.

        Raises:
            TemplateLoadError: If nothing exists at the reference
        """
        candidate = Path(ref)
        if not candidate.is_absolute():
            under_root = self.directory / candidate
            if under_root.exists():
                return under_root
        if candidate.exists():
            return candidate
        raise TemplateLoadError(f"template path not found: {ref}")

    def get_template_paths(self, refs: List[str]) -> List[Path]:
        """
        List template files.

        Args:
            refs: Files or directories to include (empty = whole catalog)

        Returns:
            Sorted, de-duplicated list of template files
        """
        if refs:
            roots = [self.resolve_path(ref) for ref in refs]
        else:
            if not self.directory.is_dir():
                raise TemplateLoadError(f"template directory not found: {self.directory}")
            roots = [self.directory]

        paths = set()
        for root in roots:
            if root.is_dir():
                paths.update(
                    p for p in root.rglob("*")
                    if p.is_file() and p.suffix in TEMPLATE_EXTENSIONS
                )
            else:
                paths.add(root)

        return sorted(paths)

    def parse(self, path: Union[str, Path]) -> Union[Template, Workflow]:
        """
        Parse a template file, using the cache when the file is unchanged.

        Raises:
            TemplateParseError: If the file is not a valid template
        """
        path = Path(path)
        try:
            mtime = path.stat().st_mtime
        except OSError as e:
            raise TemplateParseError(f"{path}: {e}") from e

        with self._lock:
            cached = self._cache.get(path)
        if cached and cached[0] == mtime:
            return cached[1]

        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, yaml.YAMLError) as e:
            raise TemplateParseError(f"{path}: {e}") from e

        document = parse_document(data, str(path))

        with self._lock:
            self._cache[path] = (mtime, document)

        self.logger.debug("template_parsed", path=str(path), id=document.id)
        return document

    def cached_count(self) -> int:
        with self._lock:
            return len(self._cache)

    def close(self):
        """Drop the parse cache"""
        with self._lock:
            self._cache.clear()

    def __repr__(self) -> str:
        return f"DiskCatalog(directory={str(self.directory)!r})"
