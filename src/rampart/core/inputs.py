"""
Input provider - Targets for one scan invocation.
"""

from typing import Iterable, Iterator, List, Optional


class SimpleInputProvider:
    """
    In-memory list of targets scoped to a single invocation.

    Targets are kept in insertion order and duplicates are preserved.
    Surrounding whitespace is stripped and blank entries are ignored.

    Example:
        >>> provider = SimpleInputProvider()
        >>> provider.set("https://example.com")
        >>> provider.count()
        1
    """

    def __init__(self, targets: Optional[Iterable[str]] = None):
        self._inputs: List[str] = []
        for target in targets or []:
            self.set(target)

    def set(self, target: str):
        """Add a target"""
        value = target.strip()
        if value:
            self._inputs.append(value)

    def count(self) -> int:
        return len(self._inputs)

    def __len__(self) -> int:
        return len(self._inputs)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._inputs))

    def __repr__(self) -> str:
        return f"SimpleInputProvider(count={len(self._inputs)})"
