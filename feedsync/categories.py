"""Category path resolution over the category registry."""

from typing import Dict, List, Mapping, Optional

from feedsync.config import CATEGORY_PATH_SEPARATOR, ROOT_CATEGORY_CODE
from feedsync.models import CategoryEntry

__all__ = [
    "CategoryResolutionError",
    "MissingCategoryError",
    "CategoryCycleError",
    "resolve_category_path",
    "CategoryPathResolver",
]


class CategoryResolutionError(Exception):
    """Base class for category registry integrity errors."""


class MissingCategoryError(CategoryResolutionError):
    """A category code (or one of its ancestors) is not in the registry."""

    def __init__(self, code: str, referenced_by: Optional[str] = None):
        self.code = code
        self.referenced_by = referenced_by
        if referenced_by is None:
            message = f"Unknown category code {code!r}"
        else:
            message = f"Unknown parent category {code!r} (referenced by {referenced_by!r})"
        super().__init__(message)


class CategoryCycleError(CategoryResolutionError):
    """The parent chain revisits a code before reaching the root."""

    def __init__(self, chain: List[str]):
        self.chain = chain
        super().__init__(f"Category parent cycle: {' -> '.join(chain)}")


def _lineage(categories: Mapping[str, CategoryEntry], code: str) -> List[str]:
    """Names from ``code`` up to (not including) the root, leaf first."""
    entry = categories.get(code)
    if entry is None:
        raise MissingCategoryError(code)

    names = [entry.name]
    visited = [code]
    parent = entry.parent
    while parent != ROOT_CATEGORY_CODE:
        if parent in visited:
            raise CategoryCycleError(visited + [parent])
        parent_entry = categories.get(parent)
        if parent_entry is None:
            raise MissingCategoryError(parent, referenced_by=visited[-1])
        names.append(parent_entry.name)
        visited.append(parent)
        parent = parent_entry.parent
    return names


def resolve_category_path(
    categories: Mapping[str, CategoryEntry],
    code: str,
    separator: str = CATEGORY_PATH_SEPARATOR,
) -> str:
    """Return the full path of a category, root-most name first.

    A category whose parent is the root sentinel resolves to its own name.

    Raises:
        MissingCategoryError: If the code or an ancestor is not registered
        CategoryCycleError: If the parent chain loops
    """
    return separator.join(reversed(_lineage(categories, code)))


class CategoryPathResolver:
    """Memoizing resolver for exporting many products that share categories."""

    def __init__(
        self,
        categories: Mapping[str, CategoryEntry],
        separator: str = CATEGORY_PATH_SEPARATOR,
    ):
        self._categories = categories
        self._separator = separator
        self._paths: Dict[str, str] = {}

    def resolve(self, code: str) -> str:
        path = self._paths.get(code)
        if path is None:
            path = resolve_category_path(self._categories, code, self._separator)
            self._paths[code] = path
        return path

    def resolve_all(self) -> Dict[str, str]:
        """Full path for every registered code, in registry order."""
        return {code: self.resolve(code) for code in self._categories}
