"""Artifact classification and dependency rules.

Two rule sources feed the dependency graph:

* ``CATEGORY_PREREQUISITES`` — a typed, static table saying which
  categories must exist before a given category can be generated.
* ``IntraCategoryRule`` implementations — small pluggable heuristics
  for edges *inside* one category (e.g. foundation modules of a
  multi-module Python package).

Everything here is pure and independent of the graph algorithm, so the
rule set can be audited and unit-tested on its own.
"""

from __future__ import annotations

import enum
from pathlib import PurePosixPath
from typing import TYPE_CHECKING, Protocol, Sequence, runtime_checkable

if TYPE_CHECKING:
    from layerforge.contracts import Artifact


class Category(str, enum.Enum):
    """Artifact category — decides prerequisites and heuristics."""

    MARKUP = "markup"
    STYLESHEET = "stylesheet"
    SCRIPT = "script"
    TYPESCRIPT = "typescript"
    PYTHON = "python"
    SYSTEMS = "systems"
    DATA = "data"
    DOCS = "docs"
    UNKNOWN = "unknown"


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

EXTENSION_CATEGORIES: dict[str, Category] = {
    ".html": Category.MARKUP,
    ".htm": Category.MARKUP,
    ".css": Category.STYLESHEET,
    ".scss": Category.STYLESHEET,
    ".sass": Category.STYLESHEET,
    ".less": Category.STYLESHEET,
    ".js": Category.SCRIPT,
    ".mjs": Category.SCRIPT,
    ".cjs": Category.SCRIPT,
    ".jsx": Category.SCRIPT,
    ".ts": Category.TYPESCRIPT,
    ".tsx": Category.TYPESCRIPT,
    ".py": Category.PYTHON,
    ".c": Category.SYSTEMS,
    ".h": Category.SYSTEMS,
    ".cpp": Category.SYSTEMS,
    ".hpp": Category.SYSTEMS,
    ".cc": Category.SYSTEMS,
    ".go": Category.SYSTEMS,
    ".rs": Category.SYSTEMS,
    ".java": Category.SYSTEMS,
    ".cs": Category.SYSTEMS,
    ".json": Category.DATA,
    ".yaml": Category.DATA,
    ".yml": Category.DATA,
    ".xml": Category.DATA,
    ".toml": Category.DATA,
    ".md": Category.DOCS,
    ".txt": Category.DOCS,
    ".rst": Category.DOCS,
}

# Language names accepted as category hints.
HINT_ALIASES: dict[str, Category] = {
    "html": Category.MARKUP,
    "css": Category.STYLESHEET,
    "scss": Category.STYLESHEET,
    "style": Category.STYLESHEET,
    "javascript": Category.SCRIPT,
    "js": Category.SCRIPT,
    "jsx": Category.SCRIPT,
    "ts": Category.TYPESCRIPT,
    "tsx": Category.TYPESCRIPT,
    "py": Category.PYTHON,
    "c": Category.SYSTEMS,
    "cpp": Category.SYSTEMS,
    "go": Category.SYSTEMS,
    "rust": Category.SYSTEMS,
    "java": Category.SYSTEMS,
    "csharp": Category.SYSTEMS,
    "json": Category.DATA,
    "yaml": Category.DATA,
    "xml": Category.DATA,
    "markdown": Category.DOCS,
    "text": Category.DOCS,
}


def classify_path(path: str) -> Category:
    """Return the category implied by *path*'s extension."""
    suffix = PurePosixPath(path.replace("\\", "/")).suffix.lower()
    return EXTENSION_CATEGORIES.get(suffix, Category.UNKNOWN)


def classify(path: str, hint: "str | Category | None" = None) -> Category:
    """Resolve an artifact's category.

    An explicit *hint* wins when it names a known category or language;
    an unrecognised or empty hint falls back to the path extension.
    """
    if isinstance(hint, Category):
        if hint is not Category.UNKNOWN:
            return hint
    elif hint:
        key = str(hint).strip().lower()
        try:
            category = Category(key)
        except ValueError:
            category = HINT_ALIASES.get(key, Category.UNKNOWN)
        if category is not Category.UNKNOWN:
            return category
    return classify_path(path)


# ---------------------------------------------------------------------------
# Static category table
# ---------------------------------------------------------------------------

CATEGORY_PREREQUISITES: dict[Category, tuple[Category, ...]] = {
    Category.MARKUP: (),
    Category.STYLESHEET: (Category.MARKUP,),
    Category.SCRIPT: (Category.MARKUP, Category.STYLESHEET),
    Category.TYPESCRIPT: (Category.MARKUP, Category.STYLESHEET),
    Category.PYTHON: (),
    Category.SYSTEMS: (),
    Category.DATA: (),
    Category.DOCS: (),
    Category.UNKNOWN: (),
}


def prerequisites(category: Category) -> tuple[Category, ...]:
    """Categories that must be generated before *category*."""
    return CATEGORY_PREREQUISITES.get(category, ())


# ---------------------------------------------------------------------------
# Intra-category heuristics
# ---------------------------------------------------------------------------


@runtime_checkable
class IntraCategoryRule(Protocol):
    """Adds edges between artifacts of the same category."""

    def applies_to(self, category: Category) -> bool: ...

    def dependencies(
        self, artifact: "Artifact", peers: Sequence["Artifact"]
    ) -> list[str]:
        """Return paths among *peers* that *artifact* depends on.

        *peers* are the other artifacts of the same category, in input
        order, never including *artifact* itself.
        """
        ...


FOUNDATION_MODULES: frozenset[str] = frozenset(
    {"utils", "config", "models", "constants", "base"}
)


class FoundationModuleRule:
    """Foundation modules first, everything else after them.

    A module whose stem is in *foundation_names* is a leaf inside its
    category.  Every other module of the same category depends on every
    foundation module present in the batch.
    """

    def __init__(
        self,
        categories: frozenset[Category] = frozenset(
            {Category.PYTHON, Category.SCRIPT, Category.TYPESCRIPT}
        ),
        foundation_names: frozenset[str] = FOUNDATION_MODULES,
    ) -> None:
        self.categories = categories
        self.foundation_names = foundation_names

    def is_foundation(self, path: str) -> bool:
        stem = PurePosixPath(path.replace("\\", "/")).stem.lower()
        return stem in self.foundation_names

    def applies_to(self, category: Category) -> bool:
        return category in self.categories

    def dependencies(
        self, artifact: "Artifact", peers: Sequence["Artifact"]
    ) -> list[str]:
        if self.is_foundation(artifact.path):
            return []
        return [p.path for p in peers if self.is_foundation(p.path)]

    def __repr__(self) -> str:
        cats = ",".join(sorted(c.value for c in self.categories))
        return f"FoundationModuleRule(categories={cats})"


DEFAULT_RULES: tuple[IntraCategoryRule, ...] = (FoundationModuleRule(),)
