"""Import scanning — derive edges from skeleton source text.

When the planner has already produced a skeleton for each artifact, the
references inside it (``import``/``require`` in scripts, ``from x
import y`` in Python, ``<script src>``/``<link href>`` in markup,
``@import`` in stylesheets) are a better dependency signal than the
category table alone.  This module extracts those references and
resolves them against the paths of the current batch.

All functions are pure; nothing touches the filesystem.
"""

from __future__ import annotations

import posixpath
import re

from layerforge.rules import Category

# ---------------------------------------------------------------------------
# Patterns
# ---------------------------------------------------------------------------

_JS_IMPORT_FROM_RE = re.compile(r"""import\s+(?:[\w\s{},*$]+)\s+from\s*['"]([^'"]+)['"]""")
_JS_BARE_IMPORT_RE = re.compile(r"""^\s*import\s+['"]([^'"]+)['"]""", re.MULTILINE)
_JS_CALL_IMPORT_RE = re.compile(r"""(?:import|require)\s*\(\s*['"]([^'"]+)['"]\s*\)""")

_PY_FROM_RE = re.compile(
    r"^[ \t]*from[ \t]+([.\w]+)[ \t]+import[ \t]+(?:\(([^)]*)\)|([\w \t,*]+))", re.MULTILINE
)
_PY_IMPORT_RE = re.compile(r"^[ \t]*import[ \t]+([\w.]+(?:[ \t]*,[ \t]*[\w.]+)*)", re.MULTILINE)

_HTML_SCRIPT_RE = re.compile(r"""<script[^>]+src=["']([^"']+)["']""", re.IGNORECASE)
_HTML_LINK_RE = re.compile(r"""<link[^>]+href=["']([^"']+)["']""", re.IGNORECASE)

_CSS_IMPORT_RE = re.compile(r"""@import\s+(?:url\()?\s*["']([^"']+)["']""")

_SCRIPT_SUFFIXES = (".js", ".ts", ".jsx", ".tsx", ".mjs", ".cjs")


# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------


def extract_references(content: str, category: Category) -> list[str]:
    """Return raw import specifiers found in *content*, deduplicated.

    Python specifiers are dotted module names; ``from pkg import mod``
    yields both ``pkg`` and ``pkg.mod`` so sub-module imports resolve.
    """
    refs: list[str] = []

    if category in (Category.SCRIPT, Category.TYPESCRIPT):
        for regex in (_JS_IMPORT_FROM_RE, _JS_BARE_IMPORT_RE, _JS_CALL_IMPORT_RE):
            refs.extend(m.group(1) for m in regex.finditer(content))

    elif category is Category.PYTHON:
        for m in _PY_FROM_RE.finditer(content):
            module, names = m.group(1), m.group(2) or m.group(3) or ""
            refs.append(module)
            for name in names.replace("\n", " ").split(","):
                name = name.strip().split(" as ")[0].strip()
                if not name or name == "*":
                    continue
                sep = "" if module.endswith(".") else "."
                refs.append(f"{module}{sep}{name}")
        for m in _PY_IMPORT_RE.finditer(content):
            for name in m.group(1).split(","):
                refs.append(name.strip())

    elif category is Category.MARKUP:
        refs.extend(m.group(1) for m in _HTML_SCRIPT_RE.finditer(content))
        refs.extend(m.group(1) for m in _HTML_LINK_RE.finditer(content))

    elif category is Category.STYLESHEET:
        refs.extend(m.group(1) for m in _CSS_IMPORT_RE.finditer(content))

    return list(dict.fromkeys(r for r in refs if r))


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------


def resolve_reference(
    current: str, ref: str, known_paths: set[str], category: Category
) -> str | None:
    """Resolve *ref* (found in *current*) to a path in *known_paths*."""
    if "://" in ref or ref.startswith(("data:", "#", "mailto:")):
        return None
    if category is Category.PYTHON:
        return _resolve_python(current, ref, known_paths)
    return _resolve_file_ref(current, ref, known_paths, probe_scripts=category in (
        Category.SCRIPT, Category.TYPESCRIPT,
    ))


def _first_known(candidates: list[str], known_paths: set[str]) -> str | None:
    for candidate in candidates:
        if candidate in known_paths:
            return candidate
    return None


def _norm(path: str) -> str:
    normed = posixpath.normpath(path.replace("\\", "/"))
    return "" if normed == "." else normed


def _resolve_file_ref(
    current: str, ref: str, known_paths: set[str], *, probe_scripts: bool
) -> str | None:
    current_dir = posixpath.dirname(current.replace("\\", "/"))
    ref = ref.split("?")[0].split("#")[0]

    if ref.startswith("/"):
        bases = [_norm(ref.lstrip("/"))]
    else:
        bases = [_norm(posixpath.join(current_dir, ref))]
        # HTML often references root-level files without a directory
        if not ref.startswith("."):
            bases.append(_norm(ref))

    candidates: list[str] = []
    for base in bases:
        if not base:
            continue
        candidates.append(base)
        if probe_scripts:
            candidates.extend(base + suffix for suffix in _SCRIPT_SUFFIXES)
            candidates.extend(f"{base}/index{suffix}" for suffix in (".js", ".ts"))
    return _first_known(candidates, known_paths)


def _resolve_python(current: str, ref: str, known_paths: set[str]) -> str | None:
    current_dir = posixpath.dirname(current.replace("\\", "/"))

    if ref.startswith("."):
        depth = len(ref) - len(ref.lstrip("."))
        base_dir = current_dir
        for _ in range(depth - 1):
            base_dir = posixpath.dirname(base_dir)
        module_part = ref[depth:].replace(".", "/")
        base = _norm(posixpath.join(base_dir, module_part)) if module_part else base_dir
        candidates = [f"{base}.py", f"{base}/__init__.py"] if base else ["__init__.py"]
        return _first_known(candidates, known_paths)

    module_path = ref.replace(".", "/")
    suffixes = (f"{module_path}.py", f"{module_path}/__init__.py")
    # Prefer the match closest to the importing file
    for candidate in (
        _norm(posixpath.join(current_dir, suffixes[0])),
        _norm(posixpath.join(current_dir, suffixes[1])),
        *suffixes,
    ):
        if candidate in known_paths:
            return candidate
    for path in sorted(known_paths):
        if any(path.endswith("/" + s) for s in suffixes):
            return path
    return None


def scan_dependencies(
    path: str, content: str, category: Category, known_paths: set[str]
) -> list[str]:
    """Return batch paths that *path*'s skeleton references."""
    deps: list[str] = []
    for ref in extract_references(content, category):
        resolved = resolve_reference(path, ref, known_paths, category)
        if resolved and resolved != path and resolved not in deps:
            deps.append(resolved)
    return deps
