"""
Flat tree listing -> nested TreeNode forest, and candidate file selection.
"""

from __future__ import annotations

import json
import logging
import posixpath
import re
from collections import Counter
from typing import Iterable, Iterator, Optional, Union

from .config import BINARY_EXTENSIONS, DEFAULT_EXTENSIONS
from .models import TreeEntry, TreeNode
from .rules import is_env_file

logger = logging.getLogger(__name__)

KIND_BY_TYPE = {"blob": "file", "tree": "directory"}

LANGUAGE_BY_EXTENSION = {
    "py": "python", "pyw": "python", "pyx": "python", "ipynb": "python",
    "js": "javascript", "jsx": "javascript", "mjs": "javascript", "cjs": "javascript",
    "ts": "typescript", "tsx": "typescript",
    "html": "web", "htm": "web", "css": "web", "scss": "web", "vue": "web", "svelte": "web",
    "json": "config", "yaml": "config", "yml": "config", "toml": "config", "ini": "config",
    "cfg": "config", "conf": "config", "xml": "config", "properties": "config", "tf": "config",
    "env": "config", "envrc": "config", "dockerfile": "config",
    "md": "docs", "mdx": "docs", "rst": "docs", "txt": "docs",
    "sh": "shell", "bash": "shell", "zsh": "shell", "ps1": "shell",
    "go": "go", "rs": "rust", "rb": "ruby", "php": "php", "java": "java",
    "kt": "kotlin", "kts": "kotlin", "swift": "swift", "c": "c", "h": "c",
    "cpp": "cpp", "hpp": "cpp", "cs": "csharp", "scala": "scala", "sql": "sql",
}

MANIFESTS = (
    "requirements.txt", "pyproject.toml", "setup.py", "Pipfile",
    "package.json", "go.mod", "Cargo.toml", "Gemfile", "pom.xml", "build.gradle",
)

# Dependency name (or name prefix before "-") -> framework label.
FRAMEWORKS = (
    ("langchain", "LangChain"), ("llama-index", "LlamaIndex"), ("openai", "OpenAI SDK"),
    ("anthropic", "Anthropic SDK"), ("fastapi", "FastAPI"), ("flask", "Flask"), ("django", "Django"),
    ("streamlit", "Streamlit"), ("react", "React"), ("next", "Next.js"), ("vue", "Vue"),
    ("express", "Express"),
)

REQUIREMENT_NAME = re.compile(r"^([A-Za-z0-9][A-Za-z0-9._-]*)")


def extension_of(path: str) -> str:
    """Last dot-segment of the file name, lower-cased ("a/.env" -> "env", "Dockerfile" -> "dockerfile")."""
    return posixpath.basename(path).rsplit(".", 1)[-1].lower()


class _Draft:
    __slots__ = ("path", "name", "kind", "size", "sha", "children")

    def __init__(self, path: str, name: str, kind: str, size=None, sha=None):
        self.path = path
        self.name = name
        self.kind = kind
        self.size = size
        self.sha = sha
        self.children: dict[str, _Draft] = {}

    def freeze(self) -> TreeNode:
        return TreeNode(
            path=self.path, name=self.name, kind=self.kind, size=self.size, sha=self.sha,
            children=_freeze_level(self.children.values()) if self.kind == "directory" else (),
        )


def _sort_key(node: Union[_Draft, TreeNode]):
    return (node.kind != "directory", node.name)


def _freeze_level(drafts: Iterable[_Draft]) -> tuple[TreeNode, ...]:
    return tuple(draft.freeze() for draft in sorted(drafts, key=_sort_key))


def build_tree(entries: Iterable[Union[TreeEntry, dict]]) -> list[TreeNode]:
    """Build the nested forest for a recursive tree listing.

    Intermediate path segments are always directories; the last segment
    takes its kind from the entry. Entries that are neither blobs nor trees
    (submodule commits) are dropped.
    """
    root: dict[str, _Draft] = {}
    for raw in entries:
        entry = raw if isinstance(raw, TreeEntry) else TreeEntry.model_validate(raw)
        kind = KIND_BY_TYPE.get(entry.type)
        if kind is None or not entry.path:
            continue
        parts = entry.path.strip("/").split("/")
        level = root
        for depth, part in enumerate(parts):
            last = depth == len(parts) - 1
            node = level.get(part)
            if node is None:
                node = _Draft(
                    path="/".join(parts[: depth + 1]),
                    name=part,
                    kind=kind if last else "directory",
                    size=entry.size if last else None,
                    sha=entry.sha if last else None,
                )
                level[part] = node
            elif last and node.kind == kind:
                # explicit entry for a directory first seen as an intermediate segment
                node.size = node.size if node.size is not None else entry.size
                node.sha = node.sha or entry.sha
            level = node.children
    return list(_freeze_level(root.values()))


def walk(nodes: Iterable[TreeNode]) -> Iterator[TreeNode]:
    """Depth-first, display order."""
    for node in nodes:
        yield node
        if node.is_dir:
            yield from walk(node.children)


def iter_files(nodes: Iterable[TreeNode]) -> Iterator[TreeNode]:
    return (node for node in walk(nodes) if not node.is_dir)


def find_node(nodes: Iterable[TreeNode], path: str) -> Optional[TreeNode]:
    for node in walk(nodes):
        if node.path == path:
            return node
    return None


def is_candidate(path: str, allowlist=DEFAULT_EXTENSIONS, size: Optional[int] = None,
                 max_size: Optional[int] = None) -> bool:
    ext = extension_of(path)
    if ext in BINARY_EXTENSIONS:
        return False
    if max_size is not None and size is not None and size > max_size:
        return False
    if ext in allowlist:
        return True
    # .env.local and prod.env are admitted through the "env" entry
    return "env" in allowlist and is_env_file(path)


def collect_candidates(nodes: Iterable[TreeNode], allowlist=DEFAULT_EXTENSIONS,
                       max_files: Optional[int] = None, max_size: Optional[int] = None) -> list[str]:
    """File paths worth fetching, in depth-first display order."""
    found: list[str] = []
    for node in iter_files(nodes):
        if is_candidate(node.path, allowlist, node.size, max_size):
            found.append(node.path)
            if max_files is not None and len(found) >= max_files:
                break
    return found


def count_files(nodes: Iterable[TreeNode]) -> int:
    return sum(1 for _ in iter_files(nodes))


def language_breakdown(paths: Iterable[str]) -> dict[str, int]:
    counts = Counter(LANGUAGE_BY_EXTENSION.get(extension_of(p), "other") for p in paths)
    return dict(counts.most_common())


def detect_manifests(paths: Iterable[str]) -> list[str]:
    """Dependency manifests present anywhere in the tree."""
    names = {posixpath.basename(p) for p in paths}
    return [m for m in MANIFESTS if m in names]


def is_manifest(path: str) -> bool:
    """Manifests whose dependency list can be read from their content."""
    return posixpath.basename(path) in ("requirements.txt", "package.json")


def parse_dependencies(path: str, text: str) -> list[str]:
    """Dependency names declared in a requirements.txt or package.json body."""
    name = posixpath.basename(path)
    found: list[str] = []
    if name == "requirements.txt":
        for line in text.splitlines():
            line = line.split("#", 1)[0].strip()
            if not line or line.startswith("-"):
                continue
            match = REQUIREMENT_NAME.match(line)
            if match:
                found.append(match.group(1).lower())
    elif name == "package.json":
        try:
            data = json.loads(text)
        except ValueError:
            logger.debug("Unparseable package.json at %s", path)
            return []
        if isinstance(data, dict):
            for section in ("dependencies", "devDependencies"):
                deps = data.get(section)
                if isinstance(deps, dict):
                    found.extend(deps)
    return list(dict.fromkeys(found))


def detect_frameworks(dependencies: Iterable[str]) -> list[str]:
    names = set()
    for dep in dependencies:
        dep = dep.lower()
        if dep.startswith("@"):
            dep = dep[1:].split("/", 1)[0]
        names.add(dep)
    return [
        label for key, label in FRAMEWORKS
        if any(dep == key or dep.startswith(key + "-") for dep in names)
    ]
