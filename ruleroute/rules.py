"""
ruleroute.rules — Rule model, frontmatter parsing and rule stores.

A rule file is markdown with optional frontmatter:

    ---
    globs:
      - "src/**/*.ts"
    keywords: [testing, "code review"]
    ---

    Rule body...

Only ``globs`` and ``keywords`` are read. The parser understands scalar values,
inline lists and block lists; anything else in the frontmatter is ignored.
"""
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Sequence

from ruleroute.log import debug, warn

RULE_EXTENSIONS = (".md", ".mdc")
FRONTMATTER_MARKER = "---"
CONDITION_FIELDS = ("globs", "keywords")

_KEY_LINE = re.compile(r'^([A-Za-z_][\w-]*)\s*:\s*(.*)$')
_ITEM_LINE = re.compile(r'^\s*-\s*(.*)$')


# ============================================================================
# RULE MODEL
# ============================================================================

@dataclass(frozen=True)
class Rule:
    """One instruction document. Empty condition tuples mean 'no condition'."""

    id: str
    body: str
    globs: tuple[str, ...] = ()
    keywords: tuple[str, ...] = ()
    source: Path | None = None

    @property
    def is_conditional(self) -> bool:
        return bool(self.globs or self.keywords)

    @classmethod
    def from_dict(cls, data: dict) -> "Rule":
        """Build a rule from the store contract {id, globs?, keywords?, body}."""
        return cls(
            id=str(data["id"]),
            body=str(data.get("body") or ""),
            globs=_as_tuple(data.get("globs")),
            keywords=_as_tuple(data.get("keywords")),
        )


def _as_tuple(value) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        value = [value]
    return tuple(str(v) for v in value if v is not None and str(v).strip())


# ============================================================================
# FRONTMATTER
# ============================================================================

def split_frontmatter(content: str) -> tuple[str | None, str]:
    """
    Split content into (frontmatter, body).

    Frontmatter exists only when the first line is ``---`` and a later line is
    ``---`` too. Without it the whole content is the body, untouched.
    """
    text = content.lstrip("\ufeff")
    lines = text.splitlines(keepends=True)
    if not lines or lines[0].strip() != FRONTMATTER_MARKER:
        return None, content

    for idx in range(1, len(lines)):
        if lines[idx].strip() == FRONTMATTER_MARKER:
            frontmatter = "".join(lines[1:idx])
            body = "".join(lines[idx + 1:]).lstrip()
            return frontmatter, body
    return None, content


def _unquote(value: str) -> str:
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        return value[1:-1]
    return value


def _strip_comment(value: str) -> str:
    """Drop a trailing ' # comment' from an unquoted scalar."""
    if value[:1] in ("'", '"'):
        return value
    idx = value.find(" #")
    return value[:idx].rstrip() if idx != -1 else value


def _split_inline_list(inner: str) -> list[str]:
    """Split 'a, "b, c", {x,y}' on top-level commas (quotes and braces protect)."""
    items = []
    current = []
    quote = None
    depth = 0
    for ch in inner:
        if quote:
            current.append(ch)
            if ch == quote:
                quote = None
            continue
        if ch in ("'", '"'):
            quote = ch
        elif ch == "{":
            depth += 1
        elif ch == "}" and depth:
            depth -= 1
        elif ch == "," and depth == 0:
            items.append("".join(current))
            current = []
            continue
        current.append(ch)
    items.append("".join(current))
    return [_unquote(item) for item in items if _unquote(item)]


def parse_frontmatter(frontmatter: str) -> dict[str, list[str]]:
    """
    Parse the condition fields out of a frontmatter block.

    Returns a dict holding only the keys that were present (possibly with an
    empty list, e.g. ``globs: []``).
    """
    result: dict[str, list[str]] = {}
    current_key = None

    for raw_line in frontmatter.splitlines():
        line = raw_line.rstrip()
        if not line.strip() or line.lstrip().startswith("#"):
            continue

        # Top-level key (no indentation)
        if not line[0].isspace() and not line.startswith("-"):
            match = _KEY_LINE.match(line)
            if not match:
                current_key = None
                continue
            key, value = match.group(1), match.group(2).strip()
            if key not in CONDITION_FIELDS:
                current_key = None
                continue

            if not value:
                # Block list follows
                result[key] = []
                current_key = key
            elif value.startswith("["):
                inner = value[1:]
                if inner.rstrip().endswith("]"):
                    inner = inner.rstrip()[:-1]
                result[key] = _split_inline_list(inner)
                current_key = None
            else:
                scalar = _unquote(_strip_comment(value))
                result[key] = [scalar] if scalar else []
                current_key = None
            continue

        # Block list item for the current key
        item = _ITEM_LINE.match(line)
        if item and current_key:
            value = _unquote(_strip_comment(item.group(1).strip()))
            if value:
                result[current_key].append(value)

    return result


def parse_rule(content: str, rule_id: str, source: Path | None = None) -> Rule:
    """Build a Rule from raw file content."""
    frontmatter, body = split_frontmatter(content)
    conditions = parse_frontmatter(frontmatter) if frontmatter is not None else {}
    return Rule(
        id=rule_id,
        body=body,
        globs=_as_tuple(conditions.get("globs")),
        keywords=_as_tuple(conditions.get("keywords")),
        source=source,
    )


# ============================================================================
# DISCOVERY
# ============================================================================

def discover_rule_files(directory: Path) -> list[Path]:
    """
    Recursively find .md/.mdc files under directory.

    Hidden files and anything inside hidden directories are skipped.
    A missing or unreadable directory yields an empty list.
    """
    directory = Path(directory)
    if not directory.is_dir():
        return []

    found = []
    try:
        for path in directory.rglob("*"):
            rel_parts = path.relative_to(directory).parts
            if any(part.startswith(".") for part in rel_parts):
                continue
            if path.suffix in RULE_EXTENSIONS and path.is_file():
                found.append(path)
    except OSError as e:
        warn(f"Failed to scan rules directory {directory}: {e}")
    return sorted(found)


# ============================================================================
# STORES
# ============================================================================

class RuleStore:
    """
    File-backed rule store over an ordered list of rules directories.

    Rules are read once and cached; call reload() to pick up edits.
    Rule ids are paths relative to their rules directory.
    """

    def __init__(self, directories: Iterable[Path]):
        self.directories = [Path(d) for d in directories]
        self._rules: list[Rule] | None = None

    def load(self) -> list[Rule]:
        if self._rules is None:
            self._rules = self._read_all()
        return self._rules

    def reload(self) -> list[Rule]:
        self._rules = None
        return self.load()

    def _read_all(self) -> list[Rule]:
        rules = []
        for directory in self.directories:
            for path in discover_rule_files(directory):
                rule_id = path.relative_to(directory).as_posix()
                try:
                    content = path.read_text(encoding="utf-8", errors="replace")
                except OSError as e:
                    warn(f"Failed to read rule file {path}: {e}")
                    continue
                rules.append(parse_rule(content, rule_id, source=path))
                debug(f"Discovered rule: {rule_id} ({path})")
        debug(f"Discovered {len(rules)} rule file(s)")
        return rules


class StaticRuleStore:
    """In-memory store over Rule objects or {id, globs?, keywords?, body} dicts."""

    def __init__(self, rules: Sequence):
        self._rules = [r if isinstance(r, Rule) else Rule.from_dict(r) for r in rules]

    def load(self) -> list[Rule]:
        return list(self._rules)
