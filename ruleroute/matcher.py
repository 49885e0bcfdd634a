"""
ruleroute.matcher — Decides whether a rule applies to the current turn.

A rule with no conditions always applies. Otherwise it applies when ANY of
its conditions hold (OR, never AND):

  globs     some tracked path matches some pattern
  keywords  the latest prompt contains a keyword at a left word boundary
            (an -ing/-ed keyword also accepts its stem of 4+ letters)

Glob syntax:
  *       any run of characters inside one path segment
  **      zero or more whole segments
  ?       exactly one character
  [abc]   character class
  {a,b}   alternation (may nest)
  A pattern (or brace alternative) without "/" is also tried against the
  path's base name.

Wildcards never match a leading "." in a segment, so dotfiles need an
explicit ".": "*.env" does not match ".env", ".*" does.

Nothing in this module raises: a pattern or keyword that cannot be
evaluated simply does not match.
"""
import fnmatch
import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Iterable

from ruleroute.rules import Rule
from ruleroute.session import SessionContext

MAX_BRACE_EXPANSIONS = 256

# Keyword inflections that also match their stem ("testing" -> "test")
INFLECTION_SUFFIXES = ("ing", "ed")
MIN_STEM_LENGTH = 4


class MalformedPattern(ValueError):
    """A glob pattern or keyword that cannot be evaluated."""


@dataclass(frozen=True)
class MatchResult:
    conditional: bool
    globs: bool = False
    keywords: bool = False

    @property
    def applies(self) -> bool:
        return not self.conditional or self.globs or self.keywords


# ============================================================================
# GLOBS
# ============================================================================

def _split_alternatives(body: str) -> list[str]:
    """Split brace contents on top-level commas."""
    options = []
    depth = 0
    start = 0
    for idx, ch in enumerate(body):
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
        elif ch == "," and depth == 0:
            options.append(body[start:idx])
            start = idx + 1
    options.append(body[start:])
    return options


def expand_braces(pattern: str) -> list[str]:
    """
    Expand {a,b} alternation into plain patterns.

    Braces without a top-level comma, or without a partner, stay literal.
    Raises MalformedPattern past MAX_BRACE_EXPANSIONS results.
    """
    depth = 0
    start = -1
    for idx, ch in enumerate(pattern):
        if ch == "{":
            if depth == 0:
                start = idx
            depth += 1
        elif ch == "}" and depth:
            depth -= 1
            if depth:
                continue
            options = _split_alternatives(pattern[start + 1:idx])
            if len(options) < 2:
                continue
            prefix, suffix = pattern[:start], pattern[idx + 1:]
            expanded = []
            for option in options:
                expanded.extend(expand_braces(prefix + option + suffix))
                if len(expanded) > MAX_BRACE_EXPANSIONS:
                    raise MalformedPattern(f"too many brace alternatives: {pattern}")
            return expanded
    return [pattern]


def _strip_dot_slash(value: str) -> str:
    while value.startswith("./"):
        value = value[2:]
    return value


def _segments(value: str) -> tuple[str, ...]:
    value = _strip_dot_slash(value.replace("\\", "/"))
    if len(value) > 1:
        value = value.rstrip("/")
    return tuple(value.split("/"))


@lru_cache(maxsize=1024)
def _compile_glob(pattern: str) -> tuple[tuple[tuple[str, ...], bool], ...]:
    """Return (segments, base-name mode) for every brace alternative."""
    if not pattern or not pattern.strip():
        raise MalformedPattern("empty pattern")
    return tuple(
        (_segments(alternative), "/" not in alternative)
        for alternative in expand_braces(pattern.strip())
    )


def _match_segment(pattern: str, name: str) -> bool:
    if name.startswith(".") and not pattern.startswith("."):
        return False
    return fnmatch.fnmatchcase(name, pattern)


def _match_segments(pattern: tuple[str, ...], parts: tuple[str, ...]) -> bool:
    @lru_cache(maxsize=None)
    def match_from(i: int, j: int) -> bool:
        if i == len(pattern):
            return j == len(parts)
        segment = pattern[i]
        if segment == "**":
            # Zero segments, or swallow one non-hidden segment and retry
            if match_from(i + 1, j):
                return True
            return j < len(parts) and not parts[j].startswith(".") and match_from(i, j + 1)
        if j == len(parts):
            return False
        return _match_segment(segment, parts[j]) and match_from(i + 1, j + 1)

    return match_from(0, 0)


def glob_matches(path: str, pattern: str) -> bool:
    """Check one path against one pattern. Malformed patterns never match."""
    if not isinstance(path, str) or not path or not isinstance(pattern, str):
        return False
    try:
        parts = _segments(path)
        for segments, base_name_mode in _compile_glob(pattern):
            if _match_segments(segments, parts):
                return True
            if base_name_mode and len(parts) > 1 and _match_segments(segments, parts[-1:]):
                return True
    except (MalformedPattern, re.error, RecursionError):
        return False
    return False


def path_matches_globs(path: str, globs: Iterable[str]) -> bool:
    return any(glob_matches(path, pattern) for pattern in globs)


# ============================================================================
# KEYWORDS
# ============================================================================

def keyword_stem(keyword: str) -> str | None:
    """'testing' -> 'test', 'deployed' -> 'deploy'; None when no safe stem exists."""
    lowered = keyword.lower()
    for suffix in INFLECTION_SUFFIXES:
        if lowered.endswith(suffix) and len(keyword) - len(suffix) >= MIN_STEM_LENGTH:
            return keyword[:-len(suffix)]
    return None


@lru_cache(maxsize=1024)
def _keyword_regex(keyword: str) -> re.Pattern:
    if not isinstance(keyword, str) or not keyword.strip():
        raise MalformedPattern(f"empty keyword: {keyword!r}")
    keyword = keyword.strip()
    # Boundary on the left only: "test" matches "testing" but not "contest".
    # An inflected keyword also accepts its stem: "testing" matches "a test".
    alternatives = [re.escape(keyword)]
    stem = keyword_stem(keyword)
    if stem:
        alternatives.append(re.escape(stem))
    return re.compile(r'\b(?:' + '|'.join(alternatives) + ')', re.IGNORECASE)


def prompt_matches_keywords(prompt: str, keywords: Iterable[str]) -> bool:
    if not prompt or not isinstance(prompt, str):
        return False
    for keyword in keywords:
        try:
            if _keyword_regex(keyword).search(prompt):
                return True
        except (MalformedPattern, re.error, TypeError):
            continue
    return False


# ============================================================================
# RULES
# ============================================================================

def explain(rule: Rule, context: SessionContext) -> MatchResult:
    """Evaluate both condition kinds separately."""
    if not rule.is_conditional:
        return MatchResult(conditional=False)

    globs_hit = False
    keywords_hit = False
    try:
        if rule.globs and context.paths:
            globs_hit = any(path_matches_globs(p, rule.globs) for p in context.paths)
    except Exception:
        globs_hit = False
    try:
        if rule.keywords and context.prompt:
            keywords_hit = prompt_matches_keywords(context.prompt, rule.keywords)
    except Exception:
        keywords_hit = False
    return MatchResult(conditional=True, globs=globs_hit, keywords=keywords_hit)


def matches(rule: Rule, context: SessionContext) -> bool:
    return explain(rule, context).applies
