"""
ruleroute - Conditional project rules for AI coding assistants

Injects only the rules that matter for the current turn.
Rules are markdown files with optional conditions:

- globs: apply when the session has touched a matching file
- keywords: apply when the prompt mentions a keyword
- neither: always apply

Tracked files survive context compaction, so file-scoped rules keep
firing after the conversation history is summarized.

Quick start:
    pip install ruleroute
    mkdir -p .claude/rules
    ruleroute rules
"""

__version__ = "0.1.0"
__all__ = [
    "__version__",
    "ContextCoordinator",
    "Rule",
    "RuleStore",
    "SessionContext",
    "SessionRegistry",
    "matches",
]

from ruleroute.coordinator import ContextCoordinator  # noqa: F401
from ruleroute.matcher import matches  # noqa: F401
from ruleroute.rules import Rule, RuleStore  # noqa: F401
from ruleroute.session import SessionContext, SessionRegistry  # noqa: F401
