"""
ruleroute.coordinator — When context is seeded, updated, consumed and published.

Host signals and what they do:

  on_turn_start      first call per session scans the whole history (seeding);
                     later calls only advance the phase
  on_tool_observed   adds the tool's path arguments to the session
  on_user_message    replaces the latest prompt, adds the paths it names and
                     stashes them as this turn's context
  on_compacting      appends a tracked-files block to the summary output

compute_injected_text() turns the session's context into the rules block that
gets injected. It never raises and returns "" when no rule applies.
"""
from pathlib import Path
from typing import Iterable

from ruleroute.config import DEFAULT_COMPACTION_LIMIT, DEFAULT_PATH_MAX_CHARS, Settings
from ruleroute.log import debug, warn
from ruleroute.matcher import explain
from ruleroute.messages import (
    extract_latest_user_prompt,
    extract_paths_from_messages,
    extract_paths_from_text,
    normalize_context_path,
    paths_from_tool_call,
    sanitize_path_for_context,
    strip_notifications,
)
from ruleroute.rules import Rule
from ruleroute.session import (
    SessionContext,
    SessionRegistry,
    SessionState,
    begin_compaction,
    begin_turn,
)

RULES_HEADER = "# Project Rules\n\nPlease follow the following rules:\n\n"
SECTION_DELIMITER = "\n\n---\n\n"
COMPACTION_HEADER = "## Rule context: tracked files"
COMPACTION_INTRO = (
    "Files referenced earlier in this session. "
    "Keep them in the summary so file-scoped project rules stay active:"
)


def format_rules(rules: Iterable[Rule]) -> str:
    """Header plus one '## <id>' section per rule; "" for no rules."""
    sections = [f"## {rule.id}\n\n{rule.body.strip()}" for rule in rules]
    if not sections:
        return ""
    return RULES_HEADER + SECTION_DELIMITER.join(sections)


def format_compaction_block(
    paths: Iterable[str],
    limit: int = DEFAULT_COMPACTION_LIMIT,
    max_chars: int = DEFAULT_PATH_MAX_CHARS,
) -> str:
    """Sorted, capped, sanitized list of tracked paths; "" when empty."""
    snapshot = sorted(set(p for p in paths if p))
    if not snapshot:
        return ""
    shown = snapshot[:limit]
    lines = [COMPACTION_HEADER, COMPACTION_INTRO]
    lines.extend(f"- {sanitize_path_for_context(p, max_chars)}" for p in shown)
    hidden = len(snapshot) - len(shown)
    if hidden > 0:
        lines.append(f"- ... (+{hidden} more)")
    return "\n".join(lines)


class ContextCoordinator:
    """
    Connects host events to the session registry and the matching engine.

    Args:
        store: anything with load() -> list[Rule]
        registry: session registry (a fresh one sized by settings if omitted)
        project_root: absolute paths under this root are tracked root-relative
        settings: limits; defaults when omitted
    """

    def __init__(
        self,
        store,
        registry: SessionRegistry | None = None,
        project_root: str | Path | None = None,
        settings: Settings | None = None,
    ):
        self.store = store
        self.settings = settings or Settings()
        self.registry = registry or SessionRegistry(capacity=self.settings.max_sessions)
        self.project_root = str(project_root) if project_root else None

    def normalize(self, path: str) -> str:
        return normalize_context_path(path, self.project_root)

    # ------------------------------------------------------------------
    # Lifecycle signals
    # ------------------------------------------------------------------

    def needs_seed(self, session_id: str | None) -> bool:
        if not session_id:
            return False
        state = self.registry.get(session_id)
        return state is None or begin_turn(state.phase)[1]

    def on_turn_start(self, session_id: str | None, messages: list[dict]) -> None:
        if not session_id:
            debug("turn start without session id, skipping")
            return

        def mutate(state: SessionState) -> None:
            next_phase, needs_seed = begin_turn(state.phase)
            if needs_seed:
                paths = extract_paths_from_messages(messages)
                state.paths.update(self.normalize(p) for p in paths)
                prompt = extract_latest_user_prompt(messages)
                if prompt:
                    state.last_prompt = prompt
                state.seed_count += 1
                debug(f"Seeded session {session_id}: {len(paths)} path(s) from {len(messages or [])} message(s)")
            state.phase = next_phase

        self.registry.upsert(session_id, mutate)

    def on_tool_observed(self, session_id: str | None, tool_name: str, args: dict) -> None:
        if not session_id:
            return
        paths = [self.normalize(p) for p in paths_from_tool_call(tool_name, args)]
        if not paths:
            return
        self.registry.upsert(session_id, lambda state: state.paths.update(paths))
        debug(f"Tracked {tool_name}: {', '.join(paths)}")

    def on_user_message(self, session_id: str | None, text: str) -> None:
        if not session_id or not text:
            return
        prompt = strip_notifications(text)
        if not prompt:
            return
        mentioned = [self.normalize(p) for p in extract_paths_from_text(prompt)]

        def mutate(state: SessionState) -> None:
            state.last_prompt = prompt
            state.paths.update(mentioned)

        self.registry.upsert(session_id, mutate)
        self.registry.stash_context(session_id, SessionContext(paths=mentioned, prompt=prompt))

    def on_compacting(self, session_id: str | None, output: list[str]) -> str | None:
        """Append the tracked-files block to output; returns it (or None)."""
        if not session_id:
            return None
        state = self.registry.get(session_id)
        if state is None:
            debug(f"compaction for unknown session {session_id}")
            return None

        block = format_compaction_block(
            state.paths,
            limit=self.settings.compaction_limit,
            max_chars=self.settings.path_max_chars,
        )

        def mutate(s: SessionState) -> None:
            s.phase = begin_compaction(s.phase)
            s.compactions += 1

        self.registry.upsert(session_id, mutate)
        if not block:
            return None
        output.append(block)
        debug(f"Published {len(state.paths)} tracked path(s) for compaction")
        return block

    # ------------------------------------------------------------------
    # Consumption
    # ------------------------------------------------------------------

    def build_context(self, session_id: str, messages: list[dict] | None = None) -> SessionContext:
        """Merge durable state, the stashed turn context and optional messages."""
        state = self.registry.get(session_id)
        transient = self.registry.take_context(session_id)

        paths: dict[str, None] = {}
        if state is not None:
            for p in sorted(state.paths):
                paths.setdefault(p, None)
        if transient is not None:
            for p in transient.paths:
                paths.setdefault(p, None)

        prompt = transient.prompt if transient is not None and transient.prompt else None
        if messages:
            for p in extract_paths_from_messages(messages):
                paths.setdefault(self.normalize(p), None)
            prompt = prompt or extract_latest_user_prompt(messages)
        if prompt is None and state is not None:
            prompt = state.last_prompt

        return SessionContext(paths=list(paths), prompt=prompt)

    def select_rules(self, rules: list[Rule], context: SessionContext) -> list[Rule]:
        selected = []
        for rule in rules:
            result = explain(rule, context)
            if not result.applies:
                debug(f"Skipping conditional rule: {rule.id} (no matching paths or keywords)")
                continue
            if result.conditional:
                debug(f"Including conditional rule: {rule.id} (globs: {result.globs}, keywords: {result.keywords})")
            selected.append(rule)
        return selected

    def compute_injected_text(self, session_id: str | None, messages: list[dict] | None = None) -> str:
        if not session_id:
            debug("compute without session id, nothing injected")
            return ""
        try:
            context = self.build_context(session_id, messages)
            rules = self.store.load() or []
            if not rules:
                debug("No rules available")
                return ""
            selected = self.select_rules(rules, context)
            if not selected:
                debug("No applicable rules for current context")
            return format_rules(selected)
        except Exception as e:
            warn(f"Rule injection failed for session {session_id}: {e}")
            return ""
