#!/usr/bin/env python3
"""
ruleroute.hook — Claude Code hook entry point

One command serves every hook event; ``hook_event_name`` picks the handler.

  SessionStart       register the session
  UserPromptSubmit   seed from the transcript on first sight, record the prompt,
                     print the applicable rules (stdout becomes added context)
  PostToolUse        track file paths from Read/Edit/Write/Glob/Grep arguments
  PreCompact         print the tracked-files block for the summary

Input: JSON from stdin {"hook_event_name": ..., "session_id": ..., "cwd": ..., ...}
Session state persists between hook processes in settings.state_file; each
event loads, changes and saves it while holding an exclusive lock.
The exit status is always 0: a failing hook must never block the turn.
"""
import json
import sys
from pathlib import Path

from ruleroute.config import Settings, load_settings
from ruleroute.coordinator import ContextCoordinator
from ruleroute.log import append_log_line, debug, warn, windows_utf8_io
from ruleroute.rules import RuleStore
from ruleroute.session import SessionRegistry, state_lock

# Transcripts can be large; seeding reads at most this much from the end
TRANSCRIPT_MAX_BYTES = 2_000_000


def parse_stdin() -> dict:
    """Parse hook stdin JSON."""
    try:
        data = json.loads(sys.stdin.read() or "{}")
        return data if isinstance(data, dict) else {}
    except (json.JSONDecodeError, ValueError):
        return {}


def resolve_transcript_path(raw_path: str) -> Path:
    """Resolve transcript path, handling ~ expansion on Windows."""
    if not raw_path:
        return Path("")
    if raw_path.startswith("~"):
        raw_path = str(Path.home()) + raw_path[1:]
    return Path(raw_path)


def load_transcript(transcript_path: str, max_bytes: int = TRANSCRIPT_MAX_BYTES) -> list[dict]:
    """Read transcript JSONL entries (tail only for huge files)."""
    resolved = resolve_transcript_path(transcript_path)
    if not resolved.name or not resolved.exists():
        return []

    entries = []
    try:
        file_size = resolved.stat().st_size
        with open(resolved, encoding='utf-8', errors='replace') as f:
            if file_size > max_bytes:
                f.seek(max(0, file_size - max_bytes))
                f.readline()  # Skip partial line
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    entry = json.loads(line)
                except json.JSONDecodeError:
                    continue
                if isinstance(entry, dict):
                    entries.append(entry)
    except OSError as e:
        warn(f"Failed to read transcript {resolved}: {e}")
    return entries


def build_coordinator(settings: Settings, project_root: str | None) -> ContextCoordinator:
    registry = SessionRegistry.load(settings.state_file, capacity=settings.max_sessions)
    store = RuleStore(settings.rule_dirs)
    return ContextCoordinator(store, registry=registry, project_root=project_root, settings=settings)


HANDLED_EVENTS = ("SessionStart", "UserPromptSubmit", "PostToolUse", "PreCompact")


def dispatch_event(
    coordinator: ContextCoordinator,
    event: str,
    session_id: str,
    hook_input: dict,
    settings: Settings,
) -> str:
    """Apply one hook event to the coordinator; returns the text to print."""
    output = ""

    if event == "SessionStart":
        coordinator.registry.upsert(session_id)

    elif event == "UserPromptSubmit":
        messages = []
        if coordinator.needs_seed(session_id):
            messages = load_transcript(hook_input.get("transcript_path", ""))
        coordinator.on_turn_start(session_id, messages)
        coordinator.on_user_message(session_id, hook_input.get("prompt", ""))
        output = coordinator.compute_injected_text(session_id)

        state = coordinator.registry.get(session_id)
        append_log_line(
            settings.log_file,
            f"session={session_id[:12]} paths={len(state.paths) if state else 0} "
            f"chars={len(output)} injected={'yes' if output else 'no'}",
        )

    elif event == "PostToolUse":
        coordinator.on_tool_observed(
            session_id,
            hook_input.get("tool_name", ""),
            hook_input.get("tool_input") or {},
        )

    elif event == "PreCompact":
        collected: list[str] = []
        coordinator.on_compacting(session_id, collected)
        output = "\n\n".join(collected)

    return output


def handle_event(hook_input: dict, settings: Settings | None = None) -> str:
    """Dispatch one hook event; returns the text to print (may be "")."""
    event = hook_input.get("hook_event_name", "")
    session_id = hook_input.get("session_id") or None
    if not session_id:
        debug(f"{event or 'hook'} without session_id, ignoring")
        return ""
    if event not in HANDLED_EVENTS:
        debug(f"Unhandled hook event: {event!r}")
        return ""

    project_root = hook_input.get("cwd") or str(Path.cwd())
    settings = settings or load_settings(Path(project_root))

    # One lock spans load, change and save
    with state_lock(settings.state_file):
        coordinator = build_coordinator(settings, project_root)
        output = dispatch_event(coordinator, event, session_id, hook_input, settings)
        try:
            coordinator.registry.save(settings.state_file)
        except OSError as e:
            warn(f"Failed to save session state: {e}")
    return output


def main() -> int:
    """
    Main entry point for Claude Code hooks.
    Reads JSON from stdin, prints any output to stdout.
    """
    windows_utf8_io()
    hook_input = parse_stdin()
    try:
        output = handle_event(hook_input)
    except Exception as e:
        warn(f"Hook failed: {e}")  # Never fail the hook
        return 0
    if output:
        print(output)
    return 0


if __name__ == "__main__":
    sys.exit(main())
