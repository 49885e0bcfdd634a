#!/usr/bin/env python3
"""
ruleroute CLI - Unified command-line interface

Usage:
    ruleroute rules [--project DIR]             List discovered rules and their conditions
    ruleroute match [--path P ...] [--prompt T] Dry-run: which rules apply to this context
    ruleroute sessions                          Show tracked sessions
    ruleroute hook                              Run as a Claude Code hook (reads stdin)
    ruleroute version                           Show version information
"""

import argparse
import sys
from pathlib import Path


def _settings(args):
    from ruleroute.config import load_settings
    project = Path(args.project).resolve() if getattr(args, "project", None) else Path.cwd()
    return project, load_settings(project)


def cmd_rules(args):
    """List discovered rules and their conditions."""
    from ruleroute.rules import RuleStore

    _, settings = _settings(args)
    rules = RuleStore(settings.rule_dirs).load()

    print("Rule directories:")
    for d in settings.rule_dirs:
        print(f"  {d}{'' if d.is_dir() else '  (missing)'}")
    print()

    if not rules:
        print("No rules found.")
        return

    print(f"{len(rules)} rule(s):")
    for rule in rules:
        if not rule.is_conditional:
            print(f"  {rule.id}  [always]")
            continue
        conditions = []
        if rule.globs:
            conditions.append(f"globs: {', '.join(rule.globs)}")
        if rule.keywords:
            conditions.append(f"keywords: {', '.join(rule.keywords)}")
        print(f"  {rule.id}  [{' | '.join(conditions)}]")


def cmd_match(args):
    """Show which rules apply to the given paths and prompt."""
    from ruleroute.coordinator import format_rules
    from ruleroute.matcher import explain
    from ruleroute.messages import normalize_context_path
    from ruleroute.rules import RuleStore
    from ruleroute.session import SessionContext

    project, settings = _settings(args)
    rules = RuleStore(settings.rule_dirs).load()
    paths = [normalize_context_path(p, str(project)) for p in (args.path or [])]
    context = SessionContext(paths=paths, prompt=args.prompt or None)

    selected = []
    for rule in rules:
        result = explain(rule, context)
        if not result.conditional:
            reason = "always"
        elif result.applies:
            reason = ", ".join(k for k, hit in (("globs", result.globs), ("keywords", result.keywords)) if hit)
        else:
            reason = "-"
        print(f"  {'+' if result.applies else ' '} {rule.id}  ({reason})")
        if result.applies:
            selected.append(rule)

    if args.show:
        text = format_rules(selected)
        print()
        print(text if text else "(nothing injected)")


def cmd_sessions(args):
    """Show sessions tracked in the state file."""
    from ruleroute.session import SessionRegistry

    _, settings = _settings(args)
    registry = SessionRegistry.load(settings.state_file, capacity=settings.max_sessions)

    print(f"State file: {settings.state_file}")
    print(f"Sessions: {len(registry)}/{registry.capacity}")
    for sid in registry.session_ids():
        state = registry.get(sid)
        prompt = (state.last_prompt or "").replace("\n", " ")
        if len(prompt) > 50:
            prompt = prompt[:47] + "..."
        print(f"  {sid}  phase={state.phase.value} paths={len(state.paths)} "
              f"seeds={state.seed_count} compactions={state.compactions}  {prompt!r}")
        if args.verbose:
            for p in sorted(state.paths):
                print(f"      {p}")


def cmd_hook(args):
    """Run the Claude Code hook (reads JSON from stdin)."""
    from ruleroute.hook import main as hook_main
    hook_main()


def cmd_version(args):
    """Show version information."""
    from ruleroute import __version__
    print(f"ruleroute version {__version__}")


def main(argv=None):
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="ruleroute",
        description="Conditional project rules for Claude Code",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  ruleroute rules                                  List rules for this project
  ruleroute match --path src/app.ts --show         Preview what gets injected
  ruleroute match --prompt "add a test"            Check keyword rules
  ruleroute sessions -v                            Inspect tracked files per session
        """
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # rules command
    rules_parser = subparsers.add_parser("rules", help="List discovered rules")
    rules_parser.add_argument("--project", type=str, help="Project root (default: current directory)")

    # match command
    match_parser = subparsers.add_parser("match", help="Dry-run rule matching")
    match_parser.add_argument("--path", action="append", help="Context path (repeatable)")
    match_parser.add_argument("--prompt", type=str, help="User prompt text")
    match_parser.add_argument("--project", type=str, help="Project root (default: current directory)")
    match_parser.add_argument("--show", action="store_true", help="Print the injected text")

    # sessions command
    sessions_parser = subparsers.add_parser("sessions", help="Show tracked sessions")
    sessions_parser.add_argument("--project", type=str, help="Project root (default: current directory)")
    sessions_parser.add_argument("-v", "--verbose", action="store_true", help="List tracked paths")

    # hook command
    subparsers.add_parser("hook", help="Run as a Claude Code hook")

    # version command
    subparsers.add_parser("version", help="Show version information")

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    # Dispatch to command handlers
    commands = {
        "rules": cmd_rules,
        "match": cmd_match,
        "sessions": cmd_sessions,
        "hook": cmd_hook,
        "version": cmd_version,
    }

    handler = commands.get(args.command)
    try:
        handler(args)
    except KeyboardInterrupt:
        print("\nAborted.")
        return 1
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
