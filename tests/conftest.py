"""Pytest configuration and fixtures for ruleroute tests."""

import pytest


@pytest.fixture(autouse=True)
def isolated_home(tmp_path, monkeypatch):
    """Keep tests away from the real ~/.claude and RULEROUTE_* settings."""
    import ruleroute.config as config

    home = tmp_path / "home" / ".claude"
    home.mkdir(parents=True)
    for var in ("RULEROUTE_MAX_SESSIONS", "RULEROUTE_COMPACTION_LIMIT", "RULEROUTE_PATH_MAX_CHARS",
                "RULEROUTE_RULES_DIR", "RULEROUTE_DEBUG"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setattr(config, "CLAUDE_HOME", home)
    monkeypatch.setenv("RULEROUTE_GLOBAL_RULES", str(home / "rules"))
    monkeypatch.setenv("RULEROUTE_STATE_FILE", str(home / "ruleroute" / "sessions.json"))
    monkeypatch.setenv("RULEROUTE_LOG_FILE", str(home / "ruleroute.log"))
    return home


@pytest.fixture
def project(tmp_path):
    """A project with a .claude/rules directory of sample rules."""
    root = tmp_path / "project"
    rules = root / ".claude" / "rules"
    (rules / "lang").mkdir(parents=True)
    (rules / ".drafts").mkdir()

    (rules / "general.md").write_text("Always write clear commit messages.\n")
    (rules / "lang" / "typescript.mdc").write_text(
        "---\n"
        "globs:\n"
        '  - "src/**/*.ts"\n'
        '  - "lib/**/*.js"\n'
        "---\n"
        "\n"
        "Use strict TypeScript.\n"
    )
    (rules / "testing.md").write_text(
        "---\n"
        "keywords: [testing, coverage]\n"
        "---\n"
        "Prefer pytest fixtures over setup methods.\n"
    )
    (rules / ".hidden.md").write_text("Should never load.\n")
    (rules / ".drafts" / "draft.md").write_text("Should never load either.\n")
    (rules / "notes.txt").write_text("Not a rule file.\n")
    (root / "src").mkdir()
    return root


@pytest.fixture
def sample_messages():
    """Part-based history with tool calls and free text."""
    return [
        {
            "role": "user",
            "info": {"sessionID": "ses_1"},
            "parts": [{"type": "text", "text": "Look at src/app.ts and fix it."}],
        },
        {
            "role": "assistant",
            "parts": [
                {
                    "type": "tool-invocation",
                    "toolInvocation": {"toolName": "read", "args": {"filePath": "src/utils/format.ts"}},
                },
                {
                    "type": "tool-invocation",
                    "toolInvocation": {"toolName": "glob", "args": {"pattern": "lib/helpers/**/*.js"}},
                },
            ],
        },
        {
            "role": "user",
            "parts": [
                {"type": "text", "text": "older synthetic note", "synthetic": True},
                {"type": "text", "text": "now add testing for it"},
            ],
        },
    ]
