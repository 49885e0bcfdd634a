"""
ruleroute.config — Settings resolution.

Priority (later wins):
  1. Built-in defaults
  2. First JSON config found: <project>/.claude/ruleroute.json, ~/.claude/ruleroute.json
  3. RULEROUTE_* environment variables

Invalid values are reported on stderr and the previous value is kept.
"""
import json
import os
from dataclasses import dataclass, field
from pathlib import Path

from ruleroute.log import debug, warn

# ============================================================================
# DEFAULTS
# ============================================================================

DEFAULT_MAX_SESSIONS = 100          # Session registry capacity
DEFAULT_COMPACTION_LIMIT = 20       # Paths listed in a compaction snapshot
DEFAULT_PATH_MAX_CHARS = 300        # Per-path cap when echoed into model-visible text

CLAUDE_HOME = Path.home() / ".claude"
GLOBAL_RULES_DIR = CLAUDE_HOME / "rules"
PROJECT_RULES_DIR = Path(".claude") / "rules"
STATE_FILE = CLAUDE_HOME / "ruleroute" / "sessions.json"
LOG_FILE = CLAUDE_HOME / "ruleroute.log"
CONFIG_NAME = "ruleroute.json"

# env var -> (settings attribute, converter)
_INT_ENV = {
    "RULEROUTE_MAX_SESSIONS": "max_sessions",
    "RULEROUTE_COMPACTION_LIMIT": "compaction_limit",
    "RULEROUTE_PATH_MAX_CHARS": "path_max_chars",
}


@dataclass
class Settings:
    max_sessions: int = DEFAULT_MAX_SESSIONS
    compaction_limit: int = DEFAULT_COMPACTION_LIMIT
    path_max_chars: int = DEFAULT_PATH_MAX_CHARS
    rule_dirs: list[Path] = field(default_factory=list)
    state_file: Path = STATE_FILE
    log_file: Path = LOG_FILE


def _positive_int(value, name: str) -> int | None:
    try:
        number = int(value)
    except (TypeError, ValueError):
        warn(f"{name}={value!r} is not an integer, ignoring")
        return None
    if number < 1:
        warn(f"{name}={number} must be >= 1, ignoring")
        return None
    return number


def config_paths(project_root: Path | None) -> list[Path]:
    paths = []
    if project_root is not None:
        paths.append(Path(project_root) / ".claude" / CONFIG_NAME)
    paths.append(CLAUDE_HOME / CONFIG_NAME)
    return paths


def load_config_file(project_root: Path | None = None) -> dict:
    """Return the first readable JSON config, or {} if none."""
    for config_path in config_paths(project_root):
        if not config_path.exists():
            continue
        try:
            data = json.loads(config_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            warn(f"Failed to load {config_path}: {e}")
            continue
        if isinstance(data, dict):
            debug(f"Loaded config from {config_path}")
            return data
        warn(f"{config_path} must contain a JSON object")
    return {}


def load_settings(project_root: Path | None = None) -> Settings:
    """Resolve settings for a project (None = no project-local lookups)."""
    settings = Settings()
    root = Path(project_root) if project_root is not None else None

    # --- Config file ---
    data = load_config_file(root)
    for key in ("max_sessions", "compaction_limit", "path_max_chars"):
        if key in data:
            value = _positive_int(data[key], key)
            if value is not None:
                setattr(settings, key, value)
    if data.get("state_file"):
        settings.state_file = Path(data["state_file"]).expanduser()
    if data.get("log_file"):
        settings.log_file = Path(data["log_file"]).expanduser()
    extra_dirs = data.get("rule_dirs", [])
    if isinstance(extra_dirs, str):
        extra_dirs = [extra_dirs]

    # --- Environment ---
    for env_var, attr in _INT_ENV.items():
        raw = os.environ.get(env_var)
        if raw:
            value = _positive_int(raw, env_var)
            if value is not None:
                setattr(settings, attr, value)
    if env_state := os.environ.get("RULEROUTE_STATE_FILE"):
        settings.state_file = Path(env_state).expanduser()
    if env_log := os.environ.get("RULEROUTE_LOG_FILE"):
        settings.log_file = Path(env_log).expanduser()

    global_dir = GLOBAL_RULES_DIR
    if env_global := os.environ.get("RULEROUTE_GLOBAL_RULES"):
        global_dir = Path(env_global).expanduser()

    rule_dirs = [global_dir]
    if root is not None:
        rule_dirs.append(root / PROJECT_RULES_DIR)
    rule_dirs.extend(Path(d).expanduser() for d in extra_dirs if d)
    if env_rules := os.environ.get("RULEROUTE_RULES_DIR"):
        rule_dirs.append(Path(env_rules).expanduser())
    settings.rule_dirs = rule_dirs

    return settings
