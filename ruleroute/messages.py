"""
ruleroute.messages — Pulls rule-matching context out of conversation history.

Two message shapes are understood:

  part-based   {"role": "user", "info": {"sessionID": ...},
                "parts": [{"type": "text", "text": ...},
                          {"type": "tool-invocation",
                           "toolInvocation": {"toolName": "read", "args": {...}}}]}

  transcript   Claude Code JSONL entries:
               {"type": "assistant", "sessionId": ...,
                "message": {"role": "assistant",
                            "content": [{"type": "tool_use", "name": "Read",
                                         "input": {"file_path": ...}}]}}

Paths come from tool-call arguments and from path-like tokens in text.
"""
import re
import sys
from dataclasses import dataclass
from typing import Iterable, Iterator

# Tools whose arguments name files or directories (lowercased tool name -> arg names)
PATH_ARG_TOOLS: dict[str, tuple[str, ...]] = {
    "read": ("filePath", "file_path"),
    "edit": ("filePath", "file_path"),
    "multiedit": ("filePath", "file_path"),
    "write": ("filePath", "file_path"),
    "notebookedit": ("notebook_path",),
    "glob": ("pattern", "path"),
    "grep": ("path",),
}
# Arguments holding glob patterns rather than paths
GLOB_PATTERN_ARGS = {"pattern"}
GLOB_CHARS = "*?[{"

DEFAULT_PATH_MAX_CHARS = 300

# Start of line, whitespace, quote, backtick or "(" then a token with at least one "/"
_TEXT_PATH = re.compile(r"""(?:^|[\s"'`(])((?:\.{0,2}/)?[\w./-]+/[\w./-]+(?:\.\w+)?)""", re.MULTILINE)
_TRAILING_PUNCT = re.compile(r'[.,!?:;]+$')
_CONTROL_CHARS = re.compile(r'[\x00-\x1f\x7f]')
_WINDOWS_DRIVE = re.compile(r'^[A-Za-z]:/')


@dataclass(frozen=True)
class TextPart:
    text: str
    synthetic: bool = False


@dataclass(frozen=True)
class ToolCall:
    name: str
    args: dict


# ============================================================================
# MESSAGE SHAPES
# ============================================================================

def message_role(message: dict) -> str:
    role = message.get("role")
    if not role and isinstance(message.get("message"), dict):
        role = message["message"].get("role")
    if not role and isinstance(message.get("info"), dict):
        role = message["info"].get("role")
    if not role:
        role = message.get("type", "")
    return role or ""


def iter_parts(message: dict) -> Iterator[TextPart | ToolCall]:
    """Yield text and tool-call parts of one message, whatever its shape."""
    if not isinstance(message, dict):
        return

    parts = message.get("parts")
    if isinstance(parts, list):
        for part in parts:
            if not isinstance(part, dict):
                continue
            part_type = part.get("type")
            if part_type == "text" and isinstance(part.get("text"), str):
                yield TextPart(part["text"], bool(part.get("synthetic")))
            elif part_type == "tool-invocation":
                invocation = part.get("toolInvocation") or {}
                name = invocation.get("toolName") or ""
                args = invocation.get("args") or {}
                if name and isinstance(args, dict):
                    yield ToolCall(name, args)
            elif part_type == "tool" and part.get("tool"):
                # Newer part-based hosts put args under state.input
                state = part.get("state") or {}
                args = state.get("input") or part.get("args") or {}
                if isinstance(args, dict):
                    yield ToolCall(part["tool"], args)
        return

    inner = message.get("message")
    content = inner.get("content") if isinstance(inner, dict) else message.get("content")
    if isinstance(content, str):
        yield TextPart(content)
    elif isinstance(content, list):
        for block in content:
            if not isinstance(block, dict):
                continue
            block_type = block.get("type")
            if block_type == "text" and isinstance(block.get("text"), str):
                yield TextPart(block["text"])
            elif block_type == "tool_use":
                name = block.get("name") or ""
                args = block.get("input") or {}
                if name and isinstance(args, dict):
                    yield ToolCall(name, args)


# ============================================================================
# PATH EXTRACTION
# ============================================================================

def extract_dir_from_glob(pattern: str) -> str | None:
    """
    Directory a glob pattern is rooted in.

      src/components/**/*.ts  -> src/components
      src/test*               -> src
      src/lib                 -> src/lib   (no wildcards: the pattern itself)
      **/*.ts, test*, /*.ts   -> None      (no usable directory)
    """
    first_glob = min((pattern.find(c) for c in GLOB_CHARS if c in pattern), default=-1)
    if first_glob == -1:
        stripped = pattern.rstrip("/")
        return stripped or None
    if first_glob == 0:
        return None
    before_glob = pattern[:first_glob]
    last_slash = before_glob.rfind("/")
    if last_slash <= 0:
        return None
    return before_glob[:last_slash]


def paths_from_tool_call(tool_name: str, args: dict) -> list[str]:
    """Path-bearing arguments of one tool call, in argument order."""
    arg_names = PATH_ARG_TOOLS.get((tool_name or "").lower())
    if not arg_names or not isinstance(args, dict):
        return []

    paths = []
    for arg_name in arg_names:
        value = args.get(arg_name)
        if not isinstance(value, str) or not value:
            continue
        if arg_name in GLOB_PATTERN_ARGS:
            dir_part = extract_dir_from_glob(value)
            if dir_part:
                paths.append(dir_part)
        else:
            paths.append(value)
    return paths


def extract_paths_from_text(text: str) -> list[str]:
    """Path-like tokens in free text (URLs and emails skipped)."""
    found = []
    for match in _TEXT_PATH.finditer(text or ""):
        candidate = _TRAILING_PUNCT.sub("", match.group(1))
        if "://" in candidate or candidate.startswith("http") or "@" in candidate:
            continue
        if not candidate.replace("/", "").replace(".", ""):
            continue
        found.append(candidate)
    return found


def extract_paths_from_messages(messages: Iterable[dict]) -> list[str]:
    """Deduplicated paths from tool calls and text across all messages."""
    seen: dict[str, None] = {}
    for message in messages or []:
        for part in iter_parts(message):
            if isinstance(part, ToolCall):
                found = paths_from_tool_call(part.name, part.args)
            else:
                found = extract_paths_from_text(part.text)
            for path in found:
                seen.setdefault(path, None)
    return list(seen)


# ============================================================================
# PROMPT & SESSION
# ============================================================================

def strip_notifications(prompt: str) -> str:
    """Strip <task-notification> and <system-reminder> XML from prompt."""
    cleaned = re.sub(r'<task-notification>.*?</task-notification>', '', prompt, flags=re.DOTALL)
    cleaned = re.sub(r'<system-reminder>.*?</system-reminder>', '', cleaned, flags=re.DOTALL)
    return cleaned.strip()


def extract_latest_user_prompt(messages: list[dict]) -> str | None:
    """Text of the newest user message that has real (non-synthetic) text."""
    for message in reversed(messages or []):
        if not isinstance(message, dict):
            continue
        role = message_role(message)
        if role and role != "user":
            continue
        texts = [
            part.text for part in iter_parts(message)
            if isinstance(part, TextPart) and not part.synthetic and part.text.strip()
        ]
        if not texts:
            continue
        prompt = strip_notifications("\n".join(texts))
        if prompt:
            return prompt
    return None


def extract_session_id(messages: list[dict]) -> str | None:
    for message in messages or []:
        if not isinstance(message, dict):
            continue
        info = message.get("info")
        if isinstance(info, dict) and info.get("sessionID"):
            return str(info["sessionID"])
        for key in ("sessionID", "sessionId", "session_id"):
            if message.get(key):
                return str(message[key])
    return None


# ============================================================================
# NORMALIZATION & SANITIZING
# ============================================================================

def _is_absolute(path: str) -> bool:
    return path.startswith("/") or bool(_WINDOWS_DRIVE.match(path))


def normalize_context_path(path: str, project_root: str | None = None) -> str:
    """
    Make an absolute path under project_root root-relative with "/" separators.
    Anything else (relative, outside the root, no root) is returned unchanged.
    """
    if not path or not project_root:
        return path

    candidate = path.replace("\\", "/")
    root = str(project_root).replace("\\", "/").rstrip("/")
    if not root or not _is_absolute(candidate):
        return path

    cmp_candidate, cmp_root = candidate, root
    if sys.platform == "win32":
        cmp_candidate, cmp_root = candidate.lower(), root.lower()

    if cmp_candidate == cmp_root:
        return "."
    if cmp_candidate.startswith(cmp_root + "/"):
        return candidate[len(root) + 1:].lstrip("/") or "."
    return path


def sanitize_path_for_context(path: str, max_chars: int = DEFAULT_PATH_MAX_CHARS) -> str:
    """Replace control characters with spaces and truncate for model-visible text."""
    return _CONTROL_CHARS.sub(" ", path)[:max_chars]
