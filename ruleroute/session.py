"""
ruleroute.session — Per-session context tracking.

SessionRegistry holds one SessionState per session id:
  - paths touched or mentioned during the session (union, never shrinks)
  - the latest user prompt (replaced, not appended)
  - a recency tick used for eviction
  - the lifecycle phase

Phases:
  UNSEEDED ──turn──▶ SEEDED ──compaction──▶ COMPACTING ──turn──▶ SEEDED
Only the UNSEEDED ▶ SEEDED step scans history; see begin_turn().

The registry is bounded: when it grows past capacity the entry with the
smallest tick is evicted. It is an ordinary object, one per run, and can be
saved to and loaded from a JSON file so separate hook processes share it.
"""
import json
import os
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable

try:
    import fcntl
except ImportError:  # Windows: no advisory locks, save() still merges
    fcntl = None

from ruleroute.log import debug, warn

DEFAULT_CAPACITY = 100
STATE_VERSION = 1


# ============================================================================
# LIFECYCLE
# ============================================================================

class Phase(str, Enum):
    UNSEEDED = "unseeded"
    SEEDED = "seeded"
    COMPACTING = "compacting"


def begin_turn(phase: Phase) -> tuple[Phase, bool]:
    """Transition for a turn-start signal. Returns (next_phase, needs_seed)."""
    if phase is Phase.UNSEEDED:
        return Phase.SEEDED, True
    return Phase.SEEDED, False


def begin_compaction(phase: Phase) -> Phase:
    """Transition for a history-summarization signal."""
    if phase is Phase.UNSEEDED:
        # Nothing tracked yet; the next turn seeds from the summary
        return Phase.UNSEEDED
    return Phase.COMPACTING


# ============================================================================
# STATE
# ============================================================================

@dataclass
class SessionContext:
    """Paths and prompt for a single decision. Consumed once."""

    paths: list[str] = field(default_factory=list)
    prompt: str | None = None


@dataclass
class SessionState:
    session_id: str
    paths: set[str] = field(default_factory=set)
    last_prompt: str | None = None
    tick: int = 0
    phase: Phase = Phase.UNSEEDED
    seed_count: int = 0
    compactions: int = 0

    def to_dict(self) -> dict:
        return {
            "paths": sorted(self.paths),
            "last_prompt": self.last_prompt,
            "tick": self.tick,
            "phase": self.phase.value,
            "seed_count": self.seed_count,
            "compactions": self.compactions,
        }

    @classmethod
    def from_dict(cls, session_id: str, data: dict) -> "SessionState":
        try:
            phase = Phase(data.get("phase", Phase.UNSEEDED.value))
        except ValueError:
            phase = Phase.UNSEEDED
        return cls(
            session_id=session_id,
            paths={p for p in data.get("paths", []) if isinstance(p, str) and p},
            last_prompt=data.get("last_prompt") or None,
            tick=int(data.get("tick", 0)),
            phase=phase,
            seed_count=int(data.get("seed_count", 0)),
            compactions=int(data.get("compactions", 0)),
        )


# ============================================================================
# REGISTRY
# ============================================================================

class SessionRegistry:
    """Capacity-bounded map of session id -> SessionState."""

    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")
        self.capacity = capacity
        self._sessions: dict[str, SessionState] = {}
        self._pending: dict[str, SessionContext] = {}
        self._clock = 0
        # Sessions changed since load; save() writes only these over the file
        self._dirty: set[str] = set()

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def get(self, session_id: str) -> SessionState | None:
        return self._sessions.get(session_id)

    def session_ids(self) -> list[str]:
        return list(self._sessions)

    def upsert(
        self,
        session_id: str,
        mutate: Callable[[SessionState], None] | None = None,
    ) -> SessionState:
        """
        Look up or create the session, apply mutate, mark it most recent,
        then evict down to capacity.
        """
        state = self._sessions.get(session_id)
        if state is None:
            state = SessionState(session_id=session_id)
            self._sessions[session_id] = state
        if mutate is not None:
            mutate(state)
        self._clock += 1
        state.tick = self._clock
        self._dirty.add(session_id)
        self._evict()
        return state

    def _evict(self) -> None:
        while len(self._sessions) > self.capacity:
            # min() keeps the first of equal ticks, so ties go by insertion order
            oldest = min(list(self._sessions.values()), key=lambda s: s.tick)
            del self._sessions[oldest.session_id]
            self._pending.pop(oldest.session_id, None)
            self._dirty.discard(oldest.session_id)
            debug(f"Evicted session {oldest.session_id} (tick {oldest.tick})")

    # --- Transient per-turn context ---

    def stash_context(self, session_id: str, context: SessionContext) -> None:
        self._pending.pop(session_id, None)
        self._pending[session_id] = context
        while len(self._pending) > self.capacity:
            self._pending.pop(next(iter(self._pending)))

    def take_context(self, session_id: str) -> SessionContext | None:
        """Return and delete the stashed context for session_id."""
        return self._pending.pop(session_id, None)

    def pending_count(self) -> int:
        return len(self._pending)

    # --- Persistence ---

    def to_dict(self) -> dict:
        return {
            "version": STATE_VERSION,
            "clock": self._clock,
            "sessions": {sid: s.to_dict() for sid, s in self._sessions.items()},
        }

    @classmethod
    def from_dict(cls, data: dict, capacity: int = DEFAULT_CAPACITY) -> "SessionRegistry":
        registry = cls(capacity=capacity)
        sessions = data.get("sessions", {}) if isinstance(data, dict) else {}
        # Insert in tick order so eviction ties still follow age
        loaded = []
        for sid, raw in sessions.items():
            if not sid or not isinstance(raw, dict):
                continue
            try:
                loaded.append(SessionState.from_dict(sid, raw))
            except (TypeError, ValueError):
                continue
        for state in sorted(loaded, key=lambda s: s.tick):
            registry._sessions[state.session_id] = state
        max_tick = max((s.tick for s in loaded), default=0)
        try:
            clock = int(data.get("clock", 0))
        except (TypeError, ValueError, AttributeError):
            clock = 0
        registry._clock = max(clock, max_tick)
        registry._evict()
        return registry

    def _merge_into(self, base: "SessionRegistry") -> "SessionRegistry":
        """
        Apply this registry's changed sessions on top of base (the file as it
        is now). Sessions other writers added or changed are kept.
        """
        changed = sorted(
            (self._sessions[sid] for sid in self._dirty if sid in self._sessions),
            key=lambda s: s.tick,
        )
        for state in changed:
            existing = base._sessions.pop(state.session_id, None)
            if existing is not None:
                state.paths |= existing.paths
                state.seed_count = max(state.seed_count, existing.seed_count)
                state.compactions = max(state.compactions, existing.compactions)
                if state.last_prompt is None:
                    state.last_prompt = existing.last_prompt
                if state.phase is Phase.UNSEEDED:
                    state.phase = existing.phase
            base._clock += 1
            state.tick = base._clock
            base._sessions[state.session_id] = state
        base._evict()
        return base

    def save(self, path: Path) -> None:
        """
        Merge changed sessions into the current file and write it back
        (temp file + replace). Hold state_lock() around load/save to
        serialize concurrent writers.
        """
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        merged = self._merge_into(SessionRegistry.load(path, capacity=self.capacity))
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".sessions-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(merged.to_dict(), f, indent=2)
            os.replace(tmp_name, path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass
            raise
        self._sessions = merged._sessions
        self._clock = merged._clock
        self._dirty.clear()
        for sid in [sid for sid in self._pending if sid not in self._sessions]:
            del self._pending[sid]

    @classmethod
    def load(cls, path: Path, capacity: int = DEFAULT_CAPACITY) -> "SessionRegistry":
        """Load from JSON. A missing or corrupt file gives an empty registry."""
        path = Path(path)
        if not path.exists():
            return cls(capacity=capacity)
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            warn(f"Failed to load session state {path}: {e}")
            return cls(capacity=capacity)
        return cls.from_dict(data, capacity=capacity)


@contextmanager
def state_lock(state_file: Path):
    """
    Exclusive advisory lock on <state_file>.lock for one load-modify-save
    cycle, so hook processes for parallel sessions and tool calls take turns.
    """
    state_file = Path(state_file)
    state_file.parent.mkdir(parents=True, exist_ok=True)
    lock_path = state_file.with_name(state_file.name + ".lock")
    lock_fd = os.open(str(lock_path), os.O_CREAT | os.O_RDWR)
    try:
        if fcntl is not None:
            fcntl.flock(lock_fd, fcntl.LOCK_EX)
        yield
    finally:
        if fcntl is not None:
            fcntl.flock(lock_fd, fcntl.LOCK_UN)
        os.close(lock_fd)
