"""
Selector Memory - persistent, self-healing cache of known-good locators

Maps (app, screen, operation, hint) to up to N scored locator candidates.

Scoring:
    score = 3 * successes - 2 * failures

Rules:
- success: bump (or insert with successes=1), re-sort by score, keep the best N
- failure: bump (or insert with failures=1), prune candidates with
  failures >= 3 and score < 0
- lookups union the screen's aliases plus the "no screen" bucket,
  de-duplicated by (strategy, value)
- generic/brittle locators are never written
- every mutation is written through to disk synchronously

Usage:
    memory = SelectorMemory(data_dir="data")
    memory.success("com.app", ".Login", StepType.TAP, "Sign in", locator)
    for locator in memory.find("com.app", ".Login", StepType.TAP, "sign in"):
        ...
"""

import json
import logging
import os
import time
from pathlib import Path
from threading import Lock
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from mobile_pilot.config.defaults import AppDefaults, get_defaults
from mobile_pilot.core.flows.flow_models import Locator, StepType, Strategy
from mobile_pilot.utils.selector_quality import is_generic_selector

logger = logging.getLogger(__name__)

KEY_SEPARATOR = "||"


class MemSelector(BaseModel):
    """One remembered locator candidate with reinforcement counters"""

    strategy: Strategy
    value: str
    successes: int = 0
    failures: int = 0
    last_seen: int = Field(default_factory=lambda: int(time.time() * 1000))

    @property
    def score(self) -> int:
        return self.successes * 3 - self.failures * 2

    def to_locator(self) -> Locator:
        return Locator(strategy=self.strategy, value=self.value)


class MemoryEntry(BaseModel):
    """All candidates cached for one (app, screen, operation, hint) key"""

    app: str
    screen: str = ""
    op: StepType
    hint: str
    selectors: List[MemSelector] = Field(default_factory=list)


def memory_key(app: str, screen: Optional[str], op: StepType, hint: Optional[str]) -> str:
    return KEY_SEPARATOR.join([app or "", (screen or "").strip(), op.value, (hint or "").strip().lower()])


def screen_aliases(raw: Optional[str], app: str) -> List[str]:
    """
    Equivalent spellings of a screen (activity) name.

    ".Login" in com.app -> [".Login", "com.app.Login", "Login"]
    """
    r = (raw or "").strip()
    if not r:
        return []
    base = r.lstrip(".").rsplit(".", 1)[-1]
    full = f"{app}{r}" if r.startswith(".") else r
    full_from_base = f"{app}.{base}" if base else ""
    aliases: List[str] = []
    for alias in (r, full, base, full_from_base if full_from_base != full else ""):
        if alias and alias not in aliases:
            aliases.append(alias)
    return aliases


class SelectorMemory:
    """
    Process-wide selector cache, guarded by a lock for concurrent runs.

    Pass data_dir=None for a purely in-memory instance (no persistence).
    """

    def __init__(
        self,
        data_dir: Optional[str] = None,
        file_name: Optional[str] = None,
        settings: Optional[AppDefaults] = None,
    ):
        self.settings = settings or get_defaults()
        self.max_candidates = self.settings.MEMORY_MAX_CANDIDATES
        self.prune_failures = self.settings.MEMORY_PRUNE_FAILURES
        self._lock = Lock()
        self._entries: Dict[str, MemoryEntry] = {}

        self.memory_file: Optional[Path] = None
        if data_dir is not None:
            path = Path(data_dir)
            path.mkdir(parents=True, exist_ok=True)
            self.memory_file = path / (file_name or self.settings.MEMORY_FILE)
            self._load()

        logger.info(f"[SelectorMemory] Initialized with {len(self._entries)} entries")

    # =========================================================================
    # Persistence
    # =========================================================================

    def _load(self):
        """Load entries from disk"""
        if self.memory_file is None or not self.memory_file.exists():
            return
        try:
            with open(self.memory_file, "r", encoding="utf-8") as f:
                data = json.load(f)
            self._entries = {k: MemoryEntry.model_validate(v) for k, v in data.items()}
            logger.debug(f"[SelectorMemory] Loaded {len(self._entries)} entries from {self.memory_file}")
        except Exception as e:
            logger.error(f"[SelectorMemory] Failed to load {self.memory_file}: {e}")

    def _save(self):
        """Write-through save (temp file + atomic replace). Caller holds the lock."""
        if self.memory_file is None:
            return
        tmp = self.memory_file.with_name(self.memory_file.name + ".tmp")
        try:
            data = {k: e.model_dump(mode="json") for k, e in self._entries.items()}
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            os.replace(tmp, self.memory_file)
        except Exception as e:
            logger.error(f"[SelectorMemory] Failed to save {self.memory_file}: {e}")

    # =========================================================================
    # Queries
    # =========================================================================

    def find(self, app: str, screen: Optional[str], op: StepType, hint: Optional[str]) -> List[Locator]:
        """
        Remembered locators for a hint, best first per bucket.

        Buckets are visited in alias order, then the "no screen" bucket.
        """
        buckets = screen_aliases(screen, app) + [""]
        seen = set()
        result: List[Locator] = []
        with self._lock:
            for bucket in buckets:
                entry = self._entries.get(memory_key(app, bucket, op, hint))
                if entry is None:
                    continue
                for sel in sorted(entry.selectors, key=lambda s: s.score, reverse=True):
                    if is_generic_selector(sel.strategy, sel.value):
                        continue
                    ident = (sel.strategy, sel.value)
                    if ident in seen:
                        continue
                    seen.add(ident)
                    result.append(sel.to_locator())
        return result

    def get_selectors(self, app: str, screen: Optional[str], op: StepType, hint: Optional[str]) -> List[MemSelector]:
        """Copy of the raw candidates stored under one exact key."""
        with self._lock:
            entry = self._entries.get(memory_key(app, screen, op, hint))
            return [s.model_copy() for s in entry.selectors] if entry else []

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {
                "entries": len(self._entries),
                "selectors": sum(len(e.selectors) for e in self._entries.values()),
            }

    # =========================================================================
    # Reinforcement
    # =========================================================================

    def success(self, app: str, screen: Optional[str], op: StepType, hint: Optional[str], locator: Locator) -> bool:
        """Reinforce a locator that worked. Returns False when it was not stored."""
        h = (hint or "").strip().lower()
        if not h or is_generic_selector(locator.strategy, locator.value):
            return False
        with self._lock:
            entry = self._get_or_create(app, screen, op, h)
            sel = self._upsert(entry, locator)
            sel.successes += 1
            entry.selectors.sort(key=lambda s: s.score, reverse=True)
            del entry.selectors[self.max_candidates:]
            self._save()
        logger.debug(f"[SelectorMemory] success {op.value} '{h}' -> {locator.describe()}")
        return True

    def failure(self, app: str, screen: Optional[str], op: StepType, hint: Optional[str], locator: Locator) -> bool:
        """Penalize a locator that stopped working; prunes hopeless candidates."""
        h = (hint or "").strip().lower()
        if not h or is_generic_selector(locator.strategy, locator.value):
            return False
        with self._lock:
            entry = self._get_or_create(app, screen, op, h)
            sel = self._upsert(entry, locator)
            sel.failures += 1
            before = len(entry.selectors)
            entry.selectors = [
                s for s in entry.selectors
                if not (s.failures >= self.prune_failures and s.score < 0)
            ]
            if len(entry.selectors) < before:
                logger.info(f"[SelectorMemory] Pruned {before - len(entry.selectors)} selector(s) for '{h}'")
            del entry.selectors[self.max_candidates:]
            self._save()
        return True

    def _get_or_create(self, app: str, screen: Optional[str], op: StepType, hint: str) -> MemoryEntry:
        key = memory_key(app, screen, op, hint)
        entry = self._entries.get(key)
        if entry is None:
            entry = MemoryEntry(app=app, screen=(screen or "").strip(), op=op, hint=hint)
            self._entries[key] = entry
        return entry

    @staticmethod
    def _upsert(entry: MemoryEntry, locator: Locator) -> MemSelector:
        for sel in entry.selectors:
            if sel.strategy == locator.strategy and sel.value == locator.value:
                sel.last_seen = int(time.time() * 1000)
                return sel
        sel = MemSelector(strategy=locator.strategy, value=locator.value)
        entry.selectors.append(sel)
        return sel

    # =========================================================================
    # Maintenance
    # =========================================================================

    def delete(
        self,
        app: Optional[str] = None,
        screen: Optional[str] = None,
        op: Optional[StepType] = None,
        hint: Optional[str] = None,
    ) -> int:
        """Delete entries matching every given field (None = wildcard). Returns count removed."""
        h = hint.strip().lower() if hint is not None else None
        with self._lock:
            doomed = [
                k for k, e in self._entries.items()
                if (app is None or e.app == app)
                and (screen is None or e.screen == screen.strip())
                and (op is None or e.op == op)
                and (h is None or e.hint == h)
            ]
            for k in doomed:
                del self._entries[k]
            if doomed:
                self._save()
        logger.info(f"[SelectorMemory] Deleted {len(doomed)} entries")
        return len(doomed)

    def clear_all(self) -> int:
        return self.delete()
