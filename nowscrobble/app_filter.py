"""
Per-application allow / ignore filtering.

- Decisions live in a small JSON file ({"version": 1, "apps": {app_id: decision}}).
- Only a genuine answer from the user is persisted; the no-prompt default
  (allow) is applied on the fly so later config edits are not overwritten.
- Unclassified apps never block the polling loop: their samples are dropped
  until the prompt comes back.
"""

from __future__ import annotations
import logging
import threading
from concurrent.futures import Future
from typing import Dict, Iterable, Optional, Protocol, Set

from nowscrobble.errors import StoreCorruptError
from nowscrobble.storage import read_json, write_json_atomic

log = logging.getLogger("app-filter")

ALLOWED = "allowed"
IGNORED = "ignored"
NEEDS_DECISION = "needs-decision"
DECISIONS = (ALLOWED, IGNORED)


class DecisionPrompter(Protocol):
    def request_decision(self, app_id: str) -> "Future[str]": ...


class AppDecisionStore:
    def __init__(self, path: str):
        self.path = path
        self._lock = threading.Lock()
        self._apps: Dict[str, str] = {}
        self._load()

    def _load(self) -> None:
        try:
            data = read_json(self.path)
        except (OSError, ValueError) as e:
            raise StoreCorruptError(f"Cannot read app decisions from {self.path}: {e}") from e
        if data is None:
            return
        apps = data.get("apps") if isinstance(data, dict) else None
        if not isinstance(apps, dict):
            raise StoreCorruptError(f"Unexpected app decision file layout in {self.path}")
        for app_id, decision in apps.items():
            if decision not in DECISIONS:
                log.warning("Ignoring unknown decision %r for %s", decision, app_id)
                continue
            self._apps[app_id] = decision

    def _save(self) -> None:
        write_json_atomic(self.path, {"version": 1, "apps": dict(sorted(self._apps.items()))})

    def get(self, app_id: str) -> Optional[str]:
        with self._lock:
            return self._apps.get(app_id)

    def set(self, app_id: str, decision: str) -> None:
        if decision not in DECISIONS:
            raise ValueError(f"decision must be one of {DECISIONS}, got {decision!r}")
        with self._lock:
            if self._apps.get(app_id) == decision:
                return
            self._apps[app_id] = decision
            self._save()

    def seed(self, allowed: Iterable[str] = (), ignored: Iterable[str] = ()) -> None:
        """Adds configured ids without overriding decisions already stored."""
        with self._lock:
            changed = False
            for decision, ids in ((ALLOWED, allowed), (IGNORED, ignored)):
                for app_id in ids:
                    if app_id and app_id not in self._apps:
                        self._apps[app_id] = decision
                        changed = True
            if changed:
                self._save()

    def as_dict(self) -> Dict[str, str]:
        with self._lock:
            return dict(self._apps)


class AppFilter:
    def __init__(self, store: AppDecisionStore, *, scrobble_unknown: bool = True,
                 prompt_for_new_apps: bool = True, prompter: DecisionPrompter | None = None):
        self.store = store
        self.scrobble_unknown = scrobble_unknown
        self.prompt_for_new_apps = prompt_for_new_apps
        self.prompter = prompter
        self._pending: Set[str] = set()
        self._lock = threading.Lock()

    def classify(self, app_id: str | None) -> str:
        if not app_id:
            return ALLOWED if self.scrobble_unknown else IGNORED
        stored = self.store.get(app_id)
        if stored is not None:
            return stored
        if self.prompt_for_new_apps:
            return NEEDS_DECISION
        return ALLOWED

    def record_decision(self, app_id: str, decision: str) -> None:
        self.store.set(app_id, decision)
        log.info("App %s is now %s", app_id, decision)

    def admit(self, app_id: str | None) -> bool:
        """True when samples from `app_id` may reach the tracker right now."""
        decision = self.classify(app_id)
        if decision == NEEDS_DECISION:
            self._ask(app_id)
            return False
        if decision == IGNORED:
            log.debug("Ignoring playback from %s", app_id)
            return False
        return True

    def pending(self) -> Set[str]:
        with self._lock:
            return set(self._pending)

    def _ask(self, app_id: str) -> None:
        with self._lock:
            if app_id in self._pending:
                return
            if self.prompter is None:
                # nobody to ask; stays undecided until the store is edited
                log.warning("New app %s needs a decision but no prompt is available", app_id)
                self._pending.add(app_id)
                return
            self._pending.add(app_id)
        log.info("Asking whether to scrobble from %s", app_id)
        future = self.prompter.request_decision(app_id)
        future.add_done_callback(lambda f: self._resolved(app_id, f))

    def _resolved(self, app_id: str, future: "Future[str]") -> None:
        with self._lock:
            self._pending.discard(app_id)
        if future.cancelled():
            log.info("Decision prompt for %s was cancelled", app_id)
            return
        err = future.exception()
        if err is not None:
            log.warning("Decision prompt for %s failed: %s", app_id, err)
            return
        decision = future.result()
        if decision not in DECISIONS:
            log.warning("Ignoring invalid decision %r for %s", decision, app_id)
            return
        self.record_decision(app_id, decision)
