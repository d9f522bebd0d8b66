"""Document store for nutrition profiles and weekly plans.

Plans are keyed by (user_id, week_key) where week_key is the ISO date of the
week's Monday. `update_plan_fields` applies dotted-path partial updates
("meals.2.dinner.calories") so the background recalculation never rewrites a
whole plan, and refuses to write when `expected` fields such as
"generatedAt" no longer match the stored plan.
"""

import copy
import json
import os
import re
import threading
from pathlib import Path
from typing import Any, Dict, Optional

from schemas import NutritionProfile

BLUEPRINT_STORE_DIR = os.getenv("BLUEPRINT_STORE_DIR", "/tmp/blueprint_store")

_SAFE_KEY = re.compile(r"[^A-Za-z0-9_.-]")


class PlanNotFoundError(KeyError):
    """Raised when a partial update targets a plan that does not exist."""


class StalePlanError(RuntimeError):
    """Raised when a partial update was prepared against an older version of the plan."""


def check_expected_fields(plan: Dict[str, Any], expected: Optional[Dict[str, Any]]) -> None:
    """Raise StalePlanError unless every expected top-level field still matches."""
    for key, value in (expected or {}).items():
        if plan.get(key) != value:
            raise StalePlanError(f"Plan field '{key}' changed: expected {value!r}, found {plan.get(key)!r}")


def apply_dotted_updates(document: Dict[str, Any], updates: Dict[str, Any]) -> Dict[str, Any]:
    """Apply {"a.0.b": value} style updates in place and return the document.

    Numeric segments index into lists. Every segment but the last must
    already exist; a missing key or bad list index raises KeyError, so an
    update aimed at a meal slot that is gone never recreates it.
    """
    for dotted, value in updates.items():
        parts = dotted.split(".")
        node: Any = document
        for position, part in enumerate(parts):
            last = position == len(parts) - 1
            if isinstance(node, list):
                try:
                    index = int(part)
                    if last:
                        node[index] = value
                    else:
                        node = node[index]
                except (ValueError, IndexError) as e:
                    raise KeyError(f"Invalid list index '{part}' in path '{dotted}'") from e
            elif isinstance(node, dict):
                if last:
                    node[part] = value
                else:
                    if part not in node:
                        raise KeyError(f"Missing key '{part}' in path '{dotted}'")
                    node = node[part]
            else:
                raise KeyError(f"Cannot descend into {type(node).__name__} at '{part}' in path '{dotted}'")
    return document


class PlanStore:
    """Storage interface used by the pipeline, advisor and recalculator."""

    def get_profile(self, user_id: str) -> Optional[NutritionProfile]:
        raise NotImplementedError

    def save_profile(self, user_id: str, profile: NutritionProfile) -> None:
        raise NotImplementedError

    def get_plan(self, user_id: str, week_key: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    def write_plan(self, user_id: str, week_key: str, document: Dict[str, Any]) -> None:
        raise NotImplementedError

    def delete_plan(self, user_id: str, week_key: str) -> bool:
        raise NotImplementedError

    def update_plan_fields(
        self,
        user_id: str,
        week_key: str,
        updates: Dict[str, Any],
        expected: Optional[Dict[str, Any]] = None,
    ) -> None:
        raise NotImplementedError


class InMemoryPlanStore(PlanStore):
    """Process-local store (tests and single-process deployments)."""

    def __init__(self):
        self._profiles: Dict[str, Dict[str, Any]] = {}
        self._plans: Dict[tuple, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def get_profile(self, user_id: str) -> Optional[NutritionProfile]:
        with self._lock:
            data = self._profiles.get(user_id)
        return NutritionProfile(**data) if data is not None else None

    def save_profile(self, user_id: str, profile: NutritionProfile) -> None:
        with self._lock:
            self._profiles[user_id] = profile.model_dump()

    def get_plan(self, user_id: str, week_key: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            plan = self._plans.get((user_id, week_key))
            return copy.deepcopy(plan) if plan is not None else None

    def write_plan(self, user_id: str, week_key: str, document: Dict[str, Any]) -> None:
        with self._lock:
            self._plans[(user_id, week_key)] = copy.deepcopy(document)

    def delete_plan(self, user_id: str, week_key: str) -> bool:
        with self._lock:
            return self._plans.pop((user_id, week_key), None) is not None

    def update_plan_fields(
        self,
        user_id: str,
        week_key: str,
        updates: Dict[str, Any],
        expected: Optional[Dict[str, Any]] = None,
    ) -> None:
        with self._lock:
            plan = self._plans.get((user_id, week_key))
            if plan is None:
                raise PlanNotFoundError(f"No plan {week_key} for user {user_id}")
            check_expected_fields(plan, expected)
            self._plans[(user_id, week_key)] = apply_dotted_updates(copy.deepcopy(plan), updates)


class JsonFilePlanStore(PlanStore):
    """One JSON file per profile and per (user, week) plan under a directory."""

    def __init__(self, root: str = BLUEPRINT_STORE_DIR):
        self.root = Path(root)
        (self.root / "profiles").mkdir(parents=True, exist_ok=True)
        (self.root / "plans").mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    @staticmethod
    def _safe(value: str) -> str:
        return _SAFE_KEY.sub("_", value)

    def _profile_path(self, user_id: str) -> Path:
        return self.root / "profiles" / f"{self._safe(user_id)}.json"

    def _plan_path(self, user_id: str, week_key: str) -> Path:
        return self.root / "plans" / self._safe(user_id) / f"{self._safe(week_key)}.json"

    @staticmethod
    def _read(path: Path) -> Optional[Dict[str, Any]]:
        if not path.exists():
            return None
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)

    @staticmethod
    def _write(path: Path, data: Dict[str, Any]) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(".tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, default=str)
        os.replace(tmp, path)

    def get_profile(self, user_id: str) -> Optional[NutritionProfile]:
        data = self._read(self._profile_path(user_id))
        return NutritionProfile(**data) if data is not None else None

    def save_profile(self, user_id: str, profile: NutritionProfile) -> None:
        with self._lock:
            self._write(self._profile_path(user_id), profile.model_dump())

    def get_plan(self, user_id: str, week_key: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            return self._read(self._plan_path(user_id, week_key))

    def write_plan(self, user_id: str, week_key: str, document: Dict[str, Any]) -> None:
        with self._lock:
            self._write(self._plan_path(user_id, week_key), document)

    def delete_plan(self, user_id: str, week_key: str) -> bool:
        path = self._plan_path(user_id, week_key)
        with self._lock:
            if not path.exists():
                return False
            path.unlink()
            return True

    def update_plan_fields(
        self,
        user_id: str,
        week_key: str,
        updates: Dict[str, Any],
        expected: Optional[Dict[str, Any]] = None,
    ) -> None:
        path = self._plan_path(user_id, week_key)
        with self._lock:
            plan = self._read(path)
            if plan is None:
                raise PlanNotFoundError(f"No plan {week_key} for user {user_id}")
            check_expected_fields(plan, expected)
            self._write(path, apply_dotted_updates(plan, updates))
