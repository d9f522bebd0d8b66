"""Cache for per-100 g food nutrition and failed searches to minimize API calls."""

import json
import os
import sys
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from schemas import NutritionFacts

CACHE_FILE = Path(os.getenv("NUTRITION_CACHE_FILE", str(Path(__file__).parent / ".nutrition_cache.json")))
CACHE_TTL_DAYS = 30  # Cache valid for 30 days
NEGATIVE_CACHE_TTL_DAYS = 7  # Negative cache expires faster (no food found)


class FoodNutritionCache:
    """Persistent cache of search query -> per-100 g nutrition.

    Common ingredients (chicken, rice, eggs, etc.) are looked up for every
    plan. Entries expire after CACHE_TTL_DAYS; queries with no match are
    negative-cached for NEGATIVE_CACHE_TTL_DAYS.
    """

    def __init__(self, cache_file: Path = CACHE_FILE):
        self.cache_file = Path(cache_file)
        self._cache: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()
        self._load_cache()

    def _normalize_query(self, query: str) -> str:
        """Normalize query for consistent cache keys."""
        return " ".join(query.lower().split())

    def _load_cache(self):
        """Load cache from disk, filtering expired entries."""
        if self.cache_file.exists():
            try:
                with open(self.cache_file, "r") as f:
                    data = json.load(f)
                now = datetime.now().timestamp()
                ttl_seconds = CACHE_TTL_DAYS * 86400
                self._cache = {
                    k: v
                    for k, v in data.items()
                    if now - v.get("cached_at", 0) < ttl_seconds
                }
            except (json.JSONDecodeError, IOError):
                self._cache = {}

    def _save_cache(self):
        """Save cache to disk (caller holds the lock)."""
        try:
            with open(self.cache_file, "w") as f:
                json.dump(self._cache, f, indent=2)
        except IOError as e:
            print(f"   ⚠️ Could not save nutrition cache: {e}", file=sys.stderr)

    def get(self, query: str) -> Optional[Dict[str, Any]]:
        """Get cached nutrition for a query.

        Returns:
            {"facts": NutritionFacts, "fdc_id": ..., "food_name": ...} per 100 g,
            {"negative": True, "reason": ...} for a recent miss,
            or None if not cached.
        """
        key = self._normalize_query(query)
        with self._lock:
            entry = self._cache.get(key)
        if not entry:
            return None

        if entry.get("negative"):
            ttl = entry.get("ttl_days", NEGATIVE_CACHE_TTL_DAYS) * 86400
            if datetime.now().timestamp() - entry.get("cached_at", 0) < ttl:
                return {"negative": True, "reason": entry.get("reason", "no_data")}
            # Negative entry expired, search again
            return None

        return {
            "facts": NutritionFacts(**entry.get("per_100g", {})),
            "fdc_id": entry.get("fdc_id"),
            "food_name": entry.get("food_name"),
        }

    def set(self, query: str, per_100g: NutritionFacts, fdc_id: Optional[int] = None, food_name: str = ""):
        """Store per-100 g nutrition for a query."""
        key = self._normalize_query(query)
        with self._lock:
            self._cache[key] = {
                "per_100g": per_100g.model_dump(),
                "fdc_id": fdc_id,
                "food_name": food_name,
                "original_query": query,
                "cached_at": datetime.now().timestamp(),
            }
            self._save_cache()

    def set_negative(self, query: str, reason: str = "no_food_found"):
        """Cache a miss so the same query is not searched again for a week."""
        key = self._normalize_query(query)
        with self._lock:
            self._cache[key] = {
                "negative": True,
                "reason": reason,
                "original_query": query,
                "cached_at": datetime.now().timestamp(),
                "ttl_days": NEGATIVE_CACHE_TTL_DAYS,
            }
            self._save_cache()

    def delete(self, query: str):
        key = self._normalize_query(query)
        with self._lock:
            if key in self._cache:
                del self._cache[key]
                self._save_cache()

    def stats(self) -> Dict[str, Any]:
        """Return cache statistics."""
        file_size = 0
        if self.cache_file.exists():
            file_size = self.cache_file.stat().st_size
        with self._lock:
            negative = sum(1 for entry in self._cache.values() if entry.get("negative"))
            total = len(self._cache)
        return {
            "total_entries": total,
            "negative_entries": negative,
            "file_size_bytes": file_size,
            "cache_file": str(self.cache_file),
        }

    def clear(self):
        """Clear all cache entries."""
        with self._lock:
            self._cache = {}
            self._save_cache()


# Singleton instance
_cache_instance: Optional[FoodNutritionCache] = None


def get_nutrition_cache() -> FoodNutritionCache:
    """Get the singleton nutrition cache instance."""
    global _cache_instance
    if _cache_instance is None:
        _cache_instance = FoodNutritionCache()
    return _cache_instance
