"""Entitlement and notification collaborators for the blueprint pipeline."""

import os
import sys
from typing import Any, Dict, Iterable, Optional

import httpx

from observability import setup_structured_logger

logger = setup_structured_logger("blueprint.collaborators")

BLUEPRINT_PRO_USERS = os.getenv("BLUEPRINT_PRO_USERS", "")
BLUEPRINT_NOTIFY_WEBHOOK = os.getenv("BLUEPRINT_NOTIFY_WEBHOOK", "")
NOTIFY_TIMEOUT_SECONDS = 10.0


class EntitlementChecker:
    """Decides whether a user may generate weekly blueprints."""

    def is_entitled(self, user_id: str) -> bool:
        raise NotImplementedError


class AllowAllEntitlements(EntitlementChecker):
    def is_entitled(self, user_id: str) -> bool:
        return True


class AllowlistEntitlements(EntitlementChecker):
    """Only users in the allowlist (comma-separated BLUEPRINT_PRO_USERS)."""

    def __init__(self, users: Optional[Iterable[str]] = None):
        if users is None:
            users = BLUEPRINT_PRO_USERS.split(",")
        self.users = {u.strip() for u in users if u and u.strip()}

    def is_entitled(self, user_id: str) -> bool:
        return user_id in self.users


def default_entitlements() -> EntitlementChecker:
    return AllowlistEntitlements() if BLUEPRINT_PRO_USERS.strip() else AllowAllEntitlements()


class Notifier:
    """Tells the user their plan is ready."""

    def plan_ready(self, user_id: str, week_key: str, summary: Dict[str, Any]) -> None:
        raise NotImplementedError


class NullNotifier(Notifier):
    def plan_ready(self, user_id: str, week_key: str, summary: Dict[str, Any]) -> None:
        return None


class WebhookNotifier(Notifier):
    """POST a `plan_ready` event to a webhook."""

    def __init__(self, url: str, client: Optional[httpx.Client] = None, timeout: float = NOTIFY_TIMEOUT_SECONDS):
        self.url = url
        self.client = client
        self.timeout = timeout

    def plan_ready(self, user_id: str, week_key: str, summary: Dict[str, Any]) -> None:
        payload = {
            "event": "plan_ready",
            "user_id": user_id,
            "week_start_date": week_key,
            **summary,
        }
        if self.client is not None:
            response = self.client.post(self.url, json=payload, timeout=self.timeout)
        else:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.post(self.url, json=payload)
        response.raise_for_status()
        print(f"   📣 Plan-ready notification sent for {user_id} ({week_key})", file=sys.stderr)
        logger.info(
            "Plan-ready notification sent",
            extra={"extra_fields": {"user_id": user_id, "week": week_key, "status_code": response.status_code}},
        )


def default_notifier() -> Notifier:
    return WebhookNotifier(BLUEPRINT_NOTIFY_WEBHOOK) if BLUEPRINT_NOTIFY_WEBHOOK else NullNotifier()
