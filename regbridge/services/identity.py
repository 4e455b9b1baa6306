from __future__ import annotations

import logging

from regbridge.services.store import CustomerId, CustomerStore


log = logging.getLogger(__name__)


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


class IdentityResolver:
    """
    Exact-match lookup of a customer by email.

    The store's search is token/prefix based, so a hit only counts when the
    candidate's own email equals the query after case folding.
    """

    def __init__(self, store: CustomerStore):
        self.store = store

    async def find_exact(self, email: str) -> CustomerId | None:
        wanted = normalize_email(email)
        if not wanted:
            return None

        result = await self.store.search_customers(f'email:"{wanted}"')
        if not result.ok:
            # Not fatal: a following create is the authoritative fallback
            log.warning(
                "customer search failed, treating as not found: status=%s",
                result.status_code,
            )
            return None

        body = result.body if isinstance(result.body, dict) else {}
        candidates = body.get("customers") or []
        first = candidates[0] if candidates and isinstance(candidates[0], dict) else None
        if first is None or first.get("id") is None:
            return None

        if normalize_email(first.get("email") or "") != wanted:
            log.info("customer search returned a near-match, ignoring id=%s", first.get("id"))
            return None
        return first["id"]
