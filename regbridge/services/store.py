from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from regbridge.services.http_client import HttpResult, StoreHttpClient


CustomerId = int | str


def parse_tags(raw: Any) -> tuple[str, ...]:
    """Store tags arrive as one comma-separated string (or, from some endpoints, a list)."""
    if raw is None:
        return ()
    items = raw if isinstance(raw, list) else str(raw).split(",")
    out: list[str] = []
    for t in items:
        t = str(t).strip()
        if t and t not in out:
            out.append(t)
    return tuple(out)


def format_tags(tags: tuple[str, ...] | list[str]) -> str:
    return ", ".join(tags)


@dataclass(frozen=True)
class CustomerRecord:
    id: CustomerId
    email: str
    first_name: str | None = None
    last_name: str | None = None
    phone: str | None = None
    tags: tuple[str, ...] = field(default_factory=tuple)

    @property
    def normalized_email(self) -> str:
        return (self.email or "").strip().lower()

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> CustomerRecord:
        return cls(
            id=data["id"],
            email=data.get("email") or "",
            first_name=data.get("first_name"),
            last_name=data.get("last_name"),
            phone=data.get("phone"),
            tags=parse_tags(data.get("tags")),
        )


@dataclass(frozen=True)
class Metafield:
    id: CustomerId
    namespace: str
    key: str
    type: str | None
    value: str | None

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> Metafield:
        value = data.get("value")
        return cls(
            id=data["id"],
            namespace=data.get("namespace") or "",
            key=data.get("key") or "",
            type=data.get("type"),
            value=None if value is None else str(value),
        )


class CustomerStore:
    """
    Named remote operations on customers and their metafields.

    Paths and payload envelopes live here; callers work with records and HttpResults.
    """

    def __init__(self, client: StoreHttpClient):
        self.client = client

    async def search_customers(self, query: str) -> HttpResult:
        return await self.client.execute("GET", "customers/search.json", query={"query": query})

    async def get_customer(self, customer_id: CustomerId) -> HttpResult:
        return await self.client.execute("GET", f"customers/{customer_id}.json")

    async def create_customer(self, fields: dict[str, Any]) -> HttpResult:
        return await self.client.execute("POST", "customers.json", body={"customer": fields})

    async def update_customer(self, customer_id: CustomerId, fields: dict[str, Any]) -> HttpResult:
        return await self.client.execute(
            "PUT",
            f"customers/{customer_id}.json",
            body={"customer": {"id": customer_id, **fields}},
        )

    async def write_tags(self, customer_id: CustomerId, tags: tuple[str, ...]) -> HttpResult:
        return await self.update_customer(customer_id, {"tags": format_tags(tags)})

    async def list_metafields(self, customer_id: CustomerId) -> HttpResult:
        return await self.client.execute("GET", f"customers/{customer_id}/metafields.json")

    async def create_metafield(
        self, customer_id: CustomerId, *, namespace: str, key: str, type: str, value: str
    ) -> HttpResult:
        return await self.client.execute(
            "POST",
            f"customers/{customer_id}/metafields.json",
            body={"metafield": {"namespace": namespace, "key": key, "type": type, "value": value}},
        )

    async def update_metafield(
        self, customer_id: CustomerId, metafield_id: CustomerId, *, type: str, value: str
    ) -> HttpResult:
        return await self.client.execute(
            "PUT",
            f"customers/{customer_id}/metafields/{metafield_id}.json",
            body={"metafield": {"id": metafield_id, "type": type, "value": value}},
        )


def customer_from_result(result: HttpResult) -> CustomerRecord | None:
    body = result.body if isinstance(result.body, dict) else {}
    data = body.get("customer")
    if not isinstance(data, dict) or data.get("id") is None:
        return None
    return CustomerRecord.from_payload(data)


def metafields_from_result(result: HttpResult) -> list[Metafield]:
    body = result.body if isinstance(result.body, dict) else {}
    items = body.get("metafields") or []
    return [Metafield.from_payload(m) for m in items if isinstance(m, dict) and m.get("id") is not None]
