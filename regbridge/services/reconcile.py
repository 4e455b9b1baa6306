"""
Create-or-update reconciliation of one registration against the customer store.

    VALIDATE_SITE -> LOOKUP -> CREATE | UPDATE -> CONFIRM -> TAG_MERGE -> ATTRIBUTE_UPSERT -> DONE

Any state may move to FAILED. Steps run strictly in order: each one needs what
the previous established (an id, then a confirmed identity). Nothing is rolled
back on failure; later steps simply do not run, and every step is safe to
re-run on the next request.
"""
from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal

from regbridge.services.failures import (
    AttributeWriteError,
    CreateNoIdentifier,
    DirectoryUnavailable,
    Failure,
    IdentityMismatch,
    InvalidSiteId,
    NoExistingAccount,
    RemoteCallError,
    TransientRemoteError,
    ValidationError,
)
from regbridge.services.http_client import HttpResult
from regbridge.services.identity import IdentityResolver
from regbridge.services.registration import MIN_PASSWORD_LENGTH, RegistrationRequest
from regbridge.services.site_directory import DirectoryError
from regbridge.services.site_ids import SiteIdCheck, SiteIdValidator
from regbridge.services.store import CustomerId, CustomerRecord, CustomerStore, customer_from_result, metafields_from_result


APPROVED_TAG = "approved"
TEXT_FIELD = "single_line_text_field"

# remote error keys -> inbound field names
_REMOTE_FIELDS = {
    "email": "email",
    "phone": "phone",
    "password": "password",
    "first_name": "firstName",
    "last_name": "lastName",
}

log = logging.getLogger(__name__)


class ReconcileState(str, Enum):
    VALIDATE_SITE = "validate_site"
    LOOKUP = "lookup"
    CREATE = "create"
    UPDATE = "update"
    CONFIRM = "confirm"
    TAG_MERGE = "tag_merge"
    ATTRIBUTE_UPSERT = "attribute_upsert"
    DONE = "done"
    FAILED = "failed"


TERMINAL_STATES = frozenset({ReconcileState.DONE, ReconcileState.FAILED})


@dataclass(frozen=True)
class AttributeSpec:
    namespace: str
    key: str
    type: str
    value: str


@dataclass(frozen=True)
class ReconcilePolicy:
    required_tags: tuple[str, ...] = (APPROVED_TAG,)
    attribute_namespace: str = "custom"
    # Hand a freshly created account's password back for an immediate sign-in
    return_new_password: bool = True


@dataclass(frozen=True)
class ReconcileSuccess:
    action: Literal["created", "updated"]
    customer_id: CustomerId
    email: str
    site_id: str
    password: str | None = None

    def to_payload(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "ok": True,
            "action": self.action,
            "customerId": self.customer_id,
            "email": self.email,
            "siteId": self.site_id,
        }
        if self.password:
            out["password"] = self.password
        return out


@dataclass
class ReconcileRun:
    """Working state of one request; discarded when the request ends."""

    request: RegistrationRequest
    site: SiteIdCheck | None = None
    customer_id: CustomerId | None = None
    action: Literal["created", "updated"] | None = None
    record: CustomerRecord | None = None
    failure: Failure | None = None
    trail: list[ReconcileState] = field(default_factory=list)

    def fail(self, failure: Failure) -> ReconcileState:
        self.failure = failure
        return ReconcileState.FAILED


def remote_error_message(result: HttpResult) -> str:
    body = result.body if isinstance(result.body, dict) else {}
    errors = body.get("errors")
    if isinstance(errors, dict):
        parts = []
        for k, v in errors.items():
            msgs = v if isinstance(v, list) else [v]
            parts.append(f"{k} {', '.join(str(m) for m in msgs)}")
        return "; ".join(parts)
    if isinstance(errors, (str, list)):
        return errors if isinstance(errors, str) else "; ".join(str(e) for e in errors)
    return result.failure.error if result.failure else "unknown store error"


def remote_error_field(result: HttpResult) -> str | None:
    body = result.body if isinstance(result.body, dict) else {}
    errors = body.get("errors")
    if isinstance(errors, dict):
        for k in errors:
            if k in _REMOTE_FIELDS:
                return _REMOTE_FIELDS[k]
    return None


def is_duplicate_email(result: HttpResult) -> bool:
    if result.status_code != 422:
        return False
    body = result.body if isinstance(result.body, dict) else {}
    errors = body.get("errors")
    if isinstance(errors, dict):
        return "email" in errors
    # Last resort for unstructured bodies: message text
    text = remote_error_message(result) if errors else (result.failure.snippet if result.failure else "")
    text = text.lower()
    return "email" in text and "taken" in text


def classify_failure(result: HttpResult, context: str) -> RemoteCallError:
    failure = result.failure or RemoteCallError(error="Store call failed", status_code=result.status_code)
    message = remote_error_message(result) if result.status_code and 400 <= result.status_code < 500 else failure.error
    return dataclasses.replace(failure, error=f"{context}: {message}", field=remote_error_field(result))


def merge_tag_sets(current: tuple[str, ...], required: tuple[str, ...]) -> tuple[str, ...]:
    # store tags are case-insensitive: "Approved" already satisfies "approved"
    present = {t.casefold() for t in current}
    added = []
    for t in required:
        if t.casefold() not in present:
            present.add(t.casefold())
            added.append(t)
    return current + tuple(added)


class ReconciliationEngine:
    def __init__(
        self,
        *,
        store: CustomerStore,
        validator: SiteIdValidator,
        policy: ReconcilePolicy | None = None,
        resolver: IdentityResolver | None = None,
    ):
        self.store = store
        self.validator = validator
        self.policy = policy or ReconcilePolicy()
        self.resolver = resolver or IdentityResolver(store)
        self._handlers = {
            ReconcileState.VALIDATE_SITE: self._validate_site,
            ReconcileState.LOOKUP: self._lookup,
            ReconcileState.CREATE: self._create,
            ReconcileState.UPDATE: self._update,
            ReconcileState.CONFIRM: self._confirm,
            ReconcileState.TAG_MERGE: self._merge_tags,
            ReconcileState.ATTRIBUTE_UPSERT: self._upsert_attributes,
        }

    async def reconcile(self, request: RegistrationRequest) -> ReconcileSuccess | Failure:
        run = ReconcileRun(request=request)
        state = ReconcileState.VALIDATE_SITE

        while state not in TERMINAL_STATES:
            run.trail.append(state)
            state = await self._handlers[state](run)

        run.trail.append(state)
        if run.failure is not None:
            log.warning(
                "registration failed: code=%s state=%s customer_id=%s",
                run.failure.code, run.trail[-2].value, run.customer_id,
            )
            return run.failure

        assert run.customer_id is not None and run.action is not None and run.site is not None
        password = None
        if run.action == "created" and self.policy.return_new_password:
            password = request.password
        log.info("registration done: action=%s customer_id=%s site_id=%s", run.action, run.customer_id, run.site.site_id)
        return ReconcileSuccess(
            action=run.action,
            customer_id=run.customer_id,
            email=request.email,
            site_id=run.site.site_id,
            password=password,
        )

    # --- states ---

    async def _validate_site(self, run: ReconcileRun) -> ReconcileState:
        try:
            check = await self.validator.validate(run.request.site_id)
        except DirectoryError as e:
            log.error("site directory unavailable: %s", e)
            return run.fail(DirectoryUnavailable(error=f"Site directory unavailable: {e}"))

        if not check.valid:
            return run.fail(InvalidSiteId(error="Invalid Site ID", field="siteId"))
        run.site = check
        return ReconcileState.LOOKUP

    async def _lookup(self, run: ReconcileRun) -> ReconcileState:
        run.customer_id = await self.resolver.find_exact(run.request.normalized_email)
        if run.customer_id is not None:
            return ReconcileState.UPDATE
        if run.request.update_only:
            return run.fail(NoExistingAccount(error="No existing account for this email", field="email"))
        return ReconcileState.CREATE

    async def _create(self, run: ReconcileRun) -> ReconcileState:
        req = run.request
        if not req.password:
            return run.fail(ValidationError(error="Password is required to create an account", field="password"))
        if len(req.password) < MIN_PASSWORD_LENGTH:
            return run.fail(
                ValidationError(error=f"Password must be at least {MIN_PASSWORD_LENGTH} characters", field="password")
            )

        fields: dict[str, Any] = {
            "email": req.email,
            "first_name": req.first_name or "",
            "last_name": req.last_name or "",
            "password": req.password,
            "password_confirmation": req.password,
            "verified_email": True,
            "send_email_welcome": False,
            "tags": APPROVED_TAG,
        }
        if req.phone:
            fields["phone"] = req.phone

        result = await self.store.create_customer(fields)
        if not result.ok:
            if is_duplicate_email(result):
                # Created by a concurrent request or not yet searchable: one recovery lookup
                recovered = await self.resolver.find_exact(req.normalized_email)
                if recovered is not None:
                    log.info("create hit an existing email, switching to update: customer_id=%s", recovered)
                    run.customer_id = recovered
                    return ReconcileState.UPDATE
            return run.fail(classify_failure(result, "Customer create failed"))

        created = customer_from_result(result)
        if created is None:
            # Eventual consistency: the record may exist without an id in the response
            recovered = await self.resolver.find_exact(req.normalized_email)
            if recovered is None:
                snippet = result.failure.snippet if result.failure else str(result.body)[:400]
                return run.fail(CreateNoIdentifier(error="Customer create returned no id", snippet=snippet))
            log.info("create returned no id, recovered by lookup: customer_id=%s", recovered)
            run.customer_id = recovered
        else:
            run.customer_id = created.id

        run.action = "created"
        return ReconcileState.CONFIRM

    async def _update(self, run: ReconcileRun) -> ReconcileState:
        req = run.request
        assert run.customer_id is not None
        run.action = "updated"

        # Mutable fields only; the password and the email identity are never re-sent
        fields = {
            k: v
            for k, v in (("first_name", req.first_name), ("last_name", req.last_name), ("phone", req.phone))
            if v is not None
        }
        if fields:
            result = await self.store.update_customer(run.customer_id, fields)
            if not result.ok:
                return run.fail(classify_failure(result, "Customer update failed"))
        return ReconcileState.CONFIRM

    async def _confirm(self, run: ReconcileRun) -> ReconcileState:
        assert run.customer_id is not None
        result = await self.store.get_customer(run.customer_id)
        if not result.ok:
            return run.fail(classify_failure(result, f"Customer {run.customer_id} not retrievable"))

        record = customer_from_result(result)
        if record is None:
            return run.fail(RemoteCallError(error=f"Customer {run.customer_id} not retrievable", status_code=result.status_code))

        expected = run.request.normalized_email
        if record.normalized_email != expected:
            return run.fail(
                IdentityMismatch(
                    error=f"ID/email mismatch: customer {run.customer_id} belongs to a different email",
                    field="email",
                    expected_email=expected,
                    found_email=record.normalized_email,
                )
            )
        run.record = record
        return ReconcileState.TAG_MERGE

    async def _merge_tags(self, run: ReconcileRun) -> ReconcileState:
        assert run.record is not None
        failure = await self.merge_tags(run.record.id, run.record.tags)
        if failure is not None:
            return run.fail(failure)
        return ReconcileState.ATTRIBUTE_UPSERT

    async def _upsert_attributes(self, run: ReconcileRun) -> ReconcileState:
        assert run.record is not None and run.site is not None
        for spec in self.attribute_specs(run.site, run.request):
            failure = await self.upsert_attribute(run.record.id, spec)
            if failure is not None:
                return run.fail(failure)
        return ReconcileState.DONE

    # --- idempotent building blocks ---

    def attribute_specs(self, site: SiteIdCheck, request: RegistrationRequest) -> list[AttributeSpec]:
        ns = self.policy.attribute_namespace
        specs = [
            AttributeSpec(ns, "site_id", TEXT_FIELD, site.site_id),
            AttributeSpec(ns, "approved", "boolean", "true"),
        ]
        if site.account_name:
            specs.append(AttributeSpec(ns, "account_name", TEXT_FIELD, site.account_name))
        if site.account_id:
            specs.append(AttributeSpec(ns, "account_id", TEXT_FIELD, site.account_id))
        if request.title_role:
            specs.append(AttributeSpec(ns, "title_role", TEXT_FIELD, request.title_role))
        return specs

    async def merge_tags(self, customer_id: CustomerId, current: tuple[str, ...]) -> Failure | None:
        merged = merge_tag_sets(current, self.policy.required_tags)
        if merged == current:
            return None

        result = await self.store.write_tags(customer_id, merged)
        if not result.ok:
            return classify_failure(result, "Tag update failed")
        log.debug("tags merged: customer_id=%s added=%s", customer_id, sorted(set(merged) - set(current)))
        return None

    async def upsert_attribute(self, customer_id: CustomerId, spec: AttributeSpec) -> Failure | None:
        listed = await self.store.list_metafields(customer_id)
        if not listed.ok:
            return classify_failure(listed, "Metafield list failed")

        existing = next(
            (m for m in metafields_from_result(listed) if m.namespace == spec.namespace and m.key == spec.key),
            None,
        )
        if existing is None:
            result = await self.store.create_metafield(
                customer_id, namespace=spec.namespace, key=spec.key, type=spec.type, value=spec.value
            )
        elif existing.value == spec.value and existing.type in (None, spec.type):
            return None
        else:
            result = await self.store.update_metafield(customer_id, existing.id, type=spec.type, value=spec.value)

        if result.ok:
            return None
        if not isinstance(result.failure, TransientRemoteError):
            return AttributeWriteError(
                error=f"Metafield {spec.namespace}.{spec.key} rejected: {remote_error_message(result)}",
                namespace=spec.namespace,
                key=spec.key,
                status_code=result.status_code,
            )
        return classify_failure(result, f"Metafield {spec.namespace}.{spec.key} write failed")
