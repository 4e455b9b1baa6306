import pytest

from regbridge.services.failures import (
    AttributeWriteError,
    CreateNoIdentifier,
    DirectoryUnavailable,
    IdentityMismatch,
    InvalidSiteId,
    NoExistingAccount,
    RemoteCallError,
    TransientRemoteError,
    ValidationError,
)
from regbridge.services.reconcile import (
    TEXT_FIELD,
    AttributeSpec,
    ReconcilePolicy,
    ReconcileSuccess,
    ReconciliationEngine,
    merge_tag_sets,
)
from regbridge.services.registration import RegistrationRequest
from regbridge.services.site_directory import DirectoryCache
from regbridge.services.site_ids import SiteIdValidator
from regbridge.services.store import CustomerStore


def _request(**overrides) -> RegistrationRequest:
    fields = dict(
        email="new@example.com",
        site_id="910001",
        first_name="Nia",
        last_name="Okafor",
        title_role="RN",
        password="s3cret-pass",
    )
    fields.update(overrides)
    return RegistrationRequest(**fields)


def _attributes(fake_store, cid) -> dict[str, str]:
    return {m["key"]: m["value"] for m in fake_store.metafields_for(cid, "custom")}


def test_merge_tag_sets_keeps_order_and_adds_missing():
    assert merge_tag_sets(("vip", "wholesale"), ("approved", "vip")) == ("vip", "wholesale", "approved")
    assert merge_tag_sets((), ("approved", "approved")) == ("approved",)


async def test_new_email_creates_an_approved_customer(engine, fake_store):
    result = await engine.reconcile(_request())

    assert isinstance(result, ReconcileSuccess)
    assert result.action == "created"
    assert result.password == "s3cret-pass"
    cid = result.customer_id
    assert fake_store.customers[cid]["email"] == "new@example.com"
    assert fake_store.tags_of(cid) == {"approved"}
    assert _attributes(fake_store, cid) == {
        "site_id": "910001",
        "approved": "true",
        "account_name": "Riverside Family Health",
        "account_id": "ACC-1001",
        "title_role": "RN",
    }
    created = [r for r in fake_store.requests if r.method == "POST" and r.url.path.endswith("/customers.json")]
    assert len(created) == 1
    assert b'"send_email_welcome": false' in created[0].content


async def test_password_is_withheld_when_policy_says_so(store_client, directory, fake_store):
    engine = ReconciliationEngine(
        store=CustomerStore(store_client),
        validator=SiteIdValidator(directory),
        policy=ReconcilePolicy(return_new_password=False),
    )

    result = await engine.reconcile(_request())

    assert result.action == "created"
    assert result.password is None
    assert "password" not in result.to_payload()


async def test_existing_customer_is_updated_and_tags_are_merged(engine, fake_store):
    cid = fake_store.add_customer("Pat@Example.com", tags="vip", first_name="Old")

    result = await engine.reconcile(_request(email="pat@example.com", site_id="910004", first_name="Pat", password=None))

    assert isinstance(result, ReconcileSuccess)
    assert result.action == "updated"
    assert result.customer_id == cid
    assert result.password is None
    assert fake_store.customers[cid]["first_name"] == "Pat"
    assert fake_store.tags_of(cid) == {"vip", "approved"}
    assert _attributes(fake_store, cid) == {
        "site_id": "910004",
        "approved": "true",
        "account_name": "Northgate Medical Group",
        "title_role": "RN",
    }
    assert ("POST", "customers.json") not in fake_store.calls


async def test_rerun_writes_nothing_new(engine, fake_store):
    cid = fake_store.add_customer("pat@example.com", tags="vip")
    request = _request(email="pat@example.com", first_name=None, last_name=None, password=None)

    await engine.reconcile(request)
    fake_store.calls.clear()
    result = await engine.reconcile(request)

    assert result.action == "updated"
    assert fake_store.writes() == []
    assert len(fake_store.metafields_for(cid)) == 5


async def test_created_without_id_is_recovered_by_lookup(engine, fake_store):
    fake_store.omit_id_on_create = True

    result = await engine.reconcile(_request())

    assert isinstance(result, ReconcileSuccess)
    assert result.action == "created"
    assert fake_store.customers[result.customer_id]["email"] == "new@example.com"
    assert _attributes(fake_store, result.customer_id)["site_id"] == "910001"


async def test_created_without_id_and_not_searchable_fails(engine, fake_store):
    fake_store.omit_id_on_create = True
    fake_store.search = lambda wanted: []

    result = await engine.reconcile(_request())

    assert isinstance(result, CreateNoIdentifier)
    assert result.code == "create_no_identifier"
    assert fake_store.metafields == {}


async def test_duplicate_email_on_create_switches_to_update(engine, fake_store):
    cid = fake_store.add_customer("new@example.com")
    lookups = []

    def lagging_search(wanted):
        # not searchable on the first lookup yet
        lookups.append(wanted)
        if len(lookups) == 1:
            return []
        return [c for c in fake_store.customers.values() if c["email"] == wanted]

    fake_store.search = lagging_search

    result = await engine.reconcile(_request())

    assert isinstance(result, ReconcileSuccess)
    assert result.action == "updated"
    assert result.customer_id == cid
    assert result.password is None
    assert len(lookups) == 2
    assert fake_store.tags_of(cid) == {"approved"}


async def test_duplicate_email_without_recovery_reports_the_store_error(engine, fake_store):
    fake_store.add_customer("new@example.com")
    fake_store.search = lambda wanted: []

    result = await engine.reconcile(_request())

    assert type(result) is RemoteCallError
    assert result.status_code == 422
    assert result.field == "email"
    assert result.error == "Customer create failed: email has already been taken"


async def test_confirmation_guard_blocks_writes_on_identity_mismatch(engine, fake_store):
    cid = fake_store.add_customer("pat@example.com")
    fake_store.email_overrides[cid] = "someone-else@example.com"

    result = await engine.reconcile(
        _request(email="pat@example.com", first_name=None, last_name=None, password=None)
    )

    assert isinstance(result, IdentityMismatch)
    assert result.field == "email"
    assert result.found_email == "someone-else@example.com"
    assert fake_store.writes() == []
    assert fake_store.metafields == {}


async def test_update_only_without_account(engine, fake_store):
    result = await engine.reconcile(_request(update_only=True))

    assert isinstance(result, NoExistingAccount)
    assert result.to_payload()["code"] == "no_existing_account"
    assert fake_store.writes() == []


@pytest.mark.parametrize("password, error", [(None, "Password is required"), ("short", "at least 8")])
async def test_create_requires_a_usable_password(engine, fake_store, password, error):
    result = await engine.reconcile(_request(password=password))

    assert isinstance(result, ValidationError)
    assert result.field == "password"
    assert error in result.error
    assert fake_store.writes() == []


async def test_unknown_site_id_stops_before_the_store(engine, fake_store):
    result = await engine.reconcile(_request(site_id="999999"))

    assert result == InvalidSiteId(error="Invalid Site ID", field="siteId")
    assert fake_store.calls == []


async def test_unreachable_directory(store_client, store_http, fake_store):
    broken = DirectoryCache(http=store_http, csv_url="https://test-shop.myshopify.com/directory.csv")
    engine = ReconciliationEngine(store=CustomerStore(store_client), validator=SiteIdValidator(broken))

    result = await engine.reconcile(_request())

    assert isinstance(result, DirectoryUnavailable)
    assert fake_store.writes() == []


async def test_rejected_attribute_write(engine, fake_store):
    fake_store.faults.append(("POST", r"customers/\d+/metafields\.json", 422, {"errors": {"value": ["is invalid"]}}))

    result = await engine.reconcile(_request())

    assert isinstance(result, AttributeWriteError)
    assert (result.namespace, result.key, result.status_code) == ("custom", "site_id", 422)
    assert "value is invalid" in result.error
    # nothing is rolled back
    assert len(fake_store.customers) == 1


async def test_attribute_write_outage_is_transient(engine, fake_store, sleeps):
    for _ in range(2):
        fake_store.faults.append(("POST", r"customers/\d+/metafields\.json", 503, "unavailable"))

    result = await engine.reconcile(_request())

    assert isinstance(result, TransientRemoteError)
    assert result.code == "transient_remote_error"
    assert result.status_code == 503
    assert sleeps == [0.5]


async def test_upsert_attribute_is_idempotent(engine, fake_store):
    cid = fake_store.add_customer("pat@example.com")
    approved = AttributeSpec("custom", "approved", "boolean", "true")

    assert await engine.upsert_attribute(cid, approved) is None
    assert await engine.upsert_attribute(cid, approved) is None
    assert len(fake_store.metafields_for(cid, "custom", "approved")) == 1

    spec = AttributeSpec("custom", "site_id", TEXT_FIELD, "910001")
    await engine.upsert_attribute(cid, spec)
    await engine.upsert_attribute(cid, spec)
    assert len(fake_store.metafields_for(cid, "custom", "site_id")) == 1
    assert [c for c in fake_store.writes() if c[0] == "POST"] == [("POST", f"customers/{cid}/metafields.json")] * 2

    await engine.upsert_attribute(cid, AttributeSpec("custom", "site_id", TEXT_FIELD, "910002"))

    [mf] = fake_store.metafields_for(cid, "custom", "site_id")
    assert mf["value"] == "910002"


async def test_merge_tags_only_writes_on_change(engine, fake_store):
    cid = fake_store.add_customer("pat@example.com", tags="vip")

    assert await engine.merge_tags(cid, ("vip",)) is None
    assert fake_store.tags_of(cid) == {"vip", "approved"}

    fake_store.calls.clear()
    assert await engine.merge_tags(cid, ("vip", "approved")) is None
    assert fake_store.writes() == []


async def test_differently_cased_required_tag_counts_as_present(engine, fake_store):
    cid = fake_store.add_customer("pat@example.com", tags="vip, Approved")

    assert merge_tag_sets(("vip", "Approved"), ("approved",)) == ("vip", "Approved")
    assert await engine.merge_tags(cid, ("vip", "Approved")) is None
    assert fake_store.writes() == []
