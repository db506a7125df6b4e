import asyncio
import json
import time
from unittest import mock

import pytest
import requests

from ledger_migration.loaders.base import ReadQuery, TargetStoreError
from ledger_migration.loaders.rest_store import (
    RestTargetStore,
    odata_literal,
    render_filter,
    render_query_params,
)


def fake_response(status=200, payload=None):
    response = mock.Mock()
    response.status_code = status
    response.headers = {}
    if payload is None:
        response.text = ""
        response.json.side_effect = ValueError("No JSON object could be decoded")
    else:
        response.text = json.dumps(payload)
        response.json.return_value = payload

    def raise_for_status():
        if status >= 400:
            raise requests.exceptions.HTTPError(f"{status} Error", response=response)

    response.raise_for_status.side_effect = raise_for_status
    return response


def make_store(**kwargs):
    session = mock.Mock()
    return RestTargetStore("https://api.example.test/api/", session=session, **kwargs), session


@pytest.mark.parametrize("value,expected", [
    ("Acme", "'Acme'"),
    ("O'Brien", "'O''Brien'"),
    (True, "true"),
    (False, "false"),
    (42, "42"),
    (None, "null"),
])
def test_odata_literal(value, expected):
    assert odata_literal(value) == expected


def test_render_filter_equality_and_any_of():
    expression = render_filter({"SourceSystem": "QBO", "SourceId": ["1", "2"], "IsActive": True})

    assert expression == "SourceSystem eq 'QBO' and (SourceId eq '1' or SourceId eq '2') and IsActive eq true"


def test_render_filter_edge_cases():
    assert render_filter({"SourceId": ["1"]}) == "SourceId eq '1'"
    assert render_filter({"SourceId": []}) == "1 eq 0"
    assert render_filter({}) is None


def test_render_query_params():
    params = render_query_params(ReadQuery(
        filter={"Name": "Rent"},
        select=["Id", "Name"],
        first=1,
        order_by="SortOrder desc",
    ))

    assert params == {
        "$filter": "Name eq 'Rent'",
        "$select": "Id,Name",
        "$first": "1",
        "$orderby": "SortOrder desc",
    }
    assert render_query_params(None) == {}


def test_session_carries_auth_and_role_headers():
    store = RestTargetStore("https://api.example.test/api", api_key="secret", api_role="migrator")

    assert store._session.headers["Authorization"] == "Bearer secret"
    assert store._session.headers["X-MS-API-ROLE"] == "migrator"


def test_create_returns_id_from_value_envelope(run_async):
    store, session = make_store()
    session.post.return_value = fake_response(201, {"value": [{"Id": "abc-123", "Name": "Acme"}]})

    result = run_async(store.create("customers", {"Name": "Acme"}))

    assert result.success
    assert result.id == "abc-123"
    session.post.assert_called_once_with(
        "https://api.example.test/api/customers", json={"Name": "Acme"}, timeout=30.0,
    )


def test_concurrent_creates_respect_rate_limit(run_async):
    store, session = make_store(rate_limit=20)
    sent_at = []

    def post(url, json=None, timeout=None):
        sent_at.append(time.time())
        return fake_response(201, {"value": [{"Id": json["Line"]}]})

    session.post.side_effect = post

    async def create_lines():
        return await asyncio.gather(*(store.create("invoicelines", {"Line": str(i)}) for i in range(4)))

    results = run_async(create_lines())

    assert all(r.success for r in results)
    gaps = [later - earlier for earlier, later in zip(sorted(sent_at), sorted(sent_at)[1:])]
    assert len(gaps) == 3
    assert min(gaps) >= 0.04


def test_create_conflict_on_409(run_async):
    store, session = make_store()
    session.post.return_value = fake_response(409, {"error": {"message": "Conflict"}})

    result = run_async(store.create("migrationentitymaps", {"SourceId": "1"}))

    assert result.conflict
    assert not result.success


def test_create_conflict_on_unique_constraint_message(run_async):
    store, session = make_store()
    session.post.return_value = fake_response(
        400, {"error": {"message": "Violation of UNIQUE KEY constraint 'UQ_EntityMap'"}}
    )

    result = run_async(store.create("migrationentitymaps", {"SourceId": "1"}))

    assert result.conflict


def test_create_error_carries_status_and_message(run_async):
    store, session = make_store()
    session.post.return_value = fake_response(500, {"error": {"message": "database offline"}})

    result = run_async(store.create("customers", {"Name": "Acme"}))

    assert not result.success
    assert not result.conflict
    assert result.error == "HTTP 500: database offline"


def test_create_transport_failure_is_an_error_result(run_async):
    store, session = make_store()
    session.post.side_effect = requests.exceptions.ConnectionError("refused")

    result = run_async(store.create("customers", {"Name": "Acme"}))

    assert result.error == "refused"


def test_create_without_id_is_an_error(run_async):
    store, session = make_store()
    session.post.return_value = fake_response(201, {"value": []})

    result = run_async(store.create("customers", {"Name": "Acme"}))

    assert result.error == "Create on customers returned no Id"


def test_read_returns_value_rows(run_async):
    store, session = make_store()
    session.get.return_value = fake_response(200, {"value": [{"Id": "1"}, {"Id": "2"}]})

    rows = run_async(store.read("accounts", ReadQuery(select=["Code"])))

    assert rows == [{"Id": "1"}, {"Id": "2"}]
    _, kwargs = session.get.call_args
    assert kwargs["params"] == {"$select": "Code"}


def test_read_failure_raises_target_store_error(run_async):
    store, session = make_store()
    session.get.return_value = fake_response(400, {"error": {"message": "Invalid filter"}})

    with pytest.raises(TargetStoreError, match="HTTP 400: Invalid filter"):
        run_async(store.read("accounts", ReadQuery(filter={"Bad": "x"})))


def test_batch_check_existing_chunks_requests(run_async):
    store, session = make_store()
    session.get.return_value = fake_response(200, {"value": [{"Id": "t7", "Name": "v7"}]})
    values = [f"v{i}" for i in range(120)]

    existing = run_async(store.batch_check_existing("customers", "Name", values))

    assert existing == {"v7": "t7"}
    assert session.get.call_count == 3
    first_params = session.get.call_args_list[0][1]["params"]
    assert first_params["$select"] == "Id,Name"
    assert first_params["$filter"].startswith("(Name eq 'v0' or Name eq 'v1'")
    assert first_params["$filter"].count(" or ") == 49


def test_batch_check_existing_without_values_skips_request(run_async):
    store, session = make_store()

    assert run_async(store.batch_check_existing("customers", "Name", [None, ""])) == {}
    session.get.assert_not_called()
