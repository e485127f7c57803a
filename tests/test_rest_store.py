from unittest.mock import MagicMock, patch

import pytest
import requests

from konsernkontroll.rest import RestConfig, RestTableStore
from konsernkontroll.storage import RowPatch, StorageError


def make_store(**overrides) -> RestTableStore:
    values = {
        "base_url": "https://api.example.test/",
        "app_id": "app-1",
        "api_key": "secret",
        "retries": 3,
        "retry_delay": 0,
    }
    values.update(overrides)
    return RestTableStore(RestConfig(**values))


def make_response(status_code=200, body=None):
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = body if body is not None else {}
    response.text = ""
    return response


def test_requires_base_url() -> None:
    with pytest.raises(ValueError):
        RestTableStore(RestConfig())


@patch("konsernkontroll.rest.requests.request")
def test_fetch_sends_filters_and_auth_headers(mock_request) -> None:
    mock_request.return_value = make_response(
        body={"rows": [{"id": 1, "group_id": 1}, {"id": 2, "group_id": 1}]}
    )
    store = make_store()

    rows = store.fetch_rows("companies", {"group_id": 1, "id": [2]})

    assert rows == [{"id": 2, "group_id": 1}]
    kwargs = mock_request.call_args.kwargs
    assert kwargs["method"] == "GET"
    assert kwargs["url"] == "https://api.example.test/api/companies"
    assert kwargs["params"]["group_id"] == 1
    assert "_t" in kwargs["params"]
    assert "id" not in kwargs["params"]
    assert kwargs["headers"]["Authorization"] == "Bearer secret"
    assert kwargs["headers"]["X-APP-ID"] == "app-1"


@patch("konsernkontroll.rest.requests.request")
def test_fetch_retries_server_errors(mock_request) -> None:
    mock_request.side_effect = [
        make_response(503),
        make_response(body={"rows": [{"id": 1}]}),
    ]
    store = make_store()

    assert store.fetch_rows("companies") == [{"id": 1}]
    assert mock_request.call_count == 2


@patch("konsernkontroll.rest.requests.request")
def test_fetch_gives_up_after_retries(mock_request) -> None:
    mock_request.return_value = make_response(500)
    store = make_store(retries=2)

    with pytest.raises(StorageError) as excinfo:
        store.fetch_rows("companies")
    assert excinfo.value.status == 500
    assert mock_request.call_count == 2


@patch("konsernkontroll.rest.requests.request")
def test_client_errors_are_not_retried(mock_request) -> None:
    mock_request.return_value = make_response(404)
    store = make_store()

    with pytest.raises(StorageError) as excinfo:
        store.fetch_rows("companies")
    assert excinfo.value.status == 404
    assert mock_request.call_count == 1


@patch("konsernkontroll.rest.requests.request")
def test_timeout_maps_to_504(mock_request) -> None:
    mock_request.side_effect = requests.exceptions.Timeout()
    store = make_store(retries=1)

    with pytest.raises(StorageError) as excinfo:
        store.fetch_rows("companies")
    assert excinfo.value.status == 504


@patch("konsernkontroll.rest.requests.request")
def test_invalid_json_is_502(mock_request) -> None:
    response = make_response()
    response.json.side_effect = ValueError("no json")
    mock_request.return_value = response
    store = make_store()

    with pytest.raises(StorageError) as excinfo:
        store.insert_rows("reports", [{"company_id": 1}])
    assert excinfo.value.status == 502


@patch("konsernkontroll.rest.requests.request")
def test_insert_posts_array(mock_request) -> None:
    mock_request.return_value = make_response(body={"inserted": [{"id": 7, "company_id": 1}]})
    store = make_store()

    rows = store.insert_rows("reports", {"company_id": 1})

    assert rows == [{"id": 7, "company_id": 1}]
    assert mock_request.call_args.kwargs["json"] == [{"company_id": 1}]


@patch("konsernkontroll.rest.requests.request")
def test_patch_payload_shapes(mock_request) -> None:
    mock_request.return_value = make_response(body={"rows": [{"id": 1}]})
    store = make_store()

    store.patch_rows("companies", RowPatch(id=1, fields={"name": "x"}))
    assert mock_request.call_args.kwargs["json"] == {"id": 1, "data": {"name": "x"}}

    store.patch_rows(
        "companies",
        [RowPatch(id=1, fields={"sort_order": 0}), RowPatch(id=2, fields={"sort_order": 1})],
    )
    assert mock_request.call_args.kwargs["json"] == [
        {"id": 1, "fields": {"sort_order": 0}},
        {"id": 2, "fields": {"sort_order": 1}},
    ]


@patch("konsernkontroll.rest.requests.request")
def test_delete_issues_one_request_per_id(mock_request) -> None:
    mock_request.return_value = make_response(body={"deleted": 1})
    store = make_store()

    assert store.delete_rows("reports", [3, 4]) == 2
    assert mock_request.call_count == 2
    assert mock_request.call_args.kwargs["params"] == {"field": "id", "value": 4}
