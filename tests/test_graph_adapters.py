"""Tests for the Outlook, OneDrive and Excel adapters over a mocked Graph client."""

from __future__ import annotations

import io
from datetime import UTC, datetime
from unittest.mock import MagicMock

import pytest
import requests
from openpyxl import load_workbook

from conftest import MemoryCredentialStore
from invoice_archiver.archive import OneDriveArchive
from invoice_archiver.credentials import CredentialManager
from invoice_archiver.graph_client import GraphClient, _make_session
from invoice_archiver.ledger import ExcelLedger, build_ledger_template, parse_row_numbers
from invoice_archiver.mail_source import OutlookMailSource, build_search_expression
from invoice_archiver.models import Credential, LedgerRow, SearchQuery

IMMUTABLE_IDS = {"Prefer": 'IdType="ImmutableId"'}


@pytest.fixture
def graph() -> MagicMock:
    return MagicMock(spec=GraphClient)


def test_search_expression_includes_all_filters():
    query = SearchQuery(
        keywords=["invoice", "receipt"],
        senders=["a@x.com", "b@y.com"],
        received_since=datetime(2024, 2, 1, tzinfo=UTC),
    )

    assert build_search_expression(query) == (
        "hasAttachments:true AND (invoice OR receipt) AND (from:a@x.com OR from:b@y.com)"
        " AND received>=2024-02-01"
    )


def test_search_skips_marked_messages_and_caps_results(graph):
    graph.iter_values.return_value = iter(
        [
            {"id": "m1", "categories": []},
            {"id": "m2", "categories": ["processed-financial-docs"]},
            {"id": "m3", "categories": ["Blue category"]},
            {"id": "m4", "categories": []},
        ]
    )
    source = OutlookMailSource(graph, "processed-financial-docs")

    ids = source.search(
        SearchQuery(keywords=["invoice"], exclude_marker="processed-financial-docs", max_results=2)
    )

    assert ids == ["m1", "m3"]
    path, = graph.iter_values.call_args.args
    assert path == "/me/messages"
    assert graph.iter_values.call_args.kwargs["params"]["$search"] == '"hasAttachments:true AND (invoice)"'


def test_fetch_details_keeps_only_file_attachments(graph):
    graph.get_json.return_value = {
        "id": "m1",
        "internetMessageId": "<abc@mail>",
        "subject": "Invoice 12",
        "from": {"emailAddress": {"address": "billing@acme.com", "name": "Acme"}},
        "receivedDateTime": "2024-03-14T09:30:00Z",
    }
    graph.iter_values.return_value = iter(
        [
            {"@odata.type": "#microsoft.graph.fileAttachment", "id": "a1", "name": "inv.pdf",
             "contentType": "application/pdf", "size": 2048, "isInline": False},
            {"@odata.type": "#microsoft.graph.fileAttachment", "id": "a2", "name": "logo.png",
             "contentType": "image/png", "size": 10, "isInline": True},
            {"@odata.type": "#microsoft.graph.itemAttachment", "id": "a3", "name": "fwd"},
        ]
    )

    details = OutlookMailSource(graph, "marker").fetch_details("m1")

    assert details.sender == "billing@acme.com"
    assert details.date == datetime(2024, 3, 14, 9, 30, tzinfo=UTC)
    assert details.internet_message_id == "<abc@mail>"
    assert [(a.attachment_id, a.size) for a in details.attachments] == [("a1", 2048)]


def test_fetch_details_returns_none_for_missing_message(graph):
    graph.get_json.return_value = None

    assert OutlookMailSource(graph, "marker").fetch_details("gone") is None
    assert graph.get_json.call_args.kwargs["missing_ok"] is True


def test_mailbox_requests_ask_for_immutable_ids(graph):
    graph.iter_values.side_effect = [iter([{"id": "m1", "categories": []}]), iter([])]
    graph.get_json.return_value = {"id": "m1", "subject": "Invoice 12", "from": {}}
    graph.get.return_value = MagicMock(content=b"%PDF")
    source = OutlookMailSource(graph, "marker")

    source.search(SearchQuery(keywords=["invoice"]))
    source.fetch_details("m1")
    source.fetch_attachment("m1", "a1")

    search_call, attachments_call = graph.iter_values.call_args_list
    assert search_call.kwargs["headers"] == IMMUTABLE_IDS
    assert attachments_call.kwargs["headers"] == IMMUTABLE_IDS
    assert graph.get_json.call_args.kwargs["headers"] == IMMUTABLE_IDS
    assert graph.get.call_args.kwargs["headers"] == IMMUTABLE_IDS


def test_marker_creates_category_once_and_is_idempotent(graph):
    graph.iter_values.return_value = iter([{"displayName": "Red category"}])
    graph.get_json.return_value = {"categories": ["Red category"]}
    source = OutlookMailSource(graph, "processed-financial-docs")

    source.apply_processed_marker("m1")

    graph.post_json.assert_called_once_with(
        "/me/outlook/masterCategories",
        {"displayName": "processed-financial-docs", "color": "preset4"},
    )
    graph.patch_json.assert_called_once_with(
        "/me/messages/m1",
        {"categories": ["Red category", "processed-financial-docs"]},
        headers=IMMUTABLE_IDS,
    )

    graph.reset_mock()
    graph.iter_values.return_value = iter([{"displayName": "processed-financial-docs"}])
    graph.get_json.return_value = {"categories": ["processed-financial-docs"]}

    source.apply_processed_marker("m1")

    graph.post_json.assert_not_called()
    graph.patch_json.assert_not_called()


def test_archive_reuses_existing_folder(graph):
    graph.get_json.return_value = {"id": "folder-9", "folder": {"childCount": 3}}

    assert OneDriveArchive(graph).ensure_container("Financial Documents") == "folder-9"
    graph.get_json.assert_called_once_with("/me/drive/root:/Financial%20Documents", missing_ok=True)
    graph.post_json.assert_not_called()


def test_archive_creates_missing_folder_and_uploads(graph):
    graph.get_json.return_value = None
    graph.post_json.return_value = {"id": "folder-1"}
    graph.put_content.return_value = {"id": "file-1", "webUrl": "https://onedrive/file-1"}
    archive = OneDriveArchive(graph)

    folder_id = archive.ensure_container("Financial Documents")
    stored = archive.store(b"%PDF", "acme_INV1_2024-01-01.pdf", "application/pdf", folder_id)

    assert folder_id == "folder-1"
    assert stored.file_id == "file-1"
    assert stored.web_url == "https://onedrive/file-1"
    path, content, mime = graph.put_content.call_args.args
    assert path == "/me/drive/items/folder-1:/acme_INV1_2024-01-01.pdf:/content"
    assert (content, mime) == (b"%PDF", "application/pdf")


@pytest.mark.parametrize(
    "address, rows",
    [
        ("'Financial Documents'!A7:J7", (7, 7)),
        ("Sheet1!A1:J12", (1, 12)),
        ("Sheet1!$A$3", (3, 3)),
    ],
)
def test_parse_row_numbers(address, rows):
    assert parse_row_numbers(address) == rows


def test_parse_row_numbers_rejects_garbage():
    with pytest.raises(ValueError):
        parse_row_numbers("Sheet1!")


def test_ledger_template_has_header_row():
    workbook = load_workbook(io.BytesIO(build_ledger_template("Financial Documents")))
    sheet = workbook["Financial Documents"]

    assert [cell.value for cell in sheet[1]] == list(LedgerRow.HEADERS)
    assert sheet["A1"].font.bold


def test_ledger_creates_missing_workbook(graph):
    graph.get_json.return_value = None
    graph.put_content.return_value = {"id": "book-1"}

    assert ExcelLedger(graph, "Financial Documents").ensure_ledger("Financial Documents Log") == "book-1"
    path = graph.put_content.call_args.args[0]
    assert path == "/me/drive/root:/Financial%20Documents%20Log.xlsx:/content"


def test_ledger_appends_after_used_range(graph):
    graph.get_json.return_value = {"address": "'Financial Documents'!A1:J4"}
    graph.patch_json.return_value = {"address": "'Financial Documents'!A5:J5"}
    row = LedgerRow(
        "2024-03-15", "2024-03-14", "a@b.com", "a", "Invoice 1", "1",
        "a_INV1_2024-03-14.pdf", "file-1", "https://onedrive/file-1", "1.5 KB",
    )

    row_number = ExcelLedger(graph, "Financial Documents").append_row("book-1", row)

    assert row_number == 5
    path, body = graph.patch_json.call_args.args
    assert path.endswith("/worksheets/Financial%20Documents/range(address='A5:J5')")
    assert body == {"values": [row.values()]}
    assert body["values"][0][5] == "1"


def test_graph_client_signs_requests_and_raises_on_errors():
    store = MemoryCredentialStore(
        Credential("token-123", None, "Mail.ReadWrite", "Bearer", expiry_epoch_ms=None)
    )
    session = MagicMock()
    ok = MagicMock(status_code=200)
    ok.json.return_value = {"value": [{"id": 1}], "@odata.nextLink": "https://graph.microsoft.com/v1.0/next"}
    last = MagicMock(status_code=200)
    last.json.return_value = {"value": [{"id": 2}]}
    session.request.side_effect = [ok, last]
    client = GraphClient(CredentialManager(store, MagicMock()), session=session)

    assert [item["id"] for item in client.iter_values("/me/messages", params={"$top": 1})] == [1, 2]
    first, second = session.request.call_args_list
    assert first.args == ("GET", "https://graph.microsoft.com/v1.0/me/messages")
    assert first.kwargs["headers"]["Authorization"] == "Bearer token-123"
    assert first.kwargs["params"] == {"$top": 1}
    assert second.args[1] == "https://graph.microsoft.com/v1.0/next"
    assert second.kwargs["params"] is None

    missing = MagicMock(status_code=404)
    session.request.side_effect = None
    session.request.return_value = missing
    assert client.get_json("/me/drive/root:/x", missing_ok=True) is None

    missing.raise_for_status.side_effect = requests.HTTPError("404 Not Found")
    with pytest.raises(requests.HTTPError):
        client.get_json("/me/drive/root:/x")


def test_graph_client_merges_extra_headers_with_authorization():
    store = MemoryCredentialStore(
        Credential("token-123", None, "Mail.ReadWrite", "Bearer", expiry_epoch_ms=None)
    )
    session = MagicMock()
    session.request.return_value = MagicMock(status_code=200)
    client = GraphClient(CredentialManager(store, MagicMock()), session=session)

    client.patch_json("/me/messages/m1", {"categories": []}, headers=IMMUTABLE_IDS)

    headers = session.request.call_args.kwargs["headers"]
    assert headers == {"Authorization": "Bearer token-123", **IMMUTABLE_IDS}


def test_session_does_not_replay_uploads_or_creates():
    retries = _make_session().get_adapter("https://graph.microsoft.com").max_retries

    assert "GET" in retries.allowed_methods
    assert "PUT" not in retries.allowed_methods
    assert "POST" not in retries.allowed_methods
