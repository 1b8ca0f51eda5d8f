"""Tests for the store connection and the connection config loader."""

import base64
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock, patch

import pytest
import requests

from sf_file_flow.lib import conf_lib
from sf_file_flow.lib.connection import StoreConnection
from sf_file_flow.lib.internal.exceptions import ConfigurationError, StoreRequestError


def _response(
    payload: Any = None,
    status_code: int = 200,
    content: bytes = b"",
    reason: str = "OK",
) -> MagicMock:
    response = MagicMock()
    response.ok = status_code < 400
    response.status_code = status_code
    response.reason = reason
    response.content = content
    if payload is None:
        response.json.side_effect = ValueError("No JSON")
    else:
        response.json.return_value = payload
    return response


def _connection(*responses: MagicMock) -> tuple[StoreConnection, MagicMock]:
    session = MagicMock()
    session.headers = {}
    session.request.side_effect = list(responses)
    conn = StoreConnection(
        "https://Acme.example.com/", "token-123", api_version="59.0", session=session
    )
    return conn, session


class TestStoreConnection:
    """Tests for the REST handle."""

    def test_identity_and_headers(self) -> None:
        conn, session = _connection()

        assert conn.identity == "https://acme.example.com"
        assert conn.base_path == "https://Acme.example.com/services/data/v59.0"
        assert session.headers["Authorization"] == "Bearer token-123"

    def test_empty_instance_url_is_rejected(self) -> None:
        with pytest.raises(ValueError):
            StoreConnection("", "token")

    def test_query_strips_attributes(self) -> None:
        conn, session = _connection(
            _response(
                {
                    "done": False,
                    "nextRecordsUrl": "/services/data/v59.0/query/01g-2000",
                    "records": [{"attributes": {"type": "Account"}, "Id": "001A"}],
                }
            )
        )

        page = conn.query("SELECT Id FROM Account")

        assert page.rows == [{"Id": "001A"}]
        assert page.done is False
        assert page.next_records_url == "/services/data/v59.0/query/01g-2000"
        method, url = session.request.call_args.args
        assert (method, url) == (
            "GET",
            "https://Acme.example.com/services/data/v59.0/query",
        )
        assert session.request.call_args.kwargs["params"] == {
            "q": "SELECT Id FROM Account"
        }

    def test_query_more_resolves_relative_url(self) -> None:
        conn, session = _connection(_response({"done": True, "records": []}))

        page = conn.query_more("/services/data/v59.0/query/01g-2000")

        assert page.done is True
        assert session.request.call_args.args[1] == (
            "https://Acme.example.com/services/data/v59.0/query/01g-2000"
        )

    def test_error_body_is_parsed(self) -> None:
        conn, _ = _connection(
            _response(
                [{"errorCode": "INVALID_FIELD", "message": "No such column"}],
                status_code=400,
                reason="Bad Request",
            )
        )

        with pytest.raises(StoreRequestError) as excinfo:
            conn.query("SELECT Nope FROM Account")

        assert excinfo.value.status_code == 400
        assert excinfo.value.error_code == "INVALID_FIELD"
        assert "No such column" in excinfo.value.message

    def test_network_error_is_wrapped(self) -> None:
        conn, session = _connection()
        session.request.side_effect = requests.ConnectionError("refused")

        with pytest.raises(StoreRequestError, match="refused"):
            conn.query("SELECT Id FROM Account")

    def test_download_returns_binary(self) -> None:
        conn, session = _connection(_response(content=b"\x00\x01binary"))

        assert conn.download_version("068A") == b"\x00\x01binary"
        assert session.request.call_args.args[1].endswith(
            "/sobjects/ContentVersion/068A/VersionData"
        )

    def test_upload_version_encodes_data(self) -> None:
        conn, session = _connection(_response({"success": True, "id": "068T"}))

        result = conn.upload_version("Report", "report.pdf", b"pdf-bytes", None)

        assert result.success is True
        assert result.id == "068T"
        body = session.request.call_args.kwargs["json"]
        assert base64.b64decode(body["VersionData"]) == b"pdf-bytes"
        assert body["PathOnClient"] == "report.pdf"
        assert body["Description"] == ""

    def test_single_create_rejection_becomes_failed_result(self) -> None:
        conn, _ = _connection(
            _response(
                [{"errorCode": "STORAGE_LIMIT_EXCEEDED", "message": "full"}],
                status_code=400,
                reason="Bad Request",
            )
        )

        results = conn.create("ContentVersion", {"Title": "x"})

        assert results[0].success is False
        assert "full" in results[0].error_message

    def test_single_create_server_error_raises(self) -> None:
        conn, _ = _connection(_response(status_code=500, reason="Server Error"))

        with pytest.raises(StoreRequestError):
            conn.create("ContentVersion", {"Title": "x"})

    def test_batch_create_reports_per_item(self) -> None:
        conn, session = _connection(
            _response(
                [
                    {"success": True, "id": "06A1", "errors": []},
                    {
                        "success": False,
                        "errors": [
                            {"statusCode": "INSUFFICIENT_ACCESS", "message": "no"}
                        ],
                    },
                ]
            )
        )

        results = conn.create(
            "ContentDocumentLink",
            [{"LinkedEntityId": "001A"}, {"LinkedEntityId": "001B"}],
        )

        assert [r.success for r in results] == [True, False]
        assert results[1].error_message == "INSUFFICIENT_ACCESS: no"
        body = session.request.call_args.kwargs["json"]
        assert body["allOrNone"] is False
        assert body["records"][0]["attributes"] == {"type": "ContentDocumentLink"}
        assert session.request.call_args.args[1].endswith("/composite/sobjects")

    def test_describe_objects_filters_capabilities(self) -> None:
        conn, _ = _connection(
            _response(
                {
                    "sobjects": [
                        {"name": "Account", "queryable": True, "createable": True},
                        {"name": "Log", "queryable": True, "createable": False},
                    ]
                }
            )
        )

        assert [o["name"] for o in conn.describe_objects()] == ["Account"]

    def test_describe_drops_compound_fields(self) -> None:
        conn, _ = _connection(
            _response(
                {
                    "fields": [
                        {"name": "Name", "type": "string"},
                        {"name": "BillingAddress", "type": "address"},
                    ]
                }
            )
        )

        assert [f["name"] for f in conn.describe("Account")] == ["Name"]


class TestConfLib:
    """Tests for reading connection configuration files."""

    def _write(self, tmp_path: Path, body: str) -> str:
        path = tmp_path / "connection.conf"
        path.write_text(body, encoding="utf-8")
        return str(path)

    def test_get_connection_from_config(self, tmp_path: Path) -> None:
        config_file = self._write(
            tmp_path,
            "[Connection]\n"
            "instance_url = https://acme.example.com\n"
            "access_token = abc\n"
            "api_version = 58.0\n"
            "timeout = 30\n",
        )

        conn = conf_lib.get_connection_from_config(config_file)

        assert conn.instance_url == "https://acme.example.com"
        assert conn.api_version == "58.0"
        assert conn.timeout == 30.0

    def test_defaults_for_optional_keys(self) -> None:
        conn = conf_lib.get_connection_from_dict(
            {"instance_url": "https://acme.example.com", "access_token": "abc"}
        )

        assert conn.api_version == "60.0"
        assert conn.timeout == 120.0

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            conf_lib.get_connection_from_config(str(tmp_path / "nope.conf"))

    def test_missing_key(self, tmp_path: Path) -> None:
        config_file = self._write(
            tmp_path, "[Connection]\ninstance_url = https://acme.example.com\n"
        )

        with pytest.raises(ConfigurationError, match="access_token"):
            conf_lib.get_connection_from_config(config_file)

    def test_missing_section(self, tmp_path: Path) -> None:
        config_file = self._write(tmp_path, "[Other]\nkey = value\n")

        with pytest.raises(KeyError):
            conf_lib.get_connection_from_config(config_file)

    @patch("sf_file_flow.lib.conf_lib.StoreConnection")
    def test_malformed_timeout(self, mock_connection: MagicMock) -> None:
        with pytest.raises(ConfigurationError):
            conf_lib.get_connection_from_dict(
                {
                    "instance_url": "https://acme.example.com",
                    "access_token": "abc",
                    "timeout": "soon",
                }
            )
        mock_connection.assert_not_called()
