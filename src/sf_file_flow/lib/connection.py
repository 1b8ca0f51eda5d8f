"""Store connection.

A thin handle around the REST API of one remote store. It exposes exactly
the capabilities the migration needs: paginated queries, schema describe,
binary download of a file version, record creation and a stable identity
string. Session acquisition is not handled here; a connection is built
from an already issued access token.
"""

import base64
from dataclasses import dataclass, field
from typing import Any, Optional, Union

import requests

from ..logging_config import log
from .internal.exceptions import StoreRequestError

DEFAULT_API_VERSION = "60.0"
DEFAULT_TIMEOUT = 120.0


@dataclass
class QueryPage:
    """One page of a query result."""

    rows: list[dict[str, Any]]
    done: bool
    next_records_url: Optional[str] = None


@dataclass
class SaveResult:
    """Outcome of creating a single record."""

    success: bool
    id: Optional[str] = None
    errors: list[str] = field(default_factory=list)

    @property
    def error_message(self) -> str:
        return ", ".join(self.errors) or "Unknown insert error"

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "SaveResult":
        return cls(
            success=bool(payload.get("success")),
            id=payload.get("id"),
            errors=[_format_api_error(e) for e in payload.get("errors") or []],
        )


def _format_api_error(error: Any) -> str:
    if isinstance(error, dict):
        code = error.get("statusCode") or error.get("errorCode")
        message = error.get("message", "")
        return f"{code}: {message}" if code else str(message)
    return str(error)


def _strip_attributes(row: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in row.items() if k != "attributes"}


class StoreConnection:
    """A handle to one remote store instance.

    Args:
        instance_url: Base URL of the instance, e.g.
            ``https://acme.my.salesforce.com``.
        access_token: A bearer token for the REST API.
        api_version: REST API version used to build endpoint paths.
        timeout: Per-request timeout in seconds.
        session: Optional pre-configured ``requests.Session``.
    """

    def __init__(
        self,
        instance_url: str,
        access_token: str,
        api_version: str = DEFAULT_API_VERSION,
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None,
    ) -> None:
        if not instance_url:
            raise ValueError("instance_url must not be empty.")
        self.instance_url = instance_url.rstrip("/")
        self.api_version = api_version
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers["Authorization"] = f"Bearer {access_token}"
        self.session.headers["Accept"] = "application/json"

    def __repr__(self) -> str:
        return f"StoreConnection({self.instance_url!r})"

    @property
    def identity(self) -> str:
        """A stable string identifying the remote instance."""
        return self.instance_url.lower()

    @property
    def base_path(self) -> str:
        return f"{self.instance_url}/services/data/v{self.api_version}"

    # --- Low-level request handling ---

    def _request(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        if not url.startswith("http"):
            url = f"{self.instance_url}{url}"
        log.debug(f"{method} {url}")
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise StoreRequestError(f"Request to {url} failed: {e}") from e

        if not response.ok:
            raise self._error_from_response(response)
        return response

    @staticmethod
    def _error_from_response(response: requests.Response) -> StoreRequestError:
        error_code = None
        message = f"{response.status_code} {response.reason}"
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, list) and body and isinstance(body[0], dict):
            error_code = body[0].get("errorCode")
            message = f"{message}: {body[0].get('message', '')}"
        return StoreRequestError(
            message, status_code=response.status_code, error_code=error_code
        )

    # --- Query capability ---

    def _to_page(self, payload: dict[str, Any]) -> QueryPage:
        return QueryPage(
            rows=[_strip_attributes(r) for r in payload.get("records", [])],
            done=bool(payload.get("done", True)),
            next_records_url=payload.get("nextRecordsUrl"),
        )

    def query(self, soql: str) -> QueryPage:
        """Executes a query and returns its first page."""
        response = self._request("GET", f"{self.base_path}/query", params={"q": soql})
        return self._to_page(response.json())

    def query_more(self, next_records_url: str) -> QueryPage:
        """Fetches the page behind an opaque continuation reference."""
        response = self._request("GET", next_records_url)
        return self._to_page(response.json())

    # --- Describe capability ---

    def describe_objects(self) -> list[dict[str, Any]]:
        """Lists the objects that are both queryable and createable."""
        response = self._request("GET", f"{self.base_path}/sobjects")
        return [
            obj
            for obj in response.json().get("sobjects", [])
            if obj.get("queryable") and obj.get("createable")
        ]

    def describe(self, object_name: str) -> list[dict[str, Any]]:
        """Returns the field descriptions of one object."""
        response = self._request(
            "GET", f"{self.base_path}/sobjects/{object_name}/describe"
        )
        return [
            f
            for f in response.json().get("fields", [])
            if f.get("type") not in ("address", "location")
        ]

    # --- Binary fetch capability ---

    def download_version(self, version_id: str) -> bytes:
        """Downloads the binary content of a file version."""
        response = self._request(
            "GET",
            f"{self.base_path}/sobjects/ContentVersion/{version_id}/VersionData",
            allow_redirects=True,
        )
        return response.content

    # --- Create capability ---

    def create(
        self,
        object_name: str,
        records: Union[dict[str, Any], list[dict[str, Any]]],
    ) -> list[SaveResult]:
        """Creates one or many records and returns a result per record.

        A single record goes to the sObject endpoint, several records go to
        the composite endpoint with ``allOrNone`` disabled so that failures
        are reported per item.
        """
        if isinstance(records, dict):
            try:
                response = self._request(
                    "POST", f"{self.base_path}/sobjects/{object_name}", json=records
                )
            except StoreRequestError as e:
                if e.status_code == 400:
                    return [SaveResult(success=False, errors=[e.message])]
                raise
            return [SaveResult.from_payload(response.json())]

        payload = {
            "allOrNone": False,
            "records": [
                {"attributes": {"type": object_name}, **record} for record in records
            ],
        }
        response = self._request(
            "POST", f"{self.base_path}/composite/sobjects", json=payload
        )
        return [SaveResult.from_payload(item) for item in response.json()]

    def upload_version(
        self, title: str, path: str, data: bytes, description: Optional[str] = None
    ) -> SaveResult:
        """Uploads a binary as a new file version, base64 encoded."""
        record = {
            "Title": title,
            "PathOnClient": path,
            "VersionData": base64.b64encode(data).decode("utf-8"),
            "Description": description or "",
        }
        return self.create("ContentVersion", record)[0]
