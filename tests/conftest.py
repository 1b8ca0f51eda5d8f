"""Shared fixtures: an in-memory store that speaks the query/create/download API."""

import re
from collections import defaultdict
from pathlib import Path
from typing import Any, Callable, Optional, Union

import pytest

from sf_file_flow.lib.connection import QueryPage, SaveResult
from sf_file_flow.lib.internal.exceptions import StoreRequestError
from sf_file_flow.lib.models import MigrationConfig

_SELECT_RE = re.compile(
    r"^\s*SELECT\s+(?P<fields>.+?)\s+FROM\s+(?P<object>\w+)"
    r"(?:\s+WHERE\s+(?P<where>.+?))?\s*$",
    re.IGNORECASE | re.DOTALL,
)
_IN_RE = re.compile(r"^(?P<field>\w+)\s+IN\s+\((?P<values>.*)\)$", re.DOTALL)
_EQ_RE = re.compile(r"^(?P<field>\w+)\s*=\s*(?P<value>.+)$")
_LITERAL_RE = re.compile(r"'((?:[^'\\]|\\.)*)'")


def _unescape(value: str) -> str:
    return re.sub(r"\\(.)", r"\1", value)


def _matches(row: dict[str, Any], condition: str) -> bool:
    condition = condition.strip()
    in_match = _IN_RE.match(condition)
    if in_match:
        values = {_unescape(v) for v in _LITERAL_RE.findall(in_match["values"])}
        value = row.get(in_match["field"])
        return value is not None and str(value) in values
    eq_match = _EQ_RE.match(condition)
    if eq_match:
        raw = eq_match["value"].strip()
        value = row.get(eq_match["field"])
        if raw.lower() in ("true", "false"):
            return value is (raw.lower() == "true")
        return value is not None and str(value) == _unescape(raw.strip("'"))
    raise ValueError(f"Unsupported condition: {condition}")


class FakeStore:
    """An in-memory store with deterministic ids and page-wise query results."""

    def __init__(self, instance_url: str, prefix: str, page_size: int = 2000):
        self.instance_url = instance_url
        self.prefix = prefix
        self.page_size = page_size
        self.tables: dict[str, list[dict[str, Any]]] = defaultdict(list)
        self.blobs: dict[str, bytes] = {}
        self.fields: dict[str, list[dict[str, Any]]] = {}
        self.queries: list[str] = []
        self.downloads: list[str] = []
        self.uploads: list[str] = []
        self.created: dict[str, list[dict[str, Any]]] = defaultdict(list)
        self.fail_download_ids: set[str] = set()
        self.fail_upload_titles: set[str] = set()
        self.reject_link_entities: set[str] = set()
        self.resolvable = True
        self._cursors: dict[str, list[dict[str, Any]]] = {}
        self._counter = 0

    @property
    def identity(self) -> str:
        return self.instance_url.lower()

    def new_id(self, key_prefix: str) -> str:
        self._counter += 1
        return f"{key_prefix}{self.prefix}{self._counter:06d}"

    # --- Seeding helpers ---

    def add_record(self, object_name: str, **fields: Any) -> dict[str, Any]:
        row = {"Id": fields.pop("Id", None) or self.new_id("001"), **fields}
        self.tables[object_name].append(row)
        return row

    def add_file(
        self,
        entity_ids: list[str],
        title: str,
        data: bytes = b"content",
        size: Optional[int] = None,
        old_versions: int = 0,
    ) -> tuple[str, str]:
        """Creates a document with its latest version and links it."""
        doc_id = self.new_id("069")
        for number in range(old_versions):
            self.tables["ContentVersion"].append(
                {
                    "Id": self.new_id("068"),
                    "ContentDocumentId": doc_id,
                    "Title": title,
                    "PathOnClient": f"{title}.txt",
                    "FileExtension": "txt",
                    "ContentSize": len(data),
                    "Description": None,
                    "VersionNumber": str(number + 1),
                    "IsLatest": False,
                }
            )
        version_id = self.new_id("068")
        self.tables["ContentVersion"].append(
            {
                "Id": version_id,
                "ContentDocumentId": doc_id,
                "Title": title,
                "PathOnClient": f"{title}.txt",
                "FileExtension": "txt",
                "ContentSize": len(data) if size is None else size,
                "Description": f"About {title}",
                "VersionNumber": str(old_versions + 1),
                "IsLatest": True,
            }
        )
        self.blobs[version_id] = data
        for entity_id in entity_ids:
            self.add_link(doc_id, entity_id)
        return doc_id, version_id

    def add_link(self, doc_id: str, entity_id: str) -> None:
        self.tables["ContentDocumentLink"].append(
            {
                "Id": self.new_id("06A"),
                "ContentDocumentId": doc_id,
                "LinkedEntityId": entity_id,
            }
        )

    def links(self) -> set[tuple[str, str]]:
        return {
            (row["ContentDocumentId"], row["LinkedEntityId"])
            for row in self.tables["ContentDocumentLink"]
        }

    # --- Query capability ---

    def _execute(self, soql: str) -> list[dict[str, Any]]:
        match = _SELECT_RE.match(soql)
        if not match:
            raise ValueError(f"Unsupported query: {soql}")
        fields = [f.strip() for f in match["fields"].split(",")]
        object_name = match["object"]
        if object_name == "ContentVersion" and not self.resolvable:
            return []
        conditions = re.split(r"\s+AND\s+", match["where"]) if match["where"] else []
        return [
            {f: row.get(f) for f in fields}
            for row in self.tables[object_name]
            if all(_matches(row, c) for c in conditions)
        ]

    def _page(self, rows: list[dict[str, Any]]) -> QueryPage:
        if len(rows) <= self.page_size:
            return QueryPage(rows=rows, done=True)
        cursor = f"/services/data/v60.0/query/01g{self.prefix}-{len(self._cursors)}"
        self._cursors[cursor] = rows[self.page_size :]
        return QueryPage(
            rows=rows[: self.page_size], done=False, next_records_url=cursor
        )

    def query(self, soql: str) -> QueryPage:
        self.queries.append(soql)
        return self._page(self._execute(soql))

    def query_more(self, next_records_url: str) -> QueryPage:
        return self._page(self._cursors.pop(next_records_url))

    # --- Describe capability ---

    def describe_objects(self) -> list[dict[str, Any]]:
        return [{"name": name} for name in self.fields]

    def describe(self, object_name: str) -> list[dict[str, Any]]:
        if object_name not in self.fields:
            raise StoreRequestError(f"404 Not Found: {object_name}", status_code=404)
        return self.fields[object_name]

    # --- Binary and create capabilities ---

    def download_version(self, version_id: str) -> bytes:
        self.downloads.append(version_id)
        if version_id in self.fail_download_ids:
            raise StoreRequestError("404 Not Found", status_code=404)
        return self.blobs[version_id]

    def upload_version(
        self, title: str, path: str, data: bytes, description: Optional[str] = None
    ) -> SaveResult:
        self.uploads.append(title)
        if title in self.fail_upload_titles:
            return SaveResult(success=False, errors=["STORAGE_LIMIT_EXCEEDED: full"])
        doc_id = self.new_id("069")
        version_id = self.new_id("068")
        self.tables["ContentVersion"].append(
            {
                "Id": version_id,
                "ContentDocumentId": doc_id,
                "Title": title,
                "PathOnClient": path,
                "ContentSize": len(data),
                "Description": description,
                "IsLatest": True,
            }
        )
        self.blobs[version_id] = data
        return SaveResult(success=True, id=version_id)

    def create(
        self,
        object_name: str,
        records: Union[dict[str, Any], list[dict[str, Any]]],
    ) -> list[SaveResult]:
        if isinstance(records, dict):
            records = [records]
        results = []
        for record in records:
            self.created[object_name].append(record)
            if record.get("LinkedEntityId") in self.reject_link_entities:
                results.append(
                    SaveResult(success=False, errors=["INSUFFICIENT_ACCESS: denied"])
                )
                continue
            row = self.add_record(object_name, **record)
            results.append(SaveResult(success=True, id=row["Id"]))
        return results


@pytest.fixture(autouse=True)
def app_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Keeps scratch directories and default state files inside tmp_path."""
    home = tmp_path / "home"
    monkeypatch.setenv("SF_FILE_FLOW_HOME", str(home))
    return home


@pytest.fixture
def source() -> FakeStore:
    return FakeStore("https://Source.example.com", "S")


@pytest.fixture
def target() -> FakeStore:
    return FakeStore("https://target.example.com", "T")


@pytest.fixture
def make_config(
    source: FakeStore, target: FakeStore
) -> Callable[..., MigrationConfig]:
    """Builds a configuration for Account matched on External_Id__c."""

    def _make(**kwargs: Any) -> MigrationConfig:
        params: dict[str, Any] = {
            "object_name": "Account",
            "source_match_field": "External_Id__c",
            "source": source,
            "target": target,
        }
        params.update(kwargs)
        return MigrationConfig(**params)

    return _make


@pytest.fixture
def seed_accounts(
    source: FakeStore, target: FakeStore
) -> Callable[..., list[tuple[str, Optional[str]]]]:
    """Creates source accounts, of which the first ``matched`` exist in the target.

    Returns a list of (source id, target id or None).
    """

    def _seed(count: int, matched: int) -> list[tuple[str, Optional[str]]]:
        pairs = []
        for i in range(count):
            value = f"EXT-{i:04d}"
            source_row = source.add_record("Account", External_Id__c=value)
            target_id = None
            if i < matched:
                target_id = target.add_record("Account", External_Id__c=value)["Id"]
            pairs.append((source_row["Id"], target_id))
        return pairs

    return _seed


@pytest.fixture
def store_factory() -> Callable[[str, str], FakeStore]:
    """Builds additional stores for tests that compare independent runs."""
    return FakeStore
