import hashlib
import re
import threading
from typing import Dict, List, Optional, Tuple
from urllib.parse import unquote
from xml.sax.saxutils import escape

import httpx
import pytest

from aggregate_pull.db import Database
from aggregate_pull.http import Http
from aggregate_pull.models import FormStatus
from aggregate_pull.server import AggregateServer

BASE_URL = "http://aggregate.test"

BLANK_FORM = """<?xml version="1.0"?>
<h:html xmlns="http://www.w3.org/2002/xforms" xmlns:h="http://www.w3.org/1999/xhtml">
  <h:head>
    <h:title>Household survey</h:title>
    <model>
      <instance>
        <data id="household" version="2"><name/><photo/></data>
      </instance>
      <instance id="villages"><root/></instance>
    </model>
  </h:head>
  <h:body/>
</h:html>"""


def md5_hash(content: bytes) -> str:
    return "md5:" + hashlib.md5(content).hexdigest()


def cursor_xml(last_update: str, last_id: str) -> str:
    return (
        '<cursor xmlns="http://www.opendatakit.org/cursor">'
        "<attributeName>_LAST_UPDATE_DATE</attributeName>"
        f"<attributeValue>{last_update}</attributeValue>"
        f"<uriLastReturnedValue>{last_id}</uriLastReturnedValue>"
        "<isForwardCursor>true</isForwardCursor>"
        "</cursor>"
    )


class FakeAggregate:
    """In-memory Aggregate server served through httpx.MockTransport."""

    def __init__(self):
        self.form_xml: Optional[str] = BLANK_FORM
        self.manifest: Dict[str, bytes] = {}
        self.pages: List[Tuple[List[str], str]] = []
        self.attachments: Dict[str, Dict[str, bytes]] = {}
        self.failing_submissions = set()
        self.failing_paths = set()
        self.requests: List[Tuple[str, dict]] = []
        self._lock = threading.Lock()

    def add_page(self, instance_ids: List[str], last_update: str):
        self.pages.append((instance_ids, cursor_xml(last_update, instance_ids[-1])))

    def calls(self, path: str) -> List[dict]:
        return [params for p, params in self.requests if p == path]

    def requests_paths(self, prefix: str) -> List[str]:
        return [p for p, _ in self.requests if p.startswith(prefix)]

    def submission_downloads(self) -> List[str]:
        return [self._key(p["formId"]) for p in self.calls("/view/downloadSubmission")]

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        params = dict(request.url.params)
        with self._lock:
            self.requests.append((path, params))

        if path in self.failing_paths:
            return httpx.Response(404)
        if path == "/formList":
            return self._xml(
                '<xforms xmlns="http://openrosa.org/xforms/xformsList">'
                "<xform><formID>household</formID><name>Household survey</name>"
                f"<version>2</version><manifestUrl>{BASE_URL}/xformsManifest?formId=household</manifestUrl></xform>"
                "<xform><formID>broken</formID></xform>"
                "</xforms>"
            )
        if path == "/formXml":
            if self.form_xml is None:
                return httpx.Response(500)
            return httpx.Response(200, text=self.form_xml)
        if path == "/xformsManifest":
            return self._xml(self._manifest_xml())
        if path == "/view/submissionList":
            return self._xml(self._id_chunk(params.get("cursor", "")))
        if path == "/view/downloadSubmission":
            instance_id = self._key(params["formId"])
            if instance_id in self.failing_submissions:
                return httpx.Response(404)
            return self._xml(self._submission_xml(instance_id))
        if path.startswith("/media/"):
            return self._media(unquote(path[len("/media/"):]))
        return httpx.Response(404)

    @staticmethod
    def _xml(body: str) -> httpx.Response:
        return httpx.Response(200, text=body, headers={"Content-Type": "text/xml"})

    @staticmethod
    def _key(submission_key: str) -> str:
        return re.search(r"@key=([^\]]+)\]", submission_key).group(1)

    def _manifest_xml(self) -> str:
        entries = "".join(
            "<mediaFile>"
            f"<filename>{name}</filename><hash>{md5_hash(content)}</hash>"
            f"<downloadUrl>{BASE_URL}/media/form/{name}</downloadUrl>"
            "</mediaFile>"
            for name, content in self.manifest.items()
        )
        # Entries missing any field get dropped by the client
        incomplete = "<mediaFile><filename>orphan.png</filename></mediaFile>"
        return f'<manifest xmlns="http://openrosa.org/xforms/xformsManifest">{entries}{incomplete}</manifest>'

    def _id_chunk(self, cursor: str) -> str:
        index = 0
        for i, (_, page_cursor) in enumerate(self.pages):
            if page_cursor == cursor:
                index = i + 1
        if index >= len(self.pages):
            return '<idChunk xmlns="http://opendatakit.org/submissions"><idList/></idChunk>'
        ids, page_cursor = self.pages[index]
        id_list = "".join(f"<id>{i}</id>" for i in ids)
        return (
            '<idChunk xmlns="http://opendatakit.org/submissions">'
            f"<idList>{id_list}</idList>"
            f"<resumptionCursor>{escape(page_cursor)}</resumptionCursor>"
            "</idChunk>"
        )

    def _submission_xml(self, instance_id: str) -> str:
        media = "".join(
            "<mediaFile>"
            f"<filename>{name}</filename><hash>{md5_hash(content)}</hash>"
            f"<downloadUrl>{BASE_URL}/media/{instance_id}/{name}</downloadUrl>"
            "</mediaFile>"
            for name, content in self.attachments.get(instance_id, {}).items()
        )
        return (
            '<submission xmlns="http://opendatakit.org/submissions">'
            f'<data><data id="household" version="2" instanceID="{instance_id}">'
            f"<name>Person {instance_id}</name></data></data>"
            f"{media}</submission>"
        )

    def _media(self, path: str) -> httpx.Response:
        owner, name = path.split("/", 1)
        if owner == "form":
            content = self.manifest.get(name)
        else:
            content = self.attachments.get(owner, {}).get(name)
        if content is None:
            return httpx.Response(404)
        return httpx.Response(200, content=content)


@pytest.fixture()
def aggregate() -> FakeAggregate:
    return FakeAggregate()


@pytest.fixture()
def http(aggregate):
    client = Http(transport=aggregate.transport, max_retries=1)
    yield client
    client.close()


@pytest.fixture()
def server() -> AggregateServer:
    return AggregateServer(BASE_URL)


@pytest.fixture()
def db(tmp_path):
    database = Database(str(tmp_path / "pull.db"))
    yield database
    database.close()


@pytest.fixture()
def storage_dir(tmp_path) -> str:
    return str(tmp_path / "storage")


@pytest.fixture()
def form() -> FormStatus:
    return FormStatus(
        form_id="household",
        form_name="Household survey",
        version="2",
        manifest_url=f"{BASE_URL}/xformsManifest?formId=household",
    )
