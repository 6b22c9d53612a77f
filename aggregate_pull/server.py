"""Requests for the Aggregate web API.

Endpoints used by a pull:
  GET /formList                     : forms available on the server
  GET /formXml?formId=...           : blank form definition
  GET <manifestUrl>                 : media files of a form
  GET /view/submissionList?...      : one page of instance ids + resumption cursor
  GET /view/downloadSubmission?...  : one submission with its attachment list
"""

import logging
from typing import List, Optional, Tuple
from urllib.parse import urlparse
from xml.etree import ElementTree as ET

from . import xml_utils
from .cursor import Cursor
from .exceptions import MalformedCursorError
from .http import Request
from .models import DownloadedSubmission, InstanceIdBatch, MediaFile, RemoteFormDefinition, parse_media_files

logger = logging.getLogger("aggregate_pull")


def is_uri(value: Optional[str]) -> bool:
    if not value:
        return False
    parsed = urlparse(value)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def parse_form_list(root: ET.Element) -> List[RemoteFormDefinition]:
    forms = []
    for xform in xml_utils.find_elements(root, "xform"):
        name = xml_utils.child_value(xform, "name")
        form_id = xml_utils.child_value(xform, "formID")
        if not name or not form_id:
            continue
        forms.append(RemoteFormDefinition(
            form_name=name,
            form_id=form_id,
            version=xml_utils.child_value(xform, "version"),
            manifest_url=xml_utils.child_value(xform, "manifestUrl"),
        ))
    return forms


def parse_manifest(root: ET.Element) -> List[MediaFile]:
    return parse_media_files(xml_utils.find_elements(root, "mediaFile"))


def parse_instance_id_batch(root: ET.Element, request_cursor: Cursor) -> InstanceIdBatch:
    """Parse an <idChunk>. A missing or unreadable resumption cursor keeps `request_cursor`."""
    id_list = xml_utils.find_element(root, "idList")
    ids = []
    if id_list is not None:
        ids = [v for v in (xml_utils.maybe_value(e) for e in xml_utils.find_elements(id_list, "id")) if v]

    cursor = request_cursor
    raw_cursor = xml_utils.child_value(root, "resumptionCursor")
    if raw_cursor:
        try:
            cursor = Cursor.from_xml(raw_cursor)
        except MalformedCursorError as e:
            logger.warning(f"Ignoring unreadable resumption cursor: {e}")
    return InstanceIdBatch.from_ids(ids, cursor)


class AggregateServer:
    def __init__(self, base_url: str, credentials: Optional[Tuple[str, str]] = None):
        self.base_url = base_url.rstrip("/")
        self.credentials = credentials

    @classmethod
    def normal(cls, base_url: str) -> "AggregateServer":
        return cls(base_url)

    @classmethod
    def authenticated(cls, base_url: str, username: str, password: str) -> "AggregateServer":
        return cls(base_url, (username, password))

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    def get_form_list_request(self) -> Request:
        return Request.get(self._url("/formList")).as_xml().with_mapper(parse_form_list)

    def get_download_form_request(self, form_id: str) -> Request:
        return Request.get(self._url("/formXml"), [("formId", form_id)])

    def get_manifest_request(self, manifest_url: str) -> Request:
        return Request.get(manifest_url).as_xml().with_mapper(parse_manifest)

    def get_instance_id_batch_request(self, form_id: str, entries_per_batch: int,
                                      cursor: Cursor, include_incomplete: bool) -> Request:
        return Request.get(self._url("/view/submissionList"), [
            ("formId", form_id),
            ("cursor", cursor.get()),
            ("numEntries", str(entries_per_batch)),
            ("includeIncomplete", "true" if include_incomplete else "false"),
        ]).as_xml().with_mapper(lambda root: parse_instance_id_batch(root, cursor))

    def get_download_submission_request(self, submission_key: str) -> Request:
        return (
            Request.get(self._url("/view/downloadSubmission"), [("formId", submission_key)])
            .as_xml()
            .with_mapper(DownloadedSubmission.from_xml)
        )

    def get_download_request(self, url: str, target: str) -> Request:
        return Request.get(url).download_to(target)
