"""Data models for the puller."""

import hashlib
import os
import re
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple
from xml.etree import ElementTree as ET

from . import xml_utils
from .cursor import Cursor
from .exceptions import MissingCursorError

_ILLEGAL_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')


def strip_illegal_chars(name: str) -> str:
    return _ILLEGAL_CHARS.sub("_", name).strip() or "_"


def instance_dir_name(instance_id: str) -> str:
    return strip_illegal_chars(instance_id.replace(":", ""))


def contained_path(directory: str, filename: str) -> str:
    """Join `filename` under `directory`. Raises ValueError when the result would land outside it."""
    path = os.path.join(directory, filename)
    root = os.path.realpath(directory)
    resolved = os.path.realpath(path)
    if resolved == root or os.path.commonpath([root, resolved]) != root:
        raise ValueError(f"File name {filename!r} points outside {directory}")
    return path


@dataclass(frozen=True)
class MediaFile:
    filename: str
    hash: str
    download_url: str

    def needs_update(self, media_dir: str) -> bool:
        """True when the local copy is missing or its MD5 doesn't match the declared hash."""
        local_file = contained_path(media_dir, self.filename)
        if not os.path.isfile(local_file):
            return True
        expected = self.hash.split(":", 1)[1] if ":" in self.hash else self.hash
        return md5_of(local_file) != expected.strip().lower()


def md5_of(path: str) -> str:
    md5 = hashlib.md5()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(65536), b""):
            md5.update(chunk)
    return md5.hexdigest()


def parse_media_files(elements: List[ET.Element]) -> List[MediaFile]:
    """Build MediaFiles from <mediaFile> elements, dropping incomplete entries."""
    media_files = []
    for element in elements:
        filename = xml_utils.child_value(element, "filename")
        file_hash = xml_utils.child_value(element, "hash")
        download_url = xml_utils.child_value(element, "downloadUrl")
        if filename and file_hash and download_url:
            media_files.append(MediaFile(filename, file_hash, download_url))
    return media_files


@dataclass(frozen=True)
class DownloadedSubmission:
    instance_id: str
    xml: str
    attachments: Tuple[MediaFile, ...] = ()

    @classmethod
    def from_xml(cls, root: ET.Element) -> "DownloadedSubmission":
        """Parse a /view/downloadSubmission envelope.

        The instance lives as the only child of <data>; its instanceID
        attribute identifies it. Attachments are listed as sibling
        <mediaFile> entries of <data>.
        """
        data = xml_utils.find_element(root, "data")
        instance = xml_utils.first_child(data) if data is not None else None
        if instance is None:
            raise ValueError("Submission envelope has no instance data")
        instance_id = instance.get("instanceID")
        if not instance_id:
            raise ValueError("Submission instance has no instanceID attribute")
        attachments = parse_media_files(xml_utils.find_elements(root, "mediaFile"))
        return cls(instance_id, xml_utils.serialize(instance), tuple(attachments))


@dataclass(frozen=True)
class InstanceIdBatch:
    instance_ids: Tuple[str, ...]
    cursor: Cursor

    @classmethod
    def from_ids(cls, instance_ids, cursor: Cursor) -> "InstanceIdBatch":
        return cls(tuple(instance_ids), cursor)

    def count(self) -> int:
        return len(self.instance_ids)


@dataclass
class FormStatus:
    form_id: str
    form_name: str
    version: Optional[str] = None
    manifest_url: Optional[str] = None
    status_string: str = ""
    status_history: List[str] = field(default_factory=list)

    def set_status_string(self, status: str):
        self.status_string = status
        self.status_history.append(status)

    def get_form_dir(self, storage_dir: str) -> str:
        return os.path.join(storage_dir, "forms", strip_illegal_chars(self.form_name))

    def get_form_file(self, storage_dir: str) -> str:
        name = strip_illegal_chars(self.form_name)
        return os.path.join(self.get_form_dir(storage_dir), f"{name}.xml")

    def get_form_media_dir(self, storage_dir: str) -> str:
        name = strip_illegal_chars(self.form_name)
        return os.path.join(self.get_form_dir(storage_dir), f"{name}-media")

    def get_form_media_file(self, storage_dir: str, filename: str) -> str:
        return contained_path(self.get_form_media_dir(storage_dir), filename)

    def get_submission_dir(self, storage_dir: str, instance_id: str) -> str:
        return os.path.join(self.get_form_dir(storage_dir), "instances", instance_dir_name(instance_id))

    def get_submission_file(self, storage_dir: str, instance_id: str) -> str:
        return os.path.join(self.get_submission_dir(storage_dir, instance_id), "submission.xml")

    def get_submission_media_file(self, storage_dir: str, instance_id: str, filename: str) -> str:
        return contained_path(self.get_submission_dir(storage_dir, instance_id), filename)


@dataclass(frozen=True)
class FormStatusEvent:
    form: FormStatus
    status_string: str


EventCallback = Callable[[FormStatusEvent], None]


@dataclass(frozen=True)
class RemoteFormDefinition:
    form_name: str
    form_id: str
    version: Optional[str] = None
    manifest_url: Optional[str] = None

    def to_form_status(self) -> FormStatus:
        return FormStatus(
            form_id=self.form_id,
            form_name=self.form_name,
            version=self.version,
            manifest_url=self.manifest_url,
        )


@dataclass(frozen=True)
class PullResult:
    form: FormStatus
    last_cursor: Optional[Cursor] = None

    def get_last_cursor(self) -> Cursor:
        if self.last_cursor is None:
            raise MissingCursorError(f"Pull of {self.form.form_id} produced no cursor")
        return self.last_cursor
