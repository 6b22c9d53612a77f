"""Submission keys for Aggregate's /view/downloadSubmission endpoint."""

from dataclasses import dataclass
from typing import Optional
from xml.etree import ElementTree as ET

from . import xml_utils
from .exceptions import MissingFormDefinitionError


@dataclass(frozen=True)
class SubmissionKeyGenerator:
    form_id: str
    version: Optional[str]
    main_instance_name: str

    @classmethod
    def from_blank_form(cls, blank_form: Optional[str]) -> "SubmissionKeyGenerator":
        if not blank_form:
            raise MissingFormDefinitionError("Can't build submission keys without a blank form")
        try:
            root = xml_utils.parse(blank_form)
        except ET.ParseError as e:
            raise MissingFormDefinitionError(f"Blank form is not valid XML: {e}") from e

        head = xml_utils.find_element(root, "head")
        model = xml_utils.find_element(head, "model") if head is not None else None
        # The first <instance> of the model is the main one, secondary ones carry an id
        instance = None
        if model is not None:
            instances = xml_utils.find_elements(model, "instance")
            instance = next((i for i in instances if i.get("id") is None), None)
        instance_root = xml_utils.first_child(instance) if instance is not None else None
        if instance_root is None or not instance_root.get("id"):
            raise MissingFormDefinitionError("Blank form has no main instance with a form id")

        return cls(
            form_id=instance_root.get("id"),
            version=instance_root.get("version"),
            main_instance_name=xml_utils.local_name(instance_root),
        )

    def build_key(self, instance_id: str) -> str:
        return (
            f"{self.form_id}[@version={self.version or 'null'} and @uiVersion=null]"
            f"/{self.main_instance_name}[@key={instance_id}]"
        )
