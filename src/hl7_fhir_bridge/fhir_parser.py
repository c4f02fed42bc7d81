# src/hl7_fhir_bridge/fhir_parser.py
"""
FHIR parsing and serialization utilities.

Records are `fhir.resources` R4B model instances. This module maps resource
type names to model classes, builds validated records from JSON-shaped
dicts, parses Bundle JSON for the outbound direction and serializes models
back to JSON. Bundle entries of types without a registered model class are
kept as plain JSON dicts.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Mapping, Type

from fhir.resources.R4B.allergyintolerance import AllergyIntolerance
from fhir.resources.R4B.appointment import Appointment
from fhir.resources.R4B.bundle import Bundle
from fhir.resources.R4B.careplan import CarePlan
from fhir.resources.R4B.communication import Communication
from fhir.resources.R4B.condition import Condition
from fhir.resources.R4B.coverage import Coverage
from fhir.resources.R4B.device import Device
from fhir.resources.R4B.diagnosticreport import DiagnosticReport
from fhir.resources.R4B.documentreference import DocumentReference
from fhir.resources.R4B.encounter import Encounter
from fhir.resources.R4B.immunization import Immunization
from fhir.resources.R4B.location import Location
from fhir.resources.R4B.medicationadministration import MedicationAdministration
from fhir.resources.R4B.medicationrequest import MedicationRequest
from fhir.resources.R4B.messageheader import MessageHeader
from fhir.resources.R4B.observation import Observation
from fhir.resources.R4B.operationoutcome import OperationOutcome
from fhir.resources.R4B.organization import Organization
from fhir.resources.R4B.patient import Patient
from fhir.resources.R4B.practitioner import Practitioner
from fhir.resources.R4B.practitionerrole import PractitionerRole
from fhir.resources.R4B.procedure import Procedure
from fhir.resources.R4B.provenance import Provenance
from fhir.resources.R4B.relatedperson import RelatedPerson
from fhir.resources.R4B.resource import Resource
from fhir.resources.R4B.servicerequest import ServiceRequest
from fhir.resources.R4B.specimen import Specimen
from fhir.resources.R4B.task import Task
from pydantic import ValidationError

from .exceptions import ParseError

LOG = logging.getLogger(__name__)

# Resource classes with first-class conversion support.
KNOWN_TYPES: Mapping[str, Type[Resource]] = {
    "AllergyIntolerance": AllergyIntolerance,
    "Appointment": Appointment,
    "Bundle": Bundle,
    "CarePlan": CarePlan,
    "Communication": Communication,
    "Condition": Condition,
    "Coverage": Coverage,
    "Device": Device,
    "DiagnosticReport": DiagnosticReport,
    "DocumentReference": DocumentReference,
    "Encounter": Encounter,
    "Immunization": Immunization,
    "Location": Location,
    "MedicationAdministration": MedicationAdministration,
    "MedicationRequest": MedicationRequest,
    "MessageHeader": MessageHeader,
    "Observation": Observation,
    "OperationOutcome": OperationOutcome,
    "Organization": Organization,
    "Patient": Patient,
    "Practitioner": Practitioner,
    "PractitionerRole": PractitionerRole,
    "Procedure": Procedure,
    "Provenance": Provenance,
    "RelatedPerson": RelatedPerson,
    "ServiceRequest": ServiceRequest,
    "Specimen": Specimen,
    "Task": Task,
}


# ------------------------------------------------------------------------------
# helpers
# ------------------------------------------------------------------------------


def resource_type_of(resource: Any) -> str:
    """Return the FHIR resource type name of a model instance or dict."""
    if isinstance(resource, Mapping):
        return str(resource.get("resourceType") or "")
    getter = getattr(resource, "get_resource_type", None)
    if callable(getter):
        try:
            return str(getter())
        except TypeError:
            pass
    for attr in ("resource_type", "__resource_type__"):
        value = getattr(resource, attr, None)
        if isinstance(value, str) and value:
            return value
    return type(resource).__name__


def build_resource(resource_type: str, data: Dict[str, Any]) -> Resource:
    """
    Build a validated record of ``resource_type`` from FHIR JSON-shaped data.

    Raises
    ------
    KeyError
        If the resource type has no registered model class.
    pydantic.ValidationError
        If the data does not satisfy the model.
    """
    cls = KNOWN_TYPES[resource_type]
    payload = {"resourceType": resource_type, **data}
    return cls(**payload)


def resource_from_dict(obj: Dict[str, Any]) -> Any:
    """
    Build a record from a parsed JSON object.

    Known types are validated model instances; unknown types stay plain
    dicts so their type name and attributes (extensions in particular) stay
    readable through the same accessors.

    Raises
    ------
    ParseError
        If validation of a known type fails.
    """
    rtype = str(obj.get("resourceType") or "")
    cls = KNOWN_TYPES.get(rtype)
    if cls is not None:
        try:
            return cls(**obj)
        except ValidationError as e:
            raise ParseError(f"FHIR JSON validation error in {rtype}: {e}") from e
    LOG.debug("No model class for %s; kept as plain JSON", rtype)
    return dict(obj)


def resource_to_dict(resource: Any) -> Dict[str, Any]:
    """FHIR JSON representation of a record (aliases used, empty values dropped)."""
    if isinstance(resource, Mapping):
        return dict(resource)
    return json.loads(resource_to_json(resource))


def resource_to_json(resource: Any, pretty: bool = False) -> str:
    """
    Serialize a FHIR model to a JSON string.

    Parameters
    ----------
    resource : Any
        A `fhir.resources` model instance.
    pretty : bool
        If True, indent JSON for readability; otherwise compact.
    """
    indent = 2 if pretty else None
    text = resource.model_dump_json(by_alias=True, exclude_none=True, indent=indent)
    if isinstance(text, bytes):
        text = text.decode("utf-8")
    return text


# ------------------------------------------------------------------------------
# Bundle loading
# ------------------------------------------------------------------------------


def load_bundle_json(text: str) -> Bundle:
    """
    Parse and validate a FHIR Bundle from JSON text.

    Parameters
    ----------
    text : str
        JSON document whose top-level object is a Bundle.

    Returns
    -------
    Bundle
        The validated Bundle model.

    Raises
    ------
    ParseError
        If the text is empty, not JSON, not an object, not a Bundle, or fails
        model validation.
    """
    obj = _load_bundle_object(text)
    try:
        return Bundle(**obj)
    except ValidationError as e:
        raise ParseError(f"FHIR Bundle validation error: {e}") from e


def load_bundle_resources(text: str) -> List[Any]:
    """
    Parse a Bundle and return its entry resources as concrete records, in
    entry order. The Bundle itself is validated first.

    Raises
    ------
    ParseError
        As for load_bundle_json, or if an entry resource fails validation.
    """
    obj = _load_bundle_object(text)
    load_bundle_json(text)

    out: List[Any] = []
    for i, entry in enumerate(obj.get("entry") or []):
        resource = entry.get("resource") if isinstance(entry, Mapping) else None
        if not isinstance(resource, Mapping):
            LOG.warning("Bundle entry %d has no resource; skipped", i)
            continue
        out.append(resource_from_dict(dict(resource)))
    return out


def bundle_id(text: str) -> str:
    """Return the ``id`` of a Bundle JSON document, or "" if absent."""
    obj = _load_bundle_object(text)
    return str(obj.get("id") or "")


def _load_bundle_object(text: str) -> Dict[str, Any]:
    if not isinstance(text, str) or not text.strip():
        raise ParseError("FHIR Bundle JSON must be a non-empty string")
    try:
        obj = json.loads(text)
    except json.JSONDecodeError as e:
        raise ParseError(f"invalid JSON: {e}") from e
    if not isinstance(obj, dict):
        raise ParseError("FHIR JSON must be an object at the top level")
    if obj.get("resourceType") != "Bundle":
        raise ParseError(
            f"Expected a Bundle, got resourceType={obj.get('resourceType')!r}"
        )
    return obj
