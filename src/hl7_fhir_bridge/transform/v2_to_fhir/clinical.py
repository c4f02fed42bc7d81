# src/hl7_fhir_bridge/transform/v2_to_fhir/clinical.py
"""
Patient history segments:

- DG1 -> Condition (encounter diagnosis)
- AL1 -> AllergyIntolerance
- PR1 -> Procedure
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from ... import codes
from ...context import ConversionContext
from ...datetime_utils import hl7_to_fhir_datetime
from ...message_tree import Locator
from ...paths import Location, field_repetitions
from ..base import (
    FieldRule,
    InboundConverter,
    codeable_concept,
    concept,
    display_reference,
    person_name,
    put,
)
from ..registry import register_inbound

_ALLERGY_CLINICAL = "http://terminology.hl7.org/CodeSystem/allergyintolerance-clinical"
_CONDITION_CLINICAL = "http://terminology.hl7.org/CodeSystem/condition-clinical"


@register_inbound("Condition", order=70)
class ConditionConverter(InboundConverter):
    segment = "DG1"
    rules = (
        FieldRule("5", "onsetDateTime", hl7_to_fhir_datetime),
        FieldRule("19", "recordedDate", hl7_to_fhir_datetime),
    )

    def build(
        self, loc: Location, data: Dict[str, Any], context: ConversionContext
    ) -> Optional[Dict[str, Any]]:
        dg1 = loc.segment
        data["subject"] = self.subject(context)
        put(data, "encounter", self.encounter(context))
        data["code"] = codeable_concept(dg1, 3, default_system=codes.SYSTEM_ICD10)
        data["clinicalStatus"] = concept(_CONDITION_CLINICAL, "active")
        data["category"] = [
            concept(codes.SYSTEM_CONDITION_CATEGORY, "encounter-diagnosis", "Encounter Diagnosis")
        ]
        put(
            data,
            "verificationStatus",
            concept(
                codes.SYSTEM_CONDITION_VER_STATUS,
                codes.lookup(codes.DIAGNOSIS_VERIFICATION, dg1.get(Locator(6))),
            ),
        )
        put(
            data,
            "asserter",
            display_reference(person_name(dg1, 16), dg1.get(Locator(16, 0, 1))),
        )
        return data


@register_inbound("AllergyIntolerance", order=80)
class AllergyIntoleranceConverter(InboundConverter):
    segment = "AL1"
    rules = (FieldRule("6", "onsetDateTime", hl7_to_fhir_datetime),)

    def build(
        self, loc: Location, data: Dict[str, Any], context: ConversionContext
    ) -> Optional[Dict[str, Any]]:
        al1 = loc.segment
        data["patient"] = self.subject(context)
        data["code"] = codeable_concept(al1, 3)
        data["clinicalStatus"] = concept(_ALLERGY_CLINICAL, "active")

        category = codes.lookup(codes.ALLERGY_CATEGORY, al1.get(Locator(2)))
        if category:
            data["category"] = [category]
        put(
            data,
            "criticality",
            codes.lookup(codes.ALLERGY_CRITICALITY, al1.get(Locator(4))),
        )

        manifestations = []
        for rep in field_repetitions(al1, 5):
            text = al1.get(Locator(5, rep))
            manifestations.append({"text": text})
        if manifestations:
            data["reaction"] = [{"manifestation": manifestations}]
        return data


@register_inbound("Procedure", order=90)
class ProcedureConverter(InboundConverter):
    segment = "PR1"
    rules = (FieldRule("5", "performedDateTime", hl7_to_fhir_datetime),)

    def build(
        self, loc: Location, data: Dict[str, Any], context: ConversionContext
    ) -> Optional[Dict[str, Any]]:
        pr1 = loc.segment
        data["status"] = "completed"
        data["subject"] = self.subject(context)
        put(data, "encounter", self.encounter(context))
        data["code"] = codeable_concept(pr1, 3)

        # PR1-12 procedure practitioner (2.5+), PR1-11 surgeon in older versions
        for field in (12, 11):
            actor = display_reference(person_name(pr1, field), pr1.get(Locator(field, 0, 1)))
            if actor:
                data["performer"] = [{"actor": actor}]
                break
        return data
