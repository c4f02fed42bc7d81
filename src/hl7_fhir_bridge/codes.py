# src/hl7_fhir_bridge/codes.py
"""
Code systems and HL7 v2 <-> FHIR value maps shared by the converters.
"""

from __future__ import annotations

from typing import Dict, Mapping, Optional

# ------------------------------------------------------------------------------
# code systems
# ------------------------------------------------------------------------------

SYSTEM_LOINC = "http://loinc.org"
SYSTEM_SNOMED = "http://snomed.info/sct"
SYSTEM_ICD10 = "http://hl7.org/fhir/sid/icd-10"
SYSTEM_RXNORM = "http://www.nlm.nih.gov/research/umls/rxnorm"
SYSTEM_UCUM = "http://unitsofmeasure.org"
SYSTEM_CVX = "http://hl7.org/fhir/sid/cvx"
SYSTEM_NDC = "http://hl7.org/fhir/sid/ndc"
SYSTEM_CPT = "http://www.ama-assn.org/go/cpt"

_TERMINOLOGY = "http://terminology.hl7.org/CodeSystem/"
SYSTEM_V2_0203 = _TERMINOLOGY + "v2-0203"  # identifier type
SYSTEM_V2_0007 = _TERMINOLOGY + "v2-0007"  # admission type
SYSTEM_V2_0069 = _TERMINOLOGY + "v2-0069"  # hospital service
SYSTEM_V2_0112 = _TERMINOLOGY + "v2-0112"  # discharge disposition
SYSTEM_V2_0119 = _TERMINOLOGY + "v2-0119"  # order control
SYSTEM_V2_0127 = _TERMINOLOGY + "v2-0127"  # allergen type
SYSTEM_V2_0063 = _TERMINOLOGY + "v2-0063"  # relationship
SYSTEM_V2_0074 = _TERMINOLOGY + "v2-0074"  # diagnostic service section
SYSTEM_V2_0487 = _TERMINOLOGY + "v2-0487"  # specimen type
SYSTEM_V3_ACT_CODE = _TERMINOLOGY + "v3-ActCode"
SYSTEM_V3_NULL_FLAVOR = _TERMINOLOGY + "v3-NullFlavor"
SYSTEM_V3_MARITAL_STATUS = _TERMINOLOGY + "v3-MaritalStatus"
SYSTEM_V3_PARTICIPATION_TYPE = _TERMINOLOGY + "v3-ParticipationType"
SYSTEM_V3_RACE = "urn:oid:2.16.840.1.113883.6.238"
SYSTEM_V3_RELIGION = _TERMINOLOGY + "v3-ReligiousAffiliation"
SYSTEM_V3_INTERPRETATION = _TERMINOLOGY + "v3-ObservationInterpretation"
SYSTEM_V3_ROLE_CODE = _TERMINOLOGY + "v3-RoleCode"
SYSTEM_CONDITION_CATEGORY = _TERMINOLOGY + "condition-category"
SYSTEM_CONDITION_VER_STATUS = _TERMINOLOGY + "condition-ver-status"
SYSTEM_PROVENANCE_AGENT_TYPE = _TERMINOLOGY + "provenance-participant-type"
SYSTEM_V3_DATA_OPERATION = _TERMINOLOGY + "v3-DataOperation"
SYSTEM_V3_CONFIDENTIALITY = _TERMINOLOGY + "v3-Confidentiality"
SYSTEM_V2_0003 = _TERMINOLOGY + "v2-0003"  # event type
SYSTEM_V2_0105 = _TERMINOLOGY + "v2-0105"  # source of comment
SYSTEM_V2_0270 = _TERMINOLOGY + "v2-0270"  # document type
SYSTEM_V2_0443 = _TERMINOLOGY + "v2-0443"  # provider role
SYSTEM_LOCATION_PHYSICAL_TYPE = _TERMINOLOGY + "location-physical-type"
SYSTEM_ORGANIZATION_TYPE = _TERMINOLOGY + "organization-type"
SYSTEM_CAREPLAN_CATEGORY = "http://hl7.org/fhir/us/core/CodeSystem/careplan-category"

DEFAULT_IDENTIFIER_SYSTEM = "urn:oid:2.16.840.1.113883.2.1.4.1"

EXT_US_CORE_RACE = "http://hl7.org/fhir/us/core/StructureDefinition/us-core-race"
EXT_US_CORE_ETHNICITY = (
    "http://hl7.org/fhir/us/core/StructureDefinition/us-core-ethnicity"
)
EXT_RELIGION = "http://hl7.org/fhir/StructureDefinition/patient-religion"

_EXT_BASE = "http://hl7-fhir-bridge.dev/fhir/StructureDefinition/"
EXT_HL7_Z_SEGMENT = _EXT_BASE + "hl7-z-segment"
EXT_HL7_EQUIPMENT_TYPE = _EXT_BASE + "hl7-equipment-type"
EXT_PET_NAME = _EXT_BASE + "pet-name"
EXT_VIP_LEVEL = _EXT_BASE + "vip-level"
EXT_ARCHIVE_STATUS = _EXT_BASE + "archive-status"

ZSEGMENT_URN_PREFIX = "urn:hl7:zsegment:"

# ------------------------------------------------------------------------------
# value maps (HL7 v2 -> FHIR)
# ------------------------------------------------------------------------------

GENDER = {"M": "male", "F": "female", "O": "other", "U": "unknown", "A": "other", "N": "unknown"}

NAME_USE = {
    "L": "official",
    "D": "usual",
    "M": "maiden",
    "N": "nickname",
    "A": "anonymous",
    "C": "old",
    "B": "official",
}

ADDRESS_USE = {"H": "home", "O": "work", "B": "work", "C": "temp", "M": "home"}

TELECOM_USE = {"PRN": "home", "ORN": "home", "WPN": "work", "VHN": "temp", "NET": "home"}

# equipment type -> (ContactPoint.system, ContactPoint.use or None)
EQUIPMENT = {
    "PH": ("phone", None),
    "CP": ("phone", "mobile"),
    "FX": ("fax", None),
    "BP": ("pager", None),
    "Internet": ("email", None),
    "X.400": ("email", None),
}

ENCOUNTER_CLASS = {
    "I": ("IMP", "inpatient encounter"),
    "O": ("AMB", "ambulatory"),
    "E": ("EMER", "emergency"),
    "P": ("PRENC", "pre-admission"),
    "R": ("IMP", "inpatient encounter"),
    "B": ("AMB", "ambulatory"),
}

# ORC-5 order status -> ServiceRequest/MedicationRequest status
ORDER_STATUS = {
    "A": "active",
    "IP": "active",
    "SC": "active",
    "CM": "completed",
    "CA": "revoked",
    "DC": "revoked",
    "HD": "on-hold",
    "ER": "entered-in-error",
}

# ORC-1 order control -> Task status
TASK_STATUS = {
    "NW": "requested",
    "OK": "requested",
    "SC": "in-progress",
    "IP": "in-progress",
    "CM": "completed",
    "CR": "cancelled",
    "CA": "cancelled",
    "DC": "cancelled",
    "OC": "cancelled",
    "HD": "on-hold",
    "RL": "ready",
    "UA": "failed",
    "ER": "failed",
}

WORKFLOW_CONTROLS = frozenset(TASK_STATUS)

OBR_PRIORITY = {"S": "stat", "A": "asap", "U": "urgent", "R": "routine", "P": "routine"}

# OBX-11 -> Observation.status
OBSERVATION_STATUS = {
    "F": "final",
    "P": "preliminary",
    "C": "corrected",
    "A": "amended",
    "R": "registered",
    "I": "registered",
    "X": "cancelled",
    "D": "entered-in-error",
    "W": "entered-in-error",
}

# OBR-25 -> DiagnosticReport.status
REPORT_STATUS = {
    "F": "final",
    "C": "corrected",
    "A": "partial",
    "P": "preliminary",
    "R": "registered",
    "I": "registered",
    "O": "registered",
    "S": "partial",
    "X": "cancelled",
}

INTERPRETATION_DISPLAY = {
    "N": "Normal",
    "A": "Abnormal",
    "H": "High",
    "HH": "Critical high",
    "L": "Low",
    "LL": "Critical low",
    "POS": "Positive",
    "NEG": "Negative",
}

ALLERGY_CATEGORY = {"DA": "medication", "FA": "food", "EA": "environment", "AA": "environment", "PA": "environment"}

ALLERGY_CRITICALITY = {"SV": "high", "MO": "low", "MI": "low", "U": "unable-to-assess"}

DIAGNOSIS_VERIFICATION = {"F": "confirmed", "W": "provisional", "A": "provisional"}

# RXA-20 completion status -> Immunization / MedicationAdministration status
ADMIN_STATUS = {"CP": "completed", "PA": "completed", "RE": "not-done", "NA": "not-done"}

APPOINTMENT_STATUS = {
    "booked": "booked",
    "pending": "pending",
    "waitlist": "waitlist",
    "cancelled": "cancelled",
    "deleted": "cancelled",
    "complete": "fulfilled",
    "noshow": "noshow",
    "started": "arrived",
    "overbook": "booked",
    "blocked": "booked",
}

# ROL-3 (HL7 table 0443)
PROVIDER_ROLE_DISPLAY = {
    "AD": "Admitting",
    "AT": "Attending",
    "CP": "Consulting",
    "FHCP": "Family Health Care Professional",
    "OP": "Ordering Provider",
    "PP": "Primary Care Provider",
    "RP": "Referring Provider",
    "RT": "Referred to Provider",
}

# NTE-2 (HL7 table 0105)
NOTE_SOURCE_DISPLAY = {
    "L": "Ancillary (filler) department is source of comment",
    "O": "Other system is source of comment",
    "P": "Orderer (placer) is source of comment",
}

# PL.5 location status
LOCATION_STATUS = {"A": "active", "I": "inactive", "S": "suspended"}

# PL components -> location-physical-type, outermost first
LOCATION_LEVELS = (
    (7, "bu", "Building"),
    (8, "lvl", "Level"),
    (1, "wa", "Ward"),
    (2, "ro", "Room"),
    (3, "bd", "Bed"),
)

# TXA-17 document completion status -> DocumentReference.docStatus
DOCUMENT_COMPLETION = {
    "AU": "final",
    "LA": "final",
    "DI": "preliminary",
    "DO": "preliminary",
    "IP": "preliminary",
    "IN": "preliminary",
    "PA": "preliminary",
}

# TXA-3 document content presentation -> attachment content type
CONTENT_PRESENTATION = {
    "TX": "text/plain",
    "FT": "text/plain",
    "HTML": "text/html",
    "PDF": "application/pdf",
    "RTF": "application/rtf",
    "CDA": "application/xml",
}

CONFIDENTIALITY = frozenset({"U", "L", "M", "N", "R", "V"})

# ORC-1 order control -> (CarePlan.status, CarePlan.intent)
CAREPLAN_STATUS = {
    "NW": ("active", "order"),
    "RP": ("active", "order"),
    "XO": ("active", "order"),
    "CA": ("revoked", "order"),
    "DC": ("revoked", "order"),
    "HD": ("on-hold", "order"),
}

MARITAL_DISPLAY = {
    "A": "Annulled",
    "D": "Divorced",
    "I": "Interlocutory",
    "L": "Legally Separated",
    "M": "Married",
    "P": "Polygamous",
    "S": "Never Married",
    "T": "Domestic partner",
    "U": "unmarried",
    "W": "Widowed",
}

CODING_SYSTEMS = {
    "LN": SYSTEM_LOINC,
    "LOINC": SYSTEM_LOINC,
    "SCT": SYSTEM_SNOMED,
    "SNM": SYSTEM_SNOMED,
    "I10": SYSTEM_ICD10,
    "ICD10": SYSTEM_ICD10,
    "RXNORM": SYSTEM_RXNORM,
    "RXN": SYSTEM_RXNORM,
    "CVX": SYSTEM_CVX,
    "NDC": SYSTEM_NDC,
    "C4": SYSTEM_CPT,
    "CPT": SYSTEM_CPT,
    "UCUM": SYSTEM_UCUM,
}

# ------------------------------------------------------------------------------
# value maps (FHIR -> HL7 v2)
# ------------------------------------------------------------------------------

GENDER_OUT = {"male": "M", "female": "F", "other": "O", "unknown": "U"}

NAME_USE_OUT = {"official": "L", "usual": "D", "maiden": "M", "nickname": "N", "anonymous": "A", "old": "C"}

ADDRESS_USE_OUT = {"home": "H", "work": "O", "temp": "C", "old": "OLD", "billing": "BI"}

OBSERVATION_STATUS_OUT = {
    "final": "F",
    "preliminary": "P",
    "corrected": "C",
    "amended": "C",
    "registered": "I",
    "cancelled": "X",
    "entered-in-error": "W",
}

REPORT_STATUS_OUT = {
    "final": "F",
    "corrected": "C",
    "amended": "C",
    "partial": "A",
    "preliminary": "P",
    "registered": "I",
    "cancelled": "X",
    "entered-in-error": "X",
}

PRIORITY_OUT = {"stat": "S", "asap": "A", "urgent": "U", "routine": "R"}

# ServiceRequest.status -> OBR-25 result status
REQUEST_STATUS_OUT = {
    "draft": "O",
    "active": "I",
    "on-hold": "O",
    "completed": "F",
    "revoked": "X",
    "entered-in-error": "X",
}

# ServiceRequest/MedicationRequest.status -> ORC-5 order status
ORDER_STATUS_OUT = {
    "active": "IP",
    "on-hold": "HD",
    "completed": "CM",
    "revoked": "CA",
    "stopped": "DC",
    "cancelled": "CA",
    "entered-in-error": "ER",
    "draft": "SC",
}

ENCOUNTER_CLASS_OUT = {
    "IMP": "I",
    "ACUTE": "I",
    "NONAC": "I",
    "AMB": "O",
    "EMER": "E",
    "PRENC": "P",
    "OBSENC": "O",
    "SS": "O",
    "HH": "O",
    "VR": "O",
}

ADMIN_STATUS_OUT = {"completed": "CP", "not-done": "RE", "entered-in-error": "NA"}

APPOINTMENT_STATUS_OUT = {
    "booked": "Booked",
    "pending": "Pending",
    "proposed": "Pending",
    "waitlist": "Waitlist",
    "cancelled": "Cancelled",
    "fulfilled": "Complete",
    "noshow": "Noshow",
    "arrived": "Started",
    "checked-in": "Started",
}

ALLERGY_CATEGORY_OUT = {"medication": "DA", "food": "FA", "environment": "EA", "biologic": "MA"}

ALLERGY_CRITICALITY_OUT = {"high": "SV", "low": "MI", "unable-to-assess": "U"}

LOCATION_STATUS_OUT = {"active": "A", "inactive": "I", "suspended": "S"}

# location-physical-type -> PL component
LOCATION_COMPONENT_OUT = {"bu": 7, "lvl": 8, "wa": 1, "ro": 2, "bd": 3}

DOCUMENT_COMPLETION_OUT = {"final": "AU", "amended": "AU", "preliminary": "IP", "entered-in-error": "CA"}

CONTENT_PRESENTATION_OUT = {
    "text/plain": "TX",
    "text/html": "HTML",
    "application/pdf": "PDF",
    "application/rtf": "RTF",
    "application/xml": "CDA",
}


# ------------------------------------------------------------------------------
# helpers
# ------------------------------------------------------------------------------


def lookup(table: Mapping[str, str], code: Optional[str], default: Optional[str] = None) -> Optional[str]:
    """Case-tolerant table lookup; empty codes give ``default``."""
    if not code:
        return default
    if code in table:
        return table[code]
    for key, value in table.items():
        if key.lower() == code.lower():
            return value
    return default


def coding_system(hl7_system: Optional[str]) -> Optional[str]:
    """Map an HL7 coding system name (CE/CWE.3) to a FHIR system URI."""
    if not hl7_system:
        return None
    return CODING_SYSTEMS.get(hl7_system.upper(), None)


def hl7_system(fhir_system: Optional[str]) -> Optional[str]:
    """Reverse of :func:`coding_system`, preferring the short HL7 names."""
    if not fhir_system:
        return None
    preferred: Dict[str, str] = {
        SYSTEM_LOINC: "LN",
        SYSTEM_SNOMED: "SCT",
        SYSTEM_ICD10: "I10",
        SYSTEM_RXNORM: "RXNORM",
        SYSTEM_CVX: "CVX",
        SYSTEM_NDC: "NDC",
        SYSTEM_CPT: "C4",
        SYSTEM_UCUM: "UCUM",
    }
    return preferred.get(fhir_system)
