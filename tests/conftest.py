# tests/conftest.py
"""
Shared fixtures: sample messages and a registry isolation fixture.
"""

import logging

import pytest

from hl7_fhir_bridge.transform import registry

MSH_ADT = "MSH|^~\\&|SEND|SFAC|RECV|RFAC|20240101120000||ADT^A01|MSG001|P|2.5"
MSH_ORU = "MSH|^~\\&|LAB|LFAC|EHR|EFAC|20240101120000||ORU^R01|MSG002|P|2.5"
MSH_ORM = "MSH|^~\\&|EHR|EFAC|LAB|LFAC|20240101120000||ORM^O01|MSG003|P|2.5"
MSH_VXU = "MSH|^~\\&|EHR|EFAC|IIS|IFAC|20240101120000||VXU^V04|MSG004|P|2.5.1"


def hl7(*segments: str) -> str:
    """Join segments with CR, HL7 style."""
    return "\r".join(segments) + "\r"


def seg(name: str, fields: dict) -> str:
    """
    Build a non-MSH segment from ``{field number: value}`` so field positions
    are explicit instead of hand-counted pipes.
    """
    last = max(fields)
    return "|".join([name] + [fields.get(i, "") for i in range(1, last + 1)])


PID = seg("PID", {1: "1", 3: "12345^^^HOSP^MR", 5: "Doe^John", 7: "19800101", 8: "M"})

PID_ONLY = hl7(MSH_ADT, "PID|1||12345^^^HOSP^MR||Doe^John||19800101|M")

ADT_A01 = hl7(
    MSH_ADT,
    "EVN|A01|20240101120000",
    seg(
        "PID",
        {
            1: "1",
            3: "12345^^^HOSP^MR~999-99-9999^^^SSA^SS",
            5: "Doe^John^Q^Jr^Dr^^L",
            7: "19800101",
            8: "M",
            11: "123 Main St^Apt 4^Springfield^IL^62701^USA^H",
            13: "^PRN^PH^^1^217^5551234~^NET^Internet^john@example.org",
            14: "^WPN^PH^^1^217^5559876",
            16: "M",
        },
    ),
    seg("NK1", {1: "1", 2: "Doe^Jane", 3: "SPO^Spouse", 5: "^PRN^PH^^1^217^5550000"}),
    seg(
        "PV1",
        {
            1: "1",
            2: "I",
            3: "ICU^101^A",
            7: "1234^Attending^Alice",
            8: "5678^Referring^Bob",
            10: "MED",
            19: "V100",
            44: "20240101080000",
        },
    ),
    seg("AL1", {1: "1", 2: "DA", 3: "PCN^Penicillin^L", 4: "SV", 5: "Hives"}),
    seg("DG1", {1: "1", 3: "I10^Essential hypertension^I10", 6: "F"}),
    seg("PR1", {1: "1", 3: "0DJ08ZZ^Inspection^ICD10PCS", 5: "20240101090000"}),
    seg(
        "IN1",
        {
            1: "1",
            2: "PLAN1^Gold Plan",
            3: "INS01",
            4: "Acme Insurance",
            8: "GRP7",
            9: "Group Seven",
            12: "20240101",
            13: "20241231",
        },
    ),
)

ORU_R01 = hl7(
    MSH_ORU,
    PID,
    "ORC|RE|P100|F200",
    seg(
        "OBR",
        {
            1: "1",
            2: "P100",
            3: "F200",
            4: "24331-1^Lipid panel^LN",
            7: "20240101080000",
            22: "20240101100000",
            24: "CH",
            25: "F",
        },
    ),
    seg(
        "OBX",
        {1: "1", 2: "NM", 3: "2093-3^Cholesterol^LN", 5: "185", 6: "mg/dL", 7: "<200", 8: "N", 11: "F"},
    ),
    seg(
        "OBX",
        {1: "2", 2: "NM", 3: "2571-8^Triglyceride^LN", 5: "250", 6: "mg/dL", 7: "<150", 8: "H", 11: "F"},
    ),
)

# second ORC carries only the filler number of the first order
ORM_O01 = hl7(
    MSH_ORM,
    PID,
    seg("ORC", {1: "NW", 2: "P1", 3: "F1", 9: "20240101110000"}),
    seg("OBR", {1: "1", 2: "P1", 3: "F1", 4: "CODE^Test panel^LN"}),
    seg("ORC", {1: "CA", 3: "F1"}),
)

VXU_V04 = hl7(
    MSH_VXU,
    PID,
    seg("ORC", {1: "RE", 3: "IZ-1"}),
    seg(
        "RXA",
        {
            1: "0",
            2: "1",
            3: "20240101100000",
            4: "20240101100000",
            5: "08^Hep B, adolescent or pediatric^CVX",
            6: "0.5",
            7: "mL^mL^UCUM",
            15: "LOT1",
            16: "20250101",
            17: "MSD^Merck^MVX",
            20: "CP",
        },
    ),
)


@pytest.fixture
def isolated_registry():
    """
    Snapshot and restore both converter registries so tests can register
    throwaway converters without leaking them.
    """
    inbound = dict(registry._INBOUND)
    outbound = dict(registry._OUTBOUND)
    frozen = registry._FROZEN
    try:
        registry._INBOUND.clear()
        registry._OUTBOUND.clear()
        registry._FROZEN = False
        yield registry
    finally:
        registry._INBOUND.clear()
        registry._INBOUND.update(inbound)
        registry._OUTBOUND.clear()
        registry._OUTBOUND.update(outbound)
        registry._FROZEN = frozen


@pytest.fixture(autouse=True)
def _quiet_root_logger():
    """configure_logging() in CLI tests replaces root handlers; restore them."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers = handlers
    root.setLevel(level)
