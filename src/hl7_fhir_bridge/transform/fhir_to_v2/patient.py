# src/hl7_fhir_bridge/transform/fhir_to_v2/patient.py
"""
Patient -> PID, PD1, NK1 and ZPI.

Only the first Patient of a message is written; PID does not repeat.
"""

from __future__ import annotations

import logging
from typing import Any

from ... import codes
from ...context import ConversionContext
from ...message_tree import MessageTree
from ..base import OutboundConverter, as_list, attr, first_coding
from ..registry import register_outbound
from ._datatypes import (
    extensions,
    text,
    write_address,
    write_concept,
    write_identifier,
    write_name,
    write_person,
    write_telecom,
)

LOG = logging.getLogger(__name__)

_ZPI_FIELDS = (
    (2, codes.EXT_PET_NAME),
    (3, codes.EXT_VIP_LEVEL),
    (4, codes.EXT_ARCHIVE_STATUS),
)


def _category_codes(record: Any, url: str) -> list:
    """ombCategory codings of a US Core race/ethnicity extension."""
    out = []
    for ext in extensions(record, url):
        for sub in as_list(attr(ext, "extension")):
            if attr(sub, "url") == "ombCategory" and attr(sub, "valueCoding", "code"):
                out.append(attr(sub, "valueCoding"))
    return out


@register_outbound("patient-pid", order=10)
class PatientWriter(OutboundConverter):
    handles = ("Patient",)

    def convert(self, record: Any, tree: MessageTree, context: ConversionContext) -> None:
        if self.next_index() > 0:
            LOG.warning("Only the first Patient is written to PID; %s ignored", attr(record, "id"))
            return

        self.write(tree, "PID", {"1": "1"})
        for rep, ident in enumerate(as_list(attr(record, "identifier"))):
            write_identifier(tree, "PID", 3, rep, ident)
        for rep, name in enumerate(as_list(attr(record, "name"))):
            write_name(tree, "PID", 5, rep, name)
        for rep, address in enumerate(as_list(attr(record, "address"))):
            write_address(tree, "PID", 11, rep, address)

        home = work = 0
        for point in as_list(attr(record, "telecom")):
            if attr(point, "use") == "work":
                write_telecom(tree, "PID", 14, work, point)
                work += 1
            else:
                write_telecom(tree, "PID", 13, home, point)
                home += 1

        multiple = attr(record, "multipleBirthInteger")
        self.write(
            tree,
            "PID",
            {
                "7": text(attr(record, "birthDate")),
                "8": codes.lookup(codes.GENDER_OUT, attr(record, "gender")),
                "15": text(attr(first_coding(attr(record, "communication", 0, "language")), "code")),
                "16": text(attr(first_coding(attr(record, "maritalStatus")), "code")),
                "24": "Y" if multiple else text(attr(record, "multipleBirthBoolean")),
                "25": text(multiple),
                "29": text(attr(record, "deceasedDateTime")),
                "30": "Y" if attr(record, "deceasedDateTime") else text(attr(record, "deceasedBoolean")),
            },
        )

        for field, url in ((10, codes.EXT_US_CORE_RACE), (22, codes.EXT_US_CORE_ETHNICITY)):
            for rep, c in enumerate(_category_codes(record, url)):
                self.write(
                    tree,
                    "PID",
                    {
                        f"{field}({rep})-1" if rep else f"{field}-1": text(attr(c, "code")),
                        f"{field}({rep})-2" if rep else f"{field}-2": text(attr(c, "display")),
                        f"{field}({rep})-3" if rep else f"{field}-3": "CDCREC",
                    },
                )
        for ext in extensions(record, codes.EXT_RELIGION):
            write_concept(tree, "PID", 17, 0, attr(ext, "valueCodeableConcept"))

        practitioner = attr(record, "generalPractitioner", 0)
        if practitioner is not None:
            write_person(tree, "PD1", 4, 0, practitioner)

        first = len(tree.children_named("NK1"))
        for i, contact in enumerate(as_list(attr(record, "contact")), first):
            nk1 = f"NK1({i})"
            self.write(tree, nk1, {"1": str(i + 1)})
            write_name(tree, nk1, 2, 0, attr(contact, "name"))
            write_concept(tree, nk1, 3, 0, attr(contact, "relationship", 0))
            write_address(tree, nk1, 4, 0, attr(contact, "address"))
            for rep, point in enumerate(as_list(attr(contact, "telecom"))):
                write_telecom(tree, nk1, 5, rep, point)

        zpi = {
            str(field): text(attr(ext, "valueString"))
            for field, url in _ZPI_FIELDS
            for ext in extensions(record, url)[:1]
        }
        if any(zpi.values()):
            self.write(tree, "ZPI", {"1": "1", **zpi})
