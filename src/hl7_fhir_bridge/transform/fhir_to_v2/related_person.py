# src/hl7_fhir_bridge/transform/fhir_to_v2/related_person.py
"""
RelatedPerson -> GT1 when a relationship coding is the v3 ``GUAR`` role,
otherwise NK1. Repetitions are appended after the ones already in the tree
(Patient.contact entries also become NK1).
"""

from __future__ import annotations

from typing import Any, ClassVar, Dict, List, Optional

from ... import codes
from ...context import ConversionContext
from ...message_tree import MessageTree
from ..base import OutboundConverter, as_list, attr
from ..registry import register_outbound
from ._datatypes import text, write_address, write_concept, write_identifier, write_name, write_telecom


def is_guarantor(record: Any) -> bool:
    for relationship in as_list(attr(record, "relationship")):
        for c in as_list(attr(relationship, "coding")):
            if attr(c, "system") == codes.SYSTEM_V3_ROLE_CODE and attr(c, "code") == "GUAR":
                return True
    return False


def _relationship(record: Any) -> Optional[Any]:
    """First relationship concept that is not only the guarantor role."""
    for relationship in as_list(attr(record, "relationship")):
        codings = [
            c for c in as_list(attr(relationship, "coding"))
            if attr(c, "system") != codes.SYSTEM_V3_ROLE_CODE
        ]
        if codings:
            return {"coding": codings, "text": attr(relationship, "text")}
    return None


def _split_telecom(record: Any):
    home: List[Any] = []
    work: List[Any] = []
    for point in as_list(attr(record, "telecom")):
        (work if attr(point, "use") == "work" else home).append(point)
    return home, work


class _PersonWriter(OutboundConverter):
    handles = ("RelatedPerson",)
    segment: ClassVar[str] = ""
    # attribute -> field number
    fields: ClassVar[Dict[str, int]] = {}

    def convert(self, record: Any, tree: MessageTree, context: ConversionContext) -> None:
        self.next_index()
        n = len(tree.children_named(self.segment))
        seg = f"{self.segment}({n})"
        f = self.fields
        self.write(
            tree,
            seg,
            {
                "1": str(n + 1),
                str(f["birthDate"]): text(attr(record, "birthDate")),
                str(f["gender"]): codes.lookup(codes.GENDER_OUT, attr(record, "gender")),
            },
        )
        write_name(tree, seg, f["name"], 0, attr(record, "name", 0))
        write_address(tree, seg, f["address"], 0, attr(record, "address", 0))
        home, work = _split_telecom(record)
        for rep, point in enumerate(home):
            write_telecom(tree, seg, f["home"], rep, point)
        for rep, point in enumerate(work):
            write_telecom(tree, seg, f["work"], rep, point)
        write_concept(tree, seg, f["relationship"], 0, _relationship(record))
        for rep, ident in enumerate(as_list(attr(record, "identifier"))):
            write_identifier(tree, seg, f["identifier"], rep, ident)


@register_outbound("related-person-nk1", order=150)
class NextOfKinWriter(_PersonWriter):
    segment = "NK1"
    fields = dict(
        name=2, relationship=3, address=4, home=5, work=6, gender=15, birthDate=16, identifier=33
    )

    def can_convert(self, record: Any) -> bool:
        return super().can_convert(record) and not is_guarantor(record)


@register_outbound("related-person-gt1", order=155)
class GuarantorWriter(_PersonWriter):
    segment = "GT1"
    fields = dict(
        identifier=2, name=3, address=5, home=6, work=7, birthDate=8, gender=9, relationship=11
    )

    def can_convert(self, record: Any) -> bool:
        return super().can_convert(record) and is_guarantor(record)
