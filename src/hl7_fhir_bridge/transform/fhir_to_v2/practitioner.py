# src/hl7_fhir_bridge/transform/fhir_to_v2/practitioner.py
"""
Care providers -> ROL.

- Practitioner: role from its v2-0443 ``meta.tag`` (primary care provider
  when untagged), person from the identifier and name.
- PractitionerRole: role from ``code``, person from the ``practitioner``
  reference, plus period, specialty and telecom.

ROL repetitions are appended after the ones already in the tree, so both
writers can share the segment.
"""

from __future__ import annotations

from typing import Any

from ... import codes
from ...context import ConversionContext
from ...message_tree import MessageTree
from ..base import OutboundConverter, as_list, attr, first_coding
from ..registry import register_outbound
from ._datatypes import text, write_concept, write_person, write_telecom

DEFAULT_ROLE = "PP"


def _next_rol(tree: MessageTree) -> str:
    n = len(tree.children_named("ROL"))
    return f"ROL({n})"


def _role_code(record: Any) -> str:
    for tag in as_list(attr(record, "meta", "tag")):
        if attr(tag, "system") == codes.SYSTEM_V2_0443 and attr(tag, "code"):
            return attr(tag, "code")
    return DEFAULT_ROLE


@register_outbound("practitioner-rol", order=140)
class PractitionerWriter(OutboundConverter):
    handles = ("Practitioner",)

    def convert(self, record: Any, tree: MessageTree, context: ConversionContext) -> None:
        self.next_index()
        rol = _next_rol(tree)
        role = _role_code(record)
        self.write(
            tree,
            rol,
            {
                "1-1": text(attr(record, "id")),
                "2": "AD",
                "3-1": role,
                "3-2": codes.PROVIDER_ROLE_DISPLAY.get(role),
                "3-3": "HL70443",
                "4-1": text(attr(record, "identifier", 0, "value")),
                "4-9": text(attr(record, "identifier", 0, "assigner", "display")),
            },
        )
        name = attr(record, "name", 0)
        if name is not None:
            # XCN carries the name one component later than XPN
            given = [text(g) for g in as_list(attr(name, "given"))]
            self.write(
                tree,
                rol,
                {
                    "4-2": text(attr(name, "family")),
                    "4-3": given[0] if given else None,
                    "4-4": " ".join(g for g in given[1:] if g) or None,
                    "4-5": text(attr(name, "suffix", 0)),
                    "4-6": text(attr(name, "prefix", 0)),
                },
            )
        for rep, point in enumerate(as_list(attr(record, "telecom"))):
            write_telecom(tree, rol, 12, rep, point)


@register_outbound("practitioner-role-rol", order=145)
class PractitionerRoleWriter(OutboundConverter):
    handles = ("PractitionerRole",)

    def convert(self, record: Any, tree: MessageTree, context: ConversionContext) -> None:
        self.next_index()
        rol = _next_rol(tree)
        code = attr(record, "code", 0)
        role = attr(first_coding(code), "code") or DEFAULT_ROLE
        self.write(
            tree,
            rol,
            {
                "1-1": text(attr(record, "identifier", 0, "value")) or text(attr(record, "id")),
                "2": "AD",
                "3-1": role,
                "3-3": "HL70443",
                "5": text(attr(record, "period", "start")),
                "6": text(attr(record, "period", "end")),
            },
        )
        display = text(attr(first_coding(code), "display")) or codes.PROVIDER_ROLE_DISPLAY.get(role)
        self.write(tree, rol, {"3-2": display})

        practitioner = attr(record, "practitioner")
        if practitioner is not None:
            write_person(tree, rol, 4, 0, practitioner)
        write_concept(tree, rol, 9, 0, attr(record, "specialty", 0))
        for rep, point in enumerate(as_list(attr(record, "telecom"))):
            write_telecom(tree, rol, 12, rep, point)
