# src/hl7_fhir_bridge/transform/fhir_to_v2/medication.py
"""
Pharmacy records, each in its own order group:

- MedicationRequest -> ORC + RXE
- Immunization, MedicationAdministration -> ORC (RE) + RXA
"""

from __future__ import annotations

from typing import Any

from ... import codes
from ...context import ConversionContext
from ...message_tree import MessageTree
from ..base import OutboundConverter, attr
from ..registry import register_outbound
from ._datatypes import text, write_concept, write_person, write_quantity
from ._orders import allocate_group, group_path, order_numbers

_MED_STATUS_OUT = dict(codes.ORDER_STATUS_OUT, cancelled="CA", stopped="DC")


@register_outbound("medication-request-rxe", order=90)
class MedicationRequestWriter(OutboundConverter):
    handles = ("MedicationRequest",)

    def convert(self, record: Any, tree: MessageTree, context: ConversionContext) -> None:
        index = allocate_group(context, attr(record, "id"))
        orc = group_path(context, index, "ORC")
        rxe = group_path(context, index, "RXE")
        placer, filler = order_numbers(record)
        status = attr(record, "status")

        self.write(
            tree,
            orc,
            {
                "1": "CA" if status in ("cancelled", "stopped") else "NW",
                "2": placer,
                "3": filler,
                "5": codes.lookup(_MED_STATUS_OUT, status),
                "9": text(attr(record, "authoredOn")),
            },
        )
        requester = attr(record, "requester")
        if requester is not None:
            write_person(tree, orc, 12, 0, requester)

        dosage = attr(record, "dosageInstruction", 0)
        write_concept(tree, rxe, 2, 0, attr(record, "medicationCodeableConcept"))
        write_quantity(tree, rxe, 3, 5, attr(dosage, "doseAndRate", 0, "doseQuantity"))
        dispense = attr(record, "dispenseRequest")
        write_quantity(tree, rxe, 10, 11, attr(dispense, "quantity"))
        self.write(
            tree,
            rxe,
            {
                "1-2": text(attr(dosage, "timing", "code", "text")),
                "7-2": text(attr(dosage, "text")),
                "12": text(attr(dispense, "numberOfRepeatsAllowed")),
            },
        )


class _AdministrationWriter(OutboundConverter):
    code_attr = "vaccineCode"
    time_attr = "occurrenceDateTime"

    def convert(self, record: Any, tree: MessageTree, context: ConversionContext) -> None:
        n = self.next_index()
        index = allocate_group(context, attr(record, "id"))
        self.write(tree, group_path(context, index, "ORC"), {"1": "RE"})
        rxa = group_path(context, index, "RXA")

        when = attr(record, self.time_attr) or attr(record, "effectivePeriod", "start")
        end = attr(record, "effectivePeriod", "end")
        self.write(
            tree,
            rxa,
            {
                "1": "0",
                "2": str(n + 1),
                "3": text(when),
                "4": text(end or when),
                "15": text(attr(record, "lotNumber")),
                "16": text(attr(record, "expirationDate")),
                "17-2": text(attr(record, "manufacturer", "display")),
                "20": codes.lookup(codes.ADMIN_STATUS_OUT, attr(record, "status")),
            },
        )
        write_concept(tree, rxa, 5, 0, attr(record, self.code_attr))
        write_quantity(tree, rxa, 6, 7, self.dose(record))
        actor = attr(record, "performer", 0, "actor")
        if actor is not None:
            write_person(tree, rxa, 10, 0, actor)

    def dose(self, record: Any) -> Any:
        return attr(record, "doseQuantity")


@register_outbound("immunization-rxa", order=100)
class ImmunizationWriter(_AdministrationWriter):
    handles = ("Immunization",)


@register_outbound("medication-administration-rxa", order=110)
class MedicationAdministrationWriter(_AdministrationWriter):
    handles = ("MedicationAdministration",)
    code_attr = "medicationCodeableConcept"
    time_attr = "effectiveDateTime"

    def dose(self, record: Any) -> Any:
        return attr(record, "dosage", "dose")
