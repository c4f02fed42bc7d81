# src/hl7_fhir_bridge/transform/v2_to_fhir/careplan.py
"""
ORC in patient care messages (PPR, PGL, PPP ...) -> CarePlan.

Patient care structures nest the order control segment at varying depths
under problem, goal and pathway groups, so every ORC in the message is
read wherever it sits.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, Optional

from ... import codes
from ...context import ConversionContext
from ...datetime_utils import hl7_to_fhir_datetime
from ...message_tree import Locator, MessageTree
from ...paths import Location, field_repetitions, segments_anywhere
from ..base import InboundConverter, concept, put
from ..registry import register_inbound
from ._datatypes import practitioner
from ._orders import order_identifiers

PATIENT_CARE_TYPES = frozenset({"PPR", "PGL", "PPP", "PPG", "PPT", "PPV", "PTR", "PGR", "PRR"})


@register_inbound("CarePlan", order=180)
class CarePlanConverter(InboundConverter):
    segment = "ORC"

    def locations(self, tree: MessageTree, context: ConversionContext) -> Iterable[Location]:
        if context.message_type.upper() not in PATIENT_CARE_TYPES:
            return ()
        return segments_anywhere(tree, "ORC", self.caps)

    def build(
        self, loc: Location, data: Dict[str, Any], context: ConversionContext
    ) -> Optional[Dict[str, Any]]:
        orc = loc.segment
        status, intent = codes.CAREPLAN_STATUS.get(orc.get(Locator(1)), ("draft", "plan"))
        data["status"] = status
        data["intent"] = intent
        data["subject"] = self.subject(context)
        put(data, "encounter", self.encounter(context))
        data["category"] = [
            concept(
                codes.SYSTEM_CAREPLAN_CATEGORY,
                "assess-plan",
                "Assessment and Plan of Treatment",
            )
        ]
        put(
            data,
            "identifier",
            order_identifiers(
                orc.get(Locator(2, 0, 1)) or None, orc.get(Locator(3, 0, 1)) or None
            ),
        )

        # ORC-7 TQ: start is component 4, end component 5
        put(data, "period.start", hl7_to_fhir_datetime(orc.get(Locator(7, 0, 4))))
        put(data, "period.end", hl7_to_fhir_datetime(orc.get(Locator(7, 0, 5))))
        put(data, "created", hl7_to_fhir_datetime(orc.get(Locator(9))))

        put(data, "author", practitioner(orc, 10, 0, context))
        contributors = [practitioner(orc, 12, rep, context) for rep in field_repetitions(orc, 12)]
        put(data, "contributor", [c for c in contributors if c])
        return data
