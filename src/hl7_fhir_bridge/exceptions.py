# src/hl7_fhir_bridge/exceptions.py
"""
Custom exceptions for hl7_fhir_bridge.

All exceptions inherit from HL7FHIRBridgeError so that callers can catch
bridge-specific errors without grabbing unrelated built-in exceptions.
"""


class HL7FHIRBridgeError(Exception):
    """Base class for all hl7_fhir_bridge exceptions."""

    pass


class ParseError(HL7FHIRBridgeError):
    """Raised when an HL7 message or FHIR Bundle cannot be parsed correctly."""

    pass


class PathError(HL7FHIRBridgeError):
    """Raised when a message tree path or field locator is malformed."""

    pass


class TransformError(HL7FHIRBridgeError):
    """Raised when a conversion fails as a whole."""

    pass


class MissingAnchorError(TransformError):
    """Raised when no root Patient can be produced for an inbound message."""

    pass
