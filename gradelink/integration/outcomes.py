"""
LTI Basic Outcomes (POX) message model.

Outbound requests are built as a small typed tree (envelope, header, result
request, result record) and serialized with ElementTree, then pretty printed
through minidom with a UTF-8 declaration. Inbound responses are parsed with
defusedxml and best-effort extraction: a missing node yields an empty value,
never an error.

Copyright (c) 2025 Gradelink Contributors
"""

import decimal
import logging
import math
import numbers
import re
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Final, Optional, Union
from xml.dom import minidom
from xml.etree.ElementTree import Element, SubElement, tostring

from defusedxml import DefusedXmlException
from defusedxml import ElementTree as DefusedElementTree

from gradelink.errors import ConfigurationError, ResultError


logger = logging.getLogger(__name__)

IMSX_NAMESPACE: Final[str] = "http://www.imsglobal.org/services/ltiv1p1/xsd/imsoms_v1p0"
IMSX_VERSION: Final[str] = "V1.0"
SCORE_LANGUAGE: Final[str] = "en"
SUCCESS_CODE: Final[str] = "success"

INVALID_ACTION_MESSAGE: Final[str] = "The result action must be read, replace or delete."
SCORE_NOT_NUMBER_MESSAGE: Final[str] = "The result score must be a number."
SCORE_OUT_OF_RANGE_MESSAGE: Final[str] = "The result score must be between 0 and 1 inclusive."
INVALID_SOURCED_ID_MESSAGE: Final[str] = "The result sourced ID contains characters XML cannot carry."

# Characters outside the XML 1.0 Char production
XML_INVALID_CHARACTERS = re.compile(r"[^\t\n\r\x20-\ud7ff\ue000-\ufffd\U00010000-\U0010ffff]")


def _path(*names: str) -> str:
    # Match by local name whether or not the consumer declared the namespace
    return "/".join(f"{{*}}{name}" for name in names)


STATUS_INFO_PATH: Final[str] = _path(
    "imsx_POXHeader", "imsx_POXResponseHeaderInfo", "imsx_statusInfo"
)
READ_SCORE_PATH: Final[str] = _path(
    "imsx_POXBody", "readResultResponse", "result", "resultScore", "textString"
)


class OutcomeAction(Enum):
    """Operations of the Basic Outcomes service."""

    READ = "read"
    REPLACE = "replace"
    DELETE = "delete"

    @classmethod
    def parse(cls, value: Union["OutcomeAction", str]) -> "OutcomeAction":
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            raise ConfigurationError(INVALID_ACTION_MESSAGE, {"action": repr(value)}) from None

    @property
    def request_tag(self) -> str:
        return f"{self.value}ResultRequest"


@dataclass(frozen=True)
class Score:
    """
    Outcome score normalized to the closed interval [0.0, 1.0].

    Out-of-range values are rejected, never clamped.
    """

    value: float

    def __post_init__(self):
        if isinstance(self.value, bool) or not isinstance(self.value, (numbers.Real, decimal.Decimal)):
            raise ConfigurationError(SCORE_NOT_NUMBER_MESSAGE, {"score": repr(self.value)})
        number = float(self.value)
        if math.isnan(number):
            raise ConfigurationError(SCORE_NOT_NUMBER_MESSAGE, {"score": repr(self.value)})
        if not (0.0 <= number <= 1.0):
            raise ConfigurationError(SCORE_OUT_OF_RANGE_MESSAGE, {"score": number})
        # -0.0 becomes 0.0
        object.__setattr__(self, "value", number + 0.0)

    @classmethod
    def parse(cls, value: Any) -> "Score":
        """
        Convert a caller-supplied score into a Score.

        Numbers and numeric strings are accepted. Booleans, None, NaN and
        non-numeric or non-finite strings are not numbers.
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                number = float(value.strip())
            except ValueError:
                raise ConfigurationError(SCORE_NOT_NUMBER_MESSAGE, {"score": value}) from None
            if not math.isfinite(number):
                raise ConfigurationError(SCORE_NOT_NUMBER_MESSAGE, {"score": value})
            return cls(number)
        return cls(value)

    @property
    def text(self) -> str:
        """Plain decimal rendering, e.g. ``0.5``; never exponent notation."""
        return format(decimal.Decimal(repr(self.value)), "f")


@dataclass(frozen=True)
class OutcomeRequest:
    """
    One outcome operation against a sourcedId.

    Invariants:
    - A score is present if and only if the action is REPLACE
    - The sourcedId holds only characters an XML document can carry
    """

    sourced_id: str
    action: OutcomeAction = OutcomeAction.READ
    score: Optional[Score] = None

    def __post_init__(self):
        object.__setattr__(self, "action", OutcomeAction.parse(self.action))
        invalid = XML_INVALID_CHARACTERS.search(self.sourced_id)
        if invalid:
            raise ConfigurationError(
                INVALID_SOURCED_ID_MESSAGE,
                {"character": repr(invalid.group()), "position": invalid.start()}
            )
        if (self.score is not None) != (self.action is OutcomeAction.REPLACE):
            if self.action is OutcomeAction.REPLACE:
                raise ConfigurationError(SCORE_NOT_NUMBER_MESSAGE, {"score": None})
            raise ConfigurationError(
                f"A score can only accompany the replace action, not {self.action.value}.",
                {"action": self.action.value}
            )

    @classmethod
    def create(cls, sourced_id: str, action: Union[OutcomeAction, str] = OutcomeAction.READ,
               score: Any = None) -> "OutcomeRequest":
        """Validate loosely typed input: the action first, then the score for replace."""
        parsed_action = OutcomeAction.parse(action)
        parsed_score = Score.parse(score) if parsed_action is OutcomeAction.REPLACE else None
        return cls(sourced_id=str(sourced_id), action=parsed_action, score=parsed_score)


# Outbound document tree

@dataclass(frozen=True)
class POXRequestHeader:
    message_identifier: str = field(default_factory=lambda: uuid.uuid4().hex)
    version: str = IMSX_VERSION

    def build(self, parent: Element) -> Element:
        header = SubElement(parent, "imsx_POXHeader")
        info = SubElement(header, "imsx_POXRequestHeaderInfo")
        SubElement(info, "imsx_version").text = self.version
        SubElement(info, "imsx_messageIdentifier").text = self.message_identifier
        return header


@dataclass(frozen=True)
class ResultRecord:
    sourced_id: str
    score: Optional[Score] = None

    def build(self, parent: Element) -> Element:
        record = SubElement(parent, "resultRecord")
        guid = SubElement(record, "sourcedGUID")
        SubElement(guid, "sourcedId").text = self.sourced_id

        if self.score is not None:
            result = SubElement(record, "result")
            result_score = SubElement(result, "resultScore")
            SubElement(result_score, "language").text = SCORE_LANGUAGE
            SubElement(result_score, "textString").text = self.score.text

        return record


@dataclass(frozen=True)
class ResultRequest:
    action: OutcomeAction
    record: ResultRecord

    def build(self, parent: Element) -> Element:
        body = SubElement(parent, "imsx_POXBody")
        request = SubElement(body, self.action.request_tag)
        self.record.build(request)
        return body


@dataclass(frozen=True)
class OutcomeEnvelope:
    """An ``imsx_POXEnvelopeRequest`` document."""

    header: POXRequestHeader
    body: ResultRequest

    @classmethod
    def for_request(cls, request: OutcomeRequest) -> "OutcomeEnvelope":
        return cls(
            header=POXRequestHeader(),
            body=ResultRequest(request.action, ResultRecord(request.sourced_id, request.score)),
        )

    @property
    def message_identifier(self) -> str:
        return self.header.message_identifier

    def to_element(self) -> Element:
        root = Element("imsx_POXEnvelopeRequest")
        root.set("xmlns", IMSX_NAMESPACE)
        self.header.build(root)
        self.body.build(root)
        return root

    def serialize(self) -> str:
        """Pretty-printed document with a UTF-8 XML declaration."""
        rough_string = tostring(self.to_element(), encoding="unicode")
        reparsed = minidom.parseString(rough_string)
        return reparsed.toprettyxml(indent="  ", encoding="UTF-8").decode("utf-8")


def build_result_body(sourced_id: str,
                      action: Union[OutcomeAction, str] = OutcomeAction.READ,
                      score: Any = None) -> str:
    """
    Make an XML document to use as the body of a result request.

    Args:
        sourced_id: The sourcedId to apply the request to
        action: "read" (the default), "replace" or "delete"
        score: For "replace", a number between 0 and 1 inclusive; ignored
            otherwise

    Returns:
        The XML document to send to the outcome service

    Raises:
        ConfigurationError: The action is invalid, or the replace score is not
            a number or lies outside [0, 1].
    """
    request = OutcomeRequest.create(sourced_id, action, score)
    envelope = OutcomeEnvelope.for_request(request)
    logger.debug(
        f"Built {request.action.request_tag} envelope {envelope.message_identifier}"
    )
    return envelope.serialize()


# Inbound response

@dataclass(frozen=True)
class OutcomeResult:
    """Result of one outcome request. Truthy when the consumer reported success."""

    success: bool
    description: str = ""
    score: Optional[float] = None
    code_major: Optional[str] = None
    message_identifier: Optional[str] = None

    def __bool__(self) -> bool:
        return self.success


def _text(node: Optional[Element], path: Optional[str] = None) -> Optional[str]:
    if node is None:
        return None
    if path is not None:
        node = node.find(path)
        if node is None:
            return None
    return node.text or ""


def parse_result_response(data: Union[bytes, str],
                          message_identifier: Optional[str] = None) -> OutcomeResult:
    """
    Parse an ``imsx_POXEnvelopeResponse`` document.

    The document comes from a third party, so it is parsed with defusedxml:
    entity declarations and external references are refused. Text is taken
    as sent, and ``imsx_codeMajor`` must read exactly ``success``.

    Args:
        data: Raw response body
        message_identifier: Identifier of the request the response answers

    Returns:
        OutcomeResult with the success flag, description and any read score

    Raises:
        ResultError: The data is not a well-formed XML document, or it
            declares entities.
    """
    try:
        root = DefusedElementTree.fromstring(data)
    except (DefusedElementTree.ParseError, DefusedXmlException) as e:
        raise ResultError(
            "The consumer provided an invalid XML document.",
            {"parse_error": str(e), "message_identifier": message_identifier}
        ) from e

    status = root.find(STATUS_INFO_PATH)
    code_major = _text(status, "{*}imsx_codeMajor")
    description = _text(status, "{*}imsx_description") or ""

    score = None
    score_text = _text(root, READ_SCORE_PATH)
    if score_text and score_text.strip():
        try:
            score = float(score_text)
        except ValueError:
            logger.warning(f"Ignoring unparsable result score {score_text!r}")

    return OutcomeResult(
        success=code_major == SUCCESS_CODE,
        description=description,
        score=score,
        code_major=code_major,
        message_identifier=message_identifier,
    )


__all__ = [
    "OutcomeAction",
    "Score",
    "OutcomeRequest",
    "OutcomeResult",
    "OutcomeEnvelope",
    "POXRequestHeader",
    "ResultRecord",
    "ResultRequest",
    "build_result_body",
    "parse_result_response",
    "IMSX_NAMESPACE",
    "IMSX_VERSION",
]
