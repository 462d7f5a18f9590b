import unittest
from decimal import Decimal
from xml.etree import ElementTree

from defusedxml import DefusedXmlException

from gradelink.errors import ConfigurationError, ResultError
from gradelink.integration.outcomes import (
    IMSX_NAMESPACE,
    OutcomeAction,
    OutcomeRequest,
    Score,
    build_result_body,
    parse_result_response,
)
from tests.http_fakes import SOURCED_ID, pox_response


NS = {"ims": IMSX_NAMESPACE}


def _parse(body: str) -> ElementTree.Element:
    return ElementTree.fromstring(body.encode("utf-8"))


class ScoreTests(unittest.TestCase):
    def test_accepts_bounds_and_numeric_strings(self):
        self.assertEqual(Score.parse(0).value, 0.0)
        self.assertEqual(Score.parse(1).value, 1.0)
        self.assertEqual(Score.parse("0.25").value, 0.25)
        self.assertEqual(Score.parse(Decimal("0.5")).value, 0.5)

    def test_not_a_number(self):
        for value in ("abc", "", None, True, float("nan"), "inf", [0.5]):
            with self.subTest(value=value):
                with self.assertRaises(ConfigurationError) as ctx:
                    Score.parse(value)
                self.assertIn("must be a number", str(ctx.exception))

    def test_out_of_range(self):
        for value in (1.5, -0.01, "2", float("inf")):
            with self.subTest(value=value):
                with self.assertRaises(ConfigurationError) as ctx:
                    Score.parse(value)
                self.assertIn("between 0 and 1 inclusive", str(ctx.exception))

    def test_text_is_plain_decimal(self):
        self.assertEqual(Score(0.5).text, "0.5")
        self.assertEqual(Score(0.73).text, "0.73")
        self.assertEqual(Score(1).text, "1.0")
        self.assertEqual(Score(0.00001).text, "0.00001")
        self.assertEqual(Score(-0.0).text, "0.0")


class OutcomeRequestTests(unittest.TestCase):
    def test_action_validated_before_score(self):
        with self.assertRaises(ConfigurationError) as ctx:
            OutcomeRequest.create(SOURCED_ID, "update", "abc")
        self.assertIn("read, replace or delete", str(ctx.exception))

    def test_score_dropped_for_read(self):
        request = OutcomeRequest.create(SOURCED_ID, "read", 0.5)
        self.assertIs(request.action, OutcomeAction.READ)
        self.assertIsNone(request.score)

    def test_replace_requires_score(self):
        with self.assertRaises(ConfigurationError):
            OutcomeRequest(SOURCED_ID, OutcomeAction.REPLACE)
        with self.assertRaises(ConfigurationError):
            OutcomeRequest(SOURCED_ID, OutcomeAction.DELETE, Score(0.5))


class BuildResultBodyTests(unittest.TestCase):
    def test_replace_envelope(self):
        body = build_result_body(SOURCED_ID, "replace", 0.5)
        self.assertTrue(body.startswith('<?xml version="1.0" encoding="UTF-8"?>'))

        root = _parse(body)
        self.assertEqual(root.tag, f"{{{IMSX_NAMESPACE}}}imsx_POXEnvelopeRequest")
        info = root.find("ims:imsx_POXHeader/ims:imsx_POXRequestHeaderInfo", NS)
        self.assertEqual(info.find("ims:imsx_version", NS).text, "V1.0")
        self.assertTrue(info.find("ims:imsx_messageIdentifier", NS).text)

        record = root.find("ims:imsx_POXBody/ims:replaceResultRequest/ims:resultRecord", NS)
        self.assertEqual(record.find("ims:sourcedGUID/ims:sourcedId", NS).text, SOURCED_ID)
        score = record.find("ims:result/ims:resultScore", NS)
        self.assertEqual(score.find("ims:language", NS).text, "en")
        self.assertEqual(score.find("ims:textString", NS).text, "0.5")

    def test_body_holds_exactly_one_request(self):
        for action in ("read", "delete"):
            with self.subTest(action=action):
                root = _parse(build_result_body(SOURCED_ID, action))
                requests = list(root.find("ims:imsx_POXBody", NS))
                self.assertEqual(len(requests), 1)
                self.assertEqual(requests[0].tag, f"{{{IMSX_NAMESPACE}}}{action}ResultRequest")
                self.assertIsNone(root.find(".//ims:result", NS))

    def test_default_action_is_read(self):
        root = _parse(build_result_body(SOURCED_ID))
        self.assertIsNotNone(root.find("ims:imsx_POXBody/ims:readResultRequest", NS))

    def test_pretty_printed(self):
        body = build_result_body(SOURCED_ID, "replace", 1)
        self.assertIn("\n  <imsx_POXHeader>\n", body)
        self.assertIn("<textString>1.0</textString>", body)

    def test_invalid_action(self):
        with self.assertRaises(ConfigurationError):
            build_result_body(SOURCED_ID, "update")

    def test_invalid_scores(self):
        with self.assertRaisesRegex(ConfigurationError, "between 0 and 1"):
            build_result_body(SOURCED_ID, "replace", 1.5)
        with self.assertRaisesRegex(ConfigurationError, "must be a number"):
            build_result_body(SOURCED_ID, "replace", "abc")

    def test_message_identifier_is_unique_and_shape_is_stable(self):
        first = _parse(build_result_body(SOURCED_ID, "replace", 0.5))
        second = _parse(build_result_body(SOURCED_ID, "replace", 0.5))
        path = "ims:imsx_POXHeader/ims:imsx_POXRequestHeaderInfo/ims:imsx_messageIdentifier"
        self.assertNotEqual(first.find(path, NS).text, second.find(path, NS).text)

        first.find(path, NS).text = second.find(path, NS).text = "fixed"
        self.assertEqual(ElementTree.tostring(first), ElementTree.tostring(second))

    def test_sourced_id_is_escaped(self):
        sourced_id = '{"data":{"instanceid":"3"},"hash":"a<b&c"}'
        root = _parse(build_result_body(sourced_id, "read"))
        self.assertEqual(root.find(".//ims:sourcedId", NS).text, sourced_id)

    def test_sourced_id_with_characters_xml_cannot_carry(self):
        for sourced_id in ("abc\x01def", "tab\x0bbed", "nul\x00"):
            with self.subTest(sourced_id=sourced_id):
                with self.assertRaises(ConfigurationError) as ctx:
                    build_result_body(sourced_id, "read")
                self.assertIn("characters XML cannot carry", str(ctx.exception))

    def test_sourced_id_with_whitespace_and_unicode_is_kept(self):
        sourced_id = "course\t42 student é \U0001f600"
        root = _parse(build_result_body(sourced_id, "delete"))
        self.assertEqual(root.find(".//ims:sourcedId", NS).text, sourced_id)


class ParseResultResponseTests(unittest.TestCase):
    def test_success_with_score(self):
        result = parse_result_response(pox_response("success", "ok", "0.73"), "msg-1")
        self.assertTrue(result.success)
        self.assertTrue(result)
        self.assertEqual(result.description, "ok")
        self.assertEqual(result.score, 0.73)
        self.assertEqual(result.code_major, "success")
        self.assertEqual(result.message_identifier, "msg-1")

    def test_without_namespace(self):
        result = parse_result_response(pox_response("success", "ok", "0.2", namespace=False))
        self.assertTrue(result.success)
        self.assertEqual(result.score, 0.2)

    def test_failure_is_not_an_error(self):
        result = parse_result_response(pox_response("failure", "unknown sourcedId"))
        self.assertFalse(result.success)
        self.assertFalse(result)
        self.assertEqual(result.description, "unknown sourcedId")
        self.assertIsNone(result.score)

    def test_code_major_is_case_sensitive(self):
        self.assertFalse(parse_result_response(pox_response("Success")).success)

    def test_missing_nodes(self):
        result = parse_result_response(b"<imsx_POXEnvelopeResponse/>")
        self.assertFalse(result.success)
        self.assertEqual(result.description, "")
        self.assertIsNone(result.score)
        self.assertIsNone(result.code_major)

    def test_empty_or_unparsable_score(self):
        self.assertIsNone(parse_result_response(pox_response(score="")).score)
        with self.assertLogs("gradelink.integration.outcomes", level="WARNING"):
            self.assertIsNone(parse_result_response(pox_response(score="n/a")).score)

    def test_code_major_is_compared_as_sent(self):
        self.assertFalse(parse_result_response(pox_response(" success ")).success)
        result = parse_result_response(pox_response("failure", " spaced out "))
        self.assertEqual(result.code_major, "failure")
        self.assertEqual(result.description, " spaced out ")

    def test_entity_declarations_are_refused(self):
        data = (
            b'<?xml version="1.0"?>'
            b'<!DOCTYPE r [<!ENTITY ok "success">]>'
            b"<imsx_POXEnvelopeResponse><imsx_POXHeader><imsx_POXResponseHeaderInfo>"
            b"<imsx_statusInfo><imsx_codeMajor>&ok;</imsx_codeMajor></imsx_statusInfo>"
            b"</imsx_POXResponseHeaderInfo></imsx_POXHeader></imsx_POXEnvelopeResponse>"
        )
        with self.assertRaises(ResultError) as ctx:
            parse_result_response(data)
        self.assertIn("invalid XML document", str(ctx.exception))
        self.assertIsInstance(ctx.exception.__cause__, DefusedXmlException)

    def test_external_entities_are_refused(self):
        data = (
            b'<?xml version="1.0"?>'
            b'<!DOCTYPE r [<!ENTITY leak SYSTEM "file:///etc/passwd">]>'
            b"<imsx_POXEnvelopeResponse>&leak;</imsx_POXEnvelopeResponse>"
        )
        with self.assertRaises(ResultError):
            parse_result_response(data)

    def test_invalid_xml(self):
        for data in (b"", b"not xml", b"<open><unclosed></open>"):
            with self.subTest(data=data):
                with self.assertRaises(ResultError) as ctx:
                    parse_result_response(data)
                self.assertIn("invalid XML document", str(ctx.exception))
                self.assertIsInstance(ctx.exception.__cause__, ElementTree.ParseError)


if __name__ == '__main__':
    unittest.main()
