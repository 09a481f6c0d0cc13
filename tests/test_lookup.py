from __future__ import annotations

import unittest
from unittest import mock

import requests

from mara_doctor.lookup import (
    NOT_FOUND,
    HttpReferenceLookup,
    LookupValue,
    TableReferenceLookup,
    build_record,
    normalize_identifier,
    record_value,
)

from tests.helpers import IDENTIFIER, MATCHING_REFERENCE, reference_csv


def fake_response(status_code=200, payload=None):
    response = mock.Mock()
    response.status_code = status_code
    response.json.return_value = payload
    if status_code >= 400:
        response.raise_for_status.side_effect = requests.HTTPError(f"{status_code} error")
    return response


class LookupValueTests(unittest.TestCase):
    def test_not_found_markers(self):
        for raw in (None, "", "  ", "Nicht gefunden", "NICHT GEFUNDEN", "not found", float("nan")):
            with self.subTest(raw=raw):
                self.assertEqual(LookupValue.of(raw), NOT_FOUND)

    def test_found_values_are_stripped_text(self):
        self.assertEqual(LookupValue.of(" Stahl "), LookupValue(True, "Stahl"))
        self.assertEqual(LookupValue.of(5.2), LookupValue(True, "5.2"))

    def test_record_helpers(self):
        record = build_record({"Werkstoff": "Stahl", "Gewicht": "Nicht gefunden", "Unbekannt": "x"})
        self.assertEqual(set(record), {"Werkstoff", "Gewicht"})
        self.assertEqual(record_value(record, "Werkstoff"), "Stahl")
        self.assertIsNone(record_value(record, "Gewicht"))
        self.assertIsNone(record_value(record, "Abmessung"))

    def test_identifier_normalization(self):
        self.assertEqual(normalize_identifier(" a2v123 "), "A2V123")
        self.assertEqual(normalize_identifier(None), "")


class HttpReferenceLookupTests(unittest.TestCase):
    def test_lookup_many_keeps_only_records_with_data(self):
        responses = {
            "https://lookup.example/api/A2V1": fake_response(payload={"Werkstoff": "Stahl", "Gewicht": "1 kg"}),
            "https://lookup.example/api/A2V2": fake_response(status_code=404),
            "https://lookup.example/api/A2V3": fake_response(payload=["not", "an", "object"]),
        }

        def get(url, timeout):
            if url.endswith("A2V4"):
                raise requests.ConnectionError("connection refused")
            return responses[url]

        session = mock.Mock()
        session.get.side_effect = get
        lookup = HttpReferenceLookup("https://lookup.example/api/", timeout=5.0, session=session)
        with self.assertLogs("mara_doctor.lookup", level="WARNING") as logs:
            records = lookup.lookup_many({"A2V1", "A2V2", "A2V3", "A2V4", ""}, concurrency=3)
        self.assertEqual(list(records), ["A2V1"])
        self.assertEqual(records["A2V1"]["Werkstoff"], LookupValue(True, "Stahl"))
        self.assertEqual(session.get.call_count, 4)
        session.get.assert_any_call("https://lookup.example/api/A2V1", timeout=5.0)
        self.assertTrue(any("A2V4" in line for line in logs.output))

    def test_server_error_degrades_to_empty_record(self):
        session = mock.Mock()
        session.get.return_value = fake_response(status_code=500)
        lookup = HttpReferenceLookup("https://lookup.example", session=session)
        with self.assertLogs("mara_doctor.lookup", level="WARNING"):
            self.assertEqual(lookup.fetch("A2V1"), {})

    def test_owned_sessions_are_closed_after_the_batch(self):
        created = []

        def new_session():
            session = mock.Mock()
            session.get.return_value = fake_response(payload={"Werkstoff": "Stahl"})
            created.append(session)
            return session

        lookup = HttpReferenceLookup("https://lookup.example")
        with mock.patch.object(requests, "Session", side_effect=new_session):
            records = lookup.lookup_many({"A2V1", "A2V2", "A2V3"}, concurrency=2)
        self.assertEqual(sorted(records), ["A2V1", "A2V2", "A2V3"])
        self.assertTrue(1 <= len(created) <= 2)
        self.assertEqual(sum(session.get.call_count for session in created), 3)
        for session in created:
            session.close.assert_called_once_with()

    def test_injected_session_is_left_open(self):
        session = mock.Mock()
        session.get.return_value = fake_response(payload={"Werkstoff": "Stahl"})
        HttpReferenceLookup("https://lookup.example", session=session).lookup_many({"A2V1"}, concurrency=4)
        session.close.assert_not_called()

    def test_identifier_is_url_quoted(self):
        lookup = HttpReferenceLookup("https://lookup.example", session=mock.Mock())
        self.assertEqual(lookup.url_for("A2V 1/2"), "https://lookup.example/A2V%201%2F2")

    def test_empty_url_is_rejected(self):
        with self.assertRaises(ValueError):
            HttpReferenceLookup("  ")


class TableReferenceLookupTests(unittest.TestCase):
    def test_csv_table(self):
        lookup = TableReferenceLookup.from_bytes(reference_csv([MATCHING_REFERENCE]), ".csv")
        records = lookup.lookup_many([IDENTIFIER, "A2V00000000"], concurrency=1)
        self.assertEqual(list(records), [IDENTIFIER])
        self.assertEqual(record_value(records[IDENTIFIER], "Gewicht"), "5,2 kg")
        self.assertEqual(records[IDENTIFIER]["Weitere Artikelnummer"], NOT_FOUND)

    def test_csv_with_bom_and_custom_identifier_column(self):
        data = "\ufeffMaterialnummer;Werkstoff\na2v99;Messing\n".encode("utf-8")
        lookup = TableReferenceLookup.from_bytes(data, ".csv", identifier_column="Materialnummer")
        self.assertEqual(record_value(lookup.records["A2V99"], "Werkstoff"), "Messing")

    def test_missing_identifier_column(self):
        with self.assertRaisesRegex(ValueError, "no identifier column"):
            TableReferenceLookup.from_bytes("Werkstoff;Gewicht\nStahl;1 kg\n".encode("utf-8"), ".csv")

    def test_unsupported_or_empty_table(self):
        with self.assertRaisesRegex(ValueError, "Unsupported reference table type"):
            TableReferenceLookup.from_bytes(b"x", ".pdf")
        with self.assertRaisesRegex(ValueError, "empty"):
            TableReferenceLookup.from_bytes(b"", ".csv")


if __name__ == "__main__":
    unittest.main()
