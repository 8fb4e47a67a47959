import pytest

from services.ticket_validation.services.payload_extractor import (
    NO_MATCH,
    MalformedPayload,
    Parsed,
    Unusable,
    extract_reference,
    parse_json,
    parse_raw,
    parse_url,
)


@pytest.mark.parametrize("payload, reference, source", [
    ('{"tx_ref":"T1"}', "T1", "json"),
    ('{"reference": "  T1b "}', "T1b", "json"),
    ('{"txRef": "T1c", "event": "x"}', "T1c", "json"),
    ('{"tx_ref": 4711}', "4711", "json"),
    ("https://x/y?reference=T2", "T2", "url"),
    ("https://tickets.example.com/v?txRef=T2b&lang=es", "T2b", "url"),
    ("  T3  ", "T3", "raw"),
    ('"quoted"', '"quoted"', "raw"),
])
def test_extracts_reference(payload, reference, source):
    result = extract_reference(payload)

    assert result == Parsed(reference, source)


@pytest.mark.parametrize("payload", ["", "   ", "{}", '{"tx_ref": ""}', '{"tx_ref": "   "}', '{"other": "T9"}'])
def test_malformed_payloads(payload):
    result = extract_reference(payload)

    assert isinstance(result, MalformedPayload)
    assert result.raw_payload == payload


def test_none_is_malformed():
    assert isinstance(extract_reference(None), MalformedPayload)


def test_json_alias_order():
    result = extract_reference('{"txRef": "C", "reference": "B", "tx_ref": "A"}')

    assert result.reference == "A"


def test_json_skips_empty_alias():
    result = extract_reference('{"tx_ref": "", "reference": "B"}')

    assert result.reference == "B"


def test_json_boolean_alias_is_not_a_reference():
    assert isinstance(parse_json('{"tx_ref": true}'), Unusable)


def test_json_scalar_falls_through_to_raw():
    assert parse_json("12345") is NO_MATCH
    assert extract_reference("12345") == Parsed("12345", "raw")


def test_url_without_alias_is_looked_up_verbatim():
    url = "https://tickets.example.com/t/abc?lang=es"

    assert parse_url(url) is NO_MATCH
    assert extract_reference(f"  {url} ") == Parsed(url, "raw")


def test_relative_url_is_not_parsed_as_url():
    assert parse_url("/verify?tx_ref=T5") is NO_MATCH
    assert extract_reference("/verify?tx_ref=T5") == Parsed("/verify?tx_ref=T5", "raw")


def test_url_first_non_empty_alias_wins():
    assert parse_url("https://x/y?tx_ref=&reference=R2") == Parsed("R2", "url")


def test_parse_raw_empty_is_unusable():
    assert isinstance(parse_raw("  \n "), Unusable)
