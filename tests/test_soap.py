"""Tests for SOAP envelopes, response parsing, waybill extraction and normalization."""

from datetime import date
from decimal import Decimal

import pytest

from debt_engine.exceptions import ExternalServiceError
from debt_engine.ledger import (
    LedgerDirection,
    choose_richer,
    completeness_score,
    extract_records,
    normalize_document,
    normalize_documents,
    normalize_tin,
)
from debt_engine.ledger.soap import (
    build_envelope,
    parse_response,
    read_status,
    soap_action,
    xml_escape,
)

from conftest import soap_envelope, status_xml, waybill_xml


class TestEnvelope:
    """Tests for request construction."""

    def test_envelope_contains_operation_and_params(self):
        """Test parameters are rendered in order inside the operation element."""
        envelope = build_envelope("get_waybills", {"su": "user", "create_date_s": "2025-05-01T00:00:00"})
        assert '<get_waybills xmlns="http://tempuri.org/">' in envelope
        assert "<su>user</su><create_date_s>2025-05-01T00:00:00</create_date_s>" in envelope

    def test_values_are_escaped(self):
        """Test markup and control characters cannot break the envelope."""
        assert xml_escape("a<b>&c") == "a&lt;b&gt;&amp;c"
        assert xml_escape("pa\x00ss\x1f") == "pass"
        assert xml_escape(None) == ""

    def test_soap_action_header(self):
        """Test the SOAPAction header is quoted."""
        assert soap_action("get_buyer_waybills") == '"http://tempuri.org/get_buyer_waybills"'


class TestParseResponse:
    """Tests for response parsing into the generic tree."""

    def test_result_tree(self):
        """Test namespaces are stripped and repeated elements become lists."""
        xml = soap_envelope(
            "get_waybills",
            "<WAYBILL_LIST>"
            + waybill_xml("1", "2025-05-02")
            + waybill_xml("2", "2025-05-03")
            + "</WAYBILL_LIST>",
        )
        tree = parse_response(xml, "get_waybills")
        waybills = tree["WAYBILL_LIST"]["WAYBILL"]
        assert isinstance(waybills, list)
        assert [w["ID"] for w in waybills] == ["1", "2"]

    def test_single_element_is_not_a_list(self):
        """Test a lone child stays a map."""
        xml = soap_envelope("get_waybills", "<WAYBILL_LIST>" + waybill_xml("1", "2025-05-02") + "</WAYBILL_LIST>")
        tree = parse_response(xml, "get_waybills")
        assert tree["WAYBILL_LIST"]["WAYBILL"]["ID"] == "1"

    def test_missing_result_node(self):
        """Test a response without the result node is empty."""
        xml = soap_envelope("other_operation", "<STATUS>0</STATUS>")
        assert parse_response(xml, "get_waybills") == {}

    def test_soap_fault_raises(self):
        """Test a SOAP fault becomes an ExternalServiceError."""
        xml = (
            '<soap:Envelope xmlns:soap="http://schemas.xmlsoap.org/soap/envelope/"><soap:Body>'
            "<soap:Fault><faultcode>soap:Server</faultcode>"
            "<faultstring>Server was unable to process request</faultstring>"
            "</soap:Fault></soap:Body></soap:Envelope>"
        )
        with pytest.raises(ExternalServiceError) as exc:
            parse_response(xml, "get_waybills")
        assert "unable to process" in str(exc.value)

    def test_malformed_xml_raises(self):
        """Test unparsable bodies are reported as service errors."""
        with pytest.raises(ExternalServiceError):
            parse_response("<html>gateway timeout", "get_waybills")

    def test_dtd_rejected(self):
        """Test documents declaring a DTD are refused."""
        xml = '<?xml version="1.0"?><!DOCTYPE x [<!ENTITY a "b">]><x>&a;</x>'
        with pytest.raises(ExternalServiceError):
            parse_response(xml, "get_waybills")


class TestReadStatus:
    """Tests for status code extraction."""

    def test_top_level_and_nested(self):
        """Test the status is found at STATUS or RESULT/STATUS."""
        assert read_status({"STATUS": "-1064"}) == -1064
        assert read_status({"RESULT": {"STATUS": "-101"}}) == -101

    def test_missing_or_non_numeric(self):
        """Test a missing or odd status counts as success."""
        assert read_status({}) == 0
        assert read_status({"STATUS": "ok"}) == 0
        assert read_status({"STATUS": {"nested": "1"}}) == 0


class TestExtraction:
    """Tests for the breadth-first waybill extraction."""

    def test_finds_nested_containers(self):
        """Test waybills are found under different containers."""
        tree = {
            "RESULT": {
                "WAYBILL_LIST": {"WAYBILL": [
                    {"ID": "1", "FULL_AMOUNT": "10"},
                    {"ID": "2", "FULL_AMOUNT": "20"},
                ]},
                "BUYER_WAYBILL": {"ID": "3", "STATUS": "1"},
            }
        }
        ids = [r["ID"] for r in extract_records(tree)]
        assert sorted(ids) == ["1", "2", "3"]

    def test_requires_id_and_waybill_field(self):
        """Test maps without an id or any waybill field are ignored."""
        tree = {"A": {"ID": "1"}, "B": {"FULL_AMOUNT": "5"}, "C": {"waybillId": "9", "create_date": "2025-05-02"}}
        records = extract_records(tree)
        assert len(records) == 1
        assert records[0]["waybillId"] == "9"

    def test_case_and_underscore_insensitive_keys(self):
        """Test camel case and lower case keys are recognized."""
        tree = {"items": [{"id": "7", "fullAmount": "12.5"}]}
        assert len(extract_records(tree)) == 1

    def test_richer_representation_wins(self):
        """Test a detailed duplicate replaces a shallow one regardless of order."""
        shallow = {"ID": "42", "STATUS": "1"}
        detailed = {
            "ID": "42", "STATUS": "1", "FULL_AMOUNT": "250.00",
            "CREATE_DATE": "2025-05-02T10:00:00", "BUYER_TIN": "405123456",
        }
        first = extract_records({"A": shallow, "B": {"WAYBILL": detailed}})
        second = extract_records({"A": detailed, "B": {"WAYBILL": shallow}})
        assert first == [detailed]
        assert second == [detailed]

    def test_completeness_score_weights(self):
        """Test the scoring weights."""
        assert completeness_score({}) == 0
        record = {
            "ID": "1", "FULL_AMOUNT": "1", "CREATE_DATE": "x",
            "BUYER_TIN": "1", "SELLER_TIN": "2", "STATUS": "1",
        }
        assert completeness_score(record) == 20 + 8 + 3 + 3 + 1 + 6 // 5

    def test_tie_goes_to_larger_then_first(self):
        """Test ties prefer the map with more fields, then the first one seen."""
        a = {"ID": "1", "STATUS": "1"}
        b = {"ID": "1", "STATUS": "1"}
        assert choose_richer(a, b) is a
        c = {"ID": "1", "STATUS": "1", "NOTE": ""}
        assert choose_richer(a, c) is c

    def test_node_limit(self):
        """Test extraction stops after the node limit."""
        tree = {"L": [{"ID": str(i), "STATUS": "1"} for i in range(10)]}
        assert len(extract_records(tree, max_nodes=4)) == 3


class TestNormalization:
    """Tests for raw record normalization."""

    def test_sale_uses_buyer_as_counterparty(self):
        """Test a sale maps the buyer to the counterparty."""
        record = {
            "ID": "1", "BUYER_TIN": "405-123 456", "BUYER_NAME": "Buyer LLC",
            "SELLER_TIN": "206322102", "SELLER_NAME": "Us",
            "FULL_AMOUNT": "1,250.50", "CREATE_DATE": "2025-05-02T10:00:00", "STATUS": "1",
        }
        doc = normalize_document(record, LedgerDirection.SALE)
        assert doc.counterparty_id == "405123456"
        assert doc.counterparty_name == "Buyer LLC"
        assert doc.gross_amount == Decimal("1250.50")
        assert doc.document_date == date(2025, 5, 2)
        assert doc.status_code == 1

    def test_purchase_uses_seller_as_counterparty(self):
        """Test a purchase maps the seller to the counterparty."""
        record = {"ID": "1", "BUYER_TIN": "206322102", "SELLER_TIN": "11.22.33", "SELLER_NAME": "Supplier"}
        doc = normalize_document(record, LedgerDirection.PURCHASE)
        assert doc.counterparty_id == "112233"
        assert doc.counterparty_name == "Supplier"

    def test_amount_priority_skips_zero(self):
        """Test the first non-zero amount in priority order is used."""
        record = {"ID": "1", "FULL_AMOUNT": "0", "TOTAL_AMOUNT": "", "NET_AMOUNT": "80", "AMOUNT": "99"}
        assert normalize_document(record, LedgerDirection.SALE).gross_amount == Decimal("80.00")

    def test_missing_amount_is_zero(self):
        """Test a waybill without any amount counts as zero."""
        doc = normalize_document({"ID": "1", "STATUS": "1"}, LedgerDirection.SALE)
        assert doc.gross_amount == Decimal("0.00")

    def test_cancelled_documents_dropped(self):
        """Test cancelled and deleted waybills are excluded."""
        records = [
            {"ID": "1", "STATUS": "-1", "FULL_AMOUNT": "5"},
            {"ID": "2", "STATUS": "-2", "FULL_AMOUNT": "5"},
            {"ID": "3", "STATUS": "1", "FULL_AMOUNT": "5"},
        ]
        docs = normalize_documents(records, LedgerDirection.SALE)
        assert [d.id for d in docs] == ["3"]

    def test_line_items(self):
        """Test goods lines are read from a wrapped container."""
        record = {
            "ID": "1",
            "GOODS_LIST": {"GOODS": [
                {"W_NAME": "Khachapuri", "QUANTITY_F": "10", "UNIT": "pcs", "PRICE": "5.5"},
                {"W_NAME": "Lobiani", "QUANTITY": "2,5", "UNIT_NAME": "kg"},
            ]},
        }
        doc = normalize_document(record, LedgerDirection.SALE)
        assert [item.name for item in doc.line_items] == ["Khachapuri", "Lobiani"]
        assert doc.line_items[0].quantity == Decimal("10.00")
        assert doc.line_items[0].unit_price == Decimal("5.50")
        assert doc.line_items[1].quantity == Decimal("2.50")
        assert doc.line_items[1].unit == "kg"

    def test_normalize_tin(self):
        """Test separators are stripped from tax ids."""
        assert normalize_tin(" 40_5.12-3 ") == "405123"
        assert normalize_tin(" ") is None
        assert normalize_tin(None) is None
