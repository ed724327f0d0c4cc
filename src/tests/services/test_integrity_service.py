"""
Tests for snapshot integrity helpers.

Tests cover:
- Narrowing data to a selector and the pre-seal structure check
- Integrity block counts and rule manifests
- Rolling checksum, canonical form, sealing and verification
- Record count mismatch detection
- Identifier (UUID) validation
"""

import pytest

from src.models.enums import DataTypeSelector, EntityKind
from src.services.exceptions import InvalidDataStructure
from src.services.integrity_service import (
    IntegrityBlock,
    build_integrity,
    calculate_checksum,
    canonical_json,
    ensure_consistent_structure,
    find_count_mismatches,
    kinds_with_records,
    narrow_to_selector,
    seal_envelope,
    validate_identifiers,
    verify_checksum,
)
from src.utils.uuid_utils import new_id


def make_envelope(data):
    return {
        "version": "2.0",
        "dataType": "products",
        "metadata": {"recordCount": sum(len(v) for v in data.values())},
        "data": data,
        "integrity": {
            "checksum": "",
            "recordCounts": {key: len(records) for key, records in data.items()},
            "validationRules": [],
        },
    }


# ============================================================================
# Narrowing
# ============================================================================


class TestNarrowToSelector:
    def test_drops_disallowed_and_adds_missing(self):
        fetched = {"products": [{"id": "p"}], "customers": [{"id": "c"}]}
        narrowed = narrow_to_selector(fetched, DataTypeSelector.PRODUCTS)
        assert list(narrowed) == ["products", "categories", "suppliers", "bulkPricing"]
        assert narrowed["categories"] == []
        assert "customers" not in narrowed

    @pytest.mark.parametrize("selector", list(DataTypeSelector))
    def test_keys_equal_allowed_kinds(self, selector):
        everything = {kind.data_key: [] for kind in EntityKind}
        narrowed = narrow_to_selector(everything, selector)
        assert set(narrowed) == {kind.data_key for kind in selector.allowed_kinds}

    def test_does_not_share_lists_with_input(self):
        fetched = {"customers": [{"id": "c"}]}
        narrowed = narrow_to_selector(fetched, DataTypeSelector.CUSTOMERS)
        narrowed["customers"].append({"id": "d"})
        assert len(fetched["customers"]) == 1

    def test_ensure_consistent_structure_removes_extra_sections(self):
        data = {"sales": [], "saleItems": [], "customers": []}
        removed = ensure_consistent_structure(data, DataTypeSelector.SALES)
        assert removed == ["customers"]
        assert list(data) == ["sales", "saleItems"]


# ============================================================================
# Integrity block
# ============================================================================


class TestBuildIntegrity:
    def test_counts_every_allowed_section(self):
        data = {"sales": [{}, {}], "saleItems": [{}, {}, {}]}
        block = build_integrity(data, DataTypeSelector.SALES)
        assert block.record_counts == {"sales": 2, "saleItems": 3}
        assert block.validation_rules == DataTypeSelector.SALES.validation_rules
        assert block.checksum == ""

    def test_rejects_sections_outside_selector(self):
        with pytest.raises(InvalidDataStructure):
            build_integrity({"customers": [], "sales": []}, DataTypeSelector.CUSTOMERS)

    def test_rejects_non_list_section(self):
        with pytest.raises(InvalidDataStructure):
            build_integrity({"customers": {"id": "c"}}, DataTypeSelector.CUSTOMERS)

    def test_block_round_trips_through_dict(self):
        block = IntegrityBlock("abc", {"sales": 1}, ["required_fields"])
        assert IntegrityBlock.from_dict(block.to_dict()) == block

    def test_from_dict_tolerates_missing_parts(self):
        block = IntegrityBlock.from_dict({"recordCounts": "bad"})
        assert block.checksum == ""
        assert block.record_counts == {}


# ============================================================================
# Checksums
# ============================================================================


class TestChecksum:
    def test_known_values(self):
        assert calculate_checksum("") == "0"
        assert calculate_checksum("a") == "61"
        assert calculate_checksum("ab") == format(97 * 31 + 98, "x")

    def test_long_input_stays_within_32_bits(self):
        checksum = calculate_checksum("x" * 10_000)
        assert int(checksum, 16) <= 0x80000000

    def test_non_ascii_text(self):
        assert calculate_checksum("café") != calculate_checksum("cafe")

    def test_canonical_json_ignores_key_order_and_checksum(self):
        a = {"data": {"b": 1, "a": 2}, "integrity": {"checksum": "123"}}
        b = {"integrity": {"checksum": "456"}, "data": {"a": 2, "b": 1}}
        assert canonical_json(a) == canonical_json(b)

    def test_canonical_json_does_not_modify_envelope(self):
        envelope = {"integrity": {"checksum": "123"}}
        canonical_json(envelope)
        assert envelope["integrity"]["checksum"] == "123"

    def test_seal_then_verify(self):
        envelope = make_envelope({"products": [{"id": new_id(), "name": "Cola"}]})
        checksum = seal_envelope(envelope)
        assert envelope["integrity"]["checksum"] == checksum
        assert verify_checksum(envelope)

    def test_sealing_is_idempotent(self):
        envelope = make_envelope({"products": [{"name": "Cola"}]})
        first = seal_envelope(envelope)
        assert seal_envelope(envelope) == first

    def test_tampering_detected(self):
        envelope = make_envelope({"products": [{"name": "Cola", "price": 1.5}]})
        seal_envelope(envelope)
        envelope["data"]["products"][0]["price"] = 0.5
        assert not verify_checksum(envelope)

    def test_missing_checksum_does_not_verify(self):
        assert not verify_checksum(make_envelope({"products": []}))
        assert not verify_checksum({"data": {}})


class TestCountMismatches:
    def test_consistent_envelope(self):
        assert find_count_mismatches(make_envelope({"sales": [{}, {}]})) == []

    def test_truncated_section(self):
        envelope = make_envelope({"sales": [{}, {}]})
        envelope["data"]["sales"].pop()
        mismatches = find_count_mismatches(envelope)
        assert "sales: expected 2, found 1" in mismatches
        assert "metadata.recordCount: expected 2, found 1" in mismatches


# ============================================================================
# Identifiers
# ============================================================================


class TestValidateIdentifiers:
    def test_valid_ids_and_null_references(self):
        data = {"products": [{"id": new_id(), "category_id": None, "supplier_id": new_id()}]}
        assert validate_identifiers(data) == []

    def test_bad_id_and_foreign_key(self):
        data = {"products": [{"id": new_id()}, {"id": "abc", "category_id": "12"}]}
        violations = validate_identifiers(data)
        assert violations == [
            "products[1].id: 'abc' is not a valid UUID",
            "products[1].category_id: '12' is not a valid UUID",
        ]

    def test_nested_records_checked(self):
        data = {"sales": [{"id": new_id(), "items": [{"product_id": "bad"}]}]}
        assert validate_identifiers(data) == ["sales[0].items[0].product_id: 'bad' is not a valid UUID"]

    def test_list_and_dict_identifiers_flagged(self):
        data = {
            "saleItems": [{"id": new_id(), "product_id": ["not-a-uuid"]}],
            "sales": [{"id": [new_id()], "customer_id": {"id": new_id()}}],
        }
        violations = validate_identifiers(data)
        assert len(violations) == 3
        assert violations[0] == "saleItems[0].product_id: ['not-a-uuid'] is not a valid UUID"
        assert violations[1].startswith("sales[0].id: [")
        assert violations[2].startswith("sales[0].customer_id: {")

    def test_non_identifier_fields_ignored(self):
        assert validate_identifiers({"products": [{"name": "abc", "valid": "x"}]}) == []


def test_kinds_with_records():
    data = {"sales": [{}], "saleItems": [], "unknown": [{}], "customers": [{}]}
    assert kinds_with_records(data) == [EntityKind.SALE, EntityKind.CUSTOMER]
