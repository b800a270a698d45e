"""Tests for shared helpers: category/designation normalisation, legacy
reference reconciliation, field encryption, exception payloads, pagination.
"""

from __future__ import annotations

import uuid
from datetime import date

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.common.audit import field_diff, jsonable
from backend.common.constants import RecordStatus
from backend.common.crypto import FieldCipher, derive_key, looks_encrypted
from backend.common.exceptions import (
    ConflictError,
    InsufficientEligibilityException,
    InvalidTransitionException,
    ValidationException,
)
from backend.common.pagination import PaginationParams, paginate
from backend.common.references import (
    RefKind,
    ReferenceIndex,
    parse_ref,
    primary_legacy_id,
    ref_key,
    refs_equal,
)
from backend.core.models import Company
from backend.eligibility.normalizer import (
    is_known_category,
    legacy_category,
    normalize_category_name,
    normalize_designation,
)
from tests.conftest import _seed_company

OID = "65a1b2c3d4e5f60718293a4b"


# ═════════════════════════════════════════════════════════════════════
# Normalisation
# ═════════════════════════════════════════════════════════════════════


class TestNormalizeCategory:

    @pytest.mark.parametrize("raw", ["Trouser", "TROUSERS", " trouser ", "trousers"])
    def test_trouser_synonyms_map_to_pant(self, raw):
        assert normalize_category_name(raw) == "pant"

    def test_blazer_maps_to_jacket(self):
        assert normalize_category_name("Blazer") == "jacket"

    def test_canonical_names_lowercased(self):
        assert normalize_category_name("Shirt") == "shirt"
        assert normalize_category_name("SHOE") == "shoe"

    def test_unknown_name_passes_through(self):
        assert normalize_category_name("  Belt ") == "belt"
        assert not is_known_category("belt")

    def test_empty_values(self):
        assert normalize_category_name(None) == ""
        assert normalize_category_name("") == ""

    def test_legacy_category_folds_unknown_to_shirt(self):
        assert legacy_category("Trousers") == "pant"
        assert legacy_category("accessory") == "shirt"


class TestNormalizeDesignation:

    def test_case_and_whitespace_insensitive(self):
        assert normalize_designation("  Senior   PILOT ") == "senior pilot"
        assert normalize_designation("senior pilot") == normalize_designation("Senior Pilot")

    def test_empty(self):
        assert normalize_designation(None) == ""
        assert normalize_designation("   ") == ""


# ═════════════════════════════════════════════════════════════════════
# Legacy references
# ═════════════════════════════════════════════════════════════════════


class TestParseRef:

    def test_extended_json_object_id(self):
        ref = parse_ref({"$oid": OID.upper()})
        assert ref.kind == RefKind.object_id
        assert ref.key == f"oid:{OID}"
        assert ref.is_object_id

    def test_hex_string_matches_object_id(self):
        ref = parse_ref(OID)
        assert ref.kind == RefKind.hex_string
        assert refs_equal(OID, {"$oid": OID})

    def test_object_id_repr(self):
        assert ref_key(f"ObjectId('{OID}')") == f"oid:{OID}"

    def test_numeric_int_and_string_match(self):
        assert parse_ref(300041).kind == RefKind.numeric
        assert refs_equal(300041, " 300041 ")

    def test_business_id(self):
        ref = parse_ref("COMP-INDIGO")
        assert ref.kind == RefKind.business
        assert ref.key == "COMP-INDIGO"

    def test_populated_document_prefers_business_id(self):
        assert ref_key({"_id": {"$oid": OID}, "id": "COMP-INDIGO"}) == "COMP-INDIGO"
        assert ref_key({"_id": {"$oid": OID}}) == f"oid:{OID}"

    def test_empty_never_equal(self):
        assert parse_ref(None).kind == RefKind.empty
        assert parse_ref("  ").kind == RefKind.empty
        assert not refs_equal(None, None)


class TestReferenceIndex:

    def test_resolves_every_registered_form(self):
        index = ReferenceIndex("companies")
        new_id = uuid.uuid4()
        index.register({"_id": {"$oid": OID}, "id": "COMP-INDIGO"}, new_id)

        assert index.resolve("COMP-INDIGO") == new_id
        assert index.resolve(OID) == new_id
        assert index.resolve({"$oid": OID}) == new_id
        assert len(index) == 1
        assert "COMP-INDIGO" in index

    def test_unresolved_recorded(self):
        index = ReferenceIndex("employees")
        assert index.resolve("300041") is None
        assert index.resolve(None) is None
        assert index.unresolved == ["300041"]

    def test_primary_legacy_id(self):
        assert primary_legacy_id({"_id": {"$oid": OID}, "id": "300041"}) == "300041"
        assert primary_legacy_id({"_id": {"$oid": OID}}) == OID
        assert primary_legacy_id({}) is None


# ═════════════════════════════════════════════════════════════════════
# Field encryption
# ═════════════════════════════════════════════════════════════════════


class TestFieldCipher:

    def test_derive_key_length(self):
        assert len(derive_key("short")) == 32
        assert derive_key("k" * 32) == b"k" * 32

    def test_round_trip(self):
        cipher = FieldCipher("unit-test-secret")
        token = cipher.encrypt("Senior Pilot")
        assert token != "Senior Pilot"
        assert looks_encrypted(token)
        assert cipher.decrypt(token) == "Senior Pilot"

    def test_encrypt_is_idempotent_on_ciphertext(self):
        cipher = FieldCipher("unit-test-secret")
        token = cipher.encrypt("Pilot")
        assert cipher.encrypt(token) == token

    def test_plaintext_passes_through(self):
        cipher = FieldCipher("unit-test-secret")
        assert cipher.decrypt("Pilot") == "Pilot"
        assert cipher.decrypt(None) is None
        assert cipher.decrypt("") == ""

    def test_wrong_key_returns_raw_value(self):
        token = FieldCipher("key-one").encrypt("Cabin Crew")
        assert FieldCipher("key-two").decrypt(token) == token

    @pytest.mark.parametrize(
        "value",
        ["abc:def", "not encrypted", "0" * 32 + ":" + "1" * 31, "a:b:c"],
    )
    def test_looks_encrypted_rejects_malformed(self, value):
        assert not looks_encrypted(value)


# ═════════════════════════════════════════════════════════════════════
# Exceptions / pagination
# ═════════════════════════════════════════════════════════════════════


class TestExceptions:

    def test_conflict_payload(self):
        exc = ConflictError("target", "category:jacket")
        assert exc.status_code == 409
        assert exc.errors == {"target": ["'category:jacket' is already in use."]}

    def test_invalid_transition_is_422(self):
        exc = InvalidTransitionException("order", "Delivered", "cancel")
        assert exc.status_code == 422
        assert exc.current == "Delivered"
        assert "Cannot cancel a order in status 'Delivered'." in exc.errors["status"]

    def test_shortfall_messages_sorted_by_category(self):
        exc = InsufficientEligibilityException({"shirt": (4, 3), "jacket": (1, 0)})
        assert isinstance(exc, ValidationException)
        assert exc.errors["items"] == [
            "Requested 1 jacket but only 0 remaining.",
            "Requested 4 shirt but only 3 remaining.",
        ]
        assert exc.problem("/api/v1/orders")["type"].endswith("/insufficient-eligibility")


class TestPagination:

    async def test_paginate_with_sort(self, db: AsyncSession):
        for name in ("Charlie Air", "Alpha Air", "Bravo Air"):
            await _seed_company(db, name=name)

        params = PaginationParams(page=1, page_size=2, sort="name")
        rows, meta = await paginate(
            db, select(Company), params, sortable={"name": Company.name},
        )

        assert [c.name for c in rows] == ["Alpha Air", "Bravo Air"]
        assert meta.total == 3
        assert meta.total_pages == 2
        assert meta.has_next is True
        assert meta.has_prev is False

    async def test_unknown_sort_field_ignored(self, db: AsyncSession):
        await _seed_company(db)
        params = PaginationParams(page=1, page_size=10, sort="-nope")
        rows, meta = await paginate(
            db, select(Company), params, sortable={"name": Company.name},
        )
        assert meta.total == 1
        assert len(rows) == 1


class TestAuditHelpers:

    def test_jsonable_coerces_nested_values(self):
        rid = uuid.uuid4()
        payload = jsonable({
            "status": RecordStatus.inactive,
            "ids": (rid,),
            "on": date(2026, 1, 1),
        })
        assert payload == {"status": "inactive", "ids": [str(rid)], "on": "2026-01-01"}

    def test_field_diff_keeps_only_changed_fields(self):
        class Row:
            quantity = 2
            status = RecordStatus.active

        old, new = field_diff(Row(), {"quantity": 2, "status": RecordStatus.inactive})
        assert old == {"status": "active"}
        assert new == {"status": "inactive"}
