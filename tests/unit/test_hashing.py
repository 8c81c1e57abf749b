"""Deterministic hashing helpers."""

from decimal import Decimal
from uuid import UUID

from obligation_kernel.utils.hashing import canonicalize_json, hash_payload, lineage_hash


class TestLineageHash:
    def test_is_deterministic(self):
        assert lineage_hash(["root", "a", "c"]) == lineage_hash(("root", "a", "c"))
        assert len(lineage_hash(["root"])) == 64

    def test_distinguishes_routes(self):
        assert lineage_hash(["root", "a", "c"]) != lineage_hash(["root", "b", "c"])

    def test_separator_prevents_concatenation_collisions(self):
        assert lineage_hash(["ab", "c"]) != lineage_hash(["a", "bc"])


class TestCanonicalJson:
    def test_key_order_does_not_matter(self):
        assert hash_payload({"b": 1, "a": 2}) == hash_payload({"a": 2, "b": 1})

    def test_decimal_normalized(self):
        assert canonicalize_json({"x": Decimal("10.50")}) == canonicalize_json({"x": Decimal("10.5")})

    def test_uuid_serialized(self):
        uid = UUID(int=1)
        assert canonicalize_json([uid]) == f'["{uid}"]'
