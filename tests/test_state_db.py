"""Unit tests for the in-memory sparse Merkle tree."""

import pytest

from executor.errors import MissingInputError
from executor.state_db import MemStateDB, join_key, remove_key_bits, split_key

ZERO_ROOT = [0, 0, 0, 0]


def key(n: int):
    """Small distinct keys: bit patterns spread over the first element."""
    return [n, 0, 0, 0]


class TestKeyPaths:
    """Tests for key bit interleaving."""

    def test_split_interleaves(self) -> None:
        bits = split_key([1, 0, 1, 1])
        assert bits[:4] == [1, 0, 1, 1]
        assert len(bits) == 256

    @pytest.mark.parametrize("depth", [0, 1, 5, 12])
    def test_join_inverts_remove(self, depth: int) -> None:
        k = [0x1234, 0x5678, 0x9ABC, 0xDEF0]
        bits = split_key(k)
        assert join_key(bits[:depth], remove_key_bits(k, depth)) == k


class TestMemStateDB:
    """Tests for get/set against a fresh tree."""

    def test_empty_tree_reads_zero(self) -> None:
        db = MemStateDB()
        res = db.get(ZERO_ROOT, key(1))
        assert res.value == 0
        assert res.proof_hash_counter == 0

    def test_insert_then_get(self) -> None:
        db = MemStateDB()
        res = db.set(ZERO_ROOT, key(1), 42)
        assert res.mode == "insertNotFound"
        assert res.new_root != ZERO_ROOT
        assert db.get(res.new_root, key(1)).value == 42
        assert db.get(res.old_root, key(1)).value == 0

    def test_update(self) -> None:
        db = MemStateDB()
        r1 = db.set(ZERO_ROOT, key(1), 42).new_root
        res = db.set(r1, key(1), 43)
        assert res.mode == "update"
        assert res.old_value == 42
        assert db.get(res.new_root, key(1)).value == 43

    def test_insert_found_splits_leaf(self) -> None:
        """Keys sharing a path prefix push both leaves down."""
        db = MemStateDB()
        r1 = db.set(ZERO_ROOT, key(1), 10).new_root
        res = db.set(r1, key(17), 20)
        assert res.mode == "insertFound"
        assert not res.is_old0
        assert db.get(res.new_root, key(1)).value == 10
        assert db.get(res.new_root, key(17)).value == 20

    def test_order_independent_root(self) -> None:
        db = MemStateDB()
        a = db.set(db.set(ZERO_ROOT, key(1), 10).new_root, key(2), 20).new_root
        b = db.set(db.set(ZERO_ROOT, key(2), 20).new_root, key(1), 10).new_root
        assert a == b

    def test_delete_restores_root(self) -> None:
        db = MemStateDB()
        r1 = db.set(ZERO_ROOT, key(1), 10).new_root
        r2 = db.set(r1, key(17), 20).new_root
        res = db.set(r2, key(17), 0)
        assert res.mode == "deleteFound"
        assert res.new_root == r1

    def test_delete_last(self) -> None:
        db = MemStateDB()
        r1 = db.set(ZERO_ROOT, key(1), 10).new_root
        res = db.set(r1, key(1), 0)
        assert res.mode == "deleteLast"
        assert res.new_root == ZERO_ROOT

    def test_zero_writes(self) -> None:
        db = MemStateDB()
        assert db.set(ZERO_ROOT, key(1), 0).mode == "zeroToZero"
        r1 = db.set(ZERO_ROOT, key(1), 10).new_root
        assert db.set(r1, key(17), 0).mode == "deleteNotFound"

    def test_found_read_counts_leaf_hashes(self) -> None:
        db = MemStateDB()
        r1 = db.set(ZERO_ROOT, key(1), 10).new_root
        res = db.get(r1, key(1))
        assert res.proof_hash_counter == 2

    def test_missing_node(self) -> None:
        db = MemStateDB()
        with pytest.raises(MissingInputError):
            db.get([1, 2, 3, 4], key(1))

    def test_preloaded_nodes(self) -> None:
        """A tree exported as hex strings can be reloaded."""
        db = MemStateDB()
        root = db.set(ZERO_ROOT, key(1), 10).new_root
        exported = {
            "0x" + "".join(f"{v:016x}" for v in reversed(h)): [f"{x:x}" for x in node]
            for h, node in db.nodes.items()
        }
        assert MemStateDB(exported).get(root, key(1)).value == 10

    def test_programs(self) -> None:
        db = MemStateDB()
        db.set_program([1, 2, 3, 4], b"\x60\x00")
        assert db.get_program([1, 2, 3, 4]) == b"\x60\x00"
        with pytest.raises(MissingInputError):
            db.get_program([4, 3, 2, 1])
