"""Unit tests for the Poseidon and Keccak wrappers."""

import pytest

from primitives.field import GOLDILOCKS_PRIME, h4_to_scalar
from primitives.keccak import EMPTY_KECCAK, keccak256, keccak256_int, keccak_blocks
from primitives.poseidon import (
    BYTES_PER_BLOCK,
    CAPACITY,
    WIDTH,
    bytecode_blocks,
    hash_bytecode,
    pad_bytecode,
    permute,
    poseidon,
)


# poseidon([0] * 8, [0] * 4)
ALL_ZERO_DIGEST = [
    0x3c18a9786cb0b359,
    0xc4055e3364a246c3,
    0x7953db0ab48808f4,
    0xc71603f33a1144ca,
]


class TestPoseidon:
    """Tests for the width-12 Goldilocks permutation and sponge."""

    def test_permute_width(self) -> None:
        out = permute(list(range(WIDTH)))
        assert len(out) == WIDTH
        assert all(0 <= v < GOLDILOCKS_PRIME for v in out)

    def test_permute_rejects_wrong_width(self) -> None:
        with pytest.raises(ValueError):
            permute([0] * (WIDTH - 1))

    def test_deterministic(self) -> None:
        """Same inputs, same digest."""
        inputs = [1, 2, 3, 4, 5, 6, 7, 8]
        assert poseidon(inputs) == poseidon(inputs)
        assert len(poseidon(inputs)) == CAPACITY

    def test_capacity_changes_digest(self) -> None:
        inputs = [0] * 8
        assert poseidon(inputs) != poseidon(inputs, [1, 0, 0, 0])

    def test_input_sensitivity(self) -> None:
        assert poseidon([0] * 8) != poseidon([1] + [0] * 7)

    def test_known_answer_all_zero(self) -> None:
        assert poseidon([0] * 8, [0] * 4) == ALL_ZERO_DIGEST

    def test_known_answer_counting(self) -> None:
        assert poseidon(list(range(8)), list(range(8, 12))) == [
            0xd64e1e3efc5b8e9e,
            0x53666633020aaa47,
            0xd40285597c6a8825,
            0x613a4f81e81231d2,
        ]

    def test_known_answer_minus_one(self) -> None:
        neg = GOLDILOCKS_PRIME - 1
        assert poseidon([neg] * 8, [neg] * 4) == [
            0xbe0085cfc57a8357,
            0xd95af71847d05c09,
            0xcf55a13d33c1c953,
            0x95803a74f4530e82,
        ]


class TestBytecodeHash:
    """Tests for the 56-byte block linear hash."""

    @pytest.mark.parametrize("length,blocks", [(0, 1), (55, 1), (56, 2), (111, 2), (112, 3)])
    def test_block_count(self, length: int, blocks: int) -> None:
        assert bytecode_blocks(length) == blocks
        assert len(pad_bytecode(b"\x11" * length)) == blocks * BYTES_PER_BLOCK

    def test_padding_markers(self) -> None:
        """0x01 after the data, top bit set on the last byte."""
        padded = pad_bytecode(b"\xaa\xbb")
        assert padded[:3] == b"\xaa\xbb\x01"
        assert padded[-1] == 0x80

    def test_single_byte_block(self) -> None:
        """55 bytes: the 0x01 marker and the top bit share the last byte."""
        assert pad_bytecode(b"\x00" * 55)[-1] == 0x81

    def test_distinct_inputs(self) -> None:
        assert hash_bytecode(b"") != hash_bytecode(b"\x00")
        assert hash_bytecode(b"\x60\x00") == hash_bytecode(bytes([0x60, 0x00]))

    def test_zero_block_chains_into_padding(self) -> None:
        """A full zero block hashes to the all-zero digest, which seeds the padding block."""
        padding_block = [0x01, 0, 0, 0, 0, 0, 0, 0x80 << 48]
        expected = h4_to_scalar(poseidon(padding_block, ALL_ZERO_DIGEST))
        assert hash_bytecode(b"\x00" * BYTES_PER_BLOCK) == expected

    def test_empty_is_single_padding_block(self) -> None:
        assert hash_bytecode(b"") == h4_to_scalar(poseidon([0x01, 0, 0, 0, 0, 0, 0, 0x80 << 48]))


class TestKeccak:
    """Tests for the eth-hash Keccak-256 wrapper."""

    def test_empty_digest(self) -> None:
        assert keccak256_int(b"") == EMPTY_KECCAK
        assert keccak256(b"") == EMPTY_KECCAK.to_bytes(32, "big")

    @pytest.mark.parametrize("length,blocks", [(0, 1), (135, 1), (136, 2), (271, 2), (272, 3)])
    def test_block_count(self, length: int, blocks: int) -> None:
        assert keccak_blocks(length) == blocks
