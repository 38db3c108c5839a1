"""Merkle store collaborator.

StateDB is the interface the executor talks to for storage reads, writes and
program bytes. MemStateDB is an in-process sparse Merkle tree over Poseidon:

    intermediate node = poseidon(left4 ++ right4, [0, 0, 0, 0])
    leaf              = poseidon(remainingKey4 ++ valueHash4, [1, 0, 0, 0])
    valueHash         = poseidon(fea(value), [0, 0, 0, 0])

Every hash is stored as node -> 12 elements (8 children/content + 4
capacity) so proofs can be replayed from the node table. The path of a key
interleaves the bits of its 4 elements: bit i of element j is path step
4*i + j.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from executor.errors import MissingInputError
from primitives.field import (
    H4_SIZE,
    fea2scalar,
    h4_to_string,
    node_is_zero,
    nodes_equal,
    scalar2fea,
    string_to_h4,
)
from primitives.poseidon import poseidon

ZERO_H4 = [0, 0, 0, 0]
LEAF_CAPACITY = [1, 0, 0, 0]
NODE_CAPACITY = [0, 0, 0, 0]


# --- Results ---


@dataclass
class GetResult:
    """Outcome of a Merkle read, with the proof needed to check it."""
    root: List[int]
    key: List[int]
    value: int
    siblings: List[List[int]] = field(default_factory=list)
    is_old0: bool = True
    ins_key: List[int] = field(default_factory=lambda: list(ZERO_H4))
    ins_value: int = 0
    proof_hash_counter: int = 0


@dataclass
class SetResult:
    """Outcome of a Merkle write, with the proof needed to check it."""
    old_root: List[int]
    new_root: List[int]
    key: List[int]
    siblings: List[List[int]] = field(default_factory=list)
    ins_key: List[int] = field(default_factory=lambda: list(ZERO_H4))
    ins_value: int = 0
    is_old0: bool = True
    old_value: int = 0
    new_value: int = 0
    mode: str = ""
    proof_hash_counter: int = 0


# --- Interface ---


class StateDB(ABC):
    """Storage and program store used by the executor."""

    @abstractmethod
    def get(self, root: Sequence[int], key: Sequence[int]) -> GetResult:
        """Read the value under `key` in the tree with root `root`."""
        pass

    @abstractmethod
    def set(self, old_root: Sequence[int], key: Sequence[int], value: int) -> SetResult:
        """Write `value` under `key`; value 0 deletes."""
        pass

    @abstractmethod
    def get_program(self, key: Sequence[int]) -> bytes:
        """Program bytes stored under a bytecode hash."""
        pass

    @abstractmethod
    def set_program(self, key: Sequence[int], data: bytes) -> None:
        pass


# --- Key paths ---


def split_key(key: Sequence[int]) -> List[int]:
    """Path bits of a key, root first."""
    aux = [int(k) for k in key]
    bits = []
    for _ in range(64):
        for j in range(H4_SIZE):
            bits.append(aux[j] & 1)
            aux[j] >>= 1
    return bits


def remove_key_bits(key: Sequence[int], n_bits: int) -> List[int]:
    """Remaining key stored in a leaf at depth `n_bits`."""
    full_levels = n_bits // 4
    aux = [int(k) >> full_levels for k in key]
    for j in range(n_bits % 4):
        aux[j] >>= 1
    return aux


def join_key(used_bits: Sequence[int], rkey: Sequence[int]) -> List[int]:
    """Rebuild a full key from the path taken and a leaf's remaining key."""
    counts = [0] * H4_SIZE
    for level in range(len(used_bits)):
        counts[level % 4] += 1
    key = [int(rkey[j]) << counts[j] for j in range(H4_SIZE)]
    for level, bit in enumerate(used_bits):
        key[level % 4] |= bit << (level // 4)
    return key


def _slot(bit: int) -> slice:
    return slice(bit * 4, bit * 4 + 4)


# --- In-memory sparse Merkle tree ---


class MemStateDB(StateDB):
    """Sparse Merkle tree and program store kept in dictionaries."""

    def __init__(self, nodes: Optional[Dict[str, List[str]]] = None,
                 hash_fn: Callable[[Sequence[int], Sequence[int]], List[int]] = poseidon) -> None:
        self.nodes: Dict[Tuple[int, ...], Tuple[int, ...]] = {}
        self.programs: Dict[Tuple[int, ...], bytes] = {}
        self._hash = hash_fn
        self._hash_count = 0
        for k, v in (nodes or {}).items():
            self.nodes[tuple(string_to_h4(k))] = tuple(int(x, 16) for x in v)

    # Node table

    def _node(self, h: Sequence[int]) -> Tuple[int, ...]:
        try:
            return self.nodes[tuple(int(x) for x in h)]
        except KeyError:
            raise MissingInputError(f"Merkle node not found: {h4_to_string(h)}") from None

    def _hash_save(self, content: List[int], capacity: List[int]) -> List[int]:
        h = self._hash(content, capacity)
        self.nodes[tuple(h)] = tuple(content + capacity)
        self._hash_count += 1
        return h

    def _leaf(self, rkey: List[int], value: int) -> List[int]:
        value_hash = self._hash_save([int(x) for x in scalar2fea(value)], list(NODE_CAPACITY))
        return self._hash_save(list(rkey) + value_hash, list(LEAF_CAPACITY))

    def _leaf_value(self, leaf: Tuple[int, ...]) -> int:
        return fea2scalar(self._node(leaf[4:8])[:8])

    @staticmethod
    def _is_leaf(node: Tuple[int, ...]) -> bool:
        return node[8] == 1

    def _walk(self, root: Sequence[int], keys: List[int]):
        """Descend from root along `keys` until a leaf or an empty slot.

        Returns (siblings, level, found) where siblings[l] holds the children
        of the intermediate node at depth l, level is the depth reached and
        found is (full key, value) of the leaf there, or None.
        """
        siblings: List[List[int]] = []
        r = [int(x) for x in root]
        level = 0
        found = None
        while not node_is_zero(r):
            node = self._node(r)
            if self._is_leaf(node):
                found = (join_key(keys[:level], node[0:4]), self._leaf_value(node))
                break
            siblings.append(list(node[:8]))
            r = list(node[_slot(keys[level])])
            level += 1
        return siblings, level, found

    def _climb(self, siblings: List[List[int]], keys: List[int], node: List[int], depth: int) -> List[int]:
        for level in range(depth - 1, -1, -1):
            children = list(siblings[level])
            children[_slot(keys[level])] = node
            node = self._hash_save(children, list(NODE_CAPACITY))
        return node

    # Reads and writes

    def get(self, root: Sequence[int], key: Sequence[int]) -> GetResult:
        key = [int(k) for k in key]
        siblings, _, found = self._walk(root, split_key(key))

        res = GetResult(root=[int(x) for x in root], key=key, value=0, siblings=siblings)
        if found is not None:
            found_key, found_value = found
            if nodes_equal(found_key, key):
                res.value = found_value
            else:
                res.ins_key = found_key
                res.ins_value = found_value
                res.is_old0 = False
        res.proof_hash_counter = len(siblings) + (2 if found is not None else 0)
        return res

    def set(self, old_root: Sequence[int], key: Sequence[int], value: int) -> SetResult:
        key = [int(k) for k in key]
        old_root = [int(x) for x in old_root]
        keys = split_key(key)
        siblings, level, found = self._walk(old_root, keys)
        self._hash_count = 0

        res = SetResult(old_root=old_root, new_root=old_root, key=key, siblings=siblings, new_value=value)

        if found is not None and nodes_equal(found[0], key):
            res.old_value = found[1]
            if value != 0:
                res.mode = "update"
                leaf = self._leaf(remove_key_bits(key, level), value)
                res.new_root = self._climb(siblings, keys, leaf, level)
            else:
                self._delete(res, siblings, keys, level)
        elif found is not None:
            res.ins_key, res.ins_value = found
            res.is_old0 = False
            if value != 0:
                res.mode = "insertFound"
                found_keys = split_key(res.ins_key)
                d = level
                while keys[d] == found_keys[d]:
                    d += 1
                children = [0] * 8
                children[_slot(keys[d])] = self._leaf(remove_key_bits(key, d + 1), value)
                children[_slot(found_keys[d])] = self._leaf(remove_key_bits(res.ins_key, d + 1), res.ins_value)
                node = self._hash_save(children, list(NODE_CAPACITY))
                for j in range(d - 1, level - 1, -1):
                    children = [0] * 8
                    children[_slot(keys[j])] = node
                    node = self._hash_save(children, list(NODE_CAPACITY))
                res.new_root = self._climb(siblings, keys, node, level)
            else:
                res.mode = "deleteNotFound"
        else:
            if value != 0:
                res.mode = "insertNotFound"
                leaf = self._leaf(remove_key_bits(key, level), value)
                res.new_root = self._climb(siblings, keys, leaf, level)
            else:
                res.mode = "zeroToZero"

        res.proof_hash_counter = self._hash_count
        return res

    def _delete(self, res: SetResult, siblings: List[List[int]], keys: List[int], level: int) -> None:
        """Remove the leaf at `level`, collapsing a lone sibling leaf upwards."""
        if level == 0:
            res.mode = "deleteLast"
            res.new_root = list(ZERO_H4)
            return

        sibling = siblings[level - 1][_slot(1 - keys[level - 1])]
        sibling_node = None if node_is_zero(sibling) else self._node(sibling)
        if sibling_node is not None and self._is_leaf(sibling_node):
            res.ins_key = join_key(keys[:level - 1] + [1 - keys[level - 1]], sibling_node[0:4])
            res.ins_value = self._leaf_value(sibling_node)
            res.is_old0 = False
            d = level - 1
            while d > 0 and node_is_zero(siblings[d - 1][_slot(1 - keys[d - 1])]):
                d -= 1
            leaf = self._leaf(remove_key_bits(res.ins_key, d), res.ins_value)
            res.new_root = self._climb(siblings, keys, leaf, d)
        else:
            res.new_root = self._climb(siblings, keys, list(ZERO_H4), level)
        res.mode = "deleteFound"

    # Programs

    def get_program(self, key: Sequence[int]) -> bytes:
        k = tuple(int(x) for x in key)
        if k not in self.programs:
            raise MissingInputError(f"Program not found: {h4_to_string(k)}")
        return self.programs[k]

    def set_program(self, key: Sequence[int], data: bytes) -> None:
        self.programs[tuple(int(x) for x in key)] = bytes(data)
