"""Evidence records handed to the coprocessor trace builders.

Queues are append-only and live apart from the execution context; the step
loop returns them together once the run is finalized.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

from executor.state_db import GetResult, SetResult


@dataclass
class ArithRecord:
    x1: int
    y1: int
    x2: int
    y2: int
    x3: int
    y3: int
    sel_eq0: int = 0
    sel_eq1: int = 0
    sel_eq2: int = 0
    sel_eq3: int = 0


@dataclass
class BinaryRecord:
    a: int
    b: int
    c: int
    opcode: int


@dataclass
class MemRecord:
    is_write: bool
    address: int
    step: int
    value: List[int]  # 8 limbs


@dataclass
class MemAlignRecord:
    m0: int
    m1: int
    v: int
    w0: int
    w1: int
    offset: int
    wr256: int
    wr8: int


@dataclass
class StorageRecord:
    """One Merkle read (get_result set) or write (set_result set)."""
    is_set: bool
    get_result: Optional[GetResult] = None
    set_result: Optional[SetResult] = None


@dataclass
class PoseidonGRecord:
    """12 permutation inputs followed by the 4 output elements."""
    values: List[int]


@dataclass
class PaddingRecord:
    data: bytes
    reads: List[int]


@dataclass
class HashDigestRecord:
    kind: str  # "keccak" or "poseidon"
    address: int
    length: int
    digest: int
    blocks: int


@dataclass
class Required:
    """All evidence queues of one run."""
    arith: List[ArithRecord] = field(default_factory=list)
    binary: List[BinaryRecord] = field(default_factory=list)
    mem: List[MemRecord] = field(default_factory=list)
    mem_align: List[MemAlignRecord] = field(default_factory=list)
    storage: List[StorageRecord] = field(default_factory=list)
    poseidon_g: List[PoseidonGRecord] = field(default_factory=list)
    padding_kk: List[PaddingRecord] = field(default_factory=list)
    padding_pg: List[PaddingRecord] = field(default_factory=list)
    hash_digests: List[HashDigestRecord] = field(default_factory=list)
    byte4: Set[int] = field(default_factory=set)
    logs: Dict[int, Dict[str, List[str]]] = field(default_factory=dict)

    def queue(self, name: str) -> list:
        return getattr(self, name)
