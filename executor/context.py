"""Execution context: the mutable state the step loop threads through every step."""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple

from executor.batch_input import BatchInput
from executor.errors import ExecutionError, HashConsistencyError
from executor.pols import MainPols
from executor.rom import Rom
from executor.state_db import SetResult
from primitives.field import FF, fea_zero

# Addresses 1..9 are precompiled contracts and always count as warm
PRECOMPILED_MAX = 9


# --- Hash buffers ---


@dataclass
class HashBuffer:
    """Bytes written by position to one hashK/hashP address."""
    data: Dict[int, int] = field(default_factory=dict)  # position -> byte
    reads: Dict[int, int] = field(default_factory=dict)  # position -> size of the read starting there
    digest: Optional[int] = None

    def length(self) -> int:
        """One past the highest position written."""
        return max(self.data) + 1 if self.data else 0

    def to_bytes(self) -> bytes:
        n = self.length()
        missing = [p for p in range(n) if p not in self.data]
        if missing:
            raise HashConsistencyError(f"Hash buffer has unwritten positions: {missing[:8]}")
        return bytes(self.data[p] for p in range(n))

    @classmethod
    def from_bytes(cls, data: bytes, digest: Optional[int] = None) -> "HashBuffer":
        return cls(data=dict(enumerate(data)), digest=digest)


# --- Warm access ---


class WarmAccess:
    """Stack of checkpoints recording accessed addresses and storage slots."""

    def __init__(self) -> None:
        self.checkpoints: List[Dict[int, Set[int]]] = [{}]

    def _top(self) -> Dict[int, Set[int]]:
        if not self.checkpoints:
            raise ExecutionError("Warm access stack is empty")
        return self.checkpoints[-1]

    def checkpoint(self) -> None:
        self.checkpoints.append({})

    def commit(self) -> None:
        """Pop the newest checkpoint and merge it into the one below."""
        if not self.checkpoints:
            return
        storage = self.checkpoints.pop()
        if not self.checkpoints:
            return
        target = self.checkpoints[-1]
        for address, slots in storage.items():
            target.setdefault(address, set()).update(slots)

    def revert(self) -> None:
        if self.checkpoints:
            self.checkpoints.pop()

    def clear(self) -> None:
        self.checkpoints = [{}]

    def is_warmed_address(self, address: int) -> int:
        """0 if warm, 1 if cold. A cold address becomes warm."""
        if 0 < address <= PRECOMPILED_MAX:
            return 0
        for cp in reversed(self.checkpoints):
            if address in cp:
                return 0
        self._top().setdefault(address, set())
        return 1

    def is_warmed_storage(self, address: int, key: int) -> int:
        """0 if the slot is warm, 1 if cold. A cold slot becomes warm."""
        for cp in reversed(self.checkpoints):
            if key in cp.get(address, ()):
                return 0
        self._top().setdefault(address, set()).add(key)
        return 1


# --- Context ---


@dataclass
class StorageWrite:
    """Merkle write performed by the free-input resolver, reused by sWR on the same step."""
    step: int
    key_i: List[int]
    key: List[int]
    result: SetResult
    new_root: List[int]


SCALAR_REGISTERS: Tuple[str, ...] = ("CTX", "SP", "PC", "RR", "MAXMEM", "GAS", "HASHPOS", "zkPC")
FEA_REGISTERS: Tuple[str, ...] = ("A", "B", "C", "D", "E", "SR")
COUNTERS: Tuple[str, ...] = ("cntArith", "cntBinary", "cntMemAlign", "cntKeccakF", "cntPoseidonG", "cntPaddingPG")


class Context:
    """Registers, memory, hash buffers and batch globals of one run.

    Register values mirror trace row `i` of the current step; they are
    reloaded from the trace at the start of every step.
    """

    def __init__(self, pols: MainPols, input: BatchInput, rom: Rom, steps_n: int) -> None:
        self.pols = pols
        self.input = input
        self.rom = rom
        self.N = len(pols)
        self.steps_n = steps_n

        self.A: FF = fea_zero()
        self.B: FF = fea_zero()
        self.C: FF = fea_zero()
        self.D: FF = fea_zero()
        self.E: FF = fea_zero()
        self.SR: FF = fea_zero()
        self.CTX = 0
        self.SP = 0
        self.PC = 0
        self.RR = 0
        self.MAXMEM = 0
        self.GAS = 0
        self.HASHPOS = 0
        self.zkPC = 0
        self.counters: Dict[str, int] = {name: 0 for name in COUNTERS}

        self.mem: Dict[int, FF] = {}
        self.hash_k: Dict[int, HashBuffer] = {}
        self.hash_p: Dict[int, HashBuffer] = {}
        self.vars: Dict[str, object] = {}
        self.warm = WarmAccess()
        self.out_logs: Dict[int, Dict[str, List[str]]] = {}
        self.last_s_write: Optional[StorageWrite] = None

        self.step = 0
        self.file_name = ""
        self.line = 0

    def load_row(self, i: int) -> None:
        """Point the registers at trace row i."""
        for name in FEA_REGISTERS:
            setattr(self, name, FF(self.pols.get_limbs(name, i)))
        for name in SCALAR_REGISTERS:
            setattr(self, name, self.pols.get(name, i))
        for name in COUNTERS:
            self.counters[name] = self.pols.get(name, i)

    def register(self, name: str):
        """Value of a register by its ROM name (getReg)."""
        if name == "STEP":
            return self.step
        if name in _COUNTER_BY_REG:
            return self.counters[_COUNTER_BY_REG[name]]
        return getattr(self, name)


_COUNTER_BY_REG = {
    "CNT_ARITH": "cntArith",
    "CNT_BINARY": "cntBinary",
    "CNT_MEM_ALIGN": "cntMemAlign",
    "CNT_KECCAK_F": "cntKeccakF",
    "CNT_POSEIDON_G": "cntPoseidonG",
    "CNT_PADDING_PG": "cntPaddingPG",
}
