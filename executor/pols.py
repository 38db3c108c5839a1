"""Main-machine trace table.

One numpy uint64 column per committed polynomial, N rows, values canonical
mod p. Register columns A, B, C, D, E, SR, FREE and CONST hold 8 limbs and
are stored as (8, N) arrays; sKeyI and sKey are (4, N).
"""

from typing import Dict, Iterator, Sequence

import numpy as np

from executor.rom import FLAG_KEYS, IN_SELECTORS
from primitives.field import FEA_SIZE, GOLDILOCKS_PRIME, H4_SIZE

FEA_COLUMNS = ("A", "B", "C", "D", "E", "SR", "FREE", "CONST")
H4_COLUMNS = ("sKeyI", "sKey")
REGISTER_COLUMNS = ("CTX", "SP", "PC", "RR", "MAXMEM", "GAS", "HASHPOS", "zkPC")
COUNTER_COLUMNS = ("cntArith", "cntBinary", "cntMemAlign", "cntKeccakF", "cntPoseidonG", "cntPaddingPG")
EXTRA_COLUMNS = ("inFREE", "binOpcode", "carry", "isNeg", "isMaxMem", "offset",
                 "incCode", "incStack", "incCounter")


class MainPols:
    """Column store for the main-machine trace."""

    def __init__(self, n: int) -> None:
        if n <= 0 or n & (n - 1):
            raise ValueError(f"Trace length must be a power of two, got {n}")
        self.n = n
        self._cols: Dict[str, np.ndarray] = {}
        for name in FEA_COLUMNS:
            self._cols[name] = np.zeros((FEA_SIZE, n), dtype=np.uint64)
        for name in H4_COLUMNS:
            self._cols[name] = np.zeros((H4_SIZE, n), dtype=np.uint64)
        for name in (REGISTER_COLUMNS + COUNTER_COLUMNS + EXTRA_COLUMNS
                     + IN_SELECTORS + tuple(FLAG_KEYS)):
            self._cols[name] = np.zeros(n, dtype=np.uint64)

    def __len__(self) -> int:
        return self.n

    def __contains__(self, name: str) -> bool:
        return name in self._cols

    def __iter__(self) -> Iterator[str]:
        return iter(self._cols)

    def __getitem__(self, name: str) -> np.ndarray:
        try:
            return self._cols[name]
        except KeyError:
            raise KeyError(f"Unknown trace column: {name}") from None

    def put(self, name: str, i: int, value: int) -> None:
        """Write one scalar cell, reducing into the field."""
        self[name][i] = int(value) % GOLDILOCKS_PRIME

    def put_limbs(self, name: str, i: int, limbs: Sequence) -> None:
        """Write a multi-limb column (fea or h4) at row i."""
        col = self[name]
        for k in range(col.shape[0]):
            col[k][i] = int(limbs[k]) % GOLDILOCKS_PRIME

    def get(self, name: str, i: int) -> int:
        return int(self[name][i])

    def get_limbs(self, name: str, i: int) -> list:
        col = self[name]
        return [int(col[k][i]) for k in range(col.shape[0])]
