"""Batch input loader.

Hex strings from the input JSON are parsed into ints and bytes once. The
batch hash and the global hash are derived with Keccak-256 when the input
does not carry them.
"""

import json
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from primitives.keccak import keccak256_int


def _hex_int(v) -> int:
    if isinstance(v, str):
        return int(v, 16) if v.startswith("0x") or v.startswith("0X") else int(v, 0)
    return int(v)


def _hex_bytes(v: str) -> bytes:
    if v.startswith("0x"):
        v = v[2:]
    return bytes.fromhex(v)


def calculate_batch_hash_data(batch_l2_data: bytes, global_exit_root: int, sequencer_addr: int) -> int:
    """keccak256(batchL2Data ++ globalExitRoot[32] ++ sequencerAddr[20])."""
    return keccak256_int(
        batch_l2_data
        + global_exit_root.to_bytes(32, "big")
        + sequencer_addr.to_bytes(20, "big")
    )


def calculate_global_hash(old_state_root: int, old_local_exit_root: int, new_state_root: int,
                          new_local_exit_root: int, batch_hash_data: int, num_batch: int,
                          timestamp: int, chain_id: int) -> int:
    """Public input hash binding both roots, the batch and its context."""
    return keccak256_int(
        old_state_root.to_bytes(32, "big")
        + old_local_exit_root.to_bytes(32, "big")
        + new_state_root.to_bytes(32, "big")
        + new_local_exit_root.to_bytes(32, "big")
        + batch_hash_data.to_bytes(32, "big")
        + num_batch.to_bytes(4, "big")
        + timestamp.to_bytes(8, "big")
        + chain_id.to_bytes(8, "big")
    )


@dataclass
class BatchInput:
    """Batch-global values, fixed for a whole run."""
    old_state_root: int = 0
    new_state_root: int = 0
    old_local_exit_root: int = 0
    new_local_exit_root: int = 0
    global_exit_root: int = 0
    sequencer_addr: int = 0
    chain_id: int = 0
    num_batch: int = 0
    timestamp: int = 0
    batch_l2_data: bytes = b""
    contracts_bytecode: Dict[int, bytes] = field(default_factory=dict)  # hash -> code
    from_addr: Optional[int] = None
    db: Dict[str, List[str]] = field(default_factory=dict)  # preloaded Merkle nodes
    batch_hash_data: Optional[int] = None
    global_hash: Optional[int] = None

    def __post_init__(self) -> None:
        if self.batch_hash_data is None:
            self.batch_hash_data = calculate_batch_hash_data(
                self.batch_l2_data, self.global_exit_root, self.sequencer_addr)
        if self.global_hash is None:
            self.global_hash = calculate_global_hash(
                self.old_state_root, self.old_local_exit_root, self.new_state_root,
                self.new_local_exit_root, self.batch_hash_data, self.num_batch,
                self.timestamp, self.chain_id)

    @classmethod
    def from_dict(cls, j: dict) -> "BatchInput":
        return cls(
            old_state_root=_hex_int(j["oldStateRoot"]),
            new_state_root=_hex_int(j["newStateRoot"]),
            old_local_exit_root=_hex_int(j.get("oldLocalExitRoot", 0)),
            new_local_exit_root=_hex_int(j.get("newLocalExitRoot", 0)),
            global_exit_root=_hex_int(j.get("globalExitRoot", 0)),
            sequencer_addr=_hex_int(j.get("sequencerAddr", 0)),
            chain_id=int(j.get("chainID", 0)),
            num_batch=int(j.get("numBatch", 0)),
            timestamp=int(j.get("timestamp", 0)),
            batch_l2_data=_hex_bytes(j.get("batchL2Data", "0x")),
            contracts_bytecode={
                _hex_int(h if h.startswith("0x") else "0x" + h): _hex_bytes(code)
                for h, code in j.get("contractsBytecode", {}).items()
            },
            from_addr=_hex_int(j["from"]) if j.get("from") is not None else None,
            db=dict(j.get("db", {})),
            batch_hash_data=_hex_int(j["batchHashData"]) if "batchHashData" in j else None,
            global_hash=_hex_int(j["globalHash"]) if "globalHash" in j else None,
        )

    @classmethod
    def from_json(cls, path: str) -> "BatchInput":
        """Load a batch input from its JSON file."""
        with open(path) as f:
            j = json.load(f)
        return cls.from_dict(j)
