"""Run configuration."""

import json
from dataclasses import dataclass, field
from typing import Dict, Optional

# Evidence queues that accept a capacity limit
LIMITED_QUEUES = (
    "arith",
    "binary",
    "mem",
    "mem_align",
    "storage",
    "poseidon_g",
    "padding_kk",
    "padding_pg",
)


@dataclass
class ExecConfig:
    """Options for one executor run.

    unsigned: substitute `from` at checkAndSaveFrom and skip the new-root asserts
    execute: skip the new-root asserts only
    debug: honour steps_n and stop at finalizeExecution
    limits: optional max length per evidence queue
    """
    unsigned: bool = False
    execute: bool = False
    debug: bool = False
    steps_n: Optional[int] = None
    limits: Dict[str, int] = field(default_factory=dict)

    def __post_init__(self) -> None:
        for name in self.limits:
            if name not in LIMITED_QUEUES:
                raise KeyError(f"Unknown evidence queue in limits: {name}")

    @property
    def skip_asserts(self) -> bool:
        return self.unsigned or self.execute

    @classmethod
    def from_dict(cls, j: dict) -> "ExecConfig":
        return cls(
            unsigned=bool(j.get("unsigned", False)),
            execute=bool(j.get("execute", False)),
            debug=bool(j.get("debug", False)),
            steps_n=j.get("stepsN"),
            limits={k: int(v) for k, v in j.get("limits", {}).items()},
        )

    @classmethod
    def from_json(cls, path: str) -> "ExecConfig":
        """Load configuration from a JSON file."""
        with open(path) as f:
            j = json.load(f)
        return cls.from_dict(j)
