"""
Pytest configuration for executor tests.

Fixtures build small ROMs from JSON-style line dicts, so each test reads like
the program it runs.
"""

import sys
from pathlib import Path
from typing import Dict, List, Optional

import pytest

# Add the repository root to the path so absolute imports work
# (tests/ is inside the repository root, so parent is the root)
root_dir = Path(__file__).parent.parent
if str(root_dir) not in sys.path:
    sys.path.insert(0, str(root_dir))

from executor.batch_input import BatchInput  # noqa: E402
from executor.config import ExecConfig  # noqa: E402
from executor.context import Context  # noqa: E402
from executor.main_exec import execute  # noqa: E402
from executor.pols import MainPols  # noqa: E402
from tests.rom_builder import build_rom  # noqa: E402


@pytest.fixture
def make_ctx():
    """Factory for a Context over a fresh trace."""
    def factory(program: Optional[List[dict]] = None, input: Optional[BatchInput] = None,
                n: int = 8) -> Context:
        rom = build_rom(program or [{}])
        return Context(MainPols(n), input or BatchInput(), rom, n)
    return factory


@pytest.fixture
def run_rom():
    """Factory that executes a program and returns (pols, required)."""
    def factory(program: List[dict], labels: Optional[Dict[str, int]] = None, n: int = 16,
                config: Optional[ExecConfig] = None, input: Optional[BatchInput] = None, **kwargs):
        pols = MainPols(n)
        required = execute(pols, input or BatchInput(), build_rom(program, labels), config, **kwargs)
        return pols, required
    return factory
