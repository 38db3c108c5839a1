#!/usr/bin/env python3
"""Run the main-machine executor over a ROM and a batch input.

Usage:
    python run_executor.py --rom rom.json --input input.json -n 16
    python run_executor.py --rom rom.json --input input.json --execute --output required.json
"""

import argparse
import dataclasses
import json
import logging
import sys
from pathlib import Path

from executor import BatchInput, ExecConfig, ExecutionError, MainPols, Rom, execute
from executor.evidence import Required


def required_to_json(required: Required) -> dict:
    """JSON-friendly view of the evidence queues."""
    def encode(value):
        if isinstance(value, bytes):
            return "0x" + value.hex()
        if isinstance(value, (list, tuple)):
            return [encode(v) for v in value]
        if isinstance(value, dict):
            return {str(k): encode(v) for k, v in value.items()}
        if dataclasses.is_dataclass(value):
            return {f.name: encode(getattr(value, f.name)) for f in dataclasses.fields(value)}
        return value

    out = {name: encode(required.queue(name)) for name in (
        "arith", "binary", "mem", "mem_align", "storage", "poseidon_g",
        "padding_kk", "padding_pg", "hash_digests")}
    out["byte4"] = sorted(required.byte4)
    out["logs"] = encode(required.logs)
    return out


def main():
    parser = argparse.ArgumentParser(
        description='Execute a zkEVM ROM over a batch input and fill the main trace'
    )
    parser.add_argument(
        '--rom',
        type=Path,
        required=True,
        help='Path to the compiled ROM JSON'
    )
    parser.add_argument(
        '--input',
        type=Path,
        required=True,
        help='Path to the batch input JSON'
    )
    parser.add_argument(
        '-n', '--trace-bits',
        type=int,
        default=16,
        help='log2 of the trace length (default: 16)'
    )
    parser.add_argument(
        '--config',
        type=Path,
        help='Optional run configuration JSON (overridden by the flags below)'
    )
    parser.add_argument('--unsigned', action='store_true', help='Run without a signed transaction sender')
    parser.add_argument('--execute', action='store_true', help='Skip the new state/exit root asserts')
    parser.add_argument('--debug', action='store_true', help='Honour --steps and stop at finalizeExecution')
    parser.add_argument('--steps', type=int, help='Number of steps to run in debug mode')
    parser.add_argument(
        '--output',
        type=Path,
        help='Write the evidence queues as JSON to this path'
    )
    parser.add_argument('-v', '--verbose', action='store_true', help='Log at INFO level')

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format='%(levelname)s %(name)s: %(message)s',
    )

    for path in (args.rom, args.input):
        if not path.exists():
            print(f"Error: File not found: {path}", file=sys.stderr)
            sys.exit(1)

    config = ExecConfig.from_json(str(args.config)) if args.config else ExecConfig()
    config.unsigned = config.unsigned or args.unsigned
    config.execute = config.execute or args.execute
    config.debug = config.debug or args.debug
    if args.steps is not None:
        config.steps_n = args.steps

    print(f"Loading ROM from {args.rom}...")
    rom = Rom.from_json(str(args.rom))
    print(f"Loading input from {args.input}...")
    batch = BatchInput.from_json(str(args.input))

    pols = MainPols(1 << args.trace_bits)
    try:
        required = execute(pols, batch, rom, config)
    except ExecutionError as e:
        print(f"Execution failed: {e}", file=sys.stderr)
        sys.exit(1)

    if args.output:
        args.output.parent.mkdir(parents=True, exist_ok=True)
        with open(args.output, 'w') as f:
            json.dump(required_to_json(required), f, indent=2)
        print(f"Written evidence to {args.output}")

    # Summary
    print("\nSummary:")
    print(f"  Trace rows: {len(pols)}")
    print(f"  Arith: {len(required.arith)}")
    print(f"  Binary: {len(required.binary)}")
    print(f"  Mem: {len(required.mem)}")
    print(f"  MemAlign: {len(required.mem_align)}")
    print(f"  Storage: {len(required.storage)}")
    print(f"  PoseidonG: {len(required.poseidon_g)}")
    print(f"  PaddingKK: {len(required.padding_kk)}")
    print(f"  PaddingPG: {len(required.padding_pg)}")
    print(f"  Logs: {len(required.logs)}")


if __name__ == '__main__':
    main()
