"""End-to-end tests of the step loop over small hand-written ROMs."""

import pytest

from executor.batch_input import BatchInput
from executor.config import ExecConfig
from executor.errors import (
    AddressRangeError,
    AssertMismatchError,
    FinalStateError,
    FreeInputError,
    HashConsistencyError,
    MissingInputError,
    ResourceExhaustedError,
)
from executor.evidence import HashDigestRecord
from executor.state_db import MemStateDB
from executor.tracer import ListTracer
from primitives import ecc
from primitives.field import fea2scalar, h4_to_scalar, scalar2fea, sr4to8, sr8to4
from primitives.keccak import EMPTY_KECCAK, keccak256_int
from primitives.poseidon import hash_bytecode, poseidon
from tests.rom_builder import FREE, call, num

# Computes A + B, round-trips it through memory, clears the registers and
# idles until the trace wraps around.
CLOSED_LOOP = [
    {"CONST": 3, "setA": 1, "setB": 1},
    {"inFREE": 1, "freeInTag": FREE, "bin": 1, "binOpcode": 0, "setC": 1},
    {"inC": 1, "mOp": 1, "mWR": 1, "offset": 5},
    {"inFREE": 1, "freeInTag": FREE, "mOp": 1, "offset": 5, "setA": 1},
    {"inC": 1, "assert": 1},
    {"setA": 1, "setB": 1, "setC": 1, "setD": 1, "setE": 1},
    {"inFREE": 1, "freeInTag": call("beforeLast"), "JMPN": 1, "offset": 6},
    {"JMP": 1, "offset": 0},
]

DEBUG = ExecConfig(debug=True, steps_n=16)


def limbs(value: int):
    return [int(v) for v in scalar2fea(value)]


def storage_key(a0: int):
    """Key of slot (A0 = a0, everything else zero)."""
    return poseidon([a0, 0, 0, 0, 0, 0, 0, 0], poseidon([0] * 8))


class TestClosedLoop:
    """Tests for a full run that wraps back to a clean row 0."""

    def test_runs_to_completion(self, run_rom) -> None:
        pols, required = run_rom(CLOSED_LOOP)
        assert pols.get_limbs("C", 2)[0] == 6
        assert pols.get("cntBinary", 2) == 1
        assert pols.get("zkPC", 0) == 0
        assert all(v == 0 for v in pols.get_limbs("A", 0))

    def test_evidence(self, run_rom) -> None:
        _, required = run_rom(CLOSED_LOOP)
        assert [(r.a, r.b, r.c, r.opcode) for r in required.binary] == [(3, 3, 6, 0)]
        assert [(r.is_write, r.address, r.step) for r in required.mem] == [(True, 5, 2), (False, 5, 3)]
        assert required.mem[1].value == limbs(6)
        assert {0, 0xFFFFFFFF} <= required.byte4

    def test_jmpn_columns(self, run_rom) -> None:
        pols, _ = run_rom(CLOSED_LOOP)
        assert pols.get("JMPN", 6) == 1
        assert pols.get("isNeg", 6) == 1
        assert pols.get("isNeg", 14) == 0
        assert pols.get("zkPC", 15) == 7

    def test_trace_length_must_be_power_of_two(self, run_rom) -> None:
        with pytest.raises(ValueError):
            run_rom(CLOSED_LOOP, n=12)

    def test_dirty_final_state(self, run_rom) -> None:
        with pytest.raises(FinalStateError):
            run_rom([{"CONST": 1, "setA": 1}, {"JMP": 1, "offset": 1}])

    def test_debug_fast_exit_skips_final_check(self, run_rom) -> None:
        pols, _ = run_rom([{"CONST": 1, "setA": 1}, {}], labels={"finalizeExecution": 1}, config=DEBUG)
        assert pols.get_limbs("A", 1)[0] == 1

    def test_limits(self, run_rom) -> None:
        with pytest.raises(ResourceExhaustedError):
            run_rom(CLOSED_LOOP, config=ExecConfig(limits={"binary": 0}))

    def test_tracer_receives_events(self, run_rom) -> None:
        tracer = ListTracer()
        program = [{"cmdBefore": [call("eventLog", num(1))]}, {}]
        run_rom(program, labels={"finalizeExecution": 1}, config=DEBUG, tracer=tracer)
        assert tracer.events == [(0, "eventLog")]


class TestFailures:
    """Tests for checks that abort the run, with their location."""

    def test_assert_located(self, run_rom) -> None:
        with pytest.raises(AssertMismatchError) as exc:
            run_rom([{"CONST": 1, "assert": 1}])
        assert exc.value.step == 0
        assert exc.value.zkpc == 0
        assert exc.value.file_name == "test.zkasm"
        assert exc.value.line == 1

    def test_memory_read_of_unset_address(self, run_rom) -> None:
        with pytest.raises(AssertMismatchError):
            run_rom([{"CONST": 1, "mOp": 1, "offset": 2}])

    @pytest.mark.parametrize("line", [
        {"mOp": 1, "offset": 0x10000},
        {"mOp": 1, "ind": 1, "offset": -1},
    ])
    def test_address_range(self, run_rom, line: dict) -> None:
        with pytest.raises(AddressRangeError):
            run_rom([line])

    def test_indirect_rr_past_last_address(self, run_rom) -> None:
        """RR = 0xFFFF plus offset 1 lands on 0x10000."""
        with pytest.raises(AddressRangeError) as exc:
            run_rom([{"CONST": 0xFFFF, "setRR": 1}, {"mOp": 1, "indRR": 1, "offset": 1}])
        assert exc.value.step == 1
        assert exc.value.line == 2

    def test_indirect_rr_last_address(self, run_rom) -> None:
        program = [{"CONST": 0xFFFE, "setRR": 1}, {"mOp": 1, "indRR": 1, "offset": 1}, {}]
        _, required = run_rom(program, labels={"finalizeExecution": 2}, config=DEBUG)
        assert required.mem[0].address == 0xFFFF

    @pytest.mark.parametrize("line", [
        {"inFREE": 1, "freeInTag": FREE, "setA": 1},
        {"inFREE": 1, "freeInTag": FREE, "mOp": 1, "bin": 1, "setA": 1},
        {"inFREE": 1, "setA": 1},
    ])
    def test_free_input_sources(self, run_rom, line: dict) -> None:
        """No source, two sources and no tag are all fatal."""
        with pytest.raises(FreeInputError):
            run_rom([line])

    def test_unsigned_requires_from(self, run_rom) -> None:
        with pytest.raises(MissingInputError):
            run_rom([{}], config=ExecConfig(unsigned=True))


class TestAddressing:
    """Tests for segment bases, MAXMEM tracking, JMPC and the rotated C source."""

    SEGMENTS = [
        {"CONST": 1, "setCTX": 1},
        {"CONST": 9, "useCTX": 1, "isMem": 1, "mOp": 1, "mWR": 1, "offset": 2},
        {"isMem": 1, "mOp": 1, "offset": 1},
        {"CONST": 5, "setSP": 1},
        {"CONST": 9, "isStack": 1, "mOp": 1, "mWR": 1, "offset": 1},
        {"isCode": 1, "mOp": 1, "offset": 4},
        {},
    ]

    def test_segment_bases(self, run_rom) -> None:
        _, required = run_rom(self.SEGMENTS, labels={"finalizeExecution": 6}, config=DEBUG)
        assert [r.address for r in required.mem] == [0x70002, 0x30001, 0x20006, 0x10004]
        assert [r.is_write for r in required.mem] == [True, False, True, False]

    def test_max_mem_raised_by_mem_access(self, run_rom) -> None:
        pols, _ = run_rom(self.SEGMENTS, labels={"finalizeExecution": 6}, config=DEBUG)
        assert pols.get("isMaxMem", 1) == 1
        assert pols.get("MAXMEM", 2) == 2
        assert pols.get("isMaxMem", 2) == 0
        assert pols.get("MAXMEM", 3) == 2
        assert pols.get("isMaxMem", 4) == 0

    def test_jmpc_taken_on_carry(self, run_rom) -> None:
        program = [
            {"CONST": 1, "setA": 1},
            {"CONST": 2, "setB": 1},
            {"inFREE": 1, "freeInTag": FREE, "bin": 1, "binOpcode": 2, "JMPC": 1, "offset": 4},
            {"CONST": 7, "setE": 1},
            {},
        ]
        pols, _ = run_rom(program, labels={"finalizeExecution": 4}, config=DEBUG)
        assert pols.get("carry", 2) == 1
        assert pols.get("JMPC", 2) == 1
        assert pols.get("zkPC", 3) == 4
        assert pols.get_limbs("E", 3) == limbs(0)

    def test_jmpc_falls_through_without_carry(self, run_rom) -> None:
        program = [
            {"CONST": 2, "setA": 1},
            {"CONST": 1, "setB": 1},
            {"inFREE": 1, "freeInTag": FREE, "bin": 1, "binOpcode": 2, "JMPC": 1, "offset": 4},
            {"CONST": 7, "setE": 1},
            {},
        ]
        pols, _ = run_rom(program, labels={"finalizeExecution": 4}, config=DEBUG)
        assert pols.get("carry", 2) == 0
        assert pols.get("zkPC", 3) == 3
        assert pols.get_limbs("E", 4) == limbs(7)

    def test_rotated_c(self, run_rom) -> None:
        c = sum((k + 1) << (32 * k) for k in range(8))
        program = [{"CONSTL": str(c), "setC": 1}, {"inROTL_C": 1, "setA": 1}, {}]
        pols, _ = run_rom(program, labels={"finalizeExecution": 2}, config=DEBUG)
        assert pols.get_limbs("C", 1) == [1, 2, 3, 4, 5, 6, 7, 8]
        assert pols.get_limbs("A", 2) == [8, 1, 2, 3, 4, 5, 6, 7]


class TestCoprocessors:
    """Tests for arith, binary and mem-align checks."""

    def test_arith_eq0(self, run_rom) -> None:
        program = [
            {"CONST": 3, "setA": 1},
            {"CONST": 4, "setB": 1},
            {"CONST": 5, "setC": 1},
            {"CONST": 17, "arith": 1, "arithEq0": 1},
            {},
        ]
        _, required = run_rom(program, labels={"finalizeExecution": 4}, config=DEBUG)
        assert len(required.arith) == 1
        assert required.arith[0].sel_eq0 == 1

    def test_arith_eq0_mismatch(self, run_rom) -> None:
        with pytest.raises(AssertMismatchError):
            run_rom([{"CONST": 3, "setA": 1}, {"CONST": 4, "arith": 1, "arithEq0": 1}])

    def test_arith_point_double(self, run_rom) -> None:
        gx = 0x79BE667EF9DCBBAC55A06295CE870B07029BFCDB2DCE28D959F2815B16F81798
        gy = 0x483ADA7726A3C4655DA4FBFC0E1108A8FD17B448A68554199C47D08FFB10D4B8
        x3, y3 = ecc.double_point(gx, gy)
        program = [
            {"CONSTL": str(gx), "setA": 1},
            {"CONSTL": str(gy), "setB": 1},
            {"CONSTL": str(x3), "setE": 1},
            {"CONSTL": str(y3), "arith": 1, "arithEq2": 1, "arithEq3": 1},
            {},
        ]
        _, required = run_rom(program, labels={"finalizeExecution": 4}, config=DEBUG)
        record = required.arith[0]
        assert (record.x3, record.y3, record.sel_eq2, record.sel_eq3) == (x3, y3, 1, 1)

    def test_arith_point_add(self, run_rom) -> None:
        """G + 2G lands on the well-known 3G."""
        gx = 0x79BE667EF9DCBBAC55A06295CE870B07029BFCDB2DCE28D959F2815B16F81798
        gy = 0x483ADA7726A3C4655DA4FBFC0E1108A8FD17B448A68554199C47D08FFB10D4B8
        x2, y2 = ecc.double_point(gx, gy)
        x3 = 0xF9308A019258C31049344F85F89D5229B531C845836F99B08601F113BCE036F9
        y3 = 0x388F7B0F632DE8140FE337E62A37F3566500A99934C2231B6CB9FD7584B8E672
        program = [
            {"CONSTL": str(gx), "setA": 1},
            {"CONSTL": str(gy), "setB": 1},
            {"CONSTL": str(x2), "setC": 1},
            {"CONSTL": str(y2), "setD": 1},
            {"CONSTL": str(x3), "setE": 1},
            {"CONSTL": str(y3), "arith": 1, "arithEq1": 1, "arithEq3": 1},
            {},
        ]
        _, required = run_rom(program, labels={"finalizeExecution": 6}, config=DEBUG)
        record = required.arith[0]
        assert (record.x2, record.y2, record.x3, record.y3) == (x2, y2, x3, y3)
        assert (record.sel_eq1, record.sel_eq2, record.sel_eq3) == (1, 0, 1)

    def test_arith_point_add_mismatch(self, run_rom) -> None:
        gx = 0x79BE667EF9DCBBAC55A06295CE870B07029BFCDB2DCE28D959F2815B16F81798
        gy = 0x483ADA7726A3C4655DA4FBFC0E1108A8FD17B448A68554199C47D08FFB10D4B8
        x2, y2 = ecc.double_point(gx, gy)
        program = [
            {"CONSTL": str(gx), "setA": 1},
            {"CONSTL": str(gy), "setB": 1},
            {"CONSTL": str(x2), "setC": 1},
            {"CONSTL": str(y2), "setD": 1},
            {"CONST": 1, "arith": 1, "arithEq1": 1, "arithEq3": 1},
        ]
        with pytest.raises(AssertMismatchError):
            run_rom(program)

    def test_binary_mismatch(self, run_rom) -> None:
        with pytest.raises(AssertMismatchError):
            run_rom([{"CONST": 1, "bin": 1, "binOpcode": 0}])

    def test_mem_align_read(self, run_rom) -> None:
        m0 = int.from_bytes(bytes(range(32)), "big")
        m1 = int.from_bytes(bytes(range(32, 64)), "big")
        program = [
            {"CONSTL": str(m0), "setA": 1},
            {"CONSTL": str(m1), "setB": 1},
            {"CONST": 5, "setC": 1},
            {"inFREE": 1, "freeInTag": FREE, "memAlign": 1, "setD": 1},
            {},
        ]
        pols, required = run_rom(program, labels={"finalizeExecution": 4}, config=DEBUG)
        assert fea2scalar(pols.get_limbs("D", 4)) == int.from_bytes(bytes(range(5, 37)), "big")
        assert required.mem_align[0].offset == 5

    def test_mem_align_write(self, run_rom) -> None:
        """v written 5 bytes into m0 ++ m1 splits across w0 and w1."""
        m0 = int.from_bytes(bytes(range(32)), "big")
        m1 = int.from_bytes(bytes(range(32, 64)), "big")
        v = int.from_bytes(bytes(range(100, 132)), "big")
        w0 = int.from_bytes(bytes(range(5)) + bytes(range(100, 127)), "big")
        w1 = int.from_bytes(bytes(range(127, 132)) + bytes(range(37, 64)), "big")
        program = [
            {"CONSTL": str(m0), "setA": 1},
            {"CONSTL": str(m1), "setB": 1},
            {"CONST": 5, "setC": 1},
            {"CONSTL": str(w0), "setD": 1},
            {"CONSTL": str(w1), "setE": 1},
            {"CONSTL": str(v), "memAlign": 1, "memAlignWR": 1},
            {},
        ]
        pols, required = run_rom(program, labels={"finalizeExecution": 6}, config=DEBUG)
        record = required.mem_align[0]
        assert (record.w0, record.w1, record.v) == (w0, w1, v)
        assert (record.wr256, record.wr8) == (1, 0)
        assert pols.get("cntMemAlign", 6) == 1

    def test_mem_align_write_byte(self, run_rom) -> None:
        m0 = int.from_bytes(bytes(range(32)), "big")
        w0 = int.from_bytes(bytes(range(5)) + b"\xee" + bytes(range(6, 32)), "big")
        program = [
            {"CONSTL": str(m0), "setA": 1},
            {"CONST": 5, "setC": 1},
            {"CONSTL": str(w0), "setD": 1},
            {"CONST": 0xEE, "memAlign": 1, "memAlignWR8": 1},
            {},
        ]
        _, required = run_rom(program, labels={"finalizeExecution": 4}, config=DEBUG)
        record = required.mem_align[0]
        assert (record.w0, record.v, record.wr256, record.wr8) == (w0, 0xEE, 0, 1)

    def test_mem_align_write_mismatch(self, run_rom) -> None:
        m0 = int.from_bytes(bytes(range(32)), "big")
        program = [
            {"CONSTL": str(m0), "setA": 1},
            {"CONST": 5, "setC": 1},
            {"CONSTL": str(m0), "setD": 1},
            {"CONST": 0xEE, "memAlign": 1, "memAlignWR8": 1},
        ]
        with pytest.raises(AssertMismatchError):
            run_rom(program)


class TestHashing:
    """Tests for hashK/hashP buffers driven by ROM lines."""

    def test_keccak_digest(self, run_rom) -> None:
        program = [
            {"CONST": 1, "setD": 1},
            {"CONST": 0xAB, "hashK": 1},
            {"CONST": 1, "hashKLen": 1},
            {"inFREE": 1, "freeInTag": FREE, "hashKDigest": 1, "setA": 1},
            {},
        ]
        pols, required = run_rom(program, labels={"finalizeExecution": 4}, config=DEBUG)
        digest = keccak256_int(b"\xab")
        assert pols.get("HASHPOS", 2) == 1
        assert fea2scalar(pols.get_limbs("A", 4)) == digest
        assert pols.get("cntKeccakF", 4) == 1
        assert required.hash_digests == [HashDigestRecord("keccak", 0, 1, digest, 1)]
        assert required.padding_kk[0].data == b"\xab"
        assert required.padding_kk[0].reads == [1]

    def test_digest_before_length(self, run_rom) -> None:
        program = [
            {"CONST": 1, "setD": 1},
            {"CONST": 0xAB, "hashK": 1},
            {"inFREE": 1, "freeInTag": FREE, "hashKDigest": 1, "setA": 1},
        ]
        with pytest.raises(HashConsistencyError):
            run_rom(program)

    def test_conflicting_byte_located(self, run_rom) -> None:
        """A second write of a different byte at HASHPOS 3 is fatal on that line."""
        program = [
            {"CONST": 1, "setD": 1},
            {"CONST": 3, "setHASHPOS": 1},
            {"CONST": 0x01, "hashK": 1},
            {"CONST": 3, "setHASHPOS": 1},
            {"CONST": 0x02, "hashK": 1},
        ]
        with pytest.raises(HashConsistencyError) as exc:
            run_rom(program)
        assert exc.value.step == 4
        assert exc.value.zkpc == 4
        assert exc.value.file_name == "test.zkasm"
        assert exc.value.line == 5

    def test_length_mismatch(self, run_rom) -> None:
        program = [
            {"CONST": 1, "setD": 1},
            {"CONST": 0xAB, "hashK": 1},
            {"CONST": 2, "hashKLen": 1},
        ]
        with pytest.raises(AssertMismatchError):
            run_rom(program)

    def test_empty_keccak(self, run_rom) -> None:
        program = [
            {"hashKLen": 1, "offset": 3},
            {"inFREE": 1, "freeInTag": FREE, "hashKDigest": 1, "offset": 3, "setA": 1},
            {},
        ]
        pols, _ = run_rom(program, labels={"finalizeExecution": 2}, config=DEBUG)
        assert fea2scalar(pols.get_limbs("A", 2)) == EMPTY_KECCAK

    def test_poseidon_bytecode_digest(self, run_rom) -> None:
        db = MemStateDB()
        program = [
            {"CONST": 2, "setD": 1},
            {"CONST": 0x6000, "hashP": 1},
            {"CONST": 2, "hashPLen": 1},
            {"inFREE": 1, "freeInTag": FREE, "hashPDigest": 1, "setA": 1},
            {},
        ]
        pols, required = run_rom(program, labels={"finalizeExecution": 4}, config=DEBUG, state_db=db)
        digest = hash_bytecode(b"\x60\x00")
        assert fea2scalar(pols.get_limbs("A", 4)) == digest
        assert pols.get("cntPaddingPG", 4) == 1
        assert list(db.programs.values()) == [b"\x60\x00"]
        assert required.padding_pg[0].data == b"\x60\x00"

    def test_poseidon_digest_loads_program(self, run_rom) -> None:
        """hashPDigest on an untouched address reads the bytecode from the store."""
        digest = hash_bytecode(b"\x01\x02")
        batch = BatchInput(contracts_bytecode={digest: b"\x01\x02"})
        program = [{"CONSTL": str(digest), "hashPDigest": 1}, {}]
        _, required = run_rom(program, labels={"finalizeExecution": 1}, config=DEBUG, input=batch)
        assert required.hash_digests[0].length == 2


class TestStorage:
    """Tests for Merkle reads and writes through sRD/sWR."""

    PROGRAM = [
        {"CONST": 7, "setA": 1},
        {"CONST": 42, "setD": 1},
        {"inFREE": 1, "freeInTag": FREE, "sWR": 1, "setSR": 1},
        {"inFREE": 1, "freeInTag": FREE, "sRD": 1, "setE": 1},
        {"inFREE": 1, "freeInTag": call("getNewStateRoot"), "setA": 1},
        {"inSR": 1, "assert": 1},
        {},
    ]
    LABELS = {"assertNewStateRoot": 5, "finalizeExecution": 6}

    def expected_root(self):
        return MemStateDB().set([0, 0, 0, 0], storage_key(7), 42).new_root

    def test_write_then_read(self, run_rom) -> None:
        batch = BatchInput(new_state_root=h4_to_scalar(self.expected_root()))
        db = MemStateDB()
        pols, required = run_rom(self.PROGRAM, labels=self.LABELS, config=DEBUG, input=batch, state_db=db)

        assert [int(v) for v in sr8to4(pols.get_limbs("SR", 3))] == self.expected_root()
        assert pols.get_limbs("E", 4) == limbs(42)
        assert [r.is_set for r in required.storage] == [True, False]
        assert required.storage[0].set_result.mode == "insertNotFound"
        assert required.storage[1].get_result.value == 42
        assert db.get(self.expected_root(), storage_key(7)).value == 42

    def test_storage_columns_and_counters(self, run_rom) -> None:
        batch = BatchInput(new_state_root=h4_to_scalar(self.expected_root()))
        pols, required = run_rom(self.PROGRAM, labels=self.LABELS, config=DEBUG, input=batch)

        assert pols.get_limbs("sKey", 2) == list(storage_key(7))
        assert pols.get_limbs("sKey", 3) == list(storage_key(7))
        assert pols.get_limbs("sKey", 1) == [0, 0, 0, 0]
        assert pols.get("cntPoseidonG", 3) == 4
        assert pols.get("cntPoseidonG", 4) == 8
        assert len(required.poseidon_g) == 4
        assert len(required.binary) == 1

    def test_wrong_new_root(self, run_rom) -> None:
        batch = BatchInput(new_state_root=0xDEAD)
        with pytest.raises(AssertMismatchError):
            run_rom(self.PROGRAM, labels=self.LABELS, config=DEBUG, input=batch)

    def test_execute_mode_skips_root_assert(self, run_rom) -> None:
        batch = BatchInput(new_state_root=0xDEAD)
        config = ExecConfig(execute=True, debug=True, steps_n=16)
        pols, _ = run_rom(self.PROGRAM, labels=self.LABELS, config=config, input=batch)
        assert [int(v) for v in sr4to8(self.expected_root())] == pols.get_limbs("SR", 5)


class TestUnsigned:
    """Tests for unsigned execution."""

    def test_from_substituted(self, run_rom) -> None:
        config = ExecConfig(unsigned=True, debug=True, steps_n=16)
        batch = BatchInput(from_addr=0x1234)
        labels = {"checkAndSaveFrom": 0, "finalizeExecution": 1}
        pols, _ = run_rom([{}, {}], labels=labels, config=config, input=batch)
        assert pols.get_limbs("A", 1) == limbs(0x1234)
