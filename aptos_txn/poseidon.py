# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Poseidon over the BN254 scalar field, as used by the keyless circuits for identity commitments
and ephemeral nonces.

The permutation is parameterised by width. The round constants and MDS matrices are not
bundled: load the set the circuits were compiled with through `load_params_json` (or
`register_params`) before deriving keyless addresses. `derive_params` builds well-formed sets
from a seed for local use, and hashes made with them do not match the chain.

Hashing follows circom: an n-scalar input uses width n + 1, the state starts as
[0, *inputs] and a single permutation yields state[0].
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import tempfile
import unittest
from typing import Dict, List, Sequence, Union
from unittest import mock

from .errors import MalformedInput, OutOfRange

FIELD_MODULUS = (
    21888242871839275222246405745257275088548364400416034343698204186575808495617
)
BYTES_PACKED_PER_SCALAR = 31
MAX_NUM_INPUT_SCALARS = 16
FULL_ROUNDS = 8
# Partial rounds for widths 2 through 17.
PARTIAL_ROUNDS = [56, 57, 56, 60, 60, 63, 64, 63, 60, 66, 60, 65, 70, 60, 64, 68]


class PoseidonParams:
    t: int
    full_rounds: int
    partial_rounds: int
    alpha: int
    mds: List[List[int]]
    rc: List[List[int]]

    def __init__(
        self,
        t: int,
        full_rounds: int,
        partial_rounds: int,
        mds: List[List[int]],
        rc: List[List[int]],
        alpha: int = 5,
    ):
        self.t = t
        self.full_rounds = full_rounds
        self.partial_rounds = partial_rounds
        self.alpha = alpha
        self.mds = [[v % FIELD_MODULUS for v in row] for row in mds]
        self.rc = [[v % FIELD_MODULUS for v in row] for row in rc]
        self.validate()

    def validate(self):
        if self.t < 2:
            raise MalformedInput(f"Poseidon width must be at least 2, found {self.t}")
        if self.full_rounds % 2 != 0:
            raise MalformedInput("Poseidon full rounds must be even")
        if self.alpha < 3 or self.alpha % 2 == 0:
            raise MalformedInput("Poseidon S-box exponent must be odd and at least 3")
        if len(self.mds) != self.t or any(len(row) != self.t for row in self.mds):
            raise MalformedInput(f"Poseidon MDS matrix must be {self.t}x{self.t}")
        rounds = self.full_rounds + self.partial_rounds
        if len(self.rc) != rounds or any(len(row) != self.t for row in self.rc):
            raise MalformedInput(
                f"Poseidon round constants must be {rounds}x{self.t}"
            )


_PARAMS: Dict[int, PoseidonParams] = {}


def register_params(params: PoseidonParams):
    _PARAMS[params.t] = params


def get_params(t: int) -> PoseidonParams:
    if t not in _PARAMS:
        raise KeyError(
            f"Poseidon parameters for width {t} are not registered, "
            "load them with load_params_json"
        )
    return _PARAMS[t]


def _scalar(value: Union[int, str]) -> int:
    if isinstance(value, int):
        return value
    text = str(value).strip().lower()
    if text.startswith("0x"):
        return int(text, 16)
    return int(text)


def load_params_json(path: str) -> List[PoseidonParams]:
    """
    Registers every parameter set in a JSON file. The file holds one object or a list of
    objects with `t`, `mds`, and `rc`, plus optional `full_rounds`, `partial_rounds` and `alpha`.
    Scalars are decimal or 0x-prefixed hex. `rc` is either one row per round or the flat
    circomlib layout of `t` constants per round.
    """
    with open(path, "r", encoding="utf-8") as f:
        raw = json.load(f)
    entries = raw if isinstance(raw, list) else [raw]

    loaded = []
    for entry in entries:
        try:
            t = int(entry["t"])
            full_rounds = int(entry.get("full_rounds", FULL_ROUNDS))
            partial_rounds = int(entry.get("partial_rounds", PARTIAL_ROUNDS[t - 2]))
            mds = [[_scalar(v) for v in row] for row in entry["mds"]]
            rc_raw = entry["rc"]
            if rc_raw and not isinstance(rc_raw[0], list):
                rc_raw = [rc_raw[i : i + t] for i in range(0, len(rc_raw), t)]
            rc = [[_scalar(v) for v in row] for row in rc_raw]
            alpha = int(entry.get("alpha", 5))
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise MalformedInput(
                f"Malformed Poseidon parameters in {path}: {e}"
            ) from e
        params = PoseidonParams(t, full_rounds, partial_rounds, mds, rc, alpha)
        register_params(params)
        loaded.append(params)
    logging.info(
        "Loaded Poseidon parameters for widths %s", [params.t for params in loaded]
    )
    return loaded


def derive_params(t: int, seed: bytes) -> PoseidonParams:
    """
    Well-formed parameters derived from `seed`: SHA3-256 round constants and a Cauchy MDS
    matrix. Not the circuit constants.
    """
    if not 2 <= t <= MAX_NUM_INPUT_SCALARS + 1:
        raise OutOfRange(f"Unsupported Poseidon width {t}")
    partial_rounds = PARTIAL_ROUNDS[t - 2]
    rc = []
    for r in range(FULL_ROUNDS + partial_rounds):
        row = []
        for i in range(t):
            digest = hashlib.sha3_256(seed + f"/t={t}/r={r}/i={i}".encode()).digest()
            row.append(int.from_bytes(digest, "little") % FIELD_MODULUS)
        rc.append(row)
    # x_i = i and y_j = t + j keep every x_i + y_j distinct and nonzero.
    mds = [
        [pow(i + t + j, FIELD_MODULUS - 2, FIELD_MODULUS) for j in range(t)]
        for i in range(t)
    ]
    return PoseidonParams(t, FULL_ROUNDS, partial_rounds, mds, rc)


def register_derived_params(seed: bytes):
    for t in range(2, MAX_NUM_INPUT_SCALARS + 2):
        register_params(derive_params(t, seed))


def _sbox(value: int, alpha: int) -> int:
    return pow(value, alpha, FIELD_MODULUS)


def _mix(state: List[int], mds: List[List[int]]) -> List[int]:
    return [
        sum(row[j] * state[j] for j in range(len(state))) % FIELD_MODULUS
        for row in mds
    ]


def permute(state: Sequence[int], params: PoseidonParams) -> List[int]:
    """
    Half the full rounds, then the partial rounds (S-box on the first element only), then the
    remaining full rounds. Each round adds constants, applies the S-box and mixes.
    """
    if len(state) != params.t:
        raise OutOfRange(f"Poseidon state of width {len(state)}, expected {params.t}")

    x = [v % FIELD_MODULUS for v in state]
    half = params.full_rounds // 2
    for r, constants in enumerate(params.rc):
        x = [(v + c) % FIELD_MODULUS for v, c in zip(x, constants)]
        if r < half or r >= half + params.partial_rounds:
            x = [_sbox(v, params.alpha) for v in x]
        else:
            x[0] = _sbox(x[0], params.alpha)
        x = _mix(x, params.mds)
    return x


def hash_scalars(inputs: Sequence[int]) -> int:
    if not 1 <= len(inputs) <= MAX_NUM_INPUT_SCALARS:
        raise OutOfRange(
            f"Poseidon hashes 1 to {MAX_NUM_INPUT_SCALARS} scalars, found {len(inputs)}"
        )
    params = get_params(len(inputs) + 1)
    return permute([0, *inputs], params)[0]


def pack_bytes(data: bytes) -> List[int]:
    """Little-endian scalars of 31 bytes each, the last one possibly shorter."""
    return [
        int.from_bytes(data[i : i + BYTES_PACKED_PER_SCALAR], "little")
        for i in range(0, len(data), BYTES_PACKED_PER_SCALAR)
    ]


def pad_and_pack_bytes_with_len(data: bytes, max_size: int) -> List[int]:
    if len(data) > max_size:
        raise OutOfRange(
            f"Input of {len(data)} bytes exceeds the maximum of {max_size}"
        )
    return pack_bytes(data + b"\x00" * (max_size - len(data))) + [len(data)]


def hash_bytes_with_len(data: bytes, max_size: int) -> int:
    return hash_scalars(pad_and_pack_bytes_with_len(data, max_size))


def hash_str_to_field(text: str, max_size: int) -> int:
    return hash_bytes_with_len(text.encode("utf-8"), max_size)


def scalar_to_bytes(value: int, length: int = 32) -> bytes:
    return value.to_bytes(length, "little")


class Test(unittest.TestCase):
    SEED = b"aptos_txn/poseidon/test"

    @classmethod
    def setUpClass(cls):
        register_derived_params(cls.SEED)

    def test_pad_and_pack(self):
        packed = pad_and_pack_bytes_with_len(b"\x01\x02", 40)
        self.assertEqual(packed, [0x0201, 0, 2])
        self.assertEqual(len(pad_and_pack_bytes_with_len(b"", 120)), 5)
        self.assertEqual(len(pad_and_pack_bytes_with_len(b"u" * 330, 330)), 12)
        with self.assertRaises(OutOfRange):
            pad_and_pack_bytes_with_len(b"x" * 31, 30)

    def test_permutation_rounds(self):
        params = derive_params(2, self.SEED)
        self.assertEqual(len(params.rc), FULL_ROUNDS + 56)

        state = [1, 2]
        x = list(state)
        for r, constants in enumerate(params.rc):
            x = [(v + c) % FIELD_MODULUS for v, c in zip(x, constants)]
            if 4 <= r < 4 + params.partial_rounds:
                x[0] = pow(x[0], 5, FIELD_MODULUS)
            else:
                x = [pow(v, 5, FIELD_MODULUS) for v in x]
            x = [
                (params.mds[i][0] * x[0] + params.mds[i][1] * x[1]) % FIELD_MODULUS
                for i in range(2)
            ]
        self.assertEqual(permute(state, params), x)

    def test_hash_scalars(self):
        value = hash_scalars([1, 2])
        self.assertEqual(value, permute([0, 1, 2], get_params(3))[0])
        self.assertLess(value, FIELD_MODULUS)
        self.assertNotEqual(value, hash_scalars([2, 1]))
        self.assertEqual(hash_scalars([1, 2 + FIELD_MODULUS]), value)
        with self.assertRaises(OutOfRange):
            hash_scalars([])
        with self.assertRaises(OutOfRange):
            hash_scalars([0] * 17)

    def test_hash_str_to_field(self):
        self.assertEqual(
            hash_str_to_field("sub", 30),
            hash_scalars([int.from_bytes(b"sub", "little"), 3]),
        )
        self.assertNotEqual(
            hash_str_to_field("sub", 30), hash_str_to_field("sub\0", 30)
        )

    def test_unregistered_width(self):
        with mock.patch.dict(_PARAMS, clear=True):
            with self.assertRaises(KeyError):
                hash_scalars([1])

    def test_invalid_params(self):
        params = derive_params(3, self.SEED)
        with self.assertRaises(MalformedInput):
            PoseidonParams(3, 8, 57, params.mds[:2], params.rc)
        with self.assertRaises(MalformedInput):
            PoseidonParams(3, 8, 56, params.mds, params.rc)
        with self.assertRaises(MalformedInput):
            PoseidonParams(3, 8, 57, params.mds, params.rc, alpha=4)

    def test_load_params_json(self):
        params = derive_params(2, b"file")
        flat_rc = [hex(v) for row in params.rc for v in row]
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "poseidon.json")
            with open(path, "w", encoding="utf-8") as f:
                json.dump({"t": 2, "mds": params.mds, "rc": flat_rc}, f)
            with mock.patch.dict(_PARAMS, clear=True):
                (loaded,) = load_params_json(path)
                self.assertIs(get_params(2), loaded)
                self.assertEqual(loaded.rc, params.rc)
                self.assertEqual(hash_scalars([7]), permute([0, 7], params)[0])

            with open(path, "w", encoding="utf-8") as f:
                json.dump({"t": 2, "rc": flat_rc}, f)
            with self.assertRaises(MalformedInput):
                load_params_json(path)
