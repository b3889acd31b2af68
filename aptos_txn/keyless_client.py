# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Client for the pepper and prover services that keyless accounts depend on. Requests are made
once; retrying and caching belong to the caller.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import unittest
from typing import Any, Dict, Optional
from unittest import mock

import httpx

from . import bcs, ed25519, poseidon
from .config import KeylessConfig
from .errors import DerivationFailure, MalformedInput
from .keyless import (
    PEPPER_LENGTH,
    EphemeralKeyPair,
    EphemeralSignature,
    Groth16Proof,
    KeylessAccount,
    ZeroKnowledgeSig,
    derive_address,
)
from .metadata import Metadata

# Upper bound on how long after the JWT was issued the ephemeral key may stay valid.
DEFAULT_EXP_HORIZON_SECS = 10_000_000


class ApiError(Exception):
    """The service returned a non-success status code, e.g., >= 400"""

    status_code: int

    def __init__(self, message: str, status_code: int):
        # Call the base class constructor with the parameters it needs
        super().__init__(message)
        self.status_code = status_code


class KeylessClient:
    """A wrapper around the keyless pepper and prover services"""

    client: httpx.AsyncClient
    config: KeylessConfig

    def __init__(
        self,
        config: KeylessConfig = KeylessConfig(),
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config
        if config.poseidon_params:
            poseidon.load_params_json(config.poseidon_params)
        # Default headers
        headers = {Metadata.APTOS_HEADER: Metadata.get_aptos_header_val()}
        self.client = httpx.AsyncClient(
            http2=config.http2,
            timeout=httpx.Timeout(config.timeout),
            headers=headers,
            transport=transport,
        )

    async def close(self):
        await self.client.aclose()

    def _request_body(
        self, jwt: str, ephemeral_key_pair: EphemeralKeyPair, uid_key: str
    ) -> Dict[str, Any]:
        return {
            "jwt_b64": jwt,
            "epk": ephemeral_key_pair.public_key().to_bytes().hex(),
            "exp_date_secs": ephemeral_key_pair.expiry_date_secs,
            "epk_blinder": ephemeral_key_pair.blinder.hex(),
            "uid_key": uid_key,
        }

    async def get_pepper(
        self, jwt: str, ephemeral_key_pair: EphemeralKeyPair, uid_key: str = "sub"
    ) -> bytes:
        """
        Fetches the pepper for the identity in `jwt`. The same identity and application always
        receive the same pepper.

        :param jwt: The encoded JWT whose nonce commits to the ephemeral key pair.
        :param ephemeral_key_pair: The key pair the JWT was requested for.
        :param uid_key: The JWT claim that identifies the user.
        :return: The 32 byte pepper.
        """
        logging.info("Fetching keyless pepper for uid_key %s", uid_key)
        response = await self._post(
            f"{self.config.pepper_url}/fetch",
            self._request_body(jwt, ephemeral_key_pair, uid_key),
        )
        data = self._json(response)
        try:
            pepper = bytes.fromhex(data["pepper"].removeprefix("0x"))
        except (KeyError, AttributeError, ValueError) as e:
            raise DerivationFailure(f"Malformed pepper response: {data}") from e
        if len(pepper) != PEPPER_LENGTH:
            raise DerivationFailure(
                f"Pepper must be {PEPPER_LENGTH} bytes, found {len(pepper)}"
            )
        return pepper

    async def get_proof(
        self,
        jwt: str,
        ephemeral_key_pair: EphemeralKeyPair,
        pepper: bytes,
        uid_key: str = "sub",
        exp_horizon_secs: int = DEFAULT_EXP_HORIZON_SECS,
    ) -> ZeroKnowledgeSig:
        """
        Requests a zero-knowledge proof that binds the ephemeral key to the identity in `jwt`
        without revealing it.
        """
        logging.info("Requesting keyless proof for uid_key %s", uid_key)
        body = self._request_body(jwt, ephemeral_key_pair, uid_key)
        body["pepper"] = pepper.hex()
        body["exp_horizon_secs"] = exp_horizon_secs
        response = await self._post(f"{self.config.prover_url}/prove", body)
        data = self._json(response)

        try:
            proof = Groth16Proof.from_json(data["proof"])
            training_wheels_signature = None
            if data.get("training_wheels_signature"):
                training_wheels_signature = bcs.decode(
                    bytes.fromhex(data["training_wheels_signature"].removeprefix("0x")),
                    EphemeralSignature.deserialize,
                )
        except (KeyError, AttributeError, ValueError, MalformedInput) as e:
            raise DerivationFailure(f"Malformed proof response: {e}") from e

        return ZeroKnowledgeSig(
            proof,
            exp_horizon_secs,
            training_wheels_signature=training_wheels_signature,
        )

    def _json(self, response: httpx.Response) -> Dict[str, Any]:
        if response.status_code >= 400:
            logging.error(
                "Keyless service error %s: %s", response.status_code, response.text
            )
            raise ApiError(response.text, response.status_code)
        try:
            return response.json()
        except json.JSONDecodeError as e:
            raise ApiError(
                f"Invalid JSON response: {response.text}", response.status_code
            ) from e

    async def _post(self, url: str, data: Dict[str, Any]) -> httpx.Response:
        return await self.client.post(url=url, json=data)


async def derive_keyless_account(
    client: KeylessClient,
    jwt: str,
    ephemeral_key_pair: EphemeralKeyPair,
    uid_key: str = "sub",
    pepper: Optional[bytes] = None,
) -> KeylessAccount:
    """Fetches the pepper unless one is supplied, then the proof, and builds the account."""
    if pepper is None:
        pepper = await client.get_pepper(jwt, ephemeral_key_pair, uid_key)
    proof = await client.get_proof(jwt, ephemeral_key_pair, pepper, uid_key)
    account = KeylessAccount.from_jwt(jwt, ephemeral_key_pair, pepper, proof, uid_key)
    logging.info("Derived keyless account %s", account.address())
    return account


class Test(unittest.IsolatedAsyncioTestCase):
    PEPPER = bytes(range(32))
    TOKEN = (
        "eyJhbGciOiJIUzI1NiIsInR5cCI6IkpXVCJ9."
        "eyJpc3MiOiJodHRwczovL2V4YW1wbGUuY29tIiwiYXVkIjoidGVzdC1jbGllbnQiLCJzdWIiOiJ1c2VyLTQyIn0."
        "c2lnbmF0dXJl"
    )

    @classmethod
    def setUpClass(cls):
        poseidon.register_derived_params(b"aptos_txn/keyless_client/test")

    def setUp(self):
        self.requests = []
        self.training_wheels = ed25519.PrivateKey.random().sign(b"training wheels")

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.requests.append((request.url.path, body))
        if request.url.path.endswith("/fetch"):
            return httpx.Response(200, json={"pepper": self.PEPPER.hex()})
        if request.url.path.endswith("/prove"):
            return httpx.Response(
                200,
                json={
                    "proof": {"a": "01" * 32, "b": "02" * 64, "c": "03" * 32},
                    "public_inputs_hash": "1234",
                    "training_wheels_signature": EphemeralSignature(
                        self.training_wheels
                    )
                    .to_bytes()
                    .hex(),
                },
            )
        return httpx.Response(404, text="not found")

    def client(self, handler=None) -> KeylessClient:
        return KeylessClient(transport=httpx.MockTransport(handler or self.handler))

    async def test_get_pepper(self):
        client = self.client()
        pair = EphemeralKeyPair.generate(now=0)
        pepper = await client.get_pepper(self.TOKEN, pair)
        await client.close()

        self.assertEqual(pepper, self.PEPPER)
        path, body = self.requests[0]
        self.assertEqual(path, "/keyless/pepper/v0/fetch")
        self.assertEqual(body["jwt_b64"], self.TOKEN)
        self.assertEqual(body["epk"], pair.public_key().to_bytes().hex())
        self.assertEqual(body["uid_key"], "sub")

    async def test_derive_keyless_account(self):
        client = self.client()
        pair = EphemeralKeyPair.generate(now=0)
        account = await derive_keyless_account(client, self.TOKEN, pair)
        await client.close()

        self.assertEqual(
            account.address(),
            derive_address("https://example.com", "test-client", "user-42", self.PEPPER),
        )
        self.assertEqual([path for path, _ in self.requests][-1], "/keyless/prover/v0/prove")
        assert account.proof is not None
        self.assertEqual(
            account.proof.training_wheels_signature,
            EphemeralSignature(self.training_wheels),
        )
        signature = account.sign(b"message")
        self.assertTrue(account.public_key().verify(b"message", signature))

    async def test_supplied_pepper_skips_pepper_service(self):
        client = self.client()
        await derive_keyless_account(
            client, self.TOKEN, EphemeralKeyPair.generate(now=0), pepper=self.PEPPER
        )
        await client.close()
        self.assertEqual(len(self.requests), 1)
        self.assertEqual(self.requests[0][1]["pepper"], self.PEPPER.hex())

    async def test_api_error(self):
        client = self.client(lambda request: httpx.Response(500, text="unavailable"))
        with self.assertRaises(ApiError) as cm:
            await client.get_pepper(self.TOKEN, EphemeralKeyPair.generate(now=0))
        await client.close()
        self.assertEqual(cm.exception.status_code, 500)

    async def test_malformed_pepper(self):
        client = self.client(
            lambda request: httpx.Response(200, json={"pepper": "00" * 31})
        )
        with self.assertRaises(DerivationFailure):
            await client.get_pepper(self.TOKEN, EphemeralKeyPair.generate(now=0))
        await client.close()

    async def test_loads_poseidon_params_from_config(self):
        params = poseidon.derive_params(2, b"config")
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "poseidon.json")
            with open(path, "w", encoding="utf-8") as f:
                json.dump({"t": 2, "mds": params.mds, "rc": params.rc}, f)
            config = KeylessConfig()
            config.poseidon_params = path
            with mock.patch.dict(poseidon._PARAMS):
                client = KeylessClient(config, httpx.MockTransport(self.handler))
                await client.close()
                self.assertEqual(poseidon.get_params(2).rc, params.rc)
