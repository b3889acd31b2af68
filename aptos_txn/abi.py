# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Builds entry function payloads from an ABI description instead of per-function bindings. An
ABI is plain data, either written by hand or taken from the module ABI the REST API returns.
"""

from __future__ import annotations

import unittest
from typing import Any, Dict, List, Optional, Union

from . import move_values
from .account_address import AccountAddress, ParseAddressError
from .errors import AbiMismatch, OutOfRange, TypeTagParseError
from .transactions import (
    EntryFunction,
    ModuleId,
    Multisig,
    MultisigTransactionPayload,
    TransactionPayload,
)
from .type_tag import StructTag, TypeTag, parse_type_tag


class AddressRegistry:
    """Resolves named addresses such as `aptos_framework` to account addresses."""

    DEFAULTS: Dict[str, str] = {
        "std": "0x1",
        "aptos_std": "0x1",
        "aptos_framework": "0x1",
        "aptos_token": "0x3",
        "aptos_token_objects": "0x4",
    }

    addresses: Dict[str, AccountAddress]

    def __init__(self, addresses: Optional[Dict[str, AccountAddress]] = None):
        if addresses is None:
            addresses = {
                name: AccountAddress.from_str(address)
                for name, address in AddressRegistry.DEFAULTS.items()
            }
        self.addresses = dict(addresses)

    def with_address(self, name: str, address: AccountAddress) -> AddressRegistry:
        addresses = dict(self.addresses)
        addresses[name] = address
        return AddressRegistry(addresses)

    def resolve(self, name: str) -> AccountAddress:
        if name in self.addresses:
            return self.addresses[name]
        try:
            return AccountAddress.from_str_relaxed(name)
        except ParseAddressError as e:
            raise AbiMismatch(f"Unknown named address '{name}'") from e


def _to_type_tag(param: Union[TypeTag, str]) -> TypeTag:
    if isinstance(param, TypeTag):
        return param
    return parse_type_tag(param, allow_generics=True)


def _to_type_argument(type_arg: Union[TypeTag, str]) -> TypeTag:
    if isinstance(type_arg, TypeTag):
        tag = type_arg
    else:
        try:
            tag = parse_type_tag(type_arg)
        except TypeTagParseError as e:
            raise AbiMismatch(f"Invalid type argument '{type_arg}': {e}") from e
    if tag.is_generic():
        raise AbiMismatch(f"Type argument {tag} is not concrete")
    return tag


class EntryFunctionABI:
    module_address: AccountAddress
    module_name: str
    function_name: str
    generic_type_params: int
    params: List[TypeTag]

    def __init__(
        self,
        module_address: AccountAddress,
        module_name: str,
        function_name: str,
        generic_type_params: int,
        params: List[Union[TypeTag, str]],
    ):
        self.module_address = module_address
        self.module_name = module_name
        self.function_name = function_name
        self.generic_type_params = generic_type_params

        parsed = [_to_type_tag(param) for param in params]
        # The sender's signer is supplied by the transaction itself.
        while parsed and parsed[0].variant() == TypeTag.SIGNER:
            parsed = parsed[1:]
        self.params = parsed

    def __str__(self) -> str:
        params = ", ".join(str(param) for param in self.params)
        return f"{self.module_address}::{self.module_name}::{self.function_name}({params})"

    @staticmethod
    def from_function_id(
        function_id: str,
        generic_type_params: int,
        params: List[Union[TypeTag, str]],
        registry: AddressRegistry,
    ) -> EntryFunctionABI:
        """Accepts `address::module::function` where the address may be a registry name."""
        split = function_id.split("::")
        if len(split) != 3:
            raise AbiMismatch(f"Expected address::module::function, found {function_id}")
        return EntryFunctionABI(
            registry.resolve(split[0]), split[1], split[2], generic_type_params, params
        )

    @staticmethod
    def from_json(module_abi: Dict[str, Any], function_name: str) -> EntryFunctionABI:
        """Reads one function of a module ABI in the shape served by the REST API."""
        for function in module_abi.get("exposed_functions", []):
            if function["name"] != function_name:
                continue
            if not function.get("is_entry", False):
                raise AbiMismatch(f"{function_name} is not an entry function")
            return EntryFunctionABI(
                AccountAddress.from_str_relaxed(module_abi["address"]),
                module_abi["name"],
                function_name,
                len(function["generic_type_params"]),
                function["params"],
            )
        raise AbiMismatch(f"{module_abi.get('name')} has no function {function_name}")


class EntryFunctionPayloadBuilder:
    abi: EntryFunctionABI

    def __init__(self, abi: EntryFunctionABI):
        self.abi = abi

    def entry_function(
        self, type_args: List[Union[TypeTag, str]], args: List[Any]
    ) -> EntryFunction:
        tags = [_to_type_argument(type_arg) for type_arg in type_args]
        if len(tags) != self.abi.generic_type_params:
            raise AbiMismatch(
                f"{self.abi.function_name} expects {self.abi.generic_type_params} type "
                f"arguments, found {len(tags)}"
            )
        if len(args) != len(self.abi.params):
            raise AbiMismatch(
                f"{self.abi.function_name} expects {len(self.abi.params)} arguments, "
                f"found {len(args)}"
            )

        encoded = []
        for index, (param, arg) in enumerate(zip(self.abi.params, args)):
            try:
                value = move_values.coerce(param.substitute(tags), arg)
            except (AbiMismatch, OutOfRange) as e:
                raise type(e)(f"Argument {index} of {self.abi.function_name}: {e}") from e
            encoded.append(value.to_bytes())

        return EntryFunction(
            ModuleId(self.abi.module_address, self.abi.module_name),
            self.abi.function_name,
            tags,
            encoded,
        )

    def build(
        self, type_args: List[Union[TypeTag, str]], args: List[Any]
    ) -> TransactionPayload:
        return TransactionPayload(self.entry_function(type_args, args))

    def build_multisig(
        self,
        multisig_address: AccountAddress,
        type_args: List[Union[TypeTag, str]],
        args: List[Any],
    ) -> TransactionPayload:
        return TransactionPayload(
            Multisig(
                multisig_address,
                MultisigTransactionPayload(self.entry_function(type_args, args)),
            )
        )


class Test(unittest.TestCase):
    COIN_ABI: Dict[str, Any] = {
        "address": "0x1",
        "name": "coin",
        "friends": [],
        "exposed_functions": [
            {
                "name": "transfer",
                "visibility": "public",
                "is_entry": True,
                "is_view": False,
                "generic_type_params": [{"constraints": []}],
                "params": ["&signer", "address", "u64"],
                "return": [],
            },
            {
                "name": "balance",
                "visibility": "public",
                "is_entry": False,
                "is_view": True,
                "generic_type_params": [{"constraints": []}],
                "params": ["address"],
                "return": ["u64"],
            },
        ],
    }

    def test_from_json(self):
        abi = EntryFunctionABI.from_json(self.COIN_ABI, "transfer")
        self.assertEqual(abi.module_address, AccountAddress.ONE)
        self.assertEqual(abi.generic_type_params, 1)
        self.assertEqual([str(param) for param in abi.params], ["address", "u64"])

        with self.assertRaises(AbiMismatch):
            EntryFunctionABI.from_json(self.COIN_ABI, "balance")
        with self.assertRaises(AbiMismatch):
            EntryFunctionABI.from_json(self.COIN_ABI, "missing")

    def test_build_matches_natural(self):
        from .bcs import Serializer
        from .transactions import TransactionArgument

        abi = EntryFunctionABI.from_json(self.COIN_ABI, "transfer")
        payload = EntryFunctionPayloadBuilder(abi).build(
            ["0x1::aptos_coin::AptosCoin"], ["0xb", "5000"]
        )
        expected = EntryFunction.natural(
            "0x1::coin",
            "transfer",
            [TypeTag(StructTag.from_str("0x1::aptos_coin::AptosCoin"))],
            [
                TransactionArgument(AccountAddress.from_str("0xb"), Serializer.struct),
                TransactionArgument(5000, Serializer.u64),
            ],
        )
        self.assertEqual(payload, TransactionPayload(expected))

    def test_count_mismatches(self):
        builder = EntryFunctionPayloadBuilder(
            EntryFunctionABI.from_json(self.COIN_ABI, "transfer")
        )
        with self.assertRaises(AbiMismatch):
            builder.build([], ["0xb", 1])
        with self.assertRaises(AbiMismatch):
            builder.build(["0x1::aptos_coin::AptosCoin"], ["0xb"])
        with self.assertRaises(AbiMismatch):
            builder.build(["0x1::aptos_coin::AptosCoin"], [True, 1])
        with self.assertRaises(OutOfRange):
            builder.build(["0x1::aptos_coin::AptosCoin"], ["0xb", -1])

    def test_generic_params_and_options(self):
        registry = AddressRegistry().with_address(
            "my_app", AccountAddress.from_str_relaxed("0xcafe")
        )
        abi = EntryFunctionABI.from_function_id(
            "my_app::vault::deposit",
            1,
            [
                "signer",
                "0x1::object::Object<T0>",
                "0x1::option::Option<u64>",
                "vector<0x1::string::String>",
            ],
            registry,
        )
        self.assertEqual(abi.module_address, AccountAddress.from_str_relaxed("0xcafe"))
        self.assertEqual(len(abi.params), 3)

        entry_function = EntryFunctionPayloadBuilder(abi).entry_function(
            ["0x1::fungible_asset::Metadata"], ["0xa", None, ["a", "b"]]
        )
        self.assertEqual(entry_function.args[0], AccountAddress.from_str("0xa").address)
        self.assertEqual(entry_function.args[1], b"\x00")
        self.assertEqual(entry_function.args[2], b"\x02\x01a\x01b")

        entry_function = EntryFunctionPayloadBuilder(abi).entry_function(
            ["0x1::fungible_asset::Metadata"], ["0xa", 7, []]
        )
        self.assertEqual(entry_function.args[1], b"\x01" + (7).to_bytes(8, "little"))
        self.assertEqual(entry_function.args[2], b"\x00")

    def test_registry(self):
        registry = AddressRegistry()
        self.assertEqual(registry.resolve("aptos_framework"), AccountAddress.ONE)
        self.assertEqual(registry.resolve("0x3"), AccountAddress.from_str("0x3"))
        with self.assertRaises(AbiMismatch):
            registry.resolve("unknown_name")
        extended = registry.with_address("mine", AccountAddress.from_str_relaxed("0x42"))
        self.assertNotIn("mine", registry.addresses)
        self.assertEqual(extended.resolve("mine"), AccountAddress.from_str_relaxed("0x42"))

    def test_build_multisig(self):
        abi = EntryFunctionABI(
            AccountAddress.ONE, "aptos_account", "transfer", 0, ["&signer", "address", "u64"]
        )
        payload = EntryFunctionPayloadBuilder(abi).build_multisig(
            AccountAddress.from_str_relaxed("0x1234"), [], ["0xb", 1]
        )
        self.assertEqual(payload.variant, TransactionPayload.MULTISIG)
        self.assertEqual(payload.value.transaction_payload.payload.function, "transfer")

    def test_type_arguments_must_be_concrete(self):
        builder = EntryFunctionPayloadBuilder(
            EntryFunctionABI.from_json(self.COIN_ABI, "transfer")
        )
        for type_arg in ["T0", "vector<T0>", "u65", "0x1::coin::Coin<"]:
            with self.assertRaises(AbiMismatch, msg=type_arg):
                builder.build([type_arg], ["0xb", 1])
        with self.assertRaises(AbiMismatch):
            builder.build([parse_type_tag("T0", allow_generics=True)], ["0xb", 1])

        payload = builder.build(["0x1::aptos_coin::AptosCoin"], ["0xb", 1])
        self.assertEqual(TransactionPayload.from_bytes(payload.to_bytes()), payload)
