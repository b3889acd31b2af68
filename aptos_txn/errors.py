# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Errors raised by the transaction engine. All of them are local and recoverable: they are
raised to the immediate caller and never retried.
"""


class MalformedInput(Exception):
    """The input bytes are truncated or are not a canonical encoding"""


class InvalidLength(MalformedInput):
    """A length prefix exceeds the remaining input or the maximum supported length"""


class InvalidDiscriminant(MalformedInput):
    """A tagged-union variant index is outside of the known range"""

    variant: int

    def __init__(self, message: str, variant: int):
        super().__init__(message)
        self.variant = variant


class OutOfRange(ValueError):
    """A value cannot be represented in the requested Move type"""


class SchemeMismatch(Exception):
    """A key, signature or authenticator is incompatible with the declared signature scheme"""


class MissingAuthenticator(Exception):
    """A signer slot required by the transaction topology has no authenticator"""


class TopologyMismatch(Exception):
    """Signer addresses and authenticators do not line up with the transaction topology"""


class DerivationFailure(Exception):
    """A keyless address or commitment cannot be derived from the given claims"""


class InvalidState(Exception):
    """A signing session operation was invoked out of order"""


class AbiMismatch(Exception):
    """Arguments or type arguments do not match the entry function ABI"""


class TypeTagParseError(ValueError):
    """The canonical textual form of a type could not be parsed"""
