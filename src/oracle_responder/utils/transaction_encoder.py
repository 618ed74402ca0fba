"""
Transaction encoding utilities for the Oracle Responder.

This module provides Borsh serialization of NEAR transactions carrying a
single function-call action, and ed25519 signing of the serialized bytes.
"""

import hashlib
import logging
import struct
from dataclasses import dataclass

import base58
import nacl.signing

logger = logging.getLogger(__name__)


class TransactionEncoder:
    """Borsh encoders for the transaction structures the responder sends."""

    ED25519_KEY_TYPE = 0
    FUNCTION_CALL_ACTION = 2

    @staticmethod
    def encode_u8(value: int) -> bytes:
        return struct.pack("<B", value)

    @staticmethod
    def encode_u32(value: int) -> bytes:
        return struct.pack("<I", value)

    @staticmethod
    def encode_u64(value: int) -> bytes:
        return struct.pack("<Q", value)

    @staticmethod
    def encode_u128(value: int) -> bytes:
        """
        Encode an unsigned 128-bit integer, little-endian.

        Raises:
            ValueError: If the value does not fit in 128 bits
        """
        if not 0 <= value < 1 << 128:
            raise ValueError(f"Value out of u128 range: {value}")
        return value.to_bytes(16, "little")

    @staticmethod
    def encode_bytes(value: bytes) -> bytes:
        """Encode a length-prefixed byte vector."""
        return TransactionEncoder.encode_u32(len(value)) + value

    @staticmethod
    def encode_string(value: str) -> bytes:
        """Encode a length-prefixed UTF-8 string."""
        return TransactionEncoder.encode_bytes(value.encode("utf-8"))

    @classmethod
    def encode_public_key(cls, public_key: bytes) -> bytes:
        if len(public_key) != 32:
            raise ValueError(f"ed25519 public key must be 32 bytes, got {len(public_key)}")
        return cls.encode_u8(cls.ED25519_KEY_TYPE) + public_key

    @classmethod
    def encode_function_call(cls, method_name: str, args: bytes, gas: int, deposit: int) -> bytes:
        """
        Encode a FunctionCall action.

        Args:
            method_name: Contract method to call
            args: Raw argument bytes (JSON for NEAR contracts)
            gas: Gas allowance
            deposit: Attached deposit in yoctoNEAR

        Returns:
            Borsh-encoded action including its enum tag
        """
        return b"".join([
            cls.encode_u8(cls.FUNCTION_CALL_ACTION),
            cls.encode_string(method_name),
            cls.encode_bytes(args),
            cls.encode_u64(gas),
            cls.encode_u128(deposit),
        ])

    @classmethod
    def encode_transaction(
        cls,
        signer_id: str,
        public_key: bytes,
        nonce: int,
        receiver_id: str,
        block_hash: bytes,
        actions: list[bytes]
    ) -> bytes:
        """
        Encode an unsigned transaction.

        Args:
            signer_id: Signing account
            public_key: Raw 32-byte ed25519 public key of the access key
            nonce: Access key nonce for this transaction
            receiver_id: Receiving account/contract
            block_hash: Raw 32-byte hash of a recent block
            actions: Already-encoded actions

        Returns:
            Borsh-encoded transaction
        """
        if len(block_hash) != 32:
            raise ValueError(f"Block hash must be 32 bytes, got {len(block_hash)}")

        return b"".join([
            cls.encode_string(signer_id),
            cls.encode_public_key(public_key),
            cls.encode_u64(nonce),
            cls.encode_string(receiver_id),
            block_hash,
            cls.encode_u32(len(actions)),
            *actions,
        ])

    @classmethod
    def encode_signed_transaction(cls, transaction: bytes, signature: bytes) -> bytes:
        """Append an ed25519 signature to an encoded transaction."""
        if len(signature) != 64:
            raise ValueError(f"ed25519 signature must be 64 bytes, got {len(signature)}")
        return transaction + cls.encode_u8(cls.ED25519_KEY_TYPE) + signature


@dataclass(frozen=True, slots=True)
class SignedTransaction:
    """A signed, serialized transaction ready for broadcast."""

    tx_hash: str
    payload: bytes


class TransactionSigner:
    """Signs transactions with an ``ed25519:<base58>`` account key."""

    KEY_PREFIX = "ed25519:"

    def __init__(self, account_id: str, private_key: str):
        """
        Initialize the signer.

        Args:
            account_id: Account the key belongs to
            private_key: Secret key as ``ed25519:<base58>`` (64-byte keypair or 32-byte seed)

        Raises:
            ValueError: If the key is malformed
        """
        if not private_key.startswith(self.KEY_PREFIX):
            raise ValueError(f"Private key must start with '{self.KEY_PREFIX}'")

        raw = base58.b58decode(private_key[len(self.KEY_PREFIX):])
        if len(raw) not in (32, 64):
            raise ValueError(f"Private key must decode to 32 or 64 bytes, got {len(raw)}")

        self.account_id = account_id
        self._signing_key = nacl.signing.SigningKey(raw[:32])
        self.public_key: bytes = self._signing_key.verify_key.encode()

        if len(raw) == 64 and raw[32:] != self.public_key:
            raise ValueError("Private key does not match its embedded public key")

    @property
    def public_key_str(self) -> str:
        """Public key in ``ed25519:<base58>`` form, as used by the RPC."""
        return self.KEY_PREFIX + base58.b58encode(self.public_key).decode("ascii")

    def sign_transaction(self, transaction: bytes) -> SignedTransaction:
        """
        Sign an encoded transaction.

        The signature covers the SHA-256 digest of the transaction bytes; the
        same digest, base58-encoded, is the transaction hash.

        Args:
            transaction: Borsh-encoded transaction

        Returns:
            SignedTransaction with the hash and the serialized signed payload
        """
        digest = hashlib.sha256(transaction).digest()
        signature = self._signing_key.sign(digest).signature
        tx_hash = base58.b58encode(digest).decode("ascii")
        logger.debug(f"Signed transaction {tx_hash}")
        return SignedTransaction(
            tx_hash=tx_hash,
            payload=TransactionEncoder.encode_signed_transaction(transaction, signature),
        )
