#!/usr/bin/env python3
"""Unit tests for transaction encoding and signing."""

import hashlib
import struct

import base58
import nacl.signing
import pytest

from oracle_responder.utils.transaction_encoder import TransactionEncoder, TransactionSigner

from conftest import make_private_key


class TestTransactionEncoder:
    """Tests for Borsh encoding."""

    def test_integers_little_endian(self):
        assert TransactionEncoder.encode_u32(1) == b"\x01\x00\x00\x00"
        assert TransactionEncoder.encode_u64(2**40) == (2**40).to_bytes(8, "little")
        assert TransactionEncoder.encode_u128(300_000) == (300_000).to_bytes(16, "little")

    def test_u128_out_of_range(self):
        with pytest.raises(ValueError, match="u128"):
            TransactionEncoder.encode_u128(2**128)
        with pytest.raises(ValueError, match="u128"):
            TransactionEncoder.encode_u128(-1)

    def test_string_length_prefixed(self):
        assert TransactionEncoder.encode_string("submit") == b"\x06\x00\x00\x00submit"

    def test_function_call_layout(self):
        action = TransactionEncoder.encode_function_call("submit", b"{}", 300_000_000_000_000, 0)

        assert action[0] == 2
        assert action[1:11] == b"\x06\x00\x00\x00submit"
        assert action[11:17] == b"\x02\x00\x00\x00{}"
        assert struct.unpack("<Q", action[17:25])[0] == 300_000_000_000_000
        assert action[25:] == b"\x00" * 16

    def test_transaction_layout(self):
        public_key = b"\x07" * 32
        block_hash = b"\x09" * 32
        action = TransactionEncoder.encode_function_call("submit", b"{}", 1, 0)

        tx = TransactionEncoder.encode_transaction(
            signer_id="op.testnet",
            public_key=public_key,
            nonce=5,
            receiver_id="producer.testnet",
            block_hash=block_hash,
            actions=[action],
        )

        expected = b"".join([
            b"\x0a\x00\x00\x00op.testnet",
            b"\x00" + public_key,
            struct.pack("<Q", 5),
            b"\x10\x00\x00\x00producer.testnet",
            block_hash,
            b"\x01\x00\x00\x00",
            action,
        ])
        assert tx == expected

    def test_transaction_rejects_bad_block_hash(self):
        with pytest.raises(ValueError, match="Block hash must be 32 bytes"):
            TransactionEncoder.encode_transaction("a.testnet", b"\x00" * 32, 1, "b.testnet", b"\x00", [])

    def test_signed_transaction_appends_signature(self):
        signed = TransactionEncoder.encode_signed_transaction(b"tx", b"\x01" * 64)
        assert signed == b"tx\x00" + b"\x01" * 64

    def test_signed_transaction_rejects_short_signature(self):
        with pytest.raises(ValueError, match="64 bytes"):
            TransactionEncoder.encode_signed_transaction(b"tx", b"\x01" * 10)


class TestTransactionSigner:
    """Tests for ed25519 signing."""

    def test_public_key_from_keypair(self):
        signer = TransactionSigner("op.testnet", make_private_key(b"\x03" * 32))
        expected = nacl.signing.SigningKey(b"\x03" * 32).verify_key.encode()
        assert signer.public_key == expected
        assert signer.public_key_str == "ed25519:" + base58.b58encode(expected).decode()

    def test_seed_only_key(self):
        seed_key = "ed25519:" + base58.b58encode(b"\x03" * 32).decode()
        signer = TransactionSigner("op.testnet", seed_key)
        assert signer.public_key == nacl.signing.SigningKey(b"\x03" * 32).verify_key.encode()

    def test_mismatched_keypair_rejected(self):
        raw = b"\x03" * 32 + b"\x04" * 32
        with pytest.raises(ValueError, match="does not match"):
            TransactionSigner("op.testnet", "ed25519:" + base58.b58encode(raw).decode())

    def test_missing_prefix_rejected(self):
        with pytest.raises(ValueError, match="must start with"):
            TransactionSigner("op.testnet", "secp256k1:abc")

    def test_sign_transaction(self):
        signer = TransactionSigner("op.testnet", make_private_key())
        tx = b"unsigned transaction bytes"

        signed = signer.sign_transaction(tx)

        digest = hashlib.sha256(tx).digest()
        assert signed.tx_hash == base58.b58encode(digest).decode()
        assert signed.payload[:len(tx)] == tx
        assert signed.payload[len(tx)] == 0
        signature = signed.payload[len(tx) + 1:]
        nacl.signing.VerifyKey(signer.public_key).verify(digest, signature)
