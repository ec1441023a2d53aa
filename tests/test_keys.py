"""
Tests for btpc_wallet.keys — Dilithium5 keypairs.

Covers:
  - Deterministic derivation from entropy
  - Sign / verify, including tampered message and signature
  - Wiping the private key
"""

import unittest

from btpc_wallet.errors import WalletError
from btpc_wallet.keys import (
    PUBLIC_KEY_SIZE,
    SIGNATURE_SIZE,
    derive_keypair,
    generate_keypair,
    sign_message,
    verify_message,
)

ENTROPY = bytes(range(32))


class TestDerive(unittest.TestCase):

    @classmethod
    def setUpClass(cls):
        cls.kp = derive_keypair(ENTROPY)

    def test_sizes(self):
        self.assertEqual(len(self.kp.public_key), PUBLIC_KEY_SIZE)
        self.assertGreater(len(self.kp.private_key), 0)

    def test_deterministic(self):
        again = derive_keypair(ENTROPY)
        self.assertEqual(again.public_key, self.kp.public_key)
        self.assertEqual(again.private_key, self.kp.private_key)

    def test_different_entropy(self):
        other = derive_keypair(bytes(32))
        self.assertNotEqual(other.public_key, self.kp.public_key)

    def test_fingerprint(self):
        self.assertEqual(len(self.kp.fingerprint), 16)
        int(self.kp.fingerprint, 16)

    def test_repr_hides_private_key(self):
        self.assertNotIn("private_key", repr(self.kp))

    def test_random_generation_differs(self):
        self.assertNotEqual(generate_keypair().public_key, self.kp.public_key)


class TestSignVerify(unittest.TestCase):

    @classmethod
    def setUpClass(cls):
        cls.kp = derive_keypair(ENTROPY)
        cls.sig = sign_message(cls.kp, b"hello")

    def test_signature_size(self):
        self.assertEqual(len(self.sig), SIGNATURE_SIZE)

    def test_verifies(self):
        self.assertTrue(verify_message(self.kp.public_key, b"hello", self.sig))

    def test_wrong_message(self):
        self.assertFalse(verify_message(self.kp.public_key, b"hellO", self.sig))

    def test_tampered_signature(self):
        bad = bytearray(self.sig)
        bad[10] ^= 0x01
        self.assertFalse(verify_message(self.kp.public_key, b"hello", bytes(bad)))

    def test_truncated_inputs(self):
        self.assertFalse(verify_message(self.kp.public_key, b"hello", self.sig[:-1]))
        self.assertFalse(verify_message(self.kp.public_key[:-1], b"hello", self.sig))


class TestWipe(unittest.TestCase):

    def test_wipe_zeroes_and_blocks_signing(self):
        kp = derive_keypair(ENTROPY)
        buf = kp.private_key
        kp.wipe()
        self.assertTrue(kp.wiped)
        self.assertFalse(any(buf))
        with self.assertRaises(WalletError):
            sign_message(kp, b"x")
