import unittest

from cryptography.exceptions import InvalidTag

from pystreams import DefaultCryptoProvider
from pystreams.channels.exceptions import InvalidSignatureError, SignatureInvalid, UnsupportedCipherSuiteError
from pystreams.crypto.ciphersuites import SignatureScheme, get_ciphersuite_by_id, list_ciphersuite_ids


class TestCryptoProvider(unittest.TestCase):
    def test_suite_registry(self):
        self.assertEqual(list_ciphersuite_ids(), [0x0001, 0x0003, 0x0005, 0x0007])
        self.assertEqual(get_ciphersuite_by_id(0x0005).signature, SignatureScheme.ED448)
        self.assertIsNone(get_ciphersuite_by_id(0x0002))
        with self.assertRaises(UnsupportedCipherSuiteError):
            DefaultCryptoProvider(0x0002)

    def test_signature_error_alias(self):
        self.assertIs(InvalidSignatureError, SignatureInvalid)

    def test_aead_roundtrip(self):
        c = DefaultCryptoProvider()
        key = b"\x01" * c.aead_key_size()
        nonce = b"\x02" * c.aead_nonce_size()
        ct = c.aead_encrypt(key, nonce, b"hello", b"aad")
        self.assertEqual(c.aead_decrypt(key, nonce, ct, b"aad"), b"hello")
        with self.assertRaises(InvalidTag):
            c.aead_decrypt(key, nonce, ct, b"other aad")

    def test_keyed_hash_and_kdf(self):
        c = DefaultCryptoProvider()
        self.assertEqual(len(c.keyed_hash(b"k", b"d")), c.hash_len())
        self.assertNotEqual(c.keyed_hash(b"k", b"d"), c.keyed_hash(b"k2", b"d"))
        self.assertEqual(c.kdf(b"ikm", b"info", 24), c.kdf(b"ikm", b"info", 24))
        self.assertNotEqual(c.kdf(b"ikm", b"info", 24), c.kdf(b"ikm", b"info2", 24))

    def test_sign_verify_per_suite(self):
        for suite_id in list_ciphersuite_ids():
            with self.subTest(suite=hex(suite_id)):
                c = DefaultCryptoProvider(suite_id)
                sk, pk = c.derive_signature_key_pair(b"seed")
                sig = c.sign(sk, b"data")
                c.verify(pk, b"data", sig)
                with self.assertRaises(InvalidSignatureError):
                    c.verify(pk, b"data!", sig)

    def test_derivation_is_deterministic(self):
        c = DefaultCryptoProvider()
        self.assertEqual(c.derive_signature_key_pair(b"s"), c.derive_signature_key_pair(b"s"))
        self.assertNotEqual(c.derive_exchange_key_pair(b"s"), c.derive_exchange_key_pair(b"t"))
        self.assertNotEqual(c.derive_signature_key_pair(b"s")[1], c.derive_exchange_key_pair(b"s")[1])

    def test_hpke_roundtrip_per_suite(self):
        for suite_id in (0x0001, 0x0005):
            with self.subTest(suite=hex(suite_id)):
                c = DefaultCryptoProvider(suite_id)
                sk, pk = c.derive_exchange_key_pair(b"recipient")
                enc, ct = c.hpke_seal(pk, b"info", b"aad", b"session key")
                self.assertEqual(c.hpke_open(sk, enc, b"info", b"aad", ct), b"session key")
                other_sk, _ = c.derive_exchange_key_pair(b"someone else")
                with self.assertRaises(InvalidTag):
                    c.hpke_open(other_sk, enc, b"info", b"aad", ct)

    def test_suite_is_fixed_at_construction(self):
        c = DefaultCryptoProvider(0x0003)
        self.assertEqual(c.active_ciphersuite.suite_id, 0x0003)
        self.assertEqual(c.aead_key_size(), 32)
        self.assertFalse(hasattr(c, "set_ciphersuite"))
        with self.assertRaises(AttributeError):
            c.active_ciphersuite = get_ciphersuite_by_id(0x0001)


if __name__ == "__main__":
    unittest.main()
