import dataclasses
import unittest

from pystreams import DefaultCryptoProvider, Skipped
from pystreams.channels.exceptions import EmptyKeyload
from pystreams.codec.envelope import decode_envelope, encode_envelope
from pystreams.protocol.address import announcement_address, derive_channel_instance, derive_next_address
from pystreams.protocol.identity import Identity
from pystreams.protocol.keyload import Branch, KeyStore, build_keyload, process_keyload
from pystreams.protocol.messages import verify_envelope
from pystreams.protocol.psk import PskStore, psk_id_from_secret


class TestKeyload(unittest.TestCase):
    def setUp(self):
        self.crypto = DefaultCryptoProvider()
        self.author = Identity(self.crypto, b"author")
        self.alice = Identity(self.crypto, b"alice")
        self.bob = Identity(self.crypto, b"bob")
        channel = derive_channel_instance(self.crypto, self.author.public_key, 1)
        self.ann = announcement_address(self.crypto, channel)
        self.link = derive_next_address(self.crypto, channel, self.author.public_key, 2)

    def tearDown(self):
        for ident in (self.author, self.alice, self.bob):
            ident.close()

    def _build(self, recipients=(), psks=()):
        env, branch = build_keyload(
            self.crypto, self.author, self.link, 2, self.ann, list(recipients), list(psks)
        )
        return decode_envelope(encode_envelope(env)), branch

    def test_included_recipient_recovers_key(self):
        env, branch = self._build([(self.alice.public_key, self.alice.exchange_public_key)])
        verify_envelope(self.crypto, env, self.author.public_key)
        out = process_keyload(self.crypto, env, self.alice, PskStore(self.crypto))
        self.assertIsInstance(out, Branch)
        self.assertEqual(out.session_key, branch.session_key)
        self.assertEqual(out.branch_id, self.link)
        self.assertIn(self.alice.public_key, out.authorized_pubkeys)

    def test_excluded_recipient_is_skipped(self):
        env, _ = self._build([(self.alice.public_key, self.alice.exchange_public_key)])
        out = process_keyload(self.crypto, env, self.bob, PskStore(self.crypto))
        self.assertIsInstance(out, Skipped)
        self.assertEqual(out.link, self.link)

    def test_psk_recipient(self):
        secret = b"\x42" * 32
        psk_id = psk_id_from_secret(self.crypto, secret)
        env, branch = self._build(psks=[(psk_id, secret)])
        store = PskStore(self.crypto)
        self.assertIsInstance(process_keyload(self.crypto, env, self.bob, store), Skipped)
        self.assertEqual(store.store(secret), psk_id)
        out = process_keyload(self.crypto, env, self.bob, store)
        self.assertEqual(out.session_key, branch.session_key)
        self.assertEqual(len(psk_id), 16)

    def test_fresh_key_per_keyload(self):
        recipients = [(self.alice.public_key, self.alice.exchange_public_key)]
        _, b1 = self._build(recipients)
        _, b2 = self._build(recipients)
        self.assertNotEqual(b1.session_key, b2.session_key)

    def test_wrap_not_readable_at_other_link(self):
        env, _ = self._build([(self.alice.public_key, self.alice.exchange_public_key)])
        moved = dataclasses.replace(env, link=self.ann)
        self.assertIsInstance(process_keyload(self.crypto, moved, self.alice, PskStore(self.crypto)), Skipped)

    def test_empty_keyload(self):
        with self.assertRaises(EmptyKeyload):
            self._build()


class TestKeyStore(unittest.TestCase):
    def test_clear_wipes(self):
        crypto = DefaultCryptoProvider()
        channel = derive_channel_instance(crypto, b"a", 1)
        link = announcement_address(crypto, channel)
        ks = KeyStore()
        ks.add(Branch(link, b"\x01" * 16))
        self.assertEqual(ks.session_key(link), b"\x01" * 16)
        ks.clear()
        self.assertIsNone(ks.session_key(link))
        self.assertEqual(len(ks), 0)


if __name__ == "__main__":
    unittest.main()
