import unittest

from pystreams import Address, DefaultCryptoProvider
from pystreams.channels.exceptions import MalformedAddress
from pystreams.protocol.address import (
    ADDRESS_SIZE,
    announcement_address,
    derive_branch_address,
    derive_channel_instance,
    derive_next_address,
)


class TestAddressDerivation(unittest.TestCase):
    def setUp(self):
        self.crypto = DefaultCryptoProvider()
        self.channel = derive_channel_instance(self.crypto, b"\x01" * 32, 42)

    def test_uniqueness_over_10000_samples(self):
        seen = set()
        for p in range(100):
            publisher = p.to_bytes(32, "big")
            for seq in range(100):
                seen.add(derive_next_address(self.crypto, self.channel, publisher, seq))
        self.assertEqual(len(seen), 10_000)

    def test_derivation_is_deterministic(self):
        a = derive_next_address(self.crypto, self.channel, b"pk", 3)
        b = derive_next_address(DefaultCryptoProvider(), self.channel, b"pk", 3)
        self.assertEqual(a, b)
        self.assertEqual(a.instance_id, self.channel.instance_id)

    def test_instance_bound_to_key_and_nonce(self):
        self.assertNotEqual(self.channel, derive_channel_instance(self.crypto, b"\x02" * 32, 42))
        self.assertNotEqual(self.channel, derive_channel_instance(self.crypto, b"\x01" * 32, 43))
        self.assertEqual(self.channel, derive_channel_instance(self.crypto, b"\x01" * 32, 42))

    def test_announcement_distinct_from_publisher_slots(self):
        ann = announcement_address(self.crypto, self.channel)
        self.assertNotEqual(ann, derive_next_address(self.crypto, self.channel, b"\x01" * 32, 0))

    def test_branch_addresses_depend_on_root(self):
        root1 = derive_next_address(self.crypto, self.channel, b"a", 2)
        root2 = derive_next_address(self.crypto, self.channel, b"a", 3)
        b1 = derive_branch_address(self.crypto, root1, b"pk", 2)
        b2 = derive_branch_address(self.crypto, root2, b"pk", 2)
        self.assertNotEqual(b1, b2)
        self.assertNotEqual(b1, derive_next_address(self.crypto, self.channel, b"pk", 2))


class TestAddressText(unittest.TestCase):
    def setUp(self):
        crypto = DefaultCryptoProvider()
        channel = derive_channel_instance(crypto, b"\x07" * 32, 1)
        self.addr = derive_next_address(crypto, channel, b"pk", 9)

    def test_string_roundtrip(self):
        text = self.addr.to_string()
        inst, msg = text.split(":")
        self.assertEqual((len(inst), len(msg)), (64, 24))
        self.assertEqual(Address.parse(text), self.addr)
        self.assertEqual(str(self.addr), text)

    def test_bytes_roundtrip(self):
        raw = self.addr.serialize()
        self.assertEqual(len(raw), ADDRESS_SIZE)
        self.assertEqual(Address.deserialize(raw), self.addr)

    def test_malformed(self):
        text = self.addr.to_string()
        inst, msg = text.split(":")
        bad = [
            inst + msg,
            f"{inst}:{msg}:00",
            f"{inst[:-2]}:{msg}",
            f"{inst}:{msg}00",
            f"{'zz' + inst[2:]}:{msg}",
            "",
        ]
        for value in bad:
            with self.subTest(value=value):
                with self.assertRaises(MalformedAddress):
                    Address.parse(value)

    def test_wrong_byte_lengths(self):
        with self.assertRaises(MalformedAddress):
            Address(b"\x00" * 31, b"\x00" * 12)
        with self.assertRaises(MalformedAddress):
            Address.deserialize(b"\x00" * (ADDRESS_SIZE - 1))


if __name__ == "__main__":
    unittest.main()
