import unittest

from tests.helpers import FlakyTransport, join, make_channel

from pystreams import BranchingMode, MessageType, Skipped, Subscriber
from pystreams.protocol.address import derive_branch_address
from pystreams.protocol.sequencing import FIRST_SEQ


class TestE2EMultiBranch(unittest.TestCase):
    def setUp(self):
        self.transport, self.author, self.ann = make_channel(BranchingMode.MULTI)
        self.alice = join(self.author, self.transport, self.ann, b"alice seed")

    def tearDown(self):
        self.author.close()
        self.alice.close()

    def test_subscriber_learns_branching_from_announcement(self):
        self.assertTrue(self.alice.is_multi_branching())

    def test_scenario_with_sequences(self):
        keyload = self.author.send_keyload_for_everyone(self.ann)
        self.assertEqual(
            keyload, derive_branch_address(self.author.crypto, self.ann, self.author.public_key, FIRST_SEQ)
        )
        self.assertEqual(
            self.author.last_sequence_link,
            self.author.sequencing.chain_address(self.author.public_key, FIRST_SEQ),
        )

        got = self.alice.sync_state()
        self.assertEqual([m.link for m in got], [keyload])

        sent = self.alice.send_signed_packet(keyload, b"p", b"m")
        self.assertEqual(
            self.alice.last_sequence_link,
            self.alice.sequencing.chain_address(self.alice.public_key, FIRST_SEQ),
        )
        result = self.author.sync_state()
        self.assertEqual(len(result), 1)
        msg = result.messages[0]
        self.assertEqual(msg.link, sent)
        self.assertEqual((msg.public_payload, msg.masked_payload), (b"p", b"m"))
        self.assertEqual(msg.previous_link, keyload)
        self.assertEqual(msg.publisher_id, self.alice.public_key)

    def test_receive_sequence_directly(self):
        keyload = self.author.send_keyload_for_everyone(self.ann)
        out = self.alice.receive_sequence(self.author.last_sequence_link)
        self.assertEqual(out.link, keyload)
        self.assertEqual(out.msg_type, MessageType.KEYLOAD)
        self.assertEqual(self.alice.sync_state().messages, [])

    def test_ordering_per_publisher(self):
        keyload = self.author.send_keyload_for_everyone(self.ann)
        sent = [self.author.send_signed_packet(keyload, b"", f"m{i}".encode()) for i in range(5)]
        result = self.alice.sync_state()
        packets = [m for m in result if m.msg_type == MessageType.SIGNED_PACKET]
        self.assertEqual([m.link for m in packets], sent)
        self.assertEqual([m.seq for m in packets], list(range(FIRST_SEQ + 1, FIRST_SEQ + 6)))
        self.assertTrue(all(m.previous_link == keyload for m in packets))

    def test_public_branch_is_readable_without_keyload(self):
        link = self.author.send_signed_packet(None, b"hello", b"for everyone")
        reader = Subscriber(b"reader", self.transport)
        reader.receive_announcement(self.ann)
        got = reader.sync_state()
        self.assertEqual([(m.link, m.masked_payload) for m in got], [(link, b"for everyone")])
        reader.close()

    def test_branches_are_isolated(self):
        bob = join(self.author, self.transport, self.ann, b"bob seed")
        for_alice = self.author.send_keyload(self.ann, pubkeys=[self.alice.public_key])
        for_bob = self.author.send_keyload(self.ann, pubkeys=[bob.public_key])
        self.author.send_signed_packet(for_alice, b"", b"alice only")
        bob_packet = self.author.send_signed_packet(for_bob, b"", b"bob only")

        alice_got = self.alice.sync_state()
        self.assertEqual([m.masked_payload for m in alice_got if m.msg_type == MessageType.SIGNED_PACKET],
                         [b"alice only"])
        self.assertEqual([s.link for s in alice_got.skipped], [for_bob, bob_packet])

        bob_got = bob.sync_state()
        self.assertEqual([m.masked_payload for m in bob_got if m.msg_type == MessageType.SIGNED_PACKET],
                         [b"bob only"])
        bob.close()

    def test_subscriber_branches_advance_independently(self):
        bob = join(self.author, self.transport, self.ann, b"bob seed")
        keyload = self.author.send_keyload_for_everyone(self.ann)
        self.alice.sync_state()
        bob.sync_state()
        a1 = self.alice.send_signed_packet(keyload, b"", b"a1")
        b1 = bob.send_signed_packet(keyload, b"", b"b1")
        a2 = self.alice.send_signed_packet(keyload, b"", b"a2")

        self.assertEqual(a1, derive_branch_address(self.alice.crypto, keyload, self.alice.public_key, FIRST_SEQ))
        self.assertEqual(b1, derive_branch_address(bob.crypto, keyload, bob.public_key, FIRST_SEQ))

        got = self.author.sync_state()
        self.assertEqual(sorted(m.masked_payload for m in got), [b"a1", b"a2", b"b1"])
        alice_msgs = [m.link for m in got if m.publisher_id == self.alice.public_key]
        self.assertEqual(alice_msgs, [a1, a2])
        bob.close()

    def test_pending_sequence_is_flushed(self):
        transport = FlakyTransport()
        _, author, ann = make_channel(BranchingMode.MULTI, transport, b"flaky author")
        sub = join(author, transport, ann, b"flaky sub")
        keyload = author.send_keyload_for_everyone(ann)
        sub.sync_state()

        transport.fail_next(1, skip=1)
        link = author.send_signed_packet(keyload, b"", b"late")
        self.assertEqual(author.pending_count, 1)
        self.assertEqual(sub.sync_state().messages, [])

        self.assertEqual(author.flush_pending(), 1)
        self.assertEqual(author.pending_count, 0)
        self.assertEqual([m.link for m in sub.sync_state()], [link])
        author.close()
        sub.close()

    def test_next_send_flushes_pending(self):
        transport = FlakyTransport()
        _, author, ann = make_channel(BranchingMode.MULTI, transport, b"flaky author")
        transport.fail_next(1, skip=1)
        first = author.send_signed_packet(None, b"", b"one")
        self.assertEqual(author.pending_count, 1)
        second = author.send_signed_packet(None, b"", b"two")
        self.assertEqual(author.pending_count, 0)

        reader = Subscriber(b"reader", transport)
        reader.receive_announcement(ann)
        self.assertEqual([m.link for m in reader.sync_state()], [first, second])
        author.close()
        reader.close()

    def test_gen_next_msg_addresses(self):
        candidates = self.alice.gen_next_msg_addresses()
        self.author.send_keyload_for_everyone(self.ann)
        self.assertEqual(candidates[self.author.public_key], self.author.last_sequence_link)

    def test_reset_state_rereads_channel(self):
        keyload = self.author.send_keyload_for_everyone(self.ann)
        packet = self.author.send_tagged_packet(keyload, b"", b"tagged")
        first = self.alice.sync_state()
        self.alice.reset_state()
        second = self.alice.sync_state()
        self.assertEqual([m.link for m in first], [keyload, packet])
        self.assertEqual([m.link for m in second], [keyload, packet])
        self.assertEqual(second.messages[1].masked_payload, b"tagged")

    def test_backward_fetch_from_sequence(self):
        keyload = self.author.send_keyload_for_everyone(self.ann)
        self.author.send_signed_packet(keyload, b"", b"x")
        self.alice.sync_state()
        prev = self.alice.fetch_prev_msgs(self.author.last_sequence_link, 5)
        self.assertEqual([m.link for m in prev], [keyload, self.ann])
        self.assertNotIsInstance(prev[0], Skipped)


if __name__ == "__main__":
    unittest.main()
