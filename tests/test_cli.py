import io
import unittest
from contextlib import redirect_stderr, redirect_stdout

from tests.helpers import make_channel

from pystreams import DefaultCryptoProvider
from pystreams.interop.cli import main
from pystreams.protocol.address import announcement_address, derive_channel_instance, derive_next_address


def _run(argv):
    out, err = io.StringIO(), io.StringIO()
    with redirect_stdout(out), redirect_stderr(err):
        code = main(argv)
    return code, out.getvalue(), err.getvalue()


class TestCli(unittest.TestCase):
    def test_address_parse(self):
        text = "ab" * 32 + ":" + "cd" * 12
        code, out, _ = _run(["address", "parse", text])
        self.assertEqual(code, 0)
        self.assertIn("ab" * 32, out)
        self.assertIn("cd" * 12, out)

    def test_address_parse_malformed(self):
        code, out, err = _run(["address", "parse", "not-an-address"])
        self.assertEqual(code, 1)
        self.assertEqual(out, "")
        self.assertTrue(err.startswith("error:"))

    def test_address_derive(self):
        crypto = DefaultCryptoProvider(0x0001)
        author_pk = b"\x01" * 32
        channel = derive_channel_instance(crypto, author_pk, 9)

        code, out, _ = _run(["--suite", "0x0001", "address", "derive", author_pk.hex(), "9"])
        self.assertEqual(code, 0)
        self.assertEqual(out.strip(), str(announcement_address(crypto, channel)))

        code, out, _ = _run(
            ["--suite", "1", "address", "derive", author_pk.hex(), "9", "--publisher", "02" * 32, "--seq", "4"]
        )
        self.assertEqual(code, 0)
        self.assertEqual(out.strip(), str(derive_next_address(crypto, channel, b"\x02" * 32, 4)))

    def test_envelope_decode(self):
        transport, author, ann = make_channel()
        code, out, _ = _run(["--suite", "1", "envelope", "decode", transport.fetch(ann).hex()])
        author.close()
        self.assertEqual(code, 0)
        self.assertIn("ANNOUNCE", out)
        self.assertIn(str(ann), out)
        self.assertIn("signed:     yes", out)

    def test_envelope_decode_garbage(self):
        code, _, err = _run(["envelope", "decode", "0102"])
        self.assertEqual(code, 1)
        self.assertIn("error:", err)


if __name__ == "__main__":
    unittest.main()
