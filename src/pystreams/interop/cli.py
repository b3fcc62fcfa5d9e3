"""Command line helpers for inspecting pystreams addresses and envelopes."""
from __future__ import annotations

import argparse
import binascii
import sys

from ..channels.config import UserConfig
from ..channels.exceptions import StreamsError
from ..codec.envelope import decode_envelope
from ..crypto.default_crypto_provider import DefaultCryptoProvider
from ..protocol.address import (
    Address,
    announcement_address,
    derive_channel_instance,
    derive_next_address,
)


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="pystreams-cli")
    p.add_argument("--suite", type=lambda s: int(s, 0), default=None,
                   help="channel ciphersuite id (default: PYSTREAMS_SUITE_ID or 0x0001)")
    sub = p.add_subparsers(dest="cmd", required=True)
    addr = sub.add_parser("address")
    addr_sub = addr.add_subparsers(dest="op", required=True)
    a1 = addr_sub.add_parser("parse")
    a1.add_argument("address")  # input: "<instance_id>:<message_id>" hex
    a2 = addr_sub.add_parser("derive")
    a2.add_argument("author_public_key")  # hex
    a2.add_argument("nonce", type=lambda s: int(s, 0))
    a2.add_argument("--publisher", help="publisher public key (hex); omit for the announcement link")
    a2.add_argument("--seq", type=int, default=2)
    env = sub.add_parser("envelope")
    env_sub = env.add_subparsers(dest="op", required=True)
    e1 = env_sub.add_parser("decode")
    e1.add_argument("hex")
    return p


def _crypto(args: argparse.Namespace) -> DefaultCryptoProvider:
    suite = args.suite if args.suite is not None else UserConfig.from_env().suite_id
    return DefaultCryptoProvider(suite)


def _run(args: argparse.Namespace) -> int:
    if args.cmd == "address" and args.op == "parse":
        a = Address.parse(args.address)
        print(f"instance_id: {a.instance_id.hex()}")
        print(f"message_id:  {a.message_id.hex()}")
        return 0
    if args.cmd == "address" and args.op == "derive":
        crypto = _crypto(args)
        channel = derive_channel_instance(crypto, binascii.unhexlify(args.author_public_key), args.nonce)
        if args.publisher is None:
            print(announcement_address(crypto, channel))
        else:
            print(derive_next_address(crypto, channel, binascii.unhexlify(args.publisher), args.seq))
        return 0
    if args.cmd == "envelope" and args.op == "decode":
        e = decode_envelope(binascii.unhexlify(args.hex.strip()))
        print(f"type:       {e.msg_type.name}")
        print(f"link:       {e.link}")
        print(f"publisher:  {e.publisher_id.hex()}")
        print(f"seq:        {e.seq}")
        for prev in e.previous_links:
            print(f"previous:   {prev}")
        print(f"public:     {len(e.public_payload)} bytes")
        print(f"masked:     {len(e.masked_payload)} bytes")
        print(f"signed:     {'yes' if e.is_signed else 'no'}")
        print(f"key wraps:  {len(e.key_wraps)}")
        return 0
    return 2


def main(argv: list[str] | None = None) -> int:
    p = build_parser()
    args = p.parse_args(argv)
    try:
        return _run(args)
    except (StreamsError, binascii.Error) as e:
        print(f"error: {e}", file=sys.stderr)
        return 1
