"""Channel settings for a single user, with environment and .env loading."""
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv

from .exceptions import ConfigurationError
from ..crypto.ciphersuites import get_ciphersuite_by_id
from ..protocol.data_structures import BranchingMode

DEFAULT_SUITE_ID = 0x0001


@dataclass
class UserConfig:
    """Per-user channel settings."""

    suite_id: int = DEFAULT_SUITE_ID
    branching: BranchingMode = BranchingMode.SINGLE
    # None draws a random nonce at announcement time
    channel_nonce: Optional[int] = None
    auto_accept_subscribers: bool = True
    max_fetch_rounds: int = 10_000

    def __post_init__(self) -> None:
        if get_ciphersuite_by_id(self.suite_id) is None:
            raise ConfigurationError(f"unknown channel ciphersuite id {self.suite_id:#06x}")
        if self.max_fetch_rounds < 1:
            raise ConfigurationError("max_fetch_rounds must be at least 1")
        if self.channel_nonce is not None and not 0 <= self.channel_nonce < (1 << 64):
            raise ConfigurationError("channel_nonce must fit in 64 bits")

    @classmethod
    def recommended(cls) -> "UserConfig":
        """Balanced defaults suitable for most applications."""
        return cls(
            suite_id=DEFAULT_SUITE_ID,
            branching=BranchingMode.SINGLE,
            auto_accept_subscribers=True,
            max_fetch_rounds=10_000,
        )

    @classmethod
    def from_env(
        cls,
        prefix: str = "PYSTREAMS_",
        env: Optional[Mapping[str, str]] = None,
        dotenv_path: Optional[Path] = None,
    ) -> "UserConfig":
        """Build a config from ``<prefix>*`` environment variables.

        A ``.env`` file (``dotenv_path`` or one in the working directory) is
        loaded first without overriding variables already set. Recognized
        keys: SUITE_ID (decimal or 0x hex), BRANCHING (single/multi),
        CHANNEL_NONCE, AUTO_ACCEPT (true/false), MAX_FETCH_ROUNDS.
        """
        if env is None:
            path = dotenv_path or Path.cwd() / ".env"
            if path.is_file():
                load_dotenv(path, override=False)
            env = os.environ
        cfg = cls.recommended()

        def get(key: str) -> Optional[str]:
            value = env.get(prefix + key)
            return value.strip() if value is not None and value.strip() else None

        try:
            suite = get("SUITE_ID")
            if suite is not None:
                cfg.suite_id = int(suite, 0)
            branching = get("BRANCHING")
            if branching is not None:
                cfg.branching = BranchingMode[branching.upper()]
            nonce = get("CHANNEL_NONCE")
            if nonce is not None:
                cfg.channel_nonce = int(nonce, 0)
            auto = get("AUTO_ACCEPT")
            if auto is not None:
                cfg.auto_accept_subscribers = auto.lower() in ("1", "true", "yes", "on")
            rounds = get("MAX_FETCH_ROUNDS")
            if rounds is not None:
                cfg.max_fetch_rounds = int(rounds)
        except (KeyError, ValueError) as e:
            raise ConfigurationError(f"invalid {prefix}* setting: {e}") from e
        cfg.__post_init__()
        return cfg
