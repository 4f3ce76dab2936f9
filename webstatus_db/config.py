from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Mapping, Optional


def _env_int(environ: Mapping[str, str], name: str, default: Optional[int]) -> Optional[int]:
    raw = environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc


@dataclass
class BatchConfig:
    batch_size: int = 5_000
    batch_writers: int = 8
    # Upsert counts below this value are written in one transaction.
    batch_write_threshold: Optional[int] = None

    def __post_init__(self) -> None:
        """Validate configuration parameters."""
        if self.batch_size <= 0:
            raise ValueError("batch_size must be > 0")
        if self.batch_writers <= 0:
            raise ValueError("batch_writers must be > 0")
        if self.batch_write_threshold is None:
            self.batch_write_threshold = self.batch_size
        if self.batch_write_threshold <= 0:
            raise ValueError("batch_write_threshold must be > 0")


@dataclass
class SearchConfig:
    max_owned_searches_per_user: int = 25
    max_bookmarks_per_user: int = 25
    max_subscriptions_per_user: int = 25

    def __post_init__(self) -> None:
        if self.max_owned_searches_per_user < 0:
            raise ValueError("max_owned_searches_per_user must be >= 0")
        if self.max_bookmarks_per_user < 0:
            raise ValueError("max_bookmarks_per_user must be >= 0")
        if self.max_subscriptions_per_user < 0:
            raise ValueError("max_subscriptions_per_user must be >= 0")


@dataclass
class ClientConfig:
    batch: BatchConfig = field(default_factory=BatchConfig)
    search: SearchConfig = field(default_factory=SearchConfig)
    # Ceiling on buffered mutations per transaction. None disables the check.
    max_mutations_per_transaction: Optional[int] = 80_000

    def __post_init__(self) -> None:
        if self.max_mutations_per_transaction is not None and self.max_mutations_per_transaction <= 0:
            raise ValueError("max_mutations_per_transaction must be > 0 when set")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "ClientConfig":
        """
        Build a config from WEBSTATUS_DB_* variables.

        Unset or empty variables keep their defaults.
        """
        env = os.environ if environ is None else environ
        batch_defaults = BatchConfig()
        search_defaults = SearchConfig()
        batch_size = _env_int(env, "WEBSTATUS_DB_BATCH_SIZE", batch_defaults.batch_size)
        return cls(
            batch=BatchConfig(
                batch_size=batch_size,
                batch_writers=_env_int(env, "WEBSTATUS_DB_BATCH_WRITERS", batch_defaults.batch_writers),
                batch_write_threshold=_env_int(env, "WEBSTATUS_DB_BATCH_WRITE_THRESHOLD", None),
            ),
            search=SearchConfig(
                max_owned_searches_per_user=_env_int(
                    env,
                    "WEBSTATUS_DB_MAX_OWNED_SEARCHES_PER_USER",
                    search_defaults.max_owned_searches_per_user,
                ),
                max_bookmarks_per_user=_env_int(
                    env,
                    "WEBSTATUS_DB_MAX_BOOKMARKS_PER_USER",
                    search_defaults.max_bookmarks_per_user,
                ),
                max_subscriptions_per_user=_env_int(
                    env,
                    "WEBSTATUS_DB_MAX_SUBSCRIPTIONS_PER_USER",
                    search_defaults.max_subscriptions_per_user,
                ),
            ),
            max_mutations_per_transaction=_env_int(
                env,
                "WEBSTATUS_DB_MAX_MUTATIONS_PER_TRANSACTION",
                cls.max_mutations_per_transaction,
            ),
        )
