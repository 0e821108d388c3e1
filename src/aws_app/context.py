from dataclasses import dataclass
from typing import Optional

from .backoff import RemoteClient, RetryPolicy
from .config import Config
from .database import CacheStore


@dataclass
class AppContext:
    """Handle passed to the Reconciler, Dispatcher and Aggregator."""

    config: Config
    store: CacheStore
    remote: RemoteClient

    @classmethod
    def from_config(
        cls, config: Config, remote: Optional[RemoteClient] = None
    ) -> "AppContext":
        """Build the Cache Store and the remote client described by the settings."""
        store = CacheStore(config.database_url)
        store.create_tables()
        if remote is None:
            policy = RetryPolicy(
                max_attempts=config.max_attempts,
                base_delay=config.base_delay,
                max_delay=config.max_delay,
            )
            remote = RemoteClient(
                region=config.aws_region_name,
                policy=policy,
                max_concurrency=config.max_concurrency,
                call_timeout=config.call_timeout,
            )
        return cls(config=config, store=store, remote=remote)

    def close(self):
        self.store.dispose()
