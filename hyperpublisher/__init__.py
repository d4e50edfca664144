"""Publish a local directory as a replicated drive and keep it in sync.

create() initializes a drive for a seed, sync() publishes local changes
into it, and both return only once a remote peer has acknowledged every
block they wrote.
"""

from .config import Config, load_config
from .errors import (
    AckTimeout,
    InvalidArgument,
    MetadataUnreachable,
    NoPeerFound,
    PublisherError,
)
from .session import (
    CreateResult,
    SessionState,
    SyncResult,
    SyncSession,
    create,
    get_url,
    sync,
)

__version__ = "0.1.0"

__all__ = [
    "Config",
    "load_config",
    "AckTimeout",
    "InvalidArgument",
    "MetadataUnreachable",
    "NoPeerFound",
    "PublisherError",
    "CreateResult",
    "SessionState",
    "SyncResult",
    "SyncSession",
    "create",
    "get_url",
    "sync",
]
