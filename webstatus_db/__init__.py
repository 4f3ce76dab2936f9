from .client import Client
from .config import BatchConfig, ClientConfig, SearchConfig
from .optional import UNSET, OptionallySet
from .schema import create_schema

__all__ = [
    "Client",
    "ClientConfig",
    "BatchConfig",
    "SearchConfig",
    "OptionallySet",
    "UNSET",
    "create_schema",
]
