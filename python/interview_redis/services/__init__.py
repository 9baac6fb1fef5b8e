from .id_issuer import AsyncIdentifierIssuer, IdentifierIssuer, compose_id, split_id
from .lookup import AsyncStampedeSafeLookup, StampedeSafeLookup

__all__ = [
    "IdentifierIssuer",
    "AsyncIdentifierIssuer",
    "compose_id",
    "split_id",
    "StampedeSafeLookup",
    "AsyncStampedeSafeLookup",
]
