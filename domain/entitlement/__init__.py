from .entity import AccessGrant, AccessDecision
from .repository import AccessGrantRepository
from .origin_policy import (
    OriginPolicy,
    ExactOriginPolicy,
    SubnetOriginPolicy,
    ClientCharacteristics,
    build_origin_policy,
    compute_fingerprint,
)

__all__ = [
    "AccessGrant",
    "AccessDecision",
    "AccessGrantRepository",
    "OriginPolicy",
    "ExactOriginPolicy",
    "SubnetOriginPolicy",
    "ClientCharacteristics",
    "build_origin_policy",
    "compute_fingerprint",
]
