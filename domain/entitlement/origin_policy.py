"""
网络来源匹配策略与设备指纹

绑定后的授权要求后续访问的网络来源满足所配置的策略：
- exact：规范化后的 IP 完全一致
- subnet：落在同一网段，前缀长度必须显式配置（IPv4/IPv6 分别配置）
"""
from __future__ import annotations

import hashlib
import ipaddress
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Union

_IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]


def _parse_ip(origin: str) -> Optional[_IPAddress]:
    try:
        ip = ipaddress.ip_address((origin or "").strip())
    except ValueError:
        return None
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        return ip.ipv4_mapped
    return ip


class OriginPolicy(ABC):
    """来源匹配策略"""

    name: str = "base"

    @abstractmethod
    def normalize(self, origin: str) -> str:
        """把原始来源转换为参与比较（和指纹计算）的规范形式"""
        ...

    def matches(self, bound_origin: str, current_origin: str) -> bool:
        return self.normalize(bound_origin) == self.normalize(current_origin)


class ExactOriginPolicy(OriginPolicy):
    name = "exact"

    def normalize(self, origin: str) -> str:
        ip = _parse_ip(origin)
        if ip is None:
            return (origin or "").strip().lower()
        return ip.compressed


class SubnetOriginPolicy(OriginPolicy):
    name = "subnet"

    def __init__(self, ipv4_prefix: int, ipv6_prefix: int) -> None:
        if not 0 < ipv4_prefix <= 32:
            raise ValueError(f"ipv4 prefix length out of range: {ipv4_prefix}")
        if not 0 < ipv6_prefix <= 128:
            raise ValueError(f"ipv6 prefix length out of range: {ipv6_prefix}")
        self.ipv4_prefix = ipv4_prefix
        self.ipv6_prefix = ipv6_prefix

    def normalize(self, origin: str) -> str:
        ip = _parse_ip(origin)
        if ip is None:
            return (origin or "").strip().lower()
        prefix = self.ipv4_prefix if ip.version == 4 else self.ipv6_prefix
        return ipaddress.ip_network(f"{ip}/{prefix}", strict=False).with_prefixlen


def build_origin_policy(
    mode: str,
    *,
    ipv4_prefix: Optional[int] = None,
    ipv6_prefix: Optional[int] = None,
) -> OriginPolicy:
    mode = (mode or "exact").lower()
    if mode == "exact":
        return ExactOriginPolicy()
    if mode == "subnet":
        if ipv4_prefix is None or ipv6_prefix is None:
            raise ValueError("subnet origin policy requires explicit ipv4_prefix and ipv6_prefix")
        return SubnetOriginPolicy(ipv4_prefix, ipv6_prefix)
    raise ValueError(f"Unknown origin policy: {mode}")


@dataclass(frozen=True)
class ClientCharacteristics:
    """参与指纹计算的客户端特征（来自请求头）"""
    user_agent: str = ""
    accept_language: str = ""
    accept_encoding: str = ""
    accept: str = ""


def compute_fingerprint(client: ClientCharacteristics, origin: str, policy: OriginPolicy) -> str:
    """不可逆的设备指纹：SHA-256 前 32 位十六进制"""
    raw = "|".join(
        [
            client.user_agent,
            client.accept_language,
            client.accept_encoding,
            client.accept,
            policy.normalize(origin),
        ]
    )
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:32]
