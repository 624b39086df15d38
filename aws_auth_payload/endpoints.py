"""
STS region/endpoint table.

The table is an immutable value built once at import time. Components take it
as a constructor argument (defaulting to ``DEFAULT_STS_ENDPOINTS``), so tests can
hand in a smaller or fictional table.

Usage:
    from aws_auth_payload.endpoints import DEFAULT_STS_ENDPOINTS

    DEFAULT_STS_ENDPOINTS.endpoint_for(None).host         # "sts.amazonaws.com"
    DEFAULT_STS_ENDPOINTS.endpoint_for("eu-west-1").host  # "sts.eu-west-1.amazonaws.com"
    DEFAULT_STS_ENDPOINTS.lookup_host("sts.amazonaws.com").region  # "us-east-1"
"""

from dataclasses import dataclass
from types import MappingProxyType
from typing import Iterable, Mapping, Optional

# Host of the global (partition-less) STS endpoint, signed as us-east-1.
GLOBAL_STS_HOST = "sts.amazonaws.com"
GLOBAL_STS_REGION = "us-east-1"

_PARTITION_SUFFIXES = {
    "aws": "amazonaws.com",
    "aws-cn": "amazonaws.com.cn",
    "aws-us-gov": "amazonaws.com",
}

_PARTITION_REGIONS = {
    "aws": (
        "af-south-1",
        "ap-east-1",
        "ap-northeast-1",
        "ap-northeast-2",
        "ap-northeast-3",
        "ap-south-1",
        "ap-south-2",
        "ap-southeast-1",
        "ap-southeast-2",
        "ap-southeast-3",
        "ap-southeast-4",
        "ca-central-1",
        "ca-west-1",
        "eu-central-1",
        "eu-central-2",
        "eu-north-1",
        "eu-south-1",
        "eu-south-2",
        "eu-west-1",
        "eu-west-2",
        "eu-west-3",
        "il-central-1",
        "me-central-1",
        "me-south-1",
        "sa-east-1",
        "us-east-1",
        "us-east-2",
        "us-west-1",
        "us-west-2",
    ),
    "aws-cn": ("cn-north-1", "cn-northwest-1"),
    "aws-us-gov": ("us-gov-east-1", "us-gov-west-1"),
}


@dataclass(frozen=True)
class StsEndpoint:
    """One STS endpoint and the region its requests are signed for."""
    host: str
    region: str
    partition: str = "aws"

    @property
    def url(self) -> str:
        return f"https://{self.host}/"


class StsEndpointTable:
    """Read-only lookup between regions and STS hosts."""

    def __init__(
        self,
        endpoints: Iterable[StsEndpoint],
        global_endpoint: Optional[StsEndpoint] = None,
    ):
        by_host: dict[str, StsEndpoint] = {}
        by_region: dict[str, StsEndpoint] = {}
        for endpoint in endpoints:
            by_host[endpoint.host.lower()] = endpoint
            by_region[endpoint.region] = endpoint
        if global_endpoint is not None:
            by_host[global_endpoint.host.lower()] = global_endpoint
        self._by_host: Mapping[str, StsEndpoint] = MappingProxyType(by_host)
        self._by_region: Mapping[str, StsEndpoint] = MappingProxyType(by_region)
        self._global = global_endpoint

    @classmethod
    def default(cls) -> "StsEndpointTable":
        """Build the table of public AWS partitions."""
        endpoints = [
            StsEndpoint(
                host=f"sts.{region}.{_PARTITION_SUFFIXES[partition]}",
                region=region,
                partition=partition,
            )
            for partition, regions in _PARTITION_REGIONS.items()
            for region in regions
        ]
        return cls(
            endpoints,
            global_endpoint=StsEndpoint(host=GLOBAL_STS_HOST, region=GLOBAL_STS_REGION),
        )

    def endpoint_for(self, region: Optional[str] = None) -> StsEndpoint:
        """
        Return the endpoint for a region, or the global endpoint when region is None.

        Raises:
            ValueError: If the region (or the global endpoint) is not in the table
        """
        if region is None:
            if self._global is None:
                raise ValueError("No global STS endpoint configured")
            return self._global
        try:
            return self._by_region[region]
        except KeyError:
            raise ValueError(f"Unknown STS region: {region!r}") from None

    def lookup_host(self, host: str) -> Optional[StsEndpoint]:
        """Return the endpoint serving ``host`` (case-insensitive), or None."""
        return self._by_host.get(host.lower())

    def is_sts_host(self, host: str) -> bool:
        return self.lookup_host(host) is not None

    @property
    def hosts(self) -> frozenset[str]:
        return frozenset(self._by_host)

    def __len__(self) -> int:
        return len(self._by_host)


DEFAULT_STS_ENDPOINTS = StsEndpointTable.default()
