"""
HTTP client for the node control sidecar running next to every Cassandra node.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

import httpx

from ...crds.datacenter import DataCenter
from ...crds.errors import NodeControlError
from ..datacenter.resources import names

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PodRef:
    name: str
    namespace: str
    service: str
    port: int

    @classmethod
    def for_datacenter(cls, dc: DataCenter, pod_name: str) -> "PodRef":
        return cls(
            name=pod_name,
            namespace=dc.metadata.namespace,
            service=names.nodes_service(dc.spec),
            port=dc.spec.sidecar_port,
        )

    @property
    def base_url(self) -> str:
        return f"http://{self.name}.{self.service}.{self.namespace}.svc.cluster.local:{self.port}"


class NodeControlProxy:
    """
    Issues nodetool-like commands to a node through its sidecar.

    Every non-2xx answer and every transport failure is raised as a
    ``NodeControlError``.
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
        auth: Optional[Tuple[str, str]] = None,
    ) -> None:
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout),
            limits=httpx.Limits(max_keepalive_connections=20, max_connections=50),
        )
        self._auth = auth

    async def decommission(self, pod: PodRef) -> None:
        await self._request("POST", pod, "/_nodetool/decommission")

    async def repair(self, pod: PodRef, keyspace: Optional[str] = None) -> None:
        await self._request("POST", pod, "/_nodetool/repair", _keyspace_params(keyspace))

    async def cleanup(self, pod: PodRef, keyspace: Optional[str] = None) -> None:
        await self._request("POST", pod, "/_nodetool/cleanup", _keyspace_params(keyspace))

    async def status(self, pod: PodRef) -> Dict[str, Any]:
        response = await self._request("GET", pod, "/_nodetool/status")
        return response.json()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        pod: PodRef,
        path: str,
        params: Optional[Dict[str, str]] = None,
    ) -> httpx.Response:
        url = f"{pod.base_url}{path}"
        try:
            response = await self._client.request(method, url, params=params, auth=self._auth)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise NodeControlError(
                f"{method} {path} on pod {pod.name} failed with HTTP {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise NodeControlError(f"{method} {path} on pod {pod.name} failed: {e}") from e
        logger.debug(f"{method} {url} -> {response.status_code}")
        return response


def _keyspace_params(keyspace: Optional[str]) -> Optional[Dict[str, str]]:
    return {"keyspace": keyspace} if keyspace else None
