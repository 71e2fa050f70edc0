from __future__ import annotations

from typing import Any

import httpx

from .runtime import HealthStatus, NodeId, node_id_for_address

CHECK_SUFFIX = "erlang-node"
CHECK_NAME = "Erlang Node Status"
CHECK_TTL = "10s"


class RegistryError(Exception):
    """The registry answered with a non-2xx status or an unusable body."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class RegistryTransportError(RegistryError):
    """The registry could not be reached."""


def check_id(service_name: str) -> str:
    return f"{service_name}:{CHECK_SUFFIX}"


def register_payload(service_name: str, port: int) -> dict[str, Any]:
    check = {"CheckId": check_id(service_name), "Name": CHECK_NAME, "TTL": CHECK_TTL}
    return {"name": service_name, "port": port, "checks": [check]}


class ConsulRegistry:
    """Thin client for the Consul agent endpoints used by the reconciler.

    ``self_node`` is this node's own ``name@host``; discovered addresses are
    turned into node ids with the same name.
    """

    def __init__(
        self,
        root: str,
        self_node: str,
        timeout_s: float = 5.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.root = root.rstrip("/")
        self.self_node = self_node
        self._client = httpx.Client(timeout=timeout_s, follow_redirects=False, transport=transport)

    def close(self) -> None:
        self._client.close()

    def agent_url(self, path: str) -> str:
        return f"{self.root}/v1{path}"

    def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        url = self.agent_url(path)
        try:
            resp = self._client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise RegistryTransportError(f"request to consul agent failed: {type(e).__name__}: {e}") from e
        if not resp.is_success:
            raise RegistryError(
                f"cannot query consul agent ({resp.status_code} {resp.reason_phrase}): {resp.text!r}",
                status_code=resp.status_code,
            )
        return resp

    def register_self(self, service_name: str, port: int) -> None:
        """Create or update this node's service entry with a TTL check."""
        self._request("PUT", "/agent/service/register", json=register_payload(service_name, port))

    def report_health(self, service_name: str, status: HealthStatus, message: str) -> None:
        """Update the TTL check. Status values are "passing", "warning" and "critical"."""
        body = {"Status": HealthStatus(status).value, "Output": message}
        self._request("PUT", f"/agent/check/update/{check_id(service_name)}", json=body)

    def discover(self, service_name: str) -> frozenset[NodeId]:
        """Return the node ids of all passing instances of ``service_name``."""
        resp = self._request("GET", f"/health/service/{service_name}", params={"passing": "true"})
        try:
            entries = resp.json()
        except ValueError as e:
            raise RegistryError(f"consul agent returned invalid JSON: {e}", status_code=resp.status_code) from e
        if not isinstance(entries, list):
            raise RegistryError(f"unexpected consul response: {entries!r}", status_code=resp.status_code)

        nodes: set[NodeId] = set()
        for entry in entries:
            try:
                address = entry["Node"]["Address"]
            except (KeyError, TypeError) as e:
                raise RegistryError(f"service entry without Node.Address: {entry!r}", status_code=resp.status_code) from e
            if not isinstance(address, str) or not address:
                raise RegistryError(f"service entry with invalid Node.Address: {entry!r}", status_code=resp.status_code)
            nodes.add(node_id_for_address(self.self_node, address))
        return frozenset(nodes)
