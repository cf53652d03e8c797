"""
Kubernetes access for the DataCenter reconciliation.

Every call into the (blocking) kubernetes client runs in a worker thread.
"""
import asyncio
import base64
import logging
from typing import Any, Callable, Dict, List, Optional

from kubernetes import client

from ...crds.const import LABEL_PARENT, NODE_ZONE_LABEL
from ...crds.datacenter import DataCenter, DataCenterStatus
from ...utils.kube import to_label_selector


class KubernetesStore:
    def __init__(
        self,
        core_v1: Optional[client.CoreV1Api] = None,
        apps_v1: Optional[client.AppsV1Api] = None,
        custom_objects_api: Optional[client.CustomObjectsApi] = None,
    ) -> None:
        self.core_v1 = core_v1 or client.CoreV1Api()
        self.apps_v1 = apps_v1 or client.AppsV1Api()
        self.custom_objects_api = custom_objects_api or client.CustomObjectsApi()

    # --- DataCenter ---

    async def read_datacenter(self, namespace: str, name: str) -> DataCenter:
        return await asyncio.to_thread(
            DataCenter.get, name, namespace=namespace, api=self.custom_objects_api
        )

    async def update_status(self, dc: DataCenter, status: DataCenterStatus) -> DataCenter:
        """
        Persists ``status`` on ``dc``.

        Raises ``StatusConflictError`` when ``dc`` is no longer the latest
        version of the resource.
        """
        dc.status = status
        return await asyncio.to_thread(dc.replace_status)

    # --- topology ---

    async def list_node_zones(self) -> List[Optional[str]]:
        nodes = await asyncio.to_thread(self.core_v1.list_node)
        return [(node.metadata.labels or {}).get(NODE_ZONE_LABEL) for node in nodes.items]

    async def list_rack_statefulsets(self, namespace: str, datacenter: str) -> List[Any]:
        result = await asyncio.to_thread(
            self.apps_v1.list_namespaced_stateful_set,
            namespace=namespace,
            label_selector=to_label_selector({LABEL_PARENT: datacenter}),
        )
        return list(result.items)

    # --- create or patch ---

    async def _apply(
        self,
        kind: str,
        read: Callable[..., Any],
        patch: Callable[..., Any],
        create: Callable[..., Any],
        namespace: str,
        body: Dict[str, Any],
        logger: logging.Logger,
    ) -> bool:
        """Creates or patches ``body``. Returns True when the object was created."""
        name = body["metadata"]["name"]
        try:
            await asyncio.to_thread(read, name=name, namespace=namespace)
        except client.ApiException as e:
            if e.status != 404:
                raise
            await asyncio.to_thread(create, namespace=namespace, body=body)
            logger.info(f"{kind} '{name}' created.")
            return True
        await asyncio.to_thread(patch, name=name, namespace=namespace, body=body)
        logger.debug(f"{kind} '{name}' patched.")
        return False

    async def apply_configmap(self, namespace: str, body: Dict[str, Any], logger: logging.Logger) -> bool:
        return await self._apply(
            "ConfigMap",
            self.core_v1.read_namespaced_config_map,
            self.core_v1.patch_namespaced_config_map,
            self.core_v1.create_namespaced_config_map,
            namespace,
            body,
            logger,
        )

    async def apply_service(self, namespace: str, body: Dict[str, Any], logger: logging.Logger) -> bool:
        return await self._apply(
            "Service",
            self.core_v1.read_namespaced_service,
            self.core_v1.patch_namespaced_service,
            self.core_v1.create_namespaced_service,
            namespace,
            body,
            logger,
        )

    async def apply_statefulset(self, namespace: str, body: Dict[str, Any], logger: logging.Logger) -> bool:
        return await self._apply(
            "StatefulSet",
            self.apps_v1.read_namespaced_stateful_set,
            self.apps_v1.patch_namespaced_stateful_set,
            self.apps_v1.create_namespaced_stateful_set,
            namespace,
            body,
            logger,
        )

    async def scale_statefulset(
        self, namespace: str, name: str, replicas: int, logger: logging.Logger
    ) -> None:
        await asyncio.to_thread(
            self.apps_v1.patch_namespaced_stateful_set,
            name=name,
            namespace=namespace,
            body={"spec": {"replicas": replicas}},
        )
        logger.info(f"StatefulSet '{name}' scaled to {replicas} replicas.")

    async def read_configmap_data(self, namespace: str, name: str) -> Optional[Dict[str, str]]:
        try:
            configmap = await asyncio.to_thread(
                self.core_v1.read_namespaced_config_map, name=name, namespace=namespace
            )
        except client.ApiException as e:
            if e.status == 404:
                return None
            raise
        return dict(configmap.data or {})

    # --- secrets ---

    async def read_secret_data(self, namespace: str, name: str) -> Dict[str, str]:
        """Returns the decoded data of a Secret, empty when it does not exist."""
        try:
            secret = await asyncio.to_thread(
                self.core_v1.read_namespaced_secret, name=name, namespace=namespace
            )
        except client.ApiException as e:
            if e.status == 404:
                return {}
            raise
        return {k: base64.b64decode(v).decode("utf-8") for k, v in (secret.data or {}).items()}

    async def ensure_secret(self, namespace: str, body: Dict[str, Any], logger: logging.Logger) -> bool:
        """Creates the Secret unless it already exists. Returns True when created."""
        name = body["metadata"]["name"]
        try:
            await asyncio.to_thread(self.core_v1.read_namespaced_secret, name=name, namespace=namespace)
            return False
        except client.ApiException as e:
            if e.status != 404:
                raise
        await asyncio.to_thread(self.core_v1.create_namespaced_secret, namespace=namespace, body=body)
        logger.info(f"Secret '{name}' created.")
        return True

    # --- deletion ---

    async def _delete_each(
        self,
        kind: str,
        list_fn: Callable[..., Any],
        delete_fn: Callable[..., Any],
        namespace: str,
        labels: Dict[str, str],
        logger: logging.Logger,
    ) -> int:
        result = await asyncio.to_thread(
            list_fn, namespace=namespace, label_selector=to_label_selector(labels)
        )
        deleted = 0
        for item in result.items:
            name = item.metadata.name
            try:
                await asyncio.to_thread(delete_fn, name=name, namespace=namespace)
            except client.ApiException as e:
                if e.status == 404:
                    continue
                raise
            except ValueError as e:
                # the client fails to deserialize some delete responses
                # although the object was deleted
                logger.debug(f"Ignoring invalid response deleting {kind} '{name}': {e}")
            deleted += 1
            logger.info(f"{kind} '{name}' deleted.")
        return deleted

    async def delete_statefulsets(self, namespace: str, labels: Dict[str, str], logger: logging.Logger) -> int:
        return await self._delete_each(
            "StatefulSet",
            self.apps_v1.list_namespaced_stateful_set,
            self.apps_v1.delete_namespaced_stateful_set,
            namespace,
            labels,
            logger,
        )

    async def delete_configmaps(self, namespace: str, labels: Dict[str, str], logger: logging.Logger) -> int:
        return await self._delete_each(
            "ConfigMap",
            self.core_v1.list_namespaced_config_map,
            self.core_v1.delete_namespaced_config_map,
            namespace,
            labels,
            logger,
        )

    async def delete_secrets(self, namespace: str, labels: Dict[str, str], logger: logging.Logger) -> int:
        return await self._delete_each(
            "Secret",
            self.core_v1.list_namespaced_secret,
            self.core_v1.delete_namespaced_secret,
            namespace,
            labels,
            logger,
        )

    async def delete_services(self, namespace: str, labels: Dict[str, str], logger: logging.Logger) -> int:
        return await self._delete_each(
            "Service",
            self.core_v1.list_namespaced_service,
            self.core_v1.delete_namespaced_service,
            namespace,
            labels,
            logger,
        )

    async def delete_pvcs(self, namespace: str, labels: Dict[str, str], logger: logging.Logger) -> int:
        return await self._delete_each(
            "PersistentVolumeClaim",
            self.core_v1.list_namespaced_persistent_volume_claim,
            self.core_v1.delete_namespaced_persistent_volume_claim,
            namespace,
            labels,
            logger,
        )
