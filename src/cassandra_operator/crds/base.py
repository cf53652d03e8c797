from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Type, TypeVar

from kubernetes import client
from kubernetes.client import ApiException

from ..utils.kube import KubernetesConfigurationError, configure_kube_client
from .errors import KubeConfigError, StatusConflictError

# A generic type for BaseCustomResource subclasses
T = TypeVar("T", bound="BaseCustomResource")


def _get_k8s_api() -> client.CustomObjectsApi:
    """
    Initializes and returns the Kubernetes CustomObjectsApi client.
    """
    try:
        configure_kube_client()
    except KubernetesConfigurationError as exc:
        raise KubeConfigError(
            "Kubernetes configuration not found. Please ensure you have a valid "
            "kubeconfig file or are running in-cluster."
        ) from exc

    return client.CustomObjectsApi()


@dataclass
class ObjectMeta:
    name: str
    namespace: Optional[str] = None
    labels: Dict[str, str] = field(default_factory=dict)
    annotations: Dict[str, str] = field(default_factory=dict)
    uid: Optional[str] = None
    resource_version: Optional[str] = None
    generation: Optional[int] = None

    _WIRE_NAMES = {
        "resourceVersion": "resource_version",
    }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ObjectMeta":
        """
        Constructs an ObjectMeta from a dictionary, ignoring unknown fields.
        This makes it robust to extra metadata from the Kubernetes API.
        """
        known = {"name", "namespace", "labels", "annotations", "uid", "generation"}
        kwargs: Dict[str, Any] = {}
        for key, value in data.items():
            if key in cls._WIRE_NAMES:
                kwargs[cls._WIRE_NAMES[key]] = value
            elif key in known:
                kwargs[key] = value
        kwargs["labels"] = kwargs.get("labels") or {}
        kwargs["annotations"] = kwargs.get("annotations") or {}
        return cls(**kwargs)

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"name": self.name}
        if self.namespace:
            body["namespace"] = self.namespace
        if self.labels:
            body["labels"] = dict(self.labels)
        if self.annotations:
            body["annotations"] = dict(self.annotations)
        if self.uid:
            body["uid"] = self.uid
        if self.resource_version:
            body["resourceVersion"] = self.resource_version
        if self.generation is not None:
            body["generation"] = self.generation
        return body


class BaseCustomResource:
    group: str
    version: str
    plural: str
    kind: str

    # Declared here so that the generic methods can be type-checked.
    metadata: ObjectMeta
    spec: Any
    status: Any

    def __init__(self, api: Optional[client.CustomObjectsApi] = None) -> None:
        self._api = api

    @property
    def api(self) -> client.CustomObjectsApi:
        # Resolved on first use so that resources can be built from plain
        # dicts without a kube config (handlers, tests).
        if self._api is None:
            self._api = _get_k8s_api()
        return self._api

    @classmethod
    def from_body(
        cls: Type[T],
        data: Dict[str, Any],
        api: Optional[client.CustomObjectsApi] = None,
    ) -> T:
        return cls(
            metadata=ObjectMeta.from_dict(data["metadata"]),
            spec=data.get("spec") or {},
            status=data.get("status") or {},
            api=api,
        )

    @classmethod
    def get(
        cls: Type[T],
        name: str,
        *,
        namespace: str,
        api: Optional[client.CustomObjectsApi] = None,
    ) -> T:
        api_instance = api or _get_k8s_api()
        data = api_instance.get_namespaced_custom_object(
            group=cls.group,
            version=cls.version,
            namespace=namespace,
            plural=cls.plural,
            name=name,
        )
        return cls.from_body(data, api=api_instance)

    def replace_status(self: T) -> T:
        """
        Replaces the status subresource with the current object's status.

        The body carries the resourceVersion we read, so the API server
        rejects the write when someone else updated the resource since.
        """
        try:
            replaced = self.api.replace_namespaced_custom_object_status(
                group=self.group,
                version=self.version,
                namespace=self.metadata.namespace,
                plural=self.plural,
                name=self.metadata.name,
                body=self.to_dict(),
            )
        except ApiException as e:
            if e.status == 409:
                raise StatusConflictError(
                    f"{self.kind} {self.metadata.namespace}/{self.metadata.name} "
                    f"was modified since resourceVersion {self.metadata.resource_version}"
                ) from e
            raise
        self._load(replaced)
        return self

    def _load(self, data: Dict[str, Any]) -> None:
        fresh = self.from_body(data, api=self._api)
        self.metadata = fresh.metadata
        self.spec = fresh.spec
        self.status = fresh.status

    def spec_dict(self) -> Dict[str, Any]:
        return self.spec if isinstance(self.spec, dict) else self.spec.to_dict()

    def status_dict(self) -> Dict[str, Any]:
        return self.status if isinstance(self.status, dict) else self.status.to_dict()

    def to_dict(self) -> Dict[str, Any]:
        body = {
            "apiVersion": f"{self.group}/{self.version}",
            "kind": self.kind,
            "metadata": self.metadata.to_dict(),
            "spec": self.spec_dict(),
        }
        status = self.status_dict()
        if status:
            body["status"] = status
        return body
