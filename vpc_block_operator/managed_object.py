"""
Helper objects to represent and address cluster objects
"""
# Standard
from typing import NamedTuple, Optional


class ObjectKey(NamedTuple):
    """Cache key for a cluster object. Cluster-scoped objects have no
    namespace.
    """

    kind: str
    namespace: Optional[str]
    name: str

    def __str__(self):
        if self.namespace:
            return f"{self.kind}/{self.namespace}/{self.name}"
        return f"{self.kind}/{self.name}"


class ManagedObject:
    """Basic struct to represent a kubernetes object seen by a watch"""

    def __init__(self, definition: dict):
        self.kind = definition.get("kind")
        self.metadata = definition.get("metadata", {})
        self.name = self.metadata.get("name")
        self.namespace = self.metadata.get("namespace") or None
        self.resource_version = self.metadata.get("resourceVersion")
        self.api_version = definition.get("apiVersion")
        self.definition = definition

        assert self.kind is not None, "No kind found"
        assert self.name is not None, "No name found"

    @property
    def key(self) -> ObjectKey:
        return ObjectKey(self.kind, self.namespace, self.name)

    def get(self, *args, **kwargs):
        """Pass get calls to the objects definition"""
        return self.definition.get(*args, **kwargs)

    def __str__(self):
        return f"{self.api_version}/{self.key}"

    def __repr__(self):
        return str(self)
