"""
This defines the base class for all DeployManager types.
"""

# Standard
from enum import Enum
from typing import Iterator, List, NamedTuple, Optional, Tuple
import abc

# Local
from ..context import Context
from ..managed_object import ManagedObject


class KubeEventType(Enum):
    """Change types reported by a watch"""

    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"


class KubeWatchEvent(NamedTuple):
    """One change seen by a watch"""

    type: KubeEventType
    resource: ManagedObject


class DeployManagerBase(abc.ABC):
    """
    Base class for deploy managers which carry out every read and write the
    controllers make against the authoritative object store.
    """

    @abc.abstractmethod
    def apply(
        self,
        resource_definition: dict,
        field_manager: str,
        subresource: Optional[str] = None,
    ) -> Tuple[dict, bool]:
        """Server-side apply a single object on behalf of a field manager.

        Args:
            resource_definition:  dict
                The object to apply. If metadata.resourceVersion is set, the
                apply only succeeds against that exact version.
            field_manager:  str
                The name of the writer claiming the applied fields
            subresource:  Optional[str]
                "status" to apply to the status subresource

        Returns:
            applied:  dict
                The object as stored after the apply
            changed:  bool
                Whether or not the apply changed the stored object

        Raises:
            ConflictError: The given resourceVersion is stale
            ResourceNotServedError: The cluster does not serve the kind
        """

    @abc.abstractmethod
    def delete(
        self,
        kind: str,
        name: str,
        namespace: Optional[str] = None,
        api_version: Optional[str] = None,
    ) -> bool:
        """Delete an object. Deleting an object (or kind) that does not exist
        succeeds without change.

        Returns:
            changed:  bool
                Whether or not an object was deleted
        """

    @abc.abstractmethod
    def get_object_current_state(
        self,
        kind: str,
        name: str,
        namespace: Optional[str] = None,
        api_version: Optional[str] = None,
    ) -> Tuple[bool, Optional[dict]]:
        """Fetch the current state of a given object by name

        Args:
            kind:  str
                The kind of the object to fetch
            name:  str
                The full name of the object to fetch
            namespace:  str
                The namespace to search for the object
            api_version:  str
                The api_version of the resource kind to fetch

        Returns:
            success:  bool
                Whether or not the state fetch operation succeeded
            current_state:  dict or None
                The dict representation of the current object's configuration,
                or None if not present
        """

    @abc.abstractmethod
    def filter_objects_current_state(
        self,
        kind: str,
        namespace: Optional[str] = None,
        api_version: Optional[str] = None,
    ) -> Tuple[bool, List[dict]]:
        """List all objects of a kind, optionally restricted to a namespace

        Returns:
            success:  bool
                Whether or not the list operation succeeded
            current_state:  List[dict]
                The dict representations of the objects found
        """

    @abc.abstractmethod
    def watch_objects(
        self,
        ctx: Context,
        kind: str,
        api_version: Optional[str] = None,
        namespace: Optional[str] = None,
    ) -> Iterator[KubeWatchEvent]:
        """Stream change notifications for a kind. The stream starts with an
        ADDED event per existing object and ends when the context is cancelled,
        or early when events may have been missed and the caller must list
        again.

        Args:
            ctx:  Context
                The context whose cancellation ends the stream
            kind:  str
                The kind of the objects to watch
            api_version:  str
                The api_version of the resource kind to watch
            namespace:  str
                The namespace to watch, or None to watch cluster-wide

        Returns:
            watch_stream: Iterator[KubeWatchEvent]
                A stream of KubeWatchEvents generated while watching
        """

    @abc.abstractmethod
    def kind_exists(self, kind: str, api_version: Optional[str] = None) -> bool:
        """Check whether the cluster serves the given kind"""
