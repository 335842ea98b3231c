"""
The OperatorStateAccessor is the handle every controller gets on the singleton
ClusterCSIDriver instance. It converts the generic object into the typed schema
and scopes each read and write to a single field manager so that the
controllers can co-own the instance without clobbering each other.
"""

# Standard
from typing import Callable, Optional, Union
import copy

# First Party
import alog

# Local
from . import config, constants
from .api import ClusterCSIDriver, ClusterCSIDriverSpec, OperatorStatus
from .context import Context
from .deploy_manager import DeployManagerBase
from .exceptions import ConflictError, PreconditionError
from .field_ownership import (
    ITEM_MARKER,
    STATUS_SUBRESOURCE,
    applied_fields,
    collect_paths,
    extract_managed,
    get_path,
)
from .utils import retry_on_conflict

log = alog.use_channel("OPCLI")

StatusPatch = Union[OperatorStatus, dict]
SpecPatch = Union[ClusterCSIDriverSpec, dict]


class OperatorStateAccessor:
    """Reads and writes the desired spec and observed status of the
    ClusterCSIDriver instance on behalf of named field managers
    """

    def __init__(
        self,
        deploy_manager: DeployManagerBase,
        instance_name: Optional[str] = None,
        api_version: str = constants.CSI_DRIVER_API_VERSION,
        kind: str = constants.CSI_DRIVER_KIND,
    ):
        """
        Args:
            deploy_manager:  DeployManagerBase
                The client of the authoritative object store
            instance_name:  Optional[str]
                Name of the singleton instance (config.instance_name)
            api_version:  str
                The api version of the custom resource
            kind:  str
                The kind of the custom resource
        """
        self.deploy_manager = deploy_manager
        self.instance_name = instance_name or config.instance_name
        self.api_version = api_version
        self.kind = kind

    ## Reads ###################################################################

    def get_instance(self) -> dict:
        """Fetch the latest generic representation of the instance

        Raises:
            PreconditionError: The instance does not exist (yet)
        """
        success, instance = self.deploy_manager.get_object_current_state(
            kind=self.kind, name=self.instance_name, api_version=self.api_version
        )
        if not success or instance is None:
            raise PreconditionError(
                f"{self.kind} [{self.instance_name}] could not be fetched"
            )
        return instance

    def get_spec(self, instance: Optional[dict] = None) -> ClusterCSIDriverSpec:
        """Get the full typed spec regardless of which manager wrote it

        Raises:
            ConversionError: The instance does not match the schema
        """
        instance = instance if instance is not None else self.get_instance()
        return ClusterCSIDriver.from_dict(instance).spec or ClusterCSIDriverSpec()

    def extract_spec(
        self, instance: dict, field_manager: str
    ) -> Optional[ClusterCSIDriverSpec]:
        """Get the part of the spec the given manager last applied

        Args:
            instance:  dict
                The generic representation of the instance
            field_manager:  str
                The name of the writer whose fields to extract

        Returns:
            spec:  Optional[ClusterCSIDriverSpec]
                The owned part of the spec, or None if the manager owns nothing

        Raises:
            ConversionError: The instance does not match the schema
            ExtractionError: The ownership metadata could not be resolved
        """
        ClusterCSIDriver.from_dict(instance)
        owned = extract_managed(instance, field_manager)
        if owned is None:
            log.debug3("[%s] owns no spec fields", field_manager)
            return None
        return ClusterCSIDriver.from_dict(owned).spec

    def extract_status(
        self, instance: dict, field_manager: str
    ) -> Optional[OperatorStatus]:
        """Get the part of the status the given manager last applied

        Args:
            instance:  dict
                The generic representation of the instance
            field_manager:  str
                The name of the writer whose fields to extract

        Returns:
            status:  Optional[OperatorStatus]
                The owned part of the status, or None if the manager owns
                nothing

        Raises:
            ConversionError: The instance does not match the schema
            ExtractionError: The ownership metadata could not be resolved
        """
        ClusterCSIDriver.from_dict(instance)
        owned = extract_managed(instance, field_manager, STATUS_SUBRESOURCE)
        if owned is None:
            log.debug3("[%s] owns no status fields", field_manager)
            return None
        return ClusterCSIDriver.from_dict(owned).status

    ## Writes ##################################################################

    def update_status(
        self, instance: dict, patch: StatusPatch, field_manager: str
    ) -> dict:
        """Server-side apply the given status fields as the given manager.
        Fields owned by other managers are left untouched and fields this
        manager applied before but omits now are released.

        Args:
            instance:  dict
                The version of the instance the patch was computed against
            patch:  StatusPatch
                The full set of status fields this manager owns
            field_manager:  str
                The name of the writer

        Returns:
            applied:  dict
                The instance after the apply

        Raises:
            ConflictError: The instance changed since it was read, or an owned
                field did not land with the patched value
        """
        status = patch.to_dict() if isinstance(patch, OperatorStatus) else patch
        return self._apply(instance, {"status": status}, field_manager, True)

    def apply_spec(self, instance: dict, patch: SpecPatch, field_manager: str) -> dict:
        """Server-side apply the given spec fields as the given manager

        Raises:
            ConflictError: The instance changed since it was read, or an owned
                field did not land with the patched value
        """
        spec = patch.to_dict() if isinstance(patch, ClusterCSIDriverSpec) else patch
        return self._apply(instance, {"spec": spec}, field_manager, False)

    def update_status_with_retry(
        self,
        field_manager: str,
        make_patch: Callable[[dict], Optional[StatusPatch]],
        ctx: Optional[Context] = None,
    ) -> Optional[dict]:
        """Re-read the instance, compute the patch and update the status,
        retrying on conflicts with exponential backoff. If make_patch returns
        None no write is made. Cancelling ctx interrupts the backoff with a
        TickCancelledError.
        """

        def attempt():
            instance = self.get_instance()
            patch = make_patch(instance)
            if patch is None:
                return None
            return self.update_status(instance, patch, field_manager)

        return retry_on_conflict(attempt, ctx=ctx)

    def apply_spec_with_retry(
        self,
        field_manager: str,
        make_patch: Callable[[dict], Optional[SpecPatch]],
        ctx: Optional[Context] = None,
    ) -> Optional[dict]:
        """Same as update_status_with_retry for spec fields"""

        def attempt():
            instance = self.get_instance()
            patch = make_patch(instance)
            if patch is None:
                return None
            return self.apply_spec(instance, patch, field_manager)

        return retry_on_conflict(attempt, ctx=ctx)

    ## Implementation Details ##################################################

    def _apply(
        self, instance: dict, content: dict, field_manager: str, is_status: bool
    ) -> dict:
        metadata = instance.get("metadata", {})
        manifest = {
            "apiVersion": self.api_version,
            "kind": self.kind,
            "metadata": {
                "name": metadata.get("name", self.instance_name),
                "resourceVersion": metadata.get("resourceVersion"),
            },
        }
        manifest.update(copy.deepcopy(content))
        if manifest["metadata"]["resourceVersion"] is None:
            del manifest["metadata"]["resourceVersion"]
        subresource = STATUS_SUBRESOURCE if is_status else None

        log.debug2("Applying %s as [%s]", list(content), field_manager)
        applied, changed = self.deploy_manager.apply(
            copy.deepcopy(manifest),
            field_manager=field_manager,
            subresource=subresource,
        )
        log.debug3("[%s] changed? %s", field_manager, changed)

        # Every applied field must have landed with the value we sent
        for path in collect_paths(applied_fields(manifest, subresource)):
            if path[-1] == ITEM_MARKER:
                continue
            if get_path(applied, path) != get_path(manifest, path):
                raise ConflictError(
                    f"Field {list(path)} of [{self.instance_name}] was concurrently "
                    f"overwritten while applying as [{field_manager}]"
                )
        return applied
