"""
The DeployManager is the object store client: it applies, looks up, deletes
and watches objects in the cluster on behalf of the controllers.
"""

# Local
from .base import DeployManagerBase, KubeEventType, KubeWatchEvent
from .dry_run_deploy_manager import DryRunDeployManager
from .openshift_deploy_manager import OpenshiftDeployManager
