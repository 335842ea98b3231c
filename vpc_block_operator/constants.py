"""
Shared module to hold constant values for the operator
"""

# Identity of the operator and its operand
OPERATOR_NAME = "ibm-vpc-block-csi-driver-operator"
OPERAND_NAME = "ibm-vpc-block-csi-driver"

# The singleton ClusterCSIDriver custom resource
CSI_DRIVER_API_VERSION = "operator.openshift.io/v1"
CSI_DRIVER_KIND = "ClusterCSIDriver"

# Management states shared by spec.managementState and spec.storageClassState
MANAGED = "Managed"
UNMANAGED = "Unmanaged"
REMOVED = "Removed"

# Operator log levels and the alog level each one maps to
OPERATOR_LOG_LEVELS = {
    "Normal": "info",
    "Debug": "debug",
    "Trace": "debug2",
    "TraceAll": "debug4",
}
DEFAULT_OPERATOR_LOG_LEVEL = "Normal"

# Operand log levels and the klog verbosity each one maps to
OPERAND_LOG_LEVELS = {
    "Normal": 2,
    "Debug": 4,
    "Trace": 6,
    "TraceAll": 8,
}

# Condition type suffixes. Each controller prefixes these with its own name.
CONDITION_AVAILABLE = "Available"
CONDITION_PROGRESSING = "Progressing"
CONDITION_DEGRADED = "Degraded"

# Condition status values
CONDITION_TRUE = "True"
CONDITION_FALSE = "False"
CONDITION_UNKNOWN = "Unknown"

# Where the config observer publishes the cluster proxy inside
# spec.observedConfig of the CR
OBSERVED_PROXY_PATH = "targetcsiconfig.proxy"

# Cluster proxy config resource
PROXY_API_VERSION = "config.openshift.io/v1"
PROXY_KIND = "Proxy"
PROXY_NAME = "cluster"

# Environment variables populated from the observed proxy
PROXY_ENV_VARS = {
    "httpProxy": "HTTP_PROXY",
    "httpsProxy": "HTTPS_PROXY",
    "noProxy": "NO_PROXY",
}

# Pod-template annotations used to force rollouts when inputs change
SECRET_HASH_ANNOTATION_PREFIX = "operator.openshift.io/dep-"
CA_BUNDLE_HASH_ANNOTATION = "operator.openshift.io/trusted-ca-bundle-hash"

# Trusted CA bundle injection
CA_BUNDLE_KEY = "ca-bundle.crt"
CA_BUNDLE_VOLUME_NAME = "trusted-ca-bundle"
CA_BUNDLE_MOUNT_PATH = "/etc/pki/ca-trust/extracted/pem"

# Storage class encryption parameters
ENCRYPTION_KEY_PARAMETER = "encryptionKey"
ENCRYPTED_PARAMETER = "encrypted"

# Annotation recording the content hash a synced secret was copied from
SOURCE_HASH_ANNOTATION = "operator.openshift.io/source-hash"

# Metadata fields that identify an object rather than describe it. These are
# never recorded as owned by a field manager.
IDENTITY_METADATA_FIELDS = ["name", "namespace"]

# Metadata fields maintained by the object store itself
SERVER_METADATA_FIELDS = [
    "resourceVersion",
    "generation",
    "managedFields",
    "uid",
    "creationTimestamp",
    "deletionTimestamp",
    "deletionGracePeriodSeconds",
]

# Delimiter used for nested dict keys
NESTED_DICT_DELIM = "."
