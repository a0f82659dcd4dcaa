"""Constants for the API server encryption operator."""

# Annotation/label prefix shared by every encryption key secret
ENCRYPTION_PREFIX = "encryption.apiserver.operator.openshift.io"

# Labels
LABEL_COMPONENT = f"{ENCRYPTION_PREFIX}/component"
LABEL_GROUP = f"{ENCRYPTION_PREFIX}/group"
LABEL_RESOURCE = f"{ENCRYPTION_PREFIX}/resource"

# Annotations
ANNOTATION_MODE = f"{ENCRYPTION_PREFIX}/mode"
ANNOTATION_READ_TIMESTAMP = f"{ENCRYPTION_PREFIX}/read-timestamp"
ANNOTATION_WRITE_TIMESTAMP = f"{ENCRYPTION_PREFIX}/write-timestamp"
ANNOTATION_MIGRATED_TIMESTAMP = f"{ENCRYPTION_PREFIX}/migrated-timestamp"
ANNOTATION_MIGRATED_RESOURCES = f"{ENCRYPTION_PREFIX}/migrated-resources"
ANNOTATION_INTERNAL_REASON = f"{ENCRYPTION_PREFIX}/internal-reason"
ANNOTATION_EXTERNAL_REASON = f"{ENCRYPTION_PREFIX}/external-reason"
ANNOTATION_DESCRIPTION = "kubernetes.io/description"

DESCRIPTION_DO_NOT_EDIT = (
    "WARNING: DO NOT EDIT.\n"
    "Altering of the encryption secrets will render you cluster inaccessible.\n"
    "Catastrophic data loss can occur from the most minor changes."
)

# Data key holding the raw key material
KEY_DATA = f"{ENCRYPTION_PREFIX}-key"

# Finalizers
FINALIZER_DELETION_PROTECTION = f"{ENCRYPTION_PREFIX}/deletion-protection"

# Encryption configuration secret
ENCRYPTION_CONFIG_SECRET = "encryption-config"
ENCRYPTION_CONFIG_API_VERSION = "apiserver.config.k8s.io/v1"
ENCRYPTION_CONFIG_KIND = "EncryptionConfiguration"

# API server pods
APISERVER_POD_SELECTOR = "apiserver=true"
LABEL_REVISION = "revision"

# Operator object the controllers report to
OPERATOR_GROUP = "operator.openshift.io"
OPERATOR_VERSION = "v1"
OPERATOR_PLURAL = "kubeapiservers"
OPERATOR_NAME = "cluster"

# Cluster-wide APIServer config object
APISERVER_CONFIG_GROUP = "config.openshift.io"
APISERVER_CONFIG_VERSION = "v1"
APISERVER_CONFIG_PLURAL = "apiservers"
APISERVER_CONFIG_NAME = "cluster"

MANAGEMENT_STATE_MANAGED = "Managed"

# Field Manager
FIELD_MANAGER = "apiserver-encryption-operator"

# Controller names (also used as metric labels and condition prefixes)
CONTROLLER_KEY = "EncryptionKeyController"
CONTROLLER_STATE = "EncryptionStateController"
CONTROLLER_MIGRATION = "EncryptionMigrationController"
CONTROLLER_POD_STATE = "EncryptionPodStateController"
CONTROLLER_PRUNE = "EncryptionPruneController"

# Condition Types
COND_STORAGE_MIGRATION_PROGRESSING = "EncryptionStorageMigrationProgressing"

# Progressing reasons
REASON_REVISION_NOT_CONVERGED = "APIServerRevisionNotConverged"
REASON_POD_AND_API_STATE_NOT_CONVERGED = "PodAndAPIStateNotConverged"
REASON_WRITE_KEY_NOT_OBSERVED = "WriteKeyNotObserved"

# Key minting reasons
REASON_NO_SECRETS = "no-secrets"
REASON_NEW_MODE = "new-mode"
REASON_NEW_EXTERNAL_REASON = "new-external-reason"
REASON_TIMESTAMP_TOO_OLD = "timestamp-too-old"

# Event Reasons
EVENT_REASON_KEY_CREATED = "EncryptionKeyCreated"
EVENT_REASON_KEY_CREATE_FAILED = "EncryptionKeyCreateFailed"
EVENT_REASON_KEY_PRUNED = "EncryptionKeyPruned"
EVENT_REASON_KEY_OBSERVED = "EncryptionKeyObserved"
EVENT_REASON_CONFIG_APPLIED = "EncryptionConfigApplied"
EVENT_REASON_MIGRATION_STARTED = "EncryptionStorageMigrationStarted"
EVENT_REASON_MIGRATION_SUCCEEDED = "EncryptionStorageMigrationSucceeded"
EVENT_REASON_MIGRATION_FAILED = "EncryptionStorageMigrationFailed"
EVENT_REASON_SYNC_FAILED = "EncryptionSyncFailed"
