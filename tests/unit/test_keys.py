"""Unit tests for the key secret codec."""

from __future__ import annotations

import base64
from datetime import datetime, timezone

import pytest
from kubernetes import client

from apiserver_encryption_operator.constants import (
    ANNOTATION_MIGRATED_RESOURCES,
    ANNOTATION_MODE,
    ANNOTATION_READ_TIMESTAMP,
    FINALIZER_DELETION_PROTECTION,
    KEY_DATA,
    LABEL_COMPONENT,
    LABEL_GROUP,
    LABEL_RESOURCE,
)
from apiserver_encryption_operator.encryption.keys import (
    EMPTY_IDENTITY_KEY,
    decode_key_secret,
    encode_key_secret,
    encode_migrated_resources,
    format_timestamp,
    key_id_from_name,
    key_secret_name,
    key_secret_selector,
    new_key,
    new_key_material,
    parse_migrated_resources,
    parse_timestamp,
    sort_recent_first,
)
from apiserver_encryption_operator.encryption.types import GroupResource, KeyState, Mode

COMPONENT = "openshift-kube-apiserver"
SECRETS = GroupResource("", "secrets")
ROUTES = GroupResource("route.openshift.io", "routes")


def make_secret(
    name: str = f"{COMPONENT}-core-secrets-encryption-1",
    labels: dict[str, str] | None = None,
    annotations: dict[str, str] | None = None,
    data: dict[str, str] | None = None,
) -> client.V1Secret:
    if labels is None:
        labels = {LABEL_COMPONENT: COMPONENT, LABEL_GROUP: "", LABEL_RESOURCE: "secrets"}
    if annotations is None:
        annotations = {ANNOTATION_MODE: "aescbc"}
    if data is None:
        data = {KEY_DATA: base64.b64encode(b"k" * 32).decode("ascii")}
    return client.V1Secret(
        metadata=client.V1ObjectMeta(name=name, labels=labels, annotations=annotations),
        data=data,
    )


class TestKeyRoundTrip:
    """Test that encoded keys decode to the same key."""

    @pytest.mark.parametrize("mode", list(Mode))
    def test_round_trip_new_key(self, mode: Mode) -> None:
        """Test that a freshly minted key survives encoding in every mode."""
        key = new_key(COMPONENT, SECRETS, 3, mode, internal_reason="no-secrets")

        decoded = decode_key_secret(encode_key_secret(key, "openshift-config-managed"), COMPONENT)

        assert decoded == key

    def test_round_trip_full_lifecycle(self) -> None:
        """Test that every lifecycle annotation survives encoding."""
        ts = datetime(2024, 5, 1, 12, 30, 0, tzinfo=timezone.utc)
        key = KeyState(
            name=key_secret_name(COMPONENT, ROUTES, 7),
            component=COMPONENT,
            group_resource=ROUTES,
            key_id=7,
            mode=Mode.SECRETBOX,
            material=b"s" * 32,
            read_timestamp=ts,
            write_timestamp=ts,
            migrated_timestamp=ts,
            migrated_resources=(ROUTES, SECRETS),
            internal_reason="timestamp-too-old",
            external_reason="compliance",
        )

        decoded = decode_key_secret(encode_key_secret(key, "ns"), COMPONENT)

        assert decoded == key
        assert decoded.material == b"s" * 32

    def test_round_trip_sub_second_timestamps(self) -> None:
        """Test that timestamps with microseconds survive encoding."""
        ts = datetime(2024, 5, 1, 12, 0, 0, 123456, tzinfo=timezone.utc)
        key = KeyState(
            name=key_secret_name(COMPONENT, SECRETS, 2),
            component=COMPONENT,
            group_resource=SECRETS,
            key_id=2,
            mode=Mode.AESCBC,
            material=b"a" * 32,
            read_timestamp=ts,
            write_timestamp=ts,
            migrated_timestamp=ts,
            migrated_resources=(SECRETS,),
        )

        decoded = decode_key_secret(encode_key_secret(key, "ns"), COMPONENT)

        assert key.migrated_timestamp == datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)
        assert decoded == key

    def test_encode_sets_finalizer_and_labels(self) -> None:
        """Test that key secrets are protected and selectable."""
        key = new_key(COMPONENT, ROUTES, 1, Mode.AESCBC)

        secret = encode_key_secret(key, "ns")

        assert secret.metadata.finalizers == [FINALIZER_DELETION_PROTECTION]
        assert secret.metadata.labels == {
            LABEL_COMPONENT: COMPONENT,
            LABEL_GROUP: "route.openshift.io",
            LABEL_RESOURCE: "routes",
        }
        assert secret.metadata.name == f"{COMPONENT}-route.openshift.io-routes-encryption-1"


class TestDecodeInvalid:
    """Test that invalid secrets are skipped instead of raising."""

    def test_valid_secret(self) -> None:
        """Test decoding a minimal valid secret."""
        key = decode_key_secret(make_secret(), COMPONENT)

        assert key is not None
        assert key.key_id == 1
        assert key.group_resource == SECRETS
        assert key.mode is Mode.AESCBC

    def test_other_component(self) -> None:
        """Test that keys of other components are ignored."""
        assert decode_key_secret(make_secret(), "openshift-apiserver") is None

    def test_missing_labels(self) -> None:
        """Test that secrets without resource labels are ignored."""
        secret = make_secret(labels={LABEL_COMPONENT: COMPONENT})

        assert decode_key_secret(secret, COMPONENT) is None

    def test_invalid_key_id(self) -> None:
        """Test that names without a numeric suffix are ignored."""
        secret = make_secret(name=f"{COMPONENT}-core-secrets-encryption-abc")

        assert decode_key_secret(secret, COMPONENT) is None

    def test_unknown_mode(self) -> None:
        """Test that unknown modes are ignored."""
        secret = make_secret(annotations={ANNOTATION_MODE: "kms"})

        assert decode_key_secret(secret, COMPONENT) is None

    def test_empty_key_data(self) -> None:
        """Test that secrets without key material are ignored."""
        secret = make_secret(data={})

        assert decode_key_secret(secret, COMPONENT) is None

    def test_invalid_base64(self) -> None:
        """Test that corrupt key material is ignored."""
        secret = make_secret(data={KEY_DATA: "not base64!"})

        assert decode_key_secret(secret, COMPONENT) is None

    def test_malformed_timestamp(self) -> None:
        """Test that malformed lifecycle annotations make the key invalid."""
        secret = make_secret(annotations={ANNOTATION_MODE: "aescbc", ANNOTATION_READ_TIMESTAMP: "yesterday"})

        assert decode_key_secret(secret, COMPONENT) is None

    def test_malformed_migrated_resources(self) -> None:
        """Test that a malformed migrated-resources annotation makes the key invalid."""
        secret = make_secret(annotations={ANNOTATION_MODE: "aescbc", ANNOTATION_MIGRATED_RESOURCES: "[secrets"})

        assert decode_key_secret(secret, COMPONENT) is None


class TestKeyHelpers:
    """Test naming, timestamp and ordering helpers."""

    def test_key_id_from_name(self) -> None:
        """Test parsing keyIDs from secret names."""
        assert key_id_from_name("a-b-encryption-12") == 12
        assert key_id_from_name("a-b-encryption-") is None
        assert key_id_from_name("noid") is None

    def test_selector(self) -> None:
        """Test the label selector of key secrets."""
        assert key_secret_selector(COMPONENT) == f"{LABEL_COMPONENT}={COMPONENT}"

    def test_timestamp_round_trip(self) -> None:
        """Test formatting and parsing RFC3339 timestamps."""
        ts = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)

        assert format_timestamp(ts) == "2024-01-02T03:04:05Z"
        assert parse_timestamp("2024-01-02T03:04:05Z") == ts

    def test_naive_timestamp_is_utc(self) -> None:
        """Test that naive timestamps are treated as UTC."""
        assert format_timestamp(datetime(2024, 1, 2, 3, 4, 5)) == "2024-01-02T03:04:05Z"

    def test_migrated_resources(self) -> None:
        """Test the migrated-resources annotation format."""
        value = encode_migrated_resources([SECRETS, ROUTES])

        assert value == (
            '{"resources":[{"Group":"","Resource":"secrets"},'
            '{"Group":"route.openshift.io","Resource":"routes"}]}'
        )
        assert parse_migrated_resources(value) == (SECRETS, ROUTES)

    def test_migrated_resources_invalid(self) -> None:
        """Test that an unexpected document is rejected."""
        with pytest.raises(ValueError):
            parse_migrated_resources('["secrets"]')

    def test_sort_recent_first(self) -> None:
        """Test ordering keys by keyID, newest first."""
        keys = [new_key(COMPONENT, SECRETS, i, Mode.AESCBC) for i in (2, 10, 1)]

        assert [k.key_id for k in sort_recent_first(keys)] == [10, 2, 1]

    def test_key_material(self) -> None:
        """Test key sizes of the different modes."""
        assert len(new_key_material(Mode.AESCBC)) == 32
        assert len(new_key_material(Mode.SECRETBOX)) == 32
        assert new_key_material(Mode.IDENTITY) == bytes(16)
        assert base64.b64decode(EMPTY_IDENTITY_KEY) == bytes(16)

    def test_fresh_material_differs(self) -> None:
        """Test that every key gets new random material."""
        assert new_key_material(Mode.AESCBC) != new_key_material(Mode.AESCBC)
