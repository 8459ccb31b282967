#!/usr/bin/env python3
"""Tests for ownership.py - owner reference computation and merging."""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

import pytest
from kubernetes import client
from applier.common import OwnerResolutionError
from applier.ownership import (
    OwnerReference,
    OwnerSpec,
    compute_owner_ref,
    merge_owner_references,
    union_owner_references,
)
from applier.resources import TypeRegistry


def namespace_owner(uid='uid-owner'):
    return client.V1Namespace(metadata=client.V1ObjectMeta(name='my-ns-owner-1', uid=uid))


class TestComputeOwnerRef:
    """Test compute_owner_ref()."""

    def test_typed_owner(self):
        """Typed owners resolve apiVersion/kind through the registry."""
        ref = compute_owner_ref(namespace_owner())
        assert ref == OwnerReference(
            api_version='v1', kind='Namespace', name='my-ns-owner-1', uid='uid-owner')

    def test_unstructured_owner(self):
        """Dict owners carry their own apiVersion/kind."""
        owner = {
            'apiVersion': 'example.com/v1',
            'kind': 'SampleCustomResource',
            'metadata': {'name': 'my-sampleowner', 'namespace': 'my-ns', 'uid': 'uid-sample'},
        }
        ref = compute_owner_ref(owner)
        assert (ref.api_version, ref.kind, ref.name, ref.uid) == (
            'example.com/v1', 'SampleCustomResource', 'my-sampleowner', 'uid-sample')

    @pytest.mark.parametrize('controller,block,expected_controller,expected_block', [
        (False, False, None, None),
        (True, False, True, None),
        (False, True, None, True),
        (True, True, True, True),
    ])
    def test_flags(self, controller, block, expected_controller, expected_block):
        """False flags are recorded as unset, True flags as True."""
        ref = compute_owner_ref(namespace_owner(), controller=controller,
                                block_owner_deletion=block)
        assert ref.controller is expected_controller
        assert ref.block_owner_deletion is expected_block

    def test_none_owner(self):
        with pytest.raises(OwnerResolutionError):
            compute_owner_ref(None)

    def test_unregistered_typed_owner(self):
        """Owner of an unknown type cannot be resolved."""
        with pytest.raises(OwnerResolutionError) as exc_info:
            compute_owner_ref(namespace_owner(), registry=TypeRegistry())
        assert exc_info.value.code == 'E400'
        assert 'V1Namespace' in str(exc_info.value)

    def test_dict_without_kind(self):
        with pytest.raises(OwnerResolutionError):
            compute_owner_ref({'apiVersion': 'v1', 'metadata': {'name': 'x', 'uid': 'u'}})

    def test_owner_without_uid(self):
        """Owners not yet persisted (no uid) are rejected."""
        with pytest.raises(OwnerResolutionError) as exc_info:
            compute_owner_ref(namespace_owner(uid=None))
        assert 'no uid' in str(exc_info.value)

    def test_owner_without_name(self):
        owner = {'apiVersion': 'v1', 'kind': 'Namespace', 'metadata': {'uid': 'u'}}
        with pytest.raises(OwnerResolutionError):
            compute_owner_ref(owner)


class TestOwnerReference:
    """Test OwnerReference serialization."""

    def test_to_dict_omits_unset_flags(self):
        ref = OwnerReference('v1', 'Namespace', 'n', 'u')
        assert ref.to_dict() == {'apiVersion': 'v1', 'kind': 'Namespace', 'name': 'n', 'uid': 'u'}

    def test_to_dict_with_flags(self):
        ref = OwnerReference('v1', 'Namespace', 'n', 'u', controller=True, block_owner_deletion=True)
        d = ref.to_dict()
        assert d['controller'] is True
        assert d['blockOwnerDeletion'] is True

    def test_from_dict_round_trip(self):
        ref = OwnerReference('v1', 'Namespace', 'n', 'u', controller=True)
        assert OwnerReference.from_dict(ref.to_dict()) == ref


class TestOwnerSpec:
    """Test OwnerSpec defaults."""

    def test_defaults(self):
        spec = OwnerSpec(obj=namespace_owner())
        assert spec.controller is False
        assert spec.block_owner_deletion is False
        assert spec.registry.is_registered(client.V1Namespace)


class TestMergeOwnerReferences:
    """Test owner reference list merging."""

    REF_A = {'apiVersion': 'v1', 'kind': 'Namespace', 'name': 'a', 'uid': 'uid-a'}
    REF_B = {'apiVersion': 'v1', 'kind': 'Namespace', 'name': 'b', 'uid': 'uid-b'}

    def test_appends_new(self):
        ref = OwnerReference('v1', 'Namespace', 'b', 'uid-b')
        assert merge_owner_references([self.REF_A], ref) == [self.REF_A, self.REF_B]

    def test_replaces_same_uid(self):
        ref = OwnerReference('v1', 'Namespace', 'a', 'uid-a', controller=True)
        merged = merge_owner_references([self.REF_A], ref)
        assert merged == [dict(self.REF_A, controller=True)]

    def test_none_ref(self):
        assert merge_owner_references([self.REF_A], None) == [self.REF_A]

    def test_union_keeps_live_refs(self):
        """Live references not in the desired set are kept."""
        merged = union_owner_references([self.REF_A], [self.REF_B])
        assert merged == [self.REF_A, self.REF_B]

    def test_union_desired_wins(self):
        desired = dict(self.REF_A, blockOwnerDeletion=True)
        assert union_owner_references([self.REF_A], [desired]) == [desired]

    def test_union_empty(self):
        assert union_owner_references([], []) == []
