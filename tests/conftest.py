"""Shared pytest fixtures for applier tests."""

import copy
import sys
from pathlib import Path

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from applier.asset import DirFS
from applier.common import (
    AlreadyExistsError,
    ConflictError,
    NotFoundError,
    UnroutableError,
)

SCENARIO_DIR = Path(__file__).parent / 'resources' / 'scenario'

CRD_API_VERSION = 'apiextensions.k8s.io/v1'

READY_CONDITIONS = [
    {'type': 'NamesAccepted', 'status': 'True', 'reason': 'NoConflicts'},
    {'type': 'Established', 'status': 'True', 'reason': 'InitialNamesAccepted'},
]

PENDING_CONDITIONS = [
    {'type': 'NamesAccepted', 'status': 'True', 'reason': 'NoConflicts'},
    {'type': 'Established', 'status': 'False', 'reason': 'Installing'},
]


class FakeCluster:
    """In-memory ClusterClient.

    Assigns uid/resourceVersion on create, enforces resourceVersion on
    update, and serves CRD-defined kinds once the CRD is created. Every
    call is recorded in `calls` as (operation, identity).

    Attributes:
        ready_after: Number of status polls before a CRD reports ready
            (None = never ready)
        failures: Map of (operation, identity) -> exception to raise
    """

    def __init__(self, ready_after=1):
        self.objects = {}
        self.calls = []
        self.failures = {}
        self.ready_after = ready_after
        self._polls = {}
        self._uid = 0
        self.scopes = {
            ('v1', 'Namespace'): False,
            ('v1', 'ConfigMap'): True,
            ('v1', 'Secret'): True,
            ('v1', 'ServiceAccount'): True,
            ('apps/v1', 'Deployment'): True,
            (CRD_API_VERSION, 'CustomResourceDefinition'): False,
        }

    @staticmethod
    def _identity(kind, namespace, name):
        return '/'.join(p for p in (kind, namespace, name) if p)

    def _key(self, body):
        metadata = body.get('metadata') or {}
        return (body['apiVersion'], body['kind'], metadata.get('namespace'), metadata['name'])

    def _check(self, operation, identity):
        self.calls.append((operation, identity))
        if (operation, identity) in self.failures:
            raise self.failures[(operation, identity)]

    def is_namespaced(self, api_version, kind):
        self.calls.append(('is_namespaced', f'{kind} ({api_version})'))
        try:
            return self.scopes[(api_version, kind)]
        except KeyError:
            raise UnroutableError(f"{kind} ({api_version}) is not served") from None

    def create(self, body, timeout=None):
        key = self._key(body)
        self._check('create', self._identity(key[1], key[2], key[3]))
        if (key[0], key[1]) not in self.scopes:
            raise UnroutableError(f"{key[1]} ({key[0]}) is not served")
        if key in self.objects:
            raise AlreadyExistsError(f"create {key[1]}/{key[3]}: already exists")
        self._uid += 1
        stored = copy.deepcopy(body)
        metadata = stored.setdefault('metadata', {})
        metadata['uid'] = f'uid-{self._uid}'
        metadata['resourceVersion'] = '1'
        metadata['creationTimestamp'] = '2026-01-01T00:00:00Z'
        self.objects[key] = stored
        if key[1] == 'CustomResourceDefinition':
            spec = stored.get('spec', {})
            for version in spec.get('versions', []):
                api_version = f"{spec['group']}/{version['name']}"
                self.scopes[(api_version, spec['names']['kind'])] = spec.get('scope') == 'Namespaced'
        return copy.deepcopy(stored)

    def get(self, api_version, kind, name, namespace=None, timeout=None):
        self._check('get', self._identity(kind, namespace, name))
        try:
            return copy.deepcopy(self.objects[(api_version, kind, namespace, name)])
        except KeyError:
            raise NotFoundError(f"get {kind}/{name}: not found") from None

    def update(self, body, timeout=None):
        key = self._key(body)
        self._check('update', self._identity(key[1], key[2], key[3]))
        if key not in self.objects:
            raise NotFoundError(f"update {key[1]}/{key[3]}: not found")
        current = self.objects[key]
        rv = current['metadata']['resourceVersion']
        if body['metadata'].get('resourceVersion') != rv:
            raise ConflictError(f"update {key[1]}/{key[3]}: conflict")
        stored = copy.deepcopy(body)
        stored['metadata']['uid'] = current['metadata']['uid']
        stored['metadata']['resourceVersion'] = str(int(rv) + 1)
        stored['metadata']['creationTimestamp'] = current['metadata']['creationTimestamp']
        self.objects[key] = stored
        return copy.deepcopy(stored)

    def schema_conditions(self, name, timeout=None):
        self._check('schema_conditions', f'CustomResourceDefinition/{name}')
        self._polls[name] = self._polls.get(name, 0) + 1
        if self.ready_after is not None and self._polls[name] >= self.ready_after:
            return copy.deepcopy(READY_CONDITIONS)
        return copy.deepcopy(PENDING_CONDITIONS)

    def seed(self, body):
        """Store an object as if it was created earlier."""
        return self.create(body)

    def lookup(self, api_version, kind, name, namespace=None):
        return self.objects.get((api_version, kind, namespace, name))

    def operations(self, operation):
        return [identity for op, identity in self.calls if op == operation]


class FakeClock:
    """Clock that advances only when slept on."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def monotonic(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def cluster():
    """Fresh in-memory cluster."""
    return FakeCluster()


@pytest.fixture
def clock():
    """Fake clock for readiness polling."""
    return FakeClock()


@pytest.fixture
def scenario_reader():
    """Asset reader over tests/resources/scenario."""
    return DirFS(SCENARIO_DIR)


@pytest.fixture
def crd_body():
    """SampleCustomResource CRD (namespaced)."""
    return {
        'apiVersion': CRD_API_VERSION,
        'kind': 'CustomResourceDefinition',
        'metadata': {'name': 'samplecustomresources.example.com'},
        'spec': {
            'group': 'example.com',
            'scope': 'Namespaced',
            'names': {
                'kind': 'SampleCustomResource',
                'plural': 'samplecustomresources',
                'singular': 'samplecustomresource',
                'listKind': 'SampleCustomResourceList',
            },
            'versions': [{
                'name': 'v1',
                'served': True,
                'storage': True,
                'schema': {'openAPIV3Schema': {
                    'type': 'object',
                    'x-kubernetes-preserve-unknown-fields': True,
                }},
            }],
        },
    }
