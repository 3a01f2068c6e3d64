"""
Shared fakes for the nodepool schedule tests
"""
import pytest

from manage_nodepools import (
    ConflictError,
    NODEPOOL_LABEL,
    NodeClaim,
    NodePool,
    NotFoundError,
    ProviderError,
)


class InMemoryStore:
    """In-memory stand-in for KarpenterClient with resourceVersion checks"""

    def __init__(self, nodepools=None, nodeclaims=None, fail_delete=None):
        self.nodepools = {}
        self.nodeclaims = {}
        self.fail_delete = set(fail_delete or [])
        self.updates = []
        self.deleted = []
        for name, cpu in (nodepools or {}).items():
            self.add_nodepool(name, cpu)
        for name, pool in (nodeclaims or {}).items():
            self.nodeclaims[name] = {NODEPOOL_LABEL: pool}

    def add_nodepool(self, name, cpu):
        spec = {'template': {'spec': {'nodeClassRef': {'name': 'default'}}}}
        if cpu is not None:
            spec['limits'] = {'cpu': cpu, 'memory': '1000Gi'}
        self.nodepools[name] = {
            'apiVersion': 'karpenter.sh/v1',
            'kind': 'NodePool',
            'metadata': {'name': name, 'resourceVersion': '1'},
            'spec': spec,
        }

    def cpu_limit(self, name):
        return self.nodepools[name]['spec'].get('limits', {}).get('cpu')

    def get_nodepool(self, name):
        if name not in self.nodepools:
            raise NotFoundError(f"nodepool {name} not found (get)")
        return NodePool.from_object(self.nodepools[name])

    def update_nodepool(self, nodepool):
        stored = self.nodepools.get(nodepool.name)
        if stored is None:
            raise NotFoundError(f"nodepool {nodepool.name} not found (update)")
        if stored['metadata']['resourceVersion'] != nodepool.resource_version:
            raise ConflictError(f"nodepool {nodepool.name} was modified concurrently (update)")
        obj = nodepool.to_object()
        obj['metadata']['resourceVersion'] = str(int(nodepool.resource_version) + 1)
        self.nodepools[nodepool.name] = obj
        self.updates.append(nodepool.name)
        return NodePool.from_object(obj)

    def list_nodeclaims(self, label_selector):
        key, value = label_selector.split('=', 1)
        return [
            NodeClaim(name=name, labels=dict(labels))
            for name, labels in self.nodeclaims.items()
            if labels.get(key) == value
        ]

    def delete_nodeclaim(self, name):
        if name in self.fail_delete:
            raise ProviderError(f"failed to delete nodeclaim {name}: 500 Internal Server Error")
        del self.nodeclaims[name]
        self.deleted.append(name)


class FakePaginator:
    def __init__(self, ec2):
        self.ec2 = ec2

    def paginate(self, Filters):
        self.ec2.describe_calls.append(Filters)
        matches = [i for i in self.ec2.instances if self.ec2.matches(i, Filters)]
        # Two instances per reservation, one reservation per page
        pages = []
        for start in range(0, len(matches), 2):
            chunk = matches[start:start + 2]
            pages.append({'Reservations': [{'Instances': [{'InstanceId': i['InstanceId']} for i in chunk]}]})
        return pages or [{'Reservations': []}]


class FakeEC2:
    """Minimal EC2 client honouring tag and state filters"""

    def __init__(self, instances=None):
        self.instances = []
        self.describe_calls = []
        self.terminate_calls = []
        for instance_id, tags in (instances or {}).items():
            self.instances.append({
                'InstanceId': instance_id,
                'Tags': dict(tags),
                'State': 'running',
            })

    @staticmethod
    def matches(instance, filters):
        for f in filters:
            if f['Name'] == 'instance-state-name':
                if instance['State'] not in f['Values']:
                    return False
            elif f['Name'].startswith('tag:'):
                if instance['Tags'].get(f['Name'][4:]) not in f['Values']:
                    return False
        return True

    def get_paginator(self, operation):
        assert operation == 'describe_instances'
        return FakePaginator(self)

    def terminate_instances(self, InstanceIds):
        self.terminate_calls.append(list(InstanceIds))
        for instance in self.instances:
            if instance['InstanceId'] in InstanceIds:
                instance['State'] = 'shutting-down'
        return {'TerminatingInstances': [{'InstanceId': i} for i in InstanceIds]}


@pytest.fixture
def store():
    return InMemoryStore(
        nodepools={'default': '1000', 'spot': '500'},
        nodeclaims={
            'default-abc12': 'default',
            'default-def34': 'default',
            'spot-ghi56': 'spot',
            'gpu-jkl78': 'gpu',
        },
    )


@pytest.fixture
def ec2():
    return FakeEC2(instances={
        'i-0001': {NODEPOOL_LABEL: 'default'},
        'i-0002': {NODEPOOL_LABEL: 'default'},
        'i-0003': {NODEPOOL_LABEL: 'spot'},
        'i-0004': {NODEPOOL_LABEL: 'gpu'},
        'i-0005': {'Name': 'bastion'},
    })
