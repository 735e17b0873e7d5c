import pytest

from ktail.structs.bodies import Container, Pod, parse_pod


def test_parsing_a_full_pod(make_body):
    body = make_body('pod1', namespace='ns1', labels={'app': 'x'}, containers=['c1', 'c2'], uid='u1')

    pod = parse_pod(body)

    assert pod == Pod(namespace='ns1', name='pod1', uid='u1', labels={'app': 'x'},
                      containers=(Container('c1', 'busybox'), Container('c2', 'busybox')))


def test_parsing_a_listed_pod_without_kind():
    pod = parse_pod({'metadata': {'name': 'pod1', 'namespace': 'ns1'},
                     'spec': {'containers': [{'name': 'c1'}]}})
    assert pod is not None
    assert pod.name == 'pod1'
    assert pod.containers == (Container('c1'),)


def test_parsing_a_pod_without_labels():
    pod = parse_pod({'metadata': {'name': 'pod1', 'namespace': 'ns1'},
                     'spec': {'containers': []}})
    assert pod is not None
    assert pod.labels == {}
    assert pod.containers == ()
    assert pod.uid is None


def test_labels_are_copied(make_body):
    body = make_body('pod1', labels={'app': 'x'})
    pod = parse_pod(body)
    body['metadata']['labels']['app'] = 'y'
    assert pod.labels == {'app': 'x'}


def test_pods_are_immutable(make_body):
    pod = parse_pod(make_body('pod1'))
    with pytest.raises(AttributeError):
        pod.name = 'pod2'


def test_pods_are_hashable_regardless_of_labels(make_body):
    pod = parse_pod(make_body('pod1', labels={'app': 'x'}))
    assert hash(pod) == hash(pod)


def test_pod_rendering(make_body):
    pod = parse_pod(make_body('pod1', namespace='ns1'))
    assert str(pod) == 'ns1/pod1'


@pytest.mark.parametrize('raw', [
    None,
    123,
    'pod',
    [],
    {},
    {'kind': 'Service', 'metadata': {'name': 'svc'}, 'spec': {'containers': []}},
    {'metadata': {'name': 'pod1'}},
    {'spec': {'containers': []}},
    {'metadata': 'pod1', 'spec': {'containers': []}},
    {'metadata': {'name': ''}, 'spec': {'containers': []}},
    {'metadata': {'name': 'pod1'}, 'spec': {}},
    {'metadata': {'name': 'pod1'}, 'spec': {'containers': None}},
    {'metadata': {'name': 'pod1'}, 'spec': {'containers': [{}]}},
    {'metadata': {'name': 'pod1'}, 'spec': {'containers': ['c1']}},
])
def test_malformed_bodies(raw):
    assert parse_pod(raw) is None
