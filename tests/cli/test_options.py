import re

import pytest

from ktail.cli import log_enter, log_error, log_exit
from ktail.structs.bodies import parse_pod
from ktail.structs.credentials import LoginError
from ktail.structs.selectors import Selector


def test_help(invoke):
    result = invoke(['run', '--help'])
    assert result.exit_code == 0
    assert '--namespace' in result.output
    assert '--all-namespaces' in result.output


def test_defaults(invoke, run_mock, settings):
    result = invoke(['run'])
    assert result.exit_code == 0, result.output
    assert run_mock.call_count == 1
    kwargs = run_mock.call_args.kwargs
    assert kwargs['settings'] is settings
    assert kwargs['namespace'] is None
    assert kwargs['clusterwide'] is False
    assert kwargs['selector'] is None
    assert kwargs['context'] is None
    assert kwargs['debug'] is False
    assert kwargs['enter_fn'] is log_enter
    assert kwargs['exit_fn'] is log_exit
    assert kwargs['error_fn'] is log_error
    assert callable(kwargs['filter_fn'])
    assert callable(kwargs['event_fn'])


def test_namespace(invoke, run_mock):
    result = invoke(['run', '-n', 'ns1'])
    assert result.exit_code == 0, result.output
    assert run_mock.call_args.kwargs['namespace'] == 'ns1'


def test_clusterwide(invoke, run_mock):
    result = invoke(['run', '--all-namespaces'])
    assert result.exit_code == 0, result.output
    assert run_mock.call_args.kwargs['clusterwide'] is True


def test_namespace_and_clusterwide_are_mutually_exclusive(invoke, run_mock):
    result = invoke(['run', '-n', 'ns1', '-A'])
    assert result.exit_code == 2
    assert 'not both' in result.output
    assert not run_mock.called


def test_selector(invoke, run_mock):
    result = invoke(['run', '-l', 'app=x,tier!=db'])
    assert result.exit_code == 0, result.output
    selector = run_mock.call_args.kwargs['selector']
    assert isinstance(selector, Selector)


def test_invalid_selector(invoke, run_mock):
    result = invoke(['run', '-l', 'app in (x'])
    assert result.exit_code == 2
    assert not run_mock.called


def test_invalid_pattern(invoke, run_mock):
    result = invoke(['run', '(unclosed'])
    assert result.exit_code == 2
    assert 'not a valid regular expression' in result.output
    assert not run_mock.called


def test_context(invoke, run_mock):
    result = invoke(['run', '--context', 'ctx1'])
    assert result.exit_code == 0, result.output
    assert run_mock.call_args.kwargs['context'] == 'ctx1'


def test_debug(invoke, run_mock):
    result = invoke(['run', '--debug'])
    assert result.exit_code == 0, result.output
    assert run_mock.call_args.kwargs['debug'] is True


@pytest.mark.parametrize('since, seconds', [
    ('30', 30),
    ('30s', 30),
    ('5m', 300),
    ('2h', 7200),
    ('1d', 86400),
    ('1h30m', 5400),
])
def test_since(invoke, run_mock, settings, since, seconds):
    result = invoke(['run', '--since', since])
    assert result.exit_code == 0, result.output
    assert settings.tailing.since_seconds == seconds


@pytest.mark.parametrize('since', ['abc', '5x', '-5', 'm5'])
def test_invalid_since(invoke, run_mock, since):
    result = invoke(['run', '--since', since])
    assert result.exit_code == 2
    assert not run_mock.called


def test_tail(invoke, run_mock, settings):
    result = invoke(['run', '--tail', '10'])
    assert result.exit_code == 0, result.output
    assert settings.tailing.tail_lines == 10


def test_unset_since_and_tail_keep_the_settings(invoke, run_mock, settings):
    settings.tailing.since_seconds = 123
    settings.tailing.tail_lines = 45
    result = invoke(['run'])
    assert result.exit_code == 0, result.output
    assert settings.tailing.since_seconds == 123
    assert settings.tailing.tail_lines == 45


def test_envvars(invoke, run_mock):
    result = invoke(['run'], env={'KTAIL_RUN_NAMESPACE': 'ns-from-env'})
    assert result.exit_code == 0, result.output
    assert run_mock.call_args.kwargs['namespace'] == 'ns-from-env'


def test_default_settings_without_controls(invoke, run_mock):
    result = invoke(['run', '--since', '1m'], obj=None)
    assert result.exit_code == 0, result.output
    settings = run_mock.call_args.kwargs['settings']
    assert settings.tailing.since_seconds == 60


def test_login_errors_are_reported(invoke, run_mock):
    run_mock.side_effect = LoginError("Cannot authenticate.")
    result = invoke(['run'])
    assert result.exit_code == 1
    assert 'Cannot authenticate.' in result.output


def test_patterns_and_excludes_are_passed_to_the_filter(invoke, run_mock, make_body):
    result = invoke(['run', 'web', '-x', re.escape('sidecar')])
    assert result.exit_code == 0, result.output
    filter_fn = run_mock.call_args.kwargs['filter_fn']

    pod = parse_pod(make_body('web-1', containers=['main', 'sidecar']))
    assert filter_fn(pod, pod.containers[0])
    assert not filter_fn(pod, pod.containers[1])
