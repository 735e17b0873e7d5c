import click.testing
import pytest

from ktail.cli import CLIControls, main


@pytest.fixture()
def run_mock(mocker):
    return mocker.patch('ktail.reactor.running.run')


@pytest.fixture()
def invoke(settings):
    runner = click.testing.CliRunner()

    def invoke_fn(args, **kwargs):
        kwargs.setdefault('obj', CLIControls(settings=settings))
        return runner.invoke(main, args, **kwargs)

    return invoke_fn
