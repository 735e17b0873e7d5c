import dataclasses
import functools
import json
import re
from typing import Any, Callable, Collection, List, Optional, Pattern

import click

from ktail.engines import loggers
from ktail.reactor import running
from ktail.structs import bodies, callbacks, configuration, credentials, selectors


@dataclasses.dataclass()
class CLIControls:
    """ Controls, which are impossible to pass via CLI (e.g. in tests or when embedded). """
    settings: Optional[configuration.Settings] = None


class LogFormatParamType(click.Choice):

    def __init__(self) -> None:
        super().__init__(choices=[v.name.lower() for v in loggers.LogFormat])

    def convert(self, value: Any, param: Any, ctx: Any) -> loggers.LogFormat:
        name: str = super().convert(value, param, ctx)
        return loggers.LogFormat[name.upper()]


class SelectorParamType(click.ParamType):
    name = 'selector'

    def convert(self, value: Any, param: Any, ctx: Any) -> selectors.Selector:
        if isinstance(value, selectors.Selector):
            return value
        try:
            return selectors.parse_selector(value)
        except selectors.SelectorError as e:
            self.fail(str(e), param, ctx)


class PatternParamType(click.ParamType):
    name = 'pattern'

    def convert(self, value: Any, param: Any, ctx: Any) -> Pattern[str]:
        if isinstance(value, re.Pattern):
            return value
        try:
            return re.compile(value)
        except re.error as e:
            self.fail(f"{value!r} is not a valid regular expression: {e}", param, ctx)


class DurationParamType(click.ParamType):
    """ Durations as in kubectl: ``30s``, ``5m``, ``2h``, ``1h30m``, or plain seconds. """
    name = 'duration'

    UNITS = {'s': 1, 'm': 60, 'h': 60 * 60, 'd': 24 * 60 * 60}
    REGEXP = re.compile(r'^(?:(\d+)([smhd]))+$')
    PART_REGEXP = re.compile(r'(\d+)([smhd])')

    def convert(self, value: Any, param: Any, ctx: Any) -> int:
        if isinstance(value, int):
            return value
        text = str(value).strip()
        if text.isdigit():
            return int(text)
        if not self.REGEXP.match(text):
            self.fail(f"{value!r} is not a valid duration.", param, ctx)
        return sum(int(number) * self.UNITS[unit] for number, unit in self.PART_REGEXP.findall(text))


def logging_options(fn: Callable[..., Any]) -> Callable[..., Any]:
    """ A decorator to configure logging in all commands the same way."""
    @click.option('-v', '--verbose', is_flag=True)
    @click.option('-d', '--debug', is_flag=True)
    @click.option('-q', '--quiet', is_flag=True)
    @click.option('--log-format', type=LogFormatParamType(), default='full')
    @click.option('--log-refkey', type=str)
    @click.option('--log-prefix/--no-log-prefix', default=None)
    @functools.wraps(fn)  # to preserve other opts/args
    def wrapper(verbose: bool, quiet: bool, debug: bool,
                log_format: loggers.LogFormat = loggers.LogFormat.FULL,
                log_prefix: Optional[bool] = False,
                log_refkey: Optional[str] = None,
                *args: Any, **kwargs: Any) -> Any:
        loggers.configure(debug=debug, verbose=verbose, quiet=quiet,
                          log_format=log_format, log_refkey=log_refkey, log_prefix=log_prefix)
        return fn(*args, debug=debug, **kwargs)

    return wrapper


@click.version_option(prog_name='ktail')
@click.group(name='ktail', context_settings=dict(
    auto_envvar_prefix='KTAIL',
))
def main() -> None:
    pass


@main.command()
@logging_options
@click.option('-n', '--namespace', type=str)
@click.option('-A', '--all-namespaces', 'clusterwide', is_flag=True)
@click.option('-l', '--selector', type=SelectorParamType())
@click.option('-x', '--exclude', 'excludes', type=PatternParamType(), multiple=True)
@click.option('--context', type=str)
@click.option('--since', type=DurationParamType())
@click.option('--tail', type=int)
@click.option('--raw/--no-raw', default=False)
@click.option('-o', '--output', type=click.Choice(['text', 'json']), default='text')
@click.argument('patterns', type=PatternParamType(), nargs=-1)
@click.make_pass_decorator(CLIControls, ensure=True)
def run(
        __controls: CLIControls,
        patterns: List[Pattern[str]],
        excludes: List[Pattern[str]],
        namespace: Optional[str],
        clusterwide: bool,
        selector: Optional[selectors.Selector],
        context: Optional[str],
        since: Optional[int],
        tail: Optional[int],
        raw: bool,
        output: str,
        debug: bool,
) -> None:
    """ Tail the logs of all containers matching the patterns, as they come and go. """
    if namespace and clusterwide:
        raise click.UsageError("Either --namespace or --all-namespaces can be used, not both.")

    settings = __controls.settings if __controls.settings is not None else configuration.Settings()
    if since is not None:
        settings.tailing.since_seconds = since
    if tail is not None:
        settings.tailing.tail_lines = tail

    try:
        return running.run(
            debug=debug,
            settings=settings,
            namespace=namespace,
            clusterwide=clusterwide,
            selector=selector,
            context=context,
            filter_fn=make_filter(patterns=patterns, excludes=excludes),
            event_fn=make_printer(output=output, raw=raw),
            enter_fn=log_enter,
            exit_fn=log_exit,
            error_fn=log_error,
        )
    except credentials.LoginError as e:
        raise click.ClickException(str(e))


def make_filter(
        *,
        patterns: Collection[Pattern[str]] = (),
        excludes: Collection[Pattern[str]] = (),
) -> callbacks.ContainerFilterFn:
    """
    Accept the containers whose pod or container name matches any of
    the patterns (all containers if there are no patterns),
    unless either name matches any of the exclusions.
    """
    def filter_fn(pod: bodies.Pod, container: bodies.Container) -> bool:
        names = [pod.name, container.name]
        included = not patterns or any(p.search(n) for p in patterns for n in names)
        excluded = any(p.search(n) for p in excludes for n in names)
        return included and not excluded

    return filter_fn


def make_printer(
        *,
        output: str = 'text',
        raw: bool = False,
) -> callbacks.LogEventFn:
    """ Print every log line to stdout: prefixed text, bare text, or JSON. """
    def print_event(event: callbacks.LogEvent) -> None:
        if output == 'json':
            click.echo(json.dumps(dict(
                namespace=event.pod.namespace,
                pod=event.pod.name,
                container=event.container.name,
                timestamp=event.timestamp.isoformat() if event.timestamp is not None else None,
                message=event.message,
            )))
        elif raw:
            click.echo(event.message)
        else:
            ref = f'{event.pod.namespace}/{event.pod.name}/{event.container.name}'
            click.echo(f'[{ref}] {event.message}')

    return print_event


def log_enter(pod: bodies.Pod, container: bodies.Container) -> None:
    loggers.ContainerLogger(pod=pod, container=container).debug("The container is noticed.")


def log_exit(pod: bodies.Pod, container: bodies.Container) -> None:
    loggers.ContainerLogger(pod=pod, container=container).info("The container is gone.")


def log_error(pod: bodies.Pod, container: bodies.Container, exc: BaseException) -> None:
    loggers.ContainerLogger(pod=pod, container=container).warning(
        "The container is not tailed anymore until its pod is re-created.")
