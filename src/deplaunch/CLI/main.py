"""
Command Line Interface for deplaunch.
"""
import functools
import os
import shlex
import signal
import threading

import click

from ..exceptions import ConfigError, LauncherError
from ..MANAGERS.config_resolver import ConfigResolver, overridden_keys
from ..MANAGERS.orchestration_driver import OrchestrationDriver
from ..MANAGERS.readiness_verifier import ReadinessVerifier
from ..MODELS.launcher_settings import LauncherSettings
from ..MODELS.readiness_report import ReadinessReport
from ..PARSERS.services_parser import ServicesParser
from ..PARSERS.settings_file import SettingsFile
from ..REGISTRY.service_registry import default_registry
from ..RUNNERS.compose_runner import ComposeBackend
from ..RUNNERS.probes import probe_for_service
from ..UTILS.logging_setup import configure_logging

EXIT_NOT_READY = 5


def _handle_errors(f):
    """
    Turns launcher errors into a message on stderr and their exit status.
    """
    @functools.wraps(f)
    def wrapper(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except LauncherError as e:
            click.echo(f"Error: {e}", err=True)
            raise click.exceptions.Exit(e.exit_code)
    return wrapper


@click.group()
@click.option('--env-file', default='.env', show_default=True, envvar='DEPLAUNCH_ENV_FILE',
              help='Persisted settings file')
@click.option('--services-file', default=None, envvar='DEPLAUNCH_SERVICES_FILE',
              help='YAML file replacing the built-in service table')
@click.option('--project-name', '-p', default='deplaunch', show_default=True,
              envvar='DEPLAUNCH_PROJECT_NAME', help='Compose project name')
@click.option('--state-dir', default='.deplaunch', show_default=True, envvar='DEPLAUNCH_STATE_DIR',
              help='Directory for the generated compose file')
@click.option('--compose-command', default='docker compose', show_default=True,
              envvar='DEPLAUNCH_COMPOSE_COMMAND', help='Container orchestrator command')
@click.option('--service', '-s', 'services', multiple=True, help='Only act on this service (repeatable)')
@click.option('--verbose', '-v', is_flag=True, help='Log each step')
@click.pass_context
def cli(ctx, env_file, services_file, project_name, state_dir, compose_command, services, verbose):
    """
    deplaunch - starts and verifies local development services.

    Host bindings come from <SERVICE>_HOST / <SERVICE>_PORT in the process
    environment, then the settings file, then built-in defaults.
    """
    configure_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj['settings'] = LauncherSettings(
        project_name=project_name,
        env_file=env_file,
        services_file=services_file,
        state_dir=state_dir,
        compose_command=shlex.split(compose_command),
    )
    ctx.obj['services'] = list(services)


def _registry(ctx, scoped=True):
    settings = ctx.obj['settings']
    if settings.services_file:
        registry = ServicesParser().parse(settings.services_file)
    else:
        registry = default_registry()
    if scoped and ctx.obj['services']:
        registry = registry.subset(ctx.obj['services'])
    return registry


def _resolve(ctx, scoped=True, required=None):
    """
    :param scoped: Restrict to the services selected with --service.
    :param required: Services whose configuration errors are fatal; all by default.
    :return: (registry, resolved config, settings file)
    """
    registry = _registry(ctx, scoped)
    settings_file = SettingsFile(ctx.obj['settings'].env_file)
    config = ConfigResolver(registry, settings_file.load(), os.environ).resolve(required)
    return registry, config, settings_file


def _backend(ctx):
    backend = ctx.obj.get('backend')
    if backend is None:
        settings = ctx.obj['settings']
        backend = ComposeBackend(
            settings.project_name,
            state_dir=settings.state_dir,
            compose_command=settings.compose_command,
        )
    return backend


def _verify(ctx, registry, config, timeout, poll_interval) -> ReadinessReport:
    """
    Runs the verifier; Ctrl+C cancels the remaining probes.
    """
    settings = ctx.obj['settings']
    if timeout is None:
        timeout = settings.timeout
    if poll_interval is None:
        poll_interval = settings.poll_interval
    verifier = ReadinessVerifier(registry, config, ctx.obj.get('probe_factory', probe_for_service))
    cancel = threading.Event()
    previous = None
    if threading.current_thread() is threading.main_thread():
        previous = signal.signal(signal.SIGINT, lambda signum, frame: cancel.set())
    try:
        return verifier.verify(timeout, poll_interval, cancel=cancel)
    finally:
        if previous is not None:
            signal.signal(signal.SIGINT, previous)


def _print_report(report: ReadinessReport):
    click.echo(f"{'SERVICE':15} {'STATUS':10} {'ATTEMPTS':>8}  DETAIL")
    click.echo("-" * 60)
    for name, result in report.items():
        click.echo(f"{name:15} {result.status.value:10} {result.attempts:>8}  {result.detail or ''}")


def _finish_report(ctx, report: ReadinessReport):
    _print_report(report)
    if not report.all_ready:
        names = ", ".join(r.service for r in report.not_ready())
        click.echo(f"Not ready: {names}", err=True)
        ctx.exit(EXIT_NOT_READY)
    click.echo("All services ready.")


_timeout_option = click.option(
    '--timeout', type=float, default=None, envvar='DEPLAUNCH_TIMEOUT',
    help='Seconds to wait for each service [default: 120]')
_poll_option = click.option(
    '--poll-interval', type=float, default=None, envvar='DEPLAUNCH_POLL_INTERVAL',
    help='Seconds between readiness probes [default: 1]')


@cli.command()
@_timeout_option
@_poll_option
@click.option('--no-verify', is_flag=True, help='Do not wait for the services to become ready')
@click.pass_context
@_handle_errors
def setup(ctx, timeout, poll_interval, no_verify):
    """Start services and wait until they are ready."""
    registry = _registry(ctx)
    project, config, settings_file = _resolve(ctx, scoped=False, required=registry.names())
    if settings_file.write_if_absent(registry, config):
        click.echo(f"Wrote {settings_file.path}.")

    selected = ctx.obj['services'] or None
    OrchestrationDriver(project, config, _backend(ctx), selected=selected).start()
    click.echo("Services started.")

    if no_verify:
        return
    report = _verify(ctx, registry, config, timeout, poll_interval)
    _finish_report(ctx, report)


@cli.command()
@click.option('--purge-volumes', is_flag=True, help='Also delete named volumes and all their data')
@click.option('--yes', '-y', is_flag=True, help='Do not ask before deleting volumes')
@click.pass_context
@_handle_errors
def teardown(ctx, purge_volumes, yes):
    """
    Stop services, keeping their data unless --purge-volumes is given.

    Always acts on the whole project, regardless of --service.
    """
    # Bad overrides fall back to defaults; removal does not use the bindings.
    registry, config, _ = _resolve(ctx, scoped=False, required=())
    if purge_volumes and not yes:
        volumes = ", ".join(d.volume_name for d in registry)
        click.confirm(f"Delete volumes {volumes} and all data in them?", abort=True)

    OrchestrationDriver(registry, config, _backend(ctx)).stop(preserve_volumes=not purge_volumes)
    if purge_volumes:
        click.echo("Services stopped, volumes deleted.")
    else:
        click.echo("Services stopped, volumes kept.")


@cli.command()
@_timeout_option
@_poll_option
@click.pass_context
@_handle_errors
def verify(ctx, timeout, poll_interval):
    """Check that services are ready."""
    registry, config, _ = _resolve(ctx)
    report = _verify(ctx, registry, config, timeout, poll_interval)
    _finish_report(ctx, report)


cli.add_command(verify, name='test')


@cli.command()
@click.pass_context
@_handle_errors
def status(ctx):
    """List service status."""
    registry, config, _ = _resolve(ctx)
    states = OrchestrationDriver(registry, config, _backend(ctx)).status()
    click.echo(f"{'SERVICE':15} {'ADDRESS':22} {'STATUS':10}")
    click.echo("-" * 49)
    for name, state in states.items():
        address = f"{config[name].host}:{config[name].port}"
        click.echo(f"{name:15} {address:22} {state:10}")


@cli.command()
@click.pass_context
@_handle_errors
def config(ctx):
    """Show resolved host bindings and where each value came from."""
    registry = _registry(ctx)
    settings_file = SettingsFile(ctx.obj['settings'].env_file)
    file_values = settings_file.load()
    resolver = ConfigResolver(registry, file_values, os.environ)
    entries, errors = resolver.resolve_all()

    click.echo(f"{'SERVICE':15} {'HOST':16} {'PORT':>6}  SOURCE (host/port)")
    click.echo("-" * 60)
    for name in registry.names():
        if name in errors:
            click.echo(f"{name:15} error: {errors[name]}")
            continue
        entry = entries[name]
        click.echo(
            f"{name:15} {entry.host:16} {entry.port:>6}  "
            f"{entry.host_source.value}/{entry.port_source.value}"
        )

    shadowed = set(overridden_keys(registry, file_values)) & set(overridden_keys(registry, os.environ))
    for key in sorted(shadowed):
        click.echo(f"Warning: {key} is set in both the environment and {settings_file.path}; "
                   "the environment wins.", err=True)

    if errors:
        ctx.exit(ConfigError.exit_code)


def main():
    """
    Main entry point for the CLI.
    """
    cli(obj={})


if __name__ == '__main__':
    main()
