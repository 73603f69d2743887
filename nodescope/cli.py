# nodescope/cli.py - Command-line interface
"""
Command-line interface for the nodescope diagnostic agent.
"""

import logging
import sys
from datetime import datetime, timezone

import click
from kubernetes.config.config_exception import ConfigException

from nodescope.errors import ConfigError, UnsupportedEnvironmentError
from nodescope.utils.config import Config
from nodescope.utils.helpers import prerequisite_checks
from nodescope.utils.logger import setup_logging
from nodescope.utils.runtime_info import RuntimeInfo


logger = logging.getLogger(__name__)


def _load_runtime(config_file):
    cfg = Config(config_file)
    try:
        runtime_info = RuntimeInfo.from_env(cfg)
    except ConfigError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    return cfg, runtime_info


def _load_api_client():
    from nodescope.utils.kube import load_api_client

    try:
        return load_api_client()
    except (ConfigException, OSError) as e:
        logger.warning(f"Kubernetes API unavailable, cluster collectors disabled: {e}")
        return None


@click.group()
@click.option('--log-level', default='INFO', type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR']))
@click.option('--log-file', type=click.Path(), help='Log file path')
@click.pass_context
def cli(ctx, log_level, log_file):
    """
    nodescope per-node diagnostic agent

    Collects traces and metrics from this node and uploads them to object storage.
    """
    ctx.ensure_object(dict)
    setup_logging(level=log_level, log_file=log_file)

    ctx.obj['log_level'] = log_level
    ctx.obj['log_file'] = log_file


@cli.command()
@click.option('--config', 'config_file', type=click.Path(), default=None, help='Configuration file')
@click.option('--collection-period', type=float, help='Trace window in seconds')
@click.option('--max-workers', type=int, help='Collectors run concurrently')
@click.option('--archive/--no-archive', default=None, help='Also upload a zip of all outputs')
def run(config_file, collection_period, max_workers, archive):
    """
    Run one collection pass and export the results.

    Example:
        nodescope run --config configs/default.yaml --collection-period 30
    """
    from nodescope.collector.orchestrator import Orchestrator, build_collectors
    from nodescope.collector.trace_base import make_duration_waiter
    from nodescope.exporters.metrics import AgentMetrics
    from nodescope.exporters.object_storage import ObjectStorageExporter

    cfg, runtime_info = _load_runtime(config_file)

    if collection_period is not None:
        cfg.set('agent.collection_period', collection_period)
    if max_workers is not None:
        cfg.set('agent.max_workers', max_workers)
    if archive is not None:
        cfg.set('agent.archive', archive)

    creation_time = datetime.now(timezone.utc).strftime('%Y-%m-%dT%H:%M:%SZ')
    logger.info(f"Starting run {creation_time} on node {runtime_info.host_node_name}")

    waiter = make_duration_waiter(cfg.get('agent.collection_period'))
    collectors = build_collectors(runtime_info, cfg, waiter, api_client=_load_api_client())

    orchestrator = Orchestrator(
        collectors,
        ObjectStorageExporter(runtime_info, creation_time),
        max_workers=cfg.get('agent.max_workers', 1),
        metrics=AgentMetrics(),
        archive=cfg.get('agent.archive', False),
    )
    result = orchestrator.run()

    if result.collect_error:
        logger.error(str(result.collect_error))
    for name, err in result.export_errors.items():
        logger.error(f"Export of {name} failed: {err}")

    click.echo(f"Exported {len(result.exported)} items")


@cli.command()
def check():
    """
    Check host prerequisites for the kernel tracers.
    """
    all_passed = True

    click.echo("Checking prerequisites...")
    for name, passed in prerequisite_checks():
        click.echo(f"  {'✓' if passed else '✗'} {name}")
        all_passed = all_passed and passed

    if all_passed:
        click.echo("\n✓ All prerequisites met!")
        sys.exit(0)

    click.echo("\n✗ Some prerequisites are missing")
    sys.exit(1)


@cli.command()
@click.option('--config', 'config_file', type=click.Path(), default=None, help='Configuration file')
def collectors(config_file):
    """
    List collectors and whether they are supported on this node.
    """
    from nodescope.collector.orchestrator import build_collectors

    cfg, runtime_info = _load_runtime(config_file)

    for collector in build_collectors(runtime_info, cfg, lambda: None, api_client=_load_api_client()):
        try:
            collector.check_supported()
            click.echo(f"  ✓ {collector.get_name()}")
        except UnsupportedEnvironmentError as e:
            click.echo(f"  ✗ {collector.get_name()}: {e.reason}")


if __name__ == '__main__':
    cli(obj={})
