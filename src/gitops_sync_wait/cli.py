#!/usr/bin/env python
"""Command-line interface for gitops-sync-wait.

This module provides the main CLI entry point, turning command-line
options into a validated configuration, running the sync check and
mapping its status to the process exit code.
"""

import re
import sys
from typing import Any

import click
from icecream import ic

from gitops_sync_wait import __version__, console
from gitops_sync_wait.cluster import Cluster
from gitops_sync_wait.exceptions import ClusterConnectionError, ClusterReadError, ConfigurationError
from gitops_sync_wait.models import (
    DEFAULT_DEPLOYMENT_ID_ANNOTATION,
    DEFAULT_VERSION_LABEL,
    DetectionConfig,
    WatchTarget,
    WorkloadKind,
)
from gitops_sync_wait.output import print_summary, write_outputs, write_report
from gitops_sync_wait.timing import Cancellation, cancel_on_signals
from gitops_sync_wait.watcher import SyncWatcher

_DURATION_PATTERN = re.compile(r"^(?:(?P<hours>\d+)h)?(?:(?P<minutes>\d+)m)?(?:(?P<seconds>\d+(?:\.\d+)?)s)?$")


class Duration(click.ParamType):
    """A duration given as plain seconds (``90``) or with units (``1h30m``, ``5m``, ``45s``)."""

    name = "duration"

    def convert(self, value: Any, param: click.Parameter | None, ctx: click.Context | None) -> float:
        if isinstance(value, int | float):
            return float(value)

        text = str(value).strip().lower()
        try:
            return float(text)
        except ValueError:
            pass

        match = _DURATION_PATTERN.match(text)
        if match is None or not any(match.groups()):
            self.fail(f"'{value}' is not a valid duration (examples: 90, 90s, 5m, 1h30m)", param, ctx)

        hours = int(match["hours"] or 0)
        minutes = int(match["minutes"] or 0)
        seconds = float(match["seconds"] or 0)
        return hours * 3600 + minutes * 60 + seconds


DURATION = Duration()


def build_config(
    *,
    app: str | None,
    selector: str | None,
    namespace: str,
    kinds: tuple[str, ...],
    deployment_id: str | None,
    expected_version: str | None,
    timeout: float,
    fallback_timeout: float,
    poll_interval: float,
) -> tuple[WatchTarget, DetectionConfig]:
    """Validate CLI options and build the run configuration.

    Args:
        app: Application name.
        selector: Explicit label selector.
        namespace: Namespace to watch.
        kinds: Workload kind names; all kinds when empty.
        deployment_id: Expected deployment id.
        expected_version: Expected version label value.
        timeout: Overall timeout in seconds.
        fallback_timeout: Fallback timeout in seconds.
        poll_interval: Seconds between polls.

    Returns:
        The watch target and the detection configuration.

    Raises:
        ConfigurationError: If the options are inconsistent.

    """
    if poll_interval <= 0:
        raise ConfigurationError("Poll interval must be greater than zero")

    target = WatchTarget.build(
        namespace=namespace,
        app=app,
        selector=selector,
        kinds=tuple(WorkloadKind(kind) for kind in kinds) or None,
    )
    detection_config = DetectionConfig(
        expected_deployment_id=deployment_id,
        expected_version=expected_version,
        overall_timeout=timeout,
        fallback_timeout=fallback_timeout,
    )
    ic(target, detection_config)
    return target, detection_config


@click.command(help="Wait until a GitOps sync is applied to the cluster and rolled out")
@click.option("--version", "-v", required=False, is_flag=True, help="print version")
@click.option("--debug", required=False, is_flag=True, help="print debug information")
@click.option("--app", "-a", required=False, help="application name, matched against app.kubernetes.io/instance")
@click.option("--selector", "-l", required=False, help="label selector, takes precedence over --app")
@click.option("--namespace", "-n", default="default", show_default=True, help="namespace of the workloads")
@click.option("--deployment-id", required=False, help="deployment id the workloads are expected to carry")
@click.option("--expected-version", required=False, help="version label value the workloads are expected to carry")
@click.option("--timeout", type=DURATION, default="5m", show_default=True, help="overall time budget")
@click.option(
    "--fallback-timeout",
    type=DURATION,
    default="3m",
    show_default=True,
    help="time without visible change after which a rolled out workload set counts as synced",
)
@click.option("--poll-interval", type=DURATION, default="5s", show_default=True, help="time between polls")
@click.option(
    "--kind",
    "kinds",
    multiple=True,
    type=click.Choice([kind.value for kind in WorkloadKind]),
    help="workload kind to watch (repeatable, default: all)",
)
@click.option("--context", required=False, help="kubeconfig context to use")
@click.option(
    "--deployment-id-annotation",
    default=DEFAULT_DEPLOYMENT_ID_ANNOTATION,
    show_default=True,
    help="annotation holding the deployment id",
)
@click.option("--version-label", default=DEFAULT_VERSION_LABEL, show_default=True, help="label holding the version")
@click.option(
    "--output-file",
    envvar="GITHUB_OUTPUT",
    type=click.Path(dir_okay=False),
    help="file to append output variables to [env: GITHUB_OUTPUT]",
)
@click.option("--report-file", type=click.Path(dir_okay=False), help="write the report as JSON or YAML")
def cli(
    version: bool,
    debug: bool,
    app: str | None,
    selector: str | None,
    namespace: str,
    deployment_id: str | None,
    expected_version: str | None,
    timeout: float,
    fallback_timeout: float,
    poll_interval: float,
    kinds: tuple[str, ...],
    context: str | None,
    deployment_id_annotation: str,
    version_label: str,
    output_file: str | None,
    report_file: str | None,
) -> None:
    """Process CLI arguments, run the sync check and exit with its status code.

    Exit codes: 0 for Ready and NoWorkloads, 1 for Failed and for
    configuration or cluster errors, 2 for Timeout.

    """
    if not debug:
        ic.disable()

    if version:
        click.echo(__version__)
        return

    try:
        target, detection_config = build_config(
            app=app,
            selector=selector,
            namespace=namespace,
            kinds=kinds,
            deployment_id=deployment_id,
            expected_version=expected_version,
            timeout=timeout,
            fallback_timeout=fallback_timeout,
            poll_interval=poll_interval,
        )
        cluster = Cluster(
            context=context,
            deployment_id_annotation=deployment_id_annotation,
            version_label=version_label,
        )
    except ConfigurationError as e:
        console.error(f"Invalid configuration: {e}")
        sys.exit(1)
    except ClusterConnectionError as e:
        console.error(f"Cluster connection failed: {e}")
        sys.exit(1)

    watcher = SyncWatcher(cluster, target, detection_config, poll_interval=poll_interval, cancellation=Cancellation())
    try:
        with cancel_on_signals(watcher.cancellation):
            report = watcher.run()
    except ClusterReadError as e:
        console.error(str(e))
        sys.exit(1)

    print_summary(report)
    if output_file:
        write_outputs(report, output_file)
    if report_file:
        write_report(report, report_file)

    sys.exit(report.status.exit_code)


if __name__ == "__main__":
    cli()
