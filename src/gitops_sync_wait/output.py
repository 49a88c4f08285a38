"""Report rendering and output variables.

This module turns a FinalReport into a terminal summary, CI output
variables (``key=value`` lines as understood by GitHub Actions'
``$GITHUB_OUTPUT``) and a machine-readable report file.
"""

import json
import uuid
from pathlib import Path

import yaml
from icecream import ic

from gitops_sync_wait import console
from gitops_sync_wait.models import FinalReport, Status

_PANEL_STYLES: dict[Status, str] = {
    Status.READY: "green",
    Status.NO_WORKLOADS: "yellow",
    Status.TIMEOUT: "yellow",
    Status.FAILED: "red",
}


def print_summary(report: FinalReport) -> None:
    """Print the report as a summary panel followed by per-workload problems.

    Args:
        report: The report to print.

    """
    console.newline()
    console.summary_panel(
        f"Sync {report.status.value}",
        {
            "Status": report.status.value,
            "Strategy": report.strategy.value if report.strategy else "-",
            "Detection": report.detection_method.value,
            "Workloads": f"{report.workloads_ready}/{report.workloads_found} ready",
            "Version matched": report.version_matched.value,
            "Deployment id matched": report.deployment_id_matched.value,
            "Elapsed": f"{report.elapsed:.0f}s",
        },
        border_style=_PANEL_STYLES[report.status],
    )

    for outcome in report.failed_workloads:
        console.error(f"{console.highlight(str(outcome.ref))}: {outcome.reason}")
    for outcome in report.pending_workloads:
        console.warning(f"{console.highlight(str(outcome.ref))}: {outcome.reason}")

    match report.status:
        case Status.READY:
            console.success(report.message)
        case Status.NO_WORKLOADS:
            console.warning(report.message)
        case _:
            console.error(report.message)


def format_outputs(outputs: dict[str, str]) -> str:
    """Format output variables as ``key=value`` lines.

    Multi-line values use the ``key<<DELIMITER`` form.

    Args:
        outputs: Output variables.

    Returns:
        The formatted lines, newline terminated.

    """
    lines: list[str] = []
    for key, value in outputs.items():
        if "\n" in value:
            delimiter = f"ghadelimiter_{uuid.uuid4()}"
            lines.extend([f"{key}<<{delimiter}", value, delimiter])
        else:
            lines.append(f"{key}={value}")
    return "\n".join(lines) + "\n"


def write_outputs(report: FinalReport, path: str | Path) -> None:
    """Append the report's output variables to ``path``.

    Args:
        report: The report to export.
        path: Output file, typically the file named by ``$GITHUB_OUTPUT``.

    """
    outputs = report.outputs()
    ic(outputs)
    with open(path, "a", encoding="utf-8") as stream:
        stream.write(format_outputs(outputs))
    console.step(f"Output variables written to {console.highlight(str(path))}")


def write_report(report: FinalReport, path: str | Path) -> None:
    """Write the full report to ``path``.

    YAML is written for ``.yaml``/``.yml`` files, JSON otherwise.

    Args:
        report: The report to export.
        path: Destination file.

    """
    path = Path(path)
    data = report.to_dict()
    with path.open("w", encoding="utf-8") as stream:
        if path.suffix in (".yaml", ".yml"):
            yaml.safe_dump(data, stream, sort_keys=False)
        else:
            json.dump(data, stream, indent=2)
            stream.write("\n")
    console.step(f"Report written to {console.highlight(str(path))}")
