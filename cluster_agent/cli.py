"""Main CLI entry point for inspecting agent deployment decisions."""

import sys
from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from cluster_agent.exceptions import ClusterAgentError
from cluster_agent.logging_config import get_logger, setup_logging

app = typer.Typer(
    name="cluster-agent",
    help="Inspect and plan downstream agent deployments for managed clusters",
    add_completion=False,
)

console = Console()
logger = get_logger(__name__)

DEFAULT_STORE = "clusters.yml"


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
    log_file: str | None = typer.Option(None, "--log-file", help="Path to log file"),
):
    """Global options for all commands."""
    log_path = Path(log_file) if log_file else None
    setup_logging(level="WARNING", verbose=verbose, log_file=log_path)
    logger.debug("Logging initialized")


def _fail(error: ClusterAgentError) -> None:
    console.print(f"[red]Error:[/red] {escape(error.message)}")
    if error.details:
        console.print(f"\n{escape(error.details)}")
    raise typer.Exit(code=1)


@app.command()
def version() -> None:
    """Show version information."""
    from cluster_agent import __version__

    typer.echo(f"cluster-agent version {__version__}")


@app.command()
def taints(
    cluster_name: str = typer.Argument(..., help="Name of the managed cluster"),
    store_path: str = typer.Option(DEFAULT_STORE, "--store", "-s", help="Path to cluster store"),
) -> None:
    """
    Show the control-plane taints the agent must tolerate.

    Taints are collected from nodes carrying a control-plane role label;
    Kubernetes-internal taints are skipped.
    """
    from cluster_agent.store import ClusterStore
    from cluster_agent.taints import collect_control_plane_taints

    try:
        nodes = ClusterStore(store_path).list_nodes(cluster_name)
    except ClusterAgentError as e:
        _fail(e)

    if not nodes:
        console.print(f"[yellow]No nodes found for cluster '{cluster_name}'[/yellow]")
        return

    collected = collect_control_plane_taints(nodes)
    control_plane = [n.name for n in nodes if n.is_control_plane]
    console.print(f"[bold]Control-plane nodes:[/bold] {', '.join(control_plane) or 'none'}")

    if not collected:
        console.print("[green]No control-plane taints[/green]")
        return

    table = Table(title=f"Control-plane taints for {cluster_name}")
    table.add_column("Key", style="cyan")
    table.add_column("Value", style="magenta")
    table.add_column("Effect", style="yellow")
    for taint in collected:
        table.add_row(taint.key, taint.value, taint.effect)
    console.print(table)


@app.command()
def plan(
    cluster_name: str = typer.Argument(..., help="Name of the managed cluster"),
    store_path: str = typer.Option(DEFAULT_STORE, "--store", "-s", help="Path to cluster store"),
    settings_path: str | None = typer.Option(
        None, "--settings", help="Settings YAML file (default: CLUSTER_AGENT_* environment)"
    ),
    observed_node_agent: str | None = typer.Option(
        None, "--observed-node-agent", help="Node agent image running downstream"
    ),
    observed_cluster_agent: str | None = typer.Option(
        None, "--observed-cluster-agent", help="Cluster agent image running downstream"
    ),
    observed_taints: list[str] = typer.Option(
        [],
        "--observed-taint",
        help="Taint the running agent tolerates, as key=value:effect (repeatable)",
    ),
) -> None:
    """
    Show whether the cluster's agent would be redeployed, and why.

    Observed images default to the image recorded in the cluster status and
    observed taints default to the current control-plane taints, i.e. the
    downstream cluster is assumed to be in sync unless told otherwise.
    """
    from cluster_agent.cache import AgentImages, ImageCache, TaintCache
    from cluster_agent.decision import (
        applied_private_repo,
        agent_features_changed,
        private_repo_changed,
        redeploy_agent,
    )
    from cluster_agent.images import desired_agent_image, desired_auth_image, get_private_repo
    from cluster_agent.models.cluster import ConditionType
    from cluster_agent.models.node import NodeTaint
    from cluster_agent.settings import DeploySettings
    from cluster_agent.store import ClusterStore
    from cluster_agent.taints import collect_control_plane_taints, get_to_diff_taints

    try:
        settings = DeploySettings.load(settings_path) if settings_path else DeploySettings.from_env()
        store = ClusterStore(store_path)
        cluster = store.get_cluster(cluster_name)
        if cluster is None:
            console.print(f"[red]Error:[/red] Cluster '{cluster_name}' not found in store")
            raise typer.Exit(code=1)
        nodes = store.list_nodes(cluster_name)
    except ClusterAgentError as e:
        _fail(e)

    try:
        parsed_taints = [NodeTaint.parse(t) for t in observed_taints]
    except ValueError as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise typer.Exit(code=1)

    agent = desired_agent_image(cluster, settings)
    auth = desired_auth_image(cluster, settings)
    features = dict(settings.agent_features)
    desired_taints = collect_control_plane_taints(nodes)

    observed = AgentImages(
        node_agent=(
            observed_node_agent
            if observed_node_agent is not None
            else (cluster.status.agent_image if cluster.is_rke else "")
        ),
        cluster_agent=(
            observed_cluster_agent
            if observed_cluster_agent is not None
            else cluster.status.agent_image
        ),
    )
    current_taints = parsed_taints if observed_taints else desired_taints

    image_cache = ImageCache()
    image_cache.set(cluster_name, observed)
    taint_cache = TaintCache()
    taint_cache.set(cluster_name, current_taints)

    to_add, to_delete = get_to_diff_taints(current_taints, desired_taints)
    repo_change = False
    if cluster.spec.rke_config is not None and cluster.status.applied_spec.rke_config is not None:
        repo_change = private_repo_changed(
            get_private_repo(cluster), applied_private_repo(cluster)
        )

    table = Table(title=f"Agent deployment plan for {cluster_name}")
    table.add_column("Check", style="cyan")
    table.add_column("Recorded / observed", style="magenta")
    table.add_column("Desired", style="green")
    table.add_column("Changed", style="yellow")

    def _flag(changed: bool) -> str:
        return "[red]yes[/red]" if changed else "no"

    deployed = cluster.is_condition_true(ConditionType.AGENT_DEPLOYED)
    table.add_row("Agent deployed", str(deployed), "True", _flag(not deployed))
    table.add_row("Force deploy", str(cluster.force_deploy), "False", _flag(cluster.force_deploy))
    table.add_row(
        "Agent image", cluster.status.agent_image, agent, _flag(cluster.status.agent_image != agent)
    )
    table.add_row(
        "Auth image", cluster.status.auth_image, auth, _flag(cluster.status.auth_image != auth)
    )
    table.add_row(
        "Features",
        str(cluster.status.agent_features),
        str(features),
        _flag(agent_features_changed(features, cluster.status.agent_features)),
    )
    table.add_row("Private registry", "", "", _flag(repo_change))
    table.add_row(
        "Downstream images",
        f"{observed.node_agent} / {observed.cluster_agent}",
        cluster.status.agent_image,
        _flag(
            (cluster.is_rke and observed.node_agent != cluster.status.agent_image)
            or observed.cluster_agent != cluster.status.agent_image
        ),
    )
    table.add_row(
        "Control-plane taints",
        ", ".join(str(t) for t in current_taints),
        ", ".join(str(t) for t in desired_taints),
        _flag(bool(to_add or to_delete)),
    )
    table.add_row(
        "Env vars",
        ", ".join(f"{e.name}={e.value}" for e in cluster.status.applied_agent_env_vars),
        ", ".join(f"{e.name}={e.value}" for e in cluster.spec.agent_env_vars),
        _flag(cluster.spec.agent_env_vars != cluster.status.applied_agent_env_vars),
    )
    console.print(table)

    if cluster.spec.internal:
        console.print("\n[bold]Verdict:[/bold] internal cluster, agent is never deployed")
        return

    needed = redeploy_agent(
        cluster, agent, auth, features, desired_taints, image_cache, taint_cache
    )
    if needed:
        console.print("\n[bold]Verdict:[/bold] [red]redeploy[/red]")
    else:
        console.print("\n[bold]Verdict:[/bold] [green]up to date[/green]")


@app.command()
def redact(
    output: str | None = typer.Argument(None, help="kubectl output (default: read stdin)"),
) -> None:
    """Compact kubectl output and redact embedded tokens."""
    from cluster_agent.kubectl import format_apply_output

    text = output if output is not None else sys.stdin.read()
    typer.echo(format_apply_output(text))


@app.command()
def add_node(
    name: str = typer.Argument(..., help="Name of the node to add"),
    cluster_name: str = typer.Argument(..., help="Cluster the node belongs to"),
    labels: str | None = typer.Option(
        None,
        "--labels",
        "-l",
        help="Node labels as comma-separated key=value pairs",
    ),
    node_taints: str | None = typer.Option(
        None,
        "--taints",
        "-t",
        help="Node taints as comma-separated key=value:effect",
    ),
    store_path: str = typer.Option(DEFAULT_STORE, "--store", "-s", help="Path to cluster store"),
) -> None:
    """Record a node of a managed cluster in the store."""
    from pydantic import ValidationError

    from cluster_agent.models.node import Node, NodeTaint
    from cluster_agent.store import ClusterStore

    node_labels = {}
    if labels:
        for label_pair in labels.split(","):
            label_pair = label_pair.strip()
            if "=" not in label_pair:
                console.print(
                    f"[red]Error:[/red] Invalid label format: '{label_pair}'. Expected 'key=value'"
                )
                raise typer.Exit(code=1)
            key, value = label_pair.split("=", 1)
            node_labels[key.strip()] = value.strip()

    try:
        parsed_taints = [
            NodeTaint.parse(t.strip()) for t in (node_taints or "").split(",") if t.strip()
        ]
        node = Node(
            name=name, cluster_name=cluster_name, node_labels=node_labels, node_taints=parsed_taints
        )
    except (ValueError, ValidationError) as e:
        console.print(f"[red]Validation Error:[/red] {escape(str(e))}")
        raise typer.Exit(code=1)

    try:
        ClusterStore(store_path).add_node(node)
    except ClusterAgentError as e:
        _fail(e)

    console.print(f"[green]✓[/green] Added node '{name}' to cluster '{cluster_name}'")


@app.command()
def remove_node(
    name: str = typer.Argument(..., help="Name of the node to remove"),
    store_path: str = typer.Option(DEFAULT_STORE, "--store", "-s", help="Path to cluster store"),
) -> None:
    """Remove a node from the store."""
    from cluster_agent.store import ClusterStore

    try:
        ClusterStore(store_path).remove_node(name)
    except ClusterAgentError as e:
        _fail(e)

    console.print(f"[green]✓[/green] Removed node '{name}'")


if __name__ == "__main__":
    app()
