"""Replay commands -- run, stop and clean up sandboxed pod replays.

Example:
    podreplay replay -n default -p web-7d9f
    podreplay stop 3f2a9c1b7e4d
    podreplay sweep --pod web-7d9f
    podreplay scan nginx:latest
"""

import asyncio
from enum import StrEnum
from typing import Annotated

import typer
from pydantic import ValidationError
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from podreplay.cli.utils import console, print_error_chain
from podreplay.exceptions import PodReplayError
from podreplay.settings import Settings, get_settings


class SecretHandling(StrEnum):
    PROMPT = "prompt"
    PLACEHOLDER = "placeholder"
    INSECURE_MOUNT = "insecure-mount"


_STATE_MESSAGES = {
    "sanitizing": "Sanitizing pod spec...",
    "gating": "Scanning image for vulnerabilities...",
    "pulling": "Pulling image...",
    "isolating": "Creating isolated network...",
    "creating": "Creating container...",
    "attaching": "Attaching container to isolated network...",
    "starting": "Starting container...",
    "cleaning_up": "Cleaning up replay resources...",
}


def _connect_runtime(settings: Settings):
    from podreplay.replay.runtime import DockerRuntime

    return DockerRuntime.connect(
        settings.docker_base_url,
        api_timeout=settings.docker_api_timeout_seconds,
        pull_timeout=settings.image_pull_timeout_seconds,
    )


def _scanner(settings: Settings):
    from podreplay.replay.scanner import ImageScanner

    return ImageScanner(
        binary=settings.scanner_binary,
        timeout_seconds=settings.scanner_timeout_seconds,
        auto_install=settings.scanner_auto_install,
        install_dir=settings.scanner_install_dir,
    )


def _cleanup_orchestrator(settings: Settings):
    """Orchestrator for stop/sweep; these never resolve secrets."""
    from podreplay.replay.options import ReplayOptions
    from podreplay.replay.orchestrator import ReplayOrchestrator

    return ReplayOrchestrator(
        _connect_runtime(settings),
        options=ReplayOptions(secret_handling="placeholder"),
        scanner=_scanner(settings),
    )


def _print_transition(state, detail: str) -> None:
    message = _STATE_MESSAGES.get(state.value)
    if message:
        console.print(f"[cyan]>[/cyan] {detail or message}")


def replay(
    namespace: Annotated[
        str,
        typer.Option("--namespace", "-n", help="Kubernetes namespace of the pod"),
    ],
    pod: Annotated[
        str,
        typer.Option("--pod", "-p", help="Name of the pod to replay"),
    ],
    kubeconfig: Annotated[
        str | None,
        typer.Option("--kubeconfig", help="Path to kubeconfig file"),
    ] = None,
    secret_handling: Annotated[
        SecretHandling | None,
        typer.Option("--secret-handling", "-s", help="How secret references are filled in"),
    ] = None,
    allow_critical: Annotated[
        bool,
        typer.Option("--allow-critical", help="Run images with critical vulnerabilities without asking"),
    ] = False,
    no_network_isolation: Annotated[
        bool,
        typer.Option("--no-network-isolation", help="Use the default network instead of an internal one"),
    ] = False,
    memory: Annotated[
        str | None,
        typer.Option("--memory", "-m", help="Memory limit, e.g. 512m or 1g"),
    ] = None,
    cpus: Annotated[
        float | None,
        typer.Option("--cpus", help="CPU limit in cores, e.g. 0.5"),
    ] = None,
) -> None:
    """Replay a Kubernetes pod locally for debugging.

    Fetches the pod, strips cluster credentials, scans its image, and
    starts its first container in an isolated local container.
    """
    from podreplay.replay.isolation import IsolationConfig
    from podreplay.replay.options import ReplayOptions

    settings = get_settings()
    try:
        options = ReplayOptions.from_settings(
            settings,
            secret_handling=secret_handling.value if secret_handling else None,
            allow_critical_vulnerabilities=True if allow_critical else None,
        )
        isolation_overrides = {
            key: value
            for key, value in {
                "memory_limit": memory,
                "cpu_limit": cpus,
                "enable_network_isolation": False if no_network_isolation else None,
            }.items()
            if value is not None
        }
        if isolation_overrides:
            isolation = IsolationConfig(**{**options.isolation.model_dump(), **isolation_overrides})
            options = options.model_copy(update={"isolation": isolation})
    except ValidationError as e:
        console.print(f"[red]Invalid replay options:[/red] {escape(str(e))}")
        raise typer.Exit(code=2) from e

    try:
        asyncio.run(_run_replay(settings, options, namespace, pod, kubeconfig))
    except PodReplayError as e:
        print_error_chain(e)
        raise typer.Exit(code=1) from e


async def _run_replay(settings: Settings, options, namespace: str, pod: str, kubeconfig: str | None) -> None:
    from podreplay.kube import KubernetesClient, KubernetesSecretFetcher
    from podreplay.replay.orchestrator import ReplayOrchestrator
    from podreplay.replay.prompts import ConsolePrompt

    kube = KubernetesClient.from_kubeconfig(kubeconfig or settings.kubeconfig)
    console.print(f"[cyan]>[/cyan] Fetching pod {pod} from namespace {namespace}...")
    manifest = await kube.fetch_pod_manifest(namespace, pod)

    runtime = _connect_runtime(settings)
    await runtime.ping()

    orchestrator = ReplayOrchestrator(
        runtime,
        options=options,
        scanner=_scanner(settings),
        prompt=ConsolePrompt(console),
        secret_fetcher=KubernetesSecretFetcher(kube) if options.secret_handling == "insecure-mount" else None,
    )
    handle = await orchestrator.replay(manifest, on_transition=_print_transition)

    scan = handle.scan
    if scan.skipped:
        scan_line = f"[yellow]scan skipped[/yellow] ({escape(scan.skip_reason or '')})"
    else:
        counts = scan.vulnerabilities
        scan_line = (
            f"critical={counts.critical} high={counts.high} medium={counts.medium} "
            f"low={counts.low} unknown={counts.unknown}"
        )

    console.print(
        Panel(
            f"[bold green]Pod {handle.pod_name} replay started successfully as container "
            f"{handle.short_id}.[/bold green]\n"
            f"Image: {handle.image}\n"
            f"Network: {handle.network_name or 'default'}\n"
            f"Scan: {scan_line}\n\n"
            f"Run 'podreplay stop {handle.short_id}' to stop.",
            title="Replay",
            border_style="green",
        )
    )


def stop(
    container_id: Annotated[str, typer.Argument(help="Replay container id, id prefix or name")],
) -> None:
    """Stop and remove a replay container and its isolated network."""
    settings = get_settings()
    try:
        orchestrator = _cleanup_orchestrator(settings)
        removed = asyncio.run(orchestrator.stop(container_id))
    except PodReplayError as e:
        print_error_chain(e)
        raise typer.Exit(code=1) from e

    for name in removed:
        console.print(f"[green]Removed[/green] {name}")


def sweep(
    pod: Annotated[
        str | None,
        typer.Option("--pod", "-p", help="Only remove resources created for this pod"),
    ] = None,
) -> None:
    """Remove every container and network created by podreplay.

    Cleans up leftovers from crashed or interrupted replays.
    """
    settings = get_settings()
    try:
        orchestrator = _cleanup_orchestrator(settings)
    except PodReplayError as e:
        print_error_chain(e)
        raise typer.Exit(code=1) from e

    report = asyncio.run(orchestrator.sweep(pod))

    if not report.containers and not report.networks:
        console.print("[dim]No replay resources found.[/dim]")
    for name in report.containers:
        console.print(f"[green]Removed container[/green] {name}")
    for name in report.networks:
        console.print(f"[green]Removed network[/green] {name}")
    for error in report.errors:
        console.print(f"[yellow]Warning:[/yellow] {escape(error)}")


def scan(
    image: Annotated[str, typer.Argument(help="Image reference to scan")],
) -> None:
    """Scan an image and print its security report."""
    from podreplay.replay.gate import ImageSecurityGate
    from podreplay.replay.scanner import render_security_report

    settings = get_settings()
    gate = ImageSecurityGate(
        _scanner(settings),
        allow_critical_vulnerabilities=settings.allow_critical_vulnerabilities,
        fail_closed=settings.scan_fail_closed,
    )
    result, decision = asyncio.run(gate.evaluate(image))

    console.print(render_security_report(result), markup=False, highlight=False)
    console.print(f"\n[bold]Replay decision:[/bold] {decision.value}")


def check() -> None:
    """Check the container runtime, scanner and isolation support."""
    from podreplay.replay.isolation import validate_isolation_support

    settings = get_settings()

    table = Table(title="podreplay environment", show_header=True)
    table.add_column("Component", style="cyan")
    table.add_column("Status")
    table.add_column("Details")

    try:
        runtime = _connect_runtime(settings)
        asyncio.run(runtime.ping())
        table.add_row("Container runtime", "[green]ok[/green]", settings.docker_base_url or "environment")
    except PodReplayError as e:
        table.add_row("Container runtime", "[red]unavailable[/red]", escape(str(e)))

    scanner_path = _scanner(settings).locate()
    if scanner_path:
        table.add_row("Vulnerability scanner", "[green]ok[/green]", scanner_path)
    else:
        table.add_row(
            "Vulnerability scanner",
            "[yellow]missing[/yellow]",
            "scans will be skipped" if not settings.scan_fail_closed else "replays will be blocked",
        )

    support = validate_isolation_support()
    table.add_row(
        "Isolation",
        "[green]supported[/green]" if support.supported else "[red]unsupported[/red]",
        "; ".join(support.warnings) or "-",
    )

    console.print(table)
