from __future__ import annotations

import asyncio
import logging
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from chatrelay.models.chat import ChatMessage, Role

log = logging.getLogger(__name__)

app = typer.Typer(help="chatrelay CLI")

console = Console()


def _configure_logging(verbose: bool) -> None:
    from chatrelay.config import load_config
    from chatrelay.runtime.logging_config import configure_from_config

    configure_from_config(load_config().model_dump(), verbose=verbose)


@app.command()
def serve(
    host: str = typer.Option("0.0.0.0", "--host"),
    port: int = typer.Option(8000, "--port"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
) -> None:
    """Start the chatrelay API server."""
    _configure_logging(verbose)
    import uvicorn

    console.print(f"Starting chatrelay API server on {host}:{port}")
    uvicorn.run(
        "chatrelay.api.app:create_app",
        factory=True,
        host=host,
        port=port,
        reload=False,
    )


@app.command()
def models() -> None:
    """List the model catalog."""
    from chatrelay.config import load_config
    from chatrelay.runtime.catalog import ModelCatalog

    catalog = ModelCatalog.from_config(load_config())

    table = Table(title=f"Models ({len(catalog)})")
    table.add_column("id")
    table.add_column("name")
    table.add_column("group")
    table.add_column("provider")
    table.add_column("max_tokens", justify="right")
    table.add_column("flags")
    for d in catalog.list_models():
        flags = []
        if d.reasoning_capable:
            flags.append("reasoning")
        if d.vision_capable:
            flags.append("vision")
        marker = " *" if d.id == catalog.default_model else ""
        table.add_row(
            d.id + marker,
            d.display_name,
            catalog.group_for(d.id),
            d.provider_kind.value,
            str(catalog.resolve_parameters(d.id).max_tokens),
            ", ".join(flags),
        )
    console.print(table)
    console.print("[dim]* default model[/dim]")


@app.command()
def ask(
    model_id: str,
    question: str,
    stream: bool = typer.Option(False, "--stream", help="Print tokens as they arrive"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
) -> None:
    """Send one question straight through the routing core."""
    from chatrelay.config import load_config
    from chatrelay.errors import RelayError
    from chatrelay.runtime.catalog import ModelCatalog
    from chatrelay.runtime.client_pool import ClientPool
    from chatrelay.runtime.prompts import PromptInjector, SettingsPromptOverrides
    from chatrelay.runtime.providers.base import StreamCallbacks
    from chatrelay.runtime.response_cache import ResponseCache
    from chatrelay.runtime.router import ChatRouter
    from chatrelay.substrate.chat_store import ChatStore

    _configure_logging(verbose)
    config = load_config()

    async def _run() -> None:
        catalog = ModelCatalog.from_config(config)
        pool = ClientPool(config, catalog)
        store = ChatStore(config.storage.db_path)
        await store.initialize()
        router = ChatRouter(
            catalog,
            pool,
            ResponseCache(enabled=False),
            PromptInjector(catalog, SettingsPromptOverrides(store)),
        )
        callbacks = None
        if stream:
            callbacks = StreamCallbacks(
                on_token=lambda token: console.print(token, end="", markup=False),
            )
        try:
            completion = await router.generate(
                [ChatMessage(role=Role.USER, content=question)],
                model_id,
                callbacks=callbacks,
            )
        finally:
            await pool.aclose()

        if stream:
            console.print()
        else:
            console.print(completion.content, markup=False)
        if completion.reasoning:
            console.print("\n[bold]Reasoning[/bold]")
            console.print(completion.reasoning, style="dim", markup=False)

    try:
        asyncio.run(_run())
    except RelayError as exc:
        console.print(f"[red]{exc.code}:[/red] {exc.message}")
        raise typer.Exit(code=1) from None


@app.command("config-validate")
def config_validate(
    config_path: Path = typer.Option(Path("config.toml"), "--path"),  # noqa: B008
) -> None:
    """Validate config.toml and the environment without starting the server."""
    from pydantic import ValidationError

    from chatrelay.config import load_config

    try:
        cfg = load_config(config_path)
    except ValidationError as exc:
        console.print("[red]Config validation failed:[/red]")
        for err in exc.errors():
            loc = " → ".join(str(x) for x in err["loc"])
            console.print(f"  {loc}: {err['msg']}")
        raise typer.Exit(code=1) from None

    console.print("[green]Config valid.[/green]")
    if not config_path.exists():
        console.print(f"  [dim]{config_path} not found, using defaults and environment[/dim]")
    console.print(f"  Default model: {cfg.models.default}")
    console.print(f"  Log level: {cfg.runtime.log_level}")
    console.print(f"  Rate limit: {cfg.rate_limit.limit}/{cfg.rate_limit.window_seconds}s")
    for name, present in (
        ("GitHub-hosted", bool(cfg.hosted.token)),
        ("Groq", bool(cfg.groq.api_key)),
        ("Gemini", bool(cfg.gemini.api_key)),
    ):
        status = "[green]configured[/green]" if present else "[yellow]missing[/yellow]"
        console.print(f"  {name} credential: {status}")


if __name__ == "__main__":
    app()
