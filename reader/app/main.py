import asyncio
from typing import Optional

import typer
from loguru import logger
from pydantic import ValidationError
from typing_extensions import Annotated

from reader.app.composition import create_reader_dependencies
from reader.app.config.settings import Settings
from reader.app.core import SERVICE_NAME
from reader.app.core.errors import ConfigurationError, OperatorAbort, ReaderError, is_fatal
from reader.app.core.logging_setup import configure_logging
from reader.app.domain.models import EntityDescriptor, EntityKind
from reader.app.infrastructure.console.rich_console import RichOperatorConsole
from reader.app.ports.operator_console import OperatorConsole

EXIT_OK = 0
EXIT_CONFIGURATION_ERROR = 1
EXIT_BROKER_ERROR = 2

app = typer.Typer(add_completion=False)


def _log(event: str, **kwargs) -> None:
    logger.bind(service_name=SERVICE_NAME, event=event, **kwargs).info("")


def _choose_entity_type() -> EntityKind:
    typer.echo("Select the entity type:")
    typer.echo("1) [Q] Queue - read messages from a queue")
    typer.echo("2) [T] Topic - read messages from a topic (requires a subscription)")
    while True:
        choice = typer.prompt("Enter choice (Q/T)").strip().upper()
        if choice in ("Q", "1"):
            return EntityKind.QUEUE
        if choice in ("T", "2"):
            return EntityKind.TOPIC
        typer.secho("Invalid choice. Enter Q for Queue or T for Topic.", fg=typer.colors.RED)


def resolve_entity(
    settings: Settings,
    entity_type: Optional[EntityKind],
    name: Optional[str],
    subscription: Optional[str],
) -> EntityDescriptor:
    if entity_type is None:
        entity_type = _choose_entity_type()
    if entity_type == EntityKind.QUEUE:
        if name is None:
            name = typer.prompt("Queue name", default=settings.queue_name)
        return EntityDescriptor.queue(name)
    if name is None:
        name = typer.prompt("Topic name", default=settings.topic_name)
    if subscription is None:
        subscription = typer.prompt("Subscription name", default=settings.subscription_name)
    return EntityDescriptor.topic(name, subscription)


async def run_reader(settings: Settings, console: OperatorConsole, entity: EntityDescriptor) -> int:
    deps = create_reader_dependencies(console, settings)
    deps.error_handler.install_signal_handlers()
    try:
        stats = await deps.run(entity)
    except ConfigurationError as e:
        logger.error("configuration error: {}", e)
        return EXIT_CONFIGURATION_ERROR
    except ReaderError as e:
        if not is_fatal(e):
            raise
        logger.error("fatal broker error: {}", e)
        return EXIT_BROKER_ERROR
    finally:
        deps.error_handler.remove_signal_handlers()
    _log(
        "reader_summary",
        processed=stats.processed,
        failed_actions=stats.failed_actions,
        **{name.lower(): count for name, count in stats.outcomes.items()},
    )
    return EXIT_OK


@app.command()
def read(
    entity_type: Annotated[
        Optional[EntityKind],
        typer.Option("--entity-type", "-e", help="Entity to read from; asked interactively if omitted"),
    ] = None,
    name: Annotated[Optional[str], typer.Option("--name", "-n", help="Queue or topic name")] = None,
    subscription: Annotated[
        Optional[str],
        typer.Option("--subscription", "-s", help="Subscription name (topics only)"),
    ] = None,
) -> None:
    """Read messages one at a time and resolve each interactively."""
    console = RichOperatorConsole()
    try:
        settings = Settings()
    except ValidationError as e:
        typer.secho(f"Invalid configuration: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(EXIT_CONFIGURATION_ERROR)
    configure_logging(level=settings.log_level, serialize=settings.log_json, sink=console.write_log)

    try:
        entity = resolve_entity(settings, entity_type, name, subscription)
    except ConfigurationError as e:
        logger.error("configuration error: {}", e)
        raise typer.Exit(EXIT_CONFIGURATION_ERROR)
    except (typer.Abort, OperatorAbort):
        raise typer.Exit(EXIT_OK)

    console.notify(f"Configured: {entity.kind.value} {entity.path}")
    try:
        code = asyncio.run(run_reader(settings, console, entity))
    except KeyboardInterrupt:
        _log("reader_interrupted")
        code = EXIT_OK
    console.notify("Goodbye!")
    raise typer.Exit(code)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
