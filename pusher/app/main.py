import asyncio
from typing import Optional

import typer
from loguru import logger
from pydantic import ValidationError
from typing_extensions import Annotated

from pusher.app.config.settings import Settings
from pusher.app.core import SERVICE_NAME
from pusher.app.core.errors import ConfigurationError, PusherError
from pusher.app.core.logging_setup import configure_logging
from pusher.app.domain.envelope import PRIORITIES, build_envelope, random_content
from pusher.app.domain.models import PublishTarget, TargetKind
from pusher.app.infrastructure.messaging.rabbitmq.rabbitmq_publisher import RabbitMQPublisher
from pusher.app.ports.message_publisher import MessagePublisher

app = typer.Typer(add_completion=False)


def _log(event: str, **kwargs) -> None:
    logger.bind(service_name=SERVICE_NAME, event=event, **kwargs).info("")


async def push_messages(
    publisher: MessagePublisher,
    settings: Settings,
    target: PublishTarget,
    *,
    count: int,
    interval: float,
    category: Optional[str] = None,
    priority: Optional[str] = None,
    content: Optional[str] = None,
) -> int:
    """Publish `count` envelopes; returns how many were sent. Always closes the publisher."""
    sent = 0
    try:
        await publisher.connect(target)
        for index in range(count):
            envelope = build_envelope(
                content if content is not None else random_content(),
                source=settings.message_source,
                message_type=settings.message_type,
                category=category,
                priority=priority,
                metadata={"sequence": index + 1, "target": target.name},
            )
            await publisher.publish(envelope)
            sent += 1
            if interval > 0 and index + 1 < count:
                await asyncio.sleep(interval)
    finally:
        await publisher.close()
    _log("push_completed", sent=sent, target=target.name)
    return sent


@app.command()
def push(
    entity_type: Annotated[
        TargetKind,
        typer.Option("--entity-type", "-e", help="Publish to a queue or a topic"),
    ] = TargetKind.QUEUE,
    name: Annotated[Optional[str], typer.Option("--name", "-n", help="Queue or topic name")] = None,
    count: Annotated[int, typer.Option("--count", "-c", min=1)] = 1,
    interval: Annotated[float, typer.Option("--interval", "-i", min=0.0, help="Seconds between messages")] = 0.0,
    category: Annotated[Optional[str], typer.Option("--category")] = None,
    priority: Annotated[Optional[str], typer.Option("--priority", help="/".join(PRIORITIES))] = None,
    content: Annotated[Optional[str], typer.Option("--content", help="Fixed content instead of random text")] = None,
    source: Annotated[Optional[str], typer.Option("--source", help="Defaults to MESSAGE_SOURCE")] = None,
) -> None:
    """Send test messages in the reader's envelope format."""
    try:
        settings = Settings()
    except ValidationError as e:
        typer.secho(f"Invalid configuration: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1)
    configure_logging(level=settings.log_level, serialize=settings.log_json)
    if source:
        settings = settings.model_copy(update={"message_source": source})

    try:
        if priority is not None and priority not in PRIORITIES:
            raise ConfigurationError(f"priority must be one of {', '.join(PRIORITIES)}")
        if not settings.broker_configured:
            raise ConfigurationError("BROKER_URL or BROKER_HOST is required")
        # topics are published to the exchange; subscriptions fan out from there
        target = (
            PublishTarget.topic(name or settings.topic_name)
            if entity_type == TargetKind.TOPIC
            else PublishTarget.queue(name or settings.queue_name)
        )
    except ConfigurationError as e:
        logger.error("configuration error: {}", e)
        raise typer.Exit(1)

    try:
        sent = asyncio.run(
            push_messages(
                RabbitMQPublisher(settings),
                settings,
                target,
                count=count,
                interval=interval,
                category=category,
                priority=priority,
                content=content,
            )
        )
    except PusherError as e:
        logger.error("push failed: {}", e)
        raise typer.Exit(2)
    except KeyboardInterrupt:
        _log("push_interrupted")
        raise typer.Exit(0)
    typer.secho(f"Sent {sent} message(s) to {target.kind.value} {target.name}", fg=typer.colors.GREEN)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
