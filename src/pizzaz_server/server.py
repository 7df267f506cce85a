import logging

import click
import uvicorn

from pizzaz_server.app import create_app
from pizzaz_server.settings import PizzazSettings
from pizzaz_server.utilities.logging import configure_logging

logger = logging.getLogger(__name__)


@click.command()
@click.option("--host", default=None, help="Host to bind to (defaults to PIZZAZ_HOST or 0.0.0.0)")
@click.option("--port", default=None, type=int, help="Port to listen on (defaults to PORT or 8000)")
@click.option(
    "--log-level",
    default=None,
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], case_sensitive=False),
    help="Logging level",
)
def main(host: str | None, port: int | None, log_level: str | None) -> int:
    overrides = {
        key: value
        for key, value in {"host": host, "port": port, "log_level": log_level and log_level.upper()}.items()
        if value is not None
    }
    settings = PizzazSettings(**overrides)
    configure_logging(settings.log_level)

    app = create_app(settings)

    base_url = f"http://localhost:{settings.port}"
    logger.info("Pizzaz MCP server listening on %s", base_url)
    logger.info("  SSE stream: GET %s%s", base_url, settings.sse_path)
    logger.info("  Message post endpoint: POST %s%s?sessionId=...", base_url, settings.message_path)

    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())
    return 0
