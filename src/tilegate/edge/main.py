"""Command-line entrypoint for running the tile edge service."""

from __future__ import annotations

import asyncio

import uvicorn

from ..common.settings import EdgeSettings
from .app import create_app


async def main() -> None:
    settings = EdgeSettings()
    app = create_app(settings)
    config = uvicorn.Config(
        app,
        host=settings.bind_host,
        port=settings.bind_port,
        log_config=None,
        log_level=settings.log_level.lower(),
        proxy_headers=True,
    )
    await uvicorn.Server(config).serve()


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
