import argparse

import uvicorn

from tubelinks.config import Settings, load_settings
from tubelinks.logging_config import setup_logging
from tubelinks.main import create_app


def run_uvicorn(settings: Settings, host: str, port: int):
    """
    Run the FastAPI app via uvicorn in this process.
    """
    config = uvicorn.Config(
        create_app(settings),
        host=host,
        port=port,
        log_level=settings.server.log_level.lower(),
        log_config=None,  # keep our logging setup
    )
    server = uvicorn.Server(config)
    server.run()


def main(argv=None):
    parser = argparse.ArgumentParser(description="Serve the TubeLinks API")
    parser.add_argument("--config", help="Path to config.json")
    parser.add_argument("--host")
    parser.add_argument("--port", type=int)
    args = parser.parse_args(argv)

    settings = load_settings(args.config)
    setup_logging(settings.server.log_level)

    host = args.host or settings.server.host
    port = args.port or settings.server.port
    print(f"[server] Serving links API on http://{host}:{port}/api/links")
    try:
        run_uvicorn(settings, host, port)
    except KeyboardInterrupt:
        print("\n[server] Shutting down.")


if __name__ == "__main__":
    main()
