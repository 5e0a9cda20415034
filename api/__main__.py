"""Command line interface for running the API server."""
import argparse
import logging

import uvicorn

from config import setup_logging

logger = logging.getLogger(__name__)


def main():
    """Run the marketplace API with uvicorn."""
    parser = argparse.ArgumentParser(description="Run the ProjXChange API server")
    parser.add_argument('--host', default='0.0.0.0')
    parser.add_argument('--port', type=int, default=8000)
    parser.add_argument('--reload', action='store_true', help="Reload on code changes")
    args = parser.parse_args()

    setup_logging()
    logger.info(f"Starting API server on {args.host}:{args.port}")

    uvicorn.run(
        "api:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level="info"
    )


if __name__ == "__main__":
    main()
