import argparse
import logging

import uvicorn

from .app import create_app
from .config import Config


logger = logging.getLogger("gemini_proxy")


def main():
    parser = argparse.ArgumentParser(description="Gemini realtime relay and REST proxy")
    parser.add_argument("--host", default=Config.HOST, help=f"Interface to bind (default: {Config.HOST})")
    parser.add_argument("-p", "--port", type=int, default=Config.PORT,
                        help=f"Port to listen on (default: {Config.PORT})")
    parser.add_argument("--log-level", default=Config.LOG_LEVEL, help="Logging level (default: %(default)s)")
    args = parser.parse_args()

    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logger.info("Starting Gemini proxy on %s:%s -> %s", args.host, args.port, Config.UPSTREAM_BASE_URL)
    uvicorn.run(create_app(), host=args.host, port=args.port, log_level=args.log_level.lower())


if __name__ == "__main__":
    main()
