"""Library circulation server.

Exposes the circulation engine as FastMCP tools over the stdio transport, so
an external host can issue and return copies, manage reservations and run the
expiry sweep.
"""

import logging
import signal
import sys
from typing import Any

from fastmcp import FastMCP

from library_circulation.circulation.services import get_services
from library_circulation.config import get_config
from library_circulation.observability import initialize_observability
from library_circulation.tools import all_tools

# stdout carries the stdio transport; logs go to stderr
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stderr)],
)

logger = logging.getLogger(__name__)

config = get_config()
logging.getLogger().setLevel(config.log_level)

mcp = FastMCP(
    name=config.server_name,
    version=config.server_version,
    instructions=(
        "Library circulation server. Issues physical copies to members, takes them "
        "back with overdue fines, and queues reservations for titles with no copy on "
        "the shelf. Reservations are served first come first served."
    ),
)

for tool in all_tools:
    logger.debug("Registering tool: %s", tool["name"])
    try:
        mcp.tool(
            name=tool["name"],
            description=tool["description"],
        )(tool["handler"])
    except Exception:
        logger.exception("Failed to register tool %s", tool["name"])
        raise

logger.info("Registered %d tools", len(all_tools))


def run_stdio_server() -> None:
    """Run the server on the stdio transport until stdin closes or a signal arrives."""
    logger.info("Starting %s v%s on stdio transport", config.server_name, config.server_version)

    if config.debug:
        logging.getLogger().setLevel(logging.DEBUG)
        logger.debug("Debug mode enabled")
    else:
        logging.getLogger("fastmcp").setLevel(logging.WARNING)

    def signal_handler(signum: int, _frame: Any) -> None:
        logger.info("Received signal %s, shutting down...", signum)
        sys.exit(0)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        mcp.run(transport="stdio")
    except Exception:
        logger.exception("Fatal error in circulation server")
        sys.exit(1)
    finally:
        get_services().db.close()


def main() -> None:
    """Entry point for ``library-circulation``."""
    try:
        initialize_observability(config)

        services = get_services()
        if not services.db.verify_connection():
            logger.error("Circulation store is not reachable: %s", services.db.database_url)
            sys.exit(1)

        logger.info("Transport: %s", config.transport)
        logger.info("Loan period: %d days", config.loan_period_days)
        logger.info("Fine rate: %.2f per day", config.fine_rate_per_day)

        if config.transport == "stdio":
            run_stdio_server()
        else:
            logger.error("Unsupported transport: %s", config.transport)
            sys.exit(1)

    except KeyboardInterrupt:
        logger.info("Server stopped by user")
    except Exception:
        logger.exception("Failed to start circulation server")
        sys.exit(1)


if __name__ == "__main__":
    main()
