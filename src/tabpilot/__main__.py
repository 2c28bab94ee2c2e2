"""
tabpilot - Entry Point

Usage:
    tabpilot                                   # Persistent Chrome profile, stdio MCP server
    tabpilot --isolated --headless             # Throwaway in-memory profile
    tabpilot --cdp-endpoint http://localhost:9222
    tabpilot --config tabpilot.yaml --verbose
"""

import argparse
import asyncio
import sys

from rich.console import Console

from tabpilot import __version__
from tabpilot.errors import TabpilotError

# stdout belongs to the MCP stdio transport
console = Console(stderr=True)


def _suppress_shutdown_noise(loop: asyncio.AbstractEventLoop):
    """Suppress 'Future exception was never retrieved' from Playwright during shutdown."""
    original_handler = loop.get_exception_handler()

    def handler(loop, context):
        msg = context.get("message", "")
        exc = context.get("exception")
        if exc and "Connection closed while reading from the driver" in str(exc):
            return
        if "Future exception was never retrieved" in msg:
            if exc and "driver" in str(exc).lower():
                return
        if original_handler:
            original_handler(loop, context)
        else:
            loop.default_exception_handler(context)

    loop.set_exception_handler(handler)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tabpilot",
        description="tabpilot - browser session server for MCP hosts",
        epilog="Examples:\n"
               "  tabpilot                              Persistent profile, headed where possible\n"
               "  tabpilot --isolated --headless        In-memory profile, no window\n"
               "  tabpilot --allowed-origins 'example.com;api.example.com'\n",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--version", action="version", version=f"tabpilot {__version__}")
    parser.add_argument("--config", metavar="FILE", help="Path to a YAML or JSON configuration file")
    parser.add_argument("--browser", help="chrome, chrome-beta, chrome-canary, chrome-dev, chromium, msedge, "
                                          "msedge-beta, msedge-canary, msedge-dev, firefox or webkit")
    parser.add_argument("--headless", action="store_true", default=None, help="Run the browser without a window")
    parser.add_argument("--isolated", action="store_true", default=None,
                        help="Keep the profile in memory, nothing is written to disk")
    parser.add_argument("--user-data-dir", help="Profile directory for persistent sessions")
    parser.add_argument("--cdp-endpoint", help="Attach to a running Chromium over CDP")
    parser.add_argument("--remote-endpoint", help="Connect to a remote Playwright browser server")
    parser.add_argument("--allowed-origins", help="Semicolon-separated origins the browser may reach")
    parser.add_argument("--blocked-origins", help="Semicolon-separated origins to block")
    parser.add_argument("--save-trace", action="store_true", default=None,
                        help="Record a Playwright trace into the output directory")
    parser.add_argument("--output-dir", help="Directory for traces and downloads")
    parser.add_argument("--executable-path", help="Path to the browser executable")
    parser.add_argument("--no-sandbox", action="store_true", help="Disable the Chromium sandbox")
    parser.add_argument("--proxy-server", help='Proxy for all requests, e.g. "http://myproxy:3128"')
    parser.add_argument("--proxy-bypass", help="Comma-separated domains that bypass the proxy")
    parser.add_argument("--viewport-size", metavar="W,H", help='Viewport size, e.g. "1280,720"')
    parser.add_argument("--user-agent", help="User agent string")
    parser.add_argument("--ignore-https-errors", action="store_true", help="Ignore HTTPS certificate errors")
    parser.add_argument("--block-service-workers", action="store_true", help="Block service workers")
    parser.add_argument("--storage-state", metavar="FILE", help="Storage state file for isolated sessions")
    parser.add_argument("--verbose", "-v", action="store_true", help="Also log to stderr")
    return parser


async def async_main(argv: list[str] | None = None):
    """Async main entry point."""
    _suppress_shutdown_noise(asyncio.get_running_loop())

    args = build_parser().parse_args(argv)

    from tabpilot.logging_config import setup_logging
    logger = setup_logging(verbose=args.verbose)

    from tabpilot.config import resolve_cli_config
    config = resolve_cli_config(vars(args))
    logger.info("tabpilot starting", extra={"cli_args": vars(args)})

    from tabpilot.mcp_server import run_mcp_server
    await run_mcp_server(config)


def main():
    """Sync entry point for console_scripts (pyproject.toml)."""
    try:
        asyncio.run(async_main())
    except KeyboardInterrupt:
        sys.exit(0)
    except TabpilotError as e:
        console.print(f"[bold red][!][/bold red] {e}")
        sys.exit(1)
    except Exception as e:
        console.print(f"[bold red][!] Fatal error:[/bold red] {e}")
        console.print_exception()
        sys.exit(1)


if __name__ == "__main__":
    main()
