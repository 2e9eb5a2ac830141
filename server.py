#!/usr/bin/env python3
"""
Main entry point for the Second Brain MCP Server.

- second_brain/config.py: Configuration constants
- second_brain/models.py: Data models
- second_brain/memory_system.py: SecondBrain orchestration
- second_brain/mcp_tools.py: MCP tool handler registration
"""

import asyncio
import atexit
import argparse
import signal

from fastmcp import FastMCP

from second_brain import SecondBrain, register_tools


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Second Brain MCP Server")
    parser.add_argument(
        "--transport",
        type=str,
        choices=["stdio", "http"],
        default="stdio",
        help="Transport protocol (default: stdio)",
    )
    parser.add_argument(
        "--host",
        type=str,
        default="127.0.0.1",
        help="Host address for HTTP transport (default: 127.0.0.1)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=8000,
        help="Port for HTTP transport (default: 8000)",
    )
    parser.add_argument(
        "--path",
        type=str,
        default="/mcp/",
        help="URL path for HTTP transport (default: /mcp/)",
    )
    return parser


def main():
    """Main entry point for the MCP server"""
    args = build_parser().parse_args()

    brain = SecondBrain()

    mcp = FastMCP("SecondBrain")
    register_tools(mcp, brain)

    _shutting_down = False

    def _graceful_shutdown(signum=None, frame=None):
        """Close the memory system so the WAL is checkpointed before exit."""
        nonlocal _shutting_down
        if _shutting_down:
            return
        _shutting_down = True

        sig_name = signal.Signals(signum).name if signum else "atexit"
        print(f"\nReceived {sig_name}, shutting down memory system...")
        brain.close()

    atexit.register(_graceful_shutdown)
    signal.signal(signal.SIGTERM, _graceful_shutdown)
    if hasattr(signal, "SIGHUP"):
        signal.signal(signal.SIGHUP, _graceful_shutdown)

    try:
        if args.transport == "http":
            print(
                f"Starting Second Brain MCP Server on http://{args.host}:{args.port}{args.path}"
            )
            asyncio.run(
                mcp.run_async(
                    transport="http", host=args.host, port=args.port, path=args.path
                )
            )
        else:
            asyncio.run(mcp.run_stdio_async(show_banner=False))
    except KeyboardInterrupt:
        print("\nShutting down memory system...")
        _graceful_shutdown()
    except Exception as e:
        print(f"Error running MCP server: {e}")
        _graceful_shutdown()


if __name__ == "__main__":
    main()
