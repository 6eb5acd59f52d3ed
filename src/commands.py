"""Administration command dispatcher.

Parses ``/cmap``-style subcommands and maps them onto Pipeline operations.
Every command returns the text to show the operator.
"""

from typing import Any, Sequence

USAGE = (
    "Invalid subcommand.\nUsage:\n/cmap list\n/cmap start\n/cmap stop\n"
    "/cmap reload\n/cmap dbconfig <host> <port> <name> <user> <password>"
)


def _usage(line: str) -> str:
    return f"Invalid subcommand.\nUsage:\n{line}"


def handle_command(pipeline: Any, args: Sequence[str]) -> str:
    """Run one administration command.

    Args:
        pipeline: Pipeline to operate on
        args: Subcommand followed by its arguments

    Returns:
        Human-readable status message
    """
    if not args:
        return USAGE

    subcommand, rest = args[0], list(args[1:])

    if subcommand == "list":
        if rest:
            return _usage("/cmap list")
        names = pipeline.list_active()
        if not names:
            return "No online players to track."
        return "Tracked players:\n" + "\n".join(names)

    if subcommand in ("start", "stop", "reload"):
        if rest:
            return _usage(f"/cmap {subcommand}")
        _, message = getattr(pipeline, subcommand)()
        return message

    if subcommand == "dbconfig":
        if len(rest) < 5:
            return _usage("/cmap dbconfig <host> <port> <name> <user> <password>")
        _, message = pipeline.set_store_config(*rest[:5])
        return message

    return USAGE
