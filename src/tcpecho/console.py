"""
Interactive console for the echo client.

Each input line is sent with a trailing newline. The literal "exit" ends
the session without being sent.
"""

import sys
import logging
from typing import Iterable, Iterator


logger = logging.getLogger(__name__)


EXIT_COMMAND = "exit"


def read_lines(stream=None) -> Iterator[str]:
    """Yield lines from stream (stdin by default) without their line endings."""
    stream = stream or sys.stdin
    for line in stream:
        yield line.rstrip("\r\n")


def run_console(client, lines: Iterable[str], exit_command: str = EXIT_COMMAND) -> int:
    """
    Send every line until exit_command, end of input, or a failed send.

    Returns:
        Number of lines sent.
    """
    sent = 0
    for line in lines:
        if line == exit_command:
            break
        if not client.send_message(line + "\n"):
            logger.error("Message send failed")
            break
        sent += 1
    return sent
