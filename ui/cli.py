"""Terminal drivers for llmrt.

Batch mode reads the whole input (file or stdin), processes it in one pass
and writes the result (file or stdout). Interactive mode streams: commands
run as soon as their tag closes and results are written immediately.

Status messages go to stderr; stdout only carries processed text.
"""

import logging
import sys

from core.session import Session


logger = logging.getLogger(__name__)

BANNER = (
    "llmrt - interactive mode\n"
    "Waiting for input (send EOF with Ctrl+D to finish)...\n"
    "Commands: <open path>, <write path>content</write>, <exec command args>, <search query>\n"
)


def read_input(path: str = None) -> str:
    """Read all input from a file, or stdin when path is None or '-'."""
    if path and path != "-":
        with open(path, "r", encoding="utf-8") as f:
            return f.read()
    return sys.stdin.read()


def write_output(text: str, path: str = None) -> None:
    """Write text to a file, or stdout when path is None or '-'."""
    if path and path != "-":
        with open(path, "w", encoding="utf-8") as f:
            f.write(text)
        return
    sys.stdout.write(text)
    sys.stdout.flush()


def run_batch(session: Session, input_path: str = None, output_path: str = None,
              json_output: bool = False) -> int:
    """Process one buffer. Returns the process exit status."""
    try:
        text = read_input(input_path)
    except OSError as e:
        print(f"Error: cannot read input: {e}", file=sys.stderr)
        return 1

    result = session.process_json(text) + "\n" if json_output else session.process_text(text)

    try:
        write_output(result, output_path)
    except OSError as e:
        print(f"Error: cannot write output: {e}", file=sys.stderr)
        return 1
    logger.info("Processed %d command(s), %d succeeded", len(session.results), session.commands_run)
    return 0


def run_interactive(session: Session, input_stream=None, output_stream=None,
                    show_prompts: bool = True) -> int:
    """Stream input through the session until EOF. Returns the exit status."""
    input_stream = input_stream or sys.stdin
    output_stream = output_stream or sys.stdout

    if show_prompts:
        sys.stderr.write(BANNER)
        sys.stderr.flush()

    try:
        found = session.process_stream(input_stream, output_stream)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        return 130

    if show_prompts:
        print(f"\n{found} command(s) processed.", file=sys.stderr)
    return 0
