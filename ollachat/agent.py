import argparse
import logging
import sys
from importlib import metadata
from pathlib import Path

from . import fmt
from .client import OllamaClient
from .config import (
    _UNSET,
    FALLBACK_SYSTEM_PROMPT,
    THINK_CHOICES,
    apply_config_to_args,
    generate_config,
    load_config,
    load_system_message,
    think_value,
)
from .errors import ChatError, ConfigError, ServerError
from .session import Result, Session

EXIT_WORDS = ("exit", "quit", "/exit", "/quit")
MAX_READ_FAILURES = 5


def build_parser():
    """Build and return the argument parser.

    Options that can also come from a config file default to _UNSET so
    apply_config_to_args() can tell "not given" from an explicit value.
    """
    parser = argparse.ArgumentParser(
        prog="ollachat",
        description="Terminal chat client for a local Ollama server.",
    )
    parser.add_argument(
        "--version",
        action="store_true",
        help="Print the version and exit.",
    )
    parser.add_argument(
        "--init-config",
        action="store_true",
        help="Print a commented ollachat.toml template and exit.",
    )
    parser.add_argument(
        "--host",
        default=_UNSET,
        help="Ollama server URL (default: $OLLAMA_HOST or http://127.0.0.1:11434).",
    )
    parser.add_argument(
        "--model",
        default=_UNSET,
        help="Chat model (default: gpt-oss:20b).",
    )
    parser.add_argument(
        "--embed-model",
        default=_UNSET,
        help="Embedding model pulled and exercised at startup (default: nomic-embed-text).",
    )
    parser.add_argument(
        "--no-embed",
        action="store_true",
        default=_UNSET,
        help="Skip pulling and exercising the embedding model.",
    )
    parser.add_argument(
        "--mode",
        choices=["chat", "generate"],
        default=_UNSET,
        help="chat sends the whole conversation; generate sends only the latest prompt.",
    )
    parser.add_argument(
        "--think",
        choices=list(THINK_CHOICES),
        default=_UNSET,
        help="Reasoning effort requested from the model (default: low).",
    )
    parser.add_argument(
        "--system-file",
        default=_UNSET,
        metavar="FILE",
        help="File holding the system message (default: system.txt).",
    )
    parser.add_argument(
        "--chat-timeout",
        type=float,
        default=_UNSET,
        metavar="SECONDS",
        help="Upper bound for one streamed reply (default: 30).",
    )
    parser.add_argument(
        "--connect-timeout",
        type=float,
        default=_UNSET,
        metavar="SECONDS",
        help="Upper bound for the initial connectivity check (default: 5).",
    )
    parser.add_argument(
        "--on-failure",
        choices=["keep", "rollback"],
        default=_UNSET,
        help="After a failed reply, keep the unanswered prompt in history or roll it back.",
    )

    color_group = parser.add_mutually_exclusive_group()
    color_group.add_argument(
        "--color",
        action="store_true",
        default=_UNSET,
        help="Force ANSI color even when output is not a TTY.",
    )
    color_group.add_argument(
        "--no-color",
        action="store_true",
        default=_UNSET,
        help="Disable ANSI color even when output is a TTY.",
    )

    parser.add_argument(
        "-q",
        "--quiet",
        action="store_true",
        default=_UNSET,
        help="Suppress status output; only print replies and errors.",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Log client requests to stderr.",
    )
    return parser


def main():
    parser = build_parser()
    args = parser.parse_args()

    for dest in ("chat_timeout", "connect_timeout"):
        value = getattr(args, dest)
        if value is not _UNSET and value <= 0:
            parser.error(f"--{dest.replace('_', '-')} must be positive, got {value:g}")

    if args.version:
        try:
            version = metadata.version("ollachat")
        except metadata.PackageNotFoundError:
            version = "unknown"
        print(version)
        sys.exit(0)

    if args.init_config:
        print(generate_config(project=True))
        sys.exit(0)

    try:
        apply_config_to_args(args, load_config(Path.cwd()))
    except ConfigError as e:
        fmt.error(str(e))
        sys.exit(1)

    args.verbose = not args.quiet
    fmt.init(color=args.color, no_color=args.no_color)
    if args.debug:
        logging.basicConfig(
            level=logging.DEBUG,
            stream=sys.stderr,
            format="%(asctime)s %(name)s %(levelname)s: %(message)s",
        )

    try:
        _run_main(args)
    except ChatError as e:
        fmt.error(str(e))
        sys.exit(1)


def _run_main(args):
    client = OllamaClient(args.host, timeout=args.chat_timeout)
    with client:
        system_prompt = read_system_prompt(args.system_file)
        startup(client, args)

        session = Session(
            client,
            model=args.model,
            system_prompt=system_prompt,
            mode=args.mode,
            think=think_value(args.think),
            timeout=args.chat_timeout,
            on_failure=args.on_failure,
        )
        repl_loop(session, make_line_reader(), verbose=args.verbose)


def read_system_prompt(path: str) -> str:
    """Load the system message, falling back to a default if unreadable."""
    try:
        return load_system_message(path)
    except (OSError, UnicodeDecodeError) as e:
        fmt.warning(f"could not load system message from {path}: {e}")
        return FALLBACK_SYSTEM_PROMPT


def startup(client: OllamaClient, args) -> None:
    """Connect and show the server's state before the chat loop.

    Exits with status 1 if the server is unreachable; any other failed
    call raises ServerError, except embedding itself which only warns.
    """
    if args.verbose:
        fmt.connecting(client.host)
    try:
        client.heartbeat(timeout=args.connect_timeout)
    except ServerError as e:
        fmt.connection_failed(client.host, e.detail)
        sys.exit(1)
    if args.verbose:
        fmt.connected()

    version = client.version()
    models = client.list_models()
    if args.verbose:
        fmt.server_version(version)
        fmt.model_list(models, args.model)
        fmt.model_settings(args.model, None if args.no_embed else args.embed_model)

    if not args.no_embed:
        exercise_embedding(client, args.embed_model, args.embed_text, args.verbose)

    caps = client.capabilities(args.model)
    if args.verbose:
        fmt.capabilities(args.model, caps)


def exercise_embedding(client, model: str, text: str, verbose: bool) -> None:
    """Pull the embedding model, then embed one test string."""
    if verbose:
        with fmt.pull_progress(model) as update:
            for progress in client.pull(model):
                update(progress)
    else:
        for _ in client.pull(model):
            pass

    try:
        vector = client.embed(model, text)
    except ServerError as e:
        fmt.warning(str(e))
        return
    if verbose:
        fmt.embedding(model, vector)


def make_line_reader(interactive: bool | None = None):
    """Return a zero-argument callable that reads one line of user input.

    Uses prompt_toolkit on a terminal; plain readline on a pipe. Both
    raise EOFError at end of input.
    """
    if interactive is None:
        interactive = sys.stdin.isatty()

    if interactive:
        from prompt_toolkit import PromptSession
        from prompt_toolkit.formatted_text import FormattedText
        from prompt_toolkit.history import InMemoryHistory

        session = PromptSession(history=InMemoryHistory())
        prompt_text = FormattedText([("bold fg:ansigreen", "\U0001f4dd You: ")])
        return lambda: session.prompt(prompt_text)

    def read_line() -> str:
        fmt.user_prompt()
        line = sys.stdin.readline()
        if not line:
            raise EOFError
        return line

    return read_line


def run_exchange(session: Session, text: str) -> Result:
    """Send one user line and render the streamed reply."""
    renderer = fmt.StreamRenderer()
    try:
        result = session.ask(text, on_fragment=renderer)
    finally:
        renderer.close()
    if result.error is not None:
        fmt.generation_failed(result.error)
    return result


# ---------------------------------------------------------------------------
# REPL command helpers
# ---------------------------------------------------------------------------


def _repl_help() -> None:
    """Print available REPL commands."""
    fmt.info(
        "Available commands:\n"
        "  /help              Show this help message\n"
        "  /clear             Reset conversation to the system message\n"
        "  /history           Show how many turns the conversation holds\n"
        "  exit, quit         Leave the chat"
    )


def _repl_clear(session: Session) -> None:
    dropped = session.reset()
    fmt.info(f"context cleared ({dropped} turns removed)")


def repl_loop(session: Session, read_line, *, verbose: bool = True) -> None:
    """Interactive read-eval-print loop.

    Returns on an exit word or end of input. Raises ChatError only if
    input keeps failing to read.
    """
    if verbose:
        fmt.repl_banner()

    read_failures = 0
    while True:
        try:
            print(file=sys.stderr)  # blank line before prompt
            line = read_line()
        except (EOFError, KeyboardInterrupt):
            print(file=sys.stderr)  # newline after ^D / ^C
            fmt.goodbye()
            return
        except (OSError, UnicodeDecodeError) as e:
            read_failures += 1
            fmt.warning(f"could not read input: {e}")
            if read_failures >= MAX_READ_FAILURES:
                raise ChatError(
                    f"giving up after {read_failures} consecutive input errors"
                )
            continue
        read_failures = 0

        line = line.strip()
        if not line:
            continue

        if line.lower() in EXIT_WORDS:
            fmt.goodbye()
            return

        # Only known commands are intercepted; unknown /foo passes through
        cmd = line.split(None, 1)[0].lower()
        if cmd == "/help":
            _repl_help()
            continue
        elif cmd == "/clear":
            _repl_clear(session)
            continue
        elif cmd == "/history":
            fmt.history_summary(session.history)
            continue

        run_exchange(session, line)


if __name__ == "__main__":
    main()
