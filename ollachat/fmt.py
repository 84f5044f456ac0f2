"""ANSI-formatted terminal output using Rich.

Diagnostics go to stderr; only the streamed reply is written to stdout.
"""

from contextlib import contextmanager

from rich.color import ColorSystem
from rich.console import Console
from rich.markup import escape
from rich.progress import BarColumn, DownloadColumn, Progress, TextColumn
from rich.rule import Rule
from rich.style import Style
from rich.text import Text

from .thinking import REASONING_PREVIEW_WIDTH, ReasoningState

_console = Console(stderr=True)
_out = Console()

_ANSWER_STYLE = Style(color="blue")


def init(*, color: bool = False, no_color: bool = False) -> None:
    """Reconfigure the module-level consoles from CLI flags.

    Call once at startup, before any output.
    """
    global _console, _out
    kwargs: dict = {}
    if color:
        kwargs["force_terminal"] = True
        kwargs["no_color"] = False
    if no_color:
        kwargs["no_color"] = True
    _console = Console(stderr=True, **kwargs)
    _out = Console(**kwargs)


# -- Startup -----------------------------------------------------------------


def connecting(host: str) -> None:
    _console.print(Text(f"\U0001f50c Connecting to Ollama at {host}...", style="cyan"))


def connected() -> None:
    _console.print(Text("✅ Connected successfully!", style="green"))


def connection_failed(host: str, detail: str) -> None:
    _console.print()
    _console.print(Text("❌  OLLAMA CONNECTION FAILED", style="bold red"))
    _console.print(Rule(style="red"))
    _console.print(Text(f"\U0001f4e1  Could not reach Ollama at {host}"))
    _console.print(Text(f"    {detail}", style="dim"))
    tip = Text("\U0001f4a1  Tip: Start Ollama with: ")
    tip.append("ollama serve", style="yellow")
    _console.print(tip)
    _console.print(Text("\U0001f4e6  Get Ollama: https://ollama.com/download"))
    _console.print(Rule(style="red"))
    _console.print()


def _label(label: str, value: str) -> Text:
    line = Text()
    line.append(label, style="yellow")
    line.append(f" {value}")
    return line


def server_version(version: str) -> None:
    _console.print(_label("\U0001f4cb Server Version:", version))
    _console.print()


def model_list(models, default_model: str) -> None:
    """Print the installed models, starring the default chat model."""
    _console.print(Text("\U0001f4e6 Available Models:", style="yellow"))
    if not models:
        _console.print(Text("  (none installed)", style="dim"))
    for i, m in enumerate(models):
        line = Text()
        if m.name == default_model:
            line.append("  ")
            line.append("★", style="green")
            line.append(" ")
        else:
            line.append("  ")
        line.append(f"{i}: ")
        line.append(m.name, style="cyan")
        extras = [x for x in (m.family, m.parameter_size) if x]
        if extras:
            line.append(f"  ({escape(', '.join(extras))})", style="dim")
        _console.print(line)


def model_settings(chat_model: str, embed_model: str | None) -> None:
    _console.print()
    _console.print(_label("\U0001f4ac Default Chat Model:", chat_model))
    if embed_model:
        _console.print(_label("\U0001f9e9 Embedding Model:", embed_model))


def capabilities(model: str, caps: list[str]) -> None:
    _console.print()
    _console.print(Text(f"⚙️  Capabilities of {model}:", style="yellow"))
    if not caps:
        _console.print(Text("  (none reported)", style="dim"))
    for cap in caps:
        _console.print(Text(f"  - {cap}"))


@contextmanager
def pull_progress(model: str):
    """Show a transient progress bar; yields a callback taking PullProgress."""
    progress = Progress(
        TextColumn("  {task.description}"),
        BarColumn(),
        DownloadColumn(),
        console=_console,
        transient=True,
    )
    with progress:
        task = progress.add_task(f"{model}: starting", total=None)

        def update(p) -> None:
            progress.update(
                task,
                description=f"{model}: {p.status}",
                total=p.total,
                completed=p.completed or 0,
            )

        yield update
    _console.print(Text(f"  ✓ {model} is up to date", style="green"))


def embedding(model: str, vector: list[float]) -> None:
    preview = ", ".join(f"{v:.4f}" for v in vector[:4])
    if len(vector) > 4:
        preview += ", ..."
    line = Text()
    line.append(f"  \U0001f9ee {model}: ", style="yellow")
    line.append(f"{len(vector)} dimensions ")
    line.append(f"[{preview}]", style="dim")
    _console.print(line)


# -- Chat loop ---------------------------------------------------------------


def repl_banner() -> None:
    _console.print()
    _console.print(
        Text(
            "\U0001f5e8️  Start chatting with your AI (type 'exit' to quit, /help for commands)",
            style="blue",
        )
    )


def user_prompt() -> None:
    _console.print(Text("\U0001f4dd You: ", style="bold green"), end="")


def goodbye() -> None:
    _console.print(Text("\U0001f44b Goodbye! Stay safe.", style="blue"))


def answer_text(text: str) -> None:
    # Reply text reaches the terminal verbatim, tabs and carriage returns included
    if _out.color_system and not _out.no_color:
        text = _ANSWER_STYLE.render(text, color_system=ColorSystem.STANDARD)
    _out.file.write(text)
    _out.file.flush()


def reply_end() -> None:
    _out.print()


def reasoning_done(elapsed: float, chars: int) -> None:
    _console.print(
        Text(f"  \U0001f4ad Thought for {elapsed:.1f}s ({chars} chars)", style="dim")
    )


class StreamRenderer:
    """Render one streamed reply as its fragments arrive.

    Reasoning text is shown in a single status line on stderr that is
    redrawn in place. The first answer fragment finalizes it; the answer
    itself goes to stdout unbuffered.
    """

    def __init__(
        self,
        width: int = REASONING_PREVIEW_WIDTH,
        state: ReasoningState | None = None,
    ):
        self.width = width
        self.state = state if state is not None else ReasoningState()
        self._status = None

    def __call__(self, fragment) -> None:
        if fragment.thinking and self.state.add(fragment.thinking):
            self._show_reasoning()
        if fragment.content:
            self._finish_reasoning()
            answer_text(fragment.content)

    def _show_reasoning(self) -> None:
        label = Text()
        label.append("\U0001f4ad Thinking: ", style="magenta")
        label.append(self.state.preview(self.width), style="dim italic")
        if self._status is None:
            self._status = _console.status(label, spinner="dots")
            self._status.start()
        else:
            self._status.update(label)

    def _finish_reasoning(self) -> None:
        if self._status is not None:
            self._status.stop()
            self._status = None
        if self.state.finalize():
            reasoning_done(self.state.elapsed, len(self.state.text))

    def close(self) -> None:
        """Finalize any pending reasoning and end the reply line."""
        self._finish_reasoning()
        reply_end()


def generation_failed(msg: str) -> None:
    line = Text()
    line.append("❌ Generation failed: ", style="bold red")
    line.append(msg, style="red")
    _console.print(line)


def history_summary(turns) -> None:
    counts: dict[str, int] = {}
    for t in turns:
        counts[t.role] = counts.get(t.role, 0) + 1
    detail = ", ".join(f"{role}={n}" for role, n in counts.items())
    _console.print(Text(f"  {len(turns)} turns ({detail})", style="dim"))


# -- Diagnostics -------------------------------------------------------------


def info(msg: str) -> None:
    _console.print(Text(f"  {msg}", style="dim"))


def warning(msg: str) -> None:
    line = Text()
    line.append("  ⚠ Warning: ", style="yellow")
    line.append(msg, style="yellow")
    _console.print(line)


def error(msg: str) -> None:
    line = Text()
    line.append("[ERROR] ", style="bold red")
    line.append(msg, style="red")
    _console.print(line)
