"""Public library API for ollachat: Session class and Result dataclass."""

from dataclasses import dataclass
from typing import Callable

from .client import Fragment, OllamaClient
from .errors import ChatError, ConfigError
from .history import Conversation

MODES = ("chat", "generate")
FAILURE_POLICIES = ("keep", "rollback")


@dataclass
class Result:
    """Result of one ask() call."""

    answer: str
    error: str | None
    messages: list[dict]

    @property
    def ok(self) -> bool:
        return self.error is None


class Session:
    """One conversation with one model.

    Owns the Conversation. Each ask() appends the user turn, streams the
    reply under its own deadline, and appends the assistant turn.

    on_failure decides what a failed call leaves behind: "keep" appends
    whatever text arrived (possibly empty) as the assistant turn, so the
    user turn stays paired; "rollback" removes the user turn instead.
    """

    def __init__(
        self,
        client: OllamaClient,
        *,
        model: str,
        system_prompt: str,
        mode: str = "chat",
        think=None,
        timeout: float | None = 30.0,
        on_failure: str = "keep",
    ):
        if mode not in MODES:
            raise ConfigError(f"unknown mode {mode!r}")
        if on_failure not in FAILURE_POLICIES:
            raise ConfigError(f"unknown failure policy {on_failure!r}")
        self.client = client
        self.model = model
        self.mode = mode
        self.think = think
        self.timeout = timeout
        self.on_failure = on_failure
        self.history = Conversation(system_prompt)

    def _open_stream(self, text: str):
        if self.mode == "generate":
            return self.client.generate_stream(
                self.model,
                text,
                system=self.history.system_prompt,
                think=self.think,
                timeout=self.timeout,
            )
        return self.client.chat_stream(
            self.model,
            self.history.messages(),
            think=self.think,
            timeout=self.timeout,
        )

    def ask(
        self,
        text: str,
        on_fragment: Callable[[Fragment], None] | None = None,
    ) -> Result:
        """Send `text` and stream the reply, calling on_fragment for each piece.

        Server errors, timeouts and Ctrl-C are returned in Result.error;
        the history is updated according to on_failure either way.
        """
        self.history.add_user(text)
        parts: list[str] = []
        error: str | None = None

        stream = None
        try:
            stream = self._open_stream(text)
            for fragment in stream:
                if on_fragment is not None:
                    on_fragment(fragment)
                if fragment.content:
                    parts.append(fragment.content)
        except ChatError as e:
            error = str(e)
        except KeyboardInterrupt:
            error = "interrupted"
        finally:
            close = getattr(stream, "close", None)
            if close is not None:
                close()

        answer = "".join(parts)
        if error is not None and self.on_failure == "rollback":
            self.history.rollback_last_user()
        else:
            self.history.add_assistant(answer)

        return Result(answer=answer, error=error, messages=self.history.messages())

    def reset(self) -> int:
        """Forget everything but the system turn."""
        return self.history.clear()
