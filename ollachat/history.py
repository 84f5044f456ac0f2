"""Conversation history: an ordered, append-only list of role-tagged turns."""

from dataclasses import dataclass

ROLES = ("system", "user", "assistant")


@dataclass(frozen=True)
class Turn:
    role: str
    content: str

    def to_message(self) -> dict:
        return {"role": self.role, "content": self.content}


class Conversation:
    """Ordered turns, always starting with the system turn.

    Turns are only ever appended. The two exceptions are
    rollback_last_user() for the rollback failure policy and clear(),
    and neither can touch the leading system turn.
    """

    def __init__(self, system_prompt: str):
        self._turns: list[Turn] = [Turn("system", system_prompt)]

    @property
    def system_prompt(self) -> str:
        return self._turns[0].content

    def append(self, role: str, content: str) -> Turn:
        if role not in ROLES:
            raise ValueError(f"unknown role {role!r}")
        if role == "system":
            raise ValueError("conversation already has a system turn")
        turn = Turn(role, content)
        self._turns.append(turn)
        return turn

    def add_user(self, text: str) -> Turn:
        return self.append("user", text)

    def add_assistant(self, text: str) -> Turn:
        return self.append("assistant", text)

    def rollback_last_user(self) -> bool:
        """Drop a trailing user turn. Returns False if the last turn isn't one."""
        if len(self._turns) > 1 and self._turns[-1].role == "user":
            self._turns.pop()
            return True
        return False

    def clear(self) -> int:
        """Drop everything but the system turn; return how many turns were removed."""
        dropped = len(self._turns) - 1
        del self._turns[1:]
        return dropped

    def messages(self) -> list[dict]:
        return [t.to_message() for t in self._turns]

    def __len__(self) -> int:
        return len(self._turns)

    def __iter__(self):
        return iter(self._turns)

    def __getitem__(self, index):
        return self._turns[index]
