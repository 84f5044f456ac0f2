"""Exception types shared across ollachat."""


class ChatError(Exception):
    """Raised by the startup sequence or the chat loop for reportable failures."""


class ConfigError(ChatError):
    """Raised for invalid configuration (bad TOML, wrong types, bad host)."""


class ServerError(ChatError):
    """Raised when a request to the Ollama server fails."""

    def __init__(self, operation: str, detail: str):
        self.operation = operation
        self.detail = detail
        super().__init__(f"{operation} failed: {detail}")


class CompletionTimeout(ServerError):
    """Raised when a streaming completion runs past its deadline."""

    def __init__(self, operation: str, timeout: float):
        self.timeout = timeout
        super().__init__(operation, f"no complete reply within {timeout:g}s")
