from abc import ABC, abstractmethod


class ChatModelPort(ABC):
    @abstractmethod
    def generate(self, prompt: str) -> str: ...


class ChatModelUnavailable(RuntimeError):
    """Raised by a chat model that has no configured backend."""


class DisabledChatModel(ChatModelPort):
    def __init__(self, reason: str = "ai_disabled") -> None:
        self.reason = reason

    def generate(self, prompt: str) -> str:
        raise ChatModelUnavailable(self.reason)
