"""Exception types shared across the sitesmith backend."""

from __future__ import annotations


class SitesmithError(RuntimeError):
    """Base class for sitesmith errors."""


class GenerationCancelled(SitesmithError):
    """Raised inside a turn when its cancellation token has fired."""

    def __init__(self, message: str = "Generation stopped.") -> None:
        super().__init__(message)


class GenerationStreamError(SitesmithError):
    """The generation backend failed or returned an unusable stream."""


class NavigationError(SitesmithError):
    """Page navigation or text extraction failed."""


class ConversationNotFound(SitesmithError, KeyError):
    def __init__(self, conversation_id: str) -> None:
        super().__init__(f"Conversation not found: {conversation_id}")
        self.conversation_id = conversation_id

    def __str__(self) -> str:
        return self.args[0]


class LastConversationError(SitesmithError):
    """Refusal to delete the only remaining conversation."""

    def __init__(self) -> None:
        super().__init__("You cannot delete the last chat.")


class InvalidConversationName(SitesmithError, ValueError):
    def __init__(self) -> None:
        super().__init__("Conversation name must not be empty.")
