"""
Narrator — External Service Clients

The generation service and the awareness snapshot store.
"""

from narrator.clients.llm import (
    LLMProvider,
    LLMResponse,
    Message,
    NullLLMProvider,
    create_llm_provider,
)
from narrator.clients.persistence import (
    AwarenessStore,
    JsonFileAwarenessStore,
    NullAwarenessStore,
    create_awareness_store,
)

__all__ = [
    "LLMProvider",
    "LLMResponse",
    "Message",
    "NullLLMProvider",
    "create_llm_provider",
    "AwarenessStore",
    "JsonFileAwarenessStore",
    "NullAwarenessStore",
    "create_awareness_store",
]
