"""
Narrator — Awareness Persistence

Load and save the narrow, persisted slice of awareness state, keyed by
conversation identity. Everything else about a session (escalation,
history, cooldowns, counters) is rebuilt from scratch on load.

``NullAwarenessStore`` remembers nothing and is the default.
``JsonFileAwarenessStore`` writes one JSON document per conversation.
"""

from __future__ import annotations

import asyncio
import hashlib
import re
from abc import ABC, abstractmethod
from pathlib import Path
from typing import TYPE_CHECKING

import orjson
import structlog
from pydantic import ValidationError

from narrator.systems.awareness.types import PersistedAwareness

if TYPE_CHECKING:
    from narrator.config import PersistenceConfig

logger = structlog.get_logger()

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_.-]+")


class AwarenessStore(ABC):
    """Abstract persisted-awareness store."""

    @abstractmethod
    async def load(self, conversation_id: str) -> PersistedAwareness | None: ...

    @abstractmethod
    async def save(self, conversation_id: str, snapshot: PersistedAwareness) -> None: ...

    @abstractmethod
    async def delete(self, conversation_id: str) -> None: ...


class NullAwarenessStore(AwarenessStore):
    async def load(self, conversation_id: str) -> PersistedAwareness | None:
        return None

    async def save(self, conversation_id: str, snapshot: PersistedAwareness) -> None:
        return None

    async def delete(self, conversation_id: str) -> None:
        return None


class JsonFileAwarenessStore(AwarenessStore):
    """
    One ``<conversation>.json`` file per conversation under ``state_dir``.

    Writes go to a temp file and are renamed into place, so a crash mid-save
    leaves the previous snapshot intact. A corrupt file loads as None.
    """

    def __init__(self, state_dir: str | Path) -> None:
        self._dir = Path(state_dir)
        self._logger = logger.bind(system="narrator.persistence")

    def path_for(self, conversation_id: str) -> Path:
        slug = _UNSAFE_CHARS.sub("_", conversation_id).strip("._")[:64]
        # Distinct ids can collapse to one slug; the digest keeps them apart.
        digest = hashlib.sha1(conversation_id.encode("utf-8")).hexdigest()[:10]
        return self._dir / f"{slug or 'conversation'}-{digest}.json"

    async def load(self, conversation_id: str) -> PersistedAwareness | None:
        path = self.path_for(conversation_id)
        try:
            raw = await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError:
            return None
        except OSError as exc:
            self._logger.warning(
                "awareness_snapshot_unreadable",
                conversation_id=conversation_id,
                path=str(path),
                error=str(exc),
            )
            return None

        try:
            return PersistedAwareness.model_validate(orjson.loads(raw))
        except (orjson.JSONDecodeError, ValidationError) as exc:
            self._logger.warning(
                "awareness_snapshot_unreadable",
                conversation_id=conversation_id,
                path=str(path),
                error=str(exc),
            )
            return None

    async def save(self, conversation_id: str, snapshot: PersistedAwareness) -> None:
        path = self.path_for(conversation_id)
        data = orjson.dumps(snapshot.model_dump(mode="json"), option=orjson.OPT_INDENT_2)
        await asyncio.to_thread(self._write_atomic, path, data)
        self._logger.debug("awareness_snapshot_saved", conversation_id=conversation_id)

    async def delete(self, conversation_id: str) -> None:
        path = self.path_for(conversation_id)
        await asyncio.to_thread(lambda: path.unlink(missing_ok=True))

    def _write_atomic(self, path: Path, data: bytes) -> None:
        self._dir.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(".json.tmp")
        tmp.write_bytes(data)
        tmp.replace(path)


def create_awareness_store(config: PersistenceConfig) -> AwarenessStore:
    if config.backend == "json":
        return JsonFileAwarenessStore(config.state_dir)
    if config.backend == "none":
        return NullAwarenessStore()
    raise ValueError(f"Unknown persistence backend: {config.backend}")
