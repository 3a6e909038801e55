"""Durable client storage for the authenticated identity."""

import json
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional

import structlog
from pydantic import ValidationError

from .domain.models import Identity

logger = structlog.get_logger()

DEFAULT_STORAGE_KEY = "user"


class SessionStorage(ABC):
    """Single-record store keyed by a fixed storage key."""

    def __init__(self, key: str = DEFAULT_STORAGE_KEY) -> None:
        self.key = key

    @abstractmethod
    def load(self) -> Optional[Identity]:
        pass

    @abstractmethod
    def save(self, identity: Identity) -> None:
        pass

    @abstractmethod
    def clear(self) -> None:
        pass


class MemoryStorage(SessionStorage):
    """Process-local storage, handy for tests."""

    def __init__(self, key: str = DEFAULT_STORAGE_KEY) -> None:
        super().__init__(key)
        self._items: Dict[str, str] = {}

    def load(self) -> Optional[Identity]:
        raw = self._items.get(self.key)
        return _parse(raw, self.key) if raw is not None else None

    def save(self, identity: Identity) -> None:
        self._items[self.key] = identity.model_dump_json()

    def clear(self) -> None:
        self._items.pop(self.key, None)


class JsonFileStorage(SessionStorage):
    """Identity persisted as one entry of a JSON document on disk."""

    def __init__(self, path: Path, key: str = DEFAULT_STORAGE_KEY) -> None:
        super().__init__(key)
        self.path = Path(path)

    def _read(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            document = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning("session_storage_unreadable", path=str(self.path), error=str(e))
            return {}
        return document if isinstance(document, dict) else {}

    def _write(self, document: Dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(document), encoding="utf-8")
        os.replace(tmp, self.path)

    def load(self) -> Optional[Identity]:
        raw = self._read().get(self.key)
        return _parse(raw, self.key) if raw is not None else None

    def save(self, identity: Identity) -> None:
        document = self._read()
        document[self.key] = identity.model_dump_json()
        self._write(document)

    def clear(self) -> None:
        document = self._read()
        if document.pop(self.key, None) is not None:
            self._write(document)


def _parse(raw: str, key: str) -> Optional[Identity]:
    try:
        return Identity.model_validate_json(raw)
    except ValidationError as e:
        logger.warning("session_storage_invalid_record", key=key, error=str(e))
        return None
