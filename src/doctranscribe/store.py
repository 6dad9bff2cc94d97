# src/doctranscribe/store.py
from __future__ import annotations

import json
import logging
import threading
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, Set

from .models import TranscriptResult

logger = logging.getLogger("doctranscribe")


class BaseTranscriptStore(ABC):
    """Persistence collaborator. Stores the transcript text verbatim."""

    @abstractmethod
    def save(self, document_id: str, text: str, result: Optional[TranscriptResult] = None) -> None:
        raise NotImplementedError

    @abstractmethod
    def load(self, document_id: str) -> Optional[str]:
        """Returns the latest transcript for the document, or None when not found."""
        raise NotImplementedError


class JsonlTranscriptStore(BaseTranscriptStore):
    """
    Append-only JSONL file, one record per save. The last record for an id wins.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = threading.Lock()

    def save(self, document_id: str, text: str, result: Optional[TranscriptResult] = None) -> None:
        record = {
            "timestamp": time.strftime("%Y-%m-%dT%H:%M:%S%z"),
            "document_id": document_id,
            "text": text,
        }
        if result is not None:
            record.update({
                "method": result.method.value,
                "total_pages": result.total_pages,
                "truncated": result.truncated,
            })
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(json.dumps(record, ensure_ascii=False) + "\n")

    def _records(self):
        if not self.path.exists():
            return
        with open(self.path, "r", encoding="utf-8") as f:
            for line in f:
                try:
                    rec = json.loads(line)
                except json.JSONDecodeError:
                    continue
                if isinstance(rec, dict) and isinstance(rec.get("document_id"), str):
                    yield rec

    def load(self, document_id: str) -> Optional[str]:
        found: Optional[str] = None
        for rec in self._records():
            if rec["document_id"] == document_id:
                found = rec.get("text", "")
        return found

    def processed_ids(self) -> Set[str]:
        """
        Collect already stored document ids. Tolerates bad lines.
        """
        try:
            return {rec["document_id"] for rec in self._records()}
        except OSError as e:
            logger.warning("Failed to read processed ids from %s, %s", self.path, e)
            return set()
