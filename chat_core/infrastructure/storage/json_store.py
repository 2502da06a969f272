import json
import os
from pathlib import Path
from typing import Dict, Tuple
from uuid import uuid4

from chat_core.domain.exceptions import DecodeError, StoreError
from chat_core.domain.models import Session, TextCompletion


class JsonSessionStore:
    """把所有命名会话保存到一个 JSON 文件。

    文件结构::

        {"chat": {name: Session}, "complete": {name: TextCompletion}}
    """

    def __init__(self, path: str | Path):
        self._path = Path(path).resolve()

    @property
    def path(self) -> Path:
        return self._path

    def exists(self) -> bool:
        return self._path.exists()

    def save(self, chats: Dict[str, Session], completes: Dict[str, TextCompletion]) -> None:
        obj = {
            "chat": {name: s.to_dict() for name, s in chats.items()},
            "complete": {name: c.to_dict() for name, c in completes.items()},
        }
        tmp_path = self._path.with_name(f"{self._path.name}.{uuid4().hex}.tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(json.dumps(obj, ensure_ascii=False), encoding="utf-8")
            os.replace(tmp_path, self._path)
        except OSError as e:
            raise StoreError(code="STORE_WRITE_ERROR", message=str(e))

    def load(self) -> Tuple[Dict[str, Session], Dict[str, TextCompletion]]:
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise StoreError(code="STORE_READ_ERROR", message=str(e))
        if not isinstance(data, dict) or "chat" not in data or "complete" not in data:
            raise StoreError(code="STORE_READ_ERROR", message=f"{self._path} is not a sessions file")
        try:
            chats = {name: Session.from_dict(raw) for name, raw in data["chat"].items()}
            completes = {name: TextCompletion.from_dict(raw) for name, raw in data["complete"].items()}
        except (DecodeError, AttributeError, TypeError, KeyError) as e:
            raise StoreError(code="STORE_READ_ERROR", message=str(e))
        return chats, completes
