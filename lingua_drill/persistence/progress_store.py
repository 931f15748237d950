from __future__ import annotations
from dataclasses import asdict
from pathlib import Path
import json
import os
import re

from kivy.logger import Logger

from lingua_drill.models.state import HistoryEntry, MistakeRecord
from lingua_drill.settings import settings

_UNSAFE = re.compile(r"[^A-Za-z0-9_.-]+")


class ProgressStore:
    """Per-user JSON documents: points, history, mistakes, notebook words.

    Best effort: unreadable files load as empty, failed writes are logged and dropped.
    """

    def __init__(self, data_dir: Path | None = None):
        self.data_dir = Path(data_dir or settings.data_dir)

    def _path(self, username: str) -> Path:
        name = _UNSAFE.sub("_", username.strip()) or "_"
        return self.data_dir / f"{name}.json"

    # ---- IO ----
    def _load(self, username: str) -> dict:
        path = self._path(username)
        if not path.exists():
            return {}
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
            return data if isinstance(data, dict) else {}
        except (OSError, ValueError) as e:
            Logger.warning(f"Store: could not read {path.name}: {e}")
            return {}

    def _save(self, username: str, data: dict):
        path = self._path(username)
        tmp_path = path.with_suffix(".tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(data, f, ensure_ascii=False, separators=(",", ":"), sort_keys=True)
            os.replace(tmp_path, path)
        except OSError as e:
            Logger.error(f"Store: could not write {path.name}: {e}")
            try:
                tmp_path.unlink(missing_ok=True)
            except OSError:
                pass

    def _update(self, username: str, key: str, value):
        data = self._load(username)
        data[key] = value
        self._save(username, data)

    # ---- points ----
    def get_points(self, username: str) -> int:
        try:
            return int(self._load(username).get("points", 0))
        except (TypeError, ValueError):
            return 0

    def save_points(self, username: str, points: int):
        self._update(username, "points", int(points))

    # ---- history ----
    def get_history(self, username: str) -> list[HistoryEntry]:
        out = []
        for item in self._load(username).get("history", []) or []:
            if not isinstance(item, dict):
                continue
            words = [str(w) for w in item.get("words", []) if isinstance(w, str)]
            out.append(HistoryEntry(
                id=str(item.get("id", "")),
                date=str(item.get("date", "")),
                theme=str(item.get("theme", "")),
                difficulty=str(item.get("difficulty", "")),
                words=words,
            ))
        return out

    def add_history(self, username: str, entry: HistoryEntry):
        data = self._load(username)
        history = [h for h in data.get("history", []) or [] if isinstance(h, dict)]
        data["history"] = [asdict(entry)] + history
        self._save(username, data)

    # ---- mistakes ----
    def get_mistakes(self, username: str) -> list[MistakeRecord]:
        out = []
        for item in self._load(username).get("mistakes", []) or []:
            if not isinstance(item, dict):
                continue
            try:
                out.append(MistakeRecord.from_dict(item))
            except ValueError:
                continue
        return out

    def add_mistake(self, username: str, record: MistakeRecord) -> bool:
        """Insert newest-first unless the same word/kind was already logged that day."""
        current = self.get_mistakes(username)
        for m in current:
            if m.word == record.word and m.kind == record.kind and m.date == record.date:
                return False
        data = self._load(username)
        data["mistakes"] = [record.to_dict()] + [m.to_dict() for m in current]
        self._save(username, data)
        Logger.info(f"Store: logged {record.kind.value} mistake for {record.word!r}")
        return True

    # ---- notebook ----
    def get_notebook(self, username: str) -> list[str]:
        raw = self._load(username).get("notebook_words", []) or []
        seen, out = set(), []
        for w in raw:
            if isinstance(w, str) and w and w not in seen:
                seen.add(w)
                out.append(w)
        return out

    def save_notebook(self, username: str, words: list[str]):
        self._update(username, "notebook_words", list(words))
