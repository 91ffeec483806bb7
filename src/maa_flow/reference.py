"""Static reference data used to enrich recognition results.

Tables are loaded once from the engine's resource directory. A table missing
locally is fetched from the remote mirror and cached next to the local files.
A table that cannot be loaded at all behaves as empty, so every id falls back
to a placeholder entry.
"""

from __future__ import annotations

import json
import logging
import re
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable
from urllib import error, request

logger = logging.getLogger(__name__)

ITEM_INDEX = "item_index.json"
ITEM_TABLE = "gamedata/excel/item_table.json"
BATTLE_DATA = "battle_data.json"
ITEM_TABLE_URL = (
    "https://raw.githubusercontent.com/yuanyan3060/ArknightsGameResource/main/gamedata/excel/item_table.json"
)
UNKNOWN_SORT_KEY = 999999

# Temporary deployment operators are excluded from the roster table.
_RESERVE_OPERATOR = re.compile(r"^char_[56]\d{2}_")


@dataclass(frozen=True)
class ItemInfo:
    id: str
    name: str
    icon_id: str | None
    category: str
    sort_key: int
    known: bool = True


@dataclass(frozen=True)
class OperatorInfo:
    id: str
    name: str
    rarity: int | None
    profession: str | None
    sort_key: int
    known: bool = True


def fetch_json(url: str, timeout_s: float) -> dict[str, Any]:
    req = request.Request(url=url, method="GET", headers={"Accept": "application/json"})
    try:
        with request.urlopen(req, timeout=timeout_s) as response:
            raw = response.read().decode("utf-8")
    except error.HTTPError as exc:
        raise RuntimeError(f"Reference fetch failed with status {exc.code}: {url}") from exc
    except error.URLError as exc:
        raise RuntimeError(f"Reference fetch failed: {exc.reason}") from exc
    parsed = json.loads(raw)
    if not isinstance(parsed, dict):
        raise RuntimeError(f"Reference payload at {url} is not a JSON object")
    return parsed


class ReferenceRepository:
    def __init__(
        self,
        resource_dir: Path,
        *,
        remote_base: str | None = None,
        timeout_s: float = 10.0,
        fetcher: Callable[[str, float], dict[str, Any]] = fetch_json,
    ) -> None:
        self.resource_dir = resource_dir
        self.remote_base = remote_base.rstrip("/") if remote_base else None
        self.timeout_s = timeout_s
        self._fetcher = fetcher
        self._lock = threading.Lock()
        self._items: dict[str, ItemInfo] | None = None
        self._operators: dict[str, OperatorInfo] | None = None

    def item(self, item_id: str) -> ItemInfo:
        info = self.items().get(item_id)
        if info is not None:
            return info
        return ItemInfo(
            id=item_id,
            name=f"Unknown item ({item_id})",
            icon_id=None,
            category="UNKNOWN",
            sort_key=UNKNOWN_SORT_KEY,
            known=False,
        )

    def operator(self, operator_id: str, fallback_name: str | None = None) -> OperatorInfo:
        info = self.operators().get(operator_id)
        if info is not None:
            return info
        return OperatorInfo(
            id=operator_id,
            name=fallback_name or f"Unknown operator ({operator_id})",
            rarity=None,
            profession=None,
            sort_key=UNKNOWN_SORT_KEY,
            known=False,
        )

    def items(self) -> dict[str, ItemInfo]:
        with self._lock:
            if self._items is None:
                self._items = self._load_items()
            return self._items

    def operators(self) -> dict[str, OperatorInfo]:
        with self._lock:
            if self._operators is None:
                self._operators = self._load_operators()
            return self._operators

    def refresh(self, *, force_remote: bool = False) -> dict[str, int]:
        """Reload every table; with ``force_remote`` re-download before reading."""
        if force_remote:
            for relative, url in self._remote_sources().items():
                self._download(relative, url)
        with self._lock:
            self._items = self._load_items()
            self._operators = self._load_operators()
            return {"items": len(self._items), "operators": len(self._operators)}

    def _remote_sources(self) -> dict[str, str]:
        # No remote base means local files only.
        if not self.remote_base:
            return {}
        return {
            ITEM_INDEX: f"{self.remote_base}/{ITEM_INDEX}",
            ITEM_TABLE: ITEM_TABLE_URL,
            BATTLE_DATA: f"{self.remote_base}/{BATTLE_DATA}",
        }

    def _load_items(self) -> dict[str, ItemInfo]:
        index = self._read_table(ITEM_INDEX)
        table = self._read_table(ITEM_TABLE).get("items", {})
        if not isinstance(table, dict):
            table = {}

        items: dict[str, ItemInfo] = {}
        for item_id, raw in index.items():
            if not isinstance(raw, dict):
                continue
            game_item = table.get(item_id)
            icon_id = game_item.get("iconId") if isinstance(game_item, dict) else None
            items[item_id] = ItemInfo(
                id=item_id,
                name=str(raw.get("name") or item_id),
                icon_id=str(icon_id or raw.get("icon") or item_id),
                category=str(raw.get("classifyType") or "UNKNOWN"),
                sort_key=_int_or(raw.get("sortId"), UNKNOWN_SORT_KEY),
            )
        logger.info("reference event=items_loaded count=%s", len(items))
        return items

    def _load_operators(self) -> dict[str, OperatorInfo]:
        chars = self._read_table(BATTLE_DATA).get("chars", {})
        if not isinstance(chars, dict):
            return {}

        rows: list[tuple[str, str, int | None, str | None]] = []
        for operator_id, raw in chars.items():
            if not operator_id.startswith("char_") or _RESERVE_OPERATOR.match(operator_id):
                continue
            if not isinstance(raw, dict):
                continue
            rows.append(
                (operator_id, str(raw.get("name") or operator_id), _rarity(raw.get("rarity")), raw.get("profession"))
            )
        # Rarity descending, then name, then id; the position is the sort key.
        rows.sort(key=lambda row: (-(row[2] or 0), row[1], row[0]))
        operators = {
            operator_id: OperatorInfo(
                id=operator_id,
                name=name,
                rarity=rarity,
                profession=profession,
                sort_key=position,
            )
            for position, (operator_id, name, rarity, profession) in enumerate(rows)
        }
        logger.info("reference event=operators_loaded count=%s", len(operators))
        return operators

    def _read_table(self, relative: str) -> dict[str, Any]:
        path = self.resource_dir / relative
        if not path.is_file():
            url = self._remote_sources().get(relative)
            if url is None or not self._download(relative, url):
                return {}
        try:
            parsed = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("reference event=load_failed path=%s error=%s", path, exc)
            return {}
        return parsed if isinstance(parsed, dict) else {}

    def _download(self, relative: str, url: str) -> bool:
        try:
            payload = self._fetcher(url, self.timeout_s)
        except Exception as exc:  # noqa: BLE001
            logger.warning("reference event=fetch_failed url=%s error=%s", url, exc)
            return False

        path = self.resource_dir / relative
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            temp_path = path.with_suffix(path.suffix + ".tmp")
            temp_path.write_text(json.dumps(payload, ensure_ascii=False), encoding="utf-8")
            temp_path.replace(path)
        except OSError as exc:
            logger.warning("reference event=cache_failed path=%s error=%s", path, exc)
            return False
        logger.info("reference event=cached path=%s url=%s", path, url)
        return True


def _int_or(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _rarity(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        digits = re.findall(r"\d+", value)
        if digits:
            return int(digits[-1])
    return None
