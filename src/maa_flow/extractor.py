"""Recognition results scraped from the engine's text log.

The log is foreign output: a logical result can appear several times (the
engine retries internally), interleaved with unrelated lines, with its payload
embedded as an escaped JSON string. The last record marked done wins; without
one, the last record found is used. Nothing here raises past ``extract_report``.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Callable

from maa_flow.errors import ExtractionError
from maa_flow.models import (
    ExtractionReport,
    RecognitionKind,
    RecognitionResult,
    RecognizedItem,
)
from maa_flow.reference import ReferenceRepository

logger = logging.getLogger(__name__)

_DEPOT_RECORD = re.compile(
    r'"what"\s*:\s*"DepotInfo"[\s\S]*?"details"\s*:\s*\{[\s\S]*?"data"\s*:\s*"((?:[^"\\]|\\.)*)"'
)
_DEPOT_MARKER = re.compile(r'"what"\s*:\s*"DepotInfo"')
_OPERBOX_MARKER = re.compile(r'"what"\s*:\s*"OperBoxInfo"')
_DONE = re.compile(r'"done"\s*:\s*true')
# The engine wraps long lines mid-word.
_WRAPPED_WORD = re.compile(r"([a-zA-Z])\n([a-z])")
_DONE_WINDOW = 5000

ROSTER_ATTRIBUTES = ("own", "elite", "level", "potential", "rarity")


@dataclass(frozen=True)
class _Record:
    payload: Any
    done: bool


class LogExtractor:
    def __init__(
        self,
        reference: ReferenceRepository,
        *,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self.reference = reference
        self._now = now or (lambda: datetime.now(UTC))

    def extract(self, kind: RecognitionKind, log_text: str | None) -> RecognitionResult | None:
        return self.extract_report(kind, log_text).result

    def extract_report(self, kind: RecognitionKind, log_text: str | None) -> ExtractionReport:
        try:
            if log_text is None:
                raise ExtractionError("Engine log is not available")
            if kind == "inventory":
                result = self._extract_inventory(log_text)
            elif kind == "roster":
                result = self._extract_roster(log_text)
            else:
                raise ExtractionError(f"Unsupported recognition kind: {kind}")
        except ExtractionError as exc:
            logger.warning("log_extractor event=failed kind=%s reason=%s", kind, exc.message)
            return ExtractionReport(kind=kind, result=None, reason=exc.message)

        logger.info(
            "log_extractor event=extracted kind=%s count=%s complete=%s",
            kind,
            result.count,
            result.complete,
        )
        return ExtractionReport(kind=kind, result=result)

    def _extract_inventory(self, log_text: str) -> RecognitionResult:
        text = _WRAPPED_WORD.sub(r"\1\2", log_text)
        matches = list(_DEPOT_RECORD.finditer(text))
        if not matches:
            raise ExtractionError("No DepotInfo record found in engine log")

        starts = [match.start() for match in _DEPOT_MARKER.finditer(text)]
        records: list[_Record] = []
        for match in matches:
            window_end = min(match.start() + _DONE_WINDOW, len(text))
            following = [start for start in starts if start > match.start()]
            if following:
                window_end = min(window_end, following[0])
            done = _DONE.search(text, match.start(), window_end) is not None
            records.append(_Record(payload=match.group(1), done=done))

        record = _pick(records)
        depot = _decode_embedded(record.payload)
        if not isinstance(depot, dict):
            raise ExtractionError("DepotInfo payload is not an id to count mapping")

        items: list[RecognizedItem] = []
        for item_id, count in depot.items():
            info = self.reference.item(str(item_id))
            items.append(
                RecognizedItem(
                    id=str(item_id),
                    name=info.name,
                    count=_as_count(count),
                    icon_id=info.icon_id,
                    category=info.category,
                    sort_key=info.sort_key,
                )
            )
        items.sort(key=lambda item: (item.sort_key, item.id))
        return RecognitionResult(
            kind="inventory",
            count=len(depot),
            complete=record.done,
            items=items,
            extracted_at=self._now(),
        )

    def _extract_roster(self, log_text: str) -> RecognitionResult:
        records: list[_Record] = []
        for line in log_text.splitlines():
            if not _OPERBOX_MARKER.search(line):
                continue
            start = line.find('{"class')
            if start == -1:
                start = line.find("{")
            if start == -1:
                continue
            try:
                data, _ = json.JSONDecoder().raw_decode(line[start:])
            except json.JSONDecodeError:
                logger.debug("log_extractor event=skip_line kind=roster reason=malformed_json")
                continue
            details = data.get("details") if isinstance(data, dict) else None
            if not isinstance(details, dict):
                continue
            records.append(_Record(payload=details, done=bool(details.get("done"))))

        if not records:
            raise ExtractionError("No OperBoxInfo record found in engine log")

        record = _pick(records)
        opers = record.payload.get("own_opers")
        if not isinstance(opers, list):
            raise ExtractionError("OperBoxInfo record has no own_opers list")

        items: list[RecognizedItem] = []
        for entry in opers:
            if not isinstance(entry, dict) or not entry.get("id"):
                continue
            operator_id = str(entry["id"])
            info = self.reference.operator(operator_id, fallback_name=entry.get("name"))
            items.append(
                RecognizedItem(
                    id=operator_id,
                    name=info.name,
                    category=info.profession,
                    sort_key=info.sort_key,
                    attributes={key: entry[key] for key in ROSTER_ATTRIBUTES if key in entry},
                )
            )
        items.sort(key=lambda item: (item.sort_key, item.id))
        return RecognitionResult(
            kind="roster",
            count=len(opers),
            complete=record.done,
            items=items,
            extracted_at=self._now(),
        )


def _pick(records: list[_Record]) -> _Record:
    for record in reversed(records):
        if record.done:
            return record
    return records[-1]


def _decode_embedded(raw: str) -> Any:
    try:
        unescaped = json.loads(f'"{raw}"', strict=False)
    except json.JSONDecodeError:
        unescaped = raw.replace('\\"', '"')
    try:
        return json.loads(unescaped)
    except json.JSONDecodeError as exc:
        raise ExtractionError(f"Recognition payload is not valid JSON: {exc.msg}") from exc


def _as_count(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    return None
