from __future__ import annotations

from pathlib import Path
from typing import Any

from conftest import BATTLE_DATA, ITEM_INDEX, ITEM_TABLE

from maa_flow.reference import ITEM_TABLE_URL, ReferenceRepository


def test_local_tables(reference: ReferenceRepository) -> None:
    record = reference.item("2001")
    amiya = reference.operator("char_002_amiya")

    assert record.name == "Drill Battle Record"
    assert record.icon_id == "sprite_exp_card_t1"
    assert record.sort_key == 10
    assert reference.item("3003").icon_id == "3003"
    assert amiya.rarity == 5
    assert amiya.sort_key == 0
    assert set(reference.operators()) == {"char_002_amiya", "char_285_medic2"}


def test_unknown_ids_fall_back(reference: ReferenceRepository) -> None:
    item = reference.item("404")
    operator = reference.operator("char_404_ghost", fallback_name="Ghost")

    assert item.known is False
    assert item.name == "Unknown item (404)"
    assert item.category == "UNKNOWN"
    assert operator.known is False
    assert operator.name == "Ghost"
    assert reference.operator("char_405").name == "Unknown operator (char_405)"


def test_missing_tables_behave_as_empty(tmp_path: Path) -> None:
    repository = ReferenceRepository(tmp_path / "empty")

    assert repository.items() == {}
    assert repository.operators() == {}
    assert repository.item("2001").known is False


def test_corrupt_table_behaves_as_empty(tmp_path: Path) -> None:
    (tmp_path / "item_index.json").write_text("{not json", encoding="utf-8")

    assert ReferenceRepository(tmp_path).items() == {}


def test_missing_tables_are_fetched_and_cached(tmp_path: Path) -> None:
    fetched: list[str] = []
    payloads = {
        "https://mirror.example/resource/item_index.json": ITEM_INDEX,
        ITEM_TABLE_URL: ITEM_TABLE,
        "https://mirror.example/resource/battle_data.json": BATTLE_DATA,
    }

    def fetcher(url: str, timeout_s: float) -> dict[str, Any]:
        fetched.append(url)
        return payloads[url]

    repository = ReferenceRepository(
        tmp_path, remote_base="https://mirror.example/resource/", fetcher=fetcher
    )

    assert repository.item("2001").name == "Drill Battle Record"
    assert repository.operator("char_285_medic2").name == "Lancet-2"
    assert (tmp_path / "gamedata" / "excel" / "item_table.json").is_file()
    assert len(fetched) == 3

    offline = ReferenceRepository(tmp_path, remote_base="https://mirror.example/resource")
    assert offline.item("3003").name == "Pure Gold"


def test_fetch_failure_leaves_tables_empty(tmp_path: Path) -> None:
    def fetcher(url: str, timeout_s: float) -> dict[str, Any]:
        raise RuntimeError("Reference fetch failed: timed out")

    repository = ReferenceRepository(tmp_path, remote_base="https://mirror.example", fetcher=fetcher)

    assert repository.items() == {}
    assert not (tmp_path / "item_index.json").exists()


def test_refresh_forces_download(tmp_path: Path) -> None:
    calls: list[str] = []

    def fetcher(url: str, timeout_s: float) -> dict[str, Any]:
        calls.append(url)
        if url.endswith("battle_data.json"):
            return BATTLE_DATA
        if url == ITEM_TABLE_URL:
            return ITEM_TABLE
        return ITEM_INDEX

    repository = ReferenceRepository(tmp_path, remote_base="https://mirror.example", fetcher=fetcher)

    assert repository.refresh(force_remote=True) == {"items": 2, "operators": 2}
    assert len(calls) == 3
