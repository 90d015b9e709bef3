import pytest

from drug_monitor import config, db


@pytest.fixture
def temp_db(tmp_path, monkeypatch):
    """Fresh SQLite registry in a temporary directory."""
    path = tmp_path / "subscribers.db"
    monkeypatch.setattr(config, "SQLITE_DB_PATH", str(path))
    db.init_db()
    return path


@pytest.fixture
def pharmacy_item():
    """Factory for one match record as returned by the search API."""

    def _make(i: int = 1) -> dict:
        return {
            "storeName": f"Аптека №{i}",
            "storeAddress": f"Невский пр., {i}",
            "storeDistrict": "Центральный",
            "storeWorkingTime": "Пн-Пт 08:00-21:00 Сб 09:00-18:00 Вс выходной",
            "drugName": f"Пентаса таб. 500 мг #{i}",
        }

    return _make


@pytest.fixture
def search_payload(pharmacy_item):
    def _make(count: int) -> dict:
        return {"success": True, "result": [pharmacy_item(i) for i in range(1, count + 1)]}

    return _make
