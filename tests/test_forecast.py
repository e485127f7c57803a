import pytest

from konsernkontroll.forecast import PROJECTION_COLUMNS, ForecastBook, project_liquidity
from konsernkontroll.models import Company, Forecast
from konsernkontroll.storage import MemoryTableStore


def test_upsert_inserts_then_updates_same_month() -> None:
    store = MemoryTableStore({"companies": [{"id": 1, "group_id": 1, "name": "VPS"}]})
    book = ForecastBook(store)

    first = book.upsert(1, "2025-01", 100.0, 40.0)
    second = book.upsert(1, "2025-01", 150.0, 40.0)

    assert first.id == second.id
    assert second.estimated_receivables == 150.0
    assert len(store.fetch_rows("forecasts")) == 1


def test_upsert_rejects_bad_month() -> None:
    book = ForecastBook(MemoryTableStore())
    with pytest.raises(ValueError):
        book.upsert(1, "2025-13")
    with pytest.raises(ValueError):
        book.upsert(1, "januar")


def test_load_sorts_by_month() -> None:
    book = ForecastBook(MemoryTableStore())
    book.upsert(1, "2025-03", 1, 0)
    book.upsert(1, "2025-01", 2, 0)
    book.upsert(2, "2025-02", 3, 0)

    assert [f.month for f in book.load(1)] == ["2025-01", "2025-03"]


def test_project_liquidity_rolls_forward() -> None:
    company = Company(id=1, liquidity=1000.0)
    forecasts = [
        Forecast(company_id=1, month="2025-02", estimated_receivables=100, estimated_payables=300),
        Forecast(company_id=1, month="2025-01", estimated_receivables=500, estimated_payables=200),
        Forecast(company_id=2, month="2025-01", estimated_receivables=9999, estimated_payables=0),
    ]

    df = project_liquidity(company, forecasts)

    assert list(df.columns) == PROJECTION_COLUMNS
    assert list(df["month"]) == ["2025-01", "2025-02"]
    assert list(df["net_flow"]) == [300, -200]
    assert list(df["projected_liquidity"]) == [1300.0, 1100.0]


def test_project_liquidity_without_forecasts() -> None:
    df = project_liquidity(Company(id=1), [])
    assert df.empty
    assert list(df.columns) == PROJECTION_COLUMNS


def test_book_projection_loads_company_forecasts() -> None:
    book = ForecastBook(MemoryTableStore())
    book.upsert(1, "2025-01", 500, 200)
    book.upsert(2, "2025-01", 9999, 0)

    df = book.project_liquidity(Company(id=1, liquidity=1000.0))

    assert list(df["month"]) == ["2025-01"]
    assert list(df["projected_liquidity"]) == [1300.0]
