import datetime
import sys
from pathlib import Path
import pytest
from fastapi.testclient import TestClient

repo_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(repo_root))

import fake_backend
import reports
from main import app
from models import SalesReportResponse

client = TestClient(app)


def login_as(email, password):
    resp = client.post("/auth/login", json={"email": email, "password": password})
    assert resp.status_code == 200


@pytest.fixture(autouse=True)
def storefront(tmp_path, monkeypatch):
    fake_backend.reset()
    sf = fake_backend.use_sessions(app, client, tmp_path, monkeypatch)
    yield sf


def test_sales_report_requires_staff_role():
    # anonymous
    assert client.get("/reports/sales").status_code == 401

    # normal customer cannot see reports
    login_as("alex@icytales.com", "11111111")
    resp = client.get("/reports/sales")
    assert resp.status_code == 403


def test_sales_report_for_admin_grouped_by_region_and_month():
    login_as("ananth@icytales.com", "22222222")
    resp = client.get("/reports/sales", params={"period": "last-7"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["kpis"]["orders_count"] == 2
    assert body["kpis"]["total"] == 127.4
    assert [b["region"] for b in body["buckets"]] == ["UZB", "KAZ"]

    today = datetime.date.today()
    week_ago = today - datetime.timedelta(days=7)
    assert body["date_label"] == f"{week_ago.isoformat()} → {today.isoformat()}"

    by_month = client.get("/reports/sales", params={"group_by": "month"}).json()
    assert [b["label"] for b in by_month["buckets"]] == ["Jan 2025", "Mar 2025"]


def test_sales_report_rejects_unknown_period():
    login_as("ananth@icytales.com", "22222222")
    assert client.get("/reports/sales", params={"period": "forever"}).status_code == 400


def test_sales_report_csv_export():
    login_as("ananth@icytales.com", "22222222")
    resp = client.get("/reports/sales.csv", params={"period": "last-30"})
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/csv")
    header, row = resp.text.strip().split("\n")
    assert header.startswith('"FromDate","ToDate","OrdersCount"')
    assert row.endswith('"2","120.00","14.40","12.00","5.00","127.40","63.70"')


def test_my_orders_lists_placed_orders_in_active_currency(storefront):
    assert client.get("/orders").status_code == 401

    login_as("alex@icytales.com", "11111111")
    client.post("/cart/add", json={"product_id": 2})
    client.put("/country", json={"code": "GEO"})
    storefront.country.dynamic_rates.clear()
    form = {
        "firstName": "Alex", "lastName": "Stone", "email": "alex@icytales.com", "stateVal": "T",
        "city": "Tbilisi", "zip": "0100", "fulfillmentMethod": "booking", "guests": "4",
        "selectedTimeSlotId": "12-1230", "paymentMethod": "cash_on_delivery",
    }
    assert client.post("/checkout", json=form).status_code == 200
    assert fake_backend.STATE["orders"][0]["request"]["guests"] == 4

    orders = client.get("/orders").json()
    assert len(orders) == 1
    assert orders[0]["order_number"] == "ORD-0001"
    assert orders[0]["fulfillment_method"] == "BOOKING"
    # 5.00 + 8% VAT = 5.40 USD, at the 2.7 fallback rate
    assert orders[0]["total_display"] == "GEL 14.58"


def test_compute_date_range_periods():
    today = datetime.date(2025, 3, 15)
    assert reports.compute_date_range("last-7", today) == {"from_date": "2025-03-08", "to_date": "2025-03-15"}
    assert reports.compute_date_range("last-30", today) == {"from_date": "2025-02-13", "to_date": "2025-03-15"}
    assert reports.compute_date_range("year-to-date", today) == {"from_date": "2025-01-01", "to_date": "2025-03-15"}


def test_kpis_default_missing_values_to_zero():
    report = SalesReportResponse.model_validate({"fromDate": "2025-01-01", "toDate": "2025-01-31", "ordersCount": 3})
    values = reports.kpis(report)
    assert values["orders_count"] == 3
    assert values["total"] == 0.0
    assert reports.kpis(None)["orders_count"] == 0
    assert reports.format_year_month_label("bogus") == "bogus"
