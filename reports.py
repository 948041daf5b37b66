"""Sales report view helpers. The backend aggregates; this only reshapes."""

import csv
import datetime
import io
from typing import List, Optional

from models import SalesReportResponse

PERIODS = ("last-7", "last-30", "year-to-date")

MONTH_ABBR = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")


def compute_date_range(period: str, today: Optional[datetime.date] = None) -> dict:
    to = today or datetime.date.today()
    if period == "last-7":
        start = to - datetime.timedelta(days=7)
    elif period == "last-30":
        start = to - datetime.timedelta(days=30)
    else:
        start = datetime.date(to.year, 1, 1)
    return {"from_date": start.isoformat(), "to_date": to.isoformat()}


def format_year_month_label(month_key: str) -> str:
    # "2025-01" -> "Jan 2025"; anything unparsable is shown as is
    try:
        year_str, month_str = month_key.split("-")
        year, month = int(year_str), int(month_str)
    except ValueError:
        return month_key
    if not year or not 1 <= month <= 12:
        return month_key
    return f"{MONTH_ABBR[month - 1]} {year}"


def kpis(report: Optional[SalesReportResponse]) -> dict:
    if report is None:
        return {
            "subtotal": 0.0,
            "vat": 0.0,
            "discount": 0.0,
            "delivery_fee": 0.0,
            "total": 0.0,
            "average_check": 0.0,
            "orders_count": 0,
        }
    return {
        "subtotal": float(report.total_subtotal or 0),
        "vat": float(report.total_vat or 0),
        "discount": float(report.total_discount or 0),
        "delivery_fee": float(report.total_delivery_fee or 0),
        "total": float(report.total_amount or 0),
        "average_check": float(report.average_check or 0),
        "orders_count": int(report.orders_count or 0),
    }


def region_buckets(report: SalesReportResponse) -> List[dict]:
    return [{"region": b.region, "total": float(b.total_amount or 0)} for b in report.region_buckets]


def month_buckets(report: SalesReportResponse) -> List[dict]:
    rows = [
        {
            "month_key": b.month_key,
            "label": format_year_month_label(b.month_key),
            "total": float(b.total_amount or 0),
        }
        for b in report.month_buckets
    ]
    return sorted(rows, key=lambda r: r["month_key"])


def report_view(report: SalesReportResponse, group_by: str = "region") -> dict:
    return {
        "date_label": f"{report.from_date} → {report.to_date}",
        "kpis": kpis(report),
        "group_by": group_by,
        "buckets": month_buckets(report) if group_by == "month" else region_buckets(report),
    }


def export_csv(report: SalesReportResponse) -> str:
    totals = kpis(report)
    out = io.StringIO()
    writer = csv.writer(out, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(["FromDate", "ToDate", "OrdersCount", "Subtotal", "VAT", "Discount", "DeliveryFee", "Total", "AverageCheck"])
    writer.writerow([
        report.from_date,
        report.to_date,
        str(totals["orders_count"]),
        f"{totals['subtotal']:.2f}",
        f"{totals['vat']:.2f}",
        f"{totals['discount']:.2f}",
        f"{totals['delivery_fee']:.2f}",
        f"{totals['total']:.2f}",
        f"{totals['average_check']:.2f}",
    ])
    return out.getvalue()
