#!/usr/bin/env python3
"""
Demo: A Tenant's CRM Dashboard

Boots an embedded PostgreSQL, provisions a tenant, defines three modules
(clients, invoices, payments) and reads the invoices table the way a
dashboard does:

  - aggregation column:  total paid across the payments module
  - lookup column:       client name resolved from the clients module
  - expression columns:  VAT, gross and days until due
  - conditional formatting, a filter with its description, a pivot table
    and its CSV export

Usage:
    python demo_dashboard.py
    CRM_LOG_LEVEL=DEBUG python demo_dashboard.py
"""

import logging
import os
import tempfile
from datetime import datetime, timedelta

from engine import ModuleEvaluator, export_pivot_to_csv, get_filter_description
from store.registry import formula_warnings
from store.server import RecordStoreServer

logging.basicConfig(
    level=os.getenv("CRM_LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
)
logger = logging.getLogger("demo_dashboard")


# ---------------------------------------------------------------------------
# 1. Module schemas
# ---------------------------------------------------------------------------

CLIENT_COLUMNS = [
    {"name": "id_number", "type": "text", "label": "ת.ז.", "required": True},
    {"name": "name", "type": "text", "label": "שם"},
    {"name": "city", "type": "text", "label": "עיר"},
]

PAYMENT_COLUMNS = [
    {"name": "invoice_no", "type": "text", "label": "חשבונית"},
    {"name": "amount", "type": "currency", "label": "סכום"},
    {"name": "status", "type": "text", "label": "סטטוס", "default": "pending"},
]

INVOICE_COLUMNS = [
    {"name": "invoice_no", "type": "text", "label": "מספר"},
    {"name": "client_id", "type": "text", "label": "לקוח"},
    {"name": "amount", "type": "currency", "label": "סכום", "required": True},
    {"name": "due", "type": "date", "label": "לתשלום עד"},
    {
        "name": "total_paid",
        "type": "formula",
        "label": "סה\"כ שולם",
        "formula": {
            "target_module_name": "payments",
            "target_column_key": "amount",
            "operation": "SUM",
            "filter": {"status": "paid"},
        },
    },
    {
        "name": "client_name",
        "type": "lookup",
        "label": "שם לקוח",
        "relationship": {
            "target_module_name": "clients",
            "target_column_key": "id_number",
            "source_column_key": "client_id",
            "display_column_key": "name",
        },
    },
    {"name": "vat", "type": "calculated", "label": "מע\"מ",
     "formula": {"expression": "ROUND(amount * 0.17, 2)"}},
    {"name": "gross", "type": "calculated", "label": "ברוטו",
     "formula": {"expression": "amount + vat"},
     "conditionalFormatting": [
         {"condition": "gt", "value": 5000, "backgroundColor": "#fee2e2", "fontWeight": "bold"},
         {"condition": "gt", "value": 1000, "backgroundColor": "#fef9c3"},
     ]},
    {"name": "days_left", "type": "calculated", "label": "ימים",
     "formula": {"expression": "IF(ISBLANK(due), 0, DATEDIFF(due, TODAY(), 'days'))"}},
    {"name": "city", "type": "calculated", "label": "עיר",
     "formula": {"expression": "LOOKUP(client_id, 'clients', 'id_number', 'city')"}},
]


def _seed(client):
    client.upsert_columns("clients", CLIENT_COLUMNS)
    client.upsert_columns("payments", PAYMENT_COLUMNS)
    client.upsert_columns("invoices", INVOICE_COLUMNS)
    for warning in formula_warnings(INVOICE_COLUMNS):
        logger.warning("Schema warning: %s", warning)

    for id_number, name, city in [("111", "Dana Levi", "Haifa"),
                                  ("222", "Avi Cohen", "Tel Aviv"),
                                  ("333", "Noa Mizrahi", "Haifa")]:
        client.insert("clients", {"id_number": id_number, "name": name, "city": city})

    today = datetime.now()
    invoices = [
        ("INV-1", "111", 1200, 14),
        ("INV-2", "222", 7400, -3),
        ("INV-3", "111", 380, 30),
        ("INV-4", "333", 2600, 7),
    ]
    for i, (invoice_no, client_id, amount, days) in enumerate(invoices):
        client.insert(
            "invoices",
            {"invoice_no": invoice_no, "client_id": client_id, "amount": amount,
             "due": (today + timedelta(days=days)).date().isoformat()},
            entry_date=today - timedelta(hours=len(invoices) - i),
        )

    for invoice_no, amount, status in [("INV-1", 1200, "paid"), ("INV-2", 3000, "paid"),
                                       ("INV-4", 2600, None)]:
        data = {"invoice_no": invoice_no, "amount": amount}
        if status:
            data["status"] = status
        client.insert("payments", data)


# ---------------------------------------------------------------------------
# 2. Run the demo
# ---------------------------------------------------------------------------

def main():
    print("=" * 70)
    print("  CRM Dashboard Demo")
    print("=" * 70)

    tmp_dir = tempfile.mkdtemp(prefix="demo_crm_")
    server = RecordStoreServer(data_dir=tmp_dir, admin_password="admin_pw")
    server.start()
    server.provision_tenant("acme", "acme_pw")

    client = server.connect("acme", "acme_pw")

    try:
        _seed(client)
        evaluator = ModuleEvaluator(client)
        schema = client.get_schema("invoices")

        # ── Table view ───────────────────────────────────────────────
        print("\n── Invoices (newest first) ──────────────────────────────────")
        rows = evaluator.records("invoices")
        for row in rows:
            d = row.data
            styles = evaluator.styles(row, schema)
            marker = "  ← " + ", ".join(f"{k}: {v}" for k, v in styles.items()) if styles else ""
            print(f"  {d['invoice_no']}  {d['client_name'] or '?':<12} {d['city'] or '':<9}"
                  f" amount={d['amount']:>6} vat={d['vat']:>8} gross={d['gross']:>9}"
                  f" days_left={d['days_left']:>3}{marker}")
        if rows:
            print(f"  total paid (all invoices): {rows[0].data['total_paid']}")

        # ── Lookup choices ──────────────────────────────────────────
        print("\n── Lookup options for client_name ───────────────────────────")
        for option in evaluator.lookup_options("invoices")["client_name"]:
            print(f"  {option['value']}: {option['label']}")

        # ── Filter ──────────────────────────────────────────────────
        group = {"logic": "AND", "conditions": [
            {"field": "gross", "operator": "gt", "value": 1000, "dataType": "number"},
            {"field": "city", "operator": "equals", "value": "haifa", "dataType": "text"},
        ]}
        print("\n── Filter ───────────────────────────────────────────────────")
        print(f"  he: {get_filter_description(group, 'he')}")
        print(f"  en: {get_filter_description(group, 'en')}")
        for row in evaluator.filtered("invoices", group):
            print(f"  {row.data['invoice_no']} gross={row.data['gross']}")

        # ── Pivot ───────────────────────────────────────────────────
        print("\n── Pivot: gross by city ─────────────────────────────────────")
        result = evaluator.pivot("invoices", {
            "rows": ["city"],
            "values": [
                {"field": "gross", "aggregation": "SUM"},
                {"field": "invoice_no", "aggregation": "COUNT", "label": "invoices"},
            ],
        })
        print(export_pivot_to_csv(result))
    finally:
        client.close()
        server.stop()


if __name__ == "__main__":
    main()
