# KonsernKontroll - Group financial reporting dashboard
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Demo portfolio.

Seeds an in-memory store with a small holding group so the dashboard can be
explored without any database or network access.
"""

from typing import Any

from .storage import MemoryTableStore

DEMO_GROUP_ID = 1
DEMO_GROUP_NAME = "Demo Konsern AS"
DEMO_USER_AUTH_ID = "demo"

# (name, result_ytd, budget_total, liquidity, liquidity_date,
#  last_report_date, last_report_by, comment, trend_history)
_DEMO_COMPANIES: list[tuple[Any, ...]] = [
    ("VPS", 1240000, 1560000, 540000, "2023-11-15", "2023-10-15", "Anna Hansen",
     "Sterk vekst i Q3. Kostnadene holdes godt under kontroll.", 12.5),
    ("BCC", 820000, 1560000, 310000, "2023-11-14", "2023-10-14", "Bjørn Kjos",
     "Noe lavere inntekter enn forventet, men likviditeten er solid.", -4.2),
    ("AK", 450000, 1560000, 120000, "2023-11-12", "2023-10-12", "Cecilie Berg",
     "Betydelig avvik grunnet engangskostnader. Tiltak er iverksatt.", -15.8),
    ("BPS", 2050000, 1560000, 780000, "2023-11-16", "2023-10-16", "David Eriksen",
     "Meget solid resultat. Prosjekter leveres på tid og budsjett.", 8.4),
    ("HH", 310000, 1560000, 95000, "2023-11-10", "2023-10-10", "Erik Solbakken",
     "Mindre avvik. Likviditetssituasjonen overvåkes nøye.", -2.1),
    ("BUK", 760000, 1560000, 230000, "2023-11-15", "2023-10-15", "Frida Karlsen",
     "Positive tall over hele linjen. Godt arbeid i avdelingen.", 5.5),
    ("HW", 190000, 1560000, 70000, "2023-11-09", "2023-10-09", "Gunnar Lunde",
     "Utfordrende kvartal. Revisjon av budsjett for Q4 anbefales.", -8.9),
    ("MIL", 1480000, 1560000, 610000, "2023-11-16", "2023-10-16", "Hanne Sørheim",
     "Stabilt drift. Resultatet er nesten nøyaktig på budsjett.", 1.2),
    ("PHR", 520000, 600000, 180000, "2023-11-17", "2023-10-17", "Ingrid Moe",
     "Nytt selskap i porteføljen. Oppstarten går etter planen.", 25.0),
]


def demo_tables() -> dict[str, list[dict[str, Any]]]:
    """Raw storage rows of the demo portfolio, keyed by table."""
    companies = []
    for index, row in enumerate(_DEMO_COMPANIES, start=1):
        name, result, budget, liquidity, liq_date, report_date, report_by, comment, trend = row
        companies.append(
            {
                "id": index,
                "group_id": DEMO_GROUP_ID,
                "name": name,
                "manager": "Kai",
                "sort_order": index - 1,
                "result_ytd": result,
                "budget_total": budget,
                "budget_mode": "annual",
                "liquidity": liquidity,
                "liquidity_date": liq_date,
                "trend_history": trend,
                "last_report_date": report_date,
                "last_report_by": report_by,
                "current_comment": comment,
            }
        )

    return {
        "groups": [{"id": DEMO_GROUP_ID, "name": DEMO_GROUP_NAME}],
        "companies": companies,
        "users": [
            {
                "id": 1,
                "auth_id": DEMO_USER_AUTH_ID,
                "email": "demo@konsern.no",
                "full_name": "Demo Controller",
                "role": "controller",
                "group_id": DEMO_GROUP_ID,
            }
        ],
        "reports": [
            {
                "id": 1,
                "company_id": 1,
                "author_name": "Anna Hansen",
                "report_date": "2023-10-15",
                "comment": "Sterk vekst i Q3.",
                "status": "approved",
                "result_ytd": 1240000,
                "liquidity": 540000,
                "source": "Manuell",
                "approved_by_user_id": 1,
                "approved_at": "2023-10-16T08:00:00+00:00",
            },
            {
                "id": 2,
                "company_id": 1,
                "author_name": "System",
                "report_date": "2023-09-15",
                "comment": "Stabil drift.",
                "status": "approved",
                "result_ytd": 1100000,
                "liquidity": 500000,
                "source": "Tripletex",
                "approved_by_user_id": 1,
                "approved_at": "2023-09-16T08:00:00+00:00",
            },
        ],
    }


def build_demo_store() -> MemoryTableStore:
    """A fresh in-memory store seeded with the demo portfolio."""
    return MemoryTableStore(demo_tables())
