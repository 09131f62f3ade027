"""
Seed script: sample queries, collector chains and scheduled jobs for demos.

Usage:
    python -m scripts.seed_jobs

This creates:
- 5 active queries and 1 inactive query for brand "demo-brand"
- a "simulated" chain for chatgpt and claude, so demos need no API keys
  (chatgpt falls back from a flaky simulated provider to a healthy one)
- 1 daily collection_and_scoring job (Europe/Berlin)
- 1 collection job every 15 minutes
- 1 one-off collection run and 1 retry-failures run

Run this after `docker compose up`. Queries go straight into Postgres,
because the API only manages schedules; everything else goes through
the API like any other client.
"""

import httpx

from models.base import Base, SyncSessionLocal, sync_engine
from models.query import Query

BASE_URL = "http://localhost:8000"
BRAND = {"brand_id": "demo-brand", "customer_id": "demo-customer"}

QUERIES = [
    "best CRM for startups",
    "hubspot vs salesforce for small teams",
    "cheapest CRM with email automation",
    "which CRM integrates with slack",
    "top rated sales pipeline tools",
]


def seed_queries() -> int:
    Base.metadata.create_all(sync_engine)
    session = SyncSessionLocal()
    try:
        for text in QUERIES:
            session.add(Query(text=text, locale="en-US", country="US", **BRAND))
        session.add(Query(text="retired query", is_active=False, **BRAND))
        session.commit()
    finally:
        session.close()
    return len(QUERIES)


def seed():
    print(f"Added {seed_queries()} active queries for {BRAND['brand_id']}\n")

    client = httpx.Client(base_url=BASE_URL, timeout=10.0)

    chains = {
        "chatgpt": [
            {"name": "simulated", "priority": 1, "options": {"fail_probability": 0.5}},
            {"name": "simulated", "priority": 2, "options": {"delay": 0.2}},
        ],
        "claude": [
            {"name": "simulated", "priority": 1, "fallback_on_failure": False},
        ],
    }
    for engine, providers in chains.items():
        resp = client.put(f"/collectors/{engine}", json={"providers": providers, "updated_by": "seed"})
        resp.raise_for_status()
        print(f"  [collector] {engine} v{resp.json()['version']}")

    jobs = [
        {
            **BRAND,
            "job_type": "collection_and_scoring",
            "cron_expression": "0 6 * * *",
            "timezone": "Europe/Berlin",
            "metadata": {"engines": ["chatgpt", "claude"]},
        },
        {
            **BRAND,
            "job_type": "collection",
            "cron_expression": "*/15 * * * *",
            "metadata": {"engines": ["chatgpt"]},
        },
    ]
    for job in jobs:
        resp = client.post("/scheduled-jobs/", json=job)
        resp.raise_for_status()
        data = resp.json()
        print(f"  [job] {data['job_type']} '{data['cron_expression']}' next at {data['next_run_at']}")

    resp = client.post("/scheduled-jobs/run-once", json={**BRAND, "metadata": {"engines": ["chatgpt", "claude"]}})
    resp.raise_for_status()
    print(f"  [run] one-off {resp.json()['run_id']}")

    resp = client.post("/scheduled-jobs/retry-failures", json={**BRAND, "lookback_minutes": 120})
    resp.raise_for_status()
    print(f"  [run] retry-failures {resp.json()['run_id']}")

    print("\nDone! The worker picks these up on its next scheduler tick.")
    print("Check runs:    curl http://localhost:8000/runs/")
    print("Run stats:     curl http://localhost:8000/runs/stats")


if __name__ == "__main__":
    seed()
