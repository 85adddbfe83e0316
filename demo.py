"""
Demo Script - Seed a scratch ledger and walk through the write-off reports and actions
"""
import asyncio
import json
import logging
import os
import tempfile

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S"
)
logger = logging.getLogger("DEMO")


def print_section(title: str):
    print("\n" + "-" * 70)
    print(title)
    print("-" * 70)


async def run_demo():
    """Run the demo against a throwaway SQLite file"""
    from dotenv import load_dotenv
    load_dotenv()

    from writeoff_portal.actions import create_request_ledger, dispatch
    from writeoff_portal.config import get_settings
    from writeoff_portal.database import Database
    from writeoff_portal.database.seed import seed_demo_data
    from writeoff_portal.ledger import SqlQueryRunner
    from writeoff_portal.models.schemas import PortalActionRequest
    from writeoff_portal.reports import build_load_data, build_master_list, run_portal_query
    from writeoff_portal.reports.queries import search_customer_summary, search_service_transactions

    settings = get_settings()
    workdir = tempfile.mkdtemp(prefix="writeoff-demo-")
    db = Database(f"sqlite:///{os.path.join(workdir, 'demo.db')}")
    db.create_tables()
    with db.get_session() as session:
        seeded = seed_demo_data(session, settings.cbsi_entity_id, settings.service_department_id)
    runner = SqlQueryRunner(db)

    print("\n" + "=" * 70)
    print("🧾 SERVICE WRITE-OFF PORTAL - DEMO")
    print("=" * 70)
    print(f"Scratch database: {db.db_url}")

    # Demo 1: master list as of the configured date
    print_section(f"📋 DEMO 1: Master list as of {settings.default_balance_as_of}")
    result = search_service_transactions(runner, settings.default_balance_as_of, settings)
    customers = search_customer_summary(runner, settings.default_balance_as_of, settings)
    report = build_master_list(settings.default_balance_as_of, result["rows"], result["aggregate"], customers)
    print(json.dumps(report.totals.model_dump(), indent=2))
    for row in report.rows:
        print(f"  {row['tranid']:<10} {row['customer_name'] or '':<25} {float(row['amount_remaining']):>10.2f}")

    # Demo 2: portal data
    print_section("📊 DEMO 2: Unbilled service sales orders")
    load_data = build_load_data(run_portal_query(runner, settings))
    summary = load_data.model_dump(exclude={"table_body_html", "success", "message"})
    print(json.dumps(summary, indent=2))

    # Demo 3: single actions
    so_ids = [str(so_id) for so_id in seeded["sales_orders"]]
    requests = [
        PortalActionRequest(action="add-note", so_id=so_ids[2], note="Confirm with tech", follow_up_date="2024-07-15"),
        PortalActionRequest(action="queue", so_id=so_ids[0]),
        PortalActionRequest(action="cbsi-bill-je", so_id=so_ids[0]),
    ]
    print_section("⚙️  DEMO 3: Single-order actions")
    for request in requests:
        ledger, meter = create_request_ledger(settings, db)
        response = await dispatch(request, ledger, meter, settings)
        status = "✅" if response.get("success") else "❌"
        print(f"  {status} {request.action} SO {request.so_id}: {response.get('message')} (units used: {meter.used})")

    # Demo 4: bulk auto-bill of what is left
    print_section("📦 DEMO 4: Bulk auto-bill")
    ledger, meter = create_request_ledger(settings, db)
    bulk_request = PortalActionRequest(selected_so_ids=",".join(so_ids[1:]), bulk_action="auto-bill")
    print(json.dumps(await dispatch(bulk_request, ledger, meter, settings), indent=2))

    print("\n" + "=" * 70)
    print("✅ DEMO COMPLETE")
    print("=" * 70)


if __name__ == "__main__":
    asyncio.run(run_demo())
