import argparse
import csv
import os
import random
import sys
from datetime import date, timedelta

from faker import Faker

fake = Faker()

MONTH_NAMES = [
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
]

CASE_STATUSES = [
    "Still Treating",
    "Gathering Bills",
    "Demand Sent",
    "Negotiation",
    "In Litigation",
    "Settled - Not Yet Disbursed",
    "Pending",
    "No Longer Represent",
    "Closed - Paid",
    "Closed - Reduced",
]
CLOSED_STATUSES = {"Closed - Paid", "Closed - Reduced"}

INVOICE_HEADER = [
    "opname", "opid", "law_firm_account_name__c", "case_status__c", "Tranche_Name", "tranche",
    "billingstate", "paname", "funding_stage__c", "payoff_status__c", "arbookname", "ar_type__c",
    "date_of_accident__c", "origination_date__c", "Invoice_Date",
    "Invoice_Date2 - Year", "Invoice_Date2 - Month", "Invoice_Date2 - Day",
    "Open Invoice", "Settled", "Write Off",
]
COLLECTIONS_HEADER = [
    "opname", "opid", "law_firm_account_name__c", "case_status__c", "Tranche_Name", "tranche",
    "billingstate", "paname",
    "date_deposited_1__c - Year", "date_deposited_1__c - Month", "date_deposited_1__c - Day",
    "Total Invoice Amount", "Total Amount Collected",
]


# ============================================================
#  HELPERS
# ============================================================

def _usd(amount):
    return f"${amount:,.2f}" if amount else ""


def _us_date(d):
    return d.strftime("%m/%d/%Y") if d else ""


def _split(d):
    return [str(d.year), MONTH_NAMES[d.month - 1], str(d.day)]


# ============================================================
#  CASES
# ============================================================

def build_demo_cases(n, rng, provider_name="Therapy Partners Group - Parent", today=None):
    today = today or date.today()
    law_firms = [f"{fake.last_name()} & {fake.last_name()} Injury Law" for _ in range(8)]
    tranches = [(f"Tranche {i}", f"TR-{i:03d}") for i in range(1, 5)]

    cases = []
    for i in range(n):
        accident = today - timedelta(days=rng.randint(120, 1600))
        origination = accident + timedelta(days=rng.randint(5, 60))
        status = rng.choice(CASE_STATUSES)
        tranche_name, tranche_id = rng.choice(tranches)

        invoices = []
        for k in range(rng.randint(1, 4)):
            billed_on = origination + timedelta(days=14 * k + rng.randint(0, 10))
            amount = round(rng.uniform(250, 6500), 2)
            if status == "Closed - Paid":
                invoices.append((billed_on, 0.0, amount, 0.0))
            elif status == "Closed - Reduced":
                paid = round(amount * rng.uniform(0.4, 0.8), 2)
                invoices.append((billed_on, 0.0, paid, round(amount - paid, 2)))
            else:
                invoices.append((billed_on, amount, 0.0, 0.0))

        cases.append({
            "opname": f"{fake.last_name()}, {fake.first_name()} ({i + 1:04d})",
            "opid": f"006{fake.bothify('??##?#####?##?#').upper()}",
            "law_firm": rng.choice(law_firms),
            "status": status,
            "tranche_name": tranche_name,
            "tranche_id": tranche_id,
            "state": fake.state_abbr(),
            "provider": provider_name,
            "accident": accident,
            "origination": origination,
            "invoices": invoices,
        })
    return cases


def invoice_rows(cases):
    rows = []
    for c in cases:
        for billed_on, open_amt, settled, write_off in c["invoices"]:
            rows.append([
                c["opname"], c["opid"], c["law_firm"], c["status"], c["tranche_name"], c["tranche_id"],
                c["state"], c["provider"], "Funded", "Open" if open_amt else "Paid", "TPG AR", "Medical Lien",
                _us_date(c["accident"]), _us_date(c["origination"]), _us_date(billed_on),
                *_split(billed_on),
                _usd(open_amt), _usd(settled), _usd(write_off),
            ])
    return rows


def collection_rows(cases, rng):
    rows = []
    for c in cases:
        if c["status"] not in CLOSED_STATUSES:
            continue
        billed = round(sum(o + s + w for _, o, s, w in c["invoices"]), 2)
        collected = round(sum(s for _, _, s, _ in c["invoices"]), 2)
        last_billed = max(b for b, _, _, _ in c["invoices"])
        deposited = last_billed + timedelta(days=rng.randint(30, 400))
        rows.append([
            c["opname"], c["opid"], c["law_firm"], c["status"], c["tranche_name"], c["tranche_id"],
            c["state"], c["provider"], *_split(deposited), _usd(billed), _usd(collected),
        ])
    return rows


def write_export(path, title, header, rows):
    """Write a CSV the way the BI tool exports it: report metadata rows first."""
    with open(path, "w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        writer.writerow([title])
        writer.writerow([f"Generated: {date.today().isoformat()}", "Filters: provider = all"])
        writer.writerow([])
        writer.writerow(header)
        writer.writerows(rows)
    return path


def generate_demo_exports(output_dir, n_cases=40, seed=None):
    rng = random.Random(seed)
    if seed is not None:
        Faker.seed(seed)

    os.makedirs(output_dir, exist_ok=True)
    cases = build_demo_cases(n_cases, rng)
    invoice_path = write_export(
        os.path.join(output_dir, "TPG_Invoice.csv"), "TPG Invoice Export", INVOICE_HEADER, invoice_rows(cases)
    )
    collections_path = write_export(
        os.path.join(output_dir, "TPG_Collections.csv"),
        "TPG Collections Export",
        COLLECTIONS_HEADER,
        collection_rows(cases, rng),
    )
    return invoice_path, collections_path


# ============================================================
#  MAIN
# ============================================================

def main(argv=None):
    parser = argparse.ArgumentParser(description="Generate demo Invoice/Collections exports.")
    parser.add_argument("output_dir", nargs="?", default="data")
    parser.add_argument("--cases", type=int, default=40)
    parser.add_argument("--seed", type=int, default=None)
    parser.add_argument("--import", dest="run_import", action="store_true",
                        help="load the generated files into the database afterwards")
    args = parser.parse_args(argv)

    invoice_path, collections_path = generate_demo_exports(args.output_dir, args.cases, args.seed)
    print(f"🌱 Demo exports written ({args.cases} cases).")
    print(f"Invoice:     {invoice_path}")
    print(f"Collections: {collections_path}")

    if args.run_import:
        from app.scripts.import_combined_data import main as import_main
        return import_main([invoice_path, collections_path])
    return 0


if __name__ == "__main__":
    sys.exit(main())
