"""Seed demo documents, catalog models and a pending batch, optionally running it.

Usage (from repository root):
    python backend/scripts/seed_demo.py

Usage (from backend directory):
    python scripts/seed_demo.py --run
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from docbench.db.session import SessionLocal
from docbench.schemas.batch import BatchJobCreate
from docbench.schemas.document import DocumentCreate
from docbench.schemas.llm_model import LLMModelUpsert
from docbench.services.background_jobs import run_batch_job
from docbench.services.batches import claim_batch_job, create_batch_job
from docbench.services.documents import create_document
from docbench.services.llm_models import upsert_llm_model

logger = logging.getLogger("seed_demo")

DEMO_OWNER = "demo"

DEMO_INVOICES = [
    (
        "invoice-1001.txt",
        "INVOICE #1001\nDate: 2026-03-02\nBill to: Northwind Traders\n"
        "2 x Widget A @ 19.50\n1 x Service fee @ 40.00\nTotal due: 79.00 EUR\nContact: billing@northwind.example",
    ),
    (
        "invoice-1002.txt",
        "Invoice number 1002 issued March 9, 2026 to Contoso Ltd.\n"
        "Line items: consulting (6h at 120.00), travel 85.40.\nAmount payable 805.40 USD.",
    ),
    (
        "invoice-1003.txt",
        "Rechnung 1003 vom 15.03.2026 an Fabrikam GmbH.\nPosition: Wartungsvertrag, 1 Stueck, 250,00 EUR.\n"
        "Bitte ueberweisen Sie bis 30.03.2026.",
    ),
]

DEMO_MODELS = [
    LLMModelUpsert(
        provider="openai",
        name="gpt-4o-mini",
        display_name="GPT-4o mini",
        supports_json_mode=True,
        price_in=0.15 / 1_000_000,
        price_out=0.6 / 1_000_000,
    ),
    LLMModelUpsert(
        provider="anthropic",
        name="claude-3.5-haiku",
        display_name="Claude 3.5 Haiku",
        price_in=0.8 / 1_000_000,
        price_out=4.0 / 1_000_000,
    ),
]

INVOICE_SCHEMA = {
    "type": "object",
    "required": ["invoice_number", "issue_date", "customer", "total", "currency"],
    "properties": {
        "invoice_number": {"type": "string"},
        "issue_date": {"type": "string", "format": "date"},
        "customer": {"type": "string"},
        "total": {"type": "number"},
        "currency": {"type": "string", "pattern": "^[A-Z]{3}$"},
        "contact_email": {"type": "string", "format": "email"},
        "line_items": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["description", "amount"],
                "properties": {
                    "description": {"type": "string"},
                    "quantity": {"type": "number"},
                    "amount": {"type": "number"},
                },
            },
        },
    },
}


def parse_args() -> argparse.Namespace:
    """Parse script CLI arguments."""

    parser = argparse.ArgumentParser(description="Seed demo invoices and a batch that extracts them.")
    parser.add_argument(
        "--run",
        action="store_true",
        help="Run the batch inline after seeding (needs OPENROUTER_API_KEY).",
    )
    return parser.parse_args()


def main() -> None:
    """Seed demo data and print a short summary."""

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s %(message)s")
    args = parse_args()

    with SessionLocal() as db:
        documents = [
            create_document(db, DocumentCreate(filename=filename, text=text, owner=DEMO_OWNER))
            for filename, text in DEMO_INVOICES
        ]
        models = [upsert_llm_model(db, payload) for payload in DEMO_MODELS]
        batch = create_batch_job(
            db,
            BatchJobCreate(
                name="Invoice extraction demo",
                owner=DEMO_OWNER,
                system_prompt="You extract structured invoice data. Reply with a single JSON object only.",
                user_prompt="Extract the invoice number, issue date (YYYY-MM-DD), customer, total, "
                "ISO currency code, contact email and line items.",
                output_format="json",
                validation_schema=INVOICE_SCHEMA,
                models=[model.identifier for model in models],
                document_ids=[document.id for document in documents],
            ),
        )
        batch_job_id = batch.id
        lease_token = claim_batch_job(db, batch_job_id).lease_token if args.run else None

    logger.info("seed.complete batch_job_id=%s documents=%d models=%d", batch_job_id, len(documents), len(models))
    if args.run:
        run_batch_job(batch_job_id, lease_token=lease_token)

    print("Seed complete")
    print(f"batch_job_id={batch_job_id}")
    print()
    print("Inspect:")
    print(f"  POST /batches/{batch_job_id}/start")
    print(f"  GET /batches/{batch_job_id}/status")
    print(f"  GET /batches/{batch_job_id}/analytics")
    print(f"  GET /batches/{batch_job_id}/outputs")


if __name__ == "__main__":
    main()
