from __future__ import annotations

import argparse
import json
import logging
import mimetypes
from pathlib import Path

import uvicorn
from pydantic import ValidationError

from schemas.bill_schema import Bill
from splitbill.api import create_app
from splitbill.config import Settings, load_dotenv
from splitbill.extraction_service import ExtractionError, build_client, extract_bill
from splitbill.logger import configure_logging
from splitbill.persistence import JsonlBillStore
from splitbill.session import SplitSession
from splitbill.settlement import Settlement, format_idr
from splitbill.state_machine import SUMMARY, InvalidTransitionError
from splitbill.telemetry import CountingReporter, JsonlTelemetrySink

logger = logging.getLogger(__name__)


def parse_assignment(entry: str) -> tuple[str, str, int]:
    """Split ``ITEM:NAME[:QTY]`` into its parts; QTY defaults to 1."""
    parts = entry.split(":")
    if len(parts) not in (2, 3) or not parts[0].strip() or not parts[1].strip():
        raise ValueError(f"Assignment must look like ITEM:NAME[:QTY], got {entry!r}")
    qty = 1
    if len(parts) == 3:
        try:
            qty = int(parts[2])
        except ValueError as exc:
            raise ValueError(f"Quantity must be an integer in {entry!r}") from exc
        if qty < 1:
            raise ValueError(f"Quantity must be at least 1 in {entry!r}")
    return parts[0].strip(), parts[1].strip(), qty


def _resolve_item(bill: Bill, ref: str) -> int:
    if ref.isdigit():
        index = int(ref)
        if index < len(bill.items):
            return index
    for index, item in enumerate(bill.items):
        if item.name == ref:
            return index
    raise ValueError(f"Unknown item: {ref}")


def render_settlement(bill: Bill, settlement: Settlement) -> str:
    lines: list[str] = []
    for share in settlement.payers:
        lines.append(f"{share.name}: {format_idr(share.subtotal)}")
        for entry in share.lines:
            lines.append(f"  {entry.quantity}x {entry.name}  {format_idr(entry.cost)}")
        lines.append(f"  Tax/service share  {format_idr(share.charges_share)}")
    if settlement.unassigned_value > 0:
        lines.append(f"Unassigned items: {format_idr(settlement.unassigned_value)}")
    lines.append(f"Settled total: {format_idr(settlement.settled_total)}")
    lines.append(f"Bill total: {format_idr(bill.total)}")
    return "\n".join(lines)


def run_extract(settings: Settings, image_path: Path) -> int:
    mime_type = mimetypes.guess_type(image_path.name)[0] or "application/octet-stream"
    try:
        client, model_name = build_client(settings)
        bill = extract_bill(
            image_path.read_bytes(),
            mime_type,
            client=client,
            model_name=model_name,
            allowed_mime_types=settings.allowed_mime_types,
        )
    except ExtractionError as exc:
        logger.error("Extraction failed code=%s: %s", exc.code, exc)
        return 1
    print(json.dumps(bill.model_dump(mode="json"), indent=2))
    return 0


def run_settle(
    settings: Settings,
    bill_path: Path,
    people: list[str],
    assignments: list[str],
    save: bool = False,
) -> int:
    try:
        bill = Bill.model_validate_json(bill_path.read_text(encoding="utf-8"))
    except ValidationError as exc:
        logger.error("Invalid bill file %s: %s", bill_path, exc)
        return 1

    reporter = CountingReporter(inner=JsonlTelemetrySink(settings.telemetry_path))
    session = SplitSession(reporter=reporter)
    if not session.apply_extraction(session.begin_upload(), bill):
        logger.error("Bill could not be loaded: %s", session.error)
        return 1

    for name in people:
        if session.add_person(name) is None:
            logger.warning("Skipped empty or duplicate name %r", name)

    for entry in assignments:
        try:
            item_ref, name, qty = parse_assignment(entry)
            item_index = _resolve_item(bill, item_ref)
        except ValueError as exc:
            logger.error("%s", exc)
            return 2
        if name not in session.roster.names:
            session.add_person(name)
        person_index = session.roster.names.index(name)
        for _ in range(qty):
            if not session.update_assignment(item_index, person_index, +1):
                logger.warning(
                    "Only %d of %s left, assignment to %s stopped",
                    session.remaining_quantity(item_index),
                    bill.items[item_index].name,
                    name,
                )
                break

    try:
        session.go_to(SUMMARY)
    except InvalidTransitionError as exc:
        logger.error("%s", exc)
        return 1

    print(render_settlement(bill, session.settlement()))
    if save:
        store = JsonlBillStore(settings.bill_store_path)
        if not session.save(store):
            logger.error("%s", session.notice)
            return 1
        print(session.notice)
    logger.info("Telemetry summary: %s", reporter.snapshot())
    return 0


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Split a restaurant bill from a receipt photo")
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default="0.0.0.0")
    serve.add_argument("--port", type=int, default=8000)

    extract = subparsers.add_parser("extract", help="Extract a bill from a receipt image")
    extract.add_argument("image", type=Path)

    settle = subparsers.add_parser("settle", help="Split an extracted bill between people")
    settle.add_argument("bill", type=Path, help="Bill JSON as returned by extract")
    settle.add_argument("--person", action="append", default=[], help="Participant name (repeatable)")
    settle.add_argument(
        "--assign",
        action="append",
        default=[],
        help="ITEM:NAME[:QTY], ITEM is a 0-based index or the exact item name (repeatable)",
    )
    settle.add_argument("--save", action="store_true", help="Persist the finished bill")
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    load_dotenv()
    settings = Settings.from_env()
    configure_logging(settings.log_level)

    if args.command == "serve":
        app = create_app(settings, reporter=JsonlTelemetrySink(settings.telemetry_path))
        uvicorn.run(app, host=args.host, port=args.port, reload=False)
        return 0
    if args.command == "extract":
        return run_extract(settings, args.image)
    if args.command == "settle":
        return run_settle(settings, args.bill, args.person, args.assign, save=args.save)
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
