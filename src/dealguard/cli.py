"""
dealguard.cli

Operator scripts (`python -m dealguard ...`).

Responsibilities:
- Create the schema in a dev/test database.
- Seed a demo deal for local exploration.
- Inspect deals: listing, lifecycle status and blockers.
- Quote service fees.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
import uuid
from decimal import Decimal, InvalidOperation
from typing import Any

from dealguard.auth.models import Principal
from dealguard.db.init_db import init_db
from dealguard.db.models import DealStatus, PartyRole, ServiceTier
from dealguard.db.repositories.deals import DealRepo
from dealguard.db.session import create_engine, create_sessionmaker, session_scope
from dealguard.domain import lifecycle
from dealguard.domain.fees import calculate_fee
from dealguard.errors import DealGuardError
from dealguard.observability.logging import configure_logging, get_logger
from dealguard.schemas import ContractCreate, DealCreate, MilestoneIn, PartyIn
from dealguard.services.contracts import ContractService
from dealguard.services.deals import DealService
from dealguard.settings import Settings, get_settings

log = get_logger(__name__)

OPERATOR = Principal(subject="cli-operator", roles=frozenset({"admin"}))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="python -m dealguard",
        description="DealGuard operator scripts",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m dealguard init-db
  python -m dealguard seed
  python -m dealguard list-deals --status PROPOSED
  python -m dealguard check-deal DEAL-2026-0001 --advance
  python -m dealguard fee --tier FINANCIAL_ESCROW --value 250000 --currency USD
        """,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create all tables (dev/test databases)")
    sub.add_parser("seed", help="Create a demo deal with two parties and a contract")

    p_list = sub.add_parser("list-deals", help="List deals, newest first")
    p_list.add_argument("--status", type=DealStatus, choices=list(DealStatus), default=None)
    p_list.add_argument("--page", type=int, default=1)
    p_list.add_argument("--limit", type=int, default=None)

    p_check = sub.add_parser("check-deal", help="Show a deal's status and what blocks it")
    p_check.add_argument("deal", help="Deal id (UUID) or deal number (DEAL-YYYY-NNNN)")
    p_check.add_argument(
        "--advance",
        action="store_true",
        help="Apply any automatic transitions whose guards are satisfied",
    )

    p_fee = sub.add_parser("fee", help="Quote the service fee for a tier")
    p_fee.add_argument("--tier", type=ServiceTier, choices=list(ServiceTier), required=True)
    p_fee.add_argument("--value", type=str, default=None, help="Estimated deal value")
    p_fee.add_argument("--currency", type=str, default="EGP")

    return parser


def _dump(payload: Any) -> None:
    print(json.dumps(payload, indent=2, default=str))


async def _init_db(settings: Settings) -> int:
    engine = create_engine(settings)
    try:
        await init_db(engine)
    finally:
        await engine.dispose()
    log.info("db_initialized", database_url=settings.database_url)
    return 0


def _seed_command() -> tuple[DealCreate, ContractCreate]:
    deal = DealCreate(
        title="Demo equipment purchase",
        description="Seeded demo deal",
        service_tier=ServiceTier.financial_escrow,
        currency="USD",
        estimated_value=Decimal("120000"),
        parties=[
            PartyIn(
                role=PartyRole.buyer,
                name="Nile Trading Co.",
                contact_email="procurement@niletrading.com.eg",
                is_organization=True,
            ),
            PartyIn(
                role=PartyRole.seller,
                name="Delta Machinery",
                contact_email="sales@deltamachinery.com.eg",
                is_organization=True,
            ),
        ],
    )
    contract = ContractCreate(
        terms={"governing_law": "EG", "delivery": "FOB Alexandria"},
        milestones=[
            MilestoneIn(
                order=1,
                title="Shipment dispatched",
                release_amount=Decimal("60000"),
                required_evidence_types=["bill of lading"],
            ),
            MilestoneIn(
                order=2,
                title="Goods received and inspected",
                release_amount=Decimal("60000"),
                required_evidence_types=["inspection report"],
            ),
        ],
    )
    return deal, contract


async def _seed(settings: Settings) -> int:
    engine = create_engine(settings)
    factory = create_sessionmaker(engine)
    try:
        await init_db(engine)
        deal_cmd, contract_cmd = _seed_command()
        async with session_scope(factory) as session:
            deals = DealService(session=session, settings=settings)
            contracts = ContractService(session=session, settings=settings)

            deal = await deals.create_deal(OPERATOR, deal_cmd)
            contract = await contracts.create_contract_version(OPERATOR, deal.id, contract_cmd)
            deal = await deals.propose_deal(OPERATOR, deal.id)

            _dump(
                {
                    "deal_id": deal.id,
                    "deal_number": deal.deal_number,
                    "status": deal.status,
                    "contract_id": contract.id,
                    "service_fee": deal.service_fee,
                    "invitations": [
                        {"role": p.role, "email": p.contact_email, "token": p.invitation_token}
                        for p in deal.parties
                    ],
                }
            )
    finally:
        await engine.dispose()
    return 0


async def _list_deals(
    settings: Settings, status: DealStatus | None, page: int, limit: int | None
) -> int:
    engine = create_engine(settings)
    factory = create_sessionmaker(engine)
    try:
        async with session_scope(factory) as session:
            result = await DealService(session=session, settings=settings).list_deals(
                OPERATOR, status=status, page=page, limit=limit
            )
            _dump(
                {
                    "items": [
                        {
                            "id": d.id,
                            "deal_number": d.deal_number,
                            "title": d.title,
                            "status": d.status,
                            "created_at": d.created_at,
                        }
                        for d in result["items"]
                    ],
                    "pagination": result["pagination"],
                }
            )
    finally:
        await engine.dispose()
    return 0


async def _check_deal(settings: Settings, ref: str, advance: bool) -> int:
    engine = create_engine(settings)
    factory = create_sessionmaker(engine)
    try:
        async with session_scope(factory) as session:
            repo = DealRepo(session)
            try:
                deal = await repo.get(uuid.UUID(ref))
            except ValueError:
                deal = await repo.get_by_number(ref)
            if deal is None:
                print(f"deal not found: {ref}", file=sys.stderr)
                return 1

            service = DealService(session=session, settings=settings)
            activation = await service.check_and_advance(deal.id) if advance else None
            report = await service.progress(OPERATOR, deal.id)
            report["allowed_targets"] = lifecycle.describe(lifecycle.allowed_targets(deal.status))
            if activation is not None:
                report["activation"] = activation
            _dump(report)
    finally:
        await engine.dispose()
    return 0


def _fee(tier: ServiceTier, value: str | None, currency: str) -> int:
    try:
        amount = Decimal(value) if value is not None else None
    except InvalidOperation:
        print(f"invalid --value: {value}", file=sys.stderr)
        return 2
    _dump(calculate_fee(tier, amount, currency).as_dict())
    return 0


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    # stdout carries the JSON results; logs go to stderr.
    configure_logging(
        service_name=settings.service_name, level=settings.log_level, stream=sys.stderr
    )

    try:
        if args.command == "init-db":
            return asyncio.run(_init_db(settings))
        if args.command == "seed":
            return asyncio.run(_seed(settings))
        if args.command == "list-deals":
            return asyncio.run(_list_deals(settings, args.status, args.page, args.limit))
        if args.command == "check-deal":
            return asyncio.run(_check_deal(settings, args.deal, args.advance))
        if args.command == "fee":
            return _fee(args.tier, args.value, args.currency)
    except DealGuardError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return 130
    return 2


# --- Module Notes -----------------------------------------------------------
# The CLI acts as an admin operator; it is meant for local and support use only.
