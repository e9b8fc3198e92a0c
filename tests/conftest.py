"""
tests.conftest

Shared fixtures: a fresh SQLite database per test plus a `Flow` helper that
drives a deal through its lifecycle with the real services.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from dealguard.auth.models import Principal
from dealguard.db.init_db import init_db
from dealguard.db.models import (
    Contract,
    CustodyRecord,
    Deal,
    EvidenceStatus,
    PartyRole,
    ResponseType,
    ServiceTier,
)
from dealguard.db.session import create_engine, create_sessionmaker, session_scope
from dealguard.schemas import (
    ContractCreate,
    DealCreate,
    EvidenceCreate,
    MilestoneIn,
    MilestoneResponse,
    PartyIn,
)
from dealguard.services.contracts import ContractService
from dealguard.services.custody import CustodyService
from dealguard.services.deals import DealService
from dealguard.services.disputes import DisputeService
from dealguard.services.evidence import EvidenceService
from dealguard.services.invitations import InvitationService
from dealguard.services.milestones import MilestoneService
from dealguard.services.negotiation import NegotiationService
from dealguard.settings import Settings

ADMIN = Principal(subject="admin-1", roles=frozenset({"admin"}), email="ops@dealguard.org")
OFFICER = Principal(subject="officer-1", roles=frozenset({"case_officer"}))
CREATOR = Principal(subject="creator-1", email="creator@acme-holdings.com")
BUYER_USER = Principal(subject="buyer-user", email="buyer@nile-trading.com")
SELLER_USER = Principal(subject="seller-user", email="seller@delta-machinery.com")
OUTSIDER = Principal(subject="outsider")

PARTY_USERS = {PartyRole.buyer: BUYER_USER, PartyRole.seller: SELLER_USER}


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        env="test",
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'dealguard.db'}",
        inbound_email_domain="inbox.dealguard.org",
    )


@pytest_asyncio.fixture
async def engine(settings: Settings) -> AsyncIterator[AsyncEngine]:
    eng = create_engine(settings)
    await init_db(eng)
    yield eng
    await eng.dispose()


@pytest_asyncio.fixture
async def session(engine: AsyncEngine) -> AsyncIterator[AsyncSession]:
    async with session_scope(create_sessionmaker(engine)) as s:
        yield s


def deal_command(**overrides) -> DealCreate:
    data = {
        "title": "Industrial press purchase",
        "service_tier": ServiceTier.financial_escrow,
        "currency": "EGP",
        "estimated_value": Decimal("2000000"),
        "parties": [
            PartyIn(role=PartyRole.buyer, name="Nile Trading", contact_email=BUYER_USER.email),
            PartyIn(
                role=PartyRole.seller, name="Delta Machinery", contact_email=SELLER_USER.email
            ),
        ],
    }
    data.update(overrides)
    return DealCreate(**data)


def contract_command() -> ContractCreate:
    return ContractCreate(
        terms={"governing_law": "EG"},
        milestones=[
            MilestoneIn(
                order=1,
                title="Shipment dispatched",
                release_amount=Decimal("1000000"),
                required_evidence_types=["Bill of Lading"],
            ),
            MilestoneIn(order=2, title="Installation complete", release_amount=Decimal("1000000")),
        ],
    )


class Flow:
    """Drives a buyer/seller deal through the lifecycle using the public services."""

    def __init__(self, session: AsyncSession, settings: Settings) -> None:
        self.session = session
        self.deals = DealService(session=session, settings=settings)
        self.invitations = InvitationService(session=session, settings=settings)
        self.contracts = ContractService(session=session, settings=settings)
        self.negotiation = NegotiationService(session=session, settings=settings)
        self.milestones = MilestoneService(session=session, settings=settings)
        self.evidence = EvidenceService(session=session, settings=settings)
        self.custody = CustodyService(session=session, settings=settings)
        self.disputes = DisputeService(session=session, settings=settings)

    async def create(self, **overrides) -> Deal:
        return await self.deals.create_deal(CREATOR, deal_command(**overrides))

    async def create_with_contract(self) -> tuple[Deal, Contract]:
        deal = await self.create()
        contract = await self.contracts.create_contract_version(
            CREATOR, deal.id, contract_command()
        )
        return deal, contract

    async def accept_all(self, deal: Deal) -> None:
        for party in deal.parties:
            principal = PARTY_USERS[party.role]
            await self.invitations.accept_invitation(principal, party.invitation_token)

    async def agree_all(self, deal: Deal, contract: Contract) -> None:
        for milestone in contract.milestones:
            for party in deal.parties:
                await self.negotiation.submit_response(
                    PARTY_USERS[party.role],
                    milestone.id,
                    party.id,
                    MilestoneResponse(response_type=ResponseType.accepted),
                )

    async def sign(self, deal: Deal, contract: Contract) -> None:
        for party in deal.parties:
            await self.contracts.accept_contract(PARTY_USERS[party.role], contract.id, party.id)

    async def signed_deal(self) -> tuple[Deal, Contract]:
        deal, contract = await self.create_with_contract()
        await self.deals.propose_deal(CREATOR, deal.id)
        await self.accept_all(deal)
        await self.agree_all(deal, contract)
        await self.sign(deal, contract)
        return deal, contract

    async def fund(self, deal: Deal) -> CustodyRecord:
        record = await self.custody.submit_funding_proof(
            BUYER_USER, deal.id, Decimal("2000000"), "EGP", b"bank transfer receipt"
        )
        return await self.custody.verify_funding(ADMIN, record.id)

    async def funded_deal(self) -> tuple[Deal, Contract, CustodyRecord]:
        deal, contract = await self.signed_deal()
        record = await self.fund(deal)
        return deal, contract, record

    async def complete_milestones(self, deal: Deal, contract: Contract) -> None:
        first, second = contract.milestones
        item = await self.evidence.submit_evidence(
            SELLER_USER,
            EvidenceCreate(deal_id=deal.id, milestone_id=first.id, subject="bill of lading #77"),
        )
        await self.evidence.review_evidence(ADMIN, item.id, EvidenceStatus.accepted)
        await self.milestones.submit_approval(ADMIN, first.id)
        # No evidence required for the second milestone.
        await self.milestones.evaluate_readiness(second.id)
        await self.milestones.submit_approval(ADMIN, second.id)


@pytest.fixture
def flow(session: AsyncSession, settings: Settings) -> Flow:
    return Flow(session, settings)
