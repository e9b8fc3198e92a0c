"""
dealguard.services.contracts

Contract versioning and acceptance service.

Responsibilities:
- Create contract versions (with their milestones) before the deal is signed.
- Record the hash of the signed physical document.
- Track per-party acceptance and make a version effective once all parties accept.
"""

from __future__ import annotations

import hashlib
import uuid
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from dealguard.auth.access import ensure_deal_access, ensure_party_member, require_creator_or_staff
from dealguard.auth.models import Principal
from dealguard.db.models import Contract, DealStatus
from dealguard.db.repositories.audit import AuditRepo, payload_digest
from dealguard.db.repositories.contracts import ContractRepo
from dealguard.db.repositories.deals import DealRepo
from dealguard.db.repositories.milestones import MilestoneRepo
from dealguard.db.repositories.parties import PartyRepo
from dealguard.errors import ConflictError, NotFoundError, ValidationError
from dealguard.observability.context import operation_context
from dealguard.observability.logging import get_logger
from dealguard.schemas import ContractCreate
from dealguard.services.deals import DealService
from dealguard.settings import Settings

log = get_logger(__name__)

# Contract terms can only change while the deal is still being negotiated.
EDITABLE_STATUSES = frozenset({DealStatus.draft, DealStatus.proposed, DealStatus.accepted_by_all})


class ContractService:
    def __init__(self, *, session: AsyncSession, settings: Settings) -> None:
        self._session = session
        self._settings = settings

        self._contracts = ContractRepo(session)
        self._deals = DealRepo(session)
        self._milestones = MilestoneRepo(session)
        self._parties = PartyRepo(session)
        self._audit = AuditRepo(session)
        self._deal_service = DealService(session=session, settings=settings)

    async def _get(self, contract_id: uuid.UUID) -> Contract:
        contract = await self._contracts.get(contract_id)
        if contract is None:
            raise NotFoundError(f"contract {contract_id} not found")
        return contract

    async def create_contract_version(
        self, principal: Principal, deal_id: uuid.UUID, cmd: ContractCreate
    ) -> Contract:
        deal = await ensure_deal_access(self._session, principal, deal_id)
        require_creator_or_staff(principal, deal)

        with operation_context("contract.create_version", deal_id=deal_id, actor=principal.subject):
            if deal.status not in EDITABLE_STATUSES:
                raise ConflictError(f"contract cannot change once the deal is {deal.status}")

            version = await self._contracts.latest_version(deal_id) + 1
            contract = await self._contracts.create(
                deal_id=deal_id,
                version=version,
                terms=cmd.terms,
                created_by=principal.subject,
                milestones=[
                    m.model_dump(mode="python") | {"currency": m.currency or deal.currency}
                    for m in cmd.milestones
                ],
            )
            for m in contract.milestones:
                # Default approval requirement: admin only.
                await self._milestones.upsert_requirement(
                    milestone_id=m.id,
                    require_admin_approval=True,
                    require_buyer_approval=False,
                    require_seller_approval=False,
                )
            await self._audit.add(
                deal_id=deal_id,
                actor=principal.subject,
                event_type="CONTRACT_VERSION_CREATED",
                entity_type="Contract",
                entity_id=contract.id,
                new_state={"version": version, "milestones": len(cmd.milestones)},
                details={"terms_hash": payload_digest(cmd.terms)},
            )
            await self._session.commit()
            log.info("contract_version_created", contract_id=str(contract.id), version=version)
            return contract

    async def record_document(
        self, principal: Principal, contract_id: uuid.UUID, content: bytes
    ) -> str:
        contract = await self._get(contract_id)
        deal = await ensure_deal_access(self._session, principal, contract.deal_id)
        require_creator_or_staff(principal, deal)
        if not content:
            raise ValidationError("document content is empty")

        digest = hashlib.sha256(content).hexdigest()
        await self._contracts.set_document_hash(contract, digest)
        await self._audit.add(
            deal_id=deal.id,
            actor=principal.subject,
            event_type="CONTRACT_DOCUMENT_RECORDED",
            entity_type="Contract",
            entity_id=contract.id,
            details={"document_hash": digest, "size_bytes": len(content)},
        )
        await self._session.commit()
        return digest

    async def accept_contract(
        self, principal: Principal, contract_id: uuid.UUID, party_id: uuid.UUID
    ) -> dict[str, Any]:
        contract = await self._get(contract_id)
        party = await ensure_party_member(self._session, principal, party_id)
        if party.deal_id != contract.deal_id:
            raise ValidationError("party does not belong to this contract's deal")

        with operation_context(
            "contract.accept", deal_id=contract.deal_id, actor=principal.subject
        ):
            deal = await self._deals.get(contract.deal_id)
            if deal is None or deal.status not in EDITABLE_STATUSES:
                raise ConflictError("contract can no longer be accepted")
            if contract.version < await self._contracts.latest_version(contract.deal_id):
                raise ConflictError(f"contract version {contract.version} has been superseded")
            if await self._contracts.get_acceptance(contract_id=contract.id, party_id=party.id):
                raise ConflictError("party has already accepted this contract")

            await self._contracts.add_acceptance(
                contract_id=contract.id, party_id=party.id, accepted_by=principal.subject
            )
            await self._audit.add(
                deal_id=contract.deal_id,
                actor=principal.subject,
                event_type="CONTRACT_ACCEPTED",
                entity_type="Contract",
                entity_id=contract.id,
                details={"party_id": str(party.id), "version": contract.version},
            )

            status = await self.acceptance_status(contract.id)
            if status["is_fully_accepted"] and not contract.is_effective:
                await self._contracts.make_effective(contract)
                await self._audit.add(
                    deal_id=contract.deal_id,
                    actor=principal.subject,
                    event_type="CONTRACT_EFFECTIVE",
                    entity_type="Contract",
                    entity_id=contract.id,
                    new_state={"version": contract.version, "is_effective": True},
                    details={"terms_hash": payload_digest(contract.terms)},
                )
                log.info("contract_effective", contract_id=str(contract.id))
                await self._deal_service.check_and_advance(contract.deal_id, commit=False)

            await self._session.commit()
            return status

    async def acceptance_status(self, contract_id: uuid.UUID) -> dict[str, Any]:
        contract = await self._get(contract_id)
        parties = await self._parties.list_for_deal(contract.deal_id)
        accepted = {a.party_id for a in await self._contracts.list_acceptances(contract.id)}
        pending = [str(p.id) for p in parties if p.id not in accepted]
        return {
            "is_fully_accepted": bool(parties) and not pending,
            "required": len(parties),
            "accepted": len(parties) - len(pending),
            "pending_party_ids": pending,
        }

    async def current_contract(self, deal_id: uuid.UUID) -> Contract | None:
        contract = await self._contracts.effective_for_deal(deal_id)
        if contract is None:
            contract = await self._contracts.latest_for_deal(deal_id)
        return contract

    async def list_versions(self, principal: Principal, deal_id: uuid.UUID) -> list[Contract]:
        await ensure_deal_access(self._session, principal, deal_id)
        return await self._contracts.list_for_deal(deal_id)
