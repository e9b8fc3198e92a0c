"""
dealguard.db.repositories.contracts

Repository for `Contract` and `ContractAcceptance` entities.
"""

from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import desc, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from dealguard.db.models import Contract, ContractAcceptance, Milestone, utcnow


class ContractRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(
        self,
        *,
        deal_id: uuid.UUID,
        version: int,
        terms: dict[str, Any],
        created_by: str,
        milestones: list[dict[str, Any]],
    ) -> Contract:
        contract = Contract(
            deal_id=deal_id,
            version=version,
            terms=terms,
            created_by=created_by,
            is_effective=False,
            milestones=[Milestone(deal_id=deal_id, **m) for m in milestones],
        )
        self._session.add(contract)
        await self._session.flush()
        return contract

    async def get(self, contract_id: uuid.UUID) -> Contract | None:
        return await self._session.get(Contract, contract_id)

    async def latest_version(self, deal_id: uuid.UUID) -> int:
        stmt = select(func.max(Contract.version)).where(Contract.deal_id == deal_id)
        return int((await self._session.execute(stmt)).scalar_one_or_none() or 0)

    async def effective_for_deal(self, deal_id: uuid.UUID) -> Contract | None:
        stmt = (
            select(Contract)
            .where(Contract.deal_id == deal_id, Contract.is_effective.is_(True))
            .order_by(desc(Contract.version))
            .limit(1)
        )
        return (await self._session.execute(stmt)).scalar_one_or_none()

    async def latest_for_deal(self, deal_id: uuid.UUID) -> Contract | None:
        stmt = (
            select(Contract)
            .where(Contract.deal_id == deal_id)
            .order_by(desc(Contract.version))
            .limit(1)
        )
        return (await self._session.execute(stmt)).scalar_one_or_none()

    async def list_for_deal(self, deal_id: uuid.UUID) -> list[Contract]:
        stmt = select(Contract).where(Contract.deal_id == deal_id).order_by(Contract.version)
        return list((await self._session.execute(stmt)).scalars().all())

    async def make_effective(self, contract: Contract) -> None:
        # Only one effective version per deal: supersede older ones first.
        await self._session.execute(
            update(Contract)
            .where(Contract.deal_id == contract.deal_id, Contract.version < contract.version)
            .values(is_effective=False)
            .execution_options(synchronize_session="fetch")
        )
        contract.is_effective = True
        contract.effective_at = utcnow()
        await self._session.flush()

    async def set_document_hash(self, contract: Contract, document_hash: str) -> None:
        contract.document_hash = document_hash
        await self._session.flush()

    async def add_acceptance(
        self, *, contract_id: uuid.UUID, party_id: uuid.UUID, accepted_by: str
    ) -> ContractAcceptance:
        acceptance = ContractAcceptance(
            contract_id=contract_id, party_id=party_id, accepted_by=accepted_by
        )
        self._session.add(acceptance)
        await self._session.flush()
        return acceptance

    async def get_acceptance(
        self, *, contract_id: uuid.UUID, party_id: uuid.UUID
    ) -> ContractAcceptance | None:
        stmt = select(ContractAcceptance).where(
            ContractAcceptance.contract_id == contract_id,
            ContractAcceptance.party_id == party_id,
        )
        return (await self._session.execute(stmt)).scalar_one_or_none()

    async def list_acceptances(self, contract_id: uuid.UUID) -> list[ContractAcceptance]:
        stmt = (
            select(ContractAcceptance)
            .where(ContractAcceptance.contract_id == contract_id)
            .order_by(ContractAcceptance.created_at)
        )
        return list((await self._session.execute(stmt)).scalars().all())
