from typing import Optional

from sqlalchemy.future import select

from bizflow.db.base_client import BaseDBClient
from bizflow.db.models import OrganizationModel


class OrganizationClient(BaseDBClient):
    async def get_organization_by_id(
        self, organization_id: int
    ) -> Optional[OrganizationModel]:
        """Get an organization by its ID."""
        async with self.async_session() as session:
            result = await session.execute(
                select(OrganizationModel).where(OrganizationModel.id == organization_id)
            )
            return result.scalars().first()

    async def create_organization(
        self, provider_id: str, name: str | None = None
    ) -> OrganizationModel:
        async with self.async_session() as session:
            organization = OrganizationModel(provider_id=provider_id, name=name)
            session.add(organization)
            try:
                await session.commit()
            except Exception as e:
                await session.rollback()
                raise e
            await session.refresh(organization)
            return organization
