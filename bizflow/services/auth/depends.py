from typing import Annotated

from fastapi import Header, HTTPException

from bizflow.db import db_client
from bizflow.db.models import OrganizationModel


async def get_organization(
    x_organization_id: Annotated[int | None, Header()] = None,
) -> OrganizationModel:
    """Resolve the calling organization.

    Authentication happens upstream: the gateway in front of this service
    verifies the caller and forwards the organization it acts for.
    """
    if x_organization_id is None:
        raise HTTPException(status_code=401, detail="Organization not found")

    organization = await db_client.get_organization_by_id(x_organization_id)
    if organization is None:
        raise HTTPException(status_code=401, detail="Organization not found")
    return organization
