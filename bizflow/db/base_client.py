from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.future import select

from bizflow.constants import DATABASE_URL
from bizflow.db.models import WorkflowModel
from bizflow.services.workflow.errors import NotFoundError


class BaseDBClient:
    def __init__(self):
        self.engine = create_async_engine(DATABASE_URL)
        self.async_session = async_sessionmaker(bind=self.engine)

    async def _get_scoped_workflow(
        self, session, workflow_id: int, organization_id: int, for_update: bool = False
    ) -> WorkflowModel:
        """Load a workflow inside ``session``, raising NotFoundError for other tenants."""
        query = select(WorkflowModel).where(
            WorkflowModel.id == workflow_id,
            WorkflowModel.organization_id == organization_id,
        )
        if for_update:
            query = query.with_for_update()
        result = await session.execute(query)
        workflow = result.scalars().first()
        if not workflow:
            raise NotFoundError("Workflow", workflow_id)
        return workflow
