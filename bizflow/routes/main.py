from fastapi import APIRouter
from loguru import logger

from bizflow.routes.message_template import router as message_template_router
from bizflow.routes.workflow import router as workflow_router
from bizflow.routes.workflow_execution import router as workflow_execution_router

router = APIRouter(
    tags=["main"],
    responses={404: {"description": "Not found"}},
)

router.include_router(workflow_router)
router.include_router(message_template_router)
router.include_router(workflow_execution_router)


@router.get("/health")
async def health():
    logger.debug("Health endpoint called")
    return {"message": "OK"}
