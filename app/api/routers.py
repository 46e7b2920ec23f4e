from fastapi import APIRouter


from app.api.endpoints import (
    collections,
    documents,
    repository,
)


api_router = APIRouter(prefix="/contentmanager/api/v1")


api_router.include_router(
    repository.router, prefix="/repository", tags=["Repository"]
)
api_router.include_router(
    collections.router, prefix="/collections", tags=["Collections"]
)
api_router.include_router(documents.router, prefix="/documents", tags=["Documents"])
