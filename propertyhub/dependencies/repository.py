# propertyhub/dependencies/repository.py
from fastapi import HTTPException, Request, status

from propertyhub.services.errors import NotFound, Result, ValidationFailure
from propertyhub.services.hierarchy_repository import HierarchyRepository


def get_repository(request: Request) -> HierarchyRepository:
    """Returns the repository the lifespan attached to the application."""
    repository = getattr(request.app.state, "repository", None)
    if repository is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Location store is not initialised.",
        )
    return repository


def unwrap_or_raise(result: Result):
    """Returns the result value or raises the matching HTTPException."""
    if result.ok:
        return result.value
    error = result.error
    if isinstance(error, NotFound):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(error, ValidationFailure):
        code = status.HTTP_422_UNPROCESSABLE_ENTITY
    else:
        code = status.HTTP_503_SERVICE_UNAVAILABLE
    raise HTTPException(status_code=code, detail=error.to_dict())
