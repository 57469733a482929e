"""
Feature Flag Dependencies
"""

from functools import lru_cache
from typing import Any, Callable, Coroutine, Optional

from fastapi import Depends, HTTPException, Request, status

from flagkeeper.core.settings import settings
from flagkeeper.modules.feature_flags.service import FeatureFlagService


@lru_cache()
def get_flag_service() -> FeatureFlagService:
    """Process-wide service bound to the configured database."""
    return FeatureFlagService()


def flag_required(
    flag_key: str,
    environment: Optional[str] = None,
) -> Callable[..., Coroutine[Any, Any, None]]:
    """
    Dependency that rejects the request unless a flag is on for the current user.

    The user context is read from ``request.state.user`` (set by the auth
    layer). Without one, or when the flag evaluates to False, the request
    fails with 403. ``environment`` defaults to the application environment.
    """
    async def dependency(
        request: Request,
        service: FeatureFlagService = Depends(get_flag_service),
    ) -> None:
        user = getattr(request.state, "user", None)
        if user is None:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Feature '{flag_key}' is not enabled for your account",
            )

        results = await service.evaluate_flags(
            environment or settings.app.ENVIRONMENT,
            user,
            [flag_key],
        )
        if not results[flag_key]:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Feature '{flag_key}' is not enabled for your account",
            )

    return dependency
