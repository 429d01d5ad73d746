"""
API Dependencies
Shared dependencies for Supabase access, the service container and authentication
"""
import os
from typing import Optional

from dotenv import load_dotenv
from fastapi import Depends, Header, HTTPException, Request, status
from pydantic import BaseModel
from supabase import Client, create_client

from atlas.domain.models.agency import AgencyProfile
from atlas.services.container import ServiceContainer

load_dotenv()


class CurrentUser(BaseModel):
    """Current authenticated user"""
    id: str
    email: Optional[str] = None


def get_supabase() -> Client:
    """
    Get Supabase client with validation.

    Raises:
        RuntimeError: If Supabase URL or SERVICE_KEY is not configured
    """
    url = os.getenv("SUPABASE_URL")
    key = os.getenv("SUPABASE_SERVICE_KEY")

    if not url:
        raise RuntimeError("SUPABASE_URL is not configured. Set SUPABASE_URL environment variable.")
    if not key:
        raise RuntimeError("SUPABASE_SERVICE_KEY is not configured. Set SUPABASE_SERVICE_KEY environment variable.")

    return create_client(url, key)


def get_container(request: Request) -> ServiceContainer:
    """Service container built at startup (see atlas.main lifespan)."""
    container = getattr(request.app.state, "container", None)
    if container is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Services not initialized",
        )
    return container


async def get_current_user(
    authorization: Optional[str] = Header(None, alias="Authorization"),
    supabase: Client = Depends(get_supabase)
) -> CurrentUser:
    """
    Resolve the caller from a Supabase JWT.

    Raises:
        HTTPException: 401 if the token is missing or invalid
    """
    if not authorization:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization header missing",
            headers={"WWW-Authenticate": "Bearer"},
        )

    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authorization header format. Use: Bearer <token>",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        user_response = supabase.auth.get_user(parts[1])
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Token validation failed: {str(e)}",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not user_response or not user_response.user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return CurrentUser(id=str(user_response.user.id), email=user_response.user.email)


async def load_owned_agency(
    agency_id: str,
    current_user: CurrentUser,
    container: ServiceContainer
) -> AgencyProfile:
    """
    Load an agency the caller owns.

    Raises:
        HTTPException: 404 if missing or owned by someone else
    """
    agency = await container.store.get_agency(agency_id)
    if not agency or agency.user_id != current_user.id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Agency not found")
    return agency
