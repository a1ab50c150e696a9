"""Grid code and harmonic limit profile endpoints.

Provides:
- GET /standards/grid-codes: List available grid code profiles
- GET /standards/grid-codes/{key}: Get detailed grid code profile
- GET /standards/harmonic-limits: List harmonic limit profiles
- GET /standards/harmonic-limits/{key}: Get detailed harmonic limit profile
"""

from fastapi import APIRouter, HTTPException, status

from netapp.schemas.standards import (
    GridCodeDetailResponse,
    GridCodeListResponse,
    HarmonicLimitDetailResponse,
    HarmonicLimitListResponse,
)
from netengine.standards import grid_codes, ieee519

router = APIRouter()


@router.get("/grid-codes", response_model=GridCodeListResponse)
async def list_grid_codes():
    """List all available grid code profiles."""
    return GridCodeListResponse(profiles=grid_codes.list_profiles())


@router.get("/grid-codes/{key}", response_model=GridCodeDetailResponse)
async def get_grid_code_detail(key: str):
    try:
        profile = grid_codes.get_profile(key)
    except KeyError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e.args[0]))
    return GridCodeDetailResponse(**profile.to_dict())


@router.get("/harmonic-limits", response_model=HarmonicLimitListResponse)
async def list_harmonic_limits():
    return HarmonicLimitListResponse(profiles=ieee519.list_profiles())


@router.get("/harmonic-limits/{key}", response_model=HarmonicLimitDetailResponse)
async def get_harmonic_limit_detail(key: str):
    """IEEE-519 voltage (Table 1) and current (Table 2) limits of one profile."""
    try:
        profile = ieee519.get_profile(key)
    except KeyError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e.args[0]))
    return HarmonicLimitDetailResponse(**profile.to_dict())
