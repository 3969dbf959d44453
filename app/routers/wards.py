# File: app/routers/wards.py
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
from app.db.session import get_db
from app.models.ward import Ward
from app.schemas.ward import WardOut, WardResolveOut
from app.services.geo import resolve_ward

router = APIRouter(prefix="/wards", tags=["wards"])

@router.get("")
def list_wards(db: Session = Depends(get_db)):
    """All wards as a GeoJSON FeatureCollection for map overlays."""
    rows = db.query(Ward).order_by(Ward.id.asc()).all()
    return {
        "type": "FeatureCollection",
        "features": [
            {
                "type": "Feature",
                "id": w.id,
                "geometry": w.boundary,
                "properties": WardOut.model_validate(w).model_dump(),
            }
            for w in rows
        ],
    }

@router.get("/resolve", response_model=WardResolveOut)
def resolve(lat: float = Query(..., ge=-90, le=90), lon: float = Query(..., ge=-180, le=180), db: Session = Depends(get_db)):
    ward = resolve_ward(db, lat, lon)
    return WardResolveOut(lat=lat, lon=lon, routed=ward is not None, ward=WardOut.model_validate(ward) if ward else None)

@router.get("/{ward_id}", response_model=WardOut)
def get_ward(ward_id: int, db: Session = Depends(get_db)):
    ward = db.get(Ward, ward_id)
    if not ward:
        raise HTTPException(404, "Ward not found")
    return ward
