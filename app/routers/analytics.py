# File: app/routers/analytics.py
from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from app.db.session import get_db
from app.models.issue import IssueCategory
from app.services.reporting import (
    RESOLUTION_WEIGHT,
    RESPONSE_WEIGHT,
    heatmap_points,
    repeat_offenders,
    resolved_feed,
    ward_rankings,
)
from app.services.sla import utcnow

router = APIRouter(prefix="/analytics", tags=["analytics"])

@router.get("/ward-rankings")
def rankings(db: Session = Depends(get_db)):
    return {
        "generated_at": utcnow(),
        "formula": f"score = resolution_rate * {RESOLUTION_WEIGHT} + response_time_score * {RESPONSE_WEIGHT}",
        "rankings": ward_rankings(db),
    }

@router.get("/heatmap")
def heatmap(
    category: Optional[IssueCategory] = Query(default=None),
    days: int = Query(default=90, ge=1, le=3650),
    db: Session = Depends(get_db),
):
    points = heatmap_points(db, days=days, category=category)
    return {"points": points, "count": len(points), "category": category.value if category else "all", "days": days}

@router.get("/repeat-offenders")
def hotspots(
    days: int = Query(default=90, ge=1, le=3650),
    min_count: int = Query(default=3, ge=2, le=1000),
    db: Session = Depends(get_db),
):
    rows = repeat_offenders(db, days=days, min_count=min_count)
    return {"hotspots": rows, "count": len(rows), "days": days}

@router.get("/feed")
def feed(
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    items = resolved_feed(db, limit=limit, offset=offset)
    return {"items": items, "count": len(items)}
