# File: app/routers/issues_stats.py
from fastapi import APIRouter, Depends
from sqlalchemy import func
from sqlalchemy.orm import Session
from app.core.deps import get_dispatcher
from app.db.session import get_db
from app.models.issue import Issue, IssueCategory
from app.services.notifications import NotificationDispatcher
from app.services.reporting import critical_backlog, dashboard_summary, open_roots_query, send_backlog_digest, ward_performance

router = APIRouter(prefix="/issues/stats", tags=["issues:stats"])

@router.get("/summary")
def summary(db: Session = Depends(get_db)):
    return dashboard_summary(db)

@router.get("/by-category")
def by_category(db: Session = Depends(get_db)):
    q = (
        open_roots_query(db)
        .with_entities(Issue.category, func.count(Issue.id))
        .group_by(Issue.category)
        .order_by(func.count(Issue.id).desc())
    )
    return [{"category": c.value if isinstance(c, IssueCategory) else c, "count": n} for c, n in q.all()]

@router.get("/by-ward")
def by_ward(db: Session = Depends(get_db)):
    return ward_performance(db)

@router.get("/critical-backlog")
def backlog(db: Session = Depends(get_db)):
    rows = critical_backlog(db)
    return {"count": len(rows), "items": rows}

@router.post("/critical-backlog/digest")
def send_digest_now(db: Session = Depends(get_db), dispatcher: NotificationDispatcher = Depends(get_dispatcher)):
    result = send_backlog_digest(db, dispatcher)
    if result is None:
        return {"sent": False, "detail": "No issues at tier 3"}
    return {"sent": result.success, "detail": result.detail}
