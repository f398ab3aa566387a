from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from api.errors import service_errors
from auth.utils import get_current_user
from db.database import get_db
from db.models import User
from services.stats_service import dashboard_stats

router = APIRouter(prefix="/stats", tags=["stats"])


@router.get("/dashboard")
def get_dashboard_stats(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    with service_errors():
        return dashboard_stats(db, user.id)
