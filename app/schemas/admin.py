from pydantic import BaseModel


class DashboardMetrics(BaseModel):
    user_count: int
    active_user_count: int
    match_count: int
    avg_match_score: int
