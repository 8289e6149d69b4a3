from datetime import date, timedelta
from typing import Optional, Tuple

from walletapi.schemas.transactions import DateRangePreset


def resolve_date_range(
    preset: DateRangePreset,
    today: date,
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> Tuple[Optional[date], Optional[date]]:
    """날짜 프리셋을 (start, end) 로 변환

    - today: 오늘 하루
    - week: 이번 주 일요일부터 오늘까지
    - month: 이번 달 1일부터 오늘까지
    - custom: 전달받은 start/end 그대로
    - all: 제한 없음
    """
    if preset == DateRangePreset.TODAY:
        return today, today
    if preset == DateRangePreset.WEEK:
        # weekday(): 월=0 ... 일=6
        return today - timedelta(days=(today.weekday() + 1) % 7), today
    if preset == DateRangePreset.MONTH:
        return today.replace(day=1), today
    if preset == DateRangePreset.CUSTOM:
        return start, end
    return None, None


def export_filename(today: date) -> str:
    return f"coin-transactions-{today.isoformat()}.csv"
