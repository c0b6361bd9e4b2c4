import random
from datetime import datetime
from typing import Optional

PREFIX = "AM"


def generate_asset_number(now: Optional[datetime] = None) -> str:
    """AM-年月日-随机4位"""
    now = now or datetime.now()
    return f"{PREFIX}-{now:%Y%m%d}-{random.randint(0, 9999):04d}"
