"""終業時刻（end-of-day boundary）の表現と解釈。"""

import logging
import re
from dataclasses import dataclass

from timeledger.errors import ValidationError
from timeledger.interfaces.time_store import OptionName, TimeStoreInterface

logger = logging.getLogger(__name__)


@dataclass(frozen=True, order=True)
class HourMinute:
    """検証済みの時刻（時・分）。

    順序はゼロ埋めした "HH:MM" 文字列の辞書順と一致する。
    """

    hour: int
    minute: int

    def __str__(self) -> str:
        return f"{self.hour:02d}:{self.minute:02d}"


def parse_hour_minute(text: str) -> HourMinute:
    """"HH:MM" 形式の文字列を解釈する。

    時・分はそれぞれ1桁または2桁を受け付ける（"8:00", "09:5" など）。

    Raises:
        ValidationError: 形式違反、または時 > 23、分 > 59
    """
    match = re.fullmatch(r"(\d{1,2}):(\d{1,2})", text.strip())
    if match is None:
        raise ValidationError(
            "Time must a 24-hour time formatted like HH:MM "
            "(i.e. 10:30, 09:15, 8:00, etc)"
        )
    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23:
        raise ValidationError(f"Got hour={hour}, but hour must be 0-23")
    if minute > 59:
        raise ValidationError(f"Got minute={minute}, but minute must be 0-59")
    return HourMinute(hour, minute)


def end_of_day_boundary(store: TimeStoreInterface) -> HourMinute | None:
    """オプションに設定された終業時刻を返す。

    未設定、または保存値が解釈できない場合は None（即時終了モード）。
    """
    raw = store.get_option(OptionName.END_OF_DAY.value)
    if raw is None:
        return None
    try:
        return parse_hour_minute(raw)
    except ValidationError:
        logger.warning(
            "Ignoring invalid %s option %r; closing open times immediately",
            OptionName.END_OF_DAY,
            raw,
        )
        return None
