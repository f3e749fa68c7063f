"""
Inspection code generation.

Format: INS{YYYYMMDD}{DIST}{NNNN}
- DIST: first 6 alphanumeric characters of the district id, upper-cased and
  right-padded with "0" to a fixed width
- NNNN: per-district sequence (existing inspections in the district + 1)

Different district ids can share a tag ("district-north" and
"district-south" are both DISTRI). The sequence therefore never falls below
the highest code already issued under the same INS{date}{tag} prefix, so
codes stay unique per prefix rather than per district id.

Two concurrent creations can still compute the same code; the unique
constraint on inspection_code rejects the loser, which asks for the next
candidate.
"""
import re
from datetime import date, datetime
from typing import Callable, Optional, Union

CODE_PREFIX = "INS"
DISTRICT_TAG_LENGTH = 6
SEQUENCE_WIDTH = 4

_NON_ALNUM = re.compile(r"[^A-Za-z0-9]")


def district_tag(district_id: str) -> str:
    tag = _NON_ALNUM.sub("", district_id or "").upper()[:DISTRICT_TAG_LENGTH]
    return (tag or "X").ljust(DISTRICT_TAG_LENGTH, "0")


def code_prefix(on: Union[date, datetime], district_id: str) -> str:
    return f"{CODE_PREFIX}{on.strftime('%Y%m%d')}{district_tag(district_id)}"


def format_code(on: Union[date, datetime], district_id: str, sequence: int) -> str:
    return f"{code_prefix(on, district_id)}{sequence:0{SEQUENCE_WIDTH}d}"


class InspectionCodeGenerator:
    """District-scoped inspection code source."""

    def __init__(self, count_in_district: Callable[[str], int],
                 last_sequence_for_prefix: Callable[[str], int],
                 today: Optional[Callable[[], date]] = None):
        self.count_in_district = count_in_district
        self.last_sequence_for_prefix = last_sequence_for_prefix
        self.today = today or date.today

    def generate(self, district_id: str, attempt: int = 0) -> str:
        """
        Next candidate code for a district.

        Args:
            district_id: District the inspection belongs to
            attempt: Retry number after a unique-constraint clash; skips ahead
        """
        on = self.today()
        sequence = max(
            self.count_in_district(district_id),
            self.last_sequence_for_prefix(code_prefix(on, district_id)),
        ) + 1 + attempt
        return format_code(on, district_id, sequence)
