import re
from datetime import datetime
from typing import Iterable, Optional

from procurement.database import db
from procurement.errors import ValidationError

SEQUENCE_PATTERN = re.compile(r"-(\d{4})$")

def normalize_department_code(raw: str) -> str:
    """'Sales Ops' -> 'SALESOPS'. Only A-Z, 0-9, '_' and '-' survive."""
    code = re.sub(r"\s+", "", (raw or "").strip().upper())
    code = re.sub(r"[^A-Z0-9_-]", "", code)
    if not code:
        raise ValidationError(f"Department '{raw}' does not yield a usable PR number prefix", action="create_draft")
    return code

def pr_number_prefix(department: str, day: Optional[datetime] = None) -> str:
    day = day or datetime.utcnow()
    return f"{normalize_department_code(department)}-{day.strftime('%Y%m%d')}-"

def next_sequence(existing_numbers: Iterable[str]) -> int:
    """Smallest free sequence number: gaps are reused before max + 1."""
    taken = set()
    for number in existing_numbers:
        match = SEQUENCE_PATTERN.search(number)
        if match and int(match.group(1)) > 0:
            taken.add(int(match.group(1)))
    seq = 1
    while seq in taken:
        seq += 1
    return seq

async def generate_pr_number(department: str, day: Optional[datetime] = None) -> str:
    """Next free PR number for a department and day."""
    prefix = pr_number_prefix(department, day)
    existing = await db.purchase_requests.pr_numbers_with_prefix(prefix)
    seq = next_sequence(existing)
    return f"{prefix}{seq:04d}"
