"""
Seed the domain/category → department lookup.

Run with: python -m citizenconnect.seed
Re-running is safe; an existing pair has its department updated in place.
"""
import logging
from typing import Dict, List

from sqlalchemy.orm import Session

from citizenconnect.config import configure_logging
from citizenconnect.database import SessionLocal, init_db
from citizenconnect.models.domain import DomainCategory

logger = logging.getLogger(__name__)

DOMAIN_DEPARTMENTS: Dict[str, str] = {
    "Electrical": "Electrical Department",
    "Water": "Water Department",
    "Waste": "Sanitation Department",
    "Roads": "Public Works Department",
    "Health": "Health Department",
}

DOMAIN_CATEGORIES: Dict[str, List[str]] = {
    "Electrical": [
        "Street Light Not Working",
        "Frequent Power Cuts",
        "Exposed/Loose Wires",
        "Transformer Sparking/Issue",
        "Electric Pole Damaged",
    ],
    "Water": [
        "Pipe Leakage",
        "No Water Supply",
        "Contaminated/Dirty Water",
        "Low Water Pressure",
        "Open Manhole",
    ],
    "Waste": [
        "Garbage Overflow",
        "Missed Garbage Pickup",
        "Dead Animal Removal",
        "Public Dustbin Damaged",
        "Burning of Garbage",
    ],
    "Roads": [
        "Pothole Repair",
        "Waterlogging on Road",
        "Damaged Sidewalk/Footpath",
        "Illegal Encroachment",
        "Speed Breaker Required/Damaged",
    ],
    "Health": [
        "Mosquito Breeding Area",
        "Stray Dog Menace",
        "Unsanitary Public Toilet",
        "Food Adulteration",
        "Illegal Dumping of Medical Waste",
    ],
}


def seed_domain_categories(db: Session) -> int:
    """Insert or update every mapping. Returns the number of rows written."""
    written = 0
    for domain, categories in DOMAIN_CATEGORIES.items():
        department = DOMAIN_DEPARTMENTS[domain]
        for category in categories:
            row = (
                db.query(DomainCategory)
                .filter(DomainCategory.domain == domain, DomainCategory.category == category)
                .first()
            )
            if row is None:
                db.add(DomainCategory(domain=domain, category=category, department=department))
                written += 1
            elif row.department != department:
                row.department = department
                written += 1
    db.commit()
    logger.info(f"Seeded domain categories ({written} rows written)")
    return written


if __name__ == "__main__":
    configure_logging()
    init_db()
    session = SessionLocal()
    try:
        seed_domain_categories(session)
    finally:
        session.close()
