from sqlalchemy import select
from sqlalchemy.orm import Session

from models import MainCategory, SubCategory

# Rows defaulted to income by the import heuristics land here.
GENERIC_INCOME_CATEGORY_ID = "9"

DEFAULT_MAIN_CATEGORIES: list[tuple[str, str]] = [
    ("1", "Boende & Hushåll"),
    ("2", "Mat & Dryck"),
    ("3", "Transport"),
    ("4", "Nöje & Fritid"),
    ("5", "Shopping & Kläder"),
    ("6", "Hälsa & Skönhet"),
    ("7", "Barn & Familj"),
    ("8", "Sparande & Investeringar"),
    (GENERIC_INCOME_CATEGORY_ID, "Inkomster"),
    ("10", "Övrigt"),
]

DEFAULT_SUB_CATEGORIES: list[tuple[str, str, str]] = [
    ("101", "1", "Hyra/Avgift"),
    ("102", "1", "El & Värme"),
    ("103", "1", "Försäkring (Hem)"),
    ("104", "1", "Bredband & TV"),
    ("105", "1", "Möbler & Inredning"),
    ("201", "2", "Matvarubutik"),
    ("202", "2", "Restaurang & Takeaway"),
    ("203", "2", "Systembolaget"),
    ("204", "2", "Kiosk & Småköp"),
    ("301", "3", "Drivmedel"),
    ("302", "3", "Kollektivtrafik"),
    ("303", "3", "Parkering"),
    ("304", "3", "Fordonsskatt & Försäkring"),
    ("305", "3", "Service & Reparation"),
    ("401", "4", "Streaming & Abonnemang"),
    ("402", "4", "Bio & Evenemang"),
    ("403", "4", "Resor & Hotell"),
    ("404", "4", "Utekväll"),
    ("501", "5", "Kläder & Skor"),
    ("502", "5", "Elektronik"),
    ("503", "5", "Sport & Fritid"),
    ("601", "6", "Apotek"),
    ("602", "6", "Sjukvård"),
    ("603", "6", "Gym & Träning"),
    ("604", "6", "Frisör & Skönhet"),
    ("701", "7", "Barnkläder"),
    ("702", "7", "Leksaker"),
    ("703", "7", "Barnomsorg"),
    ("901", GENERIC_INCOME_CATEGORY_ID, "Lön"),
    ("902", GENERIC_INCOME_CATEGORY_ID, "Bidrag"),
    ("903", GENERIC_INCOME_CATEGORY_ID, "Övrig Inkomst"),
]


def seed_default_categories(session: Session) -> int:
    """Add any missing default categories. Returns how many rows were created."""
    main_ids = set(session.scalars(select(MainCategory.id)).all())
    sub_ids = set(session.scalars(select(SubCategory.id)).all())
    created = 0
    for category_id, name in DEFAULT_MAIN_CATEGORIES:
        if category_id not in main_ids:
            session.add(MainCategory(id=category_id, name=name))
            created += 1
    session.flush()
    for sub_id, main_id, name in DEFAULT_SUB_CATEGORIES:
        if sub_id not in sub_ids:
            session.add(SubCategory(id=sub_id, main_category_id=main_id, name=name))
            created += 1
    session.commit()
    return created
