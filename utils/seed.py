from models import db
from models.user import Role
from models.service import Service
from security.rbac import DEFAULT_ROLES

# prices in paise
DEFAULT_SERVICES = [
    {
        "id": "ssb-mock-interview",
        "name": "SSB Mock Interview",
        "description": "A full-length mock personal interview with detailed feedback.",
        "price": 299900,
        "duration": "60 mins",
        "features": [
            "One-on-one mock interview",
            "Personalised feedback report",
            "Body language and communication tips",
        ],
        "is_bookable": True,
        "has_details_page": True,
    },
    {
        "id": "personal-counselling-session",
        "name": "Personal Counselling Session",
        "description": "Guidance on preparation strategy and career choices.",
        "price": 149900,
        "duration": "45 mins",
        "features": ["Preparation roadmap", "Doubt clearing"],
        "is_bookable": True,
        "has_details_page": False,
    },
    {
        "id": "afcat-exam-guidance",
        "name": "AFCAT Exam Guidance",
        "description": "Study plan and exam strategy for AFCAT.",
        "price": 99900,
        "duration": "30 mins",
        "features": ["Syllabus walkthrough", "Study plan"],
        "is_bookable": False,
        "has_details_page": False,
    },
]

def seed_roles():
    existing = {r.name for r in Role.query.all()}
    for name in DEFAULT_ROLES:
        if name not in existing:
            db.session.add(Role(name=name))
    db.session.commit()

def seed_catalog():
    """Adds the default services that are missing; never overwrites admin edits."""
    added = 0
    for data in DEFAULT_SERVICES:
        if db.session.get(Service, data["id"]) is None:
            db.session.add(Service(**data))
            added += 1
    db.session.commit()
    return added
