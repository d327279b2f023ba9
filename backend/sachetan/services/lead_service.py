"""Lead records and artifacts."""
import logging
from typing import Optional

from sqlalchemy.orm import Session

from sachetan.models.lead import Lead, LeadArtifact

logger = logging.getLogger(__name__)


def get_lead(db: Session, phone: str) -> Optional[Lead]:
    return db.query(Lead).filter(Lead.phone == phone).first()


def upsert_lead(
    db: Session,
    phone: str,
    name: Optional[str] = None,
    city: Optional[str] = None,
    pincode: Optional[str] = None,
    user_type: Optional[str] = None,
    last_query: Optional[str] = None,
) -> Lead:
    """Create or update; `None` never overwrites a stored value."""
    lead = get_lead(db, phone)
    if lead is None:
        lead = Lead(phone=phone)
        db.add(lead)
    for attr, value in (("name", name), ("city", city), ("pincode", pincode),
                        ("user_type", user_type), ("last_query", last_query)):
        if value is not None:
            setattr(lead, attr, value)
    db.commit()
    db.refresh(lead)
    logger.info(f"[Leads] Saved lead {phone} ({lead.name}, {lead.city})")
    return lead


def log_artifact(db: Session, phone: str, media_url: str, content_type: Optional[str], stage: Optional[str]) -> LeadArtifact:
    artifact = LeadArtifact(phone=phone, media_url=media_url, content_type=content_type, stage=stage)
    db.add(artifact)
    db.commit()
    logger.info(f"[Leads] Artifact from {phone} at stage={stage}: {content_type}")
    return artifact


def format_lead_alert(lead: Lead, question: str, user_type_label: str) -> str:
    return (
        "🔔 *New lead*\n"
        f"Name: {lead.name or '-'}\n"
        f"City: {lead.city or '-'}{f' ({lead.pincode})' if lead.pincode else ''}\n"
        f"Type: {user_type_label}\n"
        f"Phone: {lead.phone.replace('whatsapp:', '')}\n"
        f"Asked: {question[:300]}"
    )
