from typing import Optional


EMERGENCY = "Emergency"
SERVICE = "Service"
QUOTATION = "Quotation"
INQUIRY = "Inquiry"

# Checked in order; the first label with a matching keyword wins
INTENT_KEYWORDS = (
    (EMERGENCY, ("emergency", "urgent", "asap")),
    (SERVICE, ("service", "repair", "fix")),
    (QUOTATION, ("quote", "estimate", "price")),
)

LEAD_TYPES = (SERVICE, EMERGENCY, QUOTATION)


def classify_intent(text: Optional[str]) -> str:
    t = (text or "").lower()
    for label, keywords in INTENT_KEYWORDS:
        if any(k in t for k in keywords):
            return label
    return INQUIRY


def lead_type_for(intent: Optional[str]) -> Optional[str]:
    return intent if intent in LEAD_TYPES else None
