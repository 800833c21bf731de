# airdlivers/core/marketplace/choices.py
"""
Button choices used by the forms and the moderation actions.
"""
from __future__ import annotations

# Category key -> button label. Keys are stored on the request.
CATEGORIES: dict[str, str] = {
    "Documents": "📄 Documents",
    "Gold": "🥇 Gold (with bill)",
    "Medicines": "💊 Medicines (Rx only)",
    "Clothes": "👕 Clothes",
    "Food": "🍱 Food (sealed)",
    "Electronics": "💻 Electronics (bill mandatory)",
    "Gifts": "🎁 Gifts",
    "Prohibited": "⚠️ Prohibited",
}

# Choosing this category ends the sender form without saving anything
PROHIBITED_CATEGORY = "Prohibited"

# Rejection reason key -> text stored as the moderator note
REJECT_REASONS: dict[str, str] = {
    "docs": "Documents unclear or incomplete",
    "item": "Item not allowed for carriage",
    "contact": "Contact details could not be verified",
    "dates": "Travel dates are not plausible",
}

# Reason key that asks the moderator to type a custom reason
REJECT_REASON_OTHER = "other"
