# airdlivers/core/marketplace/texts.py
"""
User-facing texts and message builders.

All messages are Telegram HTML; user-supplied values go through
``esc()`` before interpolation. ``get_text(key, **fmt)`` resolves a
template and formats it at call time.
"""
from __future__ import annotations

from html import escape

from airdlivers.core.engine.domain import Request, SenderDetails, TravelerDetails
from airdlivers.core.marketplace.choices import CATEGORIES
from airdlivers.core.marketplace.validators import DATE_FORMAT, DATETIME_FORMAT


def esc(value) -> str:
    return escape(str(value if value is not None else ""), quote=False)


TEXTS: dict[str, str] = {
    # Menu / help
    "intro": (
        "<b>👋 Welcome to AirDlivers!</b>\n\n"
        "🚀 <b>Fastest next-day global delivery</b> using passenger flight space.\n"
        "We connect <b>Senders</b> and <b>Travelers</b> securely.\n\n"
        "Choose an option below to begin."
    ),
    "menu_sender": "📦 Send a Package",
    "menu_traveler": "🧳 Traveler",
    "menu_tracking": "📍 Track Shipment",
    "menu_help": "ℹ️ Help / Support",
    "help": (
        "<b>ℹ️ Help &amp; Support</b>\n\n"
        "📘 <b>Instructions:</b>\n"
        "• Choose <b>Send a Package</b> to ship items internationally.\n"
        "• Choose <b>Traveler</b> to earn by carrying packages safely.\n"
        "• Choose <b>Track Shipment</b> using your phone number.\n\n"
        "🛡 <b>Privacy:</b> we store only the details required for delivery verification "
        "(name, phone, email, ID/passport selfie and itinerary). Your contact details are "
        "never shown to your match.\n\n"
        "☎️ <b>Support:</b> {support_email}"
    ),
    "hint_start": "Type /start to open the menu.",
    "unknown_action": "⚠️ This button is no longer valid. Type /start to open the menu.",
    "internal_error": "⚠️ Internal error, please retry in a moment.",

    # Gate
    "suspended": "⛔ <b>Your account is suspended.</b>\nReason: {reason}\nPlease contact: {support_email}",
    "terminated_notice": (
        "🚫 Your chat was closed by the AirDlivers team.\n"
        "Reason: {reason}\n\nType /start to return to the menu."
    ),

    # Sender form prompts
    "ask_name": "👤 Enter your Full Name:",
    "ask_phone": "📞 Enter phone number with country code (e.g. +911234567890):",
    "ask_email": "📧 Enter your email:",
    "ask_pickup": "🛫 Enter Pickup Airport:",
    "ask_destination": "🛬 Enter Destination Airport:",
    "ask_weight": "⚖️ Enter Package Weight in kg (max {max_kg:g}):",
    "ask_category": "📦 Choose category:",
    "ask_send_date": "📅 Enter Send Date (DD-MM-YYYY):",
    "ask_arrival_date": "📅 Enter Arrival Date (DD-MM-YYYY):",
    "ask_package_photo": "📷 Upload a photo of the package:",
    "ask_selfie_id": "📸 Upload a selfie holding your ID:",
    "ask_notes": "📝 Add notes or type 'None':",

    # Traveler form prompts
    "ask_departure": "🛫 Enter Departure Airport:",
    "ask_departure_country": "🌍 Enter Departure Country:",
    "ask_traveler_destination": "🛬 Enter Destination Airport:",
    "ask_arrival_country": "🌍 Enter Arrival Country:",
    "ask_capacity": "⚖️ Enter available luggage space in kg (max {max_kg:g}):",
    "ask_passport_number": "🛂 Enter your Passport Number:",
    "ask_departure_time": "⏰ Enter Departure Date & Time (DD-MM-YY HH:mm):",
    "ask_arrival_time": "⏰ Enter Arrival Date & Time (DD-MM-YY HH:mm):",
    "ask_passport_selfie": "📸 Upload a selfie holding your passport:",
    "ask_itinerary": "📄 Upload your itinerary / ticket photo:",

    # Tracking
    "ask_tracking_phone": "📍 Enter the phone number you used for your request:",

    # Form errors
    "err_name": "❌ Enter a valid name (at least 2 characters).",
    "err_phone": "❌ Invalid phone number. Use + and 8-15 digits, e.g. +911234567890.",
    "err_email": "❌ Invalid email.",
    "err_place": "❌ Enter a valid place name.",
    "err_weight": "❌ Enter a weight greater than 0 and at most {max_kg:g} kg.",
    "err_passport_number": "❌ Enter a valid passport number (5-20 letters or digits).",
    "err_date_format": "❌ Use format DD-MM-YYYY.",
    "err_datetime_format": "❌ Use format DD-MM-YY HH:mm.",
    "err_date_past": "❌ The date cannot be in the past.",
    "err_arrival_before": "❌ Arrival cannot be before the departure / send date.",
    "err_expect_text": "✍️ Please type your answer as text.",
    "err_expect_photo": "📷 Please upload a photo for this step.",
    "err_expect_button": "👆 Please use the buttons above.",
    "prohibited_abort": (
        "⚠️ Prohibited items cannot be sent through AirDlivers.\n"
        "Your request was cancelled. Type /start to begin again."
    ),

    # Submission
    "confirm_yes": "✅ Confirm & Submit",
    "confirm_no": "❌ Cancel",
    "submitted": (
        "✅ Your request <code>{request_id}</code> was submitted and is waiting for review.\n"
        "We will notify you once it is approved."
    ),
    "cancelled": "❌ Request cancelled. Nothing was saved. Type /start to begin again.",
    "no_form": "ℹ️ There is no request in progress. Type /start to begin.",

    # Moderation
    "btn_approve": "✅ Approve",
    "btn_reject": "❌ Reject",
    "btn_visa": "🛂 Request Visa",
    "btn_reason_other": "✍️ Other (type reason)",
    "mod_new": "🆕 <b>New {role} request</b>\n\n{summary}",
    "mod_choose_reason": "Choose a rejection reason for <code>{request_id}</code>:",
    "mod_type_reason": "✍️ Type the rejection reason for <code>{request_id}</code>:",
    "mod_done": "{icon} <code>{request_id}</code> {verb} by {moderator}.",
    "mod_already": "ℹ️ <code>{request_id}</code> is already {status}.",
    "mod_not_allowed": "⚠️ <code>{request_id}</code> cannot be {verb} while {status}.",
    "mod_not_found": "⚠️ Request not found.",
    "mod_visa_uploaded": "🛂 Visa uploaded for <code>{request_id}</code>.",
    "mod_pending_empty": "✅ No requests are waiting for review.",
    "user_approved": "✅ Your request <code>{request_id}</code> was approved! We are looking for a match.",
    "user_rejected": "❌ Your request <code>{request_id}</code> was rejected.\nReason: {reason}",
    "user_visa_requested": (
        "🛂 Please upload a photo of your visa for request <code>{request_id}</code>."
    ),
    "user_visa_received": "✅ Visa received. Your request is back under review.",
    "match_dissolved": (
        "⚠️ Your match for request <code>{request_id}</code> is no longer active."
    ),

    # Matching
    "btn_confirm_match": "🤝 Confirm this match",
    "btn_skip_match": "⏭ Skip",
    "offer": "🔎 <b>Possible match for your request</b> <code>{my_id}</code>\n\n{card}",
    "offer_reciprocal": (
        "🔔 <b>The other side already confirmed!</b>\n"
        "Possible match for your request <code>{my_id}</code>\n\n{card}"
    ),
    "wait_other": "⏳ Confirmation saved. Waiting for the other side to confirm.",
    "match_locked": (
        "🎉 <b>Match confirmed!</b>\n"
        "Your request <code>{my_id}</code> is matched with <code>{other_id}</code>.\n"
        "You can now chat here: your messages are forwarded to your match."
    ),
    "mod_match_locked": "🤝 Match locked: <code>{a}</code> ↔ <code>{b}</code>",
    "btn_terminate": "🚫 Terminate chat ({user})",
    "match_unavailable": "⚠️ This candidate is no longer available.",
    "match_already": "ℹ️ You are already matched.",
    "match_busy": (
        "⚠️ You already confirmed another candidate. Wait for that match "
        "or skip it first."
    ),
    "match_not_yours": "⛔ This action is not available.",
    "match_skipped": "⏭ Skipped.",
    "candidate_gone": (
        "ℹ️ The candidate you confirmed for <code>{request_id}</code> is no longer available."
    ),

    # Relay
    "relay_from_match": "💬 <b>Your match:</b>\n{text}",
    "relay_mirror": "Chat: {from_id} → {to_id}\n{text}",
    "relay_photo_unsupported": "ℹ️ Only text messages are forwarded to your match.",

    # Admin
    "ask_pin": "🔑 Enter admin PIN:",
    "pin_ok": "✅ Admin login successful.",
    "pin_bad": "❌ Wrong PIN.",
    "logged_out": "👋 Logged out.",
    "not_authorized": "⛔ Not authorized.",
    "usage_suspend": "Usage: /suspend &lt;userId&gt; &lt;reason&gt;",
    "usage_unsuspend": "Usage: /unsuspend &lt;userId&gt;",
    "usage_terminate": "Usage: /terminatechat &lt;userId&gt; &lt;reason&gt;",
    "user_suspended_admin": "✅ User <code>{user_id}</code> suspended.\nReason: {reason}",
    "user_unsuspended_admin": "✅ User <code>{user_id}</code> unsuspended.",
    "user_unsuspended": "✅ Your account is active again. Type /start to continue.",
    "no_active_match": "⚠️ User <code>{user_id}</code> has no active match.",
    "terminated_admin": (
        "🚫 Chat terminated for <code>{user_id}</code> "
        "(<code>{a}</code> ↔ <code>{b}</code>).\nReason: {reason}"
    ),

    # Tracking
    "tracking_none": "❌ No request found for that phone number.",
    "tracking_result": (
        "📍 <b>Request</b> <code>{request_id}</code> ({role})\n"
        "<b>Status:</b> {status}"
    ),
    "tracking_note": "\n<b>Note:</b> {note}",
}


def get_text(key: str, **fmt) -> str:
    """Resolve a text by key and format it; unknown keys return the key itself."""
    template = TEXTS.get(key)
    if template is None:
        return key
    return template.format(**fmt) if fmt else template


# ---------------------------------------------------------------------------
# Summaries
# ---------------------------------------------------------------------------

def sender_summary(request_id: str, d: SenderDetails) -> str:
    lines = [
        "<b>📦 Sender Summary</b>\n",
        f"<b>ID:</b> <code>{esc(request_id)}</code>",
        f"<b>Name:</b> {esc(d.name)}",
        f"<b>Phone:</b> {esc(d.phone)}",
        f"<b>Email:</b> {esc(d.email)}",
        f"<b>From:</b> {esc(d.pickup)}",
        f"<b>To:</b> {esc(d.destination)}",
        f"<b>Weight:</b> {d.weight:g} kg",
        f"<b>Category:</b> {esc(d.category)}",
        f"<b>Send:</b> {d.send_date.strftime(DATE_FORMAT)}",
        f"<b>Arrival:</b> {d.arrival_date.strftime(DATE_FORMAT)}",
    ]
    if d.notes:
        lines.append(f"<b>Notes:</b> {esc(d.notes)}")
    return "\n".join(lines)


def traveler_summary(request_id: str, d: TravelerDetails) -> str:
    lines = [
        "<b>🧳 Traveler Summary</b>\n",
        f"<b>ID:</b> <code>{esc(request_id)}</code>",
        f"<b>Name:</b> {esc(d.name)}",
        f"<b>Phone:</b> {esc(d.phone)}",
        f"<b>Email:</b> {esc(d.email)}",
        f"<b>From:</b> {esc(d.departure)} ({esc(d.departure_country)})",
        f"<b>To:</b> {esc(d.destination)} ({esc(d.arrival_country)})",
        f"<b>Departure:</b> {d.departure_time.strftime(DATETIME_FORMAT)}",
        f"<b>Arrival:</b> {d.arrival_time.strftime(DATETIME_FORMAT)}",
        f"<b>Capacity:</b> {d.available_weight:g} kg",
        f"<b>Passport:</b> {esc(d.passport_number)}",
    ]
    if d.notes:
        lines.append(f"<b>Notes:</b> {esc(d.notes)}")
    return "\n".join(lines)


def request_summary(request: Request) -> str:
    if isinstance(request.details, SenderDetails):
        return sender_summary(request.request_id, request.details)
    return traveler_summary(request.request_id, request.details)


def offer_card(candidate: Request) -> str:
    """
    What one party may see about a candidate: route, date, weight and
    category only. Never name, phone, email, passport or photos.
    """
    d = candidate.details
    if isinstance(d, SenderDetails):
        return "\n".join([
            "<b>📦 Sender</b>",
            f"<b>Route:</b> {esc(d.pickup)} → {esc(d.destination)}",
            f"<b>Send date:</b> {d.send_date.strftime(DATE_FORMAT)}",
            f"<b>Weight:</b> {d.weight:g} kg",
            f"<b>Category:</b> {esc(CATEGORIES.get(d.category, d.category))}",
        ])
    return "\n".join([
        "<b>🧳 Traveler</b>",
        f"<b>Route:</b> {esc(d.departure)} → {esc(d.destination)}",
        f"<b>Departure:</b> {d.departure_time.strftime(DATE_FORMAT)}",
        f"<b>Capacity:</b> {d.available_weight:g} kg",
    ])
