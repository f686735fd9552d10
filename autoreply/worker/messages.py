"""Canned customer-facing notices sent when automation steps aside."""

from __future__ import annotations

QUOTA_NOTICE = (
    "Thank you for your message! We're experiencing high volume. "
    "Someone will reach out shortly."
)
MAINTENANCE_NOTICE = (
    "Our AI assistant is currently unavailable. A team member will assist you shortly."
)
HOLDING_NOTICE = "Let me verify this with my manager. I'll get back to you shortly."
NO_INFORMATION_NOTICE = (
    "I don't have that information right now. "
    "Let me connect you with our team who can help."
)
DELAY_NOTICE = "Thanks for your patience! I'm checking on this and will reply in a moment."
ERROR_NOTICE = "Thanks for reaching out! Let me connect you with our team."
FAREWELL_NOTICE = (
    "Thank you for chatting! Feel free to message again if you need assistance."
)
