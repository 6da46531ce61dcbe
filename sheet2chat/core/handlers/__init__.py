# sheet2chat/core/handlers/__init__.py
"""
Event handlers, one per inbound event type.
"""
from sheet2chat.core.handlers.consultation import ConsultationHandler
from sheet2chat.core.handlers.reminder import ReminderHandler
from sheet2chat.core.handlers.universal import UniversalHandler

__all__ = [
    "ConsultationHandler",
    "ReminderHandler",
    "UniversalHandler",
]
