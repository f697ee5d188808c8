# The workflow lives in reservation_manager.graph; it is not imported here
# because helpers and services import reservation_manager.types.
from .types import ReservationState, TimeSlot, ConversationState, EmailAction

__all__ = [
    'ReservationState',
    'TimeSlot',
    'ConversationState',
    'EmailAction',
]
