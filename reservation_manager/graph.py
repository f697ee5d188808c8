from langgraph.graph import StateGraph, END

from .types import ReservationState
from .nodes import (
    classify_email_node,
    select_action_node,
    check_time_node,
    offer_slots_node,
    confirm_time_node,
    counteroffer_slots_node,
    generate_reply_node,
    end_interaction_node,
    route_after_classification,
    route_after_selection,
)


def create_reservation_graph():
    """Creates and compiles the reservation workflow graph."""
    workflow = StateGraph(ReservationState)

    # Add nodes
    workflow.add_node("classify_email", classify_email_node)
    workflow.add_node("select_action", select_action_node)
    workflow.add_node("check_time", check_time_node)
    workflow.add_node("offer_slots", offer_slots_node)
    workflow.add_node("confirm_time", confirm_time_node)
    workflow.add_node("counteroffer_slots", counteroffer_slots_node)
    workflow.add_node("generate_reply", generate_reply_node)
    workflow.add_node("end_interaction", end_interaction_node)

    # Set entry point
    workflow.set_entry_point("classify_email")

    # Add edges
    workflow.add_conditional_edges(
        "classify_email",
        route_after_classification,
        {
            "select_action": "select_action",
            "end_interaction": "end_interaction",
        }
    )

    workflow.add_conditional_edges(
        "select_action",
        route_after_selection,
        {
            "offer_slots": "offer_slots",
            "check_time": "check_time",
            "confirm_time": "confirm_time",
            "counteroffer_slots": "counteroffer_slots",
        }
    )

    # The second selection runs in AFTER_CHECK_TIME and never routes back here
    workflow.add_edge("check_time", "select_action")

    workflow.add_edge("offer_slots", "generate_reply")
    workflow.add_edge("confirm_time", "generate_reply")
    workflow.add_edge("counteroffer_slots", "generate_reply")
    workflow.add_edge("generate_reply", "end_interaction")

    workflow.add_edge("end_interaction", END)

    return workflow.compile()


# Create the compiled graph instance
app = create_reservation_graph()
