"""
fanout/graph.py

LangGraph StateGraph definition for the alert fan-out workflow.
Pipeline: Claim → Presenter → Selector → (conditional) Dispatcher → Auditor → END
                                        ↘ EmptyExit → END
"""

from langgraph.graph import END, StateGraph

from fanout.nodes.auditor import auditor_node, empty_exit_node
from fanout.nodes.claim import claim_node
from fanout.nodes.dispatcher import dispatcher_node
from fanout.nodes.presenter import presenter_node
from fanout.nodes.selector import route_after_selection, selector_node
from fanout.state import FanoutState


def build_graph() -> StateGraph:
    """
    Construct and compile the fan-out workflow.

    Flow:
    1. Claim: absorbs duplicate triggers for the same alert id
    2. Presenter: radius, color, texts, TTL and data payload
    3. Selector: recipients (or tile topics) for the incident
    4. Dispatcher: batched sends (only when someone was selected)
    5. Auditor / EmptyExit: one delivery log entry per attempt
    """
    graph = StateGraph(FanoutState)

    graph.add_node("claim", claim_node)
    graph.add_node("resolve_presentation", presenter_node)
    graph.add_node("select_recipients", selector_node)
    graph.add_node("dispatch", dispatcher_node)
    graph.add_node("audit", auditor_node)
    graph.add_node("empty_exit", empty_exit_node)

    graph.set_entry_point("claim")

    # A duplicate trigger neither sends nor logs
    graph.add_conditional_edges(
        "claim",
        lambda state: END if state["duplicate"] else "resolve_presentation",
    )
    graph.add_edge("resolve_presentation", "select_recipients")
    graph.add_conditional_edges("select_recipients", route_after_selection)
    graph.add_edge("dispatch", "audit")
    graph.add_edge("audit", END)
    graph.add_edge("empty_exit", END)

    return graph.compile()
