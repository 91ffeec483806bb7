"""LangGraph workflow assembly for one flow run."""

from langgraph.graph import END, START, StateGraph

from maa_flow.graph.nodes import advance, await_completion, finalize, reconcile, submit
from maa_flow.graph.runtime import FlowRuntime
from maa_flow.graph.state import FlowState


def build_graph(runtime: FlowRuntime):
    def _route_entry(state: FlowState) -> str:
        return "reconcile" if state.get("entry") == "reconcile" else "submit"

    def _after_reconcile(state: FlowState) -> str:
        if state.get("outcome"):
            return "finalize"
        if state.get("in_flight"):
            return "await_completion"
        if state.get("skip_current"):
            return "advance"
        return "submit"

    def _after_submit(state: FlowState) -> str:
        if state.get("outcome"):
            return "finalize"
        if state.get("skip_current"):
            return "advance"
        return "await_completion"

    def _after_await(state: FlowState) -> str:
        return "finalize" if state.get("outcome") else "advance"

    def _after_advance(state: FlowState) -> str:
        return "finalize" if state.get("outcome") else "submit"

    def _reconcile(state: FlowState) -> FlowState:
        return reconcile.run(state, runtime)

    def _submit(state: FlowState) -> FlowState:
        return submit.run(state, runtime)

    def _await(state: FlowState) -> FlowState:
        return await_completion.run(state, runtime)

    def _advance(state: FlowState) -> FlowState:
        return advance.run(state, runtime)

    def _finalize(state: FlowState) -> FlowState:
        return finalize.run(state, runtime)

    graph = StateGraph(FlowState)

    graph.add_node("reconcile", _reconcile)
    graph.add_node("submit", _submit)
    graph.add_node("await_completion", _await)
    graph.add_node("advance", _advance)
    graph.add_node("finalize", _finalize)

    graph.add_conditional_edges(START, _route_entry, {"reconcile": "reconcile", "submit": "submit"})
    graph.add_conditional_edges(
        "reconcile",
        _after_reconcile,
        {
            "await_completion": "await_completion",
            "submit": "submit",
            "advance": "advance",
            "finalize": "finalize",
        },
    )
    graph.add_conditional_edges(
        "submit",
        _after_submit,
        {"await_completion": "await_completion", "advance": "advance", "finalize": "finalize"},
    )
    graph.add_conditional_edges(
        "await_completion", _after_await, {"advance": "advance", "finalize": "finalize"}
    )
    graph.add_conditional_edges("advance", _after_advance, {"submit": "submit", "finalize": "finalize"})
    graph.add_edge("finalize", END)

    return graph.compile()


def recursion_limit(task_count: int) -> int:
    # reconcile + (submit, await, advance) per task + finalize, with headroom.
    return 4 * task_count + 10
