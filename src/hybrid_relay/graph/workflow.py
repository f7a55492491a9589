"""LangGraph assembly for the direct-API tool-use loop."""

from langgraph.graph import END, StateGraph

from hybrid_relay.engine.llm import LLMClient
from hybrid_relay.graph.nodes import call_model, dispatch_tools, finish
from hybrid_relay.graph.state import LoopState
from hybrid_relay.tools.gateway import ToolExecutor


def build_loop_graph(*, llm_client: LLMClient, executor: ToolExecutor):
    async def _call_model(state: LoopState) -> LoopState:
        return await call_model.run(state, llm_client=llm_client)

    async def _dispatch_tools(state: LoopState) -> LoopState:
        return await dispatch_tools.run(state, executor=executor)

    def _after_model(state: LoopState) -> str:
        response = state.get("response", {})
        has_tool_use = any(
            block.get("type") == "tool_use" for block in response.get("content", [])
        )
        if response.get("stop_reason") == "tool_use" and has_tool_use:
            return "dispatch"
        return "finish"

    def _after_dispatch(state: LoopState) -> str:
        if state.get("suspension"):
            return "suspend"
        if state.get("iterations", 0) >= state.get("max_iterations", 15):
            return "cap"
        return "continue"

    graph = StateGraph(LoopState)

    graph.add_node("call_model", _call_model)
    graph.add_node("dispatch_tools", _dispatch_tools)
    graph.add_node("finish", finish.run)
    graph.add_node("iteration_cap", finish.mark_iteration_cap)

    graph.set_entry_point("call_model")
    graph.add_conditional_edges(
        "call_model", _after_model, {"dispatch": "dispatch_tools", "finish": "finish"}
    )
    graph.add_conditional_edges(
        "dispatch_tools",
        _after_dispatch,
        {"continue": "call_model", "suspend": END, "cap": "iteration_cap"},
    )
    graph.add_edge("finish", END)
    graph.add_edge("iteration_cap", END)

    return graph.compile()


def recursion_limit_for(max_iterations: int) -> int:
    # Two graph steps per model turn plus the terminal node.
    return max_iterations * 2 + 5
