from dataclasses import dataclass, field
from typing import Any, Callable
from langgraph.graph import StateGraph, END
from rate_limit.limiter import Unlimited
from .state import PublishState, Channel, Entity
from .nodes.resolve import resolve_node
from .nodes.build_payload import build_payload_node
from .nodes.push import push_node
from .nodes.record import record_node

@dataclass
class PublishContext:
    """Collaborators the item nodes need for one channel."""
    connector: Any
    mappings: Any
    limiter: Callable = field(default_factory=Unlimited)

def build_graph(ctx: PublishContext):
    g = StateGraph(PublishState)
    g.add_node("resolve", lambda s: resolve_node(s, ctx))
    g.add_node("build_payload", lambda s: build_payload_node(s, ctx))
    g.add_node("push", lambda s: push_node(s, ctx))
    g.add_node("record", lambda s: record_node(s, ctx))

    g.set_entry_point("resolve")
    g.add_edge("resolve", "build_payload")
    g.add_edge("build_payload", "push")
    g.add_edge("push", "record")
    g.add_edge("record", END)

    return g.compile()

def publish_item(app, channel: Channel, entity: Entity) -> PublishState:
    """Run one (channel, entity) pair through the graph. Node errors propagate."""
    result = app.invoke(PublishState(channel=channel, entity=entity))
    # invoke() hands back the channel values, not the model
    return PublishState(**result) if isinstance(result, dict) else result
