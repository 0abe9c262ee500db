from pipeline.state import PublishState

def record_node(state: PublishState, ctx) -> dict:
    # success only; failures are recorded by the processor (best effort)
    ctx.mappings.record_success(state.entity.id, state.channel.id, state.external_id)
    return {"outcome": state.outcome}
