from pipeline.state import PublishState
from pipeline.payloads import parse_payload

def push_node(state: PublishState, ctx) -> dict:
    payload = parse_payload(state.payload)
    if state.external_id:
        with ctx.limiter():
            ctx.connector.update(state.external_id, payload)
        return {"outcome": "updated"}

    with ctx.limiter():
        remote_id = ctx.connector.create(payload)
    return {"external_id": str(remote_id), "outcome": "created"}
