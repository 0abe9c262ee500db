from pipeline.state import PublishState
from pipeline.payloads import build_payload

def build_payload_node(state: PublishState, ctx) -> dict:
    payload = build_payload(state.channel.type, state.entity)
    # keep channel_type so push can rebuild the typed model
    return {"payload": payload.model_dump()}
