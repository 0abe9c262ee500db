import logging
from pipeline.state import PublishState

logger = logging.getLogger(__name__)

def resolve_node(state: PublishState, ctx) -> dict:
    """Decide create vs update for one (entity, channel) pair.

    A stored external id is authoritative and skips the remote lookup. Otherwise
    the natural key is looked up remotely; a hit is persisted right away so a
    later publish failure doesn't lose it.
    """
    entity, channel = state.entity, state.channel
    mapping = entity.mapping_for(channel.id)
    if mapping and mapping.external_id:
        return {"external_id": mapping.external_id, "adopted": False}

    with ctx.limiter():
        remote_id = ctx.connector.find(entity.natural_key)
    if not remote_id:
        return {"external_id": None, "adopted": False}

    logger.info(f"Adopting existing {channel.type} id {remote_id} for {entity.natural_key} on {channel.name}")
    ctx.mappings.adopt_external_id(entity.id, channel.id, remote_id)
    return {"external_id": remote_id, "adopted": True}
