"""Gateway instance selection and the per-instance load counter."""

import logging
from sqlalchemy import case, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from wa_checkpoints.core.clock import utcnow
from wa_checkpoints.db.models import FlowConfig, GatewayInstance, InstanceStatus

logger = logging.getLogger(__name__)


async def get_flow_pool(db: AsyncSession, flow_id: str) -> list[str]:
    q = await db.execute(select(FlowConfig.instance_pool).where(FlowConfig.flow_name == flow_id))
    return list(q.scalar_one_or_none() or [])


async def pick_instance(db: AsyncSession, flow_id: str) -> GatewayInstance | None:
    """
    Least-loaded online instance of the flow's pool that still has room.

    Returns None when the flow is unknown or every eligible instance is at
    capacity; callers treat that as capacity exhaustion.
    """
    pool = await get_flow_pool(db, flow_id)
    if not pool:
        logger.warning(f"Flow {flow_id} has no instance pool configured")
        return None

    q = await db.execute(
        select(GatewayInstance)
        .where(
            GatewayInstance.status == InstanceStatus.online,
            GatewayInstance.instance_name.in_(pool),
            GatewayInstance.current_conversations < GatewayInstance.max_conversations,
        )
        .order_by(GatewayInstance.current_conversations.asc(), GatewayInstance.id.asc())
        .limit(1)
    )
    return q.scalar_one_or_none()


async def adjust_counter(db: AsyncSession, instance_name: str, delta: int) -> bool:
    """
    Add delta to the instance load in a single UPDATE.

    Increments only apply while the result stays within max_conversations.
    Returns False when no row was changed.
    """
    new_value = GatewayInstance.current_conversations + delta
    stmt = update(GatewayInstance).where(GatewayInstance.instance_name == instance_name)
    if delta > 0:
        stmt = stmt.where(new_value <= GatewayInstance.max_conversations)
    res = await db.execute(
        stmt
        .values(current_conversations=case((new_value < 0, 0), else_=new_value), last_ping=utcnow())
        .execution_options(synchronize_session=False)
    )
    return res.rowcount == 1


async def get_instance(db: AsyncSession, instance_name: str) -> GatewayInstance | None:
    # the load counter is written by UPDATE statements, never through the ORM object
    q = await db.execute(
        select(GatewayInstance).where(GatewayInstance.instance_name == instance_name),
        execution_options={"populate_existing": True},
    )
    return q.scalar_one_or_none()


async def list_instances(db: AsyncSession) -> list[GatewayInstance]:
    q = await db.execute(
        select(GatewayInstance).order_by(GatewayInstance.current_conversations.desc(), GatewayInstance.id),
        execution_options={"populate_existing": True},
    )
    return list(q.scalars().all())


async def register_instance(
    db: AsyncSession,
    instance_name: str,
    instance_id: str,
    max_conversations: int = 50,
    status: InstanceStatus = InstanceStatus.online,
) -> GatewayInstance:
    """Create or update a gateway instance row. The load counter is left untouched on update."""
    instance = await get_instance(db, instance_name)
    if instance is None:
        instance = GatewayInstance(instance_name=instance_name, current_conversations=0)
        db.add(instance)
    instance.instance_id = instance_id
    instance.max_conversations = max_conversations
    instance.status = status
    await db.flush()
    return instance


async def set_flow_pool(db: AsyncSession, flow_name: str, pool: list[str]) -> FlowConfig:
    q = await db.execute(select(FlowConfig).where(FlowConfig.flow_name == flow_name))
    flow = q.scalar_one_or_none()
    if flow is None:
        flow = FlowConfig(flow_name=flow_name)
        db.add(flow)
    flow.instance_pool = list(dict.fromkeys(pool))
    await db.flush()
    return flow
