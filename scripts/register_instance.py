import asyncio

from wa_checkpoints.core.config import settings
from wa_checkpoints.db import models  # noqa: F401
from wa_checkpoints.db.base import Base
from wa_checkpoints.db.models import InstanceStatus
from wa_checkpoints.db.session import AsyncSessionLocal, engine
from wa_checkpoints.services.instance_pool import get_flow_pool, register_instance, set_flow_pool

async def main():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    instance_name = input("Instance name: ").strip()
    instance_id = input("Evolution instance id: ").strip()
    max_conversations = int(input("Max conversations [50]: ").strip() or 50)
    flow_name = input(f"Flow [{settings.DEFAULT_FLOW_ID}]: ").strip() or settings.DEFAULT_FLOW_ID
    if not instance_name or not instance_id:
        print("Instance name and id are required.")
        return

    async with AsyncSessionLocal() as db:
        await register_instance(db, instance_name, instance_id, max_conversations, InstanceStatus.online)
        pool = await get_flow_pool(db, flow_name)
        await set_flow_pool(db, flow_name, pool + [instance_name])
        await db.commit()
        print(f"Instance {instance_name} registered in flow {flow_name}")

if __name__ == "__main__":
    asyncio.run(main())
