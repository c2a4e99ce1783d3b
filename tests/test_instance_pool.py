from sqlalchemy import select

from wa_checkpoints.db.models import FlowConfig, GatewayInstance, InstanceStatus
from wa_checkpoints.services import instance_pool


async def load(session_factory, name):
    async with session_factory() as session:
        q = await session.execute(select(GatewayInstance).where(GatewayInstance.instance_name == name))
        return q.scalar_one()


async def set_load(session_factory, name, value):
    async with session_factory() as session:
        inst = await instance_pool.get_instance(session, name)
        inst.current_conversations = value
        await session.commit()


async def test_picks_least_loaded_instance(db, session_factory, seed_pool):
    await seed_pool(
        ("inst-A", 5, InstanceStatus.online),
        ("inst-B", 5, InstanceStatus.online),
        ("inst-C", 5, InstanceStatus.online),
    )
    await set_load(session_factory, "inst-A", 3)
    await set_load(session_factory, "inst-B", 1)
    await set_load(session_factory, "inst-C", 2)

    picked = await instance_pool.pick_instance(db, "fluxo_principal")
    assert picked.instance_name == "inst-B"


async def test_ties_follow_store_order(db, seed_pool):
    await seed_pool(("inst-A", 5, InstanceStatus.online), ("inst-B", 5, InstanceStatus.online))
    picked = await instance_pool.pick_instance(db, "fluxo_principal")
    assert picked.instance_name == "inst-A"


async def test_skips_full_offline_and_foreign_instances(db, session_factory, seed_pool):
    await seed_pool(
        ("full", 2, InstanceStatus.online),
        ("offline", 5, InstanceStatus.offline),
        ("connecting", 5, InstanceStatus.connecting),
        ("eligible", 5, InstanceStatus.online),
    )
    # online and idle, but not in this flow's pool
    await seed_pool(("other-flow", 5, InstanceStatus.online), flow="outro_fluxo")
    await set_load(session_factory, "full", 2)
    await set_load(session_factory, "eligible", 4)

    picked = await instance_pool.pick_instance(db, "fluxo_principal")
    assert picked.instance_name == "eligible"


async def test_returns_none_when_pool_is_exhausted(db, session_factory, seed_pool):
    await seed_pool(("inst-A", 1, InstanceStatus.online))
    await set_load(session_factory, "inst-A", 1)
    assert await instance_pool.pick_instance(db, "fluxo_principal") is None


async def test_returns_none_for_unknown_flow(db, one_instance):
    assert await instance_pool.pick_instance(db, "does_not_exist") is None


async def test_adjust_counter_adds_and_refreshes_ping(db, session_factory, one_instance):
    await instance_pool.adjust_counter(db, "inst-A", 1)
    await instance_pool.adjust_counter(db, "inst-A", 1)
    await db.commit()

    inst = await load(session_factory, "inst-A")
    assert inst.current_conversations == 2
    assert inst.last_ping is not None


async def test_adjust_counter_never_goes_below_zero(db, session_factory, one_instance):
    await instance_pool.adjust_counter(db, "inst-A", 1)
    await instance_pool.adjust_counter(db, "inst-A", -1)
    await instance_pool.adjust_counter(db, "inst-A", -1)
    await instance_pool.adjust_counter(db, "inst-A", -5)
    await db.commit()

    inst = await load(session_factory, "inst-A")
    assert inst.current_conversations == 0


async def test_register_instance_updates_without_touching_load(db, session_factory, one_instance):
    await set_load(session_factory, "inst-A", 3)
    await instance_pool.register_instance(db, "inst-A", "new-key", 10, InstanceStatus.offline)
    await db.commit()

    inst = await load(session_factory, "inst-A")
    assert inst.instance_id == "new-key"
    assert inst.max_conversations == 10
    assert inst.status == InstanceStatus.offline
    assert inst.current_conversations == 3


async def test_set_flow_pool_replaces_and_dedupes(db, session_factory, one_instance):
    await instance_pool.set_flow_pool(db, "fluxo_principal", ["inst-A", "inst-B", "inst-A"])
    await db.commit()

    async with session_factory() as session:
        flow = (await session.execute(select(FlowConfig))).scalar_one()
    assert flow.instance_pool == ["inst-A", "inst-B"]


async def test_list_instances_orders_by_load(db, session_factory, seed_pool):
    await seed_pool(("inst-A", 5, InstanceStatus.online), ("inst-B", 5, InstanceStatus.online))
    await set_load(session_factory, "inst-B", 2)
    names = [i.instance_name for i in await instance_pool.list_instances(db)]
    assert names == ["inst-B", "inst-A"]


async def test_adjust_counter_refuses_to_exceed_capacity(db, session_factory, seed_pool):
    await seed_pool(("inst-A", 2, InstanceStatus.online))
    assert await instance_pool.adjust_counter(db, "inst-A", 2)
    assert not await instance_pool.adjust_counter(db, "inst-A", 1)
    # releasing a slot is never capped
    assert await instance_pool.adjust_counter(db, "inst-A", -1)
    await db.commit()

    inst = await load(session_factory, "inst-A")
    assert inst.current_conversations == 1
