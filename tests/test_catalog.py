"""Каталог групп MT5 и шаблоны ставок."""

from decimal import Decimal

import pytest

from portal.errors import Conflict, NotFound, ValidationFailed
from portal.services.broker.catalog import generate_group_name


class TestGroupNames:
    def test_bbook_prefix_is_dropped(self):
        assert generate_group_name("real\\Bbook\\Pro\\USD") == "Pro USD"

    def test_demo_groups_are_labelled(self):
        assert generate_group_name("demo\\std") == "Demo Standard"

    def test_empty_group_gets_positional_name(self):
        assert generate_group_name("", index=4) == "Group 5"


class TestCatalog:
    async def test_sync_replaces_groups(self, services, broker, session_maker):
        broker.groups = ["real\\Bbook\\Pro\\USD", "real\\Bbook\\Pro\\USD", "real/std"]
        async with session_maker() as session:
            assert await services.catalog.sync_from_broker(session) == 2
        broker.groups = ["real/ecn"]
        async with session_maker() as session:
            await services.catalog.sync_from_broker(session)
            groups = await services.catalog.list_groups(session)
        assert [(g.group_id, g.name) for g in groups] == [("real/ecn", "ECN")]

    async def test_structure_lifecycle(self, services, session_maker):
        async with session_maker() as session:
            structure = await services.catalog.create_structure(
                session, group_id="standard", structure_name="Base",
                usd_per_lot="5", spread_share_percentage="20",
            )
            with pytest.raises(Conflict):
                await services.catalog.create_structure(
                    session, group_id="standard", structure_name="Base",
                    usd_per_lot="6", spread_share_percentage="0",
                )
            listed = await services.catalog.list_structures(session, "standard")
            assert [s.id for s in listed] == [structure.id]
            assert listed[0].usd_per_lot == Decimal("5")

            await services.catalog.delete_structure(session, structure.id)
            with pytest.raises(NotFound):
                await services.catalog.delete_structure(session, structure.id)

    async def test_structure_validation(self, services, session_maker):
        async with session_maker() as session:
            with pytest.raises(ValidationFailed):
                await services.catalog.create_structure(
                    session, group_id="standard", structure_name=" ",
                    usd_per_lot="5", spread_share_percentage="0",
                )
            with pytest.raises(ValidationFailed):
                await services.catalog.create_structure(
                    session, group_id="standard", structure_name="Neg",
                    usd_per_lot="-1", spread_share_percentage="0",
                )
