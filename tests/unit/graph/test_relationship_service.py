"""Tests for relationship writes through the inverse guard."""

import logging
from uuid import uuid4

import pytest

from imagineer.core.exceptions import RelationshipConflictError, ValidationError
from imagineer.services.graph.relationship_service import DEFAULT_RELATIONSHIP_TYPES


@pytest.fixture
def seeded(relationship_service, campaign_id):
    async def _seed():
        await relationship_service.seed_relationship_types(campaign_id)
        return relationship_service
    return _seed


@pytest.mark.asyncio
async def test_seeding_is_idempotent(relationship_service, campaign_id):
    first = await relationship_service.seed_relationship_types(campaign_id)
    second = await relationship_service.seed_relationship_types(campaign_id)

    assert first == len(DEFAULT_RELATIONSHIP_TYPES)
    assert second == 0


@pytest.mark.asyncio
async def test_seeding_log_record_carries_count(relationship_service, campaign_id, caplog):
    with caplog.at_level(logging.INFO, logger="imagineer.services.graph.relationship_service"):
        await relationship_service.seed_relationship_types(campaign_id)

    record = next(r for r in caplog.records if r.getMessage() == "Seeded relationship types")
    assert record.types_added == len(DEFAULT_RELATIONSHIP_TYPES)
    assert record.campaign_id == str(campaign_id)


@pytest.mark.asyncio
async def test_owns_then_owned_by_is_a_conflict(seeded, campaign_id):
    service = await seeded()
    sword, viktor = uuid4(), uuid4()

    edge, resolved = await service.add_relationship(campaign_id, viktor, sword, "owns")
    assert resolved.swapped is False
    assert (edge.source_entity_id, edge.target_entity_id) == (viktor, sword)

    with pytest.raises(RelationshipConflictError):
        await service.add_relationship(campaign_id, sword, viktor, "owned_by")

    assert len(await service.list_relationships(campaign_id)) == 1


@pytest.mark.asyncio
async def test_inverse_name_is_stored_in_canonical_direction(seeded, campaign_id):
    service = await seeded()
    sword, viktor = uuid4(), uuid4()

    edge, resolved = await service.add_relationship(campaign_id, sword, viktor, "owned_by")

    assert resolved.type.name == "owns"
    assert resolved.swapped is True
    assert (edge.source_entity_id, edge.target_entity_id) == (viktor, sword)


@pytest.mark.asyncio
async def test_symmetric_reverse_is_a_conflict(seeded, campaign_id):
    service = await seeded()
    a, b = uuid4(), uuid4()

    await service.add_relationship(campaign_id, a, b, "knows")

    with pytest.raises(RelationshipConflictError):
        await service.add_relationship(campaign_id, b, a, "knows")


@pytest.mark.asyncio
async def test_exact_duplicate_is_a_conflict(seeded, campaign_id):
    service = await seeded()
    a, b = uuid4(), uuid4()

    await service.add_relationship(campaign_id, a, b, "member_of")

    with pytest.raises(RelationshipConflictError):
        await service.add_relationship(campaign_id, a, b, "member_of")


@pytest.mark.asyncio
async def test_unknown_type_and_self_loop_are_rejected(seeded, campaign_id):
    service = await seeded()
    a, b = uuid4(), uuid4()

    with pytest.raises(ValidationError, match="Unknown relationship type"):
        await service.add_relationship(campaign_id, a, b, "haunts")

    with pytest.raises(ValidationError, match="itself"):
        await service.add_relationship(campaign_id, a, a, "knows")


@pytest.mark.asyncio
async def test_create_type_defaults_inverse_and_rejects_duplicates(seeded, campaign_id):
    service = await seeded()

    created = await service.create_type(campaign_id, "Haunts")

    assert created.name == "haunts"
    assert created.inverse_name == "haunts_of"
    assert created.display_label == "Haunts"
    assert (await service.resolve(campaign_id, "haunts")).type.id == created.id

    with pytest.raises(ValidationError, match="already exists"):
        await service.create_type(campaign_id, "haunts")


@pytest.mark.asyncio
async def test_views_show_both_directions(seeded, campaign_id):
    service = await seeded()
    service.session.get_bind.return_value.dialect.name = "sqlite"
    viktor, sword = uuid4(), uuid4()
    await service.add_relationship(campaign_id, viktor, sword, "owns")

    sword_views = await service.list_relationship_views(campaign_id, entity_id=sword)

    assert len(sword_views) == 1
    assert sword_views[0].relationship_type == "owned_by"
    assert sword_views[0].to_entity_id == viktor
