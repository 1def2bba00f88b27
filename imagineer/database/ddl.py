"""Raw PostgreSQL DDL for graph invariants that live in the database.

Shared by the alembic migration and by ``metadata.create_all`` (through
the DDL listeners in ``imagineer.database.models``).
"""

INVERSE_GUARD_FUNCTION = """
CREATE OR REPLACE FUNCTION prevent_inverse_relationship()
RETURNS TRIGGER AS $$
BEGIN
    -- Symmetric types: block the same type with swapped entities
    IF EXISTS (
        SELECT 1 FROM relationships r
        JOIN relationship_types rt ON rt.id = NEW.relationship_type_id
        WHERE rt.is_symmetric = true
        AND r.campaign_id = NEW.campaign_id
        AND r.source_entity_id = NEW.target_entity_id
        AND r.target_entity_id = NEW.source_entity_id
        AND r.relationship_type_id = NEW.relationship_type_id
        AND (TG_OP = 'INSERT' OR r.id != NEW.id)
    ) THEN
        RAISE EXCEPTION 'Symmetric inverse relationship already exists'
            USING ERRCODE = 'unique_violation';
    END IF;

    -- Asymmetric types: block a swapped edge whose type is this type's
    -- inverse, or whose inverse is this type
    IF EXISTS (
        SELECT 1 FROM relationships r
        JOIN relationship_types rt_new ON rt_new.id = NEW.relationship_type_id
        JOIN relationship_types rt_old ON rt_old.id = r.relationship_type_id
        WHERE rt_new.is_symmetric = false
        AND r.campaign_id = NEW.campaign_id
        AND r.source_entity_id = NEW.target_entity_id
        AND r.target_entity_id = NEW.source_entity_id
        AND (rt_old.name = rt_new.inverse_name OR rt_old.inverse_name = rt_new.name)
        AND (TG_OP = 'INSERT' OR r.id != NEW.id)
    ) THEN
        RAISE EXCEPTION 'Inverse relationship already exists'
            USING ERRCODE = 'unique_violation';
    END IF;

    RETURN NEW;
END;
$$ LANGUAGE plpgsql
"""

INVERSE_GUARD_TRIGGER = """
CREATE TRIGGER trg_prevent_inverse_relationship
    BEFORE INSERT OR UPDATE ON relationships
    FOR EACH ROW
    EXECUTE FUNCTION prevent_inverse_relationship()
"""

DROP_INVERSE_GUARD = """
DROP TRIGGER IF EXISTS trg_prevent_inverse_relationship ON relationships;
DROP FUNCTION IF EXISTS prevent_inverse_relationship()
"""

RELATIONSHIP_VIEW = """
CREATE OR REPLACE VIEW entity_relationships_view AS
SELECT
    r.id,
    r.campaign_id,
    r.source_entity_id AS from_entity_id,
    r.target_entity_id AS to_entity_id,
    r.relationship_type_id,
    rt.name AS relationship_type,
    rt.display_label,
    r.description,
    se.name AS from_entity_name,
    te.name AS to_entity_name,
    'forward' AS direction
FROM relationships r
JOIN relationship_types rt ON rt.id = r.relationship_type_id
JOIN entities se ON se.id = r.source_entity_id
JOIN entities te ON te.id = r.target_entity_id

UNION ALL

SELECT
    r.id,
    r.campaign_id,
    r.target_entity_id AS from_entity_id,
    r.source_entity_id AS to_entity_id,
    r.relationship_type_id,
    rt.inverse_name AS relationship_type,
    rt.inverse_display_label AS display_label,
    r.description,
    te.name AS from_entity_name,
    se.name AS to_entity_name,
    'inverse' AS direction
FROM relationships r
JOIN relationship_types rt ON rt.id = r.relationship_type_id
JOIN entities se ON se.id = r.source_entity_id
JOIN entities te ON te.id = r.target_entity_id
WHERE rt.is_symmetric = false
"""

DROP_RELATIONSHIP_VIEW = "DROP VIEW IF EXISTS entity_relationships_view"
