import math
import pytest
from pagetree.core.errors import CrossTenantViolation, Forbidden, InvalidState, NotFound, PropertyInUse, TypeMismatch
from pagetree.models.database_property import DatabaseProperty, RowValue
from pagetree.models.workspace import WorkspaceRole
from pagetree.services import page_service, schema_service, workspace_service

OPTIONS = {"options": [{"id": "a", "name": "Alpha"}, {"id": "b", "name": "Beta"}]}

@pytest.fixture
def database(db, owner, workspace):
    return schema_service.create_database(db, owner.id, workspace.id, title="Tâches")

@pytest.fixture
def row(db, owner, database):
    return schema_service.create_row(db, owner.id, database.id, title="Première")

def define(db, owner, database, name, prop_type, config=None):
    return schema_service.define_property(db, owner.id, database.id, name, prop_type, config)

def values_of(db, owner, row):
    return schema_service.get_row(db, owner.id, row["id"])["values"]

# ========== SCHÉMA ==========

def test_database_starts_with_title_property(db, owner, database):
    page, properties, rows = schema_service.get_database(db, owner.id, database.id)
    assert page.is_database
    assert [(p.name, p.type, p.order) for p in properties] == [("Title", "text", 0)]
    assert rows == []

def test_properties_are_appended(db, owner, database):
    first = define(db, owner, database, "Prix", "number")
    second = define(db, owner, database, "Fait", "checkbox")
    assert (first.order, second.order) == (1, 2)

def test_get_database_on_plain_page_is_not_found(db, owner, workspace):
    page = page_service.create_page(db, owner.id, workspace.id, title="Pas une base")
    with pytest.raises(NotFound):
        schema_service.get_database(db, owner.id, page.id)

def test_select_needs_unique_option_ids(db, owner, database):
    with pytest.raises(TypeMismatch):
        define(db, owner, database, "Statut", "select", {"options": [{"id": "a", "name": "A"}, {"id": "a", "name": "B"}]})
    with pytest.raises(TypeMismatch):
        define(db, owner, database, "Statut", "select", {})

# ========== VALEURS ==========

def test_create_row_with_values(db, owner, database):
    price = define(db, owner, database, "Prix", "number")
    row = schema_service.create_row(db, owner.id, database.id, title="Ligne", values={price.id: 12})
    assert row["title"] == "Ligne"
    assert row["values"][price.id] == 12

def test_create_row_with_bad_value_creates_nothing(db, owner, database):
    price = define(db, owner, database, "Prix", "number")
    with pytest.raises(TypeMismatch):
        schema_service.create_row(db, owner.id, database.id, title="Ligne", values={price.id: "douze"})
    _, _, rows = schema_service.get_database(db, owner.id, database.id)
    assert rows == []

def test_checkbox_mismatch_keeps_previous_value(db, owner, database, row):
    done = define(db, owner, database, "Fait", "checkbox")
    schema_service.set_row_value(db, owner.id, row["id"], done.id, True)

    with pytest.raises(TypeMismatch) as exc:
        schema_service.set_row_value(db, owner.id, row["id"], done.id, "yes")
    assert exc.value.field == "value"
    assert values_of(db, owner, row)[done.id] is True

def test_none_clears_value(db, owner, database, row):
    done = define(db, owner, database, "Fait", "checkbox")
    schema_service.set_row_value(db, owner.id, row["id"], done.id, False)
    schema_service.set_row_value(db, owner.id, row["id"], done.id, None)
    assert values_of(db, owner, row)[done.id] is None
    assert db.query(RowValue).count() == 0

@pytest.mark.parametrize("prop_type, good, bad", [
    ("text", "bonjour", 3),
    ("number", 4.5, True),
    ("number", -2, math.inf),
    ("date", "2024-05-01", "pas une date"),
    ("date", "2024-05-01T10:30:00", 20240501),
    ("url", "https://example.com/doc", "pas une url"),
    ("email", "alice@example.com", "alice@"),
    ("phone", "+33 6 12 34 56 78", "appelle-moi"),
    ("files", [{"name": "cv.pdf", "url": "https://files.example.com/cv.pdf"}], [{"name": "cv.pdf"}]),
])
def test_value_shapes(db, owner, database, row, prop_type, good, bad):
    prop = define(db, owner, database, "Champ", prop_type)
    schema_service.set_row_value(db, owner.id, row["id"], prop.id, good)
    with pytest.raises(TypeMismatch):
        schema_service.set_row_value(db, owner.id, row["id"], prop.id, bad)
    assert values_of(db, owner, row)[prop.id] == good

def test_select_values(db, owner, database, row):
    status = define(db, owner, database, "Statut", "select", OPTIONS)
    tags = define(db, owner, database, "Tags", "multi_select", OPTIONS)
    schema_service.set_row_value(db, owner.id, row["id"], status.id, "a")
    schema_service.set_row_value(db, owner.id, row["id"], tags.id, ["a", "b"])

    with pytest.raises(TypeMismatch):
        schema_service.set_row_value(db, owner.id, row["id"], status.id, "z")
    with pytest.raises(TypeMismatch):
        schema_service.set_row_value(db, owner.id, row["id"], tags.id, ["a", "a"])

def test_person_must_be_member(db, owner, outsider, database, row):
    person = define(db, owner, database, "Responsable", "person")
    schema_service.set_row_value(db, owner.id, row["id"], person.id, owner.id)
    with pytest.raises(TypeMismatch):
        schema_service.set_row_value(db, owner.id, row["id"], person.id, outsider.id)

def test_viewer_cannot_write_values(db, owner, database, row, make_user):
    viewer = make_user("viewer")
    workspace_service.add_member(db, owner.id, database.workspace_id, viewer.email, WorkspaceRole.VIEWER)
    done = define(db, owner, database, "Fait", "checkbox")
    with pytest.raises(Forbidden):
        schema_service.set_row_value(db, viewer.id, row["id"], done.id, True)
    assert schema_service.get_row(db, viewer.id, row["id"])["title"] == "Première"

# ========== RELATIONS / ROLLUPS ==========

@pytest.fixture
def projects(db, owner, workspace, database):
    """Base Projets reliée à la base Tâches (avec des points par tâche)"""
    projects = schema_service.create_database(db, owner.id, workspace.id, title="Projets")
    points = define(db, owner, database, "Points", "number")
    tasks = []
    for title, value in (("T1", 3), ("T2", 5), ("T3", 100)):
        tasks.append(schema_service.create_row(db, owner.id, database.id, title=title, values={points.id: value}))
    relation = define(db, owner, projects, "Tâches", "relation", {"database_id": database.id})
    project = schema_service.create_row(db, owner.id, projects.id, title="P",
                                        values={relation.id: [tasks[0]["id"], tasks[1]["id"]]})
    return projects, points, relation, project

def test_relation_accepts_only_target_rows(db, owner, projects, row):
    projects_db, points, relation, project = projects
    with pytest.raises(TypeMismatch):
        schema_service.set_row_value(db, owner.id, project["id"], relation.id, [project["id"]])
    with pytest.raises(TypeMismatch):
        schema_service.set_row_value(db, owner.id, project["id"], relation.id, "pas une liste")
    # doublons dédoublonnés
    schema_service.set_row_value(db, owner.id, project["id"], relation.id, [row["id"], row["id"]])
    assert values_of(db, owner, project)[relation.id] == [row["id"]]

def test_relation_to_other_workspace_rejected(db, owner, database):
    elsewhere, _ = workspace_service.create_workspace(db, owner.id, "Ailleurs")
    foreign = schema_service.create_database(db, owner.id, elsewhere.id, title="Étrangère")
    with pytest.raises(CrossTenantViolation):
        define(db, owner, database, "Lien", "relation", {"database_id": foreign.id})

@pytest.mark.parametrize("function, expected", [("count", 2), ("sum", 8), ("average", 4.0)])
def test_rollup(db, owner, projects, function, expected):
    projects_db, points, relation, project = projects
    config = {"relation_property_id": relation.id, "function": function}
    if function != "count":
        config["target_property_id"] = points.id
    rollup = define(db, owner, projects_db, "Total", "rollup", config)

    assert values_of(db, owner, project)[rollup.id] == expected
    assert schema_service.evaluate_derived(db, owner.id, project["id"]) == {rollup.id: expected}

def test_rollup_needs_target_from_related_database(db, owner, database, projects):
    projects_db, points, relation, project = projects
    with pytest.raises(TypeMismatch):
        define(db, owner, projects_db, "Total", "rollup", {"relation_property_id": relation.id, "function": "sum"})
    title = db.query(DatabaseProperty).filter(DatabaseProperty.page_id == projects_db.id,
                                               DatabaseProperty.name == "Title").one()
    with pytest.raises(TypeMismatch):
        define(db, owner, projects_db, "Total", "rollup",
               {"relation_property_id": relation.id, "function": "sum", "target_property_id": title.id})

def test_rollup_blocks_relation_type_change(db, owner, projects):
    projects_db, points, relation, project = projects
    rollup = define(db, owner, projects_db, "Nb", "rollup", {"relation_property_id": relation.id, "function": "count"})
    with pytest.raises(PropertyInUse) as exc:
        schema_service.update_property(db, owner.id, relation.id, prop_type="text")
    assert exc.value.dependents == [rollup.id]

# ========== FORMULES ==========

@pytest.fixture
def priced(db, owner, database, row):
    price = define(db, owner, database, "Prix", "number")
    qty = define(db, owner, database, "Qté", "number")
    schema_service.set_row_value(db, owner.id, row["id"], price.id, 2.5)
    schema_service.set_row_value(db, owner.id, row["id"], qty.id, 4)
    return price, qty

def test_formula_is_computed(db, owner, database, row, priced):
    total = define(db, owner, database, "Total", "formula", {"expression": 'prop("Prix") * prop("Qté")'})
    assert values_of(db, owner, row)[total.id] == 10.0

def test_formula_is_read_only(db, owner, database, row, priced):
    total = define(db, owner, database, "Total", "formula", {"expression": 'prop("Prix") * 2'})
    with pytest.raises(TypeMismatch):
        schema_service.set_row_value(db, owner.id, row["id"], total.id, 3)

def test_formula_errors_yield_null(db, owner, database, row, priced):
    broken = define(db, owner, database, "Cassé", "formula", {"expression": 'prop("Prix") / 0'})
    assert values_of(db, owner, row)[broken.id] is None

def test_formula_unknown_property_rejected(db, owner, database):
    with pytest.raises(TypeMismatch):
        define(db, owner, database, "Total", "formula", {"expression": 'prop("Inconnu") + 1'})
    with pytest.raises(TypeMismatch):
        define(db, owner, database, "Total", "formula", {"expression": "1 +"})

def test_formula_reads_select_option_names(db, owner, database, row):
    status = define(db, owner, database, "Statut", "select", OPTIONS)
    schema_service.set_row_value(db, owner.id, row["id"], status.id, "b")
    label = define(db, owner, database, "Label", "formula", {"expression": 'concat("s:", prop("Statut"))'})
    assert values_of(db, owner, row)[label.id] == "s:Beta"

def test_formula_self_dependency_rejected(db, owner, database):
    first = define(db, owner, database, "A", "formula", {"expression": "1"})
    define(db, owner, database, "B", "formula", {"expression": 'prop("A") + 1'})
    with pytest.raises(InvalidState):
        schema_service.update_property(db, owner.id, first.id, config={"expression": 'prop("B") * 2'})
    with pytest.raises(InvalidState):
        schema_service.update_property(db, owner.id, first.id, config={"expression": 'prop("A")'})

# ========== ÉVOLUTION DU SCHÉMA ==========

def test_rename_referenced_property_fails(db, owner, database, priced):
    price, qty = priced
    total = define(db, owner, database, "Total", "formula", {"expression": 'prop("Prix") * prop("Qté")'})
    with pytest.raises(PropertyInUse) as exc:
        schema_service.update_property(db, owner.id, price.id, name="Tarif")
    assert exc.value.dependents == [total.id]
    # renommer une propriété non référencée passe
    assert schema_service.update_property(db, owner.id, total.id, name="Montant").name == "Montant"

def test_type_change_drops_values(db, owner, database, row, priced):
    price, qty = priced
    schema_service.update_property(db, owner.id, price.id, prop_type="text")
    assert values_of(db, owner, row)[price.id] is None
    assert values_of(db, owner, row)[qty.id] == 4

def test_shrinking_options_prunes_values(db, owner, database, row):
    status = define(db, owner, database, "Statut", "select", OPTIONS)
    tags = define(db, owner, database, "Tags", "multi_select", OPTIONS)
    schema_service.set_row_value(db, owner.id, row["id"], status.id, "a")
    schema_service.set_row_value(db, owner.id, row["id"], tags.id, ["a", "b"])

    only_b = {"options": [{"id": "b", "name": "Beta"}]}
    schema_service.update_property(db, owner.id, status.id, config=only_b)
    schema_service.update_property(db, owner.id, tags.id, config=only_b)

    values = values_of(db, owner, row)
    assert values[status.id] is None
    assert values[tags.id] == ["b"]

def test_delete_property_in_use(db, owner, database, row, priced):
    price, qty = priced
    total = define(db, owner, database, "Total", "formula", {"expression": 'prop("Prix") * prop("Qté")'})
    double = define(db, owner, database, "Double", "formula", {"expression": 'prop("Total") * 2'})

    with pytest.raises(PropertyInUse) as exc:
        schema_service.delete_property(db, owner.id, price.id)
    assert exc.value.dependents == [total.id]

    deleted = schema_service.delete_property(db, owner.id, price.id, cascade=True)
    assert sorted(deleted) == sorted([price.id, total.id, double.id])
    _, properties, _ = schema_service.get_database(db, owner.id, database.id)
    assert [p.name for p in properties] == ["Title", "Qté"]
    assert db.query(RowValue).filter(RowValue.property_id == price.id).count() == 0
