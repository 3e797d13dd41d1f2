"""
Moteur de schéma des bases de données.

Une base est une page ``is_database``; ses lignes sont ses pages enfants.
Ce module possède les propriétés et les valeurs de lignes, et ne touche
jamais aux champs structurels des pages (parent, ordre, corbeille).
"""

import logging
import math
import re
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Set, Tuple
from dateutil.parser import isoparse
from pydantic import AnyUrl, BaseModel, ConfigDict, EmailStr, TypeAdapter, ValidationError
from sqlalchemy import func
from sqlalchemy.orm import Session
from pagetree.core.database import atomic
from pagetree.core.errors import NotFound, CrossTenantViolation, InvalidState, TypeMismatch, PropertyInUse
from pagetree.models.database_property import DatabaseProperty, RowValue, PropertyType, DERIVED_TYPES
from pagetree.models.page import Page
from pagetree.models.workspace import WorkspaceMember, WorkspaceRole
from pagetree.services.event_service import publish_event
from pagetree.services.formula import FormulaError, parse_formula
from pagetree.services.page_service import insert_page
from pagetree.services.tree_service import sibling_sort_key
from pagetree.services.workspace_service import require_role

logger = logging.getLogger(__name__)


# ========== FORMES DE CONFIG ==========

class SelectOption(BaseModel):
    id: str
    name: str
    color: Optional[str] = "default"


class SelectConfig(BaseModel):
    options: List[SelectOption]


class RelationConfig(BaseModel):
    database_id: int


class FormulaConfig(BaseModel):
    expression: str


class RollupConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    relation_property_id: int
    function: Literal["count", "sum", "average"]
    target_property_id: Optional[int] = None


class FileRef(BaseModel):
    name: str
    url: AnyUrl


_url_adapter = TypeAdapter(AnyUrl)
_email_adapter = TypeAdapter(EmailStr)
_files_adapter = TypeAdapter(List[FileRef])
_PHONE_RE = re.compile(r"^\+?[0-9][0-9 ().\-]{2,31}$")

CONFIG_MODELS = {
    PropertyType.SELECT.value: SelectConfig,
    PropertyType.MULTI_SELECT.value: SelectConfig,
    PropertyType.RELATION.value: RelationConfig,
    PropertyType.FORMULA.value: FormulaConfig,
    PropertyType.ROLLUP.value: RollupConfig,
}


def _parse_shape(model, data: Any, field: str):
    try:
        return model.model_validate(data)
    except ValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(part) for part in first["loc"])
        raise TypeMismatch(f"Invalid {field}: {first['msg']}", field=f"{field}.{location}" if location else field)


# ========== ACCÈS ==========

def get_database_page(db: Session, database_id: int) -> Page:
    database = db.query(Page).filter(
        Page.id == database_id,
        Page.is_database == True,
        Page.is_deleted == False
    ).first()
    if not database:
        raise NotFound("Database not found", field="database_id")
    return database


def get_property_or_404(db: Session, property_id: int) -> DatabaseProperty:
    prop = db.query(DatabaseProperty).filter(DatabaseProperty.id == property_id).first()
    if not prop:
        raise NotFound("Property not found", field="property_id")
    return prop


def _get_row(db: Session, row_id: int) -> Tuple[Page, Page]:
    row = db.query(Page).filter(Page.id == row_id, Page.is_deleted == False).first()
    if not row or row.parent_id is None:
        raise NotFound("Row not found", field="row_id")
    database = db.query(Page).filter(Page.id == row.parent_id, Page.is_database == True).first()
    if not database:
        raise NotFound("Row not found", field="row_id")
    return row, database


def _properties_of(db: Session, database_id: int) -> List[DatabaseProperty]:
    return sorted(
        db.query(DatabaseProperty).filter(DatabaseProperty.page_id == database_id).all(),
        key=sibling_sort_key
    )


def _resolve_name(properties: List[DatabaseProperty], name: str) -> Optional[DatabaseProperty]:
    # noms non uniques: le premier dans l'ordre gagne
    return next((p for p in properties if p.name == name), None)


def _formula_references(prop: DatabaseProperty) -> Set[str]:
    try:
        return parse_formula((prop.config or {}).get("expression", "")).references
    except FormulaError:
        return set()


# ========== VALIDATION ==========

def _validate_config(db: Session, database: Page, prop_type: str, config: Optional[dict],
                     siblings: List[DatabaseProperty]) -> dict:
    config = dict(config or {})
    model = CONFIG_MODELS.get(prop_type)
    if model is None:
        return config
    parsed = _parse_shape(model, config, "config")

    if prop_type in (PropertyType.SELECT.value, PropertyType.MULTI_SELECT.value):
        ids = [option.id for option in parsed.options]
        if len(ids) != len(set(ids)):
            raise TypeMismatch("Select option ids must be unique", field="config.options")
        return parsed.model_dump()

    if prop_type == PropertyType.RELATION.value:
        target = db.query(Page).filter(Page.id == parsed.database_id, Page.is_deleted == False).first()
        if not target or not target.is_database:
            raise NotFound("Relation target database not found", field="config.database_id")
        if target.workspace_id != database.workspace_id:
            raise CrossTenantViolation("Relation target belongs to another workspace", field="config.database_id")
        return {**config, "database_id": parsed.database_id}

    if prop_type == PropertyType.FORMULA.value:
        try:
            formula = parse_formula(parsed.expression)
        except FormulaError as e:
            raise TypeMismatch(f"Invalid formula: {e}", field="config.expression")
        known = {p.name for p in siblings}
        missing = sorted(formula.references - known)
        if missing:
            raise TypeMismatch(f"Formula references unknown properties: {', '.join(missing)}", field="config.expression")
        return {**config, "expression": parsed.expression}

    # rollup
    relation = next((p for p in siblings if p.id == parsed.relation_property_id), None)
    if relation is None or relation.type != PropertyType.RELATION.value:
        raise TypeMismatch("Rollup needs a relation property of the same database", field="config.relation_property_id")
    if parsed.function != "count":
        if parsed.target_property_id is None:
            raise TypeMismatch(f"Rollup '{parsed.function}' needs a target property", field="config.target_property_id")
        target = db.query(DatabaseProperty).filter(DatabaseProperty.id == parsed.target_property_id).first()
        if not target or target.page_id != relation.config.get("database_id"):
            raise TypeMismatch("Rollup target must belong to the related database", field="config.target_property_id")
    return parsed.model_dump()


def _validate_value(db: Session, prop: DatabaseProperty, database: Page, value: Any) -> Any:
    """Retourne la valeur normalisée ou lève TypeMismatch; None efface"""
    if value is None:
        return None

    prop_type = prop.type
    field = "value"

    def mismatch(expected: str):
        return TypeMismatch(f"Property '{prop.name}' ({prop_type}) expects {expected}", field=field)

    if prop_type in DERIVED_TYPES:
        raise TypeMismatch(f"Property '{prop.name}' is computed and cannot be set", field=field)

    if prop_type == PropertyType.TEXT.value:
        if not isinstance(value, str):
            raise mismatch("text")
        return value

    if prop_type == PropertyType.NUMBER.value:
        if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
            raise mismatch("a finite number")
        return value

    if prop_type == PropertyType.CHECKBOX.value:
        if not isinstance(value, bool):
            raise mismatch("a boolean")
        return value

    if prop_type in (PropertyType.SELECT.value, PropertyType.MULTI_SELECT.value):
        option_ids = {option["id"] for option in (prop.config or {}).get("options", [])}
        if prop_type == PropertyType.SELECT.value:
            if not isinstance(value, str) or value not in option_ids:
                raise mismatch("one of its option ids")
            return value
        if not isinstance(value, list) or not all(isinstance(v, str) and v in option_ids for v in value):
            raise mismatch("a list of its option ids")
        if len(value) != len(set(value)):
            raise mismatch("distinct option ids")
        return value

    if prop_type == PropertyType.DATE.value:
        if not isinstance(value, str):
            raise mismatch("an ISO-8601 date")
        try:
            isoparse(value)
        except (ValueError, OverflowError):
            raise mismatch("an ISO-8601 date")
        return value

    if prop_type == PropertyType.PERSON.value:
        if isinstance(value, bool) or not isinstance(value, int):
            raise mismatch("a user id")
        member = db.query(WorkspaceMember).filter(
            WorkspaceMember.workspace_id == database.workspace_id,
            WorkspaceMember.user_id == value
        ).first()
        if not member:
            raise mismatch("a member of the workspace")
        return value

    if prop_type == PropertyType.URL.value:
        if not isinstance(value, str):
            raise mismatch("a URL")
        try:
            _url_adapter.validate_python(value)
        except ValidationError:
            raise mismatch("a URL")
        return value

    if prop_type == PropertyType.EMAIL.value:
        if not isinstance(value, str):
            raise mismatch("an email address")
        try:
            return _email_adapter.validate_python(value)
        except ValidationError:
            raise mismatch("an email address")

    if prop_type == PropertyType.PHONE.value:
        if not isinstance(value, str) or not _PHONE_RE.match(value):
            raise mismatch("a phone number")
        return value

    if prop_type == PropertyType.FILES.value:
        try:
            files = _files_adapter.validate_python(value)
        except ValidationError:
            raise mismatch("a list of {name, url} files")
        return [{"name": f.name, "url": str(f.url)} for f in files]

    if prop_type == PropertyType.RELATION.value:
        if not isinstance(value, list) or not all(isinstance(v, int) and not isinstance(v, bool) for v in value):
            raise mismatch("a list of row ids")
        target_database_id = (prop.config or {}).get("database_id")
        row_ids = list(dict.fromkeys(value))
        if row_ids:
            found = {
                row_id for (row_id,) in db.query(Page.id).filter(
                    Page.id.in_(row_ids),
                    Page.parent_id == target_database_id,
                    Page.is_deleted == False
                ).all()
            }
            if found != set(row_ids):
                raise mismatch(f"rows of database {target_database_id}")
        return row_ids

    raise mismatch("a supported value")


# ========== VALEURS CALCULÉES ==========

class _RowEvaluator:
    """Évalue formules et rollups d'une ligne; `visiting` détecte les cycles, même entre lignes"""

    def __init__(self, db: Session, row: Page, properties: List[DatabaseProperty], visiting: Set[Tuple[int, int]]):
        self.db = db
        self.row = row
        self.properties = properties
        self.visiting = visiting
        self.stored = {
            value.property_id: value.value
            for value in db.query(RowValue).filter(RowValue.row_id == row.id).all()
        }
        self.cache: Dict[int, Any] = {}

    def derived(self) -> Dict[int, Any]:
        return {prop.id: self.safe_value(prop) for prop in self.properties if prop.type in DERIVED_TYPES}

    def safe_value(self, prop: DatabaseProperty) -> Any:
        try:
            return self.value(prop)
        except FormulaError as e:
            logger.debug(f"Derived property {prop.id} on row {self.row.id} failed: {e}")
            return None

    def value(self, prop: DatabaseProperty) -> Any:
        if prop.type not in DERIVED_TYPES:
            return self.stored.get(prop.id)
        if prop.id in self.cache:
            return self.cache[prop.id]

        key = (self.row.id, prop.id)
        if key in self.visiting:
            raise FormulaError(f"Dependency cycle on property '{prop.name}'")
        self.visiting.add(key)
        try:
            if prop.type == PropertyType.FORMULA.value:
                result = self._formula(prop)
            else:
                result = self._rollup(prop)
        finally:
            self.visiting.discard(key)
        self.cache[prop.id] = result
        return result

    def formula_input(self, prop: DatabaseProperty) -> Any:
        # dans une formule, un select se lit par le nom de l'option
        value = self.value(prop)
        if prop.type in (PropertyType.SELECT.value, PropertyType.MULTI_SELECT.value) and value is not None:
            names = {o["id"]: o["name"] for o in (prop.config or {}).get("options", [])}
            if isinstance(value, list):
                return [names.get(v, v) for v in value]
            return names.get(value, value)
        return value

    def _formula(self, prop: DatabaseProperty) -> Any:
        formula = parse_formula((prop.config or {}).get("expression", ""))

        def resolve(name: str):
            referenced = _resolve_name(self.properties, name)
            if referenced is None:
                raise FormulaError(f"Unknown property '{name}'")
            return self.formula_input(referenced)

        return formula.evaluate(resolve)

    def _rollup(self, prop: DatabaseProperty) -> Any:
        config = prop.config or {}
        relation = next((p for p in self.properties if p.id == config.get("relation_property_id")), None)
        if relation is None:
            raise FormulaError("Rollup relation no longer exists")

        related_ids = self.stored.get(relation.id) or []
        related_rows = sorted(
            self.db.query(Page).filter(
                Page.id.in_(related_ids),
                Page.parent_id == relation.config.get("database_id"),
                Page.is_deleted == False
            ).all(),
            key=sibling_sort_key
        ) if related_ids else []

        function = config.get("function")
        if function == "count":
            return len(related_rows)

        target = self.db.query(DatabaseProperty).filter(DatabaseProperty.id == config.get("target_property_id")).first()
        if target is None or target.page_id != relation.config.get("database_id"):
            raise FormulaError("Rollup target no longer exists")

        target_properties = _properties_of(self.db, target.page_id)
        numbers = []
        for related in related_rows:
            value = _RowEvaluator(self.db, related, target_properties, self.visiting).value(target)
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                numbers.append(value)

        if function == "sum":
            return sum(numbers)
        return sum(numbers) / len(numbers) if numbers else None


def _row_values(db: Session, row: Page, properties: List[DatabaseProperty]) -> Dict[int, Any]:
    evaluator = _RowEvaluator(db, row, properties, set())
    values = {prop.id: evaluator.stored.get(prop.id) for prop in properties if prop.type not in DERIVED_TYPES}
    values.update(evaluator.derived())
    return values


def _row_dict(db: Session, row: Page, properties: List[DatabaseProperty]) -> dict:
    return {
        "id": row.id,
        "title": row.title,
        "icon": row.icon,
        "order": row.order,
        "values": _row_values(db, row, properties),
        "created_at": row.created_at,
        "updated_at": row.updated_at,
    }


def evaluate_derived(db: Session, user_id: int, row_id: int) -> Dict[int, Any]:
    """Recalcule (sans stocker) les formules et rollups d'une ligne"""
    row, database = _get_row(db, row_id)
    require_role(db, database.workspace_id, user_id, WorkspaceRole.VIEWER)
    return _RowEvaluator(db, row, _properties_of(db, database.id), set()).derived()


# ========== LECTURE ==========

def get_database(db: Session, user_id: int, database_id: int) -> Tuple[Page, List[DatabaseProperty], List[dict]]:
    logger.debug(f"Getting database: {database_id}")
    database = get_database_page(db, database_id)
    require_role(db, database.workspace_id, user_id, WorkspaceRole.VIEWER)

    properties = _properties_of(db, database_id)
    rows = sorted(
        db.query(Page).filter(Page.parent_id == database_id, Page.is_deleted == False).all(),
        key=sibling_sort_key
    )
    return database, properties, [_row_dict(db, row, properties) for row in rows]


def get_row(db: Session, user_id: int, row_id: int) -> dict:
    row, database = _get_row(db, row_id)
    require_role(db, database.workspace_id, user_id, WorkspaceRole.VIEWER)
    return _row_dict(db, row, _properties_of(db, database.id))


# ========== ÉCRITURE ==========

def create_database(db: Session, user_id: int, workspace_id: int, title: Optional[str] = None,
                    parent_id: Optional[int] = None) -> Page:
    logger.debug(f"Creating database in workspace: {workspace_id}")
    require_role(db, workspace_id, user_id, WorkspaceRole.MEMBER)

    with atomic(db):
        database = insert_page(db, user_id, workspace_id, parent_id,
                               title=title or "Untitled Database", is_database=True)
        # propriété Title par défaut
        db.add(DatabaseProperty(page_id=database.id, name="Title", type=PropertyType.TEXT.value, config={}, order=0))

    db.refresh(database)
    publish_event("page", database.id, "create", workspace_id=workspace_id,
                  affected_parent_id=parent_id, new_order=database.order)
    return database


def create_row(db: Session, user_id: int, database_id: int, title: Optional[str] = None,
               icon: Optional[str] = None, values: Optional[Dict[int, Any]] = None) -> dict:
    database = get_database_page(db, database_id)
    require_role(db, database.workspace_id, user_id, WorkspaceRole.MEMBER)
    properties = {prop.id: prop for prop in _properties_of(db, database_id)}

    with atomic(db):
        row = insert_page(db, user_id, database.workspace_id, database.id, title=title, icon=icon)
        for property_id, value in (values or {}).items():
            prop = properties.get(int(property_id))
            if prop is None:
                raise NotFound(f"Property {property_id} not found in database", field="values")
            normalized = _validate_value(db, prop, database, value)
            if normalized is not None:
                db.add(RowValue(row_id=row.id, property_id=prop.id, value=normalized))

    db.refresh(row)
    publish_event("page", row.id, "create", workspace_id=database.workspace_id,
                  affected_parent_id=database.id, new_order=row.order)
    return _row_dict(db, row, list(properties.values()))


def define_property(db: Session, user_id: int, database_id: int, name: str,
                    prop_type: PropertyType = PropertyType.TEXT, config: Optional[dict] = None) -> DatabaseProperty:
    logger.debug(f"Defining property '{name}' in database: {database_id}")
    database = get_database_page(db, database_id)
    require_role(db, database.workspace_id, user_id, WorkspaceRole.MEMBER)

    prop_type = PropertyType(prop_type).value
    siblings = _properties_of(db, database_id)
    normalized = _validate_config(db, database, prop_type, config, siblings)

    with atomic(db):
        last = db.query(func.max(DatabaseProperty.order)).filter(DatabaseProperty.page_id == database_id).scalar()
        prop = DatabaseProperty(
            page_id=database_id,
            name=name,
            type=prop_type,
            config=normalized,
            order=(last if last is not None else 0) + 1,
        )
        db.add(prop)

    db.refresh(prop)
    publish_event("property", prop.id, "create", workspace_id=database.workspace_id,
                  page_id=database_id, new_order=prop.order)
    return prop


def _derived_edges(prop: DatabaseProperty, properties: List[DatabaseProperty]) -> List[int]:
    if prop.type == PropertyType.FORMULA.value:
        targets = [_resolve_name(properties, name) for name in _formula_references(prop)]
        return [target.id for target in targets if target is not None]
    if prop.type == PropertyType.ROLLUP.value:
        return [(prop.config or {}).get("relation_property_id")]
    return []


def _assert_acyclic(prop: DatabaseProperty, properties: List[DatabaseProperty]) -> None:
    by_id = {p.id: p for p in properties}
    stack = list(_derived_edges(prop, properties))
    seen = set()
    while stack:
        current = stack.pop()
        if current == prop.id:
            raise InvalidState(f"Property '{prop.name}' would depend on itself", field="config")
        if current in seen or current not in by_id:
            continue
        seen.add(current)
        stack.extend(_derived_edges(by_id[current], properties))


def _dependents(db: Session, prop: DatabaseProperty) -> List[DatabaseProperty]:
    dependents = [
        other for other in _properties_of(db, prop.page_id)
        if other.id != prop.id and other.type == PropertyType.FORMULA.value
        and prop.name in _formula_references(other)
    ]
    for rollup in db.query(DatabaseProperty).filter(DatabaseProperty.type == PropertyType.ROLLUP.value).all():
        config = rollup.config or {}
        if rollup.id != prop.id and prop.id in (config.get("relation_property_id"), config.get("target_property_id")):
            dependents.append(rollup)
    return dependents


def update_property(db: Session, user_id: int, property_id: int, name: Optional[str] = None,
                    prop_type: Optional[PropertyType] = None, config: Optional[dict] = None) -> DatabaseProperty:
    logger.debug(f"Updating property: {property_id}")
    prop = get_property_or_404(db, property_id)
    database = get_database_page(db, prop.page_id)
    require_role(db, database.workspace_id, user_id, WorkspaceRole.MEMBER)

    new_name = name if name is not None else prop.name
    new_type = PropertyType(prop_type).value if prop_type is not None else prop.type
    type_changed = new_type != prop.type

    if new_name != prop.name or type_changed:
        dependents = [
            d for d in _dependents(db, prop)
            # une formule référence le nom, un rollup référence la relation
            if (new_name != prop.name and d.type == PropertyType.FORMULA.value)
            or (type_changed and d.type == PropertyType.ROLLUP.value)
        ]
        if dependents:
            raise PropertyInUse(
                f"Property '{prop.name}' is used by derived properties",
                dependents=[d.id for d in dependents],
                field="name" if new_name != prop.name else "type"
            )

    siblings = [p for p in _properties_of(db, prop.page_id) if p.id != prop.id]
    # copie détachée: sert à la résolution des noms et à la détection de cycles
    candidate = DatabaseProperty(id=prop.id, page_id=prop.page_id, name=new_name, type=new_type, order=prop.order)
    if config is not None or type_changed:
        candidate.config = _validate_config(db, database, new_type, config if config is not None else prop.config,
                                            siblings + [candidate])
    else:
        candidate.config = prop.config
    new_config = candidate.config
    _assert_acyclic(candidate, sorted(siblings + [candidate], key=sibling_sort_key))

    old_config = prop.config or {}
    with atomic(db):
        if type_changed or (new_type == PropertyType.RELATION.value
                            and old_config.get("database_id") != new_config.get("database_id")):
            # les anciennes valeurs n'ont plus de sens
            db.query(RowValue).filter(RowValue.property_id == prop.id).delete(synchronize_session=False)
        elif new_type in (PropertyType.SELECT.value, PropertyType.MULTI_SELECT.value):
            _prune_options(db, prop.id, new_type, {o["id"] for o in new_config.get("options", [])})

        prop.name = new_name
        prop.type = new_type
        prop.config = new_config

    db.refresh(prop)
    publish_event("property", prop.id, "update", workspace_id=database.workspace_id, page_id=prop.page_id)
    return prop


def _prune_options(db: Session, property_id: int, prop_type: str, option_ids: Set[str]) -> None:
    for stored in db.query(RowValue).filter(RowValue.property_id == property_id).all():
        if prop_type == PropertyType.SELECT.value:
            if stored.value not in option_ids:
                db.delete(stored)
        else:
            kept = [v for v in (stored.value or []) if v in option_ids]
            if kept != stored.value:
                stored.value = kept


def delete_property(db: Session, user_id: int, property_id: int, cascade: bool = False) -> List[int]:
    """Supprime une propriété; refusé si une formule/rollup en dépend, sauf cascade"""
    logger.debug(f"Deleting property: {property_id}")
    prop = get_property_or_404(db, property_id)
    database = get_database_page(db, prop.page_id)
    require_role(db, database.workspace_id, user_id, WorkspaceRole.MEMBER)

    dependents = _dependents(db, prop)
    if dependents and not cascade:
        raise PropertyInUse(
            f"Property '{prop.name}' is used by derived properties",
            dependents=[d.id for d in dependents],
            field="property_id"
        )

    doomed = {prop.id: prop}
    queue = list(dependents)
    while queue:
        current = queue.pop(0)
        if current.id in doomed:
            continue
        doomed[current.id] = current
        queue.extend(_dependents(db, current))

    doomed_ids = list(doomed.keys())
    with atomic(db):
        db.query(RowValue).filter(RowValue.property_id.in_(doomed_ids)).delete(synchronize_session=False)
        db.query(DatabaseProperty).filter(DatabaseProperty.id.in_(doomed_ids)).delete(synchronize_session=False)

    db.expire_all()
    logger.info(f"Deleted properties {doomed_ids}")
    for doomed_id in doomed_ids:
        publish_event("property", doomed_id, "delete", workspace_id=database.workspace_id)
    return doomed_ids


def set_row_value(db: Session, user_id: int, row_id: int, property_id: int, value: Any) -> Optional[RowValue]:
    """Type-check puis écrit la valeur; une valeur invalide laisse l'ancienne intacte"""
    row, database = _get_row(db, row_id)
    require_role(db, database.workspace_id, user_id, WorkspaceRole.MEMBER)
    prop = get_property_or_404(db, property_id)
    if prop.page_id != database.id:
        raise NotFound("Property not found in this row's database", field="property_id")

    normalized = _validate_value(db, prop, database, value)

    stored = db.query(RowValue).filter(RowValue.row_id == row_id, RowValue.property_id == property_id).first()
    with atomic(db):
        if normalized is None:
            if stored is not None:
                db.delete(stored)
            stored = None
        elif stored is None:
            stored = RowValue(row_id=row_id, property_id=property_id, value=normalized)
            db.add(stored)
        else:
            stored.value = normalized
        row.updated_by_id = user_id
        row.updated_at = datetime.utcnow()

    if stored is not None:
        db.refresh(stored)
    publish_event("row_value", row_id, "update", workspace_id=database.workspace_id,
                  page_id=row_id, affected_parent_id=database.id)
    return stored
