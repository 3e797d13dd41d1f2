from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session
from typing import List
from pagetree.core.database import get_db
from pagetree.models.user import User
from pagetree.routers.deps import get_current_user
from pagetree.schemas.database import (
    PropertyCreate, PropertyUpdate, PropertyResponse, RowCreate, RowValueSet, RowResponse, DatabaseResponse
)
from pagetree.services import schema_service

router = APIRouter(tags=["databases"])

@router.get("/databases/{database_id}", response_model=DatabaseResponse)
def get_database(database_id: int, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    # schéma + lignes avec valeurs calculées
    database, properties, rows = schema_service.get_database(db, current_user.id, database_id)
    return {"database": database, "properties": properties, "rows": rows}

@router.post("/databases/{database_id}/properties", response_model=PropertyResponse, status_code=status.HTTP_201_CREATED)
def define_property(database_id: int, data: PropertyCreate, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return schema_service.define_property(db, current_user.id, database_id, data.name, data.type, data.config)

@router.post("/databases/{database_id}/rows", response_model=RowResponse, status_code=status.HTTP_201_CREATED)
def create_row(database_id: int, data: RowCreate, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return schema_service.create_row(db, current_user.id, database_id, title=data.title, icon=data.icon, values=data.values)

@router.put("/properties/{property_id}", response_model=PropertyResponse)
def update_property(property_id: int, data: PropertyUpdate, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return schema_service.update_property(
        db, current_user.id, property_id, name=data.name, prop_type=data.type, config=data.config
    )

@router.delete("/properties/{property_id}", response_model=List[int])
def delete_property(property_id: int, cascade: bool = False, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    # retourne les ids supprimés (dépendants inclus avec cascade=true)
    return schema_service.delete_property(db, current_user.id, property_id, cascade=cascade)

@router.get("/rows/{row_id}", response_model=RowResponse)
def get_row(row_id: int, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return schema_service.get_row(db, current_user.id, row_id)

@router.put("/rows/{row_id}/values/{property_id}", response_model=RowResponse)
def set_row_value(row_id: int, property_id: int, data: RowValueSet, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    schema_service.set_row_value(db, current_user.id, row_id, property_id, data.value)
    return schema_service.get_row(db, current_user.id, row_id)
