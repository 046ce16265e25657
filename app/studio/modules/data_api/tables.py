from __future__ import annotations

from dataclasses import dataclass

from pydantic import BaseModel
from sqlalchemy import Column, Table

from app.studio.modules.canvases.models import BusinessModelCanvas, CustomerProfile, ValueMap, ValuePropositionCanvas
from app.studio.modules.data_api import schemas
from app.studio.results import not_found, validation_error


@dataclass(frozen=True)
class TableDefinition:
    name: str
    description: str
    model: type
    create_schema: type[BaseModel]
    update_schema: type[BaseModel]
    has_slug: bool = True

    @property
    def table(self) -> Table:
        return self.model.__table__  # type: ignore[attr-defined]

    def column(self, name: str) -> Column:
        if name not in self.table.c:
            raise validation_error(f"Unknown column for {self.name}: {name}")
        return self.table.c[name]

    def attribute(self, column_name: str) -> str:
        """ORM attribute key for a column name (``metadata`` is mapped as ``metadata_json``)."""
        prop = self.model.__mapper__.get_property_by_column(self.column(column_name))  # type: ignore[attr-defined]
        return prop.key


TABLES: dict[str, TableDefinition] = {
    t.name: t
    for t in (
        TableDefinition(
            name="business_model_canvases",
            description="Business Model Canvases: nine strategic blocks describing how a business creates value",
            model=BusinessModelCanvas,
            create_schema=schemas.BusinessModelCanvasCreate,
            update_schema=schemas.BusinessModelCanvasUpdate,
        ),
        TableDefinition(
            name="customer_profiles",
            description="Customer Profiles: jobs, pains and gains of a customer segment or persona",
            model=CustomerProfile,
            create_schema=schemas.CustomerProfileCreate,
            update_schema=schemas.CustomerProfileUpdate,
        ),
        TableDefinition(
            name="value_maps",
            description="Value Maps: products/services, pain relievers and gain creators",
            model=ValueMap,
            create_schema=schemas.ValueMapCreate,
            update_schema=schemas.ValueMapUpdate,
        ),
        TableDefinition(
            name="value_proposition_canvases",
            description="Value Proposition Canvases: a value map paired with a customer profile, with fit scoring",
            model=ValuePropositionCanvas,
            create_schema=schemas.ValuePropositionCanvasCreate,
            update_schema=schemas.ValuePropositionCanvasUpdate,
        ),
    )
}


def get_table(name: str) -> TableDefinition:
    definition = TABLES.get(name)
    if definition is None:
        raise not_found(f"Table not found: {name}")
    return definition
