"""
Tenant isolation.

A ``TenantContext`` is the only way to obtain a service or repository, and
every query built through ``TenantScopedRepository`` is filtered on it.
Rows of other tenants are reported exactly like missing rows.
"""
from typing import Generic, List, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session, Query

from crm_sales.core.exceptions import NotFound

ModelT = TypeVar("ModelT")


class TenantContext(BaseModel):
    """Who is acting, and on behalf of which tenant"""

    tenant_id: int = Field(..., gt=0)
    user_id: Optional[int] = None

    model_config = ConfigDict(frozen=True)


class TenantScopedRepository(Generic[ModelT]):
    """Query helper bound to one model and one tenant"""

    model: Type[ModelT]
    resource_name: str = "Resource"

    def __init__(self, db: Session, tenant: TenantContext, model: Type[ModelT] = None, resource_name: str = None):
        if not isinstance(tenant, TenantContext):
            raise TypeError("A TenantContext is required to access tenant data")
        self.db = db
        self.tenant = tenant
        if model is not None:
            self.model = model
        if resource_name is not None:
            self.resource_name = resource_name

    def query(self) -> Query:
        return self.db.query(self.model).filter(self.model.tenant_id == self.tenant.tenant_id)

    def find(self, entity_id: int) -> Optional[ModelT]:
        return self.query().filter(self.model.id == entity_id).first()

    def get(self, entity_id: int, for_update: bool = False) -> ModelT:
        query = self.query().filter(self.model.id == entity_id)
        if for_update:
            query = query.with_for_update()
        entity = query.first()
        if entity is None:
            raise NotFound(self.resource_name, entity_id)
        return entity

    def list(self, **filters) -> List[ModelT]:
        query = self.query()
        for key, value in filters.items():
            if value is not None:
                query = query.filter(getattr(self.model, key) == value)
        return query.order_by(self.model.id.desc()).all()

    def add(self, entity: ModelT) -> ModelT:
        if getattr(entity, "tenant_id", None) not in (None, self.tenant.tenant_id):
            raise NotFound(self.resource_name)
        entity.tenant_id = self.tenant.tenant_id
        self.db.add(entity)
        return entity
