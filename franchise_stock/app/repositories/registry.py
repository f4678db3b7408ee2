from dataclasses import dataclass

from .admin_stock import AdminStockRepository
from .audit import AuditRepository
from .recalls import RecallRepository
from .sales import CatalogRepository, SaleRepository
from .stock import StockRepository
from .transports import TransportRepository


@dataclass
class Repositories:
    sales: SaleRepository
    catalog: CatalogRepository
    transports: TransportRepository
    stock: StockRepository
    admin_stock: AdminStockRepository
    recalls: RecallRepository
    audit: AuditRepository


def bind_repositories(cur) -> Repositories:
    """All repositories share one cursor, so they share the caller's transaction."""
    return Repositories(
        sales=SaleRepository(cur),
        catalog=CatalogRepository(cur),
        transports=TransportRepository(cur),
        stock=StockRepository(cur),
        admin_stock=AdminStockRepository(cur),
        recalls=RecallRepository(cur),
        audit=AuditRepository(cur),
    )
