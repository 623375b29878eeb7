import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError

from inventory_ledger.config import settings
from inventory_ledger.dependencies import http_error
from inventory_ledger.errors import LockTimeout
from inventory_ledger.routers import productions, products, purchase_orders, sales, settings as settings_router
from inventory_ledger.services.transactions import is_lock_timeout

logging.basicConfig(
    level=settings.log_level.upper(),
    format='%(asctime)s %(levelname)s %(name)s: %(message)s',
)

app = FastAPI(title='Inventory Ledger')

app.include_router(purchase_orders.router)
app.include_router(productions.router)
app.include_router(sales.router)
app.include_router(products.router)
app.include_router(settings_router.router)


@app.get('/health')
def health() -> dict:
    return {'status': 'ok'}


@app.exception_handler(OperationalError)
def database_busy(_request: Request, exc: OperationalError):
    # Reads outside a write unit can still wait on the SQLite writer lock.
    if not is_lock_timeout(exc):
        raise exc
    error = http_error(LockTimeout(entity='database'))
    return JSONResponse(status_code=error.status_code, content={'detail': error.detail})
