import logging

from fastapi import FastAPI

from stowqr.config import settings
from stowqr.routers import backup, codec, inventory, pool

logging.basicConfig(
    level=settings.log_level.upper(),
    format='%(asctime)s %(levelname)s %(name)s: %(message)s',
)

app = FastAPI(title='Stow QR Inventory')

app.include_router(inventory.router)
app.include_router(pool.router)
app.include_router(codec.router)
app.include_router(backup.router)


@app.get('/health')
def health() -> dict:
    return {'status': 'ok'}
