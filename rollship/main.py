from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse, PlainTextResponse

from rollship.config import settings
from rollship.db import SessionLocal
from rollship.logging_config import configure_logging
from rollship.routers import auth, inventory, shipment
from rollship.security.csrf import install_csrf_cookie_middleware
from rollship.security.headers import install_security_headers
from rollship.security.sessions import install_auth_session_middleware
from rollship.services.errors import FulfillmentError

configure_logging(level=settings.log_level, json_lines=settings.log_json)

app = FastAPI(title='Roll Shipment Service')
app.state.session_factory = SessionLocal

install_security_headers(app)
install_csrf_cookie_middleware(app)
install_auth_session_middleware(app)

app.include_router(auth.router)
app.include_router(inventory.router)
app.include_router(shipment.router)


@app.exception_handler(FulfillmentError)
async def fulfillment_error_handler(request: Request, exc: FulfillmentError):
    return JSONResponse(jsonable_encoder(exc.to_dict()), status_code=exc.status_code)


@app.exception_handler(PermissionError)
async def permission_error_handler(request: Request, exc: PermissionError):
    return JSONResponse({'error': 'FORBIDDEN', 'detail': str(exc) or 'Forbidden'}, status_code=403)


@app.get('/healthz')
def healthz() -> dict:
    return {'status': 'ok'}


@app.get('/robots.txt', response_class=PlainTextResponse)
def robots_txt() -> str:
    return 'User-agent: *\nDisallow: /\n'
