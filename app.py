"""
Travel Search Relay - HTTP entry point.

Serves the search actions as JSON endpoints on NiceGUI's FastAPI app:
- GET  /api/session    guest cookie + anti-forgery nonces for the widgets
- POST /api/{action}   one of handlers.ACTIONS, JSON body {"nonce": ..., ...}
"""
import asyncio
import logging
from typing import Optional

from fastapi import Request
from fastapi.responses import JSONResponse
from nicegui import ui, app as nicegui_app

from config import LoadedConfig, config_diagnostics, load_config
from handlers import ACTIONS, RequestContext, SearchActions, build_actions
from nonces import FLIGHT_SCOPE, HOTEL_SCOPE
from selection import SESSION_COOKIE_MAX_AGE, SESSION_COOKIE_NAME, client_identity

logger = logging.getLogger(__name__)


def _client_ip(request: Request) -> str:
    return request.client.host if request.client else 'unknown'


def _user_id(request: Request, config: LoadedConfig) -> Optional[str]:
    if not config.trust_remote_user:
        return None
    return request.headers.get('X-Remote-User') or None


def _with_session_cookie(response: JSONResponse, request: Request, new_session_id: Optional[str]) -> JSONResponse:
    if new_session_id:
        response.set_cookie(
            SESSION_COOKIE_NAME,
            new_session_id,
            max_age=SESSION_COOKIE_MAX_AGE,
            path='/',
            secure=request.url.scheme == 'https',
            httponly=True,
            samesite='lax',
        )
    return response


def register_routes(actions: SearchActions) -> None:
    """Attach the JSON endpoints to the NiceGUI app."""
    config = actions.config

    @nicegui_app.get('/api/session')
    def session(request: Request) -> JSONResponse:
        identity, new_session_id = client_identity(
            _user_id(request, config), request.cookies.get(SESSION_COOKIE_NAME)
        )
        body = {
            'flightNonce': actions.nonces.create(FLIGHT_SCOPE, identity),
            'hotelNonce': actions.nonces.create(HOTEL_SCOPE, identity),
            'hotelSearchEnabled': config.hotel_search_enabled,
        }
        return _with_session_cookie(JSONResponse(body), request, new_session_id)

    @nicegui_app.post('/api/{action}')
    async def dispatch(action: str, request: Request) -> JSONResponse:
        if action not in ACTIONS:
            return JSONResponse({'success': False, 'message': f'Unknown action: {action}'}, status_code=404)

        try:
            params = await request.json()
        except ValueError:
            params = {}
        if not isinstance(params, dict):
            params = {}

        identity, new_session_id = client_identity(
            _user_id(request, config), request.cookies.get(SESSION_COOKIE_NAME)
        )
        ctx = RequestContext(
            client_ip=_client_ip(request),
            identity=identity,
            nonce=str(params.pop('nonce', '') or ''),
        )

        # Provider calls block; keep them off the event loop.
        result = await asyncio.to_thread(getattr(actions, action), ctx, params)
        return _with_session_cookie(JSONResponse(result.to_dict()), request, new_session_id)


def main() -> None:
    logging.basicConfig(level=logging.INFO)
    config = load_config()
    if config.debug_mode:
        logging.getLogger().setLevel(logging.DEBUG)

    if not config.has_credentials:
        logger.warning('AMADEUS_API_KEY / AMADEUS_API_SECRET not set; searches will fail until configured.')
    logger.info("\n" + config_diagnostics(config))

    register_routes(build_actions(config))

    ui.run(
        title='Travel Search Relay',
        reload=False,
        show=False,
        port=8080,
    )


if __name__ in {'__main__', '__mp_main__'}:
    main()
