"""Entra ID SSO endpoints (public)."""

import logging

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.responses import RedirectResponse

from app.config import settings
from app.database import get_db
from app.dependencies.rate_limit import limiter
from app.errors import ProviderError, SsoDisabled, SsoMisconfigured
from app.schemas.oidc import OidcPublicConfig
from app.services.oidc_flow import OidcFlowController, callback_redirect_uri, landing_url

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth/oidc/entra", tags=["Entra ID SSO"])


def get_flow_controller(db: AsyncSession = Depends(get_db)) -> OidcFlowController:
    return OidcFlowController(db)


@router.get("/config", response_model=OidcPublicConfig)
async def oidc_config(controller: OidcFlowController = Depends(get_flow_controller)):
    """Tell the login page whether to offer the SSO button."""
    return await controller.get_public_config()


@router.get("/login")
@limiter.limit(settings.rate_limit_oidc)
async def oidc_login(
    request: Request,
    controller: OidcFlowController = Depends(get_flow_controller),
):
    """Initiate the Entra ID authorization code flow.

    Redirects the browser to the provider. Returns JSON errors while SSO is
    switched off or incomplete, since there is nowhere sensible to redirect.
    """
    redirect_uri = callback_redirect_uri(
        scheme=request.url.scheme,
        host=request.headers.get("host"),
        forwarded_proto=request.headers.get("x-forwarded-proto"),
        forwarded_host=request.headers.get("x-forwarded-host"),
    )

    try:
        auth_url = await controller.begin_login(redirect_uri)
    except SsoDisabled as e:
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": e.user_message})
    except SsoMisconfigured as e:
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content={"error": e.user_message}
        )
    except ProviderError as e:
        return RedirectResponse(url=landing_url(oidc_error=e.user_message), status_code=302)

    return RedirectResponse(url=auth_url, status_code=302)


@router.get("/callback")
async def oidc_callback(
    request: Request,
    controller: OidcFlowController = Depends(get_flow_controller),
):
    """Handle the provider redirect. Always answers with a redirect to the landing page."""
    target = await controller.handle_callback(request.query_params)
    return RedirectResponse(url=target, status_code=302)
