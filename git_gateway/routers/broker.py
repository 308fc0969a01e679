"""Consent broker login and consent pages.

The broker redirects browsers here with a challenge id; the gateway collects
the user's email, checks it against the allowed domain and answers the
challenge through the broker admin API.
"""

from __future__ import annotations

import html
import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, Form, Query, Request
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse

from git_gateway.auth.broker import BrokerAdminClient
from git_gateway.auth.csrf import FORM_FIELD, FormCSRF
from git_gateway.auth.providers import ProviderConfig
from git_gateway.dependencies import get_broker, get_form_csrf, get_provider

log = logging.getLogger("git-gateway.broker-router")

router = APIRouter(prefix="/broker", tags=["broker"])

SCOPE_DESCRIPTIONS = {
    "openid": "Confirm your identity",
    "profile": "Read your basic profile",
    "email": "Read your email address",
    "offline_access": "Stay signed in",
}

_PAGE = """<!DOCTYPE html>
<html lang="en">
<head><meta charset="utf-8"><title>{title}</title></head>
<body>
<main>
<h1>{title}</h1>
{body}
</main>
</body>
</html>
"""


def _page(title: str, body: str, status_code: int = 200) -> HTMLResponse:
    return HTMLResponse(
        _PAGE.format(title=html.escape(title), body=body), status_code=status_code
    )


def _missing_challenge(name: str) -> HTMLResponse:
    return _page("Bad request", f"<p>Missing {html.escape(name)}.</p>", 400)


def _csrf_failure() -> HTMLResponse:
    return _page(
        "Session expired",
        "<p>The form has expired. Please start the sign-in again.</p>",
        403,
    )


def _login_form(challenge: str, csrf_token: str, error: Optional[str] = None) -> str:
    error_html = f'<p role="alert">{html.escape(error)}</p>' if error else ""
    return (
        f"{error_html}"
        '<form method="post" action="/broker/login">'
        f'<input type="hidden" name="login_challenge" value="{html.escape(challenge)}">'
        f'<input type="hidden" name="{FORM_FIELD}" value="{html.escape(csrf_token)}">'
        '<label for="email">Email</label>'
        '<input type="email" id="email" name="email" required autofocus>'
        '<button type="submit">Continue</button>'
        "</form>"
    )


def _consent_form(
    challenge: str, csrf_token: str, client_name: str, scopes: list[str], subject: str
) -> str:
    items = "".join(
        f"<li>{html.escape(SCOPE_DESCRIPTIONS.get(s, s))}</li>" for s in scopes
    )
    return (
        f"<p><strong>{html.escape(client_name)}</strong> is requesting access "
        f"on behalf of {html.escape(subject)}:</p>"
        f"<ul>{items}</ul>"
        '<form method="post" action="/broker/consent">'
        f'<input type="hidden" name="consent_challenge" value="{html.escape(challenge)}">'
        f'<input type="hidden" name="{FORM_FIELD}" value="{html.escape(csrf_token)}">'
        '<button type="submit" name="decision" value="accept">Allow</button>'
        '<button type="submit" name="decision" value="deny">Deny</button>'
        "</form>"
    )


def _with_csrf(response: HTMLResponse, csrf: FormCSRF, token: str) -> HTMLResponse:
    csrf.set_cookie(response, token)
    return response


@router.get("/login")
async def login_page(
    login_challenge: Optional[str] = Query(None),
    broker: BrokerAdminClient = Depends(get_broker),
    provider: ProviderConfig = Depends(get_provider),
    csrf: FormCSRF = Depends(get_form_csrf),
):
    """Render the email form, or accept immediately for a remembered subject."""
    if not login_challenge:
        return _missing_challenge("login_challenge")

    login_request = await broker.get_login_request(login_challenge)
    subject = login_request.get("subject")
    if login_request.get("skip") and provider.email_allowed(subject):
        redirect_to = await broker.accept_login(login_challenge, subject)
        return RedirectResponse(url=redirect_to, status_code=302)

    token = csrf.generate_token()
    return _with_csrf(
        _page("Sign in", _login_form(login_challenge, token)), csrf, token
    )


@router.post("/login")
async def login_submit(
    request: Request,
    login_challenge: str = Form(""),
    email: str = Form(""),
    csrf_token: str = Form(""),
    broker: BrokerAdminClient = Depends(get_broker),
    provider: ProviderConfig = Depends(get_provider),
    csrf: FormCSRF = Depends(get_form_csrf),
):
    if not login_challenge:
        return _missing_challenge("login_challenge")
    if not csrf.validate(request, csrf_token):
        return _csrf_failure()

    email = email.strip()
    if not provider.email_allowed(email):
        log.info("broker login denied", extra={"email": email})
        return _page(
            "Access denied",
            "<p>Only users with "
            f"{html.escape(provider.allowed_email_domain)} email addresses are allowed.</p>",
            403,
        )

    redirect_to = await broker.accept_login(login_challenge, email)
    log.info("broker login accepted", extra={"email": email})
    return RedirectResponse(url=redirect_to, status_code=302)


@router.get("/consent")
async def consent_page(
    consent_challenge: Optional[str] = Query(None),
    broker: BrokerAdminClient = Depends(get_broker),
    csrf: FormCSRF = Depends(get_form_csrf),
):
    """Render the consent screen, or accept immediately if already granted."""
    if not consent_challenge:
        return _missing_challenge("consent_challenge")

    consent_request = await broker.get_consent_request(consent_challenge)
    scopes = list(consent_request.get("requested_scope") or [])
    subject = consent_request.get("subject") or ""
    if consent_request.get("skip"):
        redirect_to = await broker.accept_consent(consent_challenge, scopes, subject)
        return RedirectResponse(url=redirect_to, status_code=302)

    client = consent_request.get("client") or {}
    client_name = client.get("client_name") or client.get("client_id") or "An application"
    token = csrf.generate_token()
    body = _consent_form(consent_challenge, token, client_name, scopes, subject)
    return _with_csrf(_page("Authorize access", body), csrf, token)


@router.post("/consent")
async def consent_submit(
    request: Request,
    consent_challenge: str = Form(""),
    decision: str = Form(""),
    csrf_token: str = Form(""),
    broker: BrokerAdminClient = Depends(get_broker),
    csrf: FormCSRF = Depends(get_form_csrf),
):
    if not consent_challenge:
        return _missing_challenge("consent_challenge")
    if not csrf.validate(request, csrf_token):
        return _csrf_failure()

    if decision != "accept":
        redirect_to = await broker.reject_consent(consent_challenge)
        log.info("consent denied")
        return RedirectResponse(url=redirect_to, status_code=302)

    consent_request = await broker.get_consent_request(consent_challenge)
    scopes = list(consent_request.get("requested_scope") or [])
    subject = consent_request.get("subject") or ""
    redirect_to = await broker.accept_consent(consent_challenge, scopes, subject)
    log.info("consent granted", extra={"subject": subject, "scopes": scopes})
    return RedirectResponse(url=redirect_to, status_code=302)


@router.get("/health")
async def broker_health(
    broker: BrokerAdminClient = Depends(get_broker),
) -> Any:
    ready = await broker.is_ready()
    content: dict[str, Any] = {
        "status": "ok" if ready else "unavailable",
        "broker_admin_url": broker.admin_url,
    }
    return JSONResponse(content=content, status_code=200 if ready else 503)
