"""MCP tools for managing the portal session."""

from __future__ import annotations

import json

import httpx

from ..config import AUTH_CODE_TIMEOUT, SESSION_MANAGER_URL


async def call_session_manager(method: str, path: str, json_body: dict | None = None) -> dict:
    """Make a request to the session manager HTTP service."""
    url = f"{SESSION_MANAGER_URL}{path}"
    try:
        # A waiting login can take the full auth code window plus navigation
        async with httpx.AsyncClient(timeout=AUTH_CODE_TIMEOUT + 60.0) as client:
            if method == "GET":
                resp = await client.get(url, params=json_body)
            else:
                resp = await client.post(url, json=json_body or {})

            if resp.status_code >= 400:
                data = resp.json()
                return {
                    "error": data.get("error") or data.get("message") or f"HTTP {resp.status_code}",
                    "kind": data.get("kind", ""),
                }
            return resp.json()

    except httpx.ConnectError:
        return {
            "error": "Session Manager is not reachable at "
            f"{SESSION_MANAGER_URL}. It should auto-start with the MCP server. "
            "If running standalone: partnerwatch-manager"
        }
    except httpx.TimeoutException:
        return {"error": "Session Manager timed out. The browser may still be loading."}
    except (httpx.HTTPError, ValueError) as e:
        return {"error": f"Failed to talk to Session Manager: {e}"}


async def login() -> str:
    """Log in to the partner portal.

    Tries the saved cookies first. If they are no longer valid, submits the
    configured credentials in a headless browser. When Steam Guard asks for
    a code, the login stays pending until submit_auth_code is called.

    Returns:
        Login status message.
    """
    result = await call_session_manager("POST", "/login", {"wait": False})

    if "error" in result:
        return f"Error: {result['error']}"

    state = result.get("state", "unknown")
    message = result.get("message", "")

    if state == "logged_in":
        return f"Logged in. {message}"
    elif state == "awaiting_auth_code":
        return (
            f"{message}\n\n"
            "Ask the user for the Steam Guard code from their email or "
            "authenticator and pass it to submit_auth_code."
        )
    else:
        return f"Session state: {state}. {message}"


async def submit_auth_code(code: str) -> str:
    """Supply the Steam Guard code for a pending login.

    Args:
        code: The code exactly as shown in the email or authenticator.

    Returns:
        Authentication status message.
    """
    result = await call_session_manager("POST", "/auth-code", {"code": code})

    if "error" in result:
        if result.get("kind") == "AuthCodeRejected":
            return f"Code not accepted: {result['error']} You can try another code."
        return f"Error: {result['error']}"

    return result.get("message", "Login successful.")


async def logout() -> str:
    """Log out and delete the saved cookies.

    Returns:
        Confirmation message.
    """
    result = await call_session_manager("POST", "/logout")

    if "error" in result:
        return f"Error: {result['error']}"

    return result.get("message", "Logged out.")


async def session_status() -> str:
    """Report login state, cookie count, and poller state.

    Returns:
        JSON-formatted session status.
    """
    result = await call_session_manager("GET", "/status")

    if "error" in result:
        return f"Error: {result['error']}"

    return json.dumps(result, indent=2)
