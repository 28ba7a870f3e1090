"""
Connection testing utilities for Jellyfin servers.
"""

import requests
from typing import Any, Dict, Tuple
from app.utils.timeout_helper import get_api_timeout_with_fallback


def handle_connection_error(error: Exception, service_name: str = "Jellyfin") -> str:
    """Turn a requests failure into a message an admin can act on."""
    if isinstance(error, requests.exceptions.ConnectTimeout):
        return "Connection timeout. Please check the server URL."
    elif isinstance(error, requests.exceptions.ConnectionError):
        return f"Cannot reach {service_name} server. Please check the server URL."
    elif isinstance(error, requests.exceptions.HTTPError):
        status = error.response.status_code if error.response is not None else None
        if status in (401, 403):
            return f"Invalid API key. Please check your {service_name} API key."
        return f"{service_name} returned an error: {status} - {error.response.reason if error.response is not None else ''}"
    elif isinstance(error, requests.exceptions.Timeout):
        return f"Request to {service_name} timed out. The server may be slow to respond."
    else:
        return f"Failed to connect to {service_name} server: {str(error)}"


def check_jellyfin(url: str, token: str) -> Tuple[bool, str, Dict[str, Any]]:
    """Test connection to a Jellyfin server. Returns (success, message, system info)."""
    try:
        url = url.rstrip('/')
        response = requests.get(
            f"{url}/System/Info",
            headers={"X-Emby-Token": token},
            timeout=get_api_timeout_with_fallback(10)
        )
        response.raise_for_status()

        server_info = response.json()
        server_name = server_info.get('ServerName', 'Unknown')
        version = server_info.get('Version', 'Unknown')

        return True, f"Successfully connected to Jellyfin server '{server_name}' (v{version})", server_info

    except requests.exceptions.RequestException as e:
        return False, handle_connection_error(e), {}
    except ValueError as e:
        return False, f"Jellyfin returned an unexpected response: {str(e)}", {}
