import asyncio
import json
import os
import re
from functools import lru_cache
from typing import Any, Dict, Optional

from fastmcp import FastMCP
from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from open_superagent.tool.logger import bootstrap_logger

GOOGLE_APPLICATION_CREDENTIALS_JSON = os.environ.get("GOOGLE_APPLICATION_CREDENTIALS_JSON", "")

SCOPES = [
    "https://www.googleapis.com/auth/documents",
    "https://www.googleapis.com/auth/spreadsheets",
    "https://www.googleapis.com/auth/presentations",
    "https://www.googleapis.com/auth/drive.file",
]

EDIT_URL_BASES = {
    "docs": "https://docs.google.com/document/d/",
    "sheets": "https://docs.google.com/spreadsheets/d/",
    "slides": "https://docs.google.com/presentation/d/",
}

TOOL_NAMES = {
    "docs": ("google-docs-creation", "Google Docs Creation", "document"),
    "sheets": ("google-sheets-creation", "Google Sheets Creation", "spreadsheet"),
    "slides": ("google-slides-creation", "Google Slides Creation", "presentation"),
}

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

# Initialize FastMCP server
mcp = FastMCP("workspace-mcp-server")

logger = bootstrap_logger()


def is_auth_configured() -> bool:
    return bool(GOOGLE_APPLICATION_CREDENTIALS_JSON)


def is_valid_email(email: str) -> bool:
    return bool(_EMAIL_RE.match(email or ""))


def edit_url_for(file_id: str, file_type: str) -> str:
    return f"{EDIT_URL_BASES[file_type]}{file_id}/edit"


@lru_cache(maxsize=1)
def _credentials() -> service_account.Credentials:
    if not GOOGLE_APPLICATION_CREDENTIALS_JSON:
        raise RuntimeError("GOOGLE_APPLICATION_CREDENTIALS_JSON environment variable is not set")
    try:
        info = json.loads(GOOGLE_APPLICATION_CREDENTIALS_JSON)
    except json.JSONDecodeError:
        raise RuntimeError("Invalid JSON in GOOGLE_APPLICATION_CREDENTIALS_JSON environment variable")
    return service_account.Credentials.from_service_account_info(info, scopes=SCOPES)


def get_service(name: str, version: str):
    return build(name, version, credentials=_credentials(), cache_discovery=False)


def share_file_with_user(file_id: str, email_address: str):
    """Give the address writer access. Failures are logged; the file itself was created."""
    if not file_id or not email_address:
        logger.warning("File ID or email address is missing, skipping file sharing.")
        return
    try:
        drive = get_service("drive", "v3")
        drive.permissions().create(
            fileId=file_id,
            body={"role": "writer", "type": "user", "emailAddress": email_address},
        ).execute()
        logger.info(f"Shared file {file_id} with {email_address}")
    except HttpError as e:
        logger.error(f"Failed to share file {file_id} with {email_address}: {e}")


def _failure(file_type: str, message: str, error: str) -> Dict[str, Any]:
    tool_name, display, _ = TOOL_NAMES[file_type]
    return {
        "success": False,
        "message": message,
        "error": error,
        "toolName": tool_name,
        "toolDisplayName": display,
    }


def describe_http_error(status: int, api_error: str) -> str:
    if status == 401:
        return (
            "Creating the file failed: the Google API rejected the credentials.\n\n"
            "To fix this:\n"
            "1. Enable the Google Docs, Sheets, Slides and Drive APIs in Google Cloud Console.\n"
            "2. Create a service account and download its JSON key.\n"
            "3. Set GOOGLE_APPLICATION_CREDENTIALS_JSON to the key's contents.\n\n"
            f"Details: {api_error}"
        )
    if status == 403:
        return (
            "Permission error: the service account lacks the required permissions. "
            "Check the API permissions in Google Cloud Console."
        )
    return f"Google API Error ({status}): {api_error}"


def _create_file(file_type: str, title: str, initial_content: Optional[str]) -> str:
    if file_type == "docs":
        docs = get_service("docs", "v1")
        created = docs.documents().create(body={"title": title}).execute()
        file_id = created.get("documentId")
        if not file_id:
            raise RuntimeError("Failed to get document ID from response")
        if initial_content:
            docs.documents().batchUpdate(
                documentId=file_id,
                body={"requests": [{"insertText": {"location": {"index": 1}, "text": initial_content}}]},
            ).execute()
        return file_id

    if file_type == "sheets":
        sheets = get_service("sheets", "v4")
        created = sheets.spreadsheets().create(body={"properties": {"title": title}}).execute()
        file_id = created.get("spreadsheetId")
        if not file_id:
            raise RuntimeError("Failed to get spreadsheet ID from response")
        return file_id

    slides = get_service("slides", "v1")
    created = slides.presentations().create(body={"title": title}).execute()
    file_id = created.get("presentationId")
    if not file_id:
        raise RuntimeError("Failed to get presentation ID from response")
    return file_id


async def create_workspace_file(
    file_type: str,
    title: str,
    share_with_email: Optional[str] = None,
    initial_content: Optional[str] = None,
) -> Dict[str, Any]:
    tool_name, display, noun = TOOL_NAMES[file_type]

    if not title:
        return _failure(file_type, "A title is required.", "title is required")
    if not is_auth_configured():
        return _failure(
            file_type,
            "Google authentication is not configured. Set the GOOGLE_APPLICATION_CREDENTIALS_JSON environment variable.",
            "GOOGLE_APPLICATION_CREDENTIALS_JSON is not set.",
        )
    if share_with_email and not is_valid_email(share_with_email):
        return _failure(file_type, "Invalid email address format.", "Invalid email address format.")

    logger.info(f"[{tool_name}] creating {noun} '{title}' (share with: {share_with_email or 'none'})")
    try:
        file_id = await asyncio.to_thread(_create_file, file_type, title, initial_content)
        if share_with_email:
            await asyncio.to_thread(share_file_with_user, file_id, share_with_email)
    except HttpError as e:
        logger.error(f"[{tool_name}] Google API error: {e}")
        return _failure(file_type, describe_http_error(e.resp.status, e.reason or str(e)), str(e))
    except (ConnectionError, TimeoutError) as e:
        logger.error(f"[{tool_name}] network error: {e}")
        return _failure(
            file_type, "Network error: no response from the API. Check the internet connection.", str(e)
        )
    except Exception as e:
        logger.error(f"[{tool_name}] error creating {noun}: {e}")
        return _failure(file_type, f"Configuration error: {e}", str(e))

    message = f"Created Google {display.split()[1]} {noun} '{title}'"
    message += f" and shared it with {share_with_email}." if share_with_email else "."
    return {
        "success": True,
        "message": message,
        "fileId": file_id,
        "editUrl": edit_url_for(file_id, file_type),
        "title": title,
        "toolName": tool_name,
        "toolDisplayName": display,
    }


@mcp.tool()
async def google_docs_creation(
    title: str, initial_content: Optional[str] = None, share_with_email: Optional[str] = None
) -> Dict[str, Any]:
    """Create a new Google Docs document, optionally with initial content, and share it with an email address.

    Args:
        title: Title of the document.
        initial_content: Text inserted at the start of the document.
        share_with_email: Address that gets editor access.
    """
    return await create_workspace_file("docs", title, share_with_email, initial_content)


@mcp.tool()
async def google_sheets_creation(title: str, share_with_email: Optional[str] = None) -> Dict[str, Any]:
    """Create a new Google Sheets spreadsheet and optionally share it with an email address.

    Args:
        title: Title of the spreadsheet.
        share_with_email: Address that gets editor access.
    """
    return await create_workspace_file("sheets", title, share_with_email)


@mcp.tool()
async def google_slides_creation(title: str, share_with_email: Optional[str] = None) -> Dict[str, Any]:
    """Create a new Google Slides presentation and optionally share it with an email address.

    Args:
        title: Title of the presentation.
        share_with_email: Address that gets editor access.
    """
    return await create_workspace_file("slides", title, share_with_email)


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Google Workspace MCP Server")
    parser.add_argument("--transport", choices=["stdio", "sse"], default="sse")
    parser.add_argument("--host", type=str, default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8940)
    args = parser.parse_args()

    if args.transport == "stdio":
        mcp.run(transport="stdio")
    else:
        mcp.run(transport="sse", host=args.host, port=args.port)
