"""
Google Adapter - Gmail and Google Sheets over the Google REST APIs.

Two credential shapes are accepted:
- oauth2: used directly, refreshed at the token endpoint when it is
  about to expire
- service_account: exchanged for a short-lived access token with a
  signed RS256 JWT assertion grant
"""

from __future__ import annotations

import base64
import logging
import time
from email.header import Header
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any, Dict, List, Optional
from urllib.parse import quote

from jose import JWTError, jwt

from flowmesh.config import get_settings
from node_sdk.base import BaseAdapter
from node_sdk.context import ExecutionContext
from node_sdk.credentials import (
    Credentials,
    OAuth2Credentials,
    ServiceAccountCredentials,
    create_oauth_credentials,
)
from node_sdk.errors import ErrorCode, ExecutionError


logger = logging.getLogger(__name__)

GMAIL_API_URL = "https://gmail.googleapis.com/gmail/v1/users/me"
SHEETS_API_URL = "https://sheets.googleapis.com/v4/spreadsheets"

GOOGLE_SCOPES = (
    "https://www.googleapis.com/auth/gmail.send",
    "https://www.googleapis.com/auth/gmail.readonly",
    "https://www.googleapis.com/auth/spreadsheets",
)

JWT_GRANT_TYPE = "urn:ietf:params:oauth:grant-type:jwt-bearer"
SERVICE_ACCOUNT_TOKEN_LIFETIME_S = 3600


def base64url_encode(data: bytes) -> str:
    """Unpadded URL-safe base64."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _base64url_decode(data: str) -> str:
    padded = data + "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(padded).decode("utf-8", errors="replace")


def _join(value: Any) -> Optional[str]:
    if not value:
        return None
    if isinstance(value, list):
        return ", ".join(str(v) for v in value)
    return str(value)


def column_index(column: str) -> int:
    """Zero-based index of a column letter (A -> 0, Z -> 25, AA -> 26)."""
    index = 0
    for char in column.strip().upper():
        if not "A" <= char <= "Z":
            raise ExecutionError(ErrorCode.VALIDATION_ERROR, f"Invalid column: {column}")
        index = index * 26 + (ord(char) - ord("A") + 1)
    return index - 1


def build_service_account_jwt(
    credentials: ServiceAccountCredentials,
    token_url: str,
    now: Optional[int] = None,
) -> str:
    """Sign an RS256 JWT assertion for the service-account grant."""
    now = int(time.time()) if now is None else now
    claims = {
        "iss": credentials.client_email,
        "scope": " ".join(GOOGLE_SCOPES),
        "aud": token_url,
        "iat": now,
        "exp": now + SERVICE_ACCOUNT_TOKEN_LIFETIME_S,
    }

    # Keys pasted into env vars often carry escaped newlines
    pem = credentials.private_key.replace("\\n", "\n")
    try:
        return jwt.encode(claims, pem, algorithm="RS256")
    except (JWTError, ValueError) as e:
        raise ExecutionError(
            ErrorCode.INVALID_CREDENTIALS, f"Invalid service account private key: {e}"
        ) from e


def build_mime_message(
    to: str,
    subject: str,
    body: str,
    html: Optional[str] = None,
    cc: Optional[str] = None,
    bcc: Optional[str] = None,
    sender: Optional[str] = None,
    reply_to: Optional[str] = None,
) -> bytes:
    """Raw RFC 2822 message; multipart/alternative when html is given."""
    if html:
        message: Any = MIMEMultipart("alternative")
        message.attach(MIMEText(body, "plain", "utf-8"))
        message.attach(MIMEText(html, "html", "utf-8"))
    else:
        message = MIMEText(body, "plain", "utf-8")

    if sender:
        message["From"] = sender
    message["To"] = to
    if cc:
        message["Cc"] = cc
    if bcc:
        message["Bcc"] = bcc
    if reply_to:
        message["Reply-To"] = reply_to
    message["Subject"] = Header(subject, "utf-8")
    return message.as_bytes()


class GoogleAdapter(BaseAdapter):
    """Gmail and Sheets operations."""

    provider = "google"
    supported_operations = (
        "gmail.send",
        "gmail.read",
        "gmail.list",
        "sheets.appendRow",
        "sheets.updateRow",
        "sheets.findRow",
        "sheets.getRows",
        "sheets.deleteRow",
    )

    def execute_operation(
        self,
        operation: str,
        input: Dict[str, Any],
        credentials: Optional[Credentials],
        context: ExecutionContext,
    ) -> Dict[str, Any]:
        access_token = self.get_access_token(credentials, context)

        handler = {
            "gmail.send": self.gmail_send,
            "gmail.read": self.gmail_read,
            "gmail.list": self.gmail_list,
            "sheets.appendRow": self.sheets_append_row,
            "sheets.updateRow": self.sheets_update_row,
            "sheets.findRow": self.sheets_find_row,
            "sheets.getRows": self.sheets_get_rows,
            "sheets.deleteRow": self.sheets_delete_row,
        }[operation]
        return handler(input, access_token)

    # ------------------------------------------------------------------
    # Credential handling
    # ------------------------------------------------------------------

    def get_access_token(
        self,
        credentials: Optional[Credentials],
        context: ExecutionContext,
    ) -> str:
        if credentials is None:
            raise ExecutionError(ErrorCode.MISSING_CREDENTIALS, "Google credentials are required")

        if isinstance(credentials, OAuth2Credentials):
            valid = self.get_valid_credentials(credentials, context)
            return valid.access_token

        if isinstance(credentials, ServiceAccountCredentials):
            return self.get_service_account_token(credentials)

        raise ExecutionError(
            ErrorCode.INVALID_CREDENTIALS, "Unsupported credential type for Google"
        )

    def get_service_account_token(self, credentials: ServiceAccountCredentials) -> str:
        token_url = get_settings().google_token_url
        assertion = build_service_account_jwt(credentials, token_url)
        response = self.http_client().post(
            token_url,
            data={"grant_type": JWT_GRANT_TYPE, "assertion": assertion},
        )
        data = response.json_or_none() or {}
        if not data.get("access_token"):
            raise ExecutionError(
                ErrorCode.INVALID_CREDENTIALS, "Service account token exchange returned no token"
            )
        return data["access_token"]

    def refresh_credentials(self, credentials: OAuth2Credentials) -> Optional[OAuth2Credentials]:
        """Exchange the refresh token for a new access token."""
        if not credentials.refresh_token:
            return None

        settings = get_settings()
        secret = settings.google_client_secret
        response = self.http_client().post(
            settings.google_token_url,
            data={
                "client_id": settings.google_client_id or "",
                "client_secret": secret.get_secret_value() if secret else "",
                "refresh_token": credentials.refresh_token,
                "grant_type": "refresh_token",
            },
        )
        data = response.json_or_none() or {}
        if not data.get("access_token"):
            raise ExecutionError(ErrorCode.INVALID_CREDENTIALS, "Token refresh returned no token")

        logger.info("Refreshed Google OAuth2 token")
        return create_oauth_credentials(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token") or credentials.refresh_token,
            expires_in=data.get("expires_in"),
            scope=data.get("scope") or credentials.scope,
            token_type=data.get("token_type") or "Bearer",
        )

    # ------------------------------------------------------------------
    # Gmail
    # ------------------------------------------------------------------

    def gmail_send(self, input: Dict[str, Any], access_token: str) -> Dict[str, Any]:
        to = input.get("to")
        if not to:
            raise ExecutionError(ErrorCode.VALIDATION_ERROR, "Recipient (to) is required")

        subject = input.get("subject") or "(No Subject)"
        raw = build_mime_message(
            to=_join(to),
            subject=subject,
            body=str(input.get("body") or input.get("text") or ""),
            html=input.get("html"),
            cc=_join(input.get("cc")),
            bcc=_join(input.get("bcc")),
            sender=input.get("from"),
            reply_to=_join(input.get("replyTo")),
        )

        client = self.http_client(GMAIL_API_URL, bearer_token=access_token)
        result = client.post("/messages/send", json={"raw": base64url_encode(raw)}).json_or_none() or {}

        return {
            "messageId": result.get("id"),
            "threadId": result.get("threadId"),
            "to": to if isinstance(to, list) else [to],
            "subject": subject,
        }

    def gmail_read(self, input: Dict[str, Any], access_token: str) -> Dict[str, Any]:
        message_id = input.get("messageId")
        if not message_id:
            raise ExecutionError(ErrorCode.VALIDATION_ERROR, "Message ID is required")

        client = self.http_client(GMAIL_API_URL, bearer_token=access_token)
        message = client.get(
            f"/messages/{quote(str(message_id), safe='')}",
            params={"format": input.get("format") or "full"},
        ).json_or_none() or {}
        return self.parse_gmail_message(message)

    def gmail_list(self, input: Dict[str, Any], access_token: str) -> Dict[str, Any]:
        params: Dict[str, Any] = {"maxResults": input.get("maxResults") or 10}
        if input.get("query"):
            params["q"] = input["query"]
        if input.get("pageToken"):
            params["pageToken"] = input["pageToken"]

        client = self.http_client(GMAIL_API_URL, bearer_token=access_token)
        data = client.get("/messages", params=params).json_or_none() or {}

        return {
            "messages": data.get("messages") or [],
            "nextPageToken": data.get("nextPageToken"),
            "resultSizeEstimate": data.get("resultSizeEstimate"),
        }

    @classmethod
    def parse_gmail_message(cls, message: Dict[str, Any]) -> Dict[str, Any]:
        payload = message.get("payload") or {}
        headers = {
            str(h.get("name", "")).lower(): h.get("value", "")
            for h in payload.get("headers") or []
        }
        return {
            "id": message.get("id"),
            "threadId": message.get("threadId"),
            "labelIds": message.get("labelIds"),
            "snippet": message.get("snippet"),
            "from": headers.get("from", ""),
            "to": headers.get("to", ""),
            "subject": headers.get("subject", ""),
            "date": headers.get("date", ""),
            "body": cls.extract_message_body(payload),
        }

    @classmethod
    def extract_message_body(cls, payload: Dict[str, Any]) -> str:
        """First text/plain or text/html body found, depth first."""
        if not payload:
            return ""
        data = (payload.get("body") or {}).get("data")
        if data:
            return _base64url_decode(data)

        for part in payload.get("parts") or []:
            if part.get("mimeType") in ("text/plain", "text/html"):
                part_data = (part.get("body") or {}).get("data")
                if part_data:
                    return _base64url_decode(part_data)
            if part.get("parts"):
                nested = cls.extract_message_body(part)
                if nested:
                    return nested
        return ""

    # ------------------------------------------------------------------
    # Sheets
    # ------------------------------------------------------------------

    def _sheets(self, access_token: str) -> Any:
        return self.http_client(SHEETS_API_URL, bearer_token=access_token)

    def sheets_append_row(self, input: Dict[str, Any], access_token: str) -> Dict[str, Any]:
        spreadsheet_id = input.get("spreadsheetId")
        sheet_name = input.get("sheetName") or "Sheet1"
        values = input.get("values")
        if not spreadsheet_id:
            raise ExecutionError(ErrorCode.VALIDATION_ERROR, "Spreadsheet ID is required")
        if not isinstance(values, list):
            raise ExecutionError(ErrorCode.VALIDATION_ERROR, "Values must be an array")

        result = self._sheets(access_token).post(
            f"/{spreadsheet_id}/values/{quote(sheet_name, safe='')}:append",
            params={"valueInputOption": "USER_ENTERED", "insertDataOption": "INSERT_ROWS"},
            json={"values": [values]},
        ).json_or_none() or {}
        updates = result.get("updates") or {}

        return {
            "spreadsheetId": spreadsheet_id,
            "updatedRange": updates.get("updatedRange"),
            "updatedRows": updates.get("updatedRows"),
            "updatedCells": updates.get("updatedCells"),
            "appendedRow": values,
        }

    def sheets_update_row(self, input: Dict[str, Any], access_token: str) -> Dict[str, Any]:
        spreadsheet_id = input.get("spreadsheetId")
        cell_range = input.get("range")
        if not spreadsheet_id or not cell_range:
            raise ExecutionError(
                ErrorCode.VALIDATION_ERROR, "Spreadsheet ID and range are required"
            )

        result = self._sheets(access_token).put(
            f"/{spreadsheet_id}/values/{quote(cell_range, safe='')}",
            params={"valueInputOption": "USER_ENTERED"},
            json={"values": [input.get("values") or []]},
        ).json_or_none() or {}

        return {
            "spreadsheetId": spreadsheet_id,
            "updatedRange": result.get("updatedRange"),
            "updatedRows": result.get("updatedRows"),
            "updatedCells": result.get("updatedCells"),
        }

    def sheets_get_rows(self, input: Dict[str, Any], access_token: str) -> Dict[str, Any]:
        spreadsheet_id = input.get("spreadsheetId")
        if not spreadsheet_id:
            raise ExecutionError(ErrorCode.VALIDATION_ERROR, "Spreadsheet ID is required")

        cell_range = input.get("range") or input.get("sheetName") or "Sheet1"
        result = self._sheets(access_token).get(
            f"/{spreadsheet_id}/values/{quote(cell_range, safe='')}"
        ).json_or_none() or {}
        values: List[List[Any]] = result.get("values") or []

        return {
            "spreadsheetId": spreadsheet_id,
            "range": result.get("range"),
            "rowCount": len(values),
            "rows": [
                {"rowNumber": index + 1, "values": row}
                for index, row in enumerate(values)
            ],
        }

    def sheets_find_row(self, input: Dict[str, Any], access_token: str) -> Dict[str, Any]:
        spreadsheet_id = input.get("spreadsheetId")
        column = input.get("column")
        value = input.get("value")
        match_type = input.get("matchType") or "exact"
        if not spreadsheet_id or not column or value is None:
            raise ExecutionError(
                ErrorCode.VALIDATION_ERROR, "Spreadsheet ID, column, and value are required"
            )

        index = column_index(str(column))
        all_rows = self.sheets_get_rows(
            {"spreadsheetId": spreadsheet_id, "sheetName": input.get("sheetName")},
            access_token,
        )["rows"]

        search = str(value)

        def matches(row: Dict[str, Any]) -> bool:
            cells = row["values"]
            cell = cells[index] if index < len(cells) else None
            cell_text = "" if cell is None else str(cell)
            if match_type == "contains":
                return search.lower() in cell_text.lower()
            if match_type == "startsWith":
                return cell_text.lower().startswith(search.lower())
            return cell_text == search

        found = [row for row in all_rows if matches(row)]
        return {
            "found": bool(found),
            "count": len(found),
            "rows": found,
            "firstMatch": found[0] if found else None,
        }

    def sheets_delete_row(self, input: Dict[str, Any], access_token: str) -> Dict[str, Any]:
        spreadsheet_id = input.get("spreadsheetId")
        row_index = input.get("rowIndex")
        if not spreadsheet_id or row_index is None:
            raise ExecutionError(
                ErrorCode.VALIDATION_ERROR, "Spreadsheet ID and row index are required"
            )

        row_index = int(row_index)
        self._sheets(access_token).post(
            f"/{spreadsheet_id}:batchUpdate",
            json={
                "requests": [{
                    "deleteDimension": {
                        "range": {
                            "sheetId": input.get("sheetId") or 0,
                            "dimension": "ROWS",
                            "startIndex": row_index,
                            "endIndex": row_index + 1,
                        },
                    },
                }],
            },
        )

        return {"spreadsheetId": spreadsheet_id, "deletedRowIndex": row_index}


__all__ = ["GoogleAdapter", "base64url_encode", "build_mime_message", "build_service_account_jwt", "column_index"]
