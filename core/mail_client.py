"""
Mail provider clients.

Handles all interactions with the provider mail APIs:
- Inbox counts and message listing (Gmail REST v1, Microsoft Graph v1.0)
- Reading a single message with its body
- Trash / spam moves, sending and replying

Messages are normalized to dicts:
    {"id", "thread_id", "subject", "from", "date", "snippet", "is_unread",
     "body", "message_id_header"}
"""

import base64
from email.mime.text import MIMEText
from typing import Dict, List, Optional

from core.provider_client import ProviderClient

NO_SUBJECT = "(No Subject)"
UNKNOWN_SENDER = "Unknown Sender"
UNKNOWN_DATE = "Unknown Date"


class MailClient(ProviderClient):
    """Base class for provider mail clients. Every call takes the user's bearer token."""

    def get_inbox_counts(self, access_token: str) -> Dict[str, int]:
        """Return {"total": int, "unread": int} for the inbox."""
        raise NotImplementedError

    def list_messages(self, access_token: str, count: int = 10,
                      only_unread: bool = False, query: Optional[str] = None) -> List[Dict]:
        """Newest inbox messages first, without bodies."""
        raise NotImplementedError

    def get_message(self, access_token: str, index: int = 0) -> Optional[Dict]:
        """The index-th newest inbox message with its body, or None."""
        raise NotImplementedError

    def trash_message(self, access_token: str, message_id: str) -> None:
        raise NotImplementedError

    def move_to_spam(self, access_token: str, message_id: str) -> None:
        raise NotImplementedError

    def send_message(self, access_token: str, to: str, subject: str, body: str) -> None:
        raise NotImplementedError

    def reply_to_message(self, access_token: str, message: Dict, body: str) -> None:
        raise NotImplementedError


class GmailClient(MailClient):
    """Gmail REST API (users/me)."""

    provider = "google"
    base_url = "https://gmail.googleapis.com/gmail/v1/users/me"

    @staticmethod
    def _header(headers: List[Dict], name: str) -> Optional[str]:
        for header in headers or []:
            if header.get("name", "").lower() == name.lower():
                return header.get("value")
        return None

    @staticmethod
    def _decode(data: str) -> str:
        padded = data + "=" * (-len(data) % 4)
        return base64.urlsafe_b64decode(padded.encode()).decode("utf-8", errors="replace")

    def _extract_text(self, payload: Dict) -> str:
        """First text/plain part, walking nested multiparts."""
        if payload.get("mimeType") == "text/plain" and payload.get("body", {}).get("data"):
            return self._decode(payload["body"]["data"])
        for part in payload.get("parts", []) or []:
            text = self._extract_text(part)
            if text:
                return text
        return ""

    def _normalize(self, raw: Dict, with_body: bool = False) -> Dict:
        headers = raw.get("payload", {}).get("headers", [])
        message = {
            "id": raw.get("id"),
            "thread_id": raw.get("threadId"),
            "subject": self._header(headers, "Subject") or NO_SUBJECT,
            "from": self._header(headers, "From") or UNKNOWN_SENDER,
            "date": self._header(headers, "Date") or UNKNOWN_DATE,
            "snippet": raw.get("snippet", ""),
            "is_unread": "UNREAD" in (raw.get("labelIds") or []),
            "message_id_header": self._header(headers, "Message-ID"),
            "body": "",
        }
        if with_body:
            message["body"] = self._extract_text(raw.get("payload", {})) or message["snippet"] or "No content available"
        return message

    def _list_ids(self, access_token: str, count: int, q: str) -> List[str]:
        data = self._request("GET", "messages", access_token, params={"q": q, "maxResults": count})
        return [m["id"] for m in data.get("messages", [])]

    def get_inbox_counts(self, access_token: str) -> Dict[str, int]:
        label = self._request("GET", "labels/INBOX", access_token)
        return {
            "total": int(label.get("messagesTotal", 0)),
            "unread": int(label.get("messagesUnread", 0)),
        }

    def list_messages(self, access_token: str, count: int = 10,
                      only_unread: bool = False, query: Optional[str] = None) -> List[Dict]:
        q = "in:inbox is:unread" if only_unread else "in:inbox"
        if query:
            q = f"{q} {query}"

        messages = []
        for message_id in self._list_ids(access_token, count, q):
            raw = self._request(
                "GET", f"messages/{message_id}", access_token,
                params={"format": "metadata", "metadataHeaders": ["Subject", "From", "Date", "Message-ID"]}
            )
            messages.append(self._normalize(raw))
        return messages

    def get_message(self, access_token: str, index: int = 0) -> Optional[Dict]:
        ids = self._list_ids(access_token, index + 1, "in:inbox")
        if len(ids) <= index:
            return None
        raw = self._request("GET", f"messages/{ids[index]}", access_token, params={"format": "full"})
        return self._normalize(raw, with_body=True)

    def trash_message(self, access_token: str, message_id: str) -> None:
        self._request("POST", f"messages/{message_id}/trash", access_token)

    def move_to_spam(self, access_token: str, message_id: str) -> None:
        self._request(
            "POST", f"messages/{message_id}/modify", access_token,
            json={"addLabelIds": ["SPAM"], "removeLabelIds": ["INBOX"]}
        )

    @staticmethod
    def _raw(mime: MIMEText) -> str:
        return base64.urlsafe_b64encode(mime.as_bytes()).decode()

    def send_message(self, access_token: str, to: str, subject: str, body: str) -> None:
        mime = MIMEText(body)
        mime["To"] = to
        mime["Subject"] = subject
        self._request("POST", "messages/send", access_token, json={"raw": self._raw(mime)})

    def reply_to_message(self, access_token: str, message: Dict, body: str) -> None:
        subject = message.get("subject") or ""
        mime = MIMEText(body)
        mime["To"] = message.get("from", "")
        mime["Subject"] = subject if subject.lower().startswith("re:") else f"Re: {subject}"
        if message.get("message_id_header"):
            mime["In-Reply-To"] = message["message_id_header"]
            mime["References"] = message["message_id_header"]

        payload = {"raw": self._raw(mime)}
        if message.get("thread_id"):
            payload["threadId"] = message["thread_id"]
        self._request("POST", "messages/send", access_token, json=payload)


class OutlookClient(MailClient):
    """Microsoft Graph mail API (me)."""

    provider = "microsoft"
    base_url = "https://graph.microsoft.com/v1.0/me"
    select = "id,conversationId,subject,from,receivedDateTime,bodyPreview,isRead,internetMessageId"

    def _normalize(self, raw: Dict, with_body: bool = False) -> Dict:
        received = raw.get("receivedDateTime")
        message = {
            "id": raw.get("id"),
            "thread_id": raw.get("conversationId"),
            "subject": raw.get("subject") or NO_SUBJECT,
            "from": (raw.get("from") or {}).get("emailAddress", {}).get("address") or UNKNOWN_SENDER,
            "date": received.replace("T", " ")[:16] if received else UNKNOWN_DATE,
            "snippet": raw.get("bodyPreview", ""),
            "is_unread": not raw.get("isRead", True),
            "message_id_header": raw.get("internetMessageId"),
            "body": "",
        }
        if with_body:
            message["body"] = (raw.get("body") or {}).get("content") or message["snippet"] or "No content available"
        return message

    def get_inbox_counts(self, access_token: str) -> Dict[str, int]:
        folder = self._request("GET", "mailFolders/Inbox", access_token)
        return {
            "total": int(folder.get("totalItemCount", 0)),
            "unread": int(folder.get("unreadItemCount", 0)),
        }

    def list_messages(self, access_token: str, count: int = 10,
                      only_unread: bool = False, query: Optional[str] = None) -> List[Dict]:
        params = {"$top": count, "$select": self.select}
        if query:
            # Graph rejects $orderby together with $search; results come back by relevance
            params["$search"] = f'"{query}"'
        else:
            params["$orderby"] = "receivedDateTime desc"
            if only_unread:
                params["$filter"] = "isRead eq false"

        data = self._request("GET", "mailFolders/Inbox/messages", access_token, params=params)
        return [self._normalize(raw) for raw in data.get("value", [])]

    def get_message(self, access_token: str, index: int = 0) -> Optional[Dict]:
        params = {
            "$top": 1,
            "$skip": index,
            "$orderby": "receivedDateTime desc",
            "$select": self.select + ",body",
        }
        data = self._request("GET", "mailFolders/Inbox/messages", access_token, params=params)
        values = data.get("value", [])
        if not values:
            return None
        return self._normalize(values[0], with_body=True)

    def trash_message(self, access_token: str, message_id: str) -> None:
        self._request("POST", f"messages/{message_id}/move", access_token,
                      json={"destinationId": "deleteditems"})

    def move_to_spam(self, access_token: str, message_id: str) -> None:
        self._request("POST", f"messages/{message_id}/move", access_token,
                      json={"destinationId": "junkemail"})

    def send_message(self, access_token: str, to: str, subject: str, body: str) -> None:
        payload = {
            "message": {
                "subject": subject,
                "body": {"contentType": "Text", "content": body},
                "toRecipients": [{"emailAddress": {"address": to}}],
            },
            "saveToSentItems": True,
        }
        self._request("POST", "sendMail", access_token, json=payload)

    def reply_to_message(self, access_token: str, message: Dict, body: str) -> None:
        self._request("POST", f"messages/{message['id']}/reply", access_token,
                      json={"comment": body})


MAIL_CLIENTS = {
    "google": GmailClient,
    "microsoft": OutlookClient,
}


def build_mail_client(provider: str) -> Optional[MailClient]:
    """Client for a provider name ("google"/"microsoft"), None when unsupported."""
    client_class = MAIL_CLIENTS.get((provider or "").strip().lower())
    return client_class() if client_class else None
