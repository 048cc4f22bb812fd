"""
Email Module - read, search, send and act on mail in Gmail or Outlook.

Handles:
- "check my inbox" / "read 5 unread emails": inbox summary, then offers to read subjects
- "read my last email": full message, remembered for follow-ups
- Follow-ups on the remembered email: reply (asks for the body), delete and
  move to spam (ask for confirmation), read next
- "search emails for invoice", "send email to a@b.com with subject X and message Y"
- New-mail notifications through stream_updates
"""

import asyncio
import re
from typing import AsyncIterator, Dict, List, Optional

from core.errors import ErrorCodes, ProviderApiError
from core.mail_client import MailClient, build_mail_client
from core.models import ModuleResponse, ModuleUpdate, SuggestedAction, UserContext
from core.scoring import ALL_WORDS_MATCH, contains_any, normalize, split_words
from modules.base import BaseModule
from modules.followup import FollowUpStore, PendingQuestion
from utils.helpers import extract_email_address, extract_number, truncate_text

EMAIL_KEYWORDS = ["email", "emails", "inbox", "message", "messages", "mail", "gmail", "outlook"]
ACTION_KEYWORDS = [
    "read", "check", "show", "list", "send", "compose", "write",
    "delete", "remove", "reply", "respond", "search", "find"
]
FOLLOW_UP_KEYWORDS = ["reply", "respond", "delete", "spam", "junk", "next email", "read next"]
LATEST_EMAIL_PHRASES = [
    "last email", "read the last", "read my last", "read email content",
    "full email", "latest email"
]
YES_WORDS = {"yes", "yeah", "yep", "sure", "ok", "okay", "confirm"}
NO_WORDS = {"no", "nope", "cancel", "skip", "stop"}

READ_SUBJECTS = "read_subjects"
REPLY_BODY = "reply_body"
CONFIRM_DELETE = "confirm_delete"
CONFIRM_SPAM = "confirm_spam"

PROVIDER_FAILURE_MESSAGE = "Sorry, I couldn't reach your mailbox. Please check your sign-in and try again."


class EmailModule(BaseModule):
    """Mailbox assistant over the Gmail and Microsoft Graph APIs."""

    def __init__(self, config: Optional[Dict] = None, timezone: str = "America/Los_Angeles",
                 mail_client: Optional[MailClient] = None):
        """
        Args:
            config: modules.email section of config.yaml
            timezone: Timezone string
            mail_client: Fixed client (tests); otherwise chosen per user provider
        """
        super().__init__(config, timezone)
        self.mail_client = mail_client
        self._pending: FollowUpStore[PendingQuestion] = FollowUpStore(
            ttl_seconds=self.config.get("follow_up_ttl_seconds", 600)
        )
        self._last_email: FollowUpStore[Dict] = FollowUpStore(
            ttl_seconds=self.config.get("email_context_ttl_seconds", 1800)
        )

    def get_id(self) -> str:
        return "email"

    def get_name(self) -> str:
        return "Email Manager"

    def get_description(self) -> str:
        return "Manage emails from Google Gmail and Microsoft Outlook"

    def get_priority(self) -> int:
        return 10

    def get_supported_commands(self) -> List[str]:
        return [
            "read emails", "check emails", "show emails", "list emails",
            "read my emails", "check my inbox", "show my messages",
            "delete email", "remove email", "trash email",
            "reply to email", "respond to email", "answer email",
            "send email", "compose email", "write email",
            "mark as read", "mark as unread", "mark email",
            "search emails", "find emails", "look for emails"
        ]

    def get_domain_keywords(self) -> List[str]:
        return EMAIL_KEYWORDS

    def adjust_confidence(self, confidence: float, normalized_input: str,
                          context: UserContext) -> float:
        if self._pending.has(context.user_id):
            return 1.0

        if self._last_email.has(context.user_id) and contains_any(normalized_input, FOLLOW_UP_KEYWORDS):
            return 1.0

        has_email = contains_any(normalized_input, EMAIL_KEYWORDS)
        has_action = contains_any(normalized_input, ACTION_KEYWORDS)

        if has_email and has_action:
            return max(confidence, 0.9)
        if has_email:
            return max(confidence, 0.7)
        # Own phrases ("mark as read") keep their phrase score
        if confidence >= ALL_WORDS_MATCH:
            return confidence
        if has_action:
            return min(confidence, 0.1)
        return 0.0

    def _client_for(self, context: UserContext) -> Optional[MailClient]:
        return self.mail_client or build_mail_client(context.provider_key)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def handle(self, text: str, context: UserContext) -> ModuleResponse:
        credentials_error = self.check_credentials(context)
        if credentials_error:
            return credentials_error

        client = self._client_for(context)
        if client is None:
            return self.error(
                "I can only access Google or Microsoft mail accounts.",
                ErrorCodes.UNSUPPORTED_PROVIDER
            )

        try:
            return await self._route(text, context, client)
        except ProviderApiError as e:
            self.logger.error(f"Mail provider call failed for user {context.user_id}", exc_info=True)
            if e.status_code == 401:
                return self.error(
                    "Your sign-in has expired. Please sign in again and retry.",
                    ErrorCodes.TOKEN_EXPIRED
                )
            return self.error(PROVIDER_FAILURE_MESSAGE, ErrorCodes.PROVIDER_ERROR)

    async def _route(self, text: str, context: UserContext, client: MailClient) -> ModuleResponse:
        normalized = normalize(text)
        user_id = context.user_id

        pending = self._pending.pop(user_id)
        if pending is not None:
            return await self._answer_pending(pending, text, normalized, context, client)

        last = self._last_email.get(user_id)
        if last is not None:
            if "reply" in normalized or "respond" in normalized:
                return self._ask_reply_body(user_id, last["message"])
            if "delete" in normalized or "trash" in normalized:
                return self._ask_confirmation(user_id, last["message"], CONFIRM_DELETE)
            if "spam" in normalized or "junk" in normalized:
                return self._ask_confirmation(user_id, last["message"], CONFIRM_SPAM)
            if "next email" in normalized or "read next" in normalized:
                return await self._read_message(context, client, last["index"] + 1)

        if "mark" in normalized:
            return self.error(
                "Marking emails as read or unread isn't available yet.",
                ErrorCodes.NOT_SUPPORTED
            )

        if contains_any(normalized, ["reply", "respond", "answer"]):
            return self.error("No email context found. Please read an email first.", ErrorCodes.MISSING_ARGUMENT)

        if contains_any(normalized, ["delete", "remove", "trash"]):
            return self.error(
                "Please read the email you want to delete first, then say 'delete this email'.",
                ErrorCodes.MISSING_ARGUMENT
            )

        if contains_any(normalized, ["search", "find", "look for"]):
            return await self._search(normalized, context, client)

        if contains_any(normalized, ["send", "compose", "write"]):
            return await self._send(text, context, client)

        if contains_any(normalized, ["read", "check", "show", "list"]) or "inbox" in normalized:
            if contains_any(normalized, LATEST_EMAIL_PHRASES):
                return await self._read_message(context, client, 0)
            return await self._list_inbox(normalized, context, client)

        return self.error(
            "I understand you want to work with emails, but I'm not sure what specific action "
            "you'd like to take. Try 'read my emails' or 'send an email'.",
            ErrorCodes.NOT_UNDERSTOOD
        )

    # ------------------------------------------------------------------
    # Follow-up answers
    # ------------------------------------------------------------------

    async def _answer_pending(self, pending: PendingQuestion, text: str, normalized: str,
                              context: UserContext, client: MailClient) -> ModuleResponse:
        words = set(split_words(normalized))
        user_id = context.user_id

        if pending.kind == READ_SUBJECTS:
            if words & YES_WORDS or "read" in normalized or "subject" in normalized:
                subjects = "\n".join(f"• {m['subject']}" for m in pending.data)
                return self.success(
                    f"Here are the subjects of the latest {len(pending.data)} emails:\n\n{subjects}",
                    {"emails": pending.data}
                )
            if words & NO_WORDS:
                return self.success("Okay, I won't read the subjects. What would you like to do next?")
            return self._rearm(user_id, pending, "Please say 'yes' to read the subjects or 'no' to skip.")

        if pending.kind == REPLY_BODY:
            if normalized in NO_WORDS or normalized in ("never mind", "nevermind"):
                return self.success("Okay, I won't send a reply.")
            await asyncio.to_thread(client.reply_to_message, context.access_token, pending.data, text.strip())
            self.logger.info(f"Sent reply for user {user_id}")
            return self.success(f"Your reply to '{pending.data['subject']}' has been sent.")

        if pending.kind in (CONFIRM_DELETE, CONFIRM_SPAM):
            message = pending.data
            if words & YES_WORDS:
                if pending.kind == CONFIRM_DELETE:
                    await asyncio.to_thread(client.trash_message, context.access_token, message["id"])
                    result = f"The email '{message['subject']}' has been moved to trash."
                else:
                    await asyncio.to_thread(client.move_to_spam, context.access_token, message["id"])
                    result = f"The email '{message['subject']}' has been moved to spam."
                self._last_email.clear(user_id)
                return self.success(result)
            if words & NO_WORDS:
                return self.success("Okay, I've left the email where it is.")
            return self._rearm(user_id, pending, "Please reply 'yes' to confirm or 'no' to cancel.")

        self.logger.warning(f"Unknown pending question kind: {pending.kind}")
        return self.success("Let's start over. What would you like to do with your email?")

    def _rearm(self, user_id: str, pending: PendingQuestion, prompt: str) -> ModuleResponse:
        """Corrective prompt; the same question stays open."""
        self._pending.set(user_id, pending)
        return self.success(f"I'm not sure what you'd like me to do. {prompt}").ask(pending.prompt)

    def _ask_reply_body(self, user_id: str, message: Dict) -> ModuleResponse:
        prompt = (
            f"I'll help you reply to the email '{message['subject']}' from {message['from']}. "
            "What would you like to say in your reply?"
        )
        self._pending.set(user_id, PendingQuestion(REPLY_BODY, prompt, message))
        return self.success(prompt).ask()

    def _ask_confirmation(self, user_id: str, message: Dict, kind: str) -> ModuleResponse:
        if kind == CONFIRM_DELETE:
            action = f"delete the email '{message['subject']}' from {message['from']}"
        else:
            action = f"move the email '{message['subject']}' from {message['from']} to spam"
        prompt = f"Are you sure you want to {action}? Reply 'yes' to confirm or 'no' to cancel."
        self._pending.set(user_id, PendingQuestion(kind, prompt, message))
        response = self.success(prompt).ask()
        response.suggested_actions = [
            SuggestedAction("confirm", "Yes", "yes"),
            SuggestedAction("cancel", "No", "no"),
        ]
        return response

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def _list_inbox(self, normalized: str, context: UserContext,
                          client: MailClient) -> ModuleResponse:
        count = extract_number(normalized, default=self.config.get("default_count", 10), maximum=50)
        only_unread = "unread" in normalized

        counts = await asyncio.to_thread(client.get_inbox_counts, context.access_token)
        messages = await asyncio.to_thread(
            client.list_messages, context.access_token, count, only_unread
        )

        if not messages:
            return self.success("You have no unread emails." if only_unread else "Your inbox is empty.")

        prompt = "Would you like me to read the subjects?"
        message = (
            f"You have {counts['total']} emails in your inbox, with {counts['unread']} unread. "
            f"I have loaded the latest {len(messages)} emails. {prompt}"
        )
        self._pending.set(context.user_id, PendingQuestion(READ_SUBJECTS, prompt, messages))

        response = self.success(message, {
            "emails": messages,
            "total": counts["total"],
            "unread": counts["unread"],
        }).ask(prompt)
        response.suggested_actions = [SuggestedAction("read-subjects", "Read subjects", "yes")]
        return response

    async def _read_message(self, context: UserContext, client: MailClient, index: int) -> ModuleResponse:
        message = await asyncio.to_thread(client.get_message, context.access_token, index)
        if message is None:
            if index == 0:
                return self.success("Your inbox is empty.")
            return self.success("There are no more emails in your inbox.")

        self._last_email.set(context.user_id, {"message": message, "index": index})

        details = (
            f"**Subject:** {message['subject']}\n**From:** {message['from']}\n"
            f"**Date:** {message['date']}\n\n**Content:**\n{message['body']}"
        )
        response = self.success(
            details + "\n\nWhat would you like to do next? You can:\n"
            "• Reply to this email\n• Delete this email\n• Move to spam\n• Read next email",
            message
        )
        response.suggested_actions = [
            SuggestedAction("reply", "Reply", "reply"),
            SuggestedAction("delete", "Delete", "delete this email"),
            SuggestedAction("spam", "Move to spam", "move to spam"),
            SuggestedAction("next", "Read next", "read next email"),
        ]
        return response

    async def _search(self, normalized: str, context: UserContext, client: MailClient) -> ModuleResponse:
        query = re.sub(r"\b(search|find|look for|emails?|for|my|about)\b", " ", normalized)
        query = " ".join(query.split())
        if not query:
            return self.error(
                "Please specify what to search for. Example: 'search emails for meeting'",
                ErrorCodes.MISSING_ARGUMENT
            )

        messages = await asyncio.to_thread(
            client.list_messages, context.access_token, self.config.get("search_results", 10), False, query
        )
        if not messages:
            return self.success(f"No emails found matching '{query}'.", {"emails": [], "query": query})

        lines = "\n".join(f"• {m['subject']} - {m['from']}" for m in messages)
        return self.success(
            f"Found {len(messages)} emails matching '{query}':\n\n{lines}",
            {"emails": messages, "query": query}
        )

    async def _send(self, text: str, context: UserContext, client: MailClient) -> ModuleResponse:
        to = extract_email_address(text)
        if not to:
            return self.error(
                "Please specify the recipient email address. Example: 'send email to user@example.com'",
                ErrorCodes.MISSING_ARGUMENT
            )

        subject_match = re.search(
            r"subject\s+['\"]([^'\"]+)['\"]|subject\s+(.+?)(?:\s+and\s+message\b|\s+message\b|$)",
            text, re.IGNORECASE
        )
        body_match = re.search(r"message\s+['\"]([^'\"]+)['\"]|message\s+(.+)$", text, re.IGNORECASE)

        subject = (subject_match.group(1) or subject_match.group(2)).strip() if subject_match else "No Subject"
        body = (body_match.group(1) or body_match.group(2)).strip() if body_match else ""

        if not body:
            return self.error(
                "Please specify the message content. Example: "
                "'send email to user@example.com with subject Hello and message How are you?'",
                ErrorCodes.MISSING_ARGUMENT
            )

        await asyncio.to_thread(client.send_message, context.access_token, to, subject, body)
        self.logger.info(f"Sent email for user {context.user_id} to {to}")
        return self.success(f"Email sent to {to} with subject '{subject}'.", {"to": to, "subject": subject})

    # ------------------------------------------------------------------
    # Updates
    # ------------------------------------------------------------------

    async def stream_updates(self, context: UserContext) -> AsyncIterator[ModuleUpdate]:
        """
        Poll for unread mail and emit one NewEmail update per message first
        seen after the initial poll. Ends when the user's token expires.
        """
        client = self._client_for(context)
        if client is None or not context.access_token:
            return

        interval = float(self.config.get("poll_interval_seconds", 60))
        batch = int(self.config.get("poll_batch_size", 10))
        seen = None

        while not context.is_token_expired:
            try:
                messages = await asyncio.to_thread(client.list_messages, context.access_token, batch, True)
            except ProviderApiError:
                self.logger.warning(f"Mail poll failed for user {context.user_id}", exc_info=True)
                messages = None

            if messages is not None:
                ids = {m["id"] for m in messages}
                if seen is None:
                    seen = ids
                else:
                    for message in reversed(messages):
                        if message["id"] in seen:
                            continue
                        seen.add(message["id"])
                        yield ModuleUpdate(
                            module_id=self.get_id(),
                            type="NewEmail",
                            title="New Email",
                            message=truncate_text(f"New email from {message['from']}: {message['subject']}", 200),
                            data=message,
                            priority="high",
                            metadata={"provider": context.provider_key},
                        )
                    if len(seen) > 1000:
                        seen = ids

            await asyncio.sleep(interval)

        self.logger.info(f"Stopping mail updates for user {context.user_id}: token expired")
