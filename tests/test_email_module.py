"""
Tests for the email module.

Covers:
- Inbox listing and the "read the subjects?" follow-up
- Reading a message, then reply / delete / spam / next on it
- Send and search parsing
- Provider and credential failures
- Follow-up routing through the dispatcher
- New-mail updates
"""

import asyncio
from datetime import datetime, timedelta

import pytz

from core.dispatcher import CommandDispatcher
from core.errors import ErrorCodes, ProviderApiError
from helpers import FakeMailClient, FakeOpenAIClient, StubModule, make_context, make_message
from modules.email import EmailModule
from modules.general import GeneralAssistantModule
from modules.registry import ModuleRegistry


def run(coro):
    return asyncio.run(coro)


class TestEmailScoring:

    def setup_method(self):
        self.module = EmailModule(mail_client=FakeMailClient())
        self.context = make_context()

    def score(self, text):
        return run(self.module.can_handle(text, self.context))

    def test_exact_phrase(self):
        assert self.score("read emails") == 1.0

    def test_email_and_action(self):
        assert self.score("could you check my gmail") == 0.9

    def test_email_keyword_only(self):
        assert self.score("any new mail") >= 0.7

    def test_action_only_is_capped(self):
        assert self.score("find restaurants nearby") == 0.1

    def test_every_supported_phrase_is_exact(self):
        for phrase in self.module.get_supported_commands():
            assert self.score(phrase) == 1.0, phrase

    def test_unrelated(self):
        assert self.score("what's the weather like") == 0.0

    def test_pending_question_claims_next_input(self):
        run(self.module.handle("check my inbox", self.context))

        assert self.score("yes") == 1.0

    def test_follow_up_on_read_email(self):
        run(self.module.handle("read my last email", self.context))

        assert self.score("reply") == 1.0
        assert self.score("what time is it") == 0.0

    def test_follow_up_is_per_user(self):
        run(self.module.handle("read my last email", self.context))

        assert run(self.module.can_handle("reply", make_context(user_id="user-2"))) == 0.1


class TestInbox:

    def setup_method(self):
        self.client = FakeMailClient(messages=[make_message(0, unread=True), make_message(1), make_message(2)])
        self.module = EmailModule(mail_client=self.client)
        self.context = make_context()

    def handle(self, text, context=None):
        return run(self.module.handle(text, context or self.context))

    def test_list_asks_to_read_subjects(self):
        response = self.handle("check my inbox")

        assert response.success
        assert response.message == (
            "You have 3 emails in your inbox, with 1 unread. "
            "I have loaded the latest 3 emails. Would you like me to read the subjects?"
        )
        assert response.requires_follow_up
        assert response.follow_up_prompt == "Would you like me to read the subjects?"
        assert response.data["total"] == 3
        assert len(response.data["emails"]) == 3
        assert response.suggested_actions[0].id == "read-subjects"

    def test_yes_reads_subjects(self):
        self.handle("check my inbox")

        response = self.handle("yes")

        assert response.success
        assert response.message.startswith("Here are the subjects of the latest 3 emails:")
        assert "• Subject 2" in response.message
        assert not response.requires_follow_up

    def test_no_skips_subjects(self):
        self.handle("check my inbox")

        response = self.handle("no")

        assert response.message.startswith("Okay, I won't read the subjects")
        assert self.handle("yes").error_code == ErrorCodes.NOT_UNDERSTOOD

    def test_unclear_answer_keeps_question_open(self):
        self.handle("check my inbox")

        response = self.handle("maybe later")

        assert response.success
        assert response.message.startswith("I'm not sure what you'd like me to do.")
        assert response.requires_follow_up
        assert self.handle("sure").message.startswith("Here are the subjects")

    def test_count_and_unread_filter(self):
        response = self.handle("show 2 unread emails")

        assert self.client.list_calls[-1] == (2, True, None)
        assert len(response.data["emails"]) == 1

    def test_count_is_capped(self):
        self.handle("list 500 emails")

        assert self.client.list_calls[-1][0] == 50

    def test_empty_inbox(self):
        module = EmailModule(mail_client=FakeMailClient(messages=[]))

        response = run(module.handle("check my inbox", self.context))

        assert response.message == "Your inbox is empty."
        assert not response.requires_follow_up

    def test_no_unread(self):
        module = EmailModule(mail_client=FakeMailClient())

        response = run(module.handle("read unread emails", self.context))

        assert response.message == "You have no unread emails."

    def test_question_is_not_shared_between_users(self):
        self.handle("check my inbox")

        response = self.handle("yes", make_context(user_id="user-2"))

        assert response.error_code == ErrorCodes.NOT_UNDERSTOOD


class TestMessageActions:

    def setup_method(self):
        self.client = FakeMailClient()
        self.module = EmailModule(mail_client=self.client)
        self.context = make_context()

    def handle(self, text):
        return run(self.module.handle(text, self.context))

    def test_read_latest(self):
        response = self.handle("read my last email")

        assert response.success
        assert "**Subject:** Subject 0" in response.message
        assert "Body of Subject 0" in response.message
        assert [a.id for a in response.suggested_actions] == ["reply", "delete", "spam", "next"]

    def test_reply_two_step(self):
        self.handle("read my last email")

        prompt = self.handle("reply")
        assert prompt.requires_follow_up
        assert "What would you like to say in your reply?" in prompt.message

        response = self.handle("Thanks, see you then!")

        assert response.message == "Your reply to 'Subject 0' has been sent."
        assert self.client.replies == [("msg-0", "Thanks, see you then!")]

    def test_reply_cancelled(self):
        self.handle("read my last email")
        self.handle("respond to this")

        response = self.handle("never mind")

        assert response.message == "Okay, I won't send a reply."
        assert self.client.replies == []

    def test_reply_without_context(self):
        response = self.handle("reply to email")

        assert response.error_code == ErrorCodes.MISSING_ARGUMENT
        assert response.message == "No email context found. Please read an email first."

    def test_delete_confirmed(self):
        self.handle("read my last email")

        prompt = self.handle("delete this email")
        assert prompt.message == (
            "Are you sure you want to delete the email 'Subject 0' from sender0@example.com? "
            "Reply 'yes' to confirm or 'no' to cancel."
        )
        assert [a.command for a in prompt.suggested_actions] == ["yes", "no"]

        response = self.handle("yes")

        assert response.message == "The email 'Subject 0' has been moved to trash."
        assert self.client.trashed == ["msg-0"]
        # context is gone once the email is deleted
        assert self.handle("reply").error_code == ErrorCodes.MISSING_ARGUMENT

    def test_delete_declined(self):
        self.handle("read my last email")
        self.handle("trash it")

        response = self.handle("no")

        assert response.message == "Okay, I've left the email where it is."
        assert self.client.trashed == []

    def test_delete_unclear_answer_reasks(self):
        self.handle("read my last email")
        self.handle("delete this email")

        response = self.handle("hmm")

        assert response.requires_follow_up
        assert self.client.trashed == []
        self.handle("confirm")
        assert self.client.trashed == ["msg-0"]

    def test_delete_without_context(self):
        assert self.handle("delete email").error_code == ErrorCodes.MISSING_ARGUMENT

    def test_move_to_spam(self):
        self.handle("read my last email")
        prompt = self.handle("move it to spam")
        assert "to spam?" in prompt.message

        response = self.handle("yes")

        assert response.message == "The email 'Subject 0' has been moved to spam."
        assert self.client.spammed == ["msg-0"]

    def test_read_next(self):
        self.handle("read my last email")

        assert "**Subject:** Subject 1" in self.handle("read next email").message
        assert "**Subject:** Subject 2" in self.handle("next email please").message
        assert self.handle("read next email").message == "There are no more emails in your inbox."

    def test_mark_not_supported(self):
        response = self.handle("mark email as read")

        assert response.error_code == ErrorCodes.NOT_SUPPORTED

    def test_vague_request(self):
        response = self.handle("email stuff")

        assert response.error_code == ErrorCodes.NOT_UNDERSTOOD


class TestSendAndSearch:

    def setup_method(self):
        self.client = FakeMailClient()
        self.module = EmailModule(mail_client=self.client)
        self.context = make_context()

    def handle(self, text):
        return run(self.module.handle(text, self.context))

    def test_send(self):
        response = self.handle("send email to alice@example.com with subject Lunch and message See you at noon")

        assert response.success
        assert response.message == "Email sent to alice@example.com with subject 'Lunch'."
        assert self.client.sent == [("alice@example.com", "Lunch", "See you at noon")]

    def test_send_quoted(self):
        self.handle("compose an email to bob@example.org subject 'Q3 plan' message 'Draft attached'")

        assert self.client.sent == [("bob@example.org", "Q3 plan", "Draft attached")]

    def test_send_without_subject(self):
        self.handle("write email to carol@example.com message hello there")

        assert self.client.sent == [("carol@example.com", "No Subject", "hello there")]

    def test_send_missing_recipient(self):
        response = self.handle("send an email to bob")

        assert response.error_code == ErrorCodes.MISSING_ARGUMENT
        assert self.client.sent == []

    def test_send_missing_body(self):
        response = self.handle("send email to alice@example.com with subject Lunch")

        assert response.error_code == ErrorCodes.MISSING_ARGUMENT
        assert self.client.sent == []

    def test_search(self):
        response = self.handle("search emails for Subject 1")

        assert response.success
        assert response.message.startswith("Found 1 emails matching 'subject 1'")
        assert response.data["query"] == "subject 1"

    def test_search_no_results(self):
        response = self.handle("find emails about invoices")

        assert response.message == "No emails found matching 'invoices'."

    def test_search_without_query(self):
        assert self.handle("search emails").error_code == ErrorCodes.MISSING_ARGUMENT


class TestFailures:

    def test_expired_token(self):
        module = EmailModule(mail_client=FakeMailClient())
        expired = make_context(token_expiry=datetime.now(pytz.utc) - timedelta(minutes=1))

        response = run(module.handle("read emails", expired))

        assert response.error_code == ErrorCodes.TOKEN_EXPIRED

    def test_missing_token(self):
        module = EmailModule(mail_client=FakeMailClient())

        response = run(module.handle("read emails", make_context(access_token="")))

        assert response.error_code == ErrorCodes.TOKEN_EXPIRED

    def test_unsupported_provider(self):
        module = EmailModule()

        response = run(module.handle("read emails", make_context(provider="yahoo")))

        assert response.error_code == ErrorCodes.UNSUPPORTED_PROVIDER

    def test_provider_error(self):
        client = FakeMailClient(fail_with=ProviderApiError("google", "server error", 500))
        module = EmailModule(mail_client=client)

        response = run(module.handle("read emails", make_context()))

        assert response.error_code == ErrorCodes.PROVIDER_ERROR

    def test_provider_unauthorized(self):
        client = FakeMailClient(fail_with=ProviderApiError("microsoft", "unauthorized", 401))
        module = EmailModule(mail_client=client)

        response = run(module.handle("read emails", make_context(provider="microsoft")))

        assert response.error_code == ErrorCodes.TOKEN_EXPIRED


class TestEmailThroughDispatcher:

    def setup_method(self):
        self.client = FakeMailClient()
        self.registry = ModuleRegistry()
        self.dispatcher = CommandDispatcher(self.registry)
        self.email = EmailModule(mail_client=self.client)
        self.openai = FakeOpenAIClient(reply="General answer.")
        self.general = GeneralAssistantModule(registry=self.registry, openai_client=self.openai)
        self.dispatcher.register_module(self.email)
        self.dispatcher.register_module(self.general)
        self.context = make_context()

    def dispatch(self, text):
        return run(self.dispatcher.process_command(text, self.context))

    def test_reply_conversation(self):
        first = self.dispatch("read my last email")
        assert first.metadata["moduleId"] == "email"

        second = self.dispatch("reply")
        assert second.metadata["moduleId"] == "email"
        assert second.metadata["confidence"] == 1.0
        assert second.requires_follow_up

        third = self.dispatch("Sounds good, see you at 3pm")
        assert third.metadata["moduleId"] == "email"
        assert third.metadata["confidence"] == 1.0
        assert third.message == "Your reply to 'Subject 0' has been sent."
        assert self.client.replies == [("msg-0", "Sounds good, see you at 3pm")]

    def test_general_question_not_captured(self):
        response = self.dispatch("what's the capital of France?")

        assert response.metadata["moduleId"] == "general"
        assert response.message == "General answer."

    def test_unsupported_action_falls_back(self):
        response = self.dispatch("mark email as read")

        assert response.success
        assert response.metadata["moduleId"] == "general"
        assert response.metadata["isFallback"] is True
        assert response.metadata["originalModule"] == "email"

    def test_exact_mark_phrase_selects_email_then_falls_back(self):
        response = self.dispatch("mark as read")

        assert response.metadata["moduleId"] == "general"
        assert response.metadata["isFallback"] is True
        assert response.metadata["originalModule"] == "email"
        assert "Marking emails" in response.metadata["originalError"]

    def test_domain_failure_is_not_rerouted(self):
        client = FakeMailClient(fail_with=ProviderApiError("google", "server error", 503))
        self.dispatcher.register_module(EmailModule(mail_client=client))

        response = self.dispatch("read my emails")

        assert response.error_code == ErrorCodes.PROVIDER_ERROR
        assert response.metadata["isFallback"] is False

    def test_fallback_stub_sees_raw_text(self):
        general = StubModule("general", confidence=0.0)
        self.dispatcher.register_module(general)

        self.dispatch("mark email as unread")

        assert general.handled == ["mark email as unread"]


class ScriptedMailClient(FakeMailClient):
    """list_messages returns successive scripted batches (or raises them)."""

    def __init__(self, batches):
        super().__init__(messages=[])
        self.batches = list(batches)

    def list_messages(self, access_token, count=10, only_unread=False, query=None):
        self.list_calls.append((count, only_unread, query))
        batch = self.batches.pop(0) if len(self.batches) > 1 else self.batches[0]
        if isinstance(batch, Exception):
            raise batch
        return [dict(m) for m in batch]


class TestEmailUpdates:

    def test_new_mail_after_first_poll(self):
        m0, m1, m2 = (make_message(i, unread=True) for i in range(3))
        client = ScriptedMailClient([
            ProviderApiError("google", "temporarily unavailable", 503),
            [m0],
            [m2, m1, m0],
        ])
        module = EmailModule(config={"poll_interval_seconds": 0}, mail_client=client)

        async def collect():
            stream = module.stream_updates(make_context())
            updates = [await stream.__anext__(), await stream.__anext__()]
            await stream.aclose()
            return updates

        updates = run(collect())

        # oldest new message first; the seeded message is never announced
        assert [u.data["id"] for u in updates] == ["msg-1", "msg-2"]
        assert updates[0].type == "NewEmail"
        assert updates[0].priority == "high"
        assert updates[0].message == "New email from sender1@example.com: Subject 1"
        assert all(call[1] is True for call in client.list_calls)

    def test_stream_ends_when_token_expired(self):
        module = EmailModule(config={"poll_interval_seconds": 0}, mail_client=FakeMailClient())
        expired = make_context(token_expiry=datetime.now(pytz.utc) - timedelta(seconds=1))

        async def collect():
            return [u async for u in module.stream_updates(expired)]

        assert run(collect()) == []
