"""
Newsletter Tests
================

Tests for the newsletter including:
- CSV export quoting
- Confirm / unsubscribe link handling and redirects
- The Resend mail client
- Campaign sends counting individual failures
"""

import csv
import io
import json
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from httpx import AsyncClient

from ancretoi.config import settings
from ancretoi.core.errors import ErrorCodes, ServiceUnavailableError
from ancretoi.main import app
from ancretoi.models.newsletter import NewsletterSubscriber
from ancretoi.services.mailer import Mailer, MailerError, get_mailer
from ancretoi.services.newsletter_service import NewsletterService, export_csv, redirect_path


def _subscriber(email: str = "ana@example.com", status: str = "pending", **kwargs) -> NewsletterSubscriber:
    return NewsletterSubscriber(email=email, status=status, tags=kwargs.pop("tags", []), **kwargs)


def _result(value) -> MagicMock:
    result = MagicMock()
    result.scalar_one_or_none.return_value = value
    return result


def _mailer(send: AsyncMock | None = None) -> Mailer:
    mailer = Mailer(api_key="re_test", sender="Ancre-toi <hello@example.com>")
    mailer.send = send or AsyncMock(return_value="msg_1")
    return mailer


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------

class TestExportCsv:

    def test_every_cell_quoted_and_tags_as_json(self):
        sub = _subscriber(
            email='quote"me@example.com',
            status="confirmed",
            tags=["souffle", "journal"],
            source="site",
            confirmed_at=datetime(2026, 3, 1, 8, 0, tzinfo=timezone.utc),
        )
        text = export_csv([sub])
        header, line = text.split("\n")

        assert header == "email,status,tags,source,consentAt,confirmedAt,unsubscribedAt,createdAt,updatedAt"
        assert line.startswith('"quote""me@example.com","confirmed",')

        row = next(csv.reader(io.StringIO(line)))
        assert json.loads(row[2]) == ["souffle", "journal"]
        assert row[5] == "2026-03-01T08:00:00+00:00"
        assert row[4] == ""

    def test_empty_export_is_header_only(self):
        assert export_csv([]).count("\n") == 0


def test_redirect_paths(monkeypatch):
    monkeypatch.setattr(settings, "APP_URL", "https://ancre-toi.fr/")
    assert redirect_path("confirmed") == "https://ancre-toi.fr/newsletter/confirmed"
    assert redirect_path("error", "invalid_token") == "https://ancre-toi.fr/newsletter/error?code=invalid_token"


# ---------------------------------------------------------------------------
# Links
# ---------------------------------------------------------------------------

class TestLinks:

    @pytest.mark.asyncio
    async def test_confirm_stamps_consent_and_clears_token(self):
        sub = _subscriber(confirm_token="tok")
        db = AsyncMock()
        db.execute.return_value = _result(sub)

        url = await NewsletterService(db, _mailer()).confirm("tok")

        assert url.endswith("/newsletter/confirmed")
        assert sub.status == "confirmed"
        assert sub.confirm_token is None
        assert sub.consent_at is not None
        assert sub.confirmed_at == sub.consent_at

    @pytest.mark.asyncio
    async def test_unknown_token_redirects_to_error(self):
        db = AsyncMock()
        db.execute.return_value = _result(None)
        url = await NewsletterService(db, _mailer()).confirm("nope")
        assert url.endswith("/newsletter/error?code=invalid_token")

    @pytest.mark.asyncio
    async def test_missing_unsubscribe_token(self):
        db = AsyncMock()
        url = await NewsletterService(db, _mailer()).unsubscribe("")
        assert url.endswith("/newsletter/error?code=invalid_unsub")
        db.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unsubscribe(self):
        sub = _subscriber(status="confirmed", unsub_token="u1")
        db = AsyncMock()
        db.execute.return_value = _result(sub)

        url = await NewsletterService(db, _mailer()).unsubscribe("u1")

        assert url.endswith("/newsletter/unsubscribed")
        assert sub.status == "unsubscribed"
        assert sub.unsubscribed_at is not None


# ---------------------------------------------------------------------------
# Mail client
# ---------------------------------------------------------------------------

class TestMailer:

    @pytest.mark.asyncio
    async def test_sends_list_unsubscribe_header(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"id": "email_123"})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            mailer = Mailer(api_key="re_test", sender="hello@example.com", client=client)
            message_id = await mailer.send("ana@example.com", "Bonjour", "<p>Hi</p>", "https://x/unsub")

        assert message_id == "email_123"
        assert seen["auth"] == "Bearer re_test"
        assert seen["body"]["headers"] == {"List-Unsubscribe": "<https://x/unsub>"}
        assert seen["body"]["to"] == ["ana@example.com"]
        assert "text" not in seen["body"]

    @pytest.mark.asyncio
    async def test_transactional_mail_has_no_unsubscribe_header(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"id": "email_124"})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            mailer = Mailer(api_key="re_test", sender="hello@example.com", client=client)
            await mailer.send("ana@example.com", "Réinitialisation", "<p>Lien</p>")

        assert "headers" not in seen["body"]

    @pytest.mark.asyncio
    async def test_error_status_raises(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(422, text="bad from"))
        async with httpx.AsyncClient(transport=transport) as client:
            mailer = Mailer(api_key="re_test", sender="hello@example.com", client=client)
            with pytest.raises(MailerError):
                await mailer.send("ana@example.com", "Bonjour", "<p>Hi</p>", "https://x/unsub")

    def test_configured(self):
        assert not Mailer(api_key="", sender="").configured
        assert Mailer(api_key="k", sender="s").configured


# ---------------------------------------------------------------------------
# Subscribe and campaigns
# ---------------------------------------------------------------------------

class TestSubscribe:

    @pytest.mark.asyncio
    async def test_not_configured(self):
        service = NewsletterService(AsyncMock(), Mailer(api_key="", sender=""))
        with pytest.raises(ServiceUnavailableError) as exc:
            await service.subscribe("ana@example.com")
        assert exc.value.code == ErrorCodes.NEWSLETTER_MISSING_ENV

    @pytest.mark.asyncio
    async def test_resubscribe_issues_fresh_tokens(self):
        sub = _subscriber(status="unsubscribed", confirm_token=None, unsub_token="old", tags=["souffle"])
        db = AsyncMock()
        db.execute.return_value = _result(sub)
        mailer = _mailer()

        await NewsletterService(db, mailer).subscribe("  Ana@Example.com ", tags="journal", ip="1.2.3.4")

        assert sub.status == "pending"
        assert sub.confirm_token and sub.unsub_token != "old"
        assert sub.tags == ["souffle", "journal"]
        assert sub.meta == {"ip": "1.2.3.4", "user_agent": None}
        mailer.send.assert_awaited_once()
        assert mailer.send.await_args.kwargs["to"] == "ana@example.com"

    @pytest.mark.asyncio
    async def test_send_failure_is_503(self):
        db = AsyncMock()
        db.execute.return_value = _result(_subscriber())
        db.add = MagicMock()
        mailer = _mailer(AsyncMock(side_effect=MailerError("status 500")))

        with pytest.raises(ServiceUnavailableError) as exc:
            await NewsletterService(db, mailer).subscribe("ana@example.com")
        assert exc.value.code == ErrorCodes.NEWSLETTER_SEND_FAILED


class TestCampaign:

    @pytest.mark.asyncio
    async def test_bulk_counts_failures(self, monkeypatch):
        monkeypatch.setattr(settings, "NEWSLETTER_BATCH_SIZE", 2)
        recipients = [
            _subscriber(email=f"r{i}@example.com", status="confirmed", unsub_token=f"u{i}")
            for i in range(5)
        ]

        async def send(to, *args, **kwargs):
            if to == "r3@example.com":
                raise MailerError("status 500")
            return "ok"

        mailer = _mailer(AsyncMock(side_effect=send))
        service = NewsletterService(AsyncMock(), mailer)
        service.list_subscribers = AsyncMock(return_value=recipients)

        result = await service.send_campaign("Sujet", "<p>Bonjour</p>", tag="Souffle")

        assert result == {"mode": "bulk", "total": 5, "sent": 4, "failed": 1, "tag": "souffle"}
        assert mailer.send.await_count == 5

    @pytest.mark.asyncio
    async def test_test_send_goes_to_one_address(self):
        mailer = _mailer()
        service = NewsletterService(AsyncMock(), mailer)
        service.list_subscribers = AsyncMock()

        result = await service.send_campaign("Sujet", "<p>Bonjour</p>", test_email="Admin@Example.com")

        assert result == {"mode": "test", "to": "admin@example.com"}
        service.list_subscribers.assert_not_awaited()
        mailer.send.assert_awaited_once()


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_subscribe_requires_consent(client: AsyncClient):
    app.dependency_overrides[get_mailer] = lambda: _mailer()
    response = await client.post(
        "/api/v1/newsletter/subscribe",
        json={"email": "ana@example.com", "consent": False},
    )

    assert response.status_code == 400
    assert response.json()["error"]["field"] == "consent"


@pytest.mark.asyncio
async def test_confirm_link_redirects(client: AsyncClient, db_session):
    db_session.execute.return_value = _result(None)
    response = await client.get("/api/v1/newsletter/confirm", params={"token": "nope"})

    assert response.status_code == 303
    assert response.headers["location"].endswith("/newsletter/error?code=invalid_token")
