"""Tests for link creation, bulk creation, history and clearing."""

import asyncio
from datetime import datetime

import pytest

pytestmark = pytest.mark.unit

from conftest import request_json

from martlink.exceptions import (
    AirbridgeError,
    AuthorizationError,
    ConfigurationError,
    ValidationError,
)
from martlink.models.link import Link
from martlink.services.link.validation import LinkValidator
from martlink.services.link_service import MOCK_SHORT_URL_BASE, LinkService

FIXED_NOW = datetime(2026, 3, 5, 9, 30)


def tracking_link_created(request):
    body = request_json(request)
    ad_group = body["campaignParams"]["ad_group"]
    creative = body["campaignParams"]["ad_creative"]
    return {
        "data": {
            "trackingLink": {
                "id": 9000 + len(ad_group),
                "shortUrl": f"https://abr.ge/{ad_group}-{creative}",
            }
        }
    }


@pytest.fixture
def mock_link_service(db_session, settings):
    """LinkService without Airbridge configuration (mock short URLs)."""
    return LinkService(db_session, settings=settings, now=lambda: FIXED_NOW)


@pytest.fixture
def airbridge_link_service(db_session, airbridge_settings, airbridge_stub):
    """LinkService talking to a stubbed Airbridge."""
    airbridge_stub.on("POST", "/v1/tracking-links", tracking_link_created)
    return LinkService(
        db_session,
        airbridge=airbridge_stub.client(),
        settings=airbridge_settings,
        now=lambda: FIXED_NOW,
    )


class TestCreateLink:
    """Tests for creating single links."""

    def test_create_link_mock_url(self, mock_link_service):
        """Without Airbridge credentials a mock short URL is stored."""
        link = asyncio.run(mock_link_service.create_link(" gangnam ", " X Banner! "))

        assert link.id is not None
        assert link.mart_code == "gangnam"
        assert link.ad_creative == "X Banner!"
        assert link.campaign_name == "260305_gangnam_x_banner"
        assert link.short_url.startswith(f"{MOCK_SHORT_URL_BASE}/")
        assert len(link.short_url.rsplit("/", 1)[1]) == 12
        assert link.airbridge_link_id is None

    def test_create_link_persists(self, mock_link_service, db_session):
        """Created links are committed."""
        link = asyncio.run(mock_link_service.create_link("mart1", "flyer"))
        stored = db_session.get(Link, link.id)
        assert stored is not None
        assert stored.created_at is not None

    def test_create_link_airbridge(self, airbridge_link_service, airbridge_stub):
        """Configured Airbridge receives the campaign params and returns the short URL."""
        link = asyncio.run(airbridge_link_service.create_link("mart1", "flyer"))

        assert link.short_url == "https://abr.ge/mart1-flyer"
        assert link.airbridge_link_id == "9005"

        request = airbridge_stub.calls_to("POST", "/v1/tracking-links")[0]
        assert request.headers["Authorization"] == "Bearer link-token"
        body = request_json(request)
        assert body["channel"] == "offline-qr"
        assert body["deeplinkUrl"] == "qmarket://home"
        assert body["isReengagement"] == "OFF"
        assert body["campaignParams"] == {
            "campaign": "260305_mart1_flyer",
            "ad_group": "mart1",
            "ad_creative": "flyer",
        }

    def test_unknown_creative_sent_as_custom(self, airbridge_link_service, airbridge_stub):
        """Creatives outside the known list are labelled custom in Airbridge."""
        link = asyncio.run(airbridge_link_service.create_link("mart1", "Spring Poster"))

        body = request_json(airbridge_stub.calls_to("POST", "/v1/tracking-links")[0])
        assert body["campaignParams"]["ad_creative"] == "custom"
        assert link.campaign_name == "260305_mart1_spring_poster"

    def test_airbridge_rejection(self, db_session, airbridge_settings, airbridge_stub):
        """A non-OK Airbridge response raises and stores nothing."""
        airbridge_stub.on("POST", "/v1/tracking-links", (400, {"detail": "invalid channel"}))
        service = LinkService(db_session, airbridge=airbridge_stub.client(), settings=airbridge_settings)

        with pytest.raises(AirbridgeError, match=r"Airbridge create failed \(400\): invalid channel"):
            asyncio.run(service.create_link("mart1", "flyer"))
        assert service.list_links() == []

    def test_airbridge_missing_short_url(self, db_session, airbridge_settings, airbridge_stub):
        """An OK response without a short URL is an error."""
        airbridge_stub.on("POST", "/v1/tracking-links", {"data": {"trackingLink": {"id": 1}}})
        service = LinkService(db_session, airbridge=airbridge_stub.client(), settings=airbridge_settings)

        with pytest.raises(AirbridgeError, match="shortUrl"):
            asyncio.run(service.create_link("mart1", "flyer"))

    @pytest.mark.parametrize(
        "mart_code,ad_creative,field",
        [("", "flyer", "mart_code"), ("mart1", "  ", "ad_creative"), (None, None, "mart_code"), ("mart1", "!!!", "ad_creative")],
    )
    def test_create_link_validation(self, mock_link_service, mart_code, ad_creative, field):
        """Missing or unusable input is rejected."""
        with pytest.raises(ValidationError) as exc_info:
            asyncio.run(mock_link_service.create_link(mart_code, ad_creative))
        assert exc_info.value.field == field


class TestBulkCreateLinks:
    """Tests for bulk link creation."""

    def test_bulk_cartesian_product(self, mock_link_service):
        """Every mart/creative combination gets a link."""
        result = asyncio.run(
            mock_link_service.bulk_create_links(["m1", "m2", "m3"], "flyer, banner")
        )

        assert result.errors == []
        pairs = sorted((link.mart_code, link.ad_creative) for link in result.created)
        assert pairs == sorted(
            (code, creative) for code in ("m1", "m2", "m3") for creative in ("flyer", "banner")
        )
        assert len(mock_link_service.list_links(limit=100)) == 6

    def test_bulk_dedupes_input(self, mock_link_service):
        """Repeated codes and creatives are only used once."""
        result = asyncio.run(mock_link_service.bulk_create_links("m1\nm1,m2", ["flyer", " flyer "]))
        assert len(result.created) == 2

    def test_bulk_partial_failure(self, db_session, airbridge_settings, airbridge_stub):
        """A failing combination is reported without stopping the rest."""

        def handler(request):
            if request_json(request)["campaignParams"]["ad_group"] == "bad":
                return 400, {"detail": "invalid ad group"}
            return tracking_link_created(request)

        airbridge_stub.on("POST", "/v1/tracking-links", handler)
        service = LinkService(db_session, airbridge=airbridge_stub.client(), settings=airbridge_settings)

        result = asyncio.run(service.bulk_create_links(["good", "bad"], ["flyer", "banner"]))

        assert len(result.created) == 2
        assert len(result.errors) == 2
        assert {error.task.mart_code for error in result.errors} == {"bad"}
        assert all("invalid ad group" in error.message for error in result.errors)
        assert len(airbridge_stub.calls) == 4

    @pytest.mark.parametrize("codes,creatives", [([], ["flyer"]), (["m1"], ""), (None, None), (" , ", "flyer")])
    def test_bulk_requires_input(self, mock_link_service, codes, creatives):
        """Both lists need at least one value."""
        with pytest.raises(ValidationError):
            asyncio.run(mock_link_service.bulk_create_links(codes, creatives))

    def test_bulk_limit(self, mock_link_service):
        """More than 120 combinations are rejected before anything is created."""
        codes = [f"m{i}" for i in range(11)]
        creatives = [f"c{i}" for i in range(11)]

        with pytest.raises(ValidationError, match="121"):
            asyncio.run(mock_link_service.bulk_create_links(codes, creatives))
        assert mock_link_service.list_links() == []

    def test_bulk_at_limit(self, mock_link_service):
        """Exactly 120 combinations are allowed."""
        codes = [f"m{i}" for i in range(12)]
        creatives = [f"c{i}" for i in range(10)]

        result = asyncio.run(mock_link_service.bulk_create_links(codes, creatives))
        assert len(result.created) == 120


class TestListAndClearLinks:
    """Tests for history listing and clearing."""

    def test_list_newest_first(self, mock_link_service):
        """History is ordered newest first and filterable by mart."""
        for code in ("a", "b", "a"):
            asyncio.run(mock_link_service.create_link(code, "flyer"))

        links = mock_link_service.list_links()
        assert [link.mart_code for link in links] == ["a", "b", "a"]
        assert links[0].id > links[1].id > links[2].id

        only_a = mock_link_service.list_links(mart_code=" a ")
        assert [link.mart_code for link in only_a] == ["a", "a"]

    def test_list_limit(self, mock_link_service):
        """The limit is applied and clamped."""
        for index in range(4):
            asyncio.run(mock_link_service.create_link(f"m{index}", "flyer"))

        assert len(mock_link_service.list_links(limit=2)) == 2
        assert len(mock_link_service.list_links(limit=0)) == 1

    def test_clear_links(self, db_session, settings):
        """The matching admin key deletes every link."""
        service = LinkService(db_session, settings=settings.model_copy(update={"admin_clear_key": "secret"}))
        asyncio.run(service.create_link("m1", "flyer"))
        asyncio.run(service.create_link("m2", "flyer"))

        assert service.clear_links(" secret ") == 2
        assert service.list_links() == []

    def test_clear_links_wrong_key(self, db_session, settings):
        service = LinkService(db_session, settings=settings.model_copy(update={"admin_clear_key": "secret"}))
        asyncio.run(service.create_link("m1", "flyer"))

        with pytest.raises(AuthorizationError):
            service.clear_links("nope")
        with pytest.raises(AuthorizationError):
            service.clear_links(None)
        assert len(service.list_links()) == 1

    def test_clear_links_not_configured(self, mock_link_service):
        """Clearing is refused when no admin key is configured."""
        with pytest.raises(ConfigurationError) as exc_info:
            mock_link_service.clear_links("anything")
        assert exc_info.value.missing_keys == ["ADMIN_CLEAR_KEY"]


class TestLinkValidator:
    """Tests for LinkValidator helpers."""

    def test_normalize_creative(self):
        assert LinkValidator.normalize_creative("  X Banner  ") == "x_banner"
        assert LinkValidator.normalize_creative("전단지 A") == "전단지_a"
        assert LinkValidator.normalize_creative("a" * 60) == "a" * 40

    def test_parse_list(self):
        assert LinkValidator.parse_list("a, b\nc,,a") == ["a", "b", "c"]
        assert LinkValidator.parse_list([" a ", "b", 3, "a"]) == ["a", "b"]
        assert LinkValidator.parse_list(None) == []

    def test_clamp_limit(self):
        assert LinkValidator.clamp_limit(None, default=20) == 20
        assert LinkValidator.clamp_limit(500, default=20) == 100
        assert LinkValidator.clamp_limit(-5, default=20) == 1

    def test_clamp_limit_from_query_string(self):
        assert LinkValidator.clamp_limit("abc", default=20) == 20
        assert LinkValidator.clamp_limit("", default=20) == 20
        assert LinkValidator.clamp_limit(" 5 ", default=20) == 5
        assert LinkValidator.clamp_limit("7.9", default=20) == 7

    @pytest.mark.parametrize(
        "value,expected",
        [(None, None), (3, 3), ("12", 12), ("-4", -4), ("2.5", 2), ("abc", None), ("inf", None), ("nan", None), (True, None)],
    )
    def test_parse_int(self, value, expected):
        assert LinkValidator.parse_int(value) == expected
