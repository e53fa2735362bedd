# tests/unit/services/reverb/test_reverb_client.py
import httpx
import pytest

from crosslist.core.enums import Remediation
from crosslist.core.exceptions import PlatformRequestFailedError, ValidationFailedError
from crosslist.services.reverb.client import ReverbClient, map_reverb_error


def mock_http(mocker, status_code=200, body=None):
    mock_client = mocker.patch("httpx.AsyncClient")
    response = mocker.MagicMock()
    response.status_code = status_code
    response.json.return_value = body if body is not None else {}
    response.text = str(body)
    response.content = b"{}" if body is not None else b""
    request = mocker.AsyncMock(return_value=response)
    mock_client.return_value.__aenter__.return_value.request = request
    return request


"""
1. Error mapping
"""

def test_unauthorized_requires_reconnect():
    error = map_reverb_error(401, {"message": "The access token is invalid"})

    assert error.retryable is False
    assert error.remediation == Remediation.RECONNECT


def test_unprocessable_lists_field_errors():
    error = map_reverb_error(422, {"message": "Invalid listing", "errors": {"price": ["must be positive"]}})

    assert isinstance(error, ValidationFailedError)
    assert "price: must be positive" in error.message


@pytest.mark.parametrize("status_code", [429, 500, 502])
def test_transient_errors_are_retryable(status_code):
    error = map_reverb_error(status_code, {})

    assert isinstance(error, PlatformRequestFailedError)
    assert error.retryable is True


def test_not_found_is_not_retryable():
    assert map_reverb_error(404, {"message": "Not found"}).retryable is False


"""
2. Requests
"""

async def test_authenticated_request_headers(mocker):
    request = mock_http(mocker, body={"id": 123, "state": {"slug": "live"}})
    client = ReverbClient(access_token="user-token")

    listing = await client.get_listing("123")

    assert listing["id"] == 123
    _, kwargs = request.call_args
    assert kwargs["headers"]["Authorization"] == "Bearer user-token"
    assert kwargs["headers"]["Accept-Version"] == "3.0"
    assert kwargs["url"] == "https://api.reverb.com/api/listings/123"


async def test_public_search_sends_no_token(mocker):
    request = mock_http(mocker, body={"listings": [{"id": 1}]})

    listings = await ReverbClient(use_sandbox=True).search_listings("Boss DS-1", {"per_page": 25})

    assert listings == [{"id": 1}]
    _, kwargs = request.call_args
    assert "Authorization" not in kwargs["headers"]
    assert kwargs["url"] == "https://sandbox.reverb.com/api/listings"
    assert kwargs["params"] == {"query": "Boss DS-1", "per_page": 25}


async def test_end_listing_uses_state_endpoint(mocker):
    request = mock_http(mocker, body={})

    await ReverbClient(access_token="token").end_listing("123")

    _, kwargs = request.call_args
    assert kwargs["method"] == "PUT"
    assert kwargs["url"].endswith("/my/listings/123/state/end")
    assert kwargs["json"] == {"reason": "not_sold"}


async def test_timeout_is_retryable(mocker):
    mock_client = mocker.patch("httpx.AsyncClient")
    mock_client.return_value.__aenter__.return_value.request = mocker.AsyncMock(
        side_effect=httpx.ReadTimeout("timed out")
    )

    with pytest.raises(PlatformRequestFailedError) as exc_info:
        await ReverbClient(access_token="token").get_listing("123")

    assert exc_info.value.retryable is True
