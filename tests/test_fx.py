import httpx
import pytest

from config import Settings
from errors import NetworkError, UpstreamFetchError, ValidationError
from payments.fx import CurrencyConverter, parse_amount
from conftest import fx_handler


def _converter(handler=fx_handler):
    return CurrencyConverter(Settings(), http=httpx.Client(transport=httpx.MockTransport(handler)))


def test_convert_rounds_amount_and_rate():
    result = _converter().convert("usd", "inr", "12.5")

    assert result.from_currency == "USD"
    assert result.to == "INR"
    assert result.original_amount == 12.5
    assert result.converted_amount == 1039.04
    assert result.rate == 83.1235
    dumped = result.model_dump(by_alias=True)
    assert dumped["from"] == "USD"
    assert "convertedAmount" in dumped


@pytest.mark.parametrize("amount", ["0", "-5", "abc", None, "NaN"])
def test_non_positive_or_garbage_amount_is_rejected(amount):
    with pytest.raises(ValidationError) as excinfo:
        _converter().convert("USD", "INR", amount)
    assert excinfo.value.message == "Invalid amount"


def test_parse_amount_accepts_numbers():
    assert str(parse_amount(3)) == "3"


def test_missing_rate():
    with pytest.raises(UpstreamFetchError) as excinfo:
        _converter().convert("USD", "XYZ", "10")
    assert excinfo.value.message == "Exchange rate not found for XYZ"


def test_upstream_error_status():
    with pytest.raises(UpstreamFetchError):
        _converter().convert("GBP", "INR", "10")


def test_timeout_is_a_network_error():
    def timeout(request):
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(NetworkError):
        _converter(timeout).convert("USD", "INR", "10")
