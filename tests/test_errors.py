from sandbox.errors import (
    ProviderUnavailableError,
    ProvisionError,
    RoutingError,
    UpstreamError,
    ValidationError,
    error_payload,
)


def test_provision_error_names_provider():
    err = ProvisionError("out of capacity", "daytona")
    assert str(err) == "[daytona] out of capacity"
    assert err.provider == "daytona"


def test_payloads_carry_kind_for_proxy_errors():
    routing = error_payload(RoutingError("bad host"))
    upstream = error_payload(UpstreamError("refused"))
    assert (routing["kind"], routing["statusCode"]) == ("routing", 400)
    assert (upstream["kind"], upstream["statusCode"]) == ("upstream", 502)


def test_validation_payload_names_field():
    payload = error_payload(ValidationError("Invalid owner", field="owner"))
    assert payload == {"error": "ValidationError", "message": "Invalid owner", "statusCode": 400, "field": "owner"}


def test_unavailable_is_503():
    assert error_payload(ProviderUnavailableError("no daemon", "docker"))["statusCode"] == 503


def test_unexpected_exceptions_become_500():
    payload = error_payload(KeyError("x"))
    assert payload["error"] == "InternalServerError"
    assert payload["statusCode"] == 500
