import asyncio

import httpx

from domain_risk.modules import chaos, crtsh


class _Http:
    def __init__(self, responses):
        self.responses = responses
        self.calls = []

    async def get(self, url, headers=None, params=None, rate_limiter=None):
        self.calls.append({"url": url, "headers": headers, "params": params, "rate_limiter": rate_limiter})
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def _json(payload, status=200, url="https://example.test/"):
    return httpx.Response(status, json=payload, request=httpx.Request("GET", url))


class _Limiter:
    def __init__(self):
        self.waits = 0

    async def wait(self):
        self.waits += 1


def test_crtsh_parses_certificates_and_subdomains():
    payload = [
        {
            "id": 12345,
            "common_name": "example.com",
            "issuer_name": "C=US, O=Let's Encrypt, CN=R3",
            "not_before": "2024-01-01T00:00:00",
            "not_after": "2024-04-01T00:00:00",
            "serial_number": "04a1",
            "name_value": "example.com\n*.api.example.com\nwww.example.com",
            "signature_algorithm": "sha256WithRSAEncryption",
        },
        {"id": 2, "name_value": "mail.example.com\nother.org"},
    ]
    http = _Http([_json(payload)])
    limiter = _Limiter()

    result = asyncio.run(crtsh.run("example.com", http, limiter=limiter))

    assert http.calls[0]["params"] == {"q": "%.example.com", "output": "json"}
    assert http.calls[0]["rate_limiter"] is limiter
    assert len(result.certificates) == 2
    first = result.certificates[0]
    assert first.id == 12345
    assert first.issuer == "C=US, O=Let's Encrypt, CN=R3"
    assert first.dns_names == ("example.com", "*.api.example.com", "www.example.com")
    assert first.not_after.year == 2024 and first.not_after.tzinfo is not None
    assert result.subdomains == ("api.example.com", "mail.example.com", "www.example.com")
    assert result.errors == []


def test_crtsh_failure_is_recorded():
    http = _Http([httpx.ConnectError("connection refused")])
    result = asyncio.run(crtsh.run("example.com", http))
    assert result.certificates == ()
    assert result.errors == ["crt.sh query error: connection refused"]


def test_crtsh_http_status_error():
    http = _Http([_json({"error": "busy"}, status=503, url="https://crt.sh/?q=%25.example.com")])
    result = asyncio.run(crtsh.run("example.com", http))
    assert result.errors == ["crt.sh query error: status 503 from https://crt.sh/"]


def test_chaos_expands_prefixes():
    http = _Http([_json({"domain": "example.com", "subdomains": ["www", "*.dev", "api", "www"]})])
    result = asyncio.run(chaos.run("example.com", http, "secret", "https://dns.projectdiscovery.io/dns"))

    assert http.calls[0]["url"] == "https://dns.projectdiscovery.io/dns/example.com/subdomains"
    assert http.calls[0]["headers"] == {"Authorization": "secret"}
    assert result.subdomains == ("api.example.com", "dev.example.com", "www.example.com")


def test_chaos_error_does_not_leak_key():
    http = _Http([_json({"error": "unauthorized"}, status=401, url="https://dns.projectdiscovery.io/dns/example.com/subdomains")])
    result = asyncio.run(chaos.run("example.com", http, "secret", "https://dns.projectdiscovery.io/dns"))
    assert result.subdomains == ()
    assert len(result.errors) == 1
    assert "401" in result.errors[0]
    assert "secret" not in result.errors[0]
