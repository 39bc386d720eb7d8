from __future__ import annotations

import logging
import time
from typing import List, Optional

import dns.flags
import dns.message
import dns.name
import dns.query
import dns.rcode
import dns.rdataclass
import dns.rdatatype
import dns.rrset

from .network import NetworkLedger
from .normalize import to_fqdn

logger = logging.getLogger(__name__)

MAX_CNAME_HOPS = 8


class DnsQueryError(RuntimeError):
    """Raised when the resolver cannot be reached or answers with a non-NOERROR rcode."""

    def __init__(self, message: str, rcode: str | None = None) -> None:
        super().__init__(message)
        self.rcode = rcode


class DnsClient:
    """Sends single queries to one fixed upstream resolver; no retries, no caching."""

    def __init__(
        self,
        nameserver: str = "8.8.8.8",
        port: int = 53,
        timeout_seconds: float = 5.0,
        ledger: NetworkLedger | None = None,
    ) -> None:
        self.nameserver = nameserver
        self.port = port
        self.timeout = timeout_seconds
        self.ledger = ledger

    def query(self, name: str, record_type: str, want_dnssec: bool = False) -> dns.message.Message:
        qname = to_fqdn(name)
        rdtype = dns.rdatatype.from_text(record_type)
        request = dns.message.make_query(qname, rdtype, want_dnssec=want_dnssec)
        start = time.monotonic()
        error: str | None = None
        status: str | None = None
        try:
            response = dns.query.udp(request, self.nameserver, timeout=self.timeout, port=self.port)
            if response.flags & dns.flags.TC:
                response = dns.query.tcp(request, self.nameserver, timeout=self.timeout, port=self.port)
            status = dns.rcode.to_text(response.rcode())
            if response.rcode() != dns.rcode.NOERROR:
                error = status
                raise DnsQueryError(status, rcode=status)
            return response
        except DnsQueryError:
            raise
        except Exception as exc:
            error = str(exc) or type(exc).__name__
            logger.debug("dns query failed", extra={"domain": qname, "type": record_type, "error": error})
            raise DnsQueryError(error) from exc
        finally:
            if self.ledger:
                self.ledger.add(
                    type="dns",
                    destination_host=self.nameserver,
                    query_name=qname,
                    record_type=record_type.upper(),
                    method="DNS",
                    status=status,
                    error=error,
                    success=error is None,
                    duration_ms=int((time.monotonic() - start) * 1000),
                )

    def resolve(self, name: str, record_type: str, want_dnssec: bool = False) -> Optional[dns.rrset.RRset]:
        response = self.query(name, record_type, want_dnssec=want_dnssec)
        return answer_rrset(response, name, record_type)


def answer_rrset(
    response: dns.message.Message,
    name: str,
    record_type: str,
    covers: Optional[str] = None,
) -> Optional[dns.rrset.RRset]:
    """Return the answer-section RRset for ``name``/``record_type``, following CNAMEs, or None."""
    qname = dns.name.from_text(to_fqdn(name))
    rdtype = dns.rdatatype.from_text(record_type)
    covered = dns.rdatatype.from_text(covers) if covers else dns.rdatatype.NONE
    for _ in range(MAX_CNAME_HOPS):
        alias = None
        for rrset in response.answer:
            if rrset.name != qname:
                continue
            if rrset.rdtype == rdtype and rrset.covers == covered:
                return rrset
            if rrset.rdtype == dns.rdatatype.CNAME and rdtype != dns.rdatatype.CNAME:
                alias = rrset[0].target
        if alias is None:
            return None
        qname = alias
    return None


def txt_strings(rrset: Optional[dns.rrset.RRset]) -> List[str]:
    """Join the character-strings of each TXT record as received, without case changes."""
    if rrset is None:
        return []
    values = []
    for rdata in rrset:
        values.append(b"".join(rdata.strings).decode("utf-8", errors="replace"))
    return values
