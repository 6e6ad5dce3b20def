import logging
import re

import dns.asyncresolver
import dns.exception
import dns.resolver

logger = logging.getLogger(__name__)

_DOMAIN_RE = re.compile(r"^(?=.{1,253}$)(?!-)[a-z0-9-]{1,63}(?<!-)(\.(?!-)[a-z0-9-]{1,63}(?<!-))+$")


def normalize_domain(value: str) -> str:
    """Accept a bare domain or an email address"""
    value = (value or "").strip().lower()
    if "@" in value:
        value = value.rsplit("@", 1)[1]
    return value.rstrip(".")


def is_valid_domain_syntax(domain: str) -> bool:
    return bool(_DOMAIN_RE.match(domain))


async def has_mx_records(domain: str) -> bool:
    """True when the domain publishes at least one MX record"""
    try:
        answer = await dns.asyncresolver.resolve(domain, "MX", lifetime=5.0)
        return len(answer) > 0
    except (dns.resolver.NXDOMAIN, dns.resolver.NoAnswer, dns.resolver.NoNameservers):
        return False
    except dns.exception.Timeout:
        logger.warning(f"MX lookup timed out for {domain}")
        return False
