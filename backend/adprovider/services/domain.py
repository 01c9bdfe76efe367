"""Domain data source"""
from typing import Any, Optional

from adprovider.errors import NotFoundError, ValidationError
from adprovider.logger import get_logger
from adprovider.models.ad import ADDomain
from adprovider.services.codec import as_object, get, require_guid, text
from adprovider.services.powershell import quote

logger = get_logger("services.domain")


def build_read(identity: str) -> list:
    if not identity:
        raise ValidationError("a domain identity (DN, GUID, SID, DNS or NetBIOS name) is required")
    return [f"Get-ADDomain -Identity {quote(identity)}"]


def parse(document: Any) -> ADDomain:
    doc = as_object(document, "Domain")
    domain_sid = get(doc, "DomainSID")
    if isinstance(domain_sid, dict):
        domain_sid = text(domain_sid, "Value")
    return ADDomain(
        guid=require_guid(doc, "ObjectGUID", "Domain"),
        dn=text(doc, "DistinguishedName"),
        name=text(doc, "Name"),
        sid=str(domain_sid or ""),
        netbios_name=text(doc, "NetBIOSName"),
        dns_root=text(doc, "DNSRoot"),
    )


def read(provider, identity: str) -> Optional[ADDomain]:
    try:
        result = provider.run(build_read(identity), json_output=True)
    except NotFoundError:
        logger.debug(f"Domain {identity!r} not found")
        return None
    return parse(result.decode_json())
