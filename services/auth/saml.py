"""Assertion-based provider: verifies a signed SAML Response posted by the browser."""

from __future__ import annotations

import base64
import binascii
import textwrap
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence

from lxml import etree
from signxml import InvalidInput, InvalidSignature, SignatureConfiguration, XMLVerifier
from xmltodict import parse as parse_xml

from core.auth.constants import ASSERTION_PROVIDER_ID
from core.env import env_bool, env_int, env_str
from core.logging import get_logger
from services.auth.common import ChooserError, IdentityRecord, RequestContext, VerificationError
from services.auth.providers import ProviderAdapter

logger = get_logger(__name__)

PROTOCOL_NS = "urn:oasis:names:tc:SAML:2.0:protocol"
ASSERTION_NS = "urn:oasis:names:tc:SAML:2.0:assertion"
METADATA_NS = "urn:oasis:names:tc:SAML:2.0:metadata"
DSIG_NS = "http://www.w3.org/2000/09/xmldsig#"
HTTP_POST_BINDING = "urn:oasis:names:tc:SAML:2.0:bindings:HTTP-POST"

_RESPONSE_TAG = f"{{{PROTOCOL_NS}}}Response"
_ASSERTION_TAG = f"{{{ASSERTION_NS}}}Assertion"
_SIGNATURE_TAG = f"{{{DSIG_NS}}}Signature"

_PARSER = etree.XMLParser(resolve_entities=False, no_network=True)


def _certificate_body(pem_value: Optional[str]) -> Optional[str]:
    """Base64 body of a PEM certificate with armour lines and whitespace removed."""
    if not pem_value:
        return None
    body = "".join(
        line.strip()
        for line in pem_value.strip().splitlines()
        if line.strip() and "CERTIFICATE-----" not in line
    )
    return body or None


@dataclass(frozen=True)
class SamlProviderConfig:
    enabled: bool
    sp_entity_id: Optional[str]
    acs_url: Optional[str]
    idp_entity_id: Optional[str]
    idp_certificate: Optional[str]
    sp_certificate: Optional[str] = None
    display_name: str = "SAML"
    email_attribute: str = "email"
    name_attribute: str = "displayName"
    photo_attribute: str = "photoUrl"
    clock_skew_seconds: int = 120

    @property
    def ready(self) -> bool:
        return bool(self.enabled and self.sp_entity_id and self.acs_url)

    @property
    def idp_certificate_pem(self) -> Optional[str]:
        body = _certificate_body(self.idp_certificate)
        if not body:
            return None
        return "-----BEGIN CERTIFICATE-----\n" + "\n".join(textwrap.wrap(body, 64)) + "\n-----END CERTIFICATE-----"

    @property
    def sp_certificate_body(self) -> Optional[str]:
        return _certificate_body(self.sp_certificate)


def load_saml_config() -> SamlProviderConfig:
    return SamlProviderConfig(
        enabled=env_bool("CHOOSER_SAML_ENABLED", False),
        sp_entity_id=env_str("CHOOSER_SAML_SP_ENTITY_ID"),
        acs_url=env_str("CHOOSER_SAML_ACS_URL"),
        idp_entity_id=env_str("CHOOSER_SAML_IDP_ENTITY_ID"),
        idp_certificate=env_str("CHOOSER_SAML_IDP_CERT"),
        sp_certificate=env_str("CHOOSER_SAML_SP_CERT"),
        display_name=env_str("CHOOSER_SAML_DISPLAY_NAME", "SAML") or "SAML",
        email_attribute=env_str("CHOOSER_SAML_EMAIL_ATTRIBUTE", "email") or "email",
        name_attribute=env_str("CHOOSER_SAML_NAME_ATTRIBUTE", "displayName") or "displayName",
        photo_attribute=env_str("CHOOSER_SAML_PHOTO_ATTRIBUTE", "photoUrl") or "photoUrl",
        clock_skew_seconds=env_int("CHOOSER_SAML_CLOCK_SKEW_SECONDS", 120, minimum=0),
    )


class SamlAssertionProvider(ProviderAdapter):
    """Verifies the assertion directly; there is no outbound redirect.

    Identity fields are read only from the element the signature covers,
    either the whole Response or its single Assertion.
    """

    provider_id = ASSERTION_PROVIDER_ID

    def __init__(self, config: SamlProviderConfig):
        self.config = config
        self.display_name = config.display_name

    def verify_callback(self, credential: str, *, context: Optional[RequestContext] = None) -> IdentityRecord:
        config = self.config
        if not config.ready:
            raise VerificationError("SAML sign-in is disabled.", provider_id=self.provider_id, code="auth.saml_disabled")
        try:
            xml_payload = base64.b64decode(credential or "", validate=True)
        except binascii.Error as exc:
            raise self._reject("The assertion could not be decoded.") from exc
        if not xml_payload:
            raise self._reject("The assertion is empty.")
        try:
            root = etree.fromstring(xml_payload, parser=_PARSER)
        except etree.XMLSyntaxError as exc:
            raise self._reject("The assertion could not be parsed.") from exc

        signed_assertion = self._signed_assertion(root)

        destination = root.get("Destination")
        if destination and destination.rstrip("/") != config.acs_url.rstrip("/"):
            raise self._reject("The assertion was addressed to a different endpoint.")
        response_issuer = root.find(f"{{{ASSERTION_NS}}}Issuer")
        self._validate_issuer(response_issuer.text if response_issuer is not None else None, source="Response")

        document = parse_xml(etree.tostring(signed_assertion))
        assertion = next(iter(document.values()), None) if isinstance(document, Mapping) else None
        if not isinstance(assertion, Mapping):
            raise self._reject("The response carries no assertion.")
        self._validate_issuer(_coerce_text(_extract_first(assertion, ["saml:Issuer", "Issuer"])), source="Assertion")
        conditions = _extract_first(assertion, ["saml:Conditions", "Conditions"])
        restriction = _extract_first(conditions, ["saml:AudienceRestriction", "AudienceRestriction"])
        audience = _coerce_text(_extract_first(restriction, ["saml:Audience", "Audience"]))
        if audience and audience != config.sp_entity_id:
            raise self._reject("The assertion was issued for a different audience.")
        self._enforce_temporal_conditions(conditions)

        attributes = _extract_attribute_map(_extract_first(assertion, ["saml:AttributeStatement", "AttributeStatement"]))
        name_id = _extract_name_id(assertion)
        email = attributes.get(config.email_attribute) or name_id
        if not email:
            raise self._reject("The assertion names no email address.")
        return IdentityRecord(
            email=email,
            provider_id=self.provider_id,
            display_name=attributes.get(config.name_attribute),
            photo_url=attributes.get(config.photo_attribute),
        )

    def metadata(self) -> str:
        """SP metadata XML for registering this service at the IdP."""
        config = self.config
        if not config.ready:
            raise ChooserError("auth.saml_disabled", "SAML sign-in is disabled.", 404)
        entity = etree.Element(
            f"{{{METADATA_NS}}}EntityDescriptor",
            nsmap={None: METADATA_NS, "ds": DSIG_NS},
            entityID=config.sp_entity_id,
        )
        descriptor = etree.SubElement(
            entity,
            f"{{{METADATA_NS}}}SPSSODescriptor",
            AuthnRequestsSigned="false",
            WantAssertionsSigned="true",
            protocolSupportEnumeration=PROTOCOL_NS,
        )
        cert_body = config.sp_certificate_body
        if cert_body:
            key_descriptor = etree.SubElement(descriptor, f"{{{METADATA_NS}}}KeyDescriptor", use="signing")
            key_info = etree.SubElement(key_descriptor, f"{{{DSIG_NS}}}KeyInfo")
            x509_data = etree.SubElement(key_info, f"{{{DSIG_NS}}}X509Data")
            etree.SubElement(x509_data, f"{{{DSIG_NS}}}X509Certificate").text = cert_body
        etree.SubElement(
            descriptor,
            f"{{{METADATA_NS}}}AssertionConsumerService",
            index="1",
            isDefault="true",
            Binding=HTTP_POST_BINDING,
            Location=config.acs_url,
        )
        return etree.tostring(entity, xml_declaration=True, encoding="UTF-8", pretty_print=True).decode("utf-8")

    def _reject(self, message: str) -> VerificationError:
        return VerificationError(message, provider_id=self.provider_id, code="auth.saml_invalid")

    def _signed_assertion(self, root: etree._Element) -> etree._Element:
        """Verify the signature and return the Assertion element it covers."""
        cert_pem = self.config.idp_certificate_pem
        if not cert_pem:
            logger.error("SAML assertion received but no IdP certificate is configured.")
            raise self._reject("The identity provider certificate is not configured.")
        if root.tag != _RESPONSE_TAG:
            raise self._reject("The SAML Response element is missing.")
        assertions = root.findall(f".//{_ASSERTION_TAG}")
        if len(assertions) != 1 or assertions[0].getparent() is not root:
            logger.warning("Rejected SAML response with %d assertion(s) in unexpected places.", len(assertions))
            raise self._reject("The response must carry exactly one assertion.")
        assertion = assertions[0]

        if root.find(_SIGNATURE_TAG) is not None:
            expected, location = root, "./"
        elif assertion.find(_SIGNATURE_TAG) is not None:
            expected, location = assertion, f"./{_ASSERTION_TAG}/"
        else:
            raise self._reject("The assertion is not signed.")

        try:
            result = XMLVerifier().verify(
                root,
                x509_cert=cert_pem,
                expect_config=SignatureConfiguration(location=location, expect_references=1),
            )
        except (InvalidSignature, InvalidInput) as exc:
            raise self._reject("The assertion signature is invalid.") from exc

        signed = result.signed_xml
        if signed is None or signed.tag != expected.tag or signed.get("ID") != expected.get("ID"):
            raise self._reject("The signature does not cover the assertion.")
        if signed.tag == _ASSERTION_TAG:
            return signed
        signed_assertions = signed.findall(_ASSERTION_TAG)
        if len(signed_assertions) != 1:
            raise self._reject("The response must carry exactly one assertion.")
        return signed_assertions[0]

    def _validate_issuer(self, value: Optional[str], *, source: str) -> None:
        if not value or not self.config.idp_entity_id:
            return
        if value.strip() != self.config.idp_entity_id:
            raise self._reject(f"{source} issuer does not match the configured identity provider.")

    def _enforce_temporal_conditions(self, conditions: Optional[Mapping[str, Any]]) -> None:
        if not isinstance(conditions, Mapping):
            return
        skew = timedelta(seconds=self.config.clock_skew_seconds)
        now = datetime.now(timezone.utc)
        not_before = _parse_saml_instant(conditions.get("@NotBefore"))
        if not_before and now + skew < not_before:
            raise self._reject("The assertion is not valid yet.")
        not_on_or_after = _parse_saml_instant(conditions.get("@NotOnOrAfter"))
        if not_on_or_after and now - skew >= not_on_or_after:
            raise self._reject("The assertion has expired.")


def _parse_saml_instant(value: Optional[str]) -> Optional[datetime]:
    if not value or not value.strip():
        return None
    normalized = value.strip()
    if normalized.endswith("Z"):
        normalized = normalized[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(normalized)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _extract_first(obj: Optional[Mapping[str, Any]], keys: Sequence[str]) -> Optional[Any]:
    if not isinstance(obj, Mapping):
        return None
    for key in keys:
        value = obj.get(key)
        if value is not None:
            return value
    return None


def _coerce_list(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def _coerce_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, Mapping):
        if "#text" in value:
            return str(value["#text"]).strip()
        return None
    return str(value).strip()


def _extract_attribute_map(statement: Optional[Mapping[str, Any]]) -> Dict[str, Optional[str]]:
    if not isinstance(statement, Mapping):
        return {}
    result: Dict[str, Optional[str]] = {}
    for item in _coerce_list(statement.get("saml:Attribute") or statement.get("Attribute")):
        if not isinstance(item, Mapping):
            continue
        name = item.get("@Name") or item.get("@FriendlyName")
        if not name:
            continue
        values = _coerce_list(item.get("saml:AttributeValue") or item.get("AttributeValue"))
        result[str(name)] = _coerce_text(values[0]) if values else None
    return result


def _extract_name_id(assertion: Mapping[str, Any]) -> Optional[str]:
    subject = _extract_first(assertion, ["saml:Subject", "Subject"])
    return _coerce_text(_extract_first(subject, ["saml:NameID", "NameID"]))


__all__ = ["SamlAssertionProvider", "SamlProviderConfig", "load_saml_config"]
