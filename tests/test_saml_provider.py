import base64
import uuid
from datetime import datetime, timedelta, timezone
from typing import Tuple

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID
from lxml import etree
from signxml import XMLSigner, methods

from services.auth.common import ChooserError, VerificationError
from services.auth.saml import SamlAssertionProvider, SamlProviderConfig

ACS_URL = "https://favcolor.test/assertion-login"
SP_ENTITY_ID = "sp:favcolor"
IDP_ENTITY_ID = "https://idp.test/metadata"


@pytest.fixture(scope="module")
def saml_signing_material() -> Tuple[str, str]:
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    subject = issuer = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "Test IdP")])
    now = datetime.now(timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=1))
        .sign(private_key=key, algorithm=hashes.SHA256())
    )
    cert_pem = cert.public_bytes(serialization.Encoding.PEM).decode("utf-8")
    key_pem = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("utf-8")
    return cert_pem, key_pem


def _instant(moment: datetime) -> str:
    return moment.isoformat().replace("+00:00", "Z")


def _assertion_xml(
    email: str,
    *,
    audience: str = SP_ENTITY_ID,
    issuer: str = IDP_ENTITY_ID,
    not_on_or_after: timedelta = timedelta(minutes=5),
) -> str:
    now = datetime.now(timezone.utc)
    return f"""
<saml:Assertion xmlns:saml="urn:oasis:names:tc:SAML:2.0:assertion"
                ID="_{uuid.uuid4().hex}"
                Version="2.0"
                IssueInstant="{_instant(now)}">
  <saml:Issuer>{issuer}</saml:Issuer>
  <saml:Subject>
    <saml:NameID>{email}</saml:NameID>
  </saml:Subject>
  <saml:Conditions NotBefore="{_instant(now - timedelta(minutes=1))}" NotOnOrAfter="{_instant(now + not_on_or_after)}">
    <saml:AudienceRestriction>
      <saml:Audience>{audience}</saml:Audience>
    </saml:AudienceRestriction>
  </saml:Conditions>
  <saml:AttributeStatement>
    <saml:Attribute Name="email">
      <saml:AttributeValue>{email}</saml:AttributeValue>
    </saml:Attribute>
    <saml:Attribute Name="displayName">
      <saml:AttributeValue>Sam L</saml:AttributeValue>
    </saml:Attribute>
  </saml:AttributeStatement>
</saml:Assertion>
""".strip()


def _response_root(*, destination: str = ACS_URL, issuer: str = IDP_ENTITY_ID) -> etree._Element:
    xml = f"""
<samlp:Response xmlns:samlp="urn:oasis:names:tc:SAML:2.0:protocol"
                xmlns:saml="urn:oasis:names:tc:SAML:2.0:assertion"
                ID="_{uuid.uuid4().hex}"
                Version="2.0"
                IssueInstant="{_instant(datetime.now(timezone.utc))}"
                Destination="{destination}">
  <saml:Issuer>{issuer}</saml:Issuer>
</samlp:Response>
""".strip()
    return etree.fromstring(xml.encode("utf-8"))


def _signer() -> XMLSigner:
    return XMLSigner(
        method=methods.enveloped,
        signature_algorithm="rsa-sha256",
        digest_algorithm="sha256",
        c14n_algorithm="http://www.w3.org/2001/10/xml-exc-c14n#",
    )


def _encode(root: etree._Element) -> str:
    return base64.b64encode(etree.tostring(root)).decode("ascii")


def signed_assertion_element(*, cert_pem: str, key_pem: str, email: str) -> etree._Element:
    assertion = etree.fromstring(_assertion_xml(email).encode("utf-8"))
    return _signer().sign(assertion, key=key_pem, cert=cert_pem)


def build_signed_saml_response(
    *,
    cert_pem: str,
    key_pem: str,
    email: str = "saml.user@example.com",
    audience: str = SP_ENTITY_ID,
    destination: str = ACS_URL,
    issuer: str = IDP_ENTITY_ID,
    not_on_or_after: timedelta = timedelta(minutes=5),
) -> str:
    root = _response_root(destination=destination, issuer=issuer)
    root.append(
        etree.fromstring(
            _assertion_xml(email, audience=audience, issuer=issuer, not_on_or_after=not_on_or_after).encode("utf-8")
        )
    )
    return _encode(_signer().sign(root, key=key_pem, cert=cert_pem))


def saml_config(cert_pem: str, *, enabled: bool = True) -> SamlProviderConfig:
    return SamlProviderConfig(
        enabled=enabled,
        sp_entity_id=SP_ENTITY_ID,
        acs_url=ACS_URL,
        idp_entity_id=IDP_ENTITY_ID,
        idp_certificate=cert_pem,
        sp_certificate=cert_pem,
    )


def test_signed_assertion_yields_identity(saml_signing_material: Tuple[str, str]) -> None:
    cert_pem, key_pem = saml_signing_material
    provider = SamlAssertionProvider(saml_config(cert_pem))

    identity = provider.verify_callback(build_signed_saml_response(cert_pem=cert_pem, key_pem=key_pem))

    assert identity.email == "saml.user@example.com"
    assert identity.provider_id == "saml"
    assert identity.display_name == "Sam L"
    assert identity.photo_url is None


def test_tampered_assertion_is_rejected(saml_signing_material: Tuple[str, str]) -> None:
    cert_pem, key_pem = saml_signing_material
    payload = base64.b64decode(build_signed_saml_response(cert_pem=cert_pem, key_pem=key_pem))
    tampered = base64.b64encode(payload.replace(b"saml.user@example.com", b"attacker@example.com")).decode("ascii")

    with pytest.raises(VerificationError) as excinfo:
        SamlAssertionProvider(saml_config(cert_pem)).verify_callback(tampered)
    assert excinfo.value.code == "auth.saml_invalid"


@pytest.mark.parametrize(
    "overrides",
    [
        {"audience": "sp:someone-else"},
        {"destination": "https://elsewhere.test/acs"},
        {"issuer": "https://rogue-idp.test"},
        {"not_on_or_after": timedelta(minutes=-10)},
    ],
)
def test_assertion_conditions_are_enforced(saml_signing_material: Tuple[str, str], overrides) -> None:
    cert_pem, key_pem = saml_signing_material
    assertion = build_signed_saml_response(cert_pem=cert_pem, key_pem=key_pem, **overrides)

    with pytest.raises(VerificationError):
        SamlAssertionProvider(saml_config(cert_pem)).verify_callback(assertion)


def test_malformed_and_disabled(saml_signing_material: Tuple[str, str]) -> None:
    cert_pem, _ = saml_signing_material
    with pytest.raises(VerificationError):
        SamlAssertionProvider(saml_config(cert_pem)).verify_callback("%%% not base64 %%%")
    with pytest.raises(VerificationError):
        SamlAssertionProvider(saml_config(cert_pem, enabled=False)).verify_callback("")


def test_metadata_lists_acs_and_certificate(saml_signing_material: Tuple[str, str]) -> None:
    cert_pem, _ = saml_signing_material
    metadata = SamlAssertionProvider(saml_config(cert_pem)).metadata()

    assert f'entityID="{SP_ENTITY_ID}"' in metadata
    assert f'Location="{ACS_URL}"' in metadata
    assert "X509Certificate" in metadata

    with pytest.raises(ChooserError):
        SamlAssertionProvider(saml_config(cert_pem, enabled=False)).metadata()


def test_signed_assertion_inside_unsigned_response(saml_signing_material: Tuple[str, str]) -> None:
    cert_pem, key_pem = saml_signing_material
    root = _response_root()
    root.append(signed_assertion_element(cert_pem=cert_pem, key_pem=key_pem, email="inner@example.com"))

    identity = SamlAssertionProvider(saml_config(cert_pem)).verify_callback(_encode(root))

    assert identity.email == "inner@example.com"


def test_wrapped_signed_assertion_cannot_vouch_for_another(saml_signing_material: Tuple[str, str]) -> None:
    cert_pem, key_pem = saml_signing_material
    root = _response_root()
    extensions = etree.SubElement(root, "{urn:oasis:names:tc:SAML:2.0:protocol}Extensions")
    extensions.append(signed_assertion_element(cert_pem=cert_pem, key_pem=key_pem, email="attacker@example.com"))
    root.append(etree.fromstring(_assertion_xml("victim@example.com").encode("utf-8")))

    with pytest.raises(VerificationError) as excinfo:
        SamlAssertionProvider(saml_config(cert_pem)).verify_callback(_encode(root))
    assert excinfo.value.code == "auth.saml_invalid"


def test_assertion_signed_outside_the_response_body_is_rejected(saml_signing_material: Tuple[str, str]) -> None:
    cert_pem, key_pem = saml_signing_material
    root = _response_root()
    extensions = etree.SubElement(root, "{urn:oasis:names:tc:SAML:2.0:protocol}Extensions")
    extensions.append(signed_assertion_element(cert_pem=cert_pem, key_pem=key_pem, email="attacker@example.com"))

    with pytest.raises(VerificationError):
        SamlAssertionProvider(saml_config(cert_pem)).verify_callback(_encode(root))


def test_unsigned_response_is_rejected(saml_signing_material: Tuple[str, str]) -> None:
    cert_pem, _ = saml_signing_material
    root = _response_root()
    root.append(etree.fromstring(_assertion_xml("victim@example.com").encode("utf-8")))

    with pytest.raises(VerificationError) as excinfo:
        SamlAssertionProvider(saml_config(cert_pem)).verify_callback(_encode(root))
    assert "not signed" in str(excinfo.value)
