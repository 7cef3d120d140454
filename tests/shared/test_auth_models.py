import pytest
from pydantic import ValidationError

from fhirsession.shared.auth import AuthSettings, OAuthToken
from fhirsession.shared.auth_utils import generate_pkce_pair, redirect_parameters, s256_challenge, token_expiry
from fhirsession.utilities.logging import redact_sensitive_data


def test_token_type_is_normalized():
    token = OAuthToken.model_validate(
        {"access_token": "a", "token_type": "bearer", "patient": "p1", "need_patient_banner": True}
    )
    assert token.token_type == "Bearer"
    assert token.patient == "p1"
    assert token.model_extra == {"need_patient_banner": True}


def test_unknown_token_type_is_rejected():
    with pytest.raises(ValidationError):
        OAuthToken.model_validate({"access_token": "a", "token_type": "mac"})


def test_auth_settings_keep_unknown_keys():
    settings = AuthSettings.from_mapping({"client_id": "app", "logo_uri": "https://app.example.org/logo.png"})
    assert settings.client_id == "app"
    assert settings.model_extra == {"logo_uri": "https://app.example.org/logo.png"}
    assert AuthSettings.from_mapping(settings) is settings
    assert AuthSettings.from_mapping(None) == AuthSettings()


def test_merged_ignores_none():
    settings = AuthSettings(client_id="app", token_uri="https://old/token")
    merged = settings.merged(token_uri="https://new/token", authorize_uri=None)
    assert merged.token_uri == "https://new/token"
    assert merged.client_id == "app"
    assert merged.authorize_uri is None
    assert settings.token_uri == "https://old/token"


def test_redirect_uri_is_the_first():
    assert AuthSettings(redirect_uris=["https://a/cb", "https://b/cb"]).redirect_uri == "https://a/cb"
    assert AuthSettings().redirect_uri is None


def test_pkce_pair():
    pair = generate_pkce_pair()
    assert 43 <= len(pair.verifier) <= 128
    assert "=" not in pair.challenge
    assert pair.challenge == s256_challenge(pair.verifier)
    with pytest.raises(ValueError):
        generate_pkce_pair(10)


def test_s256_challenge_matches_rfc_7636_example():
    assert s256_challenge("dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk") == "E9Melhoa2OwvFrEMTJguCQaoVvWfwhlTVdwfyAZvMXM"


def test_redirect_parameters_prefer_fragment():
    params = redirect_parameters("https://app.example.org/cb?state=q&code=c#access_token=t&state=f")
    assert params == {"state": "f", "code": "c", "access_token": "t"}


def test_token_expiry():
    assert token_expiry(None) is None
    assert token_expiry("60") is not None


def test_redact_sensitive_data():
    redacted = redact_sensitive_data({"grant_type": "password", "password": "hunter2", "client_secret": None})
    assert redacted == {"grant_type": "password", "password": "***", "client_secret": None}
