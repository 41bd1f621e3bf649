from app.services.normalization import (
    extract_domain,
    is_public_domain,
    normalize_email,
    normalize_email_set,
    normalize_key,
)


class TestNormalizeEmail:
    def test_lowercases_and_trims(self):
        assert normalize_email("  CEO@Acme.COM ") == "ceo@acme.com"

    def test_idempotent(self):
        once = normalize_email(" Info@Example.org")
        assert normalize_email(once) == once

    def test_empty(self):
        assert normalize_email(None) == ""
        assert normalize_email("   ") == ""


def test_email_set_dedupes_and_keeps_order():
    emails = ["B@x.com", "a@x.com", "b@x.com ", "", None]
    assert normalize_email_set(emails) == ["b@x.com", "a@x.com"]


def test_email_set_idempotent():
    emails = normalize_email_set(["One@x.com", "two@X.com"])
    assert normalize_email_set(emails) == emails


def test_normalize_key_keeps_alphanumerics():
    assert normalize_key("  Acme, Inc. ") == "acmeinc"
    assert normalize_key("Café 42") == "caf42"


def test_extract_domain():
    assert extract_domain("ceo@Acme.com") == "acme.com"
    assert extract_domain("no-at-sign") is None


def test_public_domain():
    assert is_public_domain("gmail.com")
    assert not is_public_domain("acme.com")
    assert not is_public_domain(None)
