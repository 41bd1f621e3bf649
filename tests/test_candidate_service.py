from app.services.candidate_service import (
    add_client_email,
    list_clients_for_owner,
    resolve_client_by_email,
    resolve_client_by_id,
)

OWNER = "owner@agency.io"


def test_clients_are_scoped_to_owner(db_session, make_client):
    make_client("Zeta")
    make_client("Acme")
    make_client("Other", owner_email="other@else.io")
    assert [client.business_name for client in list_clients_for_owner(db_session, OWNER)] == ["Acme", "Zeta"]


def test_resolve_client_by_id_checks_owner(db_session, make_client):
    mine = make_client("Acme")
    theirs = make_client("Other", owner_email="other@else.io")
    assert resolve_client_by_id(db_session, OWNER, mine.id) is mine
    assert resolve_client_by_id(db_session, OWNER, theirs.id) is None
    assert resolve_client_by_id(db_session, OWNER, "missing") is None


def test_resolve_client_by_email(db_session, make_client):
    acme = make_client("Acme", "CEO@acme.com", business_emails=["ops@acme.com"])
    assert resolve_client_by_email(db_session, OWNER, " ceo@ACME.com ") is acme
    assert resolve_client_by_email(db_session, OWNER, "ops@acme.com") is acme
    assert resolve_client_by_email(db_session, OWNER, "cfo@acme.com") is None
    assert resolve_client_by_email(db_session, "other@else.io", "ceo@acme.com") is None


def test_add_client_email(db_session, make_client):
    acme = make_client("Acme", "ceo@acme.com")

    added = add_client_email(db_session, acme, "CFO@acme.com")
    again = add_client_email(db_session, acme, "cfo@acme.com")
    primary = add_client_email(db_session, acme, "ceo@acme.com")
    db_session.commit()

    assert added.ok
    assert added.value == ["cfo@acme.com"]
    assert again.value == ["cfo@acme.com"]
    assert primary.value == ["cfo@acme.com"]
    assert acme.known_emails() == ["ceo@acme.com", "cfo@acme.com"]


def test_add_client_email_rejects_garbage(db_session, make_client):
    acme = make_client("Acme")
    result = add_client_email(db_session, acme, "not-an-email")
    assert not result.ok
    assert result.error_code == "invalid_email"
