"""CLI commands run against the test app's in-memory database."""

from conftest import make_records

from modulestore.services import field_service, module_service, record_service


def test_modules_list(app, db_session, contacts, deals):
    module_service.toggle_module_status(module_id=deals.id)
    runner = app.test_cli_runner()

    result = runner.invoke(args=["modules", "list"])
    assert result.exit_code == 0
    assert "contacts" in result.output
    assert "deals" not in result.output

    result = runner.invoke(args=["modules", "list", "--all"])
    assert "deals" in result.output


def test_modules_list_empty(app, db_session):
    result = app.test_cli_runner().invoke(args=["modules", "list"])
    assert result.exit_code == 0
    assert "No modules found." in result.output


def test_module_stats(app, db_session, contacts, clock):
    make_records(contacts, [{"email": "a@b.com"}], clock)
    result = app.test_cli_runner().invoke(args=["modules", "stats", "contacts"])
    assert result.exit_code == 0
    assert "Contacts (contacts)" in result.output
    assert "Records:       1" in result.output


def test_unknown_module_fails_cleanly(app, db_session):
    result = app.test_cli_runner().invoke(args=["modules", "stats", "nope"])
    assert result.exit_code == 1
    assert "not found" in result.output


def test_prune_stale(app, db_session, contacts, clock):
    make_records(contacts, [{"email": "a@b.com", "age": 3}], clock)
    field_service.delete_field(field_id=contacts.fields_by_api_name()["age"].id)

    result = app.test_cli_runner().invoke(args=["records", "prune-stale", "contacts"])
    assert result.exit_code == 0
    assert "Pruned stale keys from 1 records" in result.output


def test_purge_trashed(app, db_session, contacts, clock):
    (record,) = make_records(contacts, [{"email": "a@b.com"}], clock)
    record_service.soft_delete_record(module_id=contacts.id, record_id=record.id, clock=clock)
    runner = app.test_cli_runner()

    result = runner.invoke(args=["records", "purge-trashed", "contacts", "--older-than-days", "-1"])
    assert result.exit_code == 1
    assert "cannot be negative" in result.output

    result = runner.invoke(args=["records", "purge-trashed", "contacts"])
    assert result.exit_code == 0
    assert "Purged 1 trashed records" in result.output
    assert record_service.list_trashed_records(module_id=contacts.id)["items"] == []


def test_reset_db_requires_confirmation(app, db_session, contacts):
    result = app.test_cli_runner().invoke(args=["system", "reset-db"], input="n\n")
    assert result.exit_code == 1
    assert module_service.get_module_by_api_name("contacts").id == contacts.id
