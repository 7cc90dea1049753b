from datetime import timedelta

import pytest

from conftest import make_records

from modulestore.extensions import db
from modulestore.models import ModuleRecord
from modulestore.services import field_service, module_service, record_service
from modulestore.validation import (
    InactiveModuleError,
    NotFoundError,
    RequiredFieldError,
    ValidationError,
)


class TestCreateRecord:
    def test_default_option_applied(self, db_session, contacts, clock):
        record = record_service.create_record(module_id=contacts.id, data={"email": "a@b.com"}, actor_id=7, clock=clock)
        assert record.data == {"email": "a@b.com", "status": "active"}
        assert record.created_by == 7
        assert record.updated_by == 7
        assert record.created_at == clock.now
        assert record.updated_at == clock.now
        assert record.deleted_at is None

    def test_all_errors_collected(self, db_session, contacts, clock):
        with pytest.raises(ValidationError) as exc:
            record_service.create_record(module_id=contacts.id, data={"status": "bogus"}, clock=clock)
        assert set(exc.value.codes) == {"required", "invalid_option"}
        assert {e.field for e in exc.value.errors} == {"email", "status"}
        assert db.session.query(ModuleRecord).count() == 0

    def test_missing_required_only(self, db_session, contacts, clock):
        with pytest.raises(RequiredFieldError) as exc:
            record_service.create_record(module_id=contacts.id, data={"name": "Ann"}, clock=clock)
        assert exc.value.codes == ["required"]

    def test_values_coerced(self, db_session, contacts, clock):
        record = record_service.create_record(module_id=contacts.id, data={
            "email": " ann@example.com ",
            "age": "42",
            "subscribed": "yes",
            "phone": "555.123.4567",
        }, clock=clock)
        assert record.data["email"] == "ann@example.com"
        assert record.data["age"] == 42
        assert record.data["subscribed"] is True

    def test_validation_rules_enforced(self, db_session, contacts, clock):
        with pytest.raises(ValidationError) as exc:
            record_service.create_record(module_id=contacts.id, data={"email": "a@b.com", "age": 200}, clock=clock)
        assert exc.value.codes == ["max"]

    def test_unknown_keys_ignored(self, db_session, contacts, clock):
        record = record_service.create_record(module_id=contacts.id, data={"email": "a@b.com", "shoe_size": 44}, clock=clock)
        assert "shoe_size" not in record.data

    def test_field_default_value(self, db_session, contacts, clock):
        field_service.create_field(block_id=contacts.blocks[1].id, data={
            "type": "text", "label": "Source", "default_value": "web",
        })
        record = record_service.create_record(module_id=contacts.id, data={"email": "a@b.com"}, clock=clock)
        assert record.data["source"] == "web"

    def test_inactive_module_rejects_writes(self, db_session, contacts, clock):
        module_service.toggle_module_status(module_id=contacts.id)
        with pytest.raises(InactiveModuleError):
            record_service.create_record(module_id=contacts.id, data={"email": "a@b.com"}, clock=clock)

    def test_missing_module(self, db_session, clock):
        with pytest.raises(NotFoundError):
            record_service.create_record(module_id=999, data={}, clock=clock)

    def test_unique_field(self, db_session, contacts, clock):
        email = contacts.fields_by_api_name()["email"]
        field_service.update_field(field_id=email.id, data={"is_unique": True})

        first = record_service.create_record(module_id=contacts.id, data={"email": "a@b.com"}, clock=clock)
        with pytest.raises(ValidationError) as exc:
            record_service.create_record(module_id=contacts.id, data={"email": "a@b.com"}, clock=clock)
        assert exc.value.codes == ["unique"]

        # Updating the holder with its own value is fine
        record_service.update_record(module_id=contacts.id, record_id=first.id, data={"email": "a@b.com"}, clock=clock)

        # A trashed holder frees the value
        record_service.soft_delete_record(module_id=contacts.id, record_id=first.id, clock=clock)
        record_service.create_record(module_id=contacts.id, data={"email": "a@b.com"}, clock=clock)


class TestUpdateRecord:
    def test_update_merges(self, db_session, contacts, clock):
        record = record_service.create_record(module_id=contacts.id, data={
            "name": "Acme", "email": "a@b.com", "status": "active",
        }, clock=clock)
        clock.advance(minutes=5)

        updated = record_service.update_record(module_id=contacts.id, record_id=record.id, data={"status": "inactive"}, actor_id=3, clock=clock)
        assert updated.data == {"name": "Acme", "email": "a@b.com", "status": "inactive"}
        assert updated.updated_by == 3
        assert updated.updated_at == clock.now
        assert updated.created_at == clock.now - timedelta(minutes=5)

    def test_required_not_rechecked_when_present_in_document(self, db_session, contacts, clock):
        record = record_service.create_record(module_id=contacts.id, data={"email": "a@b.com"}, clock=clock)
        updated = record_service.update_record(module_id=contacts.id, record_id=record.id, data={"name": "Ann"}, clock=clock)
        assert updated.data["email"] == "a@b.com"

    def test_clearing_required_value_fails(self, db_session, contacts, clock):
        record = record_service.create_record(module_id=contacts.id, data={"email": "a@b.com"}, clock=clock)
        with pytest.raises(RequiredFieldError):
            record_service.update_record(module_id=contacts.id, record_id=record.id, data={"email": ""}, clock=clock)

    def test_stale_keys_retained(self, db_session, contacts, clock):
        record = record_service.create_record(module_id=contacts.id, data={"email": "a@b.com", "age": 30}, clock=clock)
        field_service.delete_field(field_id=contacts.fields_by_api_name()["age"].id)

        updated = record_service.update_record(module_id=contacts.id, record_id=record.id, data={"name": "Ann"}, clock=clock)
        assert updated.data["age"] == 30
        assert updated.data["name"] == "Ann"

    def test_update_trashed_record_not_found(self, db_session, contacts, clock):
        record = record_service.create_record(module_id=contacts.id, data={"email": "a@b.com"}, clock=clock)
        record_service.soft_delete_record(module_id=contacts.id, record_id=record.id, clock=clock)
        with pytest.raises(NotFoundError):
            record_service.update_record(module_id=contacts.id, record_id=record.id, data={"name": "x"}, clock=clock)


class TestDeleteRestore:
    def test_soft_delete_and_restore(self, db_session, contacts, clock):
        record = record_service.create_record(module_id=contacts.id, data={"email": "a@b.com"}, clock=clock)
        clock.advance(hours=1)

        deleted = record_service.soft_delete_record(module_id=contacts.id, record_id=record.id, clock=clock)
        assert deleted.deleted_at == clock.now
        assert not record_service.record_exists(module_id=contacts.id, record_id=record.id)
        with pytest.raises(NotFoundError):
            record_service.get_record(module_id=contacts.id, record_id=record.id)
        assert record_service.get_record(module_id=contacts.id, record_id=record.id, include_trashed=True).is_deleted

        restored = record_service.restore_record(module_id=contacts.id, record_id=record.id, clock=clock)
        assert restored.deleted_at is None
        assert record_service.record_exists(module_id=contacts.id, record_id=record.id)

    def test_restore_live_record_not_found(self, db_session, contacts, clock):
        record = record_service.create_record(module_id=contacts.id, data={"email": "a@b.com"}, clock=clock)
        with pytest.raises(NotFoundError):
            record_service.restore_record(module_id=contacts.id, record_id=record.id, clock=clock)

    def test_force_delete(self, db_session, contacts, clock):
        record = record_service.create_record(module_id=contacts.id, data={"email": "a@b.com"}, clock=clock)
        record_id = record.id
        record_service.force_delete_record(module_id=contacts.id, record_id=record_id, clock=clock)
        assert db.session.get(ModuleRecord, record_id) is None


class TestBulk:
    def test_bulk_create(self, db_session, contacts, clock):
        records = record_service.bulk_create_records(module_id=contacts.id, records=[
            {"email": "a@b.com"}, {"email": "c@d.com", "status": "inactive"},
        ], clock=clock)
        assert [r.data["status"] for r in records] == ["active", "inactive"]

    def test_bulk_create_reports_failing_index_and_rolls_back(self, db_session, contacts, clock):
        with pytest.raises(ValidationError) as exc:
            record_service.bulk_create_records(module_id=contacts.id, records=[
                {"email": "a@b.com"}, {"email": "c@d.com"}, {"email": "not-an-email"},
            ], clock=clock)
        assert exc.value.index == 2
        assert exc.value.codes == ["invalid_email"]
        assert db.session.query(ModuleRecord).count() == 0

    def test_bulk_update(self, db_session, contacts, clock):
        a, b = make_records(contacts, [{"email": "a@b.com"}, {"email": "c@d.com"}], clock)
        updated = record_service.bulk_update_records(module_id=contacts.id, record_ids=[a.id, b.id], data={"status": "inactive"}, clock=clock)
        assert [r.data["status"] for r in updated] == ["inactive", "inactive"]
        assert updated[0].data["email"] == "a@b.com"

    def test_bulk_update_missing_ids(self, db_session, contacts, clock):
        (a,) = make_records(contacts, [{"email": "a@b.com"}], clock)
        with pytest.raises(NotFoundError) as exc:
            record_service.bulk_update_records(module_id=contacts.id, record_ids=[a.id, 998, 999], data={"name": "x"}, clock=clock)
        assert exc.value.missing_ids == [998, 999]
        assert "name" not in record_service.get_record(module_id=contacts.id, record_id=a.id).data

    def test_bulk_delete(self, db_session, contacts, clock):
        a, b, c = make_records(contacts, [{"email": "a@b.com"}, {"email": "c@d.com"}, {"email": "e@f.com"}], clock)
        assert record_service.bulk_delete_records(module_id=contacts.id, record_ids=[a.id, b.id], clock=clock) == 2
        assert record_service.count_records(module_id=contacts.id) == 1

    def test_bulk_delete_missing_ids_changes_nothing(self, db_session, contacts, clock):
        (a,) = make_records(contacts, [{"email": "a@b.com"}], clock)
        with pytest.raises(NotFoundError):
            record_service.bulk_delete_records(module_id=contacts.id, record_ids=[a.id, 12345], clock=clock)
        assert record_service.record_exists(module_id=contacts.id, record_id=a.id)

    def test_bulk_requires_ids(self, db_session, contacts, clock):
        with pytest.raises(ValidationError):
            record_service.bulk_delete_records(module_id=contacts.id, record_ids=[], clock=clock)


class TestReads:
    def test_list_default_order_and_pagination(self, db_session, contacts, clock):
        rows = [{"email": f"user{i}@example.com"} for i in range(5)]
        created = make_records(contacts, rows, clock)

        page = record_service.list_records(module_id=contacts.id, page=1, page_size=2)
        assert [r.id for r in page["items"]] == [created[4].id, created[3].id]
        assert page["count"] == 2
        assert page["pagination"] == {
            "page": 1, "per_page": 2, "total": 5, "total_pages": 3, "has_next": True, "has_prev": False,
        }

        last = record_service.list_records(module_id=contacts.id, page=3, page_size=2)
        assert [r.id for r in last["items"]] == [created[0].id]
        assert last["pagination"]["has_next"] is False
        assert last["pagination"]["has_prev"] is True

    def test_text_paging_arguments(self, app, db_session, contacts, clock):
        created = make_records(contacts, [{"email": f"user{i}@example.com"} for i in range(3)], clock)

        second = record_service.list_records(module_id=contacts.id, page="2", page_size="2")
        assert [r.id for r in second["items"]] == [created[0].id]
        assert second["pagination"]["page"] == 2
        assert second["pagination"]["per_page"] == 2

        fallback = record_service.list_records(module_id=contacts.id, page="last", page_size="many")
        assert fallback["pagination"]["page"] == 1
        assert fallback["pagination"]["per_page"] == app.config["DEFAULT_PAGE_SIZE"]

    def test_page_size_clamped(self, app, db_session, contacts, clock):
        page = record_service.list_records(module_id=contacts.id, page_size=10_000)
        assert page["pagination"]["per_page"] == app.config["MAX_PAGE_SIZE"]
        assert record_service.list_records(module_id=contacts.id)["pagination"]["per_page"] == app.config["DEFAULT_PAGE_SIZE"]

    def test_list_excludes_trashed(self, db_session, contacts, clock):
        a, b = make_records(contacts, [{"email": "a@b.com"}, {"email": "c@d.com"}], clock)
        record_service.soft_delete_record(module_id=contacts.id, record_id=a.id, clock=clock)
        assert [r.id for r in record_service.list_records(module_id=contacts.id)["items"]] == [b.id]
        assert [r.id for r in record_service.list_trashed_records(module_id=contacts.id)["items"]] == [a.id]

    def test_search(self, db_session, contacts, clock):
        make_records(contacts, [
            {"name": "Ann Lee", "email": "ann@example.com"},
            {"name": "Bob Stone", "email": "bob@sample.org"},
            {"name": "Cara 100%", "email": "cara@example.com"},
        ], clock)
        names = lambda result: sorted(r.data["name"] for r in result["items"])  # noqa: E731

        assert names(record_service.search_records(module_id=contacts.id, term="EXAMPLE")) == ["Ann Lee", "Cara 100%"]
        assert names(record_service.search_records(module_id=contacts.id, term="stone")) == ["Bob Stone"]
        assert names(record_service.search_records(module_id=contacts.id, term="%")) == ["Cara 100%"]

    def test_records_by_field(self, db_session, contacts, clock):
        make_records(contacts, [
            {"email": "a@b.com", "status": "inactive"},
            {"email": "c@d.com"},
        ], clock)
        result = record_service.get_records_by_field(module_id=contacts.id, field_api_name="status", value="inactive")
        assert [r.data["email"] for r in result["items"]] == ["a@b.com"]

    def test_unique_field_values(self, db_session, contacts, clock):
        make_records(contacts, [
            {"email": "a@b.com", "status": "inactive"},
            {"email": "c@d.com"},
            {"email": "e@f.com", "status": "inactive"},
        ], clock)
        assert record_service.get_unique_field_values(module_id=contacts.id, field_api_name="status") == ["inactive", "active"]
        with pytest.raises(NotFoundError):
            record_service.get_unique_field_values(module_id=contacts.id, field_api_name="nope")

    def test_count_with_filters(self, db_session, contacts, clock):
        make_records(contacts, [
            {"email": "a@b.com", "age": 20},
            {"email": "c@d.com", "age": 40},
            {"email": "e@f.com", "age": 60},
        ], clock)
        assert record_service.count_records(module_id=contacts.id, filters=[{"field": "age", "operator": "gte", "value": 40}]) == 2


class TestMaintenance:
    def test_prune_stale_keys(self, db_session, contacts, clock):
        record = record_service.create_record(module_id=contacts.id, data={"email": "a@b.com", "age": 30}, clock=clock)
        field_service.delete_field(field_id=contacts.fields_by_api_name()["age"].id)

        assert record_service.prune_stale_keys(module_id=contacts.id) == 1
        assert "age" not in record_service.get_record(module_id=contacts.id, record_id=record.id).data
        assert record_service.prune_stale_keys(module_id=contacts.id) == 0

    def test_purge_trashed(self, db_session, contacts, clock):
        old, recent, live = make_records(contacts, [{"email": "a@b.com"}, {"email": "c@d.com"}, {"email": "e@f.com"}], clock)
        record_service.soft_delete_record(module_id=contacts.id, record_id=old.id, clock=clock)
        clock.advance(days=40)
        record_service.soft_delete_record(module_id=contacts.id, record_id=recent.id, clock=clock)

        assert record_service.purge_trashed_records(module_id=contacts.id, older_than_days=30, clock=clock) == 1
        assert db.session.query(ModuleRecord).count() == 2

        assert record_service.purge_trashed_records(module_id=contacts.id, clock=clock) == 1
        assert db.session.query(ModuleRecord).count() == 1
        assert record_service.record_exists(module_id=contacts.id, record_id=live.id)
