"""
Integration Tests for BaseRepository.

Runs the generic repository through the bank, market and local
repositories against a real (SQLite) database.
"""

import pytest
from sqlalchemy.exc import IntegrityError

from catalog.core.exceptions import NotFoundError, ValidationError
from catalog.core.list_query import In, ListQuery
from catalog.repositories.bank import BankRepository
from catalog.repositories.market import LocalRepository, MarketRepository


@pytest.fixture
def bank_repo(db_session) -> BankRepository:
    return BankRepository(db_session)


@pytest.fixture
async def seeded(bank_repo):
    """Banks BNA, BPR, GAL, MAC (active) and SUP (inactive), created in that order."""
    return await bank_repo.create_many([
        {"code": "BNA", "name": "Banco de la Nacion"},
        {"code": "BPR", "name": "Banco Provincia"},
        {"code": "GAL", "name": "Galicia"},
        {"code": "MAC", "name": "Macro"},
        {"code": "SUP", "name": "Supervielle", "is_active": False},
    ])


class TestPaginate:
    """Tests for filtered, sorted pagination."""

    async def test_meta(self, bank_repo, seeded):
        page = await bank_repo.paginate(ListQuery(per_page=2, page=2))

        assert page.total == 5
        assert page.last_page == 3
        assert page.current_page == 2
        assert len(page.items) == 2

    async def test_page_past_the_end_is_empty(self, bank_repo, seeded):
        page = await bank_repo.paginate(ListQuery(per_page=2, page=9))

        assert page.items == []
        assert page.total == 5

    async def test_empty_table(self, bank_repo):
        page = await bank_repo.paginate(ListQuery())

        assert page.items == []
        assert (page.total, page.last_page) == (0, 1)

    async def test_search_is_case_insensitive_across_columns(self, bank_repo, seeded):
        page = await bank_repo.paginate(ListQuery(search_term="banco"))

        assert {bank.code for bank in page.items} == {"BNA", "BPR"}

    async def test_search_matches_code(self, bank_repo, seeded):
        page = await bank_repo.paginate(ListQuery(search_term="gal"))

        assert [bank.code for bank in page.items] == ["GAL"]

    async def test_search_treats_wildcards_literally(self, bank_repo, seeded):
        page = await bank_repo.paginate(ListQuery(search_term="%"))

        assert page.total == 0

    async def test_equals_filter(self, bank_repo, seeded):
        page = await bank_repo.paginate(ListQuery(filters={"is_active": "false"}))

        assert [bank.code for bank in page.items] == ["SUP"]

    async def test_equals_filter_on_text_column_keeps_boolean_like_strings(self, bank_repo, seeded):
        """Should compare "true" and "1" as text on a string column."""
        await bank_repo.create_many([
            {"code": "T1", "name": "true"},
            {"code": "N1", "name": "1"},
        ])

        by_word = await bank_repo.paginate(ListQuery(filters={"name": "true"}))
        by_digit = await bank_repo.paginate(ListQuery(filters={"code": "1"}))
        by_name_digit = await bank_repo.paginate(ListQuery(filters={"name": "1"}))

        assert [bank.code for bank in by_word.items] == ["T1"]
        assert by_digit.items == []
        assert [bank.code for bank in by_name_digit.items] == ["N1"]

    async def test_in_filter(self, bank_repo, seeded):
        page = await bank_repo.paginate(ListQuery(filters={"code_in": ["GAL", "MAC", "XXX"]}))

        assert {bank.code for bank in page.items} == {"GAL", "MAC"}

    async def test_empty_in_filter_matches_nothing(self, bank_repo, seeded):
        page = await bank_repo.paginate(ListQuery(filters={"code_in": In("code", ())}))

        assert page.total == 0

    async def test_between_filter(self, bank_repo, seeded):
        ids = [bank.id for bank in seeded]
        query = ListQuery(filters={"id_between": {"from": str(ids[1]), "to": str(ids[3])}})

        page = await bank_repo.paginate(query)

        assert {bank.id for bank in page.items} == set(ids[1:4])

    async def test_unknown_filter_is_ignored(self, bank_repo, seeded):
        page = await bank_repo.paginate(ListQuery(filters={"colour": "red"}))

        assert page.total == 5

    async def test_requested_sort(self, bank_repo, seeded):
        page = await bank_repo.paginate(ListQuery(sort_column="code", sort_direction="desc"))

        assert [bank.code for bank in page.items] == ["SUP", "MAC", "GAL", "BPR", "BNA"]

    async def test_disallowed_sort_falls_back_to_default(self, bank_repo, seeded):
        """Should sort by the repository default (name asc) instead."""
        page = await bank_repo.paginate(ListQuery(sort_column="uuid", sort_direction="desc"))

        names = [bank.name for bank in page.items]
        assert names == sorted(names)

    async def test_soft_deleted_rows_are_hidden(self, bank_repo, seeded):
        await bank_repo.delete(seeded[0].id)

        page = await bank_repo.paginate(ListQuery())

        assert page.total == 4
        assert seeded[0].id not in {bank.id for bank in page.items}

    async def test_paginate_by_ids_desc(self, bank_repo, seeded):
        ids = [seeded[0].id, seeded[2].id, seeded[4].id]

        page = await bank_repo.paginate_by_ids_desc(ids, per_page=2)

        assert [bank.id for bank in page.items] == [seeded[4].id, seeded[2].id]
        assert (page.total, page.last_page) == (3, 2)

    async def test_paginate_by_no_ids(self, bank_repo, seeded):
        page = await bank_repo.paginate_by_ids_desc([], per_page=10)

        assert page.items == []
        assert page.total == 0


class TestRelations:
    """Tests for eager loading and relationship counts."""

    async def test_with_count(self, db_session, market_in_session):
        page = await MarketRepository(db_session).paginate(ListQuery(), with_count=("locals",))

        market = page.items[0]
        assert market.to_dict()["locals_count"] == 3

    async def test_sort_by_count(self, db_session, market_in_session):
        repo = MarketRepository(db_session)
        await repo.create({"code": "EMP", "name": "Empty market"})

        page = await repo.paginate(
            ListQuery(sort_column="locals_count", sort_direction="asc"),
            with_count=("locals",),
        )

        assert [market.code for market in page.items] == ["EMP", "CEN"]

    async def test_with_relation(self, db_session, market_in_session):
        market = await MarketRepository(db_session).find_by_id(market_in_session.id, with_=("locals",))

        assert [local.code for local in market.locals] == ["L1", "L2", "L3"]

    async def test_nested_relation(self, db_session, market_in_session):
        locals_ = await LocalRepository(db_session).all(with_=("market.locals",))

        assert {len(local.market.locals) for local in locals_} == {3}

    async def test_unknown_relation_raises(self, db_session):
        with pytest.raises(ValidationError):
            await MarketRepository(db_session).paginate(ListQuery(), with_=("stalls",))

    async def test_custom_market_code_filter(self, db_session, market_in_session):
        other = await MarketRepository(db_session).create({"code": "NOR", "name": "North"})
        repo = LocalRepository(db_session)
        await repo.create({"market_id": other.id, "code": "N1", "name": "North 1"})

        page = await repo.paginate(ListQuery(filters={"market_code": "NOR"}))

        assert [local.code for local in page.items] == ["N1"]

    async def test_count_with_filters(self, db_session, market_in_session):
        count = await LocalRepository(db_session).count(
            {"market_id": market_in_session.id, "active": True}
        )

        assert count == 2


class TestLookups:
    async def test_find_and_exists(self, bank_repo, seeded):
        bank = seeded[0]

        assert (await bank_repo.find_by_id(bank.id)).code == "BNA"
        assert (await bank_repo.find_by_uuid(bank.uuid)).id == bank.id
        assert await bank_repo.exists_by_id(bank.id)
        assert await bank_repo.exists_by_uuid(bank.uuid)

    async def test_find_or_fail_raises_not_found(self, bank_repo):
        with pytest.raises(NotFoundError):
            await bank_repo.find_or_fail_by_id(999)
        with pytest.raises(NotFoundError):
            await bank_repo.find_or_fail_by_uuid("missing")

    async def test_trashed_rows_need_with_trashed(self, bank_repo, seeded):
        bank = seeded[0]
        await bank_repo.delete(bank.id)

        assert await bank_repo.find_by_id(bank.id) is None
        assert (await bank_repo.find_by_id(bank.id, with_trashed=True)).is_trashed


class TestMutations:
    async def test_create_assigns_defaults(self, bank_repo):
        bank = await bank_repo.create({"code": "ICB", "name": "ICBC", "unknown": "ignored"})

        assert bank.id is not None
        assert len(bank.uuid) == 36
        assert bank.is_active is True
        assert bank.created_at is not None

    async def test_duplicate_code_raises_integrity_error(self, bank_repo, seeded):
        with pytest.raises(IntegrityError):
            await bank_repo.create({"code": "BNA", "name": "Again"})

    async def test_update(self, bank_repo, seeded):
        bank = await bank_repo.update(seeded[0].id, {"name": "Nacion"})

        assert bank.name == "Nacion"

    async def test_update_missing_raises(self, bank_repo):
        with pytest.raises(NotFoundError):
            await bank_repo.update(999, {"name": "x"})

    async def test_soft_delete_and_restore(self, bank_repo, seeded):
        bank_id = seeded[0].id

        assert await bank_repo.delete(bank_id) is True
        assert not await bank_repo.exists_by_id(bank_id)

        assert await bank_repo.restore(bank_id) is True
        assert await bank_repo.exists_by_id(bank_id)

    async def test_force_delete_removes_row(self, bank_repo, seeded):
        bank_id = seeded[0].id

        await bank_repo.force_delete(bank_id)

        assert not await bank_repo.exists_by_id(bank_id)
        assert await bank_repo.find_by_id(bank_id, with_trashed=True) is None

    async def test_force_delete_trashed_row(self, bank_repo, seeded):
        bank_id = seeded[0].id
        await bank_repo.delete(bank_id)

        assert await bank_repo.force_delete(bank_id) is True
        assert await bank_repo.find_by_id(bank_id, with_trashed=True) is None

    async def test_hard_delete_without_soft_delete(self, db_session, market_in_session):
        repo = LocalRepository(db_session)
        local = market_in_session.locals[0]

        await repo.delete(local.id)

        assert await repo.find_by_id(local.id) is None

    async def test_restore_without_soft_delete_is_false(self, db_session, market_in_session):
        repo = LocalRepository(db_session)

        assert await repo.restore(market_in_session.locals[0].id) is False

    async def test_set_active(self, bank_repo, seeded):
        bank = await bank_repo.set_active(seeded[0].id, False)

        assert bank.is_active is False

    async def test_force_deleting_market_cascades_to_locals(self, db_session, market_in_session):
        await MarketRepository(db_session).force_delete(market_in_session.id)

        assert await LocalRepository(db_session).count() == 0


class TestUpsert:
    async def test_inserts_and_updates(self, bank_repo, seeded):
        affected = await bank_repo.upsert(
            [
                {"code": "BNA", "name": "Nacion Argentina"},
                {"code": "CIU", "name": "Banco Ciudad"},
            ],
            unique_by=["code"],
        )
        bank_repo.session.expire_all()

        assert affected == 2
        assert (await bank_repo.count({"code": "CIU"})) == 1
        page = await bank_repo.paginate(ListQuery(filters={"code": "BNA"}))
        assert page.items[0].name == "Nacion Argentina"

    async def test_empty_update_columns_leaves_existing_rows(self, bank_repo, seeded):
        await bank_repo.upsert(
            [{"code": "BNA", "name": "Changed"}],
            unique_by=["code"],
            update_columns=[],
        )
        bank_repo.session.expire_all()

        page = await bank_repo.paginate(ListQuery(filters={"code": "BNA"}))
        assert page.items[0].name == "Banco de la Nacion"

    async def test_rows_must_share_columns(self, bank_repo):
        with pytest.raises(ValidationError):
            await bank_repo.upsert(
                [{"code": "A", "name": "A"}, {"code": "B"}],
                unique_by=["code"],
            )

    async def test_no_rows(self, bank_repo):
        assert await bank_repo.upsert([], unique_by=["code"]) == 0


class TestBulkMutations:
    """Tests for single-statement bulk operations."""

    @pytest.mark.parametrize(
        "operation",
        ["bulk_delete_by_ids", "bulk_force_delete_by_ids", "bulk_restore_by_ids"],
    )
    async def test_empty_input_is_a_no_op(self, bank_repo, seeded, operation):
        assert await getattr(bank_repo, operation)([]) == 0
        assert (await bank_repo.paginate(ListQuery())).total == 5

    async def test_empty_set_active_is_a_no_op(self, bank_repo, seeded):
        assert await bank_repo.bulk_set_active_by_uuids([], False) == 0

    async def test_bulk_delete_touches_exactly_the_given_rows(self, bank_repo, seeded):
        ids = [seeded[0].id, seeded[1].id]

        affected = await bank_repo.bulk_delete_by_ids(ids)

        assert affected == 2
        remaining = await bank_repo.paginate(ListQuery())
        assert {bank.id for bank in remaining.items} == {bank.id for bank in seeded[2:]}

    async def test_bulk_delete_skips_already_deleted(self, bank_repo, seeded):
        await bank_repo.delete(seeded[0].id)

        assert await bank_repo.bulk_delete_by_ids([seeded[0].id, seeded[1].id]) == 1

    async def test_bulk_restore(self, bank_repo, seeded):
        uuids = [seeded[0].uuid, seeded[1].uuid]
        await bank_repo.bulk_delete_by_uuids(uuids)

        assert await bank_repo.bulk_restore_by_uuids(uuids) == 2
        assert (await bank_repo.paginate(ListQuery())).total == 5

    async def test_bulk_force_delete(self, bank_repo, seeded):
        ids = [seeded[3].id, seeded[4].id]

        assert await bank_repo.bulk_force_delete_by_ids(ids) == 2
        for bank_id in ids:
            assert not await bank_repo.exists_by_id(bank_id)

    async def test_bulk_set_active(self, bank_repo, seeded):
        ids = [bank.id for bank in seeded]

        assert await bank_repo.bulk_set_active_by_ids(ids, False) == 5
        assert await bank_repo.count({"is_active": True}) == 0

    async def test_bulk_delete_without_soft_delete(self, db_session, market_in_session):
        repo = LocalRepository(db_session)
        ids = [local.id for local in market_in_session.locals[:2]]

        assert await repo.bulk_delete_by_ids(ids) == 2
        assert await repo.count() == 1


class TestPessimisticLock:
    async def test_calls_fn_with_locked_row(self, bank_repo, seeded):
        def rename(bank):
            bank.name = "Locked"
            return bank.id

        result = await bank_repo.with_pessimistic_lock_by_id(seeded[0].id, rename)

        assert result == seeded[0].id
        assert (await bank_repo.find_by_id(seeded[0].id)).name == "Locked"

    async def test_accepts_coroutine_function(self, bank_repo, seeded):
        async def read_code(bank):
            return bank.code

        assert await bank_repo.with_pessimistic_lock_by_uuid(seeded[1].uuid, read_code) == "BPR"

    async def test_missing_row_raises_without_calling_fn(self, bank_repo):
        calls = []

        with pytest.raises(NotFoundError):
            await bank_repo.with_pessimistic_lock_by_id(999, calls.append)

        assert calls == []


@pytest.fixture
async def market_in_session(db_session):
    """A market with locals L1, L2 (active) and L3 (inactive) in the test session."""
    market = await MarketRepository(db_session).create({"code": "CEN", "name": "Mercado Central"})
    await LocalRepository(db_session).create_many([
        {"market_id": market.id, "code": "L1", "name": "Stall 1", "monthly_rent": 100},
        {"market_id": market.id, "code": "L2", "name": "Stall 2", "monthly_rent": 250},
        {"market_id": market.id, "code": "L3", "name": "Stall 3", "monthly_rent": 400, "active": False},
    ])
    return await MarketRepository(db_session).find_by_id(market.id, with_=("locals",))
