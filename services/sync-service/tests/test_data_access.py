import pytest
from data_access import RemoteDataService
from errors import RecordNotFound
from events import DATA_CHANGED
from fake_google import FakeGoogleApi, sign_in
from records import Category, Currency, Transaction
from remote_state import STATE_FILE_NAME


def _record_changes(container):
    changes = []
    container.bus.subscribe(DATA_CHANGED, lambda event: changes.append(event.payload))
    return changes


@pytest.mark.anyio
async def test_remote_data_service_is_selected_in_remote_mode(remote_container) -> None:
    assert isinstance(remote_container.data, RemoteDataService)


@pytest.mark.anyio
async def test_add_transaction_persists_document_then_signals(remote_container, google_api: FakeGoogleApi) -> None:
    await sign_in(remote_container)
    seen_in_file_at_signal = []

    def on_change(event) -> None:
        stored = google_api.json_of(STATE_FILE_NAME)
        seen_in_file_at_signal.append(len(stored["transactions"]))

    remote_container.bus.subscribe(DATA_CHANGED, on_change)

    new_id = await remote_container.data.add_transaction(
        Transaction(id=99, category_id=1, amount=50.0, transaction_date="2024-01-15", type="expense")
    )

    assert new_id == 1
    assert seen_in_file_at_signal == [1]
    stored = google_api.json_of(STATE_FILE_NAME)["transactions"][0]
    assert stored["amount"] == 50.0
    assert stored["created_at"] and stored["updated_at"]


@pytest.mark.anyio
async def test_ids_increase_and_never_collide(remote_container) -> None:
    await sign_in(remote_container)
    data = remote_container.data

    ids = [
        await data.add_category(Category(name=f"Category {index}", type="expense")) for index in range(4)
    ]
    await data.delete_category(ids[1])
    ids.append(await data.add_category(Category(name="Late", type="income")))

    assert ids == [1, 2, 3, 4, 5]
    assert len({category.id for category in await data.get_categories()}) == 4


@pytest.mark.anyio
async def test_transactions_are_listed_newest_first_with_paging(remote_container) -> None:
    await sign_in(remote_container)
    data = remote_container.data
    for day in ("2024-01-10", "2024-03-01", "2024-02-15"):
        await data.add_transaction(Transaction(category_id=1, amount=10.0, transaction_date=day, type="expense"))

    page = await data.get_transactions(limit=2)
    rest = await data.get_transactions(limit=2, offset=2)

    assert [item.transaction_date for item in page] == ["2024-03-01", "2024-02-15"]
    assert [item.transaction_date for item in rest] == ["2024-01-10"]


@pytest.mark.anyio
async def test_update_merges_fields_and_keeps_id(remote_container) -> None:
    await sign_in(remote_container)
    data = remote_container.data
    transaction_id = await data.add_transaction(
        Transaction(category_id=1, amount=10.0, transaction_date="2024-01-10", type="expense", description="coffee")
    )

    await data.update_transaction(transaction_id, {"amount": 12.5, "id": 42})
    (updated,) = await data.get_transactions()

    assert updated.id == transaction_id
    assert updated.amount == 12.5
    assert updated.description == "coffee"


@pytest.mark.anyio
async def test_update_unknown_record_raises(remote_container) -> None:
    await sign_in(remote_container)

    with pytest.raises(RecordNotFound):
        await remote_container.data.update_currency(404, {"name": "Nothing"})


@pytest.mark.anyio
async def test_categories_filter_inactive_and_sort_defaults_first(remote_container) -> None:
    await sign_in(remote_container)
    data = remote_container.data
    await data.add_category(Category(name="zoo", type="expense"))
    await data.add_category(Category(name="Salary", type="income", is_default=True))
    await data.add_category(Category(name="Archived", type="expense", is_active=False))
    await data.add_category(Category(name="bills", type="expense", is_default=True))

    names = [category.name for category in await data.get_categories()]
    expense_names = [category.name for category in await data.get_categories("expense")]

    assert names == ["bills", "Salary", "zoo"]
    assert expense_names == ["bills", "zoo"]


@pytest.mark.anyio
async def test_default_currency_follows_settings(remote_container) -> None:
    await sign_in(remote_container)
    data = remote_container.data
    await data.add_currency(Currency(code="USD", name="US Dollar", symbol="$"))
    eur_id = await data.add_currency(Currency(code="EUR", name="Euro", symbol="€", is_active=False))

    assert await data.get_default_currency() is None

    settings = await data.update_app_settings({"default_currency_id": eur_id})

    assert settings.id == 1
    assert (await data.get_default_currency()).code == "EUR"
    assert [item.code for item in await data.get_active_currencies()] == ["USD"]


@pytest.mark.anyio
async def test_bookkeeping_settings_update_does_not_signal(remote_container) -> None:
    await sign_in(remote_container)
    changes = _record_changes(remote_container)
    data = remote_container.data
    await data.update_app_settings({"default_currency_id": 1})
    before = await data.get_app_settings()

    await data.update_app_settings({"last_backup_time": "2024-01-15T10:00:00.000Z"}, notify=False)
    after = await data.get_app_settings()

    assert changes == [{"entity": "settings", "action": "update", "id": 1}]
    assert after.last_backup_time == "2024-01-15T10:00:00.000Z"
    assert after.updated_at == before.updated_at
    assert after.created_at == before.created_at


@pytest.mark.anyio
async def test_every_mutation_signals_entity_action_and_id(remote_container) -> None:
    await sign_in(remote_container)
    changes = _record_changes(remote_container)
    data = remote_container.data

    currency_id = await data.add_currency(Currency(code="GBP", name="British Pound", symbol="£"))
    await data.update_currency(currency_id, {"symbol": "GBP"})
    removed = await data.delete_currency(currency_id)
    removed_again = await data.delete_currency(currency_id)

    assert removed is True and removed_again is False
    assert changes[:3] == [
        {"entity": "currency", "action": "add", "id": currency_id},
        {"entity": "currency", "action": "update", "id": currency_id},
        {"entity": "currency", "action": "delete", "id": currency_id},
    ]
