import pytest

from conftest import make_user_with_scores
from errors import NotFoundError
from storage import Store


def make_floor(store, w=400, h=300):
    return store.add_floor("/uploads/floors/f.png", w, h, name="Main", building="A", level="1")


def test_floor_and_location_roundtrip(store):
    floor = make_floor(store)
    loc = store.add_location(floor.id, 10, 20, "/uploads/locations/l.png", hint="by the stairs")

    assert store.get_floor(floor.id).map_size == (400, 300)
    fetched = store.get_location(loc.id)
    assert fetched.answer_xy == (10, 20)
    assert fetched.floor_id == floor.id
    assert "x" not in fetched.to_dict(reveal=False)


def test_unknown_ids_are_not_found(store):
    with pytest.raises(NotFoundError):
        store.get_floor(1)
    with pytest.raises(NotFoundError):
        store.get_location(1)
    with pytest.raises(NotFoundError):
        store.user_display_name(1)
    with pytest.raises(NotFoundError):
        store.add_location(42, 0, 0, "/x.png")


def test_random_location_respects_floor(store):
    first = make_floor(store)
    second = make_floor(store)
    store.add_location(first.id, 1, 1, "/a.png")
    loc = store.add_location(second.id, 2, 2, "/b.png")

    assert store.random_location(second.id).id == loc.id
    with pytest.raises(NotFoundError):
        store.random_location(999)


def test_random_location_with_no_locations(store):
    with pytest.raises(NotFoundError):
        store.random_location()


def test_deleting_a_floor_removes_its_locations(store):
    floor = make_floor(store)
    loc = store.add_location(floor.id, 1, 1, "/a.png")

    store.delete_floor(floor.id)

    with pytest.raises(NotFoundError):
        store.get_location(loc.id)
    assert store.list_floors() == []


def test_best_scores(store):
    alice = make_user_with_scores(store, "alice", 120, 340, 90)
    bob = make_user_with_scores(store, "bob", 400)
    carol = store.add_user("carol").id

    assert store.best_score_for_user(alice) == 340
    assert store.best_score_for_user(carol) is None
    assert store.best_score_per_user() == [(bob, 400), (alice, 340)]
    assert store.user_display_name(alice) == "alice"


def test_insert_returns_new_ids(store):
    user = store.add_user("alice").id

    first = store.insert_game_result(user, 10, 5)
    second = store.insert_game_result(user, 20, 5)

    assert second > first


def test_file_database_persists(tmp_path):
    url = f"sqlite:///{tmp_path / 'nested' / 'game.sqlite'}"
    user = make_user_with_scores(Store(url), "alice", 77)

    assert Store(url).best_score_for_user(user) == 77


def test_list_locations_newest_first(store):
    floor = make_floor(store)
    first = store.add_location(floor.id, 1, 2, "/uploads/locations/a.png")
    second = store.add_location(floor.id, 3, 4, "/uploads/locations/b.png")

    assert [loc.id for loc in store.list_locations()] == [second.id, first.id]
    assert store.list_locations()[0].answer_xy == (3, 4)


def test_display_names_in_bulk(store):
    alice = store.add_user("alice").id
    bob = store.add_user("bob").id

    assert store.display_names([alice, bob, 999]) == {alice: "alice", bob: "bob"}
    assert store.display_names([]) == {}
