import random

from tubelinks.models import LinkRecord
from tubelinks.state import (
    AppState,
    add_links_from_text,
    clear,
    format_links,
    go_to_page,
    page_links,
    random_recommendations,
    remove_link,
    remove_page,
    selected_links,
    toggle_select_page,
    toggle_selected,
    total_pages,
)

NOW = "2024-05-01T12:00:00Z"


def make_state(n, per_page=10):
    links = [LinkRecord(url=f"https://youtu.be/{i:011d}", timestamp=NOW) for i in range(n)]
    return AppState(links=links, items_per_page=per_page)


def test_add_classifies_input():
    state = AppState(links=[LinkRecord(url="https://youtu.be/aaaaaaaaaaa")])
    text = "\n".join([
        "https://youtu.be/aaaaaaaaaaa",
        "https://youtu.be/bbbbbbbbbbbhttps://youtu.be/ccccccccccc",
        "hello world",
        "",
    ])

    new_state, report = add_links_from_text(state, text, now=NOW)

    assert report.added == ["https://youtu.be/bbbbbbbbbbb", "https://youtu.be/ccccccccccc"]
    assert report.duplicates == ["https://youtu.be/aaaaaaaaaaa"]
    assert report.invalid == ["hello world"]
    assert not report.clean
    assert [l.url for l in new_state.links][-2:] == report.added
    assert new_state.links[-1].timestamp == NOW
    assert len(state.links) == 1


def test_add_report_message():
    _, report = add_links_from_text(AppState(), "https://youtu.be/bbbbbbbbbbb\nnope")
    assert report.message() == "Added 1 new link(s), 1 invalid link(s) not added"


def test_add_nothing_valid_keeps_state():
    state = AppState()
    new_state, report = add_links_from_text(state, "nothing useful")
    assert new_state is state
    assert not report.ok


def test_format_links():
    text = "look https://youtu.be/aaaaaaaaaaahttps://youtu.be/bbbbbbbbbbb"
    assert format_links(text) == ["https://youtu.be/aaaaaaaaaaa", "https://youtu.be/bbbbbbbbbbb"]
    assert format_links("youtube.com/watch?v=xyz") == ["youtube.com/watch?v=xyz"]
    assert format_links("nothing") == []


def test_pagination():
    state = make_state(25)
    assert total_pages(state) == 3
    assert total_pages(AppState()) == 1

    last = go_to_page(state, 99)
    assert last.current_page == 3
    assert len(page_links(last)) == 5
    assert go_to_page(state, 0).current_page == 1


def test_remove_link_clamps_page_and_selection():
    state = go_to_page(make_state(11), 2)
    only = state.links[10].url
    state = toggle_selected(state, only)

    state = remove_link(state, only)

    assert len(state.links) == 10
    assert state.current_page == 1
    assert state.selected == set()


def test_remove_page():
    state = go_to_page(make_state(15, per_page=5), 2)
    state = remove_page(state)
    assert len(state.links) == 10
    assert state.links[4].url.endswith("00000000004")
    assert state.links[5].url.endswith("00000000010")


def test_selection():
    state = make_state(3, per_page=2)
    state = toggle_select_page(state)
    assert selected_links(state) == [l.url for l in state.links[:2]]
    state = toggle_select_page(state)
    assert selected_links(state) == []
    state = toggle_selected(toggle_selected(state, state.links[2].url), state.links[2].url)
    assert state.selected == set()


def test_clear():
    state = toggle_select_page(go_to_page(make_state(30), 2))
    cleared = clear(state)
    assert cleared.links == []
    assert cleared.selected == set()
    assert cleared.current_page == 1


def test_random_recommendations():
    links = make_state(10).links
    picked = random_recommendations(links, 3, rng=random.Random(1))
    assert len(picked) == 3
    assert len({l.url for l in picked}) == 3
    assert len(random_recommendations(links[:2], 5)) == 2
