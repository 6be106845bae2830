import pytest

from pagination import PaginationState, paginate, reposition, total_pages_for

ITEMS = list(range(1, 24))


def test_slices_last_partial_page():
    page = paginate(ITEMS, 3, 10)
    assert page.total_pages == 3
    assert page.items == [21, 22, 23]
    assert (page.start_index, page.end_index) == (20, 23)
    assert page.has_prev and not page.has_next


@pytest.mark.parametrize("requested,expected", [(0, 1), (-4, 1), (99, 3)])
def test_out_of_range_pages_are_clamped(requested, expected):
    assert paginate(ITEMS, requested, 10).page == expected


def test_empty_collection_has_one_empty_page():
    page = paginate([], 5, 10)
    assert (page.page, page.total_pages, page.total, page.items) == (1, 1, 0, [])
    assert not page.has_next and not page.has_prev


def test_page_size_must_be_positive():
    with pytest.raises(ValueError):
        paginate(ITEMS, 1, 0)
    with pytest.raises(ValueError):
        PaginationState(page_size=0)


def test_total_pages_for():
    assert total_pages_for(0, 10) == 1
    assert total_pages_for(20, 10) == 2
    assert total_pages_for(21, 10) == 3


def test_reposition_keeps_first_visible_item_on_screen():
    assert reposition(3, 10, 25) == 1
    assert reposition(3, 5, 10) == 2
    assert reposition(2, 25, 5) == 6


def test_state_reclamps_when_collection_shrinks():
    state = PaginationState(page_size=10)
    state.set_page(3)
    assert state.apply(ITEMS).items == [21, 22, 23]
    page = state.apply(ITEMS[:12])
    assert page.page == 2
    assert state.page == 2


def test_state_navigation():
    state = PaginationState(page_size=5)
    state.apply(ITEMS)
    assert state.last() == 5
    assert state.next() == 5
    assert state.previous() == 4
    assert state.first() == 1
    assert state.previous() == 1


def test_changing_page_size_repositions():
    state = PaginationState(page=3, page_size=10)
    assert state.set_page_size(5) == 5
    assert state.apply(ITEMS).items == [21, 22, 23]
    state.reset()
    assert state.page == 1


def test_growing_page_size_keeps_item_21_visible():
    state = PaginationState(page=3, page_size=10)
    state.set_page_size(25)
    assert 21 in state.apply(list(range(1, 31))).items


def test_deleting_last_item_of_page_three_moves_back_to_page_two():
    items = list(range(1, 22))
    state = PaginationState(page_size=10)
    state.set_page(3)
    assert state.apply(items).items == [21]
    page = state.apply(items[:-1])
    assert (page.page, page.total_pages) == (2, 2)
    assert page.items == list(range(11, 21))


def test_page_size_must_be_one_of_the_options():
    state = PaginationState(page_size_options=(5, 10))
    with pytest.raises(ValueError):
        state.set_page_size(25)
    assert state.page_size == 10
    assert PaginationState(page_size_options=()).set_page_size(7) == 1
