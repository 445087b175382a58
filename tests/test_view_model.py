from __future__ import annotations

import pytest

from breweri_state import EMPTY_VIEW, FilteredView, UnfilteredView, ViewModel, page_size


def make_view(length: int, per_page: int, current: int = 0) -> ViewModel:
    vm = ViewModel()
    vm.replace(UnfilteredView(length))
    vm.per_page = per_page
    vm.current = current
    return vm


def test_page_size_leaves_room_for_chrome() -> None:
    assert page_size(30) == 25
    assert page_size(3) == 1


def test_pages_of_23_rows_by_10() -> None:
    vm = make_view(23, 10)

    starts = []
    for _ in range(3):
        starts.append(vm.current)
        vm.next_page()

    assert starts == [0, 10, 20]
    assert vm.current == 0


def test_next_page_lands_on_last_row_of_short_last_page() -> None:
    vm = make_view(23, 10, current=15)

    assert vm.next_page()
    assert vm.current == 22
    assert vm.page == 2


def test_prev_page_from_first_page_wraps_to_last_page() -> None:
    vm = make_view(23, 10, current=4)

    assert vm.prev_page()
    assert vm.page == 2
    assert vm.current == 20


@pytest.mark.parametrize("length", [11, 20, 23, 37])
@pytest.mark.parametrize("per_page", [1, 3, 10])
def test_full_cycle_of_page_moves_returns_to_start_page(length: int, per_page: int) -> None:
    pages = -(-length // per_page)
    for start in range(length):
        vm = make_view(length, per_page, current=start)
        for _ in range(pages):
            vm.next_page()
        assert vm.page == start // per_page

        vm.current = start
        for _ in range(pages):
            vm.prev_page()
        assert vm.page == start // per_page


def test_page_moves_are_noops_when_everything_fits() -> None:
    vm = make_view(10, 10, current=3)

    assert not vm.next_page()
    assert not vm.prev_page()
    assert vm.current == 3


def test_single_steps_wrap_at_both_ends() -> None:
    vm = make_view(5, 3)

    assert vm.up()
    assert vm.current == 4
    assert vm.down()
    assert vm.current == 0


def test_moves_on_empty_view_do_nothing() -> None:
    vm = ViewModel()
    vm.replace(EMPTY_VIEW)

    for move in (vm.up, vm.down, vm.next_page, vm.prev_page, vm.home, vm.end):
        assert not move()
    assert vm.current == 0


def test_home_and_end() -> None:
    vm = make_view(8, 3, current=4)

    assert vm.end()
    assert vm.current == 7
    assert not vm.end()
    assert vm.home()
    assert vm.current == 0


def test_row_and_visible_follow_the_page() -> None:
    vm = ViewModel()
    vm.replace(FilteredView((1, 4, 6, 9, 12)))
    vm.per_page = 2
    vm.current = 3

    assert vm.page == 1
    assert vm.row == 1
    assert vm.resolved() == 9
    assert vm.visible() == [(2, 6), (3, 9)]


def test_replace_resets_cursor() -> None:
    vm = make_view(30, 10, current=17)

    vm.replace(FilteredView((3,)))

    assert vm.current == 0


def test_clamp_pulls_cursor_back_into_view() -> None:
    vm = make_view(30, 10, current=17)
    vm.view = FilteredView((1, 2))

    vm.clamp()

    assert vm.current == 1
