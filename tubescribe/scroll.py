from __future__ import annotations

from typing import Any, Iterable


class ScrollWindow:
    def __init__(self, items: Iterable[Any] = (), viewport_size: int = 1) -> None:
        self.items: list[Any] = list(items)
        self.viewport_size = max(viewport_size, 1)
        self.selected: int | None = 0 if self.items else None
        self.offset = 0
        self.marks: set[int] = set()
        self._ensure_visible()

    def __len__(self) -> int:
        return len(self.items)

    @property
    def max_offset(self) -> int:
        return max(0, len(self.items) - self.viewport_size)

    def select_next(self) -> None:
        if not self.items:
            return
        current = -1 if self.selected is None else self.selected
        self.selected = (current + 1) % len(self.items)
        self._ensure_visible()

    def select_previous(self) -> None:
        if not self.items:
            return
        current = 0 if self.selected is None else self.selected
        self.selected = (current - 1) % len(self.items)
        self._ensure_visible()

    def scroll_down(self) -> None:
        self._move_to((self.selected or 0) + 1)

    def scroll_up(self) -> None:
        self._move_to((self.selected or 0) - 1)

    def page_down(self) -> None:
        self._move_to((self.selected or 0) + self.viewport_size)

    def page_up(self) -> None:
        self._move_to((self.selected or 0) - self.viewport_size)

    def home(self) -> None:
        self._move_to(0)

    def end(self) -> None:
        self._move_to(len(self.items) - 1)

    def select(self, index: int) -> None:
        self._move_to(index)

    def scroll_by(self, delta: int) -> None:
        if not self.items:
            return
        self.offset = min(max(self.offset + delta, 0), self.max_offset)
        self.selected = self.offset
        self._ensure_visible()

    def set_viewport_size(self, size: int) -> None:
        self.viewport_size = max(size, 1)
        self._ensure_visible()

    def toggle_mark(self, index: int | None = None) -> None:
        target = self.selected if index is None else index
        if target is None or not 0 <= target < len(self.items):
            return
        if target in self.marks:
            self.marks.discard(target)
        else:
            self.marks.add(target)

    def marked_items(self) -> list[Any]:
        return [self.items[index] for index in sorted(self.marks)]

    def selected_item(self) -> Any | None:
        if self.selected is None or not self.items:
            return None
        return self.items[self.selected]

    def replace_items(self, items: Iterable[Any]) -> None:
        self.items = list(items)
        self.marks = set()
        self._ensure_visible()

    def visible(self) -> list[tuple[int, Any]]:
        stop = min(self.offset + self.viewport_size, len(self.items))
        return [(index, self.items[index]) for index in range(self.offset, stop)]

    def _move_to(self, index: int) -> None:
        if not self.items:
            return
        self.selected = min(max(index, 0), len(self.items) - 1)
        self._ensure_visible()

    def _ensure_visible(self) -> None:
        if not self.items:
            self.selected = None
            self.offset = 0
            return
        selected = 0 if self.selected is None else self.selected
        selected = min(max(selected, 0), len(self.items) - 1)
        if selected < self.offset:
            self.offset = selected
        elif selected >= self.offset + self.viewport_size:
            self.offset = selected - self.viewport_size + 1
        self.offset = max(0, min(self.offset, self.max_offset))
        self.selected = selected
