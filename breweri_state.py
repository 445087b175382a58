#!/usr/bin/env python3
"""
breweri_state.py — search/select state for the breweri TUI.

Nothing in here touches curses: the UI decodes keys into KeyEvents, hands
them to SearchController, drains the scheduler and draws whatever AppState
holds. Background jobs only ever report back through the scheduler.
"""

import collections
import logging
import threading

from breweri_core import (
    CancelToken,
    JobCancelled,
    OnceCell,
    CatalogLoader,
    InstalledScanner,
    PackageDetails,
    PackageOperations,
    _,
)

logger = logging.getLogger(__name__)

# Rows taken by the search box, the result border and the bottom border
CHROME_ROWS = 5

# -------------------------
# Views
# -------------------------
class UnfilteredView:
    """Every catalog position in catalog order, without a materialised list."""

    filtered = False

    def __init__(self, size):
        self.size = size

    def __len__(self):
        return self.size

    def resolve(self, index):
        return index

    def window(self, start, count):
        """(view index, catalog position) pairs for one page."""
        stop = min(self.size, start + count)
        return [(i, i) for i in range(max(0, start), stop)]


class FilteredView:
    """Matching catalog positions, ascending. Replaced wholesale, never mutated."""

    filtered = True

    def __init__(self, positions):
        self.positions = tuple(positions)

    def __len__(self):
        return len(self.positions)

    def resolve(self, index):
        if 0 <= index < len(self.positions):
            return self.positions[index]
        return index

    def window(self, start, count):
        start = max(0, start)
        return [(start + i, pos) for i, pos in enumerate(self.positions[start:start + count])]


EMPTY_VIEW = FilteredView(())


def search(query, catalog):
    """
    Literal, case-sensitive substring filter over the catalog.

    An empty query gives an UnfilteredView of the whole catalog.
    """
    if not query:
        return UnfilteredView(len(catalog))
    return FilteredView(pos for pos, name in enumerate(catalog) if query in name)


def page_size(height):
    return max(1, height - CHROME_ROWS)

# -------------------------
# View model / pagination
# -------------------------
class ViewModel:
    """
    The active view plus the cursor (`current`), an index into the view.

    Movement methods return True when the cursor actually changed.
    """

    def __init__(self):
        self.view = EMPTY_VIEW
        self.current = 0
        self.per_page = 1

    def __len__(self):
        return len(self.view)

    def is_empty(self):
        return len(self.view) == 0

    def replace(self, view):
        self.view = view
        self.current = 0

    def resolved(self):
        return self.view.resolve(self.current)

    @property
    def page(self):
        return self.current // self.per_page

    @property
    def row(self):
        return self.current - self.page * self.per_page

    @property
    def page_start(self):
        return self.page * self.per_page

    def last_page(self):
        return max(0, len(self.view) - 1) // self.per_page

    def visible(self):
        return self.view.window(self.page_start, self.per_page)

    def clamp(self):
        length = len(self.view)
        if length == 0:
            self.current = 0
        elif not 0 <= self.current < length:
            self.current = min(max(0, self.current), length - 1)

    def _set(self, index):
        if index == self.current:
            return False
        self.current = index
        return True

    def up(self):
        length = len(self.view)
        if length == 0:
            return False
        return self._set(self.current - 1 if self.current > 0 else length - 1)

    def down(self):
        length = len(self.view)
        if length == 0:
            return False
        return self._set(self.current + 1 if self.current < length - 1 else 0)

    def next_page(self):
        length = len(self.view)
        if length <= self.per_page:
            return False
        target = self.current + self.per_page
        if target >= length:
            # wrap from the last page, otherwise land on its final row
            target = 0 if self.page == self.last_page() else length - 1
        return self._set(target)

    def prev_page(self):
        length = len(self.view)
        if length <= self.per_page:
            return False
        if self.current >= self.per_page:
            return self._set(self.current - self.per_page)
        return self._set(self.last_page() * self.per_page)

    def home(self):
        if self.is_empty():
            return False
        return self._set(0)

    def end(self):
        if self.is_empty():
            return False
        return self._set(len(self.view) - 1)

# -------------------------
# Query text
# -------------------------

WORD_BOUNDARIES = " -_"


def last_word_end(text, pos):
    """Start of the word before *pos* (just past the previous boundary)."""
    limit = max(pos - 1, 0)
    return max(text.rfind(c, 0, limit) for c in WORD_BOUNDARIES) + 1


def next_word_start(text, pos):
    """Just past the next boundary at or after *pos*, or the end of text."""
    hits = [i for i in (text.find(c, pos) for c in WORD_BOUNDARIES) if i != -1]
    return min(hits) + 1 if hits else len(text)


class QueryBuffer:
    """Editable query text with an insertion point in 0..len(text)."""

    def __init__(self, text=""):
        self.text = text
        self.cursor = len(text)

    def insert(self, ch):
        self.text = self.text[:self.cursor] + ch + self.text[self.cursor:]
        self.cursor += len(ch)

    def backspace(self):
        if self.cursor == 0:
            return False
        self.text = self.text[:self.cursor - 1] + self.text[self.cursor:]
        self.cursor -= 1
        return True

    def left(self, word=False):
        if word:
            self.cursor = last_word_end(self.text, self.cursor)
        elif self.cursor > 0:
            self.cursor -= 1
        else:
            self.cursor = len(self.text)

    def right(self, word=False):
        if word:
            self.cursor = next_word_start(self.text, self.cursor)
        elif self.cursor < len(self.text):
            self.cursor += 1
        else:
            self.cursor = 0

    def home(self):
        self.cursor = 0

    def end(self):
        self.cursor = len(self.text)

    def delete_word(self):
        boundary = last_word_end(self.text, self.cursor)
        self.text = self.text[:boundary] + self.text[self.cursor:]
        self.cursor = boundary

# -------------------------
# Task supersession slot
# -------------------------
class JobKind:
    CATALOG_SEARCH = "catalog-search"
    INFO_FETCH = "info-fetch"


class Job:
    """One background job: its kind, generation and cancellation token."""

    def __init__(self, kind, generation, subject=None):
        self.kind = kind
        self.generation = generation
        self.subject = subject
        self.token = CancelToken()
        self.thread = None
        self._done = threading.Event()

    @property
    def finished(self):
        return self._done.is_set()

    def cancel(self):
        self.token.cancel()

    def join(self, timeout=None):
        if self.thread is not None:
            self.thread.join(timeout)

    def __repr__(self):
        return "<Job {} #{}>".format(self.kind, self.generation)


class TaskSlot:
    """
    Holds at most one live background job.

    submit() cancels whatever job holds the slot, of any kind, and starts the
    new one. Results are only applied by callers that still see their job as
    current (is_current), which is what keeps superseded jobs invisible.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._job = None
        self._generation = 0

    @property
    def current(self):
        return self._job

    def submit(self, kind, target, *args, subject=None):
        with self._lock:
            previous = self._job
            self._generation += 1
            job = Job(kind, self._generation, subject)
            self._job = job
        if previous is not None:
            previous.cancel()

        job.thread = threading.Thread(target=self._run, args=(job, target, args), daemon=True)
        job.thread.start()
        return job

    def is_current(self, job):
        with self._lock:
            return job is self._job and not job.token.cancelled

    def cancel(self):
        with self._lock:
            job = self._job
            self._job = None
        if job is not None:
            job.cancel()

    @staticmethod
    def _run(job, target, args):
        try:
            target(job, *args)
        except JobCancelled:
            logger.debug("%r cancelled", job)
        except Exception:
            logger.exception("%r failed", job)
        finally:
            job._done.set()

# -------------------------
# Application state
# -------------------------
class Mode:
    TEXT_ENTRY = "text-entry"
    NAVIGATE = "navigate"


class StatusMessage:
    PROMPT_TO_SEARCH = "prompt-to-search"
    LISTING_CATALOG = "listing-catalog"
    SEARCHING = "searching"
    NO_RESULTS = "no-results"

    @staticmethod
    def text(message):
        return {
            StatusMessage.PROMPT_TO_SEARCH: _("Type a query and press ENTER to search"),
            StatusMessage.LISTING_CATALOG: _("Listing packages..."),
            StatusMessage.SEARCHING: _("Searching..."),
            StatusMessage.NO_RESULTS: _("No packages match the query"),
        }[message]


class InfoCache:
    """Info lines for a single catalog position; empty until fetched."""

    def __init__(self):
        self.position = None
        self.lines = []

    def clear(self):
        self.position = None
        self.lines = []

    def store(self, position, lines):
        self.position = position
        self.lines = list(lines)

    def has(self, position):
        return self.position is not None and self.position == position


class AppState:
    """
    Everything the UI loop reads when drawing.

    Catalog and installed set are one-time cells filled by background jobs;
    every other field is only changed on the UI thread.
    """

    def __init__(self, query=""):
        self.catalog = OnceCell()
        self.installed = OnceCell()
        self.view = ViewModel()
        self.query = QueryBuffer(query)
        self.selected = set()
        self.mode = Mode.TEXT_ENTRY
        self.status = StatusMessage.PROMPT_TO_SEARCH
        self.info = InfoCache()
        self.info_scroll = 0
        self.redraw = True

    def catalog_items(self):
        return self.catalog.get(())

    def installed_positions(self):
        return self.installed.get(frozenset())

    def current_info(self):
        """Info lines for the item under the cursor, or None while not fetched."""
        if self.view.is_empty():
            return None
        position = self.view.resolved()
        return self.info.lines if self.info.has(position) else None

# -------------------------
# Keys and actions
# -------------------------
class Key:
    CHAR = "char"
    ENTER = "enter"
    ESC = "esc"
    BACKSPACE = "backspace"
    LEFT = "left"
    RIGHT = "right"
    UP = "up"
    DOWN = "down"
    HOME = "home"
    END = "end"
    PAGE_UP = "page-up"
    PAGE_DOWN = "page-down"
    RESIZE = "resize"


KeyEvent = collections.namedtuple("KeyEvent", ["code", "char", "ctrl"])


def key(code, ctrl=False):
    return KeyEvent(code, "", ctrl)


def char_key(ch, ctrl=False):
    return KeyEvent(Key.CHAR, ch, ctrl)


class ActionKind:
    QUIT = "quit"
    INSTALL = "install"
    UNINSTALL = "uninstall"


# command is the package-manager argv to exec, None for QUIT
Action = collections.namedtuple("Action", ["kind", "command"])

# -------------------------
# Controller: jobs and the two-mode input state machine
# -------------------------
class SearchController:
    """
    Routes keys to query editing, navigation, selection or actions, and runs
    the catalog-search and info-fetch jobs through a single TaskSlot.

    :param schedule_callback: Function(func, *args) that runs func on the UI
                              thread (Scheduler.schedule in the TUI)
    """

    def __init__(self, state, settings, command_runner, schedule_callback, task_slot=None):
        self.state = state
        self.settings = settings
        self.command_runner = command_runner
        self.schedule_callback = schedule_callback
        self.slot = task_slot or TaskSlot()

    # --- Jobs ---

    def start(self):
        st = self.state
        return self.submit_search(StatusMessage.SEARCHING if st.query.text else StatusMessage.LISTING_CATALOG)

    def shutdown(self):
        self.slot.cancel()

    def resize(self, height):
        """Fit the page size to *height* rows and keep the cursor inside the view."""
        view = self.state.view
        view.per_page = page_size(height)
        view.clamp()

    def submit_search(self, status=StatusMessage.SEARCHING):
        st = self.state
        st.info.clear()
        st.info_scroll = 0
        st.view.replace(EMPTY_VIEW)
        st.status = status
        st.redraw = True
        return self.slot.submit(JobKind.CATALOG_SEARCH, self._search_job, st.query.text)

    def _search_job(self, job, query):
        catalog = self._ensure_catalog(job.token)
        self._ensure_installed(catalog)
        job.token.check()
        self.schedule_callback(self.on_search_finished, job, search(query, catalog))

    def _ensure_catalog(self, token):
        cell = self.state.catalog
        if cell.is_set():
            return cell.get()
        catalog = CatalogLoader.load(self.command_runner.run_sync, self.settings, token)
        if not catalog:
            # left unset so the next search downloads again
            return catalog
        return cell.set(catalog)

    def _ensure_installed(self, catalog):
        if self.state.installed.is_set() or not self.state.catalog.is_set():
            return
        self.state.installed.set(InstalledScanner.resolve(catalog, self.settings.installed_paths))

    def on_search_finished(self, job, view):
        if not self.slot.is_current(job):
            logger.debug("Dropping result of superseded %r", job)
            return
        st = self.state
        st.view.replace(view)
        if st.view.is_empty():
            st.status = StatusMessage.NO_RESULTS
        else:
            st.mode = Mode.NAVIGATE
        st.redraw = True

    def request_info(self):
        """Start an info fetch for the item under the cursor when none is cached or running."""
        st = self.state
        if st.view.is_empty():
            return None
        position = st.view.resolved()
        if st.info.has(position):
            return None
        job = self.slot.current
        if (job is not None and job.kind == JobKind.INFO_FETCH
                and job.subject == position and not job.finished):
            return None
        return self.slot.submit(JobKind.INFO_FETCH, self._info_job, position, subject=position)

    def _info_job(self, job, position):
        lines = PackageDetails.fetch_info(
            self.command_runner.run_sync,
            self.settings,
            self.state.catalog_items(),
            self.state.installed_positions(),
            position,
            job.token,
        )
        self.schedule_callback(self.on_info_ready, job, position, lines)

    def on_info_ready(self, job, position, lines):
        st = self.state
        if not self.slot.is_current(job):
            logger.debug("Dropping info of superseded %r", job)
            return
        if st.view.is_empty() or st.view.resolved() != position:
            return
        st.info.store(position, lines)
        st.redraw = True

    # --- Input ---

    def handle_key(self, event):
        """
        Apply one key event.

        :return: An Action when the UI has to stop, otherwise None
        """
        if event.code == Key.RESIZE:
            self.state.redraw = True
            return None
        if self.state.mode == Mode.TEXT_ENTRY:
            action = self._handle_text_entry(event)
        else:
            action = self._handle_navigate(event)
        self.state.redraw = True
        return action

    def _handle_text_entry(self, event):
        st = self.state
        query = st.query
        code = event.code

        if code == Key.CHAR:
            if event.ctrl and event.char == "c":
                return Action(ActionKind.QUIT, None)
            if event.ctrl and event.char == "w":
                query.delete_word()
            elif not event.ctrl:
                query.insert(event.char)
        elif code == Key.ESC:
            if not st.view.is_empty():
                self._cursor_moved(st.view.home())
                st.mode = Mode.NAVIGATE
        elif code == Key.LEFT:
            query.left(word=event.ctrl)
        elif code == Key.RIGHT:
            query.right(word=event.ctrl)
        elif code in (Key.UP, Key.HOME):
            query.home()
        elif code in (Key.DOWN, Key.END):
            query.end()
        elif code == Key.BACKSPACE:
            query.backspace()
        elif code == Key.ENTER:
            self.submit_search()
        return None

    def _handle_navigate(self, event):
        st = self.state
        view = st.view
        code = event.code
        ch = event.char if code == Key.CHAR else ""

        if ch == "c" and event.ctrl:
            return Action(ActionKind.QUIT, None)

        if code == Key.UP or ch == "k":
            if event.ctrl:
                st.info_scroll = max(0, st.info_scroll - 1)
            else:
                self._cursor_moved(view.up())
        elif code == Key.DOWN or ch == "j":
            if event.ctrl:
                if st.current_info():
                    st.info_scroll += 1
            else:
                self._cursor_moved(view.down())
        elif event.ctrl:
            return None
        elif code == Key.ESC or ch in ("i", "/"):
            st.query.end()
            st.mode = Mode.TEXT_ENTRY
        elif code in (Key.LEFT, Key.PAGE_UP) or ch == "h":
            self._cursor_moved(view.prev_page())
        elif code in (Key.RIGHT, Key.PAGE_DOWN) or ch == "l":
            self._cursor_moved(view.next_page())
        elif code == Key.HOME or ch == "g":
            self._cursor_moved(view.home())
        elif code == Key.END or ch == "G":
            self._cursor_moved(view.end())
        elif ch == " ":
            self.toggle_selection()
        elif ch == "q":
            return Action(ActionKind.QUIT, None)
        elif ch == "R":
            return self.uninstall_action()
        elif code == Key.ENTER:
            return self.install_action()
        return None

    def _cursor_moved(self, moved):
        if moved:
            self.state.info.clear()
            self.state.info_scroll = 0

    def toggle_selection(self):
        st = self.state
        if st.view.is_empty():
            return
        position = st.view.resolved()
        if position in st.selected:
            st.selected.discard(position)
        else:
            st.selected.add(position)

    def _action_names(self, installed_only):
        st = self.state
        catalog = st.catalog_items()
        if st.selected:
            positions = sorted(st.selected)
        elif not st.view.is_empty():
            positions = [st.view.resolved()]
        else:
            positions = []
        if installed_only:
            installed = st.installed_positions()
            positions = [p for p in positions if p in installed]
        return [catalog[p] for p in positions if 0 <= p < len(catalog)]

    def install_action(self):
        names = self._action_names(installed_only=False)
        if not names:
            return None
        return Action(ActionKind.INSTALL, PackageOperations.install_command(self.settings.brew, names))

    def uninstall_action(self):
        names = self._action_names(installed_only=True)
        if not names:
            return None
        return Action(ActionKind.UNINSTALL, PackageOperations.uninstall_command(self.settings.brew, names))
