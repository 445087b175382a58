#!/usr/bin/env python3
"""
breweri_tui.py — curses-based TUI using breweri_core.py and breweri_state.py

Type a query, browse the matching Homebrew formulae and casks, select some
and hand them to `brew reinstall` or `brew remove`.
"""

import os
import sys
import curses
import curses.ascii
import queue
import logging
import argparse
import shutil
import traceback

from breweri_core import (
    AboutInfo,
    CommandRunner,
    Settings,
    Spinner,
    configure_logging,
    _,
)
from breweri_state import (
    ActionKind,
    AppState,
    Key,
    Mode,
    SearchController,
    StatusMessage,
    char_key,
    key,
)

logger = logging.getLogger(__name__)

HELP_TEXT = _("""Usage: breweri [OPTION]... [QUERY]...
Search for QUERY in Homebrew formulae and casks.
Example:
   breweri rustup

Options:
   -h, --help
       Print this help and exit
   -V, --version
       Print the version and exit
Keybinds:
   Both:
       <Escape>
           Switch modes
       <C-c>
           Exit breweri
   Insert:
       <Return>
           Search for query
       <C-w>
           Remove previous word
       <C-Left>, <C-Right>
           Jump one word
   Select:
       i, /
           Enter insert mode
       <Return>
           Install selected packages
       <C-j>, <C-Down>
           Move info one row down
       <C-k>, <C-Up>
           Move info one row up
       h, <Left>, <PgUp>
           Move one page back
       j, <Down>
           Move one row down
       k, <Up>
           Move one row up
       l, <Right>, <PgDn>
           Move one page forwards
       g, <Home>
           Go to start
       G, <End>
           Go to end
       <Space>
           Select/deselect package
       <S-R>
           Remove selected packages
       q
           Exit breweri""")

# --- Scheduler for Thread-Safe UI Updates ---
class Scheduler:
    """Marshals function calls from worker threads to the main thread."""
    def __init__(self):
        self.q = queue.Queue()
    def schedule(self, func, *args):
        self.q.put((func, args))
    def drain(self, max_items=200):
        processed = 0
        while processed < max_items:
            try:
                func, args = self.q.get_nowait()
            except queue.Empty:
                break
            try:
                func(*args)
            except Exception:
                logger.exception("Scheduled callback %r failed", func)
            processed += 1
        return processed

# --- Key decoding ---

SPECIAL_KEYS = {
    curses.KEY_LEFT: Key.LEFT,
    curses.KEY_RIGHT: Key.RIGHT,
    curses.KEY_UP: Key.UP,
    curses.KEY_DOWN: Key.DOWN,
    curses.KEY_HOME: Key.HOME,
    curses.KEY_END: Key.END,
    curses.KEY_PPAGE: Key.PAGE_UP,
    curses.KEY_NPAGE: Key.PAGE_DOWN,
    curses.KEY_RESIZE: Key.RESIZE,
}

# xterm-style names of the Ctrl-modified arrows
CTRL_KEYNAMES = {
    b"kLFT5": Key.LEFT,
    b"kRIT5": Key.RIGHT,
    b"kUP5": Key.UP,
    b"kDN5": Key.DOWN,
}


def decode_key(ch):
    """Translate a curses getch() code into a KeyEvent, or None."""
    if ch == -1:
        return None
    if ch in (curses.KEY_ENTER, 13):
        return key(Key.ENTER)
    if ch == 27:
        return key(Key.ESC)
    if ch in (curses.KEY_BACKSPACE, 127, 8):
        return key(Key.BACKSPACE)
    if ch in SPECIAL_KEYS:
        return key(SPECIAL_KEYS[ch])
    if 1 <= ch <= 26:
        return char_key(chr(ch + 96), ctrl=True)
    if curses.ascii.isprint(ch):
        return char_key(chr(ch))
    if ch > 255:
        try:
            name = curses.keyname(ch)
        except ValueError:
            return None
        if name in CTRL_KEYNAMES:
            return key(CTRL_KEYNAMES[name], ctrl=True)
    return None

# --- Colors ---
PAIR_INSTALLED = 1
PAIR_UNINSTALLED = 2
PAIR_INSTALLED_CURSOR = 3
PAIR_UNINSTALLED_CURSOR = 4
PAIR_MARK = 5
PAIR_INSTALL_HINT = 6
PAIR_REMOVE_HINT = 7


def put(win, y, x, text, attr=curses.A_NORMAL):
    try:
        win.addstr(y, x, text, attr)
    except curses.error:
        pass


class BreweriTUI:

    def __init__(self, stdscr, settings, query=""):
        self.stdscr = stdscr
        self.settings = settings
        self.scheduler = Scheduler()
        self.spinner = Spinner()
        self.state = AppState(query)
        self.command_runner = CommandRunner()
        self.controller = SearchController(
            self.state,
            settings,
            self.command_runner,
            self.scheduler.schedule,
        )

        curses.raw()
        # keep Return (CR) and Ctrl-J (LF) apart
        curses.nonl()
        self.stdscr.keypad(True)
        self.stdscr.timeout(max(1, int(settings.poll_interval * 1000)))
        self._init_colors()

    def _init_colors(self):
        if not curses.has_colors():
            return
        curses.start_color()
        background = -1
        try:
            curses.use_default_colors()
        except curses.error:
            background = curses.COLOR_BLACK
        curses.init_pair(PAIR_INSTALLED, curses.COLOR_GREEN, background)
        curses.init_pair(PAIR_UNINSTALLED, curses.COLOR_CYAN, background)
        curses.init_pair(PAIR_INSTALLED_CURSOR, curses.COLOR_YELLOW, curses.COLOR_RED)
        curses.init_pair(PAIR_UNINSTALLED_CURSOR, curses.COLOR_BLUE, curses.COLOR_RED)
        curses.init_pair(PAIR_MARK, curses.COLOR_YELLOW, background)
        curses.init_pair(PAIR_INSTALL_HINT, curses.COLOR_GREEN, background)
        curses.init_pair(PAIR_REMOVE_HINT, curses.COLOR_RED, background)

    def run(self):
        """Poll keys and redraw until an action ends the UI; return that Action."""
        self.controller.start()
        try:
            while True:
                self.scheduler.drain()

                h, w = self.stdscr.getmaxyx()
                self.controller.resize(h)
                self.controller.request_info()

                if self.state.current_info() is None and not self.state.view.is_empty():
                    self.spinner.advance()
                    self.state.redraw = True

                if self.state.redraw:
                    self.state.redraw = False
                    self.draw(h, w)

                event = decode_key(self.stdscr.getch())
                if event is None:
                    continue
                action = self.controller.handle_key(event)
                if action is not None:
                    return action
        finally:
            self.controller.shutdown()

    # --- Drawing ---

    def draw(self, h, w):
        self.stdscr.erase()

        if h < 10 or w < 10:
            put(self.stdscr, 0, 0, _("Terminal too small!")[:max(0, w - 1)])
            self.stdscr.refresh()
            return

        st = self.state
        insert_mode = st.mode == Mode.TEXT_ENTRY
        search_attr = curses.A_BOLD if insert_mode else curses.A_DIM
        list_attr = curses.A_DIM if insert_mode else curses.A_NORMAL

        query_x = self._draw_search_box(w, search_attr)
        self._draw_results(h, w, list_attr)
        if st.view.is_empty():
            self._draw_status_box(h, w)
        else:
            self._draw_info_panel(h, w, list_attr)

        if insert_mode:
            self._set_cursor_visible(1)
            self.stdscr.move(1, query_x)
        else:
            self._set_cursor_visible(0)
            self.stdscr.move(4 + st.view.row, 2)
        self.stdscr.refresh()

    @staticmethod
    def _set_cursor_visible(visibility):
        try:
            curses.curs_set(visibility)
        except curses.error:
            pass

    def _box(self, y, x, hh, ww, attr, title=None, title_attr=None):
        win = self.stdscr.derwin(hh, ww, y, x)
        win.erase()
        win.attrset(attr)
        win.border()
        win.attrset(curses.A_NORMAL)
        if title:
            put(win, 0, max(1, (ww - len(title)) // 2), title[:ww - 2], title_attr or attr)
        return win

    def _draw_search_box(self, w, attr):
        """Draw the query line; return the screen column of the query cursor."""
        query = self.state.query
        self._box(0, 0, 3, w, attr, " {} ".format(AboutInfo.get_program_name()), attr | curses.A_BOLD)

        label = " " + _("Search:") + " "
        put(self.stdscr, 1, 1, label, attr)
        text_x = 1 + len(label)
        room = max(1, w - text_x - 3)
        offset = max(0, len(query.text) - room)
        put(self.stdscr, 1, text_x, query.text[offset:offset + room], attr & ~curses.A_BOLD)
        return min(max(text_x, text_x + query.cursor - offset), w - 3)

    def _draw_results(self, h, w, attr):
        st = self.state
        self._box(3, 0, h - 3, w, attr)

        catalog = st.catalog_items()
        installed = st.installed_positions()
        number_width = len(str(len(st.view)))
        # the info panel covers the right half
        limit = w // 2 - 1
        x = 2 + number_width + 1

        for row, (index, position) in enumerate(st.view.visible()):
            if position >= len(catalog):
                continue
            y = 4 + row
            put(self.stdscr, y, 2, str(index + 1).ljust(number_width), curses.A_DIM)

            is_installed = position in installed
            if index == st.view.current:
                pair = PAIR_INSTALLED_CURSOR if is_installed else PAIR_UNINSTALLED_CURSOR
            else:
                pair = PAIR_INSTALLED if is_installed else PAIR_UNINSTALLED
            name = catalog[position][:max(0, limit - x - 1)]
            put(self.stdscr, y, x, name, curses.color_pair(pair) | curses.A_BOLD)
            if position in st.selected:
                put(self.stdscr, y, x + len(name), "!", curses.color_pair(PAIR_MARK) | curses.A_BOLD)

    def _draw_status_box(self, h, w):
        hh, ww = 4, max(4, w // 2)
        y, x = max(0, h // 2 - 2), w // 4 + 1
        win = self._box(y, x, hh, ww, curses.A_NORMAL, " " + _("No Results") + " ", curses.A_BOLD)
        message = StatusMessage.text(self.state.status)
        inner = ww - 2
        for i, start in enumerate(range(0, min(len(message), inner * 2), inner)):
            chunk = message[start:start + inner]
            put(win, 1 + i, 1 + max(0, (inner - len(chunk)) // 2), chunk)

    def _draw_info_panel(self, h, w, attr):
        st = self.state
        x0 = w // 2
        self._box(4, x0, h - 5, w // 2 - 1, attr)

        x = x0 + 2
        width = max(1, w // 2 - 5)
        put(self.stdscr, 5, x, _("Press ENTER to (re)install selected packages")[:width],
            curses.color_pair(PAIR_INSTALL_HINT) | curses.A_BOLD)
        put(self.stdscr, 6, x, _("Press Shift-R to uninstall selected packages")[:width],
            curses.color_pair(PAIR_REMOVE_HINT) | curses.A_BOLD)

        info = st.current_info()
        if info is None:
            put(self.stdscr, 8, x, (self.spinner.get_current_frame() + " " + _("Finding info..."))[:width], curses.A_DIM)
            return

        rows = wrap_info(info, width)[st.info_scroll:]
        for i, segments in enumerate(rows[:max(0, h - 10)]):
            col = x
            for text, bold in segments:
                put(self.stdscr, 8 + i, col, text, curses.A_BOLD if bold else curses.A_NORMAL)
                col += len(text)


def wrap_info(lines, width):
    """
    Wrap InfoLines to *width* columns.

    Each row is a list of (text, bold) segments; only the key is bold.
    """
    rows = []
    for line in lines:
        full = line.key + line.value
        if not full:
            rows.append([])
            continue
        for start in range(0, len(full), width):
            chunk = full[start:start + width]
            key_left = max(0, len(line.key) - start)
            segments = []
            if key_left:
                segments.append((chunk[:key_left], True))
            if chunk[key_left:]:
                segments.append((chunk[key_left:], False))
            rows.append(segments)
    return rows

# --- Command line ---

def build_arg_parser():
    parser = argparse.ArgumentParser(prog=AboutInfo.get_program_name(), add_help=False,
                                     description=AboutInfo.get_description())
    parser.add_argument("-h", "--help", action="store_true")
    parser.add_argument("-V", "--version", action="version",
                        version="%(prog)s " + AboutInfo.get_version())
    parser.add_argument("query", nargs="*")
    return parser


def parse_query(argv=None):
    """Return the initial query; prints the help and exits on -h/--help."""
    args = build_arg_parser().parse_args(argv)
    if args.help:
        print(HELP_TEXT)
        sys.exit(0)
    return " ".join(args.query)


def main(stdscr, settings, query=""):
    app = BreweriTUI(stdscr, settings, query)
    return app.run()


def run(argv=None):
    query = parse_query(argv)
    settings = Settings.load()
    configure_logging(settings)

    if shutil.which(settings.brew) is None:
        print(_("breweri: {} not found").format(settings.brew), file=sys.stderr)
        return 1

    os.environ.setdefault("ESCDELAY", "25")
    try:
        action = curses.wrapper(main, settings, query)
    except Exception:
        traceback.print_exc()
        return 1

    if action.kind == ActionKind.QUIT:
        return 0
    try:
        CommandRunner().exec_handoff(action.command)
    except OSError as e:
        print(_("breweri: could not run {}: {}").format(action.command[0], e), file=sys.stderr)
    return 1


if __name__ == "__main__":
    sys.exit(run())
