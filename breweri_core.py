#!/usr/bin/env python3

import os
import sys
import json
import logging
import threading
import subprocess
import collections
import gettext
import locale

import yaml

logger = logging.getLogger(__name__)

# -------------------------
# Set up locale and translation
# -------------------------

try:
    locale.setlocale(locale.LC_ALL, '')
    localedir = '/usr/share/locale'
    gettext.bindtextdomain('breweri', localedir)
    gettext.textdomain('breweri')
    _ = gettext.gettext
except Exception:
    logger.warning("Could not set up locale. Using fallback translations.")
    _ = lambda s: s

# -------------------------
# Application Metadata/About Info
# -------------------------
class AboutInfo:
    """
    Centralized metadata for the Homebrew search frontend.
    """
    @staticmethod
    def get_program_name():
        return "breweri"

    @staticmethod
    def get_version():
        return "0.3.0"

    @staticmethod
    def get_description():
        return _("Interactive search and (un)install frontend for Homebrew")

# -------------------------
# Spinner Class
# -------------------------
class Spinner:
    """
    Spinner animation frames shown while package info is being fetched.
    """

    # Unicode Braille pattern spinner frames
    FRAMES = ["⠋", "⠙", "⠹", "⠸", "⠼", "⠴", "⠦", "⠧", "⠇", "⠏"]

    def __init__(self):
        self._frame_index = 0

    def get_current_frame(self):
        """
        Get the current spinner frame character.

        :return: The current spinner character (string)
        """
        return self.FRAMES[self._frame_index]

    def advance(self):
        """
        Advance the spinner to the next frame in the sequence AND return it.
        """
        self._frame_index = (self._frame_index + 1) % len(self.FRAMES)
        return self.get_current_frame()

# -------------------------
# Settings
# -------------------------

DEFAULT_FORMULA_URL = "https://formulae.brew.sh/api/formula.json"
DEFAULT_CASK_URL = "https://formulae.brew.sh/api/cask.json"

_NUMBER = (int, float)


class Settings:
    """
    Runtime settings, read once from an optional YAML file.

    Every key is optional. Bad entries are logged and keep their default.
    """

    TYPES = {
        "brew": str,
        "prefix": str,
        "formula_url": str,
        "cask_url": str,
        "info_debounce": _NUMBER,
        "poll_interval": _NUMBER,
        "log_file": str,
        "log_level": str,
    }

    def __init__(self, environ=None):
        environ = os.environ if environ is None else environ
        self.brew = "brew"
        self.prefix = environ.get("HOMEBREW_PREFIX") or "/usr/local"
        self.formula_url = DEFAULT_FORMULA_URL
        self.cask_url = DEFAULT_CASK_URL
        self.info_debounce = 0.2
        self.poll_interval = 0.05
        self.log_file = None
        self.log_level = "WARNING"

    @property
    def installed_paths(self):
        """Directories whose subdirectory names are installed formulae and casks."""
        return [os.path.join(self.prefix, "Cellar"), os.path.join(self.prefix, "Caskroom")]

    @staticmethod
    def default_path(environ=None):
        environ = os.environ if environ is None else environ
        explicit = environ.get("BREWERI_CONFIG")
        if explicit:
            return os.path.expanduser(explicit)
        config_home = environ.get("XDG_CONFIG_HOME") or os.path.join(os.path.expanduser("~"), ".config")
        return os.path.join(config_home, "breweri", "config.yaml")

    @classmethod
    def load(cls, path=None, environ=None):
        """
        Build settings from defaults plus the YAML file at *path*.

        :param path: Explicit file path; defaults to default_path()
        :param environ: Mapping used instead of os.environ
        :return: A Settings instance (never raises for file problems)
        """
        settings = cls(environ)
        path = path or cls.default_path(environ)
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except FileNotFoundError:
            return settings
        except (OSError, yaml.YAMLError) as e:
            logger.warning("Could not read settings from %s: %s", path, e)
            return settings

        if data is None:
            return settings
        if not isinstance(data, dict):
            logger.warning("Ignoring settings file %s: top level is not a mapping", path)
            return settings

        for key, value in data.items():
            settings.apply(key, value)
        return settings

    def apply(self, key, value):
        """Set one entry, returning False when it was rejected."""
        expected = self.TYPES.get(key)
        if expected is None:
            logger.warning("Unknown setting '%s' ignored", key)
            return False
        if isinstance(value, bool) or not isinstance(value, expected):
            logger.warning("Setting '%s' has the wrong type (%s), using default", key, type(value).__name__)
            return False
        if expected is _NUMBER and value < 0:
            logger.warning("Setting '%s' must not be negative, using default", key)
            return False
        if key == "log_level" and not isinstance(logging.getLevelName(value.upper()), int):
            logger.warning("Unknown log level '%s', using default", value)
            return False

        if key in ("prefix", "log_file"):
            value = os.path.expanduser(value)
        elif key == "log_level":
            value = value.upper()
        setattr(self, key, value)
        return True


def configure_logging(settings):
    """
    Route diagnostics to the configured log file, or nowhere.

    curses owns the terminal while the UI runs, so nothing may go to stderr.
    """
    root = logging.getLogger()
    handler = None
    if settings.log_file:
        try:
            handler = logging.FileHandler(settings.log_file, encoding="utf-8")
        except OSError as e:
            print(_("breweri: cannot open log file {}: {}").format(settings.log_file, e), file=sys.stderr)
        else:
            handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
            root.setLevel(settings.log_level)
    if handler is None:
        handler = logging.NullHandler()
    root.addHandler(handler)
    return handler

# -------------------------
# Cancellation
# -------------------------
class JobCancelled(Exception):
    """Raised at a cancellation point of a superseded background job."""


class CancelToken:
    """
    Cooperative cancellation signal for one background job.

    Cancelling wakes a pending sleep() and kills the subprocess currently
    bound to the token.
    """

    def __init__(self):
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._process = None

    @property
    def cancelled(self):
        return self._event.is_set()

    def cancel(self):
        with self._lock:
            self._event.set()
            process = self._process
        if process is not None:
            self._kill(process)

    def check(self):
        if self._event.is_set():
            raise JobCancelled()

    def sleep(self, seconds):
        if self._event.wait(seconds):
            raise JobCancelled()

    def bind(self, process):
        with self._lock:
            self._process = process
            cancelled = self._event.is_set()
        if cancelled:
            self._kill(process)

    def unbind(self):
        with self._lock:
            self._process = None

    @staticmethod
    def _kill(process):
        if process.poll() is None:
            process.kill()

# -------------------------
# Core Command Runner
# -------------------------

CommandResult = collections.namedtuple("CommandResult", ["returncode", "stdout", "stderr"])


class CommandRunner:
    """
    Runs external commands for the background jobs and hands the process
    over to the package manager for the final install/remove.
    """

    def run_sync(self, cmd_list, token=None):
        """
        Runs a command to completion and returns a CommandResult.

        A bound token kills the process when cancelled; JobCancelled is then
        raised instead of returning the partial output.
        """
        final = list(cmd_list)
        if token is not None:
            token.check()
        try:
            process = subprocess.Popen(
                final,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
            )
        except OSError as e:
            logger.warning("Could not start %s: %s", final[0], e)
            return CommandResult(1, "", str(e))

        if token is not None:
            token.bind(process)
        try:
            stdout, stderr = process.communicate()
        finally:
            if token is not None:
                token.unbind()
        if token is not None:
            token.check()
        return CommandResult(process.returncode, stdout or "", stderr or "")

    def exec_handoff(self, cmd_list):
        """Replace the current process with *cmd_list*. Does not return."""
        final = list(cmd_list)
        logger.info("Handing off to %s", " ".join(final))
        os.execvp(final[0], final)

# -------------------------
# One-time initialisation cell
# -------------------------
class OnceCell:
    """Holds a value that is written at most once and read many times."""

    def __init__(self):
        self._lock = threading.Lock()
        self._value = None
        self._is_set = False

    def is_set(self):
        return self._is_set

    def get(self, default=None):
        return self._value if self._is_set else default

    def set(self, value):
        """Store *value* unless a value is already present; return the stored value."""
        with self._lock:
            if not self._is_set:
                self._value = value
                self._is_set = True
            return self._value

# -------------------------
# Catalog loading
# -------------------------
class CatalogLoader:
    """
    Downloads the formula and cask lists and extracts the item names,
    formulae first, in the order the API returns them.
    """

    @staticmethod
    def sources(settings):
        return [(settings.formula_url, "name"), (settings.cask_url, "full_token")]

    @staticmethod
    def parse_names(output, field):
        data = json.loads(output)
        if not isinstance(data, list):
            raise ValueError("expected a JSON array, got {}".format(type(data).__name__))
        return [
            entry[field]
            for entry in data
            if isinstance(entry, dict) and isinstance(entry.get(field), str)
        ]

    @staticmethod
    def load(command_runner_sync, settings, token=None):
        """
        Fetch the whole catalog.

        :param command_runner_sync: Injected CommandRunner.run_sync
        :return: Tuple of item names; empty on any download or parse failure
        """
        names = []
        for url, field in CatalogLoader.sources(settings):
            res = command_runner_sync(["curl", "-s", url], token=token)
            if res.returncode != 0:
                logger.warning("Catalog download from %s failed (%s): %s", url, res.returncode, res.stderr.strip())
                return ()
            try:
                names.extend(CatalogLoader.parse_names(res.stdout, field))
            except ValueError as e:
                logger.warning("Catalog from %s is not usable: %s", url, e)
                return ()
        logger.info("Loaded %d catalog entries", len(names))
        return tuple(names)

# -------------------------
# Installed packages
# -------------------------
class InstalledScanner:
    """Finds catalog positions whose name has an installed directory."""

    @staticmethod
    def list_directories(paths):
        names = set()
        for path in paths:
            try:
                with os.scandir(path) as entries:
                    for entry in entries:
                        if entry.is_dir():
                            names.add(entry.name)
            except OSError as e:
                logger.warning("Cannot scan %s: %s", path, e)
        return names

    @staticmethod
    def resolve(catalog, paths):
        names = InstalledScanner.list_directories(paths)
        return frozenset(pos for pos, name in enumerate(catalog) if name in names)

# -------------------------
# PackageDetails - "brew info" text for the info panel
# -------------------------

# key is "" for indented continuation lines
InfoLine = collections.namedtuple("InfoLine", ["key", "value"])


class PackageDetails:

    @staticmethod
    def format_info(text):
        """
        Turn `brew info` output into display lines.

        Indented lines pass through, "key: value" lines are split after the
        first colon, anything else is dropped.
        """
        lines = []
        for line in text.splitlines():
            if line.startswith(" "):
                lines.append(InfoLine("", line))
                continue
            idx = line.find(":")
            if idx != -1:
                lines.append(InfoLine(line[:idx + 1], line[idx + 1:]))
        return lines

    @staticmethod
    def fetch_info(command_runner_sync, settings, catalog, installed, position, token):
        """
        Fetch the info lines for one catalog position.

        Items that are not installed wait info_debounce seconds first, so fast
        scrolling does not start a `brew info` per row.
        """
        if not 0 <= position < len(catalog):
            return []
        if position not in installed:
            token.sleep(settings.info_debounce)

        name = catalog[position]
        res = command_runner_sync([settings.brew, "info", name], token=token)
        if res.returncode != 0:
            logger.warning("brew info %s failed (%s): %s", name, res.returncode, res.stderr.strip())
            return []
        return PackageDetails.format_info(res.stdout)

# -------------------------
# Package operations
# -------------------------
class PackageOperations:

    @staticmethod
    def install_command(brew, names):
        return [brew, "reinstall"] + list(names)

    @staticmethod
    def uninstall_command(brew, names):
        return [brew, "remove"] + list(names)
