# -*- coding: utf-8 -*-
"""
Linecraft – Progress bars, tables and boxes for command-line programs.
Copyright (c) 2025 Igor Iatsenko
Licensed under the MIT License.
"""

import os
import re
import sys
import math
import time
import atexit
import signal
import shutil
import textwrap
import threading
import unicodedata
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import (
        Any,
        Callable,
        Dict,
        Iterable,
        Iterator,
        List,
        Mapping,
        Optional,
        Sequence,
        TextIO,
        Tuple,
        Union,
)
import logging

__all__ = [
    'ANSI_PATTERN',
    'ASCII_GLYPHS',
    'AnsiStyle',
    'Clock',
    'Console',
    'ExitGuard',
    'FunctionStyle',
    'NamedStyle',
    'ProgressConfig',
    'ProgressSession',
    'ProgressStyles',
    'RepeatingTimer',
    'ScheduledTask',
    'Style',
    'SystemClock',
    'Terminal',
    'TerminalCapability',
    'VirtualClock',
    'apply_styles',
    'auto_fit_table_rows',
    'box',
    'center',
    'commify',
    'console',
    'display_width',
    'get_nice_remaining_time',
    'get_text_from_bytes',
    'get_text_from_seconds',
    'pad',
    'pct',
    'pluralize',
    'repeat',
    'resolve_style',
    'rgb',
    'space',
    'strip_styles',
    'table',
    'track',
    'tree',
    'widest_line',
    'wrap',
]

logger = logging.getLogger('linecraft')


_MIN_COLUMN_WIDTH = 2
_ELLIPSIS = '…'

# ============================================================================
# Terminal utilities
# ============================================================================

class TerminalCapability(Enum):
    """Terminal capability levels"""
    MINIMAL = 1  # No ANSI support
    BASIC = 2    # Basic ANSI colors
    ADVANCED = 3 # Full Unicode and colors


def _get_terminal_size(stream: Optional[TextIO] = None,
                       default: Optional[os.terminal_size] = None) -> os.terminal_size:
    """Return the size of the terminal, with a safe fallback."""
    if default is None:
        default = os.terminal_size((80, 24))
    try:
        fd = stream.fileno() if stream is not None else sys.__stdout__.fileno()
        return os.get_terminal_size(fd)
    except (OSError, AttributeError, ValueError):
        # Some environments (cron, IDEs, CI, redirected stdout) have no TTY
        pass
    try:
        return shutil.get_terminal_size(fallback=default)
    except Exception:
        pass
    return default


class Terminal:
    """Adapter over the output streams of the hosting process"""

    HIDE_CURSOR = '\033[?25l'
    SHOW_CURSOR = '\033[?25h'

    def __init__(self, stdout: Optional[TextIO] = None, stderr: Optional[TextIO] = None):
        """
        Create a terminal adapter.

        Args:
            stdout: Stream for regular output (defaults to the current sys.stdout)
            stderr: Stream for diagnostics (defaults to the current sys.stderr)
        """
        self._stdout = stdout
        self._stderr = stderr

    @property
    def stdout(self) -> TextIO:
        return self._stdout if self._stdout is not None else sys.stdout

    @property
    def stderr(self) -> TextIO:
        return self._stderr if self._stderr is not None else sys.stderr

    def is_interactive(self) -> bool:
        """Whether stdout is connected to a TTY"""
        isatty = getattr(self.stdout, 'isatty', None)
        if isatty is None:
            return False
        try:
            return bool(isatty())
        except ValueError:
            # Closed stream
            return False

    def columns(self) -> int:
        """Current terminal width in columns (0 when not interactive)"""
        if not self.is_interactive():
            return 0
        return _get_terminal_size(self.stdout).columns

    def write_out(self, text: str):
        self.stdout.write(text)
        self.stdout.flush()

    def write_err(self, text: str):
        self.stderr.write(text)
        self.stderr.flush()

    def hide_cursor(self):
        self.write_out(self.HIDE_CURSOR)

    def show_cursor(self):
        self.write_out(self.SHOW_CURSOR)

    def capability(self) -> TerminalCapability:
        """Detect terminal capabilities"""
        term = os.environ.get('TERM', '')
        colorterm = os.environ.get('COLORTERM', '')

        # Advanced terminals (kitty, alacritty, etc.)
        if any(x in term.lower() for x in ['kitty', 'alacritty', 'iterm', 'wezterm']):
            return TerminalCapability.ADVANCED
        if 'truecolor' in colorterm or '24bit' in colorterm:
            return TerminalCapability.ADVANCED

        # Basic ANSI support, also assumed on a TTY that sets no TERM
        if term != 'dumb' and self.is_interactive():
            return TerminalCapability.BASIC

        return TerminalCapability.MINIMAL


# ============================================================================
# Text measurement
# ============================================================================

ANSI_PATTERN = re.compile(
    r'[\u001B\u009B][\[\]()#;?]*'
    r'(?:(?:(?:[a-zA-Z\d]*(?:;[-a-zA-Z\d/#&.:=?%@~_]*)*)?\u0007)'
    r'|(?:(?:\d{1,4}(?:;\d{0,4})*)?[\dA-PR-TZcf-ntqry=><~]))'
)

_SGR_PREFIX = re.compile(r'^\x1b\[[^m]*?m')
_SGR_SUFFIX = re.compile(r'\x1b\[[^m]*?m$')


def strip_styles(text: str) -> str:
    """Remove ANSI escape sequences from text"""
    return ANSI_PATTERN.sub('', str(text))


def _char_width(char: str) -> int:
    if unicodedata.combining(char) or unicodedata.category(char) in ('Mn', 'Me', 'Cf'):
        return 0
    if unicodedata.east_asian_width(char) in ('W', 'F'):
        return 2
    return 1


def display_width(text: str) -> int:
    """Number of terminal columns the text occupies once printed"""
    return sum(_char_width(char) for char in strip_styles(text))


def _cut_to_width(text: str, width: int) -> str:
    """Keep the leading characters that fit in width, passing escapes through"""
    output = []
    used = 0
    pos = 0
    while pos < len(text):
        match = ANSI_PATTERN.match(text, pos)
        if match:
            output.append(match.group(0))
            pos = match.end()
            continue
        char_width = _char_width(text[pos])
        if used + char_width > width:
            break
        output.append(text[pos])
        used += char_width
        pos += 1
    return ''.join(output)


def repeat(text: str, amount: int) -> str:
    """Repeat string by specified number of times"""
    if not amount or amount < 0:
        return ''
    return str(text) * int(amount)


def space(amount: int) -> str:
    return repeat(' ', amount)


def pad(text: str, width: int) -> str:
    """Pad a string with spaces on the right to take up width columns"""
    return text + space(width - display_width(text))


def widest_line(text: str) -> int:
    return max((display_width(line) for line in str(text).split('\n')), default=0)


def center(text: str, width: int = 0) -> str:
    """Center text horizontally, line by line"""
    text = str(text).strip()
    if not width:
        width = widest_line(text)

    if '\n' in text:
        return '\n'.join(center(line, width) for line in text.split('\n'))

    margin = (width - display_width(text)) // 2
    output = space(margin) + text
    return output + space(width - display_width(output))


def wrap(text: str, width: int) -> str:
    """Word-wrap text to width without cutting words"""
    lines = []
    for paragraph in str(text).split('\n'):
        wrapped = textwrap.wrap(paragraph,
                                width=width,
                                break_long_words=False,
                                break_on_hyphens=False)
        if wrapped:
            lines.extend(line.strip() for line in wrapped)
        else:
            lines.append('')
    return '\n'.join(lines)


# ============================================================================
# Styles
# ============================================================================

class Style(ABC):
    """A text transform used by apply_styles"""

    @abstractmethod
    def apply(self, text: str) -> str:
        pass

    def __call__(self, text: str) -> str:
        return self.apply(text)


class AnsiStyle(Style):
    """Wraps text in an SGR open/close pair"""

    def __init__(self, open_code: str, close_code: str):
        self.open_code = open_code
        self.close_code = close_code

    def apply(self, text: str) -> str:
        if not text:
            return text
        # Nested styles close the same attribute, so reopen ours after them
        if self.close_code in text:
            text = text.replace(self.close_code, self.close_code + self.open_code)
        return f'{self.open_code}{text}{self.close_code}'

    def __repr__(self):
        return f'{type(self).__name__}({self.open_code!r}, {self.close_code!r})'


class NamedStyle(AnsiStyle):
    """Style looked up by keyword, e.g. 'bold', 'cyan' or 'bg_red'"""

    CODES: Dict[str, Tuple[int, int]] = {
        # Modifiers
        'reset': (0, 0),
        'bold': (1, 22),
        'dim': (2, 22),
        'italic': (3, 23),
        'underline': (4, 24),
        'inverse': (7, 27),
        'hidden': (8, 28),
        'strikethrough': (9, 29),

        # Basic colors (3/4 bit)
        'black': (30, 39),
        'red': (31, 39),
        'green': (32, 39),
        'yellow': (33, 39),
        'blue': (34, 39),
        'magenta': (35, 39),
        'cyan': (36, 39),
        'white': (37, 39),
        'gray': (90, 39),
        'grey': (90, 39),

        # Bright colors
        'bright_red': (91, 39),
        'bright_green': (92, 39),
        'bright_yellow': (93, 39),
        'bright_blue': (94, 39),
        'bright_magenta': (95, 39),
        'bright_cyan': (96, 39),
        'bright_white': (97, 39),

        # Background colors
        'bg_black': (40, 49),
        'bg_red': (41, 49),
        'bg_green': (42, 49),
        'bg_yellow': (43, 49),
        'bg_blue': (44, 49),
        'bg_magenta': (45, 49),
        'bg_cyan': (46, 49),
        'bg_white': (47, 49),
        'bg_gray': (100, 49),
    }

    def __init__(self, name: str):
        try:
            open_code, close_code = self.CODES[name]
        except KeyError:
            raise ValueError(f"Unknown style '{name}'") from None
        super().__init__(f'\033[{open_code}m', f'\033[{close_code}m')
        self.name = name

    def __repr__(self):
        return f'{type(self).__name__}({self.name!r})'


class FunctionStyle(Style):
    """Style backed by an arbitrary str -> str callable"""

    def __init__(self, fn: Callable[[str], str]):
        self.fn = fn

    def apply(self, text: str) -> str:
        return self.fn(text)


StyleLike = Union[str, Style, Callable[[str], str]]


def rgb(r: int, g: int, b: int) -> AnsiStyle:
    """Create 24-bit RGB foreground style"""
    return AnsiStyle(f'\033[38;2;{r};{g};{b}m', '\033[39m')


def resolve_style(style: StyleLike) -> Style:
    """Turn a keyword or callable into a Style"""
    if isinstance(style, Style):
        return style
    if isinstance(style, str):
        return NamedStyle(style)
    if callable(style):
        return FunctionStyle(style)
    raise TypeError(f'Cannot use {style!r} as a style')


def apply_styles(text: str, styles: Optional[Sequence[StyleLike]]) -> str:
    """Apply styles left to right, each wrapping the previous result"""
    if not styles:
        return text
    for style in styles:
        text = resolve_style(style).apply(text)
    return text


# ============================================================================
# Number and time formatting
# ============================================================================

_TIME_UNITS = [
    (86400, 'day', 'day'),
    (3600, 'hour', 'hr'),
    (60, 'minute', 'min'),
    (1, 'second', 'sec'),
]


def _short_number(value: float) -> str:
    if value == int(value):
        return str(int(value))
    return f'{value:.2f}'.rstrip('0').rstrip('.')


def pct(count: float, max: float, floor: bool = False) -> str:
    """Format count as a percentage of max"""
    value = (count * 100.0) / (max or 1)
    if not math.isfinite(value) or value < 0:
        value = 0
    if floor:
        return f'{math.floor(value)}%'
    return f'{_short_number(value)}%'


def commify(number: float) -> str:
    return f'{int(number):,}'


def pluralize(word: str, amount: float = 2) -> str:
    if amount == 1:
        return word
    if re.search(r'[^aeiou]y$', word, re.IGNORECASE):
        return word[:-1] + 'ies'
    if re.search(r'(s|x|z|ch|sh)$', word, re.IGNORECASE):
        return word + 'es'
    return word + 's'


def _unit_text(amount: int, name: str, short: str, abbrev: bool) -> str:
    if abbrev:
        return f'{amount} {short}'
    return f'{amount} {pluralize(name, amount)}'


def get_text_from_seconds(seconds: float, abbrev: bool = False, no_secondary: bool = False) -> str:
    """
    Describe a duration in words, e.g. '2 minutes, 5 seconds'.

    Args:
        seconds: Duration to describe
        abbrev: Use short unit names ('min', 'sec', ...)
        no_secondary: Omit the second, smaller unit
    """
    seconds = math.floor(seconds)
    sign = '-' if seconds < 0 else ''
    seconds = abs(seconds)

    for idx, (size, name, short) in enumerate(_TIME_UNITS):
        if seconds >= size or size == 1:
            break

    text = _unit_text(seconds // size, name, short, abbrev)

    if not no_secondary and size > 1:
        sub_size, sub_name, sub_short = _TIME_UNITS[idx + 1]
        secondary = (seconds % size) // sub_size
        if secondary:
            text += ', ' + _unit_text(secondary, sub_name, sub_short, abbrev)

    return sign + text


def get_nice_remaining_time(elapsed: float,
                            counter: float,
                            counter_max: float,
                            abbrev: bool = False,
                            shorten: bool = False) -> str:
    """Estimate the time left from elapsed time and progress so far"""
    if counter == counter_max:
        return 'Complete'
    if counter == 0:
        return 'n/a'
    seconds = math.floor(((counter_max - counter) * elapsed) / counter)
    return get_text_from_seconds(seconds, abbrev, shorten)


def get_text_from_bytes(num_bytes: float, precision: int = 10) -> str:
    """Human readable byte count, e.g. '1.5 MB'"""
    value = num_bytes
    for unit in ('bytes', 'K', 'MB', 'GB'):
        if value < 1024:
            return f'{_short_number(value)} {unit}'
        value = math.floor((value / 1024) * precision) / precision
    return f'{_short_number(value)} TB'


# ============================================================================
# Scheduling
# ============================================================================

class ScheduledTask(ABC):
    """Handle for a periodic callback"""

    @abstractmethod
    def cancel(self):
        pass

    @property
    @abstractmethod
    def cancelled(self) -> bool:
        pass


class Clock(ABC):
    """Source of time and periodic callbacks"""

    @abstractmethod
    def now(self) -> float:
        """Current time in seconds"""

    @abstractmethod
    def schedule(self, interval: float, callback: Callable[[], None]) -> ScheduledTask:
        """Call callback every interval seconds until cancelled"""


class RepeatingTimer(ScheduledTask):
    """Periodic callback on a daemon thread"""

    def __init__(self, interval: float, callback: Callable[[], None]):
        if interval <= 0:
            raise ValueError("interval must be positive")

        self.interval = interval
        self.callback = callback
        self._stopped = threading.Event()
        self._thread = threading.Thread(target=self._run, name='linecraft-timer', daemon=True)

    def start(self) -> 'RepeatingTimer':
        self._thread.start()
        return self

    def _run(self):
        error_count = 0
        max_errors = 10

        while not self._stopped.wait(self.interval):
            try:
                self.callback()
                error_count = 0  # Reset on success
            except Exception:
                error_count += 1
                if error_count <= max_errors:
                    logger.exception('Scheduled callback failed (error %d/%d)', error_count, max_errors)
                elif error_count == max_errors + 1:
                    logger.error('Scheduled callback: suppressing further errors')

    def cancel(self):
        self._stopped.set()

    @property
    def cancelled(self) -> bool:
        return self._stopped.is_set()


class SystemClock(Clock):
    """Wall clock time with thread-based timers"""

    def now(self) -> float:
        return time.time()

    def schedule(self, interval: float, callback: Callable[[], None]) -> ScheduledTask:
        return RepeatingTimer(interval, callback).start()


class _VirtualTask(ScheduledTask):

    def __init__(self, interval: float, callback: Callable[[], None], due: float):
        self.interval = interval
        self.callback = callback
        self.due = due
        self._cancelled = False

    def cancel(self):
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


class VirtualClock(Clock):
    """
    Manually driven clock.

    Time only moves when advance() is called, and scheduled callbacks fire
    from inside advance() in due order. Useful for deterministic tests.
    """

    def __init__(self, start: float = 0.0):
        self._now = start
        self._tasks: List[_VirtualTask] = []

    def now(self) -> float:
        return self._now

    def schedule(self, interval: float, callback: Callable[[], None]) -> ScheduledTask:
        if interval <= 0:
            raise ValueError("interval must be positive")
        task = _VirtualTask(interval, callback, self._now + interval)
        self._tasks.append(task)
        return task

    @property
    def pending(self) -> List[ScheduledTask]:
        return [task for task in self._tasks if not task.cancelled]

    def advance(self, seconds: float):
        """Move time forward, firing every callback that falls due"""
        target = self._now + seconds
        while True:
            due = [task for task in self._tasks if not task.cancelled and task.due <= target]
            if not due:
                break
            task = min(due, key=lambda t: t.due)
            self._now = task.due
            task.due += task.interval
            task.callback()
        self._now = target
        self._tasks = [task for task in self._tasks if not task.cancelled]


# ============================================================================
# Exit guard
# ============================================================================

class ExitGuard:
    """
    Scoped registration of process exit hooks.

    The callback runs at most once: on interpreter exit and, optionally, on
    SIGINT, SIGTERM or an uncaught exception. Disposing the guard removes
    the hooks and restores whatever was installed before.
    """

    def __init__(self,
                 callback: Callable[[], None],
                 catch_int: bool = False,
                 catch_term: bool = False,
                 catch_crash: bool = False,
                 exit_on_sig: bool = True):
        """
        Create an exit guard.

        Args:
            callback: Cleanup to run when the process goes away
            catch_int: Hook SIGINT
            catch_term: Hook SIGTERM
            catch_crash: Hook sys.excepthook
            exit_on_sig: Exit with status 128 + signal number after a caught signal
        """
        self.callback = callback
        self.catch_int = catch_int
        self.catch_term = catch_term
        self.catch_crash = catch_crash
        self.exit_on_sig = exit_on_sig

        self._previous_handlers: Dict[int, Any] = {}
        self._previous_excepthook: Optional[Callable] = None
        self._installed = False
        self._fired = False
        self._lock = threading.RLock()

    @property
    def installed(self) -> bool:
        return self._installed

    @property
    def fired(self) -> bool:
        return self._fired

    def __enter__(self):
        return self.install()

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.dispose()
        return False

    def install(self) -> 'ExitGuard':
        """Register the hooks"""
        with self._lock:
            if self._installed:
                return self

            atexit.register(self._on_exit)

            signums = []
            if self.catch_int:
                signums.append(signal.SIGINT)
            if self.catch_term:
                signums.append(signal.SIGTERM)

            for signum in signums:
                try:
                    self._previous_handlers[signum] = signal.signal(signum, self._on_signal)
                except ValueError:
                    # Only the main thread may install signal handlers
                    logger.warning('Cannot catch signal %d outside the main thread', signum)

            if self.catch_crash:
                self._previous_excepthook = sys.excepthook
                sys.excepthook = self._on_crash

            self._installed = True
        return self

    def dispose(self):
        """Remove the hooks, restoring previous handlers"""
        with self._lock:
            if not self._installed:
                return
            self._installed = False

            atexit.unregister(self._on_exit)

            for signum, previous in self._previous_handlers.items():
                if signal.getsignal(signum) != self._on_signal:
                    continue
                try:
                    signal.signal(signum, previous if previous is not None else signal.SIG_DFL)
                except ValueError:
                    logger.warning('Cannot restore handler for signal %d outside the main thread', signum)
            self._previous_handlers = {}

            if self._previous_excepthook is not None:
                if sys.excepthook == self._on_crash:
                    sys.excepthook = self._previous_excepthook
                self._previous_excepthook = None

    def _fire(self):
        with self._lock:
            if self._fired:
                return
            self._fired = True

        try:
            self.callback()
        except Exception:
            logger.exception('Exit guard callback failed')
        finally:
            self.dispose()

    def _on_exit(self):
        self._fire()

    def _on_signal(self, signum, frame):
        previous = self._previous_handlers.get(signum)
        self._fire()

        if self.exit_on_sig:
            sys.exit(128 + signum)

        # Chain the previous handler (if any)
        if callable(previous):
            previous(signum, frame)

    def _on_crash(self, exc_type, exc_value, exc_tb):
        previous = self._previous_excepthook or sys.__excepthook__
        self._fire()
        previous(exc_type, exc_value, exc_tb)


# ============================================================================
# Progress configuration
# ============================================================================

@dataclass
class ProgressStyles:
    """Style lists for each element of the progress line"""
    spinner: List[StyleLike] = field(default_factory=lambda: ['bold', 'green'])
    braces: List[StyleLike] = field(default_factory=lambda: ['gray'])
    bar: List[StyleLike] = field(default_factory=lambda: ['bold', 'cyan'])
    indeterminate: List[StyleLike] = field(default_factory=lambda: ['gray'])
    pct: List[StyleLike] = field(default_factory=lambda: ['bold', 'yellow'])
    remain: List[StyleLike] = field(default_factory=lambda: ['green'])
    text: List[StyleLike] = field(default_factory=list)

    @classmethod
    def plain(cls) -> 'ProgressStyles':
        """Styles with every list empty"""
        return cls(**{f.name: [] for f in fields(cls)})

    def merged(self, overrides: Union['ProgressStyles', Mapping[str, Sequence[StyleLike]]]) -> 'ProgressStyles':
        """Copy with the given elements replaced"""
        if isinstance(overrides, ProgressStyles):
            return overrides

        unknown = set(overrides) - {f.name for f in fields(self)}
        if unknown:
            raise TypeError(f"Unknown progress style element(s): {', '.join(sorted(unknown))}")

        return replace(self, **{key: list(value or []) for key, value in overrides.items()})


ASCII_GLYPHS: Dict[str, Any] = {
    'spinner': ['|', '/', '-', '\\'],
    'braces': ['[', ']'],
    'filling': [' ', '.', ':'],
    'filled': '#',
}


@dataclass
class ProgressConfig:
    """Options of a running progress session"""
    amount: float = 0
    max: float = 1.0
    text: str = ''
    width: int = 30
    indent: Union[int, str] = ''
    freq: int = 100
    time_start: Optional[float] = None
    spinner: List[str] = field(default_factory=lambda: ['⠋', '⠙', '⠹', '⠸', '⠼', '⠴', '⠦', '⠧', '⠇', '⠏'])
    braces: List[str] = field(default_factory=lambda: ['⟦', '⟧'])
    filling: List[str] = field(default_factory=lambda: [' ', '⡀', '⡄', '⡆', '⡇', '⣇', '⣧', '⣷'])
    filled: str = '⣿'
    styles: ProgressStyles = field(default_factory=ProgressStyles)
    pct: bool = True
    remain: bool = True
    color: Optional[bool] = None
    unicode: Optional[bool] = None
    quiet: bool = False
    catch_int: bool = False
    catch_term: bool = False
    catch_crash: bool = False
    exit_on_sig: bool = True

    def validate(self):
        for name in ('amount', 'max'):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValueError(f"{name} must be a number")
        if self.width < 0:
            raise ValueError("width must be non-negative")
        if self.freq <= 0:
            raise ValueError("freq must be positive")
        if not self.spinner:
            raise ValueError("spinner must contain at least one frame")
        if not self.filling:
            raise ValueError("filling must contain at least one glyph")
        if len(self.braces) != 2:
            raise ValueError("braces must be a pair of glyphs")
        for element in fields(self.styles):
            for style in getattr(self.styles, element.name):
                resolve_style(style)


_CONFIG_FIELDS = frozenset(f.name for f in fields(ProgressConfig))

_UNICODE_GLYPHS: Dict[str, Any] = {key: getattr(ProgressConfig(), key) for key in ASCII_GLYPHS}


def _apply_glyphs(config: ProgressConfig, glyphs: Mapping[str, Any], explicit: Iterable[str]):
    """Set every glyph option the caller did not pass explicitly"""
    for key, value in glyphs.items():
        if key not in explicit:
            setattr(config, key, list(value) if isinstance(value, list) else value)


def _normalize_indent(indent: Union[int, str, None]) -> str:
    if not indent:
        return ''
    if isinstance(indent, int):
        return space(indent)
    # Hard tabs break the fixed-width overwrite
    return str(indent).replace('\t', '    ')


def _clamp(value: float, lower: float, upper: float) -> float:
    return max(lower, min(upper, value))


# ============================================================================
# Progress session
# ============================================================================

class ProgressSession:
    """
    Single-line animated progress indicator.

    The line holds a spinner, a bracketed bar, a percentage, an estimate of
    the remaining time and an optional text, and is redrawn in place every
    `freq` milliseconds between start() and end(). Every operation is a
    silent no-op when the session is not running or stdout is not a TTY.
    """

    def __init__(self, terminal: Optional[Terminal] = None, clock: Optional[Clock] = None):
        """
        Create an idle progress session.

        Args:
            terminal: Terminal to draw on
            clock: Time source and scheduler for redraws
        """
        self.terminal = terminal or Terminal()
        self.clock = clock or SystemClock()

        self.running = False
        self.config: Optional[ProgressConfig] = None
        self.spin_frame = 0
        self.last_line = ''

        self._last_remain_check = 0.0
        self._last_remain_string: Optional[str] = None
        self._timer: Optional[ScheduledTask] = None
        self._guard: Optional[ExitGuard] = None
        self._lock = threading.RLock()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.end()
        return False

    @contextmanager
    def lock(self):
        """Context manager for thread-safe operations"""
        with self._lock:
            yield self._lock

    @property
    def amount(self) -> float:
        return self.config.amount if self.config is not None else 0

    def _active(self) -> bool:
        return self.running and self.terminal.is_interactive()

    def start(self, **options) -> 'ProgressSession':
        """
        Start drawing the progress line.

        Does nothing when stdout is not a TTY. A running session is ended
        before the new one starts.

        Args:
            **options: Any ProgressConfig field; `styles` may be a mapping
                overriding single elements
        """
        with self.lock():
            if not self.terminal.is_interactive():
                return self

            config = self._build_config(options)

            if self.running:
                self._end_internal()

            self.config = config
            self.running = True
            self.spin_frame = 0
            self.last_line = ''
            self._last_remain_check = 0.0
            self._last_remain_string = None

            # Armed before the first draw, which an exit hook may interrupt
            self._timer = self.clock.schedule(config.freq / 1000.0, self.draw)
            self._guard = ExitGuard(self._on_exit_hook,
                                    catch_int=config.catch_int,
                                    catch_term=config.catch_term,
                                    catch_crash=config.catch_crash,
                                    exit_on_sig=config.exit_on_sig).install()

            if not config.quiet:
                self.terminal.hide_cursor()

            self._draw_internal()

            logger.debug('Progress session started (max=%s, width=%d)', config.max, config.width)
        return self

    def _build_config(self, options: Dict[str, Any]) -> ProgressConfig:
        unknown = set(options) - _CONFIG_FIELDS
        if unknown:
            raise TypeError(f"Unknown progress option(s): {', '.join(sorted(unknown))}")

        config = ProgressConfig()
        for key, value in options.items():
            if key == 'styles':
                if value is not None:
                    config.styles = config.styles.merged(value)
            else:
                setattr(config, key, value)

        self._resolve_capabilities(config)

        if not config.color:
            config.styles = ProgressStyles.plain()

        if not config.unicode:
            _apply_glyphs(config, ASCII_GLYPHS, options)

        config.indent = _normalize_indent(config.indent)
        config.text = config.text or ''
        if not config.max:
            config.max = 1.0
        config.amount = config.amount or 0
        if config.time_start is None:
            config.time_start = self.clock.now()

        config.validate()
        config.amount = _clamp(config.amount, 0, config.max)
        return config

    def _resolve_capabilities(self, config: ProgressConfig):
        if config.color is not None and config.unicode is not None:
            return
        capable = self.terminal.capability() in [TerminalCapability.BASIC, TerminalCapability.ADVANCED]
        if config.color is None:
            config.color = capable
        if config.unicode is None:
            config.unicode = capable

    def update(self, value: Union[float, Mapping[str, Any], None] = None, **changes):
        """
        Update the running session.

        A bare number sets the amount; a mapping and/or keyword arguments
        replace the given options. The amount is clamped to [0, max].
        Changes are validated as a whole before any of them is applied, and
        `color`, `unicode` and `freq` take effect right away.
        """
        with self.lock():
            if not self._active():
                return

            if isinstance(value, Mapping):
                changes = {**value, **changes}
            elif value is not None:
                changes['amount'] = value

            unknown = set(changes) - _CONFIG_FIELDS
            if unknown:
                raise TypeError(f"Unknown progress option(s): {', '.join(sorted(unknown))}")

            previous = self.config
            config = replace(previous)
            for key, new_value in changes.items():
                if key == 'styles':
                    if new_value is not None:
                        config.styles = config.styles.merged(new_value)
                else:
                    setattr(config, key, new_value)

            self._resolve_capabilities(config)

            if not config.color:
                config.styles = ProgressStyles.plain()
            elif not previous.color:
                config.styles = ProgressStyles().merged(changes.get('styles') or {})

            if not config.unicode and previous.unicode:
                _apply_glyphs(config, ASCII_GLYPHS, changes)
            elif config.unicode and not previous.unicode:
                _apply_glyphs(config, _UNICODE_GLYPHS, changes)

            if 'indent' in changes:
                config.indent = _normalize_indent(config.indent)
            config.text = config.text or ''
            if not config.max:
                config.max = 1.0

            config.validate()
            config.amount = _clamp(config.amount, 0, config.max)
            self.config = config

            if config.freq != previous.freq and self._timer is not None:
                self._timer.cancel()
                self._timer = self.clock.schedule(config.freq / 1000.0, self.draw)

    def draw(self):
        """Render the progress line over the current terminal line"""
        with self.lock():
            if not self._active():
                return
            self._draw_internal()

    def _draw_internal(self):
        config = self.config
        styles = config.styles
        at_max = config.amount == config.max

        parts = [config.indent]

        # Spinner
        frame = config.spinner[self.spin_frame % len(config.spinner)]
        self.spin_frame += 1
        parts.append(apply_styles(frame, styles.spinner))
        parts.append(' ')

        # Bar
        parts.append(apply_styles(config.braces[0], styles.braces))
        parts.append(apply_styles(self._render_bar(config), styles.indeterminate if at_max else styles.bar))
        parts.append(apply_styles(config.braces[1], styles.braces))

        if config.pct:
            parts.append(' ' + apply_styles(pct(config.amount, config.max, floor=True), styles.pct))

        if not at_max:
            remaining = self._remaining_time(config)
            if remaining:
                parts.append(apply_styles(f' ({remaining} remain)', styles.remain))

        text = str(config.text).strip()
        if text:
            parts.append(' ' + apply_styles(text, styles.text))

        line = ''.join(parts)

        # Cover whatever is left of a longer previous line
        if self.last_line:
            shortfall = display_width(self.last_line) - display_width(line)
            if shortfall > 0:
                line += space(shortfall)

        # Ended from an exit hook while the line was being built
        if not self.running:
            return

        if not config.quiet:
            self.terminal.write_out(line + '\r')
        self.last_line = line

    @staticmethod
    def _render_bar(config: ProgressConfig) -> str:
        filled_width = _clamp(config.amount / config.max, 0.0, 1.0) * config.width
        full_blocks = math.floor(filled_width)
        partial = filled_width - full_blocks

        body = config.filled * full_blocks
        if partial > 0:
            body += config.filling[math.floor(partial * len(config.filling))]

        return body + space(config.width - display_width(body))

    def _remaining_time(self, config: ProgressConfig) -> Optional[str]:
        now = self.clock.now()
        elapsed = now - config.time_start

        if not (0 < config.amount < config.max and elapsed >= 5 and config.remain):
            return None

        # Recompute at most once per second so the estimate does not flicker
        if now - self._last_remain_check >= 1.0:
            self._last_remain_string = get_nice_remaining_time(elapsed,
                                                               config.amount,
                                                               config.max,
                                                               abbrev=True,
                                                               shorten=True)
            self._last_remain_check = now

        return self._last_remain_string

    def erase(self):
        """Blank the progress line and return the cursor to column 0"""
        with self.lock():
            if not self._active() or not self.last_line:
                return
            if not self.config.quiet:
                self.terminal.write_out(space(display_width(self.last_line)) + '\r')

    @contextmanager
    def suspended(self):
        """Erase the line for the duration of the block, then draw it again"""
        with self.lock():
            self.erase()
            try:
                yield self
            finally:
                self.draw()

    def end(self, erase: bool = True):
        """
        Stop the session.

        Args:
            erase: Blank the line; pass False to leave the final bar visible
        """
        with self.lock():
            if not self._active():
                return
            self._end_internal(erase=erase)

    def _end_internal(self, erase: bool = True):
        if erase:
            self.erase()

        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

        guard, self._guard = self._guard, None
        quiet = self.config.quiet

        self.running = False
        self.config = None
        self.last_line = ''

        if guard is not None:
            guard.dispose()

        if not quiet:
            self.terminal.show_cursor()

        logger.debug('Progress session ended')

    def _on_exit_hook(self):
        if self.running:
            self.end()


def track(iterable: Iterable,
          total: Optional[float] = None,
          session: Optional[ProgressSession] = None,
          **options) -> Iterator:
    """
    Wrap an iterable to display progress automatically.

    Example:
        for item in track(files, text="Copying"):
            copy(item)

    Args:
        iterable: The iterable to wrap
        total: Total items (auto-detected if possible; unknown totals
            show an indeterminate bar)
        session: Session to drive (a new one is created and ended otherwise)
        **options: Additional options for ProgressSession.start
    """
    if total is None:
        try:
            total = len(iterable)
        except TypeError:
            pass

    if session is None:
        session = ProgressSession()

    owned = not session.running
    if owned:
        if total:
            session.start(max=total, **options)
        else:
            session.start(amount=1, max=1, **options)
    else:
        changes = dict(options)
        if total:
            changes.update(max=total, amount=0)
        session.update(**changes)

    try:
        for index, item in enumerate(iterable, 1):
            yield item
            if total:
                session.update(index)
    finally:
        if owned:
            session.end()


# ============================================================================
# Tables
# ============================================================================

def _column_widths(rows: Sequence[Sequence[str]]) -> List[int]:
    """Widest display width per column"""
    widths: List[int] = []
    for row in rows:
        for idx, cell in enumerate(row):
            if idx >= len(widths):
                widths.append(0)
            widths[idx] = max(widths[idx], display_width(cell))
    return widths


def _table_width(column_widths: Sequence[int]) -> int:
    # One space of padding on each side plus a border glyph per column, and the closing border
    return sum(column_widths) + 3 * len(column_widths) + 1


def _truncate_cell(cell: str, width: int) -> str:
    """Shorten cell to width columns ending in an ellipsis, keeping its outer styling"""
    prefix = ''
    suffix = ''

    match = _SGR_PREFIX.match(cell)
    while match:
        prefix += match.group(0)
        cell = cell[match.end():]
        match = _SGR_PREFIX.match(cell)

    match = _SGR_SUFFIX.search(cell)
    while match:
        suffix = match.group(0) + suffix
        cell = cell[:match.start()]
        match = _SGR_SUFFIX.search(cell)

    return prefix + _cut_to_width(cell, width - 1) + _ELLIPSIS + suffix


def auto_fit_table_rows(rows: Sequence[Sequence[Any]], available_width: int) -> List[List[str]]:
    """
    Truncate cells so the rendered table fits in available_width columns.

    The widest column is narrowed one column at a time until the table fits
    or the widest column is down to two characters. Cells wider than their
    column are cut and end in an ellipsis. Returns new rows; the input is
    left untouched.
    """
    rows = [[str(cell) for cell in row] for row in rows]
    if available_width < 1:
        return rows

    working = _column_widths(rows)
    if not working:
        return rows

    while _table_width(working) > available_width:
        widest = max(working)
        if widest <= _MIN_COLUMN_WIDTH:
            break
        working[working.index(widest)] -= 1

    return [
        [_truncate_cell(cell, working[idx]) if display_width(cell) > working[idx] else cell
         for idx, cell in enumerate(row)]
        for row in rows
    ]


def table(rows: Sequence[Sequence[Any]],
          header_styles: Optional[Sequence[StyleLike]] = None,
          text_styles: Optional[Sequence[StyleLike]] = None,
          border_styles: Optional[Sequence[StyleLike]] = None,
          indent: Union[int, str] = '',
          auto_fit: bool = False,
          terminal: Optional[Terminal] = None) -> str:
    """
    Render rows as a table with box-drawing borders.

    Args:
        rows: Sequence of rows, the first one being the header
        header_styles: Styles for header cells
        text_styles: Styles for body cells
        border_styles: Styles for border glyphs
        indent: Prefix for every line (an int means that many spaces)
        auto_fit: Shrink columns to fit the terminal width
        terminal: Terminal used to measure the width for auto_fit
    """
    header_styles = ['bold', 'yellow'] if header_styles is None else header_styles
    text_styles = ['cyan'] if text_styles is None else text_styles
    border_styles = ['gray'] if border_styles is None else border_styles
    indent = _normalize_indent(indent)

    rows = [[str(cell) for cell in row] for row in rows]
    if not rows:
        return ''

    if auto_fit:
        terminal = terminal or Terminal()
        rows = auto_fit_table_rows(rows, terminal.columns() - display_width(indent) * 2)

    widths = [width + 2 for width in _column_widths(rows)]
    separator = apply_styles('│', border_styles)

    def border(left: str, middle: str, right: str) -> str:
        line = left + middle.join(repeat('─', width) for width in widths) + right
        return indent + apply_styles(line, border_styles)

    def row_line(cells: List[str], styles: Sequence[StyleLike]) -> str:
        line = separator
        for idx, cell in enumerate(cells):
            line += pad(apply_styles(f' {cell} ', styles), widths[idx]) + separator
        return indent + line

    output = [border('┌', '┬', '┐'), row_line(rows[0], header_styles), border('├', '┼', '┤')]
    output.extend(row_line(row, text_styles) for row in rows[1:])
    output.append(border('└', '┴', '┘'))

    return '\n'.join(output)


# ============================================================================
# Boxes and trees
# ============================================================================

def box(text: str,
        width: int = 0,
        hspace: int = 1,
        vspace: int = 0,
        styles: Optional[Sequence[StyleLike]] = None,
        indent: Union[int, str] = '') -> str:
    """
    Wrap a text string in a box.

    ┌───────────────────────┐
    │  Like this one here.  │
    └───────────────────────┘

    Args:
        text: Text to frame (may span lines)
        width: Wrap text to this width (default: widest line)
        hspace: Spaces between the text and the side borders
        vspace: Blank lines above and below the text
        styles: Styles for the border glyphs
        indent: Prefix for every line
    """
    text = str(text)
    styles = ['gray'] if styles is None else styles
    indent = _normalize_indent(indent)

    if width:
        text = wrap(text, width)
    else:
        width = widest_line(text)
    width += hspace * 2

    lines = [''] * vspace + text.split('\n') + [''] * vspace
    edge = apply_styles('│', styles)

    output = [indent + apply_styles('┌' + repeat('─', width) + '┐', styles)]
    for line in lines:
        output.append(indent + edge + pad(space(hspace) + line + space(hspace), width) + edge)
    output.append(indent + apply_styles('└' + repeat('─', width) + '┘', styles))

    return '\n'.join(output)


def tree(directory: str = '.',
         folder_styles: Optional[Sequence[StyleLike]] = None,
         file_styles: Optional[Sequence[StyleLike]] = None,
         symlink_styles: Optional[Sequence[StyleLike]] = None,
         line_styles: Optional[Sequence[StyleLike]] = None,
         include: Union[str, re.Pattern, None] = None,
         exclude: Union[str, re.Pattern, None] = None) -> str:
    """Render a directory as an indented tree"""
    folder_styles = ['bold', 'yellow'] if folder_styles is None else folder_styles
    file_styles = ['green'] if file_styles is None else file_styles
    symlink_styles = ['magenta'] if symlink_styles is None else symlink_styles
    line_styles = ['gray'] if line_styles is None else line_styles
    include_re = re.compile(include) if isinstance(include, str) else include
    exclude_re = re.compile(exclude) if isinstance(exclude, str) else exclude

    def visible(name: str) -> bool:
        if include_re is not None and not include_re.search(name):
            return False
        if exclude_re is not None and exclude_re.search(name):
            return False
        return True

    def walk(path: str, prefix: str) -> List[str]:
        with os.scandir(path) as it:
            entries = sorted((entry for entry in it if visible(entry.name)), key=lambda e: e.name)

        lines = []
        for idx, entry in enumerate(entries):
            last = idx == len(entries) - 1
            head = prefix + apply_styles(' ' + ('└' if last else '├'), line_styles) + ' '

            if entry.is_symlink():
                lines.append(head + apply_styles(entry.name, symlink_styles))
            elif entry.is_dir():
                lines.append(head + apply_styles(entry.name + '/', folder_styles))
                lines.extend(walk(entry.path, prefix + apply_styles('  ' if last else ' │', line_styles) + ' '))
            else:
                lines.append(head + apply_styles(entry.name, file_styles))
        return lines

    name = os.path.basename(os.path.normpath(directory))
    return '\n'.join([apply_styles(name + '/', folder_styles)] + walk(directory, ''))


# ============================================================================
# Console
# ============================================================================

class Console:
    """
    Output helpers that cooperate with a running progress session.

    Every write erases the progress line first and draws it again after, so
    messages scroll above the bar instead of being mangled by it.
    """

    def __init__(self,
                 terminal: Optional[Terminal] = None,
                 quiet: bool = False,
                 verbose: bool = False,
                 clock: Optional[Clock] = None):
        """
        Create a console.

        Args:
            terminal: Terminal to write to
            quiet: Suppress all printing (messages are still logged)
            verbose: Print verbose() messages instead of only logging them
            clock: Clock for the progress session
        """
        self.terminal = terminal or Terminal()
        self.quiet = quiet
        self.verbose_mode = verbose
        self.progress = ProgressSession(self.terminal, clock=clock)

    def print(self, msg: str):
        """Print message to stdout"""
        if not self.quiet:
            with self.progress.suspended():
                self.terminal.write_out(msg)
        self.log(msg)

    def println(self, msg: str = ''):
        self.print(f'{msg}\n')

    def warn(self, msg: str):
        """Print message to stderr"""
        if not self.quiet:
            with self.progress.suspended():
                self.terminal.write_err(msg)
        self.log(msg)

    def warnln(self, msg: str = ''):
        self.warn(f'{msg}\n')

    def verbose(self, msg: str):
        """Print only in verbose mode"""
        if self.verbose_mode:
            self.print(msg)
        else:
            self.log(msg)

    def verboseln(self, msg: str = ''):
        self.verbose(f'{msg}\n')

    def die(self, msg: str, code: int = 1):
        """Print to stderr and exit with a non-zero code"""
        self.progress.end()
        self.warn(msg)
        sys.exit(code)

    def dieln(self, msg: str, code: int = 1):
        self.die(f'{msg}\n', code)

    def log(self, msg: Any):
        """Send message to the library logger, without styling"""
        text = strip_styles(str(msg)).strip()
        if not text:
            return
        logger.debug('%s', text)

    def table(self, rows: Sequence[Sequence[Any]], **options) -> str:
        options.setdefault('terminal', self.terminal)
        return table(rows, **options)

    def box(self, text: str, **options) -> str:
        return box(text, **options)


console = Console()
