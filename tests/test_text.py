import io
import logging
import threading
import time

import pytest

from linecraft import (
    AnsiStyle,
    FunctionStyle,
    NamedStyle,
    RepeatingTimer,
    SystemClock,
    Terminal,
    TerminalCapability,
    VirtualClock,
    apply_styles,
    box,
    center,
    commify,
    display_width,
    get_nice_remaining_time,
    get_text_from_bytes,
    get_text_from_seconds,
    pad,
    pct,
    pluralize,
    resolve_style,
    rgb,
    strip_styles,
    tree,
    wrap,
)


# Display width

@pytest.mark.parametrize('text, expected', [
    ('abc', 3),
    ('', 0),
    ('\x1b[31mabc\x1b[39m', 3),
    ('\x1b[38;2;1;2;3mrgb\x1b[39m', 3),
    ('日本', 4),
    ('é', 1),
    ('⣿⡇', 2),
])
def test_display_width(text, expected):
    assert display_width(text) == expected


def test_strip_styles():
    assert strip_styles('\x1b[1m\x1b[36mbar\x1b[39m\x1b[22m') == 'bar'


def test_pad_uses_display_width():
    assert pad('\x1b[31mab\x1b[39m', 4) == '\x1b[31mab\x1b[39m  '
    assert pad('abcdef', 4) == 'abcdef'


# Styles

def test_named_style_wraps_text():
    assert NamedStyle('bold').apply('x') == '\x1b[1mx\x1b[22m'
    assert NamedStyle('bg_red')('x') == '\x1b[41mx\x1b[49m'


def test_unknown_style_name_raises():
    with pytest.raises(ValueError):
        NamedStyle('sparkly')
    with pytest.raises(ValueError):
        apply_styles('x', ['sparkly'])


def test_styles_apply_left_to_right():
    assert apply_styles('x', ['bold', 'red']) == '\x1b[31m\x1b[1mx\x1b[22m\x1b[39m'
    assert apply_styles('x', [str.upper, lambda s: f'[{s}]']) == '[X]'


def test_empty_style_list_returns_text():
    assert apply_styles('x', []) == 'x'
    assert apply_styles('x', None) == 'x'


def test_nested_color_is_reopened():
    inner = NamedStyle('red').apply('b')
    assert NamedStyle('cyan').apply('a' + inner + 'c') == \
        '\x1b[36ma\x1b[31mb\x1b[39m\x1b[36mc\x1b[39m'


def test_empty_text_is_not_wrapped():
    assert NamedStyle('bold').apply('') == ''


def test_rgb_style():
    assert rgb(1, 2, 3).apply('x') == '\x1b[38;2;1;2;3mx\x1b[39m'


def test_resolve_style():
    style = AnsiStyle('<', '>')
    assert resolve_style(style) is style
    assert isinstance(resolve_style('green'), NamedStyle)
    assert isinstance(resolve_style(str.lower), FunctionStyle)
    with pytest.raises(TypeError):
        resolve_style(42)


# Layout helpers

def test_center():
    assert center('ab', 6) == '  ab  '
    assert center('abc', 6) == ' abc  '
    assert center('a\nbbb') == ' a \nbbb'


def test_wrap_breaks_on_words():
    assert wrap('the quick brown fox', 10) == 'the quick\nbrown fox'


def test_wrap_keeps_long_words_whole():
    assert wrap('abcdefghijkl x', 5) == 'abcdefghijkl\nx'


def test_wrap_keeps_paragraphs():
    assert wrap('a\n\nb', 5) == 'a\n\nb'


def test_box():
    assert box('hi', styles=[]) == '┌────┐\n│ hi │\n└────┘'


def test_box_vertical_space_and_wrapping():
    assert box('aaa bbb', width=3, vspace=1, styles=[]).split('\n') == [
        '┌─────┐',
        '│     │',
        '│ aaa │',
        '│ bbb │',
        '│     │',
        '└─────┘',
    ]


def test_box_pads_uneven_lines_and_indents():
    lines = box('a\nlonger', hspace=2, indent=1, styles=[]).split('\n')
    assert lines[1] == ' │  a       │'
    assert {display_width(line) for line in lines} == {13}


def test_box_default_border_is_gray():
    assert box('x').startswith('\x1b[90m┌')


# Formatting

@pytest.mark.parametrize('args, expected', [
    ((1, 2), '50%'),
    ((1, 3), '33.33%'),
    ((0, 0), '0%'),
    ((-1, 2), '0%'),
])
def test_pct(args, expected):
    assert pct(*args) == expected


def test_pct_floor():
    assert pct(1, 3, floor=True) == '33%'
    assert pct(0.999, 1, floor=True) == '99%'


def test_commify():
    assert commify(1234567) == '1,234,567'
    assert commify(12) == '12'


@pytest.mark.parametrize('word, amount, expected', [
    ('file', 1, 'file'),
    ('file', 2, 'files'),
    ('file', 0, 'files'),
    ('box', 2, 'boxes'),
    ('entry', 3, 'entries'),
    ('day', 2, 'days'),
])
def test_pluralize(word, amount, expected):
    assert pluralize(word, amount) == expected


@pytest.mark.parametrize('seconds, kwargs, expected', [
    (0, {}, '0 seconds'),
    (1, {}, '1 second'),
    (59.9, {}, '59 seconds'),
    (125, {}, '2 minutes, 5 seconds'),
    (125, {'abbrev': True}, '2 min, 5 sec'),
    (125, {'no_secondary': True}, '2 minutes'),
    (3600, {}, '1 hour'),
    (90061, {}, '1 day, 1 hour'),
    (7260, {'abbrev': True}, '2 hr, 1 min'),
])
def test_get_text_from_seconds(seconds, kwargs, expected):
    assert get_text_from_seconds(seconds, **kwargs) == expected


def test_get_nice_remaining_time():
    assert get_nice_remaining_time(10, 5, 5) == 'Complete'
    assert get_nice_remaining_time(10, 0, 5) == 'n/a'
    assert get_nice_remaining_time(10, 1, 4) == '30 seconds'
    assert get_nice_remaining_time(10, 1, 4, abbrev=True) == '30 sec'
    assert get_nice_remaining_time(30, 1, 5, shorten=True) == '2 minutes'


@pytest.mark.parametrize('num_bytes, expected', [
    (0, '0 bytes'),
    (512, '512 bytes'),
    (1536, '1.5 K'),
    (1024 * 1024, '1 MB'),
    (3.25 * 1024 ** 3, '3.2 GB'),
    (5 * 1024 ** 4, '5 TB'),
])
def test_get_text_from_bytes(num_bytes, expected):
    assert get_text_from_bytes(num_bytes) == expected


# Terminal

def test_terminal_writes_to_given_streams():
    out, err = io.StringIO(), io.StringIO()
    terminal = Terminal(stdout=out, stderr=err)

    terminal.write_out('a')
    terminal.write_err('b')
    terminal.hide_cursor()

    assert out.getvalue() == 'a' + Terminal.HIDE_CURSOR
    assert err.getvalue() == 'b'


def test_terminal_without_tty_has_no_columns():
    terminal = Terminal(stdout=io.StringIO())
    assert not terminal.is_interactive()
    assert terminal.columns() == 0


@pytest.mark.parametrize('term, colorterm, expected', [
    ('xterm-kitty', '', TerminalCapability.ADVANCED),
    ('xterm', 'truecolor', TerminalCapability.ADVANCED),
    ('xterm-256color', '', TerminalCapability.MINIMAL),
    ('dumb', '', TerminalCapability.MINIMAL),
])
def test_terminal_capability(monkeypatch, term, colorterm, expected):
    monkeypatch.setenv('TERM', term)
    monkeypatch.setenv('COLORTERM', colorterm)
    # StringIO is never a TTY, so plain xterm does not count as BASIC
    assert Terminal(stdout=io.StringIO()).capability() == expected


def test_terminal_capability_without_term_on_tty(monkeypatch):
    monkeypatch.delenv('TERM', raising=False)
    monkeypatch.delenv('COLORTERM', raising=False)
    terminal = Terminal(stdout=io.StringIO())
    monkeypatch.setattr(terminal, 'is_interactive', lambda: True)
    assert terminal.capability() == TerminalCapability.BASIC


def test_terminal_capability_basic_on_tty(monkeypatch):
    monkeypatch.setenv('TERM', 'xterm-256color')
    monkeypatch.delenv('COLORTERM', raising=False)
    terminal = Terminal(stdout=io.StringIO())
    monkeypatch.setattr(terminal, 'is_interactive', lambda: True)
    assert terminal.capability() == TerminalCapability.BASIC


# Clocks

def test_virtual_clock_fires_due_callbacks():
    clock = VirtualClock(start=100.0)
    fired = []
    clock.schedule(1.0, lambda: fired.append(clock.now()))

    clock.advance(2.5)

    assert fired == [101.0, 102.0]
    assert clock.now() == 102.5


def test_virtual_clock_orders_tasks():
    clock = VirtualClock()
    fired = []
    clock.schedule(0.75, lambda: fired.append('slow'))
    clock.schedule(0.5, lambda: fired.append('fast'))

    clock.advance(1.25)

    assert fired == ['fast', 'slow', 'fast']


def test_virtual_clock_cancel():
    clock = VirtualClock()
    fired = []
    task = clock.schedule(1.0, lambda: fired.append(1))

    task.cancel()
    clock.advance(5)

    assert task.cancelled
    assert fired == []
    assert clock.pending == []


def test_schedule_rejects_non_positive_interval():
    with pytest.raises(ValueError):
        VirtualClock().schedule(0, lambda: None)
    with pytest.raises(ValueError):
        RepeatingTimer(-1, lambda: None)


def test_repeating_timer_runs_until_cancelled():
    ticked = threading.Event()
    task = SystemClock().schedule(0.01, ticked.set)
    try:
        assert ticked.wait(2)
    finally:
        task.cancel()
    assert task.cancelled


def test_repeating_timer_logs_failures(caplog):
    calls = []
    done = threading.Event()

    def callback():
        calls.append(1)
        if len(calls) >= 2:
            done.set()
        raise RuntimeError('boom')

    with caplog.at_level(logging.ERROR, logger='linecraft'):
        timer = RepeatingTimer(0.01, callback).start()
        try:
            assert done.wait(2)
        finally:
            timer.cancel()

    assert any('Scheduled callback failed' in record.getMessage() for record in caplog.records)


def test_system_clock_now():
    assert abs(SystemClock().now() - time.time()) < 1


# Tree

@pytest.fixture
def sample_dir(tmp_path):
    root = tmp_path / 'project'
    (root / 'b').mkdir(parents=True)
    (root / 'a.txt').write_text('a')
    (root / 'b' / 'c.txt').write_text('c')
    (root / 'link').symlink_to(root / 'a.txt')
    return root


PLAIN_TREE = dict(folder_styles=[], file_styles=[], symlink_styles=[], line_styles=[])


def test_tree_lists_entries(sample_dir):
    assert tree(str(sample_dir), **PLAIN_TREE).split('\n') == [
        'project/',
        ' ├ a.txt',
        ' ├ b/',
        ' │  └ c.txt',
        ' └ link',
    ]


def test_tree_filters_entries(sample_dir):
    assert tree(str(sample_dir), exclude=r'\.txt$', **PLAIN_TREE).split('\n') == [
        'project/',
        ' ├ b/',
        ' └ link',
    ]


def test_tree_styles_symlinks(sample_dir):
    output = tree(str(sample_dir), symlink_styles=[lambda name: f'<{name}>'])
    assert '<link>' in output
