#!/usr/bin/env python3
"""
Cargame -- Terminal parking game using Python curses.
Your car rolls through a hand-drawn level, one cell per tick of its
engine timer. Steer around everything drawn in the level and park it on
the goal marker. With borders on, the field edge is a wall too; with
borders off you leave on one side and come back on the other.

Controls:
  Left / Right        -  Turn the car
  Up / a              -  Accelerate (the first press starts the engine)
  Down / b            -  Brake
  q                   -  Quit

Usage: cargame.py [-b] LEVELFILE   (see cargame.py -h)
"""

import argparse
import curses
import json
import locale
import os
import shutil
import signal
import sys
import unicodedata

NAME = "cargame"
VERSION = "0.1.0"
COPYRIGHT = (
    "Copyright (C) 2018-2020 Robert Imschweiler.\n"
    "License GPLv3+: GNU GPL version 3 or later <https://gnu.org/licenses/gpl.html>\n"
    "This is free software; you are free to change and redistribute it.\n"
    "There is NO WARRANTY, to the extent permitted by law."
)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

NS_PER_SEC = 1_000_000_000
START_SPEED_NS = 250_000_000   # first tick interval after the engine starts
SPEED_STEP_NS = 10_000_000     # accelerate/brake step, must stay below 1 sec

DEFAULT_BORDERS = True

# Largest coordinate curses can address
MAX_LEVEL_DIMENSION = 32767

SETTINGS_DIR = os.path.expanduser("~/.cargame")
SETTINGS_FILE = os.path.join(SETTINGS_DIR, "settings.json")

# The car glyphs double as the start markers in level files
CHARS = {
    "car_left":  "\u2190",   # ←
    "car_right": "\u2192",   # →
    "car_up":    "\u2191",   # ↑
    "car_down":  "\u2193",   # ↓
    "goal":      "x",
}

# (foreground, background), -1 is the terminal default
COLORS = {
    "car":  (curses.COLOR_RED, -1),
    "goal": (curses.COLOR_GREEN, -1),
    "mscl": (curses.COLOR_WHITE, curses.COLOR_RED),
}

# Color pair IDs
COLOR_CAR = 1
COLOR_GOAL = 2
COLOR_MSCL = 3

WON_MESSAGE = "Won! Play again? [y/n]"
GAME_OVER_MESSAGE = "Game over. Play again? [y/n]"
INPUT_ERROR_MESSAGE = "Input Error"

# ---------------------------------------------------------------------------
# Directions
# ---------------------------------------------------------------------------

LEFT = "left"
RIGHT = "right"
UP = "up"
DOWN = "down"

DIRECTIONS = (LEFT, RIGHT, UP, DOWN)

TURN_LEFT = {DOWN: RIGHT, RIGHT: UP, UP: LEFT, LEFT: DOWN}
TURN_RIGHT = {DOWN: LEFT, LEFT: UP, UP: RIGHT, RIGHT: DOWN}

# Directions: (dy, dx)
STEP = {LEFT: (0, -1), RIGHT: (0, 1), UP: (-1, 0), DOWN: (1, 0)}

CAR_GLYPH_KEYS = {
    LEFT: "car_left",
    RIGHT: "car_right",
    UP: "car_up",
    DOWN: "car_down",
}


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class CargameError(Exception):
    """Base class for every error the game reports before exiting."""

    context = "error"


class StartupError(CargameError):
    """Locale, terminal or signal setup failed."""

    context = "startup"


class LevelFormatError(CargameError):
    """The level file cannot be played."""

    context = "level"


class LevelReadError(LevelFormatError):
    """The level file could not be opened or read."""


class EmptyLevelError(LevelFormatError):
    """The level file has no lines."""


class OversizeError(LevelFormatError):
    """A level line or the line count exceeds MAX_LEVEL_DIMENSION."""


class LevelWidthError(LevelFormatError):
    """A level line holds a character without a display width."""


class MarkerCountError(LevelFormatError):
    """The level holds zero or several goal or start markers."""

    def __init__(self, kind, count):
        self.kind = kind
        self.count = count
        super().__init__(f"{count} {kind} positions in your level file (must be 1)")


class GeometryError(CargameError):
    """The terminal is too small for the level."""

    context = "terminal"


class TransientIOError(CargameError):
    """A single read from the terminal failed."""

    context = "surface"


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

def default_settings():
    """Return a fresh copy of the compiled-in settings."""
    return {
        "borders": DEFAULT_BORDERS,
        "start_speed_ns": START_SPEED_NS,
        "speed_step_ns": SPEED_STEP_NS,
        "chars": dict(CHARS),
        "colors": dict(COLORS),
    }


def _valid_ns(value, limit=None):
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        return False
    return limit is None or value < limit


def _valid_color(value):
    if not isinstance(value, (list, tuple)) or len(value) != 2:
        return False
    return all(isinstance(c, int) and not isinstance(c, bool) and -1 <= c <= 255
               for c in value)


def load_settings(path=SETTINGS_FILE):
    """Load settings overrides from a JSON file on top of the defaults.

    A missing or broken file means defaults. Each override is checked on
    its own and a bad one is dropped without touching the others.
    """
    settings = default_settings()
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (FileNotFoundError, json.JSONDecodeError, OSError):
        return settings
    if not isinstance(data, dict):
        return settings

    if isinstance(data.get("borders"), bool):
        settings["borders"] = data["borders"]
    if _valid_ns(data.get("start_speed_ns")):
        settings["start_speed_ns"] = data["start_speed_ns"]
    if _valid_ns(data.get("speed_step_ns"), NS_PER_SEC):
        settings["speed_step_ns"] = data["speed_step_ns"]

    chars = data.get("chars")
    if isinstance(chars, dict):
        merged = dict(settings["chars"])
        for key, value in chars.items():
            if (key in merged and isinstance(value, str) and len(value) == 1
                    and value.isprintable() and not value.isspace()):
                merged[key] = value
        # Markers must stay distinguishable from one another
        if len(set(merged.values())) == len(merged):
            settings["chars"] = merged

    colors = data.get("colors")
    if isinstance(colors, dict):
        for key, value in colors.items():
            if key in settings["colors"] and _valid_color(value):
                settings["colors"][key] = tuple(value)

    return settings


# ---------------------------------------------------------------------------
# Level model
# ---------------------------------------------------------------------------

def char_width(ch):
    """Return the number of terminal columns ch takes, -1 if unprintable."""
    category = unicodedata.category(ch)
    if category == "Cc":
        return -1
    if category in ("Mn", "Me", "Cf"):
        return 0
    if unicodedata.east_asian_width(ch) in ("W", "F"):
        return 2
    return 1


def display_width(text):
    """Return the display width of text, or -1 if any character is unprintable."""
    total = 0
    for ch in text:
        width = char_width(ch)
        if width < 0:
            return -1
        total += width
    return total


def load_level(path):
    """Read a level file into a list of rows, newline stripped."""
    rows = []
    try:
        with open(path, "r", encoding="utf-8", newline="") as f:
            for line in f:
                if len(rows) == MAX_LEVEL_DIMENSION:
                    raise OversizeError("level dimension too big (too many lines)")
                if line.endswith("\n"):
                    line = line[:-1]
                if len(line) > MAX_LEVEL_DIMENSION:
                    raise OversizeError(
                        f"level dimension too big (line {len(rows) + 1})")
                rows.append(line)
    except (OSError, UnicodeDecodeError) as exc:
        raise LevelReadError(f"cannot read level file {path}: {exc}") from exc

    if not rows:
        raise EmptyLevelError("level file contains no lines")
    return rows


def locate_markers(rows, chars=CHARS):
    """Find the goal and the start marker, consuming the start marker.

    Returns (goal_index, start_index, start_direction), indexes being
    (row, character index) pairs. The start cell is blanked in rows so a
    later redraw of the level does not bring the car back there.
    """
    start_glyphs = {chars[CAR_GLYPH_KEYS[d]]: d for d in DIRECTIONS}
    goals = []
    starts = []
    for y, row in enumerate(rows):
        for x, ch in enumerate(row):
            if ch == chars["goal"]:
                goals.append((y, x))
            elif ch in start_glyphs:
                starts.append((y, x, start_glyphs[ch]))

    if len(goals) != 1:
        raise MarkerCountError("goal", len(goals))
    if len(starts) != 1:
        raise MarkerCountError("start", len(starts))

    y, x, direction = starts[0]
    rows[y] = rows[y][:x] + " " + rows[y][x + 1:]
    return goals[0], (y, x), direction


def level_size(rows):
    """Return (lines, cols) of the level's bounding box on screen."""
    cols = 0
    for i, row in enumerate(rows):
        width = display_width(row)
        if width < 0:
            raise LevelWidthError(f"line {i + 1} contains an unprintable character")
        cols = max(cols, width)
    return len(rows), cols


def read_level(path, chars=CHARS):
    """Load, validate and measure a level file."""
    rows = load_level(path)
    goal_index, start_index, direction = locate_markers(rows, chars)
    lines, cols = level_size(rows)
    return {
        "rows": rows,
        "lines": lines,
        "cols": cols,
        "offset": (0, 0),
        "goal_index": goal_index,
        "start_index": start_index,
        "start_direction": direction,
    }


def playable_area(lines, cols, borders):
    """Return (lines, cols) left for the level in a terminal of the given size."""
    if borders:
        return lines - 3, cols - 2
    return lines - 1, cols


def inside_area(pos, area):
    y, x = pos
    return 0 <= y < area[0] and 0 <= x < area[1]


def check_fits(level, area):
    """Raise GeometryError unless the level fits into area."""
    if level["lines"] > area[0] or level["cols"] > area[1]:
        raise GeometryError(
            f"your terminal is too small for this level (level needs "
            f"{level['lines']}x{level['cols']}, playable area is "
            f"{max(area[0], 0)}x{max(area[1], 0)})")


def centering_offset(level, area):
    return (area[0] - level["lines"]) // 2, (area[1] - level["cols"]) // 2


def to_display_position(level, index):
    """Convert a (row, character index) cell into a screen position.

    The column is the display width of everything left of the cell, so
    wide glyphs earlier in the row push it further right.
    """
    y, x = index
    offset_y, offset_x = level["offset"]
    return y + offset_y, display_width(level["rows"][y][:x]) + offset_x


def recenter(level, area):
    """Center the level in a new playable area.

    Returns (new_offset, delta) where delta must be added to every screen
    position computed against the old offset.
    """
    check_fits(level, area)
    old_y, old_x = level["offset"]
    new_offset = centering_offset(level, area)
    level["offset"] = new_offset
    return new_offset, (new_offset[0] - old_y, new_offset[1] - old_x)


def shift(pos, delta):
    return pos[0] + delta[0], pos[1] + delta[1]


# ---------------------------------------------------------------------------
# Car
# ---------------------------------------------------------------------------

def create_car(start_pos, start_direction, chars=CHARS):
    """Create the car dict, placed on its start cell."""
    car = {
        "glyphs": {d: chars[CAR_GLYPH_KEYS[d]] for d in DIRECTIONS},
        "start_pos": start_pos,
        "start_direction": start_direction,
        "pos": start_pos,
        "old_pos": start_pos,
        "direction": start_direction,
        "glyph": None,
    }
    car_reset(car)
    return car


def car_set_direction(car, direction):
    car["direction"] = direction
    car["glyph"] = car["glyphs"][direction]


def car_turn_left(car):
    car_set_direction(car, TURN_LEFT[car["direction"]])


def car_turn_right(car):
    car_set_direction(car, TURN_RIGHT[car["direction"]])


def car_advance(car, area, borders):
    """Move the car one cell forward.

    With borders the car may leave the area; the collision check judges
    that. Without borders it wraps to the opposite edge.
    """
    dy, dx = STEP[car["direction"]]
    y, x = car["pos"]
    y += dy
    x += dx
    if not borders:
        y %= area[0]
        x %= area[1]
    car["pos"] = (y, x)


def car_moved(car):
    """Return True if the car has moved since it was last drawn."""
    return car["pos"] != car["old_pos"]


def car_reset(car):
    car["pos"] = car["old_pos"] = car["start_pos"]
    car_set_direction(car, car["start_direction"])


# ---------------------------------------------------------------------------
# Tick timer
# ---------------------------------------------------------------------------

def arm_itimer(interval_ns):
    """(Re)arm the SIGALRM interval timer; zero disarms it."""
    seconds = interval_ns / NS_PER_SEC
    signal.setitimer(signal.ITIMER_REAL, seconds, seconds)


def create_timer(start_speed_ns=START_SPEED_NS, step_ns=SPEED_STEP_NS, arm=arm_itimer):
    """Create the tick timer. It stays disabled until the first acceleration."""
    return {
        "interval_ns": 0,
        "start_speed_ns": start_speed_ns,
        "step_ns": step_ns,
        "fired": False,
        "arm": arm,
    }


def timer_arm(timer):
    timer["arm"](timer["interval_ns"])


def timer_accelerate(timer):
    """Make the car faster: start the engine, or shorten the interval by one step."""
    if timer["interval_ns"] == 0:
        timer["interval_ns"] = timer["start_speed_ns"]
    elif timer["interval_ns"] > timer["step_ns"]:
        timer["interval_ns"] -= timer["step_ns"]
    else:
        return
    timer_arm(timer)


def timer_slowdown(timer):
    """Make the car slower by one step. Does nothing before the engine started."""
    if timer["interval_ns"] == 0:
        return
    timer["interval_ns"] += timer["step_ns"]
    timer_arm(timer)


def timer_start(timer):
    timer_arm(timer)


def timer_stop(timer):
    """Pause tick notifications, keeping the interval."""
    timer["arm"](0)


def timer_reset(timer):
    """Disable the timer for a new round."""
    timer["interval_ns"] = 0
    timer["fired"] = False
    timer_arm(timer)


def timer_end(timer):
    timer["arm"](0)


# ---------------------------------------------------------------------------
# Render surface
# ---------------------------------------------------------------------------

def init_colors(colors):
    """Initialize the color pairs and return the attribute for each element."""
    attrs = {"car": 0, "goal": 0, "mscl": 0}
    if not curses.has_colors():
        return attrs

    curses.start_color()
    try:
        curses.use_default_colors()
    except curses.error:
        pass
    for pair, key in ((COLOR_CAR, "car"), (COLOR_GOAL, "goal"), (COLOR_MSCL, "mscl")):
        fg, bg = colors[key]
        curses.init_pair(pair, fg, bg)
        attrs[key] = curses.color_pair(pair)
    return attrs


class CursesSurface:
    """The curses windows the game draws on.

    A main window covering all lines but the last (boxed when borders are
    on), the game window inside it, and the message line at the bottom.
    Coordinates passed in are game window coordinates.
    """

    def __init__(self, stdscr, borders, colors=COLORS):
        self.stdscr = stdscr
        self.borders = borders
        self.mainwin = None
        self.gamewin = None
        self.msclwin = None
        self.lines, self.cols = stdscr.getmaxyx()
        self.attrs = init_colors(colors)
        self._create_windows()

    def area(self):
        return playable_area(self.lines, self.cols, self.borders)

    def _create_windows(self):
        area_lines, area_cols = self.area()
        if area_lines < 1 or area_cols < 1:
            raise GeometryError(
                f"your terminal is too small ({self.lines}x{self.cols})")

        # Drop the sub-window before its parent
        self.gamewin = None
        self.mainwin = None
        self.msclwin = None

        inset = 1 if self.borders else 0
        try:
            self.mainwin = curses.newwin(self.lines - 1, self.cols, 0, 0)
            self.gamewin = self.mainwin.subwin(area_lines, area_cols, inset, inset)
            self.msclwin = curses.newwin(1, self.cols, self.lines - 1, 0)
        except curses.error as exc:
            raise StartupError("curses could not be initialized properly") from exc

        self.gamewin.keypad(True)
        self.msclwin.keypad(True)
        self.mainwin.erase()
        if self.borders:
            self.mainwin.box()

    def resize(self):
        """Pick up the new terminal size and rebuild the windows, blank."""
        curses.endwin()
        self.stdscr.refresh()
        self.lines, self.cols = self.stdscr.getmaxyx()
        self._create_windows()

    def put(self, y, x, text, attr=0):
        """Write text to the game window, ignoring curses edge errors."""
        try:
            self.gamewin.addstr(y, x, text, attr)
        except curses.error:
            pass

    def read_cell(self, y, x):
        """Return the character shown at (y, x) in the game window."""
        try:
            # Four bytes hold any single UTF-8 character
            raw = self.gamewin.instr(y, x, 4)
        except curses.error as exc:
            raise TransientIOError(f"cannot read cell {y},{x}") from exc
        text = raw.decode(self.gamewin.encoding or "utf-8", errors="replace")
        if not text:
            raise TransientIOError(f"cannot read cell {y},{x}")
        return text[0]

    def message(self, text, focus=None):
        """Show text on the message line, then put the cursor back at focus."""
        try:
            self.msclwin.move(0, 0)
            self.msclwin.clrtoeol()
            self.msclwin.addnstr(0, 0, text, self.cols - 1, self.attrs["mscl"])
        except curses.error:
            pass
        self.msclwin.refresh()
        if focus is not None:
            try:
                self.gamewin.move(*focus)
            except curses.error:
                pass

    def clear_message(self):
        self.msclwin.move(0, 0)
        self.msclwin.clrtoeol()
        self.msclwin.refresh()

    def commit(self):
        """Push every pending change to the terminal in one update."""
        self.gamewin.noutrefresh()
        self.mainwin.noutrefresh()
        curses.doupdate()

    def read_key(self, prompt=False):
        """Block for input. Returns a str, a KEY_* int, or None if nothing was read."""
        win = self.msclwin if prompt else self.gamewin
        try:
            return win.get_wch()
        except curses.error:
            return None


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------

def create_session(surface, level, settings, arm=arm_itimer):
    """Place the level on the surface and build the game session around it."""
    chars = settings["chars"]
    area = surface.area()
    check_fits(level, area)
    level["offset"] = centering_offset(level, area)

    session = {
        "surface": surface,
        "level": level,
        "borders": settings["borders"],
        "goal": {
            "pos": to_display_position(level, level["goal_index"]),
            "glyph": chars["goal"],
        },
        "car": create_car(to_display_position(level, level["start_index"]),
                          level["start_direction"], chars),
        "timer": create_timer(settings["start_speed_ns"], settings["speed_step_ns"], arm),
        "pending": {"resize": False, "terminate": 0},
    }

    draw_level(session)
    place_goal(session)
    return session


# ---------------------------------------------------------------------------
# Drawing
# ---------------------------------------------------------------------------

def draw_level(session):
    """Draw every level row at the centering offset."""
    level = session["level"]
    offset_y, offset_x = level["offset"]
    for i, row in enumerate(level["rows"]):
        session["surface"].put(offset_y + i, offset_x, row)


def place_goal(session):
    surface = session["surface"]
    goal = session["goal"]
    surface.put(goal["pos"][0], goal["pos"][1], goal["glyph"], surface.attrs["goal"])


def draw_car(session):
    """Draw the car, blanking the cell it came from."""
    surface = session["surface"]
    car = session["car"]
    surface.put(car["pos"][0], car["pos"][1], car["glyph"], surface.attrs["car"])
    if car_moved(car):
        surface.put(car["old_pos"][0], car["old_pos"][1], " ")
        car["old_pos"] = car["pos"]


def update_screen(session):
    draw_car(session)
    session["surface"].commit()


def show_message(session, text):
    session["surface"].message(text, focus=session["car"]["old_pos"])


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------

HANDLED_SIGNALS = (signal.SIGALRM, signal.SIGCONT, signal.SIGINT, signal.SIGTERM)


def install_signal_handlers(session):
    """Route the game's signals to flags in the session.

    The handler only sets a flag; the game loop does the work once the
    blocking read returns. Returns the previous handlers.
    """
    timer = session["timer"]
    pending = session["pending"]

    def handler(signum, frame):
        if signum == signal.SIGALRM:
            timer["fired"] = True
        elif signum == signal.SIGCONT:
            pending["resize"] = True
        else:
            pending["terminate"] = signum

    previous = {}
    try:
        for signum in HANDLED_SIGNALS:
            previous[signum] = signal.signal(signum, handler)
    except (OSError, ValueError) as exc:
        restore_signal_handlers(previous)
        raise StartupError(f"cannot install signal handler: {exc}") from exc
    return previous


def restore_signal_handlers(previous):
    for signum, handler in previous.items():
        signal.signal(signum, handler if handler is not None else signal.SIG_DFL)


def notification_pending(session, ticks=True):
    pending = session["pending"]
    if pending["resize"] or pending["terminate"]:
        return True
    return ticks and session["timer"]["fired"]


def read_input(session, prompt=None):
    """Wait for the next key or notification.

    Returns the key read, or None when a notification is waiting instead.
    Ticks are not waited on while a prompt is open. Read errors that no
    notification explains are reported on the message line and retried.
    """
    surface = session["surface"]
    ticks = prompt is None
    if notification_pending(session, ticks):
        return None

    error_shown = False
    while True:
        key = surface.read_key(prompt is not None)
        if key == curses.KEY_RESIZE:
            session["pending"]["resize"] = True
            key = None
        if key is not None or notification_pending(session, ticks):
            break
        show_message(session, INPUT_ERROR_MESSAGE)
        error_shown = True

    if error_shown:
        if prompt is None:
            surface.clear_message()
        else:
            show_message(session, prompt)
    return key


# ---------------------------------------------------------------------------
# Game logic
# ---------------------------------------------------------------------------

def game_reset(session):
    """Start a new round: car back to start, engine off, goal redrawn."""
    car = session["car"]
    session["surface"].put(car["old_pos"][0], car["old_pos"][1], " ")
    car_reset(car)
    timer_reset(session["timer"])
    place_goal(session)


def play_again(session, message):
    """Ask message on the message line. Returns True if the player wants another round."""
    surface = session["surface"]
    pending = session["pending"]
    timer_stop(session["timer"])
    show_message(session, message)

    answer = None
    while answer not in ("y", "n"):
        key = read_input(session, prompt=message)
        if key is not None:
            answer = key
        elif pending["resize"]:
            pending["resize"] = False
            game_resize(session)
            show_message(session, message)
        elif pending["terminate"]:
            answer = "n"
    surface.clear_message()

    if answer == "y":
        game_reset(session)
        return True
    return False


def game_continue(session):
    """Judge the car's new position. Returns False when the game should end."""
    surface = session["surface"]
    car = session["car"]

    if car["pos"] == session["goal"]["pos"]:
        # Park on the goal before asking
        update_screen(session)
        return play_again(session, WON_MESSAGE)

    if not car_moved(car):
        return True

    if session["borders"] and not inside_area(car["pos"], surface.area()):
        return play_again(session, GAME_OVER_MESSAGE)

    try:
        cell = surface.read_cell(*car["pos"])
    except TransientIOError:
        return True
    if cell != " ":
        return play_again(session, GAME_OVER_MESSAGE)
    return True


def level_resize(session):
    """Re-center the level in the resized area and move everything with it."""
    surface = session["surface"]
    car = session["car"]
    goal = session["goal"]
    area = surface.area()

    _, delta = recenter(session["level"], area)
    goal["pos"] = shift(goal["pos"], delta)
    car["start_pos"] = shift(car["start_pos"], delta)
    car["pos"] = shift(car["pos"], delta)
    car["old_pos"] = shift(car["old_pos"], delta)

    if not inside_area(car["old_pos"], area):
        raise GeometryError("car out of screen after resize")

    draw_level(session)


def game_resize(session):
    surface = session["surface"]
    car = session["car"]
    surface.resize()
    level_resize(session)
    place_goal(session)
    # Redraw where the car was last shown; the loop moves it on
    surface.put(car["old_pos"][0], car["old_pos"][1], car["glyph"], surface.attrs["car"])
    surface.commit()


def handle_key(session, key):
    """Apply one key press. Returns False when the player quits."""
    car = session["car"]
    timer = session["timer"]
    if key == curses.KEY_LEFT:
        car_turn_left(car)
    elif key == curses.KEY_RIGHT:
        car_turn_right(car)
    elif key in (curses.KEY_UP, "a"):
        timer_accelerate(timer)
    elif key in (curses.KEY_DOWN, "b"):
        timer_slowdown(timer)
    elif key in ("q", "Q"):
        return False
    return True


def handle_notification(session):
    """Handle the first pending notification: resize, terminate, then tick.

    Returns False when the game should end.
    """
    pending = session["pending"]
    timer = session["timer"]

    if pending["resize"]:
        pending["resize"] = False
        game_resize(session)
    elif pending["terminate"]:
        return False
    elif timer["fired"]:
        car_advance(session["car"], session["surface"].area(), session["borders"])
        if not game_continue(session):
            return False
        timer["fired"] = False
    return True


def game_loop(session):
    """Run rounds until the player quits, declines a replay or is terminated."""
    timer = session["timer"]
    timer_start(timer)
    try:
        while True:
            update_screen(session)
            key = read_input(session)
            if key is None:
                if not handle_notification(session):
                    break
            elif not handle_key(session, key):
                break
    finally:
        timer_end(timer)


# ---------------------------------------------------------------------------
# Main game
# ---------------------------------------------------------------------------

def main(stdscr, level, settings):
    """Main game -- called by curses.wrapper().

    Returns the number of the signal that terminated the game, or 0.
    """
    try:
        curses.curs_set(0)
    except curses.error:
        pass
    curses.nonl()

    surface = CursesSurface(stdscr, settings["borders"], settings["colors"])
    session = create_session(surface, level, settings)
    previous = install_signal_handlers(session)
    try:
        game_loop(session)
    finally:
        restore_signal_handlers(previous)
    return session["pending"]["terminate"]


# ---------------------------------------------------------------------------
# Command line
# ---------------------------------------------------------------------------

def setup_locale():
    try:
        locale.setlocale(locale.LC_ALL, "")
    except locale.Error as exc:
        raise StartupError(f"setlocale() failed: {exc}") from exc


def print_car_chars(chars):
    print(f"car down: {chars['car_down']}\n"
          f"car left: {chars['car_left']}\n"
          f"car right: {chars['car_right']}\n"
          f"car up: {chars['car_up']}")


def print_max_level_size():
    """Print the largest level that fits the current terminal."""
    cols, lines = shutil.get_terminal_size()
    for borders, label in ((True, "with"), (False, "without")):
        area_lines, area_cols = playable_area(lines, cols, borders)
        print(f"max level size {label} borders:\n"
              f"  lines: {area_lines}\n"
              f"  cols: {area_cols}")


def build_parser():
    parser = argparse.ArgumentParser(
        prog=NAME,
        description="A simple curses car game: park the car on the goal.",
        epilog="Level files are plain text. Draw obstacles with any character, "
               "mark the goal with 'x' and the car's start with one of "
               "the car characters (see -c).")
    parser.add_argument("level_file", nargs="?", metavar="LEVELFILE",
                        help="level to play")
    parser.add_argument("-b", dest="toggle_borders", action="store_true",
                        help="toggle use of game borders")
    parser.add_argument("-c", dest="show_chars", action="store_true",
                        help="print car characters")
    parser.add_argument("-s", dest="show_size", action="store_true",
                        help="show maximum level size")
    parser.add_argument("-v", "--version", action="version",
                        version=f"%(prog)s, version {VERSION}\n{COPYRIGHT}",
                        help="show version information")
    return parser


def report_failure(exc):
    """Print the one-line diagnostic for a fatal error."""
    if isinstance(exc, MemoryError):
        context, message = "memory", "out of memory"
    else:
        context, message = getattr(exc, "context", "error"), str(exc)
    print(f"{NAME}: {context}: {message}", file=sys.stderr)


def run(argv=None, settings_path=SETTINGS_FILE):
    """Parse arguments, play, and return the process exit code."""
    parser = build_parser()
    args = parser.parse_args(argv)
    settings = load_settings(settings_path)

    if args.show_chars:
        print_car_chars(settings["chars"])
        return 0
    if args.show_size:
        print_max_level_size()
        return 0
    if args.level_file is None:
        parser.error("the following arguments are required: LEVELFILE")
    if args.toggle_borders:
        settings["borders"] = not settings["borders"]

    try:
        setup_locale()
        level = read_level(args.level_file, settings["chars"])
        signum = curses.wrapper(main, level, settings)
    except (CargameError, MemoryError) as exc:
        report_failure(exc)
        return 1
    except curses.error as exc:
        report_failure(StartupError(f"curses: {exc}"))
        return 1
    except KeyboardInterrupt:
        return 128 + signal.SIGINT

    if signum:
        return 128 + signum
    return 0


def cli():
    sys.exit(run())


if __name__ == "__main__":
    sys.exit(run())
